from typing import Any, Dict, List, Optional, Tuple, Union

from civicwatch.core.config import settings
from civicwatch.core.log import get_logger
from civicwatch.crud.user import adjust_user_stats
from civicwatch.db.storage import REPORTS, Eq, StorageSession
from civicwatch.db.storage.base import utcnow
from civicwatch.models.report import (
    TERMINAL_STATUSES,
    ReportStatus,
    add_comment,
    new_report_document,
    stats_delta,
    toggle_upvote,
    update_status,
)
from civicwatch.schemas import ReportCreate, ReportUpdate

logger = get_logger("civicwatch.reports")


async def get_report(db: StorageSession, id: str) -> Optional[Dict[str, Any]]:
    """
    Get a report by ID.
    """
    return await db.find_one(REPORTS, Eq("id", id))


async def get_reports(
    db: StorageSession,
    skip: int = 0,
    limit: int = 10,
    status: Optional[str] = None,
    category: Optional[str] = None,
    city: Optional[str] = None,
    public_only: bool = True,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Get reports, newest first, with optional filtering. Returns the page and the total.
    """
    predicates = []
    if public_only:
        predicates.append(Eq("is_public", True))
    if status:
        predicates.append(Eq("status", status))
    if category:
        predicates.append(Eq("category", category))
    if city:
        predicates.append(Eq("location.city", city))

    total = await db.count(REPORTS, *predicates)
    reports = await db.find(
        REPORTS, *predicates, order_by="created_at", descending=True, skip=skip, limit=limit
    )
    return reports, total


async def get_user_reports(
    db: StorageSession, user_id: str, status: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Get all reports created by a specific user, newest first.
    """
    predicates = [Eq("user_id", user_id)]
    if status:
        predicates.append(Eq("status", status))
    return await db.find(REPORTS, *predicates, order_by="created_at", descending=True)


async def create_report(db: StorageSession, obj_in: ReportCreate, user_id: str) -> Dict[str, Any]:
    """
    Create a new report and count it in the owner's stats.
    """
    data = obj_in.model_dump(mode="json")
    now = utcnow()
    for image in data["images"]:
        image["uploaded_at"] = image.get("uploaded_at") or now
    report = await db.create(REPORTS, new_report_document(data, user_id))
    await adjust_user_stats(db, user_id, {"total_reports": 1, "pending_reports": 1})
    return report


async def update_report(
    db: StorageSession, db_obj: Dict[str, Any], obj_in: Union[ReportUpdate, Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Overwrite the given fields. Status is not handled here, see change_report_status.
    """
    if isinstance(obj_in, dict):
        update_data = dict(obj_in)
    else:
        update_data = obj_in.model_dump(exclude_unset=True, mode="json")
    update_data.pop("status", None)
    # null only clears the assignment; required fields keep their value
    update_data = {k: v for k, v in update_data.items() if v is not None or k == "assigned_to"}

    if update_data:
        await db.update(REPORTS, [Eq("id", db_obj["id"])], update_data)
    return await get_report(db, id=db_obj["id"])


async def change_report_status(
    db: StorageSession,
    db_obj: Dict[str, Any],
    new_status: Union[ReportStatus, str],
    actor_id: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> bool:
    """
    Move a report to ``new_status`` and adjust the owner's cached stats.

    Both writes happen on ``db``, so they commit together. Returns False when
    the report already has that status.
    """
    new_status = ReportStatus(new_status).value
    previous = db_obj.get("status")
    if previous == new_status:
        return False

    update_status(
        db_obj,
        new_status,
        actor_id,
        reason=reason,
        notes=notes,
        strict=settings.STRICT_STATUS_TRANSITIONS,
    )
    await db.update(
        REPORTS,
        [Eq("id", db_obj["id"])],
        {
            "status": db_obj["status"],
            "status_history": db_obj["status_history"],
            "resolution": db_obj["resolution"],
        },
    )
    delta = stats_delta(previous, new_status, settings.CIVIC_POINTS_ON_RESOLVE)
    if delta:
        await adjust_user_stats(db, db_obj["user_id"], delta)
    logger.info(f"Report {db_obj['id']} status {previous} -> {new_status} by {actor_id}")
    return True


async def toggle_report_upvote(db: StorageSession, db_obj: Dict[str, Any], user_id: str) -> bool:
    """
    Toggle the user's upvote. Returns True when the upvote was added.
    """
    added = toggle_upvote(db_obj, user_id)
    await db.update(REPORTS, [Eq("id", db_obj["id"])], {"upvotes": db_obj["upvotes"]})
    await adjust_user_stats(db, db_obj["user_id"], {"upvotes_received": 1 if added else -1})
    return added


async def add_report_comment(
    db: StorageSession, db_obj: Dict[str, Any], user_id: str, text: str
) -> Dict[str, Any]:
    """
    Append a comment to the report.
    """
    comment = add_comment(db_obj, user_id, text)
    await db.update(REPORTS, [Eq("id", db_obj["id"])], {"comments": db_obj["comments"]})
    return comment


async def increment_view_count(db: StorageSession, db_obj: Dict[str, Any]) -> Dict[str, Any]:
    metrics = {"view_count": 0, "share_count": 0, **(db_obj.get("metrics") or {})}
    metrics["view_count"] += 1
    db_obj["metrics"] = metrics
    await db.update(REPORTS, [Eq("id", db_obj["id"])], {"metrics": metrics})
    return db_obj


async def delete_report(db: StorageSession, db_obj: Dict[str, Any]) -> None:
    """
    Delete a report and take it out of the owner's cached stats.
    """
    await db.delete(REPORTS, [Eq("id", db_obj["id"])])
    delta = {"total_reports": -1}
    if db_obj.get("status") not in TERMINAL_STATUSES:
        delta["pending_reports"] = -1
    if db_obj.get("status") == ReportStatus.RESOLVED.value:
        delta["resolved_reports"] = -1
    upvotes = len(db_obj.get("upvotes") or [])
    if upvotes:
        delta["upvotes_received"] = -upvotes
    await adjust_user_stats(db, db_obj["user_id"], delta)
