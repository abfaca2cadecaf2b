from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from civicwatch.api.deps import get_current_active_superuser
from civicwatch.core.log import get_logger
from civicwatch.crud.report import change_report_status, get_report, update_report
from civicwatch.crud.user import get_user, public_profile, update_user
from civicwatch.db.session import get_storage
from civicwatch.db.storage import REPORTS, USERS, OneOf, StorageAdapter
from civicwatch.models.report import InvalidTransition, ReportStatus
from civicwatch.routers.analytics import MAX_DAYS
from civicwatch.routers.reports import check_assignee, report_not_found, server_error, transition_conflict
from civicwatch.schemas import (
    BulkUpdate,
    BulkUpdateResponse,
    ManageUserRequest,
    ReportResponse,
    StatusUpdate,
    UserResponse,
    camelize,
)
from civicwatch.services import analytics
from civicwatch.services.events import publish_report_event

logger = get_logger("civicwatch.admin")

router = APIRouter()

BULK_STATUSES = {
    "approve": ReportStatus.IN_PROGRESS,
    "resolve": ReportStatus.RESOLVED,
    "reject": ReportStatus.REJECTED,
}


@router.get("/admin/dashboard")
async def read_dashboard(
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Platform overview: counts, growth and reports needing attention.
    """
    async with storage.transaction() as tx:
        users = await tx.find(USERS)
        reports = await tx.find(REPORTS)
    return {"success": True, "dashboard": camelize(analytics.dashboard(users, reports))}


@router.put("/admin/reports/{report_id}/status", response_model=ReportResponse)
async def update_report_status(
    report_id: str,
    status_in: StatusUpdate,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Change a report's status, optionally reassigning or reprioritising it.
    The owner's stats are updated in the same transaction.
    """
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()

            changes = status_in.model_dump(include={"assigned_to", "priority"}, exclude_unset=True, mode="json")
            if "assigned_to" in changes:
                await check_assignee(tx, changes["assigned_to"])
            if changes:
                report = await update_report(tx, db_obj=report, obj_in=changes)

            status_changed = await change_report_status(
                tx,
                db_obj=report,
                new_status=status_in.status,
                actor_id=current_user["id"],
                reason=status_in.reason,
                notes=status_in.resolution_notes,
            )
            report = await get_report(tx, id=report_id)
    except HTTPException:
        raise
    except InvalidTransition as e:
        raise transition_conflict(e)
    except Exception as e:
        raise server_error("update report status", e)

    if status_changed:
        await publish_report_event("report_status_changed", report, actor_id=current_user["id"])
    return {"success": True, "message": "Report updated successfully", "report": report}


@router.post("/admin/reports/bulk-update", response_model=BulkUpdateResponse)
async def bulk_update_reports(
    bulk_in: BulkUpdate,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Apply one action to many reports. Status actions go through the same
    lifecycle rules as a single status update.
    """
    if bulk_in.action == "set_priority" and bulk_in.priority is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Priority is required")
    if bulk_in.action == "assign" and not bulk_in.assigned_to:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee is required")

    changed = []
    try:
        async with storage.transaction() as tx:
            if bulk_in.action == "assign":
                await check_assignee(tx, bulk_in.assigned_to)
            # unknown ids are skipped
            reports = await tx.find(REPORTS, OneOf("id", tuple(bulk_in.report_ids)))
            for report in reports:
                if bulk_in.action in BULK_STATUSES:
                    if await change_report_status(
                        tx,
                        db_obj=report,
                        new_status=BULK_STATUSES[bulk_in.action],
                        actor_id=current_user["id"],
                        reason=f"Bulk {bulk_in.action} operation",
                    ):
                        changed.append(report)
                elif bulk_in.action == "set_priority":
                    if report.get("priority") != bulk_in.priority.value:
                        changed.append(await update_report(tx, db_obj=report, obj_in={"priority": bulk_in.priority.value}))
                elif report.get("assigned_to") != bulk_in.assigned_to:
                    changed.append(await update_report(tx, db_obj=report, obj_in={"assigned_to": bulk_in.assigned_to}))
    except HTTPException:
        raise
    except InvalidTransition as e:
        raise transition_conflict(e)
    except Exception as e:
        raise server_error("perform bulk update", e)

    logger.info(f"Bulk {bulk_in.action} by {current_user['id']}: {len(changed)} reports modified")
    if bulk_in.action in BULK_STATUSES:
        for report in changed:
            await publish_report_event("report_status_changed", report, actor_id=current_user["id"])
    return {
        "success": True,
        "message": f"Successfully updated {len(changed)} reports",
        "modified_count": len(changed),
    }


@router.post("/admin/users/{user_id}/manage", response_model=UserResponse)
async def manage_user_account(
    user_id: str,
    manage_in: ManageUserRequest,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Suspend, reactivate, change the role of, or award points to a user.
    """
    if manage_in.action in ("suspend", "update_role") and user_id == current_user["id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own account this way",
        )
    if manage_in.action == "update_role" and manage_in.role is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role is required")
    if manage_in.action == "add_points" and not manage_in.points:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Points value is required")

    async with storage.transaction() as tx:
        user = await get_user(tx, id=user_id)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        if manage_in.action == "suspend":
            changes = {"is_active": False}
        elif manage_in.action == "activate":
            changes = {"is_active": True}
        elif manage_in.action == "update_role":
            changes = {"role": manage_in.role.value}
        else:
            changes = {"civic_points": (user.get("civic_points") or 0) + manage_in.points}
        user = await update_user(tx, db_obj=user, obj_in=changes)

    reason = f" ({manage_in.reason})" if manage_in.reason else ""
    logger.info(f"Admin {current_user['id']} ran {manage_in.action} on user {user_id}{reason}")
    return {
        "success": True,
        "message": f"User account {manage_in.action} completed successfully",
        "user": public_profile(user),
    }


@router.get("/admin/logs")
async def read_system_logs(
    days: int = Query(7, ge=1, le=MAX_DAYS),
    limit: int = Query(50, ge=1, le=500),
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Recent status changes and user activity, newest first.
    """
    async with storage.transaction() as tx:
        users = await tx.find(USERS)
        reports = await tx.find(REPORTS)
    logs = analytics.status_change_log(reports, users, days=days, limit=limit)
    return {"success": True, "logs": camelize(logs), "limit": limit}
