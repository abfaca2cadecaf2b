from math import ceil
from typing import Any, Dict, Optional
import traceback

from fastapi import APIRouter, Depends, HTTPException, Query, status

from civicwatch.api.deps import get_current_active_user
from civicwatch.core.log import get_logger
from civicwatch.crud.report import (
    add_report_comment,
    change_report_status,
    create_report,
    delete_report,
    get_report,
    get_reports,
    get_user_reports,
    increment_view_count,
    toggle_report_upvote,
    update_report,
)
from civicwatch.crud.user import get_user
from civicwatch.db.session import get_storage
from civicwatch.db.storage import StorageAdapter, StorageSession
from civicwatch.models.report import InvalidTransition, ReportCategory, ReportStatus
from civicwatch.models.user import STAFF_ROLES, UserRole
from civicwatch.schemas import (
    CommentCreate,
    CommentResponse,
    MessageResponse,
    ReportCreate,
    ReportListResponse,
    ReportResponse,
    ReportUpdate,
    UpvoteResponse,
)
from civicwatch.schemas.report import STAFF_ONLY_FIELDS
from civicwatch.services.events import publish_report_event

logger = get_logger("civicwatch.reports")

router = APIRouter()


def report_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")


def transition_conflict(e: InvalidTransition) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def server_error(action: str, e: Exception) -> HTTPException:
    error_details = traceback.format_exc()
    logger.error(f"Failed to {action}: error={str(e)}\n{error_details}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


async def check_assignee(db: StorageSession, user_id: Optional[str]) -> None:
    """Reports can only be assigned to existing officials and admins."""
    if not user_id:
        return
    assignee = await get_user(db, id=user_id)
    if not assignee or assignee.get("role") not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assignee must be an existing official or admin",
        )


@router.get("/reports", response_model=ReportListResponse)
async def read_reports(
    page: int = 1,
    limit: int = 10,
    status_filter: Optional[ReportStatus] = Query(None, alias="status"),
    category: Optional[ReportCategory] = None,
    city: Optional[str] = None,
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    List public reports, newest first.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    try:
        async with storage.transaction() as tx:
            reports, total = await get_reports(
                tx,
                skip=(page - 1) * limit,
                limit=limit,
                status=status_filter.value if status_filter else None,
                category=category.value if category else None,
                city=city,
            )
    except Exception as e:
        raise server_error("fetch reports", e)
    return {"success": True, "reports": reports, "total": total, "page": page, "pages": ceil(total / limit)}


@router.get("/reports/user/me", response_model=ReportListResponse)
async def read_my_reports(
    status_filter: Optional[ReportStatus] = Query(None, alias="status"),
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    All reports submitted by the current user, including private ones.
    """
    reports = await get_user_reports(storage, user_id=current_user["id"], status=status_filter.value if status_filter else None)
    return {"success": True, "reports": reports, "total": len(reports), "page": 1, "pages": 1 if reports else 0}


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def read_report(
    report_id: str,
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Get a report by ID. Each read counts as a view.
    """
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()
            report = await increment_view_count(tx, report)
    except HTTPException:
        raise
    except Exception as e:
        raise server_error("fetch report", e)
    return {"success": True, "report": report}


@router.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_new_report(
    report_in: ReportCreate,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Submit a new report. It always starts out pending.
    """
    try:
        async with storage.transaction() as tx:
            report = await create_report(tx, obj_in=report_in, user_id=current_user["id"])
    except Exception as e:
        raise server_error("create report", e)

    logger.info(f"Report {report['id']} created by {current_user['id']}")
    await publish_report_event("report_created", report, actor_id=current_user["id"])
    return {"success": True, "message": "Report submitted successfully", "report": report}


@router.put("/reports/{report_id}", response_model=ReportResponse)
async def update_report_by_id(
    report_id: str,
    report_in: ReportUpdate,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Update a report.
    Owners can edit the content of their own reports.
    Officials and admins can also change status, priority and assignment.
    """
    is_staff = current_user["role"] in STAFF_ROLES
    status_changed = False
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()

            # Check permissions
            if report["user_id"] != current_user["id"] and not is_staff:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Not authorized to update this report",
                )
            requested = report_in.model_fields_set & set(STAFF_ONLY_FIELDS)
            if requested and not is_staff:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Only officials and admins can change {', '.join(sorted(requested))}",
                )
            if "assigned_to" in report_in.model_fields_set:
                await check_assignee(tx, report_in.assigned_to)

            report = await update_report(tx, db_obj=report, obj_in=report_in)
            if report_in.status is not None:
                status_changed = await change_report_status(
                    tx, db_obj=report, new_status=report_in.status, actor_id=current_user["id"]
                )
                report = await get_report(tx, id=report_id)
    except HTTPException:
        raise
    except InvalidTransition as e:
        raise transition_conflict(e)
    except Exception as e:
        raise server_error("update report", e)

    if status_changed:
        await publish_report_event("report_status_changed", report, actor_id=current_user["id"])
    return {"success": True, "message": "Report updated successfully", "report": report}


@router.post("/reports/{report_id}/upvote", response_model=UpvoteResponse)
async def upvote_report(
    report_id: str,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Toggle the current user's upvote.
    """
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()
            added = await toggle_report_upvote(tx, db_obj=report, user_id=current_user["id"])
    except HTTPException:
        raise
    except Exception as e:
        raise server_error("update upvote", e)
    return {"success": True, "added": added, "upvote_count": len(report["upvotes"])}


@router.post("/reports/{report_id}/comment", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def comment_on_report(
    report_id: str,
    comment_in: CommentCreate,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()
            comment = await add_report_comment(tx, db_obj=report, user_id=current_user["id"], text=comment_in.text)
    except HTTPException:
        raise
    except Exception as e:
        raise server_error("add comment", e)
    return {"success": True, "comment": comment}


@router.delete("/reports/{report_id}", response_model=MessageResponse)
async def delete_report_by_id(
    report_id: str,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Delete a report. Only its owner or an admin can do this.
    """
    try:
        async with storage.transaction() as tx:
            report = await get_report(tx, id=report_id)
            if not report:
                raise report_not_found()
            if report["user_id"] != current_user["id"] and current_user["role"] != UserRole.ADMIN.value:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Not authorized to delete this report",
                )
            await delete_report(tx, db_obj=report)
    except HTTPException:
        raise
    except Exception as e:
        raise server_error("delete report", e)

    logger.info(f"Report {report_id} deleted by {current_user['id']}")
    await publish_report_event("report_deleted", report, actor_id=current_user["id"])
    return {"success": True, "message": "Report deleted successfully"}
