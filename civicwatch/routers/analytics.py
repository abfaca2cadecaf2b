from typing import Any, Dict, List, Literal, Tuple

from fastapi import APIRouter, Depends, Query

from civicwatch.api.deps import get_current_active_user, get_current_staff_user
from civicwatch.db.session import get_storage
from civicwatch.db.storage import REPORTS, USERS, StorageAdapter
from civicwatch.schemas import camelize
from civicwatch.services import analytics

router = APIRouter()

MAX_DAYS = 3650


async def load_records(storage: StorageAdapter) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Users and reports read together, so the figures agree with each other."""
    async with storage.transaction() as tx:
        users = await tx.find(USERS)
        reports = await tx.find(REPORTS)
    return users, reports


@router.get("/analytics/overall")
async def read_overall_stats(
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    users, reports = await load_records(storage)
    return {"success": True, "stats": camelize(analytics.overall_stats(users, reports))}


@router.get("/analytics/categories")
async def read_category_stats(
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    reports = await storage.find(REPORTS)
    return {"success": True, "categories": camelize(analytics.reports_by_category(reports))}


@router.get("/analytics/locations")
async def read_location_stats(
    group_by: Literal["city", "state"] = Query("city", alias="groupBy"),
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    reports = await storage.find(REPORTS)
    return {
        "success": True,
        "groupBy": group_by,
        "locations": camelize(analytics.reports_by_location(reports, group_by=group_by)),
    }


@router.get("/analytics/time-series")
async def read_time_series(
    period: Literal["hour", "day", "week", "month"] = "day",
    days: int = Query(30, ge=1, le=MAX_DAYS),
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Reports and sign-ups per time bucket over the last ``days`` days.
    """
    users, reports = await load_records(storage)
    series = analytics.time_series(reports, users, period=period, days=days)
    return {"success": True, "period": period, "days": days, **camelize(series)}


@router.get("/analytics/priorities")
async def read_priority_distribution(
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    reports = await storage.find(REPORTS)
    return {"success": True, "priorities": camelize(analytics.priority_distribution(reports))}


@router.get("/analytics/engagement")
async def read_engagement_metrics(
    days: int = Query(30, ge=1, le=MAX_DAYS),
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    users, reports = await load_records(storage)
    return {"success": True, "metrics": camelize(analytics.engagement_metrics(reports, users, days=days))}


@router.get("/analytics/performance")
async def read_performance_metrics(
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Resolution and first-response times. Officials and admins only.
    """
    reports = await storage.find(REPORTS)
    return {"success": True, "performance": camelize(analytics.performance_metrics(reports))}
