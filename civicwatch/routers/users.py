from math import ceil
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from civicwatch.api.deps import get_current_active_superuser, get_current_active_user
from civicwatch.core.log import get_logger
from civicwatch.core.security import verify_password
from civicwatch.crud.report import get_user_reports
from civicwatch.crud.user import delete_user, get_user, get_users, public_profile, update_user
from civicwatch.db.session import get_storage
from civicwatch.db.storage import REPORTS, USERS, StorageAdapter
from civicwatch.models.user import UserRole
from civicwatch.schemas import (
    MessageResponse,
    RoleUpdate,
    UserListResponse,
    UserResponse,
    UserStatsResponse,
    UserUpdate,
    camelize,
)
from civicwatch.services import analytics

logger = get_logger("civicwatch.users")

router = APIRouter()


def user_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


@router.get("/users/top-contributors")
async def read_top_contributors(
    limit: int = 10,
    period: Literal["all", "week", "month", "year"] = "all",
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Users ranked by civic points, then by number of reports in the period.
    """
    async with storage.transaction() as tx:
        users = await tx.find(USERS)
        reports = await tx.find(REPORTS)
    contributors = analytics.top_contributors(reports, users, limit=min(max(limit, 1), 100), period=period)
    return {"success": True, "contributors": camelize(contributors)}


@router.get("/users/profile", response_model=UserResponse)
@router.get("/users/profile/{user_id}", response_model=UserResponse)
async def read_user_profile(
    user_id: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Get the current user's profile, or another user's by id.
    """
    if not user_id or user_id == current_user["id"]:
        return {"success": True, "user": current_user}
    user = await get_user(storage, id=user_id)
    if not user:
        raise user_not_found()
    return {"success": True, "user": public_profile(user)}


@router.put("/users/profile", response_model=UserResponse)
@router.put("/users/profile/{user_id}", response_model=UserResponse)
async def update_user_profile(
    user_in: UserUpdate,
    user_id: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Update a profile. Users edit their own; admins can edit anyone's.
    Changing the password requires the current one.
    """
    user_id = user_id or current_user["id"]
    if user_id != current_user["id"] and current_user["role"] != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to update this profile",
        )

    async with storage.transaction() as tx:
        user = await get_user(tx, id=user_id)
        if not user:
            raise user_not_found()

        if user_in.password:
            if not user_in.current_password:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Current password required to update password",
                )
            if not verify_password(user_in.current_password, user.get("hashed_password")):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Current password is incorrect",
                )
        user = await update_user(tx, db_obj=user, obj_in=user_in)

    logger.info(f"Profile {user_id} updated by {current_user['id']}")
    return {"success": True, "message": "Profile updated successfully", "user": public_profile(user)}


@router.get("/users/stats", response_model=UserStatsResponse)
@router.get("/users/stats/{user_id}", response_model=UserStatsResponse)
async def read_user_stats(
    user_id: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_active_user),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Statistics computed from the user's reports as they are now.
    """
    user_id = user_id or current_user["id"]
    reports = await get_user_reports(storage, user_id=user_id)
    return {"success": True, "stats": analytics.user_report_stats(reports)}


@router.get("/users", response_model=UserListResponse)
async def read_users(
    page: int = 1,
    limit: int = 10,
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Retrieve users. Only accessible to admin users.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    async with storage.transaction() as tx:
        users, total = await get_users(
            tx, skip=(page - 1) * limit, limit=limit, role=role.value if role else None, search=search
        )
    return {
        "success": True,
        "users": [public_profile(u) for u in users],
        "total": total,
        "page": page,
        "pages": ceil(total / limit),
    }


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user_by_id(
    user_id: str,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Delete a user and every report they submitted. Only accessible to admin users.
    """
    if user_id == current_user["id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account",
        )
    async with storage.transaction() as tx:
        user = await get_user(tx, id=user_id)
        if not user:
            raise user_not_found()
        removed_reports = await delete_user(tx, id=user_id)

    logger.info(f"User {user_id} deleted by {current_user['id']} with {removed_reports} reports")
    return {"success": True, "message": "User deleted successfully"}


@router.put("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    role_in: RoleUpdate,
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Change a user's role. Admins cannot change their own.
    """
    if user_id == current_user["id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role",
        )
    async with storage.transaction() as tx:
        user = await get_user(tx, id=user_id)
        if not user:
            raise user_not_found()
        user = await update_user(tx, db_obj=user, obj_in={"role": role_in.role.value})

    logger.info(f"User {user_id} role set to {role_in.role.value} by {current_user['id']}")
    return {"success": True, "message": "User role updated successfully", "user": public_profile(user)}
