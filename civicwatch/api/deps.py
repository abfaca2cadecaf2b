from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from civicwatch.core.security import decode_access_token
from civicwatch.crud.user import get_user, public_profile
from civicwatch.db.session import get_storage
from civicwatch.db.storage import StorageAdapter
from civicwatch.models.user import STAFF_ROLES, UserRole

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    storage: StorageAdapter = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Resolve the bearer token to a user record, without the password hash.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("No token provided")

    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise _unauthorized("Invalid or expired token")

    user = await get_user(storage, id=user_id)
    if not user:
        raise _unauthorized("User not found")
    return public_profile(user)


async def get_current_active_user(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    if not current_user.get("is_active", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")
    return current_user


async def get_current_staff_user(
    current_user: Dict[str, Any] = Depends(get_current_active_user),
) -> Dict[str, Any]:
    """
    Officials and admins.
    """
    if current_user.get("role") not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Official or admin role required",
        )
    return current_user


async def get_current_active_superuser(
    current_user: Dict[str, Any] = Depends(get_current_active_user),
) -> Dict[str, Any]:
    if current_user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin role required",
        )
    return current_user
