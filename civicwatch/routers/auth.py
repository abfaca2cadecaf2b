from datetime import timedelta
from typing import Any, Dict
import traceback

from fastapi import APIRouter, Depends, HTTPException, status

from civicwatch.api.deps import get_current_user
from civicwatch.core.config import settings
from civicwatch.core.log import get_logger
from civicwatch.core.security import create_access_token
from civicwatch.crud.user import (
    authenticate_user,
    create_user,
    get_user_by_email,
    public_profile,
    update_user,
)
from civicwatch.db.session import get_storage
from civicwatch.db.storage import StorageAdapter
from civicwatch.db.storage.base import utcnow
from civicwatch.schemas import AuthResponse, MessageResponse, UserCreate, UserLogin, UserResponse

logger = get_logger("civicwatch.auth")

router = APIRouter()


def _issue_token(user_id: str) -> str:
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return create_access_token(subject=user_id, expires_delta=access_token_expires)


@router.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_in: UserCreate,
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Register a new citizen account and sign it in.
    """
    try:
        logger.info(f"Registration attempt: email={user_in.email}")

        async with storage.transaction() as tx:
            existing_user = await get_user_by_email(tx, email=user_in.email)
            if existing_user:
                logger.warning(f"Registration failed - email already registered: email={user_in.email}")
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Email already registered",
                )
            user = await create_user(tx, obj_in=user_in)

        logger.info(f"Registration successful: email={user['email']}, user_id={user['id']}")
        return {"success": True, "token": _issue_token(user["id"]), "user": public_profile(user)}
    except HTTPException:
        raise
    except Exception as e:
        error_details = traceback.format_exc()
        logger.error(f"Registration error: email={user_in.email}, error={str(e)}\n{error_details}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during registration",
        )


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    credentials: UserLogin,
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Exchange email and password for an access token.

    Unknown emails and wrong passwords get the same answer.
    """
    try:
        logger.info(f"Login attempt: email={credentials.email}")
        user = await authenticate_user(storage, email=credentials.email, password=credentials.password)

        if not user:
            logger.warning(f"Login failed - incorrect credentials: email={credentials.email}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        elif not user.get("is_active", True):
            logger.warning(f"Login failed - suspended account: email={credentials.email}, user_id={user['id']}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account is suspended",
            )

        async with storage.transaction() as tx:
            user = await update_user(tx, db_obj=user, obj_in={"last_login": utcnow()})

        logger.info(f"Login successful: email={credentials.email}, user_id={user['id']}")
        return {"success": True, "token": _issue_token(user["id"]), "user": public_profile(user)}
    except HTTPException:
        raise
    except Exception as e:
        error_details = traceback.format_exc()
        logger.error(f"Login error: email={credentials.email}, error={str(e)}\n{error_details}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during login",
        )


@router.get("/auth/verify", response_model=UserResponse)
async def verify_token(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Any:
    """
    Check the bearer token and return the user it belongs to.
    """
    return {"success": True, "user": current_user}


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Any:
    """
    Tokens are stateless; the client discards its copy.
    """
    logger.info(f"Logout: user_id={current_user['id']}")
    return {"success": True, "message": "Logged out successfully"}
