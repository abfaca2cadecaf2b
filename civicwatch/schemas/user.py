from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import EmailStr, Field, field_validator
import re

from civicwatch.models.user import UserRole
from civicwatch.schemas.base import CamelModel


def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not re.match(r"^[0-9]{10}$", v):
        raise ValueError("Please provide a valid 10-digit phone number")
    return v


class Coordinates(CamelModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class UserLocation(CamelModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    coordinates: Optional[Coordinates] = None


# Shared properties
class UserBase(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


# Properties to receive on sign-up
class UserCreate(UserBase):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


# Properties to receive on profile update
class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None
    avatar: Optional[str] = None
    location: Optional[UserLocation] = None
    password: Optional[str] = Field(None, min_length=6)
    current_password: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class UserStats(CamelModel):
    total_reports: int = 0
    resolved_reports: int = 0
    pending_reports: int = 0
    upvotes_received: int = 0


# Properties to return to client; the password hash is never part of it
class User(CamelModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    role: UserRole = UserRole.CITIZEN
    avatar: Optional[str] = None
    location: Optional[UserLocation] = None
    civic_points: int = 0
    stats: UserStats = Field(default_factory=UserStats)
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Properties for user login
class UserLogin(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(CamelModel):
    success: bool = True
    token: str
    user: User


class UserResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    user: User


class UserListResponse(CamelModel):
    success: bool = True
    users: List[User]
    total: int
    page: int
    pages: int


class RoleUpdate(CamelModel):
    role: UserRole


class ManageUserRequest(CamelModel):
    action: Literal["suspend", "activate", "update_role", "add_points"]
    reason: Optional[str] = None
    role: Optional[UserRole] = None
    points: Optional[int] = Field(None, gt=0)


class LiveUserStats(CamelModel):
    total_reports: int = 0
    pending_reports: int = 0
    in_progress_reports: int = 0
    resolved_reports: int = 0
    total_upvotes: int = 0
    total_comments: int = 0
    categories: List[str] = []
    recent_activity: List[Dict[str, Any]] = []


class UserStatsResponse(CamelModel):
    success: bool = True
    stats: LiveUserStats
