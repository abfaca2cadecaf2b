from typing import List, Literal, Optional
from pydantic import Field, field_validator, model_validator
from datetime import datetime

from civicwatch.models.report import Department, ReportCategory, ReportPriority, ReportStatus
from civicwatch.schemas.base import CamelModel
from civicwatch.schemas.user import Coordinates


class Location(CamelModel):
    address: str = Field(..., min_length=1)
    landmark: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class ReportImage(CamelModel):
    url: str
    caption: Optional[str] = None
    uploaded_at: Optional[datetime] = None


def _location_from_string(v):
    # a bare string is taken as the address
    if isinstance(v, str):
        return {"address": v}
    return v


# Properties to receive on report creation
class ReportCreate(CamelModel):
    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20, max_length=2000)
    category: ReportCategory
    priority: ReportPriority = ReportPriority.MEDIUM
    location: Location
    department: Department = Department.MUNICIPAL_CORPORATION
    images: List[ReportImage] = Field(default_factory=list, max_length=5)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    is_anonymous: bool = False

    @field_validator("location", mode="before")
    @classmethod
    def coerce_location(cls, v):
        return _location_from_string(v)


# Properties to receive on report update. Content fields are open to the
# owner; status, priority and assignment are for officials and admins.
class ReportUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=5, max_length=100)
    description: Optional[str] = Field(None, min_length=20, max_length=2000)
    category: Optional[ReportCategory] = None
    location: Optional[Location] = None
    department: Optional[Department] = None
    images: Optional[List[ReportImage]] = Field(None, max_length=5)
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    is_anonymous: Optional[bool] = None
    status: Optional[ReportStatus] = None
    priority: Optional[ReportPriority] = None
    assigned_to: Optional[str] = None

    @field_validator("location", mode="before")
    @classmethod
    def coerce_location(cls, v):
        return _location_from_string(v)


STAFF_ONLY_FIELDS = ("status", "priority", "assigned_to")


class Upvote(CamelModel):
    user_id: str
    created_at: Optional[datetime] = None


class Comment(CamelModel):
    id: Optional[str] = None
    user_id: str
    text: str
    created_at: Optional[datetime] = None


class CommentCreate(CamelModel):
    text: str = Field(..., min_length=1, max_length=1000)

    @field_validator("text")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Comment text is required")
        return v.strip()


class StatusChange(CamelModel):
    status: ReportStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None
    changed_at: datetime


class Resolution(CamelModel):
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class ReportMetrics(CamelModel):
    view_count: int = 0
    share_count: int = 0


# Properties to return to client
class Report(CamelModel):
    id: str
    title: str
    description: str
    category: ReportCategory
    priority: ReportPriority = ReportPriority.MEDIUM
    status: ReportStatus
    location: Location
    department: Department = Department.MUNICIPAL_CORPORATION
    images: List[ReportImage] = []
    tags: List[str] = []
    is_public: bool = True
    is_anonymous: bool = False
    user_id: str
    assigned_to: Optional[str] = None
    upvotes: List[Upvote] = []
    upvote_count: int = 0
    comments: List[Comment] = []
    comment_count: int = 0
    status_history: List[StatusChange] = []
    resolution: Resolution = Field(default_factory=Resolution)
    metrics: ReportMetrics = Field(default_factory=ReportMetrics)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def fill_derived(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data["upvote_count"] = len(data.get("upvotes") or [])
            data["comment_count"] = len(data.get("comments") or [])
            data["resolution"] = data.get("resolution") or {}
            data["metrics"] = data.get("metrics") or {}
        return data


class ReportResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    report: Report


class ReportListResponse(CamelModel):
    success: bool = True
    reports: List[Report]
    total: int
    page: int
    pages: int


class UpvoteResponse(CamelModel):
    success: bool = True
    added: bool
    upvote_count: int


class CommentResponse(CamelModel):
    success: bool = True
    comment: Comment


class StatusUpdate(CamelModel):
    status: ReportStatus
    reason: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[ReportPriority] = None
    resolution_notes: Optional[str] = None


class BulkUpdate(CamelModel):
    report_ids: List[str] = Field(..., min_length=1)
    action: Literal["approve", "resolve", "reject", "set_priority", "assign"]
    priority: Optional[ReportPriority] = None
    assigned_to: Optional[str] = None


class BulkUpdateResponse(CamelModel):
    success: bool = True
    message: str
    modified_count: int


class MessageResponse(CamelModel):
    success: bool = True
    message: str
