from civicwatch.schemas.base import CamelModel, camelize
from civicwatch.schemas.user import (
    User,
    UserCreate,
    UserUpdate,
    UserLogin,
    UserStats,
    AuthResponse,
    UserResponse,
    UserListResponse,
    UserStatsResponse,
    RoleUpdate,
    ManageUserRequest,
)
from civicwatch.schemas.report import (
    Report,
    ReportCreate,
    ReportUpdate,
    ReportResponse,
    ReportListResponse,
    Comment,
    CommentCreate,
    CommentResponse,
    UpvoteResponse,
    StatusUpdate,
    BulkUpdate,
    BulkUpdateResponse,
    MessageResponse,
)
