from typing import Any, Dict, Optional
import enum

from sqlalchemy import Boolean, Column, Enum, ForeignKey, JSON, String, Text

from civicwatch.db.base_class import Base
from civicwatch.db.storage.base import new_id, utcnow


class ReportStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


class ReportCategory(str, enum.Enum):
    ROAD_MAINTENANCE = "Road Maintenance"
    WASTE_MANAGEMENT = "Waste Management"
    WATER_UTILITIES = "Water & Utilities"
    LIGHTING = "Lighting"
    VANDALISM = "Vandalism"
    TRAFFIC = "Traffic"
    INFRASTRUCTURE = "Infrastructure"
    OTHER = "Other"


class ReportPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Department(str, enum.Enum):
    PWD = "PWD"
    MUNICIPAL_CORPORATION = "Municipal Corporation"
    WATER_BOARD = "Water Board"
    ELECTRICITY_BOARD = "Electricity Board"
    TRAFFIC_POLICE = "Traffic Police"
    OTHER = "Other"


def _values(e):
    return [m.value for m in e]


class Report(Base):
    id = Column(String(32), primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(Enum(ReportCategory, values_callable=_values, native_enum=False), nullable=False, index=True)
    priority = Column(
        Enum(ReportPriority, values_callable=_values, native_enum=False),
        default=ReportPriority.MEDIUM,
        nullable=False,
    )
    status = Column(
        Enum(ReportStatus, values_callable=_values, native_enum=False),
        default=ReportStatus.PENDING,
        nullable=False,
        index=True,
    )
    location = Column(JSON, nullable=False)
    images = Column(JSON, default=list, nullable=False)
    department = Column(
        Enum(Department, values_callable=_values, native_enum=False),
        default=Department.MUNICIPAL_CORPORATION,
        nullable=False,
    )
    tags = Column(JSON, default=list, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    is_anonymous = Column(Boolean, default=False, nullable=False)

    # Relationships
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to = Column(String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Embedded lists, kept as JSON so records look the same in both storage modes
    upvotes = Column(JSON, default=list, nullable=False)
    comments = Column(JSON, default=list, nullable=False)
    status_history = Column(JSON, default=list, nullable=False)
    resolution = Column(JSON, nullable=True)
    metrics = Column(JSON, nullable=True)


# Report lifecycle. These helpers work on report records (plain dicts).

INITIAL_SUBMISSION_REASON = "Initial submission"

TERMINAL_STATUSES = frozenset(
    {ReportStatus.RESOLVED.value, ReportStatus.CLOSED.value, ReportStatus.REJECTED.value}
)

ALLOWED_TRANSITIONS = {
    ReportStatus.PENDING.value: {
        ReportStatus.ACKNOWLEDGED.value,
        ReportStatus.IN_PROGRESS.value,
        ReportStatus.RESOLVED.value,
        ReportStatus.CLOSED.value,
        ReportStatus.REJECTED.value,
    },
    ReportStatus.ACKNOWLEDGED.value: {
        ReportStatus.IN_PROGRESS.value,
        ReportStatus.RESOLVED.value,
        ReportStatus.CLOSED.value,
        ReportStatus.REJECTED.value,
    },
    ReportStatus.IN_PROGRESS.value: {
        ReportStatus.RESOLVED.value,
        ReportStatus.CLOSED.value,
        ReportStatus.REJECTED.value,
    },
    # reopening
    ReportStatus.RESOLVED.value: {ReportStatus.IN_PROGRESS.value, ReportStatus.CLOSED.value},
    ReportStatus.CLOSED.value: {ReportStatus.IN_PROGRESS.value},
    ReportStatus.REJECTED.value: {ReportStatus.PENDING.value},
}


class InvalidTransition(ValueError):
    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Cannot change status from '{current}' to '{new}'")


def validate_transition(current: str, new: str) -> None:
    if current == new:
        return
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, new)


def status_entry(status: str, changed_by: Optional[str], reason: str) -> Dict[str, Any]:
    return {
        "status": status,
        "changed_by": changed_by,
        "reason": reason,
        "changed_at": utcnow(),
    }


def empty_resolution() -> Dict[str, Any]:
    return {"resolved_by": None, "resolved_at": None, "resolution_notes": None}


def new_report_document(data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """
    Build the record for a fresh submission: status forced to pending and the
    history seeded with the initial entry.
    """
    document = dict(data)
    document.update(
        {
            "user_id": user_id,
            "status": ReportStatus.PENDING.value,
            "assigned_to": None,
            "upvotes": [],
            "comments": [],
            "status_history": [status_entry(ReportStatus.PENDING.value, user_id, INITIAL_SUBMISSION_REASON)],
            "resolution": empty_resolution(),
            "metrics": {"view_count": 0, "share_count": 0},
        }
    )
    return document


def update_status(
    report: Dict[str, Any],
    new_status: str,
    actor_id: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    strict: bool = False,
) -> str:
    """
    Record a status change on ``report`` and return the previous status.

    Resolution fields are stamped when the report becomes resolved and
    cleared when it leaves that state.
    """
    new_status = ReportStatus(new_status).value
    previous = report.get("status")
    if strict:
        validate_transition(previous, new_status)

    history = report.get("status_history") or []
    history.append(status_entry(new_status, actor_id, reason or f"Status changed to {new_status}"))
    report["status_history"] = history
    report["status"] = new_status

    resolution = report.get("resolution") or empty_resolution()
    if new_status == ReportStatus.RESOLVED.value:
        resolution["resolved_at"] = utcnow()
        resolution["resolved_by"] = actor_id
        if notes:
            resolution["resolution_notes"] = notes
    else:
        resolution["resolved_at"] = None
        resolution["resolved_by"] = None
    report["resolution"] = resolution
    return previous


def stats_delta(old: Optional[str], new: str, points_on_resolve: int = 0) -> Dict[str, int]:
    """Changes to the owner's cached stats and civic points for a status change."""
    delta: Dict[str, int] = {}
    if old == new:
        return delta
    if new == ReportStatus.RESOLVED.value:
        delta["resolved_reports"] = 1
        if points_on_resolve:
            delta["civic_points"] = points_on_resolve
    elif old == ReportStatus.RESOLVED.value:
        delta["resolved_reports"] = -1

    was_open = old not in TERMINAL_STATUSES
    is_open = new not in TERMINAL_STATUSES
    if was_open and not is_open:
        delta["pending_reports"] = -1
    elif is_open and not was_open:
        delta["pending_reports"] = 1
    return delta


def has_upvoted(report: Dict[str, Any], user_id: str) -> bool:
    return any(u.get("user_id") == user_id for u in report.get("upvotes") or [])


def toggle_upvote(report: Dict[str, Any], user_id: str) -> bool:
    """Add the user's upvote, or remove it if present. Returns True when added."""
    upvotes = report.get("upvotes") or []
    if has_upvoted(report, user_id):
        report["upvotes"] = [u for u in upvotes if u.get("user_id") != user_id]
        return False
    report["upvotes"] = upvotes + [{"user_id": user_id, "created_at": utcnow()}]
    return True


def add_comment(report: Dict[str, Any], user_id: str, text: str) -> Dict[str, Any]:
    comment = {"id": new_id(), "user_id": user_id, "text": text, "created_at": utcnow()}
    comments = report.get("comments") or []
    comments.append(comment)
    report["comments"] = comments
    return comment
