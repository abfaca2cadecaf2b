from sqlalchemy import Boolean, Column, String, Integer, Enum, JSON
import enum

from civicwatch.db.base_class import Base, IsoDateTime


class UserRole(str, enum.Enum):
    CITIZEN = "citizen"
    OFFICIAL = "official"
    ADMIN = "admin"


STAFF_ROLES = (UserRole.OFFICIAL.value, UserRole.ADMIN.value)


def empty_stats() -> dict:
    return {
        "total_reports": 0,
        "resolved_reports": 0,
        "pending_reports": 0,
        "upvotes_received": 0,
    }


class User(Base):
    id = Column(String(32), primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=UserRole.CITIZEN,
        nullable=False,
        index=True,
    )
    avatar = Column(String(500), nullable=True)
    location = Column(JSON, nullable=True)
    civic_points = Column(Integer, default=0, nullable=False)
    stats = Column(JSON, default=empty_stats, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(IsoDateTime, nullable=True)
