from typing import Any, Optional, Union
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, TypeDecorator
from sqlalchemy.orm import as_declarative, declared_attr


class IsoDateTime(TypeDecorator):
    """
    Timezone-aware DATETIME that accepts and returns ISO-8601 strings, so
    records read from the database match the JSON-file backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[Union[str, datetime]], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@as_declarative()
class Base:
    id: Any
    __name__: str
    @declared_attr
    def __tablename__(cls) -> str:
        return f"{cls.__name__.lower()}s"
    created_at = Column(IsoDateTime, default=_utcnow, nullable=False)
    updated_at = Column(IsoDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
