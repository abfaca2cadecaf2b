"""
Storage contract shared by the database and JSON-file backends.

Records are plain dicts keyed by snake_case field names, identified by an
``id`` string and carrying ``created_at`` / ``updated_at`` as ISO-8601 UTC
strings. Queries are expressed with the closed set of predicates below.
"""

import abc
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Dict, List, Optional, Sequence, Tuple, Union

from civicwatch.core.log import get_logger

logger = get_logger("civicwatch.storage")

USERS = "users"
REPORTS = "reports"
COMMENTS = "comments"
ANALYTICS = "analytics"
COLLECTIONS = (USERS, REPORTS, COMMENTS, ANALYTICS)


class StorageError(Exception):
    """Raised when a backend cannot read or persist a collection."""


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class OneOf:
    field: str
    values: Tuple[Any, ...]

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))


Predicate = Union[Eq, OneOf]


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


def get_field(document: Dict[str, Any], field: str) -> Any:
    """Read a top-level or one-level dotted field (``location.city``)."""
    if "." in field:
        head, key = field.split(".", 1)
        inner = document.get(head)
        return inner.get(key) if isinstance(inner, dict) else None
    return document.get(field)


def matches(document: Dict[str, Any], predicates: Sequence[Predicate]) -> bool:
    for predicate in predicates:
        value = get_field(document, predicate.field)
        if isinstance(predicate, OneOf):
            if value not in predicate.values:
                return False
        elif value != predicate.value:
            return False
    return True


def sort_key(field: str):
    # records missing the field sort first in ascending order
    def key(document: Dict[str, Any]):
        value = get_field(document, field)
        return (value is not None, value if value is not None else "")
    return key


class StorageSession(abc.ABC):
    """CRUD operations bound to one storage transaction."""

    @abc.abstractmethod
    async def find(
        self,
        collection: str,
        *predicates: Predicate,
        order_by: Optional[str] = None,
        descending: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def find_one(self, collection: str, *predicates: Predicate) -> Optional[Dict[str, Any]]:
        found = await self.find(collection, *predicates, limit=1)
        return found[0] if found else None

    @abc.abstractmethod
    async def count(self, collection: str, *predicates: Predicate) -> int:
        ...

    @abc.abstractmethod
    async def create(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def update(
        self, collection: str, predicates: Sequence[Predicate], changes: Dict[str, Any]
    ) -> bool:
        ...

    @abc.abstractmethod
    async def delete(self, collection: str, predicates: Sequence[Predicate]) -> int:
        ...


class StorageAdapter(abc.ABC):
    """
    Uniform CRUD over one of the two backends.

    ``transaction()`` groups several operations so they commit together. The
    shortcut methods each run in their own transaction and convert
    ``StorageError`` into an empty result, mirroring how the file backend
    reports I/O problems.
    """

    mode: str = ""

    @property
    def is_file_mode(self) -> bool:
        return self.mode == "file"

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        return None

    @abc.abstractmethod
    def transaction(self) -> AsyncContextManager[StorageSession]:
        ...

    async def find(self, collection: str, *predicates: Predicate, **options: Any) -> List[Dict[str, Any]]:
        try:
            async with self.transaction() as session:
                return await session.find(collection, *predicates, **options)
        except StorageError as e:
            logger.error(f"find on {collection} failed: {e}")
            return []

    async def find_one(self, collection: str, *predicates: Predicate) -> Optional[Dict[str, Any]]:
        try:
            async with self.transaction() as session:
                return await session.find_one(collection, *predicates)
        except StorageError as e:
            logger.error(f"find_one on {collection} failed: {e}")
            return None

    async def count(self, collection: str, *predicates: Predicate) -> int:
        try:
            async with self.transaction() as session:
                return await session.count(collection, *predicates)
        except StorageError as e:
            logger.error(f"count on {collection} failed: {e}")
            return 0

    async def create(self, collection: str, document: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            async with self.transaction() as session:
                return await session.create(collection, document)
        except StorageError as e:
            logger.error(f"create on {collection} failed: {e}")
            return None

    async def update(
        self, collection: str, predicates: Sequence[Predicate], changes: Dict[str, Any]
    ) -> bool:
        try:
            async with self.transaction() as session:
                return await session.update(collection, predicates, changes)
        except StorageError as e:
            logger.error(f"update on {collection} failed: {e}")
            return False

    async def delete(self, collection: str, predicates: Sequence[Predicate]) -> int:
        try:
            async with self.transaction() as session:
                return await session.delete(collection, predicates)
        except StorageError as e:
            logger.error(f"delete on {collection} failed: {e}")
            return 0
