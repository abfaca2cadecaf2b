import copy
import enum
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, inspect as sa_inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from civicwatch.db.init_db import init_db
from civicwatch.db.storage.base import (
    REPORTS,
    USERS,
    OneOf,
    Predicate,
    StorageAdapter,
    StorageError,
    StorageSession,
    logger,
    new_id,
    utcnow,
)
from civicwatch.models import Report, User

TABLES = {USERS: User, REPORTS: Report}

IMMUTABLE_FIELDS = ("id", "created_at")


def _column(model, field: str):
    head, _, key = field.partition(".")
    if head not in model.__table__.columns:
        raise ValueError(f"{model.__tablename__} has no field '{field}'")
    column = getattr(model, head)
    return column[key].as_string() if key else column


def _clause(model, predicate: Predicate):
    column = _column(model, predicate.field)
    if isinstance(predicate, OneOf):
        return column.in_(predicate.values)
    return column == predicate.value


def _to_document(obj) -> Dict[str, Any]:
    document = {}
    for attr in sa_inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        elif isinstance(value, (list, dict)):
            value = copy.deepcopy(value)
        document[attr.key] = value
    return document


class SqlStorageSession(StorageSession):
    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _model(collection: str):
        try:
            return TABLES[collection]
        except KeyError:
            raise StorageError(f"collection '{collection}' is not kept in the database")

    async def find(
        self,
        collection: str,
        *predicates: Predicate,
        order_by: Optional[str] = None,
        descending: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(collection)
        query = select(model)
        if predicates:
            query = query.where(*[_clause(model, p) for p in predicates])
        if order_by:
            column = _column(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [_to_document(obj) for obj in result.scalars().all()]

    async def count(self, collection: str, *predicates: Predicate) -> int:
        model = self._model(collection)
        query = select(func.count()).select_from(model)
        if predicates:
            query = query.where(*[_clause(model, p) for p in predicates])
        result = await self.db.execute(query)
        return result.scalar_one()

    async def create(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(collection)
        columns = model.__table__.columns
        values = {k: copy.deepcopy(v) for k, v in document.items() if k in columns}
        now = utcnow()
        values["id"] = values.get("id") or new_id()
        values["created_at"] = now
        values["updated_at"] = now
        db_obj = model(**values)
        self.db.add(db_obj)
        await self.db.flush()
        return _to_document(db_obj)

    async def update(
        self, collection: str, predicates: Sequence[Predicate], changes: Dict[str, Any]
    ) -> bool:
        model = self._model(collection)
        columns = model.__table__.columns
        query = select(model)
        if predicates:
            query = query.where(*[_clause(model, p) for p in predicates])
        result = await self.db.execute(query)
        db_objs = result.scalars().all()
        for db_obj in db_objs:
            for field, value in changes.items():
                if field in columns and field not in IMMUTABLE_FIELDS:
                    setattr(db_obj, field, copy.deepcopy(value))
            db_obj.updated_at = utcnow()
        if db_objs:
            await self.db.flush()
        return bool(db_objs)

    async def delete(self, collection: str, predicates: Sequence[Predicate]) -> int:
        model = self._model(collection)
        stmt = delete(model)
        if predicates:
            stmt = stmt.where(*[_clause(model, p) for p in predicates])
        result = await self.db.execute(stmt)
        return result.rowcount or 0


class SqlStorage(StorageAdapter):
    """Storage backed by any SQLAlchemy async database URL."""

    mode = "database"

    def __init__(self, url: str, connect_timeout: Optional[float] = None):
        self.url = url
        self.connect_timeout = connect_timeout
        self.engine = None
        self._sessionmaker = None

    async def connect(self) -> None:
        connect_args = {}
        if self.connect_timeout and self.url.startswith("postgresql+asyncpg"):
            connect_args["timeout"] = self.connect_timeout
        engine = create_async_engine(self.url, pool_pre_ping=True, connect_args=connect_args)
        try:
            await init_db(engine)
        except Exception:
            await engine.dispose()
            raise
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Connected to database successfully")

    async def disconnect(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._sessionmaker = None
            logger.info("Disconnected from database")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlStorageSession]:
        if self._sessionmaker is None:
            raise StorageError("database storage is not connected")
        async with self._sessionmaker() as session:
            async with session.begin():
                yield SqlStorageSession(session)
