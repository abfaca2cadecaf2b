import asyncio
import copy
import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from civicwatch.db.storage.base import (
    COLLECTIONS,
    Predicate,
    StorageAdapter,
    StorageError,
    StorageSession,
    logger,
    matches,
    new_id,
    sort_key,
    utcnow,
)

IMMUTABLE_FIELDS = ("id", "created_at")


class FileStorageSession(StorageSession):
    """
    Works on in-memory copies of the collections it touches; nothing reaches
    disk until ``commit``.
    """

    def __init__(self, storage: "FileStorage"):
        self._storage = storage
        self._loaded: Dict[str, List[Dict[str, Any]]] = {}
        self._dirty: Set[str] = set()

    async def _collection(self, name: str) -> List[Dict[str, Any]]:
        if name not in self._loaded:
            self._loaded[name] = await self._storage.read_collection(name)
        return self._loaded[name]

    async def find(
        self,
        collection: str,
        *predicates: Predicate,
        order_by: Optional[str] = None,
        descending: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        items = [item for item in await self._collection(collection) if matches(item, predicates)]
        if order_by:
            items.sort(key=sort_key(order_by), reverse=descending)
        end = skip + limit if limit is not None else None
        return copy.deepcopy(items[skip:end])

    async def count(self, collection: str, *predicates: Predicate) -> int:
        return sum(1 for item in await self._collection(collection) if matches(item, predicates))

    async def create(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        items = await self._collection(collection)
        now = utcnow()
        new_doc = copy.deepcopy(document)
        new_doc["id"] = new_doc.get("id") or new_id()
        new_doc["created_at"] = now
        new_doc["updated_at"] = now
        items.append(new_doc)
        self._dirty.add(collection)
        return copy.deepcopy(new_doc)

    async def update(
        self, collection: str, predicates: Sequence[Predicate], changes: Dict[str, Any]
    ) -> bool:
        changes = {k: v for k, v in changes.items() if k not in IMMUTABLE_FIELDS}
        updated = False
        for item in await self._collection(collection):
            if matches(item, predicates):
                item.update(copy.deepcopy(changes))
                item["updated_at"] = utcnow()
                updated = True
        if updated:
            self._dirty.add(collection)
        return updated

    async def delete(self, collection: str, predicates: Sequence[Predicate]) -> int:
        items = await self._collection(collection)
        kept = [item for item in items if not matches(item, predicates)]
        deleted = len(items) - len(kept)
        if deleted:
            items[:] = kept
            self._dirty.add(collection)
        return deleted

    async def commit(self) -> None:
        if self._dirty:
            await self._storage.write_collections(
                {name: self._loaded[name] for name in self._dirty}
            )
            self._dirty.clear()


class FileStorage(StorageAdapter):
    """
    One JSON array file per collection under ``data_dir``.

    A single lock serializes transactions, so read-modify-write sequences
    on the same file do not interleave.
    """

    mode = "file"

    def __init__(self, data_dir: str):
        self.data_path = Path(data_dir)
        self._lock = asyncio.Lock()
        self._unreadable: Set[str] = set()

    def _path(self, collection: str) -> Path:
        return self.data_path / f"{collection}.json"

    async def connect(self) -> None:
        await asyncio.to_thread(self._initialize)
        logger.info(f"Local JSON storage initialized at {self.data_path}")

    def _initialize(self) -> None:
        self.data_path.mkdir(parents=True, exist_ok=True)
        for collection in COLLECTIONS:
            path = self._path(collection)
            if not path.exists():
                path.write_text("[]", encoding="utf-8")
                logger.info(f"Created local storage file: {path.name}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FileStorageSession]:
        async with self._lock:
            session = FileStorageSession(self)
            yield session
            await session.commit()

    async def read_collection(self, collection: str) -> List[Dict[str, Any]]:
        try:
            data = await asyncio.to_thread(self._read_sync, collection)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {collection}: {e}")
            self._unreadable.add(collection)
            return []
        self._unreadable.discard(collection)
        return data

    def _read_sync(self, collection: str) -> List[Dict[str, Any]]:
        with open(self._path(collection), encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{collection}.json does not contain a JSON array")
        return data

    async def write_collections(self, collections: Dict[str, List[Dict[str, Any]]]) -> None:
        blocked = sorted(name for name in collections if name in self._unreadable)
        if blocked:
            raise StorageError(f"refusing to overwrite unreadable collection(s): {', '.join(blocked)}")
        try:
            await asyncio.to_thread(self._write_sync, collections)
        except OSError as e:
            logger.error(f"Error writing {', '.join(collections)}: {e}")
            raise StorageError(str(e)) from e

    def _write_sync(self, collections: Dict[str, List[Dict[str, Any]]]) -> None:
        self.data_path.mkdir(parents=True, exist_ok=True)
        staged = []
        for name, items in collections.items():
            tmp_path = self._path(name).with_suffix(".json.tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, ensure_ascii=False)
            staged.append((tmp_path, self._path(name)))
        for tmp_path, path in staged:
            os.replace(tmp_path, path)
