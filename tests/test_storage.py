import asyncio
import json
import logging
import re

import pytest
from sqlalchemy.exc import DBAPIError

from civicwatch.core.config import Settings, settings
from civicwatch.crud.report import create_report, get_report, toggle_report_upvote
from civicwatch.crud.user import create_user
from civicwatch.db.init_db import create_initial_data
from civicwatch.db.session import connect_storage
from civicwatch.db.storage import COLLECTIONS, COMMENTS, USERS, Eq, OneOf, StorageError
from civicwatch.db.storage.file import FileStorage
from civicwatch.models.user import empty_stats
from civicwatch.schemas import ReportCreate, UserCreate


def user_doc(name, city="Pune", role="citizen"):
    return {
        "name": name,
        "email": f"{name.lower()}@civicwatch.org",
        "hashed_password": "not-a-real-hash",
        "role": role,
        "location": {"city": city},
        "civic_points": 0,
        "stats": empty_stats(),
        "is_active": True,
    }


async def test_create_assigns_id_and_timestamps(storage):
    created = await storage.create(USERS, user_doc("Asha"))

    assert re.fullmatch(r"[0-9a-f]{32}", created["id"])
    assert created["created_at"] == created["updated_at"]
    assert created["role"] == "citizen"
    assert created["stats"] == empty_stats()


async def test_find_with_predicates(storage):
    for name, city, role in [("Asha", "Pune", "citizen"), ("Ravi", "Mumbai", "official"), ("Meera", "Pune", "admin")]:
        await storage.create(USERS, user_doc(name, city=city, role=role))

    in_pune = await storage.find(USERS, Eq("location.city", "Pune"), order_by="name")
    assert [u["name"] for u in in_pune] == ["Asha", "Meera"]

    staff = await storage.find(USERS, OneOf("role", ["official", "admin"]), order_by="name", descending=True)
    assert [u["name"] for u in staff] == ["Ravi", "Meera"]

    page = await storage.find(USERS, order_by="name", skip=1, limit=1)
    assert [u["name"] for u in page] == ["Meera"]

    assert await storage.count(USERS) == 3
    assert await storage.count(USERS, Eq("location.city", "Pune"), Eq("role", "admin")) == 1
    assert (await storage.find_one(USERS, Eq("name", "Ravi")))["location"] == {"city": "Mumbai"}
    assert await storage.find_one(USERS, Eq("name", "Nobody")) is None


async def test_update_restamps_and_keeps_identity(storage):
    created = await storage.create(USERS, user_doc("Asha"))

    assert await storage.update(USERS, [Eq("id", created["id"])], {"civic_points": 5, "id": "other", "created_at": "1999-01-01T00:00:00+00:00"})
    assert not await storage.update(USERS, [Eq("id", "missing")], {"civic_points": 5})

    updated = await storage.find_one(USERS, Eq("id", created["id"]))
    assert updated["civic_points"] == 5
    assert updated["created_at"] == created["created_at"]
    assert updated["updated_at"] >= created["updated_at"]


async def test_delete_returns_count(storage):
    for name in ("Asha", "Ravi", "Meera"):
        await storage.create(USERS, user_doc(name, city="Pune" if name != "Ravi" else "Mumbai"))

    assert await storage.delete(USERS, [Eq("location.city", "Pune")]) == 2
    assert await storage.delete(USERS, [Eq("location.city", "Pune")]) == 0
    assert [u["name"] for u in await storage.find(USERS)] == ["Ravi"]


async def test_transaction_commits_together(storage):
    async with storage.transaction() as tx:
        first = await tx.create(USERS, user_doc("Asha"))
        await tx.create(USERS, user_doc("Ravi"))
        await tx.update(USERS, [Eq("id", first["id"])], {"civic_points": 10})
        # changes are visible inside the transaction
        assert await tx.count(USERS) == 2

    assert await storage.count(USERS) == 2
    assert (await storage.find_one(USERS, Eq("id", first["id"])))["civic_points"] == 10


async def test_failed_transaction_discards_changes(storage):
    with pytest.raises(RuntimeError):
        async with storage.transaction() as tx:
            await tx.create(USERS, user_doc("Asha"))
            raise RuntimeError("boom")

    assert await storage.count(USERS) == 0


async def test_file_storage_creates_collections(tmp_path):
    storage = FileStorage(str(tmp_path))
    await storage.connect()

    for collection in COLLECTIONS:
        assert json.loads((tmp_path / f"{collection}.json").read_text(encoding="utf-8")) == []
    assert storage.is_file_mode
    assert await storage.find(COMMENTS) == []


async def test_unreadable_file_is_never_overwritten(tmp_path):
    storage = FileStorage(str(tmp_path))
    await storage.connect()
    users_file = tmp_path / "users.json"
    users_file.write_text("{not json", encoding="utf-8")

    assert await storage.find(USERS) == []
    assert await storage.create(USERS, user_doc("Asha")) is None
    with pytest.raises(StorageError):
        async with storage.transaction() as tx:
            await tx.create(USERS, user_doc("Ravi"))

    assert users_file.read_text(encoding="utf-8") == "{not json"


async def test_commit_leaves_no_temp_files(tmp_path):
    storage = FileStorage(str(tmp_path))
    await storage.connect()
    await storage.create(USERS, user_doc("Asha"))

    assert not list(tmp_path.glob("*.tmp"))
    assert len(json.loads((tmp_path / "users.json").read_text(encoding="utf-8"))) == 1


async def test_concurrent_upvotes_both_land(tmp_path):
    storage = FileStorage(str(tmp_path))
    await storage.connect()
    async with storage.transaction() as tx:
        owner = await create_user(
            tx, obj_in=UserCreate(name="Asha Patil", email="asha@civicwatch.org", password="secret123")
        )
        report = await create_report(
            tx,
            obj_in=ReportCreate(
                title="Broken streetlight",
                description="The streetlight outside house 42 has been dark for a week.",
                category="Lighting",
                location="Lane 4, Kothrud",
            ),
            user_id=owner["id"],
        )

    async def upvote(user_id):
        async with storage.transaction() as tx:
            current = await get_report(tx, id=report["id"])
            await asyncio.sleep(0)
            await toggle_report_upvote(tx, db_obj=current, user_id=user_id)

    await asyncio.gather(upvote("a" * 32), upvote("b" * 32))

    stored = await storage.find_one("reports", Eq("id", report["id"]))
    assert sorted(u["user_id"] for u in stored["upvotes"]) == ["a" * 32, "b" * 32]
    owner = await storage.find_one(USERS, Eq("id", owner["id"]))
    assert owner["stats"]["upvotes_received"] == 2


def unreachable_database(tmp_path, mode):
    return Settings(
        STORAGE_MODE=mode,
        DATA_DIR=str(tmp_path / "data"),
        DATABASE_URI=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'civicwatch.db'}",
    )


async def test_auto_mode_falls_back_to_files(tmp_path):
    storage = await connect_storage(unreachable_database(tmp_path, "auto"))

    assert storage.is_file_mode
    assert sorted(p.name for p in (tmp_path / "data").glob("*.json")) == [
        "analytics.json", "comments.json", "reports.json", "users.json",
    ]
    await storage.disconnect()


async def test_database_mode_never_falls_back(tmp_path):
    with pytest.raises(DBAPIError):
        await connect_storage(unreachable_database(tmp_path, "database"))

    assert not (tmp_path / "data").exists()


async def test_first_admin_is_seeded_once(storage, monkeypatch, caplog):
    monkeypatch.setattr(settings, "FIRST_ADMIN_EMAIL", "admin@civicwatch.org")
    monkeypatch.setattr(settings, "FIRST_ADMIN_PASSWORD", "admin-secret")
    caplog.set_level(logging.INFO, logger="civicwatch.storage")

    await create_initial_data(storage)
    await create_initial_data(storage)

    admins = await storage.find(USERS, Eq("role", "admin"))
    assert [a["email"] for a in admins] == ["admin@civicwatch.org"]
    created = [r for r in caplog.records if r.name == "civicwatch.storage" and r.message == "Admin user created"]
    assert len(created) == 1
