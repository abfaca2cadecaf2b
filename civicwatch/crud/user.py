from typing import Any, Dict, List, Optional, Tuple, Union

from civicwatch.core.security import get_password_hash, verify_password
from civicwatch.db.storage import REPORTS, USERS, Eq, StorageSession
from civicwatch.models.report import has_upvoted
from civicwatch.models.user import UserRole, empty_stats
from civicwatch.schemas import UserCreate, UserUpdate


def normalize_email(email: str) -> str:
    return email.strip().lower()


def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of the user record without the password hash."""
    profile = dict(user)
    profile.pop("hashed_password", None)
    return profile


async def get_user(db: StorageSession, id: str) -> Optional[Dict[str, Any]]:
    """
    Get a user by ID.
    """
    return await db.find_one(USERS, Eq("id", id))


async def get_user_by_email(db: StorageSession, email: str) -> Optional[Dict[str, Any]]:
    """
    Get a user by email, ignoring case.
    """
    return await db.find_one(USERS, Eq("email", normalize_email(email)))


async def get_users(
    db: StorageSession,
    skip: int = 0,
    limit: int = 100,
    role: Optional[str] = None,
    search: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Get users, newest first, optionally filtered by role and a name/email search.
    """
    predicates = [Eq("role", role)] if role else []
    users = await db.find(USERS, *predicates, order_by="created_at", descending=True)
    if search:
        needle = search.lower()
        users = [
            u for u in users
            if needle in (u.get("name") or "").lower() or needle in (u.get("email") or "").lower()
        ]
    return users[skip:skip + limit], len(users)


async def create_user(
    db: StorageSession, obj_in: UserCreate, role: Union[UserRole, str] = UserRole.CITIZEN
) -> Dict[str, Any]:
    """
    Create a new user.
    """
    document = {
        "name": obj_in.name,
        "email": normalize_email(obj_in.email),
        "hashed_password": get_password_hash(obj_in.password),
        "phone": obj_in.phone,
        "role": UserRole(role).value,
        "avatar": None,
        "location": None,
        "civic_points": 0,
        "stats": empty_stats(),
        "is_active": True,
        "last_login": None,
    }
    return await db.create(USERS, document)


async def update_user(
    db: StorageSession, db_obj: Dict[str, Any], obj_in: Union[UserUpdate, Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Update a user.
    """
    if isinstance(obj_in, dict):
        update_data = dict(obj_in)
    else:
        update_data = obj_in.model_dump(exclude_unset=True, mode="json")

    update_data.pop("current_password", None)
    if "password" in update_data:
        password = update_data.pop("password")
        if password:
            update_data["hashed_password"] = get_password_hash(password)
    if "role" in update_data:
        update_data["role"] = UserRole(update_data["role"]).value

    await db.update(USERS, [Eq("id", db_obj["id"])], update_data)
    return await get_user(db, id=db_obj["id"])


async def delete_user(db: StorageSession, id: str) -> int:
    """
    Delete a user together with their reports. Returns the number of reports removed.

    Reports assigned to the user are unassigned and the user's upvotes on
    other reports are withdrawn from their owners' stats.
    """
    removed_reports = await db.delete(REPORTS, [Eq("user_id", id)])
    await db.update(REPORTS, [Eq("assigned_to", id)], {"assigned_to": None})
    for report in await db.find(REPORTS):
        if has_upvoted(report, id):
            upvotes = [u for u in report["upvotes"] if u.get("user_id") != id]
            await db.update(REPORTS, [Eq("id", report["id"])], {"upvotes": upvotes})
            await adjust_user_stats(db, report["user_id"], {"upvotes_received": -1})
    await db.delete(USERS, [Eq("id", id)])
    return removed_reports


async def authenticate_user(db: StorageSession, email: str, password: str) -> Optional[Dict[str, Any]]:
    """
    Authenticate a user by email and password.
    """
    user = await get_user_by_email(db, email=email)
    if not user:
        return None
    if not verify_password(password, user.get("hashed_password")):
        return None
    return user


async def adjust_user_stats(db: StorageSession, user_id: str, delta: Dict[str, int]) -> bool:
    """
    Apply incremental changes to the cached stats snapshot and civic points.

    Counters never go below zero and civic points only ever grow.
    """
    user = await get_user(db, id=user_id)
    if not user or not delta:
        return False
    stats = {**empty_stats(), **(user.get("stats") or {})}
    civic_points = user.get("civic_points") or 0
    for field, amount in delta.items():
        if field == "civic_points":
            civic_points += max(amount, 0)
        else:
            stats[field] = max(stats.get(field, 0) + amount, 0)
    return await db.update(USERS, [Eq("id", user_id)], {"stats": stats, "civic_points": civic_points})
