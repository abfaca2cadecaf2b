import asyncio
import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from civicwatch.core.log import get_logger
from civicwatch.crud.user import public_profile
from civicwatch.db.storage import REPORTS, USERS, StorageAdapter
from civicwatch.services.analytics import IN_PROGRESS, PENDING, RESOLVED

logger = get_logger("civicwatch.export")

EXPORT_FORMATS = ("json", "csv")

REPORT_COLUMNS = [
    ("id", "ID"),
    ("title", "Title"),
    ("description", "Description"),
    ("category", "Category"),
    ("status", "Status"),
    ("priority", "Priority"),
    ("location.address", "Location"),
    ("user_id", "Reported By"),
    ("created_at", "Created Date"),
    ("updated_at", "Updated Date"),
]

USER_COLUMNS = [
    ("id", "ID"),
    ("name", "Name"),
    ("email", "Email"),
    ("role", "Role"),
    ("civic_points", "Civic Points"),
    ("is_active", "Active"),
    ("created_at", "Created Date"),
]


def export_statistics(users: List[Dict[str, Any]], reports: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total_users": len(users),
        "total_reports": len(reports),
        "pending_reports": sum(1 for r in reports if r.get("status") == PENDING),
        "in_progress_reports": sum(1 for r in reports if r.get("status") == IN_PROGRESS),
        "resolved_reports": sum(1 for r in reports if r.get("status") == RESOLVED),
    }


def _timestamp(moment: datetime) -> str:
    # safe for file names
    return moment.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _cell(record: Dict[str, Any], field: str) -> Any:
    value = record
    for part in field.split("."):
        value = value.get(part) if isinstance(value, dict) else None
    return "" if value is None else value


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)


def _write_csv(path: Path, columns, records: List[Dict[str, Any]]) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([title for _, title in columns])
        for record in records:
            writer.writerow([_cell(record, field) for field, _ in columns])


async def export_data(storage: StorageAdapter, export_format: str, data_dir: str) -> Dict[str, Any]:
    """
    Write a snapshot of all users and reports under ``<data_dir>/exports``.

    Both collections are read in one transaction so the snapshot is
    consistent. Password hashes are never exported.
    """
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Invalid format '{export_format}'. Use json or csv")

    async with storage.transaction() as tx:
        users = [public_profile(u) for u in await tx.find(USERS, order_by="created_at")]
        reports = await tx.find(REPORTS, order_by="created_at")

    export_dir = Path(data_dir) / "exports"
    await asyncio.to_thread(export_dir.mkdir, parents=True, exist_ok=True)
    now = datetime.now(timezone.utc)
    timestamp = _timestamp(now)

    if export_format == "json":
        file_name = f"civicwatch_export_{timestamp}.json"
        payload = {
            "exported_at": now.isoformat(timespec="microseconds"),
            "storage_mode": storage.mode,
            "statistics": export_statistics(users, reports),
            "users": users,
            "reports": reports,
        }
        await asyncio.to_thread(_write_json, export_dir / file_name, payload)
        files = [file_name]
    else:
        files = [f"reports_{timestamp}.csv", f"users_{timestamp}.csv"]
        await asyncio.to_thread(_write_csv, export_dir / files[0], REPORT_COLUMNS, reports)
        await asyncio.to_thread(_write_csv, export_dir / files[1], USER_COLUMNS, users)

    logger.info(f"Exported {len(users)} users and {len(reports)} reports as {export_format}: {', '.join(files)}")
    return {"path": str(export_dir), "files": files}
