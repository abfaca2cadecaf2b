"""
Report and user statistics.

Every function here is pure: it takes the report and user records already
loaded from storage and returns plain dicts, so the numbers are identical
whichever backend is in use. The records are loaded into pandas DataFrames
and counted there.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from civicwatch.models.report import ReportPriority, ReportStatus
from civicwatch.models.user import UserRole

PENDING = ReportStatus.PENDING.value
IN_PROGRESS = ReportStatus.IN_PROGRESS.value
RESOLVED = ReportStatus.RESOLVED.value

PERIOD_FORMATS = {
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
    "week": "%G-W%V",
    "month": "%Y-%m",
}

CONTRIBUTOR_PERIODS = {"week": 7, "month": 30, "year": 365}

PRIORITY_ORDER = [p.value for p in (
    ReportPriority.URGENT, ReportPriority.HIGH, ReportPriority.MEDIUM, ReportPriority.LOW
)]

SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_HOUR = 60 * 60

REPORT_COLUMNS = [
    "id", "user_id", "category", "priority", "status", "city", "state",
    "upvotes", "comments", "created_at", "resolved_at", "first_response_at",
]
USER_COLUMNS = ["id", "role", "created_at", "last_login"]

# missing values in these become "" so they still form a group
GROUP_COLUMNS = ["category", "priority", "city", "state"]

STATUS_AGGREGATES = {
    "total": ("id", "size"),
    "pending": ("pending", "sum"),
    "in_progress": ("in_progress", "sum"),
    "resolved": ("resolved", "sum"),
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_utc(values: pd.Series) -> pd.Series:
    return pd.to_datetime(values, utc=True, errors="coerce", format="ISO8601")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _cutoff(now: Optional[datetime], days: int) -> pd.Timestamp:
    return pd.Timestamp(_now(now) - timedelta(days=days))


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


def upvote_count(report: Dict[str, Any]) -> int:
    return len(report.get("upvotes") or [])


def comment_count(report: Dict[str, Any]) -> int:
    return len(report.get("comments") or [])


def reports_frame(reports: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """
    One row per report, in input order, with status flags and the resolution
    and first-response durations in seconds.
    """
    rows = []
    for report in reports:
        location = report.get("location") or {}
        history = report.get("status_history") or []
        rows.append({
            "id": report.get("id"),
            "user_id": report.get("user_id"),
            "category": report.get("category"),
            "priority": report.get("priority"),
            "status": report.get("status"),
            "city": location.get("city"),
            "state": location.get("state"),
            "upvotes": upvote_count(report),
            "comments": comment_count(report),
            "created_at": report.get("created_at"),
            "resolved_at": (report.get("resolution") or {}).get("resolved_at"),
            # the first history entry is the submission itself
            "first_response_at": history[1].get("changed_at") if len(history) > 1 else None,
        })

    frame = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    frame[GROUP_COLUMNS] = frame[GROUP_COLUMNS].fillna("")
    frame["upvotes"] = frame["upvotes"].astype(int)
    frame["comments"] = frame["comments"].astype(int)
    for column in ("created_at", "resolved_at", "first_response_at"):
        frame[column] = to_utc(frame[column])

    frame["pending"] = frame["status"].eq(PENDING)
    frame["in_progress"] = frame["status"].eq(IN_PROGRESS)
    frame["resolved"] = frame["status"].eq(RESOLVED)
    frame["resolution_seconds"] = (
        (frame["resolved_at"] - frame["created_at"]).dt.total_seconds().where(frame["resolved"])
    )
    frame["response_seconds"] = (frame["first_response_at"] - frame["created_at"]).dt.total_seconds()
    return frame


def users_frame(users: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    frame = pd.DataFrame(
        [{column: user.get(column) for column in USER_COLUMNS} for user in users],
        columns=USER_COLUMNS,
    )
    frame["created_at"] = to_utc(frame["created_at"])
    frame["last_login"] = to_utc(frame["last_login"])
    return frame


def _status_counts(frame: pd.DataFrame) -> Dict[str, int]:
    counts = frame["status"].value_counts()
    return {
        "total": len(frame),
        "pending": int(counts.get(PENDING, 0)),
        "in_progress": int(counts.get(IN_PROGRESS, 0)),
        "resolved": int(counts.get(RESOLVED, 0)),
    }


def _records(summary: pd.DataFrame, key: str) -> List[Dict[str, Any]]:
    """Rows of a grouped summary as plain dicts, the group key under ``key``."""
    records = summary.rename_axis(key).reset_index().to_dict("records")
    for record in records:
        record[key] = record[key] or None
    return records


def _newest(records: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    return sorted(records, key=lambda r: r.get("created_at") or "", reverse=True)[:limit]


def report_summary(report: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": report.get("id"),
        "title": report.get("title"),
        "category": report.get("category"),
        "status": report.get("status"),
        "priority": report.get("priority"),
        "user_id": report.get("user_id"),
        "upvote_count": upvote_count(report),
        "comment_count": comment_count(report),
        "created_at": report.get("created_at"),
    }


def user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "created_at": user.get("created_at"),
    }


def overall_stats(users: List[Dict[str, Any]], reports: List[Dict[str, Any]]) -> Dict[str, Any]:
    counts = _status_counts(reports_frame(reports))
    roles = users_frame(users)["role"].value_counts()
    return {
        "users": {
            "total": len(users),
            "citizens": int(roles.get(UserRole.CITIZEN.value, 0)),
            "officials": int(roles.get(UserRole.OFFICIAL.value, 0)),
        },
        "reports": {**counts, "resolution_rate": _rate(counts["resolved"], counts["total"])},
        "recent_activity": {
            "reports": [report_summary(r) for r in _newest(reports, 5)],
            "users": [user_summary(u) for u in _newest(users, 5)],
        },
    }


def reports_by_category(reports: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    summary = (
        reports_frame(reports)
        .groupby("category")
        .agg(**STATUS_AGGREGATES, avg_upvotes=("upvotes", "mean"))
        .sort_values("total", ascending=False, kind="stable")
    )
    categories = _records(summary, "category")
    for category in categories:
        category["avg_upvotes"] = round(category["avg_upvotes"], 2)
        category["resolution_rate"] = _rate(category["resolved"], category["total"])
    return categories


def reports_by_location(reports: List[Dict[str, Any]], group_by: str = "city", limit: int = 20) -> List[Dict[str, Any]]:
    key = "state" if group_by == "state" else "city"
    grouped = reports_frame(reports).groupby(key)
    summary = grouped.agg(**STATUS_AGGREGATES).sort_values("total", ascending=False, kind="stable").head(limit)
    categories = grouped["category"].unique()

    locations = []
    for location, row in summary.iterrows():
        counts = {name: int(row[name]) for name in STATUS_AGGREGATES}
        locations.append({
            "location": location or None,
            **counts,
            "categories": sorted(c for c in categories[location] if c),
            "resolution_rate": _rate(counts["resolved"], counts["total"]),
        })
    return locations


def time_series(
    reports: List[Dict[str, Any]],
    users: List[Dict[str, Any]],
    period: str = "day",
    days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Bucket reports and sign-ups created in the last ``days`` days by hour,
    day, ISO week or month.
    """
    fmt = PERIOD_FORMATS.get(period, PERIOD_FORMATS["day"])
    start = _cutoff(now, days)

    frame = reports_frame(reports)
    recent = frame[frame["created_at"] >= start]
    summary = (
        recent.assign(date=recent["created_at"].dt.strftime(fmt))
        .groupby("date")
        .agg(
            total=("id", "size"),
            resolved=("resolved", "sum"),
            categories=("category", "nunique"),
            avg_upvotes=("upvotes", "mean"),
        )
    )
    report_points = summary.reset_index().to_dict("records")
    for point in report_points:
        point["avg_upvotes"] = round(point["avg_upvotes"], 2)

    joined = users_frame(users)["created_at"]
    signups = joined[joined >= start].dt.strftime(fmt).value_counts().sort_index()
    user_points = [{"date": date, "signups": int(count)} for date, count in signups.items()]

    return {"reports": report_points, "users": user_points}


def priority_distribution(reports: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    summary = (
        reports_frame(reports)
        .groupby("priority")
        .agg(**STATUS_AGGREGATES, avg_resolution_time=("resolution_seconds", "mean"))
    )
    priorities = _records(summary, "priority")
    for priority in priorities:
        seconds = priority["avg_resolution_time"]
        # days; None when nothing in this group is resolved
        priority["avg_resolution_time"] = None if pd.isna(seconds) else round(seconds / SECONDS_PER_DAY, 2)
    order = {p: i for i, p in enumerate(PRIORITY_ORDER)}
    priorities.sort(key=lambda p: order.get(p["priority"], len(order)))
    return priorities


def engagement_metrics(
    reports: List[Dict[str, Any]],
    users: List[Dict[str, Any]],
    days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    frame = reports_frame(reports)
    frame["engagement"] = frame["upvotes"] + frame["comments"]
    recent = frame[frame["created_at"] >= _cutoff(now, days)]
    active_users = int(recent["user_id"].nunique())

    top_reports = frame.nlargest(10, "engagement")
    active_categories = (
        recent.groupby("category")
        .agg(
            reports=("id", "size"),
            total_upvotes=("upvotes", "sum"),
            total_comments=("comments", "sum"),
            engagement=("engagement", "sum"),
        )
        .sort_values("engagement", ascending=False, kind="stable")
        .head(5)
    )

    return {
        "period": f"{days} days",
        "active_users": active_users,
        "total_users": len(users),
        "engagement_rate": _rate(active_users, len(users)),
        "top_reports": [report_summary(reports[i]) for i in top_reports.index],
        "active_categories": _records(active_categories, "category"),
    }


def _min_avg_max(seconds: pd.Series, unit: float, prefix: str) -> Dict[str, float]:
    if seconds.empty:
        return {f"avg_{prefix}": 0, f"min_{prefix}": 0, f"max_{prefix}": 0}
    scaled = seconds / unit
    return {
        f"avg_{prefix}": round(float(scaled.mean()), 2),
        f"min_{prefix}": round(float(scaled.min()), 2),
        f"max_{prefix}": round(float(scaled.max()), 2),
    }


def performance_metrics(reports: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Resolution time per priority in days, and first-response time in hours.

    The first response is the second status history entry; the first one is
    the submission itself.
    """
    frame = reports_frame(reports)
    resolved = frame.dropna(subset=["resolution_seconds"])
    resolution_times = [
        {"priority": priority or None, **_min_avg_max(seconds, SECONDS_PER_DAY, "time")}
        for priority, seconds in resolved.groupby("priority")["resolution_seconds"]
    ]

    return {
        "resolution_times": resolution_times,
        "response_times": _min_avg_max(frame["response_seconds"].dropna(), SECONDS_PER_HOUR, "response_time"),
    }


def top_contributors(
    reports: List[Dict[str, Any]],
    users: List[Dict[str, Any]],
    limit: int = 10,
    period: str = "all",
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    frame = reports_frame(reports)
    if period in CONTRIBUTOR_PERIODS:
        frame = frame[frame["created_at"] >= _cutoff(now, CONTRIBUTOR_PERIODS[period])]

    users_by_id = {u.get("id"): u for u in users}
    totals = (
        frame[frame["user_id"].isin(list(users_by_id))]
        .groupby("user_id")
        .agg(
            total_reports=("id", "size"),
            resolved_reports=("resolved", "sum"),
            total_upvotes=("upvotes", "sum"),
        )
    )

    contributors = []
    for entry in totals.reset_index().to_dict("records"):
        user = users_by_id[entry["user_id"]]
        contributors.append({
            "name": user.get("name"),
            "email": user.get("email"),
            "avatar": user.get("avatar"),
            "civic_points": user.get("civic_points") or 0,
            **entry,
        })
    contributors.sort(key=lambda c: (c["civic_points"], c["total_reports"]), reverse=True)
    return contributors[:limit]


def user_report_stats(reports: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Live statistics computed from one user's reports."""
    frame = reports_frame(reports)
    counts = _status_counts(frame)
    return {
        "total_reports": counts["total"],
        "pending_reports": counts["pending"],
        "in_progress_reports": counts["in_progress"],
        "resolved_reports": counts["resolved"],
        "total_upvotes": int(frame["upvotes"].sum()),
        "total_comments": int(frame["comments"].sum()),
        "categories": sorted(c for c in frame["category"].unique() if c),
        "recent_activity": [
            {"id": r.get("id"), "title": r.get("title"), "status": r.get("status"), "created_at": r.get("created_at")}
            for r in _newest(reports, 5)
        ],
    }


def dashboard(
    users: List[Dict[str, Any]], reports: List[Dict[str, Any]], now: Optional[datetime] = None
) -> Dict[str, Any]:
    now = _now(now)
    today = pd.Timestamp(now.replace(hour=0, minute=0, second=0, microsecond=0))
    last_week = _cutoff(now, 7)
    frame = reports_frame(reports)
    people = users_frame(users)
    counts = _status_counts(frame)

    def growth(created: pd.Series) -> float:
        before = len(created) - int((created >= last_week).sum())
        return round((len(created) - before) / before * 100, 2) if before else 100

    urgent = frame[
        frame["pending"]
        & frame["priority"].isin([ReportPriority.HIGH.value, ReportPriority.URGENT.value])
    ]

    return {
        "overview": {
            "total_users": len(users),
            "total_reports": counts["total"],
            "active_users": int((people["last_login"] >= last_week).sum()),
            "resolution_rate": _rate(counts["resolved"], counts["total"]),
        },
        "reports": counts,
        "today": {
            "new_users": int((people["created_at"] >= today).sum()),
            "new_reports": int((frame["created_at"] >= today).sum()),
        },
        "growth": {"users": growth(people["created_at"]), "reports": growth(frame["created_at"])},
        "urgent_reports": [report_summary(r) for r in _newest([reports[i] for i in urgent.index], 10)],
        "recent_users": [user_summary(u) for u in _newest(users, 10)],
    }


def status_change_log(
    reports: List[Dict[str, Any]],
    users: List[Dict[str, Any]],
    days: int = 7,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Status changes and user activity from the last ``days`` days, newest first."""
    start = _now(now) - timedelta(days=days)
    names = {u.get("id"): u.get("name") for u in users}

    logs = []
    for report in reports:
        for entry in report.get("status_history") or []:
            changed_at = parse_timestamp(entry.get("changed_at"))
            if changed_at is None or changed_at < start:
                continue
            logs.append({
                "type": "status_change",
                "report_id": report.get("id"),
                "report_title": report.get("title"),
                "status": entry.get("status"),
                "reason": entry.get("reason"),
                "changed_by": names.get(entry.get("changed_by")),
                "timestamp": entry.get("changed_at"),
                "_sort": changed_at,
            })

    for user in users:
        created = parse_timestamp(user.get("created_at"))
        last_login = parse_timestamp(user.get("last_login"))
        latest = max(t for t in (created, last_login) if t is not None) if (created or last_login) else None
        if latest is None or latest < start:
            continue
        logs.append({
            "type": "user_activity",
            "user": user.get("name"),
            "email": user.get("email"),
            "action": "login" if last_login and created and last_login > created else "registration",
            "timestamp": latest.isoformat(),
            "_sort": latest,
        })

    logs.sort(key=lambda entry: entry["_sort"], reverse=True)
    for entry in logs:
        del entry["_sort"]
    return logs[:limit]
