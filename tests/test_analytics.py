from datetime import datetime, timezone

import pytest

from civicwatch.services import analytics

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_report(id, created_at, status="pending", priority="medium", category="Road Maintenance",
                city="Pune", user_id="u1", upvotes=0, comments=0, resolved_at=None, history=None):
    return {
        "id": id,
        "title": f"Report {id}",
        "category": category,
        "priority": priority,
        "status": status,
        "location": {"address": "somewhere", "city": city, "state": "Maharashtra"},
        "user_id": user_id,
        "upvotes": [{"user_id": f"v{i}"} for i in range(upvotes)],
        "comments": [{"id": f"c{i}", "text": "hi"} for i in range(comments)],
        "status_history": history or [{"status": "pending", "changed_at": created_at}],
        "resolution": {"resolved_at": resolved_at, "resolved_by": "admin" if resolved_at else None},
        "created_at": created_at,
    }


@pytest.fixture
def users():
    return [
        {"id": "u1", "name": "Asha", "email": "asha@civicwatch.org", "role": "citizen",
         "civic_points": 10, "created_at": "2026-03-01T09:00:00+00:00", "last_login": "2026-03-14T09:00:00+00:00"},
        {"id": "u2", "name": "Ravi", "email": "ravi@civicwatch.org", "role": "official",
         "civic_points": 0, "created_at": "2026-01-01T09:00:00+00:00", "last_login": None},
    ]


@pytest.fixture
def reports():
    return [
        make_report("r1", "2026-03-10T08:00:00+00:00", status="resolved", priority="high", upvotes=3,
                    resolved_at="2026-03-12T08:00:00+00:00",
                    history=[{"status": "pending", "changed_at": "2026-03-10T08:00:00+00:00"},
                             {"status": "in-progress", "changed_at": "2026-03-10T14:00:00+00:00"},
                             {"status": "resolved", "changed_at": "2026-03-12T08:00:00+00:00"}]),
        make_report("r2", "2026-03-11T08:00:00+00:00", status="in-progress", category="Lighting",
                    city="Mumbai", user_id="u2", comments=2),
        make_report("r3", "2026-03-11T20:00:00+00:00", priority="urgent", upvotes=1),
        make_report("r4", "2025-12-01T08:00:00+00:00", category="Lighting"),
    ]


def test_overall_stats(users, reports):
    stats = analytics.overall_stats(users, reports)

    assert stats["users"] == {"total": 2, "citizens": 1, "officials": 1}
    assert stats["reports"] == {"total": 4, "pending": 2, "in_progress": 1, "resolved": 1, "resolution_rate": 25.0}
    assert [r["id"] for r in stats["recent_activity"]["reports"]] == ["r3", "r2", "r1", "r4"]


def test_reports_by_category(reports):
    categories = analytics.reports_by_category(reports)

    road = next(c for c in categories if c["category"] == "Road Maintenance")
    assert road["total"] == 2
    assert road["resolved"] == 1
    assert road["avg_upvotes"] == 2.0
    assert road["resolution_rate"] == 50.0


def test_reports_by_location(reports):
    by_city = analytics.reports_by_location(reports)
    by_state = analytics.reports_by_location(reports, group_by="state")

    assert [(l["location"], l["total"]) for l in by_city] == [("Pune", 3), ("Mumbai", 1)]
    assert by_city[0]["categories"] == ["Lighting", "Road Maintenance"]
    assert by_state == [
        {"location": "Maharashtra", "total": 4, "pending": 2, "in_progress": 1, "resolved": 1,
         "categories": ["Lighting", "Road Maintenance"], "resolution_rate": 25.0}
    ]


def test_time_series_buckets_recent_reports(users, reports):
    daily = analytics.time_series(reports, users, period="day", days=30, now=NOW)

    assert [(p["date"], p["total"]) for p in daily["reports"]] == [("2026-03-10", 1), ("2026-03-11", 2)]
    assert daily["users"] == [{"date": "2026-03-01", "signups": 1}]

    monthly = analytics.time_series(reports, users, period="month", days=365, now=NOW)
    assert [(p["date"], p["total"]) for p in monthly["reports"]] == [("2025-12", 1), ("2026-03", 3)]


def test_priority_distribution(reports):
    priorities = analytics.priority_distribution(reports)

    assert [p["priority"] for p in priorities] == ["urgent", "high", "medium"]
    high = priorities[1]
    assert high["avg_resolution_time"] == 2.0
    assert priorities[0]["avg_resolution_time"] is None


def test_engagement_metrics(users, reports):
    metrics = analytics.engagement_metrics(reports, users, days=30, now=NOW)

    assert metrics["active_users"] == 2
    assert metrics["engagement_rate"] == 100.0
    assert metrics["top_reports"][0]["id"] == "r1"
    assert metrics["active_categories"][0] == {
        "category": "Road Maintenance", "reports": 2, "total_upvotes": 4, "total_comments": 0, "engagement": 4,
    }


def test_performance_metrics(reports):
    performance = analytics.performance_metrics(reports)

    assert performance["resolution_times"] == [
        {"priority": "high", "avg_time": 2.0, "min_time": 2.0, "max_time": 2.0}
    ]
    assert performance["response_times"]["avg_response_time"] == 6.0


def test_performance_metrics_without_data():
    assert analytics.performance_metrics([]) == {
        "resolution_times": [],
        "response_times": {"avg_response_time": 0, "min_response_time": 0, "max_response_time": 0},
    }


def test_top_contributors_by_period(users, reports):
    everyone = analytics.top_contributors(reports, users)
    this_week = analytics.top_contributors(reports, users, period="week", now=NOW)

    assert [(c["user_id"], c["total_reports"]) for c in everyone] == [("u1", 3), ("u2", 1)]
    assert everyone[0]["resolved_reports"] == 1
    assert everyone[0]["total_upvotes"] == 4
    assert [(c["user_id"], c["total_reports"]) for c in this_week] == [("u1", 2), ("u2", 1)]


def test_dashboard(users, reports):
    dashboard = analytics.dashboard(users, reports, now=NOW)

    assert dashboard["overview"]["active_users"] == 1
    assert dashboard["overview"]["resolution_rate"] == 25.0
    assert [r["id"] for r in dashboard["urgent_reports"]] == ["r3"]


def test_status_change_log(users, reports):
    logs = analytics.status_change_log(reports, users, days=7, now=NOW)

    assert logs[0]["type"] == "user_activity"
    assert logs[0]["action"] == "login"
    status_changes = [l for l in logs if l["type"] == "status_change"]
    assert [l["status"] for l in status_changes][:2] == ["resolved", "pending"]


def test_reports_without_a_city_form_their_own_group(reports):
    reports.append(make_report("r5", "2026-03-12T08:00:00+00:00", city=None, status="resolved",
                               resolved_at="2026-03-13T08:00:00+00:00"))

    by_city = analytics.reports_by_location(reports)

    unknown = next(l for l in by_city if l["location"] is None)
    assert unknown["total"] == 1
    assert unknown["resolution_rate"] == 100.0


def test_statistics_over_no_data():
    assert analytics.reports_by_category([]) == []
    assert analytics.reports_by_location([]) == []
    assert analytics.priority_distribution([]) == []
    assert analytics.time_series([], [], now=NOW) == {"reports": [], "users": []}
    assert analytics.engagement_metrics([], [], now=NOW)["active_categories"] == []
    assert analytics.top_contributors([], []) == []
    assert analytics.user_report_stats([])["categories"] == []
    assert analytics.dashboard([], [], now=NOW)["growth"] == {"users": 100, "reports": 100}


def test_time_series_endpoint(client, signup, report_payload):
    headers, _ = signup("asha@civicwatch.org")
    client.post("/api/reports", json=report_payload(), headers=headers)
    client.post("/api/reports", json=report_payload(category="Lighting"), headers=headers)

    response = client.get("/api/analytics/time-series", params={"period": "week", "days": 7}, headers=headers)

    assert response.status_code == 200
    [point] = response.json()["reports"]
    assert point["total"] == 2
    assert point["categories"] == 2
    assert point["avgUpvotes"] == 0


def test_time_windows_are_bounded(client, signup, admin_headers):
    headers, _ = signup("asha@civicwatch.org")

    response = client.get("/api/analytics/time-series", params={"days": 999999999}, headers=headers)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation Error"
    assert body["details"][0]["field"] == "days"
    assert client.get("/api/analytics/engagement", params={"days": 0}, headers=headers).status_code == 400
    assert client.get("/api/admin/logs", params={"days": 0}, headers=admin_headers).status_code == 400
    assert client.get("/api/admin/logs", params={"limit": 100000}, headers=admin_headers).status_code == 400
