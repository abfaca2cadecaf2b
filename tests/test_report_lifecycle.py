import pytest

from civicwatch.models.report import (
    INITIAL_SUBMISSION_REASON,
    InvalidTransition,
    add_comment,
    has_upvoted,
    new_report_document,
    stats_delta,
    toggle_upvote,
    update_status,
    validate_transition,
)

OWNER = "1" * 32
ADMIN = "2" * 32


@pytest.fixture
def report():
    return new_report_document(
        {"title": "Overflowing bins", "category": "Waste Management", "status": "resolved"},
        user_id=OWNER,
    )


def test_new_report_starts_pending_with_seeded_history(report):
    assert report["status"] == "pending"
    assert report["user_id"] == OWNER
    assert len(report["status_history"]) == 1
    entry = report["status_history"][0]
    assert entry["status"] == "pending"
    assert entry["reason"] == INITIAL_SUBMISSION_REASON
    assert entry["changed_by"] == OWNER
    assert report["resolution"]["resolved_at"] is None
    assert report["upvotes"] == [] and report["comments"] == []


def test_each_status_change_appends_one_entry(report):
    previous = update_status(report, "acknowledged", ADMIN)
    update_status(report, "in-progress", ADMIN, reason="Crew dispatched")

    assert previous == "pending"
    assert [e["status"] for e in report["status_history"]] == ["pending", "acknowledged", "in-progress"]
    assert report["status_history"][1]["reason"] == "Status changed to acknowledged"
    assert report["status_history"][2]["reason"] == "Crew dispatched"


def test_resolution_is_set_only_while_resolved(report):
    update_status(report, "resolved", ADMIN, notes="Bins emptied")

    assert report["resolution"]["resolved_by"] == ADMIN
    assert report["resolution"]["resolved_at"] is not None
    assert report["resolution"]["resolution_notes"] == "Bins emptied"

    update_status(report, "in-progress", ADMIN, reason="Reopened")

    assert report["resolution"]["resolved_by"] is None
    assert report["resolution"]["resolved_at"] is None


def test_strict_mode_rejects_disallowed_transitions(report):
    update_status(report, "resolved", ADMIN, strict=True)

    with pytest.raises(InvalidTransition) as exc_info:
        update_status(report, "pending", ADMIN, strict=True)
    assert exc_info.value.current == "resolved"
    assert report["status"] == "resolved"

    # without strict mode any status can be set
    update_status(report, "pending", ADMIN)
    assert report["status"] == "pending"


def test_validate_transition():
    validate_transition("pending", "in-progress")
    validate_transition("rejected", "pending")
    validate_transition("closed", "closed")
    with pytest.raises(InvalidTransition):
        validate_transition("closed", "pending")


@pytest.mark.parametrize(
    "old,new,expected",
    [
        ("pending", "in-progress", {}),
        ("in-progress", "resolved", {"resolved_reports": 1, "civic_points": 10, "pending_reports": -1}),
        ("resolved", "in-progress", {"resolved_reports": -1, "pending_reports": 1}),
        ("resolved", "closed", {"resolved_reports": -1}),
        ("pending", "rejected", {"pending_reports": -1}),
        ("rejected", "pending", {"pending_reports": 1}),
        ("closed", "resolved", {"resolved_reports": 1, "civic_points": 10}),
        ("pending", "pending", {}),
    ],
)
def test_stats_delta(old, new, expected):
    assert stats_delta(old, new, points_on_resolve=10) == expected


def test_toggle_upvote_twice_restores_state(report):
    assert toggle_upvote(report, ADMIN) is True
    assert has_upvoted(report, ADMIN)
    assert toggle_upvote(report, ADMIN) is False
    assert report["upvotes"] == []


def test_toggle_upvote_removes_every_duplicate(report):
    report["upvotes"] = [
        {"user_id": ADMIN, "created_at": "2026-01-01T00:00:00+00:00"},
        {"user_id": OWNER, "created_at": "2026-01-01T00:00:00+00:00"},
        {"user_id": ADMIN, "created_at": "2026-01-02T00:00:00+00:00"},
    ]

    assert toggle_upvote(report, ADMIN) is False
    assert [u["user_id"] for u in report["upvotes"]] == [OWNER]


def test_comments_keep_insertion_order(report):
    first = add_comment(report, OWNER, "Still not fixed")
    second = add_comment(report, ADMIN, "Scheduled for Monday")

    assert [c["text"] for c in report["comments"]] == ["Still not fixed", "Scheduled for Monday"]
    assert first["id"] != second["id"]
    assert second["user_id"] == ADMIN
