from datetime import datetime, timedelta, timezone

import pytest

from fixit import lifecycle
from fixit.database import models
from fixit.errors import AuthorizationError, InvalidTransitionError, ValidationError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_user(id, role="user"):
    return models.User(id=id, name=id.title(), email=f"{id}@example.com", role=role)


REPORTER = make_user("reporter")
WORKER = make_user("worker", "government")
ADMIN = make_user("admin", "admin")
STRANGER = make_user("stranger")


def make_issue(status="reported", **fields):
    fields.setdefault("priority", "medium")
    issue = models.Issue(
        id="issue-1",
        title="Broken street light",
        description="Light has been out for a week",
        category="lighting",
        severity="medium",
        status=status,
        reported_by_id=REPORTER.id,
        assigned_to_id=WORKER.id,
        images=["https://img.test/before.jpg"],
        created_at=NOW - timedelta(days=2),
        **fields,
    )
    issue.status_logs.append(models.StatusLog(status="reported", changed_at=NOW - timedelta(days=2)))
    return issue


def test_start_work_records_proof_and_notifies_reporter():
    issue = make_issue()

    outcome = lifecycle.start_work(issue, WORKER, "https://img.test/work.jpg", now=NOW)

    assert issue.status == "in_progress"
    assert issue.work_started_at == NOW
    assert issue.work_started_image == "https://img.test/work.jpg"
    assert [entry.status for entry in issue.status_logs] == ["reported", "in_progress"]
    assert issue.status_logs[-1].changed_by_id == WORKER.id
    assert outcome.from_state == "reported" and outcome.to_state == "in_progress"
    assert outcome.notification.user_id == REPORTER.id
    assert outcome.notification.title == "Work Started"
    assert outcome.award is None


def test_start_work_without_image_leaves_issue_untouched():
    issue = make_issue()

    with pytest.raises(ValidationError):
        lifecycle.start_work(issue, WORKER, None, now=NOW)

    assert issue.status == "reported"
    assert len(issue.status_logs) == 1
    assert issue.work_started_at is None


def test_permission_is_checked_before_the_image():
    issue = make_issue()

    with pytest.raises(AuthorizationError):
        lifecycle.start_work(issue, STRANGER, None, now=NOW)


def test_resolve_sets_review_state_and_awards_reporter():
    issue = make_issue(status="in_progress")

    outcome = lifecycle.resolve(issue, WORKER, "https://img.test/fixed.jpg", 88, now=NOW)

    assert issue.status == "resolved"
    assert issue.resolved_at == NOW
    assert issue.resolution_image == "https://img.test/fixed.jpg"
    assert issue.resolution_status == "pending_review"
    assert issue.ai_resolution_score == 88
    assert outcome.award == lifecycle.Award(user_id=REPORTER.id, action="RESOLVE_ISSUE")
    assert outcome.notification.user_id == REPORTER.id


def test_resolve_rejects_out_of_range_confidence():
    issue = make_issue(status="in_progress")

    with pytest.raises(ValidationError):
        lifecycle.resolve(issue, WORKER, "https://img.test/fixed.jpg", 101, now=NOW)
    assert issue.status == "in_progress"


def test_resolve_from_reported_is_an_invalid_transition():
    issue = make_issue(status="reported")

    with pytest.raises(InvalidTransitionError):
        lifecycle.resolve(issue, WORKER, "https://img.test/fixed.jpg", 90, now=NOW)
    assert issue.status == "reported"


def test_approve_closes_and_notifies_assignee():
    issue = make_issue(status="resolved", resolution_status="pending_review")

    outcome = lifecycle.approve_fix(issue, REPORTER, "Looks great", now=NOW)

    assert issue.status == "closed"
    assert issue.resolution_status == "verified"
    assert issue.status_logs[-1].note == "Looks great"
    assert outcome.notification.user_id == WORKER.id
    assert outcome.award == lifecycle.Award(user_id=REPORTER.id, action="CONFIRM_RESOLUTION")


def test_cycling_a_scored_edge_awards_once():
    issue = make_issue()
    lifecycle.override_status(issue, ADMIN, "resolved", now=NOW)

    first = lifecycle.override_status(issue, ADMIN, "closed", now=NOW)
    lifecycle.override_status(issue, ADMIN, "resolved", now=NOW)
    second = lifecycle.override_status(issue, ADMIN, "closed", now=NOW)

    assert first.award is not None
    assert second.award is None


def test_re_resolving_after_rejection_awards_once():
    issue = make_issue()
    lifecycle.start_work(issue, WORKER, "https://img.test/work.jpg", now=NOW)

    first = lifecycle.resolve(issue, WORKER, "https://img.test/fix.jpg", 90, now=NOW)
    lifecycle.reject_fix(issue, REPORTER, "Still broken", now=NOW)
    second = lifecycle.resolve(issue, WORKER, "https://img.test/fix2.jpg", 90, now=NOW)

    assert first.award == lifecycle.Award(user_id=REPORTER.id, action="RESOLVE_ISSUE")
    assert second.award is None
    assert issue.status == "resolved"


def test_second_approve_fails_without_awarding_again():
    issue = make_issue(status="resolved")
    lifecycle.approve_fix(issue, REPORTER, now=NOW)

    with pytest.raises(InvalidTransitionError):
        lifecycle.approve_fix(issue, REPORTER, now=NOW)
    assert issue.status == "closed"
    assert len(issue.status_logs) == 2


def test_reject_reopens_for_work():
    issue = make_issue(status="resolved", resolution_status="pending_review")

    outcome = lifecycle.reject_fix(issue, REPORTER, "Still dark", now=NOW)

    assert issue.status == "in_progress"
    assert issue.resolution_status == "rejected"
    assert outcome.notification.user_id == WORKER.id
    assert outcome.notification.type == "alert"
    assert outcome.award is None


def test_worker_cannot_approve_their_own_fix():
    issue = make_issue(status="resolved")

    with pytest.raises(AuthorizationError):
        lifecycle.approve_fix(issue, WORKER, now=NOW)
    assert issue.status == "resolved"


def test_self_notifications_are_skipped():
    issue = make_issue()
    issue.assigned_to_id = REPORTER.id

    outcome = lifecycle.start_work(issue, REPORTER, "https://img.test/work.jpg", now=NOW)

    assert outcome.notification is None


def test_admin_override_to_any_status():
    issue = make_issue(status="reported")

    outcome = lifecycle.override_status(issue, ADMIN, "resolved", "Fixed by contractor", now=NOW)

    assert issue.status == "resolved"
    assert issue.resolved_at == NOW
    assert issue.status_logs[-1].note == "Fixed by contractor"
    assert outcome.notification.user_id == REPORTER.id
    # Only the exact scored edges award points
    assert outcome.award is None


def test_admin_override_awards_on_scored_edge():
    issue = make_issue(status="resolved")

    outcome = lifecycle.override_status(issue, ADMIN, "closed", now=NOW)

    assert outcome.award == lifecycle.Award(user_id=REPORTER.id, action="CONFIRM_RESOLUTION")


def test_admin_override_to_same_status_logs_without_notifying():
    issue = make_issue(status="reported")

    outcome = lifecycle.override_status(issue, ADMIN, "reported", "Checked", now=NOW)

    assert len(issue.status_logs) == 2
    assert outcome.notification is None


def test_override_requires_admin_and_valid_status():
    issue = make_issue()

    with pytest.raises(AuthorizationError):
        lifecycle.override_status(issue, WORKER, "closed", now=NOW)
    with pytest.raises(ValidationError):
        lifecycle.override_status(issue, ADMIN, "archived", now=NOW)
    assert issue.status == "reported"
    assert len(issue.status_logs) == 1


def test_status_log_never_goes_back_in_time():
    issue = make_issue()
    issue.status_logs.append(models.StatusLog(status="reported", changed_at=NOW + timedelta(minutes=5)))

    entry = lifecycle.append_status_log(issue, "in_progress", WORKER.id, now=NOW)

    assert entry.changed_at == NOW + timedelta(minutes=5)


def test_escalate_bumps_priority_one_step():
    issue = make_issue(status="in_progress")

    outcome = lifecycle.escalate(issue, WORKER, now=NOW)

    assert issue.priority == "high"
    assert issue.status == "in_progress"
    assert issue.status_logs[-1].status == "in_progress"
    assert issue.status_logs[-1].note == "ESCALATED: Issue escalated due to being overdue"
    # The worker escalating their own issue does not notify themselves
    assert outcome.notification is None


def test_escalate_to_explicit_priority_notifies_assignee():
    issue = make_issue()
    manager = make_user("manager", "manager")

    outcome = lifecycle.escalate(issue, manager, "Flooding risk", "urgent", now=NOW)

    assert issue.priority == "urgent"
    assert outcome.notification.user_id == WORKER.id
    assert outcome.notification.type == "escalation"
    assert "Flooding risk" in outcome.notification.message


def test_escalate_stays_at_urgent_and_rejects_closed_issues():
    issue = make_issue(priority="urgent")
    lifecycle.escalate(issue, ADMIN, now=NOW)
    assert issue.priority == "urgent"

    closed = make_issue(status="closed")
    with pytest.raises(InvalidTransitionError):
        lifecycle.escalate(closed, ADMIN, now=NOW)
    with pytest.raises(AuthorizationError):
        lifecycle.escalate(make_issue(), REPORTER, now=NOW)
