"""Issue lifecycle engine.

Status machine over ``Issue.status``::

    reported --start work--> in_progress --resolve--> resolved --approve--> closed
                                  ^                        |
                                  +-------reject-----------+

Administrators may also override the status to any value. Every function here
validates first and mutates second: a rejected call leaves the issue
untouched. The engine does not touch the database session; callers commit and
then run the side effects described by the returned ``TransitionOutcome``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fixit.database import models
from fixit.database.models import ISSUE_STATUSES, as_utc, utcnow
from fixit.errors import AuthorizationError, InvalidTransitionError, ValidationError
from fixit.permissions import Actor, Capability, can_transition, has_capability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowAction:
    name: str
    verb: str
    source: str
    target: str
    requires_image: bool = False


START_WORK = WorkflowAction("start_work", "start work on", "reported", "in_progress", requires_image=True)
RESOLVE = WorkflowAction("resolve", "resolve", "in_progress", "resolved", requires_image=True)
APPROVE_FIX = WorkflowAction("approve_fix", "approve the fix for", "resolved", "closed")
REJECT_FIX = WorkflowAction("reject_fix", "reject the fix for", "resolved", "in_progress")

# Transitions that award points to the reporter
SCORED_TRANSITIONS = {
    ("in_progress", "resolved"): "RESOLVE_ISSUE",
    ("resolved", "closed"): "CONFIRM_RESOLUTION",
}


@dataclass(frozen=True)
class NotificationDraft:
    user_id: str
    type: str
    title: str
    message: str
    priority: str = "medium"
    icon: str = "info"


@dataclass(frozen=True)
class Award:
    user_id: str
    action: str


@dataclass(frozen=True)
class TransitionOutcome:
    issue_id: str
    action: str
    from_state: str
    to_state: str
    actor_id: Optional[str]
    notification: Optional[NotificationDraft] = None
    award: Optional[Award] = None


def ensure_allowed(
    issue: models.Issue, actor: Optional[Actor], action: WorkflowAction, *, has_image: bool = False
) -> None:
    """Run every guard for ``action`` without mutating anything.

    Order: actor permission, proof image, current status.
    """
    if not can_transition(actor, issue, action.source, action.target):
        raise AuthorizationError("Not authorized")
    if action.requires_image and not has_image:
        raise ValidationError("Proof image required")
    if issue.status != action.source:
        raise InvalidTransitionError(
            f"Cannot {action.verb} an issue that is {issue.status.replace('_', ' ')}"
        )


def append_status_log(
    issue: models.Issue,
    status: str,
    actor_id: Optional[str],
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.StatusLog:
    """Append a log entry, keeping ``changed_at`` non-decreasing."""
    changed_at = now or utcnow()
    if issue.status_logs:
        last = as_utc(issue.status_logs[-1].changed_at)
        if last is not None and last > changed_at:
            changed_at = last
    entry = models.StatusLog(status=status, changed_at=changed_at, changed_by_id=actor_id, note=note)
    issue.status_logs.append(entry)
    return entry


def _reached_before(issue: models.Issue, status: str) -> bool:
    """Whether ``status`` shows up in the log ahead of the entry just appended."""
    return any(entry.status == status for entry in (issue.status_logs or [])[:-1])


def _award_for(issue: models.Issue, source: str, target: str) -> Optional[Award]:
    # Scored edges pay out the first time the issue reaches their target
    action = SCORED_TRANSITIONS.get((source, target))
    if action and issue.reported_by_id and not _reached_before(issue, target):
        return Award(user_id=issue.reported_by_id, action=action)
    return None


def _draft(recipient_id: Optional[str], actor: Optional[Actor], **fields) -> Optional[NotificationDraft]:
    if not recipient_id or (actor is not None and recipient_id == actor.id):
        return None
    return NotificationDraft(user_id=recipient_id, **fields)


def _move(
    issue: models.Issue,
    actor: Optional[Actor],
    target: str,
    note: Optional[str],
    now: datetime,
) -> str:
    source = issue.status
    issue.status = target
    append_status_log(issue, target, actor.id if actor else None, note, now)
    logger.info(
        "Issue %s moved %s -> %s",
        issue.id,
        source,
        target,
        extra={"issue_id": issue.id, "actor_id": actor.id if actor else None},
    )
    return source


def start_work(
    issue: models.Issue, actor: Optional[Actor], image_url: Optional[str], now: Optional[datetime] = None
) -> TransitionOutcome:
    ensure_allowed(issue, actor, START_WORK, has_image=bool(image_url))
    now = now or utcnow()

    source = _move(issue, actor, START_WORK.target, None, now)
    issue.work_started_at = now
    issue.work_started_image = image_url

    return TransitionOutcome(
        issue_id=issue.id,
        action=START_WORK.name,
        from_state=source,
        to_state=issue.status,
        actor_id=actor.id,
        notification=_draft(
            issue.reported_by_id,
            actor,
            type="update",
            title="Work Started",
            message=f"The {issue.category} department has started working on your issue.",
            priority="high",
            icon="construction",
        ),
    )


def resolve(
    issue: models.Issue,
    actor: Optional[Actor],
    image_url: Optional[str],
    confidence: int,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    ensure_allowed(issue, actor, RESOLVE, has_image=bool(image_url))
    if not 0 <= confidence <= 100:
        raise ValidationError("Resolution confidence must be between 0 and 100")
    now = now or utcnow()

    source = _move(issue, actor, RESOLVE.target, None, now)
    issue.resolved_at = now
    issue.resolution_image = image_url
    issue.resolution_status = "pending_review"
    issue.ai_resolution_score = confidence

    return TransitionOutcome(
        issue_id=issue.id,
        action=RESOLVE.name,
        from_state=source,
        to_state=issue.status,
        actor_id=actor.id,
        notification=_draft(
            issue.reported_by_id,
            actor,
            type="success",
            title="Issue Resolved",
            message="The issue has been marked resolved. Please verify the fix.",
            priority="urgent",
            icon="check_circle",
        ),
        award=_award_for(issue, source, issue.status),
    )


def approve_fix(
    issue: models.Issue, actor: Optional[Actor], note: Optional[str] = None, now: Optional[datetime] = None
) -> TransitionOutcome:
    ensure_allowed(issue, actor, APPROVE_FIX)
    now = now or utcnow()

    source = _move(issue, actor, APPROVE_FIX.target, note, now)
    issue.resolution_status = "verified"

    return TransitionOutcome(
        issue_id=issue.id,
        action=APPROVE_FIX.name,
        from_state=source,
        to_state=issue.status,
        actor_id=actor.id,
        notification=_draft(
            issue.assigned_to_id,
            actor,
            type="success",
            title="Fix Verified",
            message=f"The reporter has verified the fix for {issue.title}. Issue closed.",
            priority="medium",
            icon="check_all",
        ),
        award=_award_for(issue, source, issue.status),
    )


def reject_fix(
    issue: models.Issue, actor: Optional[Actor], note: Optional[str] = None, now: Optional[datetime] = None
) -> TransitionOutcome:
    ensure_allowed(issue, actor, REJECT_FIX)
    now = now or utcnow()

    source = _move(issue, actor, REJECT_FIX.target, note, now)
    issue.resolution_status = "rejected"

    return TransitionOutcome(
        issue_id=issue.id,
        action=REJECT_FIX.name,
        from_state=source,
        to_state=issue.status,
        actor_id=actor.id,
        notification=_draft(
            issue.assigned_to_id,
            actor,
            type="alert",
            title="Fix Rejected",
            message=f"The reporter rejected the fix for {issue.title}. Re-opened for work.",
            priority="urgent",
            icon="close",
        ),
    )


def override_status(
    issue: models.Issue,
    actor: Optional[Actor],
    status: str,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Set any status directly, bypassing the worker/reporter workflow."""
    if not has_capability(actor, Capability.OVERRIDE_STATUS):
        raise AuthorizationError("Admin access required")
    if status not in ISSUE_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ISSUE_STATUSES)}")
    now = now or utcnow()

    source = _move(issue, actor, status, note, now)
    if status == "in_progress" and issue.work_started_at is None:
        issue.work_started_at = now
    elif status == "resolved" and issue.resolved_at is None:
        issue.resolved_at = now

    notification = None
    if source != status:
        notification = _draft(
            issue.reported_by_id,
            actor,
            type="update",
            title="Issue Status Updated",
            message=f'Your issue "{issue.title}" is now {status.replace("_", " ")}',
            priority="high",
            icon="update",
        )

    return TransitionOutcome(
        issue_id=issue.id,
        action="override",
        from_state=source,
        to_state=status,
        actor_id=actor.id,
        notification=notification,
        award=_award_for(issue, source, status),
    )


PRIORITY_ORDER = ("low", "medium", "high", "urgent")


def escalate(
    issue: models.Issue,
    actor: Optional[Actor],
    note: Optional[str] = None,
    new_priority: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Raise the priority of a stuck issue without changing its status.

    Without ``new_priority`` the priority moves up one step, staying at
    ``urgent``. The escalation is recorded as a log entry for the current status.
    """
    if not has_capability(actor, Capability.ESCALATE):
        raise AuthorizationError("Access denied. Government role required.")
    if new_priority is not None and new_priority not in PRIORITY_ORDER:
        raise ValidationError(f"Invalid priority. Must be one of: {', '.join(PRIORITY_ORDER)}")
    if issue.status not in ("reported", "in_progress"):
        raise InvalidTransitionError(f"Cannot escalate an issue that is {issue.status.replace('_', ' ')}")
    now = now or utcnow()

    if new_priority is None:
        index = PRIORITY_ORDER.index(issue.priority) if issue.priority in PRIORITY_ORDER else 1
        new_priority = PRIORITY_ORDER[min(index + 1, len(PRIORITY_ORDER) - 1)]
    issue.priority = new_priority

    reason = note or "Issue escalated due to being overdue"
    append_status_log(issue, issue.status, actor.id, f"ESCALATED: {reason}", now)
    logger.info(
        "Issue %s escalated to %s",
        issue.id,
        new_priority,
        extra={"issue_id": issue.id, "actor_id": actor.id},
    )

    return TransitionOutcome(
        issue_id=issue.id,
        action="escalate",
        from_state=issue.status,
        to_state=issue.status,
        actor_id=actor.id,
        notification=_draft(
            issue.assigned_to_id,
            actor,
            type="escalation",
            title="Issue Escalated",
            message=f'Issue "{issue.title}" has been escalated. Priority: {new_priority}. {note or ""}'.strip(),
            priority="high",
            icon="priority_high",
        ),
    )
