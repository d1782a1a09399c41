"""Role capabilities and the status transition permission check."""

from enum import Enum
from typing import Optional, Protocol


class Capability(str, Enum):
    OVERRIDE_STATUS = "override_status"
    VIEW_DASHBOARD = "view_dashboard"
    MANAGE_THRESHOLDS = "manage_thresholds"
    ESCALATE = "escalate"
    EDIT_ANY_ISSUE = "edit_any_issue"
    MANAGE_USERS = "manage_users"
    HARD_DELETE = "hard_delete"


GOVERNMENT_CAPABILITIES = frozenset(
    {Capability.VIEW_DASHBOARD, Capability.MANAGE_THRESHOLDS, Capability.ESCALATE}
)

ROLE_CAPABILITIES: dict[str, frozenset] = {
    "user": frozenset(),
    "field_worker": frozenset(),
    "government": GOVERNMENT_CAPABILITIES,
    "manager": GOVERNMENT_CAPABILITIES,
    "admin": frozenset(Capability),
}

# Workflow edges driven by the worker assigned to the issue
WORKER_TRANSITIONS = frozenset({("reported", "in_progress"), ("in_progress", "resolved")})

# Workflow edges driven by the citizen who reported the issue
REPORTER_TRANSITIONS = frozenset({("resolved", "closed"), ("resolved", "in_progress")})


class Actor(Protocol):
    id: str
    role: str


class IssueLike(Protocol):
    reported_by_id: Optional[str]
    assigned_to_id: Optional[str]


def capabilities_for(role: Optional[str]) -> frozenset:
    return ROLE_CAPABILITIES.get(role or "", frozenset())


def has_capability(actor: Optional[Actor], capability: Capability) -> bool:
    if actor is None:
        return False
    return capability in capabilities_for(actor.role)


def is_assignee(actor: Optional[Actor], issue: IssueLike) -> bool:
    return actor is not None and issue.assigned_to_id is not None and issue.assigned_to_id == actor.id


def is_reporter(actor: Optional[Actor], issue: IssueLike) -> bool:
    return actor is not None and issue.reported_by_id is not None and issue.reported_by_id == actor.id


def can_transition(actor: Optional[Actor], issue: IssueLike, from_state: str, to_state: str) -> bool:
    """Whether ``actor`` may move ``issue`` from ``from_state`` to ``to_state``.

    Status overriders may set any state. Otherwise the assigned worker drives
    start/resolve and the original reporter drives approve/reject; every other
    edge is closed to everyone else.
    """
    if has_capability(actor, Capability.OVERRIDE_STATUS):
        return True
    edge = (from_state, to_state)
    if edge in WORKER_TRANSITIONS:
        return is_assignee(actor, issue)
    if edge in REPORTER_TRANSITIONS:
        return is_reporter(actor, issue)
    return False


def can_edit_issue(actor: Optional[Actor], issue: IssueLike) -> bool:
    return is_reporter(actor, issue) or has_capability(actor, Capability.EDIT_ANY_ISSUE)


def department_scope(actor: Optional[Actor]) -> Optional[str]:
    """Department a government user is restricted to, or None for a global view."""
    if actor is None or actor.role != "government":
        return None
    return getattr(actor, "department", None)
