"""Overdue evaluation and dashboard rollups.

Works on already-loaded issues, so the same code serves the API (async
session) and the Celery sweep (sync session).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from fixit.database import models
from fixit.database.models import as_utc
from fixit.schemas import DEPARTMENTS
from fixit.thresholds import DEFAULT_THRESHOLDS, ResolvedThreshold, ThresholdDefaults

ACTIVE_STATUSES = ("reported", "in_progress")
SEVERITIES = ("low", "medium", "high", "critical")
SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class OverdueIssue:
    id: str
    title: str
    category: str
    status: str
    severity: str
    priority: str
    created_at: datetime
    since: datetime
    age_hours: float
    threshold_hours: int
    overdue_by: float
    location: dict
    assigned_to_id: Optional[str] = None

    @property
    def overdue_days(self) -> int:
        return int(self.overdue_by // 24)

    @property
    def overdue_hours(self) -> int:
        return int(self.overdue_by % 24)


@dataclass
class OverdueReport:
    pending: list[OverdueIssue] = field(default_factory=list)
    in_progress: list[OverdueIssue] = field(default_factory=list)

    @property
    def all(self) -> list[OverdueIssue]:
        return self.pending + self.in_progress


@dataclass
class DepartmentRollup:
    threshold: ResolvedThreshold
    total: int = 0
    reported: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
    overdue_count: int = 0


@dataclass
class DashboardSummary:
    overdue: OverdueReport
    by_department: dict[str, DepartmentRollup]
    by_severity: dict[str, int]
    total: int = 0
    reported: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0

    @property
    def completion_rate(self) -> int:
        return completion_rate(self.resolved + self.closed, self.total)


def completion_rate(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(100 * completed / total)


def status_since(issue: models.Issue) -> datetime:
    """When ``issue`` entered its current status.

    ``reported`` counts from creation. ``in_progress`` counts from the most
    recent move into ``in_progress``, or from creation when the log has none.
    Repeated ``in_progress`` entries (escalations, same-status overrides) do
    not restart the clock.
    """
    since = as_utc(issue.created_at)
    if issue.status == "in_progress":
        for entry in reversed(issue.status_logs or []):
            if entry.status != "in_progress":
                break
            since = as_utc(entry.changed_at)
    return since


def age_in_status_hours(issue: models.Issue, now: datetime) -> float:
    return (as_utc(now) - status_since(issue)).total_seconds() / SECONDS_PER_HOUR


def threshold_for(
    department: str,
    thresholds: Mapping[str, ResolvedThreshold],
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> ResolvedThreshold:
    return thresholds.get(department) or defaults.for_department(department)


def check_overdue(
    issue: models.Issue,
    thresholds: Mapping[str, ResolvedThreshold],
    now: datetime,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> Optional[OverdueIssue]:
    """Return the overdue record for ``issue``, or None when it is within limits."""
    if issue.status not in ACTIVE_STATUSES:
        return None

    limit = threshold_for(issue.category, thresholds, defaults).limit_for(issue.status)
    since = status_since(issue)
    age = (as_utc(now) - since).total_seconds() / SECONDS_PER_HOUR
    if age <= limit:
        return None

    return OverdueIssue(
        id=issue.id,
        title=issue.title,
        category=issue.category,
        status=issue.status,
        severity=issue.severity,
        priority=issue.priority,
        created_at=as_utc(issue.created_at),
        since=since,
        age_hours=round(age, 2),
        threshold_hours=limit,
        overdue_by=round(age - limit, 2),
        location=issue.location,
        assigned_to_id=issue.assigned_to_id,
    )


def needs_overdue_notice(issue: models.Issue, overdue: OverdueIssue) -> bool:
    """True unless the assignee was already told about this stay in the status."""
    notified_at = as_utc(issue.overdue_notified_at)
    return notified_at is None or notified_at < overdue.since


def sort_overdue(items: Sequence[OverdueIssue], sort_by: str = "overdueBy") -> list[OverdueIssue]:
    """Stable sort: most overdue first, most severe first, or oldest first."""
    if sort_by == "severity":
        return sorted(items, key=lambda item: SEVERITY_ORDER.get(item.severity, 3))
    if sort_by == "createdAt":
        return sorted(items, key=lambda item: item.created_at)
    return sorted(items, key=lambda item: item.overdue_by, reverse=True)


def evaluate_overdue(
    issues: Iterable[models.Issue],
    thresholds: Mapping[str, ResolvedThreshold],
    now: datetime,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> OverdueReport:
    report = OverdueReport()
    for issue in issues:
        overdue = check_overdue(issue, thresholds, now, defaults)
        if overdue is None:
            continue
        if overdue.status == "reported":
            report.pending.append(overdue)
        else:
            report.in_progress.append(overdue)

    report.pending = sort_overdue(report.pending)
    report.in_progress = sort_overdue(report.in_progress)
    return report


def build_dashboard(
    issues: Iterable[models.Issue],
    thresholds: Mapping[str, ResolvedThreshold],
    now: datetime,
    departments: Sequence[str] = DEPARTMENTS,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> DashboardSummary:
    """Status totals, per-department rollups, severity counts and overdue lists."""
    issues = list(issues)
    summary = DashboardSummary(
        overdue=evaluate_overdue(issues, thresholds, now, defaults),
        by_department={
            department: DepartmentRollup(threshold=threshold_for(department, thresholds, defaults))
            for department in departments
        },
        by_severity={severity: 0 for severity in SEVERITIES},
    )

    for issue in issues:
        summary.total += 1
        _count_status(summary, issue.status)
        rollup = summary.by_department.get(issue.category)
        if rollup is not None:
            rollup.total += 1
            _count_status(rollup, issue.status)
        if issue.severity in summary.by_severity:
            summary.by_severity[issue.severity] += 1

    for overdue in summary.overdue.all:
        rollup = summary.by_department.get(overdue.category)
        if rollup is not None:
            rollup.overdue_count += 1

    return summary


def _count_status(target, value: str) -> None:
    # Counter attributes are named after the status or severity they count
    setattr(target, value, getattr(target, value) + 1)


@dataclass
class DepartmentStatsRow:
    department: str
    threshold: ResolvedThreshold
    total: int = 0
    reported: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
    critical: int = 0
    high: int = 0
    avg_resolution_hours: Optional[float] = None
    overdue_reported: int = 0
    overdue_in_progress: int = 0

    @property
    def total_overdue(self) -> int:
        return self.overdue_reported + self.overdue_in_progress

    @property
    def completion_rate(self) -> int:
        return completion_rate(self.resolved + self.closed, self.total)


def department_stats(
    issues: Iterable[models.Issue],
    thresholds: Mapping[str, ResolvedThreshold],
    now: datetime,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> list[DepartmentStatsRow]:
    """Per-department counts for departments with at least one issue, busiest first."""
    rows: dict[str, DepartmentStatsRow] = {}
    resolution_hours: dict[str, list[float]] = {}

    for issue in issues:
        row = rows.get(issue.category)
        if row is None:
            row = rows[issue.category] = DepartmentStatsRow(
                department=issue.category, threshold=threshold_for(issue.category, thresholds, defaults)
            )
        row.total += 1
        _count_status(row, issue.status)
        if issue.severity in ("critical", "high"):
            _count_status(row, issue.severity)
        if issue.resolved_at is not None and issue.status in ("resolved", "closed"):
            hours = (as_utc(issue.resolved_at) - as_utc(issue.created_at)).total_seconds() / SECONDS_PER_HOUR
            resolution_hours.setdefault(issue.category, []).append(hours)

        overdue = check_overdue(issue, thresholds, now, defaults)
        if overdue is not None:
            if overdue.status == "reported":
                row.overdue_reported += 1
            else:
                row.overdue_in_progress += 1

    for department, hours in resolution_hours.items():
        rows[department].avg_resolution_hours = round(sum(hours) / len(hours), 1)

    return sorted(rows.values(), key=lambda row: row.total, reverse=True)
