"""Government dashboard, overdue tracking and department thresholds."""

import logging
from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit import lifecycle, overdue, thresholds
from fixit.auth import require_capability
from fixit.database import models
from fixit.database.config import get_db
from fixit.database.models import utcnow
from fixit.dependencies import require_database
from fixit.errors import AuthorizationError
from fixit.permissions import Capability, department_scope
from fixit.routes.common import MAX_PAGE_SIZE, issue_response, load_issue, pagination
from fixit.schemas import (
    DEPARTMENTS,
    Category,
    DashboardResponse,
    DashboardStats,
    DepartmentRollupResponse,
    DepartmentStats,
    DepartmentStatsResponse,
    EscalationRequest,
    IssuePage,
    IssueResponse,
    IssueStatus,
    OverdueIssueResponse,
    OverdueLists,
    OverduePage,
    OverdueSort,
    OverdueSummary,
    ThresholdResponse,
    ThresholdUpdate,
)
from fixit.tasks.notifications import dispatch_transition_effects

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/government", tags=["government"], dependencies=[Depends(require_database)])

require_government = require_capability(
    Capability.VIEW_DASHBOARD, "Access denied. Government role required."
)
require_threshold_manager = require_capability(
    Capability.MANAGE_THRESHOLDS, "Access denied. Government role required."
)
require_escalation = require_capability(Capability.ESCALATE, "Access denied. Government role required.")


def _scoped_departments(user: models.User) -> tuple[str, ...]:
    scope = department_scope(user)
    return (scope,) if scope else DEPARTMENTS


async def _active_issues(db: AsyncSession, departments: tuple[str, ...], *conditions) -> list[models.Issue]:
    result = await db.execute(
        select(models.Issue).where(
            models.Issue.is_active.is_(True),
            models.Issue.category.in_(departments),
            *conditions,
        )
    )
    return list(result.scalars().all())


def _overdue_responses(items) -> list[OverdueIssueResponse]:
    return [OverdueIssueResponse.model_validate(item) for item in items]


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_government),
):
    """
    Overdue evaluation for the caller's departments.

    Government users assigned to a department only see that department;
    managers and admins see every department.
    """
    departments = _scoped_departments(user)
    configured = await thresholds.get_all_thresholds(db)
    issues = await _active_issues(db, departments)
    summary = overdue.build_dashboard(issues, configured, utcnow(), departments)

    stats = DashboardStats(
        total=summary.total,
        reported=summary.reported,
        in_progress=summary.in_progress,
        resolved=summary.resolved,
        closed=summary.closed,
        overdue=OverdueLists(
            pending=_overdue_responses(summary.overdue.pending),
            in_progress=_overdue_responses(summary.overdue.in_progress),
        ),
        by_department={
            department: DepartmentRollupResponse.model_validate(rollup)
            for department, rollup in summary.by_department.items()
        },
        by_severity=summary.by_severity,
        completion_rate=summary.completion_rate,
    )
    return DashboardResponse(
        stats=stats,
        thresholds=[ThresholdResponse.model_validate(configured[department]) for department in departments],
        user_department=department_scope(user),
    )


@router.get("/overdue-issues", response_model=OverduePage)
async def overdue_issues(
    department: Optional[Category] = None,
    status_filter: Optional[Literal["reported", "in_progress"]] = Query(None, alias="status"),
    sort_by: OverdueSort = Query(OverdueSort.OVERDUE_BY, alias="sortBy"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_government),
):
    """Paginated overdue issues with a pending / in-progress summary."""
    departments = _scoped_departments(user)
    if department is not None:
        if department.value not in departments:
            raise AuthorizationError("You can only view issues of your own department")
        departments = (department.value,)

    configured = await thresholds.get_all_thresholds(db)
    issues = await _active_issues(db, departments, models.Issue.status.in_(overdue.ACTIVE_STATUSES))
    report = overdue.evaluate_overdue(issues, configured, utcnow())

    if status_filter == "reported":
        items = report.pending
    elif status_filter == "in_progress":
        items = report.in_progress
    else:
        items = report.all
    items = overdue.sort_overdue(items, sort_by.value)

    return OverduePage(
        issues=_overdue_responses(items[(page - 1) * limit : page * limit]),
        pagination=pagination(page, limit, len(items)),
        summary=OverdueSummary(
            total_overdue=len(report.all),
            pending=len(report.pending),
            in_progress=len(report.in_progress),
        ),
    )


@router.get("/thresholds", response_model=list[ThresholdResponse])
async def list_thresholds(
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_government),
):
    configured = await thresholds.get_all_thresholds(db)
    return [ThresholdResponse.model_validate(configured[department]) for department in DEPARTMENTS]


def _check_threshold_scope(user: models.User, department: str) -> None:
    scope = department_scope(user)
    if scope and scope != department:
        raise AuthorizationError("You can only manage thresholds of your own department")


@router.put("/thresholds/{department}", response_model=ThresholdResponse)
async def update_threshold(
    department: str,
    payload: ThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_threshold_manager),
):
    """Set the overdue limits for a department. Omitted values keep their current setting."""
    thresholds.validate_department(department)
    _check_threshold_scope(user, department)
    return await thresholds.upsert_threshold(
        db,
        department,
        max_pending_hours=payload.max_pending_hours,
        max_in_progress_hours=payload.max_in_progress_hours,
        description=payload.description,
        updated_by_id=user.id,
    )


@router.delete("/thresholds/{department}", response_model=ThresholdResponse)
async def reset_threshold(
    department: str,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_threshold_manager),
):
    """Deactivate a department's limits; the defaults apply again."""
    thresholds.validate_department(department)
    _check_threshold_scope(user, department)
    return await thresholds.deactivate_threshold(db, department, updated_by_id=user.id)


@router.get("/department-stats", response_model=DepartmentStatsResponse)
async def department_stats(
    time_range: int = Query(30, ge=1, le=3650, alias="timeRange", description="Days"),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_government),
):
    """Counts, resolution times and overdue totals for issues reported in the last ``timeRange`` days."""
    now = utcnow()
    configured = await thresholds.get_all_thresholds(db)
    issues = await _active_issues(
        db, _scoped_departments(user), models.Issue.created_at >= now - timedelta(days=time_range)
    )
    rows = overdue.department_stats(issues, configured, now)
    return DepartmentStatsResponse(
        departments=[DepartmentStats.model_validate(row) for row in rows],
        time_range=time_range,
    )


@router.post("/escalate/{issue_id}", response_model=IssueResponse)
async def escalate_issue(
    issue_id: str,
    payload: Optional[EscalationRequest] = None,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_escalation),
):
    issue = await load_issue(db, issue_id)
    if issue.category not in _scoped_departments(user):
        raise AuthorizationError("You can only escalate issues of your own department")

    outcome = lifecycle.escalate(
        issue,
        user,
        note=payload.escalation_note if payload else None,
        new_priority=payload.new_priority.value if payload and payload.new_priority else None,
    )
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.get("/issues", response_model=IssuePage)
async def department_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_government),
):
    """Issues of the caller's departments, newest first."""
    conditions = [models.Issue.is_active.is_(True), models.Issue.category.in_(_scoped_departments(user))]
    if status_filter is not None:
        conditions.append(models.Issue.status == status_filter.value)

    total = await db.scalar(select(func.count(models.Issue.id)).where(*conditions))
    result = await db.execute(
        select(models.Issue)
        .where(*conditions)
        .order_by(models.Issue.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return IssuePage(
        issues=[issue_response(issue, user) for issue in result.scalars().all()],
        pagination=pagination(page, limit, total or 0),
    )
