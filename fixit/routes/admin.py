import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit import lifecycle
from fixit.auth import require_capability
from fixit.database import models
from fixit.database.config import get_db
from fixit.dependencies import require_database
from fixit.errors import NotFoundError, ValidationError
from fixit.permissions import Capability
from fixit.routes.common import MAX_PAGE_SIZE, issue_counts, issue_response, load_issue, pagination
from fixit.schemas import AdminStats, IssueResponse, Role, StatusOverride, UserPage, UserProfile, UserUpdate
from fixit.tasks.notifications import dispatch_transition_effects

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_database)])

ADMIN_REQUIRED = "Access denied. Admin role required."

require_override = require_capability(Capability.OVERRIDE_STATUS, ADMIN_REQUIRED)
require_hard_delete = require_capability(Capability.HARD_DELETE, ADMIN_REQUIRED)
require_user_admin = require_capability(Capability.MANAGE_USERS, ADMIN_REQUIRED)


@router.patch("/issues/{issue_id}/status", response_model=IssueResponse)
async def override_issue_status(
    issue_id: str,
    payload: StatusOverride,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_override),
):
    """Set any status directly, outside the worker / reporter workflow."""
    issue = await load_issue(db, issue_id)
    outcome = lifecycle.override_status(issue, user, payload.status.value, payload.admin_note)
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.delete("/issues/{issue_id}", status_code=status.HTTP_204_NO_CONTENT)
async def hard_delete_issue(
    issue_id: str,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_hard_delete),
):
    """Permanently remove an issue with its log, comments and votes."""
    issue = await load_issue(db, issue_id, include_inactive=True)
    await db.delete(issue)
    await db.commit()
    logger.info("Issue permanently deleted", extra={"issue_id": issue_id, "user_id": user.id})


@router.get("/users", response_model=UserPage)
async def list_users(
    role: Optional[Role] = None,
    search: str = Query("", max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_user_admin),
):
    conditions = []
    if role is not None:
        conditions.append(models.User.role == role.value)
    if search.strip():
        term = search.strip()
        conditions.append(
            or_(models.User.name.icontains(term, autoescape=True), models.User.email.icontains(term, autoescape=True))
        )

    total = await db.scalar(select(func.count(models.User.id)).where(*conditions))
    result = await db.execute(
        select(models.User)
        .where(*conditions)
        .order_by(models.User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return UserPage(users=result.scalars().all(), pagination=pagination(page, limit, total or 0))


@router.patch("/users/{user_id}", response_model=UserProfile)
async def update_user(
    user_id: str,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: models.User = Depends(require_user_admin),
):
    """Change a user's role, department or active flag."""
    user = await db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == admin.id and payload.is_active is False:
        raise ValidationError("You cannot deactivate your own account")

    if payload.role is not None:
        user.role = payload.role.value
    # An explicit null clears the department
    if "department" in payload.model_fields_set:
        user.department = payload.department.value if payload.department else None
    if payload.is_active is not None:
        user.is_active = payload.is_active

    await db.commit()
    logger.info(
        "User updated by admin",
        extra={"user_id": user.id, "admin_id": admin.id, "role": user.role, "department": user.department},
    )
    return user


@router.get("/stats", response_model=AdminStats)
async def admin_stats(
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(require_user_admin),
):
    result = await db.execute(select(models.User.role, func.count(models.User.id)).group_by(models.User.role))
    users_by_role = {role: count for role, count in result.all()}

    active_issues = await db.scalar(select(func.count(models.Issue.id)).where(models.Issue.is_active.is_(True)))
    deleted_issues = await db.scalar(select(func.count(models.Issue.id)).where(models.Issue.is_active.is_(False)))

    return AdminStats(
        issues=await issue_counts(db),
        users_total=sum(users_by_role.values()),
        users_by_role=users_by_role,
        active_issues=active_issues or 0,
        deleted_issues=deleted_issues or 0,
    )
