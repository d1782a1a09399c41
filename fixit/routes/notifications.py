import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.auth import get_current_user
from fixit.database import models
from fixit.database.config import get_db
from fixit.dependencies import require_database
from fixit.errors import NotFoundError
from fixit.routes.common import MAX_PAGE_SIZE, pagination
from fixit.schemas import (
    NotificationCreate,
    NotificationPage,
    NotificationResponse,
    NotificationType,
    UnreadCount,
    UpdatedCount,
)
from fixit.tasks.notifications import build_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"], dependencies=[Depends(require_database)])


async def _own_notification(db: AsyncSession, notification_id: str, user: models.User) -> models.Notification:
    result = await db.execute(
        select(models.Notification).where(
            models.Notification.id == notification_id,
            models.Notification.user_id == user.id,
        )
    )
    notification = result.scalars().first()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


@router.get("/", response_model=NotificationPage)
async def list_notifications(
    read_filter: Literal["all", "unread", "read"] = Query("all", alias="filter"),
    type_filter: Optional[NotificationType] = Query(None, alias="type"),
    search: str = Query("", max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """The caller's notifications, newest first."""
    conditions = [models.Notification.user_id == user.id]
    if read_filter != "all":
        conditions.append(models.Notification.read.is_(read_filter == "read"))
    if type_filter is not None:
        conditions.append(models.Notification.type == type_filter.value)
    if search.strip():
        term = search.strip()
        conditions.append(
            or_(
                models.Notification.title.icontains(term, autoescape=True),
                models.Notification.message.icontains(term, autoescape=True),
            )
        )

    total = await db.scalar(select(func.count(models.Notification.id)).where(*conditions))
    result = await db.execute(
        select(models.Notification)
        .where(*conditions)
        .order_by(models.Notification.created_at.desc(), models.Notification.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return NotificationPage(
        notifications=result.scalars().all(),
        pagination=pagination(page, limit, total or 0),
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(db: AsyncSession = Depends(get_db), user: models.User = Depends(get_current_user)):
    count = await db.scalar(
        select(func.count(models.Notification.id)).where(
            models.Notification.user_id == user.id,
            models.Notification.read.is_(False),
        )
    )
    return UnreadCount(count=count or 0)


@router.put("/read-all", response_model=UpdatedCount)
async def mark_all_read(db: AsyncSession = Depends(get_db), user: models.User = Depends(get_current_user)):
    result = await db.execute(
        update(models.Notification)
        .where(models.Notification.user_id == user.id, models.Notification.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return UpdatedCount(updated_count=result.rowcount or 0)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    notification = await _own_notification(db, notification_id, user)
    notification.read = True
    await db.commit()
    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    notification = await _own_notification(db, notification_id, user)
    await db.delete(notification)
    await db.commit()


@router.post("/", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreate,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Create a notification addressed to the caller."""
    notification = build_notification(
        user.id,
        type=payload.type.value,
        title=payload.title,
        message=payload.message,
        issue_id=payload.issue_id,
        priority=payload.priority.value,
        icon=payload.icon,
    )
    db.add(notification)
    await db.commit()
    return notification
