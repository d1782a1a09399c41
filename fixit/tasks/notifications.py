"""Notification records and other post-commit side effects.

These run in the request after the primary write has been committed. A
failure here is logged and rolled back but never undoes that write.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from fixit.database import models
from fixit.database.models import utcnow
from fixit.gamification import add_points
from fixit.lifecycle import NotificationDraft, TransitionOutcome

logger = logging.getLogger(__name__)


def build_notification(
    user_id: str,
    *,
    type: str,
    title: str,
    message: str,
    issue_id: Optional[str] = None,
    priority: str = "medium",
    icon: str = "info",
) -> models.Notification:
    return models.Notification(
        user_id=user_id,
        type=type,
        title=title[:100],
        message=message[:500],
        issue_id=issue_id,
        priority=priority,
        icon=icon,
        read=False,
        created_at=utcnow(),
    )


async def notify(db: AsyncSession, user_id: Optional[str], **fields) -> Optional[models.Notification]:
    """Persist a notification for ``user_id``; failures are logged, not raised."""
    if not user_id:
        return None

    notification = build_notification(user_id, **fields)
    try:
        db.add(notification)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Failed to create notification",
            extra={"user_id": user_id, "issue_id": fields.get("issue_id")},
        )
        return None

    logger.info("Notification created", extra={"user_id": user_id, "type": fields.get("type")})
    return notification


async def notify_draft(db: AsyncSession, draft: Optional[NotificationDraft], issue_id: str):
    if draft is None:
        return None
    return await notify(
        db,
        draft.user_id,
        type=draft.type,
        title=draft.title,
        message=draft.message,
        issue_id=issue_id,
        priority=draft.priority,
        icon=draft.icon,
    )


async def award_points(db: AsyncSession, user_id: Optional[str], action: str):
    """Award gamification points; failures are logged, not raised."""
    try:
        return await add_points(db, user_id, action)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to award points", extra={"user_id": user_id, "action": action})
        return None


async def dispatch_transition_effects(db: AsyncSession, outcome: TransitionOutcome) -> None:
    """Notify the counterpart party and award points for a committed transition."""
    await notify_draft(db, outcome.notification, outcome.issue_id)
    if outcome.award is not None:
        await award_points(db, outcome.award.user_id, outcome.award.action)


def notify_sync(session: Session, user_id: Optional[str], **fields) -> Optional[models.Notification]:
    """Sync variant for Celery workers; the caller commits."""
    if not user_id:
        return None
    notification = build_notification(user_id, **fields)
    session.add(notification)
    return notification
