"""Helpers shared by the route modules."""

import logging
import math
from typing import Optional

from fastapi import UploadFile
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.database import models
from fixit.errors import NotFoundError, ServiceUnavailableError
from fixit.permissions import Capability, has_capability, is_reporter
from fixit.schemas import IssueCounts, IssueResponse, Pagination, VoteType
from fixit.storage import ImageStore, ImageStoreError, validate_image

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


async def load_issue(db: AsyncSession, issue_id: str, *, include_inactive: bool = False) -> models.Issue:
    """Fetch an issue with fresh relationships, or raise NotFoundError."""
    result = await db.execute(
        select(models.Issue)
        .where(models.Issue.id == issue_id)
        .execution_options(populate_existing=True)
    )
    issue = result.scalars().first()
    if issue is None or (not issue.is_active and not include_inactive):
        raise NotFoundError("Issue not found")
    return issue


def issue_response(issue: models.Issue, viewer: Optional[models.User] = None) -> IssueResponse:
    """Serialize ``issue`` for ``viewer``.

    Anonymous reports only show the reporter to the reporter and admins.
    """
    response = IssueResponse.model_validate(issue)
    show_reporter = not issue.anonymous or is_reporter(viewer, issue) or has_capability(
        viewer, Capability.EDIT_ANY_ISSUE
    )
    vote = issue.vote_of(viewer.id) if viewer else None
    return response.model_copy(
        update={
            "reporter": response.reporter if show_reporter else None,
            "user_vote": VoteType(vote) if vote else None,
        }
    )


async def read_upload(upload: UploadFile) -> bytes:
    content = await upload.read()
    validate_image(content, upload.content_type)
    return content


async def store_upload(store: ImageStore, content: bytes, content_type: str, folder: str = "issues") -> str:
    try:
        return await store.upload(content, content_type, folder=folder)
    except ImageStoreError as e:
        logger.error(f"Image upload failed: {str(e)}", extra={"folder": folder})
        raise ServiceUnavailableError("Image upload failed. Please try again later.")



async def issue_counts(db: AsyncSession, *conditions) -> IssueCounts:
    """Status totals, net votes and comments over the issues matching ``conditions``."""
    counts = IssueCounts()
    result = await db.execute(
        select(models.Issue.status, func.count(models.Issue.id)).where(*conditions).group_by(models.Issue.status)
    )
    for status, count in result.all():
        setattr(counts, status, count)
        counts.total += count

    counts.total_votes = await db.scalar(
        select(func.coalesce(func.sum(case((models.IssueVote.vote_type == "upvote", 1), else_=-1)), 0))
        .select_from(models.IssueVote)
        .join(models.Issue, models.Issue.id == models.IssueVote.issue_id)
        .where(*conditions)
    ) or 0
    counts.total_comments = await db.scalar(
        select(func.count(models.Comment.id))
        .select_from(models.Comment)
        .join(models.Issue, models.Issue.id == models.Comment.issue_id)
        .where(*conditions)
    ) or 0
    return counts
