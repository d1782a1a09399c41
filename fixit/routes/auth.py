import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.auth import Identity, get_current_user, get_identity, resolve_user
from fixit.database import models
from fixit.database.config import get_db
from fixit.database.models import utcnow
from fixit.dependencies import require_database
from fixit.errors import ValidationError
from fixit.schemas import MyVotesResponse, RegisterRequest, UserProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=[Depends(require_database)])


@router.post("/register", response_model=UserProfile, status_code=status.HTTP_200_OK)
async def register(
    payload: RegisterRequest,
    response: Response,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """
    Create the FixIt account for a verified identity.

    Returns the existing account (200) when the identity is already linked,
    or links an account registered earlier under the same email.
    """
    if not identity.email:
        raise ValidationError("A verified email address is required")

    existing = await resolve_user(db, identity)
    if existing is not None:
        if existing.firebase_uid != identity.uid:
            raise ValidationError("User with this email already exists")
        return existing

    # An unverified identity never links, but the email must still be free
    taken = await db.execute(select(models.User.id).where(models.User.email == identity.email))
    if taken.first() is not None:
        raise ValidationError("User with this email already exists")

    now = utcnow()
    user = models.User(
        name=payload.name.strip(),
        email=identity.email,
        phone=payload.phone,
        firebase_uid=identity.uid,
        is_email_verified=identity.email_verified,
        is_active=True,
        role="user",
        impact_score=0,
        level=1,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    await db.commit()
    logger.info("User registered", extra={"user_id": user.id})

    response.status_code = status.HTTP_201_CREATED
    result = await db.execute(
        select(models.User).where(models.User.id == user.id).execution_options(populate_existing=True)
    )
    return result.scalars().one()


@router.get("/me", response_model=UserProfile)
async def me(user: models.User = Depends(get_current_user)):
    return user


@router.get("/my-votes", response_model=MyVotesResponse)
async def my_votes(db: AsyncSession = Depends(get_db), user: models.User = Depends(get_current_user)):
    """Issues the caller currently upvotes or downvotes, newest vote first."""
    result = await db.execute(
        select(models.IssueVote.issue_id, models.IssueVote.vote_type)
        .join(models.Issue, models.Issue.id == models.IssueVote.issue_id)
        .where(models.IssueVote.user_id == user.id, models.Issue.is_active.is_(True))
        .order_by(models.IssueVote.created_at.desc(), models.IssueVote.id.desc())
    )
    votes = result.all()
    return MyVotesResponse(
        upvoted_issues=[issue_id for issue_id, vote_type in votes if vote_type == "upvote"],
        downvoted_issues=[issue_id for issue_id, vote_type in votes if vote_type == "downvote"],
    )
