import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit import lifecycle
from fixit.auth import get_current_user, get_optional_user
from fixit.database import models
from fixit.database.config import get_db
from fixit.database.models import new_id, utcnow
from fixit.dependencies import require_database
from fixit.errors import AuthorizationError, ValidationError
from fixit.geocoding import Geocoder, bounding_box, distance_km, get_geocoder
from fixit.llm_service import LLMService, LLMServiceError, fallback_resolution_score, get_llm_service
from fixit.permissions import can_edit_issue
from fixit.routes.common import (
    MAX_PAGE_SIZE,
    issue_counts,
    issue_response,
    load_issue,
    pagination,
    read_upload,
    store_upload,
)
from fixit.schemas import (
    DEPARTMENTS,
    Category,
    CategoryCount,
    CommentCreate,
    CommentResponse,
    FixReview,
    ImageAnalysis,
    IssueCounts,
    IssuePage,
    IssueResponse,
    IssueSort,
    IssueStatus,
    IssueUpdate,
    LocationIn,
    Severity,
    StatsOverview,
    VoteRequest,
    VoteResponse,
)
from fixit.storage import ImageStore, get_image_store
from fixit.tasks.notifications import award_points, dispatch_transition_effects, notify
from fixit.voting import cast_vote

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/issues", tags=["issues"], dependencies=[Depends(require_database)])

MAX_ISSUE_IMAGES = 5
AI_VERIFIED_TAG = "verified-by-ai"

VOTE_BALANCE = (
    select(func.coalesce(func.sum(case((models.IssueVote.vote_type == "upvote", 1), else_=-1)), 0))
    .where(models.IssueVote.issue_id == models.Issue.id)
    .correlate(models.Issue)
    .scalar_subquery()
)
COMMENT_COUNT = (
    select(func.count(models.Comment.id))
    .where(models.Comment.issue_id == models.Issue.id)
    .correlate(models.Issue)
    .scalar_subquery()
)


def _order_by(sort: IssueSort) -> list:
    newest = models.Issue.created_at.desc()
    if sort == IssueSort.OLDEST:
        return [models.Issue.created_at.asc()]
    if sort == IssueSort.MOST_VOTED:
        return [VOTE_BALANCE.desc(), newest]
    if sort == IssueSort.MOST_COMMENTED:
        return [COMMENT_COUNT.desc(), newest]
    return [newest]


async def _page_of_issues(db: AsyncSession, conditions: list, order: list, page: int, limit: int):
    total = await db.scalar(select(func.count(models.Issue.id)).where(*conditions))
    result = await db.execute(
        select(models.Issue).where(*conditions).order_by(*order).offset((page - 1) * limit).limit(limit)
    )
    return result.scalars().all(), total or 0


async def find_department_assignee(db: AsyncSession, category: str) -> Optional[models.User]:
    """First active government user of the department matching ``category``."""
    result = await db.execute(
        select(models.User)
        .where(
            models.User.role == "government",
            models.User.department == category,
            models.User.is_active.is_(True),
        )
        .order_by(models.User.created_at)
        .limit(1)
    )
    return result.scalars().first()


@router.get("/", response_model=IssuePage)
async def list_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    category: Optional[Category] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Search radius in km"),
    sort: IssueSort = IssueSort.NEWEST,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    """List active issues with optional status, category and radius filters."""
    conditions = [models.Issue.is_active.is_(True)]
    if status_filter is not None:
        conditions.append(models.Issue.status == status_filter.value)
    if category is not None:
        conditions.append(models.Issue.category == category.value)

    near = lat is not None and lng is not None and radius is not None
    if not near:
        issues, total = await _page_of_issues(db, conditions, _order_by(sort), page, limit)
    else:
        min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, radius)
        conditions.append(models.Issue.latitude.between(min_lat, max_lat))
        if min_lng >= -180 and max_lng <= 180:
            conditions.append(models.Issue.longitude.between(min_lng, max_lng))
        result = await db.execute(select(models.Issue).where(*conditions).order_by(*_order_by(sort)))
        matches = [
            issue
            for issue in result.scalars().all()
            if distance_km(lat, lng, issue.latitude, issue.longitude) <= radius
        ]
        total = len(matches)
        issues = matches[(page - 1) * limit : page * limit]

    return IssuePage(
        issues=[issue_response(issue, viewer) for issue in issues],
        pagination=pagination(page, limit, total),
    )


@router.get("/my-issues", response_model=IssuePage)
async def list_my_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    category: Optional[Category] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Issues reported by the caller, anonymous ones included."""
    conditions = [models.Issue.reported_by_id == user.id, models.Issue.is_active.is_(True)]
    if status_filter is not None:
        conditions.append(models.Issue.status == status_filter.value)
    if category is not None:
        conditions.append(models.Issue.category == category.value)

    issues, total = await _page_of_issues(db, conditions, [models.Issue.created_at.desc()], page, limit)
    return IssuePage(issues=[issue_response(issue, user) for issue in issues], pagination=pagination(page, limit, total))


@router.get("/assigned", response_model=IssuePage)
async def list_assigned_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Issues assigned to the caller."""
    conditions = [models.Issue.assigned_to_id == user.id, models.Issue.is_active.is_(True)]
    if status_filter is not None:
        conditions.append(models.Issue.status == status_filter.value)

    issues, total = await _page_of_issues(db, conditions, [models.Issue.created_at.desc()], page, limit)
    return IssuePage(issues=[issue_response(issue, user) for issue in issues], pagination=pagination(page, limit, total))


@router.get("/my-stats", response_model=IssueCounts)
async def my_stats(db: AsyncSession = Depends(get_db), user: models.User = Depends(get_current_user)):
    return await issue_counts(db, models.Issue.reported_by_id == user.id, models.Issue.is_active.is_(True))


@router.get("/stats/overview", response_model=StatsOverview)
async def stats_overview(db: AsyncSession = Depends(get_db)):
    """Platform-wide counts plus the number of active issues per category."""
    active = models.Issue.is_active.is_(True)
    overview = await issue_counts(db, active)
    result = await db.execute(
        select(models.Issue.category, func.count(models.Issue.id))
        .where(active)
        .group_by(models.Issue.category)
        .order_by(models.Issue.category)
    )
    categories = [CategoryCount(category=category, count=count) for category, count in result.all()]
    return StatsOverview(overview=overview, categories=categories)


@router.post("/analyze-image", response_model=ImageAnalysis)
async def analyze_image(
    image: UploadFile = File(...),
    llm: Optional[LLMService] = Depends(get_llm_service),
):
    """Suggest title, category, severity and tags for a photo.

    Falls back to an empty suggestion when image analysis is unavailable.
    """
    content = await read_upload(image)
    if llm is None:
        return ImageAnalysis()

    try:
        classification = await llm.classify(content, image.content_type)
    except LLMServiceError as e:
        logger.warning(f"Image analysis unavailable: {str(e)}")
        return ImageAnalysis()

    return ImageAnalysis(
        title=classification.title,
        description=classification.description,
        category=classification.category if classification.category in DEPARTMENTS else Category.ROADS,
        severity=classification.severity or Severity.MEDIUM,
        tags=classification.tags,
        is_relevant=classification.is_relevant,
    )


@router.get("/{issue_id}", response_model=IssueResponse, status_code=status.HTTP_200_OK)
async def get_issue(
    issue_id: str,
    db: AsyncSession = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    """Get issue by ID"""
    issue = await load_issue(db, issue_id)
    return issue_response(issue, viewer)


@router.post("/", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
async def create_issue(
    title: str = Form(..., min_length=3, max_length=100),
    description: str = Form(..., min_length=5, max_length=1000),
    category: Category = Form(...),
    severity: Severity = Form(Severity.MEDIUM),
    location: str = Form(..., description='JSON object: {"lat": .., "lng": .., "address": ..}'),
    anonymous: bool = Form(False),
    images: Optional[list[UploadFile]] = File(None),
    db: AsyncSession = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    geocoder: Geocoder = Depends(get_geocoder),
    llm: Optional[LLMService] = Depends(get_llm_service),
    store: ImageStore = Depends(get_image_store),
):
    """
    Report a new issue.

    Anyone may report; authenticated reporters are linked to the issue and
    earn points. The first photo is checked by the image classifier when one
    is configured, and the issue is auto-assigned to the government user of
    the matching department.
    """
    try:
        point = LocationIn.model_validate_json(location)
    except PydanticValidationError:
        raise ValidationError("Valid location coordinates are required")

    uploads = images or []
    if len(uploads) > MAX_ISSUE_IMAGES:
        raise ValidationError(f"At most {MAX_ISSUE_IMAGES} images are allowed")
    photos = [(await read_upload(upload), upload.content_type) for upload in uploads]

    address = point.address.strip()
    if not address or "Lat:" in address:
        address = await geocoder.reverse(point.lat, point.lng) or address

    tags: list[str] = []
    severity_value = severity.value
    if photos and llm is not None:
        try:
            classification = await llm.classify(*photos[0])
        except LLMServiceError as e:
            logger.warning(f"Image classification skipped: {str(e)}")
            classification = None

        if classification is not None:
            if not classification.is_relevant:
                raise ValidationError("Submission rejected: No valid civic issue detected in the image.")
            if not classification.category_supported:
                raise ValidationError("Submission rejected: Issue type not supported.")
            if classification.tags:
                tags = [*classification.tags, AI_VERIFIED_TAG]
            # Only refine the default severity
            if severity_value == Severity.MEDIUM.value and classification.severity:
                severity_value = classification.severity

    image_urls = [await store_upload(store, content, content_type) for content, content_type in photos]
    assignee = await find_department_assignee(db, category.value)

    now = utcnow()
    issue = models.Issue(
        id=new_id(),
        title=title.strip(),
        description=description.strip(),
        category=category.value,
        severity=severity_value,
        priority="medium",
        status="reported",
        latitude=point.lat,
        longitude=point.lng,
        address=address,
        images=image_urls,
        anonymous=anonymous,
        tags=tags,
        reporter=user,
        assignee=assignee,
        created_at=now,
        updated_at=now,
    )
    lifecycle.append_status_log(issue, "reported", user.id if user else None, now=now)
    db.add(issue)
    await db.commit()
    logger.info(
        "Issue created",
        extra={"issue_id": issue.id, "category": issue.category, "assigned_to_id": issue.assigned_to_id},
    )

    if user is not None:
        await award_points(db, user.id, "REPORT_ISSUE")
        if AI_VERIFIED_TAG in tags:
            await award_points(db, user.id, "VERIFIED_ISSUE")

    if assignee is not None and (user is None or assignee.id != user.id):
        await notify(
            db,
            assignee.id,
            type="assigned",
            title="New Issue Reported",
            message=f"A new {issue.category} issue has been reported and assigned to your department.",
            issue_id=issue.id,
            priority="high",
            icon="assignment",
        )

    issue = await load_issue(db, issue.id)
    return issue_response(issue, user)


@router.put("/{issue_id}", response_model=IssueResponse, status_code=status.HTTP_200_OK)
async def update_issue(
    issue_id: str,
    payload: IssueUpdate,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
    store: ImageStore = Depends(get_image_store),
):
    """Edit issue details. Status only changes through the workflow endpoints."""
    issue = await load_issue(db, issue_id)
    if not can_edit_issue(user, issue):
        raise AuthorizationError("Not authorized to update this issue")
    # Only photos uploaded through the image store may be attached
    if payload.images is not None and any(not store.owns(url) for url in payload.images):
        raise ValidationError("Images must be uploaded through FixIt")

    if payload.title is not None:
        issue.title = payload.title
    if payload.description is not None:
        issue.description = payload.description
    if payload.category is not None:
        issue.category = payload.category.value
    if payload.severity is not None:
        issue.severity = payload.severity.value
    if payload.location is not None:
        issue.latitude = payload.location.lat
        issue.longitude = payload.location.lng
        issue.address = payload.location.address
    if payload.images is not None:
        issue.images = payload.images

    await db.commit()
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.delete("/{issue_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_issue(
    issue_id: str,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Soft delete: the issue disappears from every listing but keeps its history."""
    issue = await load_issue(db, issue_id)
    if not can_edit_issue(user, issue):
        raise AuthorizationError("Not authorized to delete this issue")

    issue.is_active = False
    await db.commit()
    logger.info("Issue deleted", extra={"issue_id": issue_id, "user_id": user.id})


@router.post("/{issue_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    issue_id: str,
    payload: CommentCreate,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    text = payload.text.strip()
    if not text:
        raise ValidationError("Comment text is required")

    issue = await load_issue(db, issue_id)
    comment = models.Comment(user=user, text=text, created_at=utcnow())
    issue.comments.append(comment)
    await db.commit()

    if issue.reported_by_id and issue.reported_by_id != user.id:
        await notify(
            db,
            issue.reported_by_id,
            type="comment",
            title="New Comment",
            message=f'{user.name} commented on: "{issue.title}"',
            issue_id=issue.id,
            icon="comment",
        )
    await award_points(db, user.id, "COMMENT")

    return CommentResponse.model_validate(comment)


@router.post("/{issue_id}/vote", response_model=VoteResponse)
async def vote_issue(
    issue_id: str,
    payload: VoteRequest,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Upvote or downvote; repeating the same vote removes it."""
    issue = await load_issue(db, issue_id)
    outcome = cast_vote(issue, user.id, payload.vote_type.value)
    await db.commit()

    if outcome.priority_changed:
        logger.info("Issue priority changed by votes", extra={"issue_id": issue.id, "priority": outcome.priority})

    if outcome.new_upvote and issue.reported_by_id and issue.reported_by_id != user.id:
        await award_points(db, issue.reported_by_id, "UPVOTE_RECEIVED")
        await notify(
            db,
            issue.reported_by_id,
            type="vote",
            title="New Upvote",
            message=f'Someone upvoted your issue "{issue.title}"',
            issue_id=issue.id,
            priority="low",
            icon="thumb_up",
        )

    return VoteResponse(
        vote_count=issue.vote_count,
        upvotes=issue.upvote_count,
        downvotes=issue.downvote_count,
        priority=issue.priority,
        user_vote=outcome.current,
    )


async def resolution_confidence(
    llm: Optional[LLMService], issue: models.Issue, content: bytes, content_type: str
) -> int:
    """Model confidence that the proof photo shows the fix, or the fixed fallback score."""
    before_url = issue.images[0] if issue.images else None
    if llm is not None:
        try:
            return await llm.score_resolution(content, content_type, before_url, issue.description)
        except LLMServiceError as e:
            logger.warning(f"Resolution scoring unavailable: {str(e)}", extra={"issue_id": issue.id})
    return fallback_resolution_score(bool(before_url), bool(issue.work_started_image))


@router.put("/{issue_id}/start-work", response_model=IssueResponse)
async def start_work(
    issue_id: str,
    image: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
    store: ImageStore = Depends(get_image_store),
):
    """Assigned worker starts work; a proof photo is required."""
    issue = await load_issue(db, issue_id)
    lifecycle.ensure_allowed(issue, user, lifecycle.START_WORK, has_image=image is not None)

    content = await read_upload(image)
    image_url = await store_upload(store, content, image.content_type, folder="work")
    outcome = lifecycle.start_work(issue, user, image_url)
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.put("/{issue_id}/resolve", response_model=IssueResponse)
async def resolve_issue(
    issue_id: str,
    image: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
    store: ImageStore = Depends(get_image_store),
    llm: Optional[LLMService] = Depends(get_llm_service),
):
    """Assigned worker marks the fix done; the reporter then reviews it."""
    issue = await load_issue(db, issue_id)
    lifecycle.ensure_allowed(issue, user, lifecycle.RESOLVE, has_image=image is not None)

    content = await read_upload(image)
    image_url = await store_upload(store, content, image.content_type, folder="resolutions")
    confidence = await resolution_confidence(llm, issue, content, image.content_type)
    outcome = lifecycle.resolve(issue, user, image_url, confidence)
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.put("/{issue_id}/approve-fix", response_model=IssueResponse)
async def approve_fix(
    issue_id: str,
    payload: Optional[FixReview] = None,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    issue = await load_issue(db, issue_id)
    outcome = lifecycle.approve_fix(issue, user, payload.note if payload else None)
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)


@router.put("/{issue_id}/reject-fix", response_model=IssueResponse)
async def reject_fix(
    issue_id: str,
    payload: Optional[FixReview] = None,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    issue = await load_issue(db, issue_id)
    outcome = lifecycle.reject_fix(issue, user, payload.note if payload else None)
    await db.commit()

    await dispatch_transition_effects(db, outcome)
    issue = await load_issue(db, issue_id)
    return issue_response(issue, user)
