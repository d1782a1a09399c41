from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    ROADS = "roads"
    LIGHTING = "lighting"
    WATER = "water"
    CLEANLINESS = "cleanliness"
    SAFETY = "safety"
    OBSTRUCTIONS = "obstructions"


DEPARTMENTS = tuple(c.value for c in Category)


class IssueStatus(str, Enum):
    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    GOVERNMENT = "government"
    MANAGER = "manager"
    FIELD_WORKER = "field_worker"


class VoteType(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class NotificationType(str, Enum):
    ISSUE = "issue"
    COMMENT = "comment"
    VOTE = "vote"
    SYSTEM = "system"
    UPDATE = "update"
    ASSIGNED = "assigned"
    ESCALATION = "escalation"
    SUCCESS = "success"
    ALERT = "alert"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IssueSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    MOST_VOTED = "most_voted"
    MOST_COMMENTED = "most_commented"


class OverdueSort(str, Enum):
    OVERDUE_BY = "overdueBy"
    SEVERITY = "severity"
    CREATED_AT = "createdAt"


class CamelModel(BaseModel):
    """Base model exposing camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Requests ---

class LocationIn(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str = ""


class IssueUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=5, max_length=1000)
    category: Optional[Category] = None
    severity: Optional[Severity] = None
    location: Optional[LocationIn] = None
    images: Optional[list[str]] = None


class CommentCreate(CamelModel):
    text: str = Field(min_length=1, max_length=500)


class VoteRequest(CamelModel):
    vote_type: VoteType


class FixReview(CamelModel):
    note: Optional[str] = Field(None, max_length=500)


class StatusOverride(CamelModel):
    status: IssueStatus
    admin_note: Optional[str] = Field(None, max_length=500)


class ThresholdUpdate(CamelModel):
    max_pending_hours: Optional[int] = None
    max_in_progress_hours: Optional[int] = None
    description: Optional[str] = Field(None, max_length=500)


class EscalationRequest(CamelModel):
    escalation_note: Optional[str] = Field(None, max_length=500)
    new_priority: Optional[IssuePriority] = None


class NotificationCreate(CamelModel):
    type: NotificationType = NotificationType.SYSTEM
    title: str = Field(min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=500)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    issue_id: Optional[str] = None
    icon: str = "info"


class RegisterRequest(CamelModel):
    name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=30)


class UserUpdate(CamelModel):
    role: Optional[Role] = None
    department: Optional[Category] = None
    is_active: Optional[bool] = None


class RedeemRequest(CamelModel):
    reward_id: str


# --- Responses ---

class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class UserSummary(CamelModel):
    id: str
    name: str


class RedeemedRewardResponse(CamelModel):
    reward_id: str
    code: str
    redeemed_at: datetime


class UserProfile(CamelModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    role: Role
    department: Optional[Category] = None
    is_email_verified: bool
    is_active: bool
    impact_score: int
    level: int
    level_title: str
    redeemed_rewards: list[RedeemedRewardResponse] = []
    created_at: datetime


class UserPage(CamelModel):
    users: list[UserProfile]
    pagination: Pagination


class MyVotesResponse(CamelModel):
    upvoted_issues: list[str]
    downvoted_issues: list[str]


class LocationResponse(CamelModel):
    lat: float
    lng: float
    address: str


class StatusLogResponse(CamelModel):
    status: IssueStatus
    changed_at: datetime
    changed_by_id: Optional[str] = None
    note: Optional[str] = None


class CommentResponse(CamelModel):
    id: int
    user: Optional[UserSummary] = None
    text: str
    created_at: datetime


class IssueResponse(CamelModel):
    id: str
    title: str
    description: str
    category: Category
    severity: Severity
    priority: IssuePriority
    status: IssueStatus
    location: LocationResponse
    images: list[str] = []
    anonymous: bool
    tags: list[str] = []
    reporter: Optional[UserSummary] = None
    assignee: Optional[UserSummary] = None
    work_started_at: Optional[datetime] = None
    work_started_image: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_image: Optional[str] = None
    ai_resolution_score: Optional[int] = None
    resolution_status: Optional[ResolutionStatus] = None
    estimated_resolution_days: int
    status_logs: list[StatusLogResponse] = []
    comments: list[CommentResponse] = []
    upvote_count: int
    downvote_count: int
    vote_count: int
    comment_count: int
    user_vote: Optional[VoteType] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class IssuePage(CamelModel):
    issues: list[IssueResponse]
    pagination: Pagination


class VoteResponse(CamelModel):
    vote_count: int
    upvotes: int
    downvotes: int
    priority: IssuePriority
    user_vote: Optional[VoteType] = None


class IssueCounts(CamelModel):
    total: int = 0
    reported: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
    total_votes: int = 0
    total_comments: int = 0


class CategoryCount(CamelModel):
    category: Category
    count: int


class StatsOverview(CamelModel):
    overview: IssueCounts
    categories: list[CategoryCount]


class ImageAnalysis(CamelModel):
    title: str = ""
    description: str = ""
    category: Category = Category.ROADS
    severity: Severity = Severity.MEDIUM
    tags: list[str] = []
    is_relevant: bool = True


class ThresholdResponse(CamelModel):
    department: Category
    max_pending_hours: int
    max_in_progress_hours: int
    description: str = ""
    is_active: bool = True
    is_default: bool = False


class OverdueIssueResponse(CamelModel):
    id: str
    title: str
    category: Category
    status: IssueStatus
    severity: Severity
    priority: IssuePriority
    created_at: datetime
    since: datetime
    age_hours: float
    threshold_hours: int
    overdue_by: float
    overdue_days: int
    overdue_hours: int
    location: LocationResponse
    assigned_to_id: Optional[str] = None


class OverdueLists(CamelModel):
    pending: list[OverdueIssueResponse]
    in_progress: list[OverdueIssueResponse]


class DepartmentRollupResponse(CamelModel):
    total: int
    reported: int
    in_progress: int
    resolved: int
    closed: int
    overdue_count: int
    threshold: ThresholdResponse


class DashboardStats(CamelModel):
    total: int
    reported: int
    in_progress: int
    resolved: int
    closed: int
    overdue: OverdueLists
    by_department: dict[str, DepartmentRollupResponse]
    by_severity: dict[str, int]
    completion_rate: int


class DashboardResponse(CamelModel):
    stats: DashboardStats
    thresholds: list[ThresholdResponse]
    user_department: Optional[Category] = None


class OverdueSummary(CamelModel):
    total_overdue: int
    pending: int
    in_progress: int


class OverduePage(CamelModel):
    issues: list[OverdueIssueResponse]
    pagination: Pagination
    summary: OverdueSummary


class DepartmentStats(CamelModel):
    department: Category
    total: int
    reported: int
    in_progress: int
    resolved: int
    closed: int
    critical: int
    high: int
    avg_resolution_hours: Optional[float] = None
    overdue_reported: int
    overdue_in_progress: int
    total_overdue: int
    completion_rate: int
    threshold: ThresholdResponse


class DepartmentStatsResponse(CamelModel):
    departments: list[DepartmentStats]
    time_range: int


class NotificationResponse(CamelModel):
    id: str
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority
    read: bool
    issue_id: Optional[str] = None
    icon: str
    created_at: datetime


class NotificationPage(CamelModel):
    notifications: list[NotificationResponse]
    pagination: Pagination


class UnreadCount(CamelModel):
    count: int


class UpdatedCount(CamelModel):
    updated_count: int


class LeaderboardEntry(CamelModel):
    id: str
    name: str
    impact_score: int
    level: int
    level_title: str


class RewardResponse(CamelModel):
    id: str
    title: str
    description: str
    cost: int
    type: str
    is_unlocked: bool
    is_redeemed: bool
    progress: float


class RewardsResponse(CamelModel):
    rewards: list[RewardResponse]
    user_score: int
    user_level: int


class RedemptionResponse(CamelModel):
    code: str
    reward: RewardResponse


class AdminStats(CamelModel):
    issues: IssueCounts
    users_total: int
    users_by_role: dict[str, int]
    active_issues: int
    deleted_issues: int
