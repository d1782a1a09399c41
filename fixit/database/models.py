import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from fixit.database.config import Base
from fixit.schemas import DEPARTMENTS

ISSUE_STATUSES = ("reported", "in_progress", "resolved", "closed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String(50), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    firebase_uid = Column(String, unique=True, nullable=True)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    role = Column(
        Enum("user", "admin", "government", "manager", "field_worker", name="user_role"),
        default="user",
        nullable=False,
    )
    department = Column(Enum(*DEPARTMENTS, name="user_department"), nullable=True)

    # Gamification
    impact_score = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    redeemed_rewards = relationship(
        "RedeemedReward", lazy="selectin", cascade="all, delete-orphan", order_by="RedeemedReward.id"
    )

    @property
    def level_title(self) -> str:
        from fixit.gamification import level_title

        return level_title(self.level)


class RedeemedReward(Base):
    __tablename__ = "redeemed_rewards"
    __table_args__ = (UniqueConstraint("user_id", "reward_id", name="uq_redeemed_reward"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = Column(String, nullable=False)
    code = Column(String, nullable=False)
    redeemed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Issue(Base):
    __tablename__ = "issues"

    id = Column(String, primary_key=True, index=True, default=new_id)
    title = Column(String(100), nullable=False)
    description = Column(String(1000), nullable=False)
    category = Column(Enum(*DEPARTMENTS, name="issue_category"), nullable=False, index=True)
    severity = Column(Enum("low", "medium", "high", "critical", name="issue_severity"), default="medium", nullable=False)
    priority = Column(Enum("low", "medium", "high", "urgent", name="issue_priority"), default="medium", nullable=False)
    status = Column(Enum(*ISSUE_STATUSES, name="issue_status"), default="reported", nullable=False, index=True)

    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    address = Column(String, default="", nullable=False)

    images = Column(JSON, default=list, nullable=False)
    anonymous = Column(Boolean, default=False, nullable=False)
    tags = Column(JSON, default=list, nullable=False)

    reported_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_to_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Resolution workflow
    work_started_at = Column(DateTime(timezone=True), nullable=True)
    work_started_image = Column(String, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_image = Column(String, nullable=True)
    ai_resolution_score = Column(Integer, nullable=True)
    resolution_status = Column(
        Enum("pending_review", "verified", "rejected", name="resolution_status"), nullable=True
    )

    estimated_resolution_days = Column(Integer, default=7, nullable=False)
    overdue_notified_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    reporter = relationship("User", foreign_keys=[reported_by_id], lazy="selectin")
    assignee = relationship("User", foreign_keys=[assigned_to_id], lazy="selectin")
    status_logs = relationship(
        "StatusLog",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by=lambda: [StatusLog.changed_at, StatusLog.id],
    )
    comments = relationship(
        "Comment", lazy="selectin", cascade="all, delete-orphan", order_by="Comment.id"
    )
    votes = relationship("IssueVote", lazy="selectin", cascade="all, delete-orphan")

    @property
    def upvote_count(self) -> int:
        return sum(1 for vote in self.votes if vote.vote_type == "upvote")

    @property
    def downvote_count(self) -> int:
        return sum(1 for vote in self.votes if vote.vote_type == "downvote")

    @property
    def vote_count(self) -> int:
        return self.upvote_count - self.downvote_count

    @property
    def comment_count(self) -> int:
        return len(self.comments)

    @property
    def location(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude, "address": self.address or ""}

    def vote_of(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        for vote in self.votes:
            if vote.user_id == user_id:
                return vote.vote_type
        return None


class StatusLog(Base):
    """Append-only status history entry for an issue."""

    __tablename__ = "issue_status_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(Enum(*ISSUE_STATUSES, name="status_log_status"), nullable=False)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    changed_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note = Column(String(500), nullable=True)


class Comment(Base):
    __tablename__ = "issue_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    text = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", lazy="selectin")


class IssueVote(Base):
    """One row per (issue, user): a user holds at most one vote on an issue."""

    __tablename__ = "issue_votes"
    __table_args__ = (UniqueConstraint("issue_id", "user_id", name="uq_issue_vote"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    vote_type = Column(Enum("upvote", "downvote", name="vote_type"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class DepartmentThreshold(Base):
    __tablename__ = "department_thresholds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    department = Column(Enum(*DEPARTMENTS, name="threshold_department"), unique=True, nullable=False)
    # Max hours in 'reported' before an issue is flagged overdue
    max_pending_hours = Column(Integer, default=72, nullable=False)
    # Max hours in 'in_progress' before an issue is flagged overdue
    max_in_progress_hours = Column(Integer, default=168, nullable=False)
    description = Column(String(500), default="", nullable=False)
    updated_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        Enum(
            "issue", "comment", "vote", "system", "update", "assigned", "escalation", "success", "alert",
            name="notification_type",
        ),
        nullable=False,
    )
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    priority = Column(Enum("low", "medium", "high", "urgent", name="notification_priority"), default="medium", nullable=False)
    read = Column(Boolean, default=False, nullable=False, index=True)
    issue_id = Column(String, nullable=True)
    icon = Column(String, default="info", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
