"""Issue voting and vote-driven priority."""

from dataclasses import dataclass
from typing import Optional

from fixit.database import models
from fixit.errors import ValidationError

VOTE_TYPES = ("upvote", "downvote")


@dataclass(frozen=True)
class VoteOutcome:
    previous: Optional[str]
    current: Optional[str]
    priority: str
    priority_changed: bool

    @property
    def new_upvote(self) -> bool:
        return self.current == "upvote" and self.previous != "upvote"


def derive_priority(balance: int) -> str:
    """Map the net vote balance (upvotes - downvotes) to a priority."""
    if balance >= 10:
        return "urgent"
    if balance >= 5:
        return "high"
    if balance >= 0:
        return "medium"
    return "low"


def cast_vote(issue: models.Issue, user_id: str, vote_type: str) -> VoteOutcome:
    """Apply a vote with toggle semantics.

    Repeating the current vote removes it; voting the other way replaces it.
    The (issue, user) vote row is the only record of the vote, so a user can
    never hold an upvote and a downvote on the same issue.
    """
    if vote_type not in VOTE_TYPES:
        raise ValidationError("Vote type must be upvote or downvote")

    existing = next((vote for vote in issue.votes if vote.user_id == user_id), None)
    previous = existing.vote_type if existing else None

    if existing is not None and existing.vote_type == vote_type:
        issue.votes.remove(existing)
        current = None
    elif existing is not None:
        existing.vote_type = vote_type
        current = vote_type
    else:
        issue.votes.append(models.IssueVote(user_id=user_id, vote_type=vote_type))
        current = vote_type

    priority = derive_priority(issue.vote_count)
    priority_changed = issue.priority != priority
    if priority_changed:
        issue.priority = priority

    return VoteOutcome(previous=previous, current=current, priority=priority, priority_changed=priority_changed)
