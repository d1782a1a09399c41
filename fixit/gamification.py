"""Impact score points, levels and the reward catalog."""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fixit.database import models
from fixit.database.models import utcnow
from fixit.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

POINTS = {
    "REPORT_ISSUE": 10,
    "VERIFIED_ISSUE": 5,
    "RESOLVE_ISSUE": 20,
    "CONFIRM_RESOLUTION": 10,
    # Awarded to the reporter when another user upvotes their issue
    "UPVOTE_RECEIVED": 2,
    "COMMENT": 3,
    "SPAM_PENALTY": -15,
}


@dataclass(frozen=True)
class Level:
    level: int
    min_score: int
    title: str


LEVELS = (
    Level(1, 0, "Civic Observer"),
    Level(2, 200, "Active Citizen"),
    Level(3, 400, "Civic Contributor"),
    Level(4, 600, "Community Champion"),
    Level(5, 800, "City Guardian"),
)


@dataclass(frozen=True)
class Reward:
    id: str
    title: str
    description: str
    cost: int
    type: str


REWARDS = (
    Reward("r1", "Coffee Discount", "20% off at Local Cafe", 100, "coupon"),
    Reward("r2", "Bus Pass Credit", "$5 Credit for Public Transport", 300, "credit"),
    Reward("r3", "Utility Bill Cashback", "5% Cashback on Water Bill", 550, "cashback"),
    Reward("r4", "Civic Hero Badge", "Digital Certificate of Appreciation", 800, "certificate"),
    Reward("r5", "City Guardian Access", "Priority Issue Review Access", 1200, "privilege"),
)


@dataclass(frozen=True)
class ScoreUpdate:
    user_id: str
    points: int
    impact_score: int
    level: int
    leveled_up: bool


def calculate_level(score: int) -> int:
    for tier in reversed(LEVELS):
        if score >= tier.min_score:
            return tier.level
    return 1


def level_title(level: int) -> str:
    for tier in LEVELS:
        if tier.level == level:
            return tier.title
    return LEVELS[0].title


def find_reward(reward_id: str) -> Optional[Reward]:
    return next((reward for reward in REWARDS if reward.id == reward_id), None)


def apply_points(user: models.User, action: str) -> Optional[ScoreUpdate]:
    """Add the points for ``action`` to ``user`` in memory.

    The level is recomputed from the new score but never lowered.
    Returns None for unknown actions.
    """
    points = POINTS.get(action)
    if not points:
        logger.warning("Unknown gamification action %s", action, extra={"user_id": user.id})
        return None

    user.impact_score = (user.impact_score or 0) + points
    previous_level = user.level or 1
    new_level = calculate_level(user.impact_score)
    if new_level > previous_level:
        user.level = new_level

    return ScoreUpdate(
        user_id=user.id,
        points=points,
        impact_score=user.impact_score,
        level=user.level,
        leveled_up=user.level > previous_level,
    )


async def add_points(db: AsyncSession, user_id: Optional[str], action: str) -> Optional[ScoreUpdate]:
    """Read the user, add the points for ``action`` and persist.

    This is a plain read-modify-write: concurrent awards to the same user
    may overwrite each other.
    """
    if not user_id:
        return None

    user = await db.get(models.User, user_id)
    if user is None:
        logger.warning("Cannot award %s: user not found", action, extra={"user_id": user_id})
        return None

    update = apply_points(user, action)
    if update is None:
        return None

    await db.commit()
    logger.info(
        "Awarded %s points for %s",
        update.points,
        action,
        extra={"user_id": user_id, "impact_score": update.impact_score, "level": update.level},
    )
    return update


def reward_progress(score: int, reward: Reward) -> float:
    return min(100.0, round(100 * max(score, 0) / reward.cost, 2))


def has_redeemed(user: models.User, reward_id: str) -> bool:
    return any(item.reward_id == reward_id for item in user.redeemed_rewards)


def redeem(user: models.User, reward_id: str) -> models.RedeemedReward:
    """Record a redemption for ``user``. Points are not deducted."""
    reward = find_reward(reward_id)
    if reward is None:
        raise NotFoundError("Reward not found")
    if (user.impact_score or 0) < reward.cost:
        raise ValidationError("Not enough points to unlock this reward")
    if has_redeemed(user, reward_id):
        raise ValidationError("Reward already redeemed")

    redemption = models.RedeemedReward(reward_id=reward_id, code=uuid.uuid4().hex[:8].upper(), redeemed_at=utcnow())
    user.redeemed_rewards.append(redemption)
    logger.info("Reward redeemed", extra={"user_id": user.id, "reward_id": reward_id})
    return redemption
