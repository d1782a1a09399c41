from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fixit import gamification
from fixit.auth import get_current_user
from fixit.database import models
from fixit.database.config import get_db
from fixit.dependencies import require_database
from fixit.errors import ValidationError
from fixit.schemas import (
    LeaderboardEntry,
    RedeemRequest,
    RedemptionResponse,
    RewardResponse,
    RewardsResponse,
)

router = APIRouter(prefix="/api/gamification", tags=["gamification"], dependencies=[Depends(require_database)])


def _reward_response(user: models.User, reward: gamification.Reward) -> RewardResponse:
    score = user.impact_score or 0
    return RewardResponse(
        id=reward.id,
        title=reward.title,
        description=reward.description,
        cost=reward.cost,
        type=reward.type,
        is_unlocked=score >= reward.cost,
        is_redeemed=gamification.has_redeemed(user, reward.id),
        progress=gamification.reward_progress(score, reward),
    )


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def leaderboard(limit: int = Query(10, ge=1, le=100), db: AsyncSession = Depends(get_db)):
    """Top citizens by impact score."""
    result = await db.execute(
        select(models.User)
        .where(models.User.role == "user", models.User.is_active.is_(True))
        .order_by(models.User.impact_score.desc(), models.User.created_at)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/rewards", response_model=RewardsResponse)
async def rewards(user: models.User = Depends(get_current_user)):
    return RewardsResponse(
        rewards=[_reward_response(user, reward) for reward in gamification.REWARDS],
        user_score=user.impact_score or 0,
        user_level=user.level or 1,
    )


@router.post("/redeem", response_model=RedemptionResponse)
async def redeem(
    payload: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    redemption = gamification.redeem(user, payload.reward_id)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request redeemed the same reward first
        await db.rollback()
        raise ValidationError("Reward already redeemed")
    reward = gamification.find_reward(payload.reward_id)
    return RedemptionResponse(code=redemption.code, reward=_reward_response(user, reward))
