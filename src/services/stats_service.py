"""
User trading-stats aggregator

Recomputes the denormalized stats on User from scratch over every
challenge participation of the user.
"""

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.enums import ParticipantStatus
from src.database.crud import get_all_user_ids
from src.database.models import User, ChallengeParticipant


async def compute_user_trading_stats(session: AsyncSession, user_id: int) -> dict:
    """
    Aggregate participant rows of a user

    Returns:
        Dict with total_challenges, completed_challenges, total_profit, win_rate
    """
    stmt = select(
        func.count(ChallengeParticipant.id),
        func.coalesce(
            func.sum(
                case(
                    (ChallengeParticipant.status == ParticipantStatus.COMPLETED.value, 1),
                    else_=0,
                )
            ),
            0,
        ),
        func.coalesce(func.sum(ChallengeParticipant.profit), 0.0),
    ).where(ChallengeParticipant.user_id == user_id)

    total, completed, total_profit = (await session.execute(stmt)).one()
    total = int(total or 0)
    completed = int(completed or 0)

    win_rate = round(completed / total * 100, 2) if total > 0 else 0.0

    return {
        "total_challenges": total,
        "completed_challenges": completed,
        "total_profit": float(total_profit or 0.0),
        "win_rate": win_rate,
    }


async def recompute_user_trading_stats(session: AsyncSession, user_id: int) -> bool:
    """
    Recompute and store trading stats for one user

    Best effort: failures are logged and never propagated to the caller.

    Returns:
        True if the stats were written
    """
    try:
        user = await session.get(User, user_id)
        if not user:
            return False

        stats = await compute_user_trading_stats(session, user_id)
        for key, value in stats.items():
            setattr(user, key, value)
        await session.commit()

        logger.debug(f"Trading stats updated for user {user_id}: {stats}")
        return True

    except Exception as e:
        logger.exception(f"Failed to update trading stats for user {user_id}: {e}")
        await session.rollback()
        return False


async def recompute_all_users_stats(session: AsyncSession) -> int:
    """
    Recompute trading stats for every user

    Returns:
        Number of users updated
    """
    updated = 0
    for user_id in await get_all_user_ids(session):
        if await recompute_user_trading_stats(session, user_id):
            updated += 1

    logger.info(f"Trading stats recomputed for {updated} users")
    return updated
