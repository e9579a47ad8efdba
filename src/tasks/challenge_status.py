"""
Challenge status sweep

Moves upcoming challenges to active once they start and upcoming/active
challenges to completed once they end. Every move goes through the
challenge state machine.

Run: python -m src.tasks.challenge_status
"""

import asyncio
from datetime import datetime, UTC
from typing import Any, Dict

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.challenge_fsm import time_event, transition
from src.database.crud import get_open_challenges_for_sweep
from src.database.engine import get_session_maker
from src.database.models import Challenge


async def update_challenge_statuses(session: AsyncSession) -> Dict[str, Any]:
    """
    Apply time-driven status changes

    Each change is committed on its own; a failure on one challenge is
    logged and does not stop the others.

    Returns:
        {"success": True, "updated": n} or {"success": False, "error": str}
    """
    now = datetime.now(UTC)

    try:
        challenges = await get_open_challenges_for_sweep(session)
        # Plain tuples: a rollback below must not touch expired ORM state
        candidates = [(c.id, c.name, c.status, c.start_date, c.end_date) for c in challenges]
    except Exception as e:
        logger.exception(f"Status sweep could not load challenges: {e}")
        return {"success": False, "error": str(e)}

    updated = 0
    for challenge_id, name, status, start_date, end_date in candidates:
        event = time_event(status, start_date, end_date, now)
        if event is None:
            continue

        try:
            new_status = transition(status, event)
            stmt = (
                update(Challenge)
                .where(Challenge.id == challenge_id, Challenge.status == status)
                .values(status=new_status.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()

            if result.rowcount:
                updated += 1
                logger.info(f"Challenge {challenge_id} '{name}': {status} -> {new_status.value} ({event.value})")
        except Exception as e:
            await session.rollback()
            logger.exception(f"Status sweep failed for challenge {challenge_id}: {e}")

    if updated:
        logger.info(f"Status sweep updated {updated} challenges")
    return {"success": True, "updated": updated}


async def main():
    async with get_session_maker()() as session:
        result = await update_challenge_statuses(session)
    logger.info(f"Challenge status sweep finished: {result}")


if __name__ == "__main__":
    asyncio.run(main())
