"""
MT5 leaderboard sync

Polls the MT5 account service for every user with stored credentials and
refreshes their global leaderboard entries. One user's failure never
affects another.

Run: python -m src.tasks.mt5_sync

Crontab (hourly):
    0 * * * * cd /path && .venv/bin/python -m src.tasks.mt5_sync
"""

import asyncio
from typing import Callable, Dict, Optional

from loguru import logger

from src.database.crud import get_users_with_mt5_credentials
from src.database.engine import get_session_maker
from src.services.mt5_service import MT5Service, get_mt5_service


async def update_all_users_mt5_data(
    session_maker: Optional[Callable] = None,
    service: Optional[MT5Service] = None,
) -> Dict[str, int]:
    """
    Returns:
        {"successful": n, "failed": n, "total": n}
    """
    session_maker = session_maker or get_session_maker()
    service = service or get_mt5_service()

    async with session_maker() as session:
        users = await get_users_with_mt5_credentials(session)

    if not users:
        logger.info("MT5 sync: no users with MT5 credentials")
        return {"successful": 0, "failed": 0, "total": 0}

    logger.info(f"MT5 sync: polling {len(users)} users")
    summary = await service.process_all_users(session_maker, users)

    logger.info(
        f"MT5 sync complete: {summary['successful']} successful, "
        f"{summary['failed']} failed, {summary['total']} total"
    )
    return summary


if __name__ == "__main__":
    asyncio.run(update_all_users_mt5_data())
