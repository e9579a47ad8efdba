"""
Job endpoints

Lets an external cron (X-Cron-Secret) or an admin run the periodic jobs
on demand. Runs share the scheduler's single-flight guard, so a manual
call never overlaps the scheduled run of the same job.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import require_admin, require_cron_or_admin
from src.api.serializers import envelope
from src.database.crud import delete_expired_push_subscriptions
from src.database.engine import get_session
from src.database.models import User
from src.services.subscription_service import expire_subscriptions
from src.tasks.challenge_status import update_challenge_statuses
from src.tasks.scheduler import get_scheduler

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/challenge-statuses")
async def challenge_statuses(
    caller: Optional[User] = Depends(require_cron_or_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    result = await get_scheduler().guard.run(
        "challenge_status_sweep", lambda: update_challenge_statuses(session)
    )
    return envelope(result)


@router.post("/mt5-sync")
async def mt5_sync(caller: Optional[User] = Depends(require_cron_or_admin)) -> Dict[str, Any]:
    return envelope(await get_scheduler().trigger_mt5_poll_now())


@router.post("/expire-subscriptions")
async def expire(
    caller: Optional[User] = Depends(require_cron_or_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    async def run():
        return {"expired": await expire_subscriptions(session)}

    return envelope(await get_scheduler().guard.run("subscription_expiry", run))


@router.post("/push-cleanup")
async def push_cleanup(
    caller: Optional[User] = Depends(require_cron_or_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    async def run():
        return {"deleted": await delete_expired_push_subscriptions(session)}

    return envelope(await get_scheduler().guard.run("push_subscription_cleanup", run))


@router.get("/status")
async def status(admin: User = Depends(require_admin)) -> Dict[str, Any]:
    return envelope(get_scheduler().status())
