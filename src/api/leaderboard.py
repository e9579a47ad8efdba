"""
Leaderboard API

Global leaderboard (MT5-polled entries) and per-challenge leaderboards
computed from participant rows.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import LeaderboardEntryUpdateRequest
from src.api.serializers import envelope
from src.database.engine import get_session
from src.database.models import User
from src.services.leaderboard_service import LeaderboardService
from src.tasks.scheduler import get_scheduler

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("")
async def global_leaderboard(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await LeaderboardService.get_global_leaderboard(session, skip=skip, limit=limit))


@router.get("/rank")
async def my_rank(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await LeaderboardService.get_user_rank(session, user.id))


@router.get("/stats")
async def global_stats(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    return envelope(await LeaderboardService.get_global_stats(session))


@router.get("/challenge/{challenge_id}")
async def challenge_leaderboard(
    challenge_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(
        await LeaderboardService.get_challenge_leaderboard(session, challenge_id, skip=skip, limit=limit)
    )


@router.get("/challenge/{challenge_id}/stats")
async def challenge_stats(
    challenge_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await LeaderboardService.get_challenge_stats(session, challenge_id))


# ===========================
# ADMIN
# ===========================


@router.post("/update-mt5")
async def update_mt5(admin: User = Depends(require_admin)) -> Dict[str, Any]:
    """Run the MT5 poll now instead of waiting for the hourly job"""
    result = await get_scheduler().trigger_mt5_poll_now()
    return envelope(result, message="MT5 data update finished")


@router.get("/admin/entries")
async def list_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    sort_by: str = Query("profitPercent", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(
        await LeaderboardService.list_entries(
            session, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
        )
    )


@router.put("/admin/entries/{entry_id}")
async def update_entry(
    entry_id: int,
    request: LeaderboardEntryUpdateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    updates = request.model_dump(by_alias=True, exclude_unset=True)
    row = await LeaderboardService.update_entry(session, entry_id, updates)
    return envelope(row, message="Leaderboard entry updated")


@router.delete("/admin/entries/{entry_id}")
async def delete_entry(
    entry_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await LeaderboardService.delete_entry(session, entry_id)
    return envelope(message="Leaderboard entry deleted")
