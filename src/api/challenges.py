"""
Challenges API

Public listing and detail never carry participant MT5 data. Admin views
get it unmasked, a participant's own views get the password masked.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import (
    ChallengeCreateRequest,
    ChallengeUpdateRequest,
    JoinChallengeRequest,
    ParticipantUpdateRequest,
)
from src.api.serializers import (
    challenge_to_dict,
    envelope,
    participant_to_dict,
    participation_to_dict,
)
from src.core.enums import ChallengeEvent
from src.database.engine import get_session
from src.database.models import User
from src.services import challenge_service
from src.services.leaderboard_service import LeaderboardService
from src.tasks.challenge_status import update_challenge_statuses
from src.tasks.scheduler import get_scheduler

router = APIRouter(prefix="/challenges", tags=["challenges"])


# ===========================
# PUBLIC / USER
# ===========================


@router.get("")
async def list_challenges(
    status: Optional[str] = Query("active", description="Comma separated statuses or 'all'"),
    type: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenges = await challenge_service.get_challenges(session, status=status, challenge_type=type)
    return envelope([challenge_to_dict(c) for c in challenges], count=len(challenges))


@router.get("/my-challenges")
async def my_challenges(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    participations = await challenge_service.get_user_challenges(session, user.id)
    return envelope([participation_to_dict(p) for p in participations], count=len(participations))


# ===========================
# ADMIN (static paths before /{challenge_id})
# ===========================


@router.get("/admin/mine")
async def admin_challenges(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Challenges created by the calling admin, any status"""
    challenges = [
        c for c in await challenge_service.get_challenges(session, status="all") if c.created_by == admin.id
    ]
    return envelope([challenge_to_dict(c, mt5="full") for c in challenges], count=len(challenges))


@router.get("/admin/mt5-accounts")
async def all_mt5_accounts(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    accounts = await challenge_service.get_all_mt5_accounts(session)
    return envelope(accounts, count=len(accounts))


@router.post("/admin/update-statuses")
async def run_status_sweep(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    result = await get_scheduler().guard.run(
        "challenge_status_sweep", lambda: update_challenge_statuses(session)
    )
    return envelope(result, message="Challenge statuses updated")


@router.post("/admin/sync-leaderboard")
async def sync_leaderboard(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    synced = await LeaderboardService.sync_all_participants(session)
    return envelope({"synced": synced}, message=f"Synced {synced} participants to leaderboard")


@router.post("", status_code=201)
async def create_challenge(
    request: ChallengeCreateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.create_challenge(session, request.fields_set(), admin.id)
    return envelope(challenge_to_dict(challenge), message="Challenge created successfully")


# ===========================
# SINGLE CHALLENGE
# ===========================


@router.get("/{challenge_id}")
async def get_challenge(
    challenge_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.get_challenge_or_404(session, challenge_id)
    return envelope(challenge_to_dict(challenge))


@router.put("/{challenge_id}")
async def update_challenge(
    challenge_id: int,
    request: ChallengeUpdateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.update_challenge(session, challenge_id, request.fields_set())
    return envelope(challenge_to_dict(challenge, mt5="full"), message="Challenge updated successfully")


@router.delete("/{challenge_id}")
async def delete_challenge(
    challenge_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await challenge_service.delete_challenge(session, challenge_id)
    return envelope(message="Challenge deleted successfully")


@router.post("/{challenge_id}/publish")
async def publish_challenge(
    challenge_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.apply_event(session, challenge_id, ChallengeEvent.PUBLISH)
    return envelope(challenge_to_dict(challenge, include_participants=False), message="Challenge published")


@router.post("/{challenge_id}/cancel")
async def cancel_challenge(
    challenge_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.apply_event(session, challenge_id, ChallengeEvent.CANCEL)
    return envelope(challenge_to_dict(challenge, include_participants=False), message="Challenge cancelled")


# ===========================
# PARTICIPATION
# ===========================


@router.post("/{challenge_id}/join")
async def join_challenge(
    challenge_id: int,
    request: JoinChallengeRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Body:
        {"mt5Account": {"id": "...", "password": "...", "server": "..."}}
    """
    mt5_account = request.mt5_account.model_dump() if request.mt5_account else None
    challenge, message = await challenge_service.join_challenge(session, challenge_id, user, mt5_account)
    return envelope(challenge_to_dict(challenge), message=message)


@router.post("/{challenge_id}/leave")
async def leave_challenge(
    challenge_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.leave_challenge(session, challenge_id, user.id)
    return envelope(challenge_to_dict(challenge), message="Successfully left challenge")


@router.get("/{challenge_id}/mt5-account")
async def my_mt5_account(
    challenge_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await challenge_service.get_user_mt5_account(session, challenge_id, user.id))


@router.get("/{challenge_id}/participants")
async def list_participants(
    challenge_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.get_challenge_or_404(session, challenge_id)
    participants = [participant_to_dict(p, mt5="full") for p in challenge.participants]
    return envelope(participants, count=len(participants))


@router.put("/{challenge_id}/participants/{participant_id}")
async def update_participant(
    challenge_id: int,
    participant_id: int,
    request: ParticipantUpdateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    participant = await challenge_service.update_participant(
        session, challenge_id, participant_id, request.fields_set()
    )
    return envelope(participant_to_dict(participant, mt5="full"), message="Participant updated successfully")


@router.delete("/{challenge_id}/participants/{participant_id}")
async def remove_participant(
    challenge_id: int,
    participant_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    challenge = await challenge_service.remove_participant(session, challenge_id, participant_id)
    return envelope(challenge_to_dict(challenge, mt5="full"), message="Participant removed successfully")
