"""
Challenge lifecycle engine

Creation and admin edits, participant admission and removal, per-participant
performance updates. Status changes go through src.core.challenge_fsm.
"""

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import DEFAULT_MAX_PARTICIPANTS
from src.core import challenge_fsm
from src.core.enums import (
    ChallengeEvent,
    ChallengeMode,
    ChallengeStatus,
    ChallengeType,
    ParticipantStatus,
)
from src.core.exceptions import (
    AlreadyParticipant,
    ChallengeFull,
    ChallengeHasParticipants,
    ChallengeNotJoinable,
    MissingAccountInfo,
    NotAParticipant,
    NotFound,
    ValidationFailed,
)
from src.core.prizes import dump_prizes, parse_prizes
from src.database.crud import (
    claim_challenge_seat,
    decrement_challenge_participants,
    get_challenge,
    get_participant,
    get_user_participations,
    list_challenges,
)
from src.database.models import Challenge, ChallengeParticipant, User
from src.services.leaderboard_service import LeaderboardService, participant_profit_percent
from src.services.stats_service import recompute_user_trading_stats
from src.utils.dates import as_utc


REQUIRED_FIELDS = ("name", "type", "account_size", "start_date", "end_date", "description")

# Admin edits may touch these; counters, owner and roster are off limits
UPDATABLE_FIELDS = {
    "name",
    "type",
    "account_size",
    "price",
    "prizes",
    "max_participants",
    "start_date",
    "end_date",
    "status",
    "challenge_mode",
    "description",
    "rules",
    "requirements",
}

INITIAL_STATUSES = (ChallengeStatus.DRAFT, ChallengeStatus.UPCOMING)


def _check_mt5_account(mt5_account: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Return {id, password, server} or raise MissingAccountInfo"""
    if not mt5_account:
        raise MissingAccountInfo()

    account = {
        "id": str(mt5_account.get("id") or "").strip(),
        "password": str(mt5_account.get("password") or ""),
        "server": str(mt5_account.get("server") or "").strip(),
    }
    if not all(account.values()):
        raise MissingAccountInfo()
    return account


def _check_dates(start_date: datetime, end_date: datetime) -> None:
    if as_utc(start_date) >= as_utc(end_date):
        raise ValidationFailed("End date must be after start date", fields=["end_date"])


async def _load(session: AsyncSession, challenge_id: int) -> Challenge:
    challenge = await get_challenge(session, challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")
    return challenge


async def _after_participant_change(
    session: AsyncSession, user_id: int, participant: Optional[ChallengeParticipant]
) -> None:
    """Best-effort stats recompute and leaderboard refresh"""
    await recompute_user_trading_stats(session, user_id)
    if participant is not None:
        await LeaderboardService.upsert_from_participant(session, user_id, participant)


# ===========================
# CHALLENGE CRUD
# ===========================


async def create_challenge(
    session: AsyncSession, data: Dict[str, Any], created_by: int
) -> Challenge:
    """
    Create a challenge

    Args:
        session: Database session
        data: Challenge fields (snake_case)
        created_by: Admin user ID

    Returns:
        Created Challenge

    Raises:
        ValidationFailed: missing fields, bad dates, bad prize table or status
    """
    missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, "")]
    if missing:
        raise ValidationFailed(fields=missing)

    start_date = as_utc(data["start_date"])
    end_date = as_utc(data["end_date"])
    _check_dates(start_date, end_date)
    if start_date <= datetime.now(UTC):
        raise ValidationFailed("Start date must be in the future", fields=["start_date"])

    status = ChallengeStatus(data.get("status") or ChallengeStatus.DRAFT)
    if status not in INITIAL_STATUSES:
        raise ValidationFailed(
            "New challenges must start as draft or upcoming", fields=["status"]
        )

    price = float(data.get("price") or 0)
    prizes = dump_prizes(parse_prizes(data.get("prizes")))

    challenge = Challenge(
        name=data["name"],
        type=ChallengeType(data["type"]).value,
        account_size=float(data["account_size"]),
        price=price,
        is_free=price == 0,
        prizes=prizes,
        max_participants=data.get("max_participants") or DEFAULT_MAX_PARTICIPANTS,
        current_participants=0,
        start_date=start_date,
        end_date=end_date,
        status=status.value,
        challenge_mode=ChallengeMode(data.get("challenge_mode") or ChallengeMode.TARGET).value,
        description=data["description"],
        rules=list(data.get("rules") or []),
        requirements=data.get("requirements")
        or {"minBalance": 0, "maxDrawdown": 10, "targetProfit": 10},
        created_by=created_by,
        participants=[],
    )
    session.add(challenge)
    await session.commit()

    logger.info(f"Challenge created: {challenge.id} '{challenge.name}' ({challenge.status}) by {created_by}")
    return await _load(session, challenge.id)


async def update_challenge(
    session: AsyncSession, challenge_id: int, updates: Dict[str, Any]
) -> Challenge:
    """
    Partial admin update

    A status value is accepted only when one FSM event reaches it from the
    current state.

    Raises:
        NotFound, ValidationFailed, InvalidTransition
    """
    challenge = await _load(session, challenge_id)
    updates = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}

    if "status" in updates and updates["status"] != challenge.status:
        event = challenge_fsm.event_for_target(challenge.status, updates["status"])
        new_status = challenge_fsm.transition(challenge.status, event)
        logger.info(
            f"Challenge {challenge.id} status: {challenge.status} -> {new_status.value} ({event.value}, admin)"
        )
        challenge.status = new_status.value
    updates.pop("status", None)

    if "prizes" in updates:
        updates["prizes"] = dump_prizes(parse_prizes(updates["prizes"]))
    if "type" in updates:
        updates["type"] = ChallengeType(updates["type"]).value
    if "challenge_mode" in updates:
        updates["challenge_mode"] = ChallengeMode(updates["challenge_mode"]).value
    if "max_participants" in updates and updates["max_participants"] < challenge.current_participants:
        raise ValidationFailed(
            "maxParticipants cannot be lower than the current participant count",
            fields=["max_participants"],
        )

    start_date = as_utc(updates.get("start_date", challenge.start_date))
    end_date = as_utc(updates.get("end_date", challenge.end_date))
    if "start_date" in updates or "end_date" in updates:
        _check_dates(start_date, end_date)

    for key, value in updates.items():
        setattr(challenge, key, value)
    if "price" in updates:
        challenge.is_free = float(challenge.price or 0) == 0

    await session.commit()
    return await _load(session, challenge_id)


async def apply_event(
    session: AsyncSession, challenge_id: int, event: ChallengeEvent
) -> Challenge:
    """
    Fire a lifecycle event (publish / cancel from admin actions)

    Raises:
        NotFound, InvalidTransition
    """
    challenge = await _load(session, challenge_id)
    old_status = challenge.status
    challenge.status = challenge_fsm.transition(old_status, event).value
    await session.commit()

    logger.info(f"Challenge {challenge_id} status: {old_status} -> {challenge.status} ({event.value})")
    return challenge


async def delete_challenge(session: AsyncSession, challenge_id: int) -> None:
    """
    Delete a challenge without participants

    Raises:
        NotFound, ChallengeHasParticipants
    """
    challenge = await _load(session, challenge_id)
    if challenge.current_participants > 0:
        raise ChallengeHasParticipants()

    await session.delete(challenge)
    await session.commit()
    logger.info(f"Challenge {challenge_id} deleted")


async def get_challenges(
    session: AsyncSession, status: Optional[str] = "active", challenge_type: Optional[str] = None
) -> List[Challenge]:
    """
    Public listing; status may be a comma separated list or 'all'
    """
    statuses = None
    if status and status != "all":
        statuses = [item.strip() for item in status.split(",") if item.strip()]
    return await list_challenges(session, statuses=statuses, challenge_type=challenge_type)


async def get_challenge_or_404(session: AsyncSession, challenge_id: int) -> Challenge:
    return await _load(session, challenge_id)


# ===========================
# PARTICIPANTS
# ===========================


async def join_challenge(
    session: AsyncSession,
    challenge_id: int,
    user: User,
    mt5_account: Optional[Dict[str, Any]],
) -> Tuple[Challenge, str]:
    """
    Join a challenge with an MT5 account

    A participant left in pending_setup by payment completion is switched
    to active on the same row instead of taking a second seat.

    Returns:
        Tuple of (challenge, message)

    Raises:
        NotFound, ChallengeNotJoinable, ChallengeFull, AlreadyParticipant,
        MissingAccountInfo
    """
    challenge = await _load(session, challenge_id)

    if challenge.status == ChallengeStatus.COMPLETED.value:
        raise ChallengeNotJoinable("This challenge has already ended")
    if challenge.status == ChallengeStatus.CANCELLED.value:
        raise ChallengeNotJoinable("This challenge has been cancelled")
    if ChallengeStatus(challenge.status) not in ChallengeStatus.joinable():
        raise ChallengeNotJoinable()

    existing = challenge.find_participant(user.id)

    if existing and existing.status == ParticipantStatus.PENDING_SETUP.value:
        account = _check_mt5_account(mt5_account)
        existing.mt5_account_id = account["id"]
        existing.mt5_password = account["password"]
        existing.mt5_server = account["server"]
        existing.status = ParticipantStatus.ACTIVE.value
        existing.joined_at = datetime.now(UTC)
        if not existing.current_balance:
            existing.current_balance = challenge.account_size
        await session.commit()

        logger.info(f"User {user.id} completed MT5 setup for challenge {challenge_id}")
        await _after_participant_change(session, user.id, existing)
        return await _load(session, challenge_id), "Successfully completed MT5 setup and joined challenge"

    if challenge.is_full:
        raise ChallengeFull()
    if existing:
        raise AlreadyParticipant()

    account = _check_mt5_account(mt5_account)

    if not await claim_challenge_seat(session, challenge_id):
        await session.rollback()
        raise ChallengeFull()

    participant = ChallengeParticipant(
        challenge_id=challenge_id,
        user_id=user.id,
        status=ParticipantStatus.ACTIVE.value,
        joined_at=datetime.now(UTC),
        mt5_account_id=account["id"],
        mt5_password=account["password"],
        mt5_server=account["server"],
        current_balance=challenge.account_size,
        profit=0.0,
        profit_percent=0.0,
    )
    participant.user = user
    session.add(participant)
    await session.commit()

    logger.info(f"User {user.id} joined challenge {challenge_id}")
    await _after_participant_change(session, user.id, participant)
    return await _load(session, challenge_id), "Successfully joined challenge"


async def add_pending_participant(
    session: AsyncSession, challenge: Challenge, user_id: int, payment_id: int
) -> ChallengeParticipant:
    """
    Seat a paying user before their MT5 account is known. Caller commits.

    Raises:
        AlreadyParticipant, ChallengeFull
    """
    if challenge.find_participant(user_id):
        raise AlreadyParticipant()
    if not await claim_challenge_seat(session, challenge.id):
        raise ChallengeFull()

    participant = ChallengeParticipant(
        challenge_id=challenge.id,
        user_id=user_id,
        payment_id=payment_id,
        status=ParticipantStatus.PENDING_SETUP.value,
        joined_at=datetime.now(UTC),
        current_balance=challenge.account_size,
        profit=0.0,
        profit_percent=0.0,
    )
    session.add(participant)
    return participant


async def leave_challenge(session: AsyncSession, challenge_id: int, user_id: int) -> Challenge:
    """
    Remove the caller from an open challenge

    Raises:
        NotFound, ChallengeNotJoinable, NotAParticipant
    """
    challenge = await _load(session, challenge_id)
    if ChallengeStatus(challenge.status) in ChallengeStatus.terminal():
        raise ChallengeNotJoinable(f"Cannot leave a {challenge.status} challenge")

    participant = challenge.find_participant(user_id)
    if not participant:
        raise NotAParticipant()

    await _remove_participant(session, challenge, participant)
    logger.info(f"User {user_id} left challenge {challenge_id}")
    return await _load(session, challenge_id)


async def remove_participant(
    session: AsyncSession, challenge_id: int, participant_id: int
) -> Challenge:
    """Admin removal of a participant row"""
    challenge = await _load(session, challenge_id)
    participant = next((p for p in challenge.participants if p.id == participant_id), None)
    if not participant:
        raise NotFound("Participant not found")

    await _remove_participant(session, challenge, participant)
    logger.info(f"Participant {participant_id} removed from challenge {challenge_id} by admin")
    return await _load(session, challenge_id)


async def _remove_participant(
    session: AsyncSession, challenge: Challenge, participant: ChallengeParticipant
) -> None:
    user_id = participant.user_id
    challenge.participants.remove(participant)
    await decrement_challenge_participants(session, challenge.id)
    await session.commit()
    await recompute_user_trading_stats(session, user_id)


async def update_participant(
    session: AsyncSession,
    challenge_id: int,
    participant_id: int,
    updates: Dict[str, Any],
) -> ChallengeParticipant:
    """
    Admin update of a participant's balance, profit, status or MT5 account

    profit_percent is recomputed as profit / (current_balance or account_size) * 100
    unless an explicit value is supplied without a balance or profit change.

    Raises:
        NotFound, ValidationFailed
    """
    challenge = await _load(session, challenge_id)
    participant = next((p for p in challenge.participants if p.id == participant_id), None)
    if not participant:
        raise NotFound("Participant not found")

    if "current_balance" in updates and updates["current_balance"] is not None:
        participant.current_balance = float(updates["current_balance"])
    if "profit" in updates and updates["profit"] is not None:
        participant.profit = float(updates["profit"])
    if updates.get("status"):
        participant.status = ParticipantStatus(updates["status"]).value
    if "rank" in updates:
        participant.rank = updates["rank"]
    if updates.get("mt5_account"):
        account = updates["mt5_account"]
        participant.mt5_account_id = account.get("id") or participant.mt5_account_id
        participant.mt5_password = account.get("password") or participant.mt5_password
        participant.mt5_server = account.get("server") or participant.mt5_server

    balance_changed = "current_balance" in updates or "profit" in updates
    if balance_changed or updates.get("profit_percent") is None:
        participant.profit_percent = participant_profit_percent(
            participant.profit, participant.current_balance or challenge.account_size
        )
    else:
        participant.profit_percent = float(updates["profit_percent"])

    await session.commit()
    logger.info(
        f"Participant {participant_id} of challenge {challenge_id} updated: "
        f"balance={participant.current_balance}, profit={participant.profit}, "
        f"profit_percent={participant.profit_percent:.2f}"
    )

    await _after_participant_change(session, participant.user_id, participant)
    return participant


# ===========================
# VIEWS
# ===========================


async def get_user_challenges(session: AsyncSession, user_id: int) -> List[ChallengeParticipant]:
    """Participations of a user with their challenges, newest join first"""
    return await get_user_participations(session, user_id)


async def get_user_mt5_account(
    session: AsyncSession, challenge_id: int, user_id: int
) -> Dict[str, Any]:
    """
    The caller's own MT5 credentials for a challenge

    Raises:
        NotFound, NotAParticipant
    """
    await _load(session, challenge_id)
    participant = await get_participant(session, challenge_id, user_id)
    if not participant:
        raise NotAParticipant()

    return {
        "challengeId": challenge_id,
        "status": participant.status,
        "mt5Account": {
            "id": participant.mt5_account_id,
            "password": participant.mt5_password,
            "server": participant.mt5_server,
        },
    }


async def get_all_mt5_accounts(session: AsyncSession) -> List[Dict[str, Any]]:
    """Every participant MT5 account across all challenges (admin only, unmasked)"""
    accounts = []
    for challenge in await list_challenges(session):
        for participant in challenge.participants:
            if not participant.has_mt5_account:
                continue
            user = participant.user
            accounts.append(
                {
                    "challengeId": challenge.id,
                    "challengeName": challenge.name,
                    "participantId": participant.id,
                    "userId": participant.user_id,
                    "username": user.username if user else None,
                    "email": user.email if user else None,
                    "status": participant.status,
                    "mt5Account": {
                        "id": participant.mt5_account_id,
                        "password": participant.mt5_password,
                        "server": participant.mt5_server,
                    },
                }
            )
    return accounts
