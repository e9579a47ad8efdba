"""
Tests for the challenge lifecycle engine: creation, joins, leaves and
participant updates
"""

from datetime import datetime, timedelta, UTC

import pytest
from sqlalchemy import select

from helpers import MT5_ACCOUNT
from src.core.enums import ChallengeEvent
from src.core.exceptions import (
    AlreadyParticipant,
    ChallengeFull,
    ChallengeHasParticipants,
    ChallengeNotJoinable,
    InvalidTransition,
    MissingAccountInfo,
    NotAParticipant,
    ValidationFailed,
)
from src.database.crud import (
    claim_challenge_seat,
    count_participants,
    get_challenge,
    get_leaderboard_entry,
)
from src.database.models import ChallengeParticipant, User
from src.services import challenge_service


def _challenge_data(**overrides):
    now = datetime.now(UTC)
    data = {
        "name": "Scalping Sprint",
        "type": "scalping",
        "account_size": 50000,
        "start_date": now + timedelta(days=1),
        "end_date": now + timedelta(days=8),
        "description": "One week of scalping",
    }
    data.update(overrides)
    return data


class TestCreateChallenge:
    @pytest.mark.asyncio
    async def test_defaults(self, db_session, admin_user):
        challenge = await challenge_service.create_challenge(db_session, _challenge_data(), admin_user.id)

        assert challenge.status == "draft"
        assert challenge.current_participants == 0
        assert challenge.max_participants == 100
        assert challenge.is_free is True
        assert challenge.challenge_mode == "target"
        assert challenge.created_by == admin_user.id

    @pytest.mark.asyncio
    async def test_missing_fields(self, db_session, admin_user):
        data = _challenge_data()
        del data["description"]
        del data["account_size"]

        with pytest.raises(ValidationFailed) as exc_info:
            await challenge_service.create_challenge(db_session, data, admin_user.id)
        assert set(exc_info.value.fields) == {"description", "account_size"}

    @pytest.mark.asyncio
    async def test_end_before_start(self, db_session, admin_user):
        now = datetime.now(UTC)
        data = _challenge_data(start_date=now + timedelta(days=5), end_date=now + timedelta(days=2))
        with pytest.raises(ValidationFailed):
            await challenge_service.create_challenge(db_session, data, admin_user.id)

    @pytest.mark.asyncio
    async def test_start_in_past(self, db_session, admin_user):
        data = _challenge_data(start_date=datetime.now(UTC) - timedelta(hours=1))
        with pytest.raises(ValidationFailed):
            await challenge_service.create_challenge(db_session, data, admin_user.id)

    @pytest.mark.asyncio
    async def test_cannot_create_active(self, db_session, admin_user):
        with pytest.raises(ValidationFailed):
            await challenge_service.create_challenge(db_session, _challenge_data(status="active"), admin_user.id)

    @pytest.mark.asyncio
    async def test_paid_challenge_with_prizes(self, db_session, admin_user):
        data = _challenge_data(price=99, prizes=[{"rank": 1, "amount": 1000, "isBulk": False}])
        challenge = await challenge_service.create_challenge(db_session, data, admin_user.id)

        assert challenge.is_free is False
        assert challenge.prizes[0]["kind"] == "single"


class TestStatusChanges:
    @pytest.mark.asyncio
    async def test_publish_then_cancel(self, db_session, make_challenge):
        challenge = await make_challenge(status="draft")

        challenge = await challenge_service.apply_event(db_session, challenge.id, ChallengeEvent.PUBLISH)
        assert challenge.status == "upcoming"

        challenge = await challenge_service.apply_event(db_session, challenge.id, ChallengeEvent.CANCEL)
        assert challenge.status == "cancelled"

    @pytest.mark.asyncio
    async def test_admin_status_edit_goes_through_fsm(self, db_session, make_challenge):
        challenge = await make_challenge(status="completed")
        with pytest.raises(InvalidTransition):
            await challenge_service.update_challenge(db_session, challenge.id, {"status": "active"})

    @pytest.mark.asyncio
    async def test_update_ignores_counters(self, db_session, make_challenge):
        challenge = await make_challenge(status="upcoming")
        updated = await challenge_service.update_challenge(
            db_session, challenge.id, {"name": "Renamed", "current_participants": 50}
        )
        assert updated.name == "Renamed"
        assert updated.current_participants == 0

    @pytest.mark.asyncio
    async def test_cannot_shrink_below_participants(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        for name in ("alice", "bob"):
            await challenge_service.join_challenge(db_session, challenge.id, await make_user(name), MT5_ACCOUNT)

        with pytest.raises(ValidationFailed):
            await challenge_service.update_challenge(db_session, challenge.id, {"max_participants": 1})


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_active_challenge(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(account_size=100000)
        user = await make_user("alice")

        challenge, message = await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        assert message == "Successfully joined challenge"
        assert challenge.current_participants == 1
        participant = challenge.participants[0]
        assert participant.status == "active"
        assert participant.current_balance == 100000
        assert participant.profit == 0
        assert participant.mt5_account_id == MT5_ACCOUNT["id"]

    @pytest.mark.asyncio
    async def test_join_creates_leaderboard_entry_and_stats(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        user = await make_user("alice")

        await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        entry = await get_leaderboard_entry(db_session, user.id)
        assert entry is not None
        assert entry.account_id == MT5_ACCOUNT["id"]

        await db_session.refresh(user)
        assert user.total_challenges == 1

    @pytest.mark.asyncio
    async def test_join_twice(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        user = await make_user("alice")
        await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        with pytest.raises(AlreadyParticipant):
            await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

    @pytest.mark.asyncio
    async def test_join_full(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(max_participants=1)
        await challenge_service.join_challenge(db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT)

        with pytest.raises(ChallengeFull) as exc_info:
            await challenge_service.join_challenge(db_session, challenge.id, await make_user("bob"), MT5_ACCOUNT)
        assert exc_info.value.message == "Challenge is full"

    @pytest.mark.asyncio
    async def test_seat_claim_is_conditional(self, db_session, make_challenge):
        challenge = await make_challenge(max_participants=2, current_participants=1)

        assert await claim_challenge_seat(db_session, challenge.id) is True
        assert await claim_challenge_seat(db_session, challenge.id) is False
        await db_session.commit()

        challenge = await get_challenge(db_session, challenge.id)
        assert challenge.current_participants == 2

    @pytest.mark.parametrize("status", ["completed", "cancelled", "draft"])
    @pytest.mark.asyncio
    async def test_join_closed_challenge(self, db_session, make_challenge, make_user, status):
        challenge = await make_challenge(status=status)
        with pytest.raises(ChallengeNotJoinable):
            await challenge_service.join_challenge(db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT)

    @pytest.mark.asyncio
    async def test_join_requires_full_mt5_account(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        user = await make_user("alice")

        with pytest.raises(MissingAccountInfo):
            await challenge_service.join_challenge(db_session, challenge.id, user, None)
        with pytest.raises(MissingAccountInfo):
            await challenge_service.join_challenge(db_session, challenge.id, user, {"id": "1", "server": "x"})

        challenge = await get_challenge(db_session, challenge.id)
        assert challenge.current_participants == 0

    @pytest.mark.asyncio
    async def test_pending_setup_completes_without_new_seat(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(max_participants=1)
        user = await make_user("alice")
        await challenge_service.add_pending_participant(db_session, challenge, user.id, payment_id=None)
        await db_session.commit()

        # Full, but the pending participant already holds the seat
        challenge, message = await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        assert "completed MT5 setup" in message
        assert challenge.current_participants == 1
        assert len(challenge.participants) == 1
        assert challenge.participants[0].status == "active"


class TestLeaveAndRemove:
    @pytest.mark.asyncio
    async def test_leave_releases_seat(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        user = await make_user("alice")
        await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        challenge = await challenge_service.leave_challenge(db_session, challenge.id, user.id)

        assert challenge.current_participants == 0
        assert challenge.participants == []
        assert await count_participants(db_session, challenge.id) == 0

    @pytest.mark.asyncio
    async def test_leave_when_not_participant(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        with pytest.raises(NotAParticipant):
            await challenge_service.leave_challenge(db_session, challenge.id, (await make_user("alice")).id)

    @pytest.mark.asyncio
    async def test_counter_matches_rows(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        users = [await make_user(name) for name in ("alice", "bob", "carol")]
        for user in users:
            await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)
        await challenge_service.leave_challenge(db_session, challenge.id, users[1].id)

        challenge = await get_challenge(db_session, challenge.id)
        assert challenge.current_participants == await count_participants(db_session, challenge.id) == 2

    @pytest.mark.asyncio
    async def test_admin_remove(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        challenge, _ = await challenge_service.join_challenge(
            db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT
        )

        challenge = await challenge_service.remove_participant(db_session, challenge.id, challenge.participants[0].id)
        assert challenge.current_participants == 0

    @pytest.mark.asyncio
    async def test_delete_guarded_by_participants(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        await challenge_service.join_challenge(db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT)

        with pytest.raises(ChallengeHasParticipants):
            await challenge_service.delete_challenge(db_session, challenge.id)

    @pytest.mark.asyncio
    async def test_delete_empty_challenge(self, db_session, make_challenge):
        challenge = await make_challenge(status="draft")
        await challenge_service.delete_challenge(db_session, challenge.id)
        assert await get_challenge(db_session, challenge.id) is None


class TestParticipantUpdate:
    @pytest.mark.asyncio
    async def test_profit_percent_recomputed(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(account_size=100000)
        user = await make_user("alice")
        challenge, _ = await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)
        participant_id = challenge.participants[0].id

        participant = await challenge_service.update_participant(
            db_session, challenge.id, participant_id, {"profit": 5000}
        )

        assert participant.profit_percent == pytest.approx(5.0)
        entry = await get_leaderboard_entry(db_session, user.id)
        assert entry.profit_percent == pytest.approx(5.0)

        await db_session.refresh(user)
        assert user.total_profit == pytest.approx(5000)

    @pytest.mark.asyncio
    async def test_explicit_percent_ignored_when_profit_changes(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(account_size=10000)
        challenge, _ = await challenge_service.join_challenge(
            db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT
        )

        participant = await challenge_service.update_participant(
            db_session,
            challenge.id,
            challenge.participants[0].id,
            {"current_balance": 20000, "profit": 1000, "profit_percent": 99},
        )
        assert participant.profit_percent == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_zero_balance_falls_back_to_account_size(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(account_size=20000)
        challenge, _ = await challenge_service.join_challenge(
            db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT
        )

        participant = await challenge_service.update_participant(
            db_session, challenge.id, challenge.participants[0].id, {"current_balance": 0, "profit": 1000}
        )
        assert participant.profit_percent == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_completed_status_feeds_win_rate(self, db_session, make_challenge, make_user):
        user = await make_user("alice")
        for name in ("One", "Two"):
            challenge = await make_challenge(name=name)
            challenge, _ = await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)
            if name == "One":
                await challenge_service.update_participant(
                    db_session, challenge.id, challenge.participants[0].id, {"status": "completed"}
                )

        result = await db_session.execute(select(User).where(User.id == user.id).execution_options(populate_existing=True))
        user = result.scalar_one()
        assert user.total_challenges == 2
        assert user.completed_challenges == 1
        assert user.win_rate == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_user_mt5_account_only_for_participants(db_session, make_challenge, make_user):
    challenge = await make_challenge()
    alice = await make_user("alice")
    await challenge_service.join_challenge(db_session, challenge.id, alice, MT5_ACCOUNT)

    account = await challenge_service.get_user_mt5_account(db_session, challenge.id, alice.id)
    assert account["mt5Account"]["password"] == MT5_ACCOUNT["password"]

    with pytest.raises(NotAParticipant):
        await challenge_service.get_user_mt5_account(db_session, challenge.id, (await make_user("bob")).id)

    rows = (await db_session.execute(select(ChallengeParticipant))).scalars().all()
    assert len(rows) == 1
