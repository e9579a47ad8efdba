"""
Tests for the global and challenge leaderboards
"""

import pytest

from helpers import MT5_ACCOUNT
from src.core.exceptions import NotFound, ValidationFailed
from src.database.models import LeaderboardEntry
from src.services import challenge_service
from src.services.leaderboard_service import (
    LeaderboardService,
    participant_profit_percent,
    snapshot_profit_percent,
)


async def _entry(db_session, user, profit_percent, **fields):
    entry = LeaderboardEntry(
        user_id=user.id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        profit_percent=profit_percent,
        **fields,
    )
    db_session.add(entry)
    await db_session.commit()
    return entry


@pytest.mark.parametrize(
    "profit,balance,expected",
    [(5000, 100000, 5.0), (-250, 10000, -2.5), (100, 0, 0.0), (None, 1000, 0.0), (100, None, 0.0)],
)
def test_participant_profit_percent(profit, balance, expected):
    assert participant_profit_percent(profit, balance) == pytest.approx(expected)


def test_snapshot_profit_percent():
    assert snapshot_profit_percent({"profit_percent": 3.5, "balance": 1, "equity": 100}) == 3.5
    assert snapshot_profit_percent({"balance": 10000, "equity": 10500}) == pytest.approx(5.0)
    assert snapshot_profit_percent({"balance": 0, "equity": 10500}) == 0.0


class TestGlobalLeaderboard:
    @pytest.mark.asyncio
    async def test_ordering_and_ranks(self, db_session, make_user):
        for name, percent in (("alice", 2.0), ("bob", 9.5), ("carol", -1.0)):
            await _entry(db_session, await make_user(name), percent)

        page = await LeaderboardService.get_global_leaderboard(db_session)

        assert [row["username"] for row in page["leaderboard"]] == ["bob", "alice", "carol"]
        assert [row["rank"] for row in page["leaderboard"]] == [1, 2, 3]
        assert page["total"] == 3

    @pytest.mark.asyncio
    async def test_pagination_ranks_continue(self, db_session, make_user):
        for index in range(5):
            await _entry(db_session, await make_user(f"user{index}"), float(index))

        page = await LeaderboardService.get_global_leaderboard(db_session, skip=2, limit=2)

        assert [row["rank"] for row in page["leaderboard"]] == [3, 4]
        assert [row["profitPercent"] for row in page["leaderboard"]] == [2.0, 1.0]
        assert page["count"] == 2
        assert page["total"] == 5

    @pytest.mark.asyncio
    async def test_user_rank(self, db_session, make_user):
        users = [await make_user(name) for name in ("alice", "bob", "carol", "dave")]
        for user, percent in zip(users, (10.0, 5.0, 5.0, 1.0)):
            await _entry(db_session, user, percent)

        top = await LeaderboardService.get_user_rank(db_session, users[0].id)
        tied = await LeaderboardService.get_user_rank(db_session, users[2].id)
        last = await LeaderboardService.get_user_rank(db_session, users[3].id)

        assert top["rank"] == 1
        assert top["percentile"] == 100
        assert tied["rank"] == 2
        assert last["rank"] == 4
        assert last["totalUsers"] == 4

    @pytest.mark.asyncio
    async def test_user_rank_without_entry(self, db_session, make_user):
        with pytest.raises(NotFound):
            await LeaderboardService.get_user_rank(db_session, (await make_user("ghost")).id)

    @pytest.mark.asyncio
    async def test_global_stats(self, db_session, make_user):
        assert await LeaderboardService.get_global_stats(db_session) == {"totalUsers": 0, "topPerformer": None}

        await _entry(db_session, await make_user("alice"), 7.0)
        stats = await LeaderboardService.get_global_stats(db_session)
        assert stats["topPerformer"] == {"username": "alice", "profitPercent": 7.0}


class TestChallengeLeaderboard:
    @pytest.mark.asyncio
    async def test_computed_from_participants(self, db_session, make_challenge, make_user):
        challenge = await make_challenge(account_size=10000)
        users = [await make_user(name) for name in ("alice", "bob", "carol")]
        for user in users:
            challenge, _ = await challenge_service.join_challenge(db_session, challenge.id, user, MT5_ACCOUNT)

        for participant, profit in zip(list(challenge.participants), (100, 900, 400)):
            await challenge_service.update_participant(db_session, challenge.id, participant.id, {"profit": profit})

        board = await LeaderboardService.get_challenge_leaderboard(db_session, challenge.id, skip=1, limit=1)

        assert board["total"] == 3
        assert board["count"] == 1
        row = board["leaderboard"][0]
        assert row["username"] == "carol"
        assert row["rank"] == 2
        assert row["profitPercent"] == pytest.approx(4.0)
        assert "mt5Account" not in row
        assert "password" not in str(row)

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, db_session):
        with pytest.raises(NotFound):
            await LeaderboardService.get_challenge_leaderboard(db_session, 9999)

    @pytest.mark.asyncio
    async def test_challenge_stats(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        await challenge_service.join_challenge(db_session, challenge.id, await make_user("alice"), MT5_ACCOUNT)

        stats = await LeaderboardService.get_challenge_stats(db_session, challenge.id)
        assert stats["totalParticipants"] == 1
        assert stats["topPerformer"]["username"] == "alice"


class TestUpserts:
    @pytest.mark.asyncio
    async def test_upsert_from_mt5_creates_then_updates(self, db_session, make_user):
        user = await make_user("alice", mt5_account_id="777", mt5_password="pw", mt5_server="Demo")
        snapshot = {
            "balance": 10000,
            "equity": 10250,
            "profit": 250,
            "margin": 100,
            "free_margin": 10150,
            "margin_level": 10250,
            "positions": [{"symbol": "EURUSD", "volume": 0.1, "entry_price": 1.08, "profit": 250, "ticket": 1}],
        }

        entry = await LeaderboardService.upsert_from_mt5(db_session, user, snapshot)
        assert entry.account_id == "777"
        assert entry.profit_percent == pytest.approx(2.5)
        assert entry.positions == [{"symbol": "EURUSD", "volume": 0.1, "entry_price": 1.08, "profit": 250}]

        entry = await LeaderboardService.upsert_from_mt5(db_session, user, {**snapshot, "profit_percent": 4.0})
        assert entry.profit_percent == 4.0

        page = await LeaderboardService.get_global_leaderboard(db_session)
        assert page["total"] == 1

    @pytest.mark.asyncio
    async def test_sync_all_participants(self, db_session, make_challenge, make_user):
        challenge = await make_challenge()
        for name in ("alice", "bob"):
            await challenge_service.join_challenge(db_session, challenge.id, await make_user(name), MT5_ACCOUNT)

        assert await LeaderboardService.sync_all_participants(db_session) == 2


class TestAdminEntries:
    @pytest.mark.asyncio
    async def test_list_sorted(self, db_session, make_user):
        for name, balance in (("alice", 5000.0), ("bob", 20000.0)):
            await _entry(db_session, await make_user(name), 1.0, balance=balance)

        result = await LeaderboardService.list_entries(db_session, sort_by="balance", sort_order="asc")

        assert [row["username"] for row in result["entries"]] == ["alice", "bob"]
        assert result["pagination"] == {"current": 1, "pages": 1, "total": 2, "limit": 50}

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_sort(self, db_session):
        with pytest.raises(ValidationFailed):
            await LeaderboardService.list_entries(db_session, sort_by="password")

    @pytest.mark.asyncio
    async def test_update_ignores_identity_fields(self, db_session, make_user):
        user = await make_user("alice")
        entry = await _entry(db_session, user, 1.0)

        row = await LeaderboardService.update_entry(db_session, entry.id, {"profitPercent": 12.5, "userId": 999})

        assert row["profitPercent"] == 12.5
        assert row["userId"] == user.id

    @pytest.mark.asyncio
    async def test_delete(self, db_session, make_user):
        entry = await _entry(db_session, await make_user("alice"), 1.0)
        await LeaderboardService.delete_entry(db_session, entry.id)

        with pytest.raises(NotFound):
            await LeaderboardService.delete_entry(db_session, entry.id)
