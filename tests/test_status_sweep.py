"""
Tests for the scheduled challenge status sweep
"""

from datetime import datetime, timedelta, UTC

import pytest

from src.database.crud import get_challenge
from src.tasks.challenge_status import update_challenge_statuses


@pytest.mark.asyncio
async def test_sweep_moves_challenges_by_time(db_session, make_challenge):
    now = datetime.now(UTC)
    starting = await make_challenge(
        name="Starting", status="upcoming", start_date=now - timedelta(minutes=5), end_date=now + timedelta(days=7)
    )
    ending = await make_challenge(
        name="Ending", status="active", start_date=now - timedelta(days=7), end_date=now - timedelta(minutes=1)
    )
    waiting = await make_challenge(
        name="Waiting", status="upcoming", start_date=now + timedelta(days=1), end_date=now + timedelta(days=7)
    )
    draft = await make_challenge(
        name="Draft", status="draft", start_date=now - timedelta(days=7), end_date=now - timedelta(days=1)
    )

    result = await update_challenge_statuses(db_session)

    assert result == {"success": True, "updated": 2}
    assert (await get_challenge(db_session, starting.id)).status == "active"
    assert (await get_challenge(db_session, ending.id)).status == "completed"
    assert (await get_challenge(db_session, waiting.id)).status == "upcoming"
    assert (await get_challenge(db_session, draft.id)).status == "draft"


@pytest.mark.asyncio
async def test_upcoming_past_end_goes_straight_to_completed(db_session, make_challenge):
    now = datetime.now(UTC)
    challenge = await make_challenge(
        status="upcoming", start_date=now - timedelta(days=7), end_date=now - timedelta(days=1)
    )

    await update_challenge_statuses(db_session)

    assert (await get_challenge(db_session, challenge.id)).status == "completed"


@pytest.mark.asyncio
async def test_sweep_is_idempotent(db_session, make_challenge):
    now = datetime.now(UTC)
    await make_challenge(status="active", start_date=now - timedelta(days=7), end_date=now - timedelta(hours=1))

    first = await update_challenge_statuses(db_session)
    second = await update_challenge_statuses(db_session)

    assert first["updated"] == 1
    assert second["updated"] == 0


@pytest.mark.asyncio
async def test_terminal_challenges_untouched(db_session, make_challenge):
    now = datetime.now(UTC)
    cancelled = await make_challenge(
        status="cancelled", start_date=now - timedelta(days=7), end_date=now - timedelta(days=1)
    )

    result = await update_challenge_statuses(db_session)

    assert result["updated"] == 0
    assert (await get_challenge(db_session, cancelled.id)).status == "cancelled"
