"""
Tests for audience resolution and push dispatch of admin notifications
"""

from datetime import datetime, timedelta, UTC

import pytest

from helpers import FakePushService, MT5_ACCOUNT
from src.core.exceptions import NotFound, ValidationFailed
from src.database.crud import get_push_subscriptions_for_users, upsert_push_subscription
from src.services import challenge_service, notification_service, subscription_service


async def _endpoint(db_session, user, name):
    return await upsert_push_subscription(
        db_session, user.id, f"https://push.example.com/{name}", "p256dh-key", "auth-secret"
    )


class TestAudiences:
    @pytest.mark.asyncio
    async def test_all_active_premium(self, db_session, make_user):
        alice = await make_user("alice", is_premium=True)
        bob = await make_user("bob", is_active=False)

        assert sorted(await notification_service.resolve_target_users(db_session, "all")) == [alice.id, bob.id]
        assert await notification_service.resolve_target_users(db_session, "active") == [alice.id]
        assert await notification_service.resolve_target_users(db_session, "premium") == [alice.id]

    @pytest.mark.asyncio
    async def test_challenge_participants(self, db_session, make_user, make_challenge):
        running = await make_challenge(name="Running")
        other = await make_challenge(name="Other")
        alice = await make_user("alice")
        bob = await make_user("bob")
        await challenge_service.join_challenge(db_session, running.id, alice, MT5_ACCOUNT)
        await challenge_service.join_challenge(db_session, other.id, alice, MT5_ACCOUNT)
        await challenge_service.join_challenge(db_session, other.id, bob, MT5_ACCOUNT)

        everyone = await notification_service.resolve_target_users(db_session, "challenge_participants")
        only_running = await notification_service.resolve_target_users(
            db_session, "specific_competition", competition_id=running.id
        )

        assert sorted(everyone) == [alice.id, bob.id]
        assert only_running == [alice.id]

    @pytest.mark.asyncio
    async def test_signal_plan_subscribers(self, db_session, make_user, make_signal_plan):
        gold = await make_signal_plan()
        silver = await make_signal_plan(name="Silver Signals")
        alice = await make_user("alice")
        bob = await make_user("bob")
        await subscription_service.create_manual_subscription(db_session, alice.id, gold.id, 49.0, "monthly")
        await subscription_service.create_manual_subscription(db_session, bob.id, silver.id, 29.0, "monthly")

        assert sorted(
            await notification_service.resolve_target_users(db_session, "signal_plan_subscribers")
        ) == [alice.id, bob.id]
        assert await notification_service.resolve_target_users(
            db_session, "specific_signal_plan", signal_plan_id=silver.id
        ) == [bob.id]

    @pytest.mark.parametrize(
        "audience,field",
        [("specific_signal_plan", "signalPlanId"), ("specific_competition", "competitionId"), ("vip", "targetAudience")],
    )
    @pytest.mark.asyncio
    async def test_invalid_audience(self, db_session, audience, field):
        with pytest.raises(ValidationFailed) as exc_info:
            await notification_service.resolve_target_users(db_session, audience)
        assert exc_info.value.fields == [field]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_send_now_marks_gone_endpoints(self, db_session, make_user, admin_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await _endpoint(db_session, alice, "alice")
        await _endpoint(db_session, bob, "bob")
        push = FakePushService(gone=["https://push.example.com/bob"])

        notification, results = await notification_service.send_notification(
            db_session, push, admin_user.id, "Cup starts", "Monthly Swing Cup is live", "challenge", "all"
        )

        assert results["targetUsers"] == 3
        assert results["deliveredCount"] == 1
        assert results["expiredCount"] == 1
        assert notification.status == "sent"
        assert notification.delivered_count == 1
        assert notification.failed_count == 1
        assert push.sent[0]["payload"]["title"] == "Cup starts"
        assert push.sent[0]["payload"]["data"]["notificationId"] == notification.id

        live = await get_push_subscriptions_for_users(db_session, [alice.id, bob.id])
        assert [subscription.endpoint for subscription in live] == ["https://push.example.com/alice"]

    @pytest.mark.asyncio
    async def test_empty_audience_is_sent(self, db_session, admin_user):
        notification, results = await notification_service.send_notification(
            db_session, FakePushService(), admin_user.id, "Hello", "Nobody home", "system", "premium"
        )

        assert results["targetUsers"] == 0
        assert notification.status == "sent"

    @pytest.mark.asyncio
    async def test_all_deliveries_failed(self, db_session, make_user, admin_user):
        alice = await make_user("alice")
        await _endpoint(db_session, alice, "alice")

        notification, _ = await notification_service.send_notification(
            db_session,
            FakePushService(gone=["https://push.example.com/alice"]),
            admin_user.id,
            "Hello",
            "Anyone?",
            "system",
            "all",
        )

        assert notification.status == "failed"

    @pytest.mark.asyncio
    async def test_muted_users_get_nothing(self, db_session, make_user, admin_user):
        alice = await make_user("alice", notify_push=False)
        await _endpoint(db_session, alice, "alice")
        push = FakePushService()

        _, results = await notification_service.send_notification(
            db_session, push, admin_user.id, "Hello", "Muted", "system", "all"
        )

        assert results["totalSent"] == 0
        assert push.sent == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, db_session, admin_user):
        with pytest.raises(ValidationFailed):
            await notification_service.send_notification(
                db_session, FakePushService(), admin_user.id, "", "Body", "system", "all"
            )


class TestScheduled:
    @pytest.mark.asyncio
    async def test_scheduled_requires_time(self, db_session, admin_user):
        with pytest.raises(ValidationFailed) as exc_info:
            await notification_service.send_notification(
                db_session, FakePushService(), admin_user.id, "Later", "Body", "system", "all", is_scheduled=True
            )
        assert exc_info.value.fields == ["scheduledTime"]

    @pytest.mark.asyncio
    async def test_due_notifications_dispatch_once(self, db_session, make_user, admin_user):
        alice = await make_user("alice")
        await _endpoint(db_session, alice, "alice")
        push = FakePushService()
        now = datetime.now(UTC)

        due, results = await notification_service.send_notification(
            db_session, push, admin_user.id, "Due", "Body", "system", "all",
            is_scheduled=True, scheduled_time=now - timedelta(minutes=1),
        )
        later, _ = await notification_service.send_notification(
            db_session, push, admin_user.id, "Later", "Body", "system", "all",
            is_scheduled=True, scheduled_time=now + timedelta(hours=1),
        )

        assert results is None
        assert due.status == "scheduled"
        assert await notification_service.dispatch_due_notifications(db_session, push) == 1
        assert await notification_service.dispatch_due_notifications(db_session, push) == 0
        assert due.status == "sent"
        assert later.status == "scheduled"
        assert len(push.sent) == 1

    @pytest.mark.asyncio
    async def test_send_existing_twice(self, db_session, admin_user):
        push = FakePushService()
        notification, _ = await notification_service.send_notification(
            db_session, push, admin_user.id, "Later", "Body", "system", "all",
            is_scheduled=True, scheduled_time=datetime.now(UTC) + timedelta(days=1),
        )

        await notification_service.send_existing_notification(db_session, push, notification.id)
        with pytest.raises(ValidationFailed):
            await notification_service.send_existing_notification(db_session, push, notification.id)

    @pytest.mark.asyncio
    async def test_delete(self, db_session, admin_user):
        notification, _ = await notification_service.send_notification(
            db_session, FakePushService(), admin_user.id, "Bye", "Body", "system", "all"
        )
        await notification_service.delete_notification(db_session, notification.id)

        with pytest.raises(NotFound):
            await notification_service.delete_notification(db_session, notification.id)
