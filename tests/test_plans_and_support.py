"""
Tests for plans, plan chat rooms and support tickets
"""

import pytest

from src.core.exceptions import DomainRuleViolation, Forbidden, NotFound, ValidationFailed
from src.database.crud import get_chatbox_by_plan
from src.database.models import SignalPlan
from src.services import chat_service, plan_service, subscription_service, support_service


class TestPlans:
    @pytest.mark.asyncio
    async def test_create_opens_chatbox(self, db_session, make_signal_plan):
        plan = await make_signal_plan(duration="semi_annual")

        assert plan.duration == "semi-annual"
        assert await get_chatbox_by_plan(db_session, plan.id) is not None

    @pytest.mark.asyncio
    async def test_missing_fields(self, db_session):
        with pytest.raises(ValidationFailed) as exc_info:
            await plan_service.create_plan(db_session, SignalPlan, {"name": "No price"}, created_by=None)
        assert "price" in exc_info.value.fields

    @pytest.mark.asyncio
    async def test_negative_price(self, db_session, make_signal_plan):
        plan = await make_signal_plan()
        with pytest.raises(ValidationFailed):
            await plan_service.update_plan(db_session, SignalPlan, plan.id, {"price": -1})

    @pytest.mark.asyncio
    async def test_delete_guarded_by_active_subscriptions(self, db_session, make_user, make_signal_plan):
        plan = await make_signal_plan()
        user = await make_user("alice")
        subscription = await subscription_service.create_manual_subscription(
            db_session, user.id, plan.id, 49.0, "monthly"
        )

        with pytest.raises(DomainRuleViolation):
            await plan_service.delete_plan(db_session, SignalPlan, plan.id)

        await subscription_service.cancel_subscription(db_session, subscription.id, user.id)
        await plan_service.delete_plan(db_session, SignalPlan, plan.id)
        with pytest.raises(NotFound):
            await plan_service.get_plan_or_404(db_session, SignalPlan, plan.id)


class TestSignalChat:
    @pytest.mark.asyncio
    async def test_subscription_gates_access(self, db_session, make_user, make_signal_plan, admin_user):
        plan = await make_signal_plan()
        alice = await make_user("alice")
        outsider = await make_user("bob")
        await subscription_service.create_manual_subscription(db_session, alice.id, plan.id, 49.0, "monthly")

        signal = await chat_service.post_signal_message(db_session, plan.id, admin_user, "BUY XAUUSD @ 2350", "signal")
        await chat_service.post_signal_message(db_session, plan.id, alice, "  Thanks!  ")

        _, messages = await chat_service.get_signal_messages(db_session, plan.id, alice)
        assert signal.message_type == "signal"
        assert {message.content for message in messages} == {"BUY XAUUSD @ 2350", "Thanks!"}

        with pytest.raises(Forbidden):
            await chat_service.get_signal_messages(db_session, plan.id, outsider)

    @pytest.mark.asyncio
    async def test_only_admins_post_signals(self, db_session, make_user, make_signal_plan):
        plan = await make_signal_plan()
        alice = await make_user("alice")
        await subscription_service.create_manual_subscription(db_session, alice.id, plan.id, 49.0, "monthly")

        with pytest.raises(Forbidden):
            await chat_service.post_signal_message(db_session, plan.id, alice, "SELL EURUSD", "signal")

    @pytest.mark.asyncio
    async def test_empty_message(self, db_session, make_signal_plan, admin_user):
        plan = await make_signal_plan()
        with pytest.raises(ValidationFailed):
            await chat_service.post_signal_message(db_session, plan.id, admin_user, "   ")

    @pytest.mark.asyncio
    async def test_pin_toggles(self, db_session, make_signal_plan, admin_user):
        plan = await make_signal_plan()
        message = await chat_service.post_signal_message(db_session, plan.id, admin_user, "Weekly outlook")

        assert (await chat_service.toggle_signal_pin(db_session, plan.id, message.id)).is_pinned is True
        assert (await chat_service.toggle_signal_pin(db_session, plan.id, message.id)).is_pinned is False


class TestSupportTickets:
    @pytest.mark.asyncio
    async def test_conversation(self, db_session, make_user, admin_user):
        alice = await make_user("alice")
        ticket = await support_service.create_ticket(
            db_session, alice, "Payout question", "When is the prize paid?", "billing"
        )
        assert ticket.status == "open"
        assert ticket.priority == "medium"
        assert len(ticket.messages) == 1

        ticket = await support_service.add_message(db_session, ticket.id, admin_user, "Within 7 days.")

        assert ticket.status == "in_progress"
        assert len(ticket.messages) == 2
        assert any(message.is_admin for message in ticket.messages)

    @pytest.mark.asyncio
    async def test_closed_ticket_is_read_only(self, db_session, make_user):
        alice = await make_user("alice")
        ticket = await support_service.create_ticket(db_session, alice, "Bug", "Chart does not load")
        await support_service.update_ticket(db_session, ticket.id, status="closed")

        with pytest.raises(DomainRuleViolation):
            await support_service.add_message(db_session, ticket.id, alice, "Still broken")

    @pytest.mark.asyncio
    async def test_other_users_cannot_read(self, db_session, make_user):
        ticket = await support_service.create_ticket(db_session, await make_user("alice"), "Hi", "Hello")

        with pytest.raises(Forbidden):
            await support_service.get_ticket_for(db_session, ticket.id, await make_user("mallory"))

    @pytest.mark.asyncio
    async def test_invalid_category(self, db_session, make_user):
        with pytest.raises(ValidationFailed):
            await support_service.create_ticket(db_session, await make_user("alice"), "Hi", "Hello", "gossip")
