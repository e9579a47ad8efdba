"""
Tests for the payment workflow and its completion side effects
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from helpers import FakeStripeService
from src.core.exceptions import (
    AlreadySubscribed,
    ChallengeFull,
    Forbidden,
    PaymentGatewayNotConfigured,
    PlanFull,
    ValidationFailed,
)
from src.database.crud import (
    get_mentorship_chatbox_by_plan,
    get_mentorship_member,
    get_participant_by_payment,
    get_payment,
    get_prop_firm_service_by_payment,
)
from src.database.models import ChallengeParticipant, PropFirmPackage, Subscription
from src.services import payment_service


APPLICATION = {
    "account_id": "88001",
    "account_password": "secret",
    "server": "FTMO-Demo",
    "account_size": 100000,
}


async def _pay(db_session, stripe, user, **kwargs):
    created = await payment_service.create_payment(db_session, stripe, user, **kwargs)
    return created, await get_payment(db_session, created["paymentId"])


class TestCreatePayment:
    @pytest.mark.asyncio
    async def test_signal_plan_payment(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_signal_plan()

        created, payment = await _pay(
            db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id
        )

        assert created["clientSecret"] == "pi_test_1_secret"
        assert created["publishableKey"] == "pk_test_fake"
        assert payment.status == "pending"
        assert payment.stripe_payment_intent_id == "pi_test_1"
        assert stripe.intents["pi_test_1"]["metadata"]["entityName"] == plan.name

    @pytest.mark.asyncio
    async def test_gateway_not_configured(self, db_session, make_user, make_signal_plan):
        plan = await make_signal_plan()
        with pytest.raises(PaymentGatewayNotConfigured):
            await payment_service.create_payment(
                db_session,
                FakeStripeService(enabled=False),
                await make_user("alice"),
                amount=49.0,
                payment_type="signal_plan",
                plan_id=plan.id,
            )

    @pytest.mark.parametrize("amount,payment_type", [(0, "signal_plan"), (10, "crypto"), (None, "challenge")])
    @pytest.mark.asyncio
    async def test_invalid_request(self, db_session, make_user, amount, payment_type):
        with pytest.raises(ValidationFailed):
            await payment_service.create_payment(
                db_session, FakeStripeService(), await make_user("alice"), amount=amount, payment_type=payment_type
            )

    @pytest.mark.asyncio
    async def test_full_challenge_rejected_before_stripe(self, db_session, make_user, make_challenge):
        stripe = FakeStripeService()
        challenge = await make_challenge(max_participants=1, current_participants=1, price=25, is_free=False)

        with pytest.raises(ChallengeFull):
            await payment_service.create_payment(
                db_session, stripe, await make_user("alice"), amount=25, payment_type="challenge",
                challenge_id=challenge.id,
            )
        assert stripe.intents == {}

    @pytest.mark.asyncio
    async def test_prop_firm_requires_application(self, db_session, make_user):
        package = PropFirmPackage(name="Evaluation Pass", price=150, duration_days=30)
        db_session.add(package)
        await db_session.commit()

        with pytest.raises(ValidationFailed) as exc_info:
            await payment_service.create_payment(
                db_session, FakeStripeService(), await make_user("alice"), amount=150,
                payment_type="prop_firm_service", package_id=package.id, application={"account_id": "1"},
            )
        assert "application.server" in exc_info.value.fields


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_signal_plan_creates_one_subscription(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_signal_plan()
        _, payment = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["status"] == "completed"
        assert result["payment"].status == "completed"
        assert result["payment"].transaction_id == payment.stripe_payment_intent_id
        subscription = result["subscription"]
        assert subscription.status == "active"
        assert subscription.payment_id == payment.id

        again = await payment_service.confirm_payment(db_session, stripe, payment.id, user)
        assert again["status"] == "already_completed"

        # Re-running the side effect returns the existing subscription
        assert (await payment_service.process_payment_completion(db_session, payment)).id == subscription.id

        count = await db_session.scalar(select(func.count(Subscription.id)))
        assert count == 1
        await db_session.refresh(plan)
        assert plan.current_subscribers == 1

    @pytest.mark.asyncio
    async def test_mentorship_joins_chatbox(self, db_session, make_user, make_mentorship_plan):
        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_mentorship_plan(max_sessions_per_month=8)
        _, payment = await _pay(db_session, stripe, user, amount=199.0, payment_type="mentorship", plan_id=plan.id)

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["subscription"].subscription_type == "mentorship"
        assert result["subscription"].max_sessions == 8
        chatbox = await get_mentorship_chatbox_by_plan(db_session, plan.id)
        member = await get_mentorship_member(db_session, chatbox.id, user.id)
        assert member is not None
        assert member.is_active is True

    @pytest.mark.asyncio
    async def test_challenge_payment_seats_pending_participant(self, db_session, make_user, make_challenge):
        stripe = FakeStripeService()
        user = await make_user("alice")
        challenge = await make_challenge(price=25, is_free=False)
        _, payment = await _pay(
            db_session, stripe, user, amount=25, payment_type="challenge", challenge_id=challenge.id
        )

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["status"] == "completed"
        assert result["subscription"] is None
        participant = await get_participant_by_payment(db_session, payment.id)
        assert participant.status == "pending_setup"
        assert participant.mt5_account_id is None

        await payment_service.process_payment_completion(db_session, payment)
        count = await db_session.scalar(
            select(func.count(ChallengeParticipant.id)).where(ChallengeParticipant.challenge_id == challenge.id)
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_prop_firm_service_goes_to_review(self, db_session, make_user):
        stripe = FakeStripeService()
        user = await make_user("alice")
        package = PropFirmPackage(name="Evaluation Pass", price=150, duration_days=30, max_clients=5)
        db_session.add(package)
        await db_session.commit()
        _, payment = await _pay(
            db_session, stripe, user, amount=150, payment_type="prop_firm_service",
            package_id=package.id, application=APPLICATION,
        )

        await payment_service.confirm_payment(db_session, stripe, payment.id, user)
        await payment_service.process_payment_completion(db_session, payment)

        service = await get_prop_firm_service_by_payment(db_session, payment.id)
        assert service.status == "pending"
        assert service.account_id == "88001"
        assert payment.payment_metadata["propFirmServiceId"] == service.id
        await db_session.refresh(package)
        assert package.current_clients == 1

    @pytest.mark.asyncio
    async def test_declined_card(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService(intent_status="requires_payment_method")
        user = await make_user("alice")
        plan = await make_signal_plan()
        _, payment = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["status"] == "failed"
        assert result["payment"].status == "failed"
        assert result["payment"].failure_reason == "Your card was declined."
        assert await db_session.scalar(select(func.count(Subscription.id))) == 0

    @pytest.mark.asyncio
    async def test_still_processing(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService(intent_status="processing")
        user = await make_user("alice")
        plan = await make_signal_plan()
        _, payment = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["status"] == "processing"
        assert result["payment"].status == "processing"

    @pytest.mark.asyncio
    async def test_other_users_payment(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        plan = await make_signal_plan()
        _, payment = await _pay(
            db_session, stripe, await make_user("alice"), amount=49.0, payment_type="signal_plan", plan_id=plan.id
        )

        with pytest.raises(Forbidden):
            await payment_service.confirm_payment(db_session, stripe, payment.id, await make_user("mallory"))


class TestRefund:
    @pytest.mark.asyncio
    async def test_refund_completed(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_signal_plan()
        _, payment = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)
        await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        refunded = await payment_service.refund_payment(db_session, stripe, payment.id)

        assert refunded.status == "cancelled"
        assert stripe.refunds == [payment.stripe_payment_intent_id]

    @pytest.mark.asyncio
    async def test_refund_pending_rejected(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        plan = await make_signal_plan()
        _, payment = await _pay(
            db_session, stripe, await make_user("alice"), amount=49.0, payment_type="signal_plan", plan_id=plan.id
        )

        with pytest.raises(ValidationFailed):
            await payment_service.refund_payment(db_session, stripe, payment.id)


class TestPlanSlots:
    @pytest.mark.asyncio
    async def test_second_purchase_of_held_plan(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_signal_plan()
        _, first = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)
        _, second = await _pay(db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id)

        held = (await payment_service.confirm_payment(db_session, stripe, first.id, user))["subscription"]
        result = await payment_service.confirm_payment(db_session, stripe, second.id, user)

        assert result["status"] == "completed"
        assert result["subscription"].id == held.id
        assert await db_session.scalar(select(func.count(Subscription.id))) == 1
        await db_session.refresh(plan)
        assert plan.current_subscribers == 1

        with pytest.raises(AlreadySubscribed):
            await payment_service.create_payment(
                db_session, stripe, user, amount=49.0, payment_type="signal_plan", plan_id=plan.id
            )

    @pytest.mark.asyncio
    async def test_last_mentorship_slot_goes_once(self, db_session, make_user, make_mentorship_plan):
        stripe = FakeStripeService()
        alice = await make_user("alice")
        bob = await make_user("bob")
        plan = await make_mentorship_plan(max_subscribers=1)
        _, alice_payment = await _pay(
            db_session, stripe, alice, amount=199.0, payment_type="mentorship", plan_id=plan.id
        )
        _, bob_payment = await _pay(db_session, stripe, bob, amount=199.0, payment_type="mentorship", plan_id=plan.id)

        assert (await payment_service.confirm_payment(db_session, stripe, alice_payment.id, alice))["subscription"]
        result = await payment_service.confirm_payment(db_session, stripe, bob_payment.id, bob)

        assert result["subscription"] is None
        assert result["payment"].status == "completed"
        assert await db_session.scalar(select(func.count(Subscription.id))) == 1
        await db_session.refresh(plan)
        assert plan.current_subscribers == 1

    @pytest.mark.asyncio
    async def test_full_signal_plan_rejected_before_stripe(self, db_session, make_user, make_signal_plan):
        stripe = FakeStripeService()
        alice = await make_user("alice")
        plan = await make_signal_plan(max_subscribers=1)
        _, payment = await _pay(db_session, stripe, alice, amount=49.0, payment_type="signal_plan", plan_id=plan.id)
        await payment_service.confirm_payment(db_session, stripe, payment.id, alice)

        with pytest.raises(PlanFull):
            await payment_service.create_payment(
                db_session, stripe, await make_user("bob"), amount=49.0, payment_type="signal_plan", plan_id=plan.id
            )
        assert len(stripe.intents) == 1

    @pytest.mark.asyncio
    async def test_chatbox_error_rolls_back_subscription(
        self, db_session, make_user, make_mentorship_plan, monkeypatch
    ):
        async def broken_lookup(session, plan_id):
            raise SQLAlchemyError("connection reset")

        stripe = FakeStripeService()
        user = await make_user("alice")
        plan = await make_mentorship_plan()
        _, payment = await _pay(db_session, stripe, user, amount=199.0, payment_type="mentorship", plan_id=plan.id)
        monkeypatch.setattr("src.services.subscription_service.get_mentorship_chatbox_by_plan", broken_lookup)

        result = await payment_service.confirm_payment(db_session, stripe, payment.id, user)

        assert result["subscription"] is None
        assert result["payment"].status == "completed"
        assert await db_session.scalar(select(func.count(Subscription.id))) == 0
        await db_session.refresh(plan)
        assert plan.current_subscribers == 0
