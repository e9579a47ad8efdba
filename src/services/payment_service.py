"""
Payment workflow

create -> (Stripe) -> confirm -> process_payment_completion

A payment goes pending -> completed exactly once; the completion side
effects (subscription, participant seat, prop-firm service) hang off that
transition and are never repeated for the same payment.
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.enums import (
    ChallengeStatus,
    PaymentStatus,
    PaymentType,
    PropFirmServiceStatus,
    VerificationStatus,
)
from src.core.exceptions import (
    AlreadyParticipant,
    AlreadySubscribed,
    ChallengeFull,
    ChallengeNotJoinable,
    DomainRuleViolation,
    Forbidden,
    NotFound,
    PackageUnavailable,
    PlanFull,
    ValidationFailed,
)
from src.database.crud import (
    create_payment as crud_create_payment,
    get_active_subscription,
    get_challenge,
    get_mentorship_plan,
    get_package,
    get_participant_by_payment,
    get_payment,
    get_prop_firm_service_by_payment,
    get_signal_plan,
    get_subscription_by_payment,
    increment_package_clients,
)
from src.database.models import Payment, PropFirmService, Subscription, User
from src.services.challenge_service import add_pending_participant
from src.services.stats_service import recompute_user_trading_stats
from src.services.stripe_service import StripeService
from src.services.subscription_service import create_plan_subscription


PROP_FIRM_APPLICATION_FIELDS = ("account_id", "account_password", "server", "account_size")


async def _validate_target(
    session: AsyncSession,
    user: User,
    payment_type: PaymentType,
    challenge_id: Optional[int],
    plan_id: Optional[int],
    package_id: Optional[int],
    application: Optional[Dict[str, Any]],
) -> str:
    """
    Check that the thing being bought can be bought by this user

    Returns:
        Display name of the purchased entity
    """
    if payment_type == PaymentType.CHALLENGE:
        if not challenge_id:
            raise ValidationFailed("Challenge ID is required for challenge payments", fields=["challengeId"])
        challenge = await get_challenge(session, challenge_id)
        if not challenge:
            raise NotFound("Challenge not found")
        if challenge.find_participant(user.id):
            raise AlreadyParticipant()
        if challenge.is_full:
            raise ChallengeFull()
        if challenge.status == ChallengeStatus.COMPLETED.value:
            raise ChallengeNotJoinable("This challenge has already ended")
        if challenge.status == ChallengeStatus.CANCELLED.value:
            raise ChallengeNotJoinable("This challenge has been cancelled")
        return challenge.name

    if payment_type == PaymentType.SIGNAL_PLAN:
        if not plan_id:
            raise ValidationFailed("Plan ID is required for signal plan payments", fields=["planId"])
        plan = await get_signal_plan(session, plan_id)
        if not plan:
            raise NotFound("Signal plan not found")
        if not plan.is_active:
            raise PackageUnavailable("This signal plan is no longer available")
        if await get_active_subscription(session, user.id, signal_plan_id=plan_id):
            raise AlreadySubscribed("You already have an active subscription to this signal plan")
        if plan.is_full:
            raise PlanFull("This signal plan is full")
        return plan.name

    if payment_type == PaymentType.MENTORSHIP:
        if not plan_id:
            raise ValidationFailed("Plan ID is required for mentorship payments", fields=["planId"])
        plan = await get_mentorship_plan(session, plan_id)
        if not plan:
            raise NotFound("Mentorship plan not found")
        if await get_active_subscription(session, user.id, mentorship_plan_id=plan_id):
            raise AlreadySubscribed("You are already subscribed to this mentorship plan")
        if plan.is_full:
            raise PlanFull("This mentorship plan is full")
        return plan.name

    # PROP_FIRM_SERVICE
    if not package_id:
        raise ValidationFailed("Package ID is required for prop firm service payments", fields=["packageId"])
    package = await get_package(session, package_id)
    if not package:
        raise NotFound("Prop firm package not found")
    if not package.is_active:
        raise PackageUnavailable()
    if package.is_full:
        raise PackageUnavailable("This package is currently full")

    missing = [field for field in PROP_FIRM_APPLICATION_FIELDS if not (application or {}).get(field)]
    if missing:
        raise ValidationFailed(fields=[f"application.{field}" for field in missing])
    return package.name


async def create_payment(
    session: AsyncSession,
    stripe_service: StripeService,
    user: User,
    amount: Optional[float],
    payment_type: Optional[str],
    currency: str = "USD",
    challenge_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    package_id: Optional[int] = None,
    application: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Validate the purchase, open a Stripe PaymentIntent and store a pending payment

    Returns:
        {"paymentId", "clientSecret", "amount", "currency", "publishableKey"}

    Raises:
        ValidationFailed, NotFound, DomainRuleViolation subclasses,
        PaymentGatewayNotConfigured, PaymentGatewayError
    """
    if not amount or amount <= 0:
        raise ValidationFailed("Missing required payment information", fields=["amount"])
    try:
        payment_type = PaymentType(payment_type)
    except ValueError:
        raise ValidationFailed("Invalid payment type", fields=["type"])

    stripe_service.require_enabled()

    entity_name = await _validate_target(
        session, user, payment_type, challenge_id, plan_id, package_id, application
    )

    user_name = f"{user.first_name} {user.last_name}".strip()
    intent = await stripe_service.create_payment_intent(
        amount=amount,
        currency=currency,
        customer_email=user.email,
        customer_name=user_name,
        metadata={
            "userId": user.id,
            "challengeId": challenge_id,
            "planId": plan_id,
            "packageId": package_id,
            "type": payment_type.value,
            "entityName": entity_name,
        },
    )

    payment = await crud_create_payment(
        session,
        user_id=user.id,
        payment_type=payment_type.value,
        challenge_id=challenge_id,
        plan_id=plan_id,
        package_id=package_id,
        amount=amount,
        currency=currency or "USD",
        status=PaymentStatus.PENDING.value,
        stripe_payment_intent_id=intent["id"],
        stripe_client_secret=intent["client_secret"],
        stripe_customer_id=intent["customer_id"],
        payment_metadata={
            "userEmail": user.email,
            "userName": user_name,
            "entityName": entity_name,
            "type": payment_type.value,
        },
    )

    if payment_type == PaymentType.PROP_FIRM_SERVICE:
        await _create_pending_prop_firm_service(session, payment, application or {})

    return {
        "paymentId": payment.id,
        "clientSecret": intent["client_secret"],
        "amount": payment.amount,
        "currency": payment.currency,
        "publishableKey": stripe_service.publishable_key,
    }


async def _create_pending_prop_firm_service(
    session: AsyncSession, payment: Payment, application: Dict[str, Any]
) -> PropFirmService:
    package = await get_package(session, payment.package_id)
    start_date = datetime.now(UTC)

    service = PropFirmService(
        user_id=payment.user_id,
        package_id=payment.package_id,
        payment_id=payment.id,
        status=PropFirmServiceStatus.PENDING.value,
        verification_status=VerificationStatus.PENDING.value,
        firm_name=application.get("firm_name") or "Custom Prop Firm",
        account_id=str(application["account_id"]),
        account_password=str(application["account_password"]),
        server=str(application["server"]),
        account_size=float(application["account_size"]),
        account_type=application.get("account_type") or "challenge",
        amount=payment.amount,
        start_date=start_date,
        end_date=start_date + timedelta(days=package.duration_days if package else 30),
    )
    session.add(service)
    await session.commit()
    return service


async def get_owned_payment(session: AsyncSession, payment_id: int, user: User) -> Payment:
    """
    Raises:
        NotFound, Forbidden: caller is neither owner nor admin
    """
    payment = await get_payment(session, payment_id)
    if not payment:
        raise NotFound("Payment not found")
    if payment.user_id != user.id and not user.is_admin:
        raise Forbidden("Access denied")
    return payment


async def confirm_payment(
    session: AsyncSession, stripe_service: StripeService, payment_id: int, user: User
) -> Dict[str, Any]:
    """
    Check the PaymentIntent and complete the payment when it succeeded

    Returns:
        {"status": "completed" | "already_completed" | "failed" | "processing",
         "payment": Payment, "subscription": Subscription | None,
         "message": str}
    """
    payment = await get_owned_payment(session, payment_id, user)

    if payment.status == PaymentStatus.COMPLETED.value:
        return {
            "status": "already_completed",
            "payment": payment,
            "subscription": None,
            "message": "Payment already completed",
        }

    intent = await stripe_service.retrieve_payment_intent(payment.stripe_payment_intent_id)

    if intent["status"] == "succeeded":
        payment.status = PaymentStatus.COMPLETED.value
        payment.transaction_id = intent["id"]
        payment.payment_method = intent.get("payment_method") or "card"
        payment.completed_at = datetime.now(UTC)
        await session.commit()

        logger.info(f"Payment {payment.id} completed ({payment.payment_type}, {payment.amount} {payment.currency})")
        subscription = await process_payment_completion(session, payment)
        return {
            "status": "completed",
            "payment": payment,
            "subscription": subscription,
            "message": "Payment completed successfully",
        }

    if intent["status"] in ("requires_payment_method", "canceled"):
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = intent.get("last_error") or f"Payment {intent['status']}"
        await session.commit()

        logger.warning(f"Payment {payment.id} failed: {payment.failure_reason}")
        return {
            "status": "failed",
            "payment": payment,
            "subscription": None,
            "message": "Payment failed",
        }

    if payment.status == PaymentStatus.PENDING.value:
        payment.status = PaymentStatus.PROCESSING.value
        await session.commit()

    return {
        "status": "processing",
        "payment": payment,
        "subscription": None,
        "message": "Payment is still processing",
    }


async def process_payment_completion(
    session: AsyncSession, payment: Payment
) -> Optional[Subscription]:
    """
    Apply the side effect of a completed payment

    Each branch first checks whether a record already references the
    payment, so running this twice for one payment changes nothing.
    Failures are logged; the payment stays completed.

    Returns:
        The created (or existing) subscription for plan payments, else None
    """
    payment_type = payment.payment_type or (payment.payment_metadata or {}).get("type")

    try:
        if payment_type in (PaymentType.SIGNAL_PLAN.value, PaymentType.MENTORSHIP.value):
            existing = await get_subscription_by_payment(session, payment.id)
            if existing:
                return existing

            if payment_type == PaymentType.SIGNAL_PLAN.value:
                plan = await get_signal_plan(session, payment.plan_id)
            else:
                plan = await get_mentorship_plan(session, payment.plan_id)
            if not plan:
                logger.error(f"Payment {payment.id}: plan {payment.plan_id} not found")
                return None

            plan_key = "signal_plan_id" if payment_type == PaymentType.SIGNAL_PLAN.value else "mentorship_plan_id"
            active = await get_active_subscription(session, payment.user_id, **{plan_key: plan.id})
            if active:
                # Paid for a plan already held; the payment stays completed for a refund
                logger.warning(
                    f"Payment {payment.id}: user {payment.user_id} already holds subscription "
                    f"{active.id} to plan {plan.id}, nothing created"
                )
                return active

            subscription = await create_plan_subscription(
                session, payment.user_id, plan, payment.amount, payment=payment
            )
            await session.commit()
            return subscription

        if payment_type == PaymentType.CHALLENGE.value:
            if await get_participant_by_payment(session, payment.id):
                return None

            challenge = await get_challenge(session, payment.challenge_id)
            if not challenge:
                logger.error(f"Payment {payment.id}: challenge {payment.challenge_id} not found")
                return None

            await add_pending_participant(session, challenge, payment.user_id, payment.id)
            await session.commit()
            logger.info(f"User {payment.user_id} seated in challenge {challenge.id} (pending_setup)")

            await recompute_user_trading_stats(session, payment.user_id)
            return None

        if payment_type == PaymentType.PROP_FIRM_SERVICE.value:
            metadata = payment.payment_metadata or {}
            if metadata.get("propFirmServiceId"):
                return None

            service = await get_prop_firm_service_by_payment(session, payment.id)
            if not service:
                logger.error(f"Payment {payment.id}: no prop firm service application")
                return None

            if service.package_id:
                await increment_package_clients(session, service.package_id)
            service.status = PropFirmServiceStatus.PENDING.value
            service.verification_status = VerificationStatus.PENDING.value
            # JSON column: reassign so the change is tracked
            payment.payment_metadata = {**metadata, "propFirmServiceId": service.id}
            await session.commit()

            logger.info(f"Prop firm service {service.id} set to pending review after payment {payment.id}")
            return None

        logger.warning(f"Payment {payment.id} has unknown type {payment_type!r}")
        return None

    except DomainRuleViolation as e:
        await session.rollback()
        await session.refresh(payment)
        logger.error(f"Payment {payment.id} completed but side effect rejected: {e.message}")
        return None
    except Exception as e:
        payment_id = payment.id
        await session.rollback()
        logger.exception(f"Error processing payment completion for payment {payment_id}: {e}")
        await session.refresh(payment)
        return None


async def refund_payment(
    session: AsyncSession, stripe_service: StripeService, payment_id: int
) -> Payment:
    """
    Refund a completed payment through Stripe (admin)

    Raises:
        NotFound, ValidationFailed: payment is not completed
    """
    payment = await get_payment(session, payment_id)
    if not payment:
        raise NotFound("Payment not found")
    if payment.status != PaymentStatus.COMPLETED.value:
        raise ValidationFailed("Only completed payments can be refunded", fields=["status"])

    await stripe_service.refund(payment.stripe_payment_intent_id)

    payment.status = PaymentStatus.CANCELLED.value
    payment.failure_reason = "refunded"
    await session.commit()

    logger.info(f"Payment {payment.id} refunded")
    return payment
