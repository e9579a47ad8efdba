"""
Plan subscriptions

Creation (from payment completion or the manual route), owner cancellation,
expiry and mentorship chatbox membership.
"""

from datetime import datetime, UTC
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.enums import PlanDuration, SubscriptionStatus, SubscriptionType
from src.core.exceptions import (
    AlreadySubscribed,
    Forbidden,
    NotFound,
    PlanFull,
    SubscriptionAlreadyCancelled,
    ValidationFailed,
)
from src.database.crud import (
    get_active_subscription,
    get_expired_active_subscriptions,
    get_mentorship_chatbox_by_plan,
    get_mentorship_member,
    get_payment,
    get_signal_plan,
    get_subscription,
    increment_plan_subscribers,
    release_plan_slot,
)
from src.database.models import (
    MentorshipChatboxMember,
    MentorshipPlan,
    Payment,
    SignalPlan,
    Subscription,
)
from src.utils.dates import add_months


def compute_end_date(start_date: datetime, duration: Optional[str]) -> datetime:
    """start + 1/3/6/12 months; unknown durations count as monthly"""
    return add_months(start_date, PlanDuration.parse(duration).months)


def parse_duration_strict(duration: Optional[str]) -> PlanDuration:
    """
    Parse a client-supplied duration

    Raises:
        ValidationFailed: not one of monthly, quarterly, semi-annual (semi_annual), annual
    """
    try:
        return PlanDuration((duration or "").replace("_", "-"))
    except ValueError:
        raise ValidationFailed("Invalid duration", fields=["duration"])


async def create_plan_subscription(
    session: AsyncSession,
    user_id: int,
    plan: SignalPlan | MentorshipPlan,
    amount: float,
    payment: Optional[Payment] = None,
    duration: Optional[str] = None,
) -> Subscription:
    """
    Take a subscriber slot on the plan and create an active subscription

    Mentorship subscriptions also join the plan's chatbox. Caller commits;
    on PlanFull nothing has been written.

    Args:
        session: Database session
        user_id: Subscriber
        plan: SignalPlan or MentorshipPlan
        amount: Amount paid
        payment: Completed payment, when there is one
        duration: Overrides plan.duration (manual route)

    Returns:
        Created Subscription (flushed, has an ID)

    Raises:
        PlanFull: max_subscribers already reached
    """
    if not await increment_plan_subscribers(session, plan):
        raise PlanFull(f"{plan.name} has no free subscriber slots")

    duration_value = PlanDuration.parse(duration or plan.duration).value
    start_date = datetime.now(UTC)
    is_mentorship = isinstance(plan, MentorshipPlan)

    subscription = Subscription(
        user_id=user_id,
        signal_plan_id=None if is_mentorship else plan.id,
        mentorship_plan_id=plan.id if is_mentorship else None,
        subscription_type=(
            SubscriptionType.MENTORSHIP.value if is_mentorship else SubscriptionType.SIGNAL_PLAN.value
        ),
        status=SubscriptionStatus.ACTIVE.value,
        start_date=start_date,
        end_date=compute_end_date(start_date, duration_value),
        payment_id=payment.id if payment else None,
        amount=amount,
        duration=duration_value,
        currency=(payment.currency if payment else "USD") or "USD",
        payment_method=(payment.payment_method if payment else None) or "card",
        auto_renew=True,
        max_sessions=plan.max_sessions_per_month if is_mentorship else 4,
        session_history=[],
    )
    session.add(subscription)
    await session.flush()

    if is_mentorship:
        await add_mentorship_member(session, plan.id, user_id, subscription)

    logger.info(
        f"Subscription {subscription.id} created: user {user_id} -> "
        f"{subscription.subscription_type} plan {plan.id} until {subscription.end_date.isoformat()}"
    )
    return subscription


async def add_mentorship_member(
    session: AsyncSession, plan_id: int, user_id: int, subscription: Subscription
) -> None:
    """
    Add (or reactivate) the subscriber in the plan's mentorship chatbox

    A missing chatbox is logged and skipped. Database errors propagate so
    the caller rolls back the whole subscription. Caller commits.
    """
    chatbox = await get_mentorship_chatbox_by_plan(session, plan_id)
    if not chatbox:
        logger.warning(f"No mentorship chatbox for plan {plan_id}, member not added")
        return

    member = await get_mentorship_member(session, chatbox.id, user_id)
    if member:
        member.is_active = True
        member.subscription_id = subscription.id
        member.max_sessions = subscription.max_sessions
        member.session_count = 0
    else:
        session.add(
            MentorshipChatboxMember(
                chatbox_id=chatbox.id,
                user_id=user_id,
                subscription_id=subscription.id,
                max_sessions=subscription.max_sessions,
            )
        )


async def _deactivate_mentorship_member(session: AsyncSession, subscription: Subscription) -> None:
    if not subscription.mentorship_plan_id:
        return
    chatbox = await get_mentorship_chatbox_by_plan(session, subscription.mentorship_plan_id)
    if not chatbox:
        return
    member = await get_mentorship_member(session, chatbox.id, subscription.user_id)
    if member:
        member.is_active = False


async def create_manual_subscription(
    session: AsyncSession,
    user_id: int,
    signal_plan_id: Optional[int],
    amount: Optional[float],
    duration: Optional[str],
    payment_id: Optional[int] = None,
) -> Subscription:
    """
    Subscribe a user to a signal plan outside the Stripe flow

    Raises:
        ValidationFailed, NotFound, AlreadySubscribed
    """
    missing = [
        name
        for name, value in (("signalPlanId", signal_plan_id), ("amount", amount), ("duration", duration))
        if not value
    ]
    if missing:
        raise ValidationFailed(
            f"Missing required fields: {', '.join(missing)}", fields=missing
        )

    plan_duration = parse_duration_strict(duration)

    plan = await get_signal_plan(session, signal_plan_id)
    if not plan:
        raise NotFound("Signal plan not found")

    if await get_active_subscription(session, user_id, signal_plan_id=signal_plan_id):
        raise AlreadySubscribed("You already have an active subscription to this signal plan")

    payment = None
    if payment_id is not None:
        payment = await get_payment(session, payment_id)
        if not payment or payment.user_id != user_id:
            raise NotFound("Payment not found")

    subscription = await create_plan_subscription(
        session, user_id, plan, float(amount), payment=payment, duration=plan_duration.value
    )
    await session.commit()
    return subscription


async def cancel_subscription(
    session: AsyncSession, subscription_id: int, user_id: int, reason: Optional[str] = None
) -> Subscription:
    """
    Owner cancellation. Terminal: nothing moves a cancelled subscription back.

    Raises:
        NotFound, Forbidden, SubscriptionAlreadyCancelled
    """
    subscription = await get_subscription(session, subscription_id)
    if not subscription:
        raise NotFound("Subscription not found")
    if subscription.user_id != user_id:
        raise Forbidden("You can only cancel your own subscriptions")
    if subscription.status == SubscriptionStatus.CANCELLED.value:
        raise SubscriptionAlreadyCancelled()

    was_active = subscription.status == SubscriptionStatus.ACTIVE.value

    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = datetime.now(UTC)
    subscription.auto_renew = False
    subscription.cancellation_reason = reason

    if was_active:
        await release_plan_slot(session, subscription)
    await _deactivate_mentorship_member(session, subscription)
    await session.commit()

    logger.info(f"Subscription {subscription_id} cancelled by user {user_id}: {reason or 'no reason'}")
    return subscription


async def expire_subscriptions(session: AsyncSession) -> int:
    """
    Mark active subscriptions past their end date as expired

    Returns:
        Number of subscriptions expired
    """
    expired: List[Subscription] = await get_expired_active_subscriptions(session)
    for subscription in expired:
        subscription.status = SubscriptionStatus.EXPIRED.value
        subscription.auto_renew = False
        await release_plan_slot(session, subscription)
        await _deactivate_mentorship_member(session, subscription)

    if expired:
        await session.commit()
        logger.info(f"Expired {len(expired)} subscriptions")
    return len(expired)
