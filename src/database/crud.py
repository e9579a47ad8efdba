"""
CRUD operations for CTG Trading Platform API

Async database operations using SQLAlchemy 2.0. Business rules live in
src/services; functions here load, persist and count.
"""

import logging
from datetime import datetime, UTC
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.enums import (
    ChallengeStatus,
    NotificationStatus,
    SubscriptionStatus,
    SubscriptionType,
)
from src.database.models import (
    User,
    PushSubscription,
    Challenge,
    ChallengeParticipant,
    LeaderboardEntry,
    SignalPlan,
    MentorshipPlan,
    Subscription,
    Payment,
    Chatbox,
    ChatboxMessage,
    MentorshipChatbox,
    MentorshipChatboxMember,
    MentorshipChatboxMessage,
    Notification,
    SupportTicket,
    SupportMessage,
    PropFirmPackage,
    PropFirmService,
)

logger = logging.getLogger(__name__)


# ===========================
# USER OPERATIONS
# ===========================


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """
    Get user by database ID

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User model or None
    """
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    stmt = select(User).where(func.lower(User.email) == email.lower())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    stmt = select(User).where(User.username == username)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    username: str,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    role: str = "user",
) -> User:
    """
    Create new user

    Args:
        session: Database session
        username: Unique username
        email: Unique email (stored lowercase)
        password_hash: bcrypt hash
        first_name: First name
        last_name: Last name
        role: user or admin

    Returns:
        Created User model
    """
    user = User(
        username=username,
        email=email.lower(),
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        role=role,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)

    logger.info(f"User created: {user.id} ({username})")
    return user


async def update_user(session: AsyncSession, user: User, **fields) -> User:
    """
    Apply a partial update to a user

    Args:
        session: Database session
        user: User to update
        **fields: Column values to set

    Returns:
        Updated User model
    """
    for key, value in fields.items():
        setattr(user, key, value)
    await session.commit()
    await session.refresh(user)
    return user


async def get_all_users(
    session: AsyncSession, skip: int = 0, limit: int = 50
) -> List[User]:
    """
    Get users page, newest first

    Args:
        session: Database session
        skip: Offset
        limit: Page size

    Returns:
        List of users
    """
    stmt = select(User).order_by(User.created_at.desc()).offset(skip).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_users_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(User.id)))
    return result.scalar() or 0


async def get_all_user_ids(session: AsyncSession) -> List[int]:
    result = await session.execute(select(User.id))
    return list(result.scalars().all())


async def get_users_with_mt5_credentials(session: AsyncSession) -> List[User]:
    """Users with a complete MT5 account id, password and server"""
    stmt = select(User).where(
        User.mt5_account_id.is_not(None),
        User.mt5_account_id != "",
        User.mt5_password.is_not(None),
        User.mt5_password != "",
        User.mt5_server.is_not(None),
        User.mt5_server != "",
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_user(session: AsyncSession, user: User) -> None:
    """
    Delete a user and everything that points at them

    Participations are removed with their challenge counters decremented,
    active subscriptions release their plan slot, and the global
    leaderboard entry, push endpoints and chat memberships are deleted.

    Args:
        session: Database session
        user: User to delete
    """
    user_id = user.id

    participations = await get_user_participations(session, user_id)
    for participant in participations:
        await decrement_challenge_participants(session, participant.challenge_id)
        await session.delete(participant)

    stmt = select(Subscription).where(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
    )
    result = await session.execute(stmt)
    for subscription in result.scalars().all():
        await release_plan_slot(session, subscription)

    await session.execute(delete(Subscription).where(Subscription.user_id == user_id))
    await session.execute(delete(LeaderboardEntry).where(LeaderboardEntry.user_id == user_id))
    await session.execute(delete(PushSubscription).where(PushSubscription.user_id == user_id))
    await session.execute(
        delete(MentorshipChatboxMember).where(MentorshipChatboxMember.user_id == user_id)
    )

    await session.delete(user)
    await session.commit()

    logger.info(f"User {user_id} deleted ({len(participations)} participations removed)")


# ===========================
# PUSH SUBSCRIPTION OPERATIONS
# ===========================


async def upsert_push_subscription(
    session: AsyncSession, user_id: int, endpoint: str, p256dh: str, auth: str
) -> PushSubscription:
    """
    Register a browser push endpoint for a user

    Re-registering the same endpoint refreshes its keys and clears the
    expired flag.
    """
    stmt = select(PushSubscription).where(
        PushSubscription.user_id == user_id,
        PushSubscription.endpoint == endpoint,
    )
    result = await session.execute(stmt)
    subscription = result.scalar_one_or_none()

    if subscription:
        subscription.p256dh = p256dh
        subscription.auth = auth
        subscription.is_expired = False
    else:
        subscription = PushSubscription(
            user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth
        )
        session.add(subscription)

    await session.commit()
    await session.refresh(subscription)
    return subscription


async def remove_push_subscription(
    session: AsyncSession, user_id: int, endpoint: Optional[str] = None
) -> int:
    """
    Remove one push endpoint, or all of a user's endpoints

    Returns:
        Number of deleted rows
    """
    stmt = delete(PushSubscription).where(PushSubscription.user_id == user_id)
    if endpoint:
        stmt = stmt.where(PushSubscription.endpoint == endpoint)
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount


async def get_push_subscriptions_for_users(
    session: AsyncSession, user_ids: Iterable[int]
) -> List[PushSubscription]:
    """Live (not expired) push endpoints of users who allow push notifications"""
    user_ids = list(user_ids)
    if not user_ids:
        return []

    stmt = (
        select(PushSubscription)
        .join(User, User.id == PushSubscription.user_id)
        .where(
            PushSubscription.user_id.in_(user_ids),
            PushSubscription.is_expired.is_(False),
            User.notify_push.is_(True),
            User.is_active.is_(True),
        )
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_push_subscriptions_expired(
    session: AsyncSession, endpoints: Sequence[str]
) -> int:
    if not endpoints:
        return 0
    stmt = (
        update(PushSubscription)
        .where(PushSubscription.endpoint.in_(list(endpoints)))
        .values(is_expired=True)
    )
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount


async def delete_expired_push_subscriptions(session: AsyncSession) -> int:
    """
    Delete push endpoints flagged expired during delivery

    Returns:
        Number of deleted rows
    """
    stmt = delete(PushSubscription).where(PushSubscription.is_expired.is_(True))
    result = await session.execute(stmt)
    await session.commit()

    deleted_count = result.rowcount
    if deleted_count:
        logger.info(f"Deleted {deleted_count} expired push subscriptions")
    return deleted_count


# ===========================
# CHALLENGE OPERATIONS
# ===========================


async def get_challenge(session: AsyncSession, challenge_id: int) -> Optional[Challenge]:
    """
    Get challenge with its participants loaded

    Args:
        session: Database session
        challenge_id: Challenge ID

    Returns:
        Challenge model or None
    """
    stmt = (
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .options(selectinload(Challenge.participants))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_challenges(
    session: AsyncSession,
    statuses: Optional[Sequence[str]] = None,
    challenge_type: Optional[str] = None,
    created_by: Optional[int] = None,
) -> List[Challenge]:
    """
    List challenges, newest first

    Args:
        session: Database session
        statuses: Allowed statuses (None = any)
        challenge_type: Category filter
        created_by: Owning admin filter

    Returns:
        List of challenges with participants loaded
    """
    stmt = select(Challenge).options(selectinload(Challenge.participants))
    if statuses:
        stmt = stmt.where(Challenge.status.in_(list(statuses)))
    if challenge_type:
        stmt = stmt.where(Challenge.type == challenge_type)
    if created_by is not None:
        stmt = stmt.where(Challenge.created_by == created_by)
    stmt = stmt.order_by(Challenge.created_at.desc(), Challenge.id.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_open_challenges_for_sweep(session: AsyncSession) -> List[Challenge]:
    """Challenges the status sweep may move (upcoming or active)"""
    stmt = select(Challenge).where(
        Challenge.status.in_([ChallengeStatus.UPCOMING.value, ChallengeStatus.ACTIVE.value])
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_participant(
    session: AsyncSession, challenge_id: int, user_id: int
) -> Optional[ChallengeParticipant]:
    stmt = select(ChallengeParticipant).where(
        ChallengeParticipant.challenge_id == challenge_id,
        ChallengeParticipant.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_participant_by_payment(
    session: AsyncSession, payment_id: int
) -> Optional[ChallengeParticipant]:
    stmt = select(ChallengeParticipant).where(ChallengeParticipant.payment_id == payment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_participations(
    session: AsyncSession, user_id: int
) -> List[ChallengeParticipant]:
    """
    All participant rows of a user, with their challenges

    Args:
        session: Database session
        user_id: User ID

    Returns:
        List of ChallengeParticipant models (newest join first)
    """
    stmt = (
        select(ChallengeParticipant)
        .where(ChallengeParticipant.user_id == user_id)
        .options(selectinload(ChallengeParticipant.challenge))
        .order_by(ChallengeParticipant.joined_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_all_participants(session: AsyncSession) -> List[ChallengeParticipant]:
    stmt = select(ChallengeParticipant).options(selectinload(ChallengeParticipant.challenge))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_participants(session: AsyncSession, challenge_id: int) -> int:
    stmt = select(func.count(ChallengeParticipant.id)).where(
        ChallengeParticipant.challenge_id == challenge_id
    )
    result = await session.execute(stmt)
    return result.scalar() or 0


async def claim_challenge_seat(session: AsyncSession, challenge_id: int) -> bool:
    """
    Atomically take one seat in a challenge

    The increment only applies while current_participants < max_participants,
    so concurrent joins can never push the counter past the cap.
    Caller commits.

    Returns:
        True if a seat was taken, False if the challenge is full
    """
    stmt = (
        update(Challenge)
        .where(
            Challenge.id == challenge_id,
            Challenge.current_participants < Challenge.max_participants,
        )
        .values(current_participants=Challenge.current_participants + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def decrement_challenge_participants(session: AsyncSession, challenge_id: int) -> None:
    """Release one seat, never going below zero. Caller commits."""
    stmt = (
        update(Challenge)
        .where(Challenge.id == challenge_id, Challenge.current_participants > 0)
        .values(current_participants=Challenge.current_participants - 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


# ===========================
# LEADERBOARD OPERATIONS
# ===========================


async def get_leaderboard_entry(
    session: AsyncSession, user_id: int
) -> Optional[LeaderboardEntry]:
    stmt = select(LeaderboardEntry).where(LeaderboardEntry.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_leaderboard_entry_by_id(
    session: AsyncSession, entry_id: int
) -> Optional[LeaderboardEntry]:
    return await session.get(LeaderboardEntry, entry_id)


# ===========================
# PLAN OPERATIONS
# ===========================


async def get_signal_plan(session: AsyncSession, plan_id: int) -> Optional[SignalPlan]:
    return await session.get(SignalPlan, plan_id)


async def get_mentorship_plan(session: AsyncSession, plan_id: int) -> Optional[MentorshipPlan]:
    return await session.get(MentorshipPlan, plan_id)


async def list_signal_plans(session: AsyncSession, active_only: bool = True) -> List[SignalPlan]:
    """
    List signal plans

    Args:
        session: Database session
        active_only: Only plans open for sale (sorted by price)

    Returns:
        List of SignalPlan models
    """
    stmt = select(SignalPlan)
    if active_only:
        stmt = stmt.where(SignalPlan.is_active.is_(True)).order_by(SignalPlan.price.asc())
    else:
        stmt = stmt.order_by(SignalPlan.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_mentorship_plans(
    session: AsyncSession, active_only: bool = True
) -> List[MentorshipPlan]:
    stmt = select(MentorshipPlan)
    if active_only:
        stmt = stmt.where(MentorshipPlan.is_active.is_(True)).order_by(MentorshipPlan.price.asc())
    else:
        stmt = stmt.order_by(MentorshipPlan.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def increment_plan_subscribers(session: AsyncSession, plan: SignalPlan | MentorshipPlan) -> bool:
    """
    Atomically take one subscriber slot on a plan

    Plans without max_subscribers are unlimited; otherwise the increment
    only applies while current_subscribers < max_subscribers.
    Caller commits.

    Returns:
        True if a slot was taken, False if the plan is full
    """
    model = type(plan)
    stmt = (
        update(model)
        .where(
            model.id == plan.id,
            model.max_subscribers.is_(None) | (model.current_subscribers < model.max_subscribers),
        )
        .values(current_subscribers=model.current_subscribers + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def release_plan_slot(session: AsyncSession, subscription: Subscription) -> None:
    """
    Decrement the subscriber counter of the subscription's plan (floor 0)

    Caller commits.
    """
    if subscription.signal_plan_id:
        model, plan_id = SignalPlan, subscription.signal_plan_id
    elif subscription.mentorship_plan_id:
        model, plan_id = MentorshipPlan, subscription.mentorship_plan_id
    else:
        return

    stmt = (
        update(model)
        .where(model.id == plan_id, model.current_subscribers > 0)
        .values(current_subscribers=model.current_subscribers - 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


# ===========================
# SUBSCRIPTION OPERATIONS
# ===========================


async def get_subscription(session: AsyncSession, subscription_id: int) -> Optional[Subscription]:
    return await session.get(Subscription, subscription_id)


async def get_active_subscription(
    session: AsyncSession,
    user_id: int,
    signal_plan_id: Optional[int] = None,
    mentorship_plan_id: Optional[int] = None,
) -> Optional[Subscription]:
    """
    Active, unexpired subscription of a user to a plan

    Args:
        session: Database session
        user_id: User ID
        signal_plan_id: Signal plan (exclusive with mentorship_plan_id)
        mentorship_plan_id: Mentorship plan

    Returns:
        Subscription model or None
    """
    stmt = select(Subscription).where(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_date > datetime.now(UTC),
    )
    if signal_plan_id is not None:
        stmt = stmt.where(Subscription.signal_plan_id == signal_plan_id)
    if mentorship_plan_id is not None:
        stmt = stmt.where(Subscription.mentorship_plan_id == mentorship_plan_id)

    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def get_subscription_by_payment(
    session: AsyncSession, payment_id: int
) -> Optional[Subscription]:
    stmt = select(Subscription).where(Subscription.payment_id == payment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_subscriptions(
    session: AsyncSession, user_id: int, status: Optional[str] = None
) -> List[Subscription]:
    stmt = select(Subscription).where(Subscription.user_id == user_id)
    if status and status != "all":
        stmt = stmt.where(Subscription.status == status)
    stmt = stmt.order_by(Subscription.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().unique().all())


async def get_plan_subscribers(
    session: AsyncSession, signal_plan_id: int, skip: int = 0, limit: int = 20
) -> tuple[List[Subscription], int]:
    """
    Subscriptions of a signal plan, newest first

    Returns:
        Tuple of (page, total count)
    """
    base = select(Subscription).where(Subscription.signal_plan_id == signal_plan_id)
    total = await session.scalar(select(func.count()).select_from(base.subquery()))

    stmt = base.order_by(Subscription.created_at.desc()).offset(skip).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().unique().all()), total or 0


async def count_active_plan_subscriptions(
    session: AsyncSession,
    signal_plan_id: Optional[int] = None,
    mentorship_plan_id: Optional[int] = None,
) -> int:
    stmt = select(func.count(Subscription.id)).where(
        Subscription.status == SubscriptionStatus.ACTIVE.value
    )
    if signal_plan_id is not None:
        stmt = stmt.where(Subscription.signal_plan_id == signal_plan_id)
    if mentorship_plan_id is not None:
        stmt = stmt.where(Subscription.mentorship_plan_id == mentorship_plan_id)
    result = await session.execute(stmt)
    return result.scalar() or 0


async def get_subscription_stats(session: AsyncSession) -> dict:
    """
    Subscription counters for the admin dashboard

    Returns:
        Dict with per-status counts, total revenue and duration breakdown
    """
    status_rows = await session.execute(
        select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
    )
    by_status = {status: count for status, count in status_rows.all()}

    revenue = await session.scalar(
        select(func.coalesce(func.sum(Subscription.amount), 0.0)).where(
            Subscription.status.in_(
                [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value]
            )
        )
    )

    duration_rows = await session.execute(
        select(Subscription.duration, func.count(Subscription.id)).group_by(Subscription.duration)
    )

    return {
        "total": sum(by_status.values()),
        "active": by_status.get(SubscriptionStatus.ACTIVE.value, 0),
        "cancelled": by_status.get(SubscriptionStatus.CANCELLED.value, 0),
        "expired": by_status.get(SubscriptionStatus.EXPIRED.value, 0),
        "pending": by_status.get(SubscriptionStatus.PENDING.value, 0),
        "totalRevenue": float(revenue or 0.0),
        "durationBreakdown": {duration: count for duration, count in duration_rows.all()},
    }


async def get_expired_active_subscriptions(session: AsyncSession) -> List[Subscription]:
    """Subscriptions still marked active whose end_date has passed"""
    stmt = select(Subscription).where(
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_date <= datetime.now(UTC),
    )
    result = await session.execute(stmt)
    return list(result.scalars().unique().all())


async def get_active_signal_subscriber_ids(
    session: AsyncSession, signal_plan_id: Optional[int] = None
) -> List[int]:
    """User IDs with an active, unexpired signal-plan subscription"""
    stmt = select(Subscription.user_id).where(
        Subscription.subscription_type == SubscriptionType.SIGNAL_PLAN.value,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_date > datetime.now(UTC),
    )
    if signal_plan_id is not None:
        stmt = stmt.where(Subscription.signal_plan_id == signal_plan_id)
    result = await session.execute(stmt.distinct())
    return list(result.scalars().all())


# ===========================
# PAYMENT OPERATIONS
# ===========================


async def create_payment(session: AsyncSession, **fields) -> Payment:
    """
    Create pending payment

    Args:
        session: Database session
        **fields: Payment columns

    Returns:
        Created Payment model
    """
    payment = Payment(**fields)
    session.add(payment)
    await session.commit()
    await session.refresh(payment)

    logger.info(
        f"Payment created: {payment.id} for user {payment.user_id}, "
        f"type={payment.payment_type}, amount={payment.amount} {payment.currency}"
    )
    return payment


async def get_payment(session: AsyncSession, payment_id: int) -> Optional[Payment]:
    return await session.get(Payment, payment_id)


async def get_user_payments(session: AsyncSession, user_id: int) -> List[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# CHATBOX OPERATIONS
# ===========================


async def get_chatbox_by_plan(session: AsyncSession, signal_plan_id: int) -> Optional[Chatbox]:
    stmt = select(Chatbox).where(Chatbox.signal_plan_id == signal_plan_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_chatbox(session: AsyncSession, chatbox_id: int) -> Optional[Chatbox]:
    return await session.get(Chatbox, chatbox_id)


async def create_chatbox(session: AsyncSession, signal_plan_id: int) -> Chatbox:
    """Create the chatbox of a signal plan. Caller commits."""
    chatbox = Chatbox(signal_plan_id=signal_plan_id)
    session.add(chatbox)
    await session.flush()
    return chatbox


async def get_chatbox_messages(
    session: AsyncSession, chatbox_id: int, limit: int = 100
) -> List[ChatboxMessage]:
    """Latest messages of a chatbox in chronological order"""
    stmt = (
        select(ChatboxMessage)
        .where(ChatboxMessage.chatbox_id == chatbox_id)
        .order_by(ChatboxMessage.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(reversed(result.scalars().all()))


async def get_chatbox_message(session: AsyncSession, message_id: int) -> Optional[ChatboxMessage]:
    return await session.get(ChatboxMessage, message_id)


async def get_mentorship_chatbox_by_plan(
    session: AsyncSession, mentorship_plan_id: int
) -> Optional[MentorshipChatbox]:
    stmt = (
        select(MentorshipChatbox)
        .where(MentorshipChatbox.mentorship_plan_id == mentorship_plan_id)
        .options(selectinload(MentorshipChatbox.members))
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_mentorship_chatbox(
    session: AsyncSession, chatbox_id: int
) -> Optional[MentorshipChatbox]:
    stmt = (
        select(MentorshipChatbox)
        .where(MentorshipChatbox.id == chatbox_id)
        .options(selectinload(MentorshipChatbox.members))
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_mentorship_chatbox(
    session: AsyncSession, mentorship_plan_id: int
) -> MentorshipChatbox:
    """Create the chatbox of a mentorship plan. Caller commits."""
    chatbox = MentorshipChatbox(mentorship_plan_id=mentorship_plan_id, members=[])
    session.add(chatbox)
    await session.flush()
    return chatbox


async def get_mentorship_member(
    session: AsyncSession, chatbox_id: int, user_id: int
) -> Optional[MentorshipChatboxMember]:
    stmt = select(MentorshipChatboxMember).where(
        MentorshipChatboxMember.chatbox_id == chatbox_id,
        MentorshipChatboxMember.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_mentorship_messages(
    session: AsyncSession, chatbox_id: int, limit: int = 100
) -> List[MentorshipChatboxMessage]:
    stmt = (
        select(MentorshipChatboxMessage)
        .where(MentorshipChatboxMessage.chatbox_id == chatbox_id)
        .order_by(MentorshipChatboxMessage.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(reversed(result.scalars().all()))


# ===========================
# NOTIFICATION OPERATIONS
# ===========================


async def create_notification(session: AsyncSession, **fields) -> Notification:
    notification = Notification(**fields)
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    return notification


async def get_notification(session: AsyncSession, notification_id: int) -> Optional[Notification]:
    return await session.get(Notification, notification_id)


async def list_notifications(
    session: AsyncSession, skip: int = 0, limit: int = 50
) -> tuple[List[Notification], int]:
    total = await session.scalar(select(func.count(Notification.id)))
    stmt = (
        select(Notification)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), total or 0


async def get_due_scheduled_notifications(session: AsyncSession) -> List[Notification]:
    """Scheduled notifications whose send time has come"""
    stmt = (
        select(Notification)
        .where(
            Notification.status == NotificationStatus.SCHEDULED.value,
            Notification.scheduled_time <= datetime.now(UTC),
        )
        .order_by(Notification.scheduled_time.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# SUPPORT OPERATIONS
# ===========================


async def get_ticket(session: AsyncSession, ticket_id: int) -> Optional[SupportTicket]:
    stmt = (
        select(SupportTicket)
        .where(SupportTicket.id == ticket_id)
        .options(selectinload(SupportTicket.messages))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tickets(
    session: AsyncSession,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
) -> List[SupportTicket]:
    """
    List support tickets, most recently updated first

    Args:
        session: Database session
        user_id: Owner filter (None = all users)
        status: Status filter
        priority: Priority filter

    Returns:
        List of SupportTicket models with messages loaded
    """
    stmt = select(SupportTicket).options(selectinload(SupportTicket.messages))
    if user_id is not None:
        stmt = stmt.where(SupportTicket.user_id == user_id)
    if status:
        stmt = stmt.where(SupportTicket.status == status)
    if priority:
        stmt = stmt.where(SupportTicket.priority == priority)
    stmt = stmt.order_by(SupportTicket.updated_at.desc(), SupportTicket.id.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def add_ticket_message(
    session: AsyncSession, ticket: SupportTicket, sender_id: int, content: str, is_admin: bool
) -> SupportMessage:
    message = SupportMessage(
        ticket_id=ticket.id, sender_id=sender_id, content=content, is_admin=is_admin
    )
    ticket.messages.append(message)
    ticket.updated_at = datetime.now(UTC)
    await session.commit()
    await session.refresh(message)
    return message


# ===========================
# PROP FIRM OPERATIONS
# ===========================


async def get_package(session: AsyncSession, package_id: int) -> Optional[PropFirmPackage]:
    return await session.get(PropFirmPackage, package_id)


async def list_packages(session: AsyncSession, active_only: bool = True) -> List[PropFirmPackage]:
    stmt = select(PropFirmPackage)
    if active_only:
        stmt = stmt.where(PropFirmPackage.is_active.is_(True))
    stmt = stmt.order_by(PropFirmPackage.price.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_prop_firm_service(
    session: AsyncSession, service_id: int
) -> Optional[PropFirmService]:
    return await session.get(PropFirmService, service_id)


async def get_prop_firm_service_by_payment(
    session: AsyncSession, payment_id: int
) -> Optional[PropFirmService]:
    stmt = select(PropFirmService).where(PropFirmService.payment_id == payment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_prop_firm_services(
    session: AsyncSession, user_id: Optional[int] = None, status: Optional[str] = None
) -> List[PropFirmService]:
    stmt = select(PropFirmService)
    if user_id is not None:
        stmt = stmt.where(PropFirmService.user_id == user_id)
    if status:
        stmt = stmt.where(PropFirmService.status == status)
    stmt = stmt.order_by(PropFirmService.created_at.desc(), PropFirmService.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def increment_package_clients(session: AsyncSession, package_id: int) -> bool:
    """
    Take one client slot on a package (respecting max_clients). Caller commits.

    Returns:
        True if a slot was taken
    """
    stmt = (
        update(PropFirmPackage)
        .where(
            PropFirmPackage.id == package_id,
            or_(
                PropFirmPackage.max_clients.is_(None),
                PropFirmPackage.current_clients < PropFirmPackage.max_clients,
            ),
        )
        .values(current_clients=PropFirmPackage.current_clients + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
