"""
Notification Service - admin notifications delivered as web push

Supports:
- Seven target audiences (all, active, premium, challenge participants,
  signal subscribers, one signal plan, one competition)
- Immediate and scheduled dispatch
- Delivery counters on the notification row
"""

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import (
    ChallengeStatus,
    NotificationAudience,
    NotificationStatus,
    ParticipantStatus,
)
from src.core.exceptions import NotFound, ValidationFailed
from src.database.crud import (
    create_notification,
    get_active_signal_subscriber_ids,
    get_due_scheduled_notifications,
    get_notification,
    get_push_subscriptions_for_users,
    mark_push_subscriptions_expired,
)
from src.database.models import Challenge, ChallengeParticipant, Notification, User
from src.services.push_service import PushService
from src.utils.dates import as_utc


# ===========================
# AUDIENCE RESOLUTION
# ===========================


async def _participant_user_ids(session: AsyncSession, *conditions) -> List[int]:
    stmt = (
        select(ChallengeParticipant.user_id)
        .join(Challenge, Challenge.id == ChallengeParticipant.challenge_id)
        .where(ChallengeParticipant.status != ParticipantStatus.WITHDRAWN.value, *conditions)
        .distinct()
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def resolve_target_users(
    session: AsyncSession,
    audience: str,
    signal_plan_id: Optional[int] = None,
    competition_id: Optional[int] = None,
) -> List[int]:
    """
    Resolve an audience to a de-duplicated list of user IDs

    Raises:
        ValidationFailed: unknown audience, or a specific_* audience without its ID
    """
    try:
        audience = NotificationAudience(audience)
    except ValueError:
        raise ValidationFailed("Invalid target audience", fields=["targetAudience"])

    if audience == NotificationAudience.ALL:
        user_ids = list((await session.execute(select(User.id))).scalars().all())

    elif audience == NotificationAudience.ACTIVE:
        stmt = select(User.id).where(User.is_active.is_(True))
        user_ids = list((await session.execute(stmt)).scalars().all())

    elif audience == NotificationAudience.PREMIUM:
        stmt = select(User.id).where(User.is_premium.is_(True))
        user_ids = list((await session.execute(stmt)).scalars().all())

    elif audience == NotificationAudience.CHALLENGE_PARTICIPANTS:
        user_ids = await _participant_user_ids(
            session,
            Challenge.status.in_([ChallengeStatus.ACTIVE.value, ChallengeStatus.UPCOMING.value]),
        )

    elif audience == NotificationAudience.SIGNAL_PLAN_SUBSCRIBERS:
        user_ids = await get_active_signal_subscriber_ids(session)

    elif audience == NotificationAudience.SPECIFIC_SIGNAL_PLAN:
        if not signal_plan_id:
            raise ValidationFailed(
                "Signal plan ID is required when targeting specific signal plan",
                fields=["signalPlanId"],
            )
        user_ids = await get_active_signal_subscriber_ids(session, signal_plan_id)

    else:
        if not competition_id:
            raise ValidationFailed(
                "Competition ID is required when targeting specific competition",
                fields=["competitionId"],
            )
        user_ids = await _participant_user_ids(session, Challenge.id == competition_id)

    return list(dict.fromkeys(user_ids))


# ===========================
# DISPATCH
# ===========================


def build_push_payload(notification: Notification) -> Dict[str, Any]:
    return {
        "title": notification.title,
        "body": notification.message,
        "icon": "/icon.svg",
        "badge": "/icon.svg",
        "tag": "ctg-notification",
        "requireInteraction": True,
        "data": {
            "type": notification.type,
            "notificationId": notification.id,
            "timestamp": datetime.now(UTC).isoformat(),
            "url": "/",
        },
    }


async def dispatch_notification(
    session: AsyncSession, push_service: PushService, notification: Notification
) -> Dict[str, Any]:
    """
    Push a notification to its audience and record the counters

    Delivery errors are collected, never raised; endpoints that answered
    410 are flagged expired and skipped from then on.

    Returns:
        {"totalSent", "deliveredCount", "failedCount", "expiredCount", "targetUsers"}
    """
    user_ids = await resolve_target_users(
        session,
        notification.target_audience,
        notification.signal_plan_id,
        notification.competition_id,
    )

    results: Dict[str, Any] = {"total_sent": 0, "delivered": 0, "failed": 0, "errors": [], "expired": []}
    subscriptions = await get_push_subscriptions_for_users(session, user_ids)
    if subscriptions:
        try:
            results = await push_service.send_to_many(subscriptions, build_push_payload(notification))
        except Exception as e:
            logger.exception(f"Push dispatch crashed for notification {notification.id}: {e}")
            results["failed"] = len(subscriptions)
            results["total_sent"] = len(subscriptions)

    if results["expired"]:
        await mark_push_subscriptions_expired(session, results["expired"])

    notification.total_recipients = len(user_ids)
    notification.delivered_count = results["delivered"]
    notification.failed_count = results["failed"]
    notification.sent_at = datetime.now(UTC)
    if results["total_sent"] and not results["delivered"]:
        notification.status = NotificationStatus.FAILED.value
    else:
        notification.status = NotificationStatus.SENT.value
    await session.commit()

    logger.info(
        f"Notification {notification.id} dispatched to {len(user_ids)} users: "
        f"delivered={results['delivered']}, failed={results['failed']}"
    )

    return {
        "targetUsers": len(user_ids),
        "totalSent": results["total_sent"],
        "deliveredCount": results["delivered"],
        "failedCount": results["failed"],
        "expiredCount": len(results["expired"]),
    }


async def send_notification(
    session: AsyncSession,
    push_service: PushService,
    sent_by: int,
    title: Optional[str],
    message: Optional[str],
    notification_type: Optional[str],
    target_audience: Optional[str],
    signal_plan_id: Optional[int] = None,
    competition_id: Optional[int] = None,
    is_scheduled: bool = False,
    scheduled_time: Optional[datetime] = None,
    metadata: Optional[dict] = None,
) -> tuple[Notification, Optional[Dict[str, Any]]]:
    """
    Create a notification and dispatch it now, unless it is scheduled

    Returns:
        (notification, delivery results or None when scheduled)

    Raises:
        ValidationFailed: missing fields, bad audience, or a scheduled
            notification without a future-or-present time
    """
    if not (title and message and notification_type and target_audience):
        raise ValidationFailed(
            "Title, message, type, and target audience are required",
            fields=["title", "message", "type", "targetAudience"],
        )
    try:
        audience = NotificationAudience(target_audience)
    except ValueError:
        raise ValidationFailed("Invalid target audience", fields=["targetAudience"])

    if audience == NotificationAudience.SPECIFIC_SIGNAL_PLAN and not signal_plan_id:
        raise ValidationFailed(
            "Signal plan ID is required when targeting specific signal plan", fields=["signalPlanId"]
        )
    if audience == NotificationAudience.SPECIFIC_COMPETITION and not competition_id:
        raise ValidationFailed(
            "Competition ID is required when targeting specific competition", fields=["competitionId"]
        )
    if is_scheduled and not scheduled_time:
        raise ValidationFailed("Scheduled time is required for scheduled notifications", fields=["scheduledTime"])

    notification = await create_notification(
        session,
        title=title,
        message=message,
        type=notification_type,
        target_audience=audience.value,
        signal_plan_id=signal_plan_id if audience == NotificationAudience.SPECIFIC_SIGNAL_PLAN else None,
        competition_id=competition_id if audience == NotificationAudience.SPECIFIC_COMPETITION else None,
        is_scheduled=is_scheduled,
        scheduled_time=as_utc(scheduled_time) if is_scheduled else None,
        status=(NotificationStatus.SCHEDULED if is_scheduled else NotificationStatus.DRAFT).value,
        sent_by=sent_by,
        payload_metadata=metadata or {},
    )
    logger.info(f"Notification {notification.id} created by user {sent_by} for '{audience.value}'")

    if is_scheduled:
        return notification, None

    results = await dispatch_notification(session, push_service, notification)
    return notification, results


async def send_existing_notification(
    session: AsyncSession, push_service: PushService, notification_id: int
) -> tuple[Notification, Dict[str, Any]]:
    """
    Dispatch a draft or scheduled notification now

    Raises:
        NotFound, ValidationFailed: already sent
    """
    notification = await get_notification(session, notification_id)
    if not notification:
        raise NotFound("Notification not found")
    if notification.status == NotificationStatus.SENT.value:
        raise ValidationFailed("Notification has already been sent", fields=["status"])

    results = await dispatch_notification(session, push_service, notification)
    return notification, results


async def dispatch_due_notifications(session: AsyncSession, push_service: PushService) -> int:
    """
    Send every scheduled notification whose time has come

    Returns:
        Number of notifications dispatched
    """
    due = await get_due_scheduled_notifications(session)
    dispatched = 0
    for notification in due:
        notification_id = notification.id
        try:
            await dispatch_notification(session, push_service, notification)
            dispatched += 1
        except Exception as e:
            await session.rollback()
            logger.exception(f"Scheduled notification {notification_id} failed: {e}")
            notification.status = NotificationStatus.FAILED.value
            await session.commit()

    if dispatched:
        logger.info(f"Dispatched {dispatched} scheduled notifications")
    return dispatched


async def delete_notification(session: AsyncSession, notification_id: int) -> None:
    notification = await get_notification(session, notification_id)
    if not notification:
        raise NotFound("Notification not found")

    await session.delete(notification)
    await session.commit()
    logger.info(f"Notification {notification_id} deleted")
