"""
Notifications API

Browser push registration for users, creation and dispatch for admins.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import NotificationCreateRequest, PushSubscribeRequest, PushUnsubscribeRequest
from src.api.serializers import envelope, notification_to_dict
from src.database.crud import list_notifications, remove_push_subscription, upsert_push_subscription
from src.database.engine import get_session
from src.database.models import User
from src.services import notification_service
from src.services.push_service import PushService, get_push_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/vapid-key")
async def vapid_key(push_service: PushService = Depends(get_push_service)) -> Dict[str, Any]:
    """Public key for PushManager.subscribe(applicationServerKey=...)"""
    return envelope({"publicKey": push_service.public_key or None, "enabled": push_service.enabled})


@router.post("/subscribe", status_code=201)
async def subscribe(
    request: PushSubscribeRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    subscription = await upsert_push_subscription(
        session, user.id, request.endpoint, request.keys.p256dh, request.keys.auth
    )
    return envelope({"id": subscription.id, "endpoint": subscription.endpoint}, message="Subscribed to push notifications")


@router.delete("/subscribe")
async def unsubscribe(
    request: Optional[PushUnsubscribeRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Remove one endpoint, or every endpoint of the caller when none is given"""
    endpoint = request.endpoint if request else None
    removed = await remove_push_subscription(session, user.id, endpoint)
    return envelope({"removed": removed}, message="Unsubscribed from push notifications")


@router.get("")
async def get_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    notifications, total = await list_notifications(session, skip=skip, limit=limit)
    return envelope(
        {
            "notifications": [notification_to_dict(n) for n in notifications],
            "count": len(notifications),
            "total": total,
        }
    )


@router.post("", status_code=201)
async def create_notification(
    request: NotificationCreateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    push_service: PushService = Depends(get_push_service),
) -> Dict[str, Any]:
    """
    Body:
        {"title": "...", "message": "...", "type": "announcement",
         "targetAudience": "all", "isScheduled": false}

    Push failures are reported in the delivery stats and never fail the request.
    """
    notification, results = await notification_service.send_notification(
        session,
        push_service,
        sent_by=admin.id,
        title=request.title,
        message=request.message,
        notification_type=request.type,
        target_audience=request.target_audience.value if request.target_audience else None,
        signal_plan_id=request.signal_plan_id,
        competition_id=request.competition_id,
        is_scheduled=request.is_scheduled,
        scheduled_time=request.scheduled_time,
        metadata=request.metadata,
    )

    message = "Notification scheduled" if results is None else "Notification sent"
    return envelope({"notification": notification_to_dict(notification), "results": results}, message=message)


@router.post("/{notification_id}/send")
async def send_notification(
    notification_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    push_service: PushService = Depends(get_push_service),
) -> Dict[str, Any]:
    notification, results = await notification_service.send_existing_notification(
        session, push_service, notification_id
    )
    return envelope(
        {"notification": notification_to_dict(notification), "results": results},
        message="Notification sent",
    )


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await notification_service.delete_notification(session, notification_id)
    return envelope(message="Notification deleted")
