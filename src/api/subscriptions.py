"""
Subscriptions API
"""

import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import CancelRequest, SubscriptionCreateRequest
from src.api.serializers import envelope, subscription_to_dict
from src.database.crud import get_plan_subscribers, get_subscription_stats, get_user_subscriptions
from src.database.engine import get_session
from src.database.models import User
from src.services import plan_service
from src.database.models import SignalPlan
from src.services.subscription_service import cancel_subscription, create_manual_subscription

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("", status_code=201)
async def create_subscription(
    request: SubscriptionCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Subscribe to a signal plan outside the card flow

    Body:
        {"signalPlanId": 1, "amount": 49.0, "duration": "monthly", "paymentId": null}
    """
    subscription = await create_manual_subscription(
        session,
        user.id,
        signal_plan_id=request.signal_plan_id,
        amount=request.amount,
        duration=request.duration,
        payment_id=request.payment_id,
    )
    return envelope(subscription_to_dict(subscription), message="Subscription created successfully")


@router.get("/my-subscriptions")
async def my_subscriptions(
    status: Optional[str] = Query("all"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    subscriptions = await get_user_subscriptions(session, user.id, status=status)
    return envelope([subscription_to_dict(s) for s in subscriptions], count=len(subscriptions))


@router.get("/stats")
async def subscription_stats(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await get_subscription_stats(session))


@router.get("/signal-plan/{plan_id}/subscribers")
async def plan_subscribers(
    plan_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await plan_service.get_plan_or_404(session, SignalPlan, plan_id)
    subscriptions, total = await get_plan_subscribers(
        session, plan_id, skip=(page - 1) * limit, limit=limit
    )
    return envelope(
        {
            "subscribers": [subscription_to_dict(s) for s in subscriptions],
            "pagination": {
                "current": page,
                "pages": math.ceil(total / limit),
                "total": total,
                "limit": limit,
            },
        }
    )


@router.post("/{subscription_id}/cancel")
async def cancel(
    subscription_id: int,
    request: Optional[CancelRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reason = request.reason if request else None
    subscription = await cancel_subscription(session, subscription_id, user.id, reason)
    return envelope(subscription_to_dict(subscription), message="Subscription cancelled successfully")
