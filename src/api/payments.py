"""
Payments API (Stripe PaymentIntents)

Flow:
    POST /payments/create        -> clientSecret for Stripe Elements
    (client confirms the card with Stripe)
    POST /payments/{id}/confirm  -> completes the payment and grants access
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import PaymentCreateRequest
from src.api.serializers import envelope, payment_to_dict, subscription_to_dict
from src.database.crud import get_user_payments
from src.database.engine import get_session
from src.database.models import User
from src.services import payment_service
from src.services.stripe_service import StripeService, get_stripe_service

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create", status_code=201)
async def create_payment(
    request: PaymentCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> Dict[str, Any]:
    """
    Body:
        {"amount": 99.0, "type": "challenge", "challengeId": 1}
        {"amount": 49.0, "type": "signal_plan", "planId": 2}
        {"amount": 299.0, "type": "prop_firm_service", "packageId": 3,
         "application": {"accountId": "...", "accountPassword": "...", "server": "...", "accountSize": 100000}}

    Returns:
        {"success": true, "data": {"paymentId", "clientSecret", "amount", "currency", "publishableKey"}}
    """
    result = await payment_service.create_payment(
        session,
        stripe_service,
        user,
        amount=request.amount,
        payment_type=request.type,
        currency=request.currency,
        challenge_id=request.challenge_id,
        plan_id=request.plan_id,
        package_id=request.package_id,
        application=request.application.model_dump() if request.application else None,
    )
    return envelope(result, message="Payment intent created")


@router.get("/my-payments")
async def my_payments(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    payments = await get_user_payments(session, user.id)
    return envelope([payment_to_dict(p) for p in payments], count=len(payments))


@router.post("/webhook")
async def stripe_webhook(request: Request) -> Dict[str, Any]:
    """Acknowledged only; payments are completed through /confirm"""
    body = await request.body()
    logger.info(f"Stripe webhook received ({len(body)} bytes), acknowledged")
    return {"received": True}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    payment = await payment_service.get_owned_payment(session, payment_id, user)
    return envelope(payment_to_dict(payment))


@router.post("/{payment_id}/confirm")
async def confirm_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    result = await payment_service.confirm_payment(session, stripe_service, payment_id, user)
    payment = result["payment"]

    if result["status"] == "failed":
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": result["message"],
                "error": payment.failure_reason,
                "data": payment_to_dict(payment),
            },
        )

    data = payment_to_dict(payment)
    if result["subscription"] is not None:
        data = {"payment": data, "subscription": subscription_to_dict(result["subscription"])}
    return envelope(data, message=result["message"])


@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> Dict[str, Any]:
    payment = await payment_service.refund_payment(session, stripe_service, payment_id)
    logger.info(f"Payment {payment_id} refunded by admin {admin.id}")
    return envelope(payment_to_dict(payment), message="Payment refunded")
