"""
Stripe payment gateway

Thin async wrapper around the Stripe SDK. The SDK is synchronous, so every
call runs in a worker thread.
"""

import asyncio
from typing import Any, Dict, Optional

import stripe
from loguru import logger

from config.config import STRIPE_SECRET_KEY, STRIPE_PUBLISHABLE_KEY, STRIPE_ENABLED
from src.core.exceptions import PaymentGatewayError, PaymentGatewayNotConfigured


class StripeService:
    """
    Payment intents, customers and refunds

    Amounts are passed in major units (dollars) and converted to cents here.
    """

    def __init__(
        self,
        secret_key: str = STRIPE_SECRET_KEY,
        publishable_key: str = STRIPE_PUBLISHABLE_KEY,
        enabled: bool = STRIPE_ENABLED,
    ):
        self.enabled = enabled
        self.publishable_key = publishable_key
        if enabled:
            stripe.api_key = secret_key

    def require_enabled(self) -> None:
        if not self.enabled:
            raise PaymentGatewayNotConfigured()

    async def _call(self, func, *args, **kwargs):
        self.require_enabled()
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe error in {getattr(func, '__qualname__', func)}: {e}")
            raise PaymentGatewayError(f"Payment processing error: {message}") from e

    async def get_or_create_customer(
        self, email: str, name: str, user_id: int
    ) -> Optional[str]:
        """Find a Stripe customer by email or create one; returns its ID"""
        if not email:
            return None

        existing = await self._call(stripe.Customer.list, email=email, limit=1)
        if existing.data:
            return existing.data[0].id

        customer = await self._call(
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"userId": str(user_id)},
        )
        return customer.id

    async def create_payment_intent(
        self,
        amount: float,
        currency: str,
        metadata: Dict[str, Any],
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a PaymentIntent

        Returns:
            {"id", "client_secret", "customer_id", "status"}

        Raises:
            PaymentGatewayNotConfigured, PaymentGatewayError
        """
        self.require_enabled()

        customer_id = await self.get_or_create_customer(
            customer_email, customer_name or "", metadata.get("userId")
        )

        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=int(round(amount * 100)),
            currency=(currency or "usd").lower(),
            customer=customer_id,
            metadata={key: str(value) for key, value in metadata.items() if value is not None},
            automatic_payment_methods={"enabled": True},
        )

        logger.info(f"PaymentIntent {intent.id} created: {amount} {currency}")
        return {
            "id": intent.id,
            "client_secret": intent.client_secret,
            "customer_id": customer_id,
            "status": intent.status,
        }

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """
        Current state of a PaymentIntent

        Returns:
            {"id", "status", "payment_method", "last_error"}
        """
        intent = await self._call(stripe.PaymentIntent.retrieve, payment_intent_id)
        last_error = getattr(intent, "last_payment_error", None)

        return {
            "id": intent.id,
            "status": intent.status,
            "payment_method": intent.payment_method,
            "last_error": getattr(last_error, "message", None) if last_error else None,
        }

    async def cancel_payment_intent(self, payment_intent_id: str) -> str:
        intent = await self._call(stripe.PaymentIntent.cancel, payment_intent_id)
        return intent.status

    async def refund(self, payment_intent_id: str, amount: Optional[float] = None) -> Dict[str, Any]:
        """
        Refund a captured PaymentIntent, fully or partially

        Returns:
            {"id", "status", "amount"}
        """
        params: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = int(round(amount * 100))

        refund = await self._call(stripe.Refund.create, **params)
        logger.info(f"Refund {refund.id} created for {payment_intent_id}: {refund.status}")
        return {"id": refund.id, "status": refund.status, "amount": refund.amount / 100}


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """FastAPI dependency; overridden in tests"""
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService()
    return _stripe_service
