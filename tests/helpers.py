"""
Shared test helpers: auth headers and in-memory gateway fakes
"""

from typing import Any, Dict, List, Optional

from src.api.auth import create_access_token
from src.core.exceptions import PaymentGatewayNotConfigured
from src.database.models import User


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


MT5_ACCOUNT = {"id": "5012345", "password": "investor-pass", "server": "MetaQuotes-Demo"}


class FakeStripeService:
    """In-memory stand-in for StripeService"""

    def __init__(self, intent_status: str = "succeeded", enabled: bool = True):
        self.enabled = enabled
        self.publishable_key = "pk_test_fake"
        self.intent_status = intent_status
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.refunds: List[str] = []

    def require_enabled(self) -> None:
        if not self.enabled:
            raise PaymentGatewayNotConfigured()

    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "USD",
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {"amount": amount, "currency": currency, "metadata": metadata or {}}
        return {"id": intent_id, "client_secret": f"{intent_id}_secret", "customer_id": "cus_test"}

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        failed = self.intent_status in ("requires_payment_method", "canceled")
        return {
            "id": payment_intent_id,
            "status": self.intent_status,
            "payment_method": "card",
            "last_error": "Your card was declined." if failed else None,
        }

    async def refund(self, payment_intent_id: str, amount: Optional[float] = None) -> Dict[str, Any]:
        self.refunds.append(payment_intent_id)
        return {"id": f"re_{payment_intent_id}", "status": "succeeded"}


class FakePushService:
    """Records deliveries; endpoints listed in `gone` answer as expired"""

    def __init__(self, gone: Optional[List[str]] = None):
        self.public_key = "BFakeVapidPublicKey"
        self.enabled = True
        self.gone = set(gone or [])
        self.sent: List[Dict[str, Any]] = []

    async def send_to_many(self, subscriptions, payload: Dict[str, Any]) -> Dict[str, Any]:
        results = {"total_sent": 0, "delivered": 0, "failed": 0, "errors": [], "expired": []}
        for subscription in subscriptions:
            results["total_sent"] += 1
            if subscription.endpoint in self.gone:
                results["failed"] += 1
                results["errors"].append({"endpoint": subscription.endpoint, "error": "410 Gone"})
                results["expired"].append(subscription.endpoint)
                continue
            results["delivered"] += 1
            self.sent.append({"endpoint": subscription.endpoint, "payload": payload})
        return results

