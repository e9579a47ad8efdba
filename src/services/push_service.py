"""
Web Push delivery (VAPID) via pywebpush

pywebpush is blocking (requests under the hood), so each send runs in a
worker thread; sends for one dispatch run concurrently up to a small limit.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Sequence, Tuple

from loguru import logger
from pywebpush import WebPushException, webpush

from config.config import VAPID_CLAIM_EMAIL, VAPID_PRIVATE_KEY, VAPID_PUBLIC_KEY
from src.database.models import PushSubscription


# HTTP 410 Gone: the browser dropped the subscription
EXPIRED_STATUS_CODES = (404, 410)


class PushService:
    """Send one payload to many push endpoints"""

    def __init__(
        self,
        public_key: str = VAPID_PUBLIC_KEY,
        private_key: str = VAPID_PRIVATE_KEY,
        claim_email: str = VAPID_CLAIM_EMAIL,
        concurrency: int = 10,
    ):
        self.public_key = public_key
        self.private_key = private_key
        self.claim_email = claim_email
        self.concurrency = concurrency

        if not self.enabled:
            logger.warning("VAPID keys are not set, web push notifications are disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self.private_key)

    def _send_blocking(self, subscription_info: Dict[str, Any], data: str) -> None:
        webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=self.private_key,
            vapid_claims={"sub": self.claim_email},
        )

    async def send_one(
        self, subscription: PushSubscription, data: str
    ) -> Tuple[bool, Optional[str], bool]:
        """
        Returns:
            (delivered, error_message, expired)
        """
        try:
            await asyncio.to_thread(self._send_blocking, subscription.as_webpush_info(), data)
            return True, None, False
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in EXPIRED_STATUS_CODES:
                logger.info(f"Push endpoint expired ({status_code}): {subscription.endpoint[:50]}...")
                return False, str(e), True
            logger.warning(f"Push delivery failed ({status_code}): {e}")
            return False, str(e), False
        except Exception as e:
            logger.exception(f"Error sending push to {subscription.endpoint[:50]}...: {e}")
            return False, str(e), False

    async def send_to_many(
        self, subscriptions: Sequence[PushSubscription], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Deliver a payload to every subscription

        Args:
            subscriptions: Target push endpoints
            payload: JSON-serialisable notification body (title, body, data...)

        Returns:
            {"total_sent", "delivered", "failed", "errors", "expired"} where
            expired lists endpoints that answered 404/410
        """
        results: Dict[str, Any] = {
            "total_sent": 0,
            "delivered": 0,
            "failed": 0,
            "errors": [],
            "expired": [],
        }

        if not self.enabled:
            results["errors"].append("VAPID details not set. Cannot send push notifications.")
            return results

        data = json.dumps(payload, ensure_ascii=False, default=str)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _send(subscription: PushSubscription):
            async with semaphore:
                return subscription, await self.send_one(subscription, data)

        outcomes = await asyncio.gather(*(_send(sub) for sub in subscriptions))

        for subscription, (delivered, error, expired) in outcomes:
            results["total_sent"] += 1
            if delivered:
                results["delivered"] += 1
                continue
            results["failed"] += 1
            results["errors"].append({"endpoint": subscription.endpoint, "error": error})
            if expired:
                results["expired"].append(subscription.endpoint)

        logger.info(
            f"Push dispatch: sent={results['total_sent']}, delivered={results['delivered']}, "
            f"failed={results['failed']}, expired={len(results['expired'])}"
        )
        return results


_push_service: Optional[PushService] = None


def get_push_service() -> PushService:
    global _push_service
    if _push_service is None:
        _push_service = PushService()
    return _push_service
