# coding: utf-8
"""
Sentry error monitoring for the CTG API
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT
from src.core.exceptions import PlatformError

FILTERED_HEADERS = ("authorization", "x-cron-secret", "stripe-signature")
# Request body keys that hold credentials (login, MT5 account, push keys)
FILTERED_FIELDS = ("password", "currentPassword", "newPassword", "auth", "p256dh")


def init_sentry() -> None:
    """
    Initialize the Sentry SDK

    No-op without SENTRY_DSN. Tracing samples 10% of requests in production.
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            # FastAPI/Starlette integrations are enabled by default
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),  # MT5 bridge calls
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized (environment={ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def _scrub(mapping: dict, keys) -> None:
    for key in list(mapping):
        if key.lower() in keys or key in keys:
            mapping[key] = "[Filtered]"
        elif isinstance(mapping[key], dict):
            _scrub(mapping[key], keys)


def before_send_hook(event, hint):
    """
    Drop expected client errors and scrub credentials

    PlatformError below 500 is a normal API answer (404, 409, ...) and
    is not worth an issue.
    """
    if "exc_info" in hint:
        exc_value = hint["exc_info"][1]
        if isinstance(exc_value, KeyboardInterrupt):
            return None
        if isinstance(exc_value, PlatformError) and exc_value.status_code < 500:
            return None

    request = event.get("request")
    if request:
        _scrub(request.get("headers") or {}, FILTERED_HEADERS)
        if isinstance(request.get("data"), dict):
            _scrub(request["data"], FILTERED_FIELDS)

    return event


def set_user_context(user_id: int, username: str = None):
    """Attach the authenticated platform user to subsequent events"""
    sentry_sdk.set_user({
        "id": str(user_id),
        "username": username or f"user_{user_id}"
    })
