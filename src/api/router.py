"""
FastAPI Router for the trading platform API
"""

from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.engine import get_session, ping

# Import sub-routers
from src.api.users import auth_router, router as users_router
from src.api.challenges import router as challenges_router
from src.api.leaderboard import router as leaderboard_router
from src.api.plans import signal_plans_router, mentorship_plans_router
from src.api.subscriptions import router as subscriptions_router
from src.api.payments import router as payments_router
from src.api.notifications import router as notifications_router
from src.api.chatboxes import router as chatboxes_router, mentorship_router as mentorship_chatboxes_router
from src.api.support import router as support_router
from src.api.prop_firm import packages_router, services_router
from src.api.tasks import router as tasks_router


router = APIRouter()

# Include sub-routers (they carry their own prefixes)
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(challenges_router)
router.include_router(leaderboard_router)
router.include_router(signal_plans_router)
router.include_router(mentorship_plans_router)
router.include_router(subscriptions_router)
router.include_router(payments_router)  # Stripe PaymentIntents; webhook acknowledged only
router.include_router(notifications_router)  # Web push
router.include_router(chatboxes_router)
router.include_router(mentorship_chatboxes_router)
router.include_router(support_router)
router.include_router(packages_router)
router.include_router(services_router)
router.include_router(tasks_router)  # Cron / admin job triggers


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)) -> Dict[str, str]:
    """
    Health check endpoint (no auth required)
    """
    return {
        "status": "ok",
        "service": "Trading Challenge Platform API",
        "database": "ok" if await ping(session) else "unavailable",
    }
