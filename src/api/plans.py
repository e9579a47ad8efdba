"""
Signal plan and mentorship plan API

Both resources share one route layout:
    GET    /            active plans by price (public)
    GET    /admin/all   every plan (admin)
    GET    /{id}        one plan (public)
    POST   /            create, with its chat room (admin)
    PUT    /{id}        update (admin)
    DELETE /{id}        delete unless it has active subscriptions (admin)
"""

from typing import Any, Callable, Dict, Type

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import require_admin
from src.api.schemas import MentorshipPlanRequest, SignalPlanRequest
from src.api.serializers import envelope, mentorship_plan_to_dict, signal_plan_to_dict
from src.database.crud import list_mentorship_plans, list_signal_plans
from src.database.engine import get_session
from src.database.models import MentorshipPlan, SignalPlan, User
from src.services import plan_service


def build_plan_router(
    prefix: str,
    tag: str,
    model: Type[SignalPlan | MentorshipPlan],
    request_model: Type[BaseModel],
    to_dict: Callable[[Any], Dict[str, Any]],
    list_plans: Callable,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("")
    async def list_active(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
        plans = await list_plans(session, active_only=True)
        return envelope([to_dict(plan) for plan in plans], count=len(plans))

    @router.get("/admin/all")
    async def list_all(
        admin: User = Depends(require_admin),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        plans = await list_plans(session, active_only=False)
        return envelope([to_dict(plan) for plan in plans], count=len(plans))

    @router.get("/{plan_id}")
    async def get_plan(plan_id: int, session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
        return envelope(to_dict(await plan_service.get_plan_or_404(session, model, plan_id)))

    @router.post("", status_code=201)
    async def create_plan(
        request: request_model,
        admin: User = Depends(require_admin),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        plan = await plan_service.create_plan(session, model, request.fields_set(), admin.id)
        return envelope(to_dict(plan), message="Plan created successfully")

    @router.put("/{plan_id}")
    async def update_plan(
        plan_id: int,
        request: request_model,
        admin: User = Depends(require_admin),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        plan = await plan_service.update_plan(session, model, plan_id, request.fields_set())
        return envelope(to_dict(plan), message="Plan updated successfully")

    @router.delete("/{plan_id}")
    async def delete_plan(
        plan_id: int,
        admin: User = Depends(require_admin),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        await plan_service.delete_plan(session, model, plan_id)
        return envelope(message="Plan deleted successfully")

    return router


signal_plans_router = build_plan_router(
    "/signal-plans", "signal-plans", SignalPlan, SignalPlanRequest, signal_plan_to_dict, list_signal_plans
)
mentorship_plans_router = build_plan_router(
    "/mentorship-plans",
    "mentorship-plans",
    MentorshipPlan,
    MentorshipPlanRequest,
    mentorship_plan_to_dict,
    list_mentorship_plans,
)
