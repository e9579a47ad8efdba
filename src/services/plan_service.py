"""
Signal and mentorship plan management

Both plan kinds share the same lifecycle: admin create (which also opens
the plan's chat room), partial update, and delete guarded by active
subscriptions.
"""

from typing import Any, Dict, Type

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import PlanDuration
from src.core.exceptions import DomainRuleViolation, NotFound, ValidationFailed
from src.database.crud import (
    count_active_plan_subscriptions,
    create_chatbox,
    create_mentorship_chatbox,
)
from src.database.models import MentorshipPlan, SignalPlan


SIGNAL_PLAN_FIELDS = (
    "name",
    "description",
    "original_price",
    "price",
    "duration",
    "features",
    "is_active",
    "is_popular",
    "max_subscribers",
    "signal_frequency",
    "risk_level",
    "success_rate",
)

MENTORSHIP_PLAN_FIELDS = (
    "name",
    "description",
    "price",
    "duration",
    "pricing_type",
    "features",
    "is_active",
    "is_popular",
    "max_subscribers",
    "session_frequency",
    "max_sessions_per_month",
    "mentor_name",
    "mentor_bio",
)

REQUIRED_FIELDS = {
    SignalPlan: ("name", "price"),
    MentorshipPlan: ("name", "description", "price", "mentor_name"),
}


def _fields_for(model: Type[SignalPlan | MentorshipPlan]) -> tuple:
    return SIGNAL_PLAN_FIELDS if model is SignalPlan else MENTORSHIP_PLAN_FIELDS


def _clean(model, data: Dict[str, Any]) -> Dict[str, Any]:
    values = {key: value for key, value in data.items() if key in _fields_for(model) and value is not None}

    if "price" in values and float(values["price"]) < 0:
        raise ValidationFailed("Price cannot be negative", fields=["price"])
    if "duration" in values:
        try:
            values["duration"] = PlanDuration(str(values["duration"]).replace("_", "-")).value
        except ValueError:
            raise ValidationFailed("Invalid duration", fields=["duration"])
    if values.get("max_subscribers") is not None and int(values["max_subscribers"]) < 1:
        raise ValidationFailed("Max subscribers must be at least 1", fields=["max_subscribers"])
    return values


async def create_plan(
    session: AsyncSession,
    model: Type[SignalPlan | MentorshipPlan],
    data: Dict[str, Any],
    created_by: int,
) -> SignalPlan | MentorshipPlan:
    """
    Create a plan together with its chat room

    Args:
        session: Database session
        model: SignalPlan or MentorshipPlan
        data: snake_case plan fields
        created_by: Admin user ID

    Raises:
        ValidationFailed: missing or invalid fields
    """
    missing = [field for field in REQUIRED_FIELDS[model] if data.get(field) in (None, "")]
    if missing:
        raise ValidationFailed(fields=missing)

    plan = model(**_clean(model, data), created_by=created_by)
    session.add(plan)
    await session.flush()

    if model is SignalPlan:
        await create_chatbox(session, plan.id)
    else:
        await create_mentorship_chatbox(session, plan.id)

    await session.commit()
    await session.refresh(plan)

    logger.info(f"{model.__name__} {plan.id} '{plan.name}' created by admin {created_by}")
    return plan


async def get_plan_or_404(
    session: AsyncSession, model: Type[SignalPlan | MentorshipPlan], plan_id: int
) -> SignalPlan | MentorshipPlan:
    plan = await session.get(model, plan_id)
    if not plan:
        label = "Signal plan" if model is SignalPlan else "Mentorship plan"
        raise NotFound(f"{label} not found")
    return plan


async def update_plan(
    session: AsyncSession,
    model: Type[SignalPlan | MentorshipPlan],
    plan_id: int,
    updates: Dict[str, Any],
) -> SignalPlan | MentorshipPlan:
    plan = await get_plan_or_404(session, model, plan_id)
    values = _clean(model, updates)

    if values.get("max_subscribers") is not None and values["max_subscribers"] < plan.current_subscribers:
        raise ValidationFailed(
            "Max subscribers cannot be lower than current subscribers", fields=["max_subscribers"]
        )

    for key, value in values.items():
        setattr(plan, key, value)
    await session.commit()
    await session.refresh(plan)
    return plan


async def delete_plan(
    session: AsyncSession, model: Type[SignalPlan | MentorshipPlan], plan_id: int
) -> None:
    """
    Raises:
        NotFound, DomainRuleViolation: plan still has active subscriptions
    """
    plan = await get_plan_or_404(session, model, plan_id)

    if model is SignalPlan:
        active = await count_active_plan_subscriptions(session, signal_plan_id=plan_id)
    else:
        active = await count_active_plan_subscriptions(session, mentorship_plan_id=plan_id)
    if active:
        raise DomainRuleViolation(f"Cannot delete plan with {active} active subscriptions")

    await session.delete(plan)
    await session.commit()
    logger.info(f"{model.__name__} {plan_id} deleted")
