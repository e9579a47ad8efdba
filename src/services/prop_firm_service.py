"""
Prop-firm account management: packages and purchased services
"""

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import PaymentStatus, PropFirmServiceStatus, VerificationStatus
from src.core.exceptions import DomainRuleViolation, Forbidden, NotFound, ValidationFailed
from src.database.crud import get_package, get_payment, get_prop_firm_service, list_prop_firm_services
from src.database.models import PropFirmPackage, PropFirmService, User


PACKAGE_FIELDS = ("name", "description", "price", "features", "is_active", "max_clients", "duration_days")
CANCELLABLE_STATUSES = (PropFirmServiceStatus.PENDING.value, PropFirmServiceStatus.ACTIVE.value)


# ===========================
# PACKAGES
# ===========================


def _package_values(data: Dict[str, Any]) -> Dict[str, Any]:
    values = {key: value for key, value in data.items() if key in PACKAGE_FIELDS and value is not None}
    if "price" in values and float(values["price"]) < 0:
        raise ValidationFailed("Price cannot be negative", fields=["price"])
    if "duration_days" in values and int(values["duration_days"]) < 1:
        raise ValidationFailed("Duration must be at least 1 day", fields=["duration_days"])
    return values


async def create_package(session: AsyncSession, data: Dict[str, Any]) -> PropFirmPackage:
    missing = [field for field in ("name", "price") if data.get(field) in (None, "")]
    if missing:
        raise ValidationFailed(fields=missing)

    package = PropFirmPackage(**_package_values(data))
    session.add(package)
    await session.commit()
    await session.refresh(package)
    logger.info(f"Prop firm package {package.id} '{package.name}' created")
    return package


async def get_package_or_404(session: AsyncSession, package_id: int) -> PropFirmPackage:
    package = await get_package(session, package_id)
    if not package:
        raise NotFound("Prop firm package not found")
    return package


async def update_package(session: AsyncSession, package_id: int, data: Dict[str, Any]) -> PropFirmPackage:
    package = await get_package_or_404(session, package_id)
    for key, value in _package_values(data).items():
        setattr(package, key, value)
    await session.commit()
    await session.refresh(package)
    return package


async def delete_package(session: AsyncSession, package_id: int) -> None:
    """
    Raises:
        NotFound, DomainRuleViolation: package still has clients
    """
    package = await get_package_or_404(session, package_id)
    if package.current_clients > 0:
        raise DomainRuleViolation("Cannot delete package with active clients")
    await session.delete(package)
    await session.commit()


# ===========================
# SERVICES
# ===========================


async def get_service_for(session: AsyncSession, service_id: int, user: User) -> PropFirmService:
    service = await get_prop_firm_service(session, service_id)
    if not service:
        raise NotFound("Prop firm service not found")
    if service.user_id != user.id and not user.is_admin:
        raise Forbidden("Access denied")
    return service


async def list_services(
    session: AsyncSession, user_id: Optional[int] = None, status: Optional[str] = None
) -> List[PropFirmService]:
    return await list_prop_firm_services(session, user_id=user_id, status=None if status == "all" else status)


async def admin_update_service(
    session: AsyncSession,
    service_id: int,
    status: Optional[str] = None,
    verification_status: Optional[str] = None,
    admin_notes: Optional[str] = None,
) -> PropFirmService:
    """Set status and/or verification status (admin)"""
    service = await get_prop_firm_service(session, service_id)
    if not service:
        raise NotFound("Prop firm service not found")

    if status:
        try:
            service.status = PropFirmServiceStatus(status).value
        except ValueError:
            raise ValidationFailed("Invalid status", fields=["status"])
    if verification_status:
        try:
            service.verification_status = VerificationStatus(verification_status).value
        except ValueError:
            raise ValidationFailed("Invalid verification status", fields=["verificationStatus"])
    if admin_notes is not None:
        service.admin_notes = admin_notes

    await session.commit()
    logger.info(
        f"Prop firm service {service_id} updated: status={service.status}, "
        f"verification={service.verification_status}"
    )
    return service


async def cancel_service(
    session: AsyncSession, service_id: int, user: User, reason: Optional[str] = None
) -> PropFirmService:
    """
    Owner cancellation from pending or active

    A package slot taken by the completed payment is given back.
    """
    service = await get_service_for(session, service_id, user)
    if service.status not in CANCELLABLE_STATUSES:
        raise DomainRuleViolation(f"Cannot cancel a service that is {service.status}")

    service.status = PropFirmServiceStatus.CANCELLED.value
    service.cancelled_at = datetime.now(UTC)
    service.cancellation_reason = reason or "Cancelled by user"

    payment = await get_payment(session, service.payment_id) if service.payment_id else None
    if service.package_id and payment and payment.status == PaymentStatus.COMPLETED.value:
        stmt = (
            update(PropFirmPackage)
            .where(PropFirmPackage.id == service.package_id, PropFirmPackage.current_clients > 0)
            .values(current_clients=PropFirmPackage.current_clients - 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    await session.commit()
    logger.info(f"Prop firm service {service_id} cancelled by user {user.id}")
    return service
