"""
Prop-firm packages and services API

Services are created by the payment flow (type prop_firm_service); this
router only reads, reviews and cancels them.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import CancelRequest, PackageRequest, ServiceUpdateRequest
from src.api.serializers import envelope, package_to_dict, prop_firm_service_to_dict
from src.database.crud import list_packages
from src.database.engine import get_session
from src.database.models import User
from src.services import prop_firm_service

packages_router = APIRouter(prefix="/prop-firm-packages", tags=["prop-firm"])
services_router = APIRouter(prefix="/prop-firm-services", tags=["prop-firm"])


# ===========================
# PACKAGES
# ===========================


@packages_router.get("")
async def active_packages(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    packages = await list_packages(session, active_only=True)
    return envelope([package_to_dict(p) for p in packages], count=len(packages))


@packages_router.get("/admin/all")
async def all_packages(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    packages = await list_packages(session, active_only=False)
    return envelope([package_to_dict(p) for p in packages], count=len(packages))


@packages_router.get("/{package_id}")
async def get_package(package_id: int, session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    return envelope(package_to_dict(await prop_firm_service.get_package_or_404(session, package_id)))


@packages_router.post("", status_code=201)
async def create_package(
    request: PackageRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    package = await prop_firm_service.create_package(session, request.fields_set())
    return envelope(package_to_dict(package), message="Package created successfully")


@packages_router.put("/{package_id}")
async def update_package(
    package_id: int,
    request: PackageRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    package = await prop_firm_service.update_package(session, package_id, request.fields_set())
    return envelope(package_to_dict(package), message="Package updated successfully")


@packages_router.delete("/{package_id}")
async def delete_package(
    package_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await prop_firm_service.delete_package(session, package_id)
    return envelope(message="Package deleted successfully")


# ===========================
# SERVICES
# ===========================


@services_router.get("/my-services")
async def my_services(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    services = await prop_firm_service.list_services(session, user_id=user.id)
    return envelope([prop_firm_service_to_dict(s) for s in services], count=len(services))


@services_router.get("")
async def all_services(
    status: Optional[str] = None,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    services = await prop_firm_service.list_services(session, status=status)
    return envelope(
        [prop_firm_service_to_dict(s, include_credentials=True) for s in services], count=len(services)
    )


@services_router.get("/{service_id}")
async def get_service(
    service_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    service = await prop_firm_service.get_service_for(session, service_id, user)
    return envelope(prop_firm_service_to_dict(service, include_credentials=user.is_admin))


@services_router.put("/{service_id}")
async def update_service(
    service_id: int,
    request: ServiceUpdateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    service = await prop_firm_service.admin_update_service(
        session,
        service_id,
        status=request.status,
        verification_status=request.verification_status,
        admin_notes=request.admin_notes,
    )
    return envelope(prop_firm_service_to_dict(service, include_credentials=True), message="Service updated")


@services_router.post("/{service_id}/cancel")
async def cancel_service(
    service_id: int,
    request: Optional[CancelRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    service = await prop_firm_service.cancel_service(
        session, service_id, user, request.reason if request else None
    )
    return envelope(prop_firm_service_to_dict(service), message="Service cancelled")
