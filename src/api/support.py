"""
Support tickets API
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import TicketCreateRequest, TicketMessageRequest, TicketUpdateRequest
from src.api.serializers import envelope, ticket_to_dict
from src.database.engine import get_session
from src.database.models import User
from src.services import support_service

router = APIRouter(prefix="/support", tags=["support"])


@router.post("/tickets", status_code=201)
async def create_ticket(
    request: TicketCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    ticket = await support_service.create_ticket(
        session, user, request.subject, request.message, request.category, request.priority
    )
    return envelope(ticket_to_dict(ticket), message="Support ticket created")


@router.get("/tickets/my-tickets")
async def my_tickets(
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    tickets = await support_service.list_user_tickets(session, user.id, status)
    return envelope([ticket_to_dict(t) for t in tickets], count=len(tickets))


@router.get("/tickets")
async def all_tickets(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    tickets = await support_service.list_all_tickets(session, status=status, priority=priority)
    return envelope([ticket_to_dict(t) for t in tickets], count=len(tickets))


@router.get("/stats")
async def support_stats(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await support_service.get_support_stats(session))


@router.get("/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(ticket_to_dict(await support_service.get_ticket_for(session, ticket_id, user)))


@router.post("/tickets/{ticket_id}/messages")
async def add_message(
    ticket_id: int,
    request: TicketMessageRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    ticket = await support_service.add_message(session, ticket_id, user, request.message)
    return envelope(ticket_to_dict(ticket), message="Message added")


@router.put("/tickets/{ticket_id}")
async def update_ticket(
    ticket_id: int,
    request: TicketUpdateRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    ticket = await support_service.update_ticket(
        session, ticket_id, status=request.status, priority=request.priority, category=request.category
    )
    return envelope(ticket_to_dict(ticket), message="Ticket updated")


@router.delete("/tickets/{ticket_id}")
async def delete_ticket(
    ticket_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await support_service.delete_ticket(session, ticket_id)
    return envelope(message="Ticket deleted")
