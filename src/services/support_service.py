"""
Support tickets

Users open tickets and talk to admins on them; a closed ticket is read-only.
"""

from typing import List, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import TicketPriority, TicketStatus
from src.core.exceptions import DomainRuleViolation, Forbidden, NotFound, ValidationFailed
from src.database.crud import add_ticket_message, get_ticket, list_tickets
from src.database.models import SupportMessage, SupportTicket, User


TICKET_CATEGORIES = ("technical", "billing", "general", "feature_request", "bug_report")


def _parse_priority(priority: Optional[str]) -> str:
    try:
        return TicketPriority(priority or TicketPriority.MEDIUM.value).value
    except ValueError:
        raise ValidationFailed("Invalid priority", fields=["priority"])


async def create_ticket(
    session: AsyncSession,
    user: User,
    subject: Optional[str],
    message: Optional[str],
    category: Optional[str] = None,
    priority: Optional[str] = None,
) -> SupportTicket:
    if not subject or not message:
        raise ValidationFailed("Subject and message are required", fields=["subject", "message"])

    category = category or "general"
    if category not in TICKET_CATEGORIES:
        raise ValidationFailed("Invalid category", fields=["category"])

    ticket = SupportTicket(
        user_id=user.id,
        subject=subject.strip(),
        category=category,
        priority=_parse_priority(priority),
        status=TicketStatus.OPEN.value,
        messages=[SupportMessage(sender_id=user.id, is_admin=False, content=message.strip())],
    )
    session.add(ticket)
    await session.commit()

    logger.info(f"Support ticket {ticket.id} opened by user {user.id}: {ticket.subject}")
    return await get_ticket(session, ticket.id)


async def get_ticket_for(session: AsyncSession, ticket_id: int, user: User) -> SupportTicket:
    """
    Raises:
        NotFound, Forbidden: not the owner and not an admin
    """
    ticket = await get_ticket(session, ticket_id)
    if not ticket:
        raise NotFound("Support ticket not found")
    if ticket.user_id != user.id and not user.is_admin:
        raise Forbidden("Access denied")
    return ticket


async def add_message(
    session: AsyncSession, ticket_id: int, user: User, content: Optional[str]
) -> SupportTicket:
    """
    Owner message or admin reply. An admin reply moves an open ticket to in_progress.

    Raises:
        ValidationFailed: empty message
        NotFound, Forbidden
        DomainRuleViolation: the ticket is closed
    """
    if not content or not content.strip():
        raise ValidationFailed("Message cannot be empty", fields=["message"])

    ticket = await get_ticket_for(session, ticket_id, user)
    if ticket.status == TicketStatus.CLOSED.value:
        raise DomainRuleViolation("This ticket is closed")

    if user.is_admin and ticket.status == TicketStatus.OPEN.value:
        ticket.status = TicketStatus.IN_PROGRESS.value
    await add_ticket_message(session, ticket, user.id, content.strip(), is_admin=user.is_admin)

    return await get_ticket(session, ticket_id)


async def update_ticket(
    session: AsyncSession,
    ticket_id: int,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
) -> SupportTicket:
    """Admin update of status, priority and category"""
    ticket = await get_ticket(session, ticket_id)
    if not ticket:
        raise NotFound("Support ticket not found")

    if status:
        try:
            ticket.status = TicketStatus(status).value
        except ValueError:
            raise ValidationFailed("Invalid status", fields=["status"])
    if priority:
        ticket.priority = _parse_priority(priority)
    if category:
        if category not in TICKET_CATEGORIES:
            raise ValidationFailed("Invalid category", fields=["category"])
        ticket.category = category

    await session.commit()
    logger.info(f"Support ticket {ticket_id} updated: status={ticket.status}, priority={ticket.priority}")
    return await get_ticket(session, ticket_id)


async def delete_ticket(session: AsyncSession, ticket_id: int) -> None:
    ticket = await get_ticket(session, ticket_id)
    if not ticket:
        raise NotFound("Support ticket not found")
    await session.delete(ticket)
    await session.commit()


async def list_user_tickets(
    session: AsyncSession, user_id: int, status: Optional[str] = None
) -> List[SupportTicket]:
    return await list_tickets(session, user_id=user_id, status=None if status == "all" else status)


async def list_all_tickets(
    session: AsyncSession, status: Optional[str] = None, priority: Optional[str] = None
) -> List[SupportTicket]:
    return await list_tickets(
        session,
        status=None if status == "all" else status,
        priority=None if priority == "all" else priority,
    )


async def get_support_stats(session: AsyncSession) -> dict:
    """Ticket counts by status and by priority"""
    by_status = dict(
        (await session.execute(
            select(SupportTicket.status, func.count(SupportTicket.id)).group_by(SupportTicket.status)
        )).all()
    )
    by_priority = dict(
        (await session.execute(
            select(SupportTicket.priority, func.count(SupportTicket.id)).group_by(SupportTicket.priority)
        )).all()
    )
    return {
        "total": sum(by_status.values()),
        "byStatus": {status.value: by_status.get(status.value, 0) for status in TicketStatus},
        "byPriority": {priority.value: by_priority.get(priority.value, 0) for priority in TicketPriority},
    }
