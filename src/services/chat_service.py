"""
Plan chat rooms

Signal-plan chatboxes are gated by an active subscription; mentorship
chatboxes by an active membership. Admins see and post everywhere.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import DomainRuleViolation, Forbidden, NotFound, ValidationFailed
from src.database.crud import (
    get_active_subscription,
    get_chatbox_by_plan,
    get_chatbox_message,
    get_chatbox_messages,
    get_mentorship_chatbox_by_plan,
    get_mentorship_member,
    get_mentorship_messages,
    get_subscription,
)
from src.database.models import (
    Chatbox,
    ChatboxMessage,
    MentorshipChatbox,
    MentorshipChatboxMember,
    MentorshipChatboxMessage,
    User,
)


ADMIN_ONLY_MESSAGE_TYPES = ("signal", "announcement")
SIGNAL_MESSAGE_TYPES = ("general", "signal", "announcement")
MENTORSHIP_MESSAGE_TYPES = ("lesson", "question", "feedback", "general", "session")


# ===========================
# SIGNAL PLAN CHATBOX
# ===========================


async def _open_signal_chatbox(session: AsyncSession, plan_id: int, user: User) -> Chatbox:
    if not user.is_admin:
        if not await get_active_subscription(session, user.id, signal_plan_id=plan_id):
            raise Forbidden("You are not subscribed to this signal plan")

    chatbox = await get_chatbox_by_plan(session, plan_id)
    if not chatbox:
        raise NotFound("Chatbox not found")
    return chatbox


async def get_signal_messages(
    session: AsyncSession, plan_id: int, user: User, limit: int = 100
) -> tuple[Chatbox, List[ChatboxMessage]]:
    chatbox = await _open_signal_chatbox(session, plan_id, user)
    return chatbox, await get_chatbox_messages(session, chatbox.id, limit)


async def post_signal_message(
    session: AsyncSession,
    plan_id: int,
    user: User,
    content: Optional[str],
    message_type: Optional[str] = None,
) -> ChatboxMessage:
    """
    Post into a signal-plan chatbox

    Raises:
        ValidationFailed: empty content or unknown type
        Forbidden: not subscribed, subscriber messages disabled, or a
            non-admin posting a signal/announcement
    """
    message_type = message_type or "general"
    if not content or not content.strip():
        raise ValidationFailed("Message content is required", fields=["content"])
    if message_type not in SIGNAL_MESSAGE_TYPES:
        raise ValidationFailed("Invalid message type", fields=["messageType"])
    if message_type in ADMIN_ONLY_MESSAGE_TYPES and not user.is_admin:
        raise Forbidden("Only admins can send signals")

    chatbox = await _open_signal_chatbox(session, plan_id, user)
    if not user.is_admin and not chatbox.allow_subscriber_messages:
        raise Forbidden("Subscribers are not allowed to send messages in this chatbox")

    message = ChatboxMessage(
        chatbox_id=chatbox.id,
        sender_id=user.id,
        content=content.strip(),
        message_type=message_type,
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)

    if message_type == "signal":
        logger.info(f"Signal posted to plan {plan_id} chatbox by admin {user.id}")
    return message


async def _plan_message_or_404(session: AsyncSession, plan_id: int, message_id: int) -> ChatboxMessage:
    chatbox = await get_chatbox_by_plan(session, plan_id)
    message = await get_chatbox_message(session, message_id)
    if not chatbox or not message or message.chatbox_id != chatbox.id:
        raise NotFound("Message not found")
    return message


async def toggle_signal_pin(session: AsyncSession, plan_id: int, message_id: int) -> ChatboxMessage:
    message = await _plan_message_or_404(session, plan_id, message_id)
    message.is_pinned = not message.is_pinned
    await session.commit()
    return message


async def delete_signal_message(session: AsyncSession, plan_id: int, message_id: int) -> None:
    message = await _plan_message_or_404(session, plan_id, message_id)
    await session.delete(message)
    await session.commit()


# ===========================
# MENTORSHIP CHATBOX
# ===========================


async def _open_mentorship_chatbox(
    session: AsyncSession, plan_id: int, user: User
) -> tuple[MentorshipChatbox, Optional[MentorshipChatboxMember]]:
    chatbox = await get_mentorship_chatbox_by_plan(session, plan_id)
    if not chatbox:
        raise NotFound("Chatbox not found for this mentorship plan")

    if user.is_admin:
        return chatbox, None

    member = await get_mentorship_member(session, chatbox.id, user.id)
    if not member or not member.is_active:
        raise Forbidden("You are not subscribed to this mentorship plan")
    return chatbox, member


async def get_mentorship_chat(
    session: AsyncSession, plan_id: int, user: User, limit: int = 100
) -> tuple[MentorshipChatbox, List[MentorshipChatboxMessage]]:
    chatbox, _ = await _open_mentorship_chatbox(session, plan_id, user)
    return chatbox, await get_mentorship_messages(session, chatbox.id, limit)


async def post_mentorship_message(
    session: AsyncSession,
    plan_id: int,
    user: User,
    content: Optional[str],
    message_type: Optional[str] = None,
) -> MentorshipChatboxMessage:
    """
    Raises:
        ValidationFailed: empty, too long, or unknown type
        Forbidden: not a member, or students muted
    """
    message_type = message_type or "general"
    if not content or not content.strip():
        raise ValidationFailed("Message content is required", fields=["content"])
    if message_type not in MENTORSHIP_MESSAGE_TYPES or message_type == "session":
        raise ValidationFailed("Invalid message type", fields=["messageType"])

    chatbox, _ = await _open_mentorship_chatbox(session, plan_id, user)

    if len(content) > chatbox.max_message_length:
        raise ValidationFailed(
            f"Message exceeds maximum length of {chatbox.max_message_length} characters",
            fields=["content"],
        )

    sender_type = "mentor" if user.is_admin else "student"
    if sender_type == "student" and not chatbox.allow_student_messages:
        raise Forbidden("Students are not allowed to send messages in this chatbox")

    message = MentorshipChatboxMessage(
        chatbox_id=chatbox.id,
        sender_id=user.id,
        sender_type=sender_type,
        content=content.strip(),
        message_type=message_type,
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


async def toggle_mentorship_pin(session: AsyncSession, plan_id: int, message_id: int) -> MentorshipChatboxMessage:
    chatbox = await get_mentorship_chatbox_by_plan(session, plan_id)
    message = await session.get(MentorshipChatboxMessage, message_id)
    if not chatbox or not message or message.chatbox_id != chatbox.id:
        raise NotFound("Message not found")
    message.is_pinned = not message.is_pinned
    await session.commit()
    return message


async def schedule_session(
    session: AsyncSession,
    plan_id: int,
    user: User,
    scheduled_date: Optional[datetime],
    duration: Optional[int] = None,
    topic: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Book a mentorship session for the calling student

    Appends a `session` message to the chatbox, bumps the member's
    session_count and mirrors it (plus history) onto the subscription.

    Returns:
        {"scheduledDate", "duration", "topic", "sessionCount", "maxSessions"}

    Raises:
        ValidationFailed, Forbidden: not an active member,
        DomainRuleViolation: monthly session limit reached
    """
    if scheduled_date is None:
        raise ValidationFailed("Scheduled date is required", fields=["scheduledDate"])

    chatbox = await get_mentorship_chatbox_by_plan(session, plan_id)
    if not chatbox:
        raise NotFound("Chatbox not found")
    if not chatbox.session_booking_enabled:
        raise Forbidden("Session booking is disabled for this mentorship plan")

    member = await get_mentorship_member(session, chatbox.id, user.id)
    if not member or not member.is_active:
        raise Forbidden("You are not subscribed to this mentorship plan")
    if member.session_count >= member.max_sessions:
        raise DomainRuleViolation("You have reached your monthly session limit")

    session_data = {
        "scheduledDate": scheduled_date.isoformat(),
        "duration": duration or 60,
        "topic": topic or "General Discussion",
        "notes": notes or "",
        "status": "scheduled",
    }

    session.add(
        MentorshipChatboxMessage(
            chatbox_id=chatbox.id,
            sender_id=user.id,
            sender_type="student",
            content=f"Session scheduled: {session_data['topic']}",
            message_type="session",
            session_data=session_data,
        )
    )
    member.session_count += 1

    if member.subscription_id:
        subscription = await get_subscription(session, member.subscription_id)
        if subscription:
            subscription.session_count = member.session_count
            subscription.next_session_date = scheduled_date
            # JSON column: reassign so the change is tracked
            subscription.session_history = [*(subscription.session_history or []), session_data]

    await session.commit()
    logger.info(
        f"User {user.id} booked mentorship session {member.session_count}/{member.max_sessions} "
        f"on plan {plan_id} at {scheduled_date.isoformat()}"
    )

    return {
        "scheduledDate": session_data["scheduledDate"],
        "duration": session_data["duration"],
        "topic": session_data["topic"],
        "sessionCount": member.session_count,
        "maxSessions": member.max_sessions,
    }


async def get_session_history(session: AsyncSession, plan_id: int, user: User) -> Dict[str, Any]:
    chatbox, member = await _open_mentorship_chatbox(session, plan_id, user)
    if member is None:
        raise Forbidden("Only students have a session history")

    history: List[dict] = []
    if member.subscription_id:
        subscription = await get_subscription(session, member.subscription_id)
        if subscription:
            history = list(subscription.session_history or [])

    return {
        "sessionCount": member.session_count,
        "maxSessions": member.max_sessions,
        "sessionHistory": history,
    }
