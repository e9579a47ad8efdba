"""
Plan chat rooms

/chatboxes/plan/{planId}/...         signal plan rooms (subscribers + admins)
/mentorship-chatboxes/{planId}/...   mentorship rooms (members + mentor)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_admin
from src.api.schemas import ChatMessageRequest, SessionBookingRequest
from src.api.serializers import (
    chatbox_message_to_dict,
    envelope,
    mentorship_chatbox_to_dict,
    mentorship_message_to_dict,
)
from src.database.engine import get_session
from src.database.models import User
from src.services import chat_service

router = APIRouter(prefix="/chatboxes", tags=["chatboxes"])
mentorship_router = APIRouter(prefix="/mentorship-chatboxes", tags=["mentorship-chatboxes"])


# ===========================
# SIGNAL PLAN ROOMS
# ===========================


@router.get("/plan/{plan_id}/messages")
async def get_messages(
    plan_id: int,
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    chatbox, messages = await chat_service.get_signal_messages(session, plan_id, user, limit)
    return envelope(
        {
            "chatboxId": chatbox.id,
            "signalPlanId": plan_id,
            "messages": [chatbox_message_to_dict(m) for m in messages],
        }
    )


@router.post("/plan/{plan_id}/messages", status_code=201)
async def post_message(
    plan_id: int,
    request: ChatMessageRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    message = await chat_service.post_signal_message(
        session, plan_id, user, request.content, request.message_type
    )
    return envelope(chatbox_message_to_dict(message), message="Message sent")


@router.post("/plan/{plan_id}/messages/{message_id}/pin")
async def pin_message(
    plan_id: int,
    message_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    message = await chat_service.toggle_signal_pin(session, plan_id, message_id)
    return envelope(
        chatbox_message_to_dict(message),
        message="Message pinned" if message.is_pinned else "Message unpinned",
    )


@router.delete("/plan/{plan_id}/messages/{message_id}")
async def delete_message(
    plan_id: int,
    message_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await chat_service.delete_signal_message(session, plan_id, message_id)
    return envelope(message="Message deleted")


# ===========================
# MENTORSHIP ROOMS
# ===========================


@mentorship_router.get("/{plan_id}")
async def get_mentorship_chat(
    plan_id: int,
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    chatbox, messages = await chat_service.get_mentorship_chat(session, plan_id, user, limit)
    data = mentorship_chatbox_to_dict(chatbox)
    data["messages"] = [mentorship_message_to_dict(m) for m in messages]
    return envelope(data)


@mentorship_router.post("/{plan_id}/messages", status_code=201)
async def post_mentorship_message(
    plan_id: int,
    request: ChatMessageRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    message = await chat_service.post_mentorship_message(
        session, plan_id, user, request.content, request.message_type
    )
    return envelope(mentorship_message_to_dict(message), message="Message sent")


@mentorship_router.post("/{plan_id}/messages/{message_id}/pin")
async def pin_mentorship_message(
    plan_id: int,
    message_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    message = await chat_service.toggle_mentorship_pin(session, plan_id, message_id)
    return envelope(
        mentorship_message_to_dict(message),
        message="Message pinned" if message.is_pinned else "Message unpinned",
    )


@mentorship_router.post("/{plan_id}/sessions", status_code=201)
async def book_session(
    plan_id: int,
    request: SessionBookingRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    booking = await chat_service.schedule_session(
        session,
        plan_id,
        user,
        scheduled_date=request.scheduled_date,
        duration=request.duration,
        topic=request.topic,
        notes=request.notes,
    )
    return envelope(booking, message="Session scheduled successfully")


@mentorship_router.get("/{plan_id}/sessions")
async def session_history(
    plan_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return envelope(await chat_service.get_session_history(session, plan_id, user))
