"""
Model -> JSON dict conversion for API responses

Keys are camelCase. Relationships are only read when already loaded;
touching an unloaded relationship would trigger lazy IO outside the
async context.
"""

from typing import Any, Dict, Optional

from sqlalchemy import inspect

from src.database.models import (
    Challenge,
    ChallengeParticipant,
    ChatboxMessage,
    MentorshipChatbox,
    MentorshipChatboxMessage,
    MentorshipPlan,
    Notification,
    Payment,
    PropFirmPackage,
    PropFirmService,
    SignalPlan,
    Subscription,
    SupportTicket,
    User,
)
from src.utils.dates import isoformat


def envelope(data: Any = None, message: Optional[str] = None, **extra) -> Dict[str, Any]:
    """Standard response body: {"success": true, "message"?, "data"?, ...}"""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def _loaded(obj: Any, attr: str) -> Any:
    """Relationship value if it is already loaded, else None"""
    if attr in inspect(obj).unloaded:
        return None
    return getattr(obj, attr)


def _timestamps(obj: Any) -> Dict[str, Optional[str]]:
    return {"createdAt": isoformat(obj.created_at), "updatedAt": isoformat(obj.updated_at)}


# ===========================
# USERS
# ===========================


def user_to_dict(user: User, include_private: bool = True) -> Dict[str, Any]:
    """
    Public profile, plus email, preferences and MT5 id when include_private.
    Password material never leaves the server.
    """
    data = {
        "id": user.id,
        "username": user.username,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "avatar": user.avatar,
        "role": user.role,
        "isPremium": user.is_premium,
        "tradingStats": {
            "totalChallenges": user.total_challenges,
            "completedChallenges": user.completed_challenges,
            "totalProfit": user.total_profit,
            "winRate": user.win_rate,
            "rank": user.rank,
        },
    }
    if include_private:
        data.update(
            {
                "email": user.email,
                "isActive": user.is_active,
                "isEmailVerified": user.is_email_verified,
                "preferences": {
                    "notifications": {"email": user.notify_email, "push": user.notify_push},
                    "theme": user.theme,
                },
                "mt5Account": {"id": user.mt5_account_id, "server": user.mt5_server}
                if user.mt5_account_id
                else None,
                "lastLogin": isoformat(user.last_login),
                **_timestamps(user),
            }
        )
    return data


# ===========================
# CHALLENGES
# ===========================


def participant_to_dict(participant: ChallengeParticipant, mt5: str = "hidden") -> Dict[str, Any]:
    """
    Args:
        mt5: "hidden" (no MT5 data), "masked" (password as ***) or "full"
    """
    data = {
        "id": participant.id,
        "userId": participant.user_id,
        "challengeId": participant.challenge_id,
        "paymentId": participant.payment_id,
        "status": participant.status,
        "joinedAt": isoformat(participant.joined_at),
        "currentBalance": participant.current_balance,
        "profit": participant.profit,
        "profitPercent": participant.profit_percent,
        "rank": participant.rank,
    }

    user = _loaded(participant, "user")
    if user is not None:
        data["user"] = {
            "id": user.id,
            "username": user.username,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "avatar": user.avatar,
        }

    if mt5 != "hidden":
        data["mt5Account"] = {
            "id": participant.mt5_account_id,
            "password": participant.mt5_password if mt5 == "full" else "***",
            "server": participant.mt5_server,
        }
    return data


def challenge_to_dict(
    challenge: Challenge, include_participants: bool = True, mt5: str = "hidden"
) -> Dict[str, Any]:
    data = {
        "id": challenge.id,
        "name": challenge.name,
        "type": challenge.type,
        "accountSize": challenge.account_size,
        "price": challenge.price,
        "isFree": challenge.is_free,
        "prizes": challenge.prizes or [],
        "maxParticipants": challenge.max_participants,
        "currentParticipants": challenge.current_participants,
        "startDate": isoformat(challenge.start_date),
        "endDate": isoformat(challenge.end_date),
        "status": challenge.status,
        "challengeMode": challenge.challenge_mode,
        "description": challenge.description,
        "rules": challenge.rules or [],
        "requirements": challenge.requirements or {},
        "createdBy": challenge.created_by,
        **_timestamps(challenge),
    }
    if include_participants:
        participants = _loaded(challenge, "participants") or []
        data["participants"] = [participant_to_dict(p, mt5=mt5) for p in participants]
    return data


def participation_to_dict(participant: ChallengeParticipant) -> Dict[str, Any]:
    """A user's own participation with its challenge; MT5 password masked"""
    data = participant_to_dict(participant, mt5="masked")
    challenge = _loaded(participant, "challenge")
    if challenge is not None:
        data["challenge"] = challenge_to_dict(challenge, include_participants=False)
    return data


# ===========================
# PLANS / SUBSCRIPTIONS
# ===========================


def _plan_common(plan: SignalPlan | MentorshipPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "price": plan.price,
        "duration": plan.duration,
        "features": plan.features or [],
        "isActive": plan.is_active,
        "isPopular": plan.is_popular,
        "maxSubscribers": plan.max_subscribers,
        "currentSubscribers": plan.current_subscribers,
        "isFull": plan.is_full,
        "createdBy": plan.created_by,
        **_timestamps(plan),
    }


def signal_plan_to_dict(plan: SignalPlan) -> Dict[str, Any]:
    data = _plan_common(plan)
    data.update(
        {
            "originalPrice": plan.original_price,
            "metadata": {
                "signalFrequency": plan.signal_frequency,
                "riskLevel": plan.risk_level,
                "successRate": plan.success_rate,
            },
        }
    )
    return data


def mentorship_plan_to_dict(plan: MentorshipPlan) -> Dict[str, Any]:
    data = _plan_common(plan)
    data.update(
        {
            "pricingType": plan.pricing_type,
            "mentorshipFeatures": {
                "sessionFrequency": plan.session_frequency,
                "maxSessionsPerMonth": plan.max_sessions_per_month,
                "mentorName": plan.mentor_name,
                "mentorBio": plan.mentor_bio,
            },
        }
    )
    return data


def subscription_to_dict(subscription: Subscription) -> Dict[str, Any]:
    data = {
        "id": subscription.id,
        "userId": subscription.user_id,
        "subscriptionType": subscription.subscription_type,
        "signalPlanId": subscription.signal_plan_id,
        "mentorshipPlanId": subscription.mentorship_plan_id,
        "status": subscription.status,
        "startDate": isoformat(subscription.start_date),
        "endDate": isoformat(subscription.end_date),
        "paymentId": subscription.payment_id,
        "amount": subscription.amount,
        "duration": subscription.duration,
        "currency": subscription.currency,
        "paymentMethod": subscription.payment_method,
        "autoRenew": subscription.auto_renew,
        "cancelledAt": isoformat(subscription.cancelled_at),
        "cancellationReason": subscription.cancellation_reason,
        **_timestamps(subscription),
    }

    if subscription.mentorship_plan_id:
        data.update(
            {
                "sessionCount": subscription.session_count,
                "maxSessions": subscription.max_sessions,
                "nextSessionDate": isoformat(subscription.next_session_date),
            }
        )

    signal_plan = _loaded(subscription, "signal_plan")
    if signal_plan is not None:
        data["signalPlan"] = {"id": signal_plan.id, "name": signal_plan.name, "price": signal_plan.price}
    mentorship_plan = _loaded(subscription, "mentorship_plan")
    if mentorship_plan is not None:
        data["mentorshipPlan"] = {
            "id": mentorship_plan.id,
            "name": mentorship_plan.name,
            "price": mentorship_plan.price,
        }
    return data


# ===========================
# PAYMENTS
# ===========================


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    """Client secret is returned only by the create endpoint"""
    return {
        "id": payment.id,
        "userId": payment.user_id,
        "type": payment.payment_type,
        "challengeId": payment.challenge_id,
        "planId": payment.plan_id,
        "packageId": payment.package_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "stripePaymentIntentId": payment.stripe_payment_intent_id,
        "transactionId": payment.transaction_id,
        "paymentMethod": payment.payment_method,
        "failureReason": payment.failure_reason,
        "metadata": payment.payment_metadata or {},
        "completedAt": isoformat(payment.completed_at),
        **_timestamps(payment),
    }


# ===========================
# CHAT / NOTIFICATIONS / SUPPORT / PROP FIRM
# ===========================


def chatbox_message_to_dict(message: ChatboxMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "content": message.content,
        "messageType": message.message_type,
        "isPinned": message.is_pinned,
        "createdAt": isoformat(message.created_at),
    }


def mentorship_message_to_dict(message: MentorshipChatboxMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "senderType": message.sender_type,
        "content": message.content,
        "messageType": message.message_type,
        "sessionData": message.session_data,
        "isPinned": message.is_pinned,
        "createdAt": isoformat(message.created_at),
    }


def mentorship_chatbox_to_dict(chatbox: MentorshipChatbox) -> Dict[str, Any]:
    return {
        "id": chatbox.id,
        "mentorshipPlanId": chatbox.mentorship_plan_id,
        "settings": {
            "allowStudentMessages": chatbox.allow_student_messages,
            "maxMessageLength": chatbox.max_message_length,
            "sessionBookingEnabled": chatbox.session_booking_enabled,
        },
    }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "targetAudience": notification.target_audience,
        "signalPlanId": notification.signal_plan_id,
        "competitionId": notification.competition_id,
        "isScheduled": notification.is_scheduled,
        "scheduledTime": isoformat(notification.scheduled_time),
        "status": notification.status,
        "sentBy": notification.sent_by,
        "deliveryStats": {
            "totalRecipients": notification.total_recipients,
            "deliveredCount": notification.delivered_count,
            "failedCount": notification.failed_count,
        },
        "sentAt": isoformat(notification.sent_at),
        "metadata": notification.payload_metadata or {},
        **_timestamps(notification),
    }


def ticket_to_dict(ticket: SupportTicket) -> Dict[str, Any]:
    messages = _loaded(ticket, "messages") or []
    return {
        "id": ticket.id,
        "userId": ticket.user_id,
        "subject": ticket.subject,
        "category": ticket.category,
        "priority": ticket.priority,
        "status": ticket.status,
        "messages": [
            {
                "id": message.id,
                "senderId": message.sender_id,
                "senderType": "admin" if message.is_admin else "user",
                "message": message.content,
                "createdAt": isoformat(message.created_at),
            }
            for message in messages
        ],
        **_timestamps(ticket),
    }


def package_to_dict(package: PropFirmPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "description": package.description,
        "price": package.price,
        "features": package.features or [],
        "isActive": package.is_active,
        "maxClients": package.max_clients,
        "currentClients": package.current_clients,
        "isFull": package.is_full,
        "durationDays": package.duration_days,
        **_timestamps(package),
    }


def prop_firm_service_to_dict(service: PropFirmService, include_credentials: bool = False) -> Dict[str, Any]:
    data = {
        "id": service.id,
        "userId": service.user_id,
        "packageId": service.package_id,
        "paymentId": service.payment_id,
        "status": service.status,
        "verificationStatus": service.verification_status,
        "propFirmDetails": {
            "firmName": service.firm_name,
            "accountId": service.account_id,
            "server": service.server,
            "accountSize": service.account_size,
            "accountType": service.account_type,
        },
        "amount": service.amount,
        "startDate": isoformat(service.start_date),
        "endDate": isoformat(service.end_date),
        "cancelledAt": isoformat(service.cancelled_at),
        "cancellationReason": service.cancellation_reason,
        "adminNotes": service.admin_notes,
        **_timestamps(service),
    }
    if include_credentials:
        data["propFirmDetails"]["accountPassword"] = service.account_password
    return data
