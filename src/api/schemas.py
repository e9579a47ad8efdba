"""
Request models

Clients send camelCase JSON; every model also accepts snake_case field
names. Routers hand `model_dump(exclude_unset=True)` (snake_case) to the
services.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from src.core.enums import (
    ChallengeMode,
    ChallengeStatus,
    ChallengeType,
    NotificationAudience,
    ParticipantStatus,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def fields_set(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, snake_case"""
        return self.model_dump(exclude_unset=True)


# ===========================
# AUTH / USERS
# ===========================


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)


class LoginRequest(CamelModel):
    email: str
    password: str


class MT5Credentials(CamelModel):
    account_id: str
    password: str
    server: str


class UserUpdateRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    theme: Optional[str] = None
    notify_email: Optional[bool] = None
    notify_push: Optional[bool] = None
    # admin only
    role: Optional[str] = None
    is_active: Optional[bool] = None
    is_premium: Optional[bool] = None


# ===========================
# CHALLENGES
# ===========================


class MT5Account(CamelModel):
    id: Optional[str] = None
    password: Optional[str] = None
    server: Optional[str] = None


class ChallengeCreateRequest(CamelModel):
    name: Optional[str] = None
    type: Optional[ChallengeType] = None
    account_size: Optional[float] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    prizes: Optional[List[Dict[str, Any]]] = None
    max_participants: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ChallengeStatus] = None
    challenge_mode: Optional[ChallengeMode] = None
    description: Optional[str] = None
    rules: Optional[List[str]] = None
    requirements: Optional[Dict[str, Any]] = None


class ChallengeUpdateRequest(ChallengeCreateRequest):
    pass


class JoinChallengeRequest(CamelModel):
    mt5_account: Optional[MT5Account] = None


class ParticipantUpdateRequest(CamelModel):
    current_balance: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    status: Optional[ParticipantStatus] = None
    rank: Optional[int] = None
    mt5_account: Optional[MT5Account] = None


# ===========================
# LEADERBOARD
# ===========================


class LeaderboardEntryUpdateRequest(CamelModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    account_id: Optional[str] = None
    balance: Optional[float] = None
    equity: Optional[float] = None
    profit: Optional[float] = None
    margin: Optional[float] = None
    free_margin: Optional[float] = None
    margin_level: Optional[float] = None
    profit_percent: Optional[float] = None
    positions: Optional[List[Dict[str, Any]]] = None


# ===========================
# PLANS / SUBSCRIPTIONS
# ===========================


class SignalPlanRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    original_price: Optional[float] = None
    price: Optional[float] = None
    duration: Optional[str] = None
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    max_subscribers: Optional[int] = None
    signal_frequency: Optional[str] = None
    risk_level: Optional[str] = None
    success_rate: Optional[float] = None


class MentorshipPlanRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    duration: Optional[str] = None
    pricing_type: Optional[str] = None
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    max_subscribers: Optional[int] = None
    session_frequency: Optional[str] = None
    max_sessions_per_month: Optional[int] = Field(None, ge=1)
    mentor_name: Optional[str] = None
    mentor_bio: Optional[str] = None


class SubscriptionCreateRequest(CamelModel):
    signal_plan_id: Optional[int] = None
    amount: Optional[float] = None
    duration: Optional[str] = None
    payment_id: Optional[int] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


# ===========================
# PAYMENTS
# ===========================


class PropFirmApplication(CamelModel):
    firm_name: Optional[str] = None
    account_id: Optional[str] = None
    account_password: Optional[str] = None
    server: Optional[str] = None
    account_size: Optional[float] = None
    account_type: Optional[str] = None


class PaymentCreateRequest(CamelModel):
    amount: Optional[float] = None
    type: Optional[str] = None
    currency: str = "USD"
    challenge_id: Optional[int] = None
    plan_id: Optional[int] = None
    package_id: Optional[int] = None
    application: Optional[PropFirmApplication] = None


# ===========================
# NOTIFICATIONS
# ===========================


class PushKeys(CamelModel):
    p256dh: str
    auth: str


class PushSubscribeRequest(CamelModel):
    endpoint: str
    keys: PushKeys


class PushUnsubscribeRequest(CamelModel):
    endpoint: Optional[str] = None


class NotificationCreateRequest(CamelModel):
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    target_audience: Optional[NotificationAudience] = None
    signal_plan_id: Optional[int] = None
    competition_id: Optional[int] = None
    is_scheduled: bool = False
    scheduled_time: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ===========================
# CHAT / SUPPORT / PROP FIRM
# ===========================


class ChatMessageRequest(CamelModel):
    content: Optional[str] = None
    message_type: Optional[str] = None


class SessionBookingRequest(CamelModel):
    scheduled_date: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=15, le=240)
    topic: Optional[str] = None
    notes: Optional[str] = None


class TicketCreateRequest(CamelModel):
    subject: Optional[str] = None
    message: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None


class TicketMessageRequest(CamelModel):
    message: Optional[str] = None


class TicketUpdateRequest(CamelModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None


class PackageRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    max_clients: Optional[int] = None
    duration_days: Optional[int] = None


class ServiceUpdateRequest(CamelModel):
    status: Optional[str] = None
    verification_status: Optional[str] = None
    admin_notes: Optional[str] = None
