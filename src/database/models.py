"""
Database models for CTG Trading Platform API

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional, List

from sqlalchemy import (
    String,
    Text,
    Integer,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.core.enums import (
    UserRole,
    ChallengeType,
    ChallengeMode,
    ChallengeStatus,
    ParticipantStatus,
    SubscriptionStatus,
    SubscriptionType,
    PlanDuration,
    PaymentStatus,
    NotificationStatus,
    TicketStatus,
    TicketPriority,
    PropFirmServiceStatus,
    VerificationStatus,
)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


def _now() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_now,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_now,
        onupdate=_now,
        nullable=False,
    )


# ===========================
# USERS
# ===========================


class User(TimestampMixin, Base):
    """
    Platform user

    Holds:
    - Identity and role
    - Denormalized trading stats (recomputed from challenge participations)
    - MT5 credentials polled for the global leaderboard
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    avatar: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.USER.value,
        nullable=False,
        comment="Role: user, admin",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Trading stats
    total_challenges: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_challenges: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    win_rate: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
        comment="completed / total * 100, 2 decimals",
    )
    rank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # MT5 credentials for the global leaderboard poller
    mt5_account_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    mt5_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mt5_server: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Preferences
    notify_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_push: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    theme: Mapped[str] = mapped_column(String(10), default="dark", nullable=False)

    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    push_subscriptions: Mapped[List["PushSubscription"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def has_mt5_credentials(self) -> bool:
        return bool(self.mt5_account_id and self.mt5_password and self.mt5_server)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"


class PushSubscription(TimestampMixin, Base):
    """Web push endpoint registered by a browser"""

    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "endpoint", name="uq_push_user_endpoint"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    is_expired: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Push service answered 410 Gone; removed by cleanup job",
    )

    user: Mapped["User"] = relationship(back_populates="push_subscriptions")

    def as_webpush_info(self) -> dict:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


# ===========================
# CHALLENGES
# ===========================


class Challenge(TimestampMixin, Base):
    """
    Trading competition

    Status moves draft -> upcoming -> active -> completed, or to cancelled;
    see src.core.challenge_fsm.
    """

    __tablename__ = "challenges"
    __table_args__ = (
        Index("ix_challenges_status_start", "status", "start_date"),
        Index("ix_challenges_type_status", "type", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20),
        default=ChallengeType.SWING.value,
        nullable=False,
        comment="Category: swing, scalp, day-trading, scalping, position, other",
    )
    account_size: Mapped[float] = mapped_column(Float, nullable=False, comment="Notional starting balance")
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False, comment="Entry fee, 0 = free")
    is_free: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    prizes: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
        comment="Prize table (single-rank / rank-range entries)",
    )

    max_participants: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    current_participants: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Denormalized count of participant rows",
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ChallengeStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="Status: draft, upcoming, active, completed, cancelled",
    )
    challenge_mode: Mapped[str] = mapped_column(
        String(20), default=ChallengeMode.TARGET.value, nullable=False
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)
    rules: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    requirements: Mapped[dict] = mapped_column(
        JSON,
        default=lambda: {"minBalance": 0, "maxDrawdown": 10, "targetProfit": 10},
        nullable=False,
        comment="Informational only, not enforced",
    )

    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )

    participants: Mapped[List["ChallengeParticipant"]] = relationship(
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="ChallengeParticipant.id",
    )

    @property
    def is_full(self) -> bool:
        return self.current_participants >= self.max_participants

    def find_participant(self, user_id: int) -> Optional["ChallengeParticipant"]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id}, name={self.name}, status={self.status})>"


class ChallengeParticipant(TimestampMixin, Base):
    """A user's enrollment in one challenge"""

    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_participant_challenge_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    payment_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, index=True
    )

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ParticipantStatus.PENDING_SETUP.value,
        nullable=False,
        comment="Status: pending_setup, active, completed, failed, withdrawn",
    )

    # MT5 account (sensitive - never returned to other users)
    mt5_account_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    mt5_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mt5_server: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    current_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    profit_percent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    challenge: Mapped["Challenge"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship(lazy="joined")

    @property
    def has_mt5_account(self) -> bool:
        return bool(self.mt5_account_id)

    def __repr__(self) -> str:
        return (
            f"<ChallengeParticipant(challenge_id={self.challenge_id}, "
            f"user_id={self.user_id}, status={self.status})>"
        )


# ===========================
# LEADERBOARD
# ===========================


class LeaderboardEntry(TimestampMixin, Base):
    """
    Global ranking snapshot, one row per user

    Refreshed by the MT5 poller and by participant updates.
    """

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        Index("ix_leaderboard_rank_order", "profit_percent", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    avatar: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    account_id: Mapped[str] = mapped_column(String(50), default="N/A", nullable=False, index=True)

    balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    equity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    margin: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    free_margin: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    margin_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    profit_percent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False, index=True)

    positions: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
        comment="Open positions: [{symbol, volume, entry_price, profit}]",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<LeaderboardEntry(user_id={self.user_id}, profit_percent={self.profit_percent})>"


# ===========================
# PLANS
# ===========================


class SignalPlan(TimestampMixin, Base):
    """Paid trading-signal offering"""

    __tablename__ = "signal_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    original_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    duration: Mapped[str] = mapped_column(
        String(20),
        default=PlanDuration.MONTHLY.value,
        nullable=False,
        comment="Duration: monthly, quarterly, semi-annual, annual",
    )
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    max_subscribers: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="NULL means unlimited"
    )
    current_subscribers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    signal_frequency: Mapped[str] = mapped_column(String(50), default="Daily", nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=75.0, nullable=False)

    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    @property
    def is_full(self) -> bool:
        if self.max_subscribers is None:
            return False
        return self.current_subscribers >= self.max_subscribers

    def __repr__(self) -> str:
        return f"<SignalPlan(id={self.id}, name={self.name})>"


class MentorshipPlan(TimestampMixin, Base):
    """Paid mentorship offering with session allowance"""

    __tablename__ = "mentorship_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    duration: Mapped[str] = mapped_column(String(20), default=PlanDuration.MONTHLY.value, nullable=False)
    pricing_type: Mapped[str] = mapped_column(String(20), default="monthly", nullable=False)
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    max_subscribers: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_subscribers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    session_frequency: Mapped[str] = mapped_column(String(50), default="Weekly", nullable=False)
    max_sessions_per_month: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    mentor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    mentor_bio: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    @property
    def is_full(self) -> bool:
        if self.max_subscribers is None:
            return False
        return self.current_subscribers >= self.max_subscribers

    def __repr__(self) -> str:
        return f"<MentorshipPlan(id={self.id}, name={self.name})>"


# ===========================
# SUBSCRIPTIONS & PAYMENTS
# ===========================


class Subscription(TimestampMixin, Base):
    """
    Time-bounded access to a signal plan or mentorship plan

    Created active by payment completion. Cancellation is terminal.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_signal", "user_id", "signal_plan_id"),
        Index("ix_subscriptions_user_mentorship", "user_id", "mentorship_plan_id"),
        Index("ix_subscriptions_status_end", "status", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    signal_plan_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("signal_plans.id", ondelete="SET NULL"), nullable=True
    )
    mentorship_plan_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("mentorship_plans.id", ondelete="SET NULL"), nullable=True
    )
    subscription_type: Mapped[str] = mapped_column(
        String(20), default=SubscriptionType.SIGNAL_PLAN.value, nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.PENDING.value,
        nullable=False,
        comment="Status: pending, active, cancelled, expired",
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payment_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    duration: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Mentorship session bookkeeping
    session_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_sessions: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    next_session_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    session_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    signal_plan: Mapped[Optional["SignalPlan"]] = relationship(lazy="joined")
    mentorship_plan: Mapped[Optional["MentorshipPlan"]] = relationship(lazy="joined")

    @property
    def plan_id(self) -> Optional[int]:
        return self.signal_plan_id or self.mentorship_plan_id

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"


class Payment(TimestampMixin, Base):
    """
    Payment for a challenge entry, plan subscription or prop-firm service

    pending -> completed happens once; completion side effects hang off it.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    payment_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Type: challenge, signal_plan, mentorship, prop_firm_service",
    )
    challenge_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True
    )
    plan_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Signal or mentorship plan ID")
    package_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("prop_firm_packages.id", ondelete="SET NULL"), nullable=True
    )

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="Status: pending, processing, completed, failed, cancelled",
    )

    # Stripe
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    stripe_client_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_metadata: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, type={self.payment_type}, status={self.status})>"


# ===========================
# CHATBOXES
# ===========================


class Chatbox(TimestampMixin, Base):
    """Signal-plan chat room, readable by active subscribers"""

    __tablename__ = "chatboxes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    signal_plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("signal_plans.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    allow_subscriber_messages: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    messages: Mapped[List["ChatboxMessage"]] = relationship(
        back_populates="chatbox", cascade="all, delete-orphan", order_by="ChatboxMessage.id"
    )


class ChatboxMessage(TimestampMixin, Base):
    __tablename__ = "chatbox_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbox_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chatboxes.id", ondelete="CASCADE"), index=True, nullable=False
    )
    sender_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), default="general", nullable=False, comment="general, signal, announcement"
    )
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    chatbox: Mapped["Chatbox"] = relationship(back_populates="messages")


class MentorshipChatbox(TimestampMixin, Base):
    """Mentorship plan chat room with session booking"""

    __tablename__ = "mentorship_chatboxes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mentorship_plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("mentorship_plans.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    allow_student_messages: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_message_length: Mapped[int] = mapped_column(Integer, default=2000, nullable=False)
    session_booking_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    members: Mapped[List["MentorshipChatboxMember"]] = relationship(
        back_populates="chatbox", cascade="all, delete-orphan"
    )
    messages: Mapped[List["MentorshipChatboxMessage"]] = relationship(
        back_populates="chatbox", cascade="all, delete-orphan", order_by="MentorshipChatboxMessage.id"
    )


class MentorshipChatboxMember(TimestampMixin, Base):
    __tablename__ = "mentorship_chatbox_members"
    __table_args__ = (UniqueConstraint("chatbox_id", "user_id", name="uq_mentorship_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbox_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("mentorship_chatboxes.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    subscription_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    session_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_sessions: Mapped[int] = mapped_column(Integer, default=4, nullable=False)

    chatbox: Mapped["MentorshipChatbox"] = relationship(back_populates="members")


class MentorshipChatboxMessage(TimestampMixin, Base):
    __tablename__ = "mentorship_chatbox_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbox_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("mentorship_chatboxes.id", ondelete="CASCADE"), index=True, nullable=False
    )
    sender_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    sender_type: Mapped[str] = mapped_column(String(20), default="student", nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20),
        default="general",
        nullable=False,
        comment="lesson, question, feedback, general, session",
    )
    session_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    chatbox: Mapped["MentorshipChatbox"] = relationship(back_populates="messages")


# ===========================
# NOTIFICATIONS
# ===========================


class Notification(TimestampMixin, Base):
    """Admin notification broadcast to a target audience via web push"""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_audience: Mapped[str] = mapped_column(String(40), nullable=False)
    signal_plan_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    competition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scheduled_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="Status: draft, scheduled, sent, failed",
    )

    sent_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    total_recipients: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivered_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payload_metadata: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, audience={self.target_audience}, status={self.status})>"


# ===========================
# SUPPORT
# ===========================


class SupportTicket(TimestampMixin, Base):
    __tablename__ = "support_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="general", nullable=False)
    priority: Mapped[str] = mapped_column(String(20), default=TicketPriority.MEDIUM.value, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=TicketStatus.OPEN.value, nullable=False, index=True
    )

    messages: Mapped[List["SupportMessage"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan", order_by="SupportMessage.id"
    )


class SupportMessage(TimestampMixin, Base):
    __tablename__ = "support_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("support_tickets.id", ondelete="CASCADE"), index=True, nullable=False
    )
    sender_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    ticket: Mapped["SupportTicket"] = relationship(back_populates="messages")


# ===========================
# PROP FIRM
# ===========================


class PropFirmPackage(TimestampMixin, Base):
    """Prop-firm account management package"""

    __tablename__ = "prop_firm_packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_clients: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_clients: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    @property
    def is_full(self) -> bool:
        if self.max_clients is None:
            return False
        return self.current_clients >= self.max_clients


class PropFirmService(TimestampMixin, Base):
    """A user's purchased prop-firm service; goes to pending review on payment"""

    __tablename__ = "prop_firm_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    package_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("prop_firm_packages.id", ondelete="SET NULL"), nullable=True
    )
    payment_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PropFirmServiceStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="Status: pending, active, suspended, completed, cancelled, failed",
    )
    verification_status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING.value, nullable=False
    )

    firm_name: Mapped[str] = mapped_column(String(100), default="Custom Prop Firm", nullable=False)
    account_id: Mapped[str] = mapped_column(String(50), nullable=False)
    account_password: Mapped[str] = mapped_column(String(255), nullable=False)
    server: Mapped[str] = mapped_column(String(100), nullable=False)
    account_size: Mapped[float] = mapped_column(Float, nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), default="challenge", nullable=False)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PropFirmService(id={self.id}, user_id={self.user_id}, status={self.status})>"
