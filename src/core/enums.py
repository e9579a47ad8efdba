"""
Core Enums - shared status and category types for the whole platform.

Defines:
- ChallengeStatus / ChallengeEvent: challenge lifecycle
- ParticipantStatus: enrollment state inside a challenge
- SubscriptionStatus / PlanDuration: subscription lifecycle
- PaymentStatus / PaymentType: payment lifecycle and completion branch
- NotificationAudience: notification targeting predicates
"""

from enum import Enum


class UserRole(str, Enum):
    """Platform roles"""

    USER = "user"
    ADMIN = "admin"


class ChallengeType(str, Enum):
    """Challenge category tag"""

    SWING = "swing"
    SCALP = "scalp"
    DAY_TRADING = "day-trading"
    SCALPING = "scalping"
    POSITION = "position"
    OTHER = "other"


class ChallengeMode(str, Enum):
    """How winners are decided"""

    TARGET = "target"  # Reach targetProfit
    RANK = "rank"  # Best profitPercent wins


class ChallengeStatus(str, Enum):
    """Challenge lifecycle state"""

    DRAFT = "draft"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def joinable(cls) -> tuple["ChallengeStatus", ...]:
        return (cls.ACTIVE, cls.UPCOMING)

    @classmethod
    def terminal(cls) -> tuple["ChallengeStatus", ...]:
        return (cls.COMPLETED, cls.CANCELLED)


class ChallengeEvent(str, Enum):
    """Events accepted by the challenge state machine"""

    PUBLISH = "publish"  # draft -> upcoming
    START = "start"  # upcoming -> active
    COMPLETE = "complete"  # upcoming|active -> completed
    CANCEL = "cancel"  # any non-terminal -> cancelled


class ParticipantStatus(str, Enum):
    """Participant enrollment state"""

    PENDING_SETUP = "pending_setup"  # Paid, MT5 account not supplied yet
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    WITHDRAWN = "withdrawn"


class SubscriptionStatus(str, Enum):
    """Plan subscription state"""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"  # Terminal
    EXPIRED = "expired"


class SubscriptionType(str, Enum):
    SIGNAL_PLAN = "signal_plan"
    MENTORSHIP = "mentorship"


class PlanDuration(str, Enum):
    """Billing period of a plan, with its length in months"""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi-annual"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        return {
            PlanDuration.MONTHLY: 1,
            PlanDuration.QUARTERLY: 3,
            PlanDuration.SEMI_ANNUAL: 6,
            PlanDuration.ANNUAL: 12,
        }[self]

    @classmethod
    def parse(cls, value: str | None) -> "PlanDuration":
        """Parse duration, accepting the legacy 'semi_annual' spelling.

        Unknown or missing values fall back to MONTHLY.
        """
        if not value:
            return cls.MONTHLY
        try:
            return cls(value.replace("_", "-"))
        except ValueError:
            return cls.MONTHLY


class PaymentStatus(str, Enum):
    """Payment transaction status"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentType(str, Enum):
    """What a payment buys; selects the completion branch"""

    CHALLENGE = "challenge"
    SIGNAL_PLAN = "signal_plan"
    MENTORSHIP = "mentorship"
    PROP_FIRM_SERVICE = "prop_firm_service"


class NotificationAudience(str, Enum):
    """Target-audience predicates for notification dispatch"""

    ALL = "all"
    ACTIVE = "active"
    PREMIUM = "premium"
    CHALLENGE_PARTICIPANTS = "challenge_participants"
    SIGNAL_PLAN_SUBSCRIBERS = "signal_plan_subscribers"
    SPECIFIC_SIGNAL_PLAN = "specific_signal_plan"
    SPECIFIC_COMPETITION = "specific_competition"


class NotificationStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class PropFirmServiceStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
