"""
Core module - shared enums, domain errors, lifecycle rules.
"""

from src.core.enums import (
    ChallengeStatus,
    ChallengeEvent,
    ParticipantStatus,
    SubscriptionStatus,
    PaymentStatus,
    PaymentType,
)
from src.core.exceptions import PlatformError

__all__ = [
    "ChallengeStatus",
    "ChallengeEvent",
    "ParticipantStatus",
    "SubscriptionStatus",
    "PaymentStatus",
    "PaymentType",
    "PlatformError",
]
