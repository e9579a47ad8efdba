"""
Domain exceptions.

Every error the services raise on purpose derives from PlatformError and
carries the HTTP status the API layer should answer with.
"""

from typing import List, Optional


class PlatformError(Exception):
    """Base class for expected, user-facing failures"""

    status_code: int = 500
    default_message: str = "Unexpected error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(PlatformError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, fields: Optional[List[str]] = None):
        self.fields = fields or []
        if message is None and self.fields:
            message = f"Missing or invalid fields: {', '.join(self.fields)}"
        super().__init__(message)


class NotAuthenticated(PlatformError):
    status_code = 401
    default_message = "Not authorized to access this route"


class Forbidden(PlatformError):
    status_code = 403
    default_message = "Access denied"


class NotFound(PlatformError):
    status_code = 404
    default_message = "Resource not found"


class DomainRuleViolation(PlatformError):
    status_code = 400
    default_message = "Operation not allowed"


# ===========================
# CHALLENGES
# ===========================


class ChallengeFull(DomainRuleViolation):
    default_message = "Challenge is full"


class ChallengeNotJoinable(DomainRuleViolation):
    default_message = "Challenge is not available for joining"


class AlreadyParticipant(DomainRuleViolation):
    default_message = "You are already a participant in this challenge"


class MissingAccountInfo(DomainRuleViolation):
    default_message = "MT5 account information is required"


class NotAParticipant(DomainRuleViolation):
    default_message = "You are not a participant in this challenge"


class ChallengeHasParticipants(DomainRuleViolation):
    default_message = "Cannot delete challenge with participants"


class InvalidTransition(DomainRuleViolation):
    default_message = "Invalid challenge status transition"


# ===========================
# PLANS / SUBSCRIPTIONS
# ===========================


class AlreadySubscribed(DomainRuleViolation):
    default_message = "You already have an active subscription to this plan"


class PlanFull(DomainRuleViolation):
    default_message = "This plan is full"


class PackageUnavailable(DomainRuleViolation):
    default_message = "This package is no longer available"


class SubscriptionAlreadyCancelled(DomainRuleViolation):
    default_message = "Subscription is already cancelled"


# ===========================
# EXTERNAL SERVICES
# ===========================


class PaymentGatewayError(PlatformError):
    status_code = 502
    default_message = "Payment gateway error"


class PaymentGatewayNotConfigured(PaymentGatewayError):
    status_code = 400
    default_message = "Payment gateway not configured. Please contact support."


class MT5ServiceError(Exception):
    """MT5 service answered with an error"""


class MT5ServiceUnavailable(MT5ServiceError):
    """MT5 service could not be reached"""
