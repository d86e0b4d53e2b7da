"""Subscription accounting errors.

Every error here is an expected, recoverable condition that request
handlers translate into a user-facing response.
"""

from enum import Enum
from typing import Any, Optional

from canvascue.core.retry import TransientError


class SubscriptionError(Exception):
    """Base exception for subscription accounting errors."""
    pass


class InvalidTransitionError(SubscriptionError):
    """Raised when a lifecycle operation is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Cannot transition subscription from {from_status} to {to_status}"
        )


class QuotaKind(str, Enum):
    """Which tier quota a usage change ran into."""
    MONTHLY = "monthly"
    CONCURRENT = "concurrent"


QUOTA_MESSAGES = {
    QuotaKind.MONTHLY: "Monthly design limit reached",
    QuotaKind.CONCURRENT: "Simultaneous design request limit reached",
}


class QuotaExceededError(SubscriptionError):
    """Raised when a usage change would exceed a tier quota."""

    def __init__(self, kind: QuotaKind, used: int, limit: int):
        self.kind = QuotaKind(kind)
        self.used = used
        self.limit = limit
        super().__init__(QUOTA_MESSAGES[self.kind])

    @property
    def user_message(self) -> str:
        return f"{QUOTA_MESSAGES[self.kind]} ({self.used}/{self.limit})"


class UnresolvedReferenceError(SubscriptionError):
    """Raised when an account's tier reference was not resolved by the caller."""
    pass


class NotFoundError(SubscriptionError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ActiveSubscriptionExistsError(SubscriptionError):
    """Raised when a user already holds an active or trialing subscription."""
    pass


class CustomTierError(SubscriptionError):
    """Raised when a contact-sales tier is purchased directly."""
    pass


class StaleUsageError(TransientError):
    """Raised when an active request count write lost a compare-and-swap race."""
    pass
