"""
Error taxonomy for entitlement checks, usage accounting and connections.

Configuration defects (unknown identifiers, malformed input) are also
``ValueError`` so they fail loud. Denials carry a reason code and the
remaining figure so a caller can prompt an upgrade or reconnection.
"""

from typing import Any, Optional


class EntitlementError(Exception):
    """Base class for all entitlement engine errors."""


class UnknownPlan(EntitlementError, ValueError):
    """Plan identifier is not in the catalog."""
    def __init__(self, plan: Any):
        super().__init__(f"Unknown plan: {plan}")
        self.plan = plan


class UnknownFeature(EntitlementError, ValueError):
    """Feature identifier is not in the catalog."""
    def __init__(self, feature: Any):
        super().__init__(f"Unknown feature: {feature}")
        self.feature = feature


class UnsupportedPlatform(EntitlementError, ValueError):
    """Platform identifier is not supported."""
    def __init__(self, platform: Any):
        super().__init__(f"Unsupported platform: {platform}")
        self.platform = platform


class InvalidContent(EntitlementError, ValueError):
    """Content payload is missing or malformed."""


class InvalidCredentials(EntitlementError, ValueError):
    """Credential bundle does not match the platform's schema."""


class AccountNotFound(EntitlementError, KeyError):
    """No account is stored under the given identifier."""
    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id

    def __str__(self) -> str:
        return self.args[0]


class ConcurrentModification(EntitlementError):
    """Stored account version changed between read and write."""


class EntitlementDenied(EntitlementError):
    """An action was refused; expected condition, not a fault."""
    reason_code = "denied"

    def __init__(self, message: str, remaining: Optional[Any] = None):
        super().__init__(message)
        self.remaining = remaining


class QuotaExceeded(EntitlementDenied):
    """Feature quota is used up or the feature is disabled on the plan."""
    reason_code = "quota_exceeded"

    def __init__(self, message: str, remaining: Optional[Any] = None, reason_code: Optional[str] = None):
        super().__init__(message, remaining)
        if reason_code is not None:
            self.reason_code = reason_code


class SubscriptionInactive(EntitlementDenied):
    """Subscription status forbids all metered actions."""
    reason_code = "subscription_inactive"


class PlatformNotConnected(EntitlementDenied):
    """Target platform has no live connection."""
    reason_code = "platform_not_connected"

    def __init__(self, platform: str, message: Optional[str] = None):
        super().__init__(message or f"Platform not connected: {platform}")
        self.platform = platform
