"""
Data models for storage layer.

Defines the Account aggregate and the closed identifier sets it is keyed by.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple


class Feature(str, Enum):
    """Metered features tracked by the usage ledger."""
    AI_CONTENT = "aiContent"
    SOCIAL_POSTS = "socialPosts"
    EMAIL_CAMPAIGNS = "emailCampaigns"
    REVIEWS_MONITORED = "reviewsMonitored"


class Plan(str, Enum):
    """Subscription plans in ascending order."""
    FREE = "free"
    LOCAL_BOOST = "local_boost"
    GROWTH_ACCELERATOR = "growth_accelerator"
    SCALE = "scale"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Billing status of a subscription."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"


class Platform(str, Enum):
    """External platforms an account can connect."""
    LINKEDIN = "linkedin"
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    THREADS = "threads"


@dataclass(frozen=True)
class Subscription:
    """Plan and billing status for an account.

    ``plan`` may be absent; the evaluator resolves it with its fallback rule.
    """
    plan: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    def __post_init__(self):
        """Normalize status identifiers to the enum; unknown values raise ValueError."""
        object.__setattr__(self, "status", SubscriptionStatus(self.status))


@dataclass(frozen=True)
class UsageRecord:
    """Per-feature counters for one accounting period.

    ``reset_watermark`` is the first instant of the period the counts belong
    to. All counters share it and reset together.
    """
    counts: Mapping[str, int] = field(
        default_factory=lambda: {feature.value: 0 for feature in Feature}
    )
    last_updated: Optional[datetime] = None
    reset_watermark: Optional[datetime] = None

    def count(self, feature: Feature) -> int:
        return self.counts.get(feature.value, 0)


@dataclass(frozen=True)
class CredentialBundle:
    """Token material for a connected platform."""
    access_token: str
    identifiers: Mapping[str, str] = field(default_factory=dict)
    expiry: Optional[datetime] = None
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class PlatformConnection:
    """Connection state for one platform.

    A disconnected connection never carries a credential.
    """
    platform: str
    connected: bool = False
    credential: Optional[CredentialBundle] = None

    def __post_init__(self):
        """Validate no token outlives its connection."""
        if not self.connected and self.credential is not None:
            raise ValueError(
                f"Disconnected platform '{self.platform}' cannot hold a credential"
            )


def empty_connections() -> Dict[str, PlatformConnection]:
    """Disconnected entries for every supported platform."""
    return {platform.value: PlatformConnection(platform=platform.value) for platform in Platform}


@dataclass(frozen=True)
class Account:
    """Aggregate persisted as one unit: subscription, usage and connections.

    ``connected_platforms`` is derived from ``connections`` and is rebuilt
    on every connect or disconnect. ``version`` increments on every save.
    """
    account_id: str
    subscription: Subscription = field(default_factory=Subscription)
    usage: UsageRecord = field(default_factory=UsageRecord)
    connections: Mapping[str, PlatformConnection] = field(default_factory=empty_connections)
    connected_platforms: Tuple[str, ...] = ()
    version: int = 0
    created_at: Optional[datetime] = None

    def with_connection(self, connection: PlatformConnection) -> "Account":
        """Return a copy with ``connection`` applied and the connected set rebuilt.

        Platforms already in the set keep their order; a newly connected
        platform is appended.
        """
        connections = dict(self.connections)
        connections[connection.platform] = connection
        live = {name for name, conn in connections.items() if conn.connected}
        ordered = [name for name in self.connected_platforms if name in live]
        ordered.extend(sorted(live - set(ordered)))
        return replace(self, connections=connections, connected_platforms=tuple(ordered))
