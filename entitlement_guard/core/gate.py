"""
Feature gate: the only path from a request to a metered collaborator.

Order of operations for every metered action:
1. Entitlement check - denial raises before anything runs
2. Collaborator call - failures propagate and nothing is recorded
3. Usage recording - one unit, only after the collaborator succeeded

If step 3 fails the action has already happened but was not counted. That
window is logged at ERROR and the storage error re-raised unchanged;
``record_only`` retries the accounting step on its own.
"""

import logging
from typing import Callable, Dict, Iterable, Optional, TypeVar, Union

from .connections import ConnectionRegistry
from .dispatch import ContentDispatchAdapter, PlatformPayload
from .errors import QuotaExceeded, SubscriptionInactive
from .evaluator import EntitlementDecision, EntitlementEvaluator, ReasonCode
from .ledger import UsageLedger
from entitlement_guard.storage.models import CredentialBundle, Feature, Platform

logger = logging.getLogger(__name__)

T = TypeVar("T")

Poster = Callable[[Dict[str, PlatformPayload], Dict[str, CredentialBundle]], T]


class FeatureGate:
    """Gates collaborator calls on entitlement and records successful use."""

    def __init__(
        self,
        evaluator: EntitlementEvaluator,
        ledger: UsageLedger,
        connections: Optional[ConnectionRegistry] = None,
        adapter: Optional[ContentDispatchAdapter] = None
    ):
        self.evaluator = evaluator
        self.ledger = ledger
        self.connections = connections
        self.adapter = adapter or ContentDispatchAdapter()

    def check(self, account_id: str, feature: Union[Feature, str]) -> EntitlementDecision:
        return self.evaluator.check(account_id, feature)

    def require(self, account_id: str, feature: Union[Feature, str]) -> EntitlementDecision:
        """Check entitlement and raise on denial.

        Raises:
            SubscriptionInactive: If the subscription is not active
            QuotaExceeded: If the quota is used up or the feature is not in the plan
        """
        decision = self.evaluator.check(account_id, feature)
        if decision.allowed:
            return decision

        remaining = decision.remaining.to_display()
        logger.warning(
            "Denied %s for %s: %s (remaining=%s)",
            decision.feature.value, account_id, decision.reason.value, remaining
        )
        if decision.reason is ReasonCode.SUBSCRIPTION_INACTIVE:
            raise SubscriptionInactive(
                f"Subscription for {account_id} is not active", remaining=remaining
            )
        if decision.reason is ReasonCode.FEATURE_NOT_IN_PLAN:
            raise QuotaExceeded(
                f"{decision.feature.value} is not available on the current plan",
                remaining=remaining,
                reason_code=ReasonCode.FEATURE_NOT_IN_PLAN.value,
            )
        raise QuotaExceeded(
            f"{decision.feature.value} quota used up for this period", remaining=remaining
        )

    def run(self, account_id: str, feature: Union[Feature, str], action: Callable[[], T]) -> T:
        """Run ``action`` if entitled, then record one unit of usage.

        Returns:
            Whatever ``action`` returned

        Raises:
            EntitlementDenied: If the account may not use the feature
            Collaborator errors: Propagated without modification, nothing recorded
            Persistence errors: Propagated without modification after logging
        """
        decision = self.require(account_id, feature)
        result = action()
        self._record_after_success(account_id, decision.feature)
        return result

    def record_only(self, account_id: str, feature: Union[Feature, str]) -> int:
        """Record usage for an action that already succeeded."""
        return self.ledger.record_usage(account_id, feature)

    def publish(
        self,
        account_id: str,
        content: Optional[str],
        platforms: Iterable[Union[Platform, str]],
        poster: Poster
    ) -> T:
        """Shape content, confirm live connections and hand off to ``poster``.

        Connections are read just before the hand-off so a credential
        revoked out of band is never used. One ``socialPosts`` unit is
        recorded per successful publish.

        Raises:
            PlatformNotConnected: If any target platform is not connected
        """
        if self.connections is None:
            raise RuntimeError("FeatureGate.publish requires a ConnectionRegistry")

        decision = self.require(account_id, Feature.SOCIAL_POSTS)
        payloads = self.adapter.adapt(content, platforms)
        credentials = {
            platform: self.connections.require_credentials(account_id, platform)
            for platform in payloads
        }
        result = poster(payloads, credentials)
        self._record_after_success(account_id, decision.feature)
        return result

    def _record_after_success(self, account_id: str, feature: Feature) -> int:
        try:
            return self.ledger.record_usage(account_id, feature)
        except Exception:
            logger.exception(
                "Usage not recorded for %s/%s after successful execution; "
                "retry with record_only",
                account_id, feature.value
            )
            raise
