"""
Entitlement evaluation.

Combines the plan catalog with the usage ledger to answer whether an
account may perform a metered action now and how many units remain.

Evaluation order for ``check``:
1. Subscription status - any status other than active denies every feature
2. Quota -1 - always allowed
3. Quota 0 - feature not in plan
4. Finite quota - allowed while current usage is below the quota

Reads are not synchronized with usage recording. A burst of requests can
all pass ``check`` before any of them records; the gate does not reserve
units.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .ledger import UsageLedger
from .plans import DISABLED, UNLIMITED, PlanCatalog, coerce_feature
from entitlement_guard.storage.models import Account, Feature, Plan, SubscriptionStatus
from entitlement_guard.storage.repository import AccountStore

logger = logging.getLogger(__name__)

# Plan used when a subscription carries no plan: the lowest tier
FALLBACK_PLAN = Plan.FREE


class RemainingKind(Enum):
    UNLIMITED = "unlimited"
    UNAVAILABLE = "unavailable"
    FINITE = "finite"


@dataclass(frozen=True)
class Remaining:
    """Units left for a feature in the current period."""
    kind: RemainingKind
    units: int = 0

    @classmethod
    def unlimited(cls) -> "Remaining":
        return cls(RemainingKind.UNLIMITED)

    @classmethod
    def unavailable(cls) -> "Remaining":
        return cls(RemainingKind.UNAVAILABLE)

    @classmethod
    def finite(cls, units: int) -> "Remaining":
        return cls(RemainingKind.FINITE, max(0, units))

    def to_display(self) -> Union[str, int]:
        """``"unlimited"``, ``0`` for an unavailable feature, or the unit count."""
        if self.kind is RemainingKind.UNLIMITED:
            return "unlimited"
        return self.units


class ReasonCode(str, Enum):
    """Machine-checkable outcome of an entitlement check."""
    ALLOWED = "allowed"
    QUOTA_EXCEEDED = "quota_exceeded"
    FEATURE_NOT_IN_PLAN = "feature_not_in_plan"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"


@dataclass(frozen=True)
class EntitlementDecision:
    """Result of checking one feature for one account."""
    feature: Feature
    allowed: bool
    reason: ReasonCode
    remaining: Remaining


@dataclass(frozen=True)
class PlanSummary:
    """Read-only view of an account's plan, quotas and usage."""
    account_id: str
    plan: str
    status: SubscriptionStatus
    quotas: Dict[str, int]
    usage: Dict[str, int]
    remaining: Dict[str, Remaining]

    def to_dict(self) -> Dict[str, object]:
        return {
            "plan": self.plan,
            "status": self.status.value,
            "limits": dict(self.quotas),
            "usage": dict(self.usage),
            "remaining": {feature: r.to_display() for feature, r in self.remaining.items()},
        }


class EntitlementEvaluator:
    """Answers entitlement questions from an injected plan catalog."""

    def __init__(
        self,
        catalog: PlanCatalog,
        ledger: UsageLedger,
        store: Optional[AccountStore] = None,
        fallback_plan: Union[Plan, str] = FALLBACK_PLAN
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.store = store or ledger.store
        self.fallback_plan = fallback_plan.value if isinstance(fallback_plan, Plan) else fallback_plan
        # Fail at construction if the fallback is not a catalog plan
        self.catalog.limits_for(self.fallback_plan)

    def effective_plan(self, account: Account) -> str:
        """Subscription plan, or the fallback plan when none is set."""
        return account.subscription.plan or self.fallback_plan

    def can_use(self, account_id: str, feature: Union[Feature, str]) -> bool:
        return self.check(account_id, feature).allowed

    def remaining(self, account_id: str, feature: Union[Feature, str]) -> Remaining:
        """Units left for ``feature``; readable whatever the subscription status."""
        feature = coerce_feature(feature)
        account = self.store.load(account_id)
        quota = self.catalog.lookup(self.effective_plan(account), feature)
        usage = self.ledger.current_counts(account)[feature.value]
        return self._remaining(quota, usage)

    def check(self, account_id: str, feature: Union[Feature, str]) -> EntitlementDecision:
        """Evaluate one feature and explain the outcome.

        Raises:
            UnknownFeature: If the feature is not metered
            UnknownPlan: If the account's plan is not in the catalog
            AccountNotFound: If the account does not exist
        """
        feature = coerce_feature(feature)
        account = self.store.load(account_id)
        quota = self.catalog.lookup(self.effective_plan(account), feature)
        usage = self.ledger.current_counts(account)[feature.value]
        remaining = self._remaining(quota, usage)

        if account.subscription.status is not SubscriptionStatus.ACTIVE:
            reason = ReasonCode.SUBSCRIPTION_INACTIVE
        elif quota == UNLIMITED:
            reason = ReasonCode.ALLOWED
        elif quota == DISABLED:
            reason = ReasonCode.FEATURE_NOT_IN_PLAN
        elif usage < quota:
            reason = ReasonCode.ALLOWED
        else:
            reason = ReasonCode.QUOTA_EXCEEDED

        decision = EntitlementDecision(
            feature=feature,
            allowed=reason is ReasonCode.ALLOWED,
            reason=reason,
            remaining=remaining,
        )
        logger.debug("Entitlement check %s/%s: %s", account_id, feature.value, reason.value)
        return decision

    def plan_summary(self, account_id: str) -> PlanSummary:
        """Quotas, usage and remaining units for every feature.

        Never writes to the ledger, even when the stored period is stale.
        """
        account = self.store.load(account_id)
        plan = self.effective_plan(account)
        quotas = self.catalog.limits_for(plan)
        usage = self.ledger.current_counts(account)
        remaining = {
            feature: self._remaining(quotas[feature], usage[feature]) for feature in quotas
        }
        return PlanSummary(
            account_id=account_id,
            plan=plan,
            status=account.subscription.status,
            quotas=quotas,
            usage=usage,
            remaining=remaining,
        )

    def _remaining(self, quota: int, usage: int) -> Remaining:
        if quota == UNLIMITED:
            return Remaining.unlimited()
        if quota == DISABLED:
            return Remaining.unavailable()
        return Remaining.finite(quota - usage)
