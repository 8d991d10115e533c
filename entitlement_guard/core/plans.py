"""
Plan catalog and quota lookup.

Quota values:
    -1  unlimited
     0  feature disabled on the plan
     n  hard cap per accounting period
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple, Union

from .errors import UnknownFeature, UnknownPlan
from entitlement_guard.storage.models import Feature, Plan

UNLIMITED = -1
DISABLED = 0


def coerce_feature(feature: Union[Feature, str]) -> Feature:
    """Resolve a feature identifier, raising UnknownFeature if unrecognized."""
    try:
        return Feature(feature)
    except ValueError:
        raise UnknownFeature(feature) from None


@dataclass(frozen=True)
class PlanCatalog:
    """Immutable plan -> feature -> quota table."""
    quotas: Mapping[str, Mapping[str, int]]

    def __post_init__(self):
        """Validate the table is total over features and quotas are sane."""
        if not self.quotas:
            raise ValueError("Plan catalog cannot be empty")
        for plan, limits in self.quotas.items():
            missing = {feature.value for feature in Feature} - set(limits)
            if missing:
                raise ValueError(f"Plan '{plan}' is missing quotas for: {sorted(missing)}")
            unknown = set(limits) - {feature.value for feature in Feature}
            if unknown:
                raise UnknownFeature(sorted(unknown)[0])
            for feature, quota in limits.items():
                if isinstance(quota, bool) or not isinstance(quota, int) or quota < UNLIMITED:
                    raise ValueError(
                        f"Quota for {plan}.{feature} must be an integer >= -1, got {quota!r}"
                    )

    def lookup(self, plan: Union[Plan, str], feature: Union[Feature, str]) -> int:
        """Get the quota for a plan and feature.

        Raises:
            UnknownPlan: If the plan is not in the catalog
            UnknownFeature: If the feature is not a metered feature
        """
        plan_key = plan.value if isinstance(plan, Plan) else plan
        if plan_key not in self.quotas:
            raise UnknownPlan(plan)
        return self.quotas[plan_key][coerce_feature(feature).value]

    def limits_for(self, plan: Union[Plan, str]) -> Dict[str, int]:
        """All quotas for a plan, keyed by feature identifier."""
        return {feature.value: self.lookup(plan, feature) for feature in Feature}

    def plans(self) -> Tuple[str, ...]:
        return tuple(self.quotas)

    def features(self) -> Tuple[Feature, ...]:
        return tuple(Feature)


# Reference quotas; injected into the evaluator, never mutated
DEFAULT_PLAN_CATALOG = PlanCatalog({
    Plan.FREE.value: {
        Feature.AI_CONTENT.value: 0,
        Feature.SOCIAL_POSTS.value: 0,
        Feature.EMAIL_CAMPAIGNS.value: 0,
        Feature.REVIEWS_MONITORED.value: 10,
    },
    Plan.LOCAL_BOOST.value: {
        Feature.AI_CONTENT.value: 10,
        Feature.SOCIAL_POSTS.value: 30,
        Feature.EMAIL_CAMPAIGNS.value: 10,
        Feature.REVIEWS_MONITORED.value: 100,
    },
    Plan.GROWTH_ACCELERATOR.value: {
        Feature.AI_CONTENT.value: 50,
        Feature.SOCIAL_POSTS.value: 100,
        Feature.EMAIL_CAMPAIGNS.value: 50,
        Feature.REVIEWS_MONITORED.value: 500,
    },
    Plan.SCALE.value: {
        Feature.AI_CONTENT.value: 200,
        Feature.SOCIAL_POSTS.value: 500,
        Feature.EMAIL_CAMPAIGNS.value: 200,
        Feature.REVIEWS_MONITORED.value: 2000,
    },
    Plan.ENTERPRISE.value: {
        Feature.AI_CONTENT.value: UNLIMITED,
        Feature.SOCIAL_POSTS.value: UNLIMITED,
        Feature.EMAIL_CAMPAIGNS.value: UNLIMITED,
        Feature.REVIEWS_MONITORED.value: UNLIMITED,
    },
})
