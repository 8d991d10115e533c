"""
Engine wiring.

Builds the ledger, evaluator, connection registry, dispatch adapter and gate
from one configuration and one store, and exposes account lifecycle helpers.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Union

from .connections import ConnectionRegistry
from .dispatch import ContentDispatchAdapter
from .errors import UnknownPlan
from .evaluator import EntitlementEvaluator
from .gate import FeatureGate
from .ledger import UsageLedger
from .periods import utc_now
from .plans import PlanCatalog
from entitlement_guard.config.loader import EngineConfig
from entitlement_guard.storage.models import Account, Plan, Subscription, SubscriptionStatus
from entitlement_guard.storage.repository import AccountStore

logger = logging.getLogger(__name__)


@dataclass
class EntitlementEngine:
    """All core components sharing one store."""
    store: AccountStore
    catalog: PlanCatalog
    ledger: UsageLedger
    evaluator: EntitlementEvaluator
    connections: ConnectionRegistry
    adapter: ContentDispatchAdapter
    gate: FeatureGate

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        store: AccountStore,
        clock: Callable[[], datetime] = utc_now
    ) -> "EntitlementEngine":
        ledger = UsageLedger(store, period=config.period, clock=clock)
        evaluator = EntitlementEvaluator(
            config.catalog, ledger, store, fallback_plan=config.fallback_plan
        )
        connections = ConnectionRegistry(store, clock=clock)
        adapter = ContentDispatchAdapter(config.platform_formats, strip_hashtags=config.strip_hashtags)
        return cls(
            store=store,
            catalog=config.catalog,
            ledger=ledger,
            evaluator=evaluator,
            connections=connections,
            adapter=adapter,
            gate=FeatureGate(evaluator, ledger, connections, adapter),
        )

    def open_account(
        self,
        account_id: str,
        plan: Optional[Union[Plan, str]] = None,
        status: Union[SubscriptionStatus, str] = SubscriptionStatus.ACTIVE
    ) -> Account:
        """Create an account with zero usage and every platform disconnected.

        Raises:
            UnknownPlan: If ``plan`` is given but not in the catalog
            ValueError: If ``status`` is not a subscription status
        """
        plan_key = self._plan_key(plan)
        return self.store.create(
            Account(account_id=account_id, subscription=Subscription(plan=plan_key, status=status))
        )

    def change_subscription(
        self,
        account_id: str,
        plan: Optional[Union[Plan, str]] = None,
        status: Optional[Union[SubscriptionStatus, str]] = None
    ) -> Account:
        """Change plan and/or status; usage counters are left untouched."""
        plan_key = self._plan_key(plan)
        new_status = SubscriptionStatus(status) if status is not None else None

        def _mutate(account: Account) -> Account:
            subscription = account.subscription
            if plan_key is not None:
                subscription = replace(subscription, plan=plan_key)
            if new_status is not None:
                subscription = replace(subscription, status=new_status)
            return replace(account, subscription=subscription)

        saved = self.store.update(account_id, _mutate)
        logger.info(
            "Subscription for %s is now %s/%s",
            account_id, saved.subscription.plan, saved.subscription.status.value
        )
        return saved

    def _plan_key(self, plan: Optional[Union[Plan, str]]) -> Optional[str]:
        if plan is None:
            return None
        plan_key = plan.value if isinstance(plan, Plan) else plan
        if plan_key not in self.catalog.plans():
            raise UnknownPlan(plan)
        return plan_key
