"""
Usage ledger: per-account feature counters with period rollover.

The ledger is a counter, not a gate. It never consults quotas; callers
check entitlement first and record only after a successful action.

Rollover rule:
    If the stored watermark is older than the start of the current period,
    all counters reset to zero, the recorded feature is set to 1 and the
    watermark advances, in one step. The first use of a new period is
    therefore always counted. A watermark is never moved backward; a late
    writer whose clock still reads the previous period counts against the
    newer one.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Optional, Union

from .periods import AccountingPeriod, CalendarMonthPeriod, as_utc, is_stale, utc_now
from .plans import coerce_feature
from entitlement_guard.storage.models import Account, Feature, UsageRecord
from entitlement_guard.storage.repository import AccountStore

logger = logging.getLogger(__name__)


def apply_usage(
    record: UsageRecord,
    feature: Feature,
    period_start: datetime,
    now: datetime
) -> UsageRecord:
    """Return ``record`` with one use of ``feature`` applied.

    Args:
        record: Stored usage record
        feature: Feature being used
        period_start: First instant of the current accounting period
        now: Time of the use

    Returns:
        New usage record; the input is not modified
    """
    if is_stale(record.reset_watermark, period_start):
        counts = {f.value: 0 for f in Feature}
        counts[feature.value] = 1
        return UsageRecord(counts=counts, last_updated=now, reset_watermark=as_utc(period_start))

    # Current or newer period: the watermark never moves backward
    counts = dict(record.counts)
    counts[feature.value] = counts.get(feature.value, 0) + 1
    return replace(
        record,
        counts=counts,
        last_updated=now,
        reset_watermark=as_utc(record.reset_watermark),
    )


class UsageLedger:
    """Reads and records feature usage for accounts in a store."""

    def __init__(
        self,
        store: AccountStore,
        period: Optional[AccountingPeriod] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize the ledger.

        Args:
            store: Account persistence collaborator
            period: Accounting period policy (defaults to calendar month)
            clock: Source of the current time
        """
        self.store = store
        self.period = period or CalendarMonthPeriod()
        self.clock = clock

    def current_period_start(self) -> datetime:
        return self.period.period_start(self.clock())

    def current_usage(self, account_id: str, feature: Union[Feature, str]) -> int:
        """Usage of ``feature`` in the current period.

        A record left over from an earlier period reads as zero. Nothing
        is written.
        """
        feature = coerce_feature(feature)
        return self.current_counts(self.store.load(account_id))[feature.value]

    def usage_snapshot(self, account_id: str) -> Dict[str, int]:
        """Current-period usage for every feature, read-only."""
        return self.current_counts(self.store.load(account_id))

    def record_usage(self, account_id: str, feature: Union[Feature, str]) -> int:
        """Record one use of ``feature`` and return the new count.

        Runs as a single read-modify-write in the store, so concurrent
        calls for the same account neither lose increments nor both reset
        the period.

        Raises:
            UnknownFeature: If the feature is not metered
            AccountNotFound: If the account does not exist
            Persistence errors: Propagated without modification
        """
        feature = coerce_feature(feature)

        def _mutate(account: Account) -> Account:
            # Clock read under the store's per-account lock
            now = self.clock()
            period_start = self.period.period_start(now)
            if is_stale(account.usage.reset_watermark, period_start):
                logger.debug(
                    "Rolling over usage for %s: watermark %s -> %s",
                    account_id, account.usage.reset_watermark, period_start
                )
            return replace(account, usage=apply_usage(account.usage, feature, period_start, now))

        saved = self.store.update(account_id, _mutate)
        count = saved.usage.count(feature)
        logger.info("Recorded %s for %s (count=%d)", feature.value, account_id, count)
        return count

    def current_counts(self, account: Account) -> Dict[str, int]:
        if not self.period.is_current(account.usage.reset_watermark, self.clock()):
            return {feature.value: 0 for feature in Feature}
        return {feature.value: account.usage.count(feature) for feature in Feature}
