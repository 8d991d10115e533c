"""
Accounting periods for usage rollover.

A period policy maps any instant to the first instant of the period that
contains it. The ledger compares that start against the stored watermark.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_stale(watermark: Optional[datetime], period_start: datetime) -> bool:
    """True if counts stamped with ``watermark`` predate the period at ``period_start``.

    A watermark later than ``period_start`` is never stale: it belongs to a
    period another writer has already opened.
    """
    return watermark is None or as_utc(watermark) < as_utc(period_start)


class AccountingPeriod:
    """Base policy: subclasses implement ``period_start``."""

    name = "period"

    def period_start(self, moment: datetime) -> datetime:
        raise NotImplementedError

    def is_current(self, watermark: Optional[datetime], moment: datetime) -> bool:
        """True if ``watermark`` marks the period containing ``moment``."""
        if watermark is None:
            return False
        return as_utc(watermark) == self.period_start(moment)


class CalendarMonthPeriod(AccountingPeriod):
    """Calendar month in UTC."""

    name = "calendar_month"

    def period_start(self, moment: datetime) -> datetime:
        moment = as_utc(moment)
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def __repr__(self) -> str:
        return "CalendarMonthPeriod()"


class FixedLengthPeriod(AccountingPeriod):
    """Back-to-back windows of ``length`` starting at ``anchor``."""

    name = "fixed"

    def __init__(self, length: timedelta, anchor: datetime):
        if length <= timedelta(0):
            raise ValueError("period length must be > 0")
        self.length = length
        self.anchor = as_utc(anchor)

    def period_start(self, moment: datetime) -> datetime:
        elapsed = as_utc(moment) - self.anchor
        # Floor division also handles moments before the anchor
        return self.anchor + (elapsed // self.length) * self.length

    def __repr__(self) -> str:
        return f"FixedLengthPeriod(length={self.length!r}, anchor={self.anchor.isoformat()})"


def parse_period(value: Union[str, Mapping[str, Any]]) -> AccountingPeriod:
    """Build a period policy from its configuration form.

    Accepts ``"calendar_month"`` or ``{"days": n, "anchor": iso-timestamp}``.

    Raises:
        ValueError: If the value is not a known period
    """
    if isinstance(value, str):
        if value == CalendarMonthPeriod.name:
            return CalendarMonthPeriod()
        raise ValueError(f"Unknown period '{value}', expected 'calendar_month' or a mapping")

    if not isinstance(value, Mapping):
        raise ValueError("'period' must be a string or a dictionary")

    unknown_keys = set(value) - {"days", "anchor"}
    if unknown_keys:
        raise ValueError(f"Unknown period keys: {unknown_keys}")
    if "days" not in value:
        raise ValueError("Missing required 'days' in period")

    days = value["days"]
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValueError("'days' in period must be a positive integer")

    anchor = value.get("anchor", "1970-01-01T00:00:00+00:00")
    if isinstance(anchor, str):
        try:
            anchor = datetime.fromisoformat(anchor)
        except ValueError:
            raise ValueError(f"'anchor' in period is not an ISO timestamp: {anchor}")
    elif not isinstance(anchor, datetime):
        raise ValueError("'anchor' in period must be an ISO timestamp")

    return FixedLengthPeriod(timedelta(days=days), anchor)
