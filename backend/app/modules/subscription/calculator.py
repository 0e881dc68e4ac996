"""Billing date calculator.

Computes the Nth occurrence of a recurring billing date from the first
billing date. For month-based cycles the day of month comes from the stored
anchor day (``billing_cycle_day``) and is clamped to the length of the
target month, so that a short month only affects its own occurrence:

    anchor 31: Jan 31 -> Feb 29 (2024) -> Mar 31 -> Apr 30 -> May 31

Everything in this module is a pure function of its arguments.
"""

import calendar
import itertools
from dataclasses import dataclass, replace
from datetime import date, timedelta
from enum import Enum
from typing import Iterator, Optional, Union

from app.modules.subscription.exceptions import ConfigurationError


class BillingCycle(str, Enum):
    """Billing cycle units."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"

    @classmethod
    def parse(cls, value: Union[str, "BillingCycle"]) -> "BillingCycle":
        """Convert a stored value to a BillingCycle.

        Raises:
            ConfigurationError: If the value is not a known cycle
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unrecognized billing cycle: {value!r}") from None

    @property
    def is_month_based(self) -> bool:
        return self in MONTHS_PER_CYCLE

    @property
    def is_recurring(self) -> bool:
        return self is not BillingCycle.ONE_TIME


MONTHS_PER_CYCLE = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}

DAYS_PER_CYCLE = {
    BillingCycle.DAILY: 1,
    BillingCycle.WEEKLY: 7,
}


def months_per_cycle(cycle: Union[str, BillingCycle]) -> int:
    """Number of calendar months in one unit of a month-based cycle."""
    cycle = BillingCycle.parse(cycle)
    if not cycle.is_month_based:
        raise ConfigurationError(f"{cycle.value} is not a month-based cycle")
    return MONTHS_PER_CYCLE[cycle]


def derive_billing_cycle_day(
    billing_cycle: Union[str, BillingCycle],
    first_billing_date: date,
) -> Optional[int]:
    """Anchor day for a new configuration; None for cycles that ignore it."""
    if BillingCycle.parse(billing_cycle).is_month_based:
        return first_billing_date.day
    return None


@dataclass(frozen=True)
class BillingConfiguration:
    """Billing settings of a single subscription.

    ``billing_cycle_day`` is captured once from ``first_billing_date`` and is
    never recomputed from a later (possibly clamped) occurrence.
    """
    billing_cycle: BillingCycle
    billing_interval: int
    first_billing_date: date
    start_date: date
    billing_cycle_day: Optional[int] = None
    end_date: Optional[date] = None

    @classmethod
    def create(
        cls,
        billing_cycle: Union[str, BillingCycle],
        billing_interval: int,
        first_billing_date: date,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> "BillingConfiguration":
        """Build and validate a configuration, deriving the anchor day."""
        cycle = BillingCycle.parse(billing_cycle)
        config = cls(
            billing_cycle=cycle,
            billing_interval=billing_interval,
            first_billing_date=first_billing_date,
            start_date=start_date or first_billing_date,
            billing_cycle_day=derive_billing_cycle_day(cycle, first_billing_date),
            end_date=end_date,
        )
        return config.validate()

    def with_first_billing_date(self, first_billing_date: date) -> "BillingConfiguration":
        """Return a copy re-anchored on a new first billing date."""
        return replace(
            self,
            first_billing_date=first_billing_date,
            billing_cycle_day=derive_billing_cycle_day(self.billing_cycle, first_billing_date),
        ).validate()

    def validate(self) -> "BillingConfiguration":
        """Check internal consistency.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigurationError: On the first inconsistency found
        """
        cycle = BillingCycle.parse(self.billing_cycle)
        _check_interval(self.billing_interval)

        if cycle.is_month_based:
            _check_anchor_day(self.billing_cycle_day, cycle)

        if self.end_date is not None and self.end_date < self.start_date:
            raise ConfigurationError(
                f"end_date {self.end_date} is before start_date {self.start_date}"
            )
        return self


def _check_interval(interval) -> None:
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise ConfigurationError(f"billing_interval must be a positive integer, got {interval!r}")


def _check_anchor_day(day, cycle: BillingCycle) -> None:
    if day is None:
        raise ConfigurationError(f"{cycle.value} cycle requires billing_cycle_day")
    if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 31:
        raise ConfigurationError(f"billing_cycle_day must be between 1 and 31, got {day!r}")


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months_clamped(origin: date, months: int, day: int) -> date:
    """Move ``months`` calendar months from ``origin`` and land on ``day``.

    The day is clamped to the last day of the target month. Leap years are
    handled by the month length lookup.
    """
    month_index = origin.year * 12 + (origin.month - 1) + months
    year, month0 = divmod(month_index, 12)
    month = month0 + 1
    return date(year, month, min(day, days_in_month(year, month)))


def calculate_nth_billing_date(config: BillingConfiguration, n: int) -> date:
    """Compute the Nth billing date (N = 0 is the first billing date).

    Args:
        config: Billing configuration
        n: Zero-based occurrence index

    Returns:
        The billing date of occurrence ``n``

    Raises:
        ValueError: If ``n`` is negative or not an integer
        ConfigurationError: If the configuration is malformed
    """
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ValueError(f"Occurrence index must be a non-negative integer, got {n!r}")

    cycle = BillingCycle.parse(config.billing_cycle)
    _check_interval(config.billing_interval)
    if cycle.is_month_based:
        _check_anchor_day(config.billing_cycle_day, cycle)

    if n == 0 or cycle is BillingCycle.ONE_TIME:
        return config.first_billing_date

    if cycle in DAYS_PER_CYCLE:
        step_days = config.billing_interval * DAYS_PER_CYCLE[cycle]
        return config.first_billing_date + timedelta(days=n * step_days)

    if cycle in MONTHS_PER_CYCLE:
        months = n * config.billing_interval * MONTHS_PER_CYCLE[cycle]
        return add_months_clamped(config.first_billing_date, months, config.billing_cycle_day)

    raise ConfigurationError(f"No date rule for billing cycle {cycle.value}")


def iter_billing_dates(config: BillingConfiguration, start_index: int = 0) -> Iterator[date]:
    """Yield billing dates from occurrence ``start_index`` onwards.

    One-time configurations yield at most the single first billing date.
    """
    if BillingCycle.parse(config.billing_cycle) is BillingCycle.ONE_TIME:
        if start_index == 0:
            yield calculate_nth_billing_date(config, 0)
        return

    for n in itertools.count(start_index):
        yield calculate_nth_billing_date(config, n)


def first_occurrence_on_or_after(config: BillingConfiguration, day: date) -> Optional[int]:
    """Smallest occurrence index whose billing date is on or after ``day``.

    Returns None for a one-time configuration billed before ``day``.
    """
    cycle = BillingCycle.parse(config.billing_cycle)
    first = config.first_billing_date

    if first >= day:
        return 0
    if cycle is BillingCycle.ONE_TIME:
        return None

    if cycle in DAYS_PER_CYCLE:
        step_days = config.billing_interval * DAYS_PER_CYCLE[cycle]
        n = -(-(day - first).days // step_days)
    else:
        step_months = config.billing_interval * MONTHS_PER_CYCLE[cycle]
        month_gap = (day.year - first.year) * 12 + (day.month - first.month)
        n = max(month_gap // step_months, 0)

    while calculate_nth_billing_date(config, n) < day:
        n += 1
    return n


def billing_dates_between(config: BillingConfiguration, start: date, end: date) -> list[date]:
    """All billing dates in the inclusive range [start, end]."""
    if end < start:
        return []

    index = first_occurrence_on_or_after(config, start)
    if index is None:
        return []

    dates = []
    for billing_date in iter_billing_dates(config, index):
        if billing_date > end:
            break
        dates.append(billing_date)
    return dates
