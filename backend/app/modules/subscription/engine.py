"""Subscription status and forecast engine.

Derives next billing date, overdue/upcoming status and monthly cost
forecasts from a subscription's billing configuration and its recorded
payments. "Today" is always passed in by the caller; nothing here reads the
clock or touches the database.

Occurrence index policy: only payments with status ``paid`` advance the
index. Pending, failed and refunded records are kept for history but do not
settle an occurrence.
"""

import uuid
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from app.modules.subscription.calculator import (
    BillingConfiguration,
    BillingCycle,
    add_months_clamped,
    billing_dates_between,
    calculate_nth_billing_date,
)
from app.modules.subscription.models import ComputedStatus, PaymentStatus


@dataclass(frozen=True)
class PaymentSnapshot:
    """Read-only view of a payment record."""
    payment_date: date
    status: str
    amount: Decimal
    currency_code: str


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Read-only view of a subscription and its payments."""
    name: str
    price: Decimal
    currency_code: str
    config: BillingConfiguration
    payments: tuple[PaymentSnapshot, ...] = ()
    id: Optional[uuid.UUID] = None
    notifications_enabled: bool = True
    reminder_intervals: Optional[tuple[int, ...]] = None

    @classmethod
    def from_model(cls, subscription) -> "SubscriptionSnapshot":
        """Build a snapshot from a Subscription ORM row (payments loaded)."""
        payments = tuple(
            PaymentSnapshot(
                payment_date=p.payment_date,
                status=p.status,
                amount=Decimal(p.amount),
                currency_code=p.currency_code,
            )
            for p in subscription.payments
        )
        intervals = None
        if not subscription.use_default_notifications and subscription.reminder_intervals:
            intervals = tuple(subscription.reminder_intervals)

        return cls(
            id=subscription.id,
            name=subscription.name,
            price=Decimal(subscription.price),
            currency_code=subscription.currency_code,
            config=subscription.billing_configuration(),
            payments=payments,
            notifications_enabled=bool(subscription.notifications_enabled),
            reminder_intervals=intervals,
        )

    @property
    def paid_payment_count(self) -> int:
        return counted_payments(self.payments)

    @property
    def earliest_paid_date(self) -> Optional[date]:
        paid = [p.payment_date for p in self.payments if p.status == PaymentStatus.PAID.value]
        return min(paid) if paid else None


def counted_payments(payments: Iterable[PaymentSnapshot]) -> int:
    """Number of payments that advance the occurrence index."""
    return sum(1 for p in payments if p.status == PaymentStatus.PAID.value)


# ==================== Status ====================

def is_ended(config: BillingConfiguration, today: date) -> bool:
    """True once the end date is strictly in the past."""
    return config.end_date is not None and config.end_date < today


def computed_status(snapshot: SubscriptionSnapshot, today: date) -> ComputedStatus:
    if is_ended(snapshot.config, today):
        return ComputedStatus.ENDED
    return ComputedStatus.ACTIVE


def next_billing_date(
    snapshot: SubscriptionSnapshot,
    today: date,
    paid_payment_count: Optional[int] = None,
) -> Optional[date]:
    """Date of the next unpaid occurrence.

    Args:
        snapshot: Subscription to evaluate
        today: Reference date supplied by the caller
        paid_payment_count: Override for the number of paid payments;
            defaults to the count of paid records in the snapshot

    Returns:
        The billing date of occurrence N (N = paid payment count), or None
        for an ended subscription or a one-time subscription already paid
    """
    if is_ended(snapshot.config, today):
        return None

    count = snapshot.paid_payment_count if paid_payment_count is None else paid_payment_count
    cycle = BillingCycle.parse(snapshot.config.billing_cycle)
    if cycle is BillingCycle.ONE_TIME and count > 0:
        return None

    return calculate_nth_billing_date(snapshot.config, count)


def is_overdue(snapshot: SubscriptionSnapshot, today: date) -> bool:
    """True if the next billing date is strictly before today."""
    due = next_billing_date(snapshot, today)
    return due is not None and due < today


def is_upcoming(snapshot: SubscriptionSnapshot, within_days: int, today: date) -> bool:
    """True if the next billing date is in [today, today + within_days]."""
    if within_days < 0:
        raise ValueError(f"within_days must not be negative, got {within_days}")
    due = next_billing_date(snapshot, today)
    return due is not None and today <= due <= today + timedelta(days=within_days)


def days_until_due(snapshot: SubscriptionSnapshot, today: date) -> Optional[int]:
    """Days from today to the next billing date (negative when overdue)."""
    due = next_billing_date(snapshot, today)
    if due is None:
        return None
    return (due - today).days


# ==================== Dashboard lists ====================

def _with_due_dates(
    snapshots: Iterable[SubscriptionSnapshot], today: date
) -> list[tuple[date, SubscriptionSnapshot]]:
    pairs = []
    for snapshot in snapshots:
        due = next_billing_date(snapshot, today)
        if due is not None:
            pairs.append((due, snapshot))
    return pairs


def upcoming_bills(
    snapshots: Iterable[SubscriptionSnapshot], today: date, days: int = 7
) -> list[tuple[date, SubscriptionSnapshot]]:
    """Bills due after today and within ``days``, soonest first.

    Bills due today are reported by ``is_upcoming`` but not listed here, so
    the dashboard never shows the same bill as both upcoming and overdue.
    """
    cutoff = today + timedelta(days=days)
    bills = [(due, s) for due, s in _with_due_dates(snapshots, today) if today < due <= cutoff]
    return sorted(bills, key=lambda pair: pair[0])


def overdue_bills(
    snapshots: Iterable[SubscriptionSnapshot], today: date
) -> list[tuple[date, SubscriptionSnapshot]]:
    """Bills whose next billing date has passed, oldest first."""
    bills = [(due, s) for due, s in _with_due_dates(snapshots, today) if due < today]
    return sorted(bills, key=lambda pair: pair[0])


def month_bounds(day: date) -> tuple[date, date]:
    """First and last day of the month containing ``day``."""
    return day.replace(day=1), day.replace(day=monthrange(day.year, day.month)[1])


def spending_window(today: date, months: int = 6) -> tuple[date, date]:
    """Date range covering today's month and the ``months - 1`` months before it."""
    if months < 1:
        raise ValueError(f"months must be at least 1, got {months}")
    month_start, month_end = month_bounds(today)
    return add_months_clamped(month_start, -(months - 1), 1), month_end


def current_month_bills(
    snapshots: Iterable[SubscriptionSnapshot], today: date
) -> list[tuple[date, SubscriptionSnapshot]]:
    """Bills whose next billing date falls in today's calendar month."""
    start, end = month_bounds(today)
    bills = [(due, s) for due, s in _with_due_dates(snapshots, today) if start <= due <= end]
    return sorted(bills, key=lambda pair: pair[0])


# ==================== Forecast ====================

@dataclass
class ForecastEntry:
    """Contribution of one subscription to a monthly forecast."""
    subscription_id: Optional[uuid.UUID]
    name: str
    occurrences: int
    forecast_amount: Decimal


@dataclass
class CurrencyForecast:
    """Forecast aggregate for a single currency."""
    currency_code: str
    total: Decimal = Decimal("0")
    count: int = 0
    subscriptions: list[ForecastEntry] = field(default_factory=list)

    def add(self, entry: ForecastEntry) -> None:
        self.total += entry.forecast_amount
        self.count += 1
        self.subscriptions.append(entry)


def is_active_in_month(config: BillingConfiguration, month_start: date, month_end: date) -> bool:
    """True if the subscription runs on at least one day of the month."""
    if config.start_date > month_end:
        return False
    if config.end_date is not None and config.end_date < month_start:
        return False
    return True


def subscription_forecast(
    snapshot: SubscriptionSnapshot, month_start: date, month_end: date
) -> Optional[ForecastEntry]:
    """Amount a subscription is billed within a month.

    Every occurrence inside the month counts in full, whether or not it has
    been paid; quarterly and yearly bills land entirely in their due month.
    Occurrences after the end date are excluded.

    Returns:
        A ForecastEntry, or None when nothing is billed in the month
    """
    config = snapshot.config
    if not is_active_in_month(config, month_start, month_end):
        return None

    window_end = month_end
    if config.end_date is not None and config.end_date < window_end:
        window_end = config.end_date

    occurrences = len(billing_dates_between(config, month_start, window_end))
    if occurrences == 0:
        return None

    return ForecastEntry(
        subscription_id=snapshot.id,
        name=snapshot.name,
        occurrences=occurrences,
        forecast_amount=snapshot.price * occurrences,
    )


def monthly_forecast(
    snapshots: Iterable[SubscriptionSnapshot],
    today: date,
    month: Optional[date] = None,
) -> dict[str, CurrencyForecast]:
    """Per-currency cost forecast for a month.

    Args:
        snapshots: Subscriptions to aggregate
        today: Reference date; subscriptions ended before it are skipped
        month: Any day of the target month (defaults to today's month)

    Returns:
        Mapping of currency code to its CurrencyForecast. No conversion
        between currencies is performed.
    """
    month_start, month_end = month_bounds(month or today)
    forecast: dict[str, CurrencyForecast] = {}

    for snapshot in snapshots:
        if is_ended(snapshot.config, today):
            continue
        entry = subscription_forecast(snapshot, month_start, month_end)
        if entry is None:
            continue
        bucket = forecast.setdefault(
            snapshot.currency_code, CurrencyForecast(currency_code=snapshot.currency_code)
        )
        bucket.add(entry)

    return forecast


def merge_forecasts(*forecasts: dict[str, CurrencyForecast]) -> dict[str, CurrencyForecast]:
    """Combine partial forecasts computed over disjoint subscription sets."""
    merged: dict[str, CurrencyForecast] = {}
    for forecast in forecasts:
        for code, part in forecast.items():
            bucket = merged.setdefault(code, CurrencyForecast(currency_code=code))
            for entry in part.subscriptions:
                bucket.add(entry)
    return merged


# ==================== Reminders ====================

def due_reminder(
    snapshot: SubscriptionSnapshot,
    today: date,
    default_intervals: Sequence[int],
) -> Optional[int]:
    """Reminder offset (days before due) that matches today, if any.

    Overdue and ended subscriptions never produce a reminder.
    """
    if not snapshot.notifications_enabled:
        return None

    remaining = days_until_due(snapshot, today)
    if remaining is None or remaining < 0:
        return None

    intervals = snapshot.reminder_intervals or tuple(default_intervals)
    if remaining in intervals:
        return remaining
    return None
