"""Subscription Service.

Creates and edits subscriptions, records payments and builds the dashboard
views. Billing status is never stored; it is recomputed from the billing
configuration and the paid payment count on every read.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_info, log_warning
from app.core.tracing import create_span
from app.modules.subscription.calculator import BillingConfiguration
from app.modules.subscription.engine import (
    SubscriptionSnapshot,
    computed_status,
    current_month_bills,
    days_until_due,
    is_ended,
    is_overdue,
    month_bounds,
    monthly_forecast,
    next_billing_date,
    overdue_bills,
    spending_window,
    upcoming_bills,
)
from app.modules.subscription.exceptions import (
    ConcurrencyConflict,
    InvariantViolation,
    PaymentNotFoundError,
    SubscriptionNotFoundError,
)
from app.modules.subscription.models import ComputedStatus, PaymentStatus, Subscription
from app.modules.subscription.repository import PaymentRepository, SubscriptionRepository
from app.modules.subscription.schemas import (
    BillSummary,
    BillingDatesUpdate,
    CurrencyForecastResponse,
    DashboardResponse,
    ForecastEntryResponse,
    MarkAsPaidRequest,
    MonthlyForecastResponse,
    MonthlySpending,
    PaymentCreate,
    PaymentResponse,
    SpendingSummary,
    SubscriptionCreate,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdate,
)

logger = logging.getLogger(__name__)

# Filters accepted by list_subscriptions
STATUS_FILTERS = ("all", "active", "ended", "upcoming", "overdue")

# Records on the due date that mark_as_paid may turn into the payment
SETTLEABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class SubscriptionService:
    """Service for subscription tracking and bill status."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.subscription_repo = SubscriptionRepository(session)
        self.payment_repo = PaymentRepository(session)

    # ==================== Helpers ====================

    async def _get_owned(self, user_id: uuid.UUID, subscription_id: uuid.UUID) -> Subscription:
        subscription = await self.subscription_repo.get_for_user(user_id, subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def _lock_owned(self, user_id: uuid.UUID, subscription_id: uuid.UUID) -> Subscription:
        """Like _get_owned, but holds the row lock until the transaction ends."""
        subscription = await self.subscription_repo.lock_for_update(subscription_id)
        if not subscription or subscription.user_id != user_id:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    def _to_response(self, subscription: Subscription, today: date) -> SubscriptionResponse:
        snapshot = SubscriptionSnapshot.from_model(subscription)
        return SubscriptionResponse(
            id=subscription.id,
            user_id=subscription.user_id,
            name=subscription.name,
            description=subscription.description,
            price=subscription.price,
            currency_code=subscription.currency_code,
            payment_method_id=subscription.payment_method_id,
            billing_cycle=snapshot.config.billing_cycle,
            billing_interval=subscription.billing_interval,
            billing_cycle_day=subscription.billing_cycle_day,
            start_date=subscription.start_date,
            first_billing_date=subscription.first_billing_date,
            end_date=subscription.end_date,
            website_url=subscription.website_url,
            notes=subscription.notes,
            notifications_enabled=subscription.notifications_enabled,
            use_default_notifications=subscription.use_default_notifications,
            reminder_intervals=subscription.reminder_intervals,
            next_billing_date=next_billing_date(snapshot, today),
            computed_status=computed_status(snapshot, today),
            is_overdue=is_overdue(snapshot, today),
            days_until_due=days_until_due(snapshot, today),
            paid_payment_count=snapshot.paid_payment_count,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )

    @staticmethod
    def _bill_summary(due: date, snapshot: SubscriptionSnapshot, today: date) -> BillSummary:
        return BillSummary(
            subscription_id=snapshot.id,
            name=snapshot.name,
            price=snapshot.price,
            currency_code=snapshot.currency_code,
            next_billing_date=due,
            days_until_due=(due - today).days,
        )

    # ==================== Subscription Management ====================

    async def create_subscription(
        self,
        user_id: uuid.UUID,
        data: SubscriptionCreate,
        today: date,
    ) -> SubscriptionResponse:
        """Create a subscription and capture its anchor billing day.

        Raises:
            ConfigurationError: If the billing settings are inconsistent
        """
        config = BillingConfiguration.create(
            billing_cycle=data.billing_cycle,
            billing_interval=data.billing_interval,
            first_billing_date=data.first_billing_date or data.start_date,
            start_date=data.start_date,
            end_date=data.end_date,
        )

        reminder_intervals = None
        if data.notifications_enabled and not data.use_default_notifications:
            reminder_intervals = data.reminder_intervals

        subscription = await self.subscription_repo.create(
            user_id=user_id,
            name=data.name,
            description=data.description,
            price=data.price,
            currency_code=data.currency_code,
            payment_method_id=data.payment_method_id,
            billing_cycle=config.billing_cycle.value,
            billing_interval=config.billing_interval,
            billing_cycle_day=config.billing_cycle_day,
            start_date=config.start_date,
            first_billing_date=config.first_billing_date,
            end_date=config.end_date,
            website_url=data.website_url,
            notes=data.notes,
            notifications_enabled=data.notifications_enabled,
            use_default_notifications=reminder_intervals is None,
            reminder_intervals=reminder_intervals,
        )
        log_info(
            logger,
            "Subscription created",
            subscription_id=str(subscription.id),
            billing_cycle=config.billing_cycle.value,
            billing_cycle_day=config.billing_cycle_day,
        )
        return self._to_response(subscription, today)

    async def get_subscription(
        self, user_id: uuid.UUID, subscription_id: uuid.UUID, today: date
    ) -> SubscriptionResponse:
        subscription = await self._get_owned(user_id, subscription_id)
        return self._to_response(subscription, today)

    async def list_subscriptions(
        self,
        user_id: uuid.UUID,
        today: date,
        status: str = "all",
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 15,
    ) -> SubscriptionListResponse:
        """List subscriptions, optionally filtered by derived status.

        ``upcoming`` keeps bills due today or later and ``overdue`` keeps
        bills due before today; both are sorted by next billing date.
        """
        if status not in STATUS_FILTERS:
            raise ValueError(f"status must be one of {STATUS_FILTERS}")

        subscriptions = await self.subscription_repo.list_for_user(
            user_id,
            active_on=today if status in ("active", "upcoming", "overdue") else None,
            search=search,
        )
        items = [self._to_response(s, today) for s in subscriptions]

        if status == "ended":
            items = [i for i in items if i.computed_status == ComputedStatus.ENDED]
        elif status == "upcoming":
            items = sorted(
                (i for i in items if i.next_billing_date and i.next_billing_date >= today),
                key=lambda i: i.next_billing_date,
            )
        elif status == "overdue":
            items = sorted(
                (i for i in items if i.is_overdue),
                key=lambda i: i.next_billing_date,
            )

        offset = (page - 1) * page_size
        return SubscriptionListResponse(
            items=items[offset:offset + page_size],
            total=len(items),
            page=page,
            page_size=page_size,
        )

    async def update_subscription(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        data: SubscriptionUpdate,
        today: date,
    ) -> SubscriptionResponse:
        """Edit non-billing fields.

        Raises:
            ConfigurationError: If the new end date precedes the start date
        """
        subscription = await self._get_owned(user_id, subscription_id)
        changes = data.model_dump(exclude_unset=True)

        if "end_date" in changes:
            config = subscription.billing_configuration()
            BillingConfiguration(
                billing_cycle=config.billing_cycle,
                billing_interval=config.billing_interval,
                first_billing_date=config.first_billing_date,
                start_date=config.start_date,
                billing_cycle_day=config.billing_cycle_day,
                end_date=changes["end_date"],
            ).validate()

        if changes.get("use_default_notifications"):
            changes["reminder_intervals"] = None
        elif changes.get("reminder_intervals"):
            changes["use_default_notifications"] = False

        subscription = await self.subscription_repo.update(subscription, **changes)
        return self._to_response(subscription, today)

    async def update_billing_dates(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        data: BillingDatesUpdate,
        today: date,
    ) -> SubscriptionResponse:
        """Move the start date and/or first billing date.

        This is the only path that changes the anchor billing day; it is
        re-derived from the new first billing date.

        Raises:
            ValueError: If neither date is given
            InvariantViolation: If the new first billing date is after the
                earliest paid payment
            ConfigurationError: If the resulting configuration is invalid
        """
        if data.start_date is None and data.first_billing_date is None:
            raise ValueError("start_date or first_billing_date is required")

        subscription = await self._lock_owned(user_id, subscription_id)
        config = subscription.billing_configuration()
        new_start = data.start_date or config.start_date
        new_first = data.first_billing_date or config.first_billing_date

        if new_first != config.first_billing_date:
            earliest = await self.payment_repo.earliest_paid_date(subscription.id)
            if earliest is not None and new_first > earliest:
                raise InvariantViolation(
                    f"The first billing date cannot be after the earliest payment date ({earliest.isoformat()})"
                )

        updated = BillingConfiguration(
            billing_cycle=config.billing_cycle,
            billing_interval=config.billing_interval,
            first_billing_date=config.first_billing_date,
            start_date=new_start,
            billing_cycle_day=config.billing_cycle_day,
            end_date=config.end_date,
        ).with_first_billing_date(new_first)

        subscription = await self.subscription_repo.update(
            subscription,
            start_date=updated.start_date,
            first_billing_date=updated.first_billing_date,
            billing_cycle_day=updated.billing_cycle_day,
        )
        log_info(
            logger,
            "Subscription billing dates updated",
            subscription_id=str(subscription.id),
            first_billing_date=updated.first_billing_date.isoformat(),
            billing_cycle_day=updated.billing_cycle_day,
        )
        return self._to_response(subscription, today)

    async def delete_subscription(self, user_id: uuid.UUID, subscription_id: uuid.UUID) -> None:
        """Delete a subscription without payment history.

        Raises:
            InvariantViolation: If payment records exist
        """
        subscription = await self._get_owned(user_id, subscription_id)
        if await self.payment_repo.exists_for_subscription(subscription.id):
            raise InvariantViolation(
                "This subscription has payment history and cannot be deleted"
            )
        await self.subscription_repo.delete(subscription)

    # ==================== Payments ====================

    async def mark_as_paid(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        today: date,
        data: Optional[MarkAsPaidRequest] = None,
    ) -> PaymentResponse:
        """Record a paid payment for the current occurrence.

        The payment is dated at the current next billing date. The
        subscription row is locked for the read-compute-write sequence and
        the (subscription, payment date) uniqueness constraint rejects any
        duplicate that slips through.

        Only a pending or failed record already sitting on the due date is
        settled in place. A paid or refunded record there means the history
        does not line up with the billing schedule; since the paid count is
        read under the lock, a retry cannot resolve it.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            InvariantViolation: If nothing is due (ended or settled one-time),
                or a paid or refunded record already occupies the due date
            ConcurrencyConflict: If the occurrence was paid concurrently
        """
        data = data or MarkAsPaidRequest()

        with create_span(
            "subscription.mark_as_paid",
            attributes={"subscription.id": str(subscription_id)},
        ):
            subscription = await self._lock_owned(user_id, subscription_id)

            snapshot = SubscriptionSnapshot.from_model(subscription)
            if is_ended(snapshot.config, today):
                raise InvariantViolation("Subscription has ended; no payment is due")

            paid_count = await self.payment_repo.count_paid(subscription.id)
            due = next_billing_date(snapshot, today, paid_payment_count=paid_count)
            if due is None:
                raise InvariantViolation("Subscription has no outstanding billing date")

            amount = data.amount if data.amount is not None else Decimal(subscription.price)
            payment_method_id = data.payment_method_id or subscription.payment_method_id

            existing = await self.payment_repo.get_by_date(subscription.id, due)
            if existing is not None and existing.status not in SETTLEABLE_STATUSES:
                log_warning(
                    logger,
                    "Payment history conflicts with billing schedule",
                    subscription_id=str(subscription.id),
                    payment_date=due.isoformat(),
                    existing_status=existing.status,
                )
                raise InvariantViolation(
                    f"A {existing.status} payment is already recorded on the next billing date "
                    f"({due.isoformat()}); adjust the payment history before marking as paid"
                )

            try:
                if existing is not None:
                    payment = await self.payment_repo.update(
                        existing,
                        amount=amount,
                        payment_method_id=payment_method_id,
                        status=PaymentStatus.PAID.value,
                        notes=data.notes or existing.notes,
                    )
                else:
                    payment = await self.payment_repo.create_payment(
                        subscription_id=subscription.id,
                        amount=amount,
                        currency_code=subscription.currency_code,
                        payment_method_id=payment_method_id,
                        payment_date=due,
                        status=PaymentStatus.PAID.value,
                        notes=data.notes,
                    )
            except IntegrityError as e:
                await self.session.rollback()
                log_warning(
                    logger,
                    "Concurrent payment detected",
                    subscription_id=str(subscription_id),
                    payment_date=due.isoformat(),
                )
                raise ConcurrencyConflict(
                    f"A payment for {due.isoformat()} was already recorded; reload and retry"
                ) from e

        log_info(
            logger,
            "Subscription marked as paid",
            subscription_id=str(subscription.id),
            payment_date=due.isoformat(),
            occurrence_index=paid_count,
        )
        return PaymentResponse.model_validate(payment)

    async def record_payment(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        data: PaymentCreate,
        today: date,
    ) -> PaymentResponse:
        """Record a payment with an explicit date and status.

        A paid record advances the occurrence index by one. It is refused
        when its date is the billing date that index would then point at,
        since that occurrence could never be marked as paid.

        Raises:
            ValueError: If the payment date is in the future
            InvariantViolation: If a paid record would occupy the next
                billing date it produces
            ConcurrencyConflict: If a payment already exists on that date
        """
        if data.payment_date > today:
            raise ValueError("Payment date cannot be in the future")

        subscription = await self._lock_owned(user_id, subscription_id)

        if data.status == PaymentStatus.PAID:
            snapshot = SubscriptionSnapshot.from_model(subscription)
            paid_count = await self.payment_repo.count_paid(subscription.id)
            due_after = next_billing_date(snapshot, today, paid_payment_count=paid_count + 1)
            if due_after == data.payment_date:
                raise InvariantViolation(
                    f"A paid payment dated {data.payment_date.isoformat()} would fall on the "
                    f"billing date it advances to; use mark as paid or pick the settled occurrence date"
                )

        try:
            payment = await self.payment_repo.create_payment(
                subscription_id=subscription.id,
                amount=data.amount,
                currency_code=data.currency_code or subscription.currency_code,
                payment_method_id=data.payment_method_id or subscription.payment_method_id,
                payment_date=data.payment_date,
                status=data.status.value,
                notes=data.notes,
            )
        except IntegrityError as e:
            await self.session.rollback()
            raise ConcurrencyConflict(
                f"A payment dated {data.payment_date.isoformat()} already exists"
            ) from e

        log_info(
            logger,
            "Payment recorded",
            subscription_id=str(subscription.id),
            payment_date=data.payment_date.isoformat(),
            status=data.status.value,
        )
        return PaymentResponse.model_validate(payment)

    async def list_payments(
        self, user_id: uuid.UUID, subscription_id: uuid.UUID
    ) -> list[PaymentResponse]:
        subscription = await self._get_owned(user_id, subscription_id)
        payments = await self.payment_repo.list_for_subscription(subscription.id)
        return [PaymentResponse.model_validate(p) for p in payments]

    async def delete_payment(
        self, user_id: uuid.UUID, subscription_id: uuid.UUID, payment_id: uuid.UUID
    ) -> None:
        """Delete a payment; the next billing date moves back accordingly."""
        subscription = await self._get_owned(user_id, subscription_id)
        payment = await self.payment_repo.get_by_id(subscription.id, payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        await self.payment_repo.delete(payment)

    # ==================== Dashboard & Forecast ====================

    async def _snapshots(self, user_id: uuid.UUID, today: date) -> list[SubscriptionSnapshot]:
        subscriptions = await self.subscription_repo.list_for_user(user_id, active_on=today)
        return [SubscriptionSnapshot.from_model(s) for s in subscriptions]

    @staticmethod
    def _forecast_response(
        snapshots: list[SubscriptionSnapshot], today: date, month: Optional[date] = None
    ) -> MonthlyForecastResponse:
        forecast = monthly_forecast(snapshots, today, month)
        month_start, _ = month_bounds(month or today)
        return MonthlyForecastResponse(
            month=month_start,
            currencies=[
                CurrencyForecastResponse(
                    currency_code=bucket.currency_code,
                    total=bucket.total,
                    count=bucket.count,
                    subscriptions=[
                        ForecastEntryResponse(
                            subscription_id=entry.subscription_id,
                            name=entry.name,
                            occurrences=entry.occurrences,
                            forecast_amount=entry.forecast_amount,
                        )
                        for entry in bucket.subscriptions
                    ],
                )
                for bucket in sorted(forecast.values(), key=lambda b: b.currency_code)
            ],
        )

    async def get_monthly_forecast(
        self, user_id: uuid.UUID, today: date, month: Optional[date] = None
    ) -> MonthlyForecastResponse:
        """Per-currency forecast for ``month`` (defaults to today's month)."""
        with create_span("subscription.monthly_forecast", attributes={"user.id": str(user_id)}):
            snapshots = await self._snapshots(user_id, today)
            return self._forecast_response(snapshots, today, month)

    async def get_dashboard(
        self,
        user_id: uuid.UUID,
        today: date,
        upcoming_days: int = 7,
        upcoming_list_days: int = 30,
        spending_months: int = 6,
    ) -> DashboardResponse:
        """Upcoming, overdue and current-month views, the forecast and paid spending.

        Args:
            user_id: Owner
            today: Reference date
            upcoming_days: Window for the upcoming count
            upcoming_list_days: Window for the upcoming list
            spending_months: Months in the paid spending trend, this month included
        """
        with create_span("subscription.dashboard", attributes={"user.id": str(user_id)}):
            snapshots = await self._snapshots(user_id, today)
            total = await self.subscription_repo.count_for_user(user_id)
            active = await self.subscription_repo.count_for_user(user_id, active_on=today)

            month_start, month_end = month_bounds(today)
            trend_start, trend_end = spending_window(today, spending_months)
            by_currency = await self.payment_repo.paid_totals_by_currency(
                user_id, month_start, month_end
            )
            by_month = await self.payment_repo.paid_totals_by_month(
                user_id, trend_start, trend_end
            )

        return DashboardResponse(
            total_subscriptions=total,
            active_subscriptions=active,
            upcoming_count=len(upcoming_bills(snapshots, today, upcoming_days)),
            upcoming_bills=[
                self._bill_summary(due, s, today)
                for due, s in upcoming_bills(snapshots, today, upcoming_list_days)
            ],
            overdue_bills=[
                self._bill_summary(due, s, today) for due, s in overdue_bills(snapshots, today)
            ],
            current_month_bills=[
                self._bill_summary(due, s, today) for due, s in current_month_bills(snapshots, today)
            ],
            current_month_forecast=self._forecast_response(snapshots, today),
            current_month_spending=[
                SpendingSummary(currency_code=code, total=amount, count=count)
                for code, amount, count in by_currency
            ],
            monthly_spending=[
                MonthlySpending(month=label, currency_code=code, total=amount, count=count)
                for label, code, amount, count in by_month
            ],
        )
