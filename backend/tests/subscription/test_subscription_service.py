"""Tests for SubscriptionService payment recording and billing date edits.

Repositories are replaced with async mocks; no database is used.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from app.modules.subscription.exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    InvariantViolation,
    PaymentNotFoundError,
    SubscriptionNotFoundError,
)
from app.modules.subscription.models import PaymentHistory, PaymentStatus, Subscription
from app.modules.subscription.schemas import (
    BillingDatesUpdate,
    MarkAsPaidRequest,
    PaymentCreate,
    SubscriptionCreate,
    SubscriptionUpdate,
)
from app.modules.subscription.service import SubscriptionService


USER_ID = uuid.uuid4()


def make_subscription(
    first: date = date(2024, 1, 31),
    cycle: str = "monthly",
    end: Optional[date] = None,
    user_id: uuid.UUID = USER_ID,
) -> Subscription:
    now = datetime.now(timezone.utc)
    return Subscription(
        id=uuid.uuid4(),
        user_id=user_id,
        name="Netflix",
        price=Decimal("15.99"),
        currency_code="USD",
        billing_cycle=cycle,
        billing_interval=1,
        billing_cycle_day=first.day if cycle in ("monthly", "quarterly", "yearly") else None,
        start_date=first,
        first_billing_date=first,
        end_date=end,
        notifications_enabled=True,
        use_default_notifications=True,
        reminder_intervals=None,
        created_at=now,
        updated_at=now,
    )


def make_payment(subscription: Subscription, payment_date: date, status: str = "paid") -> PaymentHistory:
    return PaymentHistory(
        id=uuid.uuid4(),
        subscription_id=subscription.id,
        amount=subscription.price,
        currency_code=subscription.currency_code,
        payment_method_id=None,
        payment_date=payment_date,
        status=status,
        notes=None,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def service() -> SubscriptionService:
    session = MagicMock()
    session.rollback = AsyncMock()
    svc = SubscriptionService(session)
    svc.subscription_repo = MagicMock()
    svc.payment_repo = MagicMock()
    return svc


class TestMarkAsPaid:
    """mark_as_paid records the current occurrence exactly once."""

    @pytest.mark.asyncio
    async def test_creates_payment_on_next_billing_date(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=1)
        service.payment_repo.get_by_date = AsyncMock(return_value=None)
        service.payment_repo.create_payment = AsyncMock(
            side_effect=lambda **kw: make_payment(subscription, kw["payment_date"])
        )

        result = await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 20))

        kwargs = service.payment_repo.create_payment.await_args.kwargs
        assert kwargs["payment_date"] == date(2024, 2, 29)
        assert kwargs["amount"] == Decimal("15.99")
        assert kwargs["status"] == PaymentStatus.PAID.value
        assert result.payment_date == date(2024, 2, 29)

    @pytest.mark.asyncio
    async def test_custom_amount(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.get_by_date = AsyncMock(return_value=None)
        service.payment_repo.create_payment = AsyncMock(
            side_effect=lambda **kw: make_payment(subscription, kw["payment_date"])
        )

        await service.mark_as_paid(
            USER_ID, subscription.id, date(2024, 2, 1), MarkAsPaidRequest(amount=Decimal("12.50"))
        )

        assert service.payment_repo.create_payment.await_args.kwargs["amount"] == Decimal("12.50")

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_conflict(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.get_by_date = AsyncMock(return_value=None)
        service.payment_repo.create_payment = AsyncMock(
            side_effect=IntegrityError("INSERT INTO payment_histories", {}, Exception("duplicate key"))
        )

        with pytest.raises(ConcurrencyConflict):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

        service.session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_late_paid_record_on_due_date_is_not_retryable(self, service) -> None:
        """A paid record dated on occurrence 1 while only one payment is counted
        leaves occurrence 1 occupied; every attempt fails the same way."""
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=1)
        service.payment_repo.get_by_date = AsyncMock(
            return_value=make_payment(subscription, date(2024, 2, 29))
        )
        service.payment_repo.create_payment = AsyncMock()
        service.payment_repo.update = AsyncMock()

        for _ in range(3):
            with pytest.raises(InvariantViolation, match="2024-02-29"):
                await service.mark_as_paid(USER_ID, subscription.id, date(2024, 3, 10))

        service.payment_repo.get_by_date.assert_awaited_with(subscription.id, date(2024, 2, 29))
        service.payment_repo.create_payment.assert_not_awaited()
        service.payment_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refunded_record_is_not_overwritten(self, service) -> None:
        subscription = make_subscription()
        refunded = make_payment(subscription, date(2024, 1, 31), status=PaymentStatus.REFUNDED.value)
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.get_by_date = AsyncMock(return_value=refunded)
        service.payment_repo.create_payment = AsyncMock()
        service.payment_repo.update = AsyncMock()

        with pytest.raises(InvariantViolation):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

        assert refunded.status == PaymentStatus.REFUNDED.value
        service.payment_repo.update.assert_not_awaited()
        service.payment_repo.create_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_record_is_settled_in_place(self, service) -> None:
        subscription = make_subscription()
        failed = make_payment(subscription, date(2024, 1, 31), status=PaymentStatus.FAILED.value)
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.get_by_date = AsyncMock(return_value=failed)
        service.payment_repo.create_payment = AsyncMock()
        service.payment_repo.update = AsyncMock(return_value=failed)

        await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

        assert service.payment_repo.update.await_args.kwargs["status"] == PaymentStatus.PAID.value
        service.payment_repo.create_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_record_is_settled_in_place(self, service) -> None:
        subscription = make_subscription()
        pending = make_payment(subscription, date(2024, 1, 31), status=PaymentStatus.PENDING.value)
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.get_by_date = AsyncMock(return_value=pending)
        service.payment_repo.create_payment = AsyncMock()

        async def apply(payment, **kwargs):
            for key, value in kwargs.items():
                setattr(payment, key, value)
            return payment

        service.payment_repo.update = AsyncMock(side_effect=apply)

        result = await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

        assert result.status == PaymentStatus.PAID
        assert result.id == pending.id
        service.payment_repo.create_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ended_subscription_rejected(self, service) -> None:
        subscription = make_subscription(first=date(2024, 1, 10), end=date(2024, 2, 1))
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)

        with pytest.raises(InvariantViolation):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 3, 1))

    @pytest.mark.asyncio
    async def test_paid_one_time_rejected(self, service) -> None:
        subscription = make_subscription(cycle="one-time")
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=1)

        with pytest.raises(InvariantViolation):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

    @pytest.mark.asyncio
    async def test_other_users_subscription_not_found(self, service) -> None:
        subscription = make_subscription(user_id=uuid.uuid4())
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)

        with pytest.raises(SubscriptionNotFoundError):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))

    @pytest.mark.asyncio
    async def test_malformed_configuration_propagates(self, service) -> None:
        subscription = make_subscription()
        subscription.billing_cycle_day = None
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)

        with pytest.raises(ConfigurationError):
            await service.mark_as_paid(USER_ID, subscription.id, date(2024, 2, 1))


class TestBillingDateEdits:
    """update_billing_dates keeps history consistent."""

    @pytest.mark.asyncio
    async def test_first_date_after_earliest_payment_rejected(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.earliest_paid_date = AsyncMock(return_value=date(2024, 1, 31))
        service.subscription_repo.update = AsyncMock()

        with pytest.raises(InvariantViolation):
            await service.update_billing_dates(
                USER_ID,
                subscription.id,
                BillingDatesUpdate(first_billing_date=date(2024, 2, 15)),
                date(2024, 3, 1),
            )

        service.subscription_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_anchor_rederived_from_new_first_date(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.earliest_paid_date = AsyncMock(return_value=None)

        async def apply(sub, **kwargs):
            for key, value in kwargs.items():
                setattr(sub, key, value)
            return sub

        service.subscription_repo.update = AsyncMock(side_effect=apply)

        result = await service.update_billing_dates(
            USER_ID,
            subscription.id,
            BillingDatesUpdate(start_date=date(2024, 1, 1), first_billing_date=date(2024, 1, 15)),
            date(2024, 1, 10),
        )

        assert result.billing_cycle_day == 15
        assert result.first_billing_date == date(2024, 1, 15)
        assert result.next_billing_date == date(2024, 1, 15)

    @pytest.mark.asyncio
    async def test_edit_holds_row_lock(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.subscription_repo.get_for_user = AsyncMock()
        service.payment_repo.earliest_paid_date = AsyncMock(return_value=None)
        service.subscription_repo.update = AsyncMock(return_value=subscription)

        await service.update_billing_dates(
            USER_ID,
            subscription.id,
            BillingDatesUpdate(first_billing_date=date(2024, 2, 15)),
            date(2024, 1, 10),
        )

        service.subscription_repo.lock_for_update.assert_awaited_once_with(subscription.id)
        service.subscription_repo.get_for_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_a_date(self, service) -> None:
        with pytest.raises(ValueError):
            await service.update_billing_dates(
                USER_ID, uuid.uuid4(), BillingDatesUpdate(), date(2024, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_end_date_before_start_rejected(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.get_for_user = AsyncMock(return_value=subscription)
        service.subscription_repo.update = AsyncMock()

        with pytest.raises(ConfigurationError):
            await service.update_subscription(
                USER_ID,
                subscription.id,
                SubscriptionUpdate(end_date=date(2023, 12, 31)),
                date(2024, 1, 1),
            )

        service.subscription_repo.update.assert_not_awaited()


class TestSubscriptionLifecycle:
    """Create, delete and manual payment rules."""

    @pytest.mark.asyncio
    async def test_create_captures_anchor_day(self, service) -> None:
        created = {}

        async def create(**kwargs):
            now = datetime.now(timezone.utc)
            sub = Subscription(id=uuid.uuid4(), created_at=now, updated_at=now, **kwargs)
            created.update(kwargs)
            return sub

        service.subscription_repo.create = AsyncMock(side_effect=create)
        data = SubscriptionCreate(
            name="Spotify",
            price=Decimal("9.99"),
            currency_code="usd",
            billing_cycle="monthly",
            start_date=date(2024, 1, 31),
        )

        result = await service.create_subscription(USER_ID, data, date(2024, 1, 1))

        assert created["billing_cycle_day"] == 31
        assert created["first_billing_date"] == date(2024, 1, 31)
        assert created["currency_code"] == "USD"
        assert result.next_billing_date == date(2024, 1, 31)
        assert result.days_until_due == 30

    @pytest.mark.asyncio
    async def test_delete_blocked_by_payment_history(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.get_for_user = AsyncMock(return_value=subscription)
        service.payment_repo.exists_for_subscription = AsyncMock(return_value=True)
        service.subscription_repo.delete = AsyncMock()

        with pytest.raises(InvariantViolation):
            await service.delete_subscription(USER_ID, subscription.id)

        service.subscription_repo.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_without_history(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.get_for_user = AsyncMock(return_value=subscription)
        service.payment_repo.exists_for_subscription = AsyncMock(return_value=False)
        service.subscription_repo.delete = AsyncMock()

        await service.delete_subscription(USER_ID, subscription.id)

        service.subscription_repo.delete.assert_awaited_once_with(subscription)

    @pytest.mark.asyncio
    async def test_future_manual_payment_rejected(self, service) -> None:
        data = PaymentCreate(amount=Decimal("10.00"), payment_date=date(2024, 2, 2))

        with pytest.raises(ValueError):
            await service.record_payment(USER_ID, uuid.uuid4(), data, date(2024, 2, 1))

    @pytest.mark.asyncio
    async def test_missing_payment_not_found(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.get_for_user = AsyncMock(return_value=subscription)
        service.payment_repo.get_by_id = AsyncMock(return_value=None)

        with pytest.raises(PaymentNotFoundError):
            await service.delete_payment(USER_ID, subscription.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_unknown_status_filter_rejected(self, service) -> None:
        with pytest.raises(ValueError):
            await service.list_subscriptions(USER_ID, date(2024, 1, 1), status="paused")


class TestRecordPayment:
    """Manual payments must not occupy the occurrence they advance to."""

    @pytest.mark.asyncio
    async def test_paid_on_next_occurrence_rejected(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.create_payment = AsyncMock()
        data = PaymentCreate(amount=Decimal("15.99"), payment_date=date(2024, 2, 29))

        with pytest.raises(InvariantViolation):
            await service.record_payment(USER_ID, subscription.id, data, date(2024, 3, 10))

        service.payment_repo.create_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paid_on_settled_occurrence_recorded(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.create_payment = AsyncMock(
            return_value=make_payment(subscription, date(2024, 1, 31))
        )
        data = PaymentCreate(amount=Decimal("15.99"), payment_date=date(2024, 1, 31))

        result = await service.record_payment(USER_ID, subscription.id, data, date(2024, 3, 10))

        assert result.payment_date == date(2024, 1, 31)
        kwargs = service.payment_repo.create_payment.await_args.kwargs
        assert kwargs["status"] == PaymentStatus.PAID.value
        assert kwargs["currency_code"] == "USD"

    @pytest.mark.asyncio
    async def test_failed_record_skips_occurrence_check(self, service) -> None:
        subscription = make_subscription()
        service.subscription_repo.lock_for_update = AsyncMock(return_value=subscription)
        service.payment_repo.count_paid = AsyncMock(return_value=0)
        service.payment_repo.create_payment = AsyncMock(
            return_value=make_payment(subscription, date(2024, 2, 29), status="failed")
        )
        data = PaymentCreate(
            amount=Decimal("15.99"), payment_date=date(2024, 2, 29), status=PaymentStatus.FAILED
        )

        await service.record_payment(USER_ID, subscription.id, data, date(2024, 3, 10))

        service.payment_repo.count_paid.assert_not_awaited()
        service.payment_repo.create_payment.assert_awaited_once()


class TestDashboard:
    """Dashboard counts, forecast and paid spending."""

    @pytest.fixture
    def dashboard_service(self, service) -> SubscriptionService:
        subscriptions = [
            make_subscription(first=date(2024, 3, 20)),
            make_subscription(first=date(2024, 1, 5), cycle="yearly"),
        ]
        service.subscription_repo.list_for_user = AsyncMock(return_value=subscriptions)
        service.subscription_repo.count_for_user = AsyncMock(side_effect=[3, 2])
        service.payment_repo.paid_totals_by_currency = AsyncMock(
            return_value=[("EUR", Decimal("4.50"), 1), ("USD", Decimal("31.98"), 2)]
        )
        service.payment_repo.paid_totals_by_month = AsyncMock(
            return_value=[
                ("2024-02", "USD", Decimal("15.99"), 1),
                ("2024-03", "EUR", Decimal("4.50"), 1),
                ("2024-03", "USD", Decimal("31.98"), 2),
            ]
        )
        return service

    @pytest.mark.asyncio
    async def test_subscriptions_loaded_once(self, dashboard_service) -> None:
        result = await dashboard_service.get_dashboard(USER_ID, date(2024, 3, 15))

        dashboard_service.subscription_repo.list_for_user.assert_awaited_once_with(
            USER_ID, active_on=date(2024, 3, 15)
        )
        forecast = result.current_month_forecast
        assert forecast.month == date(2024, 3, 1)
        assert [c.currency_code for c in forecast.currencies] == ["USD"]
        assert forecast.currencies[0].total == Decimal("15.99")

    @pytest.mark.asyncio
    async def test_counts_total_and_active(self, dashboard_service) -> None:
        result = await dashboard_service.get_dashboard(USER_ID, date(2024, 3, 15))

        assert result.total_subscriptions == 3
        assert result.active_subscriptions == 2
        calls = dashboard_service.subscription_repo.count_for_user.await_args_list
        assert calls[0].args == (USER_ID,)
        assert calls[1].kwargs == {"active_on": date(2024, 3, 15)}

    @pytest.mark.asyncio
    async def test_paid_spending_windows(self, dashboard_service) -> None:
        result = await dashboard_service.get_dashboard(USER_ID, date(2024, 3, 15))

        dashboard_service.payment_repo.paid_totals_by_currency.assert_awaited_once_with(
            USER_ID, date(2024, 3, 1), date(2024, 3, 31)
        )
        dashboard_service.payment_repo.paid_totals_by_month.assert_awaited_once_with(
            USER_ID, date(2023, 10, 1), date(2024, 3, 31)
        )
        assert [(s.currency_code, s.total, s.count) for s in result.current_month_spending] == [
            ("EUR", Decimal("4.50"), 1),
            ("USD", Decimal("31.98"), 2),
        ]
        assert [m.month for m in result.monthly_spending] == ["2024-02", "2024-03", "2024-03"]

    @pytest.mark.asyncio
    async def test_trend_length_configurable(self, dashboard_service) -> None:
        await dashboard_service.get_dashboard(USER_ID, date(2024, 1, 10), spending_months=3)

        dashboard_service.payment_repo.paid_totals_by_month.assert_awaited_once_with(
            USER_ID, date(2023, 11, 1), date(2024, 1, 31)
        )
