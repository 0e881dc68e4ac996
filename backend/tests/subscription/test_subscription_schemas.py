"""Tests for subscription request schema validation."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.modules.subscription.calculator import BillingCycle
from app.modules.subscription.schemas import (
    MarkAsPaidRequest,
    PaymentCreate,
    SubscriptionCreate,
    SubscriptionUpdate,
)


def create_payload(**overrides) -> dict:
    payload = {
        "name": "Netflix",
        "price": "15.99",
        "currency_code": "USD",
        "billing_cycle": "monthly",
        "start_date": date(2024, 1, 31),
    }
    payload.update(overrides)
    return payload


class TestSubscriptionCreate:

    def test_defaults(self) -> None:
        data = SubscriptionCreate(**create_payload())

        assert data.billing_cycle == BillingCycle.MONTHLY
        assert data.billing_interval == 1
        assert data.first_billing_date is None
        assert data.price == Decimal("15.99")

    def test_one_time_cycle_value(self) -> None:
        data = SubscriptionCreate(**create_payload(billing_cycle="one-time"))

        assert data.billing_cycle == BillingCycle.ONE_TIME

    def test_currency_code_uppercased(self) -> None:
        assert SubscriptionCreate(**create_payload(currency_code="eur")).currency_code == "EUR"

    @pytest.mark.parametrize("code", ["US", "USDT", "U5D"])
    def test_invalid_currency_code(self, code: str) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(currency_code=code))

    def test_unknown_cycle(self) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(billing_cycle="fortnightly"))

    @pytest.mark.parametrize("interval", [0, 13])
    def test_interval_bounds(self, interval: int) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(billing_interval=interval))

    def test_price_upper_bound(self) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(price="1000000.00"))

    def test_first_billing_date_before_start(self) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(first_billing_date=date(2024, 1, 30)))

    def test_end_date_before_start(self) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(end_date=date(2024, 1, 1)))

    def test_reminder_intervals_sorted_and_deduplicated(self) -> None:
        data = SubscriptionCreate(**create_payload(reminder_intervals=[1, 7, 30, 7]))

        assert data.reminder_intervals == [30, 7, 1]

    def test_reminder_interval_not_allowed(self) -> None:
        with pytest.raises(ValidationError):
            SubscriptionCreate(**create_payload(reminder_intervals=[5]))


class TestPaymentSchemas:

    def test_mark_as_paid_defaults(self) -> None:
        data = MarkAsPaidRequest()

        assert data.amount is None
        assert data.notes is None

    def test_mark_as_paid_rejects_non_positive_amount(self) -> None:
        with pytest.raises(ValidationError):
            MarkAsPaidRequest(amount=Decimal("0"))

    def test_payment_create_status_values(self) -> None:
        data = PaymentCreate(amount="10.00", payment_date=date(2024, 1, 1), status="failed")

        assert data.status.value == "failed"

    def test_update_accepts_partial_payload(self) -> None:
        data = SubscriptionUpdate(name="Renamed")

        assert data.model_dump(exclude_unset=True) == {"name": "Renamed"}
