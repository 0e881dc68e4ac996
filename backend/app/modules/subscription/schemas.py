"""Pydantic schemas for the subscription module."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.modules.subscription.calculator import BillingCycle
from app.modules.subscription.models import ComputedStatus, PaymentStatus


def _check_reminder_intervals(value: Optional[list[int]]) -> Optional[list[int]]:
    if value is None:
        return value
    invalid = [v for v in value if v not in settings.ALLOWED_REMINDER_INTERVALS]
    if invalid:
        raise ValueError(
            f"reminder_intervals must be chosen from {settings.ALLOWED_REMINDER_INTERVALS}, "
            f"got {invalid}"
        )
    return sorted(set(value), reverse=True)


def _check_currency_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if len(value) != 3 or not value.isalpha():
        raise ValueError("currency_code must be a 3-letter ISO code")
    return value.upper()


# ==================== Subscription Schemas ====================

class SubscriptionCreate(BaseModel):
    """Schema for creating a subscription."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, le=Decimal(str(settings.MAX_PRICE)), decimal_places=2)
    currency_code: str = Field(..., description="ISO 4217 currency code")
    payment_method_id: Optional[uuid.UUID] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    billing_interval: int = Field(1, ge=1, le=settings.MAX_BILLING_INTERVAL)
    start_date: date
    first_billing_date: Optional[date] = Field(
        None, description="Defaults to start_date"
    )
    end_date: Optional[date] = None
    website_url: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    notifications_enabled: bool = True
    use_default_notifications: bool = True
    reminder_intervals: Optional[list[int]] = None

    @field_validator("currency_code")
    @classmethod
    def validate_currency_code(cls, v: str) -> str:
        return _check_currency_code(v)

    @field_validator("first_billing_date")
    @classmethod
    def validate_first_billing_date(cls, v: Optional[date], info) -> Optional[date]:
        start = info.data.get("start_date")
        if v and start and v < start:
            raise ValueError("first_billing_date must be on or after start_date")
        return v

    @field_validator("end_date")
    @classmethod
    def validate_end_date(cls, v: Optional[date], info) -> Optional[date]:
        start = info.data.get("start_date")
        if v and start and v < start:
            raise ValueError("end_date must be on or after start_date")
        return v

    @field_validator("reminder_intervals")
    @classmethod
    def validate_reminder_intervals(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        return _check_reminder_intervals(v)


class SubscriptionUpdate(BaseModel):
    """Schema for editing a subscription.

    Billing cycle, interval and dates are not editable here; see
    BillingDatesUpdate.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, le=Decimal(str(settings.MAX_PRICE)), decimal_places=2)
    currency_code: Optional[str] = None
    payment_method_id: Optional[uuid.UUID] = None
    end_date: Optional[date] = None
    website_url: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    notifications_enabled: Optional[bool] = None
    use_default_notifications: Optional[bool] = None
    reminder_intervals: Optional[list[int]] = None

    @field_validator("currency_code")
    @classmethod
    def validate_currency_code(cls, v: Optional[str]) -> Optional[str]:
        return _check_currency_code(v)

    @field_validator("reminder_intervals")
    @classmethod
    def validate_reminder_intervals(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        return _check_reminder_intervals(v)


class BillingDatesUpdate(BaseModel):
    """Schema for moving the start date and/or first billing date."""
    start_date: Optional[date] = None
    first_billing_date: Optional[date] = None


class SubscriptionResponse(BaseModel):
    """Response schema for a subscription with derived billing status."""
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    description: Optional[str]
    price: Decimal
    currency_code: str
    payment_method_id: Optional[uuid.UUID]
    billing_cycle: BillingCycle
    billing_interval: int
    billing_cycle_day: Optional[int]
    start_date: date
    first_billing_date: date
    end_date: Optional[date]
    website_url: Optional[str]
    notes: Optional[str]
    notifications_enabled: bool
    use_default_notifications: bool
    reminder_intervals: Optional[list[int]]
    next_billing_date: Optional[date]
    computed_status: ComputedStatus
    is_overdue: bool
    days_until_due: Optional[int]
    paid_payment_count: int
    created_at: datetime
    updated_at: datetime


class SubscriptionListResponse(BaseModel):
    """Paginated subscription list."""
    items: list[SubscriptionResponse]
    total: int
    page: int
    page_size: int


# ==================== Payment Schemas ====================

class MarkAsPaidRequest(BaseModel):
    """Schema for paying the current occurrence."""
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2, description="Defaults to the subscription price")
    payment_method_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentCreate(BaseModel):
    """Schema for recording a payment manually."""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency_code: Optional[str] = Field(None, description="Defaults to the subscription currency")
    payment_date: date
    status: PaymentStatus = PaymentStatus.PAID
    payment_method_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("currency_code")
    @classmethod
    def validate_currency_code(cls, v: Optional[str]) -> Optional[str]:
        return _check_currency_code(v)


class PaymentResponse(BaseModel):
    """Response schema for a payment record."""
    id: uuid.UUID
    subscription_id: uuid.UUID
    amount: Decimal
    currency_code: str
    payment_method_id: Optional[uuid.UUID]
    payment_date: date
    status: PaymentStatus
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# ==================== Dashboard Schemas ====================

class BillSummary(BaseModel):
    """A subscription with its next billing date, for dashboard lists."""
    subscription_id: Optional[uuid.UUID]
    name: str
    price: Decimal
    currency_code: str
    next_billing_date: date
    days_until_due: int


class ForecastEntryResponse(BaseModel):
    subscription_id: Optional[uuid.UUID]
    name: str
    occurrences: int
    forecast_amount: Decimal


class CurrencyForecastResponse(BaseModel):
    """Monthly forecast for one currency."""
    currency_code: str
    total: Decimal
    count: int
    subscriptions: list[ForecastEntryResponse]


class MonthlyForecastResponse(BaseModel):
    month: date = Field(..., description="First day of the forecast month")
    currencies: list[CurrencyForecastResponse]


class SpendingSummary(BaseModel):
    """Paid spending in one currency."""
    currency_code: str
    total: Decimal
    count: int


class MonthlySpending(BaseModel):
    """Paid spending in one currency for one calendar month."""
    month: str = Field(..., description="YYYY-MM")
    currency_code: str
    total: Decimal
    count: int


class DashboardResponse(BaseModel):
    """Dashboard overview of a user's subscriptions."""
    total_subscriptions: int
    active_subscriptions: int
    upcoming_count: int
    upcoming_bills: list[BillSummary]
    overdue_bills: list[BillSummary]
    current_month_bills: list[BillSummary]
    current_month_forecast: MonthlyForecastResponse
    current_month_spending: list[SpendingSummary]
    monthly_spending: list[MonthlySpending]
