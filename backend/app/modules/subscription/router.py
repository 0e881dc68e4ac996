"""API Router for subscription tracking.

Endpoints for subscriptions, payments and the dashboard. The caller's user
id is passed explicitly; authentication happens upstream.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_session
from app.modules.subscription.exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    InvariantViolation,
    PaymentNotFoundError,
    SubscriptionNotFoundError,
)
from app.modules.subscription.schemas import (
    BillingDatesUpdate,
    DashboardResponse,
    MarkAsPaidRequest,
    MonthlyForecastResponse,
    PaymentCreate,
    PaymentResponse,
    SubscriptionCreate,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from app.modules.subscription.service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def get_today() -> date:
    """Reference date for billing status, in the server's local calendar."""
    return date.today()


def _http_error(e: Exception) -> HTTPException:
    """Map domain errors to HTTP errors."""
    if isinstance(e, (SubscriptionNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ConcurrencyConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    # InvariantViolation, ConfigurationError and plain validation errors
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


_DOMAIN_ERRORS = (
    SubscriptionNotFoundError,
    PaymentNotFoundError,
    ConcurrencyConflict,
    InvariantViolation,
    ConfigurationError,
    ValueError,
)


# ==================== Dashboard ====================

@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    """Upcoming and overdue bills, this month's forecast and paid spending."""
    service = SubscriptionService(session)
    try:
        return await service.get_dashboard(
            user_id,
            today,
            upcoming_days=settings.UPCOMING_WINDOW_DAYS,
            upcoming_list_days=settings.UPCOMING_LIST_DAYS,
            spending_months=settings.SPENDING_TREND_MONTHS,
        )
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.get("/forecast", response_model=MonthlyForecastResponse)
async def get_monthly_forecast(
    user_id: uuid.UUID,
    month: Optional[date] = Query(None, description="Any day of the target month"),
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    """Per-currency cost forecast for a month."""
    service = SubscriptionService(session)
    try:
        return await service.get_monthly_forecast(user_id, today, month)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


# ==================== Subscriptions ====================

@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    user_id: uuid.UUID,
    data: SubscriptionCreate,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    service = SubscriptionService(session)
    try:
        return await service.create_subscription(user_id, data, today)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.get("", response_model=SubscriptionListResponse)
async def list_subscriptions(
    user_id: uuid.UUID,
    status_filter: str = Query("all", alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(15, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    """List subscriptions; status is one of all, active, ended, upcoming, overdue."""
    service = SubscriptionService(session)
    try:
        return await service.list_subscriptions(
            user_id, today, status=status_filter, search=search, page=page, page_size=page_size
        )
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    service = SubscriptionService(session)
    try:
        return await service.get_subscription(user_id, subscription_id, today)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    data: SubscriptionUpdate,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    service = SubscriptionService(session)
    try:
        return await service.update_subscription(user_id, subscription_id, data, today)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.put("/{subscription_id}/billing-dates", response_model=SubscriptionResponse)
async def update_billing_dates(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    data: BillingDatesUpdate,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    """Move the start or first billing date (validated against payments)."""
    service = SubscriptionService(session)
    try:
        return await service.update_billing_dates(user_id, subscription_id, data, today)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    service = SubscriptionService(session)
    try:
        await service.delete_subscription(user_id, subscription_id)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== Payments ====================

@router.post(
    "/{subscription_id}/mark-paid",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def mark_as_paid(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    data: Optional[MarkAsPaidRequest] = None,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    """Pay the current occurrence; 409 if it was paid concurrently."""
    service = SubscriptionService(session)
    try:
        return await service.mark_as_paid(user_id, subscription_id, today, data)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.get("/{subscription_id}/payments", response_model=list[PaymentResponse])
async def list_payments(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    service = SubscriptionService(session)
    try:
        return await service.list_payments(user_id, subscription_id)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.post(
    "/{subscription_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    subscription_id: uuid.UUID,
    user_id: uuid.UUID,
    data: PaymentCreate,
    session: AsyncSession = Depends(get_session),
    today: date = Depends(get_today),
):
    service = SubscriptionService(session)
    try:
        return await service.record_payment(user_id, subscription_id, data, today)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@router.delete(
    "/{subscription_id}/payments/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_payment(
    subscription_id: uuid.UUID,
    payment_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    service = SubscriptionService(session)
    try:
        await service.delete_payment(user_id, subscription_id, payment_id)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
