"""Repository for subscription and payment database operations."""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.subscription.models import (
    PaymentHistory,
    PaymentStatus,
    Subscription,
)


class SubscriptionRepository:
    """Repository for subscription operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Subscription:
        """Create a new subscription."""
        subscription = Subscription(**kwargs)
        self.session.add(subscription)
        await self.session.commit()
        await self.session.refresh(subscription)
        return subscription

    async def get_by_id(self, subscription_id: uuid.UUID) -> Optional[Subscription]:
        """Get subscription by ID."""
        result = await self.session.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_for_user(
        self, user_id: uuid.UUID, subscription_id: uuid.UUID
    ) -> Optional[Subscription]:
        """Get a subscription owned by the given user."""
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def lock_for_update(self, subscription_id: uuid.UUID) -> Optional[Subscription]:
        """Load a subscription with a row lock held until the transaction ends.

        Serialises concurrent payment recording for the same subscription.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        active_on: Optional[date] = None,
        search: Optional[str] = None,
    ) -> list[Subscription]:
        """List a user's subscriptions ordered by name.

        Args:
            user_id: Owner
            active_on: When given, exclude subscriptions ended before this date
            search: Optional case-insensitive name filter
        """
        query = select(Subscription).where(Subscription.user_id == user_id)
        if active_on is not None:
            query = query.where(
                or_(Subscription.end_date.is_(None), Subscription.end_date >= active_on)
            )
        if search:
            query = query.where(Subscription.name.ilike(f"%{search}%"))
        result = await self.session.execute(query.order_by(Subscription.name))
        return list(result.scalars().all())

    async def count_for_user(
        self, user_id: uuid.UUID, active_on: Optional[date] = None
    ) -> int:
        """Count a user's subscriptions, optionally only those not ended before ``active_on``."""
        query = select(func.count(Subscription.id)).where(Subscription.user_id == user_id)
        if active_on is not None:
            query = query.where(
                or_(Subscription.end_date.is_(None), Subscription.end_date >= active_on)
            )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_active(self, active_on: date) -> list[Subscription]:
        """All subscriptions not ended before ``active_on`` with notifications on."""
        result = await self.session.execute(
            select(Subscription).where(
                or_(Subscription.end_date.is_(None), Subscription.end_date >= active_on),
                Subscription.notifications_enabled == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def update(self, subscription: Subscription, **kwargs) -> Subscription:
        """Apply field changes and commit."""
        for key, value in kwargs.items():
            if hasattr(subscription, key):
                setattr(subscription, key, value)
        await self.session.commit()
        await self.session.refresh(subscription)
        return subscription

    async def delete(self, subscription: Subscription) -> None:
        await self.session.delete(subscription)
        await self.session.commit()


class PaymentRepository:
    """Repository for payment history operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_payment(self, **kwargs) -> PaymentHistory:
        """Insert a payment record.

        Raises:
            sqlalchemy.exc.IntegrityError: If a payment already exists for
                the same subscription and payment date
        """
        payment = PaymentHistory(**kwargs)
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)
        return payment

    async def get_by_id(
        self, subscription_id: uuid.UUID, payment_id: uuid.UUID
    ) -> Optional[PaymentHistory]:
        result = await self.session.execute(
            select(PaymentHistory).where(
                PaymentHistory.id == payment_id,
                PaymentHistory.subscription_id == subscription_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_date(
        self, subscription_id: uuid.UUID, payment_date: date
    ) -> Optional[PaymentHistory]:
        result = await self.session.execute(
            select(PaymentHistory).where(
                PaymentHistory.subscription_id == subscription_id,
                PaymentHistory.payment_date == payment_date,
            )
        )
        return result.scalar_one_or_none()

    async def update(self, payment: PaymentHistory, **kwargs) -> PaymentHistory:
        for key, value in kwargs.items():
            if hasattr(payment, key):
                setattr(payment, key, value)
        await self.session.commit()
        await self.session.refresh(payment)
        return payment

    async def list_for_subscription(self, subscription_id: uuid.UUID) -> list[PaymentHistory]:
        """Payments for a subscription, most recent first."""
        result = await self.session.execute(
            select(PaymentHistory)
            .where(PaymentHistory.subscription_id == subscription_id)
            .order_by(PaymentHistory.payment_date.desc())
        )
        return list(result.scalars().all())

    async def count_paid(self, subscription_id: uuid.UUID) -> int:
        """Number of paid payments (the next occurrence index)."""
        result = await self.session.execute(
            select(func.count(PaymentHistory.id)).where(
                PaymentHistory.subscription_id == subscription_id,
                PaymentHistory.status == PaymentStatus.PAID.value,
            )
        )
        return result.scalar_one()

    async def earliest_paid_date(self, subscription_id: uuid.UUID) -> Optional[date]:
        result = await self.session.execute(
            select(func.min(PaymentHistory.payment_date)).where(
                PaymentHistory.subscription_id == subscription_id,
                PaymentHistory.status == PaymentStatus.PAID.value,
            )
        )
        return result.scalar_one_or_none()

    async def exists_for_subscription(self, subscription_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count(PaymentHistory.id)).where(
                PaymentHistory.subscription_id == subscription_id
            )
        )
        return result.scalar_one() > 0

    def _paid_for_user(self, user_id: uuid.UUID, start: date, end: date):
        return (
            PaymentHistory.subscription_id == Subscription.id,
            Subscription.user_id == user_id,
            PaymentHistory.status == PaymentStatus.PAID.value,
            PaymentHistory.payment_date >= start,
            PaymentHistory.payment_date <= end,
        )

    async def paid_totals_by_currency(
        self, user_id: uuid.UUID, start: date, end: date
    ) -> list[tuple[str, Decimal, int]]:
        """Sum and count of a user's paid payments in [start, end], per currency.

        Returns:
            (currency_code, total, count) rows ordered by currency code
        """
        result = await self.session.execute(
            select(
                PaymentHistory.currency_code,
                func.sum(PaymentHistory.amount),
                func.count(PaymentHistory.id),
            )
            .where(*self._paid_for_user(user_id, start, end))
            .group_by(PaymentHistory.currency_code)
            .order_by(PaymentHistory.currency_code)
        )
        return [(code, Decimal(total), count) for code, total, count in result.all()]

    async def paid_totals_by_month(
        self, user_id: uuid.UUID, start: date, end: date
    ) -> list[tuple[str, str, Decimal, int]]:
        """Sum and count of a user's paid payments in [start, end], per month and currency.

        Returns:
            (YYYY-MM, currency_code, total, count) rows ordered by month, then currency
        """
        month = func.to_char(PaymentHistory.payment_date, "YYYY-MM")
        result = await self.session.execute(
            select(
                month,
                PaymentHistory.currency_code,
                func.sum(PaymentHistory.amount),
                func.count(PaymentHistory.id),
            )
            .where(*self._paid_for_user(user_id, start, end))
            .group_by(month, PaymentHistory.currency_code)
            .order_by(month, PaymentHistory.currency_code)
        )
        return [
            (label, code, Decimal(total), count)
            for label, code, total, count in result.all()
        ]

    async def delete(self, payment: PaymentHistory) -> None:
        await self.session.delete(payment)
        await self.session.commit()
