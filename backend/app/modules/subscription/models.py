"""Subscription models for recurring bill tracking.

A subscription stores only its billing configuration; the next billing date
is derived from the configuration and the number of paid payment records.
"""

import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.modules.subscription.calculator import BillingConfiguration, BillingCycle


class PaymentStatus(str, Enum):
    """Payment record status values."""
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"
    REFUNDED = "refunded"


class ComputedStatus(str, Enum):
    """Subscription status derived from the end date."""
    ACTIVE = "active"
    ENDED = "ended"


class Subscription(Base):
    """A recurring (or one-time) bill tracked by a user."""

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # Details
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )

    # Billing configuration
    billing_cycle: Mapped[str] = mapped_column(
        String(20), default=BillingCycle.MONTHLY.value, nullable=False
    )
    billing_interval: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    billing_cycle_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    first_billing_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    # Reminder preferences (None means use the user defaults)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    use_default_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    reminder_intervals: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    payments: Mapped[list["PaymentHistory"]] = relationship(
        back_populates="subscription",
        order_by="PaymentHistory.payment_date",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, name={self.name}, cycle={self.billing_cycle})>"

    def billing_configuration(self) -> BillingConfiguration:
        """Billing configuration value object for the date calculator.

        Raises:
            ConfigurationError: If the stored configuration is malformed
        """
        return BillingConfiguration(
            billing_cycle=BillingCycle.parse(self.billing_cycle),
            billing_interval=self.billing_interval,
            first_billing_date=self.first_billing_date,
            start_date=self.start_date,
            billing_cycle_day=self.billing_cycle_day,
            end_date=self.end_date,
        ).validate()


class PaymentHistory(Base):
    """A payment recorded against a subscription.

    At most one record may exist per subscription and payment date, which
    keeps concurrent "mark as paid" calls from double-counting an occurrence.
    """

    __tablename__ = "payment_histories"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "payment_date",
            name="uq_payment_histories_subscription_date",
        ),
        Index("ix_payment_histories_date_status", "payment_date", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PAID.value, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    subscription: Mapped[Subscription] = relationship(back_populates="payments")

    def __repr__(self) -> str:
        return (
            f"<PaymentHistory(id={self.id}, subscription={self.subscription_id}, "
            f"date={self.payment_date}, status={self.status})>"
        )
