"""Subscription module.

Tracks recurring bills, computes billing dates and status, records
payments and forecasts monthly spend.
"""

from app.modules.subscription.router import router
from app.modules.subscription.service import SubscriptionService
from app.modules.subscription.calculator import (
    BillingConfiguration,
    BillingCycle,
    calculate_nth_billing_date,
)
from app.modules.subscription.models import (
    ComputedStatus,
    PaymentHistory,
    PaymentStatus,
    Subscription,
)

__all__ = [
    "router",
    "SubscriptionService",
    "BillingConfiguration",
    "BillingCycle",
    "calculate_nth_billing_date",
    "ComputedStatus",
    "PaymentHistory",
    "PaymentStatus",
    "Subscription",
]
