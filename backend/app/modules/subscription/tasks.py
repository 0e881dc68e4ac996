"""Subscription background tasks.

The daily reminder scan finds subscriptions whose next billing date is a
configured number of days away and hands them to the notification
dispatcher. Delivery, retries and failure bookkeeping belong to the
dispatcher; this module only decides who is due.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging import log_error
from app.modules.subscription.engine import (
    SubscriptionSnapshot,
    due_reminder,
    next_billing_date,
)
from app.modules.subscription.exceptions import ConfigurationError
from app.modules.subscription.repository import SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass
class ReminderDue:
    """A reminder the notification dispatcher should deliver."""
    subscription_id: uuid.UUID
    user_id: uuid.UUID
    name: str
    price: Decimal
    currency_code: str
    next_billing_date: date
    days_before: int

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["subscription_id"] = str(self.subscription_id)
        payload["user_id"] = str(self.user_id)
        payload["price"] = str(self.price)
        payload["next_billing_date"] = self.next_billing_date.isoformat()
        return payload


async def collect_due_reminders(
    session: AsyncSession,
    today: date,
    default_intervals: Optional[Sequence[int]] = None,
) -> tuple[list[ReminderDue], list[str]]:
    """Find subscriptions that should be reminded today.

    Args:
        session: Database session
        today: Reference date
        default_intervals: Days-before-due offsets used when a subscription
            has no custom intervals

    Returns:
        (reminders, ids of subscriptions skipped for bad configuration)
    """
    intervals = default_intervals or settings.DEFAULT_REMINDER_INTERVALS
    repo = SubscriptionRepository(session)
    reminders: list[ReminderDue] = []
    skipped: list[str] = []

    for sub in await repo.list_active(today):
        try:
            snapshot = SubscriptionSnapshot.from_model(sub)
            days_before = due_reminder(snapshot, today, intervals)
        except ConfigurationError as e:
            log_error(
                logger,
                "Skipping subscription with invalid billing configuration",
                exception=e,
                subscription_id=str(sub.id),
            )
            skipped.append(str(sub.id))
            continue

        if days_before is None:
            continue

        reminders.append(ReminderDue(
            subscription_id=sub.id,
            user_id=sub.user_id,
            name=sub.name,
            price=snapshot.price,
            currency_code=snapshot.currency_code,
            next_billing_date=next_billing_date(snapshot, today),
            days_before=days_before,
        ))
        logger.info(f"Reminder due for subscription {sub.id} ({days_before} days)")

    return reminders, skipped


async def run_reminder_scan(session: AsyncSession, today: date) -> dict:
    """Run the reminder scan and summarise it.

    Returns:
        Summary with the reminder payloads for the dispatcher
    """
    logger.info("Running subscription reminder scan...")
    reminders, skipped = await collect_due_reminders(session, today)

    summary = {
        "scan_date": today.isoformat(),
        "reminders_due": len(reminders),
        "skipped": skipped,
        "reminders": [r.to_payload() for r in reminders],
        "run_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info(f"Reminder scan completed: {len(reminders)} due, {len(skipped)} skipped")
    return summary


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="subscription.scan_reminders",
)
def scan_reminders_task(self, scan_date: Optional[str] = None):
    """Daily reminder scan.

    Args:
        scan_date: ISO date to scan for; defaults to today
    """
    today = date.fromisoformat(scan_date) if scan_date else date.today()
    return asyncio.run(_scan_reminders(today))


async def _scan_reminders(today: date) -> dict:
    async with async_session_maker() as session:
        return await run_reminder_scan(session, today)
