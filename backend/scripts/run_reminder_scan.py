"""Run the subscription reminder scan manually.

Usage:
    cd backend
    python -m scripts.run_reminder_scan [YYYY-MM-DD]
"""

import asyncio
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from app.core.database import async_session_maker
from app.modules.subscription.tasks import run_reminder_scan


async def main(scan_date: date):
    """Run the reminder scan."""
    print("\n" + "=" * 60)
    print("Running Subscription Reminder Scan")
    print("=" * 60)

    async with async_session_maker() as session:
        summary = await run_reminder_scan(session, scan_date)

        print(f"\nResults:")
        print(f"  Scan date: {summary['scan_date']}")
        print(f"  Reminders due: {summary['reminders_due']}")
        for reminder in summary["reminders"]:
            print(
                f"    - {reminder['name']}: {reminder['price']} {reminder['currency_code']} "
                f"due {reminder['next_billing_date']} ({reminder['days_before']} days)"
            )
        if summary["skipped"]:
            print(f"  Skipped (invalid configuration): {', '.join(summary['skipped'])}")
        print(f"  Run at: {summary['run_at']}")


if __name__ == "__main__":
    target = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else date.today()
    asyncio.run(main(target))
