#!/usr/bin/env python3
"""
Process due compliance reminders and escalations once, outside Celery beat.

Usage:
    # Dispatch everything due now
    python scripts/process_compliance_reminders.py

    # Only count what would be dispatched
    python scripts/process_compliance_reminders.py --dry-run
"""
import argparse
import logging
import sys

from autocompliance.compliance.config import settings as compliance_settings
from autocompliance.compliance.service import ChecklistService, ComplianceReminderService
from autocompliance.db.session import SessionLocal
from autocompliance.utils.timezone import utcnow


def print_table(rows):
    width = max(len(name) for name, _ in rows)
    print(f"{'Metric'.ljust(width)}  Value")
    print(f"{'-' * width}  -----")
    for name, value in rows:
        print(f"{name.ljust(width)}  {value}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Process due compliance reminders and escalations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count due reminders without triggering deliveries",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=compliance_settings.SCHEDULER_BATCH_SIZE,
        help=f"Batch size per database scan (default: {compliance_settings.SCHEDULER_BATCH_SIZE})",
    )
    parser.add_argument(
        "--skip-roll-forward",
        action="store_true",
        help="Do not advance next due dates of checklists that came due",
    )
    args = parser.parse_args()

    if args.limit < 1:
        parser.error("--limit must be at least 1")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    now = utcnow()
    print("=" * 60)
    print("COMPLIANCE REMINDER PROCESSING" + (" (DRY RUN)" if args.dry_run else ""))
    print(f"Started at: {now.isoformat()}")
    print("=" * 60)

    db = SessionLocal()
    try:
        service = ComplianceReminderService(db)
        result = service.process_due_reminders(now, dry_run=args.dry_run, limit=args.limit)
        escalated = 0
        rolled = 0
        if not args.dry_run:
            escalated = service.escalate_overdue(now, limit=args.limit)
            if not args.skip_roll_forward:
                rolled = ChecklistService(db).roll_forward(now)
    finally:
        db.close()

    if args.dry_run:
        print(f"{result.processed} reminder(s) due for processing.")
        return 0

    print_table([
        ("Processed", result.processed),
        ("Events created", result.events_created),
        ("Sent", result.sent),
        ("Failed", result.failed),
        ("Escalated", result.escalated + escalated),
        ("Skipped", result.skipped),
        ("Checklists rolled forward", rolled),
    ])
    return 0


if __name__ == "__main__":
    sys.exit(main())
