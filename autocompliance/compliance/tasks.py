"""
Periodic compliance tasks run by Celery beat
"""
from celery import shared_task
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from autocompliance.db.session import SessionLocal
from autocompliance.utils.timezone import utcnow
from .config import settings
from .service import ChecklistService, ComplianceReminderService

logger = get_task_logger(__name__)


@shared_task(name="compliance.process_due_reminders")
def process_due_reminders_task(dry_run: bool = False) -> dict:
    """Dispatch every due reminder. Returns the pass summary."""
    db: Session = SessionLocal()
    try:
        now = utcnow()
        result = ComplianceReminderService(db).process_due_reminders(
            now, dry_run=dry_run, limit=settings.SCHEDULER_BATCH_SIZE
        )
        logger.info("Reminder pass at %s: %s", now.isoformat(), result.model_dump())
        return result.model_dump()
    finally:
        db.close()


@shared_task(name="compliance.escalate_overdue")
def escalate_overdue_task() -> int:
    """Escalate reminders left unresolved past their deadline. Returns number escalated."""
    db: Session = SessionLocal()
    try:
        escalated = ComplianceReminderService(db).escalate_overdue(utcnow(), limit=settings.SCHEDULER_BATCH_SIZE)
        if escalated:
            logger.info("Escalated %d overdue reminders", escalated)
        return escalated
    finally:
        db.close()


@shared_task(name="compliance.roll_forward_checklists")
def roll_forward_checklists_task() -> int:
    db: Session = SessionLocal()
    try:
        rolled = ChecklistService(db).roll_forward(utcnow())
        logger.info("Rolled forward %d checklists", rolled)
        return rolled
    finally:
        db.close()
