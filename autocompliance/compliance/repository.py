from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import ComplianceChecklist, ComplianceReminder, ComplianceReminderEvent
from .reminder_states import DISPATCHABLE_STATUSES, ESCALATABLE_STATUSES, ReminderStatus


# --- Checklists ---

def get_checklist(db: Session, checklist_id: int) -> Optional[ComplianceChecklist]:
    return db.get(ComplianceChecklist, checklist_id)


def get_checklist_by_code(db: Session, code: str) -> Optional[ComplianceChecklist]:
    return db.execute(select(ComplianceChecklist).where(ComplianceChecklist.code == code)).scalars().first()


def list_checklists(
    db: Session,
    branch_id: Optional[int] = None,
    status: Optional[str] = None,
    frequency_type: Optional[str] = None,
    assigned_user_id: Optional[int] = None,
    due_from: Optional[datetime] = None,
    due_to: Optional[datetime] = None,
    limit: int = 100,
) -> List[ComplianceChecklist]:
    stmt = select(ComplianceChecklist).order_by(ComplianceChecklist.created_at.desc()).limit(limit)
    if branch_id is not None:
        stmt = stmt.where(ComplianceChecklist.branch_id == branch_id)
    if status:
        stmt = stmt.where(ComplianceChecklist.status == status)
    if frequency_type:
        stmt = stmt.where(ComplianceChecklist.frequency_type == frequency_type)
    if assigned_user_id is not None:
        stmt = stmt.where(ComplianceChecklist.assigned_user_id == assigned_user_id)
    if due_from:
        stmt = stmt.where(ComplianceChecklist.next_due_at >= due_from)
    if due_to:
        stmt = stmt.where(ComplianceChecklist.next_due_at <= due_to)
    return list(db.execute(stmt).scalars())


def get_checklists_to_roll_forward(db: Session, now: datetime, limit: int = 1000) -> List[ComplianceChecklist]:
    """Active recurring checklists whose next due date has been reached."""
    stmt = (
        select(ComplianceChecklist)
        .where(ComplianceChecklist.status == "active")
        .where(ComplianceChecklist.is_recurring.is_(True))
        .where(ComplianceChecklist.next_due_at.isnot(None))
        .where(ComplianceChecklist.next_due_at <= now)
        .order_by(ComplianceChecklist.next_due_at.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


# --- Reminders ---

def get_reminder(db: Session, reminder_id: int) -> Optional[ComplianceReminder]:
    return db.get(ComplianceReminder, reminder_id)


def list_reminders(
    db: Session,
    branch_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    reminder_type: Optional[str] = None,
    delivery_channel: Optional[str] = None,
    assigned_user_id: Optional[int] = None,
    remind_from: Optional[datetime] = None,
    remind_to: Optional[datetime] = None,
    limit: int = 100,
) -> List[ComplianceReminder]:
    stmt = select(ComplianceReminder).order_by(ComplianceReminder.remind_at.desc()).limit(limit)
    if branch_id is not None:
        stmt = stmt.where(ComplianceReminder.branch_id == branch_id)
    if status:
        stmt = stmt.where(ComplianceReminder.status == status)
    if priority:
        stmt = stmt.where(ComplianceReminder.priority == priority)
    if reminder_type:
        stmt = stmt.where(ComplianceReminder.reminder_type == reminder_type)
    if delivery_channel:
        stmt = stmt.where(ComplianceReminder.delivery_channel == delivery_channel)
    if assigned_user_id is not None:
        stmt = stmt.where(ComplianceReminder.assigned_user_id == assigned_user_id)
    if remind_from:
        stmt = stmt.where(ComplianceReminder.remind_at >= remind_from)
    if remind_to:
        stmt = stmt.where(ComplianceReminder.remind_at <= remind_to)
    return list(db.execute(stmt).scalars())


def get_due_reminders(
    db: Session,
    now: datetime,
    limit: int = 100,
    lock: bool = True,
    exclude_ids: Optional[Iterable[int]] = None,
) -> List[ComplianceReminder]:
    """Scheduled/pending reminders whose remind_at has passed, oldest first.

    Rows are locked FOR UPDATE SKIP LOCKED where the database supports it so
    concurrent dispatchers pick disjoint batches. ``exclude_ids`` leaves out
    reminders this pass already handled.
    """
    stmt = (
        select(ComplianceReminder)
        .where(ComplianceReminder.status.in_(sorted(DISPATCHABLE_STATUSES)))
        .where(ComplianceReminder.remind_at <= now)
    )
    if exclude_ids:
        stmt = stmt.where(ComplianceReminder.id.notin_(sorted(exclude_ids)))
    stmt = stmt.order_by(ComplianceReminder.remind_at.asc(), ComplianceReminder.id.asc()).limit(limit)
    if lock:
        stmt = stmt.with_for_update(skip_locked=True)
    return list(db.execute(stmt).scalars())


def get_escalation_candidates(db: Session, now: datetime, limit: int = 100, lock: bool = True) -> List[ComplianceReminder]:
    stmt = (
        select(ComplianceReminder)
        .where(ComplianceReminder.status.in_(sorted(ESCALATABLE_STATUSES)))
        .where(ComplianceReminder.auto_escalate.is_(True))
        .where(ComplianceReminder.escalate_at.isnot(None))
        .where(ComplianceReminder.escalate_at <= now)
        .order_by(ComplianceReminder.escalate_at.asc(), ComplianceReminder.id.asc())
        .limit(limit)
    )
    if lock:
        stmt = stmt.with_for_update(skip_locked=True)
    return list(db.execute(stmt).scalars())


def add_event(
    db: Session,
    reminder: ComplianceReminder,
    event_type: str,
    status: str,
    processed_at: datetime,
    channel: Optional[str] = None,
    message: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ComplianceReminderEvent:
    """Stage an event row in the current transaction; the caller commits."""
    event = ComplianceReminderEvent(
        compliance_reminder_id=reminder.id,
        event_type=event_type,
        channel=channel,
        status=status,
        message=message,
        meta=metadata,
        processed_at=processed_at,
    )
    db.add(event)
    return event


def list_events(db: Session, reminder_id: int, limit: int = 100) -> List[ComplianceReminderEvent]:
    stmt = (
        select(ComplianceReminderEvent)
        .where(ComplianceReminderEvent.compliance_reminder_id == reminder_id)
        .order_by(ComplianceReminderEvent.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def _count(db: Session, *conditions) -> int:
    stmt = select(func.count(ComplianceReminder.id))
    for condition in conditions:
        stmt = stmt.where(condition)
    return int(db.execute(stmt).scalar() or 0)


def reminder_stats(db: Session, now: datetime, branch_id: Optional[int] = None) -> Dict[str, int]:
    base = [] if branch_id is None else [ComplianceReminder.branch_id == branch_id]
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)
    return {
        "total": _count(db, *base),
        "due_today": _count(db, *base, ComplianceReminder.remind_at >= day_start, ComplianceReminder.remind_at < day_end),
        "sent": _count(db, *base, ComplianceReminder.status == ReminderStatus.SENT.value),
        "escalated": _count(db, *base, ComplianceReminder.status == ReminderStatus.ESCALATED.value),
        "failed": _count(db, *base, ComplianceReminder.status == ReminderStatus.FAILED.value),
        "overdue": _count(
            db,
            *base,
            ComplianceReminder.status.in_(sorted(DISPATCHABLE_STATUSES)),
            ComplianceReminder.remind_at < now,
        ),
    }
