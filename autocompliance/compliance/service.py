"""
Checklist scheduling and reminder dispatch services.

Both services take the current time (and the acting user, where one exists)
as explicit arguments; only the API handlers, Celery tasks and the CLI read
the clock.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from autocompliance.utils.timezone import to_local, to_utc_aware
from . import repository
from .delivery import DeliveryGateway, ReminderNotification, build_default_gateway
from .metrics import (
    checklists_rolled_forward_total,
    dispatcher_scans_total,
    reminders_cancelled_total,
    reminders_created_total,
    reminders_escalated_total,
    reminders_failed_total,
    reminders_sent_total,
    reminders_skipped_total,
)
from .models import ComplianceChecklist, ComplianceReminder
from .recurrence import FrequencyType, compute_next_due_at, preview_occurrences
from .reminder_states import (
    InvalidTransition,
    ReminderValidationError,
    can_escalate,
    cancel,
    escalate,
    initial_status,
    is_due,
    mark_failed,
    mark_sent,
    normalize_delivery_channels,
    rebase_status_after_update,
    requeue,
    resolve_escalation_target,
    trigger,
    validate_reminder,
)
from .schemas import (
    ChecklistCreate,
    ChecklistSchedule,
    ChecklistUpdate,
    ProcessResult,
    ReminderCreate,
    ReminderUpdate,
)

logger = logging.getLogger(__name__)


class ChecklistValidationError(ValueError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


def _plain(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _update_fields(data: Any) -> Dict[str, Any]:
    fields = {k: _plain(v) for k, v in data.model_dump(exclude_unset=True).items()}
    if "metadata" in fields:
        fields["meta"] = fields.pop("metadata")
    return fields


class ChecklistService:
    """Keeps each checklist's next_due_at in step with its recurrence rule"""

    def __init__(self, db: Session):
        self.db = db

    def compute_next_due(self, checklist: ComplianceChecklist, now: datetime) -> Optional[datetime]:
        # Due times are wall-clock times in the configured default timezone
        reference = to_local(now)
        return to_utc_aware(compute_next_due_at(checklist.recurrence_rule, reference))

    def create_checklist(self, data: ChecklistCreate, now: datetime, actor_id: Optional[int] = None) -> ComplianceChecklist:
        if data.code and repository.get_checklist_by_code(self.db, data.code):
            raise ChecklistValidationError("code", f"Checklist code '{data.code}' is already in use")

        fields = _update_fields(data)
        checklist = ComplianceChecklist(**fields, created_by=actor_id, updated_by=actor_id)
        checklist.next_due_at = self.compute_next_due(checklist, now)

        self.db.add(checklist)
        self.db.commit()
        self.db.refresh(checklist)
        logger.info("Created checklist %s (%s), next due %s", checklist.id, checklist.title, checklist.next_due_at)
        return checklist

    def update_checklist(
        self,
        checklist_id: int,
        data: ChecklistUpdate,
        now: datetime,
        actor_id: Optional[int] = None,
    ) -> Optional[ComplianceChecklist]:
        checklist = repository.get_checklist(self.db, checklist_id)
        if not checklist:
            return None

        fields = _update_fields(data)
        code = fields.get("code")
        if code and code != checklist.code:
            existing = repository.get_checklist_by_code(self.db, code)
            if existing and existing.id != checklist.id:
                raise ChecklistValidationError("code", f"Checklist code '{code}' is already in use")

        frequency = fields.get("frequency_type", checklist.frequency_type)
        if frequency == FrequencyType.CUSTOM.value:
            if not fields.get("custom_frequency_unit", checklist.custom_frequency_unit):
                raise ChecklistValidationError("custom_frequency_unit", "custom_frequency_unit is required for custom frequencies")
            if not fields.get("custom_frequency_value", checklist.custom_frequency_value):
                raise ChecklistValidationError("custom_frequency_value", "custom_frequency_value is required for custom frequencies")

        for key, value in fields.items():
            setattr(checklist, key, value)
        checklist.updated_by = actor_id
        checklist.next_due_at = self.compute_next_due(checklist, now)

        self.db.commit()
        self.db.refresh(checklist)
        return checklist

    def mark_completed(self, checklist_id: int, now: datetime, actor_id: Optional[int] = None) -> Optional[ComplianceChecklist]:
        checklist = repository.get_checklist(self.db, checklist_id)
        if not checklist:
            return None
        checklist.last_completed_at = to_utc_aware(now)
        # Completing ahead of time settles the pending occurrence, not an earlier one
        reference = now
        if checklist.next_due_at and to_utc_aware(checklist.next_due_at) > to_utc_aware(now):
            reference = checklist.next_due_at
        checklist.next_due_at = self.compute_next_due(checklist, reference)
        checklist.updated_by = actor_id
        self.db.commit()
        self.db.refresh(checklist)
        return checklist

    def schedule(self, checklist: ComplianceChecklist, now: datetime, count: int = 5) -> ChecklistSchedule:
        reference = to_local(now)
        occurrences = preview_occurrences(checklist.recurrence_rule, reference, count)
        return ChecklistSchedule(
            checklist_id=checklist.id,
            reference=reference,
            next_due_at=occurrences[0] if occurrences else None,
            occurrences=occurrences,
        )

    def roll_forward(self, now: datetime, limit: int = 1000) -> int:
        """Advance next_due_at of active recurring checklists that came due."""
        now = to_utc_aware(now)
        rolled = 0
        for checklist in repository.get_checklists_to_roll_forward(self.db, now, limit=limit):
            previous = checklist.next_due_at
            checklist.last_triggered_at = previous
            checklist.next_due_at = self.compute_next_due(checklist, now)
            rolled += 1
            logger.info("Checklist %s due %s rolled forward to %s", checklist.id, previous, checklist.next_due_at)
        self.db.commit()
        checklists_rolled_forward_total.inc(rolled)
        return rolled


class ComplianceReminderService:
    """Creates reminders and drives them through their lifecycle"""

    def __init__(self, db: Session, gateway: Optional[DeliveryGateway] = None):
        self.db = db
        self.gateway = gateway or build_default_gateway()

    # --- CRUD ---

    def create_reminder(self, data: ReminderCreate, now: datetime, actor_id: Optional[int] = None) -> ComplianceReminder:
        if data.compliance_checklist_id is not None and not repository.get_checklist(self.db, data.compliance_checklist_id):
            raise ReminderValidationError("compliance_checklist_id", "Unknown compliance checklist")

        fields = _update_fields(data)
        fields["delivery_channels"] = data.channels()
        for key in ("remind_at", "due_at", "escalate_at"):
            fields[key] = to_utc_aware(fields.get(key))
        fields["status"] = fields.get("status") or initial_status(data.remind_at, now)

        reminder = ComplianceReminder(**fields, sent_count=0, created_by=actor_id, updated_by=actor_id)
        validate_reminder(reminder)

        self.db.add(reminder)
        self.db.commit()
        self.db.refresh(reminder)
        reminders_created_total.inc()
        return reminder

    def update_reminder(
        self,
        reminder_id: int,
        data: ReminderUpdate,
        now: datetime,
        actor_id: Optional[int] = None,
    ) -> Optional[ComplianceReminder]:
        reminder = repository.get_reminder(self.db, reminder_id)
        if not reminder:
            return None

        fields = _update_fields(data)
        for key in ("remind_at", "due_at", "escalate_at"):
            if key in fields:
                fields[key] = to_utc_aware(fields[key])
        if "remind_at" in fields and fields["remind_at"] is None:
            raise ReminderValidationError("remind_at", "remind_at is required")
        if "delivery_channels" in fields or "delivery_channel" in fields:
            fields["delivery_channels"] = normalize_delivery_channels(
                fields.get("delivery_channels", reminder.delivery_channels),
                fields.get("delivery_channel", reminder.delivery_channel),
            )
        if (
            fields.get("compliance_checklist_id") is not None
            and not repository.get_checklist(self.db, fields["compliance_checklist_id"])
        ):
            raise ReminderValidationError("compliance_checklist_id", "Unknown compliance checklist")

        try:
            for key, value in fields.items():
                setattr(reminder, key, value)
            validate_reminder(reminder)
        except ReminderValidationError:
            self.db.rollback()
            raise

        rebase_status_after_update(reminder, now)
        reminder.updated_by = actor_id
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    # --- Manual transitions ---

    def cancel(self, reminder_id: int, now: datetime, actor_id: Optional[int] = None, reason: Optional[str] = None) -> Optional[ComplianceReminder]:
        reminder = repository.get_reminder(self.db, reminder_id)
        if not reminder:
            return None
        previous = reminder.status
        cancel(reminder, to_utc_aware(now))
        reminder.updated_by = actor_id
        repository.add_event(
            self.db, reminder, "cancelled", reminder.status, to_utc_aware(now),
            message=reason or "Reminder cancelled.",
            metadata={"previous_status": previous, "actor_id": actor_id},
        )
        self.db.commit()
        self.db.refresh(reminder)
        reminders_cancelled_total.inc()
        return reminder

    def requeue(self, reminder_id: int, now: datetime, actor_id: Optional[int] = None) -> Optional[ComplianceReminder]:
        reminder = repository.get_reminder(self.db, reminder_id)
        if not reminder:
            return None
        requeue(reminder, to_utc_aware(now))
        reminder.updated_by = actor_id
        repository.add_event(
            self.db, reminder, "requeued", reminder.status, to_utc_aware(now),
            message="Failed reminder queued for another delivery attempt.",
            metadata={"actor_id": actor_id},
        )
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    # --- Dispatch ---

    def process_due_reminders(self, now: datetime, dry_run: bool = False, limit: int = 100) -> ProcessResult:
        """Trigger, deliver and settle every reminder due at ``now``."""
        now = to_utc_aware(now)
        dispatcher_scans_total.inc()

        if dry_run:
            due = repository.get_due_reminders(self.db, now, limit=limit, lock=False)
            logger.info("Dry run: %d compliance reminders due", len(due))
            return ProcessResult(processed=len(due), dry_run=True)

        result = ProcessResult()
        seen = set()
        while True:
            batch = repository.get_due_reminders(self.db, now, limit=limit, exclude_ids=seen)
            if not batch:
                break
            for reminder in batch:
                seen.add(reminder.id)
                self._dispatch(reminder, now, result)
            if len(batch) < limit:
                break
        logger.info(
            "Processed %d reminders (sent=%d failed=%d escalated=%d skipped=%d)",
            result.processed, result.sent, result.failed, result.escalated, result.skipped,
        )
        return result

    def _dispatch(self, reminder: ComplianceReminder, now: datetime, result: ProcessResult) -> None:
        reminder_id = reminder.id
        if not is_due(reminder, now):
            result.skipped += 1
            return

        # Claim the reminder before delivering; a concurrent claim fails with StaleDataError
        try:
            trigger(reminder, now)
            repository.add_event(
                self.db, reminder, "triggered", reminder.status, now,
                channel=reminder.delivery_channel,
                message="Reminder automatically triggered based on schedule.",
                metadata={"delivery_channels": list(reminder.delivery_channels or [])},
            )
            self.db.commit()
        except (StaleDataError, InvalidTransition) as e:
            self.db.rollback()
            logger.warning("Skipping reminder %s: %s", reminder_id, e)
            result.skipped += 1
            reminders_skipped_total.inc()
            return

        events = 1
        channels = normalize_delivery_channels(reminder.delivery_channels, reminder.delivery_channel)
        report = self.gateway.deliver(ReminderNotification.from_reminder(reminder), channels)

        try:
            if report.succeeded:
                mark_sent(reminder, now)
                repository.add_event(
                    self.db, reminder, "sent", reminder.status, now,
                    channel=",".join(report.delivered_channels),
                    message="Reminder delivered.",
                    metadata=report.as_metadata(),
                )
                result.sent += 1
                reminders_sent_total.inc()
            else:
                mark_failed(reminder, now)
                repository.add_event(
                    self.db, reminder, "failed", reminder.status, now,
                    message="Delivery failed on every requested channel.",
                    metadata=report.as_metadata(),
                )
                result.failed += 1
                reminders_failed_total.inc()
            events += 1

            if can_escalate(reminder, now):
                self._escalate(reminder, now)
                result.escalated += 1
                events += 1

            self.db.commit()
        except (StaleDataError, InvalidTransition) as e:
            self.db.rollback()
            logger.error("Could not record delivery outcome for reminder %s: %s", reminder_id, e)
            result.skipped += 1
            reminders_skipped_total.inc()
            return

        result.processed += 1
        result.events_created += events

    def _escalate(self, reminder: ComplianceReminder, now: datetime) -> None:
        escalate(reminder, now)
        target = resolve_escalation_target(reminder)
        notification = ReminderNotification.from_reminder(reminder, escalation=True)
        if target is not None:
            notification.recipient[f"escalate_to_{target.kind}"] = target.value
        report = self.gateway.deliver(notification, normalize_delivery_channels(reminder.delivery_channels, reminder.delivery_channel))
        repository.add_event(
            self.db, reminder, "escalated", reminder.status, now,
            message="Reminder escalated after its escalation deadline passed.",
            metadata={
                "target": {"kind": target.kind, "value": target.value} if target else None,
                "delivery": report.as_metadata(),
            },
        )
        reminders_escalated_total.inc()
        logger.info("Escalated reminder %s to %s", reminder.id, target)

    def escalate_overdue(self, now: datetime, limit: int = 100) -> int:
        """Escalate triggered/failed reminders whose escalation deadline passed."""
        now = to_utc_aware(now)
        escalated = 0
        for reminder in repository.get_escalation_candidates(self.db, now, limit=limit):
            reminder_id = reminder.id
            if not can_escalate(reminder, now):
                continue
            try:
                self._escalate(reminder, now)
                self.db.commit()
                escalated += 1
            except (StaleDataError, InvalidTransition) as e:
                self.db.rollback()
                logger.warning("Skipping escalation of reminder %s: %s", reminder_id, e)
                reminders_skipped_total.inc()
        return escalated

    def stats(self, now: datetime, branch_id: Optional[int] = None) -> Dict[str, int]:
        return repository.reminder_stats(self.db, to_utc_aware(now), branch_id=branch_id)

    def events(self, reminder_id: int, limit: int = 100) -> List:
        return repository.list_events(self.db, reminder_id, limit=limit)


__all__ = [
    "ChecklistService",
    "ChecklistValidationError",
    "ComplianceReminderService",
]
