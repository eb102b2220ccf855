"""
Reminder dispatch against an in-memory database
"""
from datetime import timedelta

import pytest
from sqlalchemy import update

from autocompliance.compliance import repository
from autocompliance.compliance.models import ComplianceReminder
from autocompliance.compliance.reminder_states import InvalidTransition, ReminderValidationError
from autocompliance.compliance.schemas import ReminderCreate, ReminderUpdate
from autocompliance.compliance.service import ComplianceReminderService
from autocompliance.utils.timezone import to_utc_aware
from conftest import utc

NOW = utc(2024, 6, 1, 9, 0)


def create(service, now=NOW - timedelta(hours=2), actor_id=None, **overrides):
    fields = dict(
        title="Fire extinguisher inspection",
        remind_at=NOW - timedelta(hours=1),
        delivery_channel="email",
        metadata={"email": "service-manager@example.com"},
    )
    fields.update(overrides)
    return service.create_reminder(ReminderCreate(**fields), now, actor_id=actor_id)


def event_types(db, reminder_id):
    return [e.event_type for e in reversed(repository.list_events(db, reminder_id))]


@pytest.fixture()
def service(db, gateway):
    return ComplianceReminderService(db, gateway)


def test_create_stamps_actor_and_initial_status(service):
    future = create(service, actor_id=12, remind_at=NOW + timedelta(days=1))
    assert future.status == "scheduled"
    assert future.created_by == 12
    assert future.delivery_channels == ["email"]

    past = create(service, now=NOW, remind_at=NOW - timedelta(minutes=5))
    assert past.status == "pending"


def test_create_normalizes_channels(service):
    reminder = create(service, delivery_channel="push", delivery_channels=["sms", "in_app", "sms"])
    assert reminder.delivery_channels == ["sms", "in_app"]


def test_create_rejects_unknown_checklist(service):
    with pytest.raises(ReminderValidationError) as exc:
        create(service, compliance_checklist_id=999)
    assert exc.value.field == "compliance_checklist_id"


def test_dry_run_mutates_nothing(db, service, senders):
    reminder = create(service)
    result = service.process_due_reminders(NOW, dry_run=True)

    assert result.dry_run is True
    assert result.processed == 1
    db.expire_all()
    assert repository.get_reminder(db, reminder.id).status == "scheduled"
    assert event_types(db, reminder.id) == []
    assert senders["email"].calls == []


def test_dispatch_sends_when_any_channel_succeeds(db, service, senders):
    reminder = create(service, delivery_channels=["push", "email"])
    result = service.process_due_reminders(NOW)

    assert result.processed == 1
    assert result.sent == 1
    assert result.events_created == 2
    assert reminder.status == "sent"
    assert reminder.sent_count == 1
    assert to_utc_aware(reminder.last_sent_at) == NOW
    assert len(senders["push"].calls) == 1
    assert senders["email"].calls[0].recipient["email"] == "service-manager@example.com"
    assert event_types(db, reminder.id) == ["triggered", "sent"]


def test_future_reminders_are_left_alone(service, senders):
    reminder = create(service, remind_at=NOW + timedelta(minutes=1))
    result = service.process_due_reminders(NOW)
    assert result.processed == 0
    assert reminder.status == "scheduled"
    assert senders["email"].calls == []


def test_all_channels_failing_marks_failed(db, service):
    reminder = create(service, delivery_channel="push")
    result = service.process_due_reminders(NOW)

    assert result.failed == 1
    assert result.escalated == 0
    assert reminder.status == "failed"
    assert reminder.sent_count == 0
    failed_event = repository.list_events(db, reminder.id)[0]
    assert failed_event.event_type == "failed"
    assert failed_event.meta["push"]["delivered"] is False


def test_unconfigured_sms_counts_as_failed_delivery(service):
    reminder = create(service, delivery_channel="sms")
    service.process_due_reminders(NOW)
    assert reminder.status == "failed"


def test_failed_delivery_escalates_when_deadline_passed(db, service):
    reminder = create(
        service,
        delivery_channel="push",
        auto_escalate=True,
        escalate_at=NOW - timedelta(minutes=30),
        escalate_to_user_id=3,
        escalate_to_role="branch_manager",
    )
    result = service.process_due_reminders(NOW)

    assert result.failed == 1
    assert result.escalated == 1
    assert result.events_created == 3
    assert reminder.status == "escalated"
    assert to_utc_aware(reminder.last_escalated_at) == NOW
    assert event_types(db, reminder.id) == ["triggered", "failed", "escalated"]
    escalation = repository.list_events(db, reminder.id)[0]
    assert escalation.meta["target"] == {"kind": "user", "value": 3}


def test_escalate_overdue_picks_up_failed_reminders_later(service):
    reminder = create(
        service,
        delivery_channel="push",
        auto_escalate=True,
        escalate_at=NOW + timedelta(hours=1),
        escalate_to_role="branch_manager",
    )
    service.process_due_reminders(NOW)
    assert reminder.status == "failed"

    assert service.escalate_overdue(NOW + timedelta(minutes=59)) == 0
    assert service.escalate_overdue(NOW + timedelta(hours=1)) == 1
    assert reminder.status == "escalated"


def test_concurrently_claimed_reminder_is_skipped(db, service, senders, monkeypatch):
    reminder = create(service)
    real_get_due = repository.get_due_reminders

    def get_due_then_bump_version(session, now, limit=100, lock=True, exclude_ids=None):
        due = real_get_due(session, now, limit=limit, lock=lock, exclude_ids=exclude_ids)
        # Another worker commits the same rows first
        session.execute(
            update(ComplianceReminder)
            .values(version=ComplianceReminder.version + 1)
            .execution_options(synchronize_session=False)
        )
        return due

    monkeypatch.setattr(repository, "get_due_reminders", get_due_then_bump_version)
    result = service.process_due_reminders(NOW)

    assert result.processed == 0
    assert result.skipped == 1
    assert senders["email"].calls == []
    assert repository.get_reminder(db, reminder.id).status == "scheduled"


def test_skipped_batch_does_not_end_the_pass(db, service, senders, monkeypatch):
    claimed = create(service, title="Claimed elsewhere", remind_at=NOW - timedelta(hours=1, minutes=2))
    create(service, title="Permit renewal", remind_at=NOW - timedelta(hours=1, minutes=1))
    create(service, title="Fire drill log")
    real_get_due = repository.get_due_reminders
    calls = []

    def get_due_claiming_first(session, now, limit=100, lock=True, exclude_ids=None):
        due = real_get_due(session, now, limit=limit, lock=lock, exclude_ids=exclude_ids)
        calls.append([r.id for r in due])
        if len(calls) == 1:
            session.execute(
                update(ComplianceReminder)
                .where(ComplianceReminder.id == claimed.id)
                .values(version=ComplianceReminder.version + 1)
                .execution_options(synchronize_session=False)
            )
        return due

    monkeypatch.setattr(repository, "get_due_reminders", get_due_claiming_first)
    result = service.process_due_reminders(NOW, limit=1)

    assert calls[0] == [claimed.id]
    assert result.skipped == 1
    assert result.sent == 2
    assert len(senders["email"].calls) == 2
    assert repository.get_reminder(db, claimed.id).status == "scheduled"


def test_cancel_records_event_and_rejects_sent(db, service):
    pending = create(service)
    cancelled = service.cancel(pending.id, NOW, actor_id=5, reason="Inspection done early")
    assert cancelled.status == "cancelled"
    assert cancelled.updated_by == 5
    assert event_types(db, pending.id) == ["cancelled"]

    sent = create(service, title="Permit renewal")
    service.process_due_reminders(NOW)
    with pytest.raises(InvalidTransition):
        service.cancel(sent.id, NOW)

    assert service.cancel(12345, NOW) is None


def test_requeue_failed_reminder(db, service):
    reminder = create(service, delivery_channel="push")
    service.process_due_reminders(NOW)

    requeued = service.requeue(reminder.id, NOW + timedelta(minutes=1))
    assert requeued.status == "pending"
    assert event_types(db, reminder.id)[-1] == "requeued"

    with pytest.raises(InvalidTransition):
        service.requeue(reminder.id, NOW)


def test_update_moving_into_past_makes_pending(service):
    reminder = create(service, remind_at=NOW + timedelta(days=2))
    updated = service.update_reminder(
        reminder.id, ReminderUpdate(remind_at=NOW - timedelta(minutes=1)), NOW, actor_id=9
    )
    assert updated.status == "pending"
    assert updated.updated_by == 9


def test_update_rejects_escalation_before_remind_time(db, service):
    reminder = create(service, remind_at=NOW + timedelta(days=2))
    with pytest.raises(ReminderValidationError):
        service.update_reminder(reminder.id, ReminderUpdate(escalate_at=NOW + timedelta(days=1)), NOW)
    assert repository.get_reminder(db, reminder.id).escalate_at is None


def test_update_channels_falls_back_to_primary(service):
    reminder = create(service)
    updated = service.update_reminder(
        reminder.id, ReminderUpdate(delivery_channel="in_app", delivery_channels=[]), NOW
    )
    assert updated.delivery_channels == ["in_app"]


def test_stats(service):
    create(service)
    create(service, delivery_channel="push")
    create(service, remind_at=NOW + timedelta(days=3))
    service.process_due_reminders(NOW)

    stats = service.stats(NOW + timedelta(hours=1))
    assert stats["total"] == 3
    assert stats["sent"] == 1
    assert stats["failed"] == 1
    assert stats["overdue"] == 0
