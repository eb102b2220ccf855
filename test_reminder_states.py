"""
Reminder lifecycle: transition table, escalation guard and record invariants
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from autocompliance.compliance.reminder_states import (
    ALLOWED_TRANSITIONS,
    EscalationTarget,
    InvalidTransition,
    ReminderStatus,
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
    transition,
    trigger,
    validate_delivery_channels,
    validate_reminder,
    validate_schedule,
)

NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def make_reminder(**overrides):
    fields = dict(
        status="scheduled",
        remind_at=NOW - timedelta(hours=1),
        due_at=None,
        escalate_at=None,
        auto_escalate=False,
        escalate_to_user_id=None,
        escalate_to_role=None,
        delivery_channel="email",
        delivery_channels=["email"],
        sent_count=0,
        last_triggered_at=None,
        last_sent_at=None,
        last_escalated_at=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_scheduled_to_triggered_to_sent_counts_one_send():
    reminder = make_reminder()
    trigger(reminder, NOW)
    assert reminder.status == "triggered"
    assert reminder.last_triggered_at == NOW

    mark_sent(reminder, NOW + timedelta(seconds=5))
    assert reminder.status == "sent"
    assert reminder.sent_count == 1
    assert reminder.last_sent_at == NOW + timedelta(seconds=5)


def test_sent_cannot_be_cancelled():
    reminder = make_reminder(status="sent", sent_count=1)
    with pytest.raises(InvalidTransition) as exc:
        cancel(reminder, NOW)
    assert exc.value.current == "sent"
    assert exc.value.target == "cancelled"
    assert reminder.status == "sent"


@pytest.mark.parametrize("terminal", ["sent", "cancelled"])
@pytest.mark.parametrize("target", [s.value for s in ReminderStatus])
def test_terminal_states_reject_everything(terminal, target):
    reminder = make_reminder(status=terminal)
    with pytest.raises(InvalidTransition):
        transition(reminder, target, NOW)
    assert reminder.status == terminal


@pytest.mark.parametrize("status", ["scheduled", "pending", "triggered", "failed", "escalated"])
def test_cancel_is_legal_from_every_non_terminal_state(status):
    reminder = make_reminder(status=status)
    cancel(reminder, NOW)
    assert reminder.status == "cancelled"


def test_cannot_send_without_triggering_first():
    reminder = make_reminder(status="pending")
    with pytest.raises(InvalidTransition):
        mark_sent(reminder, NOW)
    assert reminder.sent_count == 0


def test_failed_reminder_can_be_requeued_and_triggered_again():
    reminder = make_reminder()
    trigger(reminder, NOW)
    mark_failed(reminder, NOW)
    requeue(reminder, NOW)
    assert reminder.status == "pending"
    trigger(reminder, NOW + timedelta(minutes=5))
    assert reminder.last_triggered_at == NOW + timedelta(minutes=5)


def test_transition_table_covers_every_status():
    assert set(ALLOWED_TRANSITIONS) == {s.value for s in ReminderStatus}


def _escalatable(**overrides):
    fields = dict(status="failed", auto_escalate=True, escalate_at=NOW - timedelta(minutes=1))
    fields.update(overrides)
    return make_reminder(**fields)


def test_escalation_fires_when_all_conditions_hold():
    reminder = _escalatable()
    assert can_escalate(reminder, NOW)
    escalate(reminder, NOW)
    assert reminder.status == "escalated"
    assert reminder.last_escalated_at == NOW


def test_escalation_at_exact_deadline_is_allowed():
    reminder = _escalatable(status="triggered", escalate_at=NOW)
    assert can_escalate(reminder, NOW)


@pytest.mark.parametrize(
    "overrides",
    [
        {"auto_escalate": False},
        {"escalate_at": None},
        {"escalate_at": NOW + timedelta(minutes=1)},
    ],
    ids=["auto-escalate-off", "no-deadline", "deadline-not-reached"],
)
def test_escalation_blocked_when_any_condition_missing(overrides):
    reminder = _escalatable(**overrides)
    assert not can_escalate(reminder, NOW)
    with pytest.raises(InvalidTransition, match="escalation conditions not met"):
        escalate(reminder, NOW)
    assert reminder.status == "failed"
    assert reminder.last_escalated_at is None


@pytest.mark.parametrize("status", ["scheduled", "pending", "sent", "cancelled", "escalated"])
def test_escalation_only_from_triggered_or_failed(status):
    reminder = _escalatable(status=status)
    assert not can_escalate(reminder, NOW)


def test_escalation_target_prefers_user_over_role():
    assert resolve_escalation_target(make_reminder(escalate_to_user_id=7, escalate_to_role="manager")) == EscalationTarget("user", 7)
    assert resolve_escalation_target(make_reminder(escalate_to_role="manager")) == EscalationTarget("role", "manager")
    assert resolve_escalation_target(make_reminder()) is None


def test_due_predicate():
    assert is_due(make_reminder(remind_at=NOW), NOW)
    assert not is_due(make_reminder(remind_at=NOW + timedelta(seconds=1)), NOW)
    assert is_due(make_reminder(status="failed"), NOW)
    assert not is_due(make_reminder(status="sent"), NOW)
    assert not is_due(make_reminder(status="cancelled"), NOW)


def test_naive_timestamps_are_read_as_utc():
    reminder = make_reminder(remind_at=datetime(2024, 6, 1, 8, 59))
    assert is_due(reminder, NOW)


def test_channel_normalization_dedupes_and_falls_back_to_primary():
    assert normalize_delivery_channels(["sms", "email", "sms", "fax", ""], "push") == ["sms", "email"]
    assert normalize_delivery_channels([], "in_app") == ["in_app"]
    assert normalize_delivery_channels(None, "email") == ["email"]
    assert normalize_delivery_channels(["fax"], None) == []


def test_persisted_channels_must_be_known_and_distinct():
    assert validate_delivery_channels(["email", "push"]) == ["email", "push"]
    with pytest.raises(ReminderValidationError):
        validate_delivery_channels(["email", "email"])
    with pytest.raises(ReminderValidationError):
        validate_delivery_channels(["pager"])


def test_schedule_guards():
    validate_schedule(NOW, due_at=NOW, escalate_at=NOW + timedelta(seconds=1))
    with pytest.raises(ReminderValidationError) as exc:
        validate_schedule(NOW, due_at=NOW - timedelta(minutes=1))
    assert exc.value.field == "due_at"
    with pytest.raises(ReminderValidationError) as exc:
        validate_schedule(NOW, escalate_at=NOW)
    assert exc.value.field == "escalate_at"
    with pytest.raises(ReminderValidationError):
        validate_schedule(None)


def test_validate_reminder_rejects_unknown_status():
    with pytest.raises(ReminderValidationError):
        validate_reminder(make_reminder(status="snoozed"))


def test_initial_status_and_rebase():
    assert initial_status(NOW + timedelta(hours=1), NOW) == "scheduled"
    assert initial_status(NOW - timedelta(hours=1), NOW) == "pending"

    reminder = make_reminder(status="scheduled", remind_at=NOW - timedelta(minutes=1))
    rebase_status_after_update(reminder, NOW)
    assert reminder.status == "pending"

    reminder = make_reminder(status="failed", remind_at=NOW - timedelta(minutes=1))
    rebase_status_after_update(reminder, NOW)
    assert reminder.status == "failed"
