"""
Compliance reminder lifecycle.

Every status change of a reminder goes through :func:`transition`. The
functions here never read the clock or the database: the caller passes the
reference time and persists the mutated record. They operate on any object
exposing the reminder attributes (the ORM model in production, plain
namespaces in tests).
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from autocompliance.utils.timezone import to_utc_aware


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    PENDING = "pending"
    TRIGGERED = "triggered"
    SENT = "sent"
    FAILED = "failed"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


class DeliveryChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class ReminderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReminderType(str, Enum):
    MANUAL = "manual"
    CHECKLIST_DUE = "checklist_due"
    CHECKLIST_OVERDUE = "checklist_overdue"
    FOLLOW_UP = "follow_up"
    ESCALATION = "escalation"


STATUSES = [s.value for s in ReminderStatus]
CHANNELS = [c.value for c in DeliveryChannel]

TERMINAL_STATUSES: FrozenSet[str] = frozenset({ReminderStatus.SENT.value, ReminderStatus.CANCELLED.value})
DISPATCHABLE_STATUSES: FrozenSet[str] = frozenset({ReminderStatus.SCHEDULED.value, ReminderStatus.PENDING.value})
ESCALATABLE_STATUSES: FrozenSet[str] = frozenset({ReminderStatus.TRIGGERED.value, ReminderStatus.FAILED.value})

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ReminderStatus.SCHEDULED.value: frozenset({"triggered", "cancelled"}),
    ReminderStatus.PENDING.value: frozenset({"triggered", "cancelled"}),
    ReminderStatus.TRIGGERED.value: frozenset({"sent", "failed", "escalated", "cancelled"}),
    # failed -> pending is the external retry path
    ReminderStatus.FAILED.value: frozenset({"pending", "escalated", "cancelled"}),
    ReminderStatus.ESCALATED.value: frozenset({"cancelled"}),
    ReminderStatus.SENT.value: frozenset(),
    ReminderStatus.CANCELLED.value: frozenset(),
}


class InvalidTransition(Exception):
    """Raised when a reminder is asked to move to a status its current one cannot reach."""

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        self.reason = reason
        message = f"Cannot transition reminder from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ReminderValidationError(ValueError):
    """Raised when reminder timing or channel invariants are violated."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


@dataclass(frozen=True)
class EscalationTarget:
    kind: str  # "user" or "role"
    value: Any


def _status(value: Any) -> str:
    return value.value if isinstance(value, ReminderStatus) else str(value)


def normalize_delivery_channels(channels: Optional[Iterable[Any]], primary: Optional[str] = None) -> List[str]:
    """Keep known channels once each, in first-seen order; fall back to the primary channel."""
    result: List[str] = []
    for channel in channels or []:
        value = channel.value if isinstance(channel, DeliveryChannel) else channel
        if isinstance(value, str) and value in CHANNELS and value not in result:
            result.append(value)
    if not result and primary:
        primary_value = primary.value if isinstance(primary, DeliveryChannel) else primary
        if primary_value in CHANNELS:
            result.append(primary_value)
    return result


def validate_delivery_channels(channels: Iterable[Any]) -> List[str]:
    """Strict check used on persisted values: every channel known, none repeated."""
    seen: List[str] = []
    for channel in channels:
        value = channel.value if isinstance(channel, DeliveryChannel) else channel
        if value not in CHANNELS:
            raise ReminderValidationError("delivery_channels", f"Unknown delivery channel '{value}'")
        if value in seen:
            raise ReminderValidationError("delivery_channels", f"Delivery channel '{value}' listed more than once")
        seen.append(value)
    return seen


def validate_schedule(
    remind_at: Optional[datetime],
    due_at: Optional[datetime] = None,
    escalate_at: Optional[datetime] = None,
) -> None:
    if remind_at is None:
        raise ReminderValidationError("remind_at", "remind_at is required")
    remind = to_utc_aware(remind_at)
    if due_at is not None and to_utc_aware(due_at) < remind:
        raise ReminderValidationError("due_at", "due_at must not be earlier than remind_at")
    if escalate_at is not None and to_utc_aware(escalate_at) <= remind:
        raise ReminderValidationError("escalate_at", "escalate_at must be later than remind_at")


def validate_reminder(reminder: Any) -> None:
    """Check every guard invariant of a reminder record."""
    validate_schedule(reminder.remind_at, getattr(reminder, "due_at", None), getattr(reminder, "escalate_at", None))
    validate_delivery_channels(getattr(reminder, "delivery_channels", None) or [])
    if _status(reminder.status) not in STATUSES:
        raise ReminderValidationError("status", f"Unknown reminder status '{reminder.status}'")


def initial_status(remind_at: datetime, now: datetime) -> str:
    """Reminders created for a time already passed start out pending."""
    if to_utc_aware(now) > to_utc_aware(remind_at):
        return ReminderStatus.PENDING.value
    return ReminderStatus.SCHEDULED.value


def rebase_status_after_update(reminder: Any, now: datetime) -> None:
    """A scheduled reminder moved into the past becomes pending."""
    if (
        _status(reminder.status) == ReminderStatus.SCHEDULED.value
        and reminder.remind_at is not None
        and to_utc_aware(reminder.remind_at) < to_utc_aware(now)
    ):
        reminder.status = ReminderStatus.PENDING.value


def is_due(reminder: Any, reference: datetime) -> bool:
    if reminder.remind_at is None:
        return False
    return (
        to_utc_aware(reminder.remind_at) <= to_utc_aware(reference)
        and _status(reminder.status) not in TERMINAL_STATUSES
    )


def can_escalate(reminder: Any, reference: datetime) -> bool:
    """All escalation conditions at once: opted in, deadline set and passed, still unresolved."""
    if not reminder.auto_escalate or reminder.escalate_at is None:
        return False
    if _status(reminder.status) not in ESCALATABLE_STATUSES:
        return False
    return to_utc_aware(reference) >= to_utc_aware(reminder.escalate_at)


def resolve_escalation_target(reminder: Any) -> Optional[EscalationTarget]:
    """User takes precedence over role when both are configured."""
    user_id = getattr(reminder, "escalate_to_user_id", None)
    if user_id:
        return EscalationTarget(kind="user", value=user_id)
    role = getattr(reminder, "escalate_to_role", None)
    if role:
        return EscalationTarget(kind="role", value=role)
    return None


def transition(reminder: Any, target: Any, reference: datetime) -> Any:
    """Move ``reminder`` to ``target``, applying the side effects of that edge.

    Raises InvalidTransition without touching the record when the edge is not
    allowed or its guard does not hold.
    """
    current = _status(reminder.status)
    target = _status(target)

    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current, target)
    if target == ReminderStatus.ESCALATED.value and not can_escalate(reminder, reference):
        raise InvalidTransition(current, target, "escalation conditions not met")

    if target == ReminderStatus.TRIGGERED.value:
        reminder.last_triggered_at = reference
    elif target == ReminderStatus.SENT.value:
        reminder.sent_count = (reminder.sent_count or 0) + 1
        reminder.last_sent_at = reference
    elif target == ReminderStatus.ESCALATED.value:
        reminder.last_escalated_at = reference

    reminder.status = target
    return reminder


def trigger(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.TRIGGERED, reference)


def mark_sent(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.SENT, reference)


def mark_failed(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.FAILED, reference)


def escalate(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.ESCALATED, reference)


def cancel(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.CANCELLED, reference)


def requeue(reminder: Any, reference: datetime) -> Any:
    return transition(reminder, ReminderStatus.PENDING, reference)
