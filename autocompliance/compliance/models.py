"""
Compliance checklist and reminder models
"""
from datetime import datetime, timezone as dt_timezone
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from autocompliance.db.base import Base
from .recurrence import RecurrenceRule

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


class ComplianceChecklist(Base):
    __tablename__ = "compliance_checklists"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, nullable=True, index=True)
    title = Column(String(255), nullable=False)
    code = Column(String(50), nullable=True, unique=True)
    description = Column(Text, nullable=True)
    category = Column(String(75), nullable=True)
    status = Column(String(25), nullable=False, default="active")

    # Recurrence
    frequency_type = Column(String(25), nullable=False)
    frequency_interval = Column(Integer, nullable=False, default=1)
    custom_frequency_unit = Column(String(25), nullable=True)
    custom_frequency_value = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    due_time = Column(Time, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=True)

    next_due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)
    last_completed_at = Column(DateTime(timezone=True), nullable=True)

    assigned_user_id = Column(Integer, nullable=True)
    assigned_role = Column(String(75), nullable=True)
    escalate_to_user_id = Column(Integer, nullable=True)
    escalation_offset_hours = Column(Integer, nullable=True)
    advance_reminder_offsets = Column(JSONType, nullable=False, default=list)
    meta = Column("metadata", JSONType, nullable=True)
    requires_acknowledgement = Column(Boolean, nullable=False, default=False)
    allow_partial_completion = Column(Boolean, nullable=False, default=True)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    reminders = relationship("ComplianceReminder", back_populates="checklist")

    __table_args__ = (
        Index("ix_compliance_checklists_branch_status", "branch_id", "status"),
        Index("ix_compliance_checklists_frequency", "frequency_type"),
    )

    @property
    def recurrence_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            frequency_type=self.frequency_type,
            interval_count=self.frequency_interval,
            custom_unit=self.custom_frequency_unit,
            custom_value=self.custom_frequency_value,
            start_date=self.start_date,
            due_time=self.due_time,
        )


class ComplianceReminder(Base):
    __tablename__ = "compliance_reminders"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, nullable=True, index=True)
    compliance_checklist_id = Column(Integer, ForeignKey("compliance_checklists.id", ondelete="SET NULL"), nullable=True)
    assigned_user_id = Column(Integer, nullable=True)
    assigned_role = Column(String(75), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    reminder_type = Column(String(50), nullable=False, default="manual")
    priority = Column(String(25), nullable=False, default="medium")
    delivery_channel = Column(String(25), nullable=False, default="email")
    delivery_channels = Column(JSONType, nullable=False, default=list)

    remind_at = Column(DateTime(timezone=True), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=True)
    escalate_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(25), nullable=False, default="scheduled")
    auto_escalate = Column(Boolean, nullable=False, default=False)
    escalate_to_user_id = Column(Integer, nullable=True)
    escalate_to_role = Column(String(75), nullable=True)

    last_triggered_at = Column(DateTime(timezone=True), nullable=True)
    last_sent_at = Column(DateTime(timezone=True), nullable=True)
    last_escalated_at = Column(DateTime(timezone=True), nullable=True)
    sent_count = Column(Integer, nullable=False, default=0)
    meta = Column("metadata", JSONType, nullable=True)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    checklist = relationship("ComplianceChecklist", back_populates="reminders")
    events = relationship(
        "ComplianceReminderEvent",
        back_populates="reminder",
        order_by="ComplianceReminderEvent.id",
        cascade="all, delete-orphan",
    )

    # Concurrent dispatchers updating the same row fail with StaleDataError
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_compliance_reminders_status_remind_at", "status", "remind_at"),
        Index("ix_compliance_reminders_assigned_status", "assigned_user_id", "status"),
        Index("ix_compliance_reminders_type", "reminder_type"),
    )


class ComplianceReminderEvent(Base):
    """One row per reminder transition"""
    __tablename__ = "compliance_reminder_events"

    id = Column(Integer, primary_key=True, index=True)
    compliance_reminder_id = Column(
        Integer, ForeignKey("compliance_reminders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(50), nullable=False)
    channel = Column(String(25), nullable=True)
    status = Column(String(25), nullable=False, default="queued")
    message = Column(Text, nullable=True)
    meta = Column("metadata", JSONType, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    reminder = relationship("ComplianceReminder", back_populates="events")

    __table_args__ = (
        Index("ix_compliance_reminder_events_type_status", "event_type", "status"),
    )
