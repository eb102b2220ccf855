"""
Request/response schemas for checklists and reminders
"""
from datetime import date, datetime, time
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .recurrence import CustomUnit, FrequencyType, parse_due_time
from .reminder_states import (
    DeliveryChannel,
    ReminderPriority,
    ReminderStatus,
    ReminderType,
    normalize_delivery_channels,
    validate_schedule,
)

ChecklistStatus = Literal["active", "inactive", "archived"]
EntryStatus = Literal["scheduled", "pending"]

_META_ALIAS = AliasChoices("meta", "metadata")


def _reject_null(value: Any) -> Any:
    if value is None:
        raise ValueError("may not be null")
    return value


def _normalize_offsets(value: Any) -> List[int]:
    offsets: List[int] = []
    for item in value or []:
        if item is None or item == "":
            continue
        offset = int(item)
        if offset >= 0 and offset not in offsets:
            offsets.append(offset)
    return offsets


class ChecklistBase(BaseModel):
    branch_id: Optional[int] = None
    title: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=75)
    assigned_user_id: Optional[int] = None
    assigned_role: Optional[str] = Field(default=None, max_length=75)
    escalate_to_user_id: Optional[int] = None
    escalation_offset_hours: Optional[int] = Field(default=None, ge=0, le=10000)
    requires_acknowledgement: bool = False
    allow_partial_completion: bool = True


class ChecklistCreate(ChecklistBase):
    """Schema for creating a compliance checklist"""
    status: ChecklistStatus = "active"
    frequency_type: FrequencyType
    frequency_interval: int = Field(default=1, ge=1, le=365)
    custom_frequency_unit: Optional[CustomUnit] = None
    custom_frequency_value: Optional[int] = Field(default=None, ge=1, le=1000)
    start_date: date
    due_time: Optional[time] = None
    is_recurring: bool = True
    advance_reminder_offsets: List[int] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("due_time", mode="before")
    @classmethod
    def _parse_due_time(cls, v):
        return parse_due_time(v)

    @field_validator("advance_reminder_offsets", mode="before")
    @classmethod
    def _offsets(cls, v):
        return _normalize_offsets(v)

    @model_validator(mode="after")
    def _custom_needs_unit_and_value(self) -> "ChecklistCreate":
        if self.frequency_type == FrequencyType.CUSTOM:
            if self.custom_frequency_unit is None:
                raise ValueError("custom_frequency_unit is required for custom frequencies")
            if self.custom_frequency_value is None:
                raise ValueError("custom_frequency_value is required for custom frequencies")
        return self


class ChecklistUpdate(BaseModel):
    """Schema for updating a checklist; omitted fields are left unchanged"""
    branch_id: Optional[int] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=75)
    status: Optional[ChecklistStatus] = None
    frequency_type: Optional[FrequencyType] = None
    frequency_interval: Optional[int] = Field(default=None, ge=1, le=365)
    custom_frequency_unit: Optional[CustomUnit] = None
    custom_frequency_value: Optional[int] = Field(default=None, ge=1, le=1000)
    start_date: Optional[date] = None
    due_time: Optional[time] = None
    is_recurring: Optional[bool] = None
    assigned_user_id: Optional[int] = None
    assigned_role: Optional[str] = Field(default=None, max_length=75)
    escalate_to_user_id: Optional[int] = None
    escalation_offset_hours: Optional[int] = Field(default=None, ge=0, le=10000)
    advance_reminder_offsets: Optional[List[int]] = None
    metadata: Optional[Dict[str, Any]] = None
    requires_acknowledgement: Optional[bool] = None
    allow_partial_completion: Optional[bool] = None

    @field_validator("due_time", mode="before")
    @classmethod
    def _parse_due_time(cls, v):
        return parse_due_time(v)

    @field_validator("advance_reminder_offsets", mode="before")
    @classmethod
    def _offsets(cls, v):
        return _normalize_offsets(_reject_null(v))

    # Omitted means unchanged; an explicit null cannot clear a required column
    @field_validator(
        "title",
        "status",
        "frequency_type",
        "frequency_interval",
        "start_date",
        "is_recurring",
        "requires_acknowledgement",
        "allow_partial_completion",
        mode="before",
    )
    @classmethod
    def _required_not_null(cls, v):
        return _reject_null(v)


class ChecklistRead(ChecklistBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    frequency_type: str
    frequency_interval: int
    custom_frequency_unit: Optional[str] = None
    custom_frequency_value: Optional[int] = None
    start_date: Optional[date] = None
    due_time: Optional[time] = None
    is_recurring: bool
    next_due_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    advance_reminder_offsets: List[int] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=_META_ALIAS)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class ChecklistSchedule(BaseModel):
    checklist_id: int
    reference: datetime
    next_due_at: Optional[datetime] = None
    occurrences: List[datetime] = Field(default_factory=list)


class ReminderCreate(BaseModel):
    """Schema for creating a compliance reminder"""
    branch_id: Optional[int] = None
    compliance_checklist_id: Optional[int] = None
    assigned_user_id: Optional[int] = None
    assigned_role: Optional[str] = Field(default=None, max_length=75)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    reminder_type: ReminderType = ReminderType.MANUAL
    priority: ReminderPriority = ReminderPriority.MEDIUM
    delivery_channel: DeliveryChannel = DeliveryChannel.EMAIL
    delivery_channels: List[DeliveryChannel] = Field(default_factory=list)
    remind_at: datetime
    due_at: Optional[datetime] = None
    escalate_at: Optional[datetime] = None
    # Defaults to scheduled, or pending when remind_at already passed
    status: Optional[EntryStatus] = None
    auto_escalate: bool = False
    escalate_to_user_id: Optional[int] = None
    escalate_to_role: Optional[str] = Field(default=None, max_length=75)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("delivery_channels", mode="before")
    @classmethod
    def _drop_blank_channels(cls, v):
        if v is None:
            return []
        return [c for c in v if isinstance(c, str) and c != ""]

    @model_validator(mode="after")
    def _check_schedule(self) -> "ReminderCreate":
        validate_schedule(self.remind_at, self.due_at, self.escalate_at)
        return self

    def channels(self) -> List[str]:
        return normalize_delivery_channels(self.delivery_channels, self.delivery_channel)


class ReminderUpdate(BaseModel):
    """Schema for updating reminder details; status changes use the transition endpoints"""
    branch_id: Optional[int] = None
    compliance_checklist_id: Optional[int] = None
    assigned_user_id: Optional[int] = None
    assigned_role: Optional[str] = Field(default=None, max_length=75)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    reminder_type: Optional[ReminderType] = None
    priority: Optional[ReminderPriority] = None
    delivery_channel: Optional[DeliveryChannel] = None
    delivery_channels: Optional[List[DeliveryChannel]] = None
    remind_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    escalate_at: Optional[datetime] = None
    auto_escalate: Optional[bool] = None
    escalate_to_user_id: Optional[int] = None
    escalate_to_role: Optional[str] = Field(default=None, max_length=75)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("delivery_channels", mode="before")
    @classmethod
    def _drop_blank_channels(cls, v):
        return [c for c in _reject_null(v) if isinstance(c, str) and c != ""]

    @field_validator(
        "title",
        "reminder_type",
        "priority",
        "delivery_channel",
        "remind_at",
        "auto_escalate",
        mode="before",
    )
    @classmethod
    def _required_not_null(cls, v):
        return _reject_null(v)


class ReminderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    branch_id: Optional[int] = None
    compliance_checklist_id: Optional[int] = None
    assigned_user_id: Optional[int] = None
    assigned_role: Optional[str] = None
    title: str
    description: Optional[str] = None
    reminder_type: str
    priority: str
    delivery_channel: str
    delivery_channels: List[str] = Field(default_factory=list)
    remind_at: datetime
    due_at: Optional[datetime] = None
    escalate_at: Optional[datetime] = None
    status: ReminderStatus
    auto_escalate: bool
    escalate_to_user_id: Optional[int] = None
    escalate_to_role: Optional[str] = None
    last_triggered_at: Optional[datetime] = None
    last_sent_at: Optional[datetime] = None
    last_escalated_at: Optional[datetime] = None
    sent_count: int
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=_META_ALIAS)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class ReminderEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    compliance_reminder_id: int
    event_type: str
    channel: Optional[str] = None
    status: str
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=_META_ALIAS)
    processed_at: Optional[datetime] = None
    created_at: datetime


class ProcessResult(BaseModel):
    """Outcome of one dispatch pass"""
    processed: int = 0
    events_created: int = 0
    sent: int = 0
    failed: int = 0
    escalated: int = 0
    skipped: int = 0
    dry_run: bool = False


class ReminderStats(BaseModel):
    total: int
    due_today: int
    sent: int
    escalated: int
    failed: int
    overdue: int
