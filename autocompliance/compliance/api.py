from datetime import datetime
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from autocompliance.db.session import get_db
from autocompliance.utils.timezone import to_utc_aware, utcnow
from . import repository
from .config import settings
from .delivery import DeliveryGateway, build_default_gateway
from .reminder_states import InvalidTransition, ReminderValidationError
from .schemas import (
    ChecklistCreate,
    ChecklistRead,
    ChecklistSchedule,
    ChecklistUpdate,
    ProcessResult,
    ReminderCreate,
    ReminderEventRead,
    ReminderRead,
    ReminderStats,
    ReminderUpdate,
)
from .service import ChecklistService, ChecklistValidationError, ComplianceReminderService


router = APIRouter()


@lru_cache()
def get_delivery_gateway() -> DeliveryGateway:
    return build_default_gateway()


def get_actor_id(x_actor_id: Optional[int] = Header(default=None)) -> Optional[int]:
    """Acting user id, supplied by the upstream gateway that authenticates requests."""
    return x_actor_id


def get_reminder_service(
    db: Session = Depends(get_db),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> ComplianceReminderService:
    return ComplianceReminderService(db, gateway)


def _unprocessable(e: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail={"field": getattr(e, "field", None), "message": str(e)})


def _conflict(e: InvalidTransition) -> HTTPException:
    return HTTPException(status_code=409, detail={"current": e.current, "target": e.target, "message": str(e)})


# --- Checklists ---

@router.post("/checklists", response_model=ChecklistRead, status_code=201)
def create_checklist_endpoint(
    payload: ChecklistCreate,
    db: Session = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        return ChecklistService(db).create_checklist(payload, utcnow(), actor_id)
    except ChecklistValidationError as e:
        raise _unprocessable(e)


@router.get("/checklists", response_model=List[ChecklistRead])
def list_checklists_endpoint(
    branch_id: Optional[int] = None,
    status: Optional[str] = None,
    frequency_type: Optional[str] = None,
    assigned_user_id: Optional[int] = None,
    due_from: Optional[datetime] = None,
    due_to: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return repository.list_checklists(
        db,
        branch_id=branch_id,
        status=status,
        frequency_type=frequency_type,
        assigned_user_id=assigned_user_id,
        due_from=to_utc_aware(due_from),
        due_to=to_utc_aware(due_to),
        limit=limit,
    )


@router.get("/checklists/{checklist_id}", response_model=ChecklistRead)
def get_checklist_endpoint(checklist_id: int, db: Session = Depends(get_db)):
    checklist = repository.get_checklist(db, checklist_id)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return checklist


@router.patch("/checklists/{checklist_id}", response_model=ChecklistRead)
def update_checklist_endpoint(
    checklist_id: int,
    payload: ChecklistUpdate,
    db: Session = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        checklist = ChecklistService(db).update_checklist(checklist_id, payload, utcnow(), actor_id)
    except ChecklistValidationError as e:
        raise _unprocessable(e)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return checklist


@router.post("/checklists/{checklist_id}/complete", response_model=ChecklistRead)
def complete_checklist_endpoint(
    checklist_id: int,
    db: Session = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    checklist = ChecklistService(db).mark_completed(checklist_id, utcnow(), actor_id)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return checklist


@router.get("/checklists/{checklist_id}/schedule", response_model=ChecklistSchedule)
def checklist_schedule_endpoint(
    checklist_id: int,
    count: int = Query(default=5, ge=1, le=50),
    db: Session = Depends(get_db),
):
    checklist = repository.get_checklist(db, checklist_id)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return ChecklistService(db).schedule(checklist, utcnow(), count)


# --- Reminders ---

@router.post("/reminders", response_model=ReminderRead, status_code=201)
def create_reminder_endpoint(
    payload: ReminderCreate,
    service: ComplianceReminderService = Depends(get_reminder_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        return service.create_reminder(payload, utcnow(), actor_id)
    except ReminderValidationError as e:
        raise _unprocessable(e)


@router.get("/reminders", response_model=List[ReminderRead])
def list_reminders_endpoint(
    branch_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    reminder_type: Optional[str] = None,
    delivery_channel: Optional[str] = None,
    assigned_user_id: Optional[int] = None,
    remind_from: Optional[datetime] = None,
    remind_to: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return repository.list_reminders(
        db,
        branch_id=branch_id,
        status=status,
        priority=priority,
        reminder_type=reminder_type,
        delivery_channel=delivery_channel,
        assigned_user_id=assigned_user_id,
        remind_from=to_utc_aware(remind_from),
        remind_to=to_utc_aware(remind_to),
        limit=limit,
    )


@router.get("/reminders/stats", response_model=ReminderStats)
def reminder_stats_endpoint(
    branch_id: Optional[int] = None,
    service: ComplianceReminderService = Depends(get_reminder_service),
):
    return ReminderStats(**service.stats(utcnow(), branch_id=branch_id))


@router.post("/reminders/process", response_model=ProcessResult)
def process_reminders_endpoint(
    dry_run: bool = False,
    service: ComplianceReminderService = Depends(get_reminder_service),
):
    """Run one dispatch pass now, outside the beat schedule."""
    return service.process_due_reminders(utcnow(), dry_run=dry_run, limit=settings.SCHEDULER_BATCH_SIZE)


@router.get("/reminders/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(reminder_id: int, db: Session = Depends(get_db)):
    reminder = repository.get_reminder(db, reminder_id)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@router.patch("/reminders/{reminder_id}", response_model=ReminderRead)
def update_reminder_endpoint(
    reminder_id: int,
    payload: ReminderUpdate,
    service: ComplianceReminderService = Depends(get_reminder_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        reminder = service.update_reminder(reminder_id, payload, utcnow(), actor_id)
    except ReminderValidationError as e:
        raise _unprocessable(e)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@router.post("/reminders/{reminder_id}/cancel", response_model=ReminderRead)
def cancel_reminder_endpoint(
    reminder_id: int,
    reason: Optional[str] = None,
    service: ComplianceReminderService = Depends(get_reminder_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        reminder = service.cancel(reminder_id, utcnow(), actor_id, reason=reason)
    except InvalidTransition as e:
        raise _conflict(e)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@router.post("/reminders/{reminder_id}/retry", response_model=ReminderRead)
def retry_reminder_endpoint(
    reminder_id: int,
    service: ComplianceReminderService = Depends(get_reminder_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        reminder = service.requeue(reminder_id, utcnow(), actor_id)
    except InvalidTransition as e:
        raise _conflict(e)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@router.get("/reminders/{reminder_id}/events", response_model=List[ReminderEventRead])
def reminder_events_endpoint(
    reminder_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    service: ComplianceReminderService = Depends(get_reminder_service),
):
    if not repository.get_reminder(service.db, reminder_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
    return service.events(reminder_id, limit=limit)
