"""
Queue Router
Staff endpoints for running today's queue: joins at the counter, status
changes, expert assignment and per-service timing.
"""
from fastapi import APIRouter, Depends, BackgroundTasks
from sqlalchemy.orm import Session
from typing import Optional
import logging

from salonqueue.core.database import get_db
from salonqueue.core.auth import get_current_caller
from salonqueue.schemas.queue import (
    QueueJoin,
    EntryStatusUpdate,
    ProviderAssign,
    EntryTasksEnsure,
    EntryResponse,
    TaskResponse,
    JoinResponse,
    TodayQueueResponse,
    ResetResponse,
)
from salonqueue.services import entry_state, queue_service, task_state
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.notification_service import schedule_delivery
from salonqueue.services.rejections import commit_or_raise, raise_for_rejection
from salonqueue.services.time_utils import business_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queues", tags=["Queues"])


@router.get("/{queue_id}/today", response_model=TodayQueueResponse)
def get_today_queue(
    queue_id: int,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """
    Today's waiting, serving and skipped entries, ordered by position.
    """
    entries = raise_for_rejection(queue_service.get_today_queue(db, queue_id))
    return TodayQueueResponse(
        queue_id=queue_id,
        entry_date=business_today(),
        total=len(entries),
        entries=[EntryResponse.model_validate(e) for e in entries],
    )


@router.post("/{queue_id}/join", response_model=JoinResponse, status_code=201)
def join_queue(
    queue_id: int,
    payload: QueueJoin,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """
    Add a customer at the counter. Signed-in customers join through the
    public endpoint instead.
    """
    outbox = Outbox()
    result = commit_or_raise(db, queue_service.join_queue(
        db,
        queue_id,
        outbox,
        service_ids=payload.service_ids,
        customer_name=payload.customer_name,
        phone=payload.phone,
        entry_source=payload.entry_source,
    ))
    schedule_delivery(background_tasks, outbox)

    return JoinResponse(
        message=f"Joined queue as {result.entry.ticket_number}",
        entry=EntryResponse.model_validate(result.entry),
        status_token=result.entry.status_token,
        estimated_wait_minutes=result.estimated_wait_minutes,
    )


@router.post("/{queue_id}/reset", response_model=ResetResponse)
def reset_queue(
    queue_id: int,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """Delete today's entries for the queue and restart numbering."""
    logger.warning(f"[Queue] Caller {caller_id} resetting queue {queue_id}")
    deleted = commit_or_raise(db, queue_service.reset_day(db, queue_id))
    return ResetResponse(message="Queue reset for today", deleted=deleted)


@router.patch("/entries/{entry_id}/status", response_model=EntryResponse)
def update_entry_status(
    entry_id: int,
    payload: EntryStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """
    Move an entry to a new status (serving, completed, skipped, cancelled,
    no_show, or back to waiting from skipped).
    """
    logger.info(f"[Queue] Caller {caller_id} moving entry {entry_id} to {payload.status}")
    outbox = Outbox()
    entry = commit_or_raise(db, entry_state.transition_entry(
        db, entry_id, payload.status, outbox, provider_id=payload.provider_id
    ))
    schedule_delivery(background_tasks, outbox)
    return entry


@router.post("/entries/{entry_id}/skip", response_model=EntryResponse)
def skip_entry(
    entry_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    outbox = Outbox()
    entry = commit_or_raise(db, entry_state.skip_entry(db, entry_id, outbox))
    schedule_delivery(background_tasks, outbox)
    return entry


@router.post("/entries/{entry_id}/no-show", response_model=EntryResponse)
def mark_no_show(
    entry_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    outbox = Outbox()
    entry = commit_or_raise(db, entry_state.mark_no_show(db, entry_id, outbox))
    schedule_delivery(background_tasks, outbox)
    return entry


@router.post("/entries/{entry_id}/assign-provider", response_model=EntryResponse)
def assign_entry_provider(
    entry_id: int,
    payload: Optional[ProviderAssign] = None,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """Bind an expert to the visit; auto-selects when provider_id is omitted."""
    provider_id = payload.provider_id if payload else None
    return commit_or_raise(db, entry_state.assign_entry_provider(db, entry_id, provider_id))


@router.post("/entries/{entry_id}/tasks", response_model=EntryResponse)
def ensure_entry_tasks(
    entry_id: int,
    payload: EntryTasksEnsure,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """Create any missing service lines for the entry. Safe to repeat."""
    return commit_or_raise(db, queue_service.ensure_entry_tasks(db, entry_id, payload.service_ids))


@router.post("/tasks/{task_id}/assign-provider", response_model=TaskResponse)
def assign_task_provider(
    task_id: int,
    payload: Optional[ProviderAssign] = None,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    provider_id = payload.provider_id if payload else None
    return commit_or_raise(db, task_state.assign_task_provider(db, task_id, provider_id))


@router.post("/tasks/{task_id}/start", response_model=TaskResponse)
def start_task(
    task_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    outbox = Outbox()
    task = commit_or_raise(db, task_state.start_task(db, task_id, outbox))
    schedule_delivery(background_tasks, outbox)
    return task


@router.post("/tasks/{task_id}/complete", response_model=TaskResponse)
def complete_task(
    task_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """Finish one service; the visit completes itself when this was the last one."""
    outbox = Outbox()
    task = commit_or_raise(db, task_state.complete_task(db, task_id, outbox))
    schedule_delivery(background_tasks, outbox)
    return task
