"""
Task (service line) state machine: pending -> in_progress -> done.

A task only reaches done through in_progress, and an expert runs one task
at a time per business day. Starting the first task of a visit puts the
visit into serving; finishing the last one completes it.
"""
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Session

from salonqueue.models.queue_entry import QueueEntryService, EntryStatus, TaskStatus
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection
from salonqueue.services import provider_matcher
from salonqueue.services.delay_propagation import recompute_provider_delays
from salonqueue.services.entry_state import complete_entry, mark_serving
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.time_utils import add_minutes, business_today, minutes_between, now_utc

logger = logging.getLogger(__name__)


def get_task(db: Session, task_id: int) -> Union[QueueEntryService, Rejection]:
    task = db.query(QueueEntryService).filter(QueueEntryService.id == task_id).first()
    if task is None:
        return rejections.not_found("task", task_id)
    return task


def _parent_guard(task: QueueEntryService) -> Optional[Rejection]:
    entry = task.entry
    if entry.is_terminal:
        return rejections.conflict(
            "entry_terminal",
            f"Ticket {entry.ticket_number} is already {entry.status.value}.",
            retryable=False,
        )
    return None


def assign_task_provider(
    db: Session,
    task_id: int,
    provider_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Union[QueueEntryService, Rejection]:
    """
    Bind an expert to one service line. Leave and roster membership are
    checked here; whether the expert is free is checked when the task starts.
    """
    now = now or now_utc()
    task = get_task(db, task_id)
    if rejections.is_rejection(task):
        return task
    if task.task_status == TaskStatus.done:
        return rejections.conflict("task_done", "This service is already finished.", retryable=False)
    rejection = _parent_guard(task)
    if rejection:
        return rejection

    entry = task.entry
    if provider_id is not None:
        rejection = provider_matcher.check_provider(
            db, provider_id, entry.business_id, entry.entry_date, now=now, check_busy=False
        )
        if rejection:
            return rejection
        chosen = provider_id
    else:
        chosen = provider_matcher.find_provider(
            db, entry.business_id, entry.entry_date, [task.service_id],
            exclude_entry_id=entry.id, now=now,
        )
        if rejections.is_rejection(chosen):
            return chosen

    if task.task_status == TaskStatus.in_progress and task.assigned_provider_id != chosen:
        return rejections.conflict(
            "task_running",
            "This service is already in progress with another expert.",
            retryable=False,
        )

    task.assigned_provider_id = chosen
    db.flush()
    logger.info(f"[Task] Provider {chosen} assigned to task {task.id} (ticket {entry.ticket_number})")
    return task


def start_task(db: Session, task_id: int, outbox: Outbox, now: Optional[datetime] = None) -> Union[QueueEntryService, Rejection]:
    now = now or now_utc()
    task = get_task(db, task_id)
    if rejections.is_rejection(task):
        return task

    if task.task_status == TaskStatus.in_progress:
        return rejections.conflict("task_already_started", "This service has already started.", retryable=False)
    if task.task_status == TaskStatus.done:
        return rejections.conflict("task_done", "This service is already finished.", retryable=False)
    rejection = _parent_guard(task)
    if rejection:
        return rejection

    entry = task.entry
    if entry.entry_date != business_today(now):
        return rejections.validation("not_today", f"Ticket {entry.ticket_number} was issued for {entry.entry_date}, not today.")
    if task.assigned_provider_id is None:
        return rejections.validation("provider_required", "Assign an expert before starting this service.")

    # The visit's own entry-level binding does not count against its expert
    rejection = provider_matcher.check_provider(
        db,
        task.assigned_provider_id,
        entry.business_id,
        entry.entry_date,
        exclude_entry_id=entry.id,
        exclude_task_id=task.id,
        now=now,
    )
    if rejection:
        logger.info(f"[Task] Start of task {task.id} refused: {rejection.reason}")
        return rejection

    # A first start puts the visit into serving, which holds its entry-level expert too
    entering_service = entry.status in (EntryStatus.waiting, EntryStatus.skipped)
    if entering_service and entry.assigned_provider_id not in (None, task.assigned_provider_id):
        rejection = provider_matcher.check_provider(
            db,
            entry.assigned_provider_id,
            entry.business_id,
            entry.entry_date,
            exclude_entry_id=entry.id,
            now=now,
        )
        if rejection:
            logger.info(f"[Task] Ticket {entry.ticket_number} rebound from provider {entry.assigned_provider_id} "
                        f"to {task.assigned_provider_id}: {rejection.reason}")
            entry.assigned_provider_id = task.assigned_provider_id

    task.task_status = TaskStatus.in_progress
    task.started_at = now
    task.estimated_end_at = add_minutes(now, task.duration_minutes or 0)
    if entry.service_started_at is None:
        entry.service_started_at = now
    db.flush()

    if entering_service:
        mark_serving(db, entry, now, outbox)

    recompute_provider_delays(db, task.assigned_provider_id, entry.business_id, task.estimated_end_at, outbox)
    logger.info(f"[Task] Task {task.id} started by provider {task.assigned_provider_id}, "
                f"due {task.estimated_end_at.isoformat()}")
    return task


def complete_task(db: Session, task_id: int, outbox: Outbox, now: Optional[datetime] = None) -> Union[QueueEntryService, Rejection]:
    now = now or now_utc()
    task = get_task(db, task_id)
    if rejections.is_rejection(task):
        return task

    if task.task_status == TaskStatus.done:
        return rejections.conflict("task_already_done", "This service is already finished.", retryable=False)
    if task.task_status != TaskStatus.in_progress or task.started_at is None:
        return rejections.validation("task_not_started", "Start this service before marking it done.")
    rejection = _parent_guard(task)
    if rejection:
        return rejection

    task.task_status = TaskStatus.done
    task.completed_at = now
    task.actual_minutes = minutes_between(task.started_at, now)
    task.delay_minutes = max(0, task.actual_minutes - (task.duration_minutes or 0))
    db.flush()
    logger.info(f"[Task] Task {task.id} done in {task.actual_minutes} min (delay {task.delay_minutes} min)")

    entry = task.entry
    if task.assigned_provider_id is not None:
        recompute_provider_delays(db, task.assigned_provider_id, entry.business_id, now, outbox)

    if entry.status == EntryStatus.serving and all(t.task_status == TaskStatus.done for t in entry.tasks):
        result = complete_entry(db, entry, now, outbox)
        if rejections.is_rejection(result):
            return result
        logger.info(f"[Task] All services done, ticket {entry.ticket_number} auto-completed")

    return task
