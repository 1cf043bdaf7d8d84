"""
Queue entry state machine.

    waiting -> serving | skipped | cancelled | no_show
    serving -> completed | cancelled | no_show
    skipped -> waiting | serving | cancelled | no_show

completed, cancelled and no_show are terminal. Every operation returns the
entry on success or a Rejection; nothing is committed here.
"""
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Session

from salonqueue.models.queue_entry import QueueEntry, EntryStatus, TaskStatus
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection
from salonqueue.services import provider_matcher
from salonqueue.services.appointment_sync import sync_appointment_from_entry
from salonqueue.services.delay_propagation import recompute_provider_delays
from salonqueue.services.notification_policy import (
    Outbox,
    notify_completed,
    notify_no_show,
    notify_serving_started,
    refresh_waiting_list,
)
from salonqueue.services.time_utils import add_minutes, business_today, minutes_between, now_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EntryStatus.waiting: {EntryStatus.serving, EntryStatus.skipped, EntryStatus.cancelled, EntryStatus.no_show},
    EntryStatus.serving: {EntryStatus.completed, EntryStatus.cancelled, EntryStatus.no_show},
    EntryStatus.skipped: {EntryStatus.waiting, EntryStatus.serving, EntryStatus.cancelled, EntryStatus.no_show},
}


def get_entry(db: Session, entry_id: int) -> Union[QueueEntry, Rejection]:
    entry = db.query(QueueEntry).filter(QueueEntry.id == entry_id).first()
    if entry is None:
        return rejections.not_found("queue_entry", entry_id)
    return entry


def _guard(entry: QueueEntry, target: EntryStatus) -> Optional[Rejection]:
    if entry.is_terminal:
        return rejections.conflict(
            "entry_terminal",
            f"Ticket {entry.ticket_number} is already {entry.status.value}.",
            retryable=False,
        )
    if target not in ALLOWED_TRANSITIONS.get(entry.status, set()):
        return rejections.validation(
            "invalid_transition",
            f"Cannot move ticket {entry.ticket_number} from {entry.status.value} to {target.value}.",
        )
    return None


def _replan_providers(db: Session, entry: QueueEntry, provider_ids, now: datetime, outbox: Outbox) -> None:
    """Re-plan each provider's day from the end of whatever work they still hold."""
    for provider_id in provider_ids:
        free_at = provider_matcher.provider_free_at(db, provider_id, entry.business_id, entry.entry_date, now)
        recompute_provider_delays(db, provider_id, entry.business_id, free_at, outbox)


def _release_providers(db: Session, entry: QueueEntry, was_serving: bool, now: datetime, outbox: Outbox) -> None:
    """
    Drop every provider binding the entry still holds. Only providers the
    entry was actually occupying (serving it or running one of its tasks)
    get their day re-planned; a mere pre-assignment frees no time.
    """
    held = set()
    if entry.assigned_provider_id is not None:
        if was_serving:
            held.add(entry.assigned_provider_id)
        entry.assigned_provider_id = None
    for task in entry.tasks:
        if task.task_status != TaskStatus.done and task.assigned_provider_id is not None:
            if task.task_status == TaskStatus.in_progress:
                held.add(task.assigned_provider_id)
            task.assigned_provider_id = None
    db.flush()

    _replan_providers(db, entry, held, now, outbox)


def mark_serving(db: Session, entry: QueueEntry, now: datetime, outbox: Outbox) -> None:
    """Side effects shared by an explicit call to the counter and a first task starting."""
    entry.status = EntryStatus.serving
    if entry.served_at is None:
        entry.served_at = now
    entry.estimated_end_at = add_minutes(now, entry.total_duration_minutes or 0)
    db.flush()

    notify_serving_started(entry, outbox)
    refresh_waiting_list(db, entry.queue_id, entry.entry_date, outbox)
    sync_appointment_from_entry(db, entry, now)
    logger.info(f"[Queue] Ticket {entry.ticket_number} is now serving")


def start_serving(db: Session, entry: QueueEntry, now: datetime, outbox: Outbox,
                  provider_id: Optional[int] = None) -> Union[QueueEntry, Rejection]:
    if not entry.ticket_number:
        return rejections.validation("no_ticket", "Only guests holding a ticket can be served.")
    if entry.entry_date != business_today(now):
        return rejections.validation("not_today", f"Ticket {entry.ticket_number} was issued for {entry.entry_date}, not today.")

    # Provider lock first, before any timestamps are written
    chosen = provider_matcher.find_provider(
        db,
        entry.business_id,
        entry.entry_date,
        [task.service_id for task in entry.tasks],
        preassigned_provider_id=provider_id or entry.assigned_provider_id,
        exclude_entry_id=entry.id,
        now=now,
    )
    if rejections.is_rejection(chosen):
        return chosen

    entry.assigned_provider_id = chosen
    for task in entry.tasks:
        if task.assigned_provider_id is None and task.task_status != TaskStatus.done:
            task.assigned_provider_id = chosen

    mark_serving(db, entry, now, outbox)
    recompute_provider_delays(db, chosen, entry.business_id, entry.estimated_end_at, outbox)
    return entry


def complete_entry(db: Session, entry: QueueEntry, now: datetime, outbox: Outbox) -> Union[QueueEntry, Rejection]:
    rejection = _guard(entry, EntryStatus.completed)
    if rejection:
        return rejection
    if entry.service_started_at is None:
        return rejections.validation(
            "service_not_started",
            "Start at least one service before completing the visit.",
        )

    providers = set()
    if entry.assigned_provider_id is not None:
        providers.add(entry.assigned_provider_id)

    # Close out anything still running so no provider is left busy
    for task in entry.tasks:
        if task.task_status == TaskStatus.in_progress:
            task.task_status = TaskStatus.done
            task.completed_at = now
            task.actual_minutes = minutes_between(task.started_at, now)
            task.delay_minutes = max(0, task.actual_minutes - (task.duration_minutes or 0))
            if task.assigned_provider_id is not None:
                providers.add(task.assigned_provider_id)

    entry.status = EntryStatus.completed
    entry.completed_at = now
    entry.actual_duration_minutes = minutes_between(entry.service_started_at, now)
    if entry.estimated_end_at is not None:
        entry.delay_minutes = max(0, minutes_between(entry.estimated_end_at, now))
    else:
        entry.delay_minutes = 0
    db.flush()

    notify_completed(entry, outbox)
    refresh_waiting_list(db, entry.queue_id, entry.entry_date, outbox)
    sync_appointment_from_entry(db, entry, now)
    _replan_providers(db, entry, providers, now, outbox)

    logger.info(f"[Queue] Ticket {entry.ticket_number} completed in {entry.actual_duration_minutes} min "
                f"(delay {entry.delay_minutes} min)")
    return entry


def skip_entry(db: Session, entry_id: int, outbox: Outbox, now: Optional[datetime] = None) -> Union[QueueEntry, Rejection]:
    """
    Swap the entry's position with the next waiting entry behind it and mark
    it skipped. With nobody behind, only the status changes.
    """
    entry = get_entry(db, entry_id)
    if rejections.is_rejection(entry):
        return entry
    if entry.status != EntryStatus.waiting:
        if entry.is_terminal:
            return _guard(entry, EntryStatus.skipped)
        return rejections.validation("not_waiting", "Only a waiting guest can be skipped.")

    behind = db.query(QueueEntry).filter(
        QueueEntry.queue_id == entry.queue_id,
        QueueEntry.entry_date == entry.entry_date,
        QueueEntry.status == EntryStatus.waiting,
        QueueEntry.position > entry.position,
    ).order_by(QueueEntry.position).with_for_update().first()

    if behind is not None:
        mine, theirs = entry.position, behind.position
        # Park on a negative slot so the unique (queue, day, position) key holds throughout
        entry.position = -mine
        db.flush()
        behind.position = mine
        db.flush()
        entry.position = theirs
        logger.info(f"[Queue] Ticket {entry.ticket_number} swapped {mine} <-> {theirs} with {behind.ticket_number}")

    entry.status = EntryStatus.skipped
    db.flush()

    refresh_waiting_list(db, entry.queue_id, entry.entry_date, outbox)
    return entry


def mark_no_show(db: Session, entry_id: int, outbox: Outbox, now: Optional[datetime] = None) -> Union[QueueEntry, Rejection]:
    return transition_entry(db, entry_id, EntryStatus.no_show.value, outbox, now=now)


def _close(db: Session, entry: QueueEntry, target: EntryStatus, now: datetime, outbox: Outbox) -> QueueEntry:
    was_serving = entry.status == EntryStatus.serving
    entry.status = target
    _release_providers(db, entry, was_serving, now, outbox)

    if target == EntryStatus.no_show:
        notify_no_show(entry, outbox)
    refresh_waiting_list(db, entry.queue_id, entry.entry_date, outbox)
    sync_appointment_from_entry(db, entry, now)
    logger.info(f"[Queue] Ticket {entry.ticket_number} closed as {target.value}")
    return entry


def transition_entry(
    db: Session,
    entry_id: int,
    target_status: str,
    outbox: Outbox,
    now: Optional[datetime] = None,
    provider_id: Optional[int] = None,
) -> Union[QueueEntry, Rejection]:
    """
    Drive one entry to target_status.

    Args:
        provider_id: Optional expert to bind when moving to serving;
            otherwise the pre-assigned expert or the first free capable one.
    """
    now = now or now_utc()
    try:
        target = EntryStatus(target_status)
    except ValueError:
        return rejections.validation("invalid_status", f"Unknown status '{target_status}'.")

    entry = get_entry(db, entry_id)
    if rejections.is_rejection(entry):
        return entry

    rejection = _guard(entry, target)
    if rejection:
        return rejection

    if target == EntryStatus.serving:
        return start_serving(db, entry, now, outbox, provider_id)
    if target == EntryStatus.completed:
        return complete_entry(db, entry, now, outbox)
    if target == EntryStatus.skipped:
        return skip_entry(db, entry.id, outbox, now)
    if target in (EntryStatus.cancelled, EntryStatus.no_show):
        return _close(db, entry, target, now, outbox)

    # skipped -> waiting: back in line at the position it already holds
    entry.status = EntryStatus.waiting
    db.flush()
    refresh_waiting_list(db, entry.queue_id, entry.entry_date, outbox)
    logger.info(f"[Queue] Ticket {entry.ticket_number} requeued at position {entry.position}")
    return entry


def assign_entry_provider(
    db: Session,
    entry_id: int,
    provider_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Union[QueueEntry, Rejection]:
    """
    Bind an expert to the whole visit. The expert also takes every
    unfinished service line that has nobody yet.
    """
    now = now or now_utc()
    entry = get_entry(db, entry_id)
    if rejections.is_rejection(entry):
        return entry
    if entry.is_terminal:
        return _guard(entry, EntryStatus.serving)

    chosen = provider_matcher.find_provider(
        db,
        entry.business_id,
        entry.entry_date,
        [task.service_id for task in entry.tasks],
        preassigned_provider_id=provider_id,
        exclude_entry_id=entry.id,
        now=now,
    )
    if rejections.is_rejection(chosen):
        return chosen

    entry.assigned_provider_id = chosen
    for task in entry.tasks:
        if task.assigned_provider_id is None and task.task_status != TaskStatus.done:
            task.assigned_provider_id = chosen
    db.flush()

    logger.info(f"[Queue] Provider {chosen} assigned to ticket {entry.ticket_number}")
    return entry
