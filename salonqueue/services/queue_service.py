"""
Queue operations: joining, wait estimates, public status, dashboards and
the daily reset.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salonqueue.models.appointment import Appointment, AppointmentStatus
from salonqueue.models.business import Business, Queue, QueueStatus, Service
from salonqueue.models.queue_entry import (
    QueueEntry,
    QueueEntryService,
    EntrySource,
    EntryStatus,
)
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection
from salonqueue.services.entry_state import get_entry
from salonqueue.services.notification_policy import Outbox, notify_joined
from salonqueue.services.ticketing import (
    QUEUE_TICKET_PREFIX,
    allocate_position,
    new_status_token,
    reset_counter,
    ticket_number,
)
from salonqueue.services.time_utils import (
    as_utc,
    business_today,
    can_complete_before_closing,
    is_business_open,
    minutes_between,
    minutes_since_midnight,
    now_utc,
)
from salonqueue.core.config import settings

logger = logging.getLogger(__name__)

ACTIVE_ENTRY_STATUSES = (EntryStatus.waiting, EntryStatus.serving)
DISPLAY_APPOINTMENT_STATUSES = (AppointmentStatus.confirmed, AppointmentStatus.checked_in, AppointmentStatus.in_service)


@dataclass
class JoinResult:
    entry: QueueEntry
    estimated_wait_minutes: int


@dataclass
class PublicStatus:
    status: str
    ticket_number: Optional[str]
    position: int
    position_ahead: int
    current_serving_ticket: Optional[str]
    estimated_wait_minutes: int
    queue_name: Optional[str] = None


@dataclass
class DisplayItem:
    id: int
    type: str
    display_token: str
    customer_name: str
    status: str
    time: datetime
    service_name: str


@dataclass
class DisplayBoard:
    business: Business
    entries: List[DisplayItem] = field(default_factory=list)


def get_queue(db: Session, queue_id: int) -> Union[Queue, Rejection]:
    queue = db.query(Queue).filter(Queue.id == queue_id).first()
    if queue is None:
        return rejections.not_found("queue", queue_id)
    return queue


def load_services(db: Session, business_id: int, service_ids: List[int]) -> Union[List[Service], Rejection]:
    """Active catalog services of the business, in the order asked for."""
    if not service_ids:
        return rejections.validation("services_required", "Select at least one service.")
    unique_ids = list(dict.fromkeys(service_ids))
    services = db.query(Service).filter(
        Service.id.in_(unique_ids),
        Service.business_id == business_id,
        Service.is_active.is_(True),
    ).all()
    if len(services) != len(unique_ids):
        return rejections.validation("invalid_service", "One or more selected services are not offered here.")
    by_id = {s.id: s for s in services}
    return [by_id[sid] for sid in unique_ids]


def _add_missing_tasks(entry: QueueEntry, services: List[Service]) -> int:
    """Snapshot a task row per service not already on the entry; returns how many were added."""
    present = {task.service_id for task in entry.tasks}
    added = 0
    for service in services:
        if service.id in present:
            continue
        entry.tasks.append(QueueEntryService(
            service_id=service.id,
            price=service.price or 0,
            duration_minutes=service.duration_minutes or 0,
        ))
        present.add(service.id)
        added += 1

    entry.total_duration_minutes = sum(task.duration_minutes or 0 for task in entry.tasks)
    entry.total_price = sum((Decimal(task.price or 0) for task in entry.tasks), Decimal("0"))
    return added


def compute_wait_ahead(
    db: Session,
    queue_id: int,
    day: date,
    now: datetime,
    before_position: Optional[int] = None,
) -> int:
    """
    Minutes of work queued ahead: the full duration of every waiting entry
    (in front of before_position, when given) plus what is left of each
    visit being served.
    """
    waiting = db.query(QueueEntry).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
        QueueEntry.status == EntryStatus.waiting,
    )
    if before_position is not None:
        waiting = waiting.filter(QueueEntry.position < before_position)
    total = sum(e.total_duration_minutes or 0 for e in waiting.all())

    serving = db.query(QueueEntry).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
        QueueEntry.status == EntryStatus.serving,
    ).all()
    for entry in serving:
        if entry.estimated_end_at is not None:
            total += max(0, minutes_between(now, entry.estimated_end_at))
        else:
            total += entry.total_duration_minutes or 0
    return total


def join_queue(
    db: Session,
    queue_id: int,
    outbox: Outbox,
    service_ids: Optional[List[int]] = None,
    customer_name: Optional[str] = None,
    phone: Optional[str] = None,
    user_id: Optional[str] = None,
    entry_source: str = EntrySource.online.value,
    now: Optional[datetime] = None,
) -> Union[JoinResult, Rejection]:
    """
    Admit a customer to today's queue.

    Order: queue and business checks, closing-time admission, then the
    position allocation, so a refused join never burns a position.
    """
    now = now or now_utc()
    queue = get_queue(db, queue_id)
    if rejections.is_rejection(queue):
        return queue
    if queue.status != QueueStatus.open:
        return rejections.conflict("queue_not_open", f"{queue.name} is not accepting guests right now.", retryable=False)
    if not customer_name and not user_id:
        return rejections.validation("customer_required", "A customer name is required to join.")

    if not service_ids:
        service_ids = [queue.service_id] if queue.service_id else []
    if not service_ids:
        return rejections.validation("services_required", "Select at least one service.")

    business = queue.business
    services = load_services(db, business.id, service_ids)
    if rejections.is_rejection(services):
        return services

    opening = is_business_open(business, now)
    if not opening.is_open:
        return rejections.capacity("business_closed", opening.message)

    day = business_today(now)
    duration = sum(s.duration_minutes or 0 for s in services)
    wait_ahead = compute_wait_ahead(db, queue.id, day, now)
    decision = can_complete_before_closing(
        business.close_time or settings.default_close_time,
        minutes_since_midnight(now),
        wait_ahead,
        duration,
        business.closing_buffer_minutes,
    )
    if not decision.can_join:
        logger.info(f"[Queue] Join refused for queue {queue.id}: finish {decision.finish_time_str} "
                    f"past {decision.closing_time_str} minus buffer")
        return rejections.capacity("fully_booked", decision.message)

    position = allocate_position(db, queue.id, day)
    if rejections.is_rejection(position):
        return position

    entry = QueueEntry(
        queue_id=queue.id,
        business_id=business.id,
        user_id=user_id,
        customer_name=customer_name or "Guest",
        phone=phone,
        status=EntryStatus.waiting,
        position=position,
        ticket_number=ticket_number(QUEUE_TICKET_PREFIX, position),
        entry_date=day,
        status_token=new_status_token(),
        entry_source=entry_source,
        joined_at=now,
    )
    _add_missing_tasks(entry, services)

    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError as e:
        logger.error(f"[Queue] Position {position} already taken in queue {queue.id} on {day}: {e}")
        return rejections.conflict("position_conflict", "Someone joined at the same moment. Please try again.")

    notify_joined(entry, outbox)
    db.flush()
    logger.info(f"[Queue] {entry.customer_name} joined queue {queue.id} as {entry.ticket_number}, "
                f"~{wait_ahead} min wait")
    return JoinResult(entry=entry, estimated_wait_minutes=wait_ahead)


def ensure_entry_tasks(db: Session, entry_id: int, service_ids: List[int]) -> Union[QueueEntry, Rejection]:
    """Idempotent: re-running with the same services adds nothing."""
    entry = get_entry(db, entry_id)
    if rejections.is_rejection(entry):
        return entry
    if entry.is_terminal:
        return rejections.conflict(
            "entry_terminal",
            f"Ticket {entry.ticket_number} is already {entry.status.value}.",
            retryable=False,
        )
    if not service_ids:
        return rejections.validation("services_required", "Select at least one service.")

    services = load_services(db, entry.business_id, service_ids)
    if rejections.is_rejection(services):
        return services

    added = _add_missing_tasks(entry, services)
    db.flush()
    if added:
        logger.info(f"[Queue] Added {added} task row(s) to ticket {entry.ticket_number}")
    return entry


def get_public_status(db: Session, status_token: str, now: Optional[datetime] = None) -> Union[PublicStatus, Rejection]:
    now = now or now_utc()
    entry = db.query(QueueEntry).filter(QueueEntry.status_token == status_token).first()
    if entry is None:
        return rejections.not_found("ticket", "for this link")

    serving = db.query(QueueEntry).filter(
        QueueEntry.queue_id == entry.queue_id,
        QueueEntry.entry_date == entry.entry_date,
        QueueEntry.status == EntryStatus.serving,
    ).order_by(QueueEntry.position).first()

    position_ahead = 0
    wait = 0
    if entry.status == EntryStatus.waiting:
        position_ahead = db.query(QueueEntry).filter(
            QueueEntry.queue_id == entry.queue_id,
            QueueEntry.entry_date == entry.entry_date,
            QueueEntry.status == EntryStatus.waiting,
            QueueEntry.position < entry.position,
        ).count()
        wait = compute_wait_ahead(db, entry.queue_id, entry.entry_date, now, before_position=entry.position)

    return PublicStatus(
        status=entry.status.value,
        ticket_number=entry.ticket_number,
        position=entry.position,
        position_ahead=position_ahead,
        current_serving_ticket=serving.ticket_number if serving else None,
        estimated_wait_minutes=wait,
        queue_name=entry.queue.name if entry.queue else None,
    )


def reset_day(db: Session, queue_id: int, day: Optional[date] = None, now: Optional[datetime] = None) -> Union[int, Rejection]:
    """Hard-delete a queue's entries for one day and restart its numbering at 1."""
    queue = get_queue(db, queue_id)
    if rejections.is_rejection(queue):
        return queue
    day = day or business_today(now)

    entry_ids = [row[0] for row in db.query(QueueEntry.id).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
    ).all()]
    if entry_ids:
        db.query(QueueEntryService).filter(
            QueueEntryService.queue_entry_id.in_(entry_ids)
        ).delete(synchronize_session="fetch")
    deleted = db.query(QueueEntry).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
    ).delete(synchronize_session="fetch")
    reset_counter(db, queue_id, day)
    db.flush()

    logger.info(f"[Queue] Reset queue {queue_id} for {day}: {deleted} entries removed")
    return deleted


def get_today_queue(db: Session, queue_id: int, now: Optional[datetime] = None) -> Union[List[QueueEntry], Rejection]:
    queue = get_queue(db, queue_id)
    if rejections.is_rejection(queue):
        return queue
    return db.query(QueueEntry).options(
        selectinload(QueueEntry.tasks)
    ).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == business_today(now),
        QueueEntry.status.in_((EntryStatus.waiting, EntryStatus.serving, EntryStatus.skipped)),
    ).order_by(QueueEntry.position).all()


def _service_names(lines) -> str:
    names = [line.service.name for line in lines if getattr(line, "service", None) is not None]
    return ", ".join(names)


def get_display_data(db: Session, slug: str, now: Optional[datetime] = None) -> Union[DisplayBoard, Rejection]:
    """
    Public "up next" board: today's waiting and serving tickets plus
    confirmed appointments, ordered by join or start time.
    """
    business = db.query(Business).filter(Business.slug == slug).first()
    if business is None:
        return rejections.not_found("business", slug)
    day = business_today(now)

    entries = db.query(QueueEntry).options(
        selectinload(QueueEntry.tasks).selectinload(QueueEntryService.service)
    ).filter(
        QueueEntry.business_id == business.id,
        QueueEntry.entry_date == day,
        QueueEntry.status.in_(ACTIVE_ENTRY_STATUSES),
    ).order_by(QueueEntry.position).all()

    # Checked-in appointments already show up through their queue entry
    appointments = db.query(Appointment).filter(
        Appointment.business_id == business.id,
        Appointment.appointment_date == day,
        Appointment.status.in_(DISPLAY_APPOINTMENT_STATUSES),
        ~Appointment.queue_entry.has(),
    ).all()

    items = [
        DisplayItem(
            id=e.id,
            type="queue",
            display_token=e.ticket_number,
            customer_name=e.customer_name,
            status=e.status.value,
            time=as_utc(e.joined_at),
            service_name=_service_names(e.tasks) or (e.queue.name if e.queue else "Walk-in"),
        )
        for e in entries
    ]
    for a in appointments:
        items.append(DisplayItem(
            id=a.id,
            type="appointment",
            display_token="BOOKED",
            customer_name=a.guest_name or "Premium Guest",
            status="serving" if a.status == AppointmentStatus.in_service else "waiting",
            time=as_utc(a.expected_start_at or a.start_time),
            service_name=_service_names(a.services) or "Service",
        ))

    items.sort(key=lambda item: item.time)
    return DisplayBoard(business=business, entries=items)
