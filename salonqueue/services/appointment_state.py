"""
Appointment booking and lifecycle.

    scheduled  -> confirmed | checked_in | cancelled | no_show
    confirmed  -> checked_in | cancelled | no_show
    checked_in -> in_service | cancelled | no_show
    in_service -> completed | cancelled | no_show

Once an appointment has a queue entry (created on check-in), its later
transitions are driven through the entry state machine and mirrored back.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salonqueue.models.appointment import Appointment, AppointmentService, AppointmentStatus
from salonqueue.models.business import Business, Queue, QueueStatus
from salonqueue.models.queue_entry import QueueEntry, QueueEntryService, EntrySource, EntryStatus
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection
from salonqueue.services import provider_matcher
from salonqueue.services.entry_state import transition_entry
from salonqueue.services.queue_service import load_services
from salonqueue.services.notification_policy import Outbox, notify_appointment_booked, notify_appointment_status
from salonqueue.services.ticketing import (
    APPOINTMENT_TICKET_PREFIX,
    allocate_position,
    new_status_token,
    ticket_number,
)
from salonqueue.services.time_utils import (
    add_minutes,
    as_utc,
    business_today,
    can_complete_before_closing,
    minutes_since_midnight,
    now_utc,
    parse_time_to_minutes,
    format_time_12,
)
from salonqueue.core.config import settings

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.scheduled: {AppointmentStatus.confirmed, AppointmentStatus.checked_in,
                                  AppointmentStatus.cancelled, AppointmentStatus.no_show},
    AppointmentStatus.confirmed: {AppointmentStatus.checked_in, AppointmentStatus.cancelled, AppointmentStatus.no_show},
    AppointmentStatus.checked_in: {AppointmentStatus.in_service, AppointmentStatus.cancelled, AppointmentStatus.no_show},
    AppointmentStatus.in_service: {AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show},
}

# Appointment targets that are reached by moving the linked entry
APPOINTMENT_TO_ENTRY = {
    AppointmentStatus.in_service: EntryStatus.serving,
    AppointmentStatus.completed: EntryStatus.completed,
    AppointmentStatus.cancelled: EntryStatus.cancelled,
    AppointmentStatus.no_show: EntryStatus.no_show,
}


def get_appointment(db: Session, appointment_id: int) -> Union[Appointment, Rejection]:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        return rejections.not_found("appointment", appointment_id)
    return appointment


def book_appointment(
    db: Session,
    business_id: int,
    service_ids: List[int],
    start_time: datetime,
    outbox: Outbox,
    provider_id: Optional[int] = None,
    user_id: Optional[str] = None,
    guest_name: Optional[str] = None,
    guest_phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Union[Appointment, Rejection]:
    """
    Book a timed slot. The slot must start in the future, not before
    opening, and finish before closing time minus the safety buffer.
    """
    now = now or now_utc()
    business = db.query(Business).filter(Business.id == business_id).first()
    if business is None:
        return rejections.not_found("business", business_id)
    if not user_id and not guest_name:
        return rejections.validation("customer_required", "A customer name is required to book.")

    services = load_services(db, business_id, service_ids)
    if rejections.is_rejection(services):
        return services

    start = as_utc(start_time)
    if start < now:
        return rejections.validation("start_in_past", "Cannot book an appointment in the past.")
    if business.is_closed:
        return rejections.capacity("business_closed", "The business is currently closed by the owner.")

    open_time = business.open_time or settings.default_open_time
    close_time = business.close_time or settings.default_close_time
    start_minute = minutes_since_midnight(start)
    if start_minute < parse_time_to_minutes(open_time):
        return rejections.validation(
            "before_opening",
            f"The business opens at {format_time_12(open_time)}. Please pick a later slot.",
        )

    duration = sum(s.duration_minutes or 0 for s in services)
    decision = can_complete_before_closing(
        close_time, start_minute, 0, duration, business.closing_buffer_minutes
    )
    if not decision.can_join:
        logger.info(f"[Appointment] Booking refused for business {business_id}: finish "
                    f"{decision.finish_time_str} past {decision.closing_time_str}")
        return rejections.capacity("fully_booked", decision.message)

    day = business_today(start)
    if provider_id is not None:
        # Future slot: the expert only has to be on the roster and not on leave that day
        rejection = provider_matcher.check_provider(db, provider_id, business_id, day, now=now, check_busy=False)
        if rejection:
            return rejection

    end = add_minutes(start, duration)
    appointment = Appointment(
        business_id=business_id,
        user_id=user_id,
        guest_name=guest_name,
        guest_phone=guest_phone,
        provider_id=provider_id,
        status=AppointmentStatus.scheduled,
        appointment_date=day,
        start_time=start,
        end_time=end,
        duration_minutes=duration,
        total_price=sum((Decimal(s.price or 0) for s in services), Decimal("0")),
        expected_start_at=start,
        expected_end_at=end,
    )
    for service in services:
        appointment.services.append(AppointmentService(
            service_id=service.id,
            price=service.price or 0,
            duration_minutes=service.duration_minutes or 0,
        ))
    db.add(appointment)
    db.flush()

    notify_appointment_booked(appointment, outbox)
    logger.info(f"[Appointment] Booked appointment {appointment.id} for business {business_id} at {start.isoformat()}")
    return appointment


def materialize_entry(db: Session, appointment: Appointment, now: datetime) -> Union[Optional[QueueEntry], Rejection]:
    """
    Put a checked-in appointment into today's queue, at most once.
    Returns None when the business does not want check-ins queued.
    """
    existing = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).first()
    if existing is not None:
        return existing

    business = db.query(Business).filter(Business.id == appointment.business_id).first()
    if business is None or not business.checkin_creates_entry:
        return None

    queue = db.query(Queue).filter(
        Queue.business_id == business.id,
        Queue.status == QueueStatus.open,
    ).order_by(Queue.id).first()
    if queue is None:
        logger.warning(f"[Appointment] Business {business.id} has no open queue; appointment {appointment.id} not queued")
        return None

    day = business_today(now)
    position = allocate_position(db, queue.id, day)
    if rejections.is_rejection(position):
        return position

    entry = QueueEntry(
        queue_id=queue.id,
        business_id=business.id,
        user_id=appointment.user_id,
        customer_name=appointment.guest_name or "Guest",
        phone=appointment.guest_phone,
        status=EntryStatus.waiting,
        position=position,
        ticket_number=ticket_number(APPOINTMENT_TICKET_PREFIX, position),
        entry_date=day,
        status_token=new_status_token(),
        entry_source=EntrySource.online.value,
        total_duration_minutes=appointment.duration_minutes or 0,
        total_price=appointment.total_price or 0,
        appointment_id=appointment.id,
        joined_at=now,
    )
    for line in appointment.services:
        entry.tasks.append(QueueEntryService(
            service_id=line.service_id,
            price=line.price,
            duration_minutes=line.duration_minutes,
            assigned_provider_id=appointment.provider_id,
        ))

    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError:
        logger.warning(f"[Appointment] Entry for appointment {appointment.id} raced with another check-in")
        return rejections.conflict("checkin_conflict", "This appointment is already being checked in. Please retry.")

    logger.info(f"[Appointment] Appointment {appointment.id} queued as {entry.ticket_number} in queue {queue.id}")
    return entry


def transition_appointment(
    db: Session,
    appointment_id: int,
    target_status: str,
    outbox: Outbox,
    now: Optional[datetime] = None,
) -> Union[Appointment, Rejection]:
    now = now or now_utc()
    try:
        target = AppointmentStatus(target_status)
    except ValueError:
        return rejections.validation("invalid_status", f"Unknown status '{target_status}'.")

    appointment = get_appointment(db, appointment_id)
    if rejections.is_rejection(appointment):
        return appointment
    if appointment.is_terminal:
        return rejections.conflict(
            "appointment_terminal",
            f"Appointment {appointment.id} is already {appointment.status.value}.",
            retryable=False,
        )
    if target not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        return rejections.validation(
            "invalid_transition",
            f"Cannot move appointment from {appointment.status.value} to {target.value}.",
        )

    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).first()
    if entry is not None and target in APPOINTMENT_TO_ENTRY and not entry.is_terminal:
        provider_id = appointment.provider_id if target == AppointmentStatus.in_service else None
        result = transition_entry(db, entry.id, APPOINTMENT_TO_ENTRY[target].value, outbox, now=now,
                                  provider_id=provider_id)
        if rejections.is_rejection(result):
            return result
        db.refresh(appointment)
        notify_appointment_status(appointment, outbox)
        return appointment

    appointment.status = target
    if target == AppointmentStatus.checked_in:
        appointment.checked_in_at = now
        materialized = materialize_entry(db, appointment, now)
        if rejections.is_rejection(materialized):
            return materialized
    elif target == AppointmentStatus.completed:
        appointment.completed_at = now
    db.flush()

    notify_appointment_status(appointment, outbox)
    logger.info(f"[Appointment] Appointment {appointment.id} -> {target.value}")
    return appointment
