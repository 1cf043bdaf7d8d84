"""
One-way mirror from a queue entry to the appointment it was materialized from.

The entry/task pair is the canonical state machine; the appointment only
follows it. Mirroring is idempotent and runs in a savepoint, and a failure
is logged without failing the entry transition that triggered it.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salonqueue.models.appointment import Appointment, AppointmentStatus
from salonqueue.models.queue_entry import QueueEntry, EntryStatus

logger = logging.getLogger(__name__)

ENTRY_TO_APPOINTMENT = {
    EntryStatus.serving: AppointmentStatus.in_service,
    EntryStatus.completed: AppointmentStatus.completed,
    EntryStatus.cancelled: AppointmentStatus.cancelled,
    EntryStatus.no_show: AppointmentStatus.no_show,
}


def sync_appointment_from_entry(db: Session, entry: QueueEntry, now: datetime) -> Optional[AppointmentStatus]:
    """
    Returns the status written, or None when nothing changed.
    """
    if entry.appointment_id is None:
        return None

    target = ENTRY_TO_APPOINTMENT.get(entry.status)
    if target is None:
        return None

    try:
        with db.begin_nested():
            appointment = db.query(Appointment).filter(Appointment.id == entry.appointment_id).first()
            if appointment is None:
                logger.warning(f"[Appointment] Entry {entry.id} links missing appointment {entry.appointment_id}")
                return None
            if appointment.status == target or appointment.is_terminal:
                return None

            appointment.status = target
            if target == AppointmentStatus.completed:
                appointment.completed_at = now
            db.flush()
    except SQLAlchemyError as e:
        logger.error(f"[Appointment] Failed to mirror entry {entry.id} onto appointment {entry.appointment_id}: {e}",
                     exc_info=True)
        return None

    logger.info(f"[Appointment] Appointment {entry.appointment_id} -> {target.value} (from entry {entry.id})")
    return target
