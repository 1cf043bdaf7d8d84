"""
Delay propagation across a provider's remaining appointments.

Whenever a provider's estimated free time moves (a task starts, a task or
visit finishes), the provider's upcoming appointments for that day are
walked in start order with a rolling "free at" timestamp. Each appointment
absorbs the overrun, and its own expected end becomes the starting point
for the next one.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from salonqueue.core.config import settings
from salonqueue.models.appointment import Appointment, UPCOMING_APPOINTMENT_STATUSES
from salonqueue.services.notification_policy import Outbox, notify_delay
from salonqueue.services.time_utils import as_utc, add_minutes, business_today, minutes_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelayUpdate:
    appointment_id: int
    delay_minutes: int
    expected_start_at: datetime
    expected_end_at: datetime
    is_delayed: bool
    newly_delayed: bool


def recompute_provider_delays(
    db: Session,
    provider_id: int,
    business_id: int,
    new_free_at: datetime,
    outbox: Outbox,
    day: Optional[date] = None,
) -> List[DelayUpdate]:
    """
    Recompute expected start/end and delay for the provider's upcoming
    appointments on the day of new_free_at.

    A delay alert is queued only when an appointment crosses into the
    delayed state; one that is already delayed is updated silently.
    """
    rolling = as_utc(new_free_at)
    day = day or business_today(rolling)

    appointments = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.business_id == business_id,
        Appointment.appointment_date == day,
        Appointment.status.in_(UPCOMING_APPOINTMENT_STATUSES),
    ).order_by(Appointment.start_time, Appointment.id).all()

    updates = []
    for appointment in appointments:
        scheduled_start = as_utc(appointment.start_time)
        delay = max(0, minutes_between(scheduled_start, rolling))
        expected_start = add_minutes(scheduled_start, delay)
        expected_end = add_minutes(expected_start, appointment.duration_minutes or 0)

        was_delayed = bool(appointment.is_delayed)
        is_delayed = delay >= settings.delay_alert_threshold_minutes

        appointment.delay_minutes = delay
        appointment.expected_start_at = expected_start
        appointment.expected_end_at = expected_end
        appointment.is_delayed = is_delayed

        newly_delayed = is_delayed and not was_delayed
        if newly_delayed:
            logger.info(f"[Delay] Appointment {appointment.id} now running {delay} min late")
            notify_delay(appointment, expected_start, outbox)

        updates.append(DelayUpdate(
            appointment_id=appointment.id,
            delay_minutes=delay,
            expected_start_at=expected_start,
            expected_end_at=expected_end,
            is_delayed=is_delayed,
            newly_delayed=newly_delayed,
        ))

        rolling = max(rolling, expected_end)

    if updates:
        db.flush()
    logger.info(f"[Delay] Provider {provider_id}: recomputed {len(updates)} appointment(s), free at {rolling.isoformat()}")
    return updates
