"""
Notification trigger policy.

Decides when a customer-facing update is due and queues it in an Outbox.
Nothing here talks to Twilio: the routers hand the outbox to
NotificationService as a background task once the response is on its way.
The notified_* flags on an entry make each trigger fire at most once.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from salonqueue.core.config import settings
from salonqueue.models.appointment import Appointment
from salonqueue.models.queue_entry import QueueEntry, EntryStatus
from salonqueue.services.time_utils import format_local_clock

logger = logging.getLogger(__name__)

JOIN = "join"
TOP_N = "top3"
NEXT_UP = "next_up"
SERVING_STARTED = "serving_started"
COMPLETED = "completed"
NO_SHOW = "no_show"
DELAY_ALERT = "delay_alert"
APPOINTMENT_BOOKED = "appointment_booked"
APPOINTMENT_CONFIRMED = "appointment_confirmed"
APPOINTMENT_CANCELLED = "appointment_cancelled"


@dataclass(frozen=True)
class OutboundMessage:
    kind: str
    recipient: str
    body: str
    entry_id: Optional[int] = None
    appointment_id: Optional[int] = None


@dataclass
class Outbox:
    messages: List[OutboundMessage] = field(default_factory=list)

    def add(self, kind: str, recipient: Optional[str], body: str,
            entry_id: Optional[int] = None, appointment_id: Optional[int] = None) -> None:
        if not recipient:
            logger.info(f"[Notify] No phone on file, dropping '{kind}' (entry={entry_id}, appointment={appointment_id})")
            return
        self.messages.append(OutboundMessage(kind, recipient, body, entry_id, appointment_id))

    def kinds(self) -> List[str]:
        return [m.kind for m in self.messages]

    def __len__(self):
        return len(self.messages)


def _queue_name(entry: QueueEntry) -> str:
    return entry.queue.name if entry.queue is not None else "your service"


def notify_joined(entry: QueueEntry, outbox: Outbox) -> None:
    if entry.notified_join:
        return
    outbox.add(
        JOIN, entry.phone,
        f"You have joined the queue. Your ticket number is {entry.ticket_number}.",
        entry_id=entry.id,
    )
    entry.notified_join = True


def notify_serving_started(entry: QueueEntry, outbox: Outbox) -> None:
    outbox.add(
        SERVING_STARTED, entry.phone,
        f"It's your turn for {_queue_name(entry)}! Please proceed to the counter.",
        entry_id=entry.id,
    )


def notify_completed(entry: QueueEntry, outbox: Outbox) -> None:
    outbox.add(COMPLETED, entry.phone, "Thanks for visiting! We hope to see you again.", entry_id=entry.id)


def notify_no_show(entry: QueueEntry, outbox: Outbox) -> None:
    if entry.notified_no_show:
        return
    outbox.add(
        NO_SHOW, entry.phone,
        f"We missed you at the counter for ticket {entry.ticket_number}. Please rejoin the queue when you are ready.",
        entry_id=entry.id,
    )
    entry.notified_no_show = True


def refresh_waiting_list(db: Session, queue_id: int, day: date, outbox: Outbox) -> None:
    """
    Re-run the proximity triggers over the whole waiting list: the head of
    the line hears "you're next", the rest of the top N hear "almost there".
    """
    waiting = db.query(QueueEntry).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
        QueueEntry.status == EntryStatus.waiting,
    ).order_by(QueueEntry.position).all()

    for index, entry in enumerate(waiting):
        if index == 0:
            if not entry.notified_next:
                outbox.add(
                    NEXT_UP, entry.phone,
                    f"Your turn for {_queue_name(entry)} is approaching! You are next in line.",
                    entry_id=entry.id,
                )
                entry.notified_next = True
                entry.notified_top3 = True
        elif index < settings.notify_top_n:
            if not entry.notified_top3:
                outbox.add(
                    TOP_N, entry.phone,
                    f"Almost there! There are {index} guests ahead of ticket {entry.ticket_number}.",
                    entry_id=entry.id,
                )
                entry.notified_top3 = True
        else:
            break


def appointment_recipient(appointment: Appointment) -> Optional[str]:
    return appointment.guest_phone


def notify_delay(appointment: Appointment, expected_start: datetime, outbox: Outbox) -> None:
    outbox.add(
        DELAY_ALERT, appointment_recipient(appointment),
        "We're currently serving guests and operating at full capacity. "
        f"Your appointment is expected at {format_local_clock(expected_start)}. Thank you for your patience.",
        appointment_id=appointment.id,
    )


def notify_appointment_booked(appointment: Appointment, outbox: Outbox) -> None:
    outbox.add(
        APPOINTMENT_BOOKED, appointment_recipient(appointment),
        f"Your appointment is scheduled for {format_local_clock(appointment.start_time)} on {appointment.appointment_date:%d %b}.",
        appointment_id=appointment.id,
    )


def notify_appointment_status(appointment: Appointment, outbox: Outbox) -> None:
    if appointment.status == "confirmed":
        outbox.add(APPOINTMENT_CONFIRMED, appointment_recipient(appointment),
                   "Your appointment has been confirmed!", appointment_id=appointment.id)
    elif appointment.status == "cancelled":
        outbox.add(APPOINTMENT_CANCELLED, appointment_recipient(appointment),
                   "Your appointment has been cancelled.", appointment_id=appointment.id)
