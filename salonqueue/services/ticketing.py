"""
Daily position and ticket allocation.

Positions are handed out from a per-(queue, day) counter row that is read
and bumped under a row lock, and the entries table carries a unique
(queue_id, entry_date, position) constraint as a second line of defence.
"""
import logging
import uuid
from datetime import date
from typing import Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from salonqueue.models.queue_entry import QueueDayCounter, QueueEntry
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection

logger = logging.getLogger(__name__)

QUEUE_TICKET_PREFIX = "Q"
APPOINTMENT_TICKET_PREFIX = "A"


def ticket_number(prefix: str, position: int) -> str:
    return f"{prefix}-{position}"


def new_status_token() -> str:
    return uuid.uuid4().hex


def _locked_counter(db: Session, queue_id: int, day: date) -> QueueDayCounter:
    query = db.query(QueueDayCounter).filter(
        QueueDayCounter.queue_id == queue_id,
        QueueDayCounter.entry_date == day,
    ).with_for_update()

    counter = query.first()
    if counter is not None:
        return counter

    # Seed from existing rows so a counter created late still continues the sequence
    seed = db.query(func.max(QueueEntry.position)).filter(
        QueueEntry.queue_id == queue_id,
        QueueEntry.entry_date == day,
    ).scalar() or 0

    try:
        with db.begin_nested():
            db.add(QueueDayCounter(queue_id=queue_id, entry_date=day, last_position=seed))
    except IntegrityError:
        logger.info(f"[Ticketing] Counter for queue {queue_id} on {day} created concurrently, reusing it")

    return query.one()


def allocate_position(db: Session, queue_id: int, day: date) -> Union[int, Rejection]:
    """
    Next position for (queue, day): 1 + the highest issued so far, or 1.

    The counter row stays locked until the caller's transaction ends, so the
    entry insert that uses the position must happen in the same transaction.
    """
    try:
        counter = _locked_counter(db, queue_id, day)
        counter.last_position += 1
        db.flush()
    except OperationalError as e:
        logger.error(f"[Ticketing] Position allocator unavailable for queue {queue_id}: {e}")
        return rejections.unavailable(
            "allocator_unavailable",
            "Could not allocate a queue position right now. Please try again.",
        )

    logger.info(f"[Ticketing] Queue {queue_id} on {day}: issued position {counter.last_position}")
    return counter.last_position


def reset_counter(db: Session, queue_id: int, day: date) -> None:
    db.query(QueueDayCounter).filter(
        QueueDayCounter.queue_id == queue_id,
        QueueDayCounter.entry_date == day,
    ).delete(synchronize_session="fetch")
