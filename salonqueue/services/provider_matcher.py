"""
Provider matching.

A provider is busy for a business+day while it holds a serving entry or an
in-progress task there, on leave when a leave interval covers the day, and
available otherwise. Selection is first-match in roster order; there is no
load balancing.

Every decision that hands a provider out is taken while holding that
provider's ProviderDayLock row, so two requests cannot both see the same
provider as free.
"""
import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Set, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salonqueue.models.provider import ServiceProvider, ProviderLeave, ProviderDayLock
from salonqueue.models.queue_entry import (
    QueueEntry,
    QueueEntryService,
    EntryStatus,
    TaskStatus,
    PROVIDER_RELEASED_STATUSES,
)
from salonqueue.services import rejections
from salonqueue.services.rejections import Rejection
from salonqueue.services.time_utils import as_utc, now_utc

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Expert is currently attending to another guest."
LEAVE_MESSAGE = "Expert is on leave today."
NO_PROVIDER_MESSAGE = "No eligible expert is available right now. Please wait or assign one manually."


def busy_provider_ids(
    db: Session,
    business_id: int,
    day: date,
    exclude_entry_id: Optional[int] = None,
    exclude_task_id: Optional[int] = None,
) -> Set[int]:
    """
    Providers holding a serving entry or an in-progress task for business+day.

    exclude_entry_id drops one entry from the coarse entry-level lock only;
    its tasks still count. exclude_task_id drops one task.
    """
    entry_query = db.query(QueueEntry.assigned_provider_id).filter(
        QueueEntry.business_id == business_id,
        QueueEntry.entry_date == day,
        QueueEntry.status == EntryStatus.serving,
        QueueEntry.assigned_provider_id.isnot(None),
    )
    if exclude_entry_id is not None:
        entry_query = entry_query.filter(QueueEntry.id != exclude_entry_id)

    task_query = db.query(QueueEntryService.assigned_provider_id).join(
        QueueEntry, QueueEntryService.queue_entry_id == QueueEntry.id
    ).filter(
        QueueEntry.business_id == business_id,
        QueueEntry.entry_date == day,
        QueueEntry.status.notin_(PROVIDER_RELEASED_STATUSES),
        QueueEntryService.task_status == TaskStatus.in_progress,
        QueueEntryService.assigned_provider_id.isnot(None),
    )
    if exclude_task_id is not None:
        task_query = task_query.filter(QueueEntryService.id != exclude_task_id)

    busy = {row[0] for row in entry_query.all()}
    busy.update(row[0] for row in task_query.all())
    return busy


def provider_free_at(db: Session, provider_id: int, business_id: int, day: date, now: datetime) -> datetime:
    """Latest estimated end of the work the provider still holds, or now when idle."""
    ends = [row[0] for row in db.query(QueueEntry.estimated_end_at).filter(
        QueueEntry.business_id == business_id,
        QueueEntry.entry_date == day,
        QueueEntry.status == EntryStatus.serving,
        QueueEntry.assigned_provider_id == provider_id,
    ).all()]
    ends.extend(row[0] for row in db.query(QueueEntryService.estimated_end_at).join(
        QueueEntry, QueueEntryService.queue_entry_id == QueueEntry.id
    ).filter(
        QueueEntry.business_id == business_id,
        QueueEntry.entry_date == day,
        QueueEntry.status.notin_(PROVIDER_RELEASED_STATUSES),
        QueueEntryService.task_status == TaskStatus.in_progress,
        QueueEntryService.assigned_provider_id == provider_id,
    ).all())
    return max([as_utc(now)] + [as_utc(end) for end in ends if end is not None])


def on_leave_provider_ids(db: Session, business_id: int, day: date) -> Set[int]:
    rows = db.query(ProviderLeave.provider_id).join(
        ServiceProvider, ProviderLeave.provider_id == ServiceProvider.id
    ).filter(
        ServiceProvider.business_id == business_id,
        ProviderLeave.start_date <= day,
        ProviderLeave.end_date >= day,
    ).all()
    return {row[0] for row in rows}


def lock_provider_day(db: Session, provider_id: int, business_id: int, day: date,
                      now: Optional[datetime] = None) -> ProviderDayLock:
    """Get-or-create the (provider, business, day) lock row and hold it FOR UPDATE."""
    query = db.query(ProviderDayLock).filter(
        ProviderDayLock.provider_id == provider_id,
        ProviderDayLock.business_id == business_id,
        ProviderDayLock.lock_date == day,
    ).with_for_update()

    lock = query.first()
    if lock is None:
        try:
            with db.begin_nested():
                db.add(ProviderDayLock(provider_id=provider_id, business_id=business_id, lock_date=day))
        except IntegrityError:
            logger.info(f"[Matcher] Lock row for provider {provider_id} on {day} created concurrently")
        lock = query.one()

    lock.claimed_at = now or now_utc()
    return lock


def active_roster(db: Session, business_id: int) -> List[ServiceProvider]:
    return db.query(ServiceProvider).options(
        selectinload(ServiceProvider.capabilities)
    ).filter(
        ServiceProvider.business_id == business_id,
        ServiceProvider.is_active.is_(True),
    ).order_by(ServiceProvider.id).all()


def check_provider(
    db: Session,
    provider_id: int,
    business_id: int,
    day: date,
    exclude_entry_id: Optional[int] = None,
    exclude_task_id: Optional[int] = None,
    now: Optional[datetime] = None,
    check_busy: bool = True,
) -> Optional[Rejection]:
    """
    Validate one named provider under its day lock.
    Returns None when the provider may take the work.
    """
    provider = db.query(ServiceProvider).filter(ServiceProvider.id == provider_id).first()
    if provider is None or provider.business_id != business_id or not provider.is_active:
        return rejections.validation("invalid_provider", "Invalid or inactive provider")

    lock_provider_day(db, provider_id, business_id, day, now)

    if provider_id in on_leave_provider_ids(db, business_id, day):
        return rejections.conflict("provider_on_leave", LEAVE_MESSAGE)
    if check_busy and provider_id in busy_provider_ids(db, business_id, day, exclude_entry_id, exclude_task_id):
        return rejections.conflict("provider_busy", BUSY_MESSAGE)
    return None


def find_provider(
    db: Session,
    business_id: int,
    day: date,
    service_ids: Iterable[int],
    preassigned_provider_id: Optional[int] = None,
    exclude_entry_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Union[int, Rejection]:
    """
    Pick a provider for the required services.

    A pre-assigned provider is validated and never silently replaced.
    Otherwise the first active, capable, idle provider on the roster wins.
    """
    if preassigned_provider_id is not None:
        rejection = check_provider(db, preassigned_provider_id, business_id, day, exclude_entry_id, now=now)
        if rejection is not None:
            logger.info(f"[Matcher] Pre-assigned provider {preassigned_provider_id} rejected: {rejection.reason}")
            return rejection
        return preassigned_provider_id

    required = set(service_ids)
    on_leave = on_leave_provider_ids(db, business_id, day)
    busy = busy_provider_ids(db, business_id, day, exclude_entry_id)

    candidates = [
        p for p in active_roster(db, business_id)
        if required <= p.service_ids and p.id not in on_leave and p.id not in busy
    ]

    for candidate in candidates:
        lock_provider_day(db, candidate.id, business_id, day, now)
        # Re-check under the lock; another request may have claimed them meanwhile
        if candidate.id not in busy_provider_ids(db, business_id, day, exclude_entry_id):
            logger.info(f"[Matcher] Selected provider {candidate.id} for services {sorted(required)}")
            return candidate.id

    logger.info(f"[Matcher] No eligible provider for business {business_id} services {sorted(required)}")
    return rejections.capacity("no_eligible_provider", NO_PROVIDER_MESSAGE)


def availability_snapshot(db: Session, business_id: int, day: date, service_ids: Iterable[int]) -> dict:
    """Read-only view of who is busy, on leave and eligible; takes no locks."""
    required = set(service_ids)
    on_leave = on_leave_provider_ids(db, business_id, day)
    busy = busy_provider_ids(db, business_id, day)
    roster = active_roster(db, business_id)
    return {
        "busy": sorted(busy),
        "on_leave": sorted(on_leave),
        "eligible": [
            p.id for p in roster
            if required <= p.service_ids and p.id not in on_leave and p.id not in busy
        ],
    }
