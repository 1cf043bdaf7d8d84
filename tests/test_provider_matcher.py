from datetime import date

from salonqueue.models import EntryStatus, ProviderLeave, ProviderDayLock, TaskStatus
from salonqueue.services import entry_state, provider_matcher
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.rejections import RejectionKind, is_rejection

from conftest import NOW

DAY = date(2026, 3, 10)


def _find(db, salon, service_ids=None, **kwargs):
    return provider_matcher.find_provider(
        db, salon.business.id, DAY,
        service_ids if service_ids is not None else [salon.haircut.id],
        now=NOW, **kwargs
    )


def test_first_free_provider_in_roster_order_wins(db, salon, make_provider):
    first = make_provider(name="First")
    make_provider(name="Second")

    assert _find(db, salon) == first.id


def test_capability_must_cover_every_service(db, salon, make_provider):
    make_provider(name="Haircuts only", services=[salon.haircut])
    both = make_provider(name="Both")

    assert _find(db, salon, [salon.haircut.id, salon.beard.id]) == both.id


def test_inactive_and_on_leave_providers_are_skipped(db, salon, make_provider):
    make_provider(name="Retired", is_active=False)
    away = make_provider(name="Away")
    db.add(ProviderLeave(provider_id=away.id, start_date=date(2026, 3, 9), end_date=DAY))
    present = make_provider(name="Present")
    db.commit()

    assert _find(db, salon) == present.id


def test_named_provider_on_leave_is_refused(db, salon, make_provider):
    away = make_provider()
    db.add(ProviderLeave(provider_id=away.id, start_date=DAY, end_date=DAY))
    db.commit()

    result = _find(db, salon, preassigned_provider_id=away.id)

    assert result.kind == RejectionKind.conflict
    assert result.message == "Expert is on leave today."


def test_named_provider_must_belong_to_the_business(db, salon):
    result = _find(db, salon, preassigned_provider_id=999)

    assert result.kind == RejectionKind.validation
    assert result.message == "Invalid or inactive provider"


def test_no_eligible_provider_is_retryable(db, salon, make_provider):
    make_provider(services=[salon.beard])

    result = _find(db, salon)

    assert is_rejection(result)
    assert result.kind == RejectionKind.capacity
    assert result.reason == "no_eligible_provider"
    assert result.retryable is True


def test_busy_provider_is_not_handed_out_twice(db, salon, join, make_provider):
    provider = make_provider()
    entry = join()
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW)

    named = _find(db, salon, preassigned_provider_id=provider.id)
    assert named.message == "Expert is currently attending to another guest."

    # The entry holding the expert does not block itself
    assert _find(db, salon, exclude_entry_id=entry.id) == provider.id


def test_tasks_under_closed_visits_do_not_hold_providers(db, salon, join, make_provider):
    provider = make_provider()
    entry = join()
    task = entry.tasks[0]
    task.assigned_provider_id = provider.id
    task.task_status = TaskStatus.in_progress
    db.flush()
    assert provider_matcher.busy_provider_ids(db, salon.business.id, DAY) == {provider.id}

    entry_state.transition_entry(db, entry.id, "cancelled", Outbox(), now=NOW)

    assert provider_matcher.busy_provider_ids(db, salon.business.id, DAY) == set()


def test_tasks_under_skipped_visits_do_not_hold_providers(db, salon, join, make_provider):
    provider = make_provider()
    entry = join()
    task = entry.tasks[0]
    task.assigned_provider_id = provider.id
    task.task_status = TaskStatus.in_progress
    entry.status = EntryStatus.skipped
    db.flush()

    assert provider_matcher.busy_provider_ids(db, salon.business.id, DAY) == set()


def test_selection_takes_the_day_lock(db, salon, make_provider):
    provider = make_provider()

    _find(db, salon)

    lock = db.query(ProviderDayLock).filter(ProviderDayLock.provider_id == provider.id).one()
    assert lock.lock_date == DAY
    assert lock.claimed_at is not None


def test_availability_snapshot(db, salon, join, make_provider):
    busy = make_provider(name="Busy")
    away = make_provider(name="Away")
    free = make_provider(name="Free")
    db.add(ProviderLeave(provider_id=away.id, start_date=DAY, end_date=DAY))
    db.commit()
    entry = join()
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW, provider_id=busy.id)

    snapshot = provider_matcher.availability_snapshot(db, salon.business.id, DAY, [salon.haircut.id])

    assert snapshot == {"busy": [busy.id], "on_leave": [away.id], "eligible": [free.id]}
