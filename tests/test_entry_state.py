from salonqueue.models import EntryStatus, TaskStatus
from salonqueue.services import entry_state, notification_policy, queue_service, task_state
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.provider_matcher import busy_provider_ids
from salonqueue.services.rejections import RejectionKind, is_rejection

from conftest import NOW, ist, minutes


def test_skip_swaps_with_next_waiting_entry(db, salon, join):
    first, second, third = join(name="A"), join(name="B"), join(name="C")

    outbox = Outbox()
    result = entry_state.skip_entry(db, first.id, outbox, now=NOW)
    db.commit()

    assert result is first
    assert first.status == EntryStatus.skipped
    assert (first.position, second.position, third.position) == (2, 1, 3)
    # Printed tickets stay with their holders
    assert first.ticket_number == "Q-1"
    assert outbox.kinds() == [notification_policy.NEXT_UP, notification_policy.TOP_N]


def test_skip_last_entry_only_changes_status(db, salon, join):
    join(name="A")
    last = join(name="B")

    entry_state.skip_entry(db, last.id, Outbox(), now=NOW)

    assert last.status == EntryStatus.skipped
    assert last.position == 2


def test_only_waiting_entries_can_be_skipped(db, salon, join, make_provider):
    make_provider()
    entry = join()
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW)

    result = entry_state.skip_entry(db, entry.id, Outbox(), now=NOW)

    assert is_rejection(result)
    assert result.reason == "not_waiting"


def test_skipped_entry_can_rejoin_the_line(db, salon, join):
    entry = join(name="A")
    join(name="B")
    entry_state.skip_entry(db, entry.id, Outbox(), now=NOW)

    result = entry_state.transition_entry(db, entry.id, "waiting", Outbox(), now=NOW)

    assert result.status == EntryStatus.waiting
    assert result.position == 2


def test_unknown_status_and_entry_are_rejected(db, salon, join):
    entry = join()

    bad_status = entry_state.transition_entry(db, entry.id, "teleported", Outbox(), now=NOW)
    assert bad_status.kind == RejectionKind.validation

    missing = entry_state.transition_entry(db, 9999, "serving", Outbox(), now=NOW)
    assert missing.kind == RejectionKind.not_found


def test_serving_binds_provider_and_notifies(db, salon, join, make_provider):
    provider = make_provider()
    entry = join(name="A")
    join(name="B")

    outbox = Outbox()
    result = entry_state.transition_entry(db, entry.id, "serving", outbox, now=NOW)

    assert result.status == EntryStatus.serving
    assert result.assigned_provider_id == provider.id
    assert result.served_at == NOW
    assert result.estimated_end_at == NOW + minutes(30)
    assert all(task.assigned_provider_id == provider.id for task in result.tasks)
    assert notification_policy.SERVING_STARTED in outbox.kinds()
    assert notification_policy.NEXT_UP in outbox.kinds()


def test_serving_requires_a_free_provider(db, salon, join, make_provider):
    provider = make_provider()
    first, second = join(name="A"), join(name="B")
    entry_state.transition_entry(db, first.id, "serving", Outbox(), now=NOW)

    auto = entry_state.transition_entry(db, second.id, "serving", Outbox(), now=NOW)
    assert auto.kind == RejectionKind.capacity
    assert auto.retryable is True

    named = entry_state.transition_entry(db, second.id, "serving", Outbox(), now=NOW, provider_id=provider.id)
    assert named.kind == RejectionKind.conflict
    assert named.message == "Expert is currently attending to another guest."
    assert second.status == EntryStatus.waiting


def test_serving_rejects_entries_from_another_day(db, salon, join, make_provider):
    make_provider()
    entry = join()

    result = entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=ist(11, 0, day=11))

    assert result.reason == "not_today"


def test_completing_without_starting_a_service_is_rejected(db, salon, join, make_provider):
    make_provider()
    entry = join()
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW)

    result = entry_state.transition_entry(db, entry.id, "completed", Outbox(), now=NOW + minutes(30))

    assert result.reason == "service_not_started"
    assert entry.status == EntryStatus.serving


def test_completing_stamps_duration_and_delay(db, salon, join, make_provider):
    make_provider()
    entry = join()
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW)
    task_state.start_task(db, entry.tasks[0].id, Outbox(), now=NOW + minutes(5))

    outbox = Outbox()
    result = entry_state.transition_entry(db, entry.id, "completed", outbox, now=NOW + minutes(45))

    assert result.status == EntryStatus.completed
    assert result.actual_duration_minutes == 40
    assert result.delay_minutes == 15
    # The running task is closed out with the visit
    assert entry.tasks[0].task_status == TaskStatus.done
    assert entry.tasks[0].actual_minutes == 40
    assert notification_policy.COMPLETED in outbox.kinds()


def test_terminal_entries_do_not_move(db, salon, join):
    entry = join()
    entry_state.transition_entry(db, entry.id, "cancelled", Outbox(), now=NOW)

    result = entry_state.transition_entry(db, entry.id, "waiting", Outbox(), now=NOW)

    assert result.reason == "entry_terminal"
    assert result.retryable is False


def test_cancel_releases_provider(db, salon, join, make_provider):
    provider = make_provider()
    entry = join(service_ids=[salon.haircut.id, salon.beard.id])
    entry_state.transition_entry(db, entry.id, "serving", Outbox(), now=NOW)
    task_state.start_task(db, entry.tasks[0].id, Outbox(), now=NOW)
    assert provider.id in busy_provider_ids(db, salon.business.id, entry.entry_date)

    entry_state.transition_entry(db, entry.id, "cancelled", Outbox(), now=NOW + minutes(10))

    assert entry.assigned_provider_id is None
    assert all(task.assigned_provider_id is None for task in entry.tasks)
    assert busy_provider_ids(db, salon.business.id, entry.entry_date) == set()


def test_no_show_notifies_once(db, salon, join):
    entry = join()

    outbox = Outbox()
    result = entry_state.mark_no_show(db, entry.id, outbox, now=NOW)

    assert result.status == EntryStatus.no_show
    assert outbox.kinds().count(notification_policy.NO_SHOW) == 1
    assert entry.notified_no_show is True


def test_proximity_notifications_fire_once(db, salon, join, make_provider):
    make_provider()
    entries = [join(name=f"Guest {i}") for i in range(4)]

    outbox = Outbox()
    entry_state.transition_entry(db, entries[0].id, "serving", outbox, now=NOW)
    assert outbox.kinds() == [
        notification_policy.SERVING_STARTED,
        notification_policy.NEXT_UP,
        notification_policy.TOP_N,
        notification_policy.TOP_N,
    ]

    again = Outbox()
    notification_policy.refresh_waiting_list(db, salon.queue.id, entries[0].entry_date, again)
    assert len(again) == 0


def test_assign_entry_provider_fills_unassigned_tasks(db, salon, join, make_provider):
    provider = make_provider()
    entry = join(service_ids=[salon.haircut.id, salon.beard.id])

    result = entry_state.assign_entry_provider(db, entry.id, now=NOW)

    assert result.assigned_provider_id == provider.id
    assert [task.assigned_provider_id for task in entry.tasks] == [provider.id, provider.id]


def test_ensure_entry_tasks_is_idempotent(db, salon, join):
    entry = join()
    assert len(entry.tasks) == 1

    queue_service.ensure_entry_tasks(db, entry.id, [salon.haircut.id, salon.beard.id])
    queue_service.ensure_entry_tasks(db, entry.id, [salon.haircut.id, salon.beard.id])

    assert sorted(task.service_id for task in entry.tasks) == sorted([salon.haircut.id, salon.beard.id])
    assert entry.total_duration_minutes == 45
    assert entry.total_price == 450


def test_ensure_entry_tasks_rejects_foreign_services(db, salon, join):
    entry = join()

    result = queue_service.ensure_entry_tasks(db, entry.id, [9999])

    assert result.reason == "invalid_service"
    assert len(entry.tasks) == 1
