import pytest

from salonqueue.models import AppointmentStatus, EntryStatus, QueueEntry
from salonqueue.services import appointment_state, task_state
from salonqueue.services.notification_policy import APPOINTMENT_BOOKED, APPOINTMENT_CANCELLED, Outbox
from salonqueue.services.rejections import RejectionKind, is_rejection

from conftest import NOW, ist, minutes


@pytest.fixture
def book(db, salon):
    def _book(start, service_ids=None, provider=None, now=NOW, outbox=None):
        return appointment_state.book_appointment(
            db, salon.business.id,
            service_ids or [salon.haircut.id],
            start,
            outbox if outbox is not None else Outbox(),
            provider_id=provider.id if provider else None,
            guest_name="Priya",
            guest_phone="9000000001",
            now=now,
        )
    return _book


def test_booking_snapshots_services_and_notifies(db, salon, book):
    outbox = Outbox()
    appointment = book(ist(15, 0), service_ids=[salon.haircut.id, salon.beard.id], outbox=outbox)

    assert appointment.status == AppointmentStatus.scheduled
    assert appointment.duration_minutes == 45
    assert appointment.end_time == ist(15, 45)
    assert [line.duration_minutes for line in appointment.services] == [30, 15]
    assert outbox.kinds() == [APPOINTMENT_BOOKED]


def test_cannot_book_in_the_past(db, salon, book):
    result = book(NOW - minutes(5))
    assert result.reason == "start_in_past"


def test_cannot_book_before_opening(db, salon, book):
    result = book(ist(8, 0), now=ist(7, 0))

    assert result.kind == RejectionKind.validation
    assert "9:00 AM" in result.message


def test_slot_must_finish_before_the_closing_buffer(db, salon, book):
    late = book(ist(19, 30))
    assert late.kind == RejectionKind.capacity
    assert late.reason == "fully_booked"

    assert not is_rejection(book(ist(19, 0)))


def test_booking_needs_a_customer(db, salon):
    result = appointment_state.book_appointment(db, salon.business.id, [salon.haircut.id], ist(15, 0), Outbox(), now=NOW)
    assert result.reason == "customer_required"


def test_check_in_queues_the_guest_once(db, salon, book, make_provider):
    provider = make_provider()
    appointment = book(ist(11, 30), provider=provider)

    appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)
    db.commit()

    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).one()
    assert appointment.status == AppointmentStatus.checked_in
    assert appointment.checked_in_at == NOW
    assert entry.ticket_number == "A-1"
    assert entry.status == EntryStatus.waiting
    assert [task.assigned_provider_id for task in entry.tasks] == [provider.id]

    assert appointment_state.materialize_entry(db, appointment, NOW) is entry
    assert db.query(QueueEntry).count() == 1


def test_check_in_shares_numbering_with_walk_ins(db, salon, book, join):
    join(name="Walk-in")
    appointment = book(ist(11, 30))

    appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)

    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).one()
    assert entry.position == 2
    assert entry.ticket_number == "A-2"


def test_check_in_without_queue_materialization(db, salon, book):
    salon.business.checkin_creates_entry = False
    db.commit()
    appointment = book(ist(11, 30))

    result = appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)

    assert result.status == AppointmentStatus.checked_in
    assert db.query(QueueEntry).count() == 0


def test_entry_progress_is_mirrored_onto_the_appointment(db, salon, book, make_provider):
    provider = make_provider()
    appointment = book(ist(11, 0), provider=provider)
    appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)
    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).one()
    task = entry.tasks[0]

    task_state.start_task(db, task.id, Outbox(), now=NOW)
    db.refresh(appointment)
    assert entry.status == EntryStatus.serving
    assert appointment.status == AppointmentStatus.in_service

    task_state.complete_task(db, task.id, Outbox(), now=NOW + minutes(30))
    db.refresh(appointment)
    assert entry.status == EntryStatus.completed
    assert appointment.status == AppointmentStatus.completed
    assert appointment.completed_at is not None


def test_cancelling_a_checked_in_appointment_cancels_its_entry(db, salon, book):
    appointment = book(ist(11, 30))
    appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)

    outbox = Outbox()
    result = appointment_state.transition_appointment(db, appointment.id, "cancelled", outbox, now=NOW)

    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).one()
    assert entry.status == EntryStatus.cancelled
    assert result.status == AppointmentStatus.cancelled
    assert APPOINTMENT_CANCELLED in outbox.kinds()


def test_in_service_through_the_appointment_binds_its_expert(db, salon, book, make_provider):
    make_provider(name="First")
    booked = make_provider(name="Booked")
    appointment = book(ist(11, 0), provider=booked)
    appointment_state.transition_appointment(db, appointment.id, "checked_in", Outbox(), now=NOW)

    result = appointment_state.transition_appointment(db, appointment.id, "in_service", Outbox(), now=NOW)

    entry = db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment.id).one()
    assert result.status == AppointmentStatus.in_service
    assert entry.assigned_provider_id == booked.id


def test_appointment_transitions_are_guarded(db, salon, book):
    appointment = book(ist(15, 0))

    skipped_ahead = appointment_state.transition_appointment(db, appointment.id, "completed", Outbox(), now=NOW)
    assert skipped_ahead.reason == "invalid_transition"

    appointment_state.transition_appointment(db, appointment.id, "cancelled", Outbox(), now=NOW)
    terminal = appointment_state.transition_appointment(db, appointment.id, "confirmed", Outbox(), now=NOW)
    assert terminal.reason == "appointment_terminal"

    unknown = appointment_state.transition_appointment(db, appointment.id, "rescheduled", Outbox(), now=NOW)
    assert unknown.reason == "invalid_status"
