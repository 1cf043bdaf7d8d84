"""
Appointment Router
Staff endpoints for booked visits: booking on a customer's behalf, status
changes (check-in puts the guest in the queue) and lookups.
"""
from fastapi import APIRouter, Depends, BackgroundTasks
from sqlalchemy.orm import Session
import logging

from salonqueue.core.database import get_db
from salonqueue.core.auth import get_current_caller
from salonqueue.schemas.appointment import (
    AppointmentBook,
    AppointmentStatusUpdate,
    AppointmentResponse,
    AppointmentBookResponse,
)
from salonqueue.services import appointment_state
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.notification_service import schedule_delivery
from salonqueue.services.rejections import commit_or_raise, raise_for_rejection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])


@router.post("/book", response_model=AppointmentBookResponse, status_code=201)
def book_appointment(
    payload: AppointmentBook,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    logger.info(f"[Appointment] Caller {caller_id} booking for business {payload.business_id}")
    outbox = Outbox()
    appointment = commit_or_raise(db, appointment_state.book_appointment(
        db,
        payload.business_id,
        payload.service_ids,
        payload.start_time,
        outbox,
        provider_id=payload.provider_id,
        guest_name=payload.guest_name,
        guest_phone=payload.guest_phone,
    ))
    schedule_delivery(background_tasks, outbox)
    return AppointmentBookResponse(
        message="Appointment booked",
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    return raise_for_rejection(appointment_state.get_appointment(db, appointment_id))


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """
    Move an appointment to a new status.

    Checking in creates the guest's queue entry (when the business allows
    it); from then on the entry drives the appointment.
    """
    logger.info(f"[Appointment] Caller {caller_id} moving appointment {appointment_id} to {payload.status}")
    outbox = Outbox()
    appointment = commit_or_raise(db, appointment_state.transition_appointment(
        db, appointment_id, payload.status, outbox
    ))
    schedule_delivery(background_tasks, outbox)
    return appointment
