"""
Public Router
Guest-facing endpoints: joining from a phone, tracking a ticket, the
lobby display board and self-service booking. Rate limited per IP.
"""
from fastapi import APIRouter, Depends, BackgroundTasks, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from salonqueue.core.database import get_db
from salonqueue.core.auth import get_optional_caller
from salonqueue.core.rate_limiter import basic_rate_limiter
from salonqueue.schemas.queue import (
    PublicQueueJoin,
    EntryResponse,
    JoinResponse,
    PublicStatusResponse,
    DisplayResponse,
)
from salonqueue.schemas.appointment import AppointmentBook, AppointmentResponse, AppointmentBookResponse
from salonqueue.services import appointment_state, queue_service
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.notification_service import schedule_delivery
from salonqueue.services.rejections import commit_or_raise, raise_for_rejection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/public", tags=["Public"], dependencies=[Depends(basic_rate_limiter)])


@router.post("/queue/join", response_model=JoinResponse, status_code=201)
def public_join(
    payload: PublicQueueJoin,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: Optional[str] = Depends(get_optional_caller)
):
    """
    Join a queue as a guest or a signed-in customer.
    The returned status_token is the only handle a guest gets for tracking.
    """
    outbox = Outbox()
    result = commit_or_raise(db, queue_service.join_queue(
        db,
        payload.queue_id,
        outbox,
        service_ids=payload.service_ids,
        customer_name=payload.customer_name,
        phone=payload.phone,
        user_id=caller_id,
        entry_source=payload.entry_source,
    ))
    schedule_delivery(background_tasks, outbox)

    return JoinResponse(
        message=f"You're in! Your ticket is {result.entry.ticket_number}",
        entry=EntryResponse.model_validate(result.entry),
        status_token=result.entry.status_token,
        estimated_wait_minutes=result.estimated_wait_minutes,
    )


@router.get("/queue/status", response_model=PublicStatusResponse)
def public_status(
    token: str = Query(..., min_length=8, description="status_token returned on join"),
    db: Session = Depends(get_db)
):
    status = raise_for_rejection(queue_service.get_public_status(db, token))
    return PublicStatusResponse.model_validate(status)


@router.get("/business/{slug}/display", response_model=DisplayResponse)
def display_board(slug: str, db: Session = Depends(get_db)):
    """Lobby screen data: tickets and confirmed appointments in time order."""
    board = raise_for_rejection(queue_service.get_display_data(db, slug))
    return DisplayResponse.model_validate(board)


@router.post("/appointment/book", response_model=AppointmentBookResponse, status_code=201)
def public_book(
    payload: AppointmentBook,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: Optional[str] = Depends(get_optional_caller)
):
    outbox = Outbox()
    appointment = commit_or_raise(db, appointment_state.book_appointment(
        db,
        payload.business_id,
        payload.service_ids,
        payload.start_time,
        outbox,
        provider_id=payload.provider_id,
        user_id=caller_id,
        guest_name=payload.guest_name,
        guest_phone=payload.guest_phone,
    ))
    schedule_delivery(background_tasks, outbox)
    return AppointmentBookResponse(
        message="Appointment booked",
        appointment=AppointmentResponse.model_validate(appointment),
    )
