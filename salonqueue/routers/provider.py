"""
Provider Router
Expert availability preview and manual delay recomputation.
"""
from fastapi import APIRouter, Depends, BackgroundTasks, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from dataclasses import asdict
from datetime import date
import logging

from salonqueue.core.database import get_db
from salonqueue.core.auth import get_current_caller
from salonqueue.schemas.provider import (
    AvailabilityResponse,
    RecomputeDelays,
    RecomputeDelaysResponse,
)
from salonqueue.services import provider_matcher
from salonqueue.services.delay_propagation import recompute_provider_delays
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.notification_service import schedule_delivery
from salonqueue.services.time_utils import business_today, now_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["Providers"])


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(
    business_id: int,
    service_ids: List[int] = Query(default=[]),
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """
    Who is busy, on leave, and free to take the given services.
    Read-only; nothing is reserved.
    """
    day = day or business_today()
    snapshot = provider_matcher.availability_snapshot(db, business_id, day, service_ids)
    return AvailabilityResponse(business_id=business_id, day=day, service_ids=service_ids, **snapshot)


@router.post("/{provider_id}/recompute-delays", response_model=RecomputeDelaysResponse)
def recompute_delays(
    provider_id: int,
    payload: RecomputeDelays,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller_id: str = Depends(get_current_caller)
):
    """Re-plan the expert's remaining appointments from a new free-at time."""
    outbox = Outbox()
    updates = recompute_provider_delays(
        db, provider_id, payload.business_id, payload.new_free_at or now_utc(), outbox
    )
    db.commit()
    schedule_delivery(background_tasks, outbox)

    return RecomputeDelaysResponse(
        provider_id=provider_id,
        updated=len(updates),
        appointments=[asdict(u) for u in updates],
    )
