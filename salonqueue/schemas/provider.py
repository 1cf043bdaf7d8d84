from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime


class AvailabilityResponse(BaseModel):
    """Busy / on-leave / eligible experts for a business day"""
    business_id: int
    day: date
    service_ids: List[int]
    busy: List[int]
    on_leave: List[int]
    eligible: List[int]


class RecomputeDelays(BaseModel):
    business_id: int = Field(..., description="Business the expert works for")
    new_free_at: Optional[datetime] = Field(None, description="When the expert will be free; defaults to now")


class DelayUpdateResponse(BaseModel):
    appointment_id: int
    delay_minutes: int
    expected_start_at: datetime
    expected_end_at: datetime
    is_delayed: bool
    newly_delayed: bool


class RecomputeDelaysResponse(BaseModel):
    provider_id: int
    updated: int
    appointments: List[DelayUpdateResponse]
