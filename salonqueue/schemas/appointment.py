from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from salonqueue.models.appointment import AppointmentStatus


class AppointmentBook(BaseModel):
    """Schema for booking an appointment"""
    business_id: int = Field(..., description="Business to book with")
    service_ids: List[int] = Field(..., min_length=1, description="Services to book")
    start_time: datetime = Field(..., description="Slot start (ISO 8601, with offset)")
    provider_id: Optional[int] = Field(None, description="Preferred expert")
    guest_name: Optional[str] = Field(None, min_length=1, max_length=255)
    guest_phone: Optional[str] = Field(None, min_length=10, max_length=20)

    @model_validator(mode="after")
    def start_time_has_offset(self):
        if self.start_time.tzinfo is None:
            raise ValueError("start_time must include a UTC offset")
        return self


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating only appointment status"""
    status: str = Field(..., description="New status for the appointment")


class AppointmentServiceResponse(BaseModel):
    service_id: int
    price: Decimal
    duration_minutes: int

    model_config = ConfigDict(from_attributes=True)


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""
    id: int
    business_id: int
    user_id: Optional[str]
    guest_name: Optional[str]
    guest_phone: Optional[str]
    provider_id: Optional[int]
    status: AppointmentStatus
    appointment_date: date
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    total_price: Decimal
    delay_minutes: int
    expected_start_at: Optional[datetime]
    expected_end_at: Optional[datetime]
    is_delayed: bool
    checked_in_at: Optional[datetime]
    completed_at: Optional[datetime]
    payment_status: str
    services: List[AppointmentServiceResponse] = []

    model_config = ConfigDict(from_attributes=True)


class AppointmentBookResponse(BaseModel):
    message: str
    appointment: AppointmentResponse
