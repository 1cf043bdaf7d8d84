"""
Appointment Model
Pre-scheduled visits, keyed by start time instead of a queue position
"""
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Numeric, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salonqueue.core.database import Base
import enum


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    checked_in = "checked_in"
    in_service = "in_service"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


TERMINAL_APPOINTMENT_STATUSES = (
    AppointmentStatus.completed,
    AppointmentStatus.cancelled,
    AppointmentStatus.no_show,
)

# Appointments still waiting for their provider; these absorb propagated delay
UPCOMING_APPOINTMENT_STATUSES = (
    AppointmentStatus.scheduled,
    AppointmentStatus.confirmed,
    AppointmentStatus.checked_in,
)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    guest_name = Column(String(255), nullable=True)
    guest_phone = Column(String(20), nullable=True)
    provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=True, index=True)

    status = Column(SQLEnum(AppointmentStatus, name="appointment_status"), default=AppointmentStatus.scheduled, nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(10, 2), default=0, nullable=False)

    # Delay tracking
    delay_minutes = Column(Integer, default=0, nullable=False)
    expected_start_at = Column(DateTime(timezone=True), nullable=True)
    expected_end_at = Column(DateTime(timezone=True), nullable=True)
    is_delayed = Column(Boolean, default=False, nullable=False)

    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Payment
    payment_status = Column(String(20), default="unpaid", nullable=False)
    payment_method = Column(String(30), nullable=True)
    amount_paid = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    services = relationship(
        "AppointmentService",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentService.id",
    )
    queue_entry = relationship("QueueEntry", back_populates="appointment", uselist=False)

    __table_args__ = (
        Index("idx_appointments_provider_day", "provider_id", "appointment_date", "start_time"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPOINTMENT_STATUSES

    def __repr__(self):
        return f"<Appointment(id={self.id}, start='{self.start_time}', status='{self.status}')>"


class AppointmentService(Base):
    """Snapshot of a booked service's price and duration."""
    __tablename__ = "appointment_services"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    duration_minutes = Column(Integer, default=0, nullable=False)

    appointment = relationship("Appointment", back_populates="services")
    service = relationship("Service")
