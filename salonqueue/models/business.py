"""
Business catalog models.
Businesses, their service menu and their queues are maintained by owner
tooling; the scheduling core only reads them.
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salonqueue.core.database import Base


class QueueStatus(str, enum.Enum):
    """Enum for queue availability"""
    open = "open"
    closed = "closed"
    paused = "paused"


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)

    # Opening hours, "HH:MM" or "HH:MM:SS" in the business timezone
    open_time = Column(String(8), nullable=True)
    close_time = Column(String(8), nullable=True)
    is_closed = Column(Boolean, default=False, nullable=False)  # manual "closed today" switch
    closing_buffer_minutes = Column(Integer, nullable=True)  # falls back to settings
    checkin_creates_entry = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    queues = relationship("Queue", back_populates="business", order_by="Queue.id")
    services = relationship("Service", back_populates="business", order_by="Service.id")

    def __repr__(self):
        return f"<Business(id={self.id}, slug='{self.slug}', closed={self.is_closed})>"


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    business = relationship("Business", back_populates="services")

    def __repr__(self):
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes})>"


class Queue(Base):
    """One queue per business service line."""
    __tablename__ = "queues"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)  # default service for walk-ins
    name = Column(String(255), nullable=False)
    status = Column(SQLEnum(QueueStatus, name="queue_status"), default=QueueStatus.open, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    business = relationship("Business", back_populates="queues")

    def __repr__(self):
        return f"<Queue(id={self.id}, name='{self.name}', status='{self.status}')>"
