from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salonqueue.core.database import Base
import enum


class EntryStatus(str, enum.Enum):
    """Enum for a queue entry's lifecycle"""
    waiting = "waiting"
    serving = "serving"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"
    skipped = "skipped"


class TaskStatus(str, enum.Enum):
    """Enum for a single service line within an entry"""
    pending = "pending"
    in_progress = "in_progress"
    done = "done"


class EntrySource(str, enum.Enum):
    online = "online"
    walk_in = "walk-in"


# Entries in these states never hold a provider
TERMINAL_ENTRY_STATUSES = (EntryStatus.completed, EntryStatus.cancelled, EntryStatus.no_show)

# Out of the line as far as provider busy checks go; skipped can still rejoin
PROVIDER_RELEASED_STATUSES = TERMINAL_ENTRY_STATUSES + (EntryStatus.skipped,)


class QueueDayCounter(Base):
    """
    Position allocator row for one (queue, day). Incremented under
    SELECT ... FOR UPDATE so concurrent joins never read a stale maximum.
    """
    __tablename__ = "queue_day_counters"

    queue_id = Column(Integer, ForeignKey("queues.id", ondelete="CASCADE"), primary_key=True)
    entry_date = Column(Date, primary_key=True)
    last_position = Column(Integer, nullable=False, default=0)


class QueueEntry(Base):
    """
    One customer's visit to a queue on a given calendar day.
    """
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, index=True)
    queue_id = Column(Integer, ForeignKey("queues.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)  # authenticated customer, None for guests
    customer_name = Column(String(255), nullable=False, default="Guest")
    phone = Column(String(20), nullable=True)

    status = Column(SQLEnum(EntryStatus, name="entry_status"), default=EntryStatus.waiting, nullable=False)
    position = Column(Integer, nullable=False)
    ticket_number = Column(String(20), nullable=True)
    entry_date = Column(Date, nullable=False)
    status_token = Column(String(64), unique=True, index=True, nullable=False)
    entry_source = Column(String(20), default=EntrySource.online.value, nullable=False)

    total_duration_minutes = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(10, 2), default=0, nullable=False)
    assigned_provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, unique=True)

    # Timestamps
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    served_at = Column(DateTime(timezone=True), nullable=True)
    service_started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    estimated_end_at = Column(DateTime(timezone=True), nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)
    delay_minutes = Column(Integer, nullable=True)

    # Notification bookkeeping
    notified_join = Column(Boolean, default=False, nullable=False)
    notified_top3 = Column(Boolean, default=False, nullable=False)
    notified_next = Column(Boolean, default=False, nullable=False)
    notified_no_show = Column(Boolean, default=False, nullable=False)

    queue = relationship("Queue")
    tasks = relationship(
        "QueueEntryService",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="QueueEntryService.id",
    )
    appointment = relationship("Appointment", back_populates="queue_entry")

    __table_args__ = (
        UniqueConstraint("queue_id", "entry_date", "position", name="uq_queue_day_position"),
        Index("idx_entries_business_day_status", "business_id", "entry_date", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ENTRY_STATUSES

    def __repr__(self):
        return f"<QueueEntry(id={self.id}, ticket='{self.ticket_number}', status='{self.status}')>"


class QueueEntryService(Base):
    """
    One service line ("task") within an entry, with its own timing.
    Price and duration are snapshots taken at join time.
    """
    __tablename__ = "queue_entry_services"

    id = Column(Integer, primary_key=True, index=True)
    queue_entry_id = Column(Integer, ForeignKey("queue_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    duration_minutes = Column(Integer, default=0, nullable=False)

    task_status = Column(SQLEnum(TaskStatus, name="task_status"), default=TaskStatus.pending, nullable=False)
    assigned_provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    estimated_end_at = Column(DateTime(timezone=True), nullable=True)
    actual_minutes = Column(Integer, nullable=True)
    delay_minutes = Column(Integer, nullable=True)

    entry = relationship("QueueEntry", back_populates="tasks")
    service = relationship("Service")

    __table_args__ = (
        UniqueConstraint("queue_entry_id", "service_id", name="uq_entry_service"),
    )

    def __repr__(self):
        return f"<QueueEntryService(id={self.id}, entry={self.queue_entry_id}, status='{self.task_status}')>"
