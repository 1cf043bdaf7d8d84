from salonqueue.models.business import Business, Service, Queue, QueueStatus
from salonqueue.models.provider import ServiceProvider, ProviderService, ProviderLeave, ProviderDayLock
from salonqueue.models.queue_entry import (
    QueueDayCounter,
    QueueEntry,
    QueueEntryService,
    EntryStatus,
    TaskStatus,
    EntrySource,
)
from salonqueue.models.appointment import Appointment, AppointmentService, AppointmentStatus

__all__ = [
    "Business",
    "Service",
    "Queue",
    "QueueStatus",
    "ServiceProvider",
    "ProviderService",
    "ProviderLeave",
    "ProviderDayLock",
    "QueueDayCounter",
    "QueueEntry",
    "QueueEntryService",
    "EntryStatus",
    "TaskStatus",
    "EntrySource",
    "Appointment",
    "AppointmentService",
    "AppointmentStatus",
]
