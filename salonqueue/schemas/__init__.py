from salonqueue.schemas.queue import (
    QueueJoin,
    PublicQueueJoin,
    EntryStatusUpdate,
    ProviderAssign,
    EntryTasksEnsure,
    TaskResponse,
    EntryResponse,
    JoinResponse,
    PublicStatusResponse,
    TodayQueueResponse,
    ResetResponse,
    DisplayResponse,
)
from salonqueue.schemas.appointment import (
    AppointmentBook,
    AppointmentStatusUpdate,
    AppointmentResponse,
    AppointmentBookResponse,
)
from salonqueue.schemas.provider import (
    AvailabilityResponse,
    RecomputeDelays,
    RecomputeDelaysResponse,
)

__all__ = [
    "QueueJoin",
    "PublicQueueJoin",
    "EntryStatusUpdate",
    "ProviderAssign",
    "EntryTasksEnsure",
    "TaskResponse",
    "EntryResponse",
    "JoinResponse",
    "PublicStatusResponse",
    "TodayQueueResponse",
    "ResetResponse",
    "DisplayResponse",
    "AppointmentBook",
    "AppointmentStatusUpdate",
    "AppointmentResponse",
    "AppointmentBookResponse",
    "AvailabilityResponse",
    "RecomputeDelays",
    "RecomputeDelaysResponse",
]
