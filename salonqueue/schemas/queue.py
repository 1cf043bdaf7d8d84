from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from salonqueue.models.queue_entry import EntryStatus, TaskStatus


class QueueJoin(BaseModel):
    """Schema for joining a queue"""
    customer_name: Optional[str] = Field(None, min_length=1, max_length=255, description="Display name of the guest")
    phone: Optional[str] = Field(None, min_length=10, max_length=20, description="Phone number for updates")
    service_ids: List[int] = Field(default_factory=list, description="Services requested; defaults to the queue's own service")
    entry_source: str = Field("online", pattern="^(online|walk-in)$", description="online or walk-in")


class PublicQueueJoin(QueueJoin):
    """Guest join from the public page"""
    queue_id: int = Field(..., description="Queue to join")


class EntryStatusUpdate(BaseModel):
    """Schema for moving an entry to a new status"""
    status: str = Field(..., description="Target status")
    provider_id: Optional[int] = Field(None, description="Expert to bind when moving to serving")


class ProviderAssign(BaseModel):
    """Schema for assigning an expert; omit provider_id to auto-select"""
    provider_id: Optional[int] = Field(None, description="Expert to assign")


class EntryTasksEnsure(BaseModel):
    service_ids: List[int] = Field(..., min_length=1, description="Services the entry should have task rows for")


class TaskResponse(BaseModel):
    """Schema for a service line within an entry"""
    id: int
    queue_entry_id: int
    service_id: int
    price: Decimal
    duration_minutes: int
    task_status: TaskStatus
    assigned_provider_id: Optional[int]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    estimated_end_at: Optional[datetime]
    actual_minutes: Optional[int]
    delay_minutes: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class EntryResponse(BaseModel):
    """Schema for queue entry response"""
    id: int
    queue_id: int
    business_id: int
    customer_name: str
    phone: Optional[str]
    status: EntryStatus
    position: int
    ticket_number: Optional[str]
    entry_date: date
    entry_source: str
    total_duration_minutes: int
    total_price: Decimal
    assigned_provider_id: Optional[int]
    appointment_id: Optional[int]
    joined_at: datetime
    served_at: Optional[datetime]
    service_started_at: Optional[datetime]
    completed_at: Optional[datetime]
    estimated_end_at: Optional[datetime]
    actual_duration_minutes: Optional[int]
    delay_minutes: Optional[int]
    tasks: List[TaskResponse] = []

    model_config = ConfigDict(from_attributes=True)


class JoinResponse(BaseModel):
    """Schema for join response with the guest's tracking token"""
    message: str
    entry: EntryResponse
    status_token: str = Field(..., description="Opaque token for the public status page")
    estimated_wait_minutes: int


class PublicStatusResponse(BaseModel):
    status: str
    ticket_number: Optional[str]
    position: int
    position_ahead: int
    current_serving_ticket: Optional[str]
    estimated_wait_minutes: int
    queue_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TodayQueueResponse(BaseModel):
    """Schema for the staff dashboard"""
    queue_id: int
    entry_date: date
    total: int
    entries: List[EntryResponse]


class ResetResponse(BaseModel):
    message: str
    deleted: int


class DisplayItemResponse(BaseModel):
    id: int
    type: str
    display_token: str
    customer_name: str
    status: str
    time: datetime
    service_name: str

    model_config = ConfigDict(from_attributes=True)


class DisplayBusiness(BaseModel):
    id: int
    name: str
    slug: str
    is_closed: bool
    open_time: Optional[str]
    close_time: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class DisplayResponse(BaseModel):
    """Public "up next" board"""
    business: DisplayBusiness
    entries: List[DisplayItemResponse]

    model_config = ConfigDict(from_attributes=True)
