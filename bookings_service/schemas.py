from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .models import BookingStatus, Priority, Role, Urgency


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class PersonInfo(BaseModel):
    """Name/email/employee id triple used for requester and manager details."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    employee_id: Optional[str] = Field(default=None, validation_alias=_alias("employee_id", "employeeId"))
    department: Optional[str] = None


class BookingCreate(BaseModel):
    """
    Schema for requesting a new booking.

    Field presence and ranges are checked by the booking service so that
    failures surface as a 400 naming the offending field. Both the
    ``room``/``time`` and ``roomName``/``startTime`` spellings are
    accepted; ``end_time`` may be replaced by ``duration`` in minutes.
    """
    model_config = ConfigDict(populate_by_name=True)

    room_name: Optional[str] = Field(default=None, validation_alias=_alias("room_name", "roomName", "room"))
    date: Optional[str] = None
    start_time: Optional[str] = Field(default=None, validation_alias=_alias("start_time", "startTime", "time"))
    end_time: Optional[str] = Field(default=None, validation_alias=_alias("end_time", "endTime"))
    duration: Optional[float] = None
    attendees: Optional[int] = None
    purpose: Optional[str] = None
    description: Optional[str] = None
    equipment: List[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    urgency: Urgency = Urgency.NORMAL
    manager_id: Optional[str] = Field(default=None, validation_alias=_alias("manager_id", "managerId"))
    manager_info: Optional[PersonInfo] = Field(default=None, validation_alias=_alias("manager_info", "managerInfo"))
    user_info: Optional[PersonInfo] = Field(default=None, validation_alias=_alias("user_info", "userInfo"))


class BookingUpdate(BaseModel):
    """
    Schema for partially updating an existing booking.

    All fields are optional; only provided values will be applied.
    """
    model_config = ConfigDict(populate_by_name=True)

    room_name: Optional[str] = Field(default=None, validation_alias=_alias("room_name", "roomName", "room"))
    date: Optional[str] = None
    start_time: Optional[str] = Field(default=None, validation_alias=_alias("start_time", "startTime", "time"))
    end_time: Optional[str] = Field(default=None, validation_alias=_alias("end_time", "endTime"))
    duration: Optional[float] = None
    attendees: Optional[int] = None
    purpose: Optional[str] = None
    description: Optional[str] = None
    equipment: Optional[List[str]] = None
    priority: Optional[Priority] = None
    urgency: Optional[Urgency] = None
    status: Optional[BookingStatus] = None
    reason: Optional[str] = None


class BookingDecision(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RequesterRead(BaseModel):
    name: str
    email: str
    employee_id: Optional[str] = None
    role: Role
    department: Optional[str] = None


class ManagerRead(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    employee_id: Optional[str] = None


class BookingRead(BaseModel):
    """
    Schema returned for every booking read or write.

    ``derived_status``, ``time_until`` and ``is_today`` are computed at
    response time and never stored.
    """
    id: str
    room_name: str
    date: str
    start_time: str
    end_time: str
    duration_minutes: int
    purpose: str
    description: Optional[str] = None
    attendees: int
    equipment: List[str]
    status: BookingStatus
    derived_status: str
    time_until: str
    is_today: bool
    booked_by: RequesterRead
    manager: Optional[ManagerRead] = None
    priority: Priority
    urgency: Urgency
    approved_by: Optional[str] = None
    approver_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: str = ""
    rejection_reason: Optional[str] = None
    created_at: datetime
    submitted_at: datetime
    updated_at: datetime


class AvailabilitySlot(BaseModel):
    id: str
    room_name: str
    start_time: str
    end_time: str
    status: BookingStatus

    model_config = ConfigDict(from_attributes=True)
