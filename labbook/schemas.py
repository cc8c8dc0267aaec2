from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from labbook import models
from labbook.clock import to_utc_naive


class CamelModel(BaseModel):
    """Request bodies use camelCase keys, Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _utc(value):
    return to_utc_naive(value) if value is not None else None


# --- Auth ---
class LoginRequest(CamelModel):
    email: str
    password: str


class SendOtpRequest(CamelModel):
    email: str


class ChangePasswordRequest(CamelModel):
    email: str
    otp: str
    new_password: str


class RegisterRequest(CamelModel):
    first_name: str
    last_name: str
    email: str
    password: str


# --- Users ---
class UserCreate(RegisterRequest):
    role: str


class UserUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    password: Optional[str] = None


# --- Bookings ---
class AvailabilityRequest(CamelModel):
    start_time: datetime
    end_time: datetime
    lab_id: Optional[int] = None
    exclude_booking_id: Optional[int] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value):
        return _utc(value)


class BookingCreate(CamelModel):
    title: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)  # attendee emails
    lab_id: Optional[int] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value):
        return _utc(value)


class BookingUpdate(CamelModel):
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    description: Optional[str] = None
    attendees: Optional[List[str]] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value):
        return _utc(value)


# --- Responses ---
def user_to_dict(user: models.User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value if hasattr(user.role, "value") else str(user.role),
    }


def booking_to_dict(b: models.Booking) -> dict:
    return {
        "id": b.id,
        "labId": b.lab_id,
        "title": b.title,
        "description": b.description,
        "startTime": b.start_time.isoformat(),
        "endTime": b.end_time.isoformat(),
        "status": b.status.value if hasattr(b.status, "value") else str(b.status),
        "ownerId": b.owner_id,
        "attendees": sorted(u.email for u in b.attendees),
        "createdAt": b.created_at.isoformat() if b.created_at else None,
    }


def notification_to_dict(n: models.Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type.value,
        "message": n.message,
        "bookingId": n.booking_id,
        "senderId": n.sender_id,
        "isRead": n.is_read,
        "response": n.response.value,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }
