"""Failures raised by the booking and auth services.

Each error knows the HTTP status and message it is reported with; the
handler in ``labbook.main`` renders them as ``{"message": ...}`` bodies.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class LabBookingError(Exception):
    status_code = 500
    message = "Something went wrong!"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(LabBookingError):
    status_code = 400
    message = "Validation failed"

    def __init__(self, errors: List[FieldError], message: Optional[str] = None):
        self.errors = list(errors)
        if message is None and len(self.errors) == 1:
            message = self.errors[0].message
        super().__init__(message)

    def payload(self):
        return {
            "message": self.message,
            "errors": [{"field": e.field, "message": e.message} for e in self.errors],
        }


class InvalidInterval(ValidationError):
    def __init__(self, message="End time must be after start time"):
        super().__init__([FieldError("endTime", message)])


class InvalidCredentials(LabBookingError):
    status_code = 400
    message = "Invalid email or password"


class InvalidOtp(LabBookingError):
    status_code = 400
    message = "Invalid OTP or email"


class MissingToken(LabBookingError):
    status_code = 401
    message = "Access denied. No token provided."


class MalformedToken(LabBookingError):
    status_code = 400
    message = "Failed to authenticate token"


class Forbidden(LabBookingError):
    status_code = 403
    message = "Access denied"


class NotFound(LabBookingError):
    status_code = 404
    message = "Not found"


class SlotConflict(LabBookingError):
    status_code = 409
    message = "Time slot conflicts with existing bookings"

    def __init__(self, conflicts):
        self.conflicts = list(conflicts)
        super().__init__()

    def payload(self):
        return {
            "message": self.message,
            "conflicts": [
                {
                    "id": b.id,
                    "title": b.title,
                    "status": b.status.value,
                    "startTime": b.start_time.isoformat(),
                    "endTime": b.end_time.isoformat(),
                }
                for b in self.conflicts
            ],
        }
