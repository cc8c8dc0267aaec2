"""Input checks run before any write.

Each ``validate_*`` function returns a list of :class:`FieldError`; an empty
list means the input is acceptable. Callers raise ``ValidationError`` with the
collected errors so the client sees every problem at once.
"""
import re
from datetime import datetime, timedelta
from typing import List, Optional

from labbook.errors import FieldError, InvalidInterval
from labbook.models import UserRole

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_interval(start: datetime, end: datetime):
    if start is None or end is None:
        raise InvalidInterval("Start time and end time are required")
    if start >= end:
        raise InvalidInterval()


def validate_duration(start: datetime, end: datetime, min_duration: timedelta, max_duration: timedelta) -> List[FieldError]:
    errors = []
    duration = end - start
    if duration < min_duration:
        errors.append(FieldError(
            "endTime", f"Booking duration must be at least {int(min_duration.total_seconds() // 60)} minutes"))
    if duration > max_duration:
        errors.append(FieldError(
            "endTime", f"Booking duration cannot exceed {int(max_duration.total_seconds() // 3600)} hours"))
    return errors


def validate_title(title: Optional[str], required: bool = True) -> List[FieldError]:
    if title is None and not required:
        return []
    if title is None or not title.strip():
        return [FieldError("title", "Title is required")]
    return []


def validate_email(email: Optional[str], field: str = "email") -> List[FieldError]:
    if not email or not EMAIL_RE.match(email.strip()):
        return [FieldError(field, f"Invalid email format: {email}")]
    return []


def validate_password(password: Optional[str]) -> List[FieldError]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return [FieldError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")]
    return []


def validate_role(role) -> List[FieldError]:
    try:
        UserRole(role)
    except ValueError:
        allowed = ", ".join(r.value for r in UserRole)
        return [FieldError("role", f"Role must be one of: {allowed}")]
    return []


def validate_user_fields(email=None, password=None, role=None, first_name=None, last_name=None,
                         partial: bool = False) -> List[FieldError]:
    """Check user fields. With ``partial`` only the fields that are given are checked."""
    errors = []
    if not partial or email is not None:
        errors += validate_email(email)
    if not partial or password is not None:
        errors += validate_password(password)
    if not partial or role is not None:
        errors += validate_role(role)
    for field, value in (("firstName", first_name), ("lastName", last_name)):
        if (not partial or value is not None) and (value is None or not value.strip()):
            errors.append(FieldError(field, f"{field} is required"))
    return errors
