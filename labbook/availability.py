"""Conflict detection for lab reservations.

Intervals are half-open, ``[start, end)``: a booking that ends at 11:00 does
not conflict with one that starts at 11:00. Only confirmed bookings block a
slot.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from labbook import models
from labbook.errors import NotFound
from labbook.validation import check_interval

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityResult:
    available: bool
    conflicts: List[models.Booking] = field(default_factory=list)


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    return s1 < e2 and s2 < e1


def find_conflicts(db: Session, lab_id: int, start: datetime, end: datetime,
                   exclude_booking_id: Optional[int] = None) -> List[models.Booking]:
    query = db.query(models.Booking).filter(
        models.Booking.lab_id == lab_id,
        models.Booking.status == models.BookingStatus.confirmed,
        models.Booking.start_time < end,
        models.Booking.end_time > start,
    )
    if exclude_booking_id is not None:
        query = query.filter(models.Booking.id != exclude_booking_id)
    return query.order_by(models.Booking.start_time.asc()).all()


def check_availability(db: Session, lab_id: int, start: datetime, end: datetime,
                       exclude_booking_id: Optional[int] = None) -> AvailabilityResult:
    """Report whether ``[start, end)`` is free in the lab.

    Read only. Callers that go on to write must hold :func:`lock_lab` for the
    same lab in the same transaction.
    """
    check_interval(start, end)
    conflicts = find_conflicts(db, lab_id, start, end, exclude_booking_id)
    return AvailabilityResult(available=not conflicts, conflicts=conflicts)


def lock_lab(db: Session, lab_id: int):
    # The version bump is a write: row lock on PostgreSQL, database write lock
    # on SQLite. Held until the session commits or rolls back.
    result = db.execute(
        update(models.Lab)
        .where(models.Lab.id == lab_id)
        .values(version=models.Lab.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Lab not found")


def get_lab(db: Session, lab_id: Optional[int], default_name: str) -> models.Lab:
    if lab_id is None:
        lab = db.query(models.Lab).filter_by(name=default_name).first()
        if lab is None:
            lab = db.query(models.Lab).order_by(models.Lab.id).first()
    else:
        lab = db.get(models.Lab, lab_id)
    if lab is None:
        raise NotFound("Lab not found")
    return lab


def ensure_lab(db: Session, name: str) -> models.Lab:
    lab = db.query(models.Lab).filter_by(name=name).first()
    if lab is None:
        lab = models.Lab(name=name, version=0)
        db.add(lab)
        db.commit()
        db.refresh(lab)
        logger.info("Created lab %r", name)
    return lab
