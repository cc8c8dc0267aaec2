"""Booking lifecycle: create, reschedule, cancel and queries.

A booking is confirmed when it is written and ends cancelled; it is never
deleted so the history stays intact. Every write that changes a booking's
interval holds the lab lock from the availability check until commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from labbook import models
from labbook.availability import AvailabilityResult, check_availability, get_lab, lock_lab
from labbook.clock import utcnow
from labbook.errors import FieldError, Forbidden, NotFound, SlotConflict, ValidationError
from labbook.inbox import notify_attendees
from labbook.schemas import BookingCreate, BookingUpdate
from labbook.security import Principal
from labbook.validation import check_interval, normalize_email, validate_duration, validate_email, validate_title

logger = logging.getLogger(__name__)


@dataclass
class BookingFilter:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    owner_id: Optional[int] = None
    include_cancelled: bool = False


class BookingManager:
    def __init__(self, db: Session, settings):
        self.db = db
        self.default_lab_name = settings.default_lab_name
        self.min_duration = timedelta(minutes=settings.booking_min_minutes)
        self.max_duration = timedelta(hours=settings.booking_max_hours)

    # -------------------- Permissions --------------------
    @staticmethod
    def require_booking_role(requester: Principal):
        if requester.role not in models.BOOKING_ROLES:
            raise Forbidden("Access denied. You're not authorized to manage lab bookings.")

    @staticmethod
    def require_owner_or_admin(booking: models.Booking, requester: Principal):
        if not requester.is_admin and booking.owner_id != requester.user_id:
            raise Forbidden("Not your booking")

    # -------------------- Queries --------------------
    def get(self, booking_id: int) -> models.Booking:
        booking = self.db.get(models.Booking, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    def check_availability(self, start: datetime, end: datetime, lab_id: Optional[int] = None,
                           exclude_booking_id: Optional[int] = None) -> AvailabilityResult:
        lab = get_lab(self.db, lab_id, self.default_lab_name)
        return check_availability(self.db, lab.id, start, end, exclude_booking_id)

    def list(self, flt: BookingFilter) -> List[models.Booking]:
        query = self.db.query(models.Booking)
        if not flt.include_cancelled:
            query = query.filter(models.Booking.status == models.BookingStatus.confirmed)
        # bookings overlapping the requested range
        if flt.start is not None:
            query = query.filter(models.Booking.end_time > flt.start)
        if flt.end is not None:
            query = query.filter(models.Booking.start_time < flt.end)
        if flt.owner_id is not None:
            query = query.filter(models.Booking.owner_id == flt.owner_id)
        return query.order_by(models.Booking.start_time.asc(), models.Booking.id.asc()).all()

    def upcoming(self, limit: int = 10) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .filter(
                models.Booking.status == models.BookingStatus.confirmed,
                models.Booking.start_time >= utcnow(),
            )
            .order_by(models.Booking.start_time.asc())
            .limit(limit)
            .all()
        )

    def stats(self) -> dict:
        counts = dict(
            self.db.query(models.Booking.status, func.count(models.Booking.id))
            .group_by(models.Booking.status)
            .all()
        )
        confirmed = counts.get(models.BookingStatus.confirmed, 0)
        cancelled = counts.get(models.BookingStatus.cancelled, 0)
        return {"total": confirmed + cancelled, "confirmed": confirmed, "cancelled": cancelled}

    # -------------------- Writes --------------------
    def create(self, data: BookingCreate, requester: Principal) -> models.Booking:
        self.require_booking_role(requester)
        lab = get_lab(self.db, data.lab_id, self.default_lab_name)
        owner = self.db.get(models.User, requester.user_id)
        if owner is None:
            raise NotFound("User not found")

        check_interval(data.start_time, data.end_time)
        errors = validate_title(data.title)
        errors += validate_duration(data.start_time, data.end_time, self.min_duration, self.max_duration)
        attendees, attendee_errors = self._resolve_attendees(data.attendees)
        errors += attendee_errors
        if errors:
            raise ValidationError(errors)

        try:
            lock_lab(self.db, lab.id)
            result = check_availability(self.db, lab.id, data.start_time, data.end_time)
            if not result.available:
                raise SlotConflict(result.conflicts)
            booking = models.Booking(
                lab_id=lab.id,
                owner_id=owner.id,
                title=data.title.strip(),
                description=data.description,
                start_time=data.start_time,
                end_time=data.end_time,
                status=models.BookingStatus.confirmed,
                attendees=attendees,
            )
            self.db.add(booking)
            notify_attendees(self.db, booking, models.NotificationType.invitation, sender_id=owner.id)
            self.db.commit()
        except SlotConflict as exc:
            self.db.rollback()
            logger.info("Slot conflict creating booking in lab %s: %s", lab.id, [b.id for b in exc.conflicts])
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info("Booking %s created by user %s", booking.id, requester.user_id)
        return booking

    def reschedule(self, booking_id: int, changes: BookingUpdate, requester: Principal) -> models.Booking:
        """Move a booking and/or edit its fields; the booking itself never counts as a conflict."""
        self.require_booking_role(requester)
        booking = self.get(booking_id)
        self.require_owner_or_admin(booking, requester)
        if booking.status == models.BookingStatus.cancelled:
            raise ValidationError([FieldError("status", "Cannot update a cancelled booking")])

        start = changes.start_time or booking.start_time
        end = changes.end_time or booking.end_time
        check_interval(start, end)
        errors = validate_title(changes.title, required=False)
        if changes.start_time is not None or changes.end_time is not None:
            errors += validate_duration(start, end, self.min_duration, self.max_duration)
        attendees = None
        if changes.attendees is not None:
            attendees, attendee_errors = self._resolve_attendees(changes.attendees)
            errors += attendee_errors
        if errors:
            raise ValidationError(errors)

        try:
            lock_lab(self.db, booking.lab_id)
            result = check_availability(self.db, booking.lab_id, start, end, exclude_booking_id=booking.id)
            if not result.available:
                raise SlotConflict(result.conflicts)
            booking.start_time = start
            booking.end_time = end
            if changes.title is not None:
                booking.title = changes.title.strip()
            if changes.description is not None:
                booking.description = changes.description
            if attendees is not None:
                booking.attendees = attendees
            notify_attendees(self.db, booking, models.NotificationType.update, sender_id=requester.user_id)
            self.db.commit()
        except SlotConflict as exc:
            self.db.rollback()
            logger.info("Slot conflict rescheduling booking %s: %s", booking_id, [b.id for b in exc.conflicts])
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info("Booking %s updated by user %s", booking.id, requester.user_id)
        return booking

    def cancel(self, booking_id: int, requester: Principal) -> models.Booking:
        self.require_booking_role(requester)
        booking = self.get(booking_id)
        self.require_owner_or_admin(booking, requester)
        if booking.status == models.BookingStatus.cancelled:
            return booking

        booking.status = models.BookingStatus.cancelled
        notify_attendees(self.db, booking, models.NotificationType.cancellation, sender_id=requester.user_id)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(booking)
        logger.info("Booking %s cancelled by user %s", booking.id, requester.user_id)
        return booking

    def _resolve_attendees(self, emails) -> Tuple[List[models.User], List[FieldError]]:
        users, errors, seen = [], [], set()
        for raw in emails or []:
            if not raw or not raw.strip():
                continue
            email = normalize_email(raw)
            if email in seen:
                continue
            seen.add(email)
            format_errors = validate_email(email, field="attendees")
            if format_errors:
                errors += format_errors
                continue
            user = self.db.query(models.User).filter_by(email=email).first()
            if user is None:
                errors.append(FieldError("attendees", f"Unknown attendee: {email}"))
            else:
                users.append(user)
        return users, errors
