"""In-app notifications for booking attendees.

Rows are added to the caller's session and written by the caller's commit,
so a booking change and its notifications land together or not at all.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from labbook import models
from labbook.errors import FieldError, NotFound, ValidationError
from labbook.security import Principal

logger = logging.getLogger(__name__)

MESSAGES = {
    models.NotificationType.invitation: "You have been invited to {title} on {start:%Y-%m-%d} from {start:%H:%M} to {end:%H:%M}",
    models.NotificationType.update: "{title} was changed: now on {start:%Y-%m-%d} from {start:%H:%M} to {end:%H:%M}",
    models.NotificationType.cancellation: "{title} on {start:%Y-%m-%d} at {start:%H:%M} was cancelled",
}


def notify_attendees(db: Session, booking: models.Booking, kind: models.NotificationType,
                     sender_id=None) -> List[models.Notification]:
    message = MESSAGES[kind].format(title=booking.title, start=booking.start_time, end=booking.end_time)
    created = []
    for attendee in booking.attendees:
        note = models.Notification(
            receiver_id=attendee.id,
            sender_id=sender_id,
            booking=booking,
            type=kind,
            message=message,
            is_read=False,
            response=models.NotificationResponse.pending,
        )
        db.add(note)
        created.append(note)
    return created


class InboxService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, requester: Principal, unread_only: bool = False) -> List[models.Notification]:
        query = self.db.query(models.Notification).filter(models.Notification.receiver_id == requester.user_id)
        if unread_only:
            query = query.filter(models.Notification.is_read.is_(False))
        return query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).all()

    def get_own(self, notification_id: int, requester: Principal) -> models.Notification:
        note = self.db.get(models.Notification, notification_id)
        # someone else's notification looks the same as a missing one
        if note is None or note.receiver_id != requester.user_id:
            raise NotFound("Notification not found")
        return note

    def mark_read(self, notification_id: int, requester: Principal) -> models.Notification:
        note = self.get_own(notification_id, requester)
        note.is_read = True
        self._commit()
        self.db.refresh(note)
        return note

    def respond(self, notification_id: int, requester: Principal, accept: bool) -> models.Notification:
        note = self.get_own(notification_id, requester)
        if note.type != models.NotificationType.invitation:
            raise ValidationError([FieldError("type", "Only invitations can be accepted or rejected")])
        if note.booking.status == models.BookingStatus.cancelled:
            raise ValidationError([FieldError("booking", "The booking has been cancelled")])

        note.response = models.NotificationResponse.accepted if accept else models.NotificationResponse.rejected
        note.is_read = True
        self._commit()
        self.db.refresh(note)
        logger.info("User %s %s invitation %s", requester.user_id, note.response.value, note.id)
        return note

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
