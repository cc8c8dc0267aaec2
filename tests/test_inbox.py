from datetime import datetime

import pytest

from labbook import models
from labbook.bookings import BookingManager
from labbook.errors import NotFound, SlotConflict, ValidationError
from labbook.inbox import InboxService
from labbook.schemas import BookingCreate, BookingUpdate
from tests.conftest import principal


def at(hour, minute=0):
    return datetime(2024, 6, 14, hour, minute)


@pytest.fixture
def student(make_user):
    return make_user("student@uni.edu", role="user")


@pytest.fixture
def manager(db, settings):
    return BookingManager(db, settings)


@pytest.fixture
def inbox(db):
    return InboxService(db)


def invite(manager, owner, *emails):
    data = BookingCreate(title="Robotics lab", start_time=at(9), end_time=at(10), attendees=list(emails))
    return manager.create(data, principal(owner))


class TestBookingNotifications:
    def test_create_invites_each_attendee(self, manager, inbox, lecturer, student, make_user):
        other = make_user("other@uni.edu", role="user")
        booking = invite(manager, lecturer, "student@uni.edu", "other@uni.edu")

        for user in (student, other):
            [note] = inbox.list(principal(user))
            assert note.type == models.NotificationType.invitation
            assert note.booking_id == booking.id
            assert note.sender_id == lecturer.id
            assert note.response == models.NotificationResponse.pending
            assert "Robotics lab" in note.message
        assert inbox.list(principal(lecturer)) == []

    def test_reschedule_and_cancel_notify_attendees(self, manager, inbox, lecturer, student):
        booking = invite(manager, lecturer, "student@uni.edu")
        manager.reschedule(booking.id, BookingUpdate(start_time=at(11), end_time=at(12)), principal(lecturer))
        manager.cancel(booking.id, principal(lecturer))
        manager.cancel(booking.id, principal(lecturer))

        kinds = [n.type for n in inbox.list(principal(student))]
        assert sorted(kinds) == sorted([
            models.NotificationType.invitation,
            models.NotificationType.update,
            models.NotificationType.cancellation,
        ])

    def test_rejected_booking_writes_no_notifications(self, db, manager, lecturer, student):
        invite(manager, lecturer, "student@uni.edu")
        with pytest.raises(SlotConflict):
            invite(manager, lecturer, "student@uni.edu")
        assert db.query(models.Notification).count() == 1


class TestInbox:
    def test_mark_read_and_unread_filter(self, manager, inbox, lecturer, student):
        invite(manager, lecturer, "student@uni.edu")
        [note] = inbox.list(principal(student), unread_only=True)
        inbox.mark_read(note.id, principal(student))
        assert inbox.list(principal(student), unread_only=True) == []
        assert len(inbox.list(principal(student))) == 1

    def test_someone_elses_notification_is_not_found(self, manager, inbox, lecturer, student):
        invite(manager, lecturer, "student@uni.edu")
        [note] = inbox.list(principal(student))
        with pytest.raises(NotFound):
            inbox.mark_read(note.id, principal(lecturer))
        with pytest.raises(NotFound):
            inbox.respond(note.id, principal(lecturer), accept=True)

    def test_accept_and_reject(self, manager, inbox, lecturer, student):
        invite(manager, lecturer, "student@uni.edu")
        [note] = inbox.list(principal(student))
        accepted = inbox.respond(note.id, principal(student), accept=True)
        assert accepted.response == models.NotificationResponse.accepted
        assert accepted.is_read is True
        rejected = inbox.respond(note.id, principal(student), accept=False)
        assert rejected.response == models.NotificationResponse.rejected

    def test_only_invitations_take_a_response(self, manager, inbox, lecturer, student):
        booking = invite(manager, lecturer, "student@uni.edu")
        manager.reschedule(booking.id, BookingUpdate(title="Robotics lab II"), principal(lecturer))
        update = next(n for n in inbox.list(principal(student)) if n.type == models.NotificationType.update)
        with pytest.raises(ValidationError):
            inbox.respond(update.id, principal(student), accept=True)

    def test_invitation_to_cancelled_booking_cannot_be_accepted(self, manager, inbox, lecturer, student):
        booking = invite(manager, lecturer, "student@uni.edu")
        manager.cancel(booking.id, principal(lecturer))
        invitation = next(n for n in inbox.list(principal(student))
                          if n.type == models.NotificationType.invitation)
        with pytest.raises(ValidationError, match="cancelled"):
            inbox.respond(invitation.id, principal(student), accept=True)


class TestNotificationEndpoints:
    def test_list_read_and_respond(self, client, lecturer, student, headers):
        created = client.post("/bookings", headers=headers(lecturer), json={
            "title": "Robotics lab", "startTime": "2024-06-14T09:00:00", "endTime": "2024-06-14T10:00:00",
            "attendees": ["student@uni.edu"],
        })
        assert created.status_code == 201
        auth = headers(student)

        [note] = client.get("/notifications", params={"unread": "true"}, headers=auth).json()
        assert note["type"] == "invitation"
        assert note["bookingId"] == created.json()["id"]
        assert note["isRead"] is False

        read = client.put(f"/notifications/{note['id']}/read", headers=auth)
        assert read.json()["isRead"] is True
        assert client.get("/notifications", params={"unread": "true"}, headers=auth).json() == []

        rejected = client.post(f"/notifications/{note['id']}/reject", headers=auth)
        assert rejected.json()["response"] == "rejected"
        accepted = client.post(f"/notifications/{note['id']}/accept", headers=auth)
        assert accepted.json()["response"] == "accepted"

    def test_foreign_notification_is_404(self, client, lecturer, student, headers):
        client.post("/bookings", headers=headers(lecturer), json={
            "title": "Robotics lab", "startTime": "2024-06-14T09:00:00", "endTime": "2024-06-14T10:00:00",
            "attendees": ["student@uni.edu"],
        })
        [note] = client.get("/notifications", headers=headers(student)).json()
        resp = client.put(f"/notifications/{note['id']}/read", headers=headers(lecturer))
        assert resp.status_code == 404
        assert resp.json() == {"message": "Notification not found"}

    def test_requires_a_token(self, client):
        assert client.get("/notifications").status_code == 401
