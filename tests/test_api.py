from datetime import timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session


def slot(start, end, **extra):
    body = {"title": "Lab session", "startTime": f"2024-06-14T{start}", "endTime": f"2024-06-14T{end}"}
    body.update(extra)
    return body


def test_root(client):
    assert client.get("/").json() == {"status": "ok"}


class TestTokenMiddleware:
    def test_missing_token(self, client):
        resp = client.get("/bookings")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Access denied. No token provided."}

    def test_malformed_token(self, client):
        resp = client.get("/bookings", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 400
        assert resp.json() == {"message": "Failed to authenticate token"}

    def test_other_scheme_is_malformed(self, client):
        for value in ("Token abc.def.ghi", "abc.def.ghi"):
            resp = client.get("/bookings", headers={"Authorization": value})
            assert resp.status_code == 400
            assert resp.json() == {"message": "Failed to authenticate token"}

    def test_bearer_without_credential_is_missing(self, client):
        resp = client.get("/bookings", headers={"Authorization": "Bearer "})
        assert resp.status_code == 401
        assert resp.json() == {"message": "Access denied. No token provided."}

    def test_expired_token(self, client, lecturer, tokens):
        token = tokens.issue({"sub": str(lecturer.id), "role": "lecturer"}, expires_in=timedelta(seconds=-5))
        resp = client.get("/bookings", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 400

    def test_valid_token(self, client, lecturer, headers):
        resp = client.get("/users/me", headers=headers(lecturer))
        assert resp.status_code == 200
        assert resp.json()["id"] == lecturer.id


class TestBookingEndpoints:
    def test_scenario_from_the_timetable(self, client, lecturer, headers):
        auth = headers(lecturer)
        first = client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=auth)
        assert first.status_code == 201
        booking = first.json()
        assert booking["status"] == "confirmed"
        assert booking["startTime"] == "2024-06-14T10:00:00"

        clash = client.post("/bookings", json=slot("10:30:00", "11:30:00"), headers=auth)
        assert clash.status_code == 409
        assert [c["id"] for c in clash.json()["conflicts"]] == [booking["id"]]

        back_to_back = client.post("/bookings", json=slot("11:00:00", "12:00:00"), headers=auth)
        assert back_to_back.status_code == 201

    def test_timezone_aware_input_is_stored_as_utc(self, client, lecturer, headers):
        resp = client.post("/bookings", headers=headers(lecturer), json={
            "title": "Offset", "startTime": "2024-06-14T12:00:00+02:00", "endTime": "2024-06-14T13:00:00+02:00",
        })
        assert resp.status_code == 201
        assert resp.json()["startTime"] == "2024-06-14T10:00:00"

    def test_check_availability(self, client, lecturer, headers):
        auth = headers(lecturer)
        created = client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=auth).json()
        body = {"startTime": "2024-06-14T10:00:00", "endTime": "2024-06-14T11:00:00"}

        resp = client.post("/bookings/check-availability", json=body, headers=auth)
        assert resp.json()["available"] is False
        assert [c["id"] for c in resp.json()["conflicts"]] == [created["id"]]

        resp = client.post("/bookings/check-availability", json={**body, "excludeBookingId": created["id"]},
                           headers=auth)
        assert resp.json() == {"available": True, "conflicts": []}

    def test_check_availability_invalid_interval(self, client, lecturer, headers):
        resp = client.post("/bookings/check-availability", headers=headers(lecturer),
                           json={"startTime": "2024-06-14T11:00:00", "endTime": "2024-06-14T10:00:00"})
        assert resp.status_code == 400
        assert resp.json()["errors"] == [{"field": "endTime", "message": "End time must be after start time"}]

    def test_missing_title(self, client, lecturer, headers):
        resp = client.post("/bookings", headers=headers(lecturer),
                           json={"startTime": "2024-06-14T10:00:00", "endTime": "2024-06-14T11:00:00"})
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "title"

    def test_plain_user_is_forbidden(self, client, make_user, headers):
        user = make_user("plain@uni.edu", role="user")
        resp = client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=headers(user))
        assert resp.status_code == 403
        assert client.get("/bookings", headers=headers(user)).status_code == 200

    def test_update_cancel_and_list(self, client, lecturer, headers):
        auth = headers(lecturer)
        created = client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=auth).json()

        moved = client.put(f"/bookings/{created['id']}", headers=auth,
                           json={"startTime": "2024-06-14T13:00:00", "endTime": "2024-06-14T14:00:00"})
        assert moved.status_code == 200
        assert moved.json()["startTime"] == "2024-06-14T13:00:00"

        for _ in range(2):
            resp = client.patch(f"/bookings/{created['id']}/cancel", headers=auth)
            assert resp.status_code == 200
            assert resp.json()["status"] == "cancelled"

        assert client.get("/bookings", headers=auth).json() == {"bookings": [], "count": 0}
        listed = client.get("/bookings", params={"includeCancelled": "true"}, headers=auth).json()
        assert listed["count"] == 1

    def test_list_by_range_and_owner(self, client, lecturer, make_user, headers):
        other = make_user("other@uni.edu", role="instructor")
        client.post("/bookings", json=slot("09:00:00", "10:00:00"), headers=headers(other))
        mine = client.post("/bookings", json=slot("12:00:00", "13:00:00"), headers=headers(lecturer)).json()

        resp = client.get("/bookings", headers=headers(lecturer),
                          params={"from": "2024-06-14T11:00:00", "to": "2024-06-14T18:00:00"})
        assert [b["id"] for b in resp.json()["bookings"]] == [mine["id"]]

        resp = client.get("/bookings", headers=headers(lecturer), params={"ownerId": other.id})
        assert [b["ownerId"] for b in resp.json()["bookings"]] == [other.id]

    def test_get_missing_booking(self, client, lecturer, headers):
        resp = client.get("/bookings/999", headers=headers(lecturer))
        assert resp.status_code == 404
        assert resp.json() == {"message": "Booking not found"}

    def test_stats_and_upcoming(self, client, lecturer, headers):
        auth = headers(lecturer)
        client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=auth)
        assert client.get("/bookings/stats", headers=auth).json() == {"total": 1, "confirmed": 1, "cancelled": 0}
        assert client.get("/bookings/upcoming", headers=auth).json() == []

    def test_labs_listed(self, client, lecturer, headers, settings):
        labs = client.get("/labs", headers=headers(lecturer)).json()
        assert [lab["name"] for lab in labs] == [settings.default_lab_name]

    def test_store_fault_is_a_generic_500(self, client, lecturer, headers, monkeypatch):
        auth = headers(lecturer)

        def broken_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", broken_commit)
        resp = client.post("/bookings", json=slot("10:00:00", "11:00:00"), headers=auth)
        assert resp.status_code == 500
        assert resp.json() == {"message": "Something went wrong!"}

        monkeypatch.undo()
        assert client.get("/bookings", headers=auth).json() == []
