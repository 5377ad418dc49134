"""HTTP layer: routing, payloads and error mapping."""

import pytest
from fastapi.testclient import TestClient

from gym_backend.api_main import create_app
from gym_backend.locks import ClassLocks


@pytest.fixture
def client(db):
    app = create_app(db, seed=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def people(client):
    def user(name, email, role, status=None):
        body = {"name": name, "email": email, "role": role, "membership_status": status}
        resp = client.post("/api/users", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()["id"]

    return {
        "admin": user("Admin", "admin@gym.test", "admin"),
        "coach": user("Coach", "coach@gym.test", "instructor"),
        "anna": user("Anna", "anna@gym.test", "member", "active"),
        "marco": user("Marco", "marco@gym.test", "member", "active"),
        "giulia": user("Giulia", "giulia@gym.test", "member", "active"),
        "paolo": user("Paolo", "paolo@gym.test", "member", "inactive"),
    }


@pytest.fixture
def class_id(client, people):
    resp = client.post(
        "/api/classes",
        json={
            "name": "Spinning",
            "instructor_id": people["coach"],
            "start_time": "2030-01-14T18:00:00",
            "end_time": "2030-01-14T18:45:00",
            "capacity": 2,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _book(client, member_id, class_id):
    return client.post("/api/reservations", json={"member_id": member_id, "class_id": class_id})


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"


def test_booking_waitlist_and_promotion(client, people, class_id):
    ra = _book(client, people["anna"], class_id).json()
    _book(client, people["marco"], class_id)
    rc = _book(client, people["giulia"], class_id).json()
    assert ra["status"] == "confirmed"
    assert ra["waitlist_position"] is None
    assert rc["status"] == "waitlisted"
    assert rc["waitlist_position"] == 1

    resp = client.post(f"/api/reservations/{ra['id']}/cancel", json={"acting_user_id": people["anna"]})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    by_class = {r["id"]: r["status"] for r in client.get(f"/api/classes/{class_id}/reservations").json()}
    assert by_class[rc["id"]] == "confirmed"
    assert client.get(f"/api/classes/{class_id}").json()["current_bookings"] == 2
    assert client.get("/api/ledger/audit").json() == {"consistent": True, "drifts": []}


@pytest.mark.parametrize(
    "who, expected, error",
    [
        ("paolo", 422, "invalid_member"),
        ("coach", 422, "invalid_member"),
    ],
)
def test_booking_rejected_for_non_bookable_users(client, people, class_id, who, expected, error):
    resp = _book(client, people[who], class_id)
    assert resp.status_code == expected
    assert resp.json()["error"] == error


def test_error_mapping(client, people, class_id):
    assert _book(client, 999, class_id).status_code == 404

    r = _book(client, people["anna"], class_id).json()
    dup = _book(client, people["anna"], class_id)
    assert dup.status_code == 409
    assert dup.json()["error"] == "duplicate_booking"

    forbidden = client.post(f"/api/reservations/{r['id']}/cancel", json={"acting_user_id": people["marco"]})
    assert forbidden.status_code == 403

    client.post(f"/api/reservations/{r['id']}/cancel", json={"acting_user_id": people["admin"]})
    again = client.post(f"/api/reservations/{r['id']}/cancel", json={"acting_user_id": people["anna"]})
    assert again.status_code == 409
    assert again.json()["error"] == "already_cancelled"


def test_cancel_class_requires_admin(client, people, class_id):
    _book(client, people["anna"], class_id)

    denied = client.post(f"/api/classes/{class_id}/cancel", json={"acting_user_id": people["anna"]})
    assert denied.status_code == 403

    resp = client.post(f"/api/classes/{class_id}/cancel", json={"acting_user_id": people["admin"]})
    assert resp.status_code == 200
    body = resp.json()
    assert body["is_cancelled"] is True
    assert body["current_bookings"] == 0

    statuses = [r["status"] for r in client.get(f"/api/members/{people['anna']}/reservations").json()]
    assert statuses == ["cancelled"]

    closed = _book(client, people["marco"], class_id)
    assert closed.status_code == 409
    assert closed.json()["error"] == "class_cancelled"


def test_update_class_and_user(client, people, class_id):
    resp = client.patch(f"/api/classes/{class_id}", json={"name": "Spinning Pro"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Spinning Pro"

    resp = client.patch(f"/api/users/{people['paolo']}", json={"membership_status": "active"})
    assert resp.json()["membership_status"] == "active"
    assert _book(client, people["paolo"], class_id).status_code == 201


def test_class_validation(client, people):
    resp = client.post(
        "/api/classes",
        json={
            "name": "Yoga",
            "instructor_id": people["anna"],
            "start_time": "2030-01-14T18:00:00",
            "end_time": "2030-01-14T19:00:00",
            "capacity": 5,
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_class_times_with_offsets(client, people):
    resp = client.post(
        "/api/classes",
        json={
            "name": "Boxing",
            "instructor_id": people["coach"],
            "start_time": "2030-01-14T18:00:00Z",
            "end_time": "2030-01-14T18:45:00Z",
            "capacity": 4,
        },
    )
    assert resp.status_code == 201, resp.text
    boxing = resp.json()
    assert boxing["start_time"] == "2030-01-14T18:00:00"

    resp = client.patch(f"/api/classes/{boxing['id']}", json={"end_time": "2030-01-14T19:00:00Z"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["end_time"] == "2030-01-14T19:00:00"

    mixed = client.post(
        "/api/classes",
        json={
            "name": "Pilates",
            "instructor_id": people["coach"],
            "start_time": "2030-01-15T18:00:00",
            "end_time": "2030-01-15T20:00:00+01:00",
            "capacity": 4,
        },
    )
    assert mixed.status_code == 201, mixed.text
    assert mixed.json()["end_time"] == "2030-01-15T19:00:00"

    backwards = client.patch(f"/api/classes/{boxing['id']}", json={"end_time": "2030-01-14T19:00:00+02:00"})
    assert backwards.status_code == 422
    assert backwards.json()["error"] == "validation_error"


def test_busy_class_lock_maps_to_503(client, people, class_id):
    locks = ClassLocks(timeout=0.01)
    client.app.state.reservations.locks = locks

    with locks.hold(class_id):
        resp = _book(client, people["anna"], class_id)

    assert resp.status_code == 503
    assert resp.json()["error"] == "transient"
    assert client.get(f"/api/classes/{class_id}").json()["current_bookings"] == 0
    assert _book(client, people["anna"], class_id).status_code == 201
