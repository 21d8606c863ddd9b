import os
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from availability_service.auth import ALGORITHM, SECRET_KEY
from availability_service.config import Settings
from availability_service.database import Base, SessionLocal, engine
from availability_service.engine import AvailabilityEngine
from availability_service.exceptions import RepositoryError
from availability_service.main import app, get_engine, get_repository
from availability_service import rate_limiter
from availability_service.rate_limiter import reset_rate_limits
from availability_service.repository import BookingRepository, SQLBookingRepository

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_rate_limits()
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


def make_token(user_id: int, username: str, role: str) -> str:
    payload = {
        "sub": username,
        "role": role,
        "user_id": user_id,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def auth(user_id: int, username: str, role: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, username, role)}"}


MEMBER = auth(1, "john", "member")
OTHER_MEMBER = auth(2, "jane", "member")
STAFF = auth(50, "frontdesk", "staff")
SERVICE = auth(0, "billing_service", "service_account")


def event_body(start_time="09:00", duration=4, space_id="conference-hall", day="2024-02-01"):
    return {
        "space_id": space_id,
        "kind": "event",
        "date": day,
        "start_time": start_time,
        "duration": duration,
        "owner_label": "John Doe",
        "amount": 100000,
    }


def coworking_body(plan="dedicated", day="2024-03-01", days=30):
    return {"space_id": plan, "kind": "coworking", "date": day, "duration": days}


class FailingRepository(BookingRepository):
    async def list_bookings(self, space_id, day):
        raise RepositoryError("bookings database is down")

    async def list_coworking_bookings(self, plan_type, until):
        raise RepositoryError("bookings database is down")


def test_root_health_check():
    res = client.get("/")
    assert res.status_code == 200
    assert res.json() == {"service": "availability", "status": "running"}


def test_availability_requires_auth():
    res = client.get("/api/v1/availability/conference-hall/daily", params={"date": "2024-02-01"})
    assert res.status_code in (401, 403)


# ---------- submission ----------


def test_member_can_submit_event_booking():
    res = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER)
    assert res.status_code == 201
    data = res.json()
    assert data["status"] == "pending"
    assert data["space_id"] == "conference-hall"
    assert data["start_time"] == "09:00"
    assert data["id"].startswith("BK-")


def test_owner_label_defaults_to_username():
    body = event_body()
    body["owner_label"] = ""
    res = client.post("/api/v1/bookings", json=body, headers=MEMBER)
    assert res.status_code == 201
    assert res.json()["owner_label"] == "john"


def test_overlapping_submission_is_rejected():
    assert client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).status_code == 201

    res = client.post(
        "/api/v1/bookings", json=event_body(start_time="10:00", duration=2), headers=OTHER_MEMBER
    )
    assert res.status_code == 409
    body = res.json()
    assert body["service"] == "availability"
    assert body["detail"] == "Found 1 scheduling conflict(s)"


def test_back_to_back_submission_is_accepted():
    assert client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).status_code == 201
    res = client.post(
        "/api/v1/bookings", json=event_body(start_time="13:00", duration=1), headers=OTHER_MEMBER
    )
    assert res.status_code == 201


def test_submission_outside_business_hours_is_rejected():
    res = client.post(
        "/api/v1/bookings", json=event_body(start_time="19:00", duration=2), headers=MEMBER
    )
    assert res.status_code == 409
    assert res.json()["detail"] == "Booking must be within business hours (8:00 - 20:00)"


def test_event_submission_requires_start_time():
    body = event_body()
    body.pop("start_time")
    res = client.post("/api/v1/bookings", json=body, headers=MEMBER)
    assert res.status_code == 422


def test_staff_cannot_submit_bookings():
    res = client.post("/api/v1/bookings", json=event_body(), headers=STAFF)
    assert res.status_code == 403


def test_coworking_submission_respects_capacity():
    def small_plan_engine():
        return AvailabilityEngine(
            SQLBookingRepository(SessionLocal),
            Settings(coworking_capacities={"dedicated": 1}),
        )

    app.dependency_overrides[get_engine] = small_plan_engine

    first = client.post("/api/v1/bookings", json=coworking_body(), headers=MEMBER)
    assert first.status_code == 201
    assert first.json()["start_time"] is None

    second = client.post(
        "/api/v1/bookings", json=coworking_body(day="2024-03-15", days=1), headers=OTHER_MEMBER
    )
    assert second.status_code == 409
    assert second.json()["detail"] == (
        "Coworking space at capacity (1/1). Please choose different dates."
    )

    later = client.post(
        "/api/v1/bookings", json=coworking_body(day="2024-03-31", days=1), headers=OTHER_MEMBER
    )
    assert later.status_code == 201


def test_submission_is_blocked_when_availability_is_unknown():
    app.dependency_overrides[get_repository] = lambda: FailingRepository()

    res = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER)
    assert res.status_code == 503
    assert res.json()["detail"] == "Could not determine availability"

    app.dependency_overrides.clear()
    listing = client.get("/api/v1/bookings", headers=STAFF)
    assert listing.json() == []


# ---------- availability checks ----------


def test_conflict_check_reports_conflicts_and_suggestions():
    booked = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()
    client.post("/api/v1/bookings", json=event_body(start_time="14:00", duration=3), headers=MEMBER)

    res = client.post(
        "/api/v1/availability/conflicts",
        json={
            "space_id": "conference-hall",
            "date": "2024-02-01",
            "start_time": "10:00",
            "duration_hours": 2,
        },
        headers=OTHER_MEMBER,
    )
    assert res.status_code == 200
    data = res.json()
    assert data["has_conflict"] is True
    assert [b["id"] for b in data["conflicts"]] == [booked["id"]]
    assert data["suggestions"] == [
        {"start": "2024-02-01T17:00:00", "end": "2024-02-01T19:00:00"},
        {"start": "2024-02-01T18:00:00", "end": "2024-02-01T20:00:00"},
    ]


def test_conflict_check_can_exclude_the_booking_being_edited():
    booked = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()

    res = client.post(
        "/api/v1/availability/conflicts",
        json={
            "space_id": "conference-hall",
            "date": "2024-02-01",
            "start_time": "10:00",
            "duration_hours": 3,
            "exclude_booking_id": booked["id"],
        },
        headers=MEMBER,
    )
    assert res.json()["has_conflict"] is False
    assert res.json()["message"] == "No conflicts found"


@pytest.mark.parametrize(
    "override",
    [{"start_time": "25:00"}, {"start_time": "ten"}, {"duration_hours": 0}, {"space_id": " "}],
)
def test_malformed_conflict_check_is_a_bad_request(override):
    body = {
        "space_id": "conference-hall",
        "date": "2024-02-01",
        "start_time": "10:00",
        "duration_hours": 1,
    }
    body.update(override)
    res = client.post("/api/v1/availability/conflicts", json=body, headers=MEMBER)
    assert res.status_code == 400
    assert res.json()["path"] == "/api/v1/availability/conflicts"


def test_conflict_check_repository_failure_is_503():
    app.dependency_overrides[get_repository] = lambda: FailingRepository()
    res = client.post(
        "/api/v1/availability/conflicts",
        json={
            "space_id": "conference-hall",
            "date": "2024-02-01",
            "start_time": "10:00",
            "duration_hours": 1,
        },
        headers=SERVICE,
    )
    assert res.status_code == 503


def test_coworking_check_endpoint():
    client.post("/api/v1/bookings", json=coworking_body(plan="flex-pass", days=5), headers=MEMBER)

    res = client.post(
        "/api/v1/availability/coworking",
        json={"plan_type": "flex-pass", "start_date": "2024-03-03", "duration_days": 1},
        headers=OTHER_MEMBER,
    )
    assert res.status_code == 200
    data = res.json()
    assert data["has_conflict"] is False
    assert data["occupancy"] == 1
    assert data["capacity"] == 30
    assert data["message"] == "Available (1/30 spots taken)"


def test_slots_endpoint_lists_all_candidates():
    client.post("/api/v1/bookings", json=event_body(start_time="08:00", duration=12), headers=MEMBER)

    res = client.get(
        "/api/v1/availability/conference-hall/slots",
        params={"date": "2024-02-01", "duration_hours": 1},
        headers=MEMBER,
    )
    assert res.status_code == 200
    slots = res.json()
    assert len(slots) == 12
    assert not any(slot["available"] for slot in slots)
    assert slots[0]["reason"] == "Conflicts with John Doe's booking (08:00-20:00)"


def test_daily_and_weekly_endpoints():
    client.post("/api/v1/bookings", json=event_body(), headers=MEMBER)
    client.post("/api/v1/bookings", json=event_body(start_time="14:00", duration=3), headers=MEMBER)

    daily = client.get(
        "/api/v1/availability/conference-hall/daily",
        params={"date": "2024-02-01"},
        headers=MEMBER,
    ).json()
    assert daily["booked_hours"] == 7
    assert daily["available_hours"] == 5
    assert len(daily["bookings"]) == 2

    weekly = client.get(
        "/api/v1/availability/conference-hall/weekly",
        params={"start_date": "2024-01-29"},
        headers=MEMBER,
    ).json()
    assert len(weekly) == 7
    assert [d["date"] for d in weekly] == [
        "2024-01-29",
        "2024-01-30",
        "2024-01-31",
        "2024-02-01",
        "2024-02-02",
        "2024-02-03",
        "2024-02-04",
    ]
    assert weekly[0]["day_name"] == "Mon"
    assert weekly[3]["booked_hours"] == 7


# ---------- status transitions ----------


def test_staff_verifies_payment_and_completes_booking():
    booking_id = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()["id"]

    res = client.patch(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "confirmed"}, headers=STAFF
    )
    assert res.status_code == 200
    assert res.json()["status"] == "confirmed"

    res = client.patch(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "completed"}, headers=STAFF
    )
    assert res.json()["status"] == "completed"


def test_invalid_status_transition_is_rejected():
    booking_id = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()["id"]

    res = client.patch(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "completed"}, headers=STAFF
    )
    assert res.status_code == 409
    assert res.json()["detail"] == "Cannot move booking from 'pending' to 'completed'"


def test_member_cannot_change_status():
    booking_id = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()["id"]
    res = client.patch(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "confirmed"}, headers=MEMBER
    )
    assert res.status_code == 403


def test_unknown_booking_status_update_is_404():
    res = client.patch("/api/v1/bookings/BK-NOPE/status", json={"status": "cancelled"}, headers=STAFF)
    assert res.status_code == 404
    assert res.json()["detail"] == "Booking not found"


def test_cancelled_booking_frees_the_slot():
    booking_id = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()["id"]
    assert client.post("/api/v1/bookings", json=event_body(), headers=OTHER_MEMBER).status_code == 409

    res = client.patch(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "cancelled"}, headers=STAFF
    )
    assert res.status_code == 200

    assert client.post("/api/v1/bookings", json=event_body(), headers=OTHER_MEMBER).status_code == 201


def test_status_changes_are_rate_limited(monkeypatch):
    monkeypatch.setattr(rate_limiter, "MAX_SUBMISSIONS_PER_WINDOW", 2)
    booking_id = client.post("/api/v1/bookings", json=event_body(), headers=MEMBER).json()["id"]
    url = f"/api/v1/bookings/{booking_id}/status"

    assert client.patch(url, json={"status": "confirmed"}, headers=STAFF).status_code == 200
    assert client.patch(url, json={"status": "completed"}, headers=STAFF).status_code == 200

    res = client.patch(url, json={"status": "cancelled"}, headers=STAFF)
    assert res.status_code == 429
    assert res.json()["detail"] == "Too many booking operations in a short time"


# ---------- bookings read contract ----------


def test_service_account_lists_bookings_with_filters():
    client.post("/api/v1/bookings", json=event_body(), headers=MEMBER)
    client.post("/api/v1/bookings", json=event_body(day="2024-02-02"), headers=MEMBER)
    client.post("/api/v1/bookings", json=coworking_body(plan="flex-pass"), headers=MEMBER)

    res = client.get(
        "/api/v1/bookings",
        params={"space_id": "conference-hall", "date": "2024-02-01"},
        headers=SERVICE,
    )
    assert res.status_code == 200
    assert [b["date"] for b in res.json()] == ["2024-02-01"]

    res = client.get(
        "/api/v1/bookings",
        params={"space_id": "flex-pass", "kind": "coworking", "before": "2024-04-01"},
        headers=SERVICE,
    )
    assert len(res.json()) == 1


def test_member_cannot_list_all_bookings():
    res = client.get("/api/v1/bookings", headers=MEMBER)
    assert res.status_code == 403
