from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import api  # noqa: E402
from database import Base  # noqa: E402
from holiday_calendar import HolidayCalendar  # noqa: E402

STAFF = {"X-Actor-Id": "u-1", "X-Actor-Role": "staff"}
OTHER = {"X-Actor-Id": "u-2", "X-Actor-Role": "staff"}
MANAGER = {"X-Actor-Id": "m-1", "X-Actor-Role": "privileged"}


@pytest.fixture()
def client(monkeypatch):
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    calendar = HolidayCalendar({"2025-06-10": "Store anniversary"}, use_defaults=False)
    api.app.dependency_overrides[api.get_session_factory] = lambda: factory
    api.app.dependency_overrides[api.get_holidays] = lambda: calendar
    monkeypatch.setattr(api, "load_wages", lambda: {"default": {"wage": 1200, "confirmed": True}})
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()
    engine.dispose()


def _create(client, headers=STAFF, **overrides):
    payload = {"date": "2025-06-10", "startTime": "10:00", "endTime": "15:00", "nickname": "Aki"}
    payload.update(overrides)
    response = client.post("/api/v1/shifts", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _act(client, shift_id, action, headers):
    return client.post(f"/api/v1/shifts/{shift_id}/actions/{action}", headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_actor_headers_are_required(client):
    assert client.get("/api/v1/shifts?year=2025&month=6").status_code == 401
    bad_role = {"X-Actor-Id": "u-1", "X-Actor-Role": "owner"}
    assert client.get("/api/v1/shifts?year=2025&month=6", headers=bad_role).status_code == 400


def test_create_submit_approve(client):
    created = _create(client)
    assert created["status"] == "draft"
    assert created["userId"] == "u-1"
    assert created["allowedActions"] == ["submit"]

    submitted = _act(client, created["id"], "submit", STAFF)
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "pending"

    denied = _act(client, created["id"], "approve", STAFF)
    assert denied.status_code == 403
    assert denied.json()["error"] == "permission_denied"

    approved = _act(client, created["id"], "approve", MANAGER)
    assert approved.json()["status"] == "approved"


def test_invalid_interval_is_a_bad_request(client):
    response = client.post(
        "/api/v1/shifts",
        json={"date": "2025-06-10", "startTime": "15:00", "endTime": "10:00"},
        headers=STAFF,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_interval"


def test_unparseable_payload_is_a_bad_request(client):
    response = client.post("/api/v1/shifts", json={"date": "soon", "startTime": "10:00"}, headers=STAFF)
    assert response.status_code == 400


def test_invalid_transition_is_a_conflict(client):
    created = _create(client)
    response = _act(client, created["id"], "complete", MANAGER)
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


def test_unknown_shift_is_not_found(client):
    assert _act(client, "missing", "submit", STAFF).status_code == 404
    assert client.get("/api/v1/shifts/missing", headers=MANAGER).status_code == 404


def test_staff_cannot_read_other_peoples_shifts(client):
    created = _create(client)
    assert client.get(f"/api/v1/shifts/{created['id']}", headers=OTHER).status_code == 404
    assert client.get(f"/api/v1/shifts/{created['id']}", headers=MANAGER).status_code == 200


def test_change_request_flow(client):
    created = _create(client)
    _act(client, created["id"], "submit", STAFF)
    _act(client, created["id"], "approve", MANAGER)

    proposed = client.post(f"/api/v1/shifts/{created['id']}/change-request", json={"endTime": "18:00"}, headers=STAFF)
    assert proposed.status_code == 200
    assert proposed.json()["status"] == "draft"
    assert proposed.json()["requestedChanges"] == {"endTime": "18:00"}
    assert proposed.json()["endTime"] == "15:00"

    bad = client.post(f"/api/v1/shifts/{created['id']}/change-request", json={"endTime": "18:00"}, headers=STAFF)
    assert bad.status_code == 409

    withdrawn = client.delete(f"/api/v1/shifts/{created['id']}/change-request", headers=STAFF)
    assert withdrawn.json()["status"] == "approved"
    assert withdrawn.json()["requestedChanges"] is None

    inverted = client.post(
        f"/api/v1/shifts/{created['id']}/change-request", json={"startTime": "16:00"}, headers=STAFF
    )
    assert inverted.status_code == 400
    assert inverted.json()["error"] == "invalid_delta"


def test_month_listing_and_deleted_view(client):
    mine = _create(client)
    _create(client, OTHER, startTime="11:00")
    _create(client, MANAGER, userId="u-3", date="2025-07-01")

    staff_view = client.get("/api/v1/shifts?year=2025&month=6", headers=STAFF).json()
    assert [item["id"] for item in staff_view["shifts"]] == [mine["id"]]
    manager_view = client.get("/api/v1/shifts?year=2025&month=6", headers=MANAGER).json()
    assert [item["userId"] for item in manager_view["shifts"]] == ["u-1", "u-2"]

    assert client.get("/api/v1/shifts?year=2025&month=6&include_deleted=true", headers=STAFF).status_code == 403
    assert client.get("/api/v1/shifts?year=2025&month=13", headers=MANAGER).status_code == 400


def test_purge_and_remove(client):
    created = _create(client)
    for action, headers in [
        ("submit", STAFF),
        ("approve", MANAGER),
        ("request_deletion", STAFF),
        ("approve", MANAGER),
    ]:
        assert _act(client, created["id"], action, headers).status_code == 200
    assert client.delete(f"/api/v1/shifts/{created['id']}", headers=MANAGER).status_code == 409
    assert _act(client, created["id"], "purge", MANAGER).json()["status"] == "purged"
    assert client.delete(f"/api/v1/shifts/{created['id']}", headers=STAFF).status_code == 403
    assert client.delete(f"/api/v1/shifts/{created['id']}", headers=MANAGER).status_code == 204

    audit = client.get(f"/api/v1/shifts/{created['id']}/audit", headers=MANAGER).json()
    assert audit["entries"][0]["action"] == "SHIFT_CREATE"
    assert audit["entries"][-1]["action"] == "SHIFT_REMOVE"
    assert client.get(f"/api/v1/shifts/{created['id']}/audit", headers=STAFF).status_code == 403


def test_layout_endpoint(client):
    _create(client, startTime="09:00", endTime="10:00")
    _create(client, startTime="09:15", endTime="10:30")
    body = client.get("/api/v1/layout/2025/6", headers=STAFF).json()
    assert body["holidays"] == {"2025-06-10": "Store anniversary"}
    day = body["days"][0]
    assert day["laneCount"] == 2
    assert day["holiday"] == "Store anniversary"
    second = day["placements"][1]
    assert second["lane"] == 1
    assert second["startOffsetExact"] == "1/2"
    assert second["startOffset"] == 0.5
    assert second["endOffset"] == 3.0


def test_validation_and_wages_endpoints(client):
    created = _create(client, startTime="10:00", endTime="12:00")
    _act(client, created["id"], "submit", STAFF)
    _act(client, created["id"], "approve", MANAGER)

    report = client.get("/api/v1/schedules/2025/6/validate", headers=MANAGER).json()
    assert report["period"] == "2025-06"
    assert report["issues"] == []
    assert any(w["type"] == "holiday" for w in report["warnings"])

    wages = client.get("/api/v1/wages/2025/6", headers=MANAGER).json()
    assert wages["resources"]["u-1"]["minutes"] == 120
    assert wages["resources"]["u-1"]["wage"] == 2400.0


def test_holidays_endpoint(client):
    assert client.get("/api/v1/holidays/2025/6").json() == {"holidays": {"2025-06-10": "Store anniversary"}}


def test_offset_times_are_refused_and_the_month_still_loads(client):
    response = client.post(
        "/api/v1/shifts",
        json={
            "date": "2025-06-10",
            "startTime": "10:00+09:00",
            "endTime": "12:00+09:00",
            "classes": [{"startTime": "10:30+09:00", "endTime": "11:00+09:00"}],
        },
        headers=STAFF,
    )
    assert response.status_code == 400

    created = _create(client)
    _act(client, created["id"], "submit", STAFF)
    _act(client, created["id"], "approve", MANAGER)
    proposed = client.post(
        f"/api/v1/shifts/{created['id']}/change-request", json={"endTime": "18:00+09:00"}, headers=STAFF
    )
    assert proposed.status_code == 400
    assert proposed.json()["error"] == "invalid_delta"

    listing = client.get("/api/v1/shifts?year=2025&month=6", headers=MANAGER)
    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()["shifts"]] == [created["id"]]
    assert client.get("/api/v1/layout/2025/6", headers=MANAGER).status_code == 200


def test_malformed_payloads_are_bad_requests(client):
    response = client.post(
        "/api/v1/shifts",
        json={"date": "2025-06-10", "startTime": "10:00", "endTime": "12:00", "classes": ["x"]},
        headers=STAFF,
    )
    assert response.status_code == 400

    created = _create(client)
    _act(client, created["id"], "submit", STAFF)
    _act(client, created["id"], "approve", MANAGER)
    proposed = client.post(f"/api/v1/shifts/{created['id']}/change-request", json={"type": ["class"]}, headers=STAFF)
    assert proposed.status_code == 400
    assert proposed.json()["error"] == "invalid_delta"


def test_complete_with_a_report(client):
    created = _create(client)
    _act(client, created["id"], "submit", STAFF)
    _act(client, created["id"], "approve", MANAGER)
    report = {"taskCounts": {"Register": {"count": 3, "time": 45}, "Stocking": 2}, "comments": "Quiet day"}

    bad = client.post(
        f"/api/v1/shifts/{created['id']}/actions/complete",
        json={"taskCounts": {"Register": {"count": "many"}}},
        headers=MANAGER,
    )
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_report"

    completed = client.post(f"/api/v1/shifts/{created['id']}/actions/complete", json=report, headers=MANAGER)
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    body = client.get(f"/api/v1/shifts/{created['id']}/reports", headers=STAFF).json()
    assert len(body["reports"]) == 1
    assert body["reports"][0]["user"] == "m-1"
    assert body["reports"][0]["comments"] == "Quiet day"
    assert body["reports"][0]["taskCounts"] == {
        "Register": {"count": 3, "time": 45},
        "Stocking": {"count": 2, "time": 0},
    }
    assert client.get(f"/api/v1/shifts/{created['id']}/reports", headers=OTHER).status_code == 404
