"""
HTTP API over in-memory SQLite.

  pytest studio/api/test_api.py
"""
import json

import pytest
from fastapi.testclient import TestClient

from studio.api.main import app, load_studio
from studio.config import get_settings
from studio.database import get_db


@pytest.fixture
def client(session_factory):
    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.state.session_factory = session_factory
    app.state.studio = load_studio(session_factory, get_settings())
    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _student(client, name, plan=1, level="Basic", credits=0):
    resp = client.post("/students", json={"name": name, "surname": "Test", "plan": plan,
                                          "level": level, "makeup_credits": credits,
                                          "enrollment_date": "2025-01-01"})
    assert resp.status_code == 201
    return resp.json()["id"]


def _book(client, student_id, class_id, start="2025-03-01"):
    return client.post("/bookings/permanent", json={
        "student_id": student_id, "class_id": class_id, "start_date": start,
    })


def test_root(client):
    body = client.get("/").json()
    assert body["service"] == "Studio Booking API"
    assert "/bookings/permanent" in body["endpoints"]


def test_students_crud(client):
    ana = _student(client, "Ana")
    dup = client.post("/students", json={"name": "ana", "surname": "TEST"})
    assert dup.status_code == 409
    assert dup.json()["error"] == "DuplicateStudent"

    resp = client.put(f"/students/{ana}", json={"name": "Ana", "surname": "Perez",
                                                "level": "Advanced", "plan": 2})
    assert resp.status_code == 200
    assert resp.json()["level"] == "Advanced"
    assert resp.json()["enrollment_date"] == "2025-01-01"

    assert client.put("/students/99", json={"name": "X", "surname": "Y"}).status_code == 404
    assert client.post("/students", json={"name": "X", "surname": "Y", "plan": 5}).status_code == 422


def test_capacity_and_plan_quota(client):
    ids = [_student(client, f"S{i}") for i in range(6)]
    for sid in ids[:5]:
        assert _book(client, sid, "Tue9").status_code == 201

    full = _book(client, ids[5], "Tue9")
    assert full.status_code == 409
    assert full.json()["error"] == "CapacityExceeded"
    assert full.json()["details"]["class_id"] == "Tue9"

    quota = _book(client, ids[0], "Thu18")
    assert quota.status_code == 409
    assert quota.json()["error"] == "PlanQuotaExceeded"


def test_presence_and_candidates(client):
    adv = _student(client, "Adv", level="Advanced")
    basic = _student(client, "Bas", level="Basic", credits=1)
    _book(client, adv, "Mon16")

    body = client.get("/classes/Mon16/presence", params={"date": "2025-03-10"}).json()
    assert body["occupancy"] == 1
    assert body["level_rank"] == 2
    assert [(s["id"], s["source"]) for s in body["students"]] == [(adv, "permanent")]

    candidates = client.get("/classes/Mon16/candidates",
                            params={"date": "2025-03-10", "only_with_credits": True}).json()
    assert [(c["id"], c["level_compatible"]) for c in candidates] == [(basic, False)]

    # booking below the class level is allowed, with a warning flag
    resp = _book(client, basic, "Mon16")
    assert resp.status_code == 201
    assert resp.json()["level_compatible"] is False


def test_absence_makeup_and_unbook(client):
    ana = _student(client, "Ana")
    _book(client, ana, "Mon16")

    resp = client.post("/absences", json={"student_id": ana, "class_id": "Mon16",
                                          "date": "2025-03-10", "with_makeup": True})
    assert resp.json()["action"] == "absence_recorded"
    assert resp.json()["makeup_credits"] == 1

    resp = client.post("/makeups", json={"student_id": ana, "class_id": "Wed9",
                                         "date": "2025-03-12"})
    assert resp.status_code == 201
    assert resp.json()["makeup_credits"] == 0

    again = client.post("/makeups", json={"student_id": ana, "class_id": "Tue9",
                                          "date": "2025-03-11"})
    assert again.status_code == 409
    assert again.json()["error"] == "NoCreditsAvailable"

    resp = client.post("/bookings/unbook", json={"student_id": ana, "class_id": "Wed9",
                                                 "date": "2025-03-12"})
    assert resp.json() == {"removed": "one_time", "date": "2025-03-12"}

    resp = client.delete("/bookings/permanent", params={"student_id": ana, "class_id": "Mon16"})
    assert resp.json()["start_date"] == "2025-03-01"
    missing = client.post("/bookings/unbook", json={"student_id": ana, "class_id": "Mon16",
                                                    "date": "2025-03-17"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "BookingNotFound"


def test_toggle_week_and_attendance(client):
    ana = _student(client, "Ana")
    _book(client, ana, "Fri8")

    assert client.post("/classes/Fri8/toggle-cancel").json() == {
        "class_id": "Fri8", "is_cancelled": True,
    }
    week = client.get("/schedule/week", params={"date": "2025-03-12"}).json()
    assert week["week_start"] == "2025-03-10"
    assert week["cancelled_slots"] == 1
    assert week["total_slots"] == 25

    month = client.get("/attendance/2025-03").json()
    assert [r["date"] for r in month["rows"]] == ["2025-03-07", "2025-03-14",
                                                  "2025-03-21", "2025-03-28"]
    assert client.get("/attendance/2025-13").status_code == 422


def test_errors(client):
    assert client.get("/classes/Sat9/presence", params={"date": "2025-03-10"}).status_code == 404
    assert client.get("/classes/Mon16/presence", params={"date": "10/03/2025"}).status_code == 422
    resp = _book(client, "99", "Mon16")
    assert resp.status_code == 404
    assert resp.json() == {"error": "StudentNotFound",
                           "message": "Student '99' not found",
                           "details": {"student_id": "99"}}


def test_delete_student_and_payments(client, session_factory):
    ana = _student(client, "Ana", plan=2)
    _book(client, ana, "Mon16")
    _book(client, ana, "Tue9")

    resp = client.post("/payments", json={"student_id": ana, "month": "2025-03",
                                          "paid_on": "2025-03-05"})
    assert resp.status_code == 201
    resp = client.delete("/payments", params={"student_id": ana, "month": "2025-03"})
    assert resp.json()["payments"] == {}
    resp = client.post("/payments", json={"student_id": ana, "paid_on": "02/04/2025"})
    assert resp.status_code == 422
    resp = client.post("/payments", json={"student_id": ana, "paid_on": "2025-04-02"})
    assert resp.json()["month"] == "2025-04"

    assert client.delete(f"/students/{ana}").json() == {
        "student_id": ana, "released_bookings": 2,
    }
    reloaded = load_studio(session_factory, get_settings())
    assert reloaded.engine.students == {}
    assert reloaded.engine.slot("Mon16").bookings == []


def test_state_survives_restart(client, session_factory):
    ana = _student(client, "Ana")
    _book(client, ana, "Mon16")
    client.post("/absences", json={"student_id": ana, "class_id": "Mon16",
                                   "date": "2025-03-10", "with_makeup": True})

    reloaded = load_studio(session_factory, get_settings())
    assert reloaded.engine.student(ana).makeup_credits == 1
    assert [a.date for a in reloaded.engine.slot("Mon16").absences] == ["2025-03-10"]


def test_ingest_reloads_state(client, tmp_path, monkeypatch):
    (tmp_path / "students.json").write_text(json.dumps([
        {"id": "7", "name": "Ana", "surname": "Lopez", "classes": ["Mon16"],
         "enrolled": "01/03/2025"},
    ]))
    monkeypatch.setattr(get_settings(), "bucket_dir", str(tmp_path))

    resp = client.post("/ingest/run")
    assert resp.json()["status"] == "success"
    body = client.get("/classes/Mon16/presence", params={"date": "2025-03-10"}).json()
    assert [s["id"] for s in body["students"]] == ["7"]

    assert client.post("/ingest/run").json()["status"] == "skipped"

    (tmp_path / "students.json").write_text("not json")
    assert client.post("/ingest/run").status_code == 422


def test_ingest_database_error_is_503(client, monkeypatch):
    from sqlalchemy.exc import IntegrityError

    def _fail(db, **kwargs):
        raise IntegrityError("INSERT INTO bookings", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr("studio.api.main.run_ingestion", _fail)
    resp = client.post("/ingest/run")
    assert resp.status_code == 503
    assert resp.json()["error"] == "PersistenceFailure"
    assert resp.json()["details"] == {"operation": "ingest_run", "cause": "IntegrityError"}
