"""
Ingestion from a temporary bucket into in-memory SQLite.

  pytest studio/ingestion/test_ingestion.py
"""
import json

import pytest
from pydantic import ValidationError

from studio.config import DEFAULT_TIMETABLE
from studio.ingestion.job import run_ingestion
from studio.ingestion.schemas import AttendanceRecord, StudentRecord
from studio.models import IngestionRun
from studio.persistence.sql_store import SqlBookingStore
from studio.scheduling.state import Level

STUDENTS = [
    {"id": "1", "name": "Ana", "surname": "Lopez", "level": "M", "plan": 3,
     "classes": ["Mon16", "tue9", "Sat9"], "enrolled": "01/03/2025",
     "makeup_credits": 1, "payments": {"2025-03": "05/03/2025"}},
    {"id": "2", "name": "Bea", "surname": "Ruiz", "status": "DELETED",
     "classes": ["Mon16"], "enrolled": "2025-01-10"},
]

ATTENDANCE = [
    {"date": "10/03/2025", "class_id": "Mon16", "student_id": "1",
     "status": "CANCELLED_WITH_NOTICE"},
    {"date": "2025-03-12", "class_id": "Wed9", "student_id": "1", "assignment": "MAKEUP"},
    {"date": "2025-03-17", "class_id": "Mon16", "student_id": "1"},
]


def _write_bucket(path, students=STUDENTS, attendance=ATTENDANCE):
    (path / "students.json").write_text(json.dumps(students))
    (path / "attendance.json").write_text(json.dumps(attendance))


def _ingest(session_factory, bucket, force=False):
    with session_factory() as db:
        return run_ingestion(db, force=force, bucket_dir=str(bucket),
                             timetable=DEFAULT_TIMETABLE)


def test_student_record_normalises_export_values():
    r = StudentRecord(**STUDENTS[0])
    assert r.level == Level.MEDIUM
    assert r.classes == ["Mon16", "Tue9", "Sat9"]
    assert r.enrolled == "2025-03-01"
    assert r.payments == {"2025-03": "2025-03-05"}

    with pytest.raises(ValidationError):
        StudentRecord(**{**STUDENTS[0], "plan": 4})
    with pytest.raises(ValidationError):
        StudentRecord(**{**STUDENTS[0], "classes": ["Nope9"]})
    with pytest.raises(ValidationError):
        AttendanceRecord(date="31/02/2025", class_id="Mon16", student_id="1")


def test_ingest_builds_studio_state(session_factory, tmp_path):
    _write_bucket(tmp_path)
    result = _ingest(session_factory, tmp_path)

    assert result["status"] == "success"
    bookings = result["diff"]["bookings"]
    assert bookings["added"] == ["1:Mon16", "1:Tue9"]
    assert bookings["skipped"] == ["1:Sat9:unknown_class"]
    assert result["diff"]["attendance"] == {"absences": 1, "one_time_bookings": 1,
                                            "ignored": 1}

    data = SqlBookingStore(session_factory, DEFAULT_TIMETABLE).load_all()
    assert [s.id for s in data.students] == ["1"]
    assert data.retired_ids == {"2"}
    assert data.payments["1"] == {"2025-03": "2025-03-05"}

    mon = next(s for s in data.schedule["Mon"] if s.id == "Mon16")
    assert [(b.student_id, b.start_date) for b in mon.bookings] == [("1", "2025-03-01")]
    assert [(a.date, a.with_makeup) for a in mon.absences] == [("2025-03-10", True)]
    wed = next(s for s in data.schedule["Wed"] if s.id == "Wed9")
    assert [o.date for o in wed.one_time_bookings] == ["2025-03-12"]


def test_unchanged_bucket_is_skipped(session_factory, tmp_path):
    _write_bucket(tmp_path)
    first = _ingest(session_factory, tmp_path)
    second = _ingest(session_factory, tmp_path)
    assert second == {"status": "skipped", "reason": "bucket unchanged",
                      "hash": first["hash"]}

    forced = _ingest(session_factory, tmp_path, force=True)
    assert forced["status"] == "success"
    assert forced["diff"]["students"]["unchanged"] == ["1", "2"]
    assert forced["diff"]["bookings"]["added"] == []
    assert forced["diff"]["attendance"]["absences"] == 0


def test_export_drops_bookings_no_longer_listed(session_factory, tmp_path):
    _write_bucket(tmp_path)
    _ingest(session_factory, tmp_path)

    students = [{**STUDENTS[0], "classes": ["Mon16"]}, STUDENTS[1]]
    _write_bucket(tmp_path, students=students)
    result = _ingest(session_factory, tmp_path)
    assert result["diff"]["bookings"]["removed"] == ["1:Tue9"]

    data = SqlBookingStore(session_factory, DEFAULT_TIMETABLE).load_all()
    tue = next(s for s in data.schedule["Tue"] if s.id == "Tue9")
    assert tue.bookings == []


def test_full_classes_and_unknown_students_are_skipped(session_factory, tmp_path):
    students = [
        {"id": str(i), "name": f"S{i}", "surname": "X", "classes": ["Fri8"],
         "enrolled": "2025-01-01"}
        for i in range(1, 4)
    ]
    attendance = [{"date": "2025-03-14", "class_id": "Fri8", "student_id": "42",
                   "status": "CANCELLED_NO_NOTICE"}]
    _write_bucket(tmp_path, students=students, attendance=attendance)

    with session_factory() as db:
        result = run_ingestion(db, bucket_dir=str(tmp_path),
                               timetable=DEFAULT_TIMETABLE, max_capacity=2)

    assert result["diff"]["bookings"]["added"] == ["1:Fri8", "2:Fri8"]
    assert result["diff"]["bookings"]["skipped"] == ["3:Fri8:class_full"]
    assert result["diff"]["attendance"]["ignored"] == 1


def test_bad_row_records_failed_run(session_factory, tmp_path):
    _write_bucket(tmp_path, students=[{**STUDENTS[0], "plan": 9}])

    with pytest.raises(ValidationError):
        _ingest(session_factory, tmp_path)

    with session_factory() as db:
        runs = db.query(IngestionRun).all()
        assert [r.status for r in runs] == ["failed"]
        assert "plan" in runs[0].diff_summary["error"]


def test_repeated_class_code_books_once(session_factory, tmp_path):
    r = StudentRecord(**{**STUDENTS[0], "classes": ["Tue9", " tue9", "Mon16"]})
    assert r.classes == ["Tue9", "Mon16"]

    students = [{**STUDENTS[0], "plan": 2, "classes": ["Tue9", "tue9"]}]
    _write_bucket(tmp_path, students=students, attendance=[])
    result = _ingest(session_factory, tmp_path)

    assert result["status"] == "success"
    assert result["diff"]["bookings"]["added"] == ["1:Tue9"]
    assert result["diff"]["bookings"]["skipped"] == []

    data = SqlBookingStore(session_factory, DEFAULT_TIMETABLE).load_all()
    tue = next(s for s in data.schedule["Tue"] if s.id == "Tue9")
    assert [b.student_id for b in tue.bookings] == ["1"]
