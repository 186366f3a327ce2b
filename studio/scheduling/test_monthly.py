"""
Monthly attendance sheet.

  pytest studio/scheduling/test_monthly.py
"""
from studio.config import DEFAULT_TIMETABLE
from studio.scheduling.monthly import (
    AssignmentType, AttendanceStatus, build_month_attendance,
)
from studio.scheduling.state import (
    Absence, Booking, OneTimeBooking, find_slot, generate_schedule,
)


def test_generate_schedule_from_timetable():
    schedule = generate_schedule(DEFAULT_TIMETABLE)
    assert list(schedule) == ["Mon", "Tue", "Wed", "Thu", "Fri"]
    assert [s.id for s in schedule["Mon"]] == ["Mon16", "Mon17", "Mon18", "Mon19"]
    assert sum(len(v) for v in schedule.values()) == 25
    assert find_slot(schedule, "Sat9") is None


def test_month_rows():
    schedule = generate_schedule({"Mon": [16]})
    slot = find_slot(schedule, "Mon16")
    slot.bookings.append(Booking("1", "Mon16", "2025-03-10"))
    slot.absences.append(Absence("1", "2025-03-17", with_makeup=True))
    slot.absences.append(Absence("1", "2025-03-24"))
    slot.one_time_bookings.append(OneTimeBooking("2", "2025-03-03"))

    rows = build_month_attendance(schedule, "2025-03")
    assert [(r.date, r.student_id) for r in rows] == [
        ("2025-03-03", "2"),
        ("2025-03-10", "1"),
        ("2025-03-17", "1"),
        ("2025-03-24", "1"),
        ("2025-03-31", "1"),
    ]
    assert rows[0].assignment == AssignmentType.MAKEUP
    assert [r.status for r in rows[1:]] == [
        AttendanceStatus.SCHEDULED,
        AttendanceStatus.CANCELLED_WITH_NOTICE,
        AttendanceStatus.CANCELLED_NO_NOTICE,
        AttendanceStatus.SCHEDULED,
    ]
    assert rows[2].to_dict() == {
        "date": "2025-03-17", "class_id": "Mon16", "student_id": "1",
        "assignment": "PERMANENT", "status": "CANCELLED_WITH_NOTICE",
    }


def test_empty_month():
    assert build_month_attendance(generate_schedule(DEFAULT_TIMETABLE), "2025-03") == []
