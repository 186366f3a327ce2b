"""
Monthly attendance sheet: one row per (date, class, student) for every class
day of a month.

Permanent holders appear on every date from their start date, with the
status of their absence if they have one that day. One-time bookings appear
on their date only, always as scheduled.
"""
import enum
from dataclasses import asdict, dataclass

from studio.scheduling.days import get_day_name, month_weekdays
from studio.scheduling.state import Schedule


class AssignmentType(str, enum.Enum):
    PERMANENT = "PERMANENT"
    MAKEUP = "MAKEUP"


class AttendanceStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CANCELLED_WITH_NOTICE = "CANCELLED_WITH_NOTICE"
    CANCELLED_NO_NOTICE = "CANCELLED_NO_NOTICE"


CANCELLED_STATUSES = (AttendanceStatus.CANCELLED_WITH_NOTICE,
                      AttendanceStatus.CANCELLED_NO_NOTICE)


@dataclass
class AttendanceRow:
    date: str
    class_id: str
    student_id: str
    assignment: AssignmentType
    status: AttendanceStatus

    def to_dict(self) -> dict:
        row = asdict(self)
        row["assignment"] = self.assignment.value
        row["status"] = self.status.value
        return row


def build_month_attendance(schedule: Schedule, month: str) -> list[AttendanceRow]:
    """month is 'YYYY-MM'. Rows come out by date, then class hour."""
    rows = []
    for day in month_weekdays(month):
        iso = day.isoformat()
        for slot in schedule.get(get_day_name(day), []):
            for booking in slot.bookings:
                if booking.start_date > iso:
                    continue
                absence = slot.absence_for(booking.student_id, iso)
                if absence is None:
                    status = AttendanceStatus.SCHEDULED
                elif absence.with_makeup:
                    status = AttendanceStatus.CANCELLED_WITH_NOTICE
                else:
                    status = AttendanceStatus.CANCELLED_NO_NOTICE
                rows.append(AttendanceRow(iso, slot.id, booking.student_id,
                                          AssignmentType.PERMANENT, status))

            for entry in slot.one_time_bookings:
                if entry.date == iso:
                    rows.append(AttendanceRow(iso, slot.id, entry.student_id,
                                              AssignmentType.MAKEUP,
                                              AttendanceStatus.SCHEDULED))
    return rows
