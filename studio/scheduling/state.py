"""
In-memory studio state: students and the fixed weekly grid of class slots.

Slots are generated once from the timetable and never added or removed.
Bookings, absences and one-time bookings hang off their slot and are only
mutated through the booking engine.
"""
import enum
from dataclasses import dataclass, field
from typing import Iterator, Optional

from studio.scheduling.days import WEEKDAYS


class Level(str, enum.Enum):
    BASIC = "Basic"
    MEDIUM = "Medium"
    ADVANCED = "Advanced"


LEVEL_RANK = {Level.BASIC: 0, Level.MEDIUM: 1, Level.ADVANCED: 2}

PLANS = (1, 2, 3)   # weekly classes per subscription tier


@dataclass
class Student:
    id: str
    name: str
    surname: str
    phone: str = ""
    level: Level = Level.BASIC
    enrollment_date: str = ""          # ISO date
    plan: int = 1
    makeup_credits: int = 0
    active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}"


@dataclass
class Booking:
    student_id: str
    class_id: str
    start_date: str                    # ISO; effective every week from here on


@dataclass
class Absence:
    student_id: str
    date: str
    with_makeup: bool = False          # notified absence, credit banked


@dataclass
class OneTimeBooking:
    student_id: str
    date: str


@dataclass
class ClassSlot:
    id: str                            # e.g. "Tue9"
    weekday: str                       # "Tue"
    time: int                          # start hour
    bookings: list[Booking] = field(default_factory=list)
    is_cancelled: bool = False         # blanket flag, all dates
    absences: list[Absence] = field(default_factory=list)
    one_time_bookings: list[OneTimeBooking] = field(default_factory=list)

    def booking_for(self, student_id: str) -> Optional[Booking]:
        return next((b for b in self.bookings if b.student_id == student_id), None)

    def absence_for(self, student_id: str, date: str) -> Optional[Absence]:
        return next((a for a in self.absences
                     if a.student_id == student_id and a.date == date), None)

    def one_time_for(self, student_id: str, date: str) -> Optional[OneTimeBooking]:
        return next((o for o in self.one_time_bookings
                     if o.student_id == student_id and o.date == date), None)


Schedule = dict[str, list[ClassSlot]]    # weekday → slots ordered by hour


def class_id_for(weekday: str, hour: int) -> str:
    return f"{weekday}{hour}"


def parse_class_id(class_id: str) -> Optional[tuple[str, int]]:
    """'Tue9' → ('Tue', 9). None when it is not a valid code."""
    day, hour = class_id[:3].capitalize(), class_id[3:]
    if day not in WEEKDAYS or not hour.isdigit():
        return None
    return day, int(hour)


def generate_schedule(timetable: dict[str, list[int]]) -> Schedule:
    """Empty slot grid for the timetable, weekdays in calendar order."""
    schedule: Schedule = {}
    for day in WEEKDAYS:
        if day not in timetable:
            continue
        schedule[day] = [
            ClassSlot(id=class_id_for(day, hour), weekday=day, time=hour)
            for hour in sorted(set(timetable[day]))
        ]
    return schedule


def iter_slots(schedule: Schedule) -> Iterator[ClassSlot]:
    for slots in schedule.values():
        yield from slots


def find_slot(schedule: Schedule, class_id: str) -> Optional[ClassSlot]:
    return next((s for s in iter_slots(schedule) if s.id == class_id), None)


def permanent_count(schedule: Schedule, student_id: str) -> int:
    """How many weekly slots the student holds, across the whole grid."""
    return sum(1 for s in iter_slots(schedule) if s.booking_for(student_id))
