"""
Attendance resolution: who is actually in a class on a given date.

Every view and every capacity check goes through resolve_presence() so that
occupancy is computed one way only.

  absent    = absences on that date
  permanent = bookings started on/before that date, minus absent
  one_time  = one-time bookings on that date
  present   = permanent ∪ one_time
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from studio.scheduling.days import DateLike, to_iso
from studio.scheduling.state import ClassSlot, LEVEL_RANK, Student


PERMANENT = "permanent"
ONE_TIME = "one_time"


@dataclass(frozen=True)
class Presence:
    present: frozenset
    permanent: frozenset
    one_time: frozenset
    absent: frozenset

    @property
    def occupancy(self) -> int:
        return len(self.present)


def resolve_presence(slot: ClassSlot, date: DateLike) -> Presence:
    day = to_iso(date)
    absent = frozenset(a.student_id for a in slot.absences if a.date == day)
    permanent = frozenset(
        b.student_id for b in slot.bookings if b.start_date <= day
    ) - absent
    one_time = frozenset(o.student_id for o in slot.one_time_bookings if o.date == day)
    return Presence(
        present=permanent | one_time,
        permanent=permanent,
        one_time=one_time,
        absent=absent,
    )


def occupancy(slot: ClassSlot, date: DateLike) -> int:
    return resolve_presence(slot, date).occupancy


def has_capacity(slot: ClassSlot, date: DateLike, max_capacity: int) -> bool:
    return occupancy(slot, date) < max_capacity


def presence_source(slot: ClassSlot, student_id: str, date: DateLike) -> Optional[str]:
    """Why the student is in class that day. Permanent wins when both apply."""
    presence = resolve_presence(slot, date)
    if student_id in presence.permanent:
        return PERMANENT
    if student_id in presence.one_time:
        return ONE_TIME
    return None


# ── Level advisory ────────────────────────────────────────────────────────────
# Never blocks an assignment; callers only warn.

def level_rank(student: Student) -> int:
    return LEVEL_RANK[student.level]


def class_level_rank(slot: ClassSlot, date: DateLike,
                     students: Iterable[Student]) -> Optional[int]:
    """Highest level present, or None when the class is empty (no constraint)."""
    ranks = [level_rank(s) for s in present_students(slot, date, students)]
    return max(ranks) if ranks else None


def is_level_compatible(candidate: Student, class_rank: Optional[int]) -> bool:
    """At most one level below the strongest student present."""
    return class_rank is None or level_rank(candidate) >= class_rank - 1


# ── Views ─────────────────────────────────────────────────────────────────────

def present_students(slot: ClassSlot, date: DateLike,
                     students: Iterable[Student]) -> list[Student]:
    """Present students sorted by name. Ids with no known student are skipped."""
    present = resolve_presence(slot, date).present
    return sorted((s for s in students if s.id in present), key=lambda s: s.name)


def assignable_students(slot: ClassSlot, date: DateLike, students: Iterable[Student],
                        search: str = "", only_with_credits: bool = False) -> list[dict]:
    """
    Candidates for adding to the class that day: everyone not already present,
    filtered by a case-insensitive name search and, optionally, by having a
    make-up credit to spend. Each entry carries its level-compatibility flag.
    """
    students = list(students)
    present = resolve_presence(slot, date).present
    class_rank = class_level_rank(slot, date, students)
    needle = search.strip().lower()

    candidates = []
    for s in sorted(students, key=lambda s: s.name):
        if s.id in present:
            continue
        if needle and needle not in s.full_name.lower():
            continue
        if only_with_credits and s.makeup_credits <= 0:
            continue
        candidates.append({
            "student": s,
            "level_compatible": is_level_compatible(s, class_rank),
        })
    return candidates
