"""
Student roster: profile records and payment marks.

Credits are not edited here; the booking engine owns them. Deleting a
student is a soft delete: one store write marks the record inactive and drops
the student's weekly bookings and payment history, then the engine forgets
the student in memory. A plan cannot be lowered below the weekly bookings
the student already holds.
"""
from dataclasses import replace
from datetime import date
from typing import Iterable, Optional

from studio.booking.engine import BookingEngine
from studio.booking.store import BookingStore, Payments
from studio.errors import DuplicateStudent, PersistenceFailure, PlanQuotaExceeded
from studio.logging import get_logger, operation_context
from studio.scheduling.days import to_iso
from studio.scheduling.state import Student, permanent_count

log = get_logger(__name__)


class StudentRoster:
    def __init__(self, engine: BookingEngine, payments: Optional[Payments] = None,
                 store: Optional[BookingStore] = None,
                 retired_ids: Iterable[str] = ()):
        self.engine = engine
        self.payments: Payments = payments if payments is not None else {}
        self.store = store
        # ids of soft-deleted students; never handed out again
        self.retired_ids = set(retired_ids)

    @property
    def students(self) -> list[Student]:
        return sorted(self.engine.students.values(), key=lambda s: (s.name, s.surname))

    def create_student(self, student: Student) -> Student:
        """
        Rejects a second active student with the same name + surname
        (case-insensitive). The id is the next free number.
        """
        key = (student.name.strip().lower(), student.surname.strip().lower())
        with self.engine.lock:
            for s in self.engine.students.values():
                if (s.name.strip().lower(), s.surname.strip().lower()) == key:
                    raise DuplicateStudent(student.name, student.surname)

            created = replace(
                student,
                id=self._next_id(),
                name=student.name.strip(),
                surname=student.surname.strip(),
                enrollment_date=to_iso(student.enrollment_date or date.today()),
                makeup_credits=max(0, student.makeup_credits),
                active=True,
            )
            self._write("create_student", "save_student", created)
            self.engine.students[created.id] = created
            self.payments.setdefault(created.id, {})

        log.info("student_created", student_id=created.id)
        return created

    def update_student(self, student: Student) -> Student:
        with self.engine.lock:
            current = self.engine.student(student.id)
            held = permanent_count(self.engine.schedule, student.id)
            if held > student.plan:
                raise PlanQuotaExceeded(student.id, student.plan)
            updated = replace(
                student,
                enrollment_date=to_iso(student.enrollment_date or current.enrollment_date),
                makeup_credits=current.makeup_credits,
                active=current.active,
            )
            self._write("update_student", "save_student", updated)
            # Update in place: the engine and any callers hold this object
            for f in ("name", "surname", "phone", "level", "enrollment_date", "plan"):
                setattr(current, f, getattr(updated, f))

        log.info("student_updated", student_id=student.id)
        return current

    def delete_student(self, student_id: str) -> int:
        """Soft delete. Returns how many weekly bookings were released."""
        with self.engine.lock:
            self.engine.student(student_id)
            # one transaction: inactive flag, weekly bookings, payments
            self._write("delete_student", "soft_delete_student", student_id)
            released = self.engine.delete_student(student_id, persisted=True)
            self.payments.pop(student_id, None)
            self.retired_ids.add(student_id)

        log.info("student_deleted", student_id=student_id, released_bookings=released)
        return released

    # ── Payments ──────────────────────────────────────────────────────────────

    def mark_payment(self, student_id: str, month: str, paid_on) -> None:
        paid_on = to_iso(paid_on)
        with self.engine.lock:
            self.engine.student(student_id)
            self._write("mark_payment", "set_payment", student_id, month, paid_on)
            self.payments.setdefault(student_id, {})[month] = paid_on
        log.info("payment_marked", student_id=student_id, month=month)

    def undo_payment(self, student_id: str, month: str) -> None:
        with self.engine.lock:
            self.engine.student(student_id)
            if month not in self.payments.get(student_id, {}):
                return
            self._write("undo_payment", "delete_payment", student_id, month)
            del self.payments[student_id][month]
        log.info("payment_undone", student_id=student_id, month=month)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _next_id(self) -> str:
        ids = set(self.engine.students) | self.retired_ids
        return str(max((int(i) for i in ids if i.isdigit()), default=0) + 1)

    def _write(self, operation: str, method: str, *args) -> None:
        if self.store is None:
            return
        first = args[0]
        student_id = first.id if isinstance(first, Student) else first
        with operation_context(operation, student_id=student_id):
            try:
                getattr(self.store, method)(*args)
            except PersistenceFailure:
                log.error("persistence_failed")
                raise
            except Exception as e:
                log.error("persistence_failed", error=str(e))
                raise PersistenceFailure(operation, e) from e
