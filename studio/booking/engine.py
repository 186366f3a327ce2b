"""
Booking engine: every state transition of the studio schedule.

Each operation follows the same shape:
  1. look up slot / student            → ClassNotFound / StudentNotFound
  2. check policy (capacity, plan, credits, existing booking)
  3. one write to the store             → PersistenceFailure aborts here
  4. mutate the in-memory state

Nothing is touched before step 3 succeeds, so a rejected or failed
operation leaves memory and storage as they were.

Capacity: a permanent booking is refused when the slot already holds
max_capacity permanent bookings (raw count, regardless of start dates or
absences) or when a date with one-time bookings on/after its start would
overflow. A make-up redemption is checked against resolved presence that day.
"""
import threading
from typing import Iterable, Optional

from studio.booking.credits import MakeupLedger
from studio.booking.store import BookingStore
from studio.errors import (
    BookingNotFound, CapacityExceeded, ClassNotFound, PersistenceFailure,
    PlanQuotaExceeded, StudentNotFound,
)
from studio.logging import get_logger, operation_context
from studio.scheduling.attendance import resolve_presence
from studio.scheduling.days import DateLike, to_iso
from studio.scheduling.state import (
    Absence, Booking, ClassSlot, OneTimeBooking, Schedule, Student,
    find_slot, iter_slots, permanent_count,
)

log = get_logger(__name__)

DEFAULT_MAX_CAPACITY = 5


class BookingEngine:
    def __init__(self, schedule: Schedule, students: Iterable[Student],
                 max_capacity: int = DEFAULT_MAX_CAPACITY,
                 store: Optional[BookingStore] = None):
        self.schedule = schedule
        self.students: dict[str, Student] = {s.id: s for s in students}
        self.max_capacity = max_capacity
        self.store = store
        self.credits = MakeupLedger()
        # One writer at a time; the API serves requests from a thread pool
        # and the roster takes the same lock.
        self.lock = threading.RLock()

    # ── Lookups ───────────────────────────────────────────────────────────────

    def slot(self, class_id: str) -> ClassSlot:
        slot = find_slot(self.schedule, class_id)
        if slot is None:
            raise ClassNotFound(class_id)
        return slot

    def student(self, student_id: str) -> Student:
        student = self.students.get(student_id)
        if student is None:
            raise StudentNotFound(student_id)
        return student

    # ── Permanent bookings ────────────────────────────────────────────────────

    def assign_permanent(self, student_id: str, class_id: str,
                         start_date: DateLike) -> Booking:
        start = to_iso(start_date)
        with self.lock:
            slot = self.slot(class_id)
            student = self.student(student_id)
            existing = slot.booking_for(student_id)

            if existing is None:
                if len(slot.bookings) >= self.max_capacity:
                    raise CapacityExceeded(class_id, self.max_capacity)
                if permanent_count(self.schedule, student_id) >= student.plan:
                    raise PlanQuotaExceeded(student_id, student.plan)
            self._check_one_time_dates(slot, student_id, start)

            booking = Booking(student_id=student_id, class_id=class_id, start_date=start)
            self._write("assign_permanent", "record_booking", booking, existing is not None)

            if existing is not None:
                existing.start_date = start
                booking = existing
            else:
                slot.bookings.append(booking)

        log.info("permanent_booking_added", student_id=student_id,
                 class_id=class_id, start_date=start, replaced=existing is not None)
        return booking

    def unassign_permanent(self, student_id: str, class_id: str) -> Booking:
        with self.lock:
            slot = self.slot(class_id)
            booking = slot.booking_for(student_id)
            if booking is None:
                raise BookingNotFound(student_id, class_id)

            self._write("unassign_permanent", "delete_booking", student_id, class_id)
            slot.bookings = [b for b in slot.bookings if b.student_id != student_id]

        log.info("permanent_booking_removed", student_id=student_id, class_id=class_id)
        return booking

    # ── One-time bookings ─────────────────────────────────────────────────────

    def remove_one_time_booking(self, student_id: str, class_id: str,
                                date: DateLike) -> OneTimeBooking:
        day = to_iso(date)
        with self.lock:
            slot = self.slot(class_id)
            entry = slot.one_time_for(student_id, day)
            if entry is None:
                raise BookingNotFound(student_id, class_id, day)
            self._drop_one_time(slot, entry, "remove_one_time_booking")

        log.info("one_time_booking_removed", student_id=student_id,
                 class_id=class_id, date=day)
        return entry

    def redeem_makeup(self, student_id: str, class_id: str,
                      date: DateLike) -> OneTimeBooking:
        day = to_iso(date)
        with self.lock:
            slot = self.slot(class_id)
            student = self.student(student_id)

            existing = slot.one_time_for(student_id, day)
            if existing is not None:
                log.info("makeup_already_booked", student_id=student_id,
                         class_id=class_id, date=day)
                return existing

            balance = self.credits.after_spend(student)     # NoCreditsAvailable
            presence = resolve_presence(slot, day)
            if student_id not in presence.present and presence.occupancy >= self.max_capacity:
                raise CapacityExceeded(class_id, self.max_capacity, day)

            entry = OneTimeBooking(student_id=student_id, date=day)
            self._write("redeem_makeup", "record_redemption", class_id, entry, balance)
            slot.one_time_bookings.append(entry)
            self.credits.apply(student, balance)

        log.info("makeup_redeemed", student_id=student_id, class_id=class_id,
                 date=day, makeup_credits=balance)
        return entry

    # ── Absences ──────────────────────────────────────────────────────────────

    def mark_absent_for_day(self, student_id: str, class_id: str, date: DateLike,
                            with_makeup: bool = False) -> dict:
        """
        Take the student out of class for one date.

        Permanent holders get an absence record (plus a credit if with_makeup).
        One-time holders simply lose their one-time booking; no credit.
        Returns {"action", "makeup_credits"}.
        """
        day = to_iso(date)
        with self.lock:
            slot = self.slot(class_id)
            booking = slot.booking_for(student_id)

            if booking is not None and booking.start_date <= day:
                student = self.student(student_id)
                if slot.absence_for(student_id, day) is not None:
                    return {"action": "already_absent",
                            "makeup_credits": student.makeup_credits}

                balance = self.credits.after_earn(student) if with_makeup else None
                absence = Absence(student_id=student_id, date=day, with_makeup=with_makeup)
                self._write("mark_absent_for_day", "record_absence", class_id, absence, balance)
                slot.absences.append(absence)
                if balance is not None:
                    self.credits.apply(student, balance)

                log.info("absence_recorded", student_id=student_id, class_id=class_id,
                         date=day, with_makeup=with_makeup)
                return {"action": "absence_recorded",
                        "makeup_credits": student.makeup_credits}

            entry = slot.one_time_for(student_id, day)
            if entry is None:
                raise BookingNotFound(student_id, class_id, day)
            self._drop_one_time(slot, entry, "mark_absent_for_day")

        log.info("one_time_booking_removed", student_id=student_id,
                 class_id=class_id, date=day)
        student = self.students.get(student_id)
        return {"action": "one_time_removed",
                "makeup_credits": student.makeup_credits if student else 0}

    # ── Class-wide ────────────────────────────────────────────────────────────

    def toggle_class_cancellation(self, class_id: str) -> bool:
        with self.lock:
            slot = self.slot(class_id)
            cancelled = not slot.is_cancelled
            self._write("toggle_class_cancellation", "set_cancelled", class_id, cancelled)
            for s in iter_slots(self.schedule):
                if s.id == class_id:
                    s.is_cancelled = cancelled

        log.info("class_cancellation_toggled", class_id=class_id, cancelled=cancelled)
        return cancelled

    def delete_student(self, student_id: str, persisted: bool = False) -> int:
        """
        Purge every permanent booking the student holds. Returns how many.
        persisted=True when the caller already wrote the purge to the store
        (the roster's soft delete does it in the same transaction).
        """
        with self.lock:
            held = [s for s in iter_slots(self.schedule) if s.booking_for(student_id)]
            if not persisted:
                self._write("delete_student", "purge_student_bookings", student_id)
            for s in held:
                s.bookings = [b for b in s.bookings if b.student_id != student_id]
            self.students.pop(student_id, None)

        log.info("student_bookings_purged", student_id=student_id, bookings=len(held))
        return len(held)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _check_one_time_dates(self, slot: ClassSlot, student_id: str, start: str) -> None:
        """A new weekly booking must fit on every one-time-booked date it covers."""
        dates = sorted({o.date for o in slot.one_time_bookings if o.date >= start})
        for day in dates:
            presence = resolve_presence(slot, day)
            if student_id in presence.present:
                continue
            if presence.occupancy + 1 > self.max_capacity:
                raise CapacityExceeded(slot.id, self.max_capacity, day)

    def _drop_one_time(self, slot: ClassSlot, entry: OneTimeBooking, operation: str) -> None:
        self._write(operation, "delete_one_time_booking", slot.id, entry)
        slot.one_time_bookings = [
            o for o in slot.one_time_bookings
            if not (o.student_id == entry.student_id and o.date == entry.date)
        ]

    def _write(self, operation: str, method: str, *args) -> None:
        if self.store is None:
            return
        with operation_context(operation):
            try:
                getattr(self.store, method)(*args)
            except PersistenceFailure:
                log.error("persistence_failed")
                raise
            except Exception as e:
                log.error("persistence_failed", error=str(e))
                raise PersistenceFailure(operation, e) from e
