"""
SQLAlchemy implementation of the booking store.

Each write runs in its own session and commits once, so an operation that
touches two aggregates (absence + credit balance, redemption + credit
balance) is all-or-nothing. Database errors are rolled back and surfaced as
PersistenceFailure.
"""
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from studio.booking.store import StudioData
from studio.errors import PersistenceFailure
from studio.logging import get_logger
from studio.models import (
    AbsenceRow, BookingRow, ClassSlotRow, OneTimeBookingRow, PaymentRow, StudentRow,
)
from studio.scheduling.state import (
    Absence, Booking, OneTimeBooking, Student, find_slot, generate_schedule,
)

log = get_logger(__name__)


class SqlBookingStore:
    def __init__(self, session_factory: sessionmaker, timetable: dict[str, list[int]]):
        self.session_factory = session_factory
        self.timetable = timetable

    @contextmanager
    def _transaction(self, operation: str):
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(operation, e) from e
        finally:
            db.close()

    # ── Load contract ─────────────────────────────────────────────────────────

    def load_all(self) -> StudioData:
        schedule = generate_schedule(self.timetable)
        with self._transaction("load_all") as db:
            student_rows = db.scalars(
                select(StudentRow).where(StudentRow.active.is_(True))
            ).all()
            students = [_to_student(r) for r in student_rows]
            active = {s.id for s in students}
            retired = set(db.scalars(
                select(StudentRow.id).where(StudentRow.active.is_(False))
            ).all())

            for row in db.scalars(select(ClassSlotRow)).all():
                slot = find_slot(schedule, row.id)
                if slot is not None:
                    slot.is_cancelled = row.is_cancelled

            for row in db.scalars(select(BookingRow).order_by(BookingRow.id)).all():
                slot = _slot_or_warn(schedule, row.class_id, "booking")
                if slot is not None and row.student_id in active:
                    slot.bookings.append(Booking(row.student_id, row.class_id, row.start_date))

            for row in db.scalars(select(AbsenceRow).order_by(AbsenceRow.id)).all():
                slot = _slot_or_warn(schedule, row.class_id, "absence")
                if slot is not None:
                    slot.absences.append(Absence(row.student_id, row.date, row.with_makeup))

            for row in db.scalars(select(OneTimeBookingRow).order_by(OneTimeBookingRow.id)).all():
                slot = _slot_or_warn(schedule, row.class_id, "one_time_booking")
                if slot is not None:
                    slot.one_time_bookings.append(OneTimeBooking(row.student_id, row.date))

            payments: dict[str, dict[str, str]] = {sid: {} for sid in active}
            for row in db.scalars(select(PaymentRow)).all():
                if row.student_id in active:
                    payments[row.student_id][row.month] = row.paid_on

        log.info("studio_loaded", students=len(students))
        return StudioData(students=students, schedule=schedule, payments=payments,
                          retired_ids=retired)

    # ── Engine writes ─────────────────────────────────────────────────────────

    def record_booking(self, booking: Booking, replaced: bool) -> None:
        with self._transaction("record_booking") as db:
            row = db.scalar(select(BookingRow).where(
                BookingRow.student_id == booking.student_id,
                BookingRow.class_id == booking.class_id,
            ))
            if row is None:
                db.add(BookingRow(student_id=booking.student_id,
                                  class_id=booking.class_id,
                                  start_date=booking.start_date))
            else:
                row.start_date = booking.start_date

    def delete_booking(self, student_id: str, class_id: str) -> None:
        with self._transaction("delete_booking") as db:
            db.execute(delete(BookingRow).where(
                BookingRow.student_id == student_id,
                BookingRow.class_id == class_id,
            ))

    def delete_one_time_booking(self, class_id: str, entry: OneTimeBooking) -> None:
        with self._transaction("delete_one_time_booking") as db:
            db.execute(delete(OneTimeBookingRow).where(
                OneTimeBookingRow.class_id == class_id,
                OneTimeBookingRow.student_id == entry.student_id,
                OneTimeBookingRow.date == entry.date,
            ))

    def record_absence(self, class_id: str, absence: Absence,
                       makeup_credits: Optional[int]) -> None:
        with self._transaction("record_absence") as db:
            exists = db.scalar(select(AbsenceRow).where(
                AbsenceRow.class_id == class_id,
                AbsenceRow.student_id == absence.student_id,
                AbsenceRow.date == absence.date,
            ))
            if exists is None:
                db.add(AbsenceRow(class_id=class_id, student_id=absence.student_id,
                                  date=absence.date, with_makeup=absence.with_makeup))
            if makeup_credits is not None:
                self._set_credits(db, absence.student_id, makeup_credits)

    def record_redemption(self, class_id: str, entry: OneTimeBooking,
                          makeup_credits: int) -> None:
        with self._transaction("record_redemption") as db:
            db.add(OneTimeBookingRow(class_id=class_id, student_id=entry.student_id,
                                     date=entry.date))
            self._set_credits(db, entry.student_id, makeup_credits)

    def set_cancelled(self, class_id: str, cancelled: bool) -> None:
        with self._transaction("set_cancelled") as db:
            row = db.get(ClassSlotRow, class_id)
            if row is None:
                db.add(ClassSlotRow(id=class_id, is_cancelled=cancelled))
            else:
                row.is_cancelled = cancelled

    def purge_student_bookings(self, student_id: str) -> None:
        with self._transaction("purge_student_bookings") as db:
            db.execute(delete(BookingRow).where(BookingRow.student_id == student_id))

    # ── Roster writes ─────────────────────────────────────────────────────────

    def save_student(self, student: Student) -> None:
        with self._transaction("save_student") as db:
            db.merge(StudentRow(
                id=student.id, name=student.name, surname=student.surname,
                phone=student.phone, level=student.level,
                enrollment_date=student.enrollment_date, plan=student.plan,
                makeup_credits=student.makeup_credits, active=student.active,
            ))

    def soft_delete_student(self, student_id: str) -> None:
        """Inactive flag, weekly bookings and payments go in one transaction."""
        with self._transaction("soft_delete_student") as db:
            row = db.get(StudentRow, student_id)
            if row is not None:
                row.active = False
            db.execute(delete(BookingRow).where(BookingRow.student_id == student_id))
            db.execute(delete(PaymentRow).where(PaymentRow.student_id == student_id))

    def set_payment(self, student_id: str, month: str, paid_on: str) -> None:
        with self._transaction("set_payment") as db:
            row = db.scalar(select(PaymentRow).where(
                PaymentRow.student_id == student_id, PaymentRow.month == month,
            ))
            if row is None:
                db.add(PaymentRow(student_id=student_id, month=month, paid_on=paid_on))
            else:
                row.paid_on = paid_on

    def delete_payment(self, student_id: str, month: str) -> None:
        with self._transaction("delete_payment") as db:
            db.execute(delete(PaymentRow).where(
                PaymentRow.student_id == student_id, PaymentRow.month == month,
            ))

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _set_credits(db: Session, student_id: str, credits: int) -> None:
        row = db.get(StudentRow, student_id)
        if row is not None:
            row.makeup_credits = max(0, credits)


def _to_student(row: StudentRow) -> Student:
    return Student(
        id=row.id, name=row.name, surname=row.surname, phone=row.phone or "",
        level=row.level, enrollment_date=row.enrollment_date, plan=row.plan,
        makeup_credits=row.makeup_credits or 0, active=row.active,
    )


def _slot_or_warn(schedule, class_id: str, kind: str):
    slot = find_slot(schedule, class_id)
    if slot is None:
        log.warning("unknown_class_skipped", class_id=class_id, record=kind)
    return slot
