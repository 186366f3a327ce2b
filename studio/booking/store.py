"""
What the booking engine needs from persistence.

load_all() builds the in-memory state; every engine operation then makes
exactly one write call, covering everything that operation touches, in one
transaction. Implementations raise PersistenceFailure when a write fails.
"""
from dataclasses import dataclass, field
from typing import Optional, Protocol

from studio.scheduling.state import Absence, Booking, OneTimeBooking, Schedule, Student


Payments = dict[str, dict[str, str]]    # student_id → {"2025-03": "2025-03-05"}


@dataclass
class StudioData:
    students: list[Student]
    schedule: Schedule
    payments: Payments = field(default_factory=dict)
    retired_ids: set[str] = field(default_factory=set)    # soft-deleted students


class BookingStore(Protocol):
    def load_all(self) -> StudioData: ...

    # engine writes
    def record_booking(self, booking: Booking, replaced: bool) -> None: ...
    def delete_booking(self, student_id: str, class_id: str) -> None: ...
    def delete_one_time_booking(self, class_id: str, entry: OneTimeBooking) -> None: ...
    def record_absence(self, class_id: str, absence: Absence,
                       makeup_credits: Optional[int]) -> None: ...
    def record_redemption(self, class_id: str, entry: OneTimeBooking,
                          makeup_credits: int) -> None: ...
    def set_cancelled(self, class_id: str, cancelled: bool) -> None: ...
    def purge_student_bookings(self, student_id: str) -> None: ...

    # roster writes
    def save_student(self, student: Student) -> None: ...
    def soft_delete_student(self, student_id: str) -> None: ...     # + bookings, payments
    def set_payment(self, student_id: str, month: str, paid_on: str) -> None: ...
    def delete_payment(self, student_id: str, month: str) -> None: ...
