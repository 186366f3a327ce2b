from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, JSON, ForeignKey,
    UniqueConstraint, Enum as SAEnum
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from studio.scheduling.state import Level

Base = declarative_base()


# ── Roster ────────────────────────────────────────────────────────────────────

class StudentRow(Base):
    __tablename__ = "students"

    id = Column(String, primary_key=True)              # e.g. "42"
    name = Column(String, nullable=False)
    surname = Column(String, nullable=False)
    phone = Column(String, default="")
    level = Column(SAEnum(Level), default=Level.BASIC, nullable=False)
    enrollment_date = Column(String, nullable=False)   # ISO "2025-03-01"
    plan = Column(Integer, default=1, nullable=False)  # weekly classes
    makeup_credits = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)   # False = soft-deleted
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class PaymentRow(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("student_id", "month"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=False)
    month = Column(String, nullable=False)             # "2025-03"
    paid_on = Column(String, nullable=False)           # ISO date


# ── Schedule ──────────────────────────────────────────────────────────────────
# Slots themselves come from the timetable; only their cancellation flag is
# stored, and only once it has been toggled.

class ClassSlotRow(Base):
    __tablename__ = "class_slots"

    id = Column(String, primary_key=True)              # e.g. "Tue9"
    is_cancelled = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (UniqueConstraint("student_id", "class_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=False)
    class_id = Column(String, nullable=False)
    start_date = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class AbsenceRow(Base):
    __tablename__ = "absences"
    __table_args__ = (UniqueConstraint("class_id", "student_id", "date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(String, nullable=False)
    student_id = Column(String, ForeignKey("students.id"), nullable=False)
    date = Column(String, nullable=False)
    with_makeup = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class OneTimeBookingRow(Base):
    __tablename__ = "one_time_bookings"
    __table_args__ = (UniqueConstraint("class_id", "student_id", "date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(String, nullable=False)
    student_id = Column(String, ForeignKey("students.id"), nullable=False)
    date = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


# ── Ingestion tracking ────────────────────────────────────────────────────────

class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_at = Column(DateTime, server_default=func.now())
    source_hash = Column(String, nullable=False)       # hash of input files
    status = Column(String, default="success")
    diff_summary = Column(JSON, default=dict)          # what changed
