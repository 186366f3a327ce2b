"""
Ingestion pipeline: reads the roster export, validates, upserts to DB.
Idempotent: same input = same hash = skips re-insert.

Bucket layout:
  students.json     roster export rows (required)
  attendance.json   monthly attendance rows (optional)

The export is the source of truth for who holds which weekly class: a
student's bookings are synced to the class codes listed on their row, each
starting at the enrollment date. Cancelled attendance rows become absences,
scheduled MAKEUP rows become one-time bookings.
"""
import hashlib
import json
from pathlib import Path
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from studio.config import get_settings
from studio.ingestion.schemas import ACTIVE, AttendanceRecord, StudentRecord
from studio.logging import get_logger
from studio.models import (
    AbsenceRow, BookingRow, IngestionRun, OneTimeBookingRow, PaymentRow, StudentRow,
)
from studio.scheduling.monthly import (
    AssignmentType, AttendanceStatus, CANCELLED_STATUSES,
)
from studio.scheduling.state import class_id_for

log = get_logger(__name__)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _hash_file(path: Path) -> str:
    return hashlib.md5(path.read_bytes()).hexdigest()


def _bucket_hash(bucket: Path) -> str:
    """Single hash of all bucket files combined."""
    combined = "".join(
        _hash_file(f) for f in sorted(bucket.iterdir()) if f.is_file()
    )
    return hashlib.md5(combined.encode()).hexdigest()


def _load_json(bucket: Path, filename: str) -> list:
    path = bucket / filename
    if not path.exists():
        return []
    return json.loads(path.read_text())


def _known_classes(timetable: dict[str, list[int]]) -> set[str]:
    return {class_id_for(day, h) for day, hours in timetable.items() for h in hours}


# ── Per-entity upsert functions ───────────────────────────────────────────────

def _upsert_students(db: Session, records: list[StudentRecord]) -> dict:
    diff = {"upserted": [], "unchanged": []}

    for r in records:
        existing = db.get(StudentRow, r.id)
        data = {
            "id": r.id, "name": r.name, "surname": r.surname, "phone": r.phone,
            "level": r.level, "enrollment_date": r.enrolled, "plan": r.plan,
            "makeup_credits": r.makeup_credits, "active": r.status == ACTIVE,
        }

        if existing:
            changed = {k: v for k, v in data.items() if getattr(existing, k) != v}
            if changed:
                for k, v in changed.items():
                    setattr(existing, k, v)
                diff["upserted"].append(r.id)
            else:
                diff["unchanged"].append(r.id)
        else:
            db.add(StudentRow(**data))
            diff["upserted"].append(r.id)

    db.flush()
    return diff


def _sync_bookings(db: Session, records: list[StudentRecord], known: set[str],
                   max_capacity: int) -> dict:
    diff = {"added": [], "removed": [], "skipped": []}

    wanted: dict[str, list[str]] = {}
    for r in records:
        if r.status != ACTIVE:
            wanted[r.id] = []
            continue
        wanted[r.id] = r.classes[:r.plan]
        for code in r.classes[r.plan:]:
            diff["skipped"].append(f"{r.id}:{code}:over_plan")

    held: dict[str, int] = {}       # class_id → bookings kept
    current = set()
    for row in db.scalars(select(BookingRow).order_by(BookingRow.id)).all():
        if row.student_id in wanted and row.class_id not in wanted[row.student_id]:
            db.delete(row)
            diff["removed"].append(f"{row.student_id}:{row.class_id}")
            continue
        held[row.class_id] = held.get(row.class_id, 0) + 1
        current.add((row.student_id, row.class_id))

    for r in records:
        for class_id in wanted[r.id]:
            if (r.id, class_id) in current:
                continue
            if class_id not in known:
                log.warning("unknown_class_skipped", student_id=r.id, class_id=class_id)
                diff["skipped"].append(f"{r.id}:{class_id}:unknown_class")
                continue
            if held.get(class_id, 0) >= max_capacity:
                log.warning("full_class_skipped", student_id=r.id, class_id=class_id)
                diff["skipped"].append(f"{r.id}:{class_id}:class_full")
                continue
            db.add(BookingRow(student_id=r.id, class_id=class_id, start_date=r.enrolled))
            current.add((r.id, class_id))
            held[class_id] = held.get(class_id, 0) + 1
            diff["added"].append(f"{r.id}:{class_id}")

    return diff


def _sync_payments(db: Session, records: list[StudentRecord]) -> dict:
    diff = {"upserted": 0}

    for r in records:
        db.execute(delete(PaymentRow).where(PaymentRow.student_id == r.id))
        if r.status != ACTIVE:
            continue
        for month, paid_on in r.payments.items():
            db.add(PaymentRow(student_id=r.id, month=month, paid_on=paid_on))
            diff["upserted"] += 1

    return diff


def _upsert_attendance(db: Session, records: list[AttendanceRecord],
                       known: set[str]) -> dict:
    diff = {"absences": 0, "one_time_bookings": 0, "ignored": 0}

    for r in records:
        if r.class_id not in known or db.get(StudentRow, r.student_id) is None:
            diff["ignored"] += 1
            continue
        key = dict(class_id=r.class_id, student_id=r.student_id, date=r.date)

        if r.status in CANCELLED_STATUSES:
            exists = db.scalar(select(AbsenceRow).filter_by(**key))
            if exists is None:
                db.add(AbsenceRow(
                    **key, with_makeup=r.status == AttendanceStatus.CANCELLED_WITH_NOTICE,
                ))
                diff["absences"] += 1
        elif r.assignment == AssignmentType.MAKEUP:
            exists = db.scalar(select(OneTimeBookingRow).filter_by(**key))
            if exists is None:
                db.add(OneTimeBookingRow(**key))
                diff["one_time_bookings"] += 1
        else:
            # scheduled permanent rows are derived from bookings
            diff["ignored"] += 1

    return diff


# ── Main entry point ──────────────────────────────────────────────────────────

def run_ingestion(db: Session, force: bool = False,
                  bucket_dir: Optional[str] = None,
                  timetable: Optional[dict[str, list[int]]] = None,
                  max_capacity: Optional[int] = None) -> dict:
    """
    Run full ingestion. Skips if bucket hash unchanged (idempotent).
    Set force=True to re-ingest regardless.
    """
    settings = get_settings()
    bucket = Path(bucket_dir or settings.bucket_dir)
    known = _known_classes(timetable or settings.timetable)
    bucket_hash = _bucket_hash(bucket)

    # Idempotency check
    if not force:
        last_run = (
            db.query(IngestionRun)
            .filter(IngestionRun.status == "success")
            .order_by(IngestionRun.id.desc())
            .first()
        )
        if last_run and last_run.source_hash == bucket_hash:
            log.info("ingestion_skipped", hash=bucket_hash)
            return {
                "status": "skipped",
                "reason": "bucket unchanged",
                "hash": bucket_hash
            }

    diff_summary = {}
    try:
        students = [StudentRecord(**r) for r in _load_json(bucket, "students.json")]
        attendance = [AttendanceRecord(**r) for r in _load_json(bucket, "attendance.json")]

        diff_summary["students"] = _upsert_students(db, students)
        diff_summary["bookings"] = _sync_bookings(
            db, students, known, max_capacity or settings.max_capacity,
        )
        diff_summary["payments"] = _sync_payments(db, students)
        diff_summary["attendance"] = _upsert_attendance(db, attendance, known)

        db.add(IngestionRun(
            source_hash=bucket_hash,
            status="success",
            diff_summary=diff_summary
        ))
        db.commit()

    except Exception as e:
        db.rollback()
        db.add(IngestionRun(
            source_hash=bucket_hash,
            status="failed",
            diff_summary={"error": str(e)}
        ))
        db.commit()
        log.error("ingestion_failed", hash=bucket_hash, error=str(e))
        raise

    log.info("ingestion_completed", hash=bucket_hash,
             students=len(diff_summary["students"]["upserted"]))
    return {"status": "success", "hash": bucket_hash, "diff": diff_summary}
