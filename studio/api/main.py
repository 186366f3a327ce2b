"""
FastAPI app for the studio booking engine.

  POST   /ingest/run                  load the roster export into the DB
  GET    /schedule/week               occupancy of a Mon–Fri week
  GET    /classes/{id}/presence       who is in class on a date
  GET    /classes/{id}/candidates     who could be added on a date
  POST   /bookings/permanent          weekly booking
  DELETE /bookings/permanent          drop a weekly booking
  POST   /bookings/unbook             drop whatever puts the student there
  POST   /absences                    mark absent for one date
  POST   /makeups                     redeem a make-up credit
  POST   /classes/{id}/toggle-cancel
  POST   /students, PUT/DELETE /students/{id}
  POST   /payments, DELETE /payments
  GET    /attendance/{month}          monthly attendance sheet

The in-memory engine lives on app.state.studio; it is rebuilt from the
database at startup and after every ingestion run.
"""
from dataclasses import asdict, dataclass
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from studio.booking.engine import BookingEngine
from studio.booking.workflows import unbook
from studio.config import StudioSettings, get_settings
from studio.database import get_db, get_sessionmaker, init_db
from studio.errors import PersistenceFailure, StudioError
from studio.ingestion.job import run_ingestion
from studio.logging import get_logger, setup_logging
from studio.observability.metrics import week_occupancy
from studio.persistence.sql_store import SqlBookingStore
from studio.roster.students import StudentRoster
from studio.scheduling.attendance import (
    assignable_students, class_level_rank, is_level_compatible, presence_source,
    present_students, resolve_presence,
)
from studio.scheduling.days import month_key, to_iso
from studio.scheduling.monthly import build_month_attendance
from studio.scheduling.state import PLANS, Level, Student

log = get_logger(__name__)

app = FastAPI(title="Studio Booking API", version="1.0.0")


@dataclass
class Studio:
    engine: BookingEngine
    roster: StudentRoster


def load_studio(session_factory: sessionmaker, settings: StudioSettings) -> Studio:
    """Fresh engine + roster from whatever the database holds."""
    store = SqlBookingStore(session_factory, settings.timetable)
    data = store.load_all()
    engine = BookingEngine(data.schedule, data.students,
                           max_capacity=settings.max_capacity, store=store)
    roster = StudentRoster(engine, data.payments, store, data.retired_ids)
    return Studio(engine=engine, roster=roster)


def get_studio(request: Request) -> Studio:
    return request.app.state.studio


@app.on_event("startup")
def startup():
    settings = get_settings()
    setup_logging(settings.log_json, settings.log_level)
    init_db()
    app.state.session_factory = get_sessionmaker()
    app.state.studio = load_studio(app.state.session_factory, settings)
    log.info("api_started", students=len(app.state.studio.engine.students))


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "message": exc.message, "details": exc.details},
    )


# ── Request bodies ────────────────────────────────────────────────────────────

class BookingIn(BaseModel):
    student_id: str
    class_id: str
    start_date: str

    @field_validator("start_date")
    @classmethod
    def valid_start(cls, v):
        return to_iso(v)


class DayIn(BaseModel):
    student_id: str
    class_id: str
    date: str

    @field_validator("date")
    @classmethod
    def valid_date(cls, v):
        return to_iso(v)


class AbsenceIn(DayIn):
    with_makeup: bool = False


class StudentIn(BaseModel):
    name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    phone: str = ""
    level: Level = Level.BASIC
    enrollment_date: Optional[str] = None
    plan: int = 1
    makeup_credits: int = Field(default=0, ge=0)

    @field_validator("enrollment_date")
    @classmethod
    def valid_enrolled(cls, v):
        return to_iso(v) if v else None

    @field_validator("plan")
    @classmethod
    def valid_plan(cls, v):
        assert v in PLANS, f"Bad plan: {v}"
        return v


class PaymentIn(BaseModel):
    student_id: str
    # defaults to the month of paid_on
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    paid_on: Optional[str] = None

    @field_validator("paid_on")
    @classmethod
    def valid_paid_on(cls, v):
        return to_iso(v) if v else None


# ── Ingestion ─────────────────────────────────────────────────────────────────

@app.post("/ingest/run")
def ingest_run(request: Request, force: bool = False, db: Session = Depends(get_db)):
    """
    Run ingestion pipeline.
    - Reads <bucket_dir>/students.json (+ attendance.json)
    - Validates, upserts to DB
    - Idempotent (skips if unchanged unless force=True)
    """
    settings = get_settings()
    try:
        result = run_ingestion(db, force=force, bucket_dir=settings.bucket_dir,
                               timetable=settings.timetable,
                               max_capacity=settings.max_capacity)
    except ValueError as e:          # bad rows, bad JSON
        raise HTTPException(status_code=422, detail=str(e))
    except OSError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except SQLAlchemyError as e:
        raise PersistenceFailure("ingest_run", e) from e

    if result["status"] == "success":
        request.app.state.studio = load_studio(request.app.state.session_factory, settings)
    return result


# ── Views ─────────────────────────────────────────────────────────────────────

@app.get("/schedule/week")
def schedule_week(day: date = Query(alias="date"), studio: Studio = Depends(get_studio)):
    engine = studio.engine
    return week_occupancy(engine.schedule, day, engine.max_capacity)


@app.get("/classes/{class_id}/presence")
def class_presence(class_id: str, day: date = Query(alias="date"),
                   studio: Studio = Depends(get_studio)):
    engine = studio.engine
    slot = engine.slot(class_id)
    students = list(engine.students.values())
    presence = resolve_presence(slot, day)

    return {
        "class_id": slot.id,
        "date": day.isoformat(),
        "is_cancelled": slot.is_cancelled,
        "occupancy": presence.occupancy,
        "capacity": engine.max_capacity,
        "level_rank": class_level_rank(slot, day, students),
        "absent": sorted(presence.absent),
        "students": [
            {**_student_dict(s), "source": presence_source(slot, s.id, day)}
            for s in present_students(slot, day, students)
        ],
    }


@app.get("/classes/{class_id}/candidates")
def class_candidates(class_id: str, day: date = Query(alias="date"),
                     search: str = "", only_with_credits: bool = False,
                     studio: Studio = Depends(get_studio)):
    engine = studio.engine
    slot = engine.slot(class_id)
    candidates = assignable_students(slot, day, engine.students.values(),
                                     search=search, only_with_credits=only_with_credits)
    return [
        {**_student_dict(c["student"]), "level_compatible": c["level_compatible"]}
        for c in candidates
    ]


@app.get("/attendance/{month}")
def month_attendance(month: str = Path(pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
                     studio: Studio = Depends(get_studio)):
    rows = build_month_attendance(studio.engine.schedule, month)
    return {"month": month, "rows": [r.to_dict() for r in rows]}


# ── Bookings ──────────────────────────────────────────────────────────────────

@app.post("/bookings/permanent", status_code=201)
def add_permanent(body: BookingIn, studio: Studio = Depends(get_studio)):
    engine = studio.engine
    slot = engine.slot(body.class_id)
    student = engine.student(body.student_id)
    # advisory only; level never blocks a booking
    compatible = is_level_compatible(
        student, class_level_rank(slot, body.start_date, engine.students.values()),
    )
    booking = engine.assign_permanent(body.student_id, body.class_id, body.start_date)
    return {**asdict(booking), "level_compatible": compatible}


@app.delete("/bookings/permanent")
def remove_permanent(student_id: str, class_id: str, studio: Studio = Depends(get_studio)):
    booking = studio.engine.unassign_permanent(student_id, class_id)
    return asdict(booking)


@app.post("/bookings/unbook")
def unbook_day(body: DayIn, studio: Studio = Depends(get_studio)):
    return unbook(studio.engine, body.student_id, body.class_id, body.date)


@app.post("/absences")
def mark_absent(body: AbsenceIn, studio: Studio = Depends(get_studio)):
    result = studio.engine.mark_absent_for_day(
        body.student_id, body.class_id, body.date, with_makeup=body.with_makeup,
    )
    return {"student_id": body.student_id, "class_id": body.class_id,
            "date": body.date, **result}


@app.post("/makeups", status_code=201)
def redeem_makeup(body: DayIn, studio: Studio = Depends(get_studio)):
    engine = studio.engine
    entry = engine.redeem_makeup(body.student_id, body.class_id, body.date)
    return {"class_id": body.class_id, **asdict(entry),
            "makeup_credits": engine.student(body.student_id).makeup_credits}


@app.post("/classes/{class_id}/toggle-cancel")
def toggle_cancel(class_id: str, studio: Studio = Depends(get_studio)):
    cancelled = studio.engine.toggle_class_cancellation(class_id)
    return {"class_id": class_id, "is_cancelled": cancelled}


# ── Students & payments ───────────────────────────────────────────────────────

@app.post("/students", status_code=201)
def create_student(body: StudentIn, studio: Studio = Depends(get_studio)):
    student = studio.roster.create_student(Student(id="", **body.model_dump(
        exclude={"enrollment_date"}), enrollment_date=body.enrollment_date or ""))
    return _student_dict(student)


@app.put("/students/{student_id}")
def update_student(student_id: str, body: StudentIn, studio: Studio = Depends(get_studio)):
    student = studio.roster.update_student(Student(id=student_id, **body.model_dump(
        exclude={"enrollment_date"}), enrollment_date=body.enrollment_date or ""))
    return _student_dict(student)


@app.delete("/students/{student_id}")
def delete_student(student_id: str, studio: Studio = Depends(get_studio)):
    released = studio.roster.delete_student(student_id)
    return {"student_id": student_id, "released_bookings": released}


@app.post("/payments", status_code=201)
def mark_payment(body: PaymentIn, studio: Studio = Depends(get_studio)):
    paid_on = body.paid_on or date.today().isoformat()
    month = body.month or month_key(paid_on)
    studio.roster.mark_payment(body.student_id, month, paid_on)
    return {"student_id": body.student_id, "month": month, "paid_on": paid_on}


@app.delete("/payments")
def undo_payment(student_id: str, month: str, studio: Studio = Depends(get_studio)):
    studio.roster.undo_payment(student_id, month)
    return {"student_id": student_id, "month": month,
            "payments": studio.roster.payments.get(student_id, {})}


# ── Helpers ───────────────────────────────────────────────────────────────────

def _student_dict(student: Student) -> dict:
    row = asdict(student)
    row["level"] = student.level.value
    return row


# ── Health check ──────────────────────────────────────────────────────────────

@app.get("/")
def root():
    return {
        "service": "Studio Booking API",
        "version": "1.0.0",
        "endpoints": [
            "/ingest/run", "/schedule/week", "/classes/{id}/presence",
            "/classes/{id}/candidates", "/bookings/permanent", "/bookings/unbook",
            "/absences", "/makeups", "/classes/{id}/toggle-cancel", "/students",
            "/payments", "/attendance/{month}",
        ],
    }
