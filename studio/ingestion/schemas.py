from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from studio.scheduling.days import parse_sheet_date
from studio.scheduling.monthly import AssignmentType, AttendanceStatus
from studio.scheduling.state import PLANS, Level, parse_class_id


LEVEL_CODES = {"B": Level.BASIC, "M": Level.MEDIUM, "A": Level.ADVANCED}

ACTIVE = "OK"
DELETED = "DELETED"


def _iso(v: str) -> str:
    v = parse_sheet_date(v)
    date.fromisoformat(v)       # raises on garbage
    return v


class StudentRecord(BaseModel):
    """One row of the roster export."""
    id: str
    name: str
    surname: str
    phone: str = ""
    status: str = ACTIVE
    level: Level = Level.BASIC
    plan: int = 1
    classes: list[str] = Field(default_factory=list)     # ["Tue9", "Thu18"]
    enrolled: str                                         # "05/03/2025" or ISO
    makeup_credits: int = Field(default=0, ge=0)
    payments: dict[str, str] = Field(default_factory=dict)   # "2025-03" → date

    @field_validator("level", mode="before")
    @classmethod
    def level_code(cls, v):
        if isinstance(v, str) and v.strip().upper() in LEVEL_CODES:
            return LEVEL_CODES[v.strip().upper()]
        return v

    @field_validator("status")
    @classmethod
    def known_status(cls, v):
        v = v.strip().upper()
        assert v in (ACTIVE, DELETED), f"Bad status: {v}"
        return v

    @field_validator("plan")
    @classmethod
    def valid_plan(cls, v):
        assert v in PLANS, f"Bad plan: {v}"
        return v

    @field_validator("classes")
    @classmethod
    def valid_class_codes(cls, v):
        codes = []
        for code in v:
            code = code.strip()
            if not code:
                continue
            parsed = parse_class_id(code)
            assert parsed is not None, f"Bad class code: {code}"
            code = f"{parsed[0]}{parsed[1]}"
            if code not in codes:
                codes.append(code)
        return codes

    @field_validator("enrolled")
    @classmethod
    def valid_enrolled(cls, v):
        return _iso(v)

    @field_validator("payments")
    @classmethod
    def valid_payments(cls, v):
        return {month: _iso(paid) for month, paid in v.items() if paid}


class AttendanceRecord(BaseModel):
    """One row of a monthly attendance sheet."""
    date: str
    class_id: str
    student_id: str
    assignment: AssignmentType = AssignmentType.PERMANENT
    status: AttendanceStatus = AttendanceStatus.SCHEDULED
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def valid_date(cls, v):
        return _iso(v)

    @field_validator("class_id")
    @classmethod
    def valid_class_id(cls, v):
        parsed = parse_class_id(v.strip())
        assert parsed is not None, f"Bad class code: {v}"
        return f"{parsed[0]}{parsed[1]}"
