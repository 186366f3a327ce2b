"""
Error taxonomy for the booking engine and its collaborators.

Validation errors are raised before any state is touched. PersistenceFailure
wraps whatever the store raised (kept as __cause__); nothing retries it.
"""
from typing import Any, Optional


class StudioError(Exception):
    """Base error. status_code is what the HTTP API answers with."""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.error_code = self.__class__.__name__
        self.details = details or {}
        super().__init__(message)


# ── Not found ─────────────────────────────────────────────────────────────────

class NotFound(StudioError):
    status_code = 404


class StudentNotFound(NotFound):
    def __init__(self, student_id: str):
        super().__init__(f"Student '{student_id}' not found",
                         {"student_id": student_id})


class ClassNotFound(NotFound):
    def __init__(self, class_id: str):
        super().__init__(f"Class '{class_id}' not found", {"class_id": class_id})


class BookingNotFound(NotFound):
    def __init__(self, student_id: str, class_id: str, date: Optional[str] = None):
        where = f" on {date}" if date else ""
        super().__init__(
            f"No booking for student '{student_id}' in class '{class_id}'{where}",
            {"student_id": student_id, "class_id": class_id, "date": date},
        )


# ── Policy rejections ─────────────────────────────────────────────────────────

class Conflict(StudioError):
    status_code = 409


class CapacityExceeded(Conflict):
    def __init__(self, class_id: str, capacity: int, date: Optional[str] = None):
        where = f" on {date}" if date else ""
        super().__init__(
            f"Class '{class_id}' is full{where} ({capacity}/{capacity})",
            {"class_id": class_id, "capacity": capacity, "date": date},
        )


class PlanQuotaExceeded(Conflict):
    def __init__(self, student_id: str, plan: int):
        super().__init__(
            f"Student '{student_id}' already holds {plan} weekly classes (plan {plan})",
            {"student_id": student_id, "plan": plan},
        )


class NoCreditsAvailable(Conflict):
    def __init__(self, student_id: str):
        super().__init__(f"Student '{student_id}' has no make-up credits",
                         {"student_id": student_id})


class DuplicateStudent(Conflict):
    def __init__(self, name: str, surname: str):
        super().__init__(f"An active student named {name} {surname} already exists",
                         {"name": name, "surname": surname})


# ── Persistence ───────────────────────────────────────────────────────────────

class PersistenceFailure(StudioError):
    status_code = 503

    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            f"Could not persist '{operation}': {cause}",
            {"operation": operation, "cause": type(cause).__name__},
        )
        self.__cause__ = cause
