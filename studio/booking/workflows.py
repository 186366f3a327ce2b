"""
Caller-side flows that pick between engine operations.

"Remove this student from this class" means different things depending on
how the student got there; the choice is made here, from the resolver's
answer, and the engine only ever receives an explicit operation.
"""
from studio.booking.engine import BookingEngine
from studio.errors import BookingNotFound
from studio.scheduling.attendance import ONE_TIME, PERMANENT, presence_source
from studio.scheduling.days import DateLike, to_iso


def unbook(engine: BookingEngine, student_id: str, class_id: str, date: DateLike) -> dict:
    """
    Permanent holders lose the weekly booking (all dates); one-time holders
    lose that day's entry. A permanent booking that has not started yet, or
    whose holder is absent that day, still counts as permanent.
    """
    day = to_iso(date)
    # decision and removal under one lock hold
    with engine.lock:
        slot = engine.slot(class_id)
        source = presence_source(slot, student_id, day)
        if source is None and slot.booking_for(student_id) is not None:
            source = PERMANENT

        if source == PERMANENT:
            booking = engine.unassign_permanent(student_id, class_id)
            return {"removed": PERMANENT, "start_date": booking.start_date}
        if source == ONE_TIME:
            entry = engine.remove_one_time_booking(student_id, class_id, day)
            return {"removed": ONE_TIME, "date": entry.date}
        raise BookingNotFound(student_id, class_id, day)
