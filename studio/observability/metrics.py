"""
Occupancy metrics for one studio week.

Tracks, per class day:
- seats taken per slot (resolved presence)
- full and cancelled slots
- overall occupancy rate
"""
from studio.scheduling.attendance import resolve_presence
from studio.scheduling.days import DateLike, get_day_name, week_dates
from studio.scheduling.state import Schedule


def week_occupancy(schedule: Schedule, any_date: DateLike, max_capacity: int) -> dict:
    days = []
    booked = full = cancelled = total_slots = 0

    for day in week_dates(any_date):
        iso = day.isoformat()
        slots = []
        for slot in schedule.get(get_day_name(day), []):
            presence = resolve_presence(slot, iso)
            total_slots += 1
            if slot.is_cancelled:
                cancelled += 1
            else:
                booked += presence.occupancy
                if presence.occupancy >= max_capacity:
                    full += 1
            slots.append({
                "class_id": slot.id,
                "time": slot.time,
                "occupancy": presence.occupancy,
                "capacity": max_capacity,
                "is_cancelled": slot.is_cancelled,
                "student_ids": sorted(presence.present),
            })
        days.append({"date": iso, "weekday": get_day_name(day), "slots": slots})

    seats = (total_slots - cancelled) * max_capacity
    return {
        "week_start": days[0]["date"],
        "days": days,
        "total_slots": total_slots,
        "cancelled_slots": cancelled,
        "full_slots": full,
        "seats_booked": booked,
        "seats_available": seats - booked,
        "occupancy_rate": (booked / seats * 100) if seats > 0 else 0.0,
    }
