"""Schedule helpers for crew assignments."""

from fieldsync.schedule.conflicts import (
    Conflict,
    ScheduleAssignment,
    TimeSlot,
    detect_conflicts,
    has_conflict,
    has_overlapping_assignments,
    minutes_to_time,
    time_to_minutes,
)

__all__ = [
    "Conflict",
    "ScheduleAssignment",
    "TimeSlot",
    "detect_conflicts",
    "has_conflict",
    "has_overlapping_assignments",
    "minutes_to_time",
    "time_to_minutes",
]
