"""Overlap checks for crew assignment time slots.

Times are ``HH:MM`` strings within a single day, compared at minute
granularity. Slots are half-open, so a job ending at 10:00 does not clash
with one starting at 10:00.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from fieldsync.errors import ParseError

UNKNOWN_JOB = "Unknown Job"


@dataclass(frozen=True)
class TimeSlot:
    """A proposed slot, ``[start, end)``."""

    start: str
    end: str


@dataclass(frozen=True)
class ScheduleAssignment:
    """An existing crew assignment for a job."""

    id: str
    start_time: str
    end_time: str
    project_name: str | None = None

    @property
    def job(self) -> str:
        return self.project_name or UNKNOWN_JOB

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduleAssignment":
        """Build from a schedule row, accepting the nested ``projects.name`` shape."""
        project = data.get("projects") or {}
        return cls(
            id=str(data.get("id", "")),
            start_time=data["start_time"],
            end_time=data["end_time"],
            project_name=data.get("project_name") or project.get("name"),
        )


@dataclass(frozen=True)
class Conflict:
    """An existing assignment that overlaps the proposed slot."""

    job: str
    time: str


def time_to_minutes(time: str) -> int:
    """Convert ``HH:MM`` to minutes after midnight.

    Raises:
        ParseError: If the value is not two colon-separated integers
    """
    parts = time.split(":") if isinstance(time, str) else []
    if len(parts) != 2:
        raise ParseError(f"Expected HH:MM, got {time!r}")
    try:
        hours, minutes = (int(part) for part in parts)
    except ValueError as e:
        raise ParseError(f"Expected HH:MM, got {time!r}") from e
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Format minutes after midnight as zero-padded ``HH:MM``.

    Values of 1440 and above are not wrapped.
    """
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def _overlaps(new_start: int, new_end: int, existing_start: int, existing_end: int) -> bool:
    if new_start == new_end or existing_start == existing_end:
        # empty slots occupy no time
        return False
    return (
        # new slot starts during the existing one
        (existing_start <= new_start < existing_end)
        # new slot ends during the existing one
        or (existing_start < new_end <= existing_end)
        # new slot covers the existing one
        or (new_start <= existing_start and new_end >= existing_end)
    )


def detect_conflicts(
    candidate: TimeSlot,
    existing: Iterable[ScheduleAssignment],
) -> list[Conflict]:
    """List the existing assignments that overlap ``candidate``.

    Args:
        candidate: Proposed slot
        existing: Assignments already on the schedule

    Returns:
        Conflicts in the order the assignments were given

    Raises:
        ParseError: If any time is malformed
    """
    new_start = time_to_minutes(candidate.start)
    new_end = time_to_minutes(candidate.end)

    conflicts = []
    for assignment in existing:
        existing_start = time_to_minutes(assignment.start_time)
        existing_end = time_to_minutes(assignment.end_time)
        if _overlaps(new_start, new_end, existing_start, existing_end):
            conflicts.append(
                Conflict(
                    job=assignment.job,
                    time=f"{assignment.start_time} - {assignment.end_time}",
                )
            )
    return conflicts


def has_conflict(start: str, end: str, existing: Iterable[ScheduleAssignment]) -> bool:
    """True if ``[start, end)`` overlaps any existing assignment."""
    return len(detect_conflicts(TimeSlot(start=start, end=end), existing)) > 0


def has_overlapping_assignments(assignments: Sequence[ScheduleAssignment]) -> bool:
    """True if any two assignments in one crew member's day overlap."""
    for i, first in enumerate(assignments):
        for second in assignments[i + 1:]:
            if has_conflict(first.start_time, first.end_time, [second]):
                return True
    return False
