from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from timetabler.models.learning_space import TeachingType
from timetabler.schemas.calendar import hour_range_label, parse_time_to_minutes


@dataclass(frozen=True)
class TeachingHourView:
    id: str
    time_slot_id: str
    order: int
    start_time: str
    end_time: str
    duration_minutes: int

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time)

    @property
    def label(self) -> str:
        return hour_range_label(self.start_time, self.end_time)


@dataclass(frozen=True)
class TimeSlotView:
    id: str
    name: str
    start_time: str
    end_time: str
    hours: tuple[TeachingHourView, ...]

    @property
    def duration_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time) - parse_time_to_minutes(self.start_time)


@dataclass(frozen=True)
class AvailabilityWindow:
    day: str
    start_minutes: int
    end_minutes: int
    is_available: bool = True


@dataclass(frozen=True)
class TeacherView:
    id: str
    full_name: str
    knowledge_area_ids: frozenset[str]
    availability: tuple[AvailabilityWindow, ...]

    def is_available(self, day: str, start_minutes: int, end_minutes: int) -> bool:
        # no configured window on that day means the teacher cannot be scheduled
        return any(
            window.is_available
            and window.day == day
            and window.start_minutes <= start_minutes
            and window.end_minutes >= end_minutes
            for window in self.availability
        )


@dataclass(frozen=True)
class SpaceView:
    id: str
    name: str
    capacity: int
    teaching_type: TeachingType
    specialty_id: str | None


@dataclass
class ScheduleSlot:
    """A (day, time slot) pair with the teaching hours a group can still use."""

    day: str
    time_slot: TimeSlotView
    available_hours: list[TeachingHourView] = field(default_factory=list)
    is_preferred: bool = False

    @property
    def time_slot_id(self) -> str:
        return self.time_slot.id

    @property
    def time_slot_name(self) -> str:
        return self.time_slot.name

    @property
    def start_time(self) -> str:
        return self.time_slot.start_time

    @property
    def end_time(self) -> str:
        return self.time_slot.end_time

    @property
    def duration_minutes(self) -> int:
        return self.time_slot.duration_minutes

    def remove_hours(self, hour_ids: Iterable[str]) -> None:
        used = set(hour_ids)
        self.available_hours = [hour for hour in self.available_hours if hour.id not in used]


@dataclass(frozen=True)
class AssignmentCandidate:
    group_id: str
    course_id: str
    teacher_id: str
    space_id: str
    day: str
    time_slot_id: str
    hours: tuple[TeachingHourView, ...]
    session_type: TeachingType
    score: float = 0.0

    @property
    def hour_ids(self) -> list[str]:
        return [hour.id for hour in self.hours]

    @property
    def hour_count(self) -> int:
        return len(self.hours)

    @property
    def start_minutes(self) -> int:
        return self.hours[0].start_minutes

    @property
    def end_minutes(self) -> int:
        return self.hours[-1].end_minutes


def are_consecutive(hours: Sequence[TeachingHourView]) -> bool:
    """Same time slot, order index strictly +1 and zero gap between each pair."""
    for current, following in zip(hours, hours[1:]):
        if current.time_slot_id != following.time_slot_id:
            return False
        if current.order + 1 != following.order:
            return False
        if current.end_time != following.start_time:
            return False
    return True


def first_consecutive_run(hours: Sequence[TeachingHourView], required: int) -> list[TeachingHourView]:
    if required <= 0 or len(hours) < required:
        return []
    ordered = sorted(hours, key=lambda hour: hour.order)
    for index in range(len(ordered) - required + 1):
        window = ordered[index:index + required]
        if are_consecutive(window):
            return window
    return []


def parse_hour_label(label: str) -> tuple[int, int]:
    start, end = label.split("-")
    return parse_time_to_minutes(start), parse_time_to_minutes(end)
