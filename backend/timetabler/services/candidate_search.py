from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from timetabler.models.learning_space import TeachingType
from timetabler.schemas.schedule_generation import CourseRequirement, GroupRequirement
from timetabler.services.catalog import ScheduleCatalog
from timetabler.services.generation_context import GenerationContext
from timetabler.services.scheduling_types import (
    AssignmentCandidate,
    ScheduleSlot,
    SpaceView,
    TeacherView,
    TeachingHourView,
    first_consecutive_run,
)

logger = logging.getLogger(__name__)

BASE_SCORE = 100.0
PREFERRED_SLOT_BONUS = 20.0
PREFERRED_SPACE_BONUS = 15.0
CONTINUITY_BONUS = 25.0
ADJACENCY_BONUS = 10.0
DISTRIBUTION_BONUS = 15.0
DAILY_EXCESS_PENALTY = 5.0
RIGHT_SIZED_BONUS = 5.0
RIGHT_SIZED_CAPACITY = (25, 40)


@dataclass
class SearchOutcome:
    candidate: AssignmentCandidate | None = None
    candidates_evaluated: int = 0
    slots_without_hours: int = 0
    no_eligible_teacher: int = 0
    teachers_unavailable: int = 0
    teachers_busy: int = 0
    no_space_type: int = 0
    spaces_busy: int = 0

    def failure_reason(self) -> str:
        if self.teachers_busy:
            return "TEACHER_CONFLICT"
        if self.spaces_busy:
            return "SPACE_CONFLICT"
        if self.no_eligible_teacher or self.teachers_unavailable:
            return "TEACHER_UNAVAILABLE"
        if self.no_space_type:
            return "NO_SPACE_AVAILABLE"
        return "NO_CONSECUTIVE_HOURS"

    def merge(self, other: "SearchOutcome") -> "SearchOutcome":
        for name in (
            "candidates_evaluated",
            "slots_without_hours",
            "no_eligible_teacher",
            "teachers_unavailable",
            "teachers_busy",
            "no_space_type",
            "spaces_busy",
        ):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.candidate = self.candidate or other.candidate
        return self


def score_candidate(
    context: GenerationContext,
    *,
    group_id: str,
    course_id: str,
    teacher_id: str,
    space: SpaceView,
    day: str,
    hours: Sequence[TeachingHourView],
    slot_is_preferred: bool,
    space_is_preferred: bool,
) -> float:
    request = context.request
    score = BASE_SCORE
    if slot_is_preferred and request.preferred_time_slot_weight > 0:
        score += PREFERRED_SLOT_BONUS
    if space_is_preferred:
        score += PREFERRED_SPACE_BONUS
    if context.continuity_teacher(group_id, course_id) == teacher_id:
        score += CONTINUITY_BONUS
    if request.avoid_time_gaps and context.has_adjacent_session(
        group_id, day, hours[0].start_minutes, hours[-1].end_minutes
    ):
        score += ADJACENCY_BONUS

    current = context.daily_hours(group_id, day)
    if request.distribute_evenly:
        difference = abs(current - context.average_hours_per_day(group_id))
        score += max(0.0, DISTRIBUTION_BONUS - difference * 2)

    excess = current + len(hours) - request.max_hours_per_day
    if excess > 0:
        score -= excess * DAILY_EXCESS_PENALTY

    low, high = RIGHT_SIZED_CAPACITY
    if low <= space.capacity <= high:
        score += RIGHT_SIZED_BONUS
    return max(0.0, score)


class CandidateSearch:
    """Enumerates feasible (day, slot, hour run, teacher, room) tuples and keeps the best scored one."""

    def __init__(self, catalog: ScheduleCatalog, context: GenerationContext) -> None:
        self.catalog = catalog
        self.context = context

    def _free_hours(self, group: GroupRequirement, slot: ScheduleSlot, booked: set[str]) -> list[TeachingHourView]:
        return [
            hour
            for hour in slot.available_hours
            if hour.id not in booked and self.context.is_slot_free(group.group_id, slot.day, slot.time_slot_id, [hour.id])
        ]

    def _teachers(
        self,
        group: GroupRequirement,
        course: CourseRequirement,
        day: str,
        time_slot_id: str,
        run: Sequence[TeachingHourView],
        outcome: SearchOutcome,
    ) -> list[TeacherView]:
        eligible = self.catalog.teachers_for_area(course.knowledge_area_id)
        if not eligible:
            outcome.no_eligible_teacher += 1
            return []
        continuity = self.context.continuity_teacher(group.group_id, course.course_id)
        eligible = sorted(eligible, key=lambda teacher: teacher.id != continuity)

        hour_ids = [hour.id for hour in run]
        start, end = run[0].start_minutes, run[-1].end_minutes
        available: list[TeacherView] = []
        for teacher in eligible:
            if not teacher.is_available(day, start, end):
                outcome.teachers_unavailable += 1
                continue
            if not self.context.is_teacher_free(teacher.id, day, time_slot_id) or any(
                self.context.is_teacher_hour_booked(teacher.id, day, hour_id) for hour_id in hour_ids
            ):
                outcome.teachers_busy += 1
                continue
            if self.catalog.teacher_conflicts(group.period_id, teacher.id, day, hour_ids):
                outcome.teachers_busy += 1
                continue
            available.append(teacher)
        return available

    def _spaces(
        self,
        group: GroupRequirement,
        course: CourseRequirement,
        session_type: TeachingType,
        day: str,
        time_slot_id: str,
        run: Sequence[TeachingHourView],
        outcome: SearchOutcome,
    ) -> list[SpaceView]:
        spaces = self.catalog.spaces_for_type(session_type)
        if course.preferred_specialty_id:
            specialised = [space for space in spaces if space.specialty_id == course.preferred_specialty_id]
            if specialised:
                spaces = specialised
        if not spaces:
            outcome.no_space_type += 1
            return []

        hour_ids = [hour.id for hour in run]
        available: list[SpaceView] = []
        for space in spaces:
            if not self.context.is_room_free(space.id, day, time_slot_id) or any(
                self.context.is_room_hour_booked(space.id, day, hour_id) for hour_id in hour_ids
            ):
                outcome.spaces_busy += 1
                continue
            if self.catalog.space_conflicts(group.period_id, space.id, day, hour_ids):
                outcome.spaces_busy += 1
                continue
            available.append(space)
        return available

    def find_best(
        self,
        group: GroupRequirement,
        course: CourseRequirement,
        session_type: TeachingType,
        required_hours: int,
        slots: Iterable[ScheduleSlot],
    ) -> SearchOutcome:
        outcome = SearchOutcome()
        excluded = set(self.context.request.excluded_days)
        preferred = set(self.context.request.preferred_time_slot_ids)
        booked_by_day: dict[str, set[str]] = {}

        for slot in slots:
            if slot.day in excluded:
                continue
            if slot.day not in booked_by_day:
                booked_by_day[slot.day] = self.catalog.booked_group_hours(group.period_id, group.group_id, slot.day)
            run = first_consecutive_run(self._free_hours(group, slot, booked_by_day[slot.day]), required_hours)
            if not run:
                outcome.slots_without_hours += 1
                continue

            teachers = self._teachers(group, course, slot.day, slot.time_slot_id, run, outcome)
            if not teachers:
                continue
            spaces = self._spaces(group, course, session_type, slot.day, slot.time_slot_id, run, outcome)
            if not spaces:
                continue

            slot_is_preferred = slot.is_preferred or slot.time_slot_id in preferred
            for teacher in teachers:
                for space in spaces:
                    score = score_candidate(
                        self.context,
                        group_id=group.group_id,
                        course_id=course.course_id,
                        teacher_id=teacher.id,
                        space=space,
                        day=slot.day,
                        hours=run,
                        slot_is_preferred=slot_is_preferred,
                        space_is_preferred=bool(course.preferred_specialty_id)
                        and space.specialty_id == course.preferred_specialty_id,
                    )
                    outcome.candidates_evaluated += 1
                    if outcome.candidate is None or score > outcome.candidate.score:
                        outcome.candidate = AssignmentCandidate(
                            group_id=group.group_id,
                            course_id=course.course_id,
                            teacher_id=teacher.id,
                            space_id=space.id,
                            day=slot.day,
                            time_slot_id=slot.time_slot_id,
                            hours=tuple(run),
                            session_type=session_type,
                            score=score,
                        )

        if outcome.candidate is None:
            logger.debug(
                "No candidate found | group=%s course=%s type=%s hours=%s reason=%s",
                group.group_name,
                course.course_name,
                session_type.value,
                required_hours,
                outcome.failure_reason(),
            )
        return outcome
