from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence

from timetabler.core.exceptions import CatalogError
from timetabler.models.learning_space import TeachingType
from timetabler.schemas.calendar import minutes_to_time
from timetabler.schemas.schedule_generation import (
    CourseRequirement,
    GeneratedSession,
    GroupIntegration,
    GroupRequirement,
    IntegrationReport,
    ScheduleConflict,
    ScheduleGenerationRequest,
    ScheduleWarning,
    WarningSeverity,
)
from timetabler.services.scheduling_types import AssignmentCandidate, parse_hour_label

logger = logging.getLogger(__name__)

GAP_THRESHOLD_MINUTES = 45
SLOTS_PER_RESOURCE_WEEK = 30
COMPLETION_THRESHOLD = 0.95


class GenerationContext:
    """Bookkeeping for a single generation run.

    Holds every counter the search and the report read: per-day hours per group, occupied teaching
    hours, teacher and room bookings, the continuity map and the conflict and warning logs.
    Nothing here reads from or writes to the database.
    """

    def __init__(
        self,
        request: ScheduleGenerationRequest,
        group_requirements: Sequence[GroupRequirement],
        work_days: Sequence[str],
    ) -> None:
        self.request = request
        self.groups: dict[str, GroupRequirement] = {group.group_id: group for group in group_requirements}
        excluded = set(request.excluded_days)
        self.work_days = list(work_days)
        self.active_days = [day for day in work_days if day not in excluded]

        self.sessions: list[GeneratedSession] = []
        self.preserved_sessions: list[GeneratedSession] = []
        self.conflicts: list[ScheduleConflict] = []
        self.warnings: list[ScheduleWarning] = []

        self._daily_hours: dict[tuple[str, str], int] = defaultdict(int)
        self._occupied: dict[tuple[str, str, str], set[str]] = defaultdict(set)
        self._teacher_slots: set[tuple[str, str, str]] = set()
        self._space_slots: set[tuple[str, str, str]] = set()
        self._teacher_hours: set[tuple[str, str, str]] = set()
        self._space_hours: set[tuple[str, str, str]] = set()
        self._group_ranges: dict[tuple[str, str], list[tuple[int, int]]] = defaultdict(list)
        self._assigned: dict[tuple[str, str, TeachingType], int] = defaultdict(int)
        self._continuity: dict[tuple[str, str], str] = {}
        self._preserved_hours: set[tuple[str, str, str]] = set()

    # ---- recording ----

    def record_committed_session(self, session: GeneratedSession) -> None:
        group_key = (session.group_id, session.day_of_week, session.time_slot_id)
        occupied = self._occupied[group_key]
        if session.is_new and occupied.intersection(session.teaching_hour_ids):
            raise CatalogError(
                f"Teaching hours of session {session.session_id} are already registered for group {session.group_name}",
                details={"session_id": session.session_id, "group_id": session.group_id},
            )

        if session.is_new:
            self.sessions.append(session)
        else:
            self.preserved_sessions.append(session)

        self._daily_hours[(session.group_id, session.day_of_week)] += session.hours
        occupied.update(session.teaching_hour_ids)
        self._teacher_slots.add((session.teacher_id, session.day_of_week, session.time_slot_id))
        self._space_slots.add((session.learning_space_id, session.day_of_week, session.time_slot_id))
        for hour_id in session.teaching_hour_ids:
            self._teacher_hours.add((session.teacher_id, session.day_of_week, hour_id))
            self._space_hours.add((session.learning_space_id, session.day_of_week, hour_id))

        ranges = [parse_hour_label(label) for label in session.teaching_hours]
        if ranges:
            self._group_ranges[(session.group_id, session.day_of_week)].append((ranges[0][0], ranges[-1][1]))

        self._assigned[(session.group_id, session.course_id, session.session_type)] += session.hours
        pair = (session.group_id, session.course_id)
        if self.request.respect_teacher_continuity and pair not in self._continuity:
            self._continuity[pair] = session.teacher_id

    def seed_existing_sessions(self, sessions: Iterable[GeneratedSession]) -> None:
        count = 0
        for session in sessions:
            self.record_committed_session(session.model_copy(update={"is_new": False}))
            for hour_id in session.teaching_hour_ids:
                self._preserved_hours.add((session.day_of_week, session.time_slot_id, hour_id))
            # existing pairings are kept even when continuity is off for new sessions
            self._continuity.setdefault((session.group_id, session.course_id), session.teacher_id)
            count += 1
        logger.info(
            "Context seeded with existing sessions | sessions=%s continuity_pairs=%s", count, len(self._continuity)
        )

    def add_warning(self, warning_type: str, message: str, severity: WarningSeverity) -> None:
        self.warnings.append(ScheduleWarning(warning_type=warning_type, message=message, severity=severity))

    def add_conflict(self, conflict: ScheduleConflict) -> None:
        self.conflicts.append(conflict)

    # ---- read queries ----

    def is_slot_free(self, group_id: str, day: str, time_slot_id: str, hour_ids: Iterable[str]) -> bool:
        occupied = self._occupied.get((group_id, day, time_slot_id), set())
        return not any(hour_id in occupied for hour_id in hour_ids)

    def is_teacher_free(self, teacher_id: str, day: str, time_slot_id: str) -> bool:
        return (teacher_id, day, time_slot_id) not in self._teacher_slots

    def is_room_free(self, space_id: str, day: str, time_slot_id: str) -> bool:
        return (space_id, day, time_slot_id) not in self._space_slots

    def is_teacher_hour_booked(self, teacher_id: str, day: str, hour_id: str) -> bool:
        return (teacher_id, day, hour_id) in self._teacher_hours

    def is_room_hour_booked(self, space_id: str, day: str, hour_id: str) -> bool:
        return (space_id, day, hour_id) in self._space_hours

    def is_hour_preserved(self, day: str, time_slot_id: str, hour_id: str) -> bool:
        return (day, time_slot_id, hour_id) in self._preserved_hours

    def continuity_teacher(self, group_id: str, course_id: str) -> str | None:
        return self._continuity.get((group_id, course_id))

    def daily_hours(self, group_id: str, day: str) -> int:
        return self._daily_hours.get((group_id, day), 0)

    def average_hours_per_day(self, group_id: str) -> int:
        group = self.groups.get(group_id)
        if group is None or not self.active_days:
            return 0
        return group.total_weekly_hours // len(self.active_days)

    def assigned_hours(self, group_id: str, course_id: str | None = None, session_type: TeachingType | None = None) -> int:
        return sum(
            hours
            for (assigned_group, assigned_course, assigned_type), hours in self._assigned.items()
            if assigned_group == group_id
            and (course_id is None or assigned_course == course_id)
            and (session_type is None or assigned_type == session_type)
        )

    def progress(self, group_id: str) -> float:
        group = self.groups.get(group_id)
        if group is None or group.total_weekly_hours <= 0:
            return 0.0
        return min(1.0, self.assigned_hours(group_id) / group.total_weekly_hours)

    def has_imbalance(self, group_id: str) -> bool:
        if not self.request.distribute_evenly or not self.active_days:
            return False
        hours = [self.daily_hours(group_id, day) for day in self.active_days]
        average = sum(hours) / len(hours)
        variance = sum((value - average) ** 2 for value in hours) / len(hours)
        return math.sqrt(variance) > average * 0.25

    def time_gaps(self, group_id: str, day: str) -> list[str]:
        ranges = sorted(self._group_ranges.get((group_id, day), []))
        gaps: list[str] = []
        for (_, current_end), (following_start, _) in zip(ranges, ranges[1:]):
            if following_start - current_end > GAP_THRESHOLD_MINUTES:
                gaps.append(f"{minutes_to_time(current_end)} - {minutes_to_time(following_start)}")
        return gaps

    def has_adjacent_session(self, group_id: str, day: str, start_minutes: int, end_minutes: int) -> bool:
        return any(
            existing_end == start_minutes or existing_start == end_minutes
            for existing_start, existing_end in self._group_ranges.get((group_id, day), [])
        )

    def within_daily_limits(self, group_id: str, day: str, additional: int = 0) -> bool:
        total = self.daily_hours(group_id, day) + additional
        return self.request.min_hours_per_day <= total <= self.request.max_hours_per_day

    def resource_utilization(self) -> dict[str, dict[str, float]]:
        teacher_counts: dict[str, int] = defaultdict(int)
        for teacher_id, _, _ in self._teacher_slots:
            teacher_counts[teacher_id] += 1
        space_counts: dict[str, int] = defaultdict(int)
        for space_id, _, _ in self._space_slots:
            space_counts[space_id] += 1
        return {
            "teachers": {key: min(1.0, value / SLOTS_PER_RESOURCE_WEEK) for key, value in teacher_counts.items()},
            "spaces": {key: min(1.0, value / SLOTS_PER_RESOURCE_WEEK) for key, value in space_counts.items()},
        }

    def detect_conflicts(self, candidate: AssignmentCandidate, time_range: str | None = None) -> list[ScheduleConflict]:
        detected: list[ScheduleConflict] = []
        if not self.is_teacher_free(candidate.teacher_id, candidate.day, candidate.time_slot_id):
            detected.append(
                ScheduleConflict(
                    conflict_type="TEACHER_CONFLICT",
                    severity="CRITICAL",
                    description="Teacher already has a class in this time slot",
                    affected_entities=[candidate.teacher_id],
                    day_of_week=candidate.day,
                    time_range=time_range,
                    suggested_solutions=["Assign another teacher", "Move the session to another time slot"],
                )
            )
        if not self.is_room_free(candidate.space_id, candidate.day, candidate.time_slot_id):
            detected.append(
                ScheduleConflict(
                    conflict_type="SPACE_CONFLICT",
                    severity="CRITICAL",
                    description="Learning space is already booked in this time slot",
                    affected_entities=[candidate.space_id],
                    day_of_week=candidate.day,
                    time_range=time_range,
                    suggested_solutions=["Assign another learning space", "Move the session to another time slot"],
                )
            )
        return detected

    # ---- run status ----

    def status_summary(self) -> dict:
        return {
            "total_sessions": len(self.sessions),
            "preserved_sessions": len(self.preserved_sessions),
            "total_conflicts": len(self.conflicts),
            "total_warnings": len(self.warnings),
            "groups_processed": len(self.groups),
            "group_progress": {
                group.group_name: round(self.progress(group.group_id) * 100, 2) for group in self.groups.values()
            },
        }

    def is_generation_complete(self) -> bool:
        return all(self.progress(group_id) >= COMPLETION_THRESHOLD for group_id in self.groups)

    def group_with_least_progress(self) -> GroupRequirement | None:
        if not self.groups:
            return None
        return min(self.groups.values(), key=lambda group: self.progress(group.group_id))

    def quality_score(self) -> float:
        score = 100.0
        score -= len(self.conflicts) * 15.0
        score -= len(self.warnings) * 5.0
        if self.groups:
            balanced = sum(1 for group_id in self.groups if not self.has_imbalance(group_id))
            score += balanced / len(self.groups) * 10.0
            average_progress = sum(self.progress(group_id) for group_id in self.groups) / len(self.groups)
            score += average_progress * 20.0
        return max(0.0, min(100.0, score))

    def quality_score_with_existing(self) -> float:
        continuity_bonus = min(20.0, len(self._continuity) * 2.0)
        reuse_bonus = min(15.0, float(len(self.preserved_sessions)))
        return min(100.0, self.quality_score() + continuity_bonus + reuse_bonus)

    # ---- existing-session integration ----

    def _course_requirement(self, group_id: str, course_id: str) -> CourseRequirement | None:
        group = self.groups.get(group_id)
        return group.course(course_id) if group else None

    def remaining_hours(self, group_id: str, course_id: str, session_type: TeachingType) -> int:
        course = self._course_requirement(group_id, course_id)
        if course is None:
            return 0
        return max(0, course.hours_for(session_type) - self.assigned_hours(group_id, course_id, session_type))

    def missing_courses(self, group_id: str) -> list[CourseRequirement]:
        group = self.groups.get(group_id)
        if group is None:
            return []
        return [course for course in group.courses if self.assigned_hours(group_id, course.course_id) == 0]

    def group_needs_more_assignments(self, group_id: str) -> bool:
        group = self.groups.get(group_id)
        if group is None:
            return False
        return self.assigned_hours(group_id) < group.total_weekly_hours

    def _groups_with_existing(self) -> set[str]:
        return {session.group_id for session in self.preserved_sessions}

    def integration_efficiency(self) -> float:
        if not self.groups:
            return 1.0
        reuse_ratio = len(self._groups_with_existing()) / len(self.groups)
        continuity_ratio = 1.0 if self._continuity else 0.0
        return reuse_ratio * 0.6 + continuity_ratio * 0.4

    def integration_report(self) -> IntegrationReport:
        analysis: dict[str, GroupIntegration] = {}
        for group in self.groups.values():
            existing = sum(1 for session in self.preserved_sessions if session.group_id == group.group_id)
            analysis[group.group_name] = GroupIntegration(
                existing_sessions=existing,
                needs_more_assignments=self.group_needs_more_assignments(group.group_id),
                missing_courses=len(self.missing_courses(group.group_id)),
                theory_hours_remaining=sum(
                    self.remaining_hours(group.group_id, course.course_id, TeachingType.theory)
                    for course in group.courses
                ),
                practice_hours_remaining=sum(
                    self.remaining_hours(group.group_id, course.course_id, TeachingType.practice)
                    for course in group.courses
                ),
            )
        return IntegrationReport(
            preserved_teacher_assignments=len(self._continuity),
            preserved_slots=len(self._preserved_hours),
            groups_with_existing_sessions=len(self._groups_with_existing()),
            group_analysis=analysis,
            integration_efficiency=round(self.integration_efficiency(), 4),
        )
