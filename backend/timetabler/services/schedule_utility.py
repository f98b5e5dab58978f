from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from collections.abc import Sequence

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.models.academic_structure import Career, Cycle, StudentGroup
from timetabler.schemas.schedule_generation import ClearPeriodResult, GeneratedSession
from timetabler.schemas.schedule_utility import (
    ExistingConflictReport,
    OccupancyReport,
    OptimizationReport,
    QualityMetrics,
    ResourceLoad,
    SpaceUtilization,
    TeacherUtilization,
    TimeUtilization,
    UtilizationReport,
)
from timetabler.services.catalog import ScheduleCatalog
from timetabler.services.conflict_service import ConflictService
from timetabler.services.scheduling_types import parse_hour_label

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["Group", "Course", "Teacher", "Learning space", "Day", "Time slot", "Hours", "Type", "Notes"]
TOP_RESOURCES = 5
UNDERUTILIZED_TEACHER_HOURS = 8
OVERLOADED_TEACHER_HOURS = 20
TEACHER_TARGET_HOURS = 15.0
SPACE_TARGET_HOURS = 25.0
GAP_THRESHOLD_MINUTES = 45


def group_time_gaps(sessions: Sequence[GeneratedSession]) -> dict[str, list[str]]:
    ranges: dict[str, dict[str, list[tuple[int, int]]]] = defaultdict(lambda: defaultdict(list))
    for session in sessions:
        if not session.teaching_hours:
            continue
        start, _ = parse_hour_label(session.teaching_hours[0])
        _, end = parse_hour_label(session.teaching_hours[-1])
        ranges[session.group_name][session.day_of_week].append((start, end))

    gaps: dict[str, list[str]] = {}
    for group_name, days in ranges.items():
        found: list[str] = []
        for day, items in days.items():
            items.sort()
            for (_, current_end), (following_start, _) in zip(items, items[1:]):
                minutes = following_start - current_end
                if minutes > GAP_THRESHOLD_MINUTES:
                    found.append(f"{day}: {minutes} min gap")
        if found:
            gaps[group_name] = found
    return gaps


def daily_distribution(sessions: Sequence[GeneratedSession]) -> dict[str, dict[str, int]]:
    distribution: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for session in sessions:
        distribution[session.group_name][session.day_of_week] += session.hours
    return distribution


def is_unbalanced(daily_hours: dict[str, int]) -> bool:
    if len(daily_hours) < 2:
        return False
    values = list(daily_hours.values())
    average = sum(values) / len(values)
    variance = sum((value - average) ** 2 for value in values) / len(values)
    return math.sqrt(variance) > average * 0.25


def teacher_continuity_score(sessions: Sequence[GeneratedSession]) -> float:
    teachers: dict[tuple[str, str], set[str]] = defaultdict(set)
    for session in sessions:
        teachers[(session.group_id, session.course_id)].add(session.teacher_id)
    if not teachers:
        return 1.0
    return sum(1 for items in teachers.values() if len(items) == 1) / len(teachers)


def resource_utilization_scores(sessions: Sequence[GeneratedSession]) -> dict[str, float]:
    teacher_hours: Counter[str] = Counter()
    space_hours: Counter[str] = Counter()
    for session in sessions:
        teacher_hours[session.teacher_id] += session.hours
        space_hours[session.learning_space_id] += session.hours
    average_teacher = sum(teacher_hours.values()) / len(teacher_hours) if teacher_hours else 0.0
    average_space = sum(space_hours.values()) / len(space_hours) if space_hours else 0.0
    return {
        "teachers": round(min(1.0, average_teacher / TEACHER_TARGET_HOURS), 4),
        "spaces": round(min(1.0, average_space / SPACE_TARGET_HOURS), 4),
    }


class ScheduleUtility:
    """Read-mostly reports over the sessions stored for a period."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.catalog = ScheduleCatalog(db)

    def period_sessions(self, period_id: str) -> list[GeneratedSession]:
        self.catalog.get_period(period_id)
        return [
            self.catalog.describe_session(session, is_new=False)
            for session in self.catalog.sessions_for_period(period_id)
        ]

    def occupancy(self, period_id: str) -> OccupancyReport:
        sessions = self.period_sessions(period_id)
        teacher_hours: Counter[tuple[str, str]] = Counter()
        space_hours: Counter[tuple[str, str]] = Counter()
        hour_distribution: Counter[str] = Counter()
        for session in sessions:
            teacher_hours[(session.teacher_id, session.teacher_name)] += session.hours
            space_hours[(session.learning_space_id, session.learning_space_name)] += session.hours
            for label in session.teaching_hours:
                hour_distribution[label.split("-")[0]] += 1

        ordered_hours = sorted(hour_distribution.items(), key=lambda item: (item[1], item[0]))
        return OccupancyReport(
            period_id=period_id,
            total_sessions=len(sessions),
            total_hours=sum(session.hours for session in sessions),
            sessions_by_day=dict(Counter(session.day_of_week for session in sessions)),
            sessions_by_time_slot=dict(Counter(session.time_slot_name for session in sessions)),
            top_busy_teachers=[
                ResourceLoad(id=key[0], name=key[1], hours=hours)
                for key, hours in teacher_hours.most_common(TOP_RESOURCES)
            ],
            top_used_spaces=[
                ResourceLoad(id=key[0], name=key[1], hours=hours)
                for key, hours in space_hours.most_common(TOP_RESOURCES)
            ],
            hour_distribution=dict(sorted(hour_distribution.items())),
            peak_hour=ordered_hours[-1][0] if ordered_hours else None,
            low_occupancy_hour=ordered_hours[0][0] if ordered_hours else None,
        )

    def existing_conflicts(self, period_id: str) -> ExistingConflictReport:
        conflicts = ConflictService(self.period_sessions(period_id)).detect_conflicts()
        if conflicts:
            logger.warning("Stored sessions overlap | period_id=%s conflicts=%s", period_id, len(conflicts))
        return ExistingConflictReport(
            period_id=period_id,
            total_conflicts=len(conflicts),
            conflicts=conflicts,
            conflicts_by_type=dict(Counter(conflict.conflict_type for conflict in conflicts)),
            conflicts_by_severity=dict(Counter(conflict.severity for conflict in conflicts)),
        )

    def _quality_metrics(self, sessions: Sequence[GeneratedSession]) -> QualityMetrics:
        gaps = group_time_gaps(sessions)
        distribution = daily_distribution(sessions)
        balanced = sum(1 for days in distribution.values() if not is_unbalanced(days))
        total_groups = len(distribution)
        continuity = teacher_continuity_score(sessions)
        overall = (
            balanced / max(1, total_groups) * 0.4
            + continuity * 0.3
            + (1.0 - len(gaps) / max(1, total_groups)) * 0.3
        )
        return QualityMetrics(
            groups_with_time_gaps=len(gaps),
            well_distributed_groups=balanced,
            total_groups=total_groups,
            distribution_score=round(balanced / total_groups, 4) if total_groups else 0.0,
            teacher_continuity_score=round(continuity, 4),
            overall_quality_score=round(overall, 4),
        )

    def utilization(self, period_id: str) -> UtilizationReport:
        sessions = self.period_sessions(period_id)
        teacher_hours: Counter[str] = Counter()
        space_hours: Counter[str] = Counter()
        for session in sessions:
            teacher_hours[session.teacher_name] += session.hours
            space_hours[session.learning_space_name] += session.hours
        by_day = Counter(session.day_of_week for session in sessions)

        return UtilizationReport(
            period_id=period_id,
            teacher_utilization=TeacherUtilization(
                total_teachers=len(teacher_hours),
                average_hours=round(sum(teacher_hours.values()) / len(teacher_hours), 2) if teacher_hours else 0.0,
                max_hours=max(teacher_hours.values(), default=0),
                min_hours=min(teacher_hours.values(), default=0),
                hours_distribution=dict(teacher_hours),
                overloaded_teachers=sorted(
                    name for name, hours in teacher_hours.items() if hours > OVERLOADED_TEACHER_HOURS
                ),
                underutilized_teachers=sorted(
                    name for name, hours in teacher_hours.items() if hours < UNDERUTILIZED_TEACHER_HOURS
                ),
            ),
            space_utilization=SpaceUtilization(
                total_spaces=len(space_hours),
                average_hours=round(sum(space_hours.values()) / len(space_hours), 2) if space_hours else 0.0,
                hours_distribution=dict(space_hours),
                most_used_space=space_hours.most_common()[0][0] if space_hours else None,
                least_used_space=space_hours.most_common()[-1][0] if space_hours else None,
            ),
            time_utilization=TimeUtilization(
                sessions_by_time_slot=dict(Counter(session.time_slot_name for session in sessions)),
                sessions_by_day=dict(by_day),
                busiest_day=by_day.most_common(1)[0][0] if by_day else None,
            ),
            quality_metrics=self._quality_metrics(sessions),
        )

    def optimizations(self, period_id: str) -> OptimizationReport:
        sessions = self.period_sessions(period_id)
        gaps = group_time_gaps(sessions)
        unbalanced = sum(1 for days in daily_distribution(sessions).values() if is_unbalanced(days))
        utilization = resource_utilization_scores(sessions)

        suggestions: list[str] = []
        if gaps:
            suggestions.append(f"Time gaps found in {len(gaps)} groups")
            suggestions.append("Reorganise sessions to remove idle time between classes")
        if unbalanced:
            suggestions.append(f"{unbalanced} groups have an unbalanced weekly distribution")
            suggestions.append("Move sessions to balance the daily load")
        if utilization["teachers"] < 0.6:
            suggestions.append(f"Low teacher utilization ({utilization['teachers'] * 100:.1f}%)")
        if utilization["spaces"] < 0.6:
            suggestions.append(f"Low learning space utilization ({utilization['spaces'] * 100:.1f}%)")
        if not suggestions:
            suggestions.append("Current schedules are well optimised")

        score = 100.0 - len(gaps) * 5.0 - unbalanced * 10.0
        score += teacher_continuity_score(sessions) * 15.0
        score += sum(utilization.values()) / len(utilization) * 10.0
        return OptimizationReport(
            period_id=period_id,
            optimization_score=round(max(0.0, min(100.0, score)), 2),
            suggestions=suggestions,
            groups_with_gaps=len(gaps),
            unbalanced_groups=unbalanced,
            resource_utilization=utilization,
        )

    def export_csv(self, period_id: str) -> str:
        self.catalog.get_period(period_id)
        rows = []
        for record in self.catalog.sessions_for_period(period_id):
            session = self.catalog.describe_session(record, is_new=False)
            rows.append(
                {
                    "Group": session.group_name,
                    "Course": session.course_name,
                    "Teacher": session.teacher_name,
                    "Learning space": session.learning_space_name,
                    "Day": session.day_of_week,
                    "Time slot": session.time_slot_name,
                    "Hours": ";".join(session.teaching_hours),
                    "Type": session.session_type.value,
                    "Notes": record.notes or "",
                }
            )
        frame = pd.DataFrame(rows, columns=CSV_COLUMNS)
        if not frame.empty:
            frame = frame.sort_values(["Group", "Day", "Hours"], kind="stable")
        return frame.to_csv(index=False, lineterminator="\n")

    def clear_period(self, period_id: str, career_id: str | None = None, cycle_id: str | None = None) -> ClearPeriodResult:
        self.catalog.get_period(period_id)
        group_query = select(StudentGroup.id).where(StudentGroup.period_id == period_id)
        if cycle_id:
            if self.db.get(Cycle, cycle_id) is None:
                raise ResourceNotFoundError("Cycle", cycle_id)
            group_query = group_query.where(StudentGroup.cycle_id == cycle_id)
        elif career_id:
            if self.db.get(Career, career_id) is None:
                raise ResourceNotFoundError("Career", career_id)
            cycle_ids = select(Cycle.id).where(Cycle.career_id == career_id)
            group_query = group_query.where(StudentGroup.cycle_id.in_(cycle_ids))

        group_ids = list(self.db.execute(group_query).scalars()) if (cycle_id or career_id) else None
        sessions = self.catalog.sessions_for_period(period_id, group_ids)
        groups = {session.student_group_id for session in sessions}
        teachers = {session.teacher_id for session in sessions}
        spaces = {session.learning_space_id for session in sessions}
        deleted = self.catalog.delete_sessions([session.id for session in sessions])
        logger.info(
            "Period schedule cleared | period_id=%s career_id=%s cycle_id=%s deleted=%s",
            period_id,
            career_id,
            cycle_id,
            deleted,
        )
        return ClearPeriodResult(
            period_id=period_id,
            deleted_sessions=deleted,
            affected_groups=len(groups),
            affected_teachers=len(teachers),
            affected_spaces=len(spaces),
        )
