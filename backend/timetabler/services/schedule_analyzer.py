from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from timetabler.core.config import Settings, get_settings
from timetabler.core.exceptions import ResourceNotFoundError, SchedulerError
from timetabler.models.academic_structure import StudentGroup
from timetabler.models.class_session import ClassSession
from timetabler.schemas.schedule_generation import (
    CleanupStrategy,
    ExistingScheduleAnalysis,
    GroupAction,
    GroupScheduleStatus,
    PeriodScheduleStatus,
    RecommendedAction,
    ScheduleCleanupRequest,
    ScheduleCleanupResult,
    ScheduleGenerationRequest,
    UtilizationLevel,
    WorkloadAnalysis,
)
from timetabler.services.catalog import ScheduleCatalog

logger = logging.getLogger(__name__)

RESET_THRESHOLD = 0.3
COMPLETE_THRESHOLD = 0.8
UTILIZATION_DIVISOR = 50.0

STRATEGY_DESCRIPTIONS = {
    CleanupStrategy.reset_all: "existing sessions were removed and the schedule was rebuilt",
    CleanupStrategy.selective_cleanup: "incomplete course fragments were removed and the gaps were filled",
    CleanupStrategy.complete_existing: "existing sessions were kept and only missing hours were filled",
}


def classify_completeness(existing_sessions: int, completeness: float) -> GroupAction:
    if existing_sessions == 0 or completeness >= COMPLETE_THRESHOLD:
        return "NONE"
    if completeness < RESET_THRESHOLD:
        return "RESET"
    return "COMPLETE"


def recommend_strategy(statuses: Sequence[GroupScheduleStatus]) -> CleanupStrategy:
    scheduled = [status for status in statuses if status.existing_sessions > 0]
    if not scheduled:
        return CleanupStrategy.complete_existing
    done = sum(1 for status in scheduled if status.recommended_action == "NONE")
    partial = sum(1 for status in scheduled if status.recommended_action == "COMPLETE")
    if done / len(scheduled) > 0.5:
        return CleanupStrategy.complete_existing
    if partial / len(scheduled) >= 0.3:
        return CleanupStrategy.selective_cleanup
    return CleanupStrategy.reset_all


ACTION_REASONING = {
    "RESET": "Few hours assigned, starting over is simpler",
    "COMPLETE": "Partially scheduled, the missing hours can be filled in",
    "NONE": "Schedule looks complete",
}


def recommended_actions(analysis: ExistingScheduleAnalysis) -> list[RecommendedAction]:
    return [
        RecommendedAction(
            group_name=status.group_name,
            current_status=f"{status.completeness * 100:.1f}% complete",
            recommended_action=status.recommended_action,
            reasoning=ACTION_REASONING[status.recommended_action],
        )
        for status in analysis.groups
        if status.existing_sessions > 0
    ]


def utilization_level(utilization: float) -> UtilizationLevel:
    if utilization < 0.3:
        return "LOW"
    if utilization < 0.6:
        return "MEDIUM"
    if utilization < 0.8:
        return "HIGH"
    return "CRITICAL"


def _session_hours(session: ClassSession) -> int:
    return len(session.teaching_hour_ids or [])


class ScheduleAnalyzer:
    """Inspects the sessions already stored for a period and plans how to regenerate around them."""

    def __init__(self, db: Session, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.catalog = ScheduleCatalog(db)

    def group_status(self, group: StudentGroup, sessions: Sequence[ClassSession]) -> GroupScheduleStatus:
        assigned = sum(_session_hours(session) for session in sessions)
        required = self.catalog.required_hours_for_group(group)
        if required > 0:
            completeness = min(1.0, assigned / required)
        else:
            completeness = 1.0 if sessions else 0.0
        distribution: dict[str, int] = defaultdict(int)
        for session in sessions:
            distribution[session.day_of_week] += _session_hours(session)
        return GroupScheduleStatus(
            group_id=group.id,
            group_name=group.name,
            existing_sessions=len(sessions),
            assigned_hours=assigned,
            required_hours=required,
            assigned_courses=len({session.course_id for session in sessions}),
            assigned_teachers=len({session.teacher_id for session in sessions}),
            distribution_by_day=dict(distribution),
            completeness=round(completeness, 4),
            recommended_action=classify_completeness(len(sessions), completeness),
        )

    def _statuses(self, period_id: str, groups: Sequence[StudentGroup]) -> list[GroupScheduleStatus]:
        sessions = self.catalog.sessions_for_period(period_id, [group.id for group in groups])
        by_group: dict[str, list[ClassSession]] = defaultdict(list)
        for session in sessions:
            by_group[session.student_group_id].append(session)
        return [self.group_status(group, by_group.get(group.id, [])) for group in groups]

    def workload(self, period_id: str) -> WorkloadAnalysis:
        teacher_hours: dict[str, int] = defaultdict(int)
        space_hours: dict[str, int] = defaultdict(int)
        for session in self.catalog.sessions_for_period(period_id):
            teacher_hours[session.teacher_id] += _session_hours(session)
            space_hours[session.learning_space_id] += _session_hours(session)

        average_teacher = sum(teacher_hours.values()) / len(teacher_hours) if teacher_hours else 0.0
        average_space = sum(space_hours.values()) / len(space_hours) if space_hours else 0.0
        overloaded_teachers = sorted(
            teacher_id for teacher_id, hours in teacher_hours.items() if hours > self.settings.teacher_overload_hours
        )
        overloaded_spaces = sorted(
            space_id for space_id, hours in space_hours.items() if hours > self.settings.space_overload_hours
        )
        utilization = (average_teacher + average_space) / UTILIZATION_DIVISOR
        level = utilization_level(utilization)

        recommendations: list[str] = []
        if overloaded_teachers:
            recommendations.append(
                f"{len(overloaded_teachers)} teachers exceed {self.settings.teacher_overload_hours} weekly hours"
            )
        if overloaded_spaces:
            recommendations.append(
                f"{len(overloaded_spaces)} learning spaces exceed {self.settings.space_overload_hours} weekly hours"
            )
        if level in ("HIGH", "CRITICAL"):
            recommendations.append("Resource utilization is high; consider adding teachers or learning spaces")
        elif level == "LOW":
            recommendations.append("Resources have plenty of free capacity")

        return WorkloadAnalysis(
            average_teacher_hours=round(average_teacher, 2),
            average_space_hours=round(average_space, 2),
            overloaded_teachers=overloaded_teachers,
            overloaded_spaces=overloaded_spaces,
            utilization=round(utilization, 4),
            utilization_level=level,
            recommendations=recommendations,
        )

    def analyze_existing(self, request: ScheduleGenerationRequest) -> ExistingScheduleAnalysis:
        groups = self.catalog.resolve_target_groups(request)
        statuses = self._statuses(request.period_id, groups)
        scheduled = [status for status in statuses if status.existing_sessions > 0]
        strategy = recommend_strategy(statuses)

        recommendations: list[str] = []
        if not scheduled:
            recommendations.append("No existing sessions; the schedule can be generated from scratch")
        else:
            resets = [status.group_name for status in scheduled if status.recommended_action == "RESET"]
            partial = [status.group_name for status in scheduled if status.recommended_action == "COMPLETE"]
            if resets:
                recommendations.append(f"Groups with very little progress: {', '.join(resets)}")
            if partial:
                recommendations.append(f"Groups that can be completed: {', '.join(partial)}")
            recommendations.append(f"Recommended strategy {strategy.value}: {STRATEGY_DESCRIPTIONS[strategy]}")

        logger.info(
            "Existing schedule analysed | period_id=%s groups=%s with_sessions=%s strategy=%s",
            request.period_id,
            len(statuses),
            len(scheduled),
            strategy.value,
        )
        return ExistingScheduleAnalysis(
            period_id=request.period_id,
            total_groups=len(statuses),
            groups_with_sessions=len(scheduled),
            total_existing_sessions=sum(status.existing_sessions for status in statuses),
            needs_user_decision=bool(scheduled),
            recommended_strategy=strategy,
            groups=statuses,
            workload=self.workload(request.period_id),
            recommendations=recommendations,
        )

    def cleanup(self, request: ScheduleCleanupRequest) -> ScheduleCleanupResult:
        self.catalog.get_period(request.period_id)
        if request.strategy != CleanupStrategy.complete_existing and not request.confirm_overwrite:
            raise SchedulerError(
                f"Strategy {request.strategy.value} deletes sessions and requires confirm_overwrite",
                details={"strategy": request.strategy.value},
            )
        group_ids = list(dict.fromkeys(request.group_ids))
        for group_id in group_ids:
            if self.db.get(StudentGroup, group_id) is None:
                raise ResourceNotFoundError("StudentGroup", group_id)

        sessions = self.catalog.sessions_for_period(request.period_id, group_ids)
        if request.strategy == CleanupStrategy.reset_all:
            doomed = sessions
        elif request.strategy == CleanupStrategy.selective_cleanup:
            pair_hours: dict[tuple[str, str], int] = defaultdict(int)
            for session in sessions:
                pair_hours[(session.student_group_id, session.course_id)] += _session_hours(session)
            fragments = {
                pair for pair, hours in pair_hours.items() if hours < self.settings.selective_cleanup_min_hours
            }
            doomed = [session for session in sessions if (session.student_group_id, session.course_id) in fragments]
        else:
            doomed = []

        doomed_ids = [session.id for session in doomed]
        affected_groups = {session.student_group_id for session in doomed}
        affected_courses = {session.course_id for session in doomed}
        per_group: dict[str, int] = defaultdict(int)
        for session in doomed:
            per_group[self.catalog.group_name(session.student_group_id)] += 1

        deleted = self.catalog.delete_sessions(doomed_ids)
        warnings: list[str] = []
        if not doomed and request.strategy != CleanupStrategy.complete_existing:
            warnings.append("No sessions matched the cleanup criteria")
        logger.info(
            "Cleanup applied | period_id=%s strategy=%s deleted=%s",
            request.period_id,
            request.strategy.value,
            deleted,
        )
        return ScheduleCleanupResult(
            success=True,
            message=f"Cleanup {request.strategy.value} removed {deleted} sessions",
            deleted_sessions=deleted,
            affected_groups=len(affected_groups),
            affected_courses=len(affected_courses),
            cleanup_strategy=request.strategy,
            warnings=warnings,
            details={
                "deleted_session_ids": doomed_ids,
                "deleted_per_group": dict(per_group),
                "description": STRATEGY_DESCRIPTIONS[request.strategy],
            },
        )

    def period_status(self, period_id: str) -> PeriodScheduleStatus:
        self.catalog.get_period(period_id)
        groups = list(
            self.db.execute(
                select(StudentGroup).where(StudentGroup.period_id == period_id).order_by(StudentGroup.name)
            ).scalars()
        )
        statuses = self._statuses(period_id, groups)
        return PeriodScheduleStatus(
            period_id=period_id,
            total_groups=len(statuses),
            groups_with_sessions=sum(1 for status in statuses if status.existing_sessions > 0),
            total_sessions=sum(status.existing_sessions for status in statuses),
            total_hours=sum(status.assigned_hours for status in statuses),
            average_completeness=round(
                sum(status.completeness for status in statuses) / len(statuses), 4
            ) if statuses else 0.0,
            groups=statuses,
        )
