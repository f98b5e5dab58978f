from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timetabler.core.config import Settings, get_settings
from timetabler.core.exceptions import ConfigurationError, ResourceNotFoundError, SessionCommitError
from timetabler.models.learning_space import TeachingType
from timetabler.schemas.schedule_generation import (
    CleanupStrategy,
    CompleteFlowResult,
    CourseRequirement,
    GenerationStatistics,
    GenerationSummary,
    GeneratedSession,
    GenerationValidationReport,
    GroupRequirement,
    ScheduleCleanupRequest,
    ScheduleGenerationRequest,
    ScheduleGenerationResult,
    SchedulePreview,
    SystemCapacity,
)
from timetabler.services.candidate_search import CandidateSearch
from timetabler.services.catalog import ScheduleCatalog
from timetabler.services.conflict_service import ConflictService
from timetabler.services.feasibility import (
    analyze_constraints,
    analyze_feasibility,
    request_errors,
    validate_generation_request,
)
from timetabler.services.generation_context import GenerationContext
from timetabler.services.schedule_analyzer import STRATEGY_DESCRIPTIONS, ScheduleAnalyzer, recommended_actions
from timetabler.services.scheduling_types import AssignmentCandidate, ScheduleSlot, are_consecutive

logger = logging.getLogger(__name__)

SlotPool = dict[tuple[str, str], ScheduleSlot]

SESSION_ORDER = (TeachingType.theory, TeachingType.practice)


def course_priority(course: CourseRequirement) -> tuple:
    return (-course.total_hours, not course.is_mixed, course.preferred_specialty_id is None, course.course_name)


class ScheduleGenerator:
    """Greedy allocation of weekly class sessions for a set of student groups.

    Every group gets its own pool of (day, time slot) entries. Each course quota is filled one
    consecutive block at a time: search, pre-validate, commit through the catalog, update the
    context. Rejected commits evict their slot from the group's pool and the loop continues.
    """

    def __init__(self, db: Session, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        if not self.settings.work_days:
            raise ConfigurationError("WORK_DAYS must list at least one day")

    # ---- entry points ----

    def generate(self, request: ScheduleGenerationRequest, *, seed_existing: bool = False) -> ScheduleGenerationResult:
        started = time.perf_counter()
        validate_generation_request(request, self.settings.work_days)
        catalog = ScheduleCatalog(self.db)
        groups = catalog.resolve_target_groups(request)
        logger.info(
            "Schedule generation started | period_id=%s groups=%s seed_existing=%s",
            request.period_id,
            len(groups),
            seed_existing,
        )

        context: GenerationContext | None = None
        try:
            requirements = catalog.group_requirements(groups)
            context = GenerationContext(request, requirements, self.settings.work_days)
            if seed_existing:
                existing = catalog.sessions_for_period(request.period_id, [group.id for group in groups])
                context.seed_existing_sessions(catalog.describe_session(session, is_new=False) for session in existing)

            search = CandidateSearch(catalog, context)
            for group in requirements:
                self._allocate_group(catalog, search, context, group)

            for conflict in ConflictService(context.preserved_sessions + context.sessions).detect_conflicts():
                context.add_conflict(conflict)
            self._check_daily_limits(context)
        except Exception as exc:
            logger.exception("Schedule generation failed | period_id=%s", request.period_id)
            return ScheduleGenerationResult(
                success=False,
                message=f"Error during schedule generation: {exc}",
                generated_sessions=list(context.sessions) if context else [],
                conflicts=list(context.conflicts) if context else [],
                warnings=list(context.warnings) if context else [],
                execution_time_ms=int((time.perf_counter() - started) * 1000),
            )

        result = self._build_result(context, seed_existing, started)
        logger.info(
            "Schedule generation finished | period_id=%s sessions=%s warnings=%s conflicts=%s elapsed_ms=%s",
            request.period_id,
            len(context.sessions),
            len(context.warnings),
            len(context.conflicts),
            result.execution_time_ms,
        )
        return result

    def generate_intelligent(
        self,
        request: ScheduleGenerationRequest,
        strategy: CleanupStrategy = CleanupStrategy.selective_cleanup,
    ) -> ScheduleGenerationResult:
        validate_generation_request(request, self.settings.work_days)
        analyzer = ScheduleAnalyzer(self.db, self.settings)
        analysis = analyzer.analyze_existing(request)
        logger.info(
            "Intelligent generation | period_id=%s strategy=%s recommended=%s needs_decision=%s",
            request.period_id,
            strategy.value,
            analysis.recommended_strategy.value,
            analysis.needs_user_decision,
        )

        if analysis.needs_user_decision and strategy != CleanupStrategy.complete_existing:
            group_ids = [status.group_id for status in analysis.groups if status.existing_sessions > 0]
            analyzer.cleanup(
                ScheduleCleanupRequest(
                    period_id=request.period_id,
                    group_ids=group_ids,
                    strategy=strategy,
                    confirm_overwrite=True,
                )
            )

        result = self.generate(request, seed_existing=strategy != CleanupStrategy.reset_all)
        if result.success:
            result.message = f"{result.message}. Strategy {strategy.value}: {STRATEGY_DESCRIPTIONS[strategy]}"
        return result

    def generate_complete_flow(
        self,
        request: ScheduleGenerationRequest,
        *,
        auto_resolve: bool = False,
        default_strategy: CleanupStrategy = CleanupStrategy.selective_cleanup,
    ) -> CompleteFlowResult:
        """Analyze, then generate only when no decision about existing sessions is pending.

        With existing sessions and ``auto_resolve`` off nothing is written: the caller gets the
        analysis and per-group recommended actions and picks a strategy. ``auto_resolve`` applies
        the analyzer's recommended strategy instead of ``default_strategy``.
        """
        validate_generation_request(request, self.settings.work_days)
        analysis = ScheduleAnalyzer(self.db, self.settings).analyze_existing(request)
        actions = recommended_actions(analysis)

        if analysis.needs_user_decision and not auto_resolve:
            logger.info(
                "Complete flow waiting for a decision | period_id=%s groups_with_sessions=%s",
                request.period_id,
                analysis.groups_with_sessions,
            )
            return CompleteFlowResult(
                existing_analysis=analysis,
                requires_user_decision=True,
                recommended_actions=actions,
                message=(
                    f"{analysis.groups_with_sessions} group(s) already have sessions. "
                    f"Choose a cleanup strategy (recommended: {analysis.recommended_strategy.value}) "
                    "or enable auto_resolve"
                ),
            )

        strategy = analysis.recommended_strategy if auto_resolve else default_strategy
        result = self.generate_intelligent(request, strategy)
        return CompleteFlowResult(
            existing_analysis=analysis,
            requires_user_decision=False,
            recommended_actions=actions,
            applied_strategy=strategy,
            generation_result=result,
            message=result.message,
        )

    # ---- read-only planning ----

    def preview(self, request: ScheduleGenerationRequest) -> SchedulePreview:
        validate_generation_request(request, self.settings.work_days)
        catalog = ScheduleCatalog(self.db)
        requirements = catalog.group_requirements(catalog.resolve_target_groups(request))
        active_days = [day for day in self.settings.work_days if day not in request.excluded_days]
        constraints = analyze_constraints(requirements, catalog, active_days)
        feasibility = analyze_feasibility(
            requirements,
            constraints,
            time_slot_count=len(catalog.time_slots()),
            active_days=len(active_days),
            settings=self.settings,
        )
        return SchedulePreview(
            group_requirements=requirements,
            constraints=constraints,
            feasibility=feasibility,
            existing_analysis=ScheduleAnalyzer(self.db, self.settings).analyze_existing(request),
        )

    def validate(self, request: ScheduleGenerationRequest) -> GenerationValidationReport:
        errors = request_errors(request, self.settings.work_days)
        warnings: list[str] = []
        target_groups = 0
        feasibility = None
        if not errors:
            try:
                preview = self.preview(request)
            except ResourceNotFoundError as exc:
                errors.append(exc.message)
            else:
                target_groups = len(preview.group_requirements)
                feasibility = preview.feasibility
                if target_groups == 0:
                    warnings.append("No student groups match the requested scope")
                for group in preview.group_requirements:
                    if not group.courses:
                        warnings.append(f"Group {group.group_name} has no courses in its cycle")
                warnings.extend(preview.constraints.potential_constraints)
                warnings.extend(feasibility.challenges)
                if preview.existing_analysis and preview.existing_analysis.needs_user_decision:
                    warnings.append(
                        f"{preview.existing_analysis.groups_with_sessions} groups already have sessions in this period"
                    )
        return GenerationValidationReport(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            target_groups=target_groups,
            feasibility=feasibility,
            can_proceed=not errors and target_groups > 0,
        )

    def system_capacity(self) -> SystemCapacity:
        catalog = ScheduleCatalog(self.db)
        spaces = catalog.all_spaces()
        time_slots = catalog.time_slots()
        hours_per_day = sum(len(slot.hours) for slot in time_slots)
        return SystemCapacity(
            total_teachers=len(catalog.all_teachers()),
            total_learning_spaces=len(spaces),
            theory_spaces=sum(1 for space in spaces if space.teaching_type == TeachingType.theory),
            practice_spaces=sum(1 for space in spaces if space.teaching_type == TeachingType.practice),
            total_time_slots=len(time_slots),
            total_teaching_hours=hours_per_day,
            work_days=list(self.settings.work_days),
            weekly_teaching_hour_capacity=hours_per_day * len(self.settings.work_days) * len(spaces),
        )

    # ---- allocation ----

    def _slot_pool(self, catalog: ScheduleCatalog, request: ScheduleGenerationRequest) -> SlotPool:
        preferred = set(request.preferred_time_slot_ids)
        return {
            (day, time_slot.id): ScheduleSlot(
                day=day,
                time_slot=time_slot,
                available_hours=list(time_slot.hours),
                is_preferred=time_slot.id in preferred,
            )
            for day in self.settings.work_days
            for time_slot in catalog.time_slots()
        }

    @staticmethod
    def _allocation_passes(
        group: GroupRequirement, labs_after_theory: bool
    ) -> list[tuple[CourseRequirement, TeachingType]]:
        courses = sorted(group.courses, key=course_priority)
        if labs_after_theory:
            return [(course, kind) for kind in SESSION_ORDER for course in courses]
        return [(course, kind) for course in courses for kind in SESSION_ORDER]

    def _allocate_group(
        self,
        catalog: ScheduleCatalog,
        search: CandidateSearch,
        context: GenerationContext,
        group: GroupRequirement,
    ) -> None:
        slots = self._slot_pool(catalog, context.request)
        for course, session_type in self._allocation_passes(group, context.request.prioritize_labs_after_theory):
            if course.hours_for(session_type) > 0:
                self._allocate_course(catalog, search, context, group, course, session_type, slots)

    def _allocate_course(
        self,
        catalog: ScheduleCatalog,
        search: CandidateSearch,
        context: GenerationContext,
        group: GroupRequirement,
        course: CourseRequirement,
        session_type: TeachingType,
        slots: SlotPool,
    ) -> None:
        request = context.request
        remaining = context.remaining_hours(group.group_id, course.course_id, session_type)
        attempts = 0
        while remaining > 0 and attempts < self.settings.max_attempts_per_course:
            attempts += 1
            live_slots = [slot for slot in slots.values() if slot.available_hours]
            requested = min(request.max_consecutive_hours, remaining)
            outcome = search.find_best(group, course, session_type, requested, live_slots)
            if outcome.candidate is None and requested > 1:
                outcome = search.find_best(group, course, session_type, 1, live_slots).merge(outcome)

            candidate = outcome.candidate
            if candidate is None:
                reason = outcome.failure_reason()
                severity = "HIGH" if reason in ("TEACHER_CONFLICT", "SPACE_CONFLICT") else "MEDIUM"
                context.add_warning(
                    reason,
                    f"No slot found for {course.course_name} {session_type.value} in group {group.group_name} "
                    f"({remaining} hours left)",
                    severity,
                )
                logger.warning(
                    "Allocation abandoned | group=%s course=%s type=%s remaining=%s reason=%s",
                    group.group_name,
                    course.course_name,
                    session_type.value,
                    remaining,
                    reason,
                )
                break

            rejection = self._pre_validate(catalog, context, candidate, group.period_id)
            if rejection is not None:
                context.add_warning("VALIDATION_CONFLICT", rejection, "MEDIUM")
                self._evict(slots, candidate)
                continue

            try:
                record = catalog.commit_session(candidate, group.period_id)
            except SessionCommitError as exc:
                logger.warning(
                    "Session commit rejected | group=%s course=%s day=%s reason=%s",
                    group.group_name,
                    course.course_name,
                    candidate.day,
                    exc.message,
                )
                context.add_warning("VALIDATION_CONFLICT", exc.message, "MEDIUM")
                self._evict(slots, candidate)
                continue
            except SQLAlchemyError as exc:
                logger.warning(
                    "Session insert failed | group=%s course=%s day=%s error=%s",
                    group.group_name,
                    course.course_name,
                    candidate.day,
                    exc,
                )
                context.add_warning("CREATION_ERROR", f"Could not create session: {exc}", "HIGH")
                self._evict(slots, candidate)
                continue

            context.record_committed_session(catalog.describe_session(record, is_new=True))
            slots[(candidate.day, candidate.time_slot_id)].remove_hours(candidate.hour_ids)
            remaining -= candidate.hour_count

        if remaining > 0:
            message = (
                f"Could not assign every hour of {course.course_name} {session_type.value} "
                f"for group {group.group_name}: {remaining} hours missing"
            )
            context.add_warning("INCOMPLETE_ASSIGNMENT", message, "MEDIUM")
            logger.warning(
                "Incomplete assignment | group=%s course=%s type=%s remaining=%s",
                group.group_name,
                course.course_name,
                session_type.value,
                remaining,
            )

    @staticmethod
    def _pre_validate(
        catalog: ScheduleCatalog,
        context: GenerationContext,
        candidate: AssignmentCandidate,
        period_id: str,
    ) -> str | None:
        if not are_consecutive(candidate.hours):
            return f"Teaching hours on {candidate.day} are not consecutive"
        detected = context.detect_conflicts(candidate)
        if detected:
            return detected[0].description
        if catalog.teacher_conflicts(period_id, candidate.teacher_id, candidate.day, candidate.hour_ids):
            return f"Teacher already has a session on {candidate.day} at these hours"
        if catalog.space_conflicts(period_id, candidate.space_id, candidate.day, candidate.hour_ids):
            return f"Learning space is already booked on {candidate.day} at these hours"
        return None

    @staticmethod
    def _evict(slots: SlotPool, candidate: AssignmentCandidate) -> None:
        slots.pop((candidate.day, candidate.time_slot_id), None)

    def _check_daily_limits(self, context: GenerationContext) -> None:
        for group in context.groups.values():
            for day in context.active_days:
                hours = context.daily_hours(group.group_id, day)
                if hours and not context.within_daily_limits(group.group_id, day):
                    context.add_warning(
                        "DAILY_LIMIT",
                        f"Group {group.group_name} has {hours} hours on {day}, outside the "
                        f"{context.request.min_hours_per_day}-{context.request.max_hours_per_day} range",
                        "LOW",
                    )

    # ---- reporting ----

    def _statistics(self, sessions: Sequence[GeneratedSession]) -> GenerationStatistics:
        per_day = Counter(session.day_of_week for session in sessions)
        per_slot = Counter(session.time_slot_name for session in sessions)
        teacher_hours: Counter[str] = Counter()
        space_hours: Counter[str] = Counter()
        course_hours: Counter[str] = Counter()
        for session in sessions:
            teacher_hours[session.teacher_name] += session.hours
            space_hours[session.learning_space_name] += session.hours
            course_hours[session.course_name] += session.hours

        days = self.settings.work_days
        counts = [per_day.get(day, 0) for day in days]
        average = sum(counts) / len(counts) if counts else 0.0
        variance = sum((count - average) ** 2 for count in counts) / len(counts) if counts else 0.0
        return GenerationStatistics(
            sessions_per_day={day: per_day.get(day, 0) for day in days},
            sessions_per_time_slot=dict(per_slot),
            teacher_utilization=dict(teacher_hours),
            space_utilization=dict(space_hours),
            hours_per_course=dict(course_hours),
            average_sessions_per_day=round(len(sessions) / 6, 2),
            distribution_balance=round(max(0.0, 1 - variance / (average + 1)), 4),
        )

    def _build_result(self, context: GenerationContext, seeded: bool, started: float) -> ScheduleGenerationResult:
        sessions = context.sessions
        groups = list(context.groups.values())
        required = sum(group.total_weekly_hours for group in groups)
        assigned = sum(context.assigned_hours(group.group_id) for group in groups)
        remaining = sum(
            context.remaining_hours(group.group_id, course.course_id, kind)
            for group in groups
            for course in group.courses
            for kind in SESSION_ORDER
        )
        summary = GenerationSummary(
            total_groups_processed=len(groups),
            total_courses_processed=sum(len(group.courses) for group in groups),
            total_sessions_generated=len(sessions),
            total_hours_assigned=sum(session.hours for session in sessions),
            total_required_hours=required,
            remaining_hours=remaining,
            conflicts_found=len(context.conflicts),
            warnings_generated=len(context.warnings),
            success_rate=round(min(1.0, assigned / required), 4) if required else 1.0,
        )
        success = not context.conflicts
        if success:
            message = "Schedules generated successfully"
        else:
            message = f"Schedules generated with {len(context.conflicts)} conflicts"
        return ScheduleGenerationResult(
            success=success,
            message=message,
            summary=summary,
            generated_sessions=list(sessions),
            conflicts=list(context.conflicts),
            warnings=list(context.warnings),
            statistics=self._statistics(sessions),
            quality_score=round(
                context.quality_score_with_existing() if seeded else context.quality_score(), 2
            ),
            integration_report=context.integration_report() if seeded else None,
            execution_time_ms=int((time.perf_counter() - started) * 1000),
        )
