from __future__ import annotations

from collections.abc import Sequence

from timetabler.core.config import Settings
from timetabler.core.exceptions import SchedulerError
from timetabler.schemas.schedule_generation import (
    FeasibilityReport,
    GroupRequirement,
    ScheduleConstraints,
    ScheduleGenerationRequest,
)
from timetabler.services.catalog import ScheduleCatalog

HOURS_PER_SLOT_ESTIMATE = 4
COURSES_PER_TEACHER_ESTIMATE = 3
COURSES_PER_TEACHER_LIMIT = 4
GROUP_COORDINATION_LIMIT = 15
MIXED_COURSE_SHARE_LIMIT = 0.6


def request_errors(request: ScheduleGenerationRequest, work_days: Sequence[str]) -> list[str]:
    errors: list[str] = []
    if not request.has_scope():
        errors.append("At least one scope filter (modality, career, cycle or group list) is required")
    if request.max_hours_per_day < request.min_hours_per_day:
        errors.append("max_hours_per_day cannot be lower than min_hours_per_day")
    if request.max_consecutive_hours > request.max_hours_per_day:
        errors.append("max_consecutive_hours cannot exceed max_hours_per_day")
    if work_days and all(day in request.excluded_days for day in work_days):
        errors.append("Every working day is excluded")
    return errors


def validate_generation_request(request: ScheduleGenerationRequest, work_days: Sequence[str]) -> None:
    errors = request_errors(request, work_days)
    if errors:
        raise SchedulerError(errors[0], details={"errors": errors})


def analyze_constraints(
    requirements: Sequence[GroupRequirement],
    catalog: ScheduleCatalog,
    work_days: Sequence[str],
) -> ScheduleConstraints:
    total_courses = sum(len(group.courses) for group in requirements)
    total_required_hours = sum(group.total_weekly_hours for group in requirements)
    available_teachers = len(catalog.all_teachers())
    available_time_slots = len(catalog.time_slots()) * len(work_days)

    constraints: list[str] = []
    if total_required_hours > available_time_slots * HOURS_PER_SLOT_ESTIMATE:
        constraints.append("Not enough time slots for all required hours")
    if total_courses > available_teachers * COURSES_PER_TEACHER_ESTIMATE:
        constraints.append("Possible shortage of specialised teachers")

    return ScheduleConstraints(
        total_groups=len(requirements),
        total_courses=total_courses,
        total_required_hours=total_required_hours,
        available_teachers=available_teachers,
        available_spaces=len(catalog.all_spaces()),
        available_time_slots=available_time_slots,
        potential_constraints=constraints,
    )


def analyze_feasibility(
    requirements: Sequence[GroupRequirement],
    constraints: ScheduleConstraints,
    *,
    time_slot_count: int,
    active_days: int,
    settings: Settings,
) -> FeasibilityReport:
    """Static estimate of whether a run can fit the requested hours into the catalog.

    Starts at 1.0 and subtracts for hour density, teacher load, group count and the share of
    mixed theory/practice courses.
    """
    challenges: list[str] = []
    recommendations: list[str] = []
    score = 1.0

    capacity = time_slot_count * active_days * settings.feasibility_hours_per_slot
    if capacity > 0:
        ratio = constraints.total_required_hours / capacity
    else:
        # an empty grid only fits an empty workload
        ratio = float("inf") if constraints.total_required_hours else 0.0
    if ratio > 0.9:
        score -= 0.4
        challenges.append("Required hours exceed the available time slot capacity")
        recommendations.append("Add time slots, free excluded days or split the generation scope")
    elif ratio > 0.7:
        score -= 0.2
        challenges.append("High density of required hours versus available time slots")
        recommendations.append("Consider adding time slots or redistributing courses")

    if constraints.total_courses:
        if constraints.available_teachers:
            courses_per_teacher = constraints.total_courses / constraints.available_teachers
        else:
            courses_per_teacher = float("inf")
        if courses_per_teacher > COURSES_PER_TEACHER_LIMIT:
            score -= min(0.3, (courses_per_teacher - COURSES_PER_TEACHER_LIMIT) * 0.1)
            challenges.append("Possible teacher overload")
            recommendations.append("Check that teachers cover every required knowledge area")

    if constraints.total_groups > GROUP_COORDINATION_LIMIT:
        score -= 0.1
        challenges.append("High coordination complexity with many groups")
        recommendations.append("Consider generating by career or cycle")

    courses = [course for group in requirements for course in group.courses]
    if courses:
        mixed_share = sum(1 for course in courses if course.is_mixed) / len(courses)
        if mixed_share > MIXED_COURSE_SHARE_LIMIT:
            score -= 0.1
            challenges.append("Most courses need both theory and practice rooms")
            recommendations.append("Verify that enough practice rooms exist for mixed courses")

    score = max(0.0, min(1.0, score))
    # a ratio above 1.0 is infeasible whatever the score
    is_feasible = score >= 0.5 and len(challenges) < 3 and ratio <= 1.0
    if is_feasible:
        recommendations.append("The catalog has enough capacity to generate schedules automatically")
    else:
        recommendations.append("Review resources and configuration before generating")

    return FeasibilityReport(
        is_feasible=is_feasible,
        feasibility_score=round(score, 4),
        challenges=challenges,
        recommendations=recommendations,
    )
