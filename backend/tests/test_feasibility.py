import pytest
from pydantic import ValidationError

from timetabler.core.config import get_settings
from timetabler.core.exceptions import SchedulerError
from timetabler.models.learning_space import TeachingType
from timetabler.schemas.schedule_generation import (
    CourseRequirement,
    GroupRequirement,
    ScheduleConstraints,
    ScheduleGenerationRequest,
)
from timetabler.services.feasibility import analyze_feasibility, request_errors, validate_generation_request
from timetabler.services.schedule_generator import ScheduleGenerator

WORK_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _group(name: str, courses: int, mixed: int = 0) -> GroupRequirement:
    items = []
    for index in range(courses):
        is_mixed = index < mixed
        items.append(
            CourseRequirement(
                course_id=f"{name}-{index}",
                course_name=f"Course {index}",
                cycle_id="cycle",
                knowledge_area_id="area",
                theory_hours=2,
                practice_hours=2 if is_mixed else 0,
                total_hours=4 if is_mixed else 2,
                supported_session_types=[TeachingType.theory, TeachingType.practice] if is_mixed else [TeachingType.theory],
                is_mixed=is_mixed,
            )
        )
    return GroupRequirement(
        group_id=name,
        group_name=name,
        cycle_id="cycle",
        period_id="period",
        courses=items,
        total_weekly_hours=sum(item.total_hours for item in items),
    )


def _constraints(**overrides) -> ScheduleConstraints:
    values = {
        "total_groups": 1,
        "total_courses": 4,
        "total_required_hours": 10,
        "available_teachers": 4,
        "available_spaces": 4,
        "available_time_slots": 12,
        "potential_constraints": [],
    }
    values.update(overrides)
    return ScheduleConstraints(**values)


def test_request_errors_cover_every_rule():
    request = ScheduleGenerationRequest(
        period_id="period",
        max_hours_per_day=3,
        min_hours_per_day=4,
        excluded_days=WORK_DAYS,
    )

    errors = request_errors(request, WORK_DAYS)

    assert errors == [
        "At least one scope filter (modality, career, cycle or group list) is required",
        "max_hours_per_day cannot be lower than min_hours_per_day",
        "max_consecutive_hours cannot exceed max_hours_per_day",
        "Every working day is excluded",
    ]


def test_validation_raises_first_error_with_all_details():
    request = ScheduleGenerationRequest(period_id="period", group_ids=["g1"], max_consecutive_hours=10)

    with pytest.raises(SchedulerError) as excinfo:
        validate_generation_request(request, WORK_DAYS)

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "max_consecutive_hours cannot exceed max_hours_per_day"
    assert excinfo.value.details == {"errors": ["max_consecutive_hours cannot exceed max_hours_per_day"]}


def test_excluded_days_are_normalised_and_checked():
    request = ScheduleGenerationRequest(period_id="period", group_ids=["g1"], excluded_days=["sat", "Sat", "SUNDAY"])
    assert request.excluded_days == ["Saturday", "Sunday"]

    with pytest.raises(ValidationError):
        ScheduleGenerationRequest(period_id="period", group_ids=["g1"], excluded_days=["Funday"])


def test_comfortable_load_is_feasible():
    report = analyze_feasibility(
        [_group("1A", 4)],
        _constraints(total_required_hours=8),
        time_slot_count=2,
        active_days=6,
        settings=get_settings(),
    )

    assert report.is_feasible is True
    assert report.feasibility_score == 1.0
    assert report.challenges == []


def test_dense_load_loses_score_but_stays_feasible():
    report = analyze_feasibility(
        [_group("1A", 4)],
        _constraints(total_required_hours=18),
        time_slot_count=2,
        active_days=6,
        settings=get_settings(),
    )

    assert report.feasibility_score == 0.8
    assert report.challenges == ["High density of required hours versus available time slots"]
    assert report.is_feasible is True


def test_teacher_overload_and_mixed_courses_reduce_score():
    report = analyze_feasibility(
        [_group("1A", 10, mixed=8)],
        _constraints(total_courses=10, available_teachers=1, total_required_hours=4),
        time_slot_count=4,
        active_days=6,
        settings=get_settings(),
    )

    assert "Possible teacher overload" in report.challenges
    assert "Most courses need both theory and practice rooms" in report.challenges
    assert report.feasibility_score == 0.6


def test_nothing_to_schedule_is_feasible_even_without_time_slots():
    report = analyze_feasibility(
        [],
        _constraints(total_groups=0, total_courses=0, total_required_hours=0),
        time_slot_count=0,
        active_days=6,
        settings=get_settings(),
    )

    assert report.is_feasible is True
    assert report.feasibility_score == 1.0
    assert report.challenges == []


def test_required_hours_without_time_slots_are_infeasible():
    report = analyze_feasibility(
        [_group("1A", 1)],
        _constraints(total_courses=1, total_required_hours=2),
        time_slot_count=0,
        active_days=6,
        settings=get_settings(),
    )

    assert report.is_feasible is False
    assert "Required hours exceed the available time slot capacity" in report.challenges


def test_capacity_overflow_is_never_feasible(db, catalog_factory):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=20, name="Intensive Maths")
    f.teacher([area])
    f.space(TeachingType.theory)
    f.time_slot("MORNING", "08:00", 2)
    db.commit()

    preview = ScheduleGenerator(db).preview(ScheduleGenerationRequest(period_id=period.id, group_ids=[group.id]))

    assert preview.constraints.total_required_hours == 20
    assert preview.feasibility.is_feasible is False
    assert "Required hours exceed the available time slot capacity" in preview.feasibility.challenges
    assert preview.feasibility.feasibility_score == 0.6
    assert preview.existing_analysis.needs_user_decision is False
