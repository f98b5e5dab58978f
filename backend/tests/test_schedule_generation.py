from collections import defaultdict
from itertools import combinations

import pytest
from sqlalchemy.exc import OperationalError

from timetabler.core.config import Settings
from timetabler.core.exceptions import ConfigurationError, ResourceNotFoundError, SchedulerError, SessionConflictError
from timetabler.models.learning_space import TeachingType
from timetabler.schemas.schedule_generation import CourseRequirement, GroupRequirement, ScheduleGenerationRequest
from timetabler.services.catalog import ScheduleCatalog
from timetabler.services.schedule_generator import ScheduleGenerator, course_priority
from timetabler.services.scheduling_types import are_consecutive

LATE_WEEK = ["Wednesday", "Thursday", "Friday", "Saturday"]


@pytest.fixture()
def small_faculty(db, catalog_factory):
    """Three groups of one cycle sharing two teachers per area, two classrooms and one lab."""
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    groups = [f.group(cycle, period, name) for name in ("1A", "1B", "1C")]
    maths = f.area("Mathematics")
    programming = f.area("Programming")
    lab_kind = f.specialty("Computing Lab")
    courses = [
        f.course(cycle, maths, theory=4, name="Calculus"),
        f.course(cycle, programming, theory=2, practice=2, name="Programming", specialty=lab_kind),
        f.course(cycle, maths, theory=2, name="Statistics"),
    ]
    f.teacher([maths], name="Ana Torres")
    f.teacher([maths], name="Luis Paredes")
    f.teacher([programming], name="Carla Mendoza")
    f.teacher([programming], name="Jorge Salas")
    f.space(TeachingType.theory, name="A-101", capacity=35)
    f.space(TeachingType.theory, name="A-102", capacity=60)
    f.space(TeachingType.practice, name="LAB-1", capacity=30, specialty=lab_kind)
    f.time_slot("MORNING", "07:00", 6)
    f.time_slot("AFTERNOON", "13:00", 6)
    db.commit()
    return {"period": period, "cycle": cycle, "groups": groups, "courses": courses}


def test_two_hour_blocks_are_spread_over_monday_and_tuesday(db, catalog_factory):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=4, name="Calculus I")
    f.teacher([area])
    f.space(TeachingType.theory, name="A-101")
    f.time_slot("MORNING", "08:00", 2)
    db.commit()

    request = ScheduleGenerationRequest(
        period_id=period.id,
        group_ids=[group.id],
        max_consecutive_hours=2,
        excluded_days=LATE_WEEK,
    )
    result = ScheduleGenerator(db).generate(request)

    assert result.success is True
    assert result.message == "Schedules generated successfully"
    assert [session.day_of_week for session in result.generated_sessions] == ["Monday", "Tuesday"]
    assert all(session.hours == 2 for session in result.generated_sessions)
    assert result.summary.total_hours_assigned == 4
    assert result.summary.remaining_hours == 0
    assert result.summary.success_rate == 1.0
    assert result.warnings == []


def test_shared_teacher_serves_one_group_and_warns_for_the_other(db, catalog_factory):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    f.group(cycle, period, "1A")
    f.group(cycle, period, "1B")
    area = f.area()
    f.course(cycle, area, theory=2, name="Physics")
    f.teacher([area], name="Only Teacher", days=("Monday",), start="08:00", end="09:30")
    f.space(TeachingType.theory, name="A-101")
    f.space(TeachingType.theory, name="A-102")
    f.time_slot("MORNING", "08:00", 2)
    db.commit()

    request = ScheduleGenerationRequest(period_id=period.id, cycle_id=cycle.id, max_consecutive_hours=2)
    result = ScheduleGenerator(db).generate(request)

    assert [session.group_name for session in result.generated_sessions] == ["1A"]
    assert result.summary.remaining_hours == 2
    teacher_warnings = [warning for warning in result.warnings if warning.warning_type == "TEACHER_CONFLICT"]
    assert len(teacher_warnings) == 1
    assert teacher_warnings[0].severity == "HIGH"
    assert "1B" in teacher_warnings[0].message
    assert any(warning.warning_type == "INCOMPLETE_ASSIGNMENT" for warning in result.warnings)


def test_generated_sessions_never_double_book(db, small_faculty):
    request = ScheduleGenerationRequest(period_id=small_faculty["period"].id, cycle_id=small_faculty["cycle"].id)
    result = ScheduleGenerator(db).generate(request)

    assert result.generated_sessions
    assert result.conflicts == []
    for first, second in combinations(result.generated_sessions, 2):
        if first.day_of_week != second.day_of_week:
            continue
        if not set(first.teaching_hour_ids) & set(second.teaching_hour_ids):
            continue
        assert first.teacher_id != second.teacher_id
        assert first.learning_space_id != second.learning_space_id
        assert first.group_id != second.group_id


def test_every_committed_run_is_consecutive(db, small_faculty):
    request = ScheduleGenerationRequest(period_id=small_faculty["period"].id, cycle_id=small_faculty["cycle"].id)
    result = ScheduleGenerator(db).generate(request)

    catalog = ScheduleCatalog(db)
    for session in result.generated_sessions:
        hours = catalog.teaching_hours(session.teaching_hour_ids)
        assert len({hour.time_slot_id for hour in hours}) == 1
        assert are_consecutive(hours)
        assert session.hours <= request.max_consecutive_hours


def test_assigned_hours_never_exceed_requirements(db, small_faculty):
    request = ScheduleGenerationRequest(period_id=small_faculty["period"].id, cycle_id=small_faculty["cycle"].id)
    result = ScheduleGenerator(db).generate(request)

    assigned = defaultdict(int)
    for session in result.generated_sessions:
        assigned[(session.group_id, session.course_id, session.session_type)] += session.hours
    for group in small_faculty["groups"]:
        for course in small_faculty["courses"]:
            assert assigned[(group.id, course.id, TeachingType.theory)] <= course.weekly_theory_hours
            assert assigned[(group.id, course.id, TeachingType.practice)] <= course.weekly_practice_hours
    if result.summary.remaining_hours > 0:
        assert any(warning.warning_type == "INCOMPLETE_ASSIGNMENT" for warning in result.warnings)
    assert result.summary.total_required_hours == 3 * 10


def test_teacher_is_kept_for_every_block_of_a_course(db, catalog_factory):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=6, name="Calculus")
    f.teacher([area], name="Ana Torres")
    f.teacher([area], name="Luis Paredes")
    f.space(TeachingType.theory, name="A-101")
    f.time_slot("MORNING", "07:00", 6)
    db.commit()

    request = ScheduleGenerationRequest(period_id=period.id, group_ids=[group.id], max_consecutive_hours=2)
    result = ScheduleGenerator(db).generate(request)

    assert len(result.generated_sessions) == 3
    assert {session.teacher_name for session in result.generated_sessions} == {"Ana Torres"}
    assert [session.day_of_week for session in result.generated_sessions] == ["Monday", "Tuesday", "Wednesday"]


def test_sessions_are_persisted_in_the_period(db, small_faculty):
    period_id = small_faculty["period"].id
    request = ScheduleGenerationRequest(period_id=period_id, cycle_id=small_faculty["cycle"].id)
    result = ScheduleGenerator(db).generate(request)
    db.commit()

    stored = ScheduleCatalog(db).sessions_for_period(period_id)
    assert {session.id for session in stored} == {session.session_id for session in result.generated_sessions}


def test_labs_after_theory_schedules_all_theory_first():
    def requirement(name: str, theory: int, practice: int) -> CourseRequirement:
        supported = [kind for kind, hours in ((TeachingType.theory, theory), (TeachingType.practice, practice)) if hours]
        return CourseRequirement(
            course_id=name,
            course_name=name,
            cycle_id="cycle",
            knowledge_area_id="area",
            theory_hours=theory,
            practice_hours=practice,
            total_hours=theory + practice,
            supported_session_types=supported,
            is_mixed=bool(theory and practice),
        )

    group = GroupRequirement(
        group_id="g",
        group_name="1A",
        cycle_id="cycle",
        period_id="p",
        courses=[requirement("Chemistry", 2, 2), requirement("Biology", 3, 3)],
        total_weekly_hours=10,
    )

    interleaved = ScheduleGenerator._allocation_passes(group, labs_after_theory=False)
    theory_first = ScheduleGenerator._allocation_passes(group, labs_after_theory=True)

    assert [(course.course_name, kind) for course, kind in interleaved] == [
        ("Biology", TeachingType.theory),
        ("Biology", TeachingType.practice),
        ("Chemistry", TeachingType.theory),
        ("Chemistry", TeachingType.practice),
    ]
    assert [kind for _, kind in theory_first] == [
        TeachingType.theory,
        TeachingType.theory,
        TeachingType.practice,
        TeachingType.practice,
    ]
    assert sorted(group.courses, key=course_priority)[0].course_name == "Biology"


def test_request_without_scope_is_rejected(db, catalog_factory):
    period = catalog_factory.period()
    db.commit()

    with pytest.raises(SchedulerError, match="scope"):
        ScheduleGenerator(db).generate(ScheduleGenerationRequest(period_id=period.id))


def test_unknown_group_is_reported_as_not_found(db, catalog_factory):
    period = catalog_factory.period()
    db.commit()

    with pytest.raises(ResourceNotFoundError):
        ScheduleGenerator(db).generate(ScheduleGenerationRequest(period_id=period.id, group_ids=["missing"]))


def test_fatal_error_returns_partial_result(db, small_faculty, monkeypatch):
    def explode(self, *args, **kwargs):
        raise RuntimeError("conflict scan crashed")

    monkeypatch.setattr("timetabler.services.conflict_service.ConflictService.detect_conflicts", explode)
    request = ScheduleGenerationRequest(period_id=small_faculty["period"].id, cycle_id=small_faculty["cycle"].id)
    result = ScheduleGenerator(db).generate(request)

    assert result.success is False
    assert result.message == "Error during schedule generation: conflict scan crashed"
    assert result.generated_sessions


def test_empty_work_week_is_a_configuration_error(db):
    with pytest.raises(ConfigurationError):
        ScheduleGenerator(db, Settings(work_days=[]))


def _calculus_on_two_days(db, f) -> ScheduleGenerationRequest:
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=4, name="Calculus I")
    f.teacher([area])
    f.space(TeachingType.theory, name="A-101")
    f.time_slot("MORNING", "08:00", 2)
    db.commit()
    return ScheduleGenerationRequest(
        period_id=period.id,
        group_ids=[group.id],
        max_consecutive_hours=2,
        excluded_days=LATE_WEEK,
    )


def _first_commit_fails(monkeypatch, error) -> list[str]:
    attempted_days = []
    commit_session = ScheduleCatalog.commit_session

    def flaky_commit(self, candidate, period_id, **kwargs):
        attempted_days.append(candidate.day)
        if len(attempted_days) == 1:
            raise error
        return commit_session(self, candidate, period_id, **kwargs)

    monkeypatch.setattr(ScheduleCatalog, "commit_session", flaky_commit)
    return attempted_days


def test_rejected_commit_evicts_the_slot_and_moves_on(db, catalog_factory, monkeypatch):
    request = _calculus_on_two_days(db, catalog_factory)
    attempted_days = _first_commit_fails(
        monkeypatch, SessionConflictError("teacher", "Teacher already booked on Monday")
    )

    result = ScheduleGenerator(db).generate(request)

    assert attempted_days == ["Monday", "Tuesday"]
    assert [session.day_of_week for session in result.generated_sessions] == ["Tuesday"]
    rejected = [warning for warning in result.warnings if warning.warning_type == "VALIDATION_CONFLICT"]
    assert [(warning.message, warning.severity) for warning in rejected] == [
        ("Teacher already booked on Monday", "MEDIUM")
    ]
    assert result.summary.remaining_hours == 2


def test_failed_insert_is_a_creation_error_and_generation_continues(db, catalog_factory, monkeypatch):
    request = _calculus_on_two_days(db, catalog_factory)
    _first_commit_fails(monkeypatch, OperationalError("INSERT INTO class_sessions", {}, Exception("disk I/O error")))

    result = ScheduleGenerator(db).generate(request)

    assert result.success is True
    assert [session.day_of_week for session in result.generated_sessions] == ["Tuesday"]
    failures = [warning for warning in result.warnings if warning.warning_type == "CREATION_ERROR"]
    assert len(failures) == 1
    assert failures[0].severity == "HIGH"
    assert failures[0].message.startswith("Could not create session:")


def test_days_over_the_daily_maximum_get_a_low_warning(db, catalog_factory):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=4, name="Calculus I")
    f.teacher([area])
    f.space(TeachingType.theory, name="A-101")
    f.time_slot("MORNING", "07:00", 2)
    f.time_slot("AFTERNOON", "13:00", 2)
    db.commit()

    request = ScheduleGenerationRequest(
        period_id=period.id,
        group_ids=[group.id],
        excluded_days=["Tuesday", *LATE_WEEK],
        max_hours_per_day=2,
        max_consecutive_hours=2,
    )
    result = ScheduleGenerator(db).generate(request)

    assert [(session.day_of_week, session.time_slot_name) for session in result.generated_sessions] == [
        ("Monday", "MORNING"),
        ("Monday", "AFTERNOON"),
    ]
    daily = [warning for warning in result.warnings if warning.warning_type == "DAILY_LIMIT"]
    assert [(warning.message, warning.severity) for warning in daily] == [
        ("Group 1A has 4 hours on Monday, outside the 2-2 range", "LOW")
    ]


@pytest.mark.parametrize(
    ("weight", "expected_slot"),
    [(0.7, "AFTERNOON"), (0.0, "MORNING")],
)
def test_preferred_time_slot_wins_only_with_a_positive_weight(db, catalog_factory, weight, expected_slot):
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    group = f.group(cycle, period, "1A")
    area = f.area()
    f.course(cycle, area, theory=2, name="Statistics")
    f.teacher([area])
    f.space(TeachingType.theory, name="A-101")
    f.time_slot("MORNING", "07:00", 2)
    afternoon, _ = f.time_slot("AFTERNOON", "13:00", 2)
    db.commit()

    request = ScheduleGenerationRequest(
        period_id=period.id,
        group_ids=[group.id],
        preferred_time_slot_ids=[afternoon.id],
        preferred_time_slot_weight=weight,
    )
    result = ScheduleGenerator(db).generate(request)

    assert [(session.day_of_week, session.time_slot_name) for session in result.generated_sessions] == [
        ("Monday", expected_slot)
    ]
