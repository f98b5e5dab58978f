import pytest

from timetabler.core.exceptions import CatalogError
from timetabler.models.learning_space import TeachingType
from timetabler.schemas.schedule_generation import (
    CourseRequirement,
    GeneratedSession,
    GroupRequirement,
    ScheduleConflict,
    ScheduleGenerationRequest,
)
from timetabler.services.candidate_search import SearchOutcome, score_candidate
from timetabler.services.generation_context import GenerationContext
from timetabler.services.scheduling_types import SpaceView, TeachingHourView, first_consecutive_run

DAYS = ["Monday", "Tuesday"]


def _group() -> GroupRequirement:
    course = CourseRequirement(
        course_id="calc",
        course_name="Calculus",
        cycle_id="cycle",
        knowledge_area_id="maths",
        theory_hours=4,
        practice_hours=0,
        total_hours=4,
        supported_session_types=[TeachingType.theory],
        is_mixed=False,
    )
    return GroupRequirement(
        group_id="g1",
        group_name="1A",
        cycle_id="cycle",
        period_id="p1",
        courses=[course],
        total_weekly_hours=4,
    )


def _context(**options) -> GenerationContext:
    request = ScheduleGenerationRequest(period_id="p1", group_ids=["g1"], **options)
    return GenerationContext(request, [_group()], DAYS)


def _session(day: str, labels: list[str], *, teacher: str = "t1", space: str = "r1", is_new: bool = True):
    return GeneratedSession(
        group_id="g1",
        group_name="1A",
        course_id="calc",
        course_name="Calculus",
        teacher_id=teacher,
        teacher_name=teacher,
        learning_space_id=space,
        learning_space_name=space,
        day_of_week=day,
        time_slot_id="morning",
        time_slot_name="MORNING",
        teaching_hour_ids=[f"h-{label}" for label in labels],
        teaching_hours=labels,
        hours=len(labels),
        session_type=TeachingType.theory,
        is_new=is_new,
    )


def _hour(order: int, start: str, end: str, slot: str = "morning") -> TeachingHourView:
    return TeachingHourView(
        id=f"{slot}-{order}", time_slot_id=slot, order=order, start_time=start, end_time=end, duration_minutes=45
    )


def test_recording_a_session_books_every_resource():
    context = _context()
    context.record_committed_session(_session("Monday", ["07:00-07:45", "07:45-08:30"]))

    assert context.daily_hours("g1", "Monday") == 2
    assert context.assigned_hours("g1", "calc", TeachingType.theory) == 2
    assert context.remaining_hours("g1", "calc", TeachingType.theory) == 2
    assert context.continuity_teacher("g1", "calc") == "t1"
    assert not context.is_teacher_free("t1", "Monday", "morning")
    assert not context.is_room_free("r1", "Monday", "morning")
    assert context.is_teacher_free("t1", "Tuesday", "morning")
    assert not context.is_slot_free("g1", "Monday", "morning", ["h-07:00-07:45"])
    assert context.progress("g1") == 0.5


def test_recording_the_same_hours_twice_is_rejected():
    context = _context()
    context.record_committed_session(_session("Monday", ["07:00-07:45"]))

    with pytest.raises(CatalogError):
        context.record_committed_session(_session("Monday", ["07:00-07:45"], teacher="t2", space="r2"))


def test_continuity_is_not_recorded_when_disabled():
    context = _context(respect_teacher_continuity=False)
    context.record_committed_session(_session("Monday", ["07:00-07:45"]))

    assert context.continuity_teacher("g1", "calc") is None


def test_gaps_longer_than_one_hour_are_reported():
    context = _context()
    context.record_committed_session(_session("Monday", ["07:00-07:45", "07:45-08:30"]))
    context.record_committed_session(_session("Monday", ["10:00-10:45"], teacher="t2", space="r2"))

    assert context.time_gaps("g1", "Monday") == ["08:30 - 10:00"]
    assert context.time_gaps("g1", "Tuesday") == []
    assert context.has_adjacent_session("g1", "Monday", 8 * 60 + 30, 9 * 60 + 15)


def test_imbalance_compares_spread_against_the_average():
    context = _context()
    context.record_committed_session(_session("Monday", ["07:00-07:45", "07:45-08:30"]))
    assert context.has_imbalance("g1") is True

    context.record_committed_session(_session("Tuesday", ["07:00-07:45", "07:45-08:30"]))
    assert context.has_imbalance("g1") is False
    assert context.is_generation_complete() is True


def test_quality_score_penalises_conflicts_and_warnings():
    context = _context()
    assert context.quality_score() == 100.0

    conflict = ScheduleConflict(conflict_type="TEACHER_CONFLICT", severity="CRITICAL", description="clash")
    context.add_conflict(conflict)
    context.add_conflict(conflict)
    context.add_warning("TIME_GAP", "gap", "LOW")

    assert context.quality_score() == 100 - 30 - 5 + 10


def test_seeded_sessions_feed_the_integration_report():
    context = _context()
    context.seed_existing_sessions([_session("Monday", ["07:00-07:45", "07:45-08:30"], teacher="t9")])

    assert context.sessions == []
    assert len(context.preserved_sessions) == 1
    assert context.is_hour_preserved("Monday", "morning", "h-07:00-07:45")
    assert context.continuity_teacher("g1", "calc") == "t9"

    report = context.integration_report()
    assert report.groups_with_existing_sessions == 1
    assert report.preserved_teacher_assignments == 1
    assert report.preserved_slots == 2
    assert report.group_analysis["1A"].theory_hours_remaining == 2
    assert report.integration_efficiency == 1.0
    assert context.quality_score_with_existing() == 100.0


def test_score_rewards_preference_and_continuity():
    context = _context()
    hours = [_hour(1, "07:00", "07:45"), _hour(2, "07:45", "08:30")]
    space = SpaceView(id="r1", name="A-101", capacity=30, teaching_type=TeachingType.theory, specialty_id=None)
    common = {"group_id": "g1", "course_id": "calc", "space": space, "day": "Monday", "hours": hours}

    plain = score_candidate(context, teacher_id="t1", slot_is_preferred=False, space_is_preferred=False, **common)
    preferred = score_candidate(context, teacher_id="t1", slot_is_preferred=True, space_is_preferred=True, **common)

    # base 100, distribution 15 - 2 * |0 - 2|, right-sized room 5
    assert plain == 116.0
    assert preferred == plain + 20 + 15

    context.record_committed_session(_session("Tuesday", ["07:00-07:45"]))
    assert score_candidate(context, teacher_id="t1", slot_is_preferred=False, space_is_preferred=False, **common) == (
        plain + 25
    )


def test_score_ignores_preferred_slots_with_zero_weight_and_penalises_long_days():
    context = _context(preferred_time_slot_weight=0.0, max_hours_per_day=2, max_consecutive_hours=2)
    context.record_committed_session(_session("Monday", ["07:00-07:45"], teacher="t2", space="r2"))
    hours = [_hour(3, "08:30", "09:15"), _hour(4, "09:15", "10:00")]
    space = SpaceView(id="r1", name="A-201", capacity=60, teaching_type=TeachingType.theory, specialty_id=None)

    score = score_candidate(
        context,
        group_id="g1",
        course_id="calc",
        teacher_id="t1",
        space=space,
        day="Monday",
        hours=hours,
        slot_is_preferred=True,
        space_is_preferred=False,
    )

    # base 100, no slot bonus, distribution 15 - 2 * |1 - 2|, one hour over the daily cap
    assert score == 100 + 13 - 5


def test_first_consecutive_run_skips_broken_sequences():
    hours = [
        _hour(1, "07:00", "07:45"),
        _hour(2, "08:00", "08:45"),
        _hour(3, "08:45", "09:30"),
        _hour(4, "09:30", "10:15"),
    ]

    assert [hour.order for hour in first_consecutive_run(hours, 2)] == [2, 3]
    assert [hour.order for hour in first_consecutive_run(hours, 3)] == [2, 3, 4]
    assert first_consecutive_run(hours, 4) == []
    assert first_consecutive_run(hours, 0) == []


def test_search_outcome_reports_the_dominant_failure():
    assert SearchOutcome(teachers_busy=1, spaces_busy=3).failure_reason() == "TEACHER_CONFLICT"
    assert SearchOutcome(spaces_busy=1).failure_reason() == "SPACE_CONFLICT"
    assert SearchOutcome(teachers_unavailable=2).failure_reason() == "TEACHER_UNAVAILABLE"
    assert SearchOutcome(no_space_type=1).failure_reason() == "NO_SPACE_AVAILABLE"
    assert SearchOutcome().failure_reason() == "NO_CONSECUTIVE_HOURS"

    merged = SearchOutcome(candidates_evaluated=2).merge(SearchOutcome(candidates_evaluated=3, teachers_busy=1))
    assert merged.candidates_evaluated == 5
    assert merged.teachers_busy == 1
