import pytest

from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.models.learning_space import TeachingType
from timetabler.services.catalog import ScheduleCatalog
from timetabler.services.schedule_utility import ScheduleUtility, group_time_gaps, is_unbalanced


@pytest.fixture()
def stored_period(db, catalog_factory):
    """1A twice with Ana, 1B once on a legacy slot that overlaps the morning grid."""
    f = catalog_factory
    period = f.period()
    cycle = f.cycle()
    first = f.group(cycle, period, "1A")
    second = f.group(cycle, period, "1B")
    area = f.area()
    algebra = f.course(cycle, area, theory=4, name="Algebra")
    ana = f.teacher([area], name="Ana Torres")
    room_a = f.space(TeachingType.theory, name="A-101")
    room_b = f.space(TeachingType.theory, name="A-102")
    _, morning = f.time_slot("MORNING", "07:00", 6)
    _, extended = f.time_slot("EXTENDED", "07:45", 2)
    f.session(period=period, group=first, course=algebra, teacher=ana, space=room_a, day="Monday", hours=morning[0:2])
    f.session(period=period, group=second, course=algebra, teacher=ana, space=room_b, day="Monday", hours=extended[0:1])
    f.session(period=period, group=first, course=algebra, teacher=ana, space=room_a, day="Tuesday", hours=morning[0:2])
    db.commit()
    return {"period": period, "cycle": cycle}


def test_existing_conflicts_compare_real_times(db, stored_period):
    report = ScheduleUtility(db).existing_conflicts(stored_period["period"].id)

    assert report.total_conflicts == 1
    conflict = report.conflicts[0]
    assert conflict.conflict_type == "TEACHER_CONFLICT"
    assert conflict.day_of_week == "Monday"
    assert conflict.time_range == "07:45-08:30"
    assert report.conflicts_by_severity == {"CRITICAL": 1}


def test_occupancy_counts_hours_per_resource(db, stored_period):
    report = ScheduleUtility(db).occupancy(stored_period["period"].id)

    assert report.total_sessions == 3
    assert report.total_hours == 5
    assert report.sessions_by_day == {"Monday": 2, "Tuesday": 1}
    assert report.sessions_by_time_slot == {"MORNING": 2, "EXTENDED": 1}
    assert [(load.name, load.hours) for load in report.top_busy_teachers] == [("Ana Torres", 5)]
    assert report.hour_distribution == {"07:00": 2, "07:45": 3}
    assert report.peak_hour == "07:45"
    assert report.low_occupancy_hour == "07:00"


def test_utilization_flags_light_teachers(db, stored_period):
    report = ScheduleUtility(db).utilization(stored_period["period"].id)

    assert report.teacher_utilization.hours_distribution == {"Ana Torres": 5}
    assert report.teacher_utilization.underutilized_teachers == ["Ana Torres"]
    assert report.space_utilization.most_used_space == "A-101"
    assert report.time_utilization.busiest_day == "Monday"
    assert report.quality_metrics.total_groups == 2
    assert report.quality_metrics.teacher_continuity_score == 1.0


def test_optimizations_always_return_suggestions(db, stored_period):
    report = ScheduleUtility(db).optimizations(stored_period["period"].id)

    assert report.groups_with_gaps == 0
    assert report.suggestions
    assert 0.0 <= report.optimization_score <= 100.0


def test_export_csv_sorts_rows_by_group_and_day(db, stored_period):
    content = ScheduleUtility(db).export_csv(stored_period["period"].id)

    lines = content.strip().split("\n")
    assert lines[0] == "Group,Course,Teacher,Learning space,Day,Time slot,Hours,Type,Notes"
    assert lines[1] == "1A,Algebra,Ana Torres,A-101,Monday,MORNING,07:00-07:45;07:45-08:30,THEORY,"
    assert lines[2].startswith("1A,Algebra,Ana Torres,A-101,Tuesday")
    assert lines[3] == "1B,Algebra,Ana Torres,A-102,Monday,EXTENDED,07:45-08:30,THEORY,"


def test_export_csv_of_empty_period_has_only_the_header(db, catalog_factory):
    period = catalog_factory.period()
    db.commit()

    assert ScheduleUtility(db).export_csv(period.id) == (
        "Group,Course,Teacher,Learning space,Day,Time slot,Hours,Type,Notes\n"
    )


def test_clear_period_by_cycle(db, stored_period):
    result = ScheduleUtility(db).clear_period(stored_period["period"].id, cycle_id=stored_period["cycle"].id)
    db.commit()

    assert result.deleted_sessions == 3
    assert result.affected_groups == 2
    assert result.affected_teachers == 1
    assert result.affected_spaces == 2
    assert ScheduleCatalog(db).sessions_for_period(stored_period["period"].id) == []


def test_clear_period_rejects_unknown_filters(db, stored_period):
    with pytest.raises(ResourceNotFoundError):
        ScheduleUtility(db).clear_period(stored_period["period"].id, career_id="missing")

    with pytest.raises(ResourceNotFoundError):
        ScheduleUtility(db).occupancy("missing")


def test_gap_and_balance_helpers(db, stored_period):
    sessions = ScheduleUtility(db).period_sessions(stored_period["period"].id)

    assert group_time_gaps(sessions) == {}
    assert is_unbalanced({"Monday": 6, "Tuesday": 1}) is True
    assert is_unbalanced({"Monday": 2, "Tuesday": 2}) is False
    assert is_unbalanced({"Monday": 8}) is False
