from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timetabler.core.exceptions import (
    CatalogError,
    ResourceNotFoundError,
    SessionCommitError,
    SessionConflictError,
)
from timetabler.models.academic_structure import AcademicPeriod, Career, Cycle, Modality, StudentGroup
from timetabler.models.class_session import ClassSession, ClassSessionHour
from timetabler.models.course import Course
from timetabler.models.learning_space import LearningSpace, TeachingType
from timetabler.models.teacher import Teacher
from timetabler.models.time_slot import TeachingHour, TimeSlot
from timetabler.schemas.calendar import normalize_day, parse_time_to_minutes
from timetabler.schemas.schedule_generation import (
    CourseRequirement,
    GeneratedSession,
    GroupRequirement,
    ScheduleGenerationRequest,
)
from timetabler.services.scheduling_types import (
    AssignmentCandidate,
    AvailabilityWindow,
    SpaceView,
    TeacherView,
    TeachingHourView,
    TimeSlotView,
    are_consecutive,
)

logger = logging.getLogger(__name__)


def course_requirement(course: Course) -> CourseRequirement:
    supported: list[TeachingType] = []
    if course.weekly_theory_hours > 0:
        supported.append(TeachingType.theory)
    if course.weekly_practice_hours > 0:
        supported.append(TeachingType.practice)
    return CourseRequirement(
        course_id=course.id,
        course_name=course.name,
        cycle_id=course.cycle_id,
        knowledge_area_id=course.knowledge_area_id,
        preferred_specialty_id=course.preferred_specialty_id,
        theory_hours=course.weekly_theory_hours,
        practice_hours=course.weekly_practice_hours,
        total_hours=course.total_weekly_hours,
        supported_session_types=supported,
        is_mixed=course.weekly_theory_hours > 0 and course.weekly_practice_hours > 0,
    )


def _teacher_view(teacher: Teacher) -> TeacherView:
    windows: list[AvailabilityWindow] = []
    for item in teacher.availability_windows or []:
        try:
            windows.append(
                AvailabilityWindow(
                    day=normalize_day(str(item["day"])),
                    start_minutes=parse_time_to_minutes(str(item["start_time"])),
                    end_minutes=parse_time_to_minutes(str(item["end_time"])),
                    is_available=bool(item.get("is_available", True)),
                )
            )
        except (KeyError, ValueError) as exc:
            raise CatalogError(
                f"Teacher {teacher.full_name} has a malformed availability window",
                details={"teacher_id": teacher.id, "window": item},
            ) from exc
    return TeacherView(
        id=teacher.id,
        full_name=teacher.full_name,
        knowledge_area_ids=frozenset(teacher.knowledge_area_ids or []),
        availability=tuple(windows),
    )


def _space_view(space: LearningSpace) -> SpaceView:
    return SpaceView(
        id=space.id,
        name=space.name,
        capacity=space.capacity,
        teaching_type=space.teaching_type,
        specialty_id=space.specialty_id,
    )


class ScheduleCatalog:
    """SQLAlchemy-backed catalog views and the conflict-checked session write used by the engine.

    Lookups are cached for the lifetime of one instance, which matches one generation request.
    Session bookings are never cached: every conflict query goes to the database.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._time_slots: list[TimeSlotView] | None = None
        self._hours_by_id: dict[str, TeachingHourView] = {}
        self._teachers: dict[str, TeacherView] | None = None
        self._spaces: dict[str, SpaceView] | None = None
        self._group_names: dict[str, str] = {}
        self._course_names: dict[str, str] = {}

    # ---- scope resolution ----

    def get_period(self, period_id: str) -> AcademicPeriod:
        period = self.db.get(AcademicPeriod, period_id)
        if period is None:
            raise ResourceNotFoundError("AcademicPeriod", period_id)
        return period

    def resolve_target_groups(self, request: ScheduleGenerationRequest) -> list[StudentGroup]:
        self.get_period(request.period_id)
        if request.group_ids:
            groups: list[StudentGroup] = []
            for group_id in dict.fromkeys(request.group_ids):
                group = self.db.get(StudentGroup, group_id)
                if group is None:
                    raise ResourceNotFoundError("StudentGroup", group_id)
                groups.append(group)
            return groups

        query = select(StudentGroup).where(StudentGroup.period_id == request.period_id)
        if request.cycle_id:
            if self.db.get(Cycle, request.cycle_id) is None:
                raise ResourceNotFoundError("Cycle", request.cycle_id)
            query = query.where(StudentGroup.cycle_id == request.cycle_id)
        elif request.career_id:
            if self.db.get(Career, request.career_id) is None:
                raise ResourceNotFoundError("Career", request.career_id)
            cycle_ids = select(Cycle.id).where(Cycle.career_id == request.career_id)
            query = query.where(StudentGroup.cycle_id.in_(cycle_ids))
        elif request.modality_id:
            if self.db.get(Modality, request.modality_id) is None:
                raise ResourceNotFoundError("Modality", request.modality_id)
            career_ids = select(Career.id).where(Career.modality_id == request.modality_id)
            cycle_ids = select(Cycle.id).where(Cycle.career_id.in_(career_ids))
            query = query.where(StudentGroup.cycle_id.in_(cycle_ids))
        return list(self.db.execute(query.order_by(StudentGroup.name)).scalars())

    def courses_for_cycle(self, cycle_id: str) -> list[Course]:
        return list(
            self.db.execute(select(Course).where(Course.cycle_id == cycle_id).order_by(Course.name)).scalars()
        )

    def group_requirements(self, groups: Iterable[StudentGroup]) -> list[GroupRequirement]:
        requirements: list[GroupRequirement] = []
        for group in groups:
            self._group_names[group.id] = group.name
            courses = [course_requirement(course) for course in self.courses_for_cycle(group.cycle_id)]
            for course in courses:
                self._course_names[course.course_id] = course.course_name
            requirements.append(
                GroupRequirement(
                    group_id=group.id,
                    group_name=group.name,
                    cycle_id=group.cycle_id,
                    period_id=group.period_id,
                    courses=courses,
                    total_weekly_hours=sum(course.total_hours for course in courses),
                )
            )
        return requirements

    def required_hours_for_group(self, group: StudentGroup) -> int:
        return sum(course.total_weekly_hours for course in self.courses_for_cycle(group.cycle_id))

    # ---- time grid ----

    def time_slots(self) -> list[TimeSlotView]:
        if self._time_slots is None:
            slots = list(self.db.execute(select(TimeSlot).order_by(TimeSlot.start_time, TimeSlot.name)).scalars())
            hours = list(
                self.db.execute(
                    select(TeachingHour).order_by(TeachingHour.time_slot_id, TeachingHour.order_in_time_slot)
                ).scalars()
            )
            hours_by_slot: dict[str, list[TeachingHourView]] = {}
            for hour in hours:
                view = TeachingHourView(
                    id=hour.id,
                    time_slot_id=hour.time_slot_id,
                    order=hour.order_in_time_slot,
                    start_time=hour.start_time,
                    end_time=hour.end_time,
                    duration_minutes=hour.duration_minutes,
                )
                self._hours_by_id[hour.id] = view
                hours_by_slot.setdefault(hour.time_slot_id, []).append(view)
            self._time_slots = [
                TimeSlotView(
                    id=slot.id,
                    name=slot.name,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    hours=tuple(hours_by_slot.get(slot.id, [])),
                )
                for slot in slots
            ]
        return self._time_slots

    def time_slot(self, time_slot_id: str) -> TimeSlotView:
        for slot in self.time_slots():
            if slot.id == time_slot_id:
                return slot
        raise CatalogError(f"Time slot {time_slot_id} does not exist", details={"time_slot_id": time_slot_id})

    def teaching_hours(self, hour_ids: Iterable[str]) -> list[TeachingHourView]:
        self.time_slots()
        views: list[TeachingHourView] = []
        for hour_id in hour_ids:
            view = self._hours_by_id.get(hour_id)
            if view is None:
                raise CatalogError(f"Teaching hour {hour_id} does not exist", details={"teaching_hour_id": hour_id})
            views.append(view)
        return sorted(views, key=lambda hour: (hour.time_slot_id, hour.order))

    # ---- resources ----

    def _load_teachers(self) -> dict[str, TeacherView]:
        if self._teachers is None:
            teachers = self.db.execute(select(Teacher).order_by(Teacher.full_name)).scalars()
            self._teachers = {teacher.id: _teacher_view(teacher) for teacher in teachers if teacher.is_active}
        return self._teachers

    def _load_spaces(self) -> dict[str, SpaceView]:
        if self._spaces is None:
            spaces = self.db.execute(select(LearningSpace).order_by(LearningSpace.name)).scalars()
            self._spaces = {space.id: _space_view(space) for space in spaces}
        return self._spaces

    def all_teachers(self) -> list[TeacherView]:
        return list(self._load_teachers().values())

    def all_spaces(self) -> list[SpaceView]:
        return list(self._load_spaces().values())

    def teacher(self, teacher_id: str) -> TeacherView:
        view = self._load_teachers().get(teacher_id)
        if view is None:
            raise CatalogError(f"Teacher {teacher_id} does not exist or is inactive", details={"teacher_id": teacher_id})
        return view

    def space(self, space_id: str) -> SpaceView:
        view = self._load_spaces().get(space_id)
        if view is None:
            raise CatalogError(f"Learning space {space_id} does not exist", details={"learning_space_id": space_id})
        return view

    def teachers_for_area(self, knowledge_area_id: str) -> list[TeacherView]:
        return [teacher for teacher in self._load_teachers().values() if knowledge_area_id in teacher.knowledge_area_ids]

    def spaces_for_type(self, teaching_type: TeachingType) -> list[SpaceView]:
        return [space for space in self._load_spaces().values() if space.teaching_type == teaching_type]

    # ---- bookings ----

    def _booked_session_ids(
        self,
        *,
        period_id: str,
        day: str,
        hour_ids: Sequence[str],
        column,
        value: str,
        exclude_session_id: str | None = None,
    ) -> list[str]:
        if not hour_ids:
            return []
        query = select(ClassSessionHour.class_session_id).where(
            ClassSessionHour.period_id == period_id,
            ClassSessionHour.day_of_week == day,
            ClassSessionHour.teaching_hour_id.in_(list(hour_ids)),
            column == value,
        )
        if exclude_session_id:
            query = query.where(ClassSessionHour.class_session_id != exclude_session_id)
        return sorted(set(self.db.execute(query).scalars()))

    def teacher_conflicts(self, period_id: str, teacher_id: str, day: str, hour_ids: Sequence[str]) -> list[str]:
        return self._booked_session_ids(
            period_id=period_id, day=day, hour_ids=hour_ids, column=ClassSessionHour.teacher_id, value=teacher_id
        )

    def space_conflicts(self, period_id: str, space_id: str, day: str, hour_ids: Sequence[str]) -> list[str]:
        return self._booked_session_ids(
            period_id=period_id,
            day=day,
            hour_ids=hour_ids,
            column=ClassSessionHour.learning_space_id,
            value=space_id,
        )

    def group_conflicts(self, period_id: str, group_id: str, day: str, hour_ids: Sequence[str]) -> list[str]:
        return self._booked_session_ids(
            period_id=period_id,
            day=day,
            hour_ids=hour_ids,
            column=ClassSessionHour.student_group_id,
            value=group_id,
        )

    def booked_group_hours(self, period_id: str, group_id: str, day: str) -> set[str]:
        query = select(ClassSessionHour.teaching_hour_id).where(
            ClassSessionHour.period_id == period_id,
            ClassSessionHour.day_of_week == day,
            ClassSessionHour.student_group_id == group_id,
        )
        return set(self.db.execute(query).scalars())

    # ---- writes ----

    def commit_session(
        self,
        candidate: AssignmentCandidate,
        period_id: str,
        *,
        notes: str | None = None,
    ) -> ClassSession:
        """Validate and insert one class session inside a savepoint.

        Raises SessionCommitError for rule violations and SessionConflictError for overlaps,
        including overlaps only detected by the unique constraints at flush time.
        """
        group = self.db.get(StudentGroup, candidate.group_id)
        if group is None:
            raise CatalogError(f"Student group {candidate.group_id} does not exist")
        course = self.db.get(Course, candidate.course_id)
        if course is None:
            raise CatalogError(f"Course {candidate.course_id} does not exist")
        try:
            session_type = TeachingType(candidate.session_type)
        except ValueError as exc:
            raise CatalogError(f"Unknown session type {candidate.session_type}") from exc

        if course.cycle_id != group.cycle_id:
            raise SessionCommitError(
                f"Course {course.name} does not belong to the cycle of group {group.name}",
                details={"course_id": course.id, "group_id": group.id},
            )
        if course_requirement(course).hours_for(session_type) <= 0:
            raise SessionCommitError(
                f"Course {course.name} has no {session_type.value} hours",
                details={"course_id": course.id, "session_type": session_type.value},
            )
        space = self.space(candidate.space_id)
        if space.teaching_type != session_type:
            raise SessionCommitError(
                f"Learning space {space.name} does not support {session_type.value} sessions",
                details={"learning_space_id": space.id},
            )

        hours = self.teaching_hours(candidate.hour_ids)
        if not hours:
            raise SessionCommitError("A class session needs at least one teaching hour")
        if any(hour.time_slot_id != candidate.time_slot_id for hour in hours) or not are_consecutive(hours):
            raise SessionCommitError(
                "Teaching hours must be consecutive and belong to the same time slot",
                details={"teaching_hour_ids": candidate.hour_ids},
            )

        teacher = self.teacher(candidate.teacher_id)
        if candidate.teacher_id and not teacher.is_available(
            candidate.day, hours[0].start_minutes, hours[-1].end_minutes
        ):
            raise SessionCommitError(
                f"Teacher {teacher.full_name} is not available on {candidate.day} "
                f"{hours[0].start_time}-{hours[-1].end_time}",
                details={"teacher_id": teacher.id},
            )

        hour_ids = [hour.id for hour in hours]
        if self.teacher_conflicts(period_id, teacher.id, candidate.day, hour_ids):
            raise SessionConflictError("teacher", f"Teacher {teacher.full_name} already has a class at that time")
        if self.space_conflicts(period_id, space.id, candidate.day, hour_ids):
            raise SessionConflictError("learning_space", f"Learning space {space.name} is already booked at that time")
        if self.group_conflicts(period_id, group.id, candidate.day, hour_ids):
            raise SessionConflictError("student_group", f"Group {group.name} already has a class at that time")

        record = ClassSession(
            period_id=period_id,
            student_group_id=group.id,
            course_id=course.id,
            teacher_id=teacher.id,
            learning_space_id=space.id,
            day_of_week=candidate.day,
            session_type=session_type,
            teaching_hour_ids=hour_ids,
            notes=notes,
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
                self.db.flush()
                self.db.add_all(
                    ClassSessionHour(
                        class_session_id=record.id,
                        period_id=period_id,
                        day_of_week=candidate.day,
                        teaching_hour_id=hour_id,
                        teacher_id=teacher.id,
                        learning_space_id=space.id,
                        student_group_id=group.id,
                    )
                    for hour_id in hour_ids
                )
                self.db.flush()
        except IntegrityError as exc:
            raise SessionConflictError("booking", "Session overlaps a booking committed concurrently") from exc
        return record

    # ---- existing sessions ----

    def sessions_for_period(self, period_id: str, group_ids: Iterable[str] | None = None) -> list[ClassSession]:
        query = select(ClassSession).where(ClassSession.period_id == period_id)
        if group_ids is not None:
            ids = list(group_ids)
            if not ids:
                return []
            query = query.where(ClassSession.student_group_id.in_(ids))
        return list(self.db.execute(query.order_by(ClassSession.created_at, ClassSession.id)).scalars())

    def delete_sessions(self, session_ids: Sequence[str]) -> int:
        if not session_ids:
            return 0
        ids = list(session_ids)
        self.db.execute(delete(ClassSessionHour).where(ClassSessionHour.class_session_id.in_(ids)))
        result = self.db.execute(delete(ClassSession).where(ClassSession.id.in_(ids)))
        self.db.flush()
        logger.info("Deleted class sessions | count=%s", result.rowcount)
        return result.rowcount

    def group_name(self, group_id: str) -> str:
        if group_id not in self._group_names:
            group = self.db.get(StudentGroup, group_id)
            self._group_names[group_id] = group.name if group else group_id
        return self._group_names[group_id]

    def course_name(self, course_id: str) -> str:
        if course_id not in self._course_names:
            course = self.db.get(Course, course_id)
            self._course_names[course_id] = course.name if course else course_id
        return self._course_names[course_id]

    def _teacher_name(self, teacher_id: str) -> str:
        view = self._load_teachers().get(teacher_id)
        if view is not None:
            return view.full_name
        # inactive teachers still own historical sessions
        teacher = self.db.get(Teacher, teacher_id)
        return teacher.full_name if teacher else teacher_id

    def _space_name(self, space_id: str) -> str:
        view = self._load_spaces().get(space_id)
        return view.name if view else space_id

    def describe_session(self, session: ClassSession, *, is_new: bool) -> GeneratedSession:
        hours = self.teaching_hours(session.teaching_hour_ids)
        if not hours:
            raise CatalogError(f"Class session {session.id} has no teaching hours")
        slot = self.time_slot(hours[0].time_slot_id)
        return GeneratedSession(
            session_id=session.id,
            group_id=session.student_group_id,
            group_name=self.group_name(session.student_group_id),
            course_id=session.course_id,
            course_name=self.course_name(session.course_id),
            teacher_id=session.teacher_id,
            teacher_name=self._teacher_name(session.teacher_id),
            learning_space_id=session.learning_space_id,
            learning_space_name=self._space_name(session.learning_space_id),
            day_of_week=session.day_of_week,
            time_slot_id=slot.id,
            time_slot_name=slot.name,
            teaching_hour_ids=[hour.id for hour in hours],
            teaching_hours=[hour.label for hour in hours],
            hours=len(hours),
            session_type=session.session_type,
            is_new=is_new,
        )
