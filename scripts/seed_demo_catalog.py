"""Seed a small demo catalog for the timetable generator.

Run:
  PYTHONPATH=backend python scripts/seed_demo_catalog.py

Re-running updates the rows in place; existing class sessions are left untouched.
"""

from __future__ import annotations

import os

from sqlalchemy import func, select

from timetabler.db.bootstrap import ensure_runtime_schema
from timetabler.db.session import SessionLocal
from timetabler.models.academic_structure import AcademicPeriod, Career, Cycle, Modality, StudentGroup
from timetabler.models.course import Course, KnowledgeArea
from timetabler.models.learning_space import LearningSpace, Specialty, TeachingType
from timetabler.models.teacher import Teacher
from timetabler.models.time_slot import TeachingHour, TimeSlot
from timetabler.schemas.calendar import minutes_to_time, parse_time_to_minutes

PERIOD_NAME = os.getenv("SEED_PERIOD_NAME", "2026-II").strip() or "2026-II"
MAIL_DOMAIN = os.getenv("SEED_MAIL_DOMAIN", "university.edu").strip().lower() or "university.edu"
HOUR_MINUTES = 45
WORK_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

TIME_SLOTS = [
    ("MORNING", "07:00", 6),
    ("AFTERNOON", "13:00", 6),
    ("EVENING", "18:00", 4),
]

KNOWLEDGE_AREAS = ["Mathematics", "Programming", "Networks", "Humanities"]

SPECIALTIES = ["Computing Lab", "Electronics Lab"]

# (name, capacity, type, specialty)
SPACES = [
    ("A-101", 35, TeachingType.theory, None),
    ("A-102", 35, TeachingType.theory, None),
    ("A-201", 60, TeachingType.theory, None),
    ("LAB-1", 30, TeachingType.practice, "Computing Lab"),
    ("LAB-2", 25, TeachingType.practice, "Electronics Lab"),
]

# (name, areas, available windows)
TEACHERS = [
    ("Ana Torres", ["Mathematics"], [("07:00", "18:00")]),
    ("Luis Paredes", ["Mathematics", "Networks"], [("07:00", "13:00")]),
    ("Carla Mendoza", ["Programming"], [("07:00", "22:00")]),
    ("Jorge Salas", ["Programming", "Networks"], [("13:00", "22:00")]),
    ("Rosa Quispe", ["Humanities"], [("07:00", "13:00"), ("18:00", "22:00")]),
]

# cycle number -> (code, name, area, theory hours, practice hours, specialty)
COURSES = {
    1: [
        ("MAT101", "Calculus I", "Mathematics", 4, 0, None),
        ("PRG101", "Introduction to Programming", "Programming", 2, 4, "Computing Lab"),
        ("HUM101", "Academic Writing", "Humanities", 3, 0, None),
    ],
    2: [
        ("MAT201", "Linear Algebra", "Mathematics", 4, 0, None),
        ("PRG201", "Data Structures", "Programming", 2, 4, "Computing Lab"),
        ("NET201", "Digital Circuits", "Networks", 2, 2, "Electronics Lab"),
    ],
}

GROUPS_PER_CYCLE = ["A", "B"]


def _get_or_add(session, model, lookup: dict, **values):
    record = session.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if record is None:
        record = model(**lookup, **values)
        session.add(record)
    else:
        for key, value in values.items():
            setattr(record, key, value)
    session.flush()
    return record


def upsert_time_grid(session) -> None:
    for name, start, hours in TIME_SLOTS:
        start_minutes = parse_time_to_minutes(start)
        end_minutes = start_minutes + hours * HOUR_MINUTES
        slot = _get_or_add(
            session,
            TimeSlot,
            {"name": name},
            start_time=start,
            end_time=minutes_to_time(end_minutes),
        )
        for order in range(1, hours + 1):
            hour_start = start_minutes + (order - 1) * HOUR_MINUTES
            _get_or_add(
                session,
                TeachingHour,
                {"time_slot_id": slot.id, "order_in_time_slot": order},
                start_time=minutes_to_time(hour_start),
                end_time=minutes_to_time(hour_start + HOUR_MINUTES),
                duration_minutes=HOUR_MINUTES,
            )


def upsert_resources(session) -> tuple[dict[str, KnowledgeArea], dict[str, Specialty]]:
    areas = {name: _get_or_add(session, KnowledgeArea, {"name": name}) for name in KNOWLEDGE_AREAS}
    specialties = {name: _get_or_add(session, Specialty, {"name": name}) for name in SPECIALTIES}

    for name, capacity, teaching_type, specialty in SPACES:
        _get_or_add(
            session,
            LearningSpace,
            {"name": name},
            capacity=capacity,
            teaching_type=teaching_type,
            specialty_id=specialties[specialty].id if specialty else None,
        )

    for name, area_names, windows in TEACHERS:
        email = f"{name.lower().replace(' ', '.')}@{MAIL_DOMAIN}"
        _get_or_add(
            session,
            Teacher,
            {"email": email},
            full_name=name,
            knowledge_area_ids=[areas[area].id for area in area_names],
            availability_windows=[
                {"day": day, "start_time": start, "end_time": end, "is_available": True}
                for day in WORK_DAYS
                for start, end in windows
            ],
            is_active=True,
        )
    return areas, specialties


def upsert_structure(session, areas: dict[str, KnowledgeArea], specialties: dict[str, Specialty]) -> None:
    modality = _get_or_add(session, Modality, {"code": "ONSITE"}, name="On-site")
    career = _get_or_add(session, Career, {"name": "Systems Engineering"}, modality_id=modality.id)
    period = _get_or_add(session, AcademicPeriod, {"name": PERIOD_NAME}, is_active=True)

    for number, courses in COURSES.items():
        cycle = _get_or_add(session, Cycle, {"career_id": career.id, "number": number})
        for code, name, area, theory, practice, specialty in courses:
            _get_or_add(
                session,
                Course,
                {"code": code},
                name=name,
                cycle_id=cycle.id,
                knowledge_area_id=areas[area].id,
                preferred_specialty_id=specialties[specialty].id if specialty else None,
                weekly_theory_hours=theory,
                weekly_practice_hours=practice,
            )
        for suffix in GROUPS_PER_CYCLE:
            _get_or_add(
                session,
                StudentGroup,
                {"period_id": period.id, "cycle_id": cycle.id, "name": f"{number}{suffix}"},
            )


def main() -> None:
    ensure_runtime_schema()
    with SessionLocal() as session:
        upsert_time_grid(session)
        areas, specialties = upsert_resources(session)
        upsert_structure(session, areas, specialties)
        session.commit()

        period = session.execute(select(AcademicPeriod).where(AcademicPeriod.name == PERIOD_NAME)).scalar_one()
        group_count = session.execute(select(func.count(StudentGroup.id))).scalar_one()
        course_count = session.execute(select(func.count(Course.id))).scalar_one()
        teacher_count = session.execute(select(func.count(Teacher.id))).scalar_one()
        space_count = session.execute(select(func.count(LearningSpace.id))).scalar_one()
        hour_count = session.execute(select(func.count(TeachingHour.id))).scalar_one()

    print("Demo catalog seeded successfully.")
    print("")
    print(f"Period: {PERIOD_NAME} ({period.id})")
    print(f"Student groups: {group_count}")
    print(f"Courses: {course_count}")
    print(f"Teachers: {teacher_count}")
    print(f"Learning spaces: {space_count}")
    print(f"Teaching hours per day: {hour_count}")


if __name__ == "__main__":
    main()
