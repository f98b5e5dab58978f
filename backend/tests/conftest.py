import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timetabler.api.deps import get_db
from timetabler.core.config import WEEK_DAYS
from timetabler.db.base import Base
from timetabler.db.session import enable_sqlite_savepoints
from timetabler.main import app
from timetabler.models.academic_structure import AcademicPeriod, Career, Cycle, Modality, StudentGroup
from timetabler.models.class_session import ClassSession, ClassSessionHour
from timetabler.models.course import Course, KnowledgeArea
from timetabler.models.learning_space import LearningSpace, Specialty, TeachingType
from timetabler.models.teacher import Teacher
from timetabler.models.time_slot import TeachingHour, TimeSlot
from timetabler.schemas.calendar import minutes_to_time, parse_time_to_minutes


class CatalogFactory:
    """Builds catalog rows with sensible defaults; every helper flushes so ids are usable right away."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def _add(self, record):
        self.db.add(record)
        self.db.flush()
        return record

    def period(self, name: str | None = None) -> AcademicPeriod:
        return self._add(AcademicPeriod(name=name or f"2026-{self._next()}"))

    def modality(self) -> Modality:
        index = self._next()
        return self._add(Modality(name=f"Modality {index}", code=f"MOD{index}"))

    def career(self, modality: Modality | None = None) -> Career:
        modality = modality or self.modality()
        return self._add(Career(modality_id=modality.id, name=f"Career {self._next()}"))

    def cycle(self, career: Career | None = None, number: int = 1) -> Cycle:
        career = career or self.career()
        return self._add(Cycle(career_id=career.id, number=number))

    def group(self, cycle: Cycle, period: AcademicPeriod, name: str | None = None) -> StudentGroup:
        return self._add(StudentGroup(name=name or f"G{self._next()}", cycle_id=cycle.id, period_id=period.id))

    def area(self, name: str | None = None) -> KnowledgeArea:
        return self._add(KnowledgeArea(name=name or f"Area {self._next()}"))

    def specialty(self, name: str | None = None) -> Specialty:
        return self._add(Specialty(name=name or f"Specialty {self._next()}"))

    def course(
        self,
        cycle: Cycle,
        area: KnowledgeArea,
        *,
        theory: int = 0,
        practice: int = 0,
        name: str | None = None,
        specialty: Specialty | None = None,
    ) -> Course:
        index = self._next()
        return self._add(
            Course(
                code=f"C{index:03d}",
                name=name or f"Course {index}",
                cycle_id=cycle.id,
                knowledge_area_id=area.id,
                preferred_specialty_id=specialty.id if specialty else None,
                weekly_theory_hours=theory,
                weekly_practice_hours=practice,
            )
        )

    def teacher(
        self,
        areas: list[KnowledgeArea],
        *,
        name: str | None = None,
        days: tuple[str, ...] = WEEK_DAYS,
        start: str = "07:00",
        end: str = "22:00",
    ) -> Teacher:
        index = self._next()
        return self._add(
            Teacher(
                full_name=name or f"Teacher {index}",
                email=f"teacher{index}@university.edu",
                knowledge_area_ids=[area.id for area in areas],
                availability_windows=[
                    {"day": day, "start_time": start, "end_time": end, "is_available": True} for day in days
                ],
            )
        )

    def space(
        self,
        teaching_type: TeachingType = TeachingType.theory,
        *,
        name: str | None = None,
        capacity: int = 30,
        specialty: Specialty | None = None,
    ) -> LearningSpace:
        return self._add(
            LearningSpace(
                name=name or f"Room {self._next()}",
                capacity=capacity,
                teaching_type=teaching_type,
                specialty_id=specialty.id if specialty else None,
            )
        )

    def time_slot(self, name: str, start: str, hours: int, minutes: int = 45) -> tuple[TimeSlot, list[TeachingHour]]:
        start_minutes = parse_time_to_minutes(start)
        slot = self._add(
            TimeSlot(name=name, start_time=start, end_time=minutes_to_time(start_minutes + hours * minutes))
        )
        teaching_hours = []
        for order in range(1, hours + 1):
            hour_start = start_minutes + (order - 1) * minutes
            teaching_hours.append(
                self._add(
                    TeachingHour(
                        time_slot_id=slot.id,
                        order_in_time_slot=order,
                        start_time=minutes_to_time(hour_start),
                        end_time=minutes_to_time(hour_start + minutes),
                        duration_minutes=minutes,
                    )
                )
            )
        return slot, teaching_hours

    def session(
        self,
        *,
        period: AcademicPeriod,
        group: StudentGroup,
        course: Course,
        teacher: Teacher,
        space: LearningSpace,
        day: str,
        hours: list[TeachingHour],
        session_type: TeachingType = TeachingType.theory,
    ) -> ClassSession:
        """Stores a session directly, bypassing the conflict checks of the catalog."""
        record = self._add(
            ClassSession(
                period_id=period.id,
                student_group_id=group.id,
                course_id=course.id,
                teacher_id=teacher.id,
                learning_space_id=space.id,
                day_of_week=day,
                session_type=session_type,
                teaching_hour_ids=[hour.id for hour in hours],
            )
        )
        for hour in hours:
            self._add(
                ClassSessionHour(
                    class_session_id=record.id,
                    period_id=period.id,
                    day_of_week=day,
                    teaching_hour_id=hour.id,
                    teacher_id=teacher.id,
                    learning_space_id=space.id,
                    student_group_id=group.id,
                )
            )
        return record


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def catalog_factory(db):
    return CatalogFactory(db)


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
