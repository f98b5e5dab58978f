import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from timetabler.db.base import Base
from timetabler.models.learning_space import TeachingType


class ClassSession(Base):
    __tablename__ = "class_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    period_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    student_group_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    course_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    learning_space_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    day_of_week: Mapped[str] = mapped_column(String(20), nullable=False)
    session_type: Mapped[TeachingType] = mapped_column(SAEnum(TeachingType, name="teaching_type"), nullable=False)
    teaching_hour_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ClassSessionHour(Base):
    """One row per booked teaching hour; the unique constraints are the authoritative overlap guard."""

    __tablename__ = "class_session_hours"
    __table_args__ = (
        UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "teacher_id", name="uq_session_hours_teacher"
        ),
        UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "learning_space_id", name="uq_session_hours_space"
        ),
        UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "student_group_id", name="uq_session_hours_group"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    class_session_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    period_id: Mapped[str] = mapped_column(String(36), nullable=False)
    day_of_week: Mapped[str] = mapped_column(String(20), nullable=False)
    teaching_hour_id: Mapped[str] = mapped_column(String(36), nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(36), nullable=False)
    learning_space_id: Mapped[str] = mapped_column(String(36), nullable=False)
    student_group_id: Mapped[str] = mapped_column(String(36), nullable=False)
