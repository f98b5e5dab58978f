import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from timetabler.db.base import Base


class KnowledgeArea(Base):
    __tablename__ = "knowledge_areas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    knowledge_area_id: Mapped[str] = mapped_column(String(36), nullable=False)
    preferred_specialty_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    weekly_theory_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weekly_practice_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def total_weekly_hours(self) -> int:
        return self.weekly_theory_hours + self.weekly_practice_hours
