from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

import timetabler.models  # noqa: F401
from timetabler.db.base import Base
from timetabler.db.session import engine as default_engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "student_groups": {"id", "name", "cycle_id", "period_id"},
    "courses": {"id", "cycle_id", "knowledge_area_id", "weekly_theory_hours", "weekly_practice_hours"},
    "teachers": {"id", "full_name", "knowledge_area_ids", "availability_windows"},
    "learning_spaces": {"id", "name", "capacity", "teaching_type", "specialty_id"},
    "teaching_hours": {"id", "time_slot_id", "order_in_time_slot", "start_time", "end_time"},
    "class_sessions": {"id", "student_group_id", "course_id", "teacher_id", "teaching_hour_ids"},
    "class_session_hours": {"id", "class_session_id", "teaching_hour_id", "teacher_id", "learning_space_id"},
}


def missing_schema_items(bind: Engine | None = None) -> tuple[list[str], dict[str, list[str]]]:
    target = bind or default_engine
    with target.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables: list[str] = []
        missing_columns: dict[str, list[str]] = {}
        for table_name, columns in REQUIRED_COLUMNS.items():
            if table_name not in table_names:
                missing_tables.append(table_name)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            missing = sorted(columns - existing)
            if missing:
                missing_columns[table_name] = missing
    return missing_tables, missing_columns


def ensure_runtime_schema(bind: Engine | None = None) -> None:
    target = bind or default_engine
    missing_tables, missing_columns = missing_schema_items(target)
    if missing_tables:
        logger.info("Creating missing catalog tables | tables=%s", ",".join(missing_tables))
        Base.metadata.create_all(bind=target, checkfirst=True)
    if missing_columns:
        # column drift is resolved by alembic revisions, not here
        logger.warning("Catalog schema is missing columns | columns=%s", missing_columns)
