from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.engine import Connection

from timetabler.db.bootstrap import missing_schema_items
from timetabler.db.session import engine
from timetabler.models.academic_structure import StudentGroup
from timetabler.models.class_session import ClassSession
from timetabler.models.learning_space import LearningSpace
from timetabler.models.teacher import Teacher
from timetabler.models.time_slot import TeachingHour, TimeSlot

router = APIRouter()

CATALOG_COUNTS = {
    "time_slots": TimeSlot,
    "teaching_hours": TeachingHour,
    "teachers": Teacher,
    "learning_spaces": LearningSpace,
    "student_groups": StudentGroup,
    "class_sessions": ClassSession,
}


def catalog_counts(connection: Connection) -> dict[str, int]:
    return {
        name: connection.execute(select(func.count()).select_from(model)).scalar_one()
        for name, model in CATALOG_COUNTS.items()
    }


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/live")
def health_live() -> dict:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/health/ready")
def health_ready() -> JSONResponse:
    """Ready means the database answers, the catalog schema is complete and a time grid exists."""
    db_ok = True
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    counts: dict[str, int] | None = None
    db_error: str | None = None

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        missing_tables, missing_columns = missing_schema_items(engine)
        if not missing_tables and not missing_columns:
            with engine.connect() as connection:
                counts = catalog_counts(connection)
    except Exception as exc:  # pragma: no cover - environment dependent
        db_ok = False
        db_error = str(exc)

    schema_ok = db_ok and not missing_tables and not missing_columns
    grid_ok = bool(counts and counts["teaching_hours"])
    ready = schema_ok and grid_ok

    payload = {
        "status": "ok" if ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {
            "ok": db_ok,
            "schema_ok": schema_ok,
            "missing_tables": missing_tables,
            "missing_columns": missing_columns,
            "error": db_error,
        },
        "catalog": {
            "grid_ok": grid_ok,
            "counts": counts,
        },
    }
    return JSONResponse(status_code=200 if ready else 503, content=payload)
