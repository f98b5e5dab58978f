"""create scheduling catalog

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


# SQLAlchemy stores enum member names
teaching_type_enum = postgresql.ENUM("theory", "practice", name="teaching_type", create_type=False)


def _id_column() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    teaching_type_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "modalities",
        _id_column(),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("code", sa.String(length=20), nullable=False),
        _created_at(),
    )
    op.create_index("ix_modalities_code", "modalities", ["code"], unique=True)

    op.create_table(
        "careers",
        _id_column(),
        sa.Column("modality_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        _created_at(),
    )
    op.create_index("ix_careers_modality_id", "careers", ["modality_id"])

    op.create_table(
        "cycles",
        _id_column(),
        sa.Column("career_id", sa.String(length=36), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("career_id", "number", name="uq_cycles_career_number"),
    )
    op.create_index("ix_cycles_career_id", "cycles", ["career_id"])

    op.create_table(
        "academic_periods",
        _id_column(),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )

    op.create_table(
        "student_groups",
        _id_column(),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("cycle_id", sa.String(length=36), nullable=False),
        sa.Column("period_id", sa.String(length=36), nullable=False),
        _created_at(),
        sa.UniqueConstraint("period_id", "cycle_id", "name", name="uq_student_groups_period_cycle_name"),
    )
    op.create_index("ix_student_groups_cycle_id", "student_groups", ["cycle_id"])
    op.create_index("ix_student_groups_period_id", "student_groups", ["period_id"])

    op.create_table(
        "knowledge_areas",
        _id_column(),
        sa.Column("name", sa.String(length=150), nullable=False, unique=True),
        _created_at(),
    )

    op.create_table(
        "courses",
        _id_column(),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("cycle_id", sa.String(length=36), nullable=False),
        sa.Column("knowledge_area_id", sa.String(length=36), nullable=False),
        sa.Column("preferred_specialty_id", sa.String(length=36), nullable=True),
        sa.Column("weekly_theory_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weekly_practice_hours", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_courses_code", "courses", ["code"], unique=True)
    op.create_index("ix_courses_cycle_id", "courses", ["cycle_id"])

    op.create_table(
        "teachers",
        _id_column(),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("knowledge_area_ids", sa.JSON(), nullable=False),
        sa.Column("availability_windows", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_teachers_email", "teachers", ["email"], unique=True)

    op.create_table(
        "specialties",
        _id_column(),
        sa.Column("name", sa.String(length=150), nullable=False, unique=True),
        _created_at(),
    )

    op.create_table(
        "learning_spaces",
        _id_column(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("teaching_type", teaching_type_enum, nullable=False),
        sa.Column("specialty_id", sa.String(length=36), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_learning_spaces_name", "learning_spaces", ["name"], unique=True)

    op.create_table(
        "time_slots",
        _id_column(),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        _created_at(),
    )

    op.create_table(
        "teaching_hours",
        _id_column(),
        sa.Column("time_slot_id", sa.String(length=36), nullable=False),
        sa.Column("order_in_time_slot", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="45"),
        sa.UniqueConstraint("time_slot_id", "order_in_time_slot", name="uq_teaching_hours_slot_order"),
    )
    op.create_index("ix_teaching_hours_time_slot_id", "teaching_hours", ["time_slot_id"])

    op.create_table(
        "class_sessions",
        _id_column(),
        sa.Column("period_id", sa.String(length=36), nullable=False),
        sa.Column("student_group_id", sa.String(length=36), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("learning_space_id", sa.String(length=36), nullable=False),
        sa.Column("day_of_week", sa.String(length=20), nullable=False),
        sa.Column("session_type", teaching_type_enum, nullable=False),
        sa.Column("teaching_hour_ids", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
    )
    for column in ("period_id", "student_group_id", "course_id", "teacher_id", "learning_space_id"):
        op.create_index(f"ix_class_sessions_{column}", "class_sessions", [column])

    op.create_table(
        "class_session_hours",
        _id_column(),
        sa.Column("class_session_id", sa.String(length=36), nullable=False),
        sa.Column("period_id", sa.String(length=36), nullable=False),
        sa.Column("day_of_week", sa.String(length=20), nullable=False),
        sa.Column("teaching_hour_id", sa.String(length=36), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("learning_space_id", sa.String(length=36), nullable=False),
        sa.Column("student_group_id", sa.String(length=36), nullable=False),
        sa.UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "teacher_id", name="uq_session_hours_teacher"
        ),
        sa.UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "learning_space_id", name="uq_session_hours_space"
        ),
        sa.UniqueConstraint(
            "period_id", "day_of_week", "teaching_hour_id", "student_group_id", name="uq_session_hours_group"
        ),
    )
    op.create_index("ix_class_session_hours_class_session_id", "class_session_hours", ["class_session_id"])


def downgrade() -> None:
    op.drop_index("ix_class_session_hours_class_session_id", table_name="class_session_hours")
    op.drop_table("class_session_hours")
    for column in ("period_id", "student_group_id", "course_id", "teacher_id", "learning_space_id"):
        op.drop_index(f"ix_class_sessions_{column}", table_name="class_sessions")
    op.drop_table("class_sessions")
    op.drop_index("ix_teaching_hours_time_slot_id", table_name="teaching_hours")
    op.drop_table("teaching_hours")
    op.drop_table("time_slots")
    op.drop_index("ix_learning_spaces_name", table_name="learning_spaces")
    op.drop_table("learning_spaces")
    op.drop_table("specialties")
    op.drop_index("ix_teachers_email", table_name="teachers")
    op.drop_table("teachers")
    op.drop_index("ix_courses_cycle_id", table_name="courses")
    op.drop_index("ix_courses_code", table_name="courses")
    op.drop_table("courses")
    op.drop_table("knowledge_areas")
    op.drop_index("ix_student_groups_period_id", table_name="student_groups")
    op.drop_index("ix_student_groups_cycle_id", table_name="student_groups")
    op.drop_table("student_groups")
    op.drop_table("academic_periods")
    op.drop_index("ix_cycles_career_id", table_name="cycles")
    op.drop_table("cycles")
    op.drop_index("ix_careers_modality_id", table_name="careers")
    op.drop_table("careers")
    op.drop_index("ix_modalities_code", table_name="modalities")
    op.drop_table("modalities")
    teaching_type_enum.drop(op.get_bind(), checkfirst=True)
