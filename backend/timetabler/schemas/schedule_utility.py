from __future__ import annotations

from pydantic import BaseModel, Field

from timetabler.schemas.schedule_generation import ScheduleConflict


class ResourceLoad(BaseModel):
    id: str
    name: str
    hours: int


class OccupancyReport(BaseModel):
    period_id: str
    total_sessions: int
    total_hours: int
    sessions_by_day: dict[str, int] = Field(default_factory=dict)
    sessions_by_time_slot: dict[str, int] = Field(default_factory=dict)
    top_busy_teachers: list[ResourceLoad] = Field(default_factory=list)
    top_used_spaces: list[ResourceLoad] = Field(default_factory=list)
    hour_distribution: dict[str, int] = Field(default_factory=dict)
    peak_hour: str | None = None
    low_occupancy_hour: str | None = None


class ExistingConflictReport(BaseModel):
    period_id: str
    total_conflicts: int
    conflicts: list[ScheduleConflict] = Field(default_factory=list)
    conflicts_by_type: dict[str, int] = Field(default_factory=dict)
    conflicts_by_severity: dict[str, int] = Field(default_factory=dict)


class TeacherUtilization(BaseModel):
    total_teachers: int
    average_hours: float
    max_hours: int
    min_hours: int
    hours_distribution: dict[str, int] = Field(default_factory=dict)
    overloaded_teachers: list[str] = Field(default_factory=list)
    underutilized_teachers: list[str] = Field(default_factory=list)


class SpaceUtilization(BaseModel):
    total_spaces: int
    average_hours: float
    hours_distribution: dict[str, int] = Field(default_factory=dict)
    most_used_space: str | None = None
    least_used_space: str | None = None


class TimeUtilization(BaseModel):
    sessions_by_time_slot: dict[str, int] = Field(default_factory=dict)
    sessions_by_day: dict[str, int] = Field(default_factory=dict)
    busiest_day: str | None = None


class QualityMetrics(BaseModel):
    groups_with_time_gaps: int
    well_distributed_groups: int
    total_groups: int
    distribution_score: float
    teacher_continuity_score: float
    overall_quality_score: float


class UtilizationReport(BaseModel):
    period_id: str
    teacher_utilization: TeacherUtilization
    space_utilization: SpaceUtilization
    time_utilization: TimeUtilization
    quality_metrics: QualityMetrics


class OptimizationReport(BaseModel):
    period_id: str
    optimization_score: float
    suggestions: list[str] = Field(default_factory=list)
    groups_with_gaps: int
    unbalanced_groups: int
    resource_utilization: dict[str, float] = Field(default_factory=dict)
