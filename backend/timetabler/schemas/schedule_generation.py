from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from timetabler.models.learning_space import TeachingType
from timetabler.schemas.calendar import DAY_VALUES, normalize_day

Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
WarningSeverity = Literal["LOW", "MEDIUM", "HIGH"]
ConflictType = Literal["TEACHER_CONFLICT", "SPACE_CONFLICT", "GROUP_CONFLICT"]
GroupAction = Literal["RESET", "COMPLETE", "NONE"]
UtilizationLevel = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


class CleanupStrategy(str, Enum):
    reset_all = "RESET_ALL"
    selective_cleanup = "SELECTIVE_CLEANUP"
    complete_existing = "COMPLETE_EXISTING"


class GenerationOptions(BaseModel):
    excluded_days: list[str] = Field(default_factory=list, max_length=7)
    preferred_time_slot_ids: list[str] = Field(default_factory=list, max_length=100)
    max_hours_per_day: int = Field(default=8, ge=1, le=16)
    min_hours_per_day: int = Field(default=2, ge=0, le=16)
    max_consecutive_hours: int = Field(default=4, ge=1, le=12)
    distribute_evenly: bool = True
    respect_teacher_continuity: bool = True
    avoid_time_gaps: bool = True
    prioritize_labs_after_theory: bool = False
    preferred_time_slot_weight: float = Field(default=0.7, ge=0.0, le=1.0)

    @field_validator("excluded_days")
    @classmethod
    def validate_excluded_days(cls, value: list[str]) -> list[str]:
        days: list[str] = []
        for item in value:
            day = normalize_day(item)
            if day not in DAY_VALUES:
                raise ValueError(f"Invalid day value: {item}")
            if day not in days:
                days.append(day)
        return days


class ScheduleGenerationRequest(GenerationOptions):
    period_id: str = Field(min_length=1, max_length=36)
    modality_id: str | None = Field(default=None, min_length=1, max_length=36)
    career_id: str | None = Field(default=None, min_length=1, max_length=36)
    cycle_id: str | None = Field(default=None, min_length=1, max_length=36)
    group_ids: list[str] = Field(default_factory=list, max_length=500)

    def has_scope(self) -> bool:
        return bool(self.modality_id or self.career_id or self.cycle_id or self.group_ids)


class ConfigTemplate(BaseModel):
    name: str
    description: str
    options: GenerationOptions


class CourseRequirement(BaseModel):
    model_config = {"frozen": True}

    course_id: str
    course_name: str
    cycle_id: str
    knowledge_area_id: str
    preferred_specialty_id: str | None = None
    theory_hours: int
    practice_hours: int
    total_hours: int
    supported_session_types: list[TeachingType]
    is_mixed: bool

    def hours_for(self, session_type: TeachingType) -> int:
        if session_type == TeachingType.theory:
            return self.theory_hours
        return self.practice_hours


class GroupRequirement(BaseModel):
    model_config = {"frozen": True}

    group_id: str
    group_name: str
    cycle_id: str
    period_id: str
    courses: list[CourseRequirement]
    total_weekly_hours: int

    def course(self, course_id: str) -> CourseRequirement | None:
        return next((item for item in self.courses if item.course_id == course_id), None)


class GeneratedSession(BaseModel):
    session_id: str | None = None
    group_id: str
    group_name: str
    course_id: str
    course_name: str
    teacher_id: str
    teacher_name: str
    learning_space_id: str
    learning_space_name: str
    day_of_week: str
    time_slot_id: str
    time_slot_name: str
    teaching_hour_ids: list[str]
    teaching_hours: list[str]
    hours: int
    session_type: TeachingType
    is_new: bool = True


class ScheduleConflict(BaseModel):
    conflict_type: ConflictType
    severity: Severity
    description: str
    affected_entities: list[str] = Field(default_factory=list)
    day_of_week: str | None = None
    time_range: str | None = None
    suggested_solutions: list[str] = Field(default_factory=list)


class ScheduleWarning(BaseModel):
    warning_type: str
    message: str
    severity: WarningSeverity


class GenerationSummary(BaseModel):
    total_groups_processed: int
    total_courses_processed: int
    total_sessions_generated: int
    total_hours_assigned: int
    total_required_hours: int
    remaining_hours: int
    conflicts_found: int
    warnings_generated: int
    success_rate: float


class GenerationStatistics(BaseModel):
    sessions_per_day: dict[str, int] = Field(default_factory=dict)
    sessions_per_time_slot: dict[str, int] = Field(default_factory=dict)
    teacher_utilization: dict[str, int] = Field(default_factory=dict)
    space_utilization: dict[str, int] = Field(default_factory=dict)
    hours_per_course: dict[str, int] = Field(default_factory=dict)
    average_sessions_per_day: float = 0.0
    distribution_balance: float = 1.0


class GroupIntegration(BaseModel):
    existing_sessions: int
    needs_more_assignments: bool
    missing_courses: int
    theory_hours_remaining: int
    practice_hours_remaining: int


class IntegrationReport(BaseModel):
    preserved_teacher_assignments: int
    preserved_slots: int
    groups_with_existing_sessions: int
    group_analysis: dict[str, GroupIntegration] = Field(default_factory=dict)
    integration_efficiency: float


class ScheduleGenerationResult(BaseModel):
    success: bool
    message: str
    summary: GenerationSummary | None = None
    generated_sessions: list[GeneratedSession] = Field(default_factory=list)
    conflicts: list[ScheduleConflict] = Field(default_factory=list)
    warnings: list[ScheduleWarning] = Field(default_factory=list)
    statistics: GenerationStatistics | None = None
    quality_score: float | None = None
    integration_report: IntegrationReport | None = None
    execution_time_ms: int = 0


class ScheduleConstraints(BaseModel):
    total_groups: int
    total_courses: int
    total_required_hours: int
    available_teachers: int
    available_spaces: int
    available_time_slots: int
    potential_constraints: list[str] = Field(default_factory=list)


class FeasibilityReport(BaseModel):
    is_feasible: bool
    feasibility_score: float
    challenges: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class GroupScheduleStatus(BaseModel):
    group_id: str
    group_name: str
    existing_sessions: int
    assigned_hours: int
    required_hours: int
    assigned_courses: int
    assigned_teachers: int
    distribution_by_day: dict[str, int] = Field(default_factory=dict)
    completeness: float
    recommended_action: GroupAction


class WorkloadAnalysis(BaseModel):
    average_teacher_hours: float
    average_space_hours: float
    overloaded_teachers: list[str] = Field(default_factory=list)
    overloaded_spaces: list[str] = Field(default_factory=list)
    utilization: float
    utilization_level: UtilizationLevel
    recommendations: list[str] = Field(default_factory=list)


class ExistingScheduleAnalysis(BaseModel):
    period_id: str
    total_groups: int
    groups_with_sessions: int
    total_existing_sessions: int
    needs_user_decision: bool
    recommended_strategy: CleanupStrategy
    groups: list[GroupScheduleStatus] = Field(default_factory=list)
    workload: WorkloadAnalysis
    recommendations: list[str] = Field(default_factory=list)


class RecommendedAction(BaseModel):
    group_name: str
    current_status: str
    recommended_action: GroupAction
    reasoning: str


class CompleteFlowResult(BaseModel):
    existing_analysis: ExistingScheduleAnalysis
    requires_user_decision: bool
    message: str
    recommended_actions: list[RecommendedAction] = Field(default_factory=list)
    applied_strategy: CleanupStrategy | None = None
    generation_result: ScheduleGenerationResult | None = None


class SchedulePreview(BaseModel):
    group_requirements: list[GroupRequirement]
    constraints: ScheduleConstraints
    feasibility: FeasibilityReport
    existing_analysis: ExistingScheduleAnalysis | None = None


class GenerationValidationReport(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    target_groups: int = 0
    feasibility: FeasibilityReport | None = None
    can_proceed: bool


class ScheduleCleanupRequest(BaseModel):
    period_id: str = Field(min_length=1, max_length=36)
    group_ids: list[str] = Field(min_length=1, max_length=500)
    strategy: CleanupStrategy
    confirm_overwrite: bool = False


class ScheduleCleanupResult(BaseModel):
    success: bool
    message: str
    deleted_sessions: int = 0
    affected_groups: int = 0
    affected_courses: int = 0
    cleanup_strategy: CleanupStrategy
    warnings: list[str] = Field(default_factory=list)
    details: dict = Field(default_factory=dict)


class SystemCapacity(BaseModel):
    total_teachers: int
    total_learning_spaces: int
    theory_spaces: int
    practice_spaces: int
    total_time_slots: int
    total_teaching_hours: int
    work_days: list[str]
    weekly_teaching_hour_capacity: int


class PeriodScheduleStatus(BaseModel):
    period_id: str
    total_groups: int
    groups_with_sessions: int
    total_sessions: int
    total_hours: int
    average_completeness: float
    groups: list[GroupScheduleStatus] = Field(default_factory=list)


class ClearPeriodResult(BaseModel):
    period_id: str
    deleted_sessions: int
    affected_groups: int
    affected_teachers: int
    affected_spaces: int
