from collections.abc import Callable
import logging
from time import perf_counter

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from timetabler.api.deps import get_db
from timetabler.core.exceptions import AppError
from timetabler.schemas.schedule_generation import (
    ClearPeriodResult,
    CleanupStrategy,
    CompleteFlowResult,
    ConfigTemplate,
    ExistingScheduleAnalysis,
    GenerationOptions,
    GenerationValidationReport,
    PeriodScheduleStatus,
    ScheduleCleanupRequest,
    ScheduleCleanupResult,
    ScheduleGenerationRequest,
    ScheduleGenerationResult,
    SchedulePreview,
    SystemCapacity,
)
from timetabler.services.generation_config import CONFIG_TEMPLATES, default_options
from timetabler.services.schedule_analyzer import ScheduleAnalyzer
from timetabler.services.schedule_generator import ScheduleGenerator
from timetabler.services.schedule_utility import ScheduleUtility

router = APIRouter()
logger = logging.getLogger(__name__)


def _run_and_commit(
    db: Session,
    label: str,
    request: ScheduleGenerationRequest,
    run: Callable[[], ScheduleGenerationResult],
) -> ScheduleGenerationResult:
    started = perf_counter()
    logger.info(
        "%s START | period_id=%s | modality_id=%s | career_id=%s | cycle_id=%s | groups=%s",
        label,
        request.period_id,
        request.modality_id,
        request.career_id,
        request.cycle_id,
        len(request.group_ids),
    )
    try:
        result = run()
        # partial runs keep the sessions committed before the failure
        db.commit()
    except AppError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.exception(
            "%s FAILED | period_id=%s | wall_ms=%s",
            label,
            request.period_id,
            int((perf_counter() - started) * 1000),
        )
        raise

    logger.info(
        "%s COMPLETE | period_id=%s | success=%s | sessions=%s | warnings=%s | wall_ms=%s",
        label,
        request.period_id,
        result.success,
        len(result.generated_sessions),
        len(result.warnings),
        int((perf_counter() - started) * 1000),
    )
    return result


def _scoped_request(period_id: str, **scope) -> ScheduleGenerationRequest:
    return ScheduleGenerationRequest(period_id=period_id, **scope, **default_options().model_dump())


@router.post("/generate", response_model=ScheduleGenerationResult)
def generate_schedule(
    payload: ScheduleGenerationRequest,
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    generator = ScheduleGenerator(db)
    return _run_and_commit(db, "SCHEDULE GENERATION", payload, lambda: generator.generate(payload))


@router.post("/preview", response_model=SchedulePreview)
def preview_schedule(
    payload: ScheduleGenerationRequest,
    db: Session = Depends(get_db),
) -> SchedulePreview:
    logger.info("SCHEDULE PREVIEW | period_id=%s", payload.period_id)
    return ScheduleGenerator(db).preview(payload)


@router.post("/validate", response_model=GenerationValidationReport)
def validate_schedule_request(
    payload: ScheduleGenerationRequest,
    db: Session = Depends(get_db),
) -> GenerationValidationReport:
    return ScheduleGenerator(db).validate(payload)


@router.post("/simulate", response_model=ScheduleGenerationResult)
def simulate_schedule(
    payload: ScheduleGenerationRequest,
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    started = perf_counter()
    logger.info("SCHEDULE SIMULATION START | period_id=%s", payload.period_id)
    try:
        result = ScheduleGenerator(db).generate(payload)
    finally:
        db.rollback()
    result.message = f"Simulation only, nothing was saved. {result.message}"
    logger.info(
        "SCHEDULE SIMULATION COMPLETE | period_id=%s | sessions=%s | wall_ms=%s",
        payload.period_id,
        len(result.generated_sessions),
        int((perf_counter() - started) * 1000),
    )
    return result


@router.post("/generate-group/{group_id}", response_model=ScheduleGenerationResult)
def generate_for_group(
    group_id: str,
    period_id: str = Query(min_length=1, max_length=36),
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    request = _scoped_request(period_id, group_ids=[group_id])
    generator = ScheduleGenerator(db)
    return _run_and_commit(db, "GROUP GENERATION", request, lambda: generator.generate(request))


@router.post("/generate-career/{career_id}", response_model=ScheduleGenerationResult)
def generate_for_career(
    career_id: str,
    period_id: str = Query(min_length=1, max_length=36),
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    request = _scoped_request(period_id, career_id=career_id)
    generator = ScheduleGenerator(db)
    return _run_and_commit(db, "CAREER GENERATION", request, lambda: generator.generate(request))


@router.post("/generate-cycle/{cycle_id}", response_model=ScheduleGenerationResult)
def generate_for_cycle(
    cycle_id: str,
    period_id: str = Query(min_length=1, max_length=36),
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    request = _scoped_request(period_id, cycle_id=cycle_id)
    generator = ScheduleGenerator(db)
    return _run_and_commit(db, "CYCLE GENERATION", request, lambda: generator.generate(request))


@router.post("/generate-modality/{modality_id}", response_model=ScheduleGenerationResult)
def generate_for_modality(
    modality_id: str,
    period_id: str = Query(min_length=1, max_length=36),
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    request = _scoped_request(period_id, modality_id=modality_id)
    generator = ScheduleGenerator(db)
    return _run_and_commit(db, "MODALITY GENERATION", request, lambda: generator.generate(request))


@router.get("/default-config", response_model=GenerationOptions)
def get_default_config(cycle_id: str | None = Query(default=None)) -> GenerationOptions:
    return default_options(cycle_scoped=cycle_id is not None)


@router.get("/config-templates", response_model=dict[str, ConfigTemplate])
def get_config_templates() -> dict[str, ConfigTemplate]:
    return CONFIG_TEMPLATES


@router.get("/system-capacity", response_model=SystemCapacity)
def get_system_capacity(db: Session = Depends(get_db)) -> SystemCapacity:
    return ScheduleGenerator(db).system_capacity()


@router.post("/analyze-existing", response_model=ExistingScheduleAnalysis)
def analyze_existing_schedule(
    payload: ScheduleGenerationRequest,
    db: Session = Depends(get_db),
) -> ExistingScheduleAnalysis:
    logger.info("EXISTING SCHEDULE ANALYSIS | period_id=%s", payload.period_id)
    return ScheduleAnalyzer(db).analyze_existing(payload)


@router.post("/cleanup", response_model=ScheduleCleanupResult)
def cleanup_schedule(
    payload: ScheduleCleanupRequest,
    db: Session = Depends(get_db),
) -> ScheduleCleanupResult:
    logger.info(
        "SCHEDULE CLEANUP START | period_id=%s | strategy=%s | groups=%s | confirmed=%s",
        payload.period_id,
        payload.strategy.value,
        len(payload.group_ids),
        payload.confirm_overwrite,
    )
    try:
        result = ScheduleAnalyzer(db).cleanup(payload)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


@router.post("/generate-intelligent", response_model=ScheduleGenerationResult)
def generate_intelligent_schedule(
    payload: ScheduleGenerationRequest,
    strategy: CleanupStrategy = Query(default=CleanupStrategy.selective_cleanup),
    db: Session = Depends(get_db),
) -> ScheduleGenerationResult:
    generator = ScheduleGenerator(db)
    return _run_and_commit(
        db,
        "INTELLIGENT GENERATION",
        payload,
        lambda: generator.generate_intelligent(payload, strategy),
    )


@router.post("/generate-complete-flow", response_model=CompleteFlowResult)
def generate_complete_flow(
    payload: ScheduleGenerationRequest,
    auto_resolve: bool = Query(default=False),
    default_strategy: CleanupStrategy = Query(default=CleanupStrategy.selective_cleanup),
    db: Session = Depends(get_db),
) -> CompleteFlowResult:
    logger.info(
        "COMPLETE FLOW START | period_id=%s | auto_resolve=%s | default_strategy=%s",
        payload.period_id,
        auto_resolve,
        default_strategy.value,
    )
    try:
        result = ScheduleGenerator(db).generate_complete_flow(
            payload,
            auto_resolve=auto_resolve,
            default_strategy=default_strategy,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "COMPLETE FLOW DONE | period_id=%s | requires_decision=%s | applied_strategy=%s",
        payload.period_id,
        result.requires_user_decision,
        result.applied_strategy.value if result.applied_strategy else None,
    )
    return result


@router.get("/period-status/{period_id}", response_model=PeriodScheduleStatus)
def get_period_status(period_id: str, db: Session = Depends(get_db)) -> PeriodScheduleStatus:
    return ScheduleAnalyzer(db).period_status(period_id)


@router.delete("/clear-period/{period_id}", response_model=ClearPeriodResult)
def clear_period(
    period_id: str,
    career_id: str | None = Query(default=None),
    cycle_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> ClearPeriodResult:
    logger.info("CLEAR PERIOD START | period_id=%s | career_id=%s | cycle_id=%s", period_id, career_id, cycle_id)
    try:
        result = ScheduleUtility(db).clear_period(period_id, career_id=career_id, cycle_id=cycle_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


@router.get("/export/{period_id}.csv")
def export_period_csv(period_id: str, db: Session = Depends(get_db)) -> Response:
    content = ScheduleUtility(db).export_csv(period_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="schedule-{period_id}.csv"'},
    )
