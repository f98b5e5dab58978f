from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from timetabler.api.deps import get_db
from timetabler.schemas.schedule_utility import (
    ExistingConflictReport,
    OccupancyReport,
    OptimizationReport,
    UtilizationReport,
)
from timetabler.services.schedule_utility import ScheduleUtility

router = APIRouter()


@router.get("/occupancy/{period_id}", response_model=OccupancyReport)
def get_occupancy(period_id: str, db: Session = Depends(get_db)) -> OccupancyReport:
    return ScheduleUtility(db).occupancy(period_id)


@router.get("/conflicts/{period_id}", response_model=ExistingConflictReport)
def get_existing_conflicts(period_id: str, db: Session = Depends(get_db)) -> ExistingConflictReport:
    return ScheduleUtility(db).existing_conflicts(period_id)


@router.get("/utilization/{period_id}", response_model=UtilizationReport)
def get_utilization(period_id: str, db: Session = Depends(get_db)) -> UtilizationReport:
    return ScheduleUtility(db).utilization(period_id)


@router.get("/optimizations/{period_id}", response_model=OptimizationReport)
def get_optimizations(period_id: str, db: Session = Depends(get_db)) -> OptimizationReport:
    return ScheduleUtility(db).optimizations(period_id)
