"""Maintenance job endpoints, for operators and external triggers."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from carebook.api.dependencies import get_maintenance, parse_uuid
from carebook.scheduling.errors import PartialFailure
from carebook.scheduling.maintenance import MaintenanceScheduler
from carebook.scheduling.models import (
    BackfillResult,
    BatchReport,
    CleanupResult,
    MaintenanceStats,
    OptimizationReport,
)

router = APIRouter(prefix="/maintenance")


class GenerateAllIn(BaseModel):
    days_ahead: Optional[int] = Field(default=None, ge=0)


class CleanupIn(BaseModel):
    older_than_days: Optional[int] = Field(default=None, ge=0)


class BackfillIn(BaseModel):
    start_date: date
    end_date: date


@router.post("/generate-all", response_model=BatchReport)
async def generate_for_all_clinicians(
    body: GenerateAllIn,
    maintenance: MaintenanceScheduler = Depends(get_maintenance),
):
    """Generate slots ahead for every active clinician; 207 when some failed."""
    report = await maintenance.generate_for_all_clinicians(body.days_ahead)
    if report.is_partial:
        raise PartialFailure(report, failed=len(report.failed))
    return report


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup_old_slots(
    body: CleanupIn,
    maintenance: MaintenanceScheduler = Depends(get_maintenance),
):
    return await maintenance.cleanup_old_slots(body.older_than_days)


@router.post("/clinicians/{clinician_id}/backfill", response_model=BackfillResult)
async def generate_missing_slots(
    clinician_id: str,
    body: BackfillIn,
    maintenance: MaintenanceScheduler = Depends(get_maintenance),
):
    return await maintenance.generate_missing_slots(
        parse_uuid(clinician_id, "clinician_id"), body.start_date, body.end_date
    )


@router.get("/clinicians/{clinician_id}/optimize", response_model=OptimizationReport)
async def optimize_doctor_slots(
    clinician_id: str,
    day: date = Query(alias="date"),
    maintenance: MaintenanceScheduler = Depends(get_maintenance),
):
    return await maintenance.optimize_doctor_slots(parse_uuid(clinician_id, "clinician_id"), day)


@router.get("/stats", response_model=MaintenanceStats)
async def get_maintenance_stats(
    days_back: int = Query(default=30, ge=0, le=365),
    maintenance: MaintenanceScheduler = Depends(get_maintenance),
):
    return await maintenance.get_maintenance_stats(days_back)
