"""Availability template endpoints."""

from datetime import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from carebook.api.dependencies import get_template_store, parse_uuid
from carebook.scheduling.errors import PartialFailure
from carebook.scheduling.models import (
    AvailabilityTemplate,
    BreakWindow,
    ClinicianAvailability,
    TemplateInput,
    TemplateSummary,
    TemplateValidation,
    WeeklyTemplateResult,
)
from carebook.scheduling.templates import AvailabilityTemplateStore, validate_template

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic request/response schemas
# ---------------------------------------------------------------------------

class TemplateIn(BaseModel):
    work_start: time
    work_end: time
    slot_duration: int
    buffer_time: int = 0
    breaks: list[BreakWindow] = Field(default_factory=list)
    is_active: bool = True


class WeeklyTemplateIn(BaseModel):
    templates: list[TemplateInput]


class TemplateValidateIn(BaseModel):
    work_start: time
    work_end: time
    breaks: list[BreakWindow] = Field(default_factory=list)
    slot_duration: Optional[int] = None
    buffer_time: int = 0
    weekday: Optional[int] = None


class TemplateSaved(BaseModel):
    template_id: str
    weekday: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/templates/validate", response_model=TemplateValidation)
async def validate(body: TemplateValidateIn):
    """Dry-run validation; nothing is stored."""
    return validate_template(
        body.work_start,
        body.work_end,
        body.breaks,
        body.slot_duration,
        body.buffer_time,
        body.weekday,
    )


@router.get("/clinicians/availability", response_model=list[ClinicianAvailability])
async def list_clinicians_with_templates(
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    return await store.list_clinicians_with_templates()


@router.put("/clinicians/{clinician_id}/templates", response_model=WeeklyTemplateResult)
async def set_weekly_template(
    clinician_id: str,
    body: WeeklyTemplateIn,
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    report = await store.set_weekly_template(parse_uuid(clinician_id, "clinician_id"), body.templates)
    if report.is_partial:
        raise PartialFailure(report, failed=len(report.failed))
    return report


@router.get("/clinicians/{clinician_id}/templates", response_model=list[AvailabilityTemplate])
async def list_templates(
    clinician_id: str,
    active_only: bool = False,
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    return await store.list_templates(parse_uuid(clinician_id, "clinician_id"), active_only)


@router.get("/clinicians/{clinician_id}/templates/summary", response_model=list[TemplateSummary])
async def get_template_summary(
    clinician_id: str,
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    return await store.get_template_summary(parse_uuid(clinician_id, "clinician_id"))


@router.put("/clinicians/{clinician_id}/templates/{weekday}", response_model=TemplateSaved)
async def set_template(
    clinician_id: str,
    body: TemplateIn,
    weekday: int = Path(ge=0, le=6),
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    template_id = await store.set_template(
        parse_uuid(clinician_id, "clinician_id"),
        weekday,
        body.work_start,
        body.work_end,
        body.slot_duration,
        body.buffer_time,
        body.breaks,
        body.is_active,
    )
    return TemplateSaved(template_id=str(template_id), weekday=weekday)


@router.get("/clinicians/{clinician_id}/templates/{weekday}", response_model=AvailabilityTemplate)
async def get_template(
    clinician_id: str,
    weekday: int = Path(ge=0, le=6),
    store: AvailabilityTemplateStore = Depends(get_template_store),
):
    template = await store.get_template(parse_uuid(clinician_id, "clinician_id"), weekday)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@router.delete("/clinicians/{clinician_id}/templates/{weekday}")
async def delete_template(
    clinician_id: str,
    weekday: int = Path(ge=0, le=6),
    store: AvailabilityTemplateStore = Depends(get_template_store),
) -> dict:
    deleted = await store.delete_template(parse_uuid(clinician_id, "clinician_id"), weekday)
    return {"deleted": deleted}
