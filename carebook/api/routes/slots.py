"""Slot generation and availability query endpoints."""

import uuid
from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from carebook.api.dependencies import get_inventory, parse_uuid
from carebook.scheduling.inventory import SlotInventory
from carebook.scheduling.models import (
    AlternativeSlots,
    ClinicianSlots,
    GenerationResult,
    PeakAvailability,
    Slot,
    SlotCheck,
    SlotQuery,
    SlotQueryResult,
    SlotStats,
    WeeklySummary,
)

router = APIRouter()


class GenerateSlotsIn(BaseModel):
    start_date: date
    end_date: date


@router.post("/clinicians/{clinician_id}/slots/generate", response_model=GenerationResult)
async def generate_slots(
    clinician_id: str,
    body: GenerateSlotsIn,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.generate_slots(
        parse_uuid(clinician_id, "clinician_id"), body.start_date, body.end_date
    )


@router.get("/clinicians/{clinician_id}/slots/available", response_model=list[Slot])
async def get_available_slots(
    clinician_id: str,
    day: date = Query(alias="date"),
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_available_slots(parse_uuid(clinician_id, "clinician_id"), day)


@router.get("/clinicians/{clinician_id}/slots/available-range", response_model=dict[str, list[Slot]])
async def get_available_slots_in_range(
    clinician_id: str,
    start_date: date,
    end_date: date,
    inventory: SlotInventory = Depends(get_inventory),
):
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    grouped = await inventory.get_available_slots_in_range(
        parse_uuid(clinician_id, "clinician_id"), start_date, end_date
    )
    return {day.isoformat(): slots for day, slots in grouped.items()}


@router.get("/clinicians/{clinician_id}/slots", response_model=list[Slot])
async def get_day_slots(
    clinician_id: str,
    day: date = Query(alias="date"),
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_day_slots(parse_uuid(clinician_id, "clinician_id"), day)


@router.get("/clinicians/{clinician_id}/slots/stats", response_model=SlotStats)
async def get_slot_stats(
    clinician_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_slot_stats(parse_uuid(clinician_id, "clinician_id"), start_date, end_date)


@router.get("/clinicians/{clinician_id}/slots/next", response_model=Optional[Slot])
async def get_next_available_slot(
    clinician_id: str,
    from_date: Optional[date] = None,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_next_available_slot(parse_uuid(clinician_id, "clinician_id"), from_date)


@router.get("/clinicians/{clinician_id}/slots/check", response_model=SlotCheck)
async def check_slot_availability(
    clinician_id: str,
    day: date = Query(alias="date"),
    start: time = Query(alias="time"),
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.check_slot_availability(parse_uuid(clinician_id, "clinician_id"), day, start)


@router.get("/clinicians/{clinician_id}/slots/alternatives", response_model=AlternativeSlots)
async def find_alternative_slots(
    clinician_id: str,
    day: date = Query(alias="date"),
    start: time = Query(alias="time"),
    search_radius: Optional[int] = Query(default=None, ge=0, le=60),
    max_results: Optional[int] = Query(default=None, ge=1, le=100),
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.find_alternative_slots(
        parse_uuid(clinician_id, "clinician_id"), day, start, search_radius, max_results
    )


@router.get("/clinicians/{clinician_id}/slots/weekly-summary", response_model=WeeklySummary)
async def get_weekly_summary(
    clinician_id: str,
    week_start: date,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_weekly_summary(parse_uuid(clinician_id, "clinician_id"), week_start)


class MultiAvailabilityIn(BaseModel):
    clinician_ids: list[uuid.UUID] = Field(min_length=1)
    start_date: date
    end_date: date


class BulkCheckIn(BaseModel):
    queries: list[SlotQuery] = Field(min_length=1)


@router.post("/slots/availability/multi", response_model=list[ClinicianSlots])
async def get_multi_clinician_availability(
    body: MultiAvailabilityIn,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_multi_clinician_availability(body.clinician_ids, body.start_date, body.end_date)


@router.post("/slots/availability/bulk-check", response_model=list[SlotQueryResult])
async def bulk_check_availability(
    body: BulkCheckIn,
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.bulk_check_availability(body.queries)


@router.get("/clinicians/{clinician_id}/slots/peak-times", response_model=PeakAvailability)
async def get_peak_availability_times(
    clinician_id: str,
    start_date: date,
    end_date: date,
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    inventory: SlotInventory = Depends(get_inventory),
):
    return await inventory.get_peak_availability_times(
        parse_uuid(clinician_id, "clinician_id"), start_date, end_date, limit
    )
