"""Booking endpoints: reserve, release, reschedule, block."""

import uuid
from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from carebook.api.dependencies import get_coordinator, parse_uuid
from carebook.scheduling.booking import BookingCoordinator
from carebook.scheduling.models import Appointment, AppointmentPayload, SlotBatchResult

router = APIRouter()


class ReleaseIn(BaseModel):
    reason: str


class RescheduleIn(BaseModel):
    new_slot_id: uuid.UUID
    reason: str


class BlockIn(BaseModel):
    date: date
    start: Optional[time] = None
    end: Optional[time] = None
    reason: str = "Blocked"


class UnblockIn(BaseModel):
    date: date
    start: Optional[time] = None
    end: Optional[time] = None


@router.post("/slots/{slot_id}/reserve", response_model=Appointment, status_code=201)
async def reserve_slot(
    slot_id: str,
    body: AppointmentPayload,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    """Book a slot. 409 means the slot exists but is no longer available."""
    return await coordinator.reserve_slot(parse_uuid(slot_id, "slot_id"), body)


@router.post("/slots/{slot_id}/release", response_model=Appointment)
async def release_slot(
    slot_id: str,
    body: ReleaseIn,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return await coordinator.release_slot(parse_uuid(slot_id, "slot_id"), body.reason)


@router.post("/appointments/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    appointment_id: str,
    body: RescheduleIn,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return await coordinator.reschedule_appointment(
        parse_uuid(appointment_id, "appointment_id"), body.new_slot_id, body.reason
    )


@router.get("/appointments/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_appointment(parse_uuid(appointment_id, "appointment_id"))


@router.post("/clinicians/{clinician_id}/slots/block", response_model=SlotBatchResult)
async def block_slots(
    clinician_id: str,
    body: BlockIn,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return await coordinator.block_slots(
        parse_uuid(clinician_id, "clinician_id"), body.date, body.start, body.end, body.reason
    )


@router.post("/clinicians/{clinician_id}/slots/unblock", response_model=SlotBatchResult)
async def unblock_slots(
    clinician_id: str,
    body: UnblockIn,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return await coordinator.unblock_slots(
        parse_uuid(clinician_id, "clinician_id"), body.date, body.start, body.end
    )
