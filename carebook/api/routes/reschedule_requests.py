"""Patient reschedule request endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from carebook.api.dependencies import get_request_service, parse_uuid
from carebook.scheduling.models import RescheduleRequest, RescheduleRequestStatus
from carebook.scheduling.requests import RescheduleRequestService

router = APIRouter()


class RescheduleRequestIn(BaseModel):
    appointment_id: uuid.UUID
    reason: str
    requested_slot_id: Optional[uuid.UUID] = None
    requested_datetime: Optional[datetime] = None


class ApproveIn(BaseModel):
    responded_by: str
    admin_notes: Optional[str] = None
    slot_id: Optional[uuid.UUID] = None


class RejectIn(BaseModel):
    responded_by: str
    admin_notes: Optional[str] = None


@router.post("/reschedule-requests", response_model=RescheduleRequest, status_code=201)
async def create_request(
    body: RescheduleRequestIn,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.create_request(
        body.appointment_id, body.reason, body.requested_slot_id, body.requested_datetime
    )


@router.get("/clinicians/{clinician_id}/reschedule-requests", response_model=list[RescheduleRequest])
async def list_for_clinician(
    clinician_id: str,
    status: Optional[RescheduleRequestStatus] = None,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.list_for_clinician(parse_uuid(clinician_id, "clinician_id"), status)


@router.get("/patients/{clinician_patient_id}/reschedule-requests", response_model=list[RescheduleRequest])
async def list_for_patient(
    clinician_patient_id: str,
    status: Optional[RescheduleRequestStatus] = None,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.list_for_patient(clinician_patient_id, status)


@router.post("/reschedule-requests/{request_id}/approve", response_model=RescheduleRequest)
async def approve_request(
    request_id: str,
    body: ApproveIn,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.approve_request(
        parse_uuid(request_id, "request_id"), body.responded_by, body.admin_notes, body.slot_id
    )


@router.post("/reschedule-requests/{request_id}/reject", response_model=RescheduleRequest)
async def reject_request(
    request_id: str,
    body: RejectIn,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.reject_request(parse_uuid(request_id, "request_id"), body.responded_by, body.admin_notes)


@router.post("/reschedule-requests/{request_id}/cancel", response_model=RescheduleRequest)
async def cancel_request(
    request_id: str,
    service: RescheduleRequestService = Depends(get_request_service),
):
    return await service.cancel_request(parse_uuid(request_id, "request_id"))
