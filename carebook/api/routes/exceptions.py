"""Clinician exception (time off) endpoints."""

from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from carebook.api.dependencies import get_exception_service, parse_uuid
from carebook.scheduling.exceptions import ClinicianExceptionService
from carebook.scheduling.models import (
    ClinicianException,
    ExceptionCheck,
    ExceptionRemoval,
    ExceptionResult,
    ExceptionStats,
    ExceptionType,
    RecurringExceptions,
    RecurringPattern,
)

router = APIRouter()


class ExceptionIn(BaseModel):
    date: date
    exception_type: ExceptionType
    reason: str
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    recurring_pattern: Optional[RecurringPattern] = None


class ExceptionUpdateIn(BaseModel):
    reason: str


@router.post("/clinicians/{clinician_id}/exceptions", response_model=ExceptionResult, status_code=201)
async def create_exception(
    clinician_id: str,
    body: ExceptionIn,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.create_exception(
        parse_uuid(clinician_id, "clinician_id"),
        body.date,
        body.exception_type,
        body.reason,
        body.start_time,
        body.end_time,
        body.recurring_pattern,
    )


@router.get("/clinicians/{clinician_id}/exceptions", response_model=list[ClinicianException])
async def list_exceptions(
    clinician_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    exception_type: Optional[ExceptionType] = None,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.list_exceptions(
        parse_uuid(clinician_id, "clinician_id"), start_date, end_date, exception_type
    )


@router.get("/clinicians/{clinician_id}/exceptions/check", response_model=ExceptionCheck)
async def check_availability(
    clinician_id: str,
    day: date = Query(alias="date"),
    at: Optional[time] = Query(default=None, alias="time"),
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.check_availability(parse_uuid(clinician_id, "clinician_id"), day, at)


@router.get("/clinicians/{clinician_id}/exceptions/recurring", response_model=RecurringExceptions)
async def get_recurring(
    clinician_id: str,
    lookahead_days: Optional[int] = Query(default=None, ge=1, le=366),
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.get_recurring(parse_uuid(clinician_id, "clinician_id"), lookahead_days)


@router.get("/clinicians/{clinician_id}/exceptions/stats", response_model=ExceptionStats)
async def get_stats(
    clinician_id: str,
    start_date: date,
    end_date: date,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.get_stats(parse_uuid(clinician_id, "clinician_id"), start_date, end_date)


@router.get("/exceptions/{exception_id}", response_model=ClinicianException)
async def get_exception(
    exception_id: str,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.get_exception(parse_uuid(exception_id, "exception_id"))


@router.patch("/exceptions/{exception_id}", response_model=ClinicianException)
async def update_exception(
    exception_id: str,
    body: ExceptionUpdateIn,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.update_reason(parse_uuid(exception_id, "exception_id"), body.reason)


@router.delete("/exceptions/{exception_id}", response_model=ExceptionRemoval)
async def delete_exception(
    exception_id: str,
    service: ClinicianExceptionService = Depends(get_exception_service),
):
    return await service.delete_exception(parse_uuid(exception_id, "exception_id"))
