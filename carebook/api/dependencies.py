"""FastAPI dependencies resolving the scheduling services wired on app.state."""

import uuid

from fastapi import HTTPException, Request

from carebook.core.database import SessionFactory
from carebook.scheduling.booking import BookingCoordinator
from carebook.scheduling.exceptions import ClinicianExceptionService
from carebook.scheduling.inventory import SlotInventory
from carebook.scheduling.maintenance import MaintenanceScheduler
from carebook.scheduling.requests import RescheduleRequestService
from carebook.scheduling.templates import AvailabilityTemplateStore


def parse_uuid(value: str, field: str = "id") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {value}")


def get_session_factory(request: Request) -> SessionFactory:
    return request.app.state.session_factory


def get_template_store(request: Request) -> AvailabilityTemplateStore:
    return request.app.state.template_store


def get_inventory(request: Request) -> SlotInventory:
    return request.app.state.inventory


def get_coordinator(request: Request) -> BookingCoordinator:
    return request.app.state.coordinator


def get_maintenance(request: Request) -> MaintenanceScheduler:
    return request.app.state.maintenance


def get_request_service(request: Request) -> RescheduleRequestService:
    return request.app.state.reschedule_requests


def get_exception_service(request: Request) -> ClinicianExceptionService:
    return request.app.state.exceptions
