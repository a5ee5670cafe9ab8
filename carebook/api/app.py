"""FastAPI application for Carebook."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carebook import __version__
from carebook.api.middleware import APIKeyMiddleware, RequestLoggingMiddleware
from carebook.api.routes import (
    bookings,
    exceptions,
    health,
    maintenance,
    reschedule_requests,
    slots,
    templates,
)
from carebook.config import get_settings
from carebook.core.database import SessionFactory, get_session_factory, init_db
from carebook.observability.logger import SchedulingEventLogger, get_event_logger
from carebook.scheduling.booking import BookingCoordinator
from carebook.scheduling.errors import (
    ConflictError,
    NotFoundError,
    PartialFailure,
    SchedulingError,
    TransientError,
    ValidationError,
)
from carebook.scheduling.exceptions import ClinicianExceptionService
from carebook.scheduling.inventory import SlotInventory
from carebook.scheduling.maintenance import MaintenanceScheduler
from carebook.scheduling.requests import RescheduleRequestService
from carebook.scheduling.templates import AvailabilityTemplateStore

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[SchedulingError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    PartialFailure: 207,
    TransientError: 503,
}


def wire_services(
    app: FastAPI,
    session_factory: SessionFactory,
    events: Optional[SchedulingEventLogger] = None,
) -> None:
    """Build the scheduling services over *session_factory* and store them in app state."""
    events = events or get_event_logger()
    inventory = SlotInventory(session_factory)
    coordinator = BookingCoordinator(session_factory, events=events)

    app.state.session_factory = session_factory
    app.state.template_store = AvailabilityTemplateStore(session_factory)
    app.state.inventory = inventory
    app.state.coordinator = coordinator
    app.state.maintenance = MaintenanceScheduler(session_factory, inventory=inventory, events=events)
    app.state.reschedule_requests = RescheduleRequestService(session_factory, coordinator)
    app.state.exceptions = ClinicianExceptionService(session_factory, coordinator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Carebook API")

    if getattr(app.state, "session_factory", None) is None:
        settings = get_settings()
        if settings.debug_mode:
            await init_db()
        wire_services(app, get_session_factory())

    logger.info("Carebook API started successfully")

    yield

    logger.info("Shutting down Carebook API")


def create_app(
    session_factory: Optional[SessionFactory] = None,
    events: Optional[SchedulingEventLogger] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing *session_factory* wires the services immediately (used by tests
    and embedding callers); otherwise the lifespan handler wires them from
    settings.
    """
    settings = get_settings()

    app = FastAPI(
        title="Carebook API",
        description="Clinician availability, slot inventory and booking",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    if settings.has_api_key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)

    if session_factory is not None:
        wire_services(app, session_factory, events)

    app.include_router(health.router, tags=["health"])
    app.include_router(templates.router, prefix="/api/v1", tags=["templates"])
    app.include_router(slots.router, prefix="/api/v1", tags=["slots"])
    app.include_router(bookings.router, prefix="/api/v1", tags=["bookings"])
    app.include_router(maintenance.router, prefix="/api/v1", tags=["maintenance"])
    app.include_router(reschedule_requests.router, prefix="/api/v1", tags=["reschedule-requests"])
    app.include_router(exceptions.router, prefix="/api/v1", tags=["exceptions"])

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
            400,
        )
        if isinstance(exc, PartialFailure):
            return JSONResponse(status_code=status_code, content=exc.report.model_dump(mode="json"))
        if status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
