"""Scheduling core: templates, slot generation, booking and maintenance.

Services (``AvailabilityTemplateStore``, ``SlotInventory``,
``BookingCoordinator``, ``ClinicianExceptionService``,
``MaintenanceScheduler``, ``RescheduleRequestService``) live in their own modules
and are imported from there; this package exports the shared types.
"""

from carebook.scheduling.errors import (
    ConflictError,
    NotFoundError,
    PartialFailure,
    SchedulingError,
    TransientError,
    ValidationError,
)
from carebook.scheduling.generator import SlotGenerator, generate_day_slots
from carebook.scheduling.models import (
    Appointment,
    AppointmentPayload,
    AppointmentStatus,
    AvailabilityTemplate,
    BatchReport,
    BreakWindow,
    Slot,
    SlotStatus,
)

__all__ = [
    "Appointment",
    "AppointmentPayload",
    "AppointmentStatus",
    "AvailabilityTemplate",
    "BatchReport",
    "BreakWindow",
    "ConflictError",
    "NotFoundError",
    "PartialFailure",
    "SchedulingError",
    "Slot",
    "SlotGenerator",
    "SlotStatus",
    "TransientError",
    "ValidationError",
    "generate_day_slots",
]
