"""Structured events emitted by the booking path and maintenance jobs."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of scheduling events."""

    SLOT_RESERVED = "slot_reserved"
    SLOT_RELEASED = "slot_released"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    SLOTS_BLOCKED = "slots_blocked"
    SLOTS_UNBLOCKED = "slots_unblocked"
    MAINTENANCE_START = "maintenance_start"
    MAINTENANCE_SUCCESS = "maintenance_success"
    MAINTENANCE_ERROR = "maintenance_error"


class SchedulingEvent(BaseModel):
    """Base class for all scheduling events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BookingEvent(SchedulingEvent):
    """A committed change to slot occupancy.

    Downstream notification logic subscribes to these for confirmation and
    reminder messaging.
    """

    clinician_id: uuid.UUID
    slot_id: Optional[uuid.UUID] = None
    appointment_id: Optional[uuid.UUID] = None
    previous_slot_id: Optional[uuid.UUID] = None
    clinician_patient_id: Optional[str] = None
    reason: Optional[str] = None
    slot_ids: list[uuid.UUID] = Field(default_factory=list)


class MaintenanceEvent(SchedulingEvent):
    """A maintenance job run (batch generation, cleanup, backfill)."""

    job: str
    clinician_id: Optional[uuid.UUID] = None
    items_processed: int = 0
    items_failed: int = 0
    slots_generated: int = 0
    slots_deleted: int = 0

    # Error fields
    error_type: Optional[str] = None
    error_message: Optional[str] = None
