"""Observability module for booking and maintenance events."""

from carebook.observability.events import (
    BookingEvent,
    EventType,
    MaintenanceEvent,
    SchedulingEvent,
)
from carebook.observability.logger import SchedulingEventLogger, get_event_logger

__all__ = [
    "BookingEvent",
    "EventType",
    "MaintenanceEvent",
    "SchedulingEvent",
    "SchedulingEventLogger",
    "get_event_logger",
]
