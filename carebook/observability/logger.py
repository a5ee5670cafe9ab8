"""Event logger for booking and maintenance telemetry."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from carebook.observability.events import (
    BookingEvent,
    EventType,
    MaintenanceEvent,
    SchedulingEvent,
)

logger = logging.getLogger(__name__)


class SchedulingEventLogger:
    """Central sink for scheduling events.

    Writes structured events to JSON Lines files and fans them out to
    subscriber callbacks. Subscriber failures are logged and never reach the
    operation that published the event.
    """

    _instance: Optional["SchedulingEventLogger"] = None

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
    ):
        """Initialize event logger.

        Args:
            log_dir: Directory for log files (default: data/events)
            enabled: Whether file output is enabled
        """
        self.enabled = enabled

        if log_dir is None:
            log_dir = Path("data/events")
        self.log_dir = log_dir
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "bookings": self.log_dir / "bookings.jsonl",
            "maintenance": self.log_dir / "maintenance.jsonl",
        }

        self._callbacks: list[Callable[[SchedulingEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "SchedulingEventLogger":
        """Get or create singleton instance."""
        if cls._instance is None:
            from carebook.config import get_settings

            settings = get_settings()
            cls._instance = cls(log_dir=settings.event_log_dir, enabled=settings.events_enabled)
        return cls._instance

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())[:8]

    def subscribe(self, callback: Callable[[SchedulingEvent], None]) -> None:
        """Register a callback invoked for every published event."""
        self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[SchedulingEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _write_event(self, event: SchedulingEvent, log_type: str) -> None:
        """Write event to the log file and notify subscribers."""
        if self.enabled:
            try:
                log_file = self._log_files.get(log_type)
                if log_file:
                    with open(log_file, "a") as f:
                        f.write(event.model_dump_json() + "\n")
            except OSError as e:
                logger.warning(f"Failed to write scheduling event: {e}")

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed: {e}")

    # Booking events

    def publish_booking(self, event: BookingEvent) -> None:
        """Publish a committed booking change."""
        if event.request_id is None:
            event.request_id = self.generate_request_id()
        self._write_event(event, "bookings")

    # Maintenance logging

    @contextmanager
    def maintenance_job(
        self,
        job: str,
        clinician_id: Optional[uuid.UUID] = None,
        request_id: Optional[str] = None,
    ):
        """Context manager for logging maintenance job runs.

        Usage:
            with events.maintenance_job("cleanup") as event:
                result = await ...
                event.slots_deleted = result.deleted_count
        """
        start_time = time.time()

        event = MaintenanceEvent(
            event_type=EventType.MAINTENANCE_START,
            job=job,
            clinician_id=clinician_id,
            request_id=request_id or self.generate_request_id(),
        )

        try:
            yield event
            event.event_type = EventType.MAINTENANCE_SUCCESS

        except Exception as e:
            event.event_type = EventType.MAINTENANCE_ERROR
            event.error_type = type(e).__name__
            event.error_message = str(e)[:200]
            raise

        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event, "maintenance")

    # Utility methods

    def get_recent_events(
        self,
        log_type: str,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self, log_type: str) -> dict[str, Any]:
        """Get basic statistics for a log type."""
        events = self.get_recent_events(log_type, limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        by_type: dict[str, int] = {}
        for e in events:
            by_type[e.get("event_type", "unknown")] = by_type.get(e.get("event_type", "unknown"), 0) + 1
        errors = sum(count for kind, count in by_type.items() if "error" in kind)

        return {
            "total": total,
            "errors": errors,
            "by_type": by_type,
        }


def get_event_logger() -> SchedulingEventLogger:
    """Get the global scheduling event logger instance."""
    return SchedulingEventLogger.get_instance()
