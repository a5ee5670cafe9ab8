"""Maintenance jobs that keep the slot inventory consistent.

These are idempotent batch entry points invoked by an external periodic
trigger (see ``carebook.cli``); nothing here schedules itself.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import InterfaceError, OperationalError

from carebook.config import get_settings
from carebook.core.database import SessionFactory
from carebook.core.repository import (
    AppointmentRepository,
    ClinicianRepository,
    SlotRepository,
    TemplateRepository,
    template_to_model,
)
from carebook.observability.logger import SchedulingEventLogger, get_event_logger
from carebook.scheduling.errors import TransientError, ValidationError
from carebook.scheduling.generator import SlotGenerator
from carebook.scheduling.inventory import SlotInventory, build_slot_stats
from carebook.scheduling.models import (
    BackfillResult,
    BatchReport,
    CleanupResult,
    ClinicianGenerationResult,
    DateRange,
    MaintenanceStats,
    OptimizationReport,
)
from carebook.scheduling.optimizer import SlotOptimizer

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (OperationalError, InterfaceError)


class MaintenanceScheduler:
    """Batch generation, cleanup, backfill and fragmentation analysis."""

    def __init__(
        self,
        session_factory: SessionFactory,
        inventory: Optional[SlotInventory] = None,
        optimizer: Optional[SlotOptimizer] = None,
        events: Optional[SchedulingEventLogger] = None,
        item_timeout: Optional[float] = None,
        today: Callable[[], date] = date.today,
    ):
        """Initialize the scheduler.

        Args:
            session_factory: Async session factory for the scheduling store
            inventory: Slot inventory used for generation and day queries
            optimizer: Fragmentation analyzer
            events: Event logger receiving one record per job run
            item_timeout: Per-clinician timeout in seconds for batch generation
            today: Clock for "today" (injectable for tests)
        """
        settings = get_settings()
        self._session_factory = session_factory
        self._today = today
        self._inventory = inventory or SlotInventory(session_factory, today=today)
        self._optimizer = optimizer or SlotOptimizer()
        self._generator = SlotGenerator()
        self._events = events or get_event_logger()
        self._item_timeout = item_timeout or settings.maintenance_item_timeout_seconds

    async def _active_clinicians(self) -> list[tuple[uuid.UUID, str]]:
        try:
            async with self._session_factory() as session:
                clinicians = await ClinicianRepository(session).list_active()
                return [(c.id, c.full_name) for c in clinicians]
        except STORAGE_ERRORS as e:
            raise TransientError(f"Storage unavailable while listing clinicians: {e}") from e

    async def generate_for_all_clinicians(self, days_ahead: Optional[int] = None) -> BatchReport:
        """Generate slots for ``[today, today + days_ahead]`` for every active clinician.

        One clinician failing or timing out is recorded in the report and the
        batch moves on; results already produced are kept.
        """
        if days_ahead is None:
            days_ahead = get_settings().default_days_ahead
        if days_ahead < 0:
            raise ValidationError(["days_ahead cannot be negative"])

        start_date = self._today()
        end_date = start_date + timedelta(days=days_ahead)

        with self._events.maintenance_job("generate_all") as event:
            clinicians = await self._active_clinicians()
            report = BatchReport(
                total_clinicians=len(clinicians),
                date_range=DateRange(start_date=start_date, end_date=end_date),
            )

            for clinician_id, name in clinicians:
                try:
                    result = await asyncio.wait_for(
                        self._inventory.generate_slots(clinician_id, start_date, end_date),
                        timeout=self._item_timeout,
                    )
                    report.results.append(
                        ClinicianGenerationResult(
                            clinician_id=clinician_id,
                            clinician_name=name,
                            generated_count=result.generated_count,
                            slot_ids=result.slot_ids,
                        )
                    )
                except asyncio.TimeoutError:
                    logger.error(f"Slot generation for {name} ({clinician_id}) timed out")
                    report.results.append(
                        ClinicianGenerationResult(
                            clinician_id=clinician_id,
                            clinician_name=name,
                            error=f"Timed out after {self._item_timeout}s",
                        )
                    )
                except Exception as e:
                    logger.error(
                        f"Slot generation for {name} ({clinician_id}) failed: {e}", exc_info=True
                    )
                    report.results.append(
                        ClinicianGenerationResult(clinician_id=clinician_id, clinician_name=name, error=str(e))
                    )

            event.items_processed = len(report.results)
            event.items_failed = len(report.failed)
            event.slots_generated = report.total_generated

        logger.info(
            f"Batch generation: {report.total_generated} slots for "
            f"{report.total_clinicians} clinician(s), {len(report.failed)} failed"
        )
        return report

    async def cleanup_old_slots(self, older_than_days: Optional[int] = None) -> CleanupResult:
        """Delete every slot dated strictly before ``today - older_than_days``.

        Appointments that pointed at a deleted slot keep their row with the
        slot reference cleared.
        """
        if older_than_days is None:
            older_than_days = get_settings().slot_retention_days
        if older_than_days < 0:
            raise ValidationError(["older_than_days cannot be negative"])

        cutoff = self._today() - timedelta(days=older_than_days)

        with self._events.maintenance_job("cleanup") as event:
            try:
                async with self._session_factory() as session, session.begin():
                    deleted, slot_ids = await SlotRepository(session).delete_before(cutoff)
                    await AppointmentRepository(session).detach_slots(slot_ids)
            except STORAGE_ERRORS as e:
                raise TransientError(f"Storage unavailable during cleanup: {e}") from e
            event.slots_deleted = deleted

        logger.info(f"Cleaned up {deleted} slot(s) dated before {cutoff}")
        return CleanupResult(deleted_count=deleted, cutoff_date=cutoff)

    async def generate_missing_slots(
        self, clinician_id: uuid.UUID, start_date: date, end_date: date
    ) -> BackfillResult:
        """Backfill dates that have an active template but no slots."""
        if start_date > end_date:
            raise ValidationError(["Start date must not be after end date"])

        date_range = DateRange(start_date=start_date, end_date=end_date)
        with self._events.maintenance_job("backfill", clinician_id=clinician_id) as event:
            try:
                async with self._session_factory() as session:
                    rows = await TemplateRepository(session).list_by_clinician(clinician_id, active_only=True)
                    templates = [template_to_model(r) for r in rows]
                    populated = await SlotRepository(session).dates_with_slots(
                        clinician_id, start_date, end_date
                    )
                missing = self._generator.dates_needing_slots(templates, start_date, end_date, populated)
                if not missing:
                    return BackfillResult(date_range=date_range)

                result = await self._inventory.generate_slots(clinician_id, start_date, end_date)
            except STORAGE_ERRORS as e:
                raise TransientError(f"Storage unavailable during backfill: {e}") from e

            event.items_processed = len(missing)
            event.slots_generated = result.generated_count

        logger.info(
            f"Backfilled {result.generated_count} slot(s) over {len(missing)} date(s) "
            f"for clinician {clinician_id}"
        )
        return BackfillResult(
            missing_dates=missing,
            total_generated=result.generated_count,
            date_range=date_range,
        )

    async def optimize_doctor_slots(self, clinician_id: uuid.UUID, day: date) -> OptimizationReport:
        """Advisory fragmentation report for one day; read-only."""
        slots = await self._inventory.get_day_slots(clinician_id, day)
        return self._optimizer.analyze(clinician_id, day, slots)

    async def get_maintenance_stats(self, days_back: int = 30) -> MaintenanceStats:
        today = self._today()
        start_date = today - timedelta(days=days_back)

        async with self._session_factory() as session:
            counts = await SlotRepository(session).count_by_status(start_date=start_date)
            active = await ClinicianRepository(session).count_active()
            appointment_counts = await AppointmentRepository(session).count_by_status_since(
                datetime.combine(start_date, datetime.min.time())
            )

        slot_stats = build_slot_stats(counts)
        return MaintenanceStats(
            date_range=DateRange(start_date=start_date, end_date=today),
            slot_stats=slot_stats,
            active_clinicians=active,
            average_slots_per_clinician=round(slot_stats.total / active, 2) if active else 0.0,
            appointment_counts={"total": sum(appointment_counts.values()), **appointment_counts},
        )
