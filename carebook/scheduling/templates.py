"""Availability template store.

One template per clinician per weekday. Every write is validated first and
the validator reports all violated rules, so a configuration screen can show
them together.
"""

import logging
import uuid
from datetime import time
from typing import Optional, Sequence

from carebook.core.database import SessionFactory
from carebook.core.repository import (
    ClinicianRepository,
    TemplateRepository,
    breaks_to_json,
    template_to_model,
)
from carebook.scheduling.errors import NotFoundError, ValidationError
from carebook.scheduling.models import (
    DAY_NAMES,
    AvailabilityTemplate,
    BreakWindow,
    ClinicianAvailability,
    TemplateInput,
    TemplateResult,
    TemplateSummary,
    TemplateValidation,
    WeeklyTemplateResult,
    minutes_of,
)

logger = logging.getLogger(__name__)


def validate_template(
    work_start: time,
    work_end: time,
    breaks: Sequence[BreakWindow] = (),
    slot_duration: Optional[int] = None,
    buffer_time: int = 0,
    weekday: Optional[int] = None,
) -> TemplateValidation:
    """Check a template against every rule and collect all violations."""
    errors: list[str] = []

    if weekday is not None and not 0 <= weekday <= 6:
        errors.append("Weekday must be between 0 (Monday) and 6 (Sunday)")

    if work_start >= work_end:
        errors.append("Start time must be before end time")

    if slot_duration is not None and slot_duration <= 0:
        errors.append("Slot duration must be positive")
    elif (
        slot_duration is not None
        and work_start < work_end
        and slot_duration > minutes_of(work_end) - minutes_of(work_start)
    ):
        errors.append("Slot duration must fit within working hours")

    if buffer_time < 0:
        errors.append("Buffer time cannot be negative")

    for b in breaks:
        if b.start >= b.end:
            errors.append(f'Break "{b.reason}": start time must be before end time')
        if b.start < work_start or b.end > work_end:
            errors.append(f'Break "{b.reason}": must be within working hours')

    for i, first in enumerate(breaks):
        for second in breaks[i + 1 :]:
            if first.start < second.end and second.start < first.end:
                errors.append(f'Breaks "{first.reason}" and "{second.reason}" overlap')

    return TemplateValidation(is_valid=not errors, errors=errors)


class AvailabilityTemplateStore:
    """Stores, validates and serves weekly availability templates."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def set_template(
        self,
        clinician_id: uuid.UUID,
        weekday: int,
        work_start: time,
        work_end: time,
        slot_duration: int,
        buffer_time: int = 0,
        breaks: Sequence[BreakWindow] = (),
        is_active: bool = True,
    ) -> uuid.UUID:
        """Upsert one weekday's template and return its id.

        Raises:
            ValidationError: with every violated rule when the input is invalid
            NotFoundError: when the clinician does not exist
        """
        breaks = list(breaks)
        validation = validate_template(
            work_start, work_end, breaks, slot_duration, buffer_time, weekday
        )
        if not validation.is_valid:
            raise ValidationError(validation.errors)

        async with self._session_factory() as session, session.begin():
            if await ClinicianRepository(session).get_by_id(clinician_id) is None:
                raise NotFoundError("clinician", clinician_id)
            row = await TemplateRepository(session).upsert(
                clinician_id,
                weekday,
                work_start=work_start,
                work_end=work_end,
                slot_duration=slot_duration,
                buffer_time=buffer_time,
                breaks=breaks_to_json(breaks),
                is_active=is_active,
            )
            template_id = row.id

        logger.info(f"Saved {DAY_NAMES[weekday]} template for clinician {clinician_id}")
        return template_id

    async def set_weekly_template(
        self, clinician_id: uuid.UUID, templates: Sequence[TemplateInput]
    ) -> WeeklyTemplateResult:
        """Apply several weekday templates, each in its own transaction.

        A weekday that fails validation is reported and the rest are still
        written.
        """
        report = WeeklyTemplateResult(clinician_id=clinician_id)
        for entry in templates:
            try:
                template_id = await self.set_template(
                    clinician_id,
                    entry.weekday,
                    entry.work_start,
                    entry.work_end,
                    entry.slot_duration,
                    entry.buffer_time,
                    entry.breaks,
                    entry.is_active,
                )
                report.results.append(TemplateResult(weekday=entry.weekday, template_id=template_id))
            except ValidationError as e:
                report.results.append(TemplateResult(weekday=entry.weekday, errors=e.errors))
            except NotFoundError as e:
                report.results.append(TemplateResult(weekday=entry.weekday, errors=[e.message]))

        if report.is_partial:
            logger.warning(
                f"Weekly template for clinician {clinician_id}: "
                f"{len(report.failed)} of {len(report.results)} weekday(s) rejected"
            )
        return report

    async def get_template(self, clinician_id: uuid.UUID, weekday: int) -> Optional[AvailabilityTemplate]:
        async with self._session_factory() as session:
            row = await TemplateRepository(session).get(clinician_id, weekday)
            return template_to_model(row) if row else None

    async def list_templates(
        self, clinician_id: uuid.UUID, active_only: bool = False
    ) -> list[AvailabilityTemplate]:
        async with self._session_factory() as session:
            rows = await TemplateRepository(session).list_by_clinician(clinician_id, active_only)
            return [template_to_model(r) for r in rows]

    async def delete_template(self, clinician_id: uuid.UUID, weekday: int) -> bool:
        """Remove a weekday's template; True when a row existed."""
        async with self._session_factory() as session, session.begin():
            deleted = await TemplateRepository(session).delete(clinician_id, weekday)
        if deleted:
            logger.info(f"Deleted {DAY_NAMES[weekday]} template for clinician {clinician_id}")
        return deleted

    async def get_template_summary(self, clinician_id: uuid.UUID) -> list[TemplateSummary]:
        templates = await self.list_templates(clinician_id, active_only=True)
        return [
            TemplateSummary(
                weekday=t.weekday,
                day_name=DAY_NAMES[t.weekday],
                work_start=t.work_start,
                work_end=t.work_end,
                slot_duration=t.slot_duration,
                buffer_time=t.buffer_time,
                break_count=len(t.breaks),
                total_break_minutes=sum(b.duration_minutes for b in t.breaks),
            )
            for t in templates
        ]

    async def list_clinicians_with_templates(self) -> list[ClinicianAvailability]:
        """All active clinicians with their active templates."""
        async with self._session_factory() as session:
            clinicians = await ClinicianRepository(session).list_active()
            templates = TemplateRepository(session)
            result = []
            for clinician in clinicians:
                rows = await templates.list_by_clinician(clinician.id, active_only=True)
                result.append(
                    ClinicianAvailability(
                        clinician_id=clinician.id,
                        clinician_name=clinician.full_name,
                        templates=[template_to_model(r) for r in rows],
                    )
                )
            return result
