"""Clinician exceptions: vacation, sick days and other time off.

Creating an exception blocks the available slots it covers through the
booking coordinator; booked slots are left alone and reported so staff can
contact the patients. Slots generated later for a covered date are created
blocked by ``SlotInventory``. Deleting an exception restores the slots it
blocked that are still blocked.
"""

import calendar
import logging
import uuid
from datetime import date, time, timedelta
from typing import Callable, Iterator, Optional, Sequence

from carebook.config import get_settings
from carebook.core.database import SessionFactory
from carebook.core.repository import (
    ClinicianRepository,
    ExceptionRepository,
    SlotRepository,
    exception_to_model,
)
from carebook.observability.events import EventType
from carebook.scheduling.booking import BookingCoordinator
from carebook.scheduling.errors import NotFoundError, ValidationError
from carebook.scheduling.models import (
    ClinicianException,
    ExceptionCheck,
    ExceptionOccurrence,
    ExceptionRemoval,
    ExceptionResult,
    ExceptionStats,
    ExceptionType,
    RecurrenceFrequency,
    RecurringExceptions,
    RecurringPattern,
    SlotStatus,
    in_window,
)

logger = logging.getLogger(__name__)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year, month = day.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def occurrence_dates(exception: ClinicianException, until: date) -> Iterator[date]:
    """Dates the exception applies to, from its first date through *until*.

    Monthly recurrences on the 29th-31st fall on the last day of shorter months.
    """
    pattern = exception.recurring_pattern if exception.is_recurring else None
    if pattern is None:
        if exception.date <= until:
            yield exception.date
        return

    last = min(until, pattern.end_date) if pattern.end_date else until
    step = 0
    current = exception.date
    while current <= last:
        yield current
        step += pattern.interval
        if pattern.frequency == RecurrenceFrequency.WEEKLY:
            current = exception.date + timedelta(weeks=step)
        else:
            current = _add_months(exception.date, step)


def occurs_on(exception: ClinicianException, day: date) -> bool:
    if day < exception.date:
        return False
    return day in occurrence_dates(exception, day)


def covers(exception: ClinicianException, start_time: time, end_time: time) -> bool:
    """True when a slot ``[start_time, end_time]`` falls inside the exception window."""
    return exception.is_full_day or in_window(start_time, end_time, exception.start_time, exception.end_time)


def validate_exception(
    start_time: Optional[time],
    end_time: Optional[time],
    recurring_pattern: Optional[RecurringPattern] = None,
    day: Optional[date] = None,
) -> list[str]:
    errors: list[str] = []
    if (start_time is None) != (end_time is None):
        errors.append("Partial-day exceptions need both start and end time")
    elif start_time is not None and start_time >= end_time:
        errors.append("Start time must be before end time")
    if recurring_pattern is not None:
        if recurring_pattern.interval < 1:
            errors.append("Recurrence interval must be at least 1")
        if day is not None and recurring_pattern.end_date is not None and recurring_pattern.end_date < day:
            errors.append("Recurrence end date must not be before the exception date")
    return errors


class ClinicianExceptionService:
    """Record clinician time off and keep the slot inventory in step."""

    def __init__(
        self,
        session_factory: SessionFactory,
        coordinator: BookingCoordinator,
        today: Callable[[], date] = date.today,
    ):
        self._session_factory = session_factory
        self._coordinator = coordinator
        self._today = today

    def _horizon(self, lookahead_days: Optional[int] = None) -> date:
        days = get_settings().exception_lookahead_days if lookahead_days is None else lookahead_days
        return self._today() + timedelta(days=days)

    async def create_exception(
        self,
        clinician_id: uuid.UUID,
        day: date,
        exception_type: ExceptionType,
        reason: str,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        recurring_pattern: Optional[RecurringPattern] = None,
    ) -> ExceptionResult:
        """Record an exception and block the slots it covers.

        A recurring exception blocks every occurrence up to the lookahead
        horizon.

        Raises:
            ValidationError: the time window or recurrence is invalid
            NotFoundError: the clinician does not exist
        """
        errors = validate_exception(start_time, end_time, recurring_pattern, day)
        if errors:
            raise ValidationError(errors)

        async with self._session_factory() as session, session.begin():
            if await ClinicianRepository(session).get_by_id(clinician_id) is None:
                raise NotFoundError("clinician", clinician_id)

            repo = ExceptionRepository(session)
            row = await repo.create(
                clinician_id=clinician_id,
                exception_date=day,
                exception_type=exception_type.value,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
                is_recurring=recurring_pattern is not None,
                recurring_pattern=recurring_pattern.model_dump(mode="json") if recurring_pattern else None,
            )
            exception = exception_to_model(row)

            slots = SlotRepository(session)
            blocked: list[uuid.UUID] = []
            affected_appointments: list[uuid.UUID] = []
            for occurrence in occurrence_dates(exception, max(day, self._horizon())):
                blocked += await self._coordinator.block_window(
                    session, clinician_id, occurrence, start_time, end_time, reason
                )
                for slot in await slots.list_for_day(clinician_id, occurrence, SlotStatus.BOOKED):
                    if slot.appointment_id and covers(exception, slot.start_time, slot.end_time):
                        affected_appointments.append(slot.appointment_id)

            await repo.add_affected_slots(row, blocked)
            exception = exception_to_model(row)

        logger.info(
            f"{exception_type.value.capitalize()} exception for clinician {clinician_id} on {day}: "
            f"{len(blocked)} slot(s) blocked, {len(affected_appointments)} appointment(s) affected"
        )
        self._coordinator.announce(EventType.SLOTS_BLOCKED, clinician_id, blocked, reason)
        return ExceptionResult(
            exception=exception,
            affected_slots_count=len(blocked),
            affected_appointment_ids=affected_appointments,
        )

    async def get_exception(self, exception_id: uuid.UUID) -> ClinicianException:
        async with self._session_factory() as session:
            row = await ExceptionRepository(session).get_by_id(exception_id)
            if row is None:
                raise NotFoundError("exception", exception_id)
            return exception_to_model(row)

    async def list_exceptions(
        self,
        clinician_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        exception_type: Optional[ExceptionType] = None,
    ) -> list[ClinicianException]:
        async with self._session_factory() as session:
            rows = await ExceptionRepository(session).list_by_clinician(
                clinician_id, start_date, end_date, exception_type.value if exception_type else None
            )
            return [exception_to_model(r) for r in rows]

    async def update_reason(self, exception_id: uuid.UUID, reason: str) -> ClinicianException:
        """Change the description; moving the window means deleting and re-creating."""
        async with self._session_factory() as session, session.begin():
            row = await ExceptionRepository(session).get_by_id(exception_id)
            if row is None:
                raise NotFoundError("exception", exception_id)
            row.reason = reason
            await session.flush()
            return exception_to_model(row)

    async def delete_exception(self, exception_id: uuid.UUID) -> ExceptionRemoval:
        """Delete an exception and return its still-blocked slots to the pool."""
        async with self._session_factory() as session, session.begin():
            repo = ExceptionRepository(session)
            row = await repo.get_by_id(exception_id)
            if row is None:
                raise NotFoundError("exception", exception_id)
            exception = exception_to_model(row)
            restored = await self._coordinator.unblock_ids(session, exception.affected_slot_ids)
            await repo.delete(row)

        logger.info(f"Deleted exception {exception_id}; restored {len(restored)} slot(s)")
        self._coordinator.announce(EventType.SLOTS_UNBLOCKED, exception.clinician_id, restored)
        return ExceptionRemoval(exception_id=exception_id, restored_slots_count=len(restored))

    async def exceptions_on(self, clinician_id: uuid.UUID, day: date) -> list[ClinicianException]:
        """Exceptions dated *day* plus recurring ones with an occurrence on it."""
        async with self._session_factory() as session:
            rows = await ExceptionRepository(session).list_touching(clinician_id, day, day)
        return [e for e in map(exception_to_model, rows) if occurs_on(e, day)]

    async def check_availability(
        self, clinician_id: uuid.UUID, day: date, at: Optional[time] = None
    ) -> ExceptionCheck:
        """Whether an exception keeps the clinician away on *day* (at *at* when given).

        Without a time any exception on the day counts.
        """
        exceptions = await self.exceptions_on(clinician_id, day)
        if at is not None:
            exceptions = [e for e in exceptions if e.is_full_day or e.start_time <= at < e.end_time]
        return ExceptionCheck(is_available=not exceptions, exceptions=exceptions)

    async def get_recurring(
        self, clinician_id: uuid.UUID, lookahead_days: Optional[int] = None
    ) -> RecurringExceptions:
        """Recurring exceptions and their future occurrences after the first date."""
        until = self._horizon(lookahead_days)
        async with self._session_factory() as session:
            rows = await ExceptionRepository(session).list_recurring(clinician_id)
        exceptions = [exception_to_model(r) for r in rows]

        occurrences = [
            ExceptionOccurrence(
                exception_id=e.id,
                date=d,
                exception_type=e.exception_type,
                start_time=e.start_time,
                end_time=e.end_time,
                reason=e.reason,
            )
            for e in exceptions
            for d in occurrence_dates(e, until)
            if d != e.date
        ]
        occurrences.sort(key=lambda o: o.date)
        return RecurringExceptions(exceptions=exceptions, occurrences=occurrences)

    async def get_stats(self, clinician_id: uuid.UUID, start_date: date, end_date: date) -> ExceptionStats:
        exceptions = await self.list_exceptions(clinician_id, start_date, end_date)
        by_type = {t.value: 0 for t in ExceptionType}
        for e in exceptions:
            by_type[e.exception_type.value] += 1
        return ExceptionStats(
            total=len(exceptions),
            by_type=by_type,
            recurring=sum(1 for e in exceptions if e.is_recurring),
        )


def find_covering(
    exceptions: Sequence[ClinicianException], day: date, start_time: time, end_time: time
) -> Optional[ClinicianException]:
    """First exception whose occurrence on *day* covers the slot."""
    for exception in exceptions:
        if occurs_on(exception, day) and covers(exception, start_time, end_time):
            return exception
    return None
