"""Slot inventory: generation into the store and availability queries."""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from carebook.config import get_settings
from carebook.core.database import SessionFactory
from carebook.core.repository import (
    ClinicianRepository,
    ExceptionRepository,
    SlotRepository,
    TemplateRepository,
    exception_to_model,
    slot_to_model,
    template_to_model,
)
from carebook.scheduling.errors import NotFoundError, ValidationError
from carebook.scheduling.exceptions import find_covering
from carebook.scheduling.generator import SlotGenerator, iter_dates
from carebook.scheduling.models import (
    DAY_NAMES,
    AlternativeSlot,
    AlternativeSlots,
    ClinicianSlots,
    DateRange,
    DaySummary,
    GenerationResult,
    PeakAvailability,
    PeakTime,
    Slot,
    SlotCheck,
    SlotQuery,
    SlotQueryResult,
    SlotStats,
    SlotStatus,
    WeeklySummary,
)

logger = logging.getLogger(__name__)


def build_slot_stats(counts: dict[str, int]) -> SlotStats:
    """Fold per-status counts into ``SlotStats``.

    Utilization is booked over bookable (non-break) slots, as a percentage.
    """
    available = counts.get(SlotStatus.AVAILABLE.value, 0)
    booked = counts.get(SlotStatus.BOOKED.value, 0)
    blocked = counts.get(SlotStatus.BLOCKED.value, 0)
    break_slots = counts.get(SlotStatus.BREAK.value, 0)
    total = available + booked + blocked + break_slots
    bookable = total - break_slots
    return SlotStats(
        total=total,
        available=available,
        booked=booked,
        blocked=blocked,
        break_slots=break_slots,
        utilization_rate=round(booked / bookable * 100, 2) if bookable else 0.0,
    )


def _count_statuses(slots: list[Slot]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for slot in slots:
        counts[slot.status.value] = counts.get(slot.status.value, 0) + 1
    return counts


class SlotInventory:
    """Materializes template slots and answers availability questions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        generator: Optional[SlotGenerator] = None,
        today: Callable[[], date] = date.today,
    ):
        self._session_factory = session_factory
        self._generator = generator or SlotGenerator()
        self._today = today

    async def generate_slots(
        self, clinician_id: uuid.UUID, start_date: date, end_date: date
    ) -> GenerationResult:
        """Generate and store slots for every unpopulated date in the range.

        Dates that already hold any slot are left alone, so calling this
        repeatedly for the same range never duplicates slots.

        Raises:
            NotFoundError: the clinician has no active template
        """
        if start_date > end_date:
            raise ValidationError(["Start date must not be after end date"])

        async with self._session_factory() as session, session.begin():
            rows = await TemplateRepository(session).list_by_clinician(clinician_id, active_only=True)
            if not rows:
                raise NotFoundError(
                    "template",
                    clinician_id,
                    f"No active availability template for clinician {clinician_id}",
                )
            templates = [template_to_model(r) for r in rows]

            slot_repo = SlotRepository(session)
            populated = await slot_repo.dates_with_slots(clinician_id, start_date, end_date)
            slots = self._generator.generate(templates, start_date, end_date, skip_dates=populated)

            exception_repo = ExceptionRepository(session)
            exceptions = [
                exception_to_model(r)
                for r in await exception_repo.list_touching(clinician_id, start_date, end_date)
            ]
            covered: dict[uuid.UUID, list[int]] = {}
            for i, slot in enumerate(slots):
                if slot.status != SlotStatus.AVAILABLE:
                    continue
                exception = find_covering(exceptions, slot.date, slot.start_time, slot.end_time)
                if exception is not None:
                    slots[i] = slot.model_copy(
                        update={"status": SlotStatus.BLOCKED, "blocked_reason": exception.reason}
                    )
                    covered.setdefault(exception.id, []).append(i)

            created = await slot_repo.add_many(slots) if slots else []
            for exception_id, indexes in covered.items():
                await exception_repo.add_affected_slots(
                    await exception_repo.get_by_id(exception_id), [created[i].id for i in indexes]
                )
            slot_ids = [row.id for row in created]

        logger.info(
            f"Generated {len(slot_ids)} slots for clinician {clinician_id} "
            f"({start_date} to {end_date})"
        )
        return GenerationResult(
            generated_count=len(slot_ids),
            date_range=DateRange(start_date=start_date, end_date=end_date),
            slot_ids=slot_ids,
        )

    async def get_available_slots(self, clinician_id: uuid.UUID, day: date) -> list[Slot]:
        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_for_day(clinician_id, day, SlotStatus.AVAILABLE)
            return [slot_to_model(r) for r in rows]

    async def get_available_slots_in_range(
        self, clinician_id: uuid.UUID, start_date: date, end_date: date
    ) -> dict[date, list[Slot]]:
        """Available slots grouped by date; dates without any are omitted."""
        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_in_range(
                clinician_id, start_date, end_date, SlotStatus.AVAILABLE
            )
        grouped: dict[date, list[Slot]] = {}
        for row in rows:
            slot = slot_to_model(row)
            grouped.setdefault(slot.date, []).append(slot)
        return grouped

    async def get_day_slots(self, clinician_id: uuid.UUID, day: date) -> list[Slot]:
        """Every slot of the day regardless of status, by start time."""
        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_for_day(clinician_id, day)
            return [slot_to_model(r) for r in rows]

    async def get_slot_stats(
        self,
        clinician_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> SlotStats:
        async with self._session_factory() as session:
            counts = await SlotRepository(session).count_by_status(clinician_id, start_date, end_date)
        return build_slot_stats(counts)

    async def get_next_available_slot(
        self, clinician_id: uuid.UUID, from_date: Optional[date] = None
    ) -> Optional[Slot]:
        from_date = from_date or self._today()
        async with self._session_factory() as session:
            row = await SlotRepository(session).first_available_from(clinician_id, from_date)
            return slot_to_model(row) if row else None

    async def check_slot_availability(
        self, clinician_id: uuid.UUID, day: date, start: time
    ) -> SlotCheck:
        async with self._session_factory() as session:
            row = await SlotRepository(session).get_at(clinician_id, day, start)
        if row is None:
            return SlotCheck(is_available=False, reason="No slot exists for this time")
        slot = slot_to_model(row)
        if slot.status != SlotStatus.AVAILABLE:
            return SlotCheck(is_available=False, reason=f"Slot is {slot.status.value}", slot=slot)
        return SlotCheck(is_available=True, slot=slot)

    async def find_alternative_slots(
        self,
        clinician_id: uuid.UUID,
        preferred_date: date,
        preferred_time: time,
        search_radius_days: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> AlternativeSlots:
        """Available slots near a preferred time, closest first.

        Each candidate scores ``max(0, 100 - days_difference * 10)``.
        """
        settings = get_settings()
        radius = settings.alternative_search_radius_days if search_radius_days is None else search_radius_days
        limit = settings.alternative_max_results if max_results is None else max_results
        preferred_at = datetime.combine(preferred_date, preferred_time)

        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_in_range(
                clinician_id,
                preferred_date - timedelta(days=radius),
                preferred_date + timedelta(days=radius),
                SlotStatus.AVAILABLE,
            )

        candidates = []
        for row in rows:
            slot = slot_to_model(row)
            days_diff = abs((slot.starts_at - preferred_at).total_seconds()) / 86400
            candidates.append(
                AlternativeSlot(
                    **slot.model_dump(),
                    score=max(0.0, 100 - days_diff * 10),
                    days_difference=round(days_diff, 4),
                    is_preferred_date=slot.date == preferred_date,
                    is_preferred_time=slot.start_time == preferred_time,
                )
            )
        candidates.sort(key=lambda c: (-c.score, c.date, c.start_time))

        return AlternativeSlots(
            preferred_at=preferred_at,
            alternatives=candidates[:limit],
            search_radius=radius,
            total_found=len(candidates),
        )

    async def get_weekly_summary(self, clinician_id: uuid.UUID, week_start: date) -> WeeklySummary:
        week_end = week_start + timedelta(days=6)
        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_in_range(clinician_id, week_start, week_end)
        slots = [slot_to_model(r) for r in rows]

        days = []
        for day in iter_dates(week_start, week_end):
            stats = build_slot_stats(_count_statuses([s for s in slots if s.date == day]))
            days.append(
                DaySummary(
                    date=day,
                    day_name=DAY_NAMES[day.weekday()],
                    total=stats.total,
                    available=stats.available,
                    booked=stats.booked,
                    blocked=stats.blocked,
                    utilization_rate=stats.utilization_rate,
                )
            )

        return WeeklySummary(
            clinician_id=clinician_id,
            week_start=week_start,
            days=days,
            week_total=build_slot_stats(_count_statuses(slots)),
        )

    async def get_multi_clinician_availability(
        self, clinician_ids: list[uuid.UUID], start_date: date, end_date: date
    ) -> list[ClinicianSlots]:
        """Available slots for several clinicians, grouped per clinician and date."""
        if start_date > end_date:
            raise ValidationError(["Start date must not be after end date"])

        results = []
        async with self._session_factory() as session:
            slots_repo = SlotRepository(session)
            clinicians = ClinicianRepository(session)
            for clinician_id in clinician_ids:
                clinician = await clinicians.get_by_id(clinician_id)
                rows = await slots_repo.list_in_range(clinician_id, start_date, end_date, SlotStatus.AVAILABLE)
                by_date: dict[date, list[Slot]] = {}
                for row in rows:
                    slot = slot_to_model(row)
                    by_date.setdefault(slot.date, []).append(slot)
                results.append(
                    ClinicianSlots(
                        clinician_id=clinician_id,
                        clinician_name=clinician.full_name if clinician else None,
                        total_slots=len(rows),
                        slots_by_date=by_date,
                    )
                )
        return results

    async def bulk_check_availability(self, queries: list[SlotQuery]) -> list[SlotQueryResult]:
        """Check many (clinician, date, start time) triples in one session."""
        results = []
        async with self._session_factory() as session:
            slots_repo = SlotRepository(session)
            for query in queries:
                row = await slots_repo.get_at(query.clinician_id, query.date, query.start_time)
                results.append(
                    SlotQueryResult(
                        **query.model_dump(),
                        is_available=row is not None and row.status == SlotStatus.AVAILABLE.value,
                        status=row.status if row is not None else "not_found",
                        slot_id=row.id if row is not None else None,
                    )
                )
        return results

    async def get_peak_availability_times(
        self,
        clinician_id: uuid.UUID,
        start_date: date,
        end_date: date,
        limit: Optional[int] = None,
    ) -> PeakAvailability:
        """Start times with the most available slots across the range.

        Ties keep the earlier start time first.
        """
        if start_date > end_date:
            raise ValidationError(["Start date must not be after end date"])
        limit = get_settings().peak_times_limit if limit is None else limit

        async with self._session_factory() as session:
            rows = await SlotRepository(session).list_in_range(
                clinician_id, start_date, end_date, SlotStatus.AVAILABLE
            )

        by_time: dict[time, list[date]] = {}
        for row in rows:
            by_time.setdefault(row.start_time, []).append(row.slot_date)
        peaks = sorted(
            (PeakTime(start_time=t, count=len(dates), dates=dates) for t, dates in by_time.items()),
            key=lambda p: (-p.count, p.start_time),
        )
        return PeakAvailability(
            peak_times=peaks[:limit],
            total_slots=len(rows),
            date_range=DateRange(start_date=start_date, end_date=end_date),
        )
