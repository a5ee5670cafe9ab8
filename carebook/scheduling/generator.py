"""Slot generation from weekly availability templates."""

from datetime import date, timedelta
from typing import Iterable, Optional

from carebook.scheduling.models import (
    AvailabilityTemplate,
    Slot,
    SlotStatus,
    minutes_of,
    time_of,
)


def iter_dates(start_date: date, end_date: date) -> Iterable[date]:
    """Yield every calendar date in ``[start_date, end_date]``."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def generate_day_slots(template: AvailabilityTemplate, day: date) -> list[Slot]:
    """Generate all slots for one day of *template*.

    Walks ``[work_start, work_end)`` in steps of ``slot_duration + buffer_time``.
    A step whose interval overlaps a break window becomes a ``break`` slot; the
    walk does not jump over breaks, so the day's slot count depends only on
    the working window and step size. A trailing step that would end after
    ``work_end`` is dropped.
    """
    slots: list[Slot] = []
    if template.slot_duration <= 0:
        return slots
    current = minutes_of(template.work_start)
    end = minutes_of(template.work_end)
    step = template.slot_duration + template.buffer_time
    breaks = [(minutes_of(b.start), minutes_of(b.end)) for b in template.breaks]

    while current + template.slot_duration <= end:
        slot_end = current + template.slot_duration
        in_break = any(current < b_end and slot_end > b_start for b_start, b_end in breaks)
        slots.append(
            Slot(
                clinician_id=template.clinician_id,
                date=day,
                start_time=time_of(current),
                end_time=time_of(slot_end),
                status=SlotStatus.BREAK if in_break else SlotStatus.AVAILABLE,
            )
        )
        current += step
    return slots


class SlotGenerator:
    """Pure transformation from active templates and a date range to slots."""

    def generate(
        self,
        templates: Iterable[AvailabilityTemplate],
        start_date: date,
        end_date: date,
        skip_dates: Optional[set[date]] = None,
    ) -> list[Slot]:
        """Produce the slots to insert for ``[start_date, end_date]``.

        *skip_dates* are dates already holding slots; they yield nothing so
        repeated generation never duplicates a day.
        """
        by_weekday: dict[int, AvailabilityTemplate] = {
            t.weekday: t for t in templates if t.is_active
        }
        skip = skip_dates or set()

        slots: list[Slot] = []
        for day in iter_dates(start_date, end_date):
            if day in skip:
                continue
            template = by_weekday.get(day.weekday())
            if template is None:
                continue
            slots.extend(generate_day_slots(template, day))
        return slots

    def dates_needing_slots(
        self,
        templates: Iterable[AvailabilityTemplate],
        start_date: date,
        end_date: date,
        populated: set[date],
    ) -> list[date]:
        """Dates with an active template but no existing slots."""
        weekdays = {t.weekday for t in templates if t.is_active}
        return [
            day
            for day in iter_dates(start_date, end_date)
            if day.weekday() in weekdays and day not in populated
        ]

