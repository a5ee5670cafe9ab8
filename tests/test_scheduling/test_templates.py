"""Tests for availability template validation and storage."""

import uuid
from datetime import time

import pytest

from carebook.scheduling.errors import NotFoundError, ValidationError
from carebook.scheduling.models import BreakWindow, TemplateInput
from carebook.scheduling.templates import validate_template

from tests.conftest import create_clinician


def _brk(start, end, reason="Break"):
    return BreakWindow(start=start, end=end, reason=reason)


class TestValidateTemplate:
    def test_valid_template(self):
        result = validate_template(time(9), time(17), [_brk(time(12), time(13), "Lunch")], 30, 0, 0)
        assert result.is_valid
        assert result.errors == []

    def test_start_after_end(self):
        result = validate_template(time(17), time(9))
        assert not result.is_valid
        assert "Start time must be before end time" in result.errors

    def test_slot_longer_than_working_window(self):
        result = validate_template(time(9), time(10), slot_duration=90)
        assert not result.is_valid
        assert result.errors == ["Slot duration must fit within working hours"]

    def test_slot_filling_the_whole_window(self):
        assert validate_template(time(9), time(10), slot_duration=60).is_valid

    def test_break_outside_working_hours(self):
        result = validate_template(time(9), time(17), [_brk(time(17), time(18), "Late")])
        assert result.errors == ['Break "Late": must be within working hours']

    def test_break_start_after_end(self):
        result = validate_template(time(9), time(17), [_brk(time(13), time(12), "Lunch")])
        assert 'Break "Lunch": start time must be before end time' in result.errors

    def test_overlapping_breaks(self):
        result = validate_template(
            time(9),
            time(17),
            [_brk(time(12), time(13), "Lunch"), _brk(time(12, 30), time(13, 30), "Call")],
        )
        assert result.errors == ['Breaks "Lunch" and "Call" overlap']

    def test_adjacent_breaks_do_not_overlap(self):
        result = validate_template(
            time(9),
            time(17),
            [_brk(time(12), time(13), "Lunch"), _brk(time(13), time(13, 30), "Admin")],
        )
        assert result.is_valid

    def test_reports_every_violation(self):
        result = validate_template(
            time(9),
            time(17),
            [
                _brk(time(8), time(9, 30), "Early"),
                _brk(time(9, 0), time(10), "Overlap"),
                _brk(time(16), time(15), "Backwards"),
            ],
            slot_duration=0,
            buffer_time=-5,
            weekday=7,
        )
        assert not result.is_valid
        assert len(result.errors) == 6
        assert "Weekday must be between 0 (Monday) and 6 (Sunday)" in result.errors
        assert "Slot duration must be positive" in result.errors
        assert "Buffer time cannot be negative" in result.errors
        assert 'Break "Early": must be within working hours' in result.errors
        assert 'Break "Backwards": start time must be before end time' in result.errors
        assert 'Breaks "Early" and "Overlap" overlap' in result.errors


class TestAvailabilityTemplateStore:
    @pytest.mark.asyncio
    async def test_set_and_get_template(self, template_store, clinician_id, lunch_break):
        template_id = await template_store.set_template(
            clinician_id, 0, time(9), time(17), 30, buffer_time=5, breaks=[lunch_break]
        )

        template = await template_store.get_template(clinician_id, 0)
        assert template.id == template_id
        assert template.work_start == time(9)
        assert template.buffer_time == 5
        assert template.breaks == [lunch_break]

    @pytest.mark.asyncio
    async def test_set_template_upserts(self, template_store, clinician_id):
        first = await template_store.set_template(clinician_id, 2, time(9), time(17), 30)
        second = await template_store.set_template(clinician_id, 2, time(8), time(12), 20)

        assert first == second
        templates = await template_store.list_templates(clinician_id)
        assert len(templates) == 1
        assert templates[0].work_start == time(8)
        assert templates[0].slot_duration == 20

    @pytest.mark.asyncio
    async def test_invalid_template_raises_with_all_errors(self, template_store, clinician_id):
        with pytest.raises(ValidationError) as exc_info:
            await template_store.set_template(
                clinician_id, 0, time(17), time(9), 30, breaks=[_brk(time(18), time(19), "Gym")]
            )

        assert len(exc_info.value.errors) == 2
        assert await template_store.get_template(clinician_id, 0) is None

    @pytest.mark.asyncio
    async def test_unknown_clinician(self, template_store):
        with pytest.raises(NotFoundError):
            await template_store.set_template(uuid.uuid4(), 0, time(9), time(17), 30)

    @pytest.mark.asyncio
    async def test_weekly_template_stores_valid_days(self, template_store, clinician_id):
        entries = [
            TemplateInput(weekday=d, work_start=time(9), work_end=time(17), slot_duration=30)
            for d in range(7)
        ]
        entries[3] = TemplateInput(
            weekday=3,
            work_start=time(9),
            work_end=time(17),
            slot_duration=30,
            breaks=[_brk(time(17, 30), time(18), "After hours")],
        )

        report = await template_store.set_weekly_template(clinician_id, entries)

        assert report.is_partial
        assert len(report.failed) == 1
        assert report.failed[0].weekday == 3
        assert report.failed[0].errors == ['Break "After hours": must be within working hours']

        stored = await template_store.list_templates(clinician_id)
        assert [t.weekday for t in stored] == [0, 1, 2, 4, 5, 6]

    @pytest.mark.asyncio
    async def test_delete_template(self, template_store, clinician_id):
        await template_store.set_template(clinician_id, 1, time(9), time(17), 30)

        assert await template_store.delete_template(clinician_id, 1) is True
        assert await template_store.delete_template(clinician_id, 1) is False
        assert await template_store.get_template(clinician_id, 1) is None

    @pytest.mark.asyncio
    async def test_list_active_only(self, template_store, clinician_id):
        await template_store.set_template(clinician_id, 0, time(9), time(17), 30)
        await template_store.set_template(clinician_id, 1, time(9), time(17), 30, is_active=False)

        assert len(await template_store.list_templates(clinician_id)) == 2
        active = await template_store.list_templates(clinician_id, active_only=True)
        assert [t.weekday for t in active] == [0]

    @pytest.mark.asyncio
    async def test_template_summary(self, template_store, clinician_id, lunch_break):
        await template_store.set_template(clinician_id, 4, time(9), time(13), 30)
        await template_store.set_template(
            clinician_id,
            0,
            time(9),
            time(17),
            30,
            breaks=[lunch_break, _brk(time(15), time(15, 15), "Coffee")],
        )

        summary = await template_store.get_template_summary(clinician_id)

        assert [s.day_name for s in summary] == ["Monday", "Friday"]
        assert summary[0].break_count == 2
        assert summary[0].total_break_minutes == 75
        assert summary[1].break_count == 0

    @pytest.mark.asyncio
    async def test_clinicians_with_templates(self, template_store, session_factory, clinician_id):
        inactive = await create_clinician(session_factory, "Old", "Timer", active=False)
        await template_store.set_template(clinician_id, 0, time(9), time(17), 30)
        await template_store.set_template(inactive, 0, time(9), time(17), 30)

        result = await template_store.list_clinicians_with_templates()

        assert [c.clinician_id for c in result] == [clinician_id]
        assert result[0].clinician_name == "Sarah Chen"
        assert len(result[0].templates) == 1
