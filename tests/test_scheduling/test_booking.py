"""Tests for the booking coordinator."""

import asyncio
import uuid
from datetime import datetime, time
from unittest.mock import AsyncMock, patch

import pytest

from carebook.core.repository import AppointmentRepository, SlotRepository
from carebook.scheduling.booking import APPOINTMENT_TRANSITIONS, BookingCoordinator, ensure_transition
from carebook.scheduling.errors import ConflictError, NotFoundError
from carebook.scheduling.models import AppointmentPayload, AppointmentStatus, AppointmentType, SlotStatus

from tests.conftest import MONDAY, create_clinician, set_weekday_templates


async def _slot_row(session_factory, slot_id):
    async with session_factory() as session:
        return await SlotRepository(session).get_by_id(slot_id)


async def _day(inventory, clinician_id, day=MONDAY):
    return await inventory.get_day_slots(clinician_id, day)


class TestTransitions:
    def test_every_status_has_an_entry(self):
        assert set(APPOINTMENT_TRANSITIONS) == set(AppointmentStatus)

    def test_terminal_statuses_have_no_exits(self):
        for status in AppointmentStatus:
            if status.is_terminal:
                assert APPOINTMENT_TRANSITIONS[status] == frozenset()

    def test_forward_chain(self):
        ensure_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
        ensure_transition(AppointmentStatus.CONFIRMED, AppointmentStatus.CHECKED_IN)
        ensure_transition(AppointmentStatus.CHECKED_IN, AppointmentStatus.IN_PROGRESS)
        ensure_transition(AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED)

    def test_no_show_from_any_active_status(self):
        for status in AppointmentStatus:
            if not status.is_terminal:
                ensure_transition(status, AppointmentStatus.NO_SHOW)

    def test_cancel_only_before_check_in(self):
        ensure_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED)
        ensure_transition(AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED)
        with pytest.raises(ConflictError):
            ensure_transition(AppointmentStatus.CHECKED_IN, AppointmentStatus.CANCELLED)

    def test_backwards_is_rejected(self):
        with pytest.raises(ConflictError):
            ensure_transition(AppointmentStatus.COMPLETED, AppointmentStatus.SCHEDULED)


class TestReserveSlot:
    @pytest.mark.asyncio
    async def test_reserve_creates_appointment(self, coordinator, inventory, session_factory, week_of_slots):
        slot = (await _day(inventory, week_of_slots))[2]
        payload = AppointmentPayload(
            clinician_patient_id="cp-42",
            appointment_type=AppointmentType.NEW_PATIENT,
            visit_reason="Knee pain",
        )

        appointment = await coordinator.reserve_slot(slot.id, payload)

        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.slot_id == slot.id
        assert appointment.clinician_id == week_of_slots
        assert appointment.scheduled_at == datetime(2026, 4, 6, 10, 0)
        assert appointment.duration_minutes == 30
        assert appointment.time_zone == "UTC"
        assert appointment.history[0]["action"] == "reserved"

        row = await _slot_row(session_factory, slot.id)
        assert row.status == SlotStatus.BOOKED.value
        assert row.appointment_id == appointment.id

    @pytest.mark.asyncio
    async def test_reserve_booked_slot_conflicts(self, coordinator, inventory, week_of_slots, payload):
        slot = (await _day(inventory, week_of_slots))[0]
        await coordinator.reserve_slot(slot.id, payload)

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.reserve_slot(slot.id, payload)

        assert exc_info.value.current_status == "booked"
        assert exc_info.value.slot_id == slot.id

    @pytest.mark.asyncio
    async def test_reserve_break_slot_conflicts(
        self, template_store, inventory, coordinator, clinician_id, lunch_break, payload
    ):
        await set_weekday_templates(template_store, clinician_id, weekdays=[0], breaks=[lunch_break])
        await inventory.generate_slots(clinician_id, MONDAY, MONDAY)
        lunch_slot = next(s for s in await _day(inventory, clinician_id) if s.status == SlotStatus.BREAK)

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.reserve_slot(lunch_slot.id, payload)
        assert exc_info.value.current_status == "break"

    @pytest.mark.asyncio
    async def test_reserve_blocked_slot_conflicts(self, coordinator, inventory, week_of_slots, payload):
        await coordinator.block_slots(week_of_slots, MONDAY, time(9), time(9, 30))
        slot = (await _day(inventory, week_of_slots))[0]

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.reserve_slot(slot.id, payload)
        assert exc_info.value.current_status == "blocked"

    @pytest.mark.asyncio
    async def test_reserve_missing_slot(self, coordinator, week_of_slots, payload):
        with pytest.raises(NotFoundError):
            await coordinator.reserve_slot(uuid.uuid4(), payload)

    @pytest.mark.asyncio
    async def test_concurrent_reservations_single_winner(
        self, coordinator, inventory, session_factory, week_of_slots
    ):
        slot = (await _day(inventory, week_of_slots))[5]
        payloads = [AppointmentPayload(clinician_patient_id=f"cp-{i}") for i in range(10)]

        results = await asyncio.gather(
            *(coordinator.reserve_slot(slot.id, p) for p in payloads),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 9
        assert all(isinstance(e, ConflictError) for e in losers)

        row = await _slot_row(session_factory, slot.id)
        assert row.status == SlotStatus.BOOKED.value
        assert row.appointment_id == winners[0].id

    @pytest.mark.asyncio
    async def test_reserve_publishes_event(self, coordinator, inventory, week_of_slots, payload, events):
        received = []
        events.subscribe(received.append)
        slot = (await _day(inventory, week_of_slots))[0]

        appointment = await coordinator.reserve_slot(slot.id, payload)

        assert len(received) == 1
        assert received[0].event_type == "slot_reserved"
        assert received[0].appointment_id == appointment.id

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_booking(
        self, coordinator, inventory, week_of_slots, payload, events
    ):
        def explode(event):
            raise RuntimeError("mail server down")

        events.subscribe(explode)
        slot = (await _day(inventory, week_of_slots))[0]

        appointment = await coordinator.reserve_slot(slot.id, payload)
        assert appointment.slot_id == slot.id

    @pytest.mark.asyncio
    async def test_no_event_on_conflict(self, coordinator, inventory, week_of_slots, payload, events):
        slot = (await _day(inventory, week_of_slots))[0]
        await coordinator.reserve_slot(slot.id, payload)
        received = []
        events.subscribe(received.append)

        with pytest.raises(ConflictError):
            await coordinator.reserve_slot(slot.id, payload)
        assert received == []


class TestReleaseSlot:
    @pytest.mark.asyncio
    async def test_release_cancels_appointment(self, coordinator, inventory, session_factory, week_of_slots, payload):
        slot = (await _day(inventory, week_of_slots))[0]
        booked = await coordinator.reserve_slot(slot.id, payload)

        cancelled = await coordinator.release_slot(slot.id, "Patient request")

        assert cancelled.id == booked.id
        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancel_reason == "Patient request"
        assert cancelled.slot_id is None
        row = await _slot_row(session_factory, slot.id)
        assert row.status == SlotStatus.AVAILABLE.value
        assert row.appointment_id is None

    @pytest.mark.asyncio
    async def test_released_slot_can_be_rebooked(self, coordinator, inventory, week_of_slots, payload):
        slot = (await _day(inventory, week_of_slots))[0]
        await coordinator.reserve_slot(slot.id, payload)
        await coordinator.release_slot(slot.id, "Changed plans")

        again = await coordinator.reserve_slot(slot.id, payload)
        assert again.slot_id == slot.id

    @pytest.mark.asyncio
    async def test_release_available_slot(self, coordinator, inventory, week_of_slots):
        slot = (await _day(inventory, week_of_slots))[0]
        with pytest.raises(NotFoundError):
            await coordinator.release_slot(slot.id, "nothing to release")

    @pytest.mark.asyncio
    async def test_release_missing_slot(self, coordinator, week_of_slots):
        with pytest.raises(NotFoundError):
            await coordinator.release_slot(uuid.uuid4(), "missing")

    @pytest.mark.asyncio
    async def test_release_after_check_in_conflicts(
        self, coordinator, inventory, session_factory, week_of_slots, payload
    ):
        slot = (await _day(inventory, week_of_slots))[0]
        booked = await coordinator.reserve_slot(slot.id, payload)
        async with session_factory() as session, session.begin():
            row = await AppointmentRepository(session).get_by_id(booked.id)
            row.status = AppointmentStatus.CHECKED_IN.value

        with pytest.raises(ConflictError):
            await coordinator.release_slot(slot.id, "too late")

        row = await _slot_row(session_factory, slot.id)
        assert row.status == SlotStatus.BOOKED.value

    @pytest.mark.asyncio
    async def test_appointment_changed_mid_release_rolls_back(
        self, coordinator, inventory, session_factory, week_of_slots, payload
    ):
        slot = (await _day(inventory, week_of_slots))[0]
        booked = await coordinator.reserve_slot(slot.id, payload)

        with patch.object(AppointmentRepository, "cancel", AsyncMock(return_value=False)):
            with pytest.raises(ConflictError):
                await coordinator.release_slot(slot.id, "checked in meanwhile")

        row = await _slot_row(session_factory, slot.id)
        assert row.status == SlotStatus.BOOKED.value
        assert row.appointment_id == booked.id
        assert (await coordinator.get_appointment(booked.id)).status == AppointmentStatus.SCHEDULED


class TestRescheduleAppointment:
    @pytest.mark.asyncio
    async def test_reschedule_moves_booking(self, coordinator, inventory, session_factory, week_of_slots, payload):
        day = await _day(inventory, week_of_slots)
        old, new = day[0], day[6]
        booked = await coordinator.reserve_slot(old.id, payload)

        moved = await coordinator.reschedule_appointment(booked.id, new.id, "Clinic running late")

        assert moved.id == booked.id
        assert moved.slot_id == new.id
        assert moved.scheduled_at == datetime(2026, 4, 6, 12, 0)
        assert moved.status == AppointmentStatus.SCHEDULED
        assert [h["action"] for h in moved.history] == ["reserved", "rescheduled"]
        assert (await _slot_row(session_factory, old.id)).status == SlotStatus.AVAILABLE.value
        new_row = await _slot_row(session_factory, new.id)
        assert new_row.status == SlotStatus.BOOKED.value
        assert new_row.appointment_id == booked.id

    @pytest.mark.asyncio
    async def test_reschedule_resets_confirmed(self, coordinator, inventory, session_factory, week_of_slots, payload):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)
        async with session_factory() as session, session.begin():
            row = await AppointmentRepository(session).get_by_id(booked.id)
            row.status = AppointmentStatus.CONFIRMED.value

        moved = await coordinator.reschedule_appointment(booked.id, day[1].id, "swap")
        assert moved.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_taken_target_leaves_original_intact(
        self, coordinator, inventory, session_factory, week_of_slots, payload
    ):
        day = await _day(inventory, week_of_slots)
        mine = await coordinator.reserve_slot(day[0].id, payload)
        await coordinator.reserve_slot(day[1].id, AppointmentPayload(clinician_patient_id="cp-other"))

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.reschedule_appointment(mine.id, day[1].id, "want earlier")

        assert exc_info.value.current_status == "booked"
        current = await coordinator.get_appointment(mine.id)
        assert current.slot_id == day[0].id
        assert current.status == AppointmentStatus.SCHEDULED
        row = await _slot_row(session_factory, day[0].id)
        assert row.status == SlotStatus.BOOKED.value
        assert row.appointment_id == mine.id

    @pytest.mark.asyncio
    async def test_same_slot_conflicts(self, coordinator, inventory, week_of_slots, payload):
        slot = (await _day(inventory, week_of_slots))[0]
        booked = await coordinator.reserve_slot(slot.id, payload)

        with pytest.raises(ConflictError):
            await coordinator.reschedule_appointment(booked.id, slot.id, "noop")

    @pytest.mark.asyncio
    async def test_other_clinician_slot_conflicts(
        self, coordinator, inventory, template_store, session_factory, week_of_slots, payload
    ):
        other = await create_clinician(session_factory, "Omar", "Haddad")
        await set_weekday_templates(template_store, other, weekdays=[0])
        await inventory.generate_slots(other, MONDAY, MONDAY)
        foreign = (await _day(inventory, other))[0]
        booked = await coordinator.reserve_slot((await _day(inventory, week_of_slots))[0].id, payload)

        with pytest.raises(ConflictError):
            await coordinator.reschedule_appointment(booked.id, foreign.id, "different doctor")

        assert (await _slot_row(session_factory, foreign.id)).status == SlotStatus.AVAILABLE.value
        assert (await coordinator.get_appointment(booked.id)).slot_id != foreign.id

    @pytest.mark.asyncio
    async def test_cancelled_appointment_cannot_move(self, coordinator, inventory, week_of_slots, payload):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)
        await coordinator.release_slot(day[0].id, "cancel")

        with pytest.raises(ConflictError):
            await coordinator.reschedule_appointment(booked.id, day[1].id, "revive")

    @pytest.mark.asyncio
    async def test_missing_appointment(self, coordinator, inventory, week_of_slots):
        slot = (await _day(inventory, week_of_slots))[0]
        with pytest.raises(NotFoundError):
            await coordinator.reschedule_appointment(uuid.uuid4(), slot.id, "who")

    @pytest.mark.asyncio
    async def test_missing_target_slot(self, coordinator, inventory, week_of_slots, payload):
        booked = await coordinator.reserve_slot((await _day(inventory, week_of_slots))[0].id, payload)
        with pytest.raises(NotFoundError):
            await coordinator.reschedule_appointment(booked.id, uuid.uuid4(), "nowhere")

    @pytest.mark.asyncio
    async def test_failure_after_reserving_new_slot_is_compensated(
        self, coordinator, inventory, session_factory, week_of_slots, payload
    ):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)

        with patch.object(AppointmentRepository, "relink", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await coordinator.reschedule_appointment(booked.id, day[3].id, "boom")

        current = await coordinator.get_appointment(booked.id)
        assert current.slot_id == day[0].id
        assert (await _slot_row(session_factory, day[0].id)).status == SlotStatus.BOOKED.value
        target = await _slot_row(session_factory, day[3].id)
        assert target.status == SlotStatus.AVAILABLE.value
        assert target.appointment_id is None

    @pytest.mark.asyncio
    async def test_compensation_repairs_half_applied_swap(
        self, inventory, session_factory, week_of_slots, payload, events
    ):
        """Simulate state left behind by an interrupted swap and run the repair."""
        coordinator = BookingCoordinator(session_factory, events=events)
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)
        async with session_factory() as session, session.begin():
            slots = SlotRepository(session)
            await slots.compare_and_set(day[4].id, SlotStatus.AVAILABLE, SlotStatus.BOOKED, appointment_id=booked.id)
            await slots.compare_and_set(
                day[0].id, SlotStatus.BOOKED, SlotStatus.AVAILABLE, expected_appointment_id=booked.id
            )

        await coordinator._compensate_reschedule(booked.id, day[4].id)
        await coordinator._compensate_reschedule(booked.id, day[4].id)

        assert (await _slot_row(session_factory, day[4].id)).status == SlotStatus.AVAILABLE.value
        original = await _slot_row(session_factory, day[0].id)
        assert original.status == SlotStatus.BOOKED.value
        assert original.appointment_id == booked.id

    @pytest.mark.asyncio
    async def test_reschedule_event_names_both_slots(
        self, coordinator, inventory, week_of_slots, payload, events
    ):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)
        received = []
        events.subscribe(received.append)

        await coordinator.reschedule_appointment(booked.id, day[2].id, "later")

        assert received[0].event_type == "appointment_rescheduled"
        assert received[0].previous_slot_id == day[0].id
        assert received[0].slot_id == day[2].id

    @pytest.mark.asyncio
    async def test_lost_old_slot_aborts_whole_swap(
        self, coordinator, inventory, session_factory, week_of_slots, payload, events
    ):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)
        received = []
        events.subscribe(received.append)
        original = SlotRepository.compare_and_set

        async def old_slot_changed(self, slot_id, expected, new, **kwargs):
            if slot_id == day[0].id and expected == SlotStatus.BOOKED:
                return False
            return await original(self, slot_id, expected, new, **kwargs)

        with patch.object(SlotRepository, "compare_and_set", old_slot_changed):
            with pytest.raises(ConflictError) as exc_info:
                await coordinator.reschedule_appointment(booked.id, day[5].id, "later")

        assert exc_info.value.slot_id == day[0].id
        current = await coordinator.get_appointment(booked.id)
        assert current.slot_id == day[0].id
        assert [h["action"] for h in current.history] == ["reserved"]
        old_row = await _slot_row(session_factory, day[0].id)
        assert old_row.status == SlotStatus.BOOKED.value
        assert old_row.appointment_id == booked.id
        new_row = await _slot_row(session_factory, day[5].id)
        assert new_row.status == SlotStatus.AVAILABLE.value
        assert new_row.appointment_id is None
        assert received == []

    @pytest.mark.asyncio
    async def test_appointment_changed_mid_swap_rolls_back(
        self, coordinator, inventory, session_factory, week_of_slots, payload
    ):
        day = await _day(inventory, week_of_slots)
        booked = await coordinator.reserve_slot(day[0].id, payload)

        with patch.object(AppointmentRepository, "relink", AsyncMock(return_value=False)):
            with pytest.raises(ConflictError):
                await coordinator.reschedule_appointment(booked.id, day[6].id, "later")

        assert (await coordinator.get_appointment(booked.id)).slot_id == day[0].id
        assert (await _slot_row(session_factory, day[0].id)).status == SlotStatus.BOOKED.value
        assert (await _slot_row(session_factory, day[6].id)).status == SlotStatus.AVAILABLE.value


class TestBlockSlots:
    @pytest.mark.asyncio
    async def test_block_window(self, coordinator, inventory, week_of_slots):
        result = await coordinator.block_slots(week_of_slots, MONDAY, time(9), time(10), reason="Meeting")

        assert result.count == 2
        blocked = [s for s in await _day(inventory, week_of_slots) if s.status == SlotStatus.BLOCKED]
        assert [s.start_time for s in blocked] == [time(9), time(9, 30)]

    @pytest.mark.asyncio
    async def test_block_whole_day_skips_booked(self, coordinator, inventory, week_of_slots, payload):
        slot = (await _day(inventory, week_of_slots))[3]
        await coordinator.reserve_slot(slot.id, payload)

        result = await coordinator.block_slots(week_of_slots, MONDAY)

        assert result.count == 15
        statuses = {s.id: s.status for s in await _day(inventory, week_of_slots)}
        assert statuses[slot.id] == SlotStatus.BOOKED

    @pytest.mark.asyncio
    async def test_unblock(self, coordinator, inventory, week_of_slots):
        await coordinator.block_slots(week_of_slots, MONDAY, time(14), time(17))

        result = await coordinator.unblock_slots(week_of_slots, MONDAY, time(16), time(17))

        assert result.count == 2
        stats = await inventory.get_slot_stats(week_of_slots, MONDAY, MONDAY)
        assert stats.blocked == 4

    @pytest.mark.asyncio
    async def test_get_missing_appointment(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.get_appointment(uuid.uuid4())
