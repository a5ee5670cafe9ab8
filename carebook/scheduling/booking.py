"""Booking coordinator: the only writer of slot occupancy.

Every occupancy change is a conditional UPDATE on the slot row (status must
still be what we expect), so two callers racing for one slot cannot both
win. Appointment rows hold the slot reference; the slot keeps a lookup copy
of the appointment id that this module keeps in step.
"""

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config import get_settings
from carebook.core.database import SessionFactory
from carebook.core.repository import AppointmentRepository, SlotRepository, appointment_to_model
from carebook.observability.events import BookingEvent, EventType
from carebook.observability.logger import SchedulingEventLogger, get_event_logger
from carebook.scheduling.errors import ConflictError, NotFoundError, SchedulingError
from carebook.scheduling.models import (
    Appointment,
    AppointmentPayload,
    AppointmentStatus,
    SlotBatchResult,
    SlotStatus,
    in_window,
    minutes_of,
)

logger = logging.getLogger(__name__)


# Allowed appointment status moves. Only CANCELLED (release) and the slot swap
# inside reschedule are driven from here; the rest belong to clinic workflow.
APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.CHECKED_IN, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CHECKED_IN: frozenset({AppointmentStatus.IN_PROGRESS, AppointmentStatus.NO_SHOW}),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

RESCHEDULABLE = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

CANCELLABLE = frozenset(
    status for status, targets in APPOINTMENT_TRANSITIONS.items() if AppointmentStatus.CANCELLED in targets
)


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise ConflictError unless *current* may move to *target*."""
    if target not in APPOINTMENT_TRANSITIONS[current]:
        raise ConflictError(
            f"Appointment cannot move from {current.value} to {target.value}",
            current_status=current.value,
        )


def _history_entry(action: str, **details) -> dict:
    entry = {"action": action, "at": datetime.now(timezone.utc).isoformat()}
    for key, value in details.items():
        entry[key] = str(value) if isinstance(value, uuid.UUID) else value
    return entry


def _values(statuses: frozenset[AppointmentStatus]) -> list[str]:
    return [s.value for s in statuses]


class BookingCoordinator:
    """Reserve, release and reschedule slots against appointments."""

    def __init__(
        self,
        session_factory: SessionFactory,
        events: Optional[SchedulingEventLogger] = None,
    ):
        self._session_factory = session_factory
        self._events = events or get_event_logger()

    async def reserve_slot(self, slot_id: uuid.UUID, payload: AppointmentPayload) -> Appointment:
        """Book an available slot and create its appointment in one transaction.

        Raises:
            NotFoundError: the slot does not exist
            ConflictError: the slot is booked, blocked or a break
        """
        appointment_id = uuid.uuid4()

        async with self._session_factory() as session, session.begin():
            slots = SlotRepository(session)
            if not await slots.compare_and_set(
                slot_id, SlotStatus.AVAILABLE, SlotStatus.BOOKED, appointment_id=appointment_id
            ):
                current = await slots.get_by_id(slot_id)
                if current is None:
                    raise NotFoundError("slot", slot_id)
                logger.warning(f"Reservation conflict on slot {slot_id}: slot is {current.status}")
                raise ConflictError(
                    f"Slot {slot_id} is no longer available",
                    slot_id=slot_id,
                    current_status=current.status,
                )

            slot = await slots.get_by_id(slot_id, refresh=True)
            row = await AppointmentRepository(session).create(
                id=appointment_id,
                clinician_patient_id=payload.clinician_patient_id,
                clinician_id=slot.clinician_id,
                slot_id=slot.id,
                scheduled_at=datetime.combine(slot.slot_date, slot.start_time),
                duration_minutes=minutes_of(slot.end_time) - minutes_of(slot.start_time),
                time_zone=payload.time_zone or get_settings().default_time_zone,
                appointment_type=payload.appointment_type.value,
                status=AppointmentStatus.SCHEDULED.value,
                visit_reason=payload.visit_reason,
                location=payload.location.model_dump(mode="json"),
                notes=payload.notes,
                history=[_history_entry("reserved", slot_id=slot.id)],
            )
            appointment = appointment_to_model(row)

        logger.info(f"Reserved slot {slot_id} for appointment {appointment.id}")
        self._events.publish_booking(
            BookingEvent(
                event_type=EventType.SLOT_RESERVED,
                clinician_id=appointment.clinician_id,
                slot_id=slot_id,
                appointment_id=appointment.id,
                clinician_patient_id=appointment.clinician_patient_id,
            )
        )
        return appointment

    async def release_slot(self, slot_id: uuid.UUID, reason: str) -> Appointment:
        """Return a booked slot to the pool and cancel its appointment.

        Raises:
            NotFoundError: the slot is not booked to an appointment
            ConflictError: the appointment is past the point of cancellation
        """
        async with self._session_factory() as session, session.begin():
            slots = SlotRepository(session)
            appointments = AppointmentRepository(session)

            slot = await slots.get_by_id(slot_id)
            if slot is None or slot.status != SlotStatus.BOOKED.value or slot.appointment_id is None:
                raise NotFoundError("booking", slot_id, f"Slot {slot_id} is not booked to an appointment")

            appt = await appointments.get_by_id(slot.appointment_id)
            if appt is None:
                raise NotFoundError("appointment", slot.appointment_id)
            ensure_transition(AppointmentStatus(appt.status), AppointmentStatus.CANCELLED)

            if not await slots.compare_and_set(
                slot_id, SlotStatus.BOOKED, SlotStatus.AVAILABLE, expected_appointment_id=appt.id
            ):
                raise ConflictError(f"Slot {slot_id} changed during release", slot_id=slot_id)

            if not await appointments.cancel(
                appt,
                reason,
                _history_entry("cancelled", slot_id=slot_id, reason=reason),
                _values(CANCELLABLE),
            ):
                raise ConflictError(f"Appointment {appt.id} changed during release", slot_id=slot_id)
            appointment = appointment_to_model(appt)

        logger.info(f"Released slot {slot_id}; appointment {appointment.id} cancelled")
        self._events.publish_booking(
            BookingEvent(
                event_type=EventType.SLOT_RELEASED,
                clinician_id=appointment.clinician_id,
                slot_id=slot_id,
                appointment_id=appointment.id,
                clinician_patient_id=appointment.clinician_patient_id,
                reason=reason,
            )
        )
        return appointment

    async def reschedule_appointment(
        self, appointment_id: uuid.UUID, new_slot_id: uuid.UUID, reason: str
    ) -> Appointment:
        """Move an appointment to another slot of the same clinician.

        Reserving the new slot, releasing the old one and relinking the
        appointment happen in one transaction. Should anything unexpected
        interrupt it, a compensation pass makes sure the new slot is not left
        held and the original booking stays linked.

        Raises:
            NotFoundError: the appointment or the new slot does not exist
            ConflictError: the new slot is taken, or the appointment cannot move
        """
        try:
            async with self._session_factory() as session, session.begin():
                slots = SlotRepository(session)
                appointments = AppointmentRepository(session)

                appt = await appointments.get_by_id(appointment_id)
                if appt is None:
                    raise NotFoundError("appointment", appointment_id)
                status = AppointmentStatus(appt.status)
                if status not in RESCHEDULABLE:
                    raise ConflictError(
                        f"Appointment {appointment_id} is {status.value} and cannot be rescheduled",
                        current_status=status.value,
                    )
                old_slot_id = appt.slot_id
                if old_slot_id == new_slot_id:
                    raise ConflictError(
                        f"Appointment {appointment_id} already holds slot {new_slot_id}",
                        slot_id=new_slot_id,
                        current_status=SlotStatus.BOOKED.value,
                    )

                if not await slots.compare_and_set(
                    new_slot_id, SlotStatus.AVAILABLE, SlotStatus.BOOKED, appointment_id=appt.id
                ):
                    target = await slots.get_by_id(new_slot_id)
                    if target is None:
                        raise NotFoundError("slot", new_slot_id)
                    logger.warning(f"Reschedule conflict on slot {new_slot_id}: slot is {target.status}")
                    raise ConflictError(
                        f"Slot {new_slot_id} is no longer available",
                        slot_id=new_slot_id,
                        current_status=target.status,
                    )

                new_slot = await slots.get_by_id(new_slot_id, refresh=True)
                if new_slot.clinician_id != appt.clinician_id:
                    raise ConflictError(
                        f"Slot {new_slot_id} belongs to a different clinician", slot_id=new_slot_id
                    )

                if old_slot_id is not None and not await slots.compare_and_set(
                    old_slot_id,
                    SlotStatus.BOOKED,
                    SlotStatus.AVAILABLE,
                    expected_appointment_id=appt.id,
                ):
                    raise ConflictError(
                        f"Slot {old_slot_id} changed during reschedule", slot_id=old_slot_id
                    )

                if not await appointments.relink(
                    appt,
                    new_slot,
                    AppointmentStatus.SCHEDULED.value,
                    _history_entry(
                        "rescheduled",
                        from_slot_id=old_slot_id,
                        to_slot_id=new_slot_id,
                        reason=reason,
                    ),
                    _values(RESCHEDULABLE),
                ):
                    raise ConflictError(f"Appointment {appointment_id} changed during reschedule")
                appointment = appointment_to_model(appt)
        except SchedulingError:
            raise
        except Exception:
            logger.exception(f"Reschedule of appointment {appointment_id} failed; compensating")
            await self._compensate_reschedule(appointment_id, new_slot_id)
            raise

        logger.info(f"Rescheduled appointment {appointment_id}: slot {old_slot_id} -> {new_slot_id}")
        self._events.publish_booking(
            BookingEvent(
                event_type=EventType.APPOINTMENT_RESCHEDULED,
                clinician_id=appointment.clinician_id,
                slot_id=new_slot_id,
                previous_slot_id=old_slot_id,
                appointment_id=appointment.id,
                clinician_patient_id=appointment.clinician_patient_id,
                reason=reason,
            )
        )
        return appointment

    async def _compensate_reschedule(self, appointment_id: uuid.UUID, new_slot_id: uuid.UUID) -> None:
        """Undo a half-applied reschedule.

        Idempotent: frees the new slot if it is held for this appointment but
        the appointment does not point at it, and re-books the slot the
        appointment does point at if that slot was freed.
        """
        async with self._session_factory() as session, session.begin():
            slots = SlotRepository(session)
            appt = await AppointmentRepository(session).get_by_id(appointment_id)
            if appt is None:
                return

            if appt.slot_id != new_slot_id:
                if await slots.compare_and_set(
                    new_slot_id,
                    SlotStatus.BOOKED,
                    SlotStatus.AVAILABLE,
                    expected_appointment_id=appointment_id,
                ):
                    logger.warning(f"Compensation released slot {new_slot_id}")

            if appt.slot_id is not None:
                if await slots.compare_and_set(
                    appt.slot_id, SlotStatus.AVAILABLE, SlotStatus.BOOKED, appointment_id=appointment_id
                ):
                    logger.warning(f"Compensation re-booked slot {appt.slot_id}")

    async def block_window(
        self,
        session: AsyncSession,
        clinician_id: uuid.UUID,
        day: date,
        start: Optional[time] = None,
        end: Optional[time] = None,
        reason: str = "Blocked",
    ) -> list[uuid.UUID]:
        """Block available slots inside ``[start, end]`` within the caller's transaction.

        Booked and break slots are never touched.
        """
        slots = SlotRepository(session)
        blocked = []
        for row in await slots.list_for_day(clinician_id, day, SlotStatus.AVAILABLE):
            if not in_window(row.start_time, row.end_time, start, end):
                continue
            if await slots.compare_and_set(row.id, SlotStatus.AVAILABLE, SlotStatus.BLOCKED, blocked_reason=reason):
                blocked.append(row.id)
        return blocked

    async def unblock_ids(self, session: AsyncSession, slot_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        """Return the given slots to the pool if they are still blocked."""
        slots = SlotRepository(session)
        released = []
        for slot_id in slot_ids:
            if await slots.compare_and_set(slot_id, SlotStatus.BLOCKED, SlotStatus.AVAILABLE):
                released.append(slot_id)
        return released

    def announce(
        self,
        event_type: EventType,
        clinician_id: uuid.UUID,
        slot_ids: Sequence[uuid.UUID],
        reason: Optional[str] = None,
    ) -> None:
        """Publish a committed block or unblock."""
        if slot_ids:
            self._events.publish_booking(
                BookingEvent(event_type=event_type, clinician_id=clinician_id, slot_ids=list(slot_ids), reason=reason)
            )

    async def block_slots(
        self,
        clinician_id: uuid.UUID,
        day: date,
        start: Optional[time] = None,
        end: Optional[time] = None,
        reason: str = "Blocked",
    ) -> SlotBatchResult:
        """Block the available slots lying inside ``[start, end]`` (whole day when omitted)."""
        async with self._session_factory() as session, session.begin():
            blocked = await self.block_window(session, clinician_id, day, start, end, reason)

        logger.info(f"Blocked {len(blocked)} slot(s) for clinician {clinician_id} on {day}")
        self.announce(EventType.SLOTS_BLOCKED, clinician_id, blocked, reason)
        return SlotBatchResult(count=len(blocked), slot_ids=blocked)

    async def unblock_slots(
        self,
        clinician_id: uuid.UUID,
        day: date,
        start: Optional[time] = None,
        end: Optional[time] = None,
    ) -> SlotBatchResult:
        async with self._session_factory() as session, session.begin():
            rows = await SlotRepository(session).list_for_day(clinician_id, day, SlotStatus.BLOCKED)
            released = await self.unblock_ids(
                session, [row.id for row in rows if in_window(row.start_time, row.end_time, start, end)]
            )

        logger.info(f"Unblocked {len(released)} slot(s) for clinician {clinician_id} on {day}")
        self.announce(EventType.SLOTS_UNBLOCKED, clinician_id, released)
        return SlotBatchResult(count=len(released), slot_ids=released)

    async def get_appointment(self, appointment_id: uuid.UUID) -> Appointment:
        async with self._session_factory() as session:
            row = await AppointmentRepository(session).get_by_id(appointment_id)
            if row is None:
                raise NotFoundError("appointment", appointment_id)
            return appointment_to_model(row)
