"""Repositories for the scheduling store.

These classes are the storage contract the scheduling core depends on:
per-record compare-and-set on slots and range scans keyed by
clinician + date. Each repository works inside the caller's session so a
component can group several calls into one transaction.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.core.models import (
    AppointmentDB,
    AvailabilityTemplateDB,
    Clinician,
    ClinicianExceptionDB,
    RescheduleRequestDB,
    SlotDB,
)
from carebook.scheduling.models import (
    Appointment,
    AppointmentStatus,
    AvailabilityTemplate,
    BreakWindow,
    ClinicianException,
    RecurringPattern,
    RescheduleRequest,
    RescheduleRequestStatus,
    Slot,
    SlotStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Row <-> model conversion
# ---------------------------------------------------------------------------


def breaks_to_json(breaks: Sequence[BreakWindow]) -> list[dict]:
    return [
        {"start": b.start.strftime("%H:%M"), "end": b.end.strftime("%H:%M"), "reason": b.reason}
        for b in breaks
    ]


def template_to_model(row: AvailabilityTemplateDB) -> AvailabilityTemplate:
    return AvailabilityTemplate(
        id=row.id,
        clinician_id=row.clinician_id,
        weekday=row.weekday,
        work_start=row.work_start,
        work_end=row.work_end,
        slot_duration=row.slot_duration,
        buffer_time=row.buffer_time,
        breaks=[BreakWindow.model_validate(b) for b in (row.breaks or [])],
        is_active=row.is_active,
    )


def slot_to_model(row: SlotDB) -> Slot:
    return Slot(
        id=row.id,
        clinician_id=row.clinician_id,
        date=row.slot_date,
        start_time=row.start_time,
        end_time=row.end_time,
        status=SlotStatus(row.status),
        appointment_id=row.appointment_id,
        blocked_reason=row.blocked_reason,
    )


def appointment_to_model(row: AppointmentDB) -> Appointment:
    return Appointment.model_validate(row)


def request_to_model(row: RescheduleRequestDB) -> RescheduleRequest:
    return RescheduleRequest.model_validate(row)


def exception_to_model(row: ClinicianExceptionDB) -> ClinicianException:
    return ClinicianException(
        id=row.id,
        clinician_id=row.clinician_id,
        date=row.exception_date,
        exception_type=row.exception_type,
        start_time=row.start_time,
        end_time=row.end_time,
        reason=row.reason,
        affected_slot_ids=row.affected_slot_ids or [],
        is_recurring=row.is_recurring,
        recurring_pattern=RecurringPattern.model_validate(row.recurring_pattern) if row.recurring_pattern else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class ClinicianRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Clinician:
        clinician = Clinician(**kwargs)
        self.session.add(clinician)
        await self.session.flush()
        return clinician

    async def get_by_id(self, clinician_id: uuid.UUID) -> Optional[Clinician]:
        return await self.session.get(Clinician, clinician_id)

    async def list_active(self) -> Sequence[Clinician]:
        stmt = (
            select(Clinician)
            .where(Clinician.active.is_(True))
            .order_by(Clinician.last_name, Clinician.first_name)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_active(self) -> int:
        stmt = select(func.count()).select_from(Clinician).where(Clinician.active.is_(True))
        return (await self.session.execute(stmt)).scalar_one()


class TemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, clinician_id: uuid.UUID, weekday: int) -> Optional[AvailabilityTemplateDB]:
        stmt = select(AvailabilityTemplateDB).where(
            AvailabilityTemplateDB.clinician_id == clinician_id,
            AvailabilityTemplateDB.weekday == weekday,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_clinician(
        self, clinician_id: uuid.UUID, active_only: bool = False
    ) -> Sequence[AvailabilityTemplateDB]:
        stmt = select(AvailabilityTemplateDB).where(AvailabilityTemplateDB.clinician_id == clinician_id)
        if active_only:
            stmt = stmt.where(AvailabilityTemplateDB.is_active.is_(True))
        stmt = stmt.order_by(AvailabilityTemplateDB.weekday)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def upsert(self, clinician_id: uuid.UUID, weekday: int, **fields) -> AvailabilityTemplateDB:
        row = await self.get(clinician_id, weekday)
        if row is None:
            row = AvailabilityTemplateDB(clinician_id=clinician_id, weekday=weekday, **fields)
            self.session.add(row)
        else:
            for k, v in fields.items():
                setattr(row, k, v)
            row.updated_at = _utcnow()
        await self.session.flush()
        return row

    async def delete(self, clinician_id: uuid.UUID, weekday: int) -> bool:
        stmt = delete(AvailabilityTemplateDB).where(
            AvailabilityTemplateDB.clinician_id == clinician_id,
            AvailabilityTemplateDB.weekday == weekday,
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0


class SlotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_many(self, slots: Sequence[Slot]) -> list[SlotDB]:
        rows = [
            SlotDB(
                clinician_id=s.clinician_id,
                slot_date=s.date,
                start_time=s.start_time,
                end_time=s.end_time,
                status=s.status.value,
                blocked_reason=s.blocked_reason,
            )
            for s in slots
        ]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def get_by_id(self, slot_id: uuid.UUID, refresh: bool = False) -> Optional[SlotDB]:
        return await self.session.get(SlotDB, slot_id, populate_existing=refresh)

    async def get_at(self, clinician_id: uuid.UUID, day: date, start: time) -> Optional[SlotDB]:
        stmt = select(SlotDB).where(
            SlotDB.clinician_id == clinician_id,
            SlotDB.slot_date == day,
            SlotDB.start_time == start,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_in_range(
        self,
        clinician_id: uuid.UUID,
        start_date: date,
        end_date: date,
        status: Optional[SlotStatus] = None,
    ) -> Sequence[SlotDB]:
        stmt = select(SlotDB).where(
            SlotDB.clinician_id == clinician_id,
            SlotDB.slot_date >= start_date,
            SlotDB.slot_date <= end_date,
        )
        if status is not None:
            stmt = stmt.where(SlotDB.status == status.value)
        stmt = stmt.order_by(SlotDB.slot_date, SlotDB.start_time)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_for_day(
        self, clinician_id: uuid.UUID, day: date, status: Optional[SlotStatus] = None
    ) -> Sequence[SlotDB]:
        return await self.list_in_range(clinician_id, day, day, status)

    async def dates_with_slots(self, clinician_id: uuid.UUID, start_date: date, end_date: date) -> set[date]:
        stmt = (
            select(SlotDB.slot_date)
            .where(
                SlotDB.clinician_id == clinician_id,
                SlotDB.slot_date >= start_date,
                SlotDB.slot_date <= end_date,
            )
            .distinct()
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def first_available_from(self, clinician_id: uuid.UUID, from_date: date) -> Optional[SlotDB]:
        stmt = (
            select(SlotDB)
            .where(
                SlotDB.clinician_id == clinician_id,
                SlotDB.status == SlotStatus.AVAILABLE.value,
                SlotDB.slot_date >= from_date,
            )
            .order_by(SlotDB.slot_date, SlotDB.start_time)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def compare_and_set(
        self,
        slot_id: uuid.UUID,
        expected: SlotStatus,
        new: SlotStatus,
        *,
        appointment_id: Optional[uuid.UUID] = None,
        expected_appointment_id: Optional[uuid.UUID] = None,
        blocked_reason: Optional[str] = None,
    ) -> bool:
        """Move a slot from *expected* to *new* in one conditional UPDATE.

        Returns False when the slot is missing or no longer in *expected*
        (or no longer linked to *expected_appointment_id*).
        """
        stmt = update(SlotDB).where(SlotDB.id == slot_id, SlotDB.status == expected.value)
        if expected_appointment_id is not None:
            stmt = stmt.where(SlotDB.appointment_id == expected_appointment_id)
        stmt = stmt.values(
            status=new.value,
            appointment_id=appointment_id,
            blocked_reason=blocked_reason,
            updated_at=_utcnow(),
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_before(self, cutoff: date) -> tuple[int, list[uuid.UUID]]:
        """Delete every slot dated strictly before *cutoff*."""
        ids_stmt = select(SlotDB.id).where(SlotDB.slot_date < cutoff)
        slot_ids = list((await self.session.execute(ids_stmt)).scalars().all())
        if not slot_ids:
            return 0, []
        stmt = delete(SlotDB).where(SlotDB.slot_date < cutoff).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount, slot_ids

    async def count_by_status(
        self,
        clinician_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> dict[str, int]:
        stmt = select(SlotDB.status, func.count()).group_by(SlotDB.status)
        if clinician_id is not None:
            stmt = stmt.where(SlotDB.clinician_id == clinician_id)
        if start_date is not None:
            stmt = stmt.where(SlotDB.slot_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(SlotDB.slot_date <= end_date)
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}


class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> AppointmentDB:
        appt = AppointmentDB(**kwargs)
        self.session.add(appt)
        await self.session.flush()
        return appt

    async def get_by_id(self, appointment_id: uuid.UUID) -> Optional[AppointmentDB]:
        return await self.session.get(AppointmentDB, appointment_id)

    async def relink(
        self,
        appt: AppointmentDB,
        slot: SlotDB,
        status: str,
        history_entry: dict,
        expected_statuses: Sequence[str],
    ) -> bool:
        """Point an appointment at a different slot.

        Conditional on the appointment still being in one of
        *expected_statuses*; returns False when a concurrent writer moved it.
        """
        target = slot_to_model(slot)
        stmt = (
            update(AppointmentDB)
            .where(AppointmentDB.id == appt.id, AppointmentDB.status.in_(expected_statuses))
            .values(
                slot_id=target.id,
                scheduled_at=target.starts_at,
                duration_minutes=target.duration_minutes,
                status=status,
                history=[*(appt.history or []), history_entry],
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await self.session.refresh(appt)
        return True

    async def cancel(
        self,
        appt: AppointmentDB,
        reason: str,
        history_entry: dict,
        expected_statuses: Sequence[str],
    ) -> bool:
        """Cancel an appointment still in one of *expected_statuses*."""
        stmt = (
            update(AppointmentDB)
            .where(AppointmentDB.id == appt.id, AppointmentDB.status.in_(expected_statuses))
            .values(
                status=AppointmentStatus.CANCELLED.value,
                cancel_reason=reason,
                slot_id=None,
                history=[*(appt.history or []), history_entry],
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await self.session.refresh(appt)
        return True

    async def detach_slots(self, slot_ids: Sequence[uuid.UUID]) -> int:
        if not slot_ids:
            return 0
        stmt = (
            update(AppointmentDB)
            .where(AppointmentDB.slot_id.in_(slot_ids))
            .values(slot_id=None, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def count_by_status_since(self, since: datetime) -> dict[str, int]:
        stmt = (
            select(AppointmentDB.status, func.count())
            .where(AppointmentDB.scheduled_at >= since)
            .group_by(AppointmentDB.status)
        )
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}


class RescheduleRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> RescheduleRequestDB:
        req = RescheduleRequestDB(**kwargs)
        self.session.add(req)
        await self.session.flush()
        return req

    async def get_by_id(self, request_id: uuid.UUID, refresh: bool = False) -> Optional[RescheduleRequestDB]:
        return await self.session.get(RescheduleRequestDB, request_id, populate_existing=refresh)

    async def get_pending_for_appointment(self, appointment_id: uuid.UUID) -> Optional[RescheduleRequestDB]:
        stmt = select(RescheduleRequestDB).where(
            RescheduleRequestDB.appointment_id == appointment_id,
            RescheduleRequestDB.status == RescheduleRequestStatus.PENDING.value,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_by_clinician(
        self, clinician_id: uuid.UUID, status: Optional[str] = None, limit: int = 100
    ) -> Sequence[RescheduleRequestDB]:
        stmt = select(RescheduleRequestDB).where(RescheduleRequestDB.clinician_id == clinician_id)
        if status:
            stmt = stmt.where(RescheduleRequestDB.status == status)
        stmt = stmt.order_by(RescheduleRequestDB.requested_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_patient(
        self, clinician_patient_id: str, status: Optional[str] = None, limit: int = 100
    ) -> Sequence[RescheduleRequestDB]:
        stmt = select(RescheduleRequestDB).where(
            RescheduleRequestDB.clinician_patient_id == clinician_patient_id
        )
        if status:
            stmt = stmt.where(RescheduleRequestDB.status == status)
        stmt = stmt.order_by(RescheduleRequestDB.requested_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def compare_and_set(self, request_id: uuid.UUID, expected: str, new: str, **values) -> bool:
        """Move a request from *expected* to *new* status in one conditional UPDATE."""
        stmt = (
            update(RescheduleRequestDB)
            .where(RescheduleRequestDB.id == request_id, RescheduleRequestDB.status == expected)
            .values(status=new, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class ExceptionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ClinicianExceptionDB:
        row = ClinicianExceptionDB(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_by_id(self, exception_id: uuid.UUID) -> Optional[ClinicianExceptionDB]:
        return await self.session.get(ClinicianExceptionDB, exception_id)

    async def list_by_clinician(
        self,
        clinician_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        exception_type: Optional[str] = None,
    ) -> Sequence[ClinicianExceptionDB]:
        stmt = select(ClinicianExceptionDB).where(ClinicianExceptionDB.clinician_id == clinician_id)
        if start_date is not None:
            stmt = stmt.where(ClinicianExceptionDB.exception_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(ClinicianExceptionDB.exception_date <= end_date)
        if exception_type:
            stmt = stmt.where(ClinicianExceptionDB.exception_type == exception_type)
        stmt = stmt.order_by(ClinicianExceptionDB.exception_date, ClinicianExceptionDB.start_time)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_touching(
        self, clinician_id: uuid.UUID, start_date: date, end_date: date
    ) -> Sequence[ClinicianExceptionDB]:
        """Exceptions starting in the range plus every recurring one that started before it ends."""
        stmt = (
            select(ClinicianExceptionDB)
            .where(
                ClinicianExceptionDB.clinician_id == clinician_id,
                ClinicianExceptionDB.exception_date <= end_date,
                or_(
                    ClinicianExceptionDB.exception_date >= start_date,
                    ClinicianExceptionDB.is_recurring.is_(True),
                ),
            )
            .order_by(ClinicianExceptionDB.exception_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_recurring(self, clinician_id: uuid.UUID) -> Sequence[ClinicianExceptionDB]:
        stmt = (
            select(ClinicianExceptionDB)
            .where(
                ClinicianExceptionDB.clinician_id == clinician_id,
                ClinicianExceptionDB.is_recurring.is_(True),
            )
            .order_by(ClinicianExceptionDB.exception_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def add_affected_slots(self, row: ClinicianExceptionDB, slot_ids: Sequence[uuid.UUID]) -> None:
        row.affected_slot_ids = [*(row.affected_slot_ids or []), *(str(s) for s in slot_ids)]
        row.updated_at = _utcnow()
        await self.session.flush()

    async def delete(self, row: ClinicianExceptionDB) -> None:
        await self.session.delete(row)
        await self.session.flush()
