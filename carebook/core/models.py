"""SQLAlchemy 2.0 async models for the scheduling store."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.types import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Base(DeclarativeBase):
    pass


class Clinician(Base):
    __tablename__ = "clinicians"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    credentials: Mapped[str | None] = mapped_column(String(50))
    specialty: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    templates: Mapped[list[AvailabilityTemplateDB]] = relationship(back_populates="clinician", lazy="selectin")

    __table_args__ = (
        Index("ix_clinicians_active", "active"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AvailabilityTemplateDB(Base):
    __tablename__ = "availability_templates"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    clinician_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Mon..6=Sun
    work_start: Mapped[time] = mapped_column(Time, nullable=False)
    work_end: Mapped[time] = mapped_column(Time, nullable=False)
    slot_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    buffer_time: Mapped[int] = mapped_column(Integer, default=0)
    breaks: Mapped[list] = mapped_column(JSON, default=list)  # [{"start": "12:00", "end": "13:00", "reason": "Lunch"}]
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    clinician: Mapped[Clinician] = relationship(back_populates="templates")

    __table_args__ = (
        UniqueConstraint("clinician_id", "weekday", name="uq_template_clinician_weekday"),
        Index("ix_templates_clinician_active", "clinician_id", "is_active"),
    )


class SlotDB(Base):
    __tablename__ = "slots"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    clinician_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="available")
    # Lookup copy of appointments.slot_id, kept in step by the booking coordinator.
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(PG_UUID(as_uuid=True))
    blocked_reason: Mapped[str | None] = mapped_column(Text)
    generated_from: Mapped[str] = mapped_column(String(20), default="template")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("clinician_id", "slot_date", "start_time", name="uq_slot_clinician_date_start"),
        Index("ix_slots_clinician_date", "clinician_id", "slot_date"),
        Index("ix_slots_clinician_status", "clinician_id", "status"),
        Index("ix_slots_date", "slot_date"),
        Index("ix_slots_appointment_id", "appointment_id"),
    )


class AppointmentDB(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    clinician_patient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    clinician_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False)
    slot_id: Mapped[uuid.UUID | None] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("slots.id", ondelete="SET NULL"))
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # wall clock in time_zone
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    time_zone: Mapped[str] = mapped_column(String(64), default="UTC")
    appointment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    visit_reason: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[dict | None] = mapped_column(JSON)
    notes: Mapped[str | None] = mapped_column(Text)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    history: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_appointments_clinician_id", "clinician_id"),
        Index("ix_appointments_clinician_patient_id", "clinician_patient_id"),
        Index("ix_appointments_slot_id", "slot_id"),
        Index("ix_appointments_scheduled_at", "scheduled_at"),
        Index("ix_appointments_status", "status"),
    )


class RescheduleRequestDB(Base):
    __tablename__ = "reschedule_requests"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    appointment_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False)
    clinician_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False)
    clinician_patient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    current_scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    requested_slot_id: Mapped[uuid.UUID | None] = mapped_column(PG_UUID(as_uuid=True))
    requested_datetime: Mapped[datetime | None] = mapped_column(DateTime)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    admin_notes: Mapped[str | None] = mapped_column(Text)
    responded_by: Mapped[str | None] = mapped_column(String(255))
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_reschedule_requests_appointment", "appointment_id"),
        Index("ix_reschedule_requests_clinician_status", "clinician_id", "status"),
        Index("ix_reschedule_requests_patient_status", "clinician_patient_id", "status"),
    )


class ClinicianExceptionDB(Base):
    __tablename__ = "clinician_exceptions"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    clinician_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False)
    exception_date: Mapped[date] = mapped_column(Date, nullable=False)  # first occurrence
    exception_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time)  # null for a whole day
    end_time: Mapped[time | None] = mapped_column(Time)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    affected_slot_ids: Mapped[list] = mapped_column(JSON, default=list)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurring_pattern: Mapped[dict | None] = mapped_column(JSON)  # {"frequency": "weekly", "interval": 1, "end_date": null}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_exceptions_clinician_date", "clinician_id", "exception_date"),
        Index("ix_exceptions_clinician_type", "clinician_id", "exception_type"),
        Index("ix_exceptions_recurring", "clinician_id", "is_recurring"),
    )
