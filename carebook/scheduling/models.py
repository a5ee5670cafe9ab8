"""Pydantic models for the scheduling core."""

import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def minutes_of(value: time) -> int:
    """Minutes since midnight for a wall-clock time."""
    return value.hour * 60 + value.minute


def time_of(minutes: int) -> time:
    """Wall-clock time for minutes since midnight."""
    return time(minutes // 60, minutes % 60)


def in_window(start_time: time, end_time: time, start: Optional[time], end: Optional[time]) -> bool:
    """True when [start_time, end_time] lies inside [start, end]; open ends match anything."""
    return (start is None or start_time >= start) and (end is None or end_time <= end)


class SlotStatus(str, Enum):
    """Occupancy state of a generated slot."""

    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"
    BREAK = "break"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        )


class AppointmentType(str, Enum):
    NEW_PATIENT = "new_patient"
    FOLLOW_UP = "follow_up"
    CONSULTATION = "consultation"
    PROCEDURE = "procedure"
    TELEMEDICINE = "telemedicine"
    EMERGENCY = "emergency"


class LocationType(str, Enum):
    IN_PERSON = "in_person"
    TELEMEDICINE = "telemedicine"


class RescheduleRequestStatus(str, Enum):
    """Patient reschedule request lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Availability templates
# ---------------------------------------------------------------------------


class BreakWindow(BaseModel):
    """A non-bookable window inside the working day."""

    start: time
    end: time
    reason: str = "Break"

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end) - minutes_of(self.start)


class AvailabilityTemplate(BaseModel):
    """A clinician's recurring schedule for one weekday (0=Mon..6=Sun)."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    clinician_id: uuid.UUID
    weekday: int
    work_start: time
    work_end: time
    slot_duration: int = Field(description="Slot length in minutes")
    buffer_time: int = Field(default=0, description="Idle minutes between slots")
    breaks: list[BreakWindow] = Field(default_factory=list)
    is_active: bool = True


class TemplateInput(BaseModel):
    """One weekday entry of a weekly template submission."""

    weekday: int
    work_start: time
    work_end: time
    slot_duration: int
    buffer_time: int = 0
    breaks: list[BreakWindow] = Field(default_factory=list)
    is_active: bool = True


class TemplateValidation(BaseModel):
    is_valid: bool
    errors: list[str] = []


class TemplateResult(BaseModel):
    """Outcome of writing one weekday template."""

    weekday: int
    template_id: Optional[uuid.UUID] = None
    errors: list[str] = []

    @property
    def ok(self) -> bool:
        return self.template_id is not None and not self.errors


class WeeklyTemplateResult(BaseModel):
    clinician_id: uuid.UUID
    results: list[TemplateResult] = []

    @property
    def failed(self) -> list[TemplateResult]:
        return [r for r in self.results if not r.ok]

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)


class TemplateSummary(BaseModel):
    weekday: int
    day_name: str
    work_start: time
    work_end: time
    slot_duration: int
    buffer_time: int
    break_count: int
    total_break_minutes: int


class ClinicianAvailability(BaseModel):
    clinician_id: uuid.UUID
    clinician_name: str
    templates: list[AvailabilityTemplate] = []


# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------


class Slot(BaseModel):
    """A discrete bookable interval derived from a template."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    clinician_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    status: SlotStatus = SlotStatus.AVAILABLE
    appointment_id: Optional[uuid.UUID] = None
    blocked_reason: Optional[str] = None

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end_time) - minutes_of(self.start_time)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)


class DateRange(BaseModel):
    start_date: date
    end_date: date


class GenerationResult(BaseModel):
    generated_count: int
    date_range: DateRange
    slot_ids: list[uuid.UUID] = []


class SlotStats(BaseModel):
    total: int = 0
    available: int = 0
    booked: int = 0
    blocked: int = 0
    break_slots: int = Field(default=0, serialization_alias="break")
    utilization_rate: float = 0.0


class SlotCheck(BaseModel):
    is_available: bool
    reason: Optional[str] = None
    slot: Optional[Slot] = None


class AlternativeSlot(Slot):
    score: float
    days_difference: float
    is_preferred_date: bool
    is_preferred_time: bool


class AlternativeSlots(BaseModel):
    preferred_at: datetime
    alternatives: list[AlternativeSlot] = []
    search_radius: int
    total_found: int


class DaySummary(BaseModel):
    date: date
    day_name: str
    total: int = 0
    available: int = 0
    booked: int = 0
    blocked: int = 0
    utilization_rate: float = 0.0


class WeeklySummary(BaseModel):
    clinician_id: uuid.UUID
    week_start: date
    days: list[DaySummary] = []
    week_total: SlotStats = Field(default_factory=SlotStats)


class SlotBatchResult(BaseModel):
    """Slots touched by a block/unblock operation."""

    count: int
    slot_ids: list[uuid.UUID] = []


class ClinicianSlots(BaseModel):
    """One clinician's available slots in a date range."""

    clinician_id: uuid.UUID
    clinician_name: Optional[str] = None
    total_slots: int = 0
    slots_by_date: dict[date, list[Slot]] = {}


class SlotQuery(BaseModel):
    clinician_id: uuid.UUID
    date: date
    start_time: time


class SlotQueryResult(SlotQuery):
    is_available: bool
    status: str  # a SlotStatus value, or "not_found"
    slot_id: Optional[uuid.UUID] = None


class PeakTime(BaseModel):
    start_time: time
    count: int
    dates: list[date] = []


class PeakAvailability(BaseModel):
    peak_times: list[PeakTime] = []
    total_slots: int = 0
    date_range: DateRange


# ---------------------------------------------------------------------------
# Clinician exceptions (time off)
# ---------------------------------------------------------------------------


class ExceptionType(str, Enum):
    VACATION = "vacation"
    SICK = "sick"
    CONFERENCE = "conference"
    EMERGENCY = "emergency"
    PERSONAL = "personal"
    TRAINING = "training"


class RecurrenceFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecurringPattern(BaseModel):
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, description="Every N weeks or months")
    end_date: Optional[date] = None


class ClinicianException(BaseModel):
    """A day or part of a day the clinician is unavailable."""

    id: uuid.UUID
    clinician_id: uuid.UUID
    date: date
    exception_type: ExceptionType
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: str
    affected_slot_ids: list[uuid.UUID] = []
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None or self.end_time is None


class ExceptionResult(BaseModel):
    exception: ClinicianException
    affected_slots_count: int = 0
    affected_appointment_ids: list[uuid.UUID] = []


class ExceptionRemoval(BaseModel):
    exception_id: uuid.UUID
    restored_slots_count: int = 0


class ExceptionCheck(BaseModel):
    is_available: bool
    exceptions: list[ClinicianException] = []


class ExceptionOccurrence(BaseModel):
    exception_id: uuid.UUID
    date: date
    exception_type: ExceptionType
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: str


class RecurringExceptions(BaseModel):
    exceptions: list[ClinicianException] = []
    occurrences: list[ExceptionOccurrence] = []


class ExceptionStats(BaseModel):
    total: int = 0
    by_type: dict[str, int] = {}
    recurring: int = 0


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


class AppointmentLocation(BaseModel):
    type: LocationType = LocationType.IN_PERSON
    address: Optional[str] = None
    room: Optional[str] = None
    meeting_link: Optional[str] = None


class AppointmentPayload(BaseModel):
    """Caller-supplied details for the appointment created by a reservation."""

    clinician_patient_id: str
    appointment_type: AppointmentType = AppointmentType.FOLLOW_UP
    visit_reason: str = ""
    time_zone: Optional[str] = None
    location: AppointmentLocation = Field(default_factory=AppointmentLocation)
    notes: Optional[str] = None


class Appointment(BaseModel):
    """A booked appointment."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    clinician_patient_id: str
    clinician_id: uuid.UUID
    slot_id: Optional[uuid.UUID] = None
    scheduled_at: datetime
    duration_minutes: int
    time_zone: str
    appointment_type: AppointmentType
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    visit_reason: str = ""
    location: Optional[AppointmentLocation] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    history: list[dict[str, Any]] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    appointment_id: uuid.UUID
    clinician_id: uuid.UUID
    clinician_patient_id: str
    current_scheduled_at: datetime
    requested_slot_id: Optional[uuid.UUID] = None
    requested_datetime: Optional[datetime] = None
    reason: str
    status: RescheduleRequestStatus = RescheduleRequestStatus.PENDING
    admin_notes: Optional[str] = None
    responded_by: Optional[str] = None
    requested_at: datetime
    responded_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Maintenance reports
# ---------------------------------------------------------------------------


class ClinicianGenerationResult(BaseModel):
    clinician_id: uuid.UUID
    clinician_name: str
    generated_count: Optional[int] = None
    slot_ids: list[uuid.UUID] = []
    error: Optional[str] = None


class BatchReport(BaseModel):
    """Aggregate result of generating slots for every active clinician."""

    total_clinicians: int
    results: list[ClinicianGenerationResult] = []
    date_range: DateRange

    @property
    def failed(self) -> list[ClinicianGenerationResult]:
        return [r for r in self.results if r.error is not None]

    @computed_field
    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @computed_field
    @property
    def total_generated(self) -> int:
        return sum(r.generated_count or 0 for r in self.results)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)


class CleanupResult(BaseModel):
    deleted_count: int
    cutoff_date: date


class BackfillResult(BaseModel):
    missing_dates: list[date] = []
    total_generated: int = 0
    date_range: DateRange


class SuggestionType(str, Enum):
    GAP = "gap_optimization"
    ISOLATED = "isolated_slots"


class Suggestion(BaseModel):
    """Advisory finding from fragmentation analysis."""

    type: SuggestionType
    slot_ids: list[uuid.UUID] = []
    between: list[uuid.UUID] = []
    suggestion: str


class OptimizationReport(BaseModel):
    clinician_id: uuid.UUID
    date: date
    total_slots: int = 0
    suggestions: list[Suggestion] = []
    stats: dict[str, int] = {}


class MaintenanceStats(BaseModel):
    date_range: DateRange
    slot_stats: SlotStats
    active_clinicians: int
    average_slots_per_clinician: float
    appointment_counts: dict[str, int] = {}
