"""Patient-initiated reschedule requests.

A request is a proposal that staff review later; nothing moves until it is
approved. Approval delegates the actual slot swap to
``BookingCoordinator.reschedule_appointment`` so the same atomicity and
compensation rules apply.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from carebook.core.database import SessionFactory
from carebook.core.repository import (
    AppointmentRepository,
    RescheduleRequestRepository,
    SlotRepository,
    request_to_model,
)
from carebook.scheduling.booking import RESCHEDULABLE, BookingCoordinator
from carebook.scheduling.errors import ConflictError, NotFoundError
from carebook.scheduling.models import (
    AppointmentStatus,
    RescheduleRequest,
    RescheduleRequestStatus,
    SlotStatus,
)

logger = logging.getLogger(__name__)


class RescheduleRequestService:
    """Create, review and list reschedule requests."""

    def __init__(self, session_factory: SessionFactory, coordinator: BookingCoordinator):
        self._session_factory = session_factory
        self._coordinator = coordinator

    async def create_request(
        self,
        appointment_id: uuid.UUID,
        reason: str,
        requested_slot_id: Optional[uuid.UUID] = None,
        requested_datetime: Optional[datetime] = None,
    ) -> RescheduleRequest:
        async with self._session_factory() as session, session.begin():
            appt = await AppointmentRepository(session).get_by_id(appointment_id)
            if appt is None:
                raise NotFoundError("appointment", appointment_id)
            status = AppointmentStatus(appt.status)
            if status not in RESCHEDULABLE:
                raise ConflictError(
                    f"Appointment {appointment_id} is {status.value} and cannot be rescheduled",
                    current_status=status.value,
                )

            requests = RescheduleRequestRepository(session)
            if await requests.get_pending_for_appointment(appointment_id) is not None:
                raise ConflictError("There is already a pending reschedule request for this appointment")

            if requested_slot_id is not None:
                slot = await SlotRepository(session).get_by_id(requested_slot_id)
                if slot is None:
                    raise NotFoundError("slot", requested_slot_id)
                if slot.status != SlotStatus.AVAILABLE.value:
                    raise ConflictError(
                        "Requested time slot is not available",
                        slot_id=requested_slot_id,
                        current_status=slot.status,
                    )
                if slot.clinician_id != appt.clinician_id:
                    raise ConflictError("Requested slot must be with the same clinician", slot_id=requested_slot_id)

            row = await requests.create(
                appointment_id=appointment_id,
                clinician_id=appt.clinician_id,
                clinician_patient_id=appt.clinician_patient_id,
                current_scheduled_at=appt.scheduled_at,
                requested_slot_id=requested_slot_id,
                requested_datetime=requested_datetime,
                reason=reason,
                status=RescheduleRequestStatus.PENDING.value,
            )
            request = request_to_model(row)

        logger.info(f"Reschedule request {request.id} created for appointment {appointment_id}")
        return request

    async def _transition(
        self,
        request_id: uuid.UUID,
        expected: RescheduleRequestStatus,
        new: RescheduleRequestStatus,
        **values,
    ) -> RescheduleRequest:
        """Move a request between statuses with a conditional update.

        Only one of several concurrent reviewers can take a request out of
        *expected*; the others get ConflictError.
        """
        async with self._session_factory() as session, session.begin():
            requests = RescheduleRequestRepository(session)
            if not await requests.compare_and_set(request_id, expected.value, new.value, **values):
                row = await requests.get_by_id(request_id)
                if row is None:
                    raise NotFoundError("reschedule request", request_id)
                raise ConflictError(
                    f"Request has already been processed ({row.status})", current_status=row.status
                )
            return request_to_model(await requests.get_by_id(request_id, refresh=True))

    async def _respond(
        self,
        request_id: uuid.UUID,
        status: RescheduleRequestStatus,
        responded_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> RescheduleRequest:
        values = {}
        if responded_by is not None:
            values.update(responded_by=responded_by, responded_at=datetime.now(timezone.utc))
        if admin_notes is not None:
            values["admin_notes"] = admin_notes
        return await self._transition(request_id, RescheduleRequestStatus.PENDING, status, **values)

    async def approve_request(
        self,
        request_id: uuid.UUID,
        responded_by: str,
        admin_notes: Optional[str] = None,
        slot_id: Optional[uuid.UUID] = None,
    ) -> RescheduleRequest:
        """Approve a pending request, moving the appointment when a slot is known.

        The request is claimed first, so a concurrent cancel or second review
        fails instead of racing the swap. *slot_id* lets staff pick a slot
        when the patient only gave a preferred time. If the swap fails (for
        instance the slot was taken) the request goes back to pending and
        the error propagates.
        """
        approved = await self._respond(request_id, RescheduleRequestStatus.APPROVED, responded_by, admin_notes)
        target = slot_id or approved.requested_slot_id
        if target is not None:
            try:
                await self._coordinator.reschedule_appointment(
                    approved.appointment_id, target, f"Reschedule request approved: {approved.reason}"
                )
            except Exception:
                logger.warning(f"Reschedule request {request_id}: swap failed, returning request to pending")
                await self._transition(
                    request_id,
                    RescheduleRequestStatus.APPROVED,
                    RescheduleRequestStatus.PENDING,
                    responded_by=None,
                    responded_at=None,
                    admin_notes=None,
                )
                raise

        logger.info(f"Reschedule request {request_id} approved by {responded_by}")
        return approved

    async def reject_request(
        self, request_id: uuid.UUID, responded_by: str, admin_notes: Optional[str] = None
    ) -> RescheduleRequest:
        rejected = await self._respond(
            request_id, RescheduleRequestStatus.REJECTED, responded_by, admin_notes
        )
        logger.info(f"Reschedule request {request_id} rejected by {responded_by}")
        return rejected

    async def cancel_request(self, request_id: uuid.UUID) -> RescheduleRequest:
        return await self._respond(request_id, RescheduleRequestStatus.CANCELLED)

    async def list_for_clinician(
        self, clinician_id: uuid.UUID, status: Optional[RescheduleRequestStatus] = None
    ) -> list[RescheduleRequest]:
        async with self._session_factory() as session:
            rows = await RescheduleRequestRepository(session).list_by_clinician(
                clinician_id, status.value if status else None
            )
            return [request_to_model(r) for r in rows]

    async def list_for_patient(
        self, clinician_patient_id: str, status: Optional[RescheduleRequestStatus] = None
    ) -> list[RescheduleRequest]:
        async with self._session_factory() as session:
            rows = await RescheduleRequestRepository(session).list_by_patient(
                clinician_patient_id, status.value if status else None
            )
            return [request_to_model(r) for r in rows]
