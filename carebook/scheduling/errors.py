"""Error taxonomy for the scheduling core."""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "detail": self.message}


class ValidationError(SchedulingError):
    """Availability template input violates one or more rules.

    Carries every violated rule, not just the first one found.
    """

    def __init__(self, errors: list[str], message: Optional[str] = None):
        super().__init__(message or "; ".join(errors))
        self.errors = list(errors)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class ConflictError(SchedulingError):
    """Slot or appointment is not in the state the transition requires."""

    def __init__(
        self,
        message: str,
        slot_id: Optional[Any] = None,
        current_status: Optional[str] = None,
    ):
        super().__init__(message)
        self.slot_id = slot_id
        self.current_status = current_status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.slot_id is not None:
            data["slot_id"] = str(self.slot_id)
        if self.current_status is not None:
            data["current_status"] = self.current_status
        return data


class NotFoundError(SchedulingError):
    """Referenced slot, template, appointment or request does not exist."""

    def __init__(self, resource: str, identifier: Any, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["resource"] = self.resource
        return data


class PartialFailure(SchedulingError):
    """A batch finished with some failed items; the report holds the details."""

    def __init__(self, report: Any, failed: int):
        super().__init__(f"{failed} item(s) failed")
        self.report = report
        self.failed = failed


class TransientError(SchedulingError):
    """Storage was unavailable; retrying the (idempotent) step is safe."""
