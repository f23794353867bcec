from __future__ import annotations

from typing import Any


class EngageError(Exception):
    """Base class for domain errors surfaced to API callers."""

    code = "engage_error"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(EngageError):
    code = "not_found"

    def __init__(self, resource: str, identifier: Any = None) -> None:
        self.resource = resource
        super().__init__(f"{resource} not found", details={"id": str(identifier)} if identifier is not None else None)


class ValidationError(EngageError):
    code = "validation_failed"


class ConflictError(EngageError):
    code = "conflict"


class SlotAlreadyTakenError(ConflictError):
    """The requested start time was booked by someone else; pick another slot."""

    code = "slot_already_taken"


class SlotUnavailableError(ValidationError):
    code = "slot_unavailable"


class BookingFailedError(EngageError):
    """Storage failure unrelated to slot contention; safe to retry."""

    code = "booking_failed"


class UnknownActionError(ValidationError):
    code = "unknown_action"


class WorkflowTimeoutError(EngageError):
    code = "workflow_timeout"
