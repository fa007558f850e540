from __future__ import annotations

from typing import Any, Dict, Optional


class ShiftError(Exception):
    """Base class for every failure raised by the shift core."""

    code = "shift_error"

    def __init__(self, message: str, *, shift_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.shift_id = shift_id

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.shift_id is not None:
            payload["shift_id"] = self.shift_id
        return payload


class InvalidInterval(ShiftError):
    """start >= end, a class slot outside its shift, or overlapping class slots."""

    code = "invalid_interval"


class InvalidDelta(ShiftError):
    """A change request whose merged result would break the interval rules."""

    code = "invalid_delta"


class InvalidTransition(ShiftError):
    code = "invalid_transition"


class PermissionDenied(ShiftError):
    code = "permission_denied"


class ConflictingWrite(ShiftError):
    """The persisted status no longer matches the status the caller last read."""

    code = "conflicting_write"

    def __init__(
        self,
        message: str,
        *,
        shift_id: Optional[str] = None,
        expected_status: Optional[str] = None,
        actual_status: Optional[str] = None,
    ) -> None:
        super().__init__(message, shift_id=shift_id)
        self.expected_status = expected_status
        self.actual_status = actual_status


class NotFound(ShiftError):
    code = "not_found"


class MalformedDocument(ShiftError):
    """A stored or imported document that cannot be normalized into a shift."""

    code = "malformed_document"


class InvalidReport(ShiftError):
    """A completion report with unusable task counts, or one sent with another action."""

    code = "invalid_report"
