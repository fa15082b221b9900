"""
Error taxonomy for Badge Printer.

Every error the queue hands back to a caller derives from QueueError and
carries a stable `code` plus the HTTP status the API layer should answer with.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class QueueError(Exception):
    """Base class for errors raised by the print queue and its collaborators."""

    code = "queue_error"
    http_status = 500

    def __init__(self, message: str, *, job_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.job_id:
            data["job_id"] = self.job_id
        if self.field:
            data["field"] = self.field
        return data


class ValidationError(QueueError):
    """Bad or duplicate input. User-correctable, never retried."""

    code = "validation_error"
    http_status = 400


class DuplicateUidError(ValidationError):
    code = "duplicate_uid"
    http_status = 409


class CapacityExceeded(QueueError):
    """Queue is at its bound; the caller should back off and resubmit."""

    code = "queue_full"
    http_status = 429


class NotFound(QueueError):
    code = "not_found"
    http_status = 404


class InvalidState(QueueError):
    """Operation not valid for the job's current state."""

    code = "invalid_state"
    http_status = 409


class RetryLimitExceeded(QueueError):
    """Retry cap reached; only manual intervention can proceed."""

    code = "retry_limit_exceeded"
    http_status = 409


class RenderError(QueueError):
    code = "render_error"
    http_status = 500


class PrintError(QueueError):
    code = "print_error"
    http_status = 502


class PrinterConnectionError(QueueError):
    code = "printer_unavailable"
    http_status = 503


class UnknownPreset(QueueError):
    code = "unknown_preset"
    http_status = 404


__all__ = [
    "CapacityExceeded",
    "DuplicateUidError",
    "InvalidState",
    "NotFound",
    "PrintError",
    "PrinterConnectionError",
    "QueueError",
    "RenderError",
    "RetryLimitExceeded",
    "UnknownPreset",
    "ValidationError",
]
