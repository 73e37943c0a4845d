"""
Domain errors for the report lifecycle.

Services raise these; main.py turns them into JSON responses.
Guard violations leave the report untouched.
"""

from typing import Any, Dict, Optional


class AgapayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "code": self.code,
            "msg": self.message,
            "details": self.details,
        }


class ValidationError(AgapayError):
    """Malformed or missing input. `details` maps field paths to messages."""

    status_code = 400
    code = "validation_error"


class NotFoundError(AgapayError):
    status_code = 404
    code = "not_found"


class InvalidTransition(AgapayError):
    status_code = 400
    code = "invalid_transition"


class ForbiddenEdit(AgapayError):
    status_code = 403
    code = "forbidden_edit"


class OfficerMismatch(AgapayError):
    status_code = 400
    code = "officer_mismatch"


class ConsentRequired(AgapayError):
    status_code = 400
    code = "consent_required"


class NoChannelSelected(AgapayError):
    status_code = 400
    code = "no_channel_selected"


class PermissionDenied(AgapayError):
    status_code = 403
    code = "permission_denied"


class GeocodingFailure(AgapayError):
    """The address could not be resolved. Callers may retry."""

    status_code = 422
    code = "geocoding_failure"


class ChannelDispatchFailure(AgapayError):
    """
    A notification channel failed.

    Raised inside channel adapters only; the dispatcher converts it into a
    failure outcome and it never reaches the API caller.
    """

    status_code = 502
    code = "channel_dispatch_failure"


class StorageFailure(AgapayError):
    status_code = 500
    code = "storage_failure"
