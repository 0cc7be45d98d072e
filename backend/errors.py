"""
Error taxonomy for the graph engine.

Every error carries the HTTP status the API layer maps it to and whether the
caller may simply re-submit the same request.
"""
from typing import Any, Dict, Optional


class CaseMapError(Exception):
    """Base class for all domain errors raised by the services."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": type(self).__name__,
            "detail": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CaseMapError):
    """Malformed or missing required input. Never retried."""

    status_code = 400


class NotFoundError(CaseMapError):
    """A referenced id does not exist."""

    status_code = 404


class ReferentialIntegrityError(CaseMapError):
    """A reference crosses graphs or points at a row that cannot be linked."""

    status_code = 409


class TransactionInterrupted(CaseMapError):
    """The save transaction hit its deadline or a lock. Re-submit the same save."""

    status_code = 503
    retryable = True


class PersistenceError(CaseMapError):
    """Generic storage failure."""

    status_code = 500
