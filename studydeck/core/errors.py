"""
Error taxonomy for studydeck.

Every error carries the HTTP-style status the request boundary reports it
with. Errors are raised where detected and converted to user-facing
messages only at the boundary (web handlers, CLI commands).
"""

from typing import Any, Dict, Optional


class StudyDeckError(Exception):
    """Base exception for all studydeck errors."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the request boundary."""
        return {"error": self.message}


class ValidationError(StudyDeckError):
    """Required request fields are missing or empty."""
    status_code = 400


class NotFoundError(StudyDeckError):
    """Referenced deck or profile does not exist."""
    status_code = 404


class QuotaExceededError(StudyDeckError):
    """Monthly deck or token budget is exhausted.

    Not recoverable without a plan change or a period reset.
    """
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        resource: str,
        used: int,
        limit: int,
        remaining: int,
        requested: int = 0,
    ):
        super().__init__(message)
        self.resource = resource
        self.used = used
        self.limit = limit
        self.remaining = remaining
        self.requested = requested

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "resource": self.resource,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "requested": self.requested,
        }


class GenerationFailed(StudyDeckError):
    """The AI provider call failed or returned unusable output."""
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        if self.detail:
            body["details"] = self.detail
        return body


class PersistenceFailed(StudyDeckError):
    """The store rejected a write."""
    status_code = 500


class RecordingFailed(StudyDeckError):
    """A study outcome could not be resolved to a persisted card or written."""
    status_code = 500


class SignatureInvalid(StudyDeckError):
    """Billing webhook signature verification failed."""
    status_code = 400


class BillingNotConfigured(StudyDeckError):
    """Billing secrets are missing from the environment."""
    status_code = 500
