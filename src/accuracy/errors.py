"""
Accuracy Engine Errors

Typed failures raised by the accuracy engine. The engine never assumes HTTP;
each error carries an ``http_status`` hint that the API layer maps to a
response code.
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import AccuracyReport


class AccuracyEngineError(Exception):
    """Base class for all accuracy engine failures."""

    http_status: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        payload: Dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AccuracyEngineError):
    """Request is missing required identifiers or carries malformed data."""

    http_status = 400


class NotFoundError(AccuracyEngineError):
    """Referenced project, organization or alert does not exist."""

    http_status = 404


class RepositoryError(AccuracyEngineError):
    """Underlying storage failed during a read or write."""

    http_status = 500


class AlertProcessingError(AccuracyEngineError):
    """
    Report was scored and persisted, but alert processing failed.

    The computed report is attached so the caller can decide whether to
    retry alert processing or discard the result.
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        report: "AccuracyReport",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, details={"report_id": report.id})
        self.report = report
        self.cause = cause
