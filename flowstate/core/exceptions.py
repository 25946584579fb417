"""
Error Taxonomy

Typed errors carrying HTTP-style status codes. Callers map ``status_code``
1:1 onto their own transport; ``error_code`` is a stable machine-readable
code for validation failures.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Type


class StateQueryError(Exception):
    """Base error for state, window and metrics queries."""

    status_code: int = 500

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status_code,
            "detail": self.message,
            "code": self.error_code,
        }

    @classmethod
    def from_status(cls, status_code: int, message: str, error_code: Optional[str] = None) -> "StateQueryError":
        """Build the taxonomy subclass matching a status code."""
        error_type = _BY_STATUS.get(status_code)
        if error_type is None:
            return StateQueryError(message, error_code=error_code, status_code=status_code)
        return error_type(message, error_code=error_code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.message!r}, code={self.error_code!r})"


class InvalidRequestError(StateQueryError):
    """Bad bin ranges or malformed identifiers. Caller must fix the input."""
    status_code = 400


class NotFoundError(StateQueryError):
    """Run, model or manifest does not exist."""
    status_code = 404


class ConflictError(StateQueryError):
    """Unparseable model, incomplete metadata or provenance mismatch."""
    status_code = 409


class PreconditionFailedError(StateQueryError):
    """Run has no topology."""
    status_code = 412


class PayloadTooLargeError(StateQueryError):
    """Requested window exceeds the maximum bin count."""
    status_code = 413


class UnprocessableEntityError(StateQueryError):
    """Mode validation rejected the run."""
    status_code = 422


class InternalError(StateQueryError):
    """Unexpected I/O or logic failure."""
    status_code = 500


_BY_STATUS: Dict[int, Type[StateQueryError]] = {
    cls.status_code: cls
    for cls in (
        InvalidRequestError,
        NotFoundError,
        ConflictError,
        PreconditionFailedError,
        PayloadTooLargeError,
        UnprocessableEntityError,
        InternalError,
    )
}


# =============================================================================
# Collaborator errors
# =============================================================================

class ModelParseError(ValueError):
    """Raised when a model document cannot be parsed or is inconsistent."""


class CsvFormatError(ValueError):
    """Raised when a CSV time series is malformed."""


class ManifestMetadataError(ValueError):
    """Raised when run manifest metadata is missing required fields."""
