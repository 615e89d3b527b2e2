"""
RoofOps — Domain exceptions.

Service functions raise these; ``roofops.app`` turns them into JSON
responses shaped ``{"error": ..., "message": ..., **details}`` with the
exception's HTTP status code.
"""

from typing import Any, Dict, Optional


class RoofOpsError(Exception):
    """Base exception for all RoofOps domain errors."""

    status_code: int = 400
    error: str = "Request failed"

    def __init__(
        self,
        message: str,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, **self.details}


class AuthenticationError(RoofOpsError):
    status_code = 401
    error = "Unauthorized"


class PermissionDeniedError(RoofOpsError):
    status_code = 403
    error = "Insufficient permissions"


class NotFoundError(RoofOpsError):
    status_code = 404
    error = "Not found"


class ConflictError(RoofOpsError):
    status_code = 409
    error = "Conflict"


class ValidationFailedError(RoofOpsError):
    status_code = 400
    error = "Validation failed"


class RateLimitedError(RoofOpsError):
    status_code = 429
    error = "Too many requests"
