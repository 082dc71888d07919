"""Error kinds raised by the report lifecycle.

Every public operation either returns a populated result or raises exactly one
of these. Each carries a single human-readable message.
"""


class ReportError(Exception):
    """Base class for report lifecycle failures."""

    kind = "ReportError"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(ReportError):
    """Required field missing/empty, or the actor may not perform the operation."""

    kind = "ValidationError"

    def __init__(self, message: str, permission: bool = False):
        super().__init__(message)
        self.permission = permission


class InvalidState(ReportError):
    """Operation not permitted for the report's current status."""

    kind = "InvalidState"


class UploadFailed(ReportError):
    """Asset transfer to the media store failed or timed out."""

    kind = "UploadFailed"
    retryable = True


class ResolveFailed(ReportError):
    """Reverse geocoding failed. Callers fall back to a coordinate string."""

    kind = "ResolveFailed"
    retryable = True


class PersistenceFailed(ReportError):
    """The report store rejected a create/update/delete."""

    kind = "PersistenceFailed"
    retryable = True


class NotFound(ReportError):
    """The referenced report no longer exists."""

    kind = "NotFound"


__all__ = [
    "ReportError",
    "ValidationError",
    "InvalidState",
    "UploadFailed",
    "ResolveFailed",
    "PersistenceFailed",
    "NotFound",
]
