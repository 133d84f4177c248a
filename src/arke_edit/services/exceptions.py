"""Custom exceptions for Arke Edit services."""

from typing import Any, Optional


class ArkeEditError(Exception):
    """Base class for all errors raised by the edit SDK.

    Attributes:
        message: Human-readable error message
        code: Stable machine-readable error code
        details: Optional structured context for the failure
    """

    code = "ARKE_EDIT_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(message)


class EntityNotFoundError(ArkeEditError):
    """Raised when the entity store reports that an entity does not exist."""

    code = "ENTITY_NOT_FOUND"

    def __init__(self, pi: str):
        self.pi = pi
        super().__init__(f"Entity not found: {pi}", details={"pi": pi})


class CASConflictError(ArkeEditError):
    """Raised when an optimistic-concurrency write loses a race.

    The entity's tip changed between the caller's read and its write. The
    caller must reload the entity and recompute its edit before retrying.

    Attributes:
        pi: Entity that was being updated
        expected_tip: Tip the caller believed was current
        actual_tip: Tip the entity store reports as current (None if unknown)
    """

    code = "CAS_CONFLICT"

    def __init__(self, pi: str, expected_tip: str, actual_tip: Optional[str]):
        self.pi = pi
        self.expected_tip = expected_tip
        self.actual_tip = actual_tip
        super().__init__(
            f"CAS conflict: entity {pi} was modified "
            f"(expected {expected_tip}, got {actual_tip})",
            details={"pi": pi, "expected_tip": expected_tip, "actual_tip": actual_tip},
        )


class RemoteError(ArkeEditError):
    """Raised for a non-success HTTP outcome or a network-level failure.

    Attributes:
        status_code: HTTP status code, or None when no response was received
    """

    code = "REMOTE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.status_code = status_code
        merged = {"status": status_code}
        if isinstance(details, dict):
            merged.update(details)
        super().__init__(message, details=merged)


class ResponseDecodeError(RemoteError):
    """Raised when a successful response body does not match the expected shape."""

    code = "DECODE_ERROR"


class ReprocessError(ArkeEditError):
    """Raised when the reprocess API rejects a regeneration request."""

    code = "REPROCESS_ERROR"

    def __init__(self, message: str, batch_id: Optional[str] = None):
        self.batch_id = batch_id
        super().__init__(message, details={"batch_id": batch_id})


class ValidationError(ArkeEditError):
    """Raised when an edit session is used out of order or in the wrong mode."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, details={"field": field})
