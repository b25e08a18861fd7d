"""Error taxonomy shared by the economy engine and its front-ends."""

from __future__ import annotations


class GachaError(Exception):
    """Base class for errors surfaced to callers."""

    status = "INTERNAL"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"status": self.status, "message": self.message}


class Unauthenticated(GachaError):
    """Raised when a request carries no caller identity."""

    status = "UNAUTHENTICATED"
    http_status = 401


class InvalidArgument(GachaError):
    """Raised for malformed, missing, or out-of-range input."""

    status = "INVALID_ARGUMENT"
    http_status = 400


class FailedPrecondition(GachaError):
    """Raised when the current state does not allow the operation."""

    status = "FAILED_PRECONDITION"
    http_status = 400


class PermissionDenied(GachaError):
    status = "PERMISSION_DENIED"
    http_status = 403


class NotFound(GachaError):
    status = "NOT_FOUND"
    http_status = 404


class InternalError(GachaError):
    status = "INTERNAL"
    http_status = 500


class PoolExhaustedError(InternalError):
    """Raised when a compiled pool has no item to hand out."""


class TransactionConflict(Exception):
    """Raised by the store when a transaction's read set changed before commit.

    Never surfaced directly; the store retries and converts exhaustion into
    :class:`InternalError`.
    """


__all__ = [
    "FailedPrecondition",
    "GachaError",
    "InternalError",
    "InvalidArgument",
    "NotFound",
    "PermissionDenied",
    "PoolExhaustedError",
    "TransactionConflict",
    "Unauthenticated",
]
