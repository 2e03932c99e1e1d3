"""Identity sync errors."""

from __future__ import annotations


class IdentitySyncError(Exception):
    """Base error for identity sync operations."""

    def __init__(self, message: str, code: str = "IDENTITY_SYNC_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class StoreError(IdentitySyncError):
    """The cluster API rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None, code: str = "STORE_ERROR"):
        super().__init__(message, code)
        self.status = status


class NotFoundError(StoreError):
    """Object does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404, code="NOT_FOUND")


class ConflictError(StoreError):
    """Write lost an optimistic concurrency race (stale resourceVersion)."""

    def __init__(self, message: str):
        super().__init__(message, status=409, code="CONFLICT")


class ValidationError(IdentitySyncError):
    """Input is malformed or violates a caller contract."""

    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")


class BindingSyncError(IdentitySyncError):
    """A ServiceAccount write failed part way through a sync.

    ``changes`` lists the bindings already written before the failure so the
    caller can still restart their workloads.
    """

    def __init__(self, cause: StoreError, changes: list | None = None):
        super().__init__(f"ServiceAccount update failed: {cause.message}", "BINDING_SYNC_FAILED")
        self.cause = cause
        self.changes = list(changes or [])
