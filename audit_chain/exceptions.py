"""
Error types raised by the audit log.

Integrity breaks are never raised: they are reported as a normal
``TamperDetectionResult``. Input validation failures surface as
pydantic's ``ValidationError``, re-exported here for convenience.
"""

from typing import Optional

from pydantic import ValidationError


class AuditError(Exception):
    """Base exception for audit log operations."""
    pass


class DuplicateEventError(AuditError):
    """Raised when an event with the same (tenant, id) is appended twice."""

    def __init__(self, tenant_id: str, event_id: str):
        self.tenant_id = tenant_id
        self.event_id = event_id
        super().__init__(f"Event already exists: tenant={tenant_id} id={event_id}")


class ChainHeadConflictError(AuditError):
    """Raised when a compare-and-append observes a different chain head."""

    def __init__(self, tenant_id: str, expected: Optional[str], actual: Optional[str]):
        self.tenant_id = tenant_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Chain head moved for tenant={tenant_id}: "
            f"expected={expected} actual={actual}"
        )


class StorageError(AuditError):
    """Raised when the storage backend fails (I/O, unavailability)."""
    pass


__all__ = [
    "AuditError",
    "ChainHeadConflictError",
    "DuplicateEventError",
    "StorageError",
    "ValidationError",
]
