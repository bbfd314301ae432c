"""
Audit Chain - Tamper-Evident Audit Log
======================================

An append-only, multi-tenant audit log using:
- SHA-256 over a canonical event serialization
- Per-tenant hash chaining for tamper detection
- Chain verification that locates the first corrupted record
- Per-event proofs and Ed25519-signed chain checkpoints
"""

from audit_chain.crypto import (
    HASH_FIELDS,
    compute_chain_hashes,
    compute_event_hash,
    verify_event_hash,
)
from audit_chain.exceptions import (
    AuditError,
    ChainHeadConflictError,
    DuplicateEventError,
    StorageError,
    ValidationError,
)
from audit_chain.models import (
    Actor,
    ActorType,
    AuditEvent,
    AuditEventQueryResult,
    ChainCheckpoint,
    ChainRecord,
    CreateAuditEventInput,
    EventCategory,
    EventOutcome,
    EventProof,
    EventSeverity,
    QueryAuditEventsInput,
    TamperDetectionResult,
)
from audit_chain.services.processor import AuditService
from audit_chain.services.verifier import verify_chain_integrity, verify_proof
from audit_chain.storage import AuditStorage, InMemoryAuditStorage

__version__ = "1.0.0"
__author__ = "Audit Service Team"

__all__ = [
    "HASH_FIELDS",
    "Actor",
    "ActorType",
    "AuditError",
    "AuditEvent",
    "AuditEventQueryResult",
    "AuditService",
    "AuditStorage",
    "ChainCheckpoint",
    "ChainHeadConflictError",
    "ChainRecord",
    "CreateAuditEventInput",
    "DuplicateEventError",
    "EventCategory",
    "EventOutcome",
    "EventProof",
    "EventSeverity",
    "InMemoryAuditStorage",
    "QueryAuditEventsInput",
    "StorageError",
    "TamperDetectionResult",
    "ValidationError",
    "compute_chain_hashes",
    "compute_event_hash",
    "verify_chain_integrity",
    "verify_event_hash",
    "verify_proof",
]
