"""
Cryptographic operations: canonical event hashing, chain hashing and
Ed25519 signatures for chain checkpoints.
"""

import base64
import hashlib
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from audit_chain.models import Actor, AuditEvent

logger = logging.getLogger(__name__)


# Names of the hashed fields, in canonical (sorted) order. Changing this set
# or the names breaks verification of every existing chain and proof.
HASH_FIELDS: Tuple[str, ...] = (
    "action",
    "actor",
    "category",
    "details",
    "eventId",
    "ipAddress",
    "metadata",
    "outcome",
    "previousHash",
    "resource",
    "severity",
    "tenantId",
    "timestamp",
    "userAgent",
)


class CryptoError(Exception):
    """Base exception for cryptographic operations."""
    pass


def compute_sha256_hex(data: bytes) -> str:
    """Compute SHA-256 hash and return as hex string."""
    return hashlib.sha256(data).hexdigest()


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two hex digests in constant time."""
    return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def canonicalize_event(event_data: dict) -> str:
    """
    Convert data to canonical JSON form.
    - Sorted keys at every depth
    - No whitespace
    - Non-ASCII kept as UTF-8, NaN/Infinity rejected
    """
    return json.dumps(
        event_data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so stored and hashed timestamps agree."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """
    Render a timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def _actor_payload(actor: Actor) -> Dict[str, Any]:
    return {
        "id": actor.id,
        "metadata": actor.metadata,
        "tenantId": actor.tenant_id,
        "type": actor.type.value,
    }


def event_hash_payload(event: AuditEvent, previous_hash: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the hash input for an event.

    Every field in ``HASH_FIELDS`` is present; absent values are ``None``
    so that, in particular, a missing chain link is itself hashed.
    """
    return {
        "action": event.action,
        "actor": _actor_payload(event.actor),
        "category": event.category.value,
        "details": event.details,
        "eventId": event.event_id,
        "ipAddress": event.ip_address,
        "metadata": event.metadata,
        "outcome": event.outcome.value,
        "previousHash": previous_hash,
        "resource": event.resource,
        "severity": event.severity.value,
        "tenantId": event.tenant_id,
        "timestamp": format_timestamp(event.timestamp),
        "userAgent": event.user_agent,
    }


def compute_event_hash(event: AuditEvent, previous_hash: Optional[str] = None) -> str:
    """
    Compute the chain hash of an event.

    Formula: SHA256(canonical_json(event fields + previousHash))

    Args:
        event: The event to hash
        previous_hash: Hash of the tenant's preceding record, None for the first

    Returns:
        64-character lowercase hex digest
    """
    canonical = canonicalize_event(event_hash_payload(event, previous_hash))
    return compute_sha256_hex(canonical.encode("utf-8"))


def verify_event_hash(
    event: AuditEvent,
    stored_hash: str,
    previous_hash: Optional[str] = None
) -> bool:
    """Check that ``stored_hash`` matches the event's content and chain link."""
    return constant_time_compare(compute_event_hash(event, previous_hash), stored_hash)


def compute_chain_hashes(events: Iterable[AuditEvent]) -> List[str]:
    """Compute the hash of every event in order, each linked to the one before."""
    hashes: List[str] = []
    previous_hash: Optional[str] = None

    for event in events:
        previous_hash = compute_event_hash(event, previous_hash)
        hashes.append(previous_hash)

    return hashes


# ============================================================================
# Ed25519 signatures
# ============================================================================

def generate_ed25519_keypair() -> Tuple[str, str]:
    """
    Generate a new Ed25519 key pair.

    Returns:
        Tuple of (private_key_pem, public_key_pem)
    """
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode("utf-8")

    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("utf-8")

    return private_pem, public_pem


def load_ed25519_private_key(private_key_pem: str) -> Ed25519PrivateKey:
    """
    Parse a PEM-encoded Ed25519 private key.

    Raises:
        CryptoError: If the key is malformed or not Ed25519
    """
    try:
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("utf-8"),
            password=None,
        )
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Failed to parse private key: {e}") from e

    if not isinstance(private_key, Ed25519PrivateKey):
        raise CryptoError("Expected Ed25519 private key")

    return private_key


def sign_ed25519(message: bytes, private_key_pem: str) -> bytes:
    """Sign a message using an Ed25519 private key."""
    return load_ed25519_private_key(private_key_pem).sign(message)


def verify_ed25519_signature(
    message: bytes,
    signature: bytes,
    public_key_pem: str
) -> bool:
    """
    Verify an Ed25519 signature using PyNaCl (libsodium wrapper).

    Never raises; any malformed key or signature verifies as False.
    """
    try:
        # The raw 32-byte key is the tail of the SubjectPublicKeyInfo DER
        pem_lines = public_key_pem.strip().split("\n")
        pem_body = "".join(line for line in pem_lines
                           if not line.startswith("-----"))
        key_der = base64.b64decode(pem_body)

        verify_key = VerifyKey(key_der[-32:])
        verify_key.verify(message, signature)
        return True

    except BadSignatureError:
        return False
    except Exception as e:
        logger.debug(f"Ed25519 verification error: {e}")
        return False
