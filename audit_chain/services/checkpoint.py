"""
Signed chain checkpoints.

A checkpoint is an Ed25519-signed statement of a tenant's chain head and
length at one moment. Holding one lets a verifier notice records removed
from the end of a log, which the hash chain alone cannot reveal.
"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from audit_chain.crypto import (
    canonicalize_event,
    format_timestamp,
    load_ed25519_private_key,
    sign_ed25519,
    verify_ed25519_signature,
)
from audit_chain.models import ChainCheckpoint

logger = logging.getLogger(__name__)


def checkpoint_message(
    tenant_id: str,
    chain_head: Optional[str],
    event_count: int,
    issued_at: datetime
) -> bytes:
    """Canonical bytes covered by a checkpoint signature."""
    return canonicalize_event({
        "chainHead": chain_head,
        "eventCount": event_count,
        "issuedAt": format_timestamp(issued_at),
        "tenantId": tenant_id,
    }).encode("utf-8")


class CheckpointSigner:
    """Signs checkpoints with an Ed25519 private key."""

    def __init__(self, private_key_pem: str):
        # Fail on a bad key at startup, not on the first checkpoint
        load_ed25519_private_key(private_key_pem)
        self._private_key_pem = private_key_pem

    @classmethod
    def from_file(cls, path: Path) -> "CheckpointSigner":
        """Load the signing key from a PEM file."""
        return cls(Path(path).read_text(encoding="utf-8"))

    def sign(
        self,
        tenant_id: str,
        chain_head: Optional[str],
        event_count: int,
        issued_at: Optional[datetime] = None
    ) -> ChainCheckpoint:
        issued_at = issued_at or datetime.now(timezone.utc)
        message = checkpoint_message(tenant_id, chain_head, event_count, issued_at)
        signature = sign_ed25519(message, self._private_key_pem)

        return ChainCheckpoint(
            tenant_id=tenant_id,
            chain_head=chain_head,
            event_count=event_count,
            issued_at=issued_at,
            signature=base64.b64encode(signature).decode("utf-8")
        )


def verify_checkpoint(checkpoint: ChainCheckpoint, public_key_pem: str) -> bool:
    """Check a checkpoint's signature. Never raises."""
    try:
        signature = base64.b64decode(checkpoint.signature, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Checkpoint signature is not valid base64")
        return False

    message = checkpoint_message(
        checkpoint.tenant_id,
        checkpoint.chain_head,
        checkpoint.event_count,
        checkpoint.issued_at
    )
    return verify_ed25519_signature(message, signature, public_key_pem)
