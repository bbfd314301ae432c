"""
Chain verification service.

Recomputes a tenant's hash chain from scratch and localizes the first
record whose stored hash no longer matches its content or position.
"""

import logging
from typing import Optional, Sequence

from audit_chain.crypto import compute_event_hash, constant_time_compare
from audit_chain.models import AuditEvent, ChainCheckResult, EventProof

logger = logging.getLogger(__name__)


def verify_chain_integrity(
    events: Sequence[AuditEvent],
    stored_hashes: Sequence[str]
) -> ChainCheckResult:
    """
    Verify a chain of events against their stored hashes.

    The chain is walked oldest first. Each event is hashed with the
    recomputed hash of its predecessor, so a mutated event, a mutated
    hash or a reordering all surface at the first affected position.
    Verification stops there: later links cannot be evaluated once the
    expected previous hash is unknown.

    Args:
        events: Events in insertion order
        stored_hashes: The hash recorded for each event, same order

    Returns:
        ChainCheckResult with the first broken index, if any. A length
        mismatch is reported as broken at index 0.
    """
    if len(events) != len(stored_hashes):
        logger.warning(
            f"Chain length mismatch: {len(events)} events, {len(stored_hashes)} hashes"
        )
        return ChainCheckResult(intact=False, first_broken_index=0)

    previous_hash: Optional[str] = None

    for index, (event, stored_hash) in enumerate(zip(events, stored_hashes)):
        expected_hash = compute_event_hash(event, previous_hash)

        if not constant_time_compare(expected_hash, stored_hash):
            return ChainCheckResult(intact=False, first_broken_index=index)

        previous_hash = expected_hash

    return ChainCheckResult(intact=True)


def verify_proof(proof: EventProof) -> bool:
    """
    Independently check an event proof.

    Returns True if hashing the proof's event with its previous hash
    reproduces the proof's hash.
    """
    return constant_time_compare(
        compute_event_hash(proof.event, proof.previous_hash),
        proof.hash
    )
