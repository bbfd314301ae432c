"""
Tests for the chain verifier.
"""

import pytest

from audit_chain.crypto import compute_chain_hashes, compute_event_hash
from audit_chain.models import EventOutcome, EventProof
from audit_chain.services.verifier import verify_chain_integrity, verify_proof

from conftest import make_events


class TestVerifyChainIntegrity:
    """Tests for verify_chain_integrity."""

    def test_empty_chain_is_intact(self):
        result = verify_chain_integrity([], [])

        assert result.intact is True
        assert result.first_broken_index is None

    @pytest.mark.parametrize("count", [1, 2, 5, 20])
    def test_computed_chain_is_intact(self, count):
        events = make_events(count)

        result = verify_chain_integrity(events, compute_chain_hashes(events))

        assert result.intact is True
        assert result.first_broken_index is None

    def test_length_mismatch_breaks_at_zero(self):
        events = make_events(3)
        hashes = compute_chain_hashes(events)

        assert verify_chain_integrity(events, hashes[:2]).first_broken_index == 0
        assert verify_chain_integrity(events[:2], hashes).first_broken_index == 0
        assert verify_chain_integrity(events, []).intact is False

    @pytest.mark.parametrize("position", [0, 2, 4])
    def test_mutated_event_is_localized(self, position):
        """Mutating one event reports that event's position."""
        events = make_events(5)
        hashes = compute_chain_hashes(events)

        events[position] = events[position].model_copy(update={"action": "tampered"})
        result = verify_chain_integrity(events, hashes)

        assert result.intact is False
        assert result.first_broken_index == position

    def test_mutated_hash_is_localized(self):
        events = make_events(4)
        hashes = compute_chain_hashes(events)
        hashes[2] = "0" * 64

        result = verify_chain_integrity(events, hashes)

        assert result.first_broken_index == 2

    def test_reordering_is_detected(self):
        """Swapping two records together with their hashes breaks the chain."""
        events = make_events(4)
        hashes = compute_chain_hashes(events)

        events[1], events[2] = events[2], events[1]
        hashes[1], hashes[2] = hashes[2], hashes[1]

        result = verify_chain_integrity(events, hashes)

        assert result.intact is False
        assert result.first_broken_index == 1

    def test_removed_record_is_detected(self):
        events = make_events(4)
        hashes = compute_chain_hashes(events)

        del events[1]
        del hashes[1]

        result = verify_chain_integrity(events, hashes)

        assert result.first_broken_index == 1

    def test_recomputed_suffix_still_breaks_at_tampered_record(self):
        """A forger who recomputes later hashes still breaks the tampered link."""
        events = make_events(3)
        hashes = compute_chain_hashes(events)

        events[1] = events[1].model_copy(update={"outcome": EventOutcome.FAILURE})
        hashes[2] = compute_event_hash(events[2], compute_event_hash(events[1], hashes[0]))

        assert verify_chain_integrity(events, hashes).first_broken_index == 1


class TestVerifyProof:
    """Tests for independent proof checking."""

    def test_valid_proof(self):
        events = make_events(2)
        hashes = compute_chain_hashes(events)

        proof = EventProof(event=events[1], hash=hashes[1], previous_hash=hashes[0])

        assert verify_proof(proof) is True

    def test_first_event_proof_has_no_previous_hash(self):
        events = make_events(1)
        hashes = compute_chain_hashes(events)

        assert verify_proof(EventProof(event=events[0], hash=hashes[0])) is True
        assert verify_proof(EventProof(event=events[0], hash=hashes[0], previous_hash="0" * 64)) is False

    def test_tampered_event_fails(self):
        events = make_events(2)
        hashes = compute_chain_hashes(events)
        tampered = events[1].model_copy(update={"resource": "user:999"})

        proof = EventProof(event=tampered, hash=hashes[1], previous_hash=hashes[0])

        assert verify_proof(proof) is False
