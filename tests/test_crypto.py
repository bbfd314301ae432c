"""
Tests for canonical event hashing and Ed25519 helpers.
"""

import hashlib
import json
from datetime import datetime, timedelta, timezone

import pytest

from audit_chain.crypto import (
    HASH_FIELDS,
    CryptoError,
    canonicalize_event,
    compute_chain_hashes,
    compute_event_hash,
    event_hash_payload,
    format_timestamp,
    generate_ed25519_keypair,
    sign_ed25519,
    truncate_to_millis,
    verify_ed25519_signature,
    verify_event_hash,
)
from audit_chain.models import Actor, ActorType, EventCategory, EventOutcome, EventSeverity

from conftest import BASE_TIME, make_event, make_events


class TestCanonicalForm:
    """Tests for the canonical hash input."""

    def test_hash_fields_are_sorted(self):
        """The published field list is in canonical order."""
        assert list(HASH_FIELDS) == sorted(HASH_FIELDS)

    def test_payload_has_exactly_the_hash_fields(self):
        """Every hashed field is present, nothing else."""
        payload = event_hash_payload(make_event())

        assert set(payload) == set(HASH_FIELDS)

    def test_absent_fields_are_null_not_omitted(self):
        """Optional fields and the missing chain link serialize as null."""
        event = make_event(
            resource=None,
            details=None,
            metadata=None,
            ip_address=None,
            user_agent=None,
        )
        canonical = canonicalize_event(event_hash_payload(event))

        assert '"previousHash":null' in canonical
        assert '"resource":null' in canonical
        assert '"userAgent":null' in canonical

    def test_canonical_form_deterministic(self):
        """Canonical form is the same regardless of key insertion order."""
        first = {"z": 1, "a": 2, "nested": {"b": 3, "a": 4}}
        second = {"nested": {"a": 4, "b": 3}, "a": 2, "z": 1}

        assert canonicalize_event(first) == canonicalize_event(second)
        assert canonicalize_event(first) == '{"a":2,"nested":{"a":4,"b":3},"z":1}'

    def test_canonical_form_rejects_nan(self):
        with pytest.raises(ValueError):
            canonicalize_event({"value": float("nan")})

    def test_hash_matches_independent_computation(self):
        """The digest is SHA-256 over sorted, compact JSON of the payload."""
        event = make_event()
        payload = {
            "action": "user.login",
            "actor": {"id": "user-1", "metadata": {"role": "admin"}, "tenantId": "tenant-a", "type": "user"},
            "category": "security",
            "details": {"attempt": 1, "method": "password"},
            "eventId": "evt-1",
            "ipAddress": "10.0.0.1",
            "metadata": {"region": "eu-west"},
            "outcome": "success",
            "previousHash": None,
            "resource": "user:1",
            "severity": "info",
            "tenantId": "tenant-a",
            "timestamp": "2025-01-01T12:00:00.000Z",
            "userAgent": "curl/8.0",
        }
        expected = hashlib.sha256(
            json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
        ).hexdigest()

        assert compute_event_hash(event) == expected


class TestTimestampFormat:
    """Tests for the fixed timestamp format."""

    def test_utc_with_milliseconds(self):
        value = datetime(2025, 3, 4, 5, 6, 7, 890123, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-03-04T05:06:07.890Z"

    def test_converts_offsets_to_utc(self):
        value = datetime(2025, 3, 4, 7, 6, 7, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2025-03-04T05:06:07.000Z"

    def test_naive_is_treated_as_utc(self):
        assert format_timestamp(datetime(2025, 1, 1)) == "2025-01-01T00:00:00.000Z"

    def test_truncate_to_millis(self):
        value = datetime(2025, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert truncate_to_millis(value).microsecond == 123000


class TestEventHash:
    """Tests for compute_event_hash."""

    def test_hash_shape(self):
        digest = compute_event_hash(make_event())

        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    def test_deterministic(self):
        event = make_event()
        results = {compute_event_hash(event, "ab" * 32) for _ in range(50)}

        assert len(results) == 1

    def test_previous_hash_changes_digest(self):
        event = make_event()

        assert compute_event_hash(event) != compute_event_hash(event, "00" * 32)
        assert compute_event_hash(event, "00" * 32) != compute_event_hash(event, "11" * 32)

    def test_details_key_order_does_not_matter(self):
        first = make_event(details={"a": 1, "b": {"x": 1, "y": 2}})
        second = make_event(details={"b": {"y": 2, "x": 1}, "a": 1})

        assert compute_event_hash(first) == compute_event_hash(second)

    @pytest.mark.parametrize("changes", [
        {"event_id": "evt-2"},
        {"tenant_id": "tenant-b"},
        {"timestamp": BASE_TIME + timedelta(milliseconds=1)},
        {"actor": Actor(type=ActorType.USER, id="user-2", tenant_id="tenant-a", metadata={"role": "admin"})},
        {"actor": Actor(type=ActorType.SERVICE, id="user-1", tenant_id="tenant-a", metadata={"role": "admin"})},
        {"actor": Actor(type=ActorType.USER, id="user-1", tenant_id=None, metadata={"role": "admin"})},
        {"actor": Actor(type=ActorType.USER, id="user-1", tenant_id="tenant-a", metadata={"role": "viewer"})},
        {"category": EventCategory.DATA},
        {"severity": EventSeverity.CRITICAL},
        {"action": "user.logout"},
        {"resource": "user:2"},
        {"resource": None},
        {"outcome": EventOutcome.FAILURE},
        {"details": {"method": "password", "attempt": 2}},
        {"details": None},
        {"metadata": {"region": "us-east"}},
        {"ip_address": "10.0.0.2"},
        {"user_agent": "curl/8.1"},
    ])
    def test_any_field_change_changes_digest(self, changes):
        """Changing any single hashed field changes the digest."""
        assert compute_event_hash(make_event(**changes)) != compute_event_hash(make_event())

    def test_verify_event_hash(self):
        event = make_event()
        digest = compute_event_hash(event, "ab" * 32)

        assert verify_event_hash(event, digest, "ab" * 32) is True
        assert verify_event_hash(event, digest) is False
        assert verify_event_hash(make_event(action="user.logout"), digest, "ab" * 32) is False


class TestChainHashes:
    """Tests for compute_chain_hashes."""

    def test_each_hash_links_to_previous(self):
        events = make_events(3)
        hashes = compute_chain_hashes(events)

        assert hashes[0] == compute_event_hash(events[0], None)
        assert hashes[1] == compute_event_hash(events[1], hashes[0])
        assert hashes[2] == compute_event_hash(events[2], hashes[1])

    def test_empty(self):
        assert compute_chain_hashes([]) == []

    def test_reordering_changes_hashes(self):
        events = make_events(3)
        swapped = [events[1], events[0], events[2]]

        assert compute_chain_hashes(swapped)[2] != compute_chain_hashes(events)[2]


class TestEd25519:
    """Tests for Ed25519 signing and verification."""

    def test_sign_and_verify(self, ed25519_keypair):
        private_key, public_key = ed25519_keypair
        signature = sign_ed25519(b"chain head", private_key)

        assert len(signature) == 64
        assert verify_ed25519_signature(b"chain head", signature, public_key) is True

    def test_tampered_message_fails(self, ed25519_keypair):
        private_key, public_key = ed25519_keypair
        signature = sign_ed25519(b"chain head", private_key)

        assert verify_ed25519_signature(b"other head", signature, public_key) is False

    def test_wrong_key_fails(self, ed25519_keypair):
        private_key, _ = ed25519_keypair
        _, other_public_key = generate_ed25519_keypair()
        signature = sign_ed25519(b"chain head", private_key)

        assert verify_ed25519_signature(b"chain head", signature, other_public_key) is False

    def test_garbage_signature_returns_false(self, ed25519_keypair):
        _, public_key = ed25519_keypair

        assert verify_ed25519_signature(b"chain head", b"short", public_key) is False

    def test_invalid_private_key(self):
        with pytest.raises(CryptoError):
            sign_ed25519(b"message", "not a pem")
