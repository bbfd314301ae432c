"""
Audit service.

Records events with hash chaining for tamper detection, and exposes
lookup, search, chain verification and per-event proofs.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Union

from audit_chain.config import Settings, get_settings
from audit_chain.crypto import compute_event_hash, truncate_to_millis
from audit_chain.exceptions import ChainHeadConflictError
from audit_chain.models import (
    AuditEvent,
    AuditEventQueryResult,
    ChainCheckpoint,
    ChainRecord,
    CreateAuditEventInput,
    EventProof,
    QueryAuditEventsInput,
    TamperDetectionResult,
    tenant_id_adapter,
)
from audit_chain.services.checkpoint import CheckpointSigner, verify_checkpoint
from audit_chain.services.verifier import verify_chain_integrity
from audit_chain.storage import AuditStorage

logger = logging.getLogger(__name__)


def generate_event_id() -> str:
    """Generate a random 128-bit event id as 32 hex characters."""
    return secrets.token_hex(16)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditService:
    """
    Append-only audit log with per-tenant hash chains.

    Handles:
    - Recording events linked to the tenant's chain head
    - Point lookups and filtered search
    - Whole-chain verification that reports the first broken record
    - Proofs that let a caller recompute one event's hash
    - Signed checkpoints of a chain's head and length

    Args:
        storage: Append-only audit store
        settings: Configuration (defaults to the cached settings)
        id_factory: Source of unique event ids
        clock: Source of creation timestamps
    """

    def __init__(
        self,
        storage: AuditStorage,
        settings: Optional[Settings] = None,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self._id_factory = id_factory or generate_event_id
        self._clock = clock or utc_now

    async def record(
        self,
        data: Union[CreateAuditEventInput, Mapping[str, Any]]
    ) -> AuditEvent:
        """
        Record an audit event.

        The event gets a fresh id and timestamp, is hashed against the
        tenant's current chain head and appended only if that head has not
        moved in the meantime. A moved head is retried with the new head up
        to ``append_max_attempts`` times.

        Raises:
            ValidationError: If the input is malformed
            ChainHeadConflictError: If every attempt lost the race
            StorageError: If the store fails
        """
        validated = (
            data if isinstance(data, CreateAuditEventInput)
            else CreateAuditEventInput.model_validate(data)
        )

        event = AuditEvent(
            **validated.model_dump(include=set(CreateAuditEventInput.model_fields)),
            event_id=self._id_factory(),
            timestamp=truncate_to_millis(self._clock()),
        )

        attempts = self.settings.append_max_attempts
        attempt = 0

        while True:
            attempt += 1
            previous_hash = await self.storage.chain_head(event.tenant_id)
            event_hash = compute_event_hash(event, previous_hash)

            try:
                stored = await self.storage.append_if_head(
                    event, event_hash, expected_head=previous_hash
                )
            except ChainHeadConflictError:
                if attempt >= attempts:
                    logger.error(
                        f"Giving up on append after {attempts} attempts: "
                        f"tenant={event.tenant_id} id={event.event_id}"
                    )
                    raise
                logger.warning(
                    f"Chain head moved, retrying append ({attempt}/{attempts}): "
                    f"tenant={event.tenant_id} id={event.event_id}"
                )
                continue

            logger.info(
                f"Event stored: tenant={stored.tenant_id} id={stored.event_id} "
                f"action={stored.action}"
            )
            return stored

    async def fetch(self, tenant_id: str, event_id: str) -> Optional[AuditEvent]:
        """Get an event by id, or None if the tenant has no such event."""
        tenant_id_adapter.validate_python(tenant_id)
        record = await self.storage.get(tenant_id, event_id)
        return record.event if record else None

    async def search(
        self,
        query: Union[QueryAuditEventsInput, Mapping[str, Any]]
    ) -> AuditEventQueryResult:
        """
        Search a tenant's events, newest first.

        Paging limits come from this service's settings: a missing ``limit``
        becomes ``query_default_limit`` and anything above
        ``query_max_limit`` is a ValidationError.
        """
        data = (
            query.model_dump(exclude_unset=True) if isinstance(query, QueryAuditEventsInput)
            else dict(query)
        )
        data.setdefault("limit", self.settings.query_default_limit)

        validated = QueryAuditEventsInput.model_validate(
            data,
            context={"query_max_limit": self.settings.query_max_limit}
        )
        return await self.storage.query(validated)

    async def verify(self, tenant_id: str) -> TamperDetectionResult:
        """
        Verify the integrity of a tenant's audit log.

        Never raises for tampering: a broken chain is reported in the
        result, together with every event from the break onward.
        """
        tenant_id_adapter.validate_python(tenant_id)
        records = await self.storage.all_in_order(tenant_id)
        return self._verify_records(tenant_id, records)

    def _verify_records(
        self,
        tenant_id: str,
        records: List[ChainRecord]
    ) -> TamperDetectionResult:
        if not records:
            return TamperDetectionResult(intact=True)

        events = [record.event for record in records]
        stored_hashes = [record.hash for record in records]

        result = verify_chain_integrity(events, stored_hashes)

        if not result.intact:
            broken_at = result.first_broken_index or 0
            logger.warning(
                f"Chain integrity broken: tenant={tenant_id} index={broken_at}"
            )
            return TamperDetectionResult(
                intact=False,
                reason=f"Chain integrity broken at event index {broken_at}",
                affected_events=[event.event_id for event in events[broken_at:]],
                events_checked=broken_at + 1
            )

        return TamperDetectionResult(intact=True, events_checked=len(records))

    async def prove(self, tenant_id: str, event_id: str) -> Optional[EventProof]:
        """
        Build a proof for one event.

        Returns the stored event and hash plus the hash of its chronological
        predecessor (None for the tenant's first event), or None if the
        event does not exist.
        """
        tenant_id_adapter.validate_python(tenant_id)

        record = await self.storage.get(tenant_id, event_id)
        if not record:
            return None

        records = await self.storage.all_in_order(tenant_id)
        index = next(
            (i for i, r in enumerate(records) if r.event.event_id == event_id),
            0
        )
        previous_hash = records[index - 1].hash if index > 0 else None

        return EventProof(
            event=record.event,
            hash=record.hash,
            previous_hash=previous_hash
        )

    async def checkpoint(self, tenant_id: str, signer: CheckpointSigner) -> ChainCheckpoint:
        """Sign the tenant's current chain head and length."""
        tenant_id_adapter.validate_python(tenant_id)

        records = await self.storage.all_in_order(tenant_id)
        chain_head = records[-1].hash if records else None

        checkpoint = signer.sign(tenant_id, chain_head, len(records), issued_at=self._clock())
        logger.info(f"Checkpoint issued: tenant={tenant_id} events={len(records)}")
        return checkpoint

    async def verify_against_checkpoint(
        self,
        tenant_id: str,
        checkpoint: ChainCheckpoint,
        public_key_pem: str
    ) -> TamperDetectionResult:
        """
        Verify a tenant's log and check it still extends a signed checkpoint.

        Catches what the chain alone cannot: records removed from the end
        of the log, or a log rewritten from scratch.
        """
        tenant_id_adapter.validate_python(tenant_id)

        if checkpoint.tenant_id != tenant_id or not verify_checkpoint(checkpoint, public_key_pem):
            return TamperDetectionResult(
                intact=False,
                reason="Checkpoint signature is invalid for this tenant"
            )

        records = await self.storage.all_in_order(tenant_id)
        result = self._verify_records(tenant_id, records)
        if not result.intact:
            return result

        if len(records) < checkpoint.event_count:
            logger.warning(
                f"Log shorter than checkpoint: tenant={tenant_id} "
                f"events={len(records)} checkpoint={checkpoint.event_count}"
            )
            return TamperDetectionResult(
                intact=False,
                reason=(
                    f"Log has {len(records)} events but checkpoint "
                    f"recorded {checkpoint.event_count}"
                ),
                events_checked=len(records)
            )

        if checkpoint.event_count > 0:
            index = checkpoint.event_count - 1
            if records[index].hash != checkpoint.chain_head:
                logger.warning(
                    f"Checkpoint head mismatch: tenant={tenant_id} index={index}"
                )
                return TamperDetectionResult(
                    intact=False,
                    reason=f"Chain diverges from checkpoint at event index {index}",
                    affected_events=[r.event.event_id for r in records[index:]],
                    events_checked=len(records)
                )

        return result
