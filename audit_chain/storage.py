"""
Append-only storage for audit events.

``AuditStorage`` is the contract the audit service depends on. There is no
update or delete operation. Every implementation must serialize appends per
tenant so that reading the chain head and appending the next record behave
as one atomic step.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from audit_chain.exceptions import ChainHeadConflictError, DuplicateEventError
from audit_chain.models import (
    AuditEvent,
    AuditEventQueryResult,
    ChainRecord,
    QueryAuditEventsInput,
)

logger = logging.getLogger(__name__)


class AuditStorage(ABC):
    """Storage contract for hash-chained audit events, scoped by tenant."""

    @abstractmethod
    async def append(self, event: AuditEvent, hash: str) -> AuditEvent:
        """
        Persist a new (event, hash) pair.

        Raises:
            DuplicateEventError: If (tenant_id, event_id) is already stored
            StorageError: If the backend fails
        """

    @abstractmethod
    async def append_if_head(
        self,
        event: AuditEvent,
        hash: str,
        expected_head: Optional[str]
    ) -> AuditEvent:
        """
        Append only if the tenant's chain head is still ``expected_head``.

        Raises:
            ChainHeadConflictError: If another record was appended meanwhile
            DuplicateEventError: If (tenant_id, event_id) is already stored
            StorageError: If the backend fails
        """

    @abstractmethod
    async def get(self, tenant_id: str, event_id: str) -> Optional[ChainRecord]:
        """Get one record, or None if the tenant has no such event."""

    @abstractmethod
    async def query(self, query: QueryAuditEventsInput) -> AuditEventQueryResult:
        """Filter a tenant's events, newest first, with limit/offset paging."""

    @abstractmethod
    async def all_in_order(self, tenant_id: str) -> List[ChainRecord]:
        """All records of a tenant in insertion order, oldest first."""

    @abstractmethod
    async def chain_head(self, tenant_id: str) -> Optional[str]:
        """Hash of the tenant's most recently appended record."""

    @abstractmethod
    async def count(self, tenant_id: str) -> int:
        """Number of records stored for a tenant."""

    async def health_check(self) -> bool:
        """Check backend availability."""
        return True


def matches_query(event: AuditEvent, query: QueryAuditEventsInput) -> bool:
    """Apply the equality filters and inclusive time bounds of a query."""
    if query.actor_id is not None and event.actor.id != query.actor_id:
        return False
    if query.category is not None and event.category != query.category:
        return False
    if query.severity is not None and event.severity != query.severity:
        return False
    if query.action is not None and event.action != query.action:
        return False
    if query.resource is not None and event.resource != query.resource:
        return False
    if query.outcome is not None and event.outcome != query.outcome:
        return False
    if query.start_time is not None and event.timestamp < query.start_time:
        return False
    if query.end_time is not None and event.timestamp > query.end_time:
        return False
    return True


class InMemoryAuditStorage(AuditStorage):
    """
    In-memory implementation for tests and single-process deployments.

    Two indexes, both written only by appends:
    - ``_records``: (tenant_id, event_id) -> record, for point lookups
    - ``_by_tenant``: tenant_id -> records in append order

    Appends for one tenant are serialized by a per-tenant asyncio lock.
    Reads never await between index accesses, so they cannot observe a
    half-written append.

    Frozen models still carry mutable dicts (details, metadata), so the
    store keeps its own deep copy of each event and hands out deep copies.
    """

    def __init__(self):
        self._records: Dict[Tuple[str, str], ChainRecord] = {}
        self._by_tenant: Dict[str, List[ChainRecord]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def _head(self, tenant_id: str) -> Optional[str]:
        records = self._by_tenant.get(tenant_id)
        return records[-1].hash if records else None

    @staticmethod
    def _copy(record: ChainRecord) -> ChainRecord:
        return ChainRecord(event=record.event.model_copy(deep=True), hash=record.hash)

    def _insert(self, event: AuditEvent, hash: str) -> AuditEvent:
        key = (event.tenant_id, event.event_id)

        if key in self._records:
            raise DuplicateEventError(event.tenant_id, event.event_id)

        record = ChainRecord(event=event.model_copy(deep=True), hash=hash)
        self._records[key] = record
        self._by_tenant.setdefault(event.tenant_id, []).append(record)

        logger.debug(f"Appended record: tenant={event.tenant_id} id={event.event_id}")
        return event

    async def append(self, event: AuditEvent, hash: str) -> AuditEvent:
        async with self._lock_for(event.tenant_id):
            return self._insert(event, hash)

    async def append_if_head(
        self,
        event: AuditEvent,
        hash: str,
        expected_head: Optional[str]
    ) -> AuditEvent:
        async with self._lock_for(event.tenant_id):
            current_head = self._head(event.tenant_id)
            if current_head != expected_head:
                raise ChainHeadConflictError(event.tenant_id, expected_head, current_head)
            return self._insert(event, hash)

    async def get(self, tenant_id: str, event_id: str) -> Optional[ChainRecord]:
        record = self._records.get((tenant_id, event_id))
        return self._copy(record) if record else None

    async def query(self, query: QueryAuditEventsInput) -> AuditEventQueryResult:
        tenant_records = self._by_tenant.get(query.tenant_id, [])

        # Newest insertion first, then a stable sort by timestamp keeps
        # later-inserted events ahead on equal timestamps.
        filtered = [
            record.event for record in reversed(tenant_records)
            if matches_query(record.event, query)
        ]
        filtered.sort(key=lambda event: event.timestamp, reverse=True)

        total = len(filtered)
        page = [
            event.model_copy(deep=True)
            for event in filtered[query.offset:query.offset + query.limit]
        ]

        return AuditEventQueryResult(
            events=page,
            total=total,
            has_more=query.offset + query.limit < total
        )

    async def all_in_order(self, tenant_id: str) -> List[ChainRecord]:
        return [self._copy(record) for record in self._by_tenant.get(tenant_id, [])]

    async def chain_head(self, tenant_id: str) -> Optional[str]:
        return self._head(tenant_id)

    async def count(self, tenant_id: str) -> int:
        return len(self._by_tenant.get(tenant_id, []))
