"""
Event endpoints - record, fetch, search and prove audit events.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from prometheus_client import Counter, Histogram

from audit_chain.dependencies import get_audit_service
from audit_chain.models import (
    AuditEvent,
    AuditEventQueryResult,
    AuditEventSubmission,
    CreateAuditEventInput,
    EventCategory,
    EventOutcome,
    EventProof,
    EventSeverity,
)
from audit_chain.services.processor import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tenants/{tenant_id}/events", tags=["events"])

# Prometheus metrics
events_recorded = Counter(
    'audit_events_recorded_total',
    'Total events recorded',
    ['category', 'outcome']
)
record_duration = Histogram(
    'audit_record_seconds',
    'Time to hash and append one event'
)


@router.post("", response_model=AuditEvent, status_code=201)
async def record_event(
    tenant_id: str,
    submission: AuditEventSubmission,
    service: AuditService = Depends(get_audit_service)
):
    """
    Record an audit event for a tenant.

    The event is assigned an id and timestamp, hashed together with the
    tenant's current chain head, and appended to the log. Events are
    immutable: there is no update or delete endpoint.

    **Returns:** the stored event (201)
    """
    data = CreateAuditEventInput(tenant_id=tenant_id, **submission.model_dump())

    with record_duration.time():
        event = await service.record(data)

    events_recorded.labels(
        category=event.category.value,
        outcome=event.outcome.value
    ).inc()

    return event


@router.get("", response_model=AuditEventQueryResult)
async def search_events(
    tenant_id: str,
    actor_id: Optional[str] = None,
    category: Optional[EventCategory] = None,
    severity: Optional[EventSeverity] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    outcome: Optional[EventOutcome] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    service: AuditService = Depends(get_audit_service)
):
    """
    Search a tenant's events, newest first.

    **Query Parameters:**
    - `actor_id`, `category`, `severity`, `action`, `resource`, `outcome`: equality filters
    - `start_time`, `end_time`: inclusive time bounds
    - `limit`, `offset`: paging (`has_more` tells whether another page exists)
    """
    params = {
        "tenant_id": tenant_id,
        "actor_id": actor_id,
        "category": category,
        "severity": severity,
        "action": action,
        "resource": resource,
        "outcome": outcome,
        "start_time": start_time,
        "end_time": end_time,
        "limit": limit,
        "offset": offset,
    }
    return await service.search(
        {key: value for key, value in params.items() if value is not None}
    )


@router.get("/{event_id}", response_model=AuditEvent)
async def get_event(
    tenant_id: str,
    event_id: str,
    service: AuditService = Depends(get_audit_service)
):
    """Get one event by id."""
    event = await service.fetch(tenant_id, event_id)

    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")

    return event


@router.get("/{event_id}/proof", response_model=EventProof)
async def prove_event(
    tenant_id: str,
    event_id: str,
    service: AuditService = Depends(get_audit_service)
):
    """
    Get a proof for one event.

    The proof carries the event, its stored hash and the hash of its
    predecessor in the tenant's chain, so a client can recompute the hash
    with the published canonical serialization and compare.
    """
    proof = await service.prove(tenant_id, event_id)

    if proof is None:
        raise HTTPException(status_code=404, detail="Event not found")

    return proof
