"""
Test fixtures and configuration for pytest.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from audit_chain.config import Settings
from audit_chain.crypto import generate_ed25519_keypair
from audit_chain.models import (
    Actor,
    ActorType,
    AuditEvent,
    ChainRecord,
    EventCategory,
    EventOutcome,
    EventSeverity,
)
from audit_chain.services.processor import AuditService
from audit_chain.storage import InMemoryAuditStorage


BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        storage_backend="memory",
        query_default_limit=100,
        query_max_limit=1000,
        append_max_attempts=3,
    )


@pytest.fixture
def storage() -> InMemoryAuditStorage:
    """Fresh in-memory audit store."""
    return InMemoryAuditStorage()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Deterministic clock advancing one second per call."""
    ticks = {"n": 0}

    def now() -> datetime:
        ticks["n"] += 1
        return BASE_TIME + timedelta(seconds=ticks["n"])

    return now


@pytest.fixture
def service(storage: InMemoryAuditStorage, settings: Settings, clock) -> AuditService:
    """Audit service over the in-memory store."""
    return AuditService(storage, settings, clock=clock)


@pytest.fixture
def ed25519_keypair() -> tuple[str, str]:
    """Generate an Ed25519 keypair for testing."""
    return generate_ed25519_keypair()


@pytest.fixture
def login_input() -> dict:
    """Input for a successful login event in tenant-a."""
    return {
        "tenant_id": "tenant-a",
        "actor": {"type": "user", "id": "user-1", "tenant_id": "tenant-a"},
        "category": "security",
        "severity": "info",
        "action": "user.login",
        "outcome": "success",
        "ip_address": "192.168.1.100",
        "user_agent": "Mozilla/5.0",
    }


@pytest.fixture
def sale_input() -> dict:
    """Input for a sale event in tenant-a."""
    return {
        "tenant_id": "tenant-a",
        "actor": {"type": "service", "id": "pos-api"},
        "category": "financial",
        "severity": "info",
        "action": "sale.created",
        "resource": "sale:12345",
        "outcome": "success",
        "details": {"amount": 1500, "currency": "NGN", "items": [{"sku": "A1", "qty": 2}]},
        "metadata": {"terminal": "T-7"},
    }


def make_event(**overrides) -> AuditEvent:
    """Build a fully populated event, overriding any field."""
    fields = dict(
        event_id="evt-1",
        tenant_id="tenant-a",
        timestamp=BASE_TIME,
        actor=Actor(type=ActorType.USER, id="user-1", tenant_id="tenant-a", metadata={"role": "admin"}),
        category=EventCategory.SECURITY,
        severity=EventSeverity.INFO,
        action="user.login",
        resource="user:1",
        outcome=EventOutcome.SUCCESS,
        details={"method": "password", "attempt": 1},
        metadata={"region": "eu-west"},
        ip_address="10.0.0.1",
        user_agent="curl/8.0",
    )
    fields.update(overrides)
    return AuditEvent(**fields)


def make_events(count: int, tenant_id: str = "tenant-a") -> list[AuditEvent]:
    """Build ``count`` distinct events for one tenant."""
    return [
        make_event(
            event_id=f"evt-{i}",
            tenant_id=tenant_id,
            timestamp=BASE_TIME + timedelta(seconds=i),
            action=f"action.{i}",
        )
        for i in range(count)
    ]


def tamper_record(
    storage: InMemoryAuditStorage,
    tenant_id: str,
    index: int,
    hash: Optional[str] = None,
    **event_changes
) -> None:
    """
    Overwrite a stored record behind the store's back, as an attacker with
    direct storage access would. Both indexes are updated.
    """
    records = storage._by_tenant[tenant_id]
    old = records[index]
    new = ChainRecord(
        event=old.event.model_copy(update=event_changes),
        hash=hash if hash is not None else old.hash,
    )
    records[index] = new
    storage._records[(tenant_id, old.event.event_id)] = new
