"""
Pydantic models for audit events, queries and verification results.

These models double as the validation layer: building a
``CreateAuditEventInput`` or ``QueryAuditEventsInput`` from untrusted
input raises ``pydantic.ValidationError`` on malformed data.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    StringConstraints,
    TypeAdapter,
    ValidationInfo,
    field_validator,
    model_validator,
)
from typing_extensions import Annotated

from audit_chain.config import get_settings


TenantId = Annotated[str, StringConstraints(min_length=1, max_length=255)]

JsonMap = Dict[str, JsonValue]

tenant_id_adapter = TypeAdapter(TenantId)


def _check_json_map(value: Optional[JsonMap]) -> Optional[JsonMap]:
    """Reject maps that have no canonical JSON form (NaN, Infinity)."""
    if value is not None:
        try:
            json.dumps(value, allow_nan=False)
        except ValueError:
            raise ValueError("Must not contain NaN or infinite numbers")
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Enumerations
# ============================================================================

class ActorType(str, Enum):
    USER = "user"
    SYSTEM = "system"
    SERVICE = "service"


class EventCategory(str, Enum):
    SECURITY = "security"
    FINANCIAL = "financial"
    ADMINISTRATIVE = "administrative"
    DATA = "data"
    SYSTEM = "system"


class EventSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class EventOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# ============================================================================
# Event Models
# ============================================================================

class Actor(BaseModel):
    """Who performed an action. Opaque attribution, not linked to a user store."""

    model_config = ConfigDict(frozen=True)

    type: ActorType
    id: str = Field(..., min_length=1, max_length=255, examples=["user-123", "billing-api"])
    tenant_id: Optional[TenantId] = None
    metadata: Optional[JsonMap] = None

    @field_validator("metadata")
    @classmethod
    def check_metadata(cls, v: Optional[JsonMap]) -> Optional[JsonMap]:
        return _check_json_map(v)


class AuditEventSubmission(BaseModel):
    """Request body for recording an event; the tenant comes from the URL."""

    actor: Actor
    category: EventCategory
    severity: EventSeverity
    action: str = Field(
        ...,
        min_length=1,
        max_length=255,
        examples=["user.login", "sale.created", "refund.issued"]
    )
    resource: Optional[str] = Field(
        default=None,
        max_length=500,
        examples=["sale:12345", "user:67890"]
    )
    outcome: EventOutcome
    details: Optional[JsonMap] = None
    metadata: Optional[JsonMap] = None
    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("details", "metadata")
    @classmethod
    def check_maps(cls, v: Optional[JsonMap]) -> Optional[JsonMap]:
        return _check_json_map(v)


class CreateAuditEventInput(AuditEventSubmission):
    """Input for recording an audit event."""

    tenant_id: TenantId


class AuditEvent(CreateAuditEventInput):
    """
    A recorded audit event.

    Immutable once created: every field takes part in the event hash.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1)
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store timestamps as timezone-aware UTC."""
        return _as_utc(v)


class ChainRecord(BaseModel):
    """An event together with its chain hash, as persisted by a store."""

    model_config = ConfigDict(frozen=True)

    event: AuditEvent
    hash: str


# ============================================================================
# Query Models
# ============================================================================

def _default_limit() -> int:
    return get_settings().query_default_limit


class QueryAuditEventsInput(BaseModel):
    """
    Filter and paging parameters for searching a tenant's events.

    ``limit`` bounds default to the cached settings; pass
    ``context={"query_max_limit": ...}`` to validate against other settings.
    """

    tenant_id: TenantId
    actor_id: Optional[str] = None
    category: Optional[EventCategory] = None
    severity: Optional[EventSeverity] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    outcome: Optional[EventOutcome] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default_factory=_default_limit, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_bounds(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None

    @field_validator("limit")
    @classmethod
    def check_max_limit(cls, v: int, info: ValidationInfo) -> int:
        max_limit = (info.context or {}).get("query_max_limit") or get_settings().query_max_limit
        if v > max_limit:
            raise ValueError(f"limit must be at most {max_limit}")
        return v

    @model_validator(mode="after")
    def check_time_range(self) -> "QueryAuditEventsInput":
        if self.start_time and self.end_time and self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")
        return self


class AuditEventQueryResult(BaseModel):
    """One page of search results, newest first."""

    events: List[AuditEvent]
    total: int
    has_more: bool


# ============================================================================
# Verification Models
# ============================================================================

class ChainCheckResult(BaseModel):
    """Outcome of recomputing a hash chain."""

    intact: bool
    first_broken_index: Optional[int] = None


class TamperDetectionResult(BaseModel):
    """Result of verifying a tenant's log. A break is a result, not an error."""

    intact: bool
    reason: Optional[str] = None
    affected_events: List[str] = Field(default_factory=list)
    events_checked: int = 0


class EventProof(BaseModel):
    """Everything needed to recompute an event's hash independently."""

    event: AuditEvent
    hash: str
    previous_hash: Optional[str] = None


class ChainCheckpoint(BaseModel):
    """Signed statement of a tenant's chain head and length."""

    model_config = ConfigDict(frozen=True)

    tenant_id: TenantId
    chain_head: Optional[str] = None
    event_count: int = Field(..., ge=0)
    issued_at: datetime
    signature: str = Field(..., description="Base64-encoded Ed25519 signature")

    @field_validator("issued_at")
    @classmethod
    def normalize_issued_at(cls, v: datetime) -> datetime:
        return _as_utc(v)


# ============================================================================
# Health Check Models
# ============================================================================

class HealthStatus(BaseModel):
    """Health check response."""

    status: str = Field(..., examples=["healthy", "unhealthy"])
    version: str
    storage: str = Field(..., examples=["connected", "disconnected"])
    uptime_seconds: float
    timestamp: datetime
