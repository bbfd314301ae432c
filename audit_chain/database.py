"""
PostgreSQL connection management and the PostgreSQL-backed audit store.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncGenerator, Iterator, List, Optional

import asyncpg
from asyncpg import Connection, Pool

from audit_chain.config import Settings, get_settings
from audit_chain.exceptions import (
    ChainHeadConflictError,
    DuplicateEventError,
    StorageError,
)
from audit_chain.models import (
    AuditEvent,
    AuditEventQueryResult,
    ChainRecord,
    QueryAuditEventsInput,
)
from audit_chain.storage import AuditStorage

logger = logging.getLogger(__name__)


# ``event_json`` is TEXT, not JSONB: the exact serialized event is kept so
# that reloading it cannot renormalize numbers or keys.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS audit_events (
    seq            BIGSERIAL PRIMARY KEY,
    tenant_id      TEXT NOT NULL,
    event_id       TEXT NOT NULL,
    event_json     TEXT NOT NULL,
    event_hash     TEXT NOT NULL,
    timestamp_utc  TIMESTAMPTZ NOT NULL,
    actor_id       TEXT NOT NULL,
    category       TEXT NOT NULL,
    severity       TEXT NOT NULL,
    action         TEXT NOT NULL,
    resource       TEXT,
    outcome        TEXT NOT NULL,
    UNIQUE (tenant_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_audit_events_tenant_seq
    ON audit_events (tenant_id, seq);

CREATE INDEX IF NOT EXISTS idx_audit_events_tenant_time
    ON audit_events (tenant_id, timestamp_utc DESC);

CREATE TABLE IF NOT EXISTS chain_state (
    tenant_id        TEXT PRIMARY KEY,
    last_chain_hash  TEXT NOT NULL,
    last_event_id    TEXT NOT NULL,
    last_updated     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


class Database:
    """Async PostgreSQL database connection pool manager."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._pool: Optional[Pool] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            logger.info("Connecting to PostgreSQL...")

            self._pool = await asyncpg.create_pool(
                dsn=self.settings.async_database_url,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
                command_timeout=self.settings.db_command_timeout,
                server_settings={
                    'application_name': self.settings.app_name,
                }
            )

            logger.info("PostgreSQL connection pool created successfully")

    async def disconnect(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is None:
                return

            logger.info("Closing PostgreSQL connection pool...")
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    async def init_schema(self) -> None:
        """Create the audit tables if they do not exist."""
        await self.execute(SCHEMA_SQL)

    @property
    def pool(self) -> Pool:
        """Get the connection pool."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return status."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> list:
        """Fetch all rows from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        """Fetch a single value from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """Get a connection with transaction context."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError) as e:
            logger.error(f"Database health check failed: {e}")
            return False


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StorageError, keeping the cause."""
    try:
        yield
    except asyncpg.UniqueViolationError:
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise StorageError(f"{operation} failed: {e}") from e


def _record_from_row(row) -> ChainRecord:
    return ChainRecord(
        event=AuditEvent.model_validate_json(row['event_json']),
        hash=row['event_hash']
    )


class PostgresAuditStorage(AuditStorage):
    """
    Audit store backed by PostgreSQL.

    Insertion order is the ``seq`` column. Appends for one tenant are
    serialized with a transaction-scoped advisory lock keyed on the tenant,
    so the chain head read and the insert happen atomically even for the
    tenant's first event (when no ``chain_state`` row exists to lock).
    """

    def __init__(self, db: Database):
        self.db = db

    async def _append(
        self,
        event: AuditEvent,
        hash: str,
        check_head: bool,
        expected_head: Optional[str] = None
    ) -> AuditEvent:
        try:
            with storage_errors("append"):
                async with self.db.transaction() as conn:
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock(hashtext($1))",
                        event.tenant_id
                    )

                    if check_head:
                        current_head = await conn.fetchval(
                            "SELECT last_chain_hash FROM chain_state WHERE tenant_id = $1",
                            event.tenant_id
                        )
                        if current_head != expected_head:
                            raise ChainHeadConflictError(
                                event.tenant_id, expected_head, current_head
                            )

                    await conn.execute(
                        """
                        INSERT INTO audit_events (
                            tenant_id, event_id, event_json, event_hash,
                            timestamp_utc, actor_id, category, severity,
                            action, resource, outcome
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                        """,
                        event.tenant_id,
                        event.event_id,
                        event.model_dump_json(),
                        hash,
                        event.timestamp,
                        event.actor.id,
                        event.category.value,
                        event.severity.value,
                        event.action,
                        event.resource,
                        event.outcome.value
                    )

                    await conn.execute(
                        """
                        INSERT INTO chain_state (tenant_id, last_chain_hash, last_event_id, last_updated)
                        VALUES ($1, $2, $3, now())
                        ON CONFLICT (tenant_id) DO UPDATE
                        SET last_chain_hash = EXCLUDED.last_chain_hash,
                            last_event_id = EXCLUDED.last_event_id,
                            last_updated = now()
                        """,
                        event.tenant_id,
                        hash,
                        event.event_id
                    )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateEventError(event.tenant_id, event.event_id) from e

        logger.debug(f"Appended record: tenant={event.tenant_id} id={event.event_id}")
        return event

    async def append(self, event: AuditEvent, hash: str) -> AuditEvent:
        return await self._append(event, hash, check_head=False)

    async def append_if_head(
        self,
        event: AuditEvent,
        hash: str,
        expected_head: Optional[str]
    ) -> AuditEvent:
        return await self._append(event, hash, check_head=True, expected_head=expected_head)

    async def get(self, tenant_id: str, event_id: str) -> Optional[ChainRecord]:
        with storage_errors("get"):
            row = await self.db.fetchrow(
                """
                SELECT event_json, event_hash
                FROM audit_events
                WHERE tenant_id = $1 AND event_id = $2
                """,
                tenant_id,
                event_id
            )

        return _record_from_row(row) if row else None

    async def query(self, query: QueryAuditEventsInput) -> AuditEventQueryResult:
        conditions = ["tenant_id = $1"]
        params: list = [query.tenant_id]

        filters = [
            ("actor_id", query.actor_id),
            ("category", query.category.value if query.category else None),
            ("severity", query.severity.value if query.severity else None),
            ("action", query.action),
            ("resource", query.resource),
            ("outcome", query.outcome.value if query.outcome else None),
        ]
        for column, value in filters:
            if value is not None:
                params.append(value)
                conditions.append(f"{column} = ${len(params)}")

        if query.start_time is not None:
            params.append(query.start_time)
            conditions.append(f"timestamp_utc >= ${len(params)}")

        if query.end_time is not None:
            params.append(query.end_time)
            conditions.append(f"timestamp_utc <= ${len(params)}")

        where_clause = " AND ".join(conditions)

        with storage_errors("query"):
            total = await self.db.fetchval(
                f"SELECT COUNT(*) FROM audit_events WHERE {where_clause}",
                *params
            )

            rows = await self.db.fetch(
                f"""
                SELECT event_json, event_hash
                FROM audit_events
                WHERE {where_clause}
                ORDER BY timestamp_utc DESC, seq DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params, query.limit, query.offset
            )

        return AuditEventQueryResult(
            events=[_record_from_row(row).event for row in rows],
            total=total,
            has_more=query.offset + query.limit < total
        )

    async def all_in_order(self, tenant_id: str) -> List[ChainRecord]:
        with storage_errors("all_in_order"):
            rows = await self.db.fetch(
                """
                SELECT event_json, event_hash
                FROM audit_events
                WHERE tenant_id = $1
                ORDER BY seq ASC
                """,
                tenant_id
            )

        return [_record_from_row(row) for row in rows]

    async def chain_head(self, tenant_id: str) -> Optional[str]:
        with storage_errors("chain_head"):
            return await self.db.fetchval(
                "SELECT last_chain_hash FROM chain_state WHERE tenant_id = $1",
                tenant_id
            )

    async def count(self, tenant_id: str) -> int:
        with storage_errors("count"):
            return await self.db.fetchval(
                "SELECT COUNT(*) FROM audit_events WHERE tenant_id = $1",
                tenant_id
            )

    async def list_tenants(self) -> List[str]:
        """All tenants that have at least one record."""
        with storage_errors("list_tenants"):
            rows = await self.db.fetch(
                "SELECT tenant_id FROM chain_state ORDER BY tenant_id"
            )

        return [row['tenant_id'] for row in rows]

    async def health_check(self) -> bool:
        return await self.db.health_check()
