"""
Postgres Record Store
=====================
asyncpg-backed implementation of IRecordStore.

This module provides:
- AsyncPG connection pool with JSONB codecs
- Idempotent schema migrations for every collection
- Conditional updates (RETURNING *) used for status transitions
- ON CONFLICT upserts for entitlements and progress
- Unique violations surfaced as DuplicateKeyError

pip install asyncpg
"""

import json
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional, Sequence

import asyncpg
import structlog

from vibe_backend.config import DatabaseConfig
from vibe_backend.errors import DuplicateKeyError, StoreError
from vibe_backend.storage.record_store import TABLES, IRecordStore, Row

logger = structlog.get_logger().bind(component="database")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


# =============================================================================
# MIGRATIONS
# =============================================================================

MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        email TEXT NOT NULL,
        full_name TEXT,
        phone TEXT,
        role VARCHAR(20) NOT NULL DEFAULT 'student',
        has_access BOOLEAN NOT NULL DEFAULT FALSE,
        email_notifications BOOLEAN NOT NULL DEFAULT TRUE,
        sms_notifications BOOLEAN NOT NULL DEFAULT TRUE,
        avatar_url TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users (lower(email))",

    """
    CREATE TABLE IF NOT EXISTS payments (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        external_id VARCHAR(15) NOT NULL UNIQUE,
        user_id TEXT REFERENCES users(id),
        customer_name TEXT,
        customer_email TEXT,
        customer_phone TEXT,
        amount_cents BIGINT NOT NULL,
        currency VARCHAR(3) NOT NULL DEFAULT 'AOA',
        payment_method VARCHAR(20),
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        reference_code TEXT,
        metadata JSONB NOT NULL DEFAULT '{}',
        paid_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status, created_at)",

    """
    CREATE TABLE IF NOT EXISTS project_purchases (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users(id),
        project_id TEXT NOT NULL,
        payment_id TEXT REFERENCES payments(id),
        created_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (user_id, project_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS enrollments (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users(id),
        course_id TEXT NOT NULL,
        payment_id TEXT REFERENCES payments(id),
        created_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (user_id, course_id)
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS lessons (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        course_id TEXT,
        title TEXT,
        mux_asset_id TEXT,
        mux_playback_id TEXT,
        video_url TEXT,
        mux_status VARCHAR(20),
        duration_seconds INTEGER,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_lessons_asset ON lessons(mux_asset_id)",
    """
    CREATE TABLE IF NOT EXISTS live_sessions (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        title TEXT NOT NULL,
        description TEXT,
        scheduled_at TIMESTAMPTZ,
        duration_minutes INTEGER,
        max_participants INTEGER,
        course_id TEXT,
        instructor_id TEXT,
        mux_live_stream_id TEXT,
        mux_stream_key TEXT,
        mux_playback_id TEXT,
        rtmp_url TEXT,
        status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_live_sessions_stream ON live_sessions(mux_live_stream_id)",
    """
    CREATE TABLE IF NOT EXISTS lesson_progress (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL,
        lesson_id TEXT NOT NULL,
        course_id TEXT,
        completed BOOLEAN NOT NULL DEFAULT FALSE,
        completed_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (user_id, lesson_id)
    )
    """,
]


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


async def _init_connection(conn: asyncpg.Connection) -> None:
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


# =============================================================================
# STORE
# =============================================================================

class PostgresRecordStore(IRecordStore):
    """Async connection pool manager and SQL builder"""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig.from_env()
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self._pool:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self.config.database_url,
                min_size=self.config.min_pool_size,
                max_size=self.config.max_pool_size,
                init=_init_connection,
            )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("pool_init_failed", error=str(e))
            raise StoreError("Failed to connect to database", details=str(e)) from e
        logger.info("pool_initialized",
                    min_size=self.config.min_pool_size,
                    max_size=self.config.max_pool_size)
        await self._run_migrations()

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("pool_closed")

    @asynccontextmanager
    async def acquire(self):
        if not self._pool:
            await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(str(e), details=getattr(e, "constraint_name", None)) from e
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("query_failed", error=str(e), error_type=type(e).__name__)
            raise StoreError(str(e)) from e

    async def _run_migrations(self) -> None:
        async with self.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)
        logger.info("migrations_complete", statements=len(MIGRATIONS))

    # =========================================================================
    # SQL BUILDING
    # =========================================================================

    @staticmethod
    def _table(table: str) -> str:
        if table not in TABLES:
            raise StoreError(f"Unknown table: {table}")
        return table

    @staticmethod
    def _where(
        params: list[Any],
        match: Optional[Row] = None,
        any_of: Optional[Row] = None,
        ilike: Optional[Row] = None,
        before: Optional[dict[str, datetime]] = None,
    ) -> str:
        clauses = []
        for column, value in (match or {}).items():
            if value is None:
                clauses.append(f"{_ident(column)} IS NULL")
            else:
                params.append(value)
                clauses.append(f"{_ident(column)} = ${len(params)}")
        if any_of:
            alternatives = []
            for column, value in any_of.items():
                if value is None:
                    continue
                params.append(value)
                alternatives.append(f"{_ident(column)} = ${len(params)}")
            clauses.append("(" + " OR ".join(alternatives) + ")" if alternatives else "FALSE")
        for column, value in (ilike or {}).items():
            params.append(value)
            clauses.append(f"lower({_ident(column)}) = lower(${len(params)})")
        for column, bound in (before or {}).items():
            params.append(bound)
            clauses.append(f"{_ident(column)} < ${len(params)}")
        return " WHERE " + " AND ".join(clauses) if clauses else ""

    # =========================================================================
    # CRUD
    # =========================================================================

    async def insert(self, table: str, row: Row) -> Row:
        columns = [_ident(c) for c in row]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {self._table(table)} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        async with self.acquire() as conn:
            record = await conn.fetchrow(query, *row.values())
        return dict(record)

    async def select(
        self,
        table: str,
        match: Optional[Row] = None,
        *,
        any_of: Optional[Row] = None,
        ilike: Optional[Row] = None,
        before: Optional[dict[str, datetime]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        params: list[Any] = []
        query = f"SELECT * FROM {self._table(table)}"
        query += self._where(params, match, any_of, ilike, before)
        if order_by:
            query += f" ORDER BY {_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            params.append(int(limit))
            query += f" LIMIT ${len(params)}"
        async with self.acquire() as conn:
            records = await conn.fetch(query, *params)
        return [dict(r) for r in records]

    async def update(
        self,
        table: str,
        values: Row,
        match: Row,
        *,
        merge: Optional[dict[str, Row]] = None,
    ) -> list[Row]:
        params: list[Any] = []
        assignments = []
        for column, value in values.items():
            params.append(value)
            assignments.append(f"{_ident(column)} = ${len(params)}")
        for column, patch in (merge or {}).items():
            params.append(patch)
            col = _ident(column)
            assignments.append(f"{col} = COALESCE({col}, '{{}}'::jsonb) || ${len(params)}::jsonb")
        if not assignments:
            return await self.select(table, match)
        if not match:
            raise StoreError("Refusing to update without a filter")

        query = f"UPDATE {self._table(table)} SET {', '.join(assignments)}"
        query += self._where(params, match) + " RETURNING *"
        async with self.acquire() as conn:
            records = await conn.fetch(query, *params)
        return [dict(r) for r in records]

    async def upsert(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        columns = [_ident(c) for c in row]
        conflict = [_ident(c) for c in on_conflict]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        refresh = [c for c in columns if c not in conflict and c != "id"] or conflict[:1]
        query = (
            f"INSERT INTO {self._table(table)} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET "
            + ", ".join(f"{c} = EXCLUDED.{c}" for c in refresh)
            + " RETURNING *"
        )
        async with self.acquire() as conn:
            record = await conn.fetchrow(query, *row.values())
        return dict(record)

    async def delete(self, table: str, match: Row) -> int:
        if not match:
            raise StoreError("Refusing to delete without a filter")
        params: list[Any] = []
        query = f"DELETE FROM {self._table(table)}" + self._where(params, match)
        async with self.acquire() as conn:
            result = await conn.execute(query, *params)
        return int(result.split()[-1])

    async def count(self, table: str, match: Optional[Row] = None) -> int:
        params: list[Any] = []
        query = f"SELECT COUNT(*) FROM {self._table(table)}" + self._where(params, match)
        async with self.acquire() as conn:
            return await conn.fetchval(query, *params)
