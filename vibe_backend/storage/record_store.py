"""
Record Store - Persistence Interface
====================================
Generic CRUD over the named collections the backend persists:

- payments, users
- project_purchases, enrollments (entitlements)
- lessons, live_sessions, lesson_progress

Services only ever talk to IRecordStore. The in-memory implementation mirrors
the Postgres schema's defaults and uniqueness rules so tests exercise the same
conflict paths production does.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import structlog

from vibe_backend.errors import DuplicateKeyError, StoreError

Row = dict[str, Any]


# =============================================================================
# SCHEMA RULES (shared with the Postgres migrations)
# =============================================================================

TABLES = (
    "payments",
    "users",
    "project_purchases",
    "enrollments",
    "lessons",
    "live_sessions",
    "lesson_progress",
)

UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "payments": [("external_id",)],
    "users": [("email",)],
    "project_purchases": [("user_id", "project_id")],
    "enrollments": [("user_id", "course_id")],
    "lesson_progress": [("user_id", "lesson_id")],
}

# Columns compared case-insensitively by uniqueness checks
CASE_INSENSITIVE: dict[str, set[str]] = {"users": {"email"}}

COLUMN_DEFAULTS: dict[str, Row] = {
    "payments": {"status": "pending", "currency": "AOA", "metadata": {}, "paid_at": None,
                 "user_id": None, "reference_code": None},
    "users": {"role": "student", "has_access": False, "email_notifications": True,
              "sms_notifications": True},
    "lesson_progress": {"completed": False},
    "live_sessions": {"status": "scheduled"},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# INTERFACE
# =============================================================================

class IRecordStore(ABC):
    """Abstract record store"""

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row and return it with store-assigned fields.
        Raises DuplicateKeyError on a uniqueness violation."""
        pass

    @abstractmethod
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
        """
        Filtered read.

        match: column equality (None matches NULL), all must hold
        any_of: column equality, at least one must hold
        ilike: case-insensitive equality
        before: column strictly less than the given timestamp
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Row,
        match: Row,
        *,
        merge: Optional[dict[str, Row]] = None,
    ) -> list[Row]:
        """
        Update every row matching `match` and return the updated rows.
        `merge` shallow-merges into JSON columns instead of overwriting them.
        An empty result means nothing matched; callers use it for
        conditional transitions ("set X where status = pending").
        """
        pass

    @abstractmethod
    async def upsert(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        pass

    @abstractmethod
    async def delete(self, table: str, match: Row) -> int:
        pass

    @abstractmethod
    async def count(self, table: str, match: Optional[Row] = None) -> int:
        pass

    async def select_one(self, table: str, match: Optional[Row] = None, **kwargs) -> Optional[Row]:
        rows = await self.select(table, match, limit=1, **kwargs)
        return rows[0] if rows else None

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryRecordStore(IRecordStore):
    """Lock-guarded in-memory store. Used in tests and when no database is configured."""

    def __init__(self):
        self._tables: dict[str, dict[str, Row]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="memory_store")

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLES:
            raise StoreError(f"Unknown table: {table}")

    @staticmethod
    def _key_value(table: str, column: str, value: Any) -> Any:
        if isinstance(value, str) and column in CASE_INSENSITIVE.get(table, set()):
            return value.lower()
        return value

    def _conflicting(self, table: str, row: Row, ignore_id: Optional[str] = None) -> Optional[Row]:
        for columns in UNIQUE_KEYS.get(table, []):
            wanted = tuple(self._key_value(table, c, row.get(c)) for c in columns)
            if any(v is None for v in wanted):
                continue
            for existing in self._tables[table].values():
                if existing["id"] == ignore_id:
                    continue
                have = tuple(self._key_value(table, c, existing.get(c)) for c in columns)
                if have == wanted:
                    return existing
        return None

    @staticmethod
    def _matches(
        row: Row,
        match: Optional[Row],
        any_of: Optional[Row] = None,
        ilike: Optional[Row] = None,
        before: Optional[dict[str, datetime]] = None,
    ) -> bool:
        for column, value in (match or {}).items():
            if row.get(column) != value:
                return False
        if any_of and not any(row.get(c) == v for c, v in any_of.items() if v is not None):
            return False
        for column, value in (ilike or {}).items():
            current = row.get(column)
            if current is None or str(current).lower() != str(value).lower():
                return False
        for column, bound in (before or {}).items():
            current = row.get(column)
            if current is None or not current < bound:
                return False
        return True

    def _new_row(self, table: str, row: Row) -> Row:
        record = copy.deepcopy(COLUMN_DEFAULTS.get(table, {}))
        record.update(copy.deepcopy(row))
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", utcnow())
        return record

    async def insert(self, table: str, row: Row) -> Row:
        self._check_table(table)
        async with self._lock:
            record = self._new_row(table, row)
            if record["id"] in self._tables[table] or self._conflicting(table, record):
                raise DuplicateKeyError(f"duplicate key value violates unique constraint on {table}")
            self._tables[table][record["id"]] = record
            return copy.deepcopy(record)

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
        self._check_table(table)
        async with self._lock:
            rows = [
                r for r in self._tables[table].values()
                if self._matches(r, match, any_of, ilike, before)
            ]
            if order_by:
                present = [r for r in rows if r.get(order_by) is not None]
                missing = [r for r in rows if r.get(order_by) is None]
                present.sort(key=lambda r: r[order_by], reverse=descending)
                rows = present + missing
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    async def update(
        self,
        table: str,
        values: Row,
        match: Row,
        *,
        merge: Optional[dict[str, Row]] = None,
    ) -> list[Row]:
        self._check_table(table)
        async with self._lock:
            updated = []
            for row in self._tables[table].values():
                if not self._matches(row, match):
                    continue
                row.update(copy.deepcopy(values))
                for column, patch in (merge or {}).items():
                    current = row.get(column) or {}
                    row[column] = {**current, **copy.deepcopy(patch)}
                updated.append(copy.deepcopy(row))
            return updated

    async def upsert(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        self._check_table(table)
        async with self._lock:
            for existing in self._tables[table].values():
                if all(
                    self._key_value(table, c, existing.get(c)) == self._key_value(table, c, row.get(c))
                    for c in on_conflict
                ):
                    existing.update({k: copy.deepcopy(v) for k, v in row.items() if k != "id"})
                    return copy.deepcopy(existing)
            record = self._new_row(table, row)
            if self._conflicting(table, record):
                raise DuplicateKeyError(f"duplicate key value violates unique constraint on {table}")
            self._tables[table][record["id"]] = record
            return copy.deepcopy(record)

    async def delete(self, table: str, match: Row) -> int:
        self._check_table(table)
        async with self._lock:
            doomed = [rid for rid, r in self._tables[table].items() if self._matches(r, match)]
            for rid in doomed:
                del self._tables[table][rid]
            return len(doomed)

    async def count(self, table: str, match: Optional[Row] = None) -> int:
        self._check_table(table)
        async with self._lock:
            return sum(1 for r in self._tables[table].values() if self._matches(r, match))
