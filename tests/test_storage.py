# tests/test_storage.py
import asyncio
from datetime import timedelta

import pytest

from vibe_backend.errors import DuplicateKeyError, StoreError
from vibe_backend.storage import InMemoryRecordStore, utcnow
from vibe_backend.storage.postgres import PostgresRecordStore


def test_insert_fills_defaults_and_returns_copies():
    async def scenario():
        store = InMemoryRecordStore()
        row = await store.insert("payments", {"external_id": "T26101908300501", "amount_cents": 100})
        assert row["status"] == "pending"
        assert row["metadata"] == {}
        assert row["id"]
        assert row["created_at"] is not None

        row["metadata"]["mutated"] = True
        stored = await store.select_one("payments", {"id": row["id"]})
        assert stored["metadata"] == {}

    asyncio.run(scenario())


def test_user_email_unique_regardless_of_case():
    async def scenario():
        store = InMemoryRecordStore()
        await store.insert("users", {"email": "ana@example.com"})
        with pytest.raises(DuplicateKeyError):
            await store.insert("users", {"email": "ANA@Example.com"})
        assert await store.count("users") == 1

    asyncio.run(scenario())


def test_conditional_update_matches_only_expected_status():
    async def scenario():
        store = InMemoryRecordStore()
        row = await store.insert("payments", {"external_id": "T1", "amount_cents": 1})

        won = await store.update("payments", {"status": "completed"}, {"id": row["id"], "status": "pending"})
        lost = await store.update("payments", {"status": "failed"}, {"id": row["id"], "status": "pending"})
        assert [r["status"] for r in won] == ["completed"]
        assert lost == []
        assert (await store.select_one("payments", {"id": row["id"]}))["status"] == "completed"

    asyncio.run(scenario())


def test_update_merges_json_columns():
    async def scenario():
        store = InMemoryRecordStore()
        row = await store.insert("payments", {"external_id": "T1", "amount_cents": 1,
                                              "metadata": {"courseId": "c1"}})
        [updated] = await store.update("payments", {"reference_code": "123"}, {"id": row["id"]},
                                       merge={"metadata": {"entity": "11424"}})
        assert updated["metadata"] == {"courseId": "c1", "entity": "11424"}
        assert updated["reference_code"] == "123"

    asyncio.run(scenario())


def test_upsert_updates_on_conflict_key():
    async def scenario():
        store = InMemoryRecordStore()
        first = await store.upsert("enrollments", {"user_id": "u1", "course_id": "c1", "payment_id": "p1"},
                                   on_conflict=("user_id", "course_id"))
        second = await store.upsert("enrollments", {"user_id": "u1", "course_id": "c1", "payment_id": "p2"},
                                    on_conflict=("user_id", "course_id"))
        assert first["id"] == second["id"]
        assert second["payment_id"] == "p2"
        assert await store.count("enrollments") == 1

    asyncio.run(scenario())


def test_select_filters():
    async def scenario():
        store = InMemoryRecordStore()
        old = await store.insert("payments", {"external_id": "TOLD", "amount_cents": 1,
                                              "created_at": utcnow() - timedelta(days=5)})
        new = await store.insert("payments", {"external_id": "TNEW", "amount_cents": 1})

        by_external = await store.select("payments", any_of={"id": "TNEW", "external_id": "TNEW"})
        assert [r["id"] for r in by_external] == [new["id"]]

        stale = await store.select("payments", before={"created_at": utcnow() - timedelta(days=1)})
        assert [r["id"] for r in stale] == [old["id"]]

        ordered = await store.select("payments", order_by="created_at", descending=True, limit=1)
        assert ordered[0]["id"] == new["id"]

        await store.insert("users", {"email": "Bob@Example.com"})
        assert await store.select_one("users", ilike={"email": "bob@example.com"}) is not None

        assert await store.delete("payments", {"external_id": "TOLD"}) == 1
        assert await store.count("payments") == 1

    asyncio.run(scenario())


def test_unknown_table_rejected():
    async def scenario():
        with pytest.raises(StoreError):
            await InMemoryRecordStore().select("orders")

    asyncio.run(scenario())


def test_postgres_refuses_unfiltered_writes():
    from vibe_backend.config import DatabaseConfig

    store = PostgresRecordStore(DatabaseConfig(database_url="postgresql://localhost/vibe"))

    async def scenario():
        with pytest.raises(StoreError):
            await store.update("payments", {"status": "failed"}, {})
        with pytest.raises(StoreError):
            await store.delete("payments", {})

    asyncio.run(scenario())
