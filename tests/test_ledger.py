# tests/test_ledger.py
import asyncio
import random
from datetime import datetime, timedelta, timezone

from vibe_backend.schemas.payments import PaymentDraft, PaymentMethod, PaymentStatus, map_gateway_status
from vibe_backend.services.ledger import PaymentLedger
from vibe_backend.storage import InMemoryRecordStore


def draft(**overrides) -> PaymentDraft:
    values = {
        "customer_name": "Ana Silva",
        "customer_email": "ana@example.com",
        "amount_cents": 500000,
        "payment_method": PaymentMethod.REFERENCE,
        "metadata": {"courseId": "c1", "type": "course"},
    }
    values.update(overrides)
    return PaymentDraft(**values)


def test_external_id_format():
    ledger = PaymentLedger(InMemoryRecordStore(), rng=random.Random(1))
    moment = datetime(2026, 10, 19, 8, 30, 5, tzinfo=timezone.utc)
    external_id = ledger.generate_external_id(moment)

    assert external_id.startswith("T261019083005")
    assert len(external_id) == 15
    assert external_id.isalnum()


def test_external_id_uses_utc():
    ledger = PaymentLedger(InMemoryRecordStore())
    luanda = timezone(timedelta(hours=1))
    external_id = ledger.generate_external_id(datetime(2026, 1, 1, 0, 30, 0, tzinfo=luanda))
    assert external_id.startswith("T251231233000")


def test_created_payment_is_pending_without_paid_at():
    async def scenario():
        ledger = PaymentLedger(InMemoryRecordStore())
        payment = await ledger.create(draft())
        assert payment.status is PaymentStatus.PENDING
        assert payment.paid_at is None
        assert payment.amount == 5000
        assert payment.course_id == "c1"
        assert await ledger.find_by_any_id(payment.external_id) == payment
        assert await ledger.find_by_any_id(payment.id) == payment

    asyncio.run(scenario())


def test_external_id_collision_is_retried():
    class RepeatingRng(random.Random):
        def __init__(self):
            super().__init__()
            self.values = iter([7, 7, 8])

        def randint(self, a, b):
            return next(self.values)

    class FrozenClockLedger(PaymentLedger):
        def generate_external_id(self, now=None):
            return super().generate_external_id(datetime(2026, 10, 19, 8, 30, 5, tzinfo=timezone.utc))

    async def scenario():
        ledger = FrozenClockLedger(InMemoryRecordStore(), rng=RepeatingRng())
        first = await ledger.create(draft())
        second = await ledger.create(draft())
        assert first.external_id != second.external_id
        assert first.external_id == "T26101908300507"
        assert second.external_id == "T26101908300508"

    asyncio.run(scenario())


def test_update_status_is_conditional_and_stamps_paid_at_once():
    async def scenario():
        ledger = PaymentLedger(InMemoryRecordStore())
        payment = await ledger.create(draft())

        completed = await ledger.update_status(payment.id, PaymentStatus.COMPLETED)
        assert completed.status is PaymentStatus.COMPLETED
        assert completed.paid_at is not None

        assert await ledger.update_status(payment.id, PaymentStatus.COMPLETED) is None
        assert await ledger.update_status(payment.id, PaymentStatus.FAILED) is None
        assert (await ledger.get(payment.id)).paid_at == completed.paid_at

    asyncio.run(scenario())


def test_failed_transition_merges_metadata_without_paid_at():
    async def scenario():
        ledger = PaymentLedger(InMemoryRecordStore())
        payment = await ledger.create(draft())
        failed = await ledger.update_status(payment.id, PaymentStatus.FAILED, metadata={"error": "boom"})
        assert failed.paid_at is None
        assert failed.metadata == {"courseId": "c1", "type": "course", "error": "boom"}

    asyncio.run(scenario())


def test_list_stale_pending_only_returns_old_pending():
    async def scenario():
        store = InMemoryRecordStore()
        ledger = PaymentLedger(store)
        old = await ledger.create(draft())
        await ledger.create(draft())
        done = await ledger.create(draft())
        week_ago = datetime.now(timezone.utc) - timedelta(days=7)
        for payment in (old, done):
            await store.update("payments", {"created_at": week_ago}, {"id": payment.id})
        await ledger.update_status(done.id, PaymentStatus.COMPLETED)

        stale = await ledger.list_stale_pending(datetime.now(timezone.utc) - timedelta(days=1))
        assert [p.id for p in stale] == [old.id]

    asyncio.run(scenario())


def test_gateway_status_mapping():
    assert map_gateway_status("Pending") is PaymentStatus.PENDING
    for raw in ("Success", "completed", "PAID"):
        assert map_gateway_status(raw) is PaymentStatus.COMPLETED
    for raw in ("Failed", "expired", "Cancelled"):
        assert map_gateway_status(raw) is PaymentStatus.FAILED
    assert map_gateway_status("Authorised") is None
    assert map_gateway_status(None) is None
