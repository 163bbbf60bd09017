# tests/test_broadcaster.py
import asyncio
import json

from conftest import collect_events, gateway_webhook, payment_request
from vibe_backend.services.broadcaster import PaymentBroadcaster
from vibe_backend.services.status_stream import HEARTBEAT, format_sse


def test_publish_reaches_listeners_in_registration_order():
    broadcaster = PaymentBroadcaster()
    calls = []
    broadcaster.subscribe("p1", lambda key, status, body: calls.append(("first", status)))
    broadcaster.subscribe("p1", lambda key, status, body: calls.append(("second", status)))
    broadcaster.subscribe("p2", lambda key, status, body: calls.append(("other", status)))

    assert broadcaster.publish("p1", "pending", {}) == 2
    assert broadcaster.publish("p1", "completed", {}) == 2
    assert calls == [("first", "pending"), ("second", "pending"),
                     ("first", "completed"), ("second", "completed")]


def test_failing_listener_does_not_block_others():
    broadcaster = PaymentBroadcaster()
    received = []

    def broken(key, status, body):
        raise RuntimeError("socket closed")

    broadcaster.subscribe("p1", broken)
    broadcaster.subscribe("p1", lambda key, status, body: received.append(body["id"]))

    assert broadcaster.publish("p1", "failed", {"id": "p1"}) == 1
    assert received == ["p1"]


def test_publish_without_listeners_is_dropped():
    broadcaster = PaymentBroadcaster()
    assert broadcaster.publish("nobody", "completed", {}) == 0


def test_listener_may_unsubscribe_while_notified():
    broadcaster = PaymentBroadcaster()
    seen = []

    def once(key, status, body):
        seen.append(status)
        broadcaster.unsubscribe(key, once)

    broadcaster.subscribe("p1", once)
    broadcaster.subscribe("p1", lambda key, status, body: seen.append("after"))
    broadcaster.publish("p1", "completed", {})
    broadcaster.publish("p1", "completed", {})

    assert seen == ["completed", "after", "after"]
    assert broadcaster.listener_count("p1") == 1


def test_unsubscribing_last_listener_frees_key():
    broadcaster = PaymentBroadcaster()
    listener = lambda key, status, body: None  # noqa: E731
    broadcaster.subscribe("p1", listener)
    assert broadcaster.active_keys == 1
    broadcaster.unsubscribe("p1", listener)
    broadcaster.unsubscribe("p1", listener)
    assert broadcaster.active_keys == 0


# =====================================================================================
# Status stream
# =====================================================================================

def test_format_sse():
    assert format_sse(None) == HEARTBEAT
    line = format_sse({"type": "status", "status": "pending"})
    assert line.startswith("data: ")
    assert line.endswith("\n\n")
    assert json.loads(line[len("data: "):]) == {"type": "status", "status": "pending"}


def test_stream_for_unknown_payment_reports_error(services):
    async def scenario():
        events = await collect_events(services.stream, "missing")
        assert events == [
            {"type": "connected", "paymentId": "missing"},
            {"type": "error", "error": "Payment not found"},
        ]
        assert services.broadcaster.listener_count("missing") == 0

    asyncio.run(scenario())


def test_subscribing_to_completed_payment_gets_status_then_final(services):
    async def scenario():
        created = await services.engine.create_payment(payment_request())
        await services.engine.handle_gateway_webhook(
            gateway_webhook(created.merchant_transaction_id, "Paid")
        )

        events = await collect_events(services.stream, created.payment_id)
        assert [e["type"] for e in events] == ["connected", "status", "final"]
        assert events[1]["status"] == "completed"
        assert events[2]["payment"]["paid_at"] is not None

    asyncio.run(scenario())


def test_stream_relays_updates_and_heartbeats(services):
    async def scenario():
        created = await services.engine.create_payment(payment_request())
        raw = []

        async def watch():
            async for event in services.stream.events(created.payment_id):
                raw.append(event)

        watcher = asyncio.create_task(watch())
        # two keepalive periods with nothing happening
        await asyncio.sleep(0.15)
        await services.engine.handle_gateway_webhook(
            gateway_webhook(created.merchant_transaction_id, "Paid")
        )
        await asyncio.wait_for(watcher, 2)

        assert None in raw
        events = [e for e in raw if e is not None]
        assert [e["type"] for e in events] == ["connected", "status", "status", "final"]
        assert [e["status"] for e in events[1:]] == ["pending", "completed", "completed"]
        assert services.broadcaster.listener_count(created.payment_id) == 0

    asyncio.run(scenario())
