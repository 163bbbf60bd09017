"""
Payment Status Stream
=====================
Turns broadcaster notifications into the event sequence served over
Server-Sent Events:

    {"type": "connected", "paymentId": ...}
    {"type": "status", "status": ..., "payment": {...}}     (current state)
    {"type": "status", ...}                                  (per update)
    {"type": "final", "status": ..., "payment": {...}}       (terminal, then end)

The listener is registered BEFORE the current state is read, so an update
landing between the read and the subscription cannot be lost. A None item
means "nothing happened for keepalive_seconds" and is rendered as an SSE
comment.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional

import structlog

from vibe_backend.schemas.payments import PaymentStatus
from vibe_backend.services.broadcaster import PaymentBroadcaster
from vibe_backend.services.ledger import PaymentLedger

HEARTBEAT = ": heartbeat\n\n"


def format_sse(event: Optional[dict[str, Any]]) -> str:
    if event is None:
        return HEARTBEAT
    return f"data: {json.dumps(event, default=str)}\n\n"


class PaymentStatusStream:
    def __init__(
        self,
        ledger: PaymentLedger,
        broadcaster: PaymentBroadcaster,
        keepalive_seconds: float = 30.0,
    ):
        self.ledger = ledger
        self.broadcaster = broadcaster
        self.keepalive_seconds = keepalive_seconds
        self._logger = structlog.get_logger().bind(component="status_stream")

    @staticmethod
    def _status_events(status: str, payment: dict[str, Any]) -> list[dict[str, Any]]:
        events = [{"type": "status", "status": status, "payment": payment}]
        if PaymentStatus(status).is_terminal:
            events.append({"type": "final", "status": status, "payment": payment})
        return events

    async def events(self, identifier: str) -> AsyncIterator[Optional[dict[str, Any]]]:
        updates: asyncio.Queue = asyncio.Queue()

        def listener(_key: str, status: str, payment: dict[str, Any]) -> None:
            updates.put_nowait((status, payment))

        self.broadcaster.subscribe(identifier, listener)
        self._logger.info("stream_opened", payment_key=identifier)
        try:
            yield {"type": "connected", "paymentId": identifier}

            payment = await self.ledger.find_by_any_id(identifier)
            if payment is None:
                yield {"type": "error", "error": "Payment not found"}
                return

            for event in self._status_events(payment.status.value, payment.to_public()):
                yield event
            if payment.status.is_terminal:
                return

            while True:
                try:
                    status, body = await asyncio.wait_for(
                        updates.get(), timeout=self.keepalive_seconds
                    )
                except asyncio.TimeoutError:
                    yield None
                    continue

                for event in self._status_events(status, body):
                    yield event
                if PaymentStatus(status).is_terminal:
                    return
        finally:
            self.broadcaster.unsubscribe(identifier, listener)
            self._logger.info("stream_closed", payment_key=identifier)
