"""
Payment Ledger
==============
Owns the `payments` collection: creation, lookup and status transitions.

Transitions are conditional writes ("set status X where status = pending"),
so two overlapping webhook deliveries can never both win the same
transition. A None return from update_status means another writer got there
first.
"""

import random
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from vibe_backend.errors import DuplicateKeyError
from vibe_backend.schemas.payments import Payment, PaymentDraft, PaymentStatus
from vibe_backend.storage.record_store import IRecordStore, utcnow

TABLE = "payments"
EXTERNAL_ID_ATTEMPTS = 5


class PaymentLedger:
    def __init__(self, store: IRecordStore, rng: Optional[random.Random] = None):
        self.store = store
        self._rng = rng or random.Random()
        self._logger = structlog.get_logger().bind(component="payment_ledger")

    # =========================================================================
    # IDENTIFIERS
    # =========================================================================

    def generate_external_id(self, now: Optional[datetime] = None) -> str:
        """`T` + yyMMddHHmmss (UTC) + two random digits: 15 alphanumerics."""
        moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        return f"T{moment.strftime('%y%m%d%H%M%S')}{self._rng.randint(0, 99):02d}"

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create(self, draft: PaymentDraft) -> Payment:
        """Persist a pending payment. StoreError propagates; nothing exists then.

        Two payments created in the same second share 12 of the 14 id digits,
        so an external id collision is retried with fresh random digits.
        """
        fields = {
            "user_id": draft.user_id,
            "customer_name": draft.customer_name,
            "customer_email": draft.customer_email,
            "customer_phone": draft.customer_phone,
            "amount_cents": draft.amount_cents,
            "currency": draft.currency,
            "payment_method": draft.payment_method.value,
            "status": PaymentStatus.PENDING.value,
            "metadata": draft.metadata,
            "created_at": utcnow(),
        }
        for attempt in range(1, EXTERNAL_ID_ATTEMPTS + 1):
            try:
                row = await self.store.insert(TABLE, {"external_id": self.generate_external_id(), **fields})
                break
            except DuplicateKeyError:
                if attempt == EXTERNAL_ID_ATTEMPTS:
                    raise
                self._logger.warning("external_id_collision", attempt=attempt)
        payment = Payment.model_validate(row)
        self._logger.info("payment_created",
                          payment_id=payment.id,
                          external_id=payment.external_id,
                          amount_cents=payment.amount_cents,
                          method=payment.payment_method)
        return payment

    async def get(self, payment_id: str) -> Optional[Payment]:
        row = await self.store.select_one(TABLE, {"id": payment_id})
        return Payment.model_validate(row) if row else None

    async def find_by_external_id(self, external_id: str) -> Optional[Payment]:
        row = await self.store.select_one(TABLE, {"external_id": external_id})
        return Payment.model_validate(row) if row else None

    async def find_by_any_id(self, identifier: str) -> Optional[Payment]:
        row = await self.store.select_one(
            TABLE, any_of={"id": identifier, "external_id": identifier}
        )
        return Payment.model_validate(row) if row else None

    async def list_stale_pending(self, older_than: datetime, limit: int = 50) -> list[Payment]:
        rows = await self.store.select(
            TABLE,
            {"status": PaymentStatus.PENDING.value},
            before={"created_at": older_than},
            order_by="created_at",
            limit=limit,
        )
        return [Payment.model_validate(r) for r in rows]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def update_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        expected: Optional[PaymentStatus] = PaymentStatus.PENDING,
        metadata: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> Optional[Payment]:
        """
        Move a payment to `status`, only if it is currently `expected`.

        paid_at is stamped when the new status is completed; since completion
        is only reachable from pending, it is written at most once.
        Metadata is merged into the existing map.
        """
        values: dict[str, Any] = {"status": status.value, **fields}
        if status is PaymentStatus.COMPLETED:
            values["paid_at"] = utcnow()

        match: dict[str, Any] = {"id": payment_id}
        if expected is not None:
            match["status"] = expected.value

        rows = await self.store.update(
            TABLE, values, match, merge={"metadata": metadata} if metadata else None
        )
        if not rows:
            self._logger.info("status_update_skipped",
                              payment_id=payment_id,
                              status=status.value,
                              expected=expected.value if expected else None)
            return None

        payment = Payment.model_validate(rows[0])
        self._logger.info("status_updated",
                          payment_id=payment.id,
                          external_id=payment.external_id,
                          status=payment.status.value)
        return payment

    async def merge_metadata(
        self,
        payment_id: str,
        metadata: dict[str, Any],
        **fields: Any,
    ) -> Optional[Payment]:
        rows = await self.store.update(
            TABLE, fields, {"id": payment_id}, merge={"metadata": metadata}
        )
        return Payment.model_validate(rows[0]) if rows else None

    async def link_user(self, payment_id: str, user_id: str) -> Optional[Payment]:
        rows = await self.store.update(TABLE, {"user_id": user_id}, {"id": payment_id})
        return Payment.model_validate(rows[0]) if rows else None
