"""
Payment Reconciliation Engine
=============================
Drives the payment state machine from client requests and gateway callbacks:

    pending ──► completed   (gateway success; runs fulfillment once)
       │──────► failed      (gateway failure / charge error)
       └──────► expired     (sweeper, after a configurable age)

- Every transition is a conditional write from `pending`, so overlapping
  webhook deliveries cannot both run fulfillment
- Terminal payments are never transitioned again; re-deliveries are
  acknowledged and logged
- Push (Multicaixa Express) charges are dispatched as tracked background
  tasks whose failures are written back to the payment
- Every status change is published under both the internal and the
  external id

pip install pydantic structlog
"""

import asyncio
from datetime import timedelta
from typing import Any, Optional

import structlog

from vibe_backend.config import PaymentConfig
from vibe_backend.errors import NotFoundError, StoreError, UpstreamError, ValidationError
from vibe_backend.pipeline.appypay import ChargeRequest, IPaymentGateway, extract_reference
from vibe_backend.pipeline.fulfillment import PaymentFulfillment
from vibe_backend.schemas.payments import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    LegacyConfirmation,
    Payment,
    PaymentDraft,
    PaymentMethod,
    PaymentStatus,
    PurchaseType,
    WebhookOutcome,
    map_gateway_status,
)
from vibe_backend.services.broadcaster import PaymentBroadcaster
from vibe_backend.services.ledger import PaymentLedger
from vibe_backend.services.notifications import INotifier
from vibe_backend.storage.record_store import utcnow

PUSH_PENDING_MESSAGE = "Aguardando confirmação no telemóvel"
LEGACY_PAID_STATUSES = frozenset({"confirmed", "paid"})


class PaymentReconciliationEngine:
    """
    Example:
        engine = PaymentReconciliationEngine(ledger, gateway, fulfillment, broadcaster, notifier)
        created = await engine.create_payment(request)
        # gateway calls back later
        outcome = await engine.handle_gateway_webhook(payload)
    """

    def __init__(
        self,
        ledger: PaymentLedger,
        gateway: IPaymentGateway,
        fulfillment: PaymentFulfillment,
        broadcaster: PaymentBroadcaster,
        notifier: INotifier,
        config: Optional[PaymentConfig] = None,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.config = config or PaymentConfig()

        self._dispatches: set[asyncio.Task] = set()
        self._base_logger = structlog.get_logger()

    def _get_logger(self, payment: Optional[Payment] = None):
        log = self._base_logger.bind(component="reconciliation")
        if payment is not None:
            log = log.bind(payment_id=payment.id, external_id=payment.external_id)
        return log

    # =========================================================================
    # BROADCAST
    # =========================================================================

    def publish(self, payment: Payment) -> None:
        body = payment.to_public()
        status = payment.status.value
        self.broadcaster.publish(payment.id, status, body)
        self.broadcaster.publish(payment.external_id, status, body)

    # =========================================================================
    # CREATE
    # =========================================================================

    @staticmethod
    def _validate(request: CreatePaymentRequest) -> PaymentMethod:
        if (
            not request.amount
            or not request.customer_name
            or not request.customer_email
            or not request.payment_method
        ):
            raise ValidationError("Missing required fields")
        if request.amount < 0:
            raise ValidationError("Amount must be positive")
        method = PaymentMethod.parse(request.payment_method)
        if method is None:
            raise ValidationError(f"Unsupported payment method: {request.payment_method}")
        if method is PaymentMethod.MULTICAIXA and not (request.multicaixa_phone or request.customer_phone):
            raise ValidationError("multicaixaPhone is required for Multicaixa Express")
        return method

    async def create_payment(self, request: CreatePaymentRequest) -> CreatePaymentResponse:
        method = self._validate(request)

        purchase_type = request.type or (
            PurchaseType.COURSE.value if request.course_id else PurchaseType.PROJECT.value
        )
        metadata = {
            "courseId": request.course_id,
            "projectId": request.project_id,
            "type": purchase_type,
            "provider": "appypay",
        }
        draft = PaymentDraft(
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_phone=request.customer_phone,
            amount_cents=round(request.amount * 100),
            currency=self.config.currency,
            payment_method=method,
            user_id=request.user_id,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )

        try:
            payment = await self.ledger.create(draft)
        except StoreError as e:
            self._get_logger().error("payment_insert_failed", error=e.message)
            raise StoreError("Failed to create payment record", details=e.message) from e

        charge = ChargeRequest(
            amount=request.amount,
            merchant_transaction_id=payment.external_id,
            method=method,
            description=request.description or f"Vibe Coding - Curso {request.course_id or ''}".strip(),
            phone_number=request.multicaixa_phone or request.customer_phone,
            currency=self.config.currency,
        )

        if method is PaymentMethod.MULTICAIXA:
            task = asyncio.create_task(self._dispatch_push_charge(payment, charge))
            self._dispatches.add(task)
            task.add_done_callback(self._dispatches.discard)
            return CreatePaymentResponse(
                payment_id=payment.id,
                merchant_transaction_id=payment.external_id,
                status=PaymentStatus.PROCESSING.value,
                message=PUSH_PENDING_MESSAGE,
            )

        return await self._charge_reference(payment, charge)

    async def _charge_reference(self, payment: Payment, charge: ChargeRequest) -> CreatePaymentResponse:
        log = self._get_logger(payment)
        try:
            appy_response = await self.gateway.create_charge(charge)
        except UpstreamError as e:
            log.error("reference_charge_failed", error=e.message, details=e.details)
            failed = await self.ledger.update_status(
                payment.id, PaymentStatus.FAILED,
                metadata={"error": e.message, "errorDetails": e.details},
            )
            if failed:
                self.publish(failed)
            raise

        reference = extract_reference(appy_response)
        await self.ledger.merge_metadata(
            payment.id,
            {"entity": reference["entity"], "appyResponse": appy_response},
            reference_code=reference["reference_number"],
        )
        log.info("reference_issued", reference_code=reference["reference_number"])
        return CreatePaymentResponse(
            payment_id=payment.id,
            merchant_transaction_id=payment.external_id,
            reference_code=reference["reference_number"],
            entity=reference["entity"],
            appy_response=appy_response,
        )

    async def _dispatch_push_charge(self, payment: Payment, charge: ChargeRequest) -> None:
        """Background half of a push payment. Its errors end up on the payment row."""
        log = self._get_logger(payment)
        try:
            appy_response = await self.gateway.create_charge(charge)
            await self.ledger.merge_metadata(payment.id, {"appyResponse": appy_response})
            log.info("push_charge_sent",
                     gateway_status=(appy_response.get("responseStatus") or {}).get("status"))
            return
        except Exception as e:
            error = e.message if isinstance(e, UpstreamError) else str(e)
            details = e.details if isinstance(e, UpstreamError) else None
            log.error("push_charge_failed", error=error, details=details)

        try:
            failed = await self.ledger.update_status(
                payment.id, PaymentStatus.FAILED,
                metadata={"error": error, "errorDetails": details},
            )
        except StoreError as e:
            log.error("push_failure_not_recorded", error=e.message)
            return
        if failed:
            self.publish(failed)

    async def wait_for_dispatches(self) -> None:
        """Wait for in-flight push charges (shutdown and tests)."""
        if self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatches)

    # =========================================================================
    # READ
    # =========================================================================

    async def get_payment(self, identifier: str) -> Payment:
        payment = await self.ledger.find_by_any_id(identifier)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    async def handle_gateway_webhook(self, payload: dict[str, Any]) -> WebhookOutcome:
        merchant_id = payload.get("merchantTransactionId")
        if not merchant_id:
            raise ValidationError("Missing merchantTransactionId")

        payment = await self.ledger.find_by_external_id(str(merchant_id))
        if payment is None:
            self._get_logger().warning("webhook_payment_not_found", external_id=merchant_id)
            raise NotFoundError("Payment not found")

        log = self._get_logger(payment)
        response_status = payload.get("responseStatus") or {}
        raw_status = str(response_status.get("status") or "")
        # Status text decides; "successful" is true even for Pending
        mapped = map_gateway_status(raw_status)
        log.info("gateway_webhook_received",
                 gateway_status=raw_status,
                 successful=response_status.get("successful"),
                 mapped=mapped.value if mapped else None,
                 stored=payment.status.value)

        if mapped is PaymentStatus.PENDING and payment.is_reference:
            reference = payload.get("reference") or {}
            if reference.get("referenceNumber"):
                payment = await self._record_reference(payment, reference)

        if mapped is None:
            return self._outcome(payment, payment.status, "unchanged")
        return await self._apply_status(payment, mapped)

    async def handle_confirmation_webhook(self, body: LegacyConfirmation) -> dict[str, Any]:
        """Older `{externalId, status, paymentId}` callback; only paid statuses act."""
        status = (body.status or "").lower()
        if status not in LEGACY_PAID_STATUSES:
            return {"received": True}
        if not body.external_id:
            raise ValidationError("Missing externalId")

        payment = await self.ledger.find_by_external_id(body.external_id)
        if payment is None:
            raise NotFoundError("Payment not found")

        outcome = await self._apply_status(payment, PaymentStatus.COMPLETED)
        if outcome.action != "completed":
            return {"received": True, "message": "already processed"}
        return {"success": True, "paymentId": payment.id, "fulfilled": outcome.fulfilled}

    async def _record_reference(self, payment: Payment, reference: dict[str, Any]) -> Payment:
        log = self._get_logger(payment)
        entity = reference.get("entity") or self.config.default_reference_entity
        sent = await self.notifier.send_payment_pending(
            payment.customer_email or "",
            payment.customer_name or "",
            reference["referenceNumber"],
            entity,
            payment.amount_cents / 100,
            reference.get("dueDate"),
        )
        log.info("payment_data_notified", sent=sent, reference_code=reference["referenceNumber"])
        updated = await self.ledger.merge_metadata(
            payment.id,
            {"entity": reference.get("entity"), "dueDate": reference.get("dueDate")},
            reference_code=reference["referenceNumber"],
        )
        return updated or payment

    @staticmethod
    def _outcome(
        payment: Payment,
        previous: PaymentStatus,
        action: str,
        fulfilled: Optional[bool] = None,
    ) -> WebhookOutcome:
        return WebhookOutcome(
            payment_id=payment.id,
            external_id=payment.external_id,
            previous_status=previous,
            status=payment.status,
            action=action,
            fulfilled=fulfilled,
        )

    async def _apply_status(self, payment: Payment, target: PaymentStatus) -> WebhookOutcome:
        log = self._get_logger(payment)
        previous = payment.status

        if target is previous or (target is PaymentStatus.COMPLETED and previous.is_paid):
            return self._outcome(payment, previous, "unchanged")
        if previous.is_terminal:
            log.warning("terminal_payment_update_ignored",
                        stored=previous.value, requested=target.value)
            return self._outcome(payment, previous, "ignored_terminal")

        updated = await self.ledger.update_status(payment.id, target, expected=previous)
        if updated is None:
            log.info("transition_lost_race", requested=target.value)
            current = await self.ledger.get(payment.id) or payment
            return self._outcome(current, previous, "lost_race")

        if target is not PaymentStatus.COMPLETED:
            self.publish(updated)
            return self._outcome(updated, previous, "transitioned")

        result = await self.fulfillment.run(updated)
        # completed is committed; subscribers get it even if bookkeeping fails
        refreshed = updated
        try:
            if not result.succeeded:
                log.error("fulfillment_incomplete", error=result.error)
                await self.ledger.merge_metadata(
                    payment.id, {"fulfillmentError": result.error}
                )
            refreshed = await self.ledger.get(payment.id) or updated
        except StoreError as e:
            log.error("completion_bookkeeping_failed", error=e.message)
        self.publish(refreshed)
        log.info("payment_completed",
                 user_id=result.user_id,
                 user_created=result.user_created,
                 entitlement=result.entitlement)
        return self._outcome(refreshed, previous, "completed", fulfilled=result.succeeded)

    # =========================================================================
    # EXPIRY
    # =========================================================================

    async def expire_stale_payments(self, max_age: timedelta, limit: int = 50) -> int:
        cutoff = utcnow() - max_age
        expired = 0
        for payment in await self.ledger.list_stale_pending(cutoff, limit=limit):
            updated = await self.ledger.update_status(payment.id, PaymentStatus.EXPIRED)
            if updated:
                self.publish(updated)
                expired += 1
        if expired:
            self._get_logger().info("payments_expired", count=expired)
        return expired
