"""
Payment Fulfillment
===================
Side effects owed to a payment that just reached `completed`:

1. Resolve the buyer (linked user, else email lookup, else provision) and
   make sure the account has access
2. Upsert the entitlement (project_purchases / enrollments) keyed on
   (user, target)
3. Send the welcome email with credentials, only for a freshly minted account

The caller guarantees this runs once per payment (it only runs after winning
the conditional pending -> completed transition). Every step is also
idempotent on its own, so a manual re-run is harmless.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from vibe_backend.schemas.payments import Payment, PurchaseType
from vibe_backend.services.accounts import AccountProvisioner
from vibe_backend.services.ledger import PaymentLedger
from vibe_backend.services.notifications import INotifier
from vibe_backend.storage.record_store import IRecordStore

DEFAULT_DASHBOARD_URL = "https://vibecoding.com/dashboard"


class FulfillmentResult(BaseModel):
    succeeded: bool
    user_id: Optional[str] = None
    user_created: bool = False
    entitlement: Optional[str] = None
    welcome_sent: bool = False
    error: Optional[str] = None


class PaymentFulfillment:
    def __init__(
        self,
        store: IRecordStore,
        ledger: PaymentLedger,
        accounts: AccountProvisioner,
        notifier: INotifier,
        dashboard_url: str = DEFAULT_DASHBOARD_URL,
    ):
        self.store = store
        self.ledger = ledger
        self.accounts = accounts
        self.notifier = notifier
        self.dashboard_url = dashboard_url
        self._base_logger = structlog.get_logger()

    def _get_logger(self, payment: Payment):
        return self._base_logger.bind(
            component="fulfillment",
            payment_id=payment.id,
            external_id=payment.external_id,
        )

    async def run(self, payment: Payment) -> FulfillmentResult:
        """Never raises: failures come back as succeeded=False."""
        log = self._get_logger(payment)
        try:
            return await self._fulfill(payment, log)
        except Exception as e:
            log.error("fulfillment_failed", error=str(e), error_type=type(e).__name__)
            return FulfillmentResult(succeeded=False, error=str(e))

    async def _fulfill(self, payment: Payment, log) -> FulfillmentResult:
        password: Optional[str] = None
        created = False

        if payment.user_id:
            user_id = payment.user_id
            await self.accounts.grant_access(user_id)
        else:
            existing = await self.accounts.find_by_email(payment.customer_email or "")
            if existing:
                user_id = existing.id
                await self.accounts.grant_access(user_id)
            else:
                account = await self.accounts.provision(
                    payment.customer_email or "",
                    payment.customer_name,
                    payment.customer_phone,
                )
                user_id = account.user.id
                password = account.password
                created = account.created
                if not created:
                    await self.accounts.grant_access(user_id)
            await self.ledger.link_user(payment.id, user_id)

        log.info("buyer_resolved", user_id=user_id, user_created=created)

        entitlement = await self._grant_entitlement(payment, user_id, log)

        welcome_sent = False
        if created and password:
            welcome_sent = await self.notifier.send_welcome(
                payment.customer_email or "",
                payment.customer_name or "",
                password,
                self.dashboard_url,
            )
        return FulfillmentResult(
            succeeded=True,
            user_id=user_id,
            user_created=created,
            entitlement=entitlement,
            welcome_sent=welcome_sent,
        )

    async def _grant_entitlement(self, payment: Payment, user_id: str, log) -> Optional[str]:
        purchase_type = payment.purchase_type
        if purchase_type is PurchaseType.PROJECT and payment.project_id:
            await self.store.upsert("project_purchases", {
                "user_id": user_id,
                "project_id": payment.project_id,
                "payment_id": payment.id,
            }, on_conflict=("user_id", "project_id"))
            log.info("entitlement_granted", kind="project", target=payment.project_id)
            return f"project:{payment.project_id}"

        if purchase_type is PurchaseType.COURSE and payment.course_id:
            await self.store.upsert("enrollments", {
                "user_id": user_id,
                "course_id": payment.course_id,
                "payment_id": payment.id,
            }, on_conflict=("user_id", "course_id"))
            log.info("entitlement_granted", kind="course", target=payment.course_id)
            return f"course:{payment.course_id}"

        log.info("no_entitlement_target", purchase_type=purchase_type)
        return None
