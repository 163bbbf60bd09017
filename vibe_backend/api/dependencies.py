# api/dependencies.py
# ============================================================================
# VIBE CODING BACKEND — COMPOSITION ROOT
# ============================================================================
# Builds every service once per process and hands it to the routes through
# app.state. Vendors without credentials are still wired: their clients
# raise ServiceUnavailableError per call, and the payment workflow logs and
# continues where the failure is non-fatal (notifications).
#
# FALLBACKS:
# - No DATABASE_URL      -> InMemoryRecordStore (data lost on restart)
# - No Supabase creds    -> LocalIdentityProvider (logins not persisted)
# ============================================================================

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Request

from vibe_backend.config import AppConfig
from vibe_backend.pipeline.appypay import AppyPayClient, IPaymentGateway
from vibe_backend.pipeline.brevo import BrevoClient
from vibe_backend.pipeline.fulfillment import PaymentFulfillment
from vibe_backend.pipeline.mux import MuxClient
from vibe_backend.pipeline.reconciliation import PaymentReconciliationEngine
from vibe_backend.services.accounts import (
    AccountProvisioner,
    IIdentityProvider,
    LocalIdentityProvider,
    SupabaseIdentityProvider,
)
from vibe_backend.services.broadcaster import PaymentBroadcaster
from vibe_backend.services.learning import LearningService
from vibe_backend.services.ledger import PaymentLedger
from vibe_backend.services.media import MediaService
from vibe_backend.services.messaging import MessagingService
from vibe_backend.services.notifications import EmailNotifier, INotifier
from vibe_backend.services.status_stream import PaymentStatusStream
from vibe_backend.storage import InMemoryRecordStore, IRecordStore, PostgresRecordStore

logger = structlog.get_logger().bind(component="composition")


@dataclass
class Services:
    config: AppConfig
    store: IRecordStore
    identity: IIdentityProvider
    gateway: IPaymentGateway
    brevo: BrevoClient
    mux: MuxClient
    notifier: INotifier
    broadcaster: PaymentBroadcaster
    ledger: PaymentLedger
    accounts: AccountProvisioner
    fulfillment: PaymentFulfillment
    engine: PaymentReconciliationEngine
    stream: PaymentStatusStream
    media: MediaService
    messaging: MessagingService
    learning: LearningService

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        store: Optional[IRecordStore] = None,
        identity: Optional[IIdentityProvider] = None,
        gateway: Optional[IPaymentGateway] = None,
        brevo: Optional[BrevoClient] = None,
        mux: Optional[MuxClient] = None,
        notifier: Optional[INotifier] = None,
    ) -> "Services":
        """Wire the object graph. Keyword overrides replace individual collaborators."""
        if store is None:
            if config.database.configured:
                store = PostgresRecordStore(config.database)
            else:
                logger.warning("database_not_configured", fallback="in_memory")
                store = InMemoryRecordStore()

        if identity is None:
            if config.supabase.configured:
                identity = SupabaseIdentityProvider(config.supabase)
            else:
                logger.warning("supabase_not_configured", fallback="local_identities")
                identity = LocalIdentityProvider()

        if gateway is None:
            if not config.appypay.configured:
                logger.warning("appypay_not_configured")
            gateway = AppyPayClient(config.appypay)

        brevo = brevo or BrevoClient(config.brevo)
        if not brevo.configured:
            logger.warning("brevo_not_configured", effect="emails_and_sms_disabled")
        mux = mux or MuxClient(config.mux)
        if not mux.configured:
            logger.warning("mux_not_configured", effect="video_endpoints_disabled")
        notifier = notifier or EmailNotifier(brevo)

        broadcaster = PaymentBroadcaster()
        ledger = PaymentLedger(store)
        accounts = AccountProvisioner(store, identity)
        fulfillment = PaymentFulfillment(
            store, ledger, accounts, notifier, dashboard_url=config.server.dashboard_url
        )
        engine = PaymentReconciliationEngine(
            ledger, gateway, fulfillment, broadcaster, notifier, config=config.payments
        )

        return cls(
            config=config,
            store=store,
            identity=identity,
            gateway=gateway,
            brevo=brevo,
            mux=mux,
            notifier=notifier,
            broadcaster=broadcaster,
            ledger=ledger,
            accounts=accounts,
            fulfillment=fulfillment,
            engine=engine,
            stream=PaymentStatusStream(
                ledger, broadcaster, keepalive_seconds=config.payments.stream_keepalive_seconds
            ),
            media=MediaService(store, mux),
            messaging=MessagingService(brevo),
            learning=LearningService(store),
        )

    async def initialize(self) -> None:
        await self.store.initialize()

    async def close(self) -> None:
        await self.engine.wait_for_dispatches()
        await self.gateway.close()
        await self.brevo.close()
        await self.mux.close()
        await self.identity.close()
        await self.store.close()


def get_services(request: Request) -> Services:
    return request.app.state.services
