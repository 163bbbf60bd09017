# services/__init__.py
# ============================================================================
# VIBE CODING BACKEND — SERVICES MODULE
# ============================================================================
# Ledger, provisioning, broadcasting and notification services
# ============================================================================

from vibe_backend.services.accounts import AccountProvisioner, LocalIdentityProvider, SupabaseIdentityProvider
from vibe_backend.services.broadcaster import PaymentBroadcaster
from vibe_backend.services.ledger import PaymentLedger
from vibe_backend.services.notifications import EmailNotifier, INotifier
from vibe_backend.services.status_stream import PaymentStatusStream

__all__ = [
    "AccountProvisioner",
    "EmailNotifier",
    "INotifier",
    "LocalIdentityProvider",
    "PaymentBroadcaster",
    "PaymentLedger",
    "PaymentStatusStream",
    "SupabaseIdentityProvider",
]
