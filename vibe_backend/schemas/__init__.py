from vibe_backend.schemas.accounts import ProvisionedAccount, User, UserRole
from vibe_backend.schemas.payments import (
    TERMINAL_STATUSES,
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

__all__ = [
    "TERMINAL_STATUSES",
    "CreatePaymentRequest",
    "CreatePaymentResponse",
    "LegacyConfirmation",
    "Payment",
    "PaymentDraft",
    "PaymentMethod",
    "PaymentStatus",
    "ProvisionedAccount",
    "PurchaseType",
    "User",
    "UserRole",
    "WebhookOutcome",
    "map_gateway_status",
]
