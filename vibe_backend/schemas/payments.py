"""
Payment Schemas
===============
Domain model for payments plus the request/response bodies of the payment
endpoints. Request bodies use the frontend's camelCase field names.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # response-only, never persisted
    COMPLETED = "completed"
    CONFIRMED = "confirmed"  # legacy alias of completed
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.CONFIRMED)


TERMINAL_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.CONFIRMED,
    PaymentStatus.FAILED,
    PaymentStatus.EXPIRED,
})


class PaymentMethod(str, Enum):
    MULTICAIXA = "multicaixa"
    REFERENCE = "reference"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["PaymentMethod"]:
        if not value:
            return None
        normalized = value.strip().lower()
        if normalized in ("reference", "referencia", "referência", "ref"):
            return cls.REFERENCE
        if normalized in ("multicaixa", "express", "gpo"):
            return cls.MULTICAIXA
        return None

    @property
    def gateway_code(self) -> str:
        return "GPO" if self is PaymentMethod.MULTICAIXA else "REF"


class PurchaseType(str, Enum):
    COURSE = "course"
    PROJECT = "project"


# =============================================================================
# GATEWAY STATUS MAPPING
# =============================================================================

_GATEWAY_PENDING = frozenset({"pending"})
_GATEWAY_SUCCESS = frozenset({"success", "completed", "paid"})
_GATEWAY_FAILURE = frozenset({"failed", "expired", "cancelled"})


def map_gateway_status(raw_status: Optional[str]) -> Optional[PaymentStatus]:
    """Map the gateway's free-text status to ours. None means "no change"."""
    status = (raw_status or "").strip().lower()
    if status in _GATEWAY_PENDING:
        return PaymentStatus.PENDING
    if status in _GATEWAY_SUCCESS:
        return PaymentStatus.COMPLETED
    if status in _GATEWAY_FAILURE:
        return PaymentStatus.FAILED
    return None


# =============================================================================
# DOMAIN MODEL
# =============================================================================

class Payment(BaseModel):
    """A persisted payment row"""
    model_config = ConfigDict(extra="ignore")

    id: str
    external_id: str
    user_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    amount_cents: int
    currency: str = "AOA"
    payment_method: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    reference_code: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def amount(self) -> float:
        return self.amount_cents / 100

    @property
    def method(self) -> Optional[PaymentMethod]:
        return PaymentMethod.parse(self.payment_method)

    @property
    def is_reference(self) -> bool:
        return self.method is PaymentMethod.REFERENCE

    @property
    def purchase_type(self) -> Optional[PurchaseType]:
        raw = self.metadata.get("type")
        try:
            return PurchaseType(raw) if raw else None
        except ValueError:
            return None

    @property
    def course_id(self) -> Optional[str]:
        return self.metadata.get("courseId") or self.metadata.get("course_id")

    @property
    def project_id(self) -> Optional[str]:
        return self.metadata.get("projectId") or self.metadata.get("project_id")

    def to_public(self) -> dict:
        return self.model_dump(mode="json")


class PaymentDraft(BaseModel):
    """Everything the ledger needs to create a pending payment"""
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    amount_cents: int
    currency: str = "AOA"
    payment_method: PaymentMethod
    user_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# REQUEST / RESPONSE BODIES
# =============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreatePaymentRequest(CamelModel):
    """POST /api/payments. Required fields are checked by the engine so a
    missing field maps to a 400 rather than FastAPI's 422."""
    amount: Optional[float] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: Optional[str] = None
    course_id: Optional[str] = None
    project_id: Optional[str] = None
    type: Optional[str] = None
    user_id: Optional[str] = None
    multicaixa_phone: Optional[str] = None
    description: Optional[str] = None


class CreatePaymentResponse(CamelModel):
    payment_id: str
    merchant_transaction_id: str
    status: Optional[str] = None
    message: Optional[str] = None
    reference_code: Optional[str] = None
    entity: Optional[str] = None
    appy_response: Optional[dict[str, Any]] = None

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class LegacyConfirmation(CamelModel):
    """Body of the older confirmation webhook"""
    external_id: Optional[str] = None
    status: Optional[str] = None
    payment_id: Optional[str] = None


class WebhookOutcome(BaseModel):
    """What a webhook delivery did to the payment"""
    payment_id: str
    external_id: str
    previous_status: PaymentStatus
    status: PaymentStatus
    action: str  # completed | transitioned | unchanged | ignored_terminal | lost_race
    fulfilled: Optional[bool] = None
