"""
AppyPay Gateway Client
======================
Creates charges on the AppyPay v2.0 gateway.

- OAuth2 client-credentials token (Microsoft identity platform), cached
  until five minutes before it expires, refreshed under a lock so a burst of
  charges triggers a single token request
- GPO (Multicaixa Express push) and REF (ATM reference) charge methods
- Transport failures and non-2xx answers become UpstreamError

pip install httpx structlog
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel

from vibe_backend.config import AppyPayConfig
from vibe_backend.errors import UpstreamError
from vibe_backend.schemas.payments import PaymentMethod


class ChargeRequest(BaseModel):
    amount: float
    merchant_transaction_id: str
    method: PaymentMethod
    description: Optional[str] = None
    phone_number: Optional[str] = None
    currency: str = "AOA"


class IPaymentGateway(ABC):
    @abstractmethod
    async def create_charge(self, charge: ChargeRequest) -> dict[str, Any]:
        """Returns the gateway's JSON answer. Raises UpstreamError."""
        pass

    async def close(self) -> None:
        pass


def extract_reference(appy_response: Optional[dict[str, Any]]) -> dict[str, Optional[str]]:
    """Pull reference number / entity / due date out of a charge or webhook body."""
    reference = ((appy_response or {}).get("responseStatus") or {}).get("reference") or {}
    return {
        "reference_number": reference.get("referenceNumber") or reference.get("reference"),
        "entity": reference.get("entity"),
        "due_date": reference.get("dueDate"),
    }


class AppyPayClient(IPaymentGateway):
    def __init__(self, config: AppyPayConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="appypay")

    # =========================================================================
    # AUTH
    # =========================================================================

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            form = {
                "grant_type": "client_credentials",
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            }
            if self.config.resource:
                form["resource"] = self.config.resource
            else:
                form["scope"] = f"{self.config.client_id}/.default"

            try:
                response = await self._client.post(self.config.token_url, data=form)
                response.raise_for_status()
            except httpx.HTTPError as e:
                body = e.response.text[:500] if isinstance(e, httpx.HTTPStatusError) else str(e)
                self._logger.error("token_request_failed", error=body)
                raise UpstreamError("Failed to authenticate with AppyPay", details=body) from e

            try:
                payload = response.json()
                expires_in = int(payload.get("expires_in") or 3600)
                self._access_token = payload["access_token"]
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                self._logger.error("token_response_invalid", body=response.text[:500])
                raise UpstreamError("Invalid token response from AppyPay",
                                    details=response.text[:500]) from e
            self._token_expires_at = (
                time.monotonic() + expires_in - self.config.token_refresh_margin_seconds
            )
            self._logger.info("token_refreshed", expires_in=expires_in)
            return self._access_token

    # =========================================================================
    # CHARGES
    # =========================================================================

    def _method_code(self, method: PaymentMethod) -> str:
        method_id = (
            self.config.gpo_method_id if method is PaymentMethod.MULTICAIXA
            else self.config.ref_method_id
        )
        if not method_id:
            raise UpstreamError(f"APPYPAY_{method.gateway_code}_METHOD_ID not configured",
                                status_code=500)
        return f"{method.gateway_code}_{method_id}"

    async def create_charge(self, charge: ChargeRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "amount": charge.amount,
            "currency": charge.currency,
            "description": charge.description or f"Order {charge.merchant_transaction_id}",
            "merchantTransactionId": charge.merchant_transaction_id,
            "paymentMethod": self._method_code(charge.method),
        }
        if charge.method is PaymentMethod.MULTICAIXA:
            payload["paymentInfo"] = {"phoneNumber": charge.phone_number}

        token = await self._get_access_token()
        log = self._logger.bind(external_id=charge.merchant_transaction_id,
                                method=payload["paymentMethod"])
        try:
            response = await self._client.post(
                f"{self.config.base_url}/charges",
                json=payload,
                headers={
                    "Accept": "application/json",
                    "Accept-Language": "pt-PT",
                    "Authorization": f"Bearer {token}",
                    "User-Agent": "VibeCoding/1.0",
                },
            )
        except httpx.HTTPError as e:
            log.error("charge_request_failed", error=str(e))
            raise UpstreamError("Payment provider error", details=str(e)) from e

        if response.is_error:
            try:
                details: Any = response.json()
            except ValueError:
                details = response.text[:500]
            log.error("charge_rejected", status_code=response.status_code, details=details)
            raise UpstreamError("Payment provider error", details=details)

        try:
            body = response.json()
        except ValueError as e:
            log.error("charge_response_invalid", body=response.text[:500])
            raise UpstreamError("Payment provider error", details=response.text[:500]) from e
        if not isinstance(body, dict):
            log.error("charge_response_invalid", body=response.text[:500])
            raise UpstreamError("Payment provider error", details=response.text[:500])
        log.info("charge_created",
                 gateway_status=(body.get("responseStatus") or {}).get("status"))
        return body

    async def close(self) -> None:
        await self._client.aclose()
