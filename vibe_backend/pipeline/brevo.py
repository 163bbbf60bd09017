# pipeline/brevo.py
# ============================================================================
# VIBE CODING BACKEND — BREVO CLIENT (transactional email + SMS)
# ============================================================================
# Thin httpx wrapper over https://api.brevo.com/v3. Every call raises
# ServiceUnavailableError when no API key is configured and UpstreamError
# when Brevo answers with an error; callers decide whether that is fatal.
# ============================================================================

from typing import Any, Optional

import httpx
import structlog

from vibe_backend.config import BrevoConfig
from vibe_backend.errors import ServiceUnavailableError, UpstreamError

logger = structlog.get_logger().bind(component="brevo")

STOP_CODE_MARKERS = ("[STOP CODE]", "[STOP]")


class BrevoClient:
    def __init__(self, config: BrevoConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            headers={
                "api-key": config.api_key,
                "accept": "application/json",
                "content-type": "application/json",
            },
        )

    @property
    def configured(self) -> bool:
        return self.config.configured

    def _require_configured(self) -> None:
        if not self.configured:
            raise ServiceUnavailableError("Brevo API key not configured")

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        self._require_configured()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("brevo_request_failed", path=path, error=str(e))
            raise UpstreamError("Brevo unreachable", details=str(e)) from e
        if response.is_error:
            logger.error("brevo_error_response",
                         path=path,
                         status_code=response.status_code,
                         body=response.text[:500])
            raise UpstreamError("Brevo request failed", details=response.text[:500])
        return response.json() if response.content else {}

    # =========================================================================
    # EMAIL
    # =========================================================================

    async def send_email(
        self,
        to: list[dict[str, str]],
        subject: str,
        html: str,
        text: Optional[str] = None,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sender": {
                "email": sender_email or self.config.sender_email,
                "name": sender_name or self.config.sender_name,
            },
            "to": to,
            "subject": subject,
            "htmlContent": html,
        }
        if text:
            payload["textContent"] = text
        result = await self._request("POST", "/smtp/email", json=payload)
        logger.info("email_sent", recipients=len(to), message_id=result.get("messageId"))
        return result

    # =========================================================================
    # SMS
    # =========================================================================

    async def send_sms(
        self,
        recipient: str,
        content: str,
        sender: Optional[str] = None,
        tag: Optional[str] = None,
        web_url: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sender": sender or self.config.sms_sender,
            "recipient": recipient,
            "content": content,
            "type": "marketing" if any(m in content for m in STOP_CODE_MARKERS) else "transactional",
            "unicodeEnabled": True,
        }
        if tag:
            payload["tag"] = tag
        if web_url:
            payload["webUrl"] = web_url
        result = await self._request("POST", "/transactionalSMS/send", json=payload)
        logger.info("sms_sent", message_id=result.get("messageId"), type=payload["type"])
        return result

    async def sms_events(self, limit: int = 50, offset: int = 0, days: int = 30) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/transactionalSMS/statistics/events",
            params={"limit": limit, "offset": offset, "days": days, "sort": "desc"},
        )

    async def close(self) -> None:
        await self._client.aclose()
