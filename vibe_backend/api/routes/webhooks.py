"""Inbound callbacks from AppyPay and Mux."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from vibe_backend.api.dependencies import Services, get_services
from vibe_backend.errors import ValidationError
from vibe_backend.schemas.payments import LegacyConfirmation

logger = structlog.get_logger().bind(component="webhooks")

router = APIRouter(tags=["webhooks"])


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return payload


@router.post("/api/webhooks/gateway")
@router.post("/api/payments/webhook/appypay")
async def gateway_webhook(request: Request, services: Services = Depends(get_services)):
    payload = await _json_object(request)
    outcome = await services.engine.handle_gateway_webhook(payload)
    logger.info("gateway_webhook_handled",
                payment_id=outcome.payment_id,
                external_id=outcome.external_id,
                action=outcome.action,
                status=outcome.status.value)
    return PlainTextResponse("OK")


@router.post("/api/webhooks/appypay")
async def confirmation_webhook(body: LegacyConfirmation, services: Services = Depends(get_services)):
    return await services.engine.handle_confirmation_webhook(body)


@router.post("/api/webhooks/mux")
@router.post("/api/mux/webhook")
async def mux_webhook(request: Request, services: Services = Depends(get_services)):
    return await services.media.handle_mux_webhook(await _json_object(request))
