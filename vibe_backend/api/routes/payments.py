"""Payment creation, status lookup and the live status stream."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from vibe_backend.api.dependencies import Services, get_services
from vibe_backend.schemas.payments import CreatePaymentRequest
from vibe_backend.services.status_stream import format_sse

router = APIRouter(prefix="/api/payments", tags=["payments"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("", status_code=201)
@router.post("/create", status_code=201)
async def create_payment(body: CreatePaymentRequest, services: Services = Depends(get_services)):
    created = await services.engine.create_payment(body)
    return created.to_body()


@router.get("/subscribe/{payment_id}")
async def subscribe_to_payment(payment_id: str, services: Services = Depends(get_services)):
    """Server-Sent Events: connected, status..., final. Heartbeat comments in between."""

    async def event_source():
        async for event in services.stream.events(payment_id):
            yield format_sse(event)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/status/{payment_id}")
@router.get("/{payment_id}")
async def get_payment(payment_id: str, services: Services = Depends(get_services)):
    payment = await services.engine.get_payment(payment_id)
    return payment.to_public()
