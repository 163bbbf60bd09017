"""Manual email and SMS sending."""

from fastapi import APIRouter, Depends

from vibe_backend.api.dependencies import Services, get_services
from vibe_backend.schemas.media import BulkEmailRequest, BulkSmsRequest, EmailRequest, SmsRequest

router = APIRouter(tags=["messaging"])


@router.post("/api/email/send")
async def send_email(body: EmailRequest, services: Services = Depends(get_services)):
    return await services.messaging.send_email(body)


@router.post("/api/email/send-bulk")
async def send_bulk_email(body: BulkEmailRequest, services: Services = Depends(get_services)):
    return await services.messaging.send_bulk_email(body)


@router.post("/api/sms/send")
async def send_sms(body: SmsRequest, services: Services = Depends(get_services)):
    return await services.messaging.send_sms(body)


@router.post("/api/sms/send-bulk")
async def send_bulk_sms(body: BulkSmsRequest, services: Services = Depends(get_services)):
    return await services.messaging.send_bulk_sms(body)


@router.get("/api/sms/history")
async def sms_history(limit: int = 20, offset: int = 0, services: Services = Depends(get_services)):
    return await services.messaging.sms_history(limit=limit, offset=offset)
