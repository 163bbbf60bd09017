"""Manual and bulk email / SMS through Brevo."""

from typing import Any

import structlog

from vibe_backend.errors import ApiError, ServiceUnavailableError, ValidationError
from vibe_backend.pipeline.brevo import BrevoClient
from vibe_backend.schemas.media import BulkEmailRequest, BulkSmsRequest, EmailRequest, SmsRequest

logger = structlog.get_logger().bind(component="messaging")


class MessagingService:
    def __init__(self, brevo: BrevoClient):
        self.brevo = brevo

    def _require_brevo(self) -> None:
        if not self.brevo.configured:
            raise ServiceUnavailableError("Email service not configured")

    async def send_email(self, request: EmailRequest) -> dict[str, Any]:
        if not request.to or not request.subject or not request.html_content:
            raise ValidationError("Required fields: to, subject, htmlContent")
        self._require_brevo()

        recipients = request.to if isinstance(request.to, list) else [request.to]
        result = await self.brevo.send_email(
            [{"email": email} for email in recipients],
            request.subject,
            request.html_content,
            sender_email=request.sender_email,
            sender_name=request.sender_name,
        )
        return {"success": True, "messageId": result.get("messageId"), "message": "Email sent"}

    async def send_bulk_email(self, request: BulkEmailRequest) -> dict[str, Any]:
        if not request.recipients:
            raise ValidationError("recipients must be a non-empty list of emails")
        if not request.subject or not request.html_content:
            raise ValidationError("Required fields: subject, htmlContent")
        self._require_brevo()

        results, errors = [], []
        for email in request.recipients:
            try:
                await self.brevo.send_email(
                    [{"email": email}],
                    request.subject,
                    request.html_content,
                    sender_email=request.sender_email,
                    sender_name=request.sender_name,
                )
                results.append({"email": email, "status": "sent"})
            except ApiError as e:
                errors.append({"email": email, "error": e.message, "details": e.details})

        logger.info("bulk_email_done", sent=len(results), failed=len(errors))
        return {"success": True, "sent": len(results), "failed": len(errors),
                "results": results, "errors": errors}

    async def send_sms(self, request: SmsRequest) -> dict[str, Any]:
        if not request.recipient or not request.content:
            raise ValidationError("Missing required fields: recipient, content")
        result = await self.brevo.send_sms(
            request.recipient, request.content, request.sender, request.tag, request.web_url
        )
        return {"success": True, "data": result, "messageId": result.get("messageId")}

    async def send_bulk_sms(self, request: BulkSmsRequest) -> dict[str, Any]:
        if not request.recipients or not request.content:
            raise ValidationError("Invalid payload. recipients must be a non-empty list.")

        results, errors = [], []
        for recipient in request.recipients:
            try:
                result = await self.brevo.send_sms(recipient, request.content, request.sender, request.tag)
                results.append({"recipient": recipient, "success": True,
                                "messageId": result.get("messageId")})
            except ServiceUnavailableError:
                raise
            except ApiError as e:
                errors.append({"recipient": recipient, "success": False, "error": e.details or e.message})

        logger.info("bulk_sms_done", sent=len(results), failed=len(errors))
        return {"message": "Bulk processing completed", "sent": len(results), "failed": len(errors),
                "details": {"results": results, "errors": errors}}

    async def sms_history(self, limit: int = 20, offset: int = 0) -> dict[str, Any]:
        return await self.brevo.sms_events(limit=limit, offset=offset, days=30)
