"""Request bodies for the video, live-session and messaging endpoints."""

from datetime import datetime
from typing import Optional, Union

from pydantic import Field

from vibe_backend.schemas.payments import CamelModel


class UploadUrlRequest(CamelModel):
    lesson_id: Optional[str] = None
    cors_origin: Optional[str] = None


class LiveStreamRequest(CamelModel):
    live_session_id: Optional[str] = None
    title: Optional[str] = None


class CreateLiveSessionRequest(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration_minutes: int = 60
    max_participants: int = 100
    course_id: Optional[str] = None
    instructor_id: Optional[str] = None


class EmailRequest(CamelModel):
    to: Optional[Union[str, list[str]]] = None
    subject: Optional[str] = None
    html_content: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None


class BulkEmailRequest(CamelModel):
    recipients: list[str] = Field(default_factory=list)
    subject: Optional[str] = None
    html_content: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None


class SmsRequest(CamelModel):
    recipient: Optional[str] = None
    content: Optional[str] = None
    sender: Optional[str] = None
    tag: Optional[str] = None
    web_url: Optional[str] = None


class BulkSmsRequest(CamelModel):
    recipients: list[str] = Field(default_factory=list)
    content: Optional[str] = None
    sender: Optional[str] = None
    tag: Optional[str] = None
