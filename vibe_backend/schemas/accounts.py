"""User and learning-progress schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vibe_backend.schemas.payments import CamelModel


class UserRole(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.STUDENT
    has_access: bool = False
    email_notifications: bool = True
    sms_notifications: bool = True
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProvisionedAccount(BaseModel):
    """Result of provisioning. `password` is only set when a login was minted."""
    user: User
    password: Optional[str] = None
    created: bool = False


class ProfileUpdate(CamelModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None


class ProgressToggle(CamelModel):
    user_id: Optional[str] = None
    lesson_id: Optional[str] = None
    course_id: Optional[str] = None
    completed: Optional[bool] = None


class UserStats(CamelModel):
    completed_lessons: int = 0
    active_courses: int = 0
    days_since_joining: int = 0
    settings: dict = Field(default_factory=dict)
