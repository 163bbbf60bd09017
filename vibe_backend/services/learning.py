"""Lesson progress and user profile/statistics."""

import math
from typing import Any

import structlog

from vibe_backend.errors import NotFoundError, ValidationError
from vibe_backend.schemas.accounts import ProfileUpdate, ProgressToggle, User, UserStats
from vibe_backend.storage.record_store import IRecordStore, utcnow

logger = structlog.get_logger().bind(component="learning")


class LearningService:
    def __init__(self, store: IRecordStore):
        self.store = store

    # =========================================================================
    # PROGRESS
    # =========================================================================

    async def toggle_lesson(self, request: ProgressToggle) -> dict[str, Any]:
        if not request.lesson_id or not request.course_id or not request.user_id:
            raise ValidationError("Missing required fields")

        if request.completed:
            now = utcnow()
            row = await self.store.upsert("lesson_progress", {
                "user_id": request.user_id,
                "lesson_id": request.lesson_id,
                "course_id": request.course_id,
                "completed": True,
                "completed_at": now,
                "updated_at": now,
            }, on_conflict=("user_id", "lesson_id"))
            return {"success": True, "data": row}

        await self.store.delete("lesson_progress", {
            "user_id": request.user_id,
            "lesson_id": request.lesson_id,
        })
        return {"success": True, "message": "Progress removed"}

    async def course_progress(self, course_id: str, user_id: str) -> list[dict[str, Any]]:
        rows = await self.store.select("lesson_progress", {"user_id": user_id, "course_id": course_id})
        return [{"lesson_id": r["lesson_id"], "completed_at": r.get("completed_at")} for r in rows]

    # =========================================================================
    # USER
    # =========================================================================

    async def user_stats(self, user_id: str) -> dict[str, Any]:
        row = await self.store.select_one("users", {"id": user_id})
        if row is None:
            raise NotFoundError("User not found")
        user = User.model_validate(row)

        progress = await self.store.select("lesson_progress", {"user_id": user_id})
        courses = {p.get("course_id") for p in progress if p.get("course_id")}
        days = 0
        if user.created_at:
            days = math.ceil((utcnow() - user.created_at).total_seconds() / 86400)

        stats = UserStats(
            completed_lessons=len(progress),
            active_courses=len(courses),
            days_since_joining=max(days, 0),
            settings={
                "phone": user.phone,
                "email_notifications": user.email_notifications,
                "sms_notifications": user.sms_notifications,
            },
        )
        return {
            "stats": {
                "lessons": stats.completed_lessons,
                "courses": stats.active_courses,
                "days": stats.days_since_joining,
            },
            "settings": stats.settings,
        }

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> dict[str, Any]:
        values = update.model_dump(exclude_unset=True)
        values["updated_at"] = utcnow()
        rows = await self.store.update("users", values, {"id": user_id})
        if not rows:
            raise NotFoundError("User not found")
        logger.info("profile_updated", user_id=user_id, fields=sorted(values))
        return {"success": True, "user": User.model_validate(rows[0]).model_dump(mode="json")}
