"""Lesson progress and user profile endpoints."""

from fastapi import APIRouter, Depends

from vibe_backend.api.dependencies import Services, get_services
from vibe_backend.schemas.accounts import ProfileUpdate, ProgressToggle

router = APIRouter(tags=["learning"])


@router.post("/api/progress/toggle")
async def toggle_lesson(body: ProgressToggle, services: Services = Depends(get_services)):
    return await services.learning.toggle_lesson(body)


@router.get("/api/progress/{course_id}/{user_id}")
async def course_progress(course_id: str, user_id: str, services: Services = Depends(get_services)):
    return await services.learning.course_progress(course_id, user_id)


@router.get("/api/user/stats/{user_id}")
async def user_stats(user_id: str, services: Services = Depends(get_services)):
    return await services.learning.user_stats(user_id)


@router.put("/api/user/{user_id}")
async def update_profile(user_id: str, body: ProfileUpdate, services: Services = Depends(get_services)):
    return await services.learning.update_profile(user_id, body)
