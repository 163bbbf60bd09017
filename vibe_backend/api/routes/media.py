"""Video uploads, playback tokens and live sessions."""

from fastapi import APIRouter, Depends

from vibe_backend.api.dependencies import Services, get_services
from vibe_backend.schemas.media import CreateLiveSessionRequest, LiveStreamRequest, UploadUrlRequest

router = APIRouter(tags=["media"])


# =============================================================================
# UPLOADS & PLAYBACK
# =============================================================================

@router.post("/api/mux/upload-url")
@router.post("/api/video/upload-url")
async def create_upload_url(body: UploadUrlRequest, services: Services = Depends(get_services)):
    return await services.media.create_upload_url(body.lesson_id, body.cors_origin)


@router.get("/api/mux/asset/{upload_id}")
async def get_asset_status(upload_id: str, services: Services = Depends(get_services)):
    return await services.media.asset_status(upload_id)


@router.post("/api/video/sync/{upload_id}")
async def sync_upload(upload_id: str, services: Services = Depends(get_services)):
    return await services.media.sync_upload(upload_id)


@router.get("/api/video/playback-token/{playback_id}")
async def get_playback_token(
    playback_id: str,
    type: str = "video",
    services: Services = Depends(get_services),
):
    return services.media.playback_token(playback_id, type)


# =============================================================================
# LIVE
# =============================================================================

@router.post("/api/video/create-live")
@router.post("/api/video/live")
async def create_live_stream(body: LiveStreamRequest, services: Services = Depends(get_services)):
    return await services.media.attach_live_stream(body.live_session_id, body.title)


@router.post("/api/live/create", status_code=201)
async def create_live_session(body: CreateLiveSessionRequest, services: Services = Depends(get_services)):
    return await services.media.create_live_session(body)


@router.get("/api/live/list")
async def list_live_sessions(services: Services = Depends(get_services)):
    return await services.media.list_live_sessions()


@router.get("/api/live/{session_id}")
async def get_live_session(session_id: str, services: Services = Depends(get_services)):
    return await services.media.get_live_session(session_id)


@router.delete("/api/live/{session_id}")
async def delete_live_session(session_id: str, services: Services = Depends(get_services)):
    return await services.media.delete_live_session(session_id)
