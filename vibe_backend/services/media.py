"""
Media Service
=============
Lessons and live sessions backed by Mux:

- direct uploads attached to a lesson (the upload id is stored in
  lessons.mux_asset_id until Mux reports the real asset id)
- asset readiness via webhook, with an upload-id fallback and a manual sync
- live sessions: Mux stream + row, listing, best-effort status and delete
- signed playback tokens
"""

from typing import Any, Optional

import structlog

from vibe_backend.errors import ApiError, NotFoundError, ValidationError
from vibe_backend.pipeline.mux import RTMP_URL, MuxClient, first_playback_id
from vibe_backend.schemas.media import CreateLiveSessionRequest
from vibe_backend.storage.record_store import IRecordStore, utcnow

logger = structlog.get_logger().bind(component="media")


class MediaService:
    def __init__(self, store: IRecordStore, mux: MuxClient):
        self.store = store
        self.mux = mux

    # =========================================================================
    # UPLOADS
    # =========================================================================

    async def create_upload_url(
        self,
        lesson_id: Optional[str] = None,
        cors_origin: Optional[str] = None,
    ) -> dict[str, Any]:
        upload = await self.mux.create_direct_upload(cors_origin)
        if lesson_id:
            await self.store.update("lessons", {
                "mux_asset_id": upload.get("asset_id") or upload.get("id"),
                "mux_status": "pending",
                "updated_at": utcnow(),
            }, {"id": lesson_id})
        return {
            "success": True,
            "uploadUrl": upload.get("url"),
            "uploadId": upload.get("id"),
            "assetId": upload.get("asset_id"),
        }

    async def asset_status(self, upload_id: str) -> dict[str, Any]:
        upload = await self.mux.get_upload(upload_id)
        if not upload.get("asset_id"):
            return {"success": True, "status": upload.get("status"),
                    "message": "Upload still processing"}

        asset = await self.mux.get_asset(upload["asset_id"])
        return {
            "success": True,
            "status": asset.get("status"),
            "assetId": asset.get("id"),
            "playbackId": first_playback_id(asset),
            "duration": asset.get("duration"),
            "aspectRatio": asset.get("aspect_ratio"),
        }

    async def sync_upload(self, upload_id: str) -> dict[str, Any]:
        """Pull the asset for an upload and write it onto the lesson that holds the upload id."""
        upload = await self.mux.get_upload(upload_id)
        if not upload.get("asset_id"):
            raise NotFoundError("Asset not created by Mux yet")
        asset = await self.mux.get_asset(upload["asset_id"])
        if not asset:
            raise NotFoundError("Asset not found")

        playback_id = first_playback_id(asset)
        rows = await self.store.update("lessons", {
            "mux_status": asset.get("status"),
            "mux_asset_id": asset.get("id"),
            "mux_playback_id": playback_id,
            "duration_seconds": int(asset.get("duration") or 0),
            "updated_at": utcnow(),
        }, {"mux_asset_id": upload_id})
        logger.info("upload_synced", upload_id=upload_id, lessons=len(rows))
        return {"success": True, "status": asset.get("status"), "playbackId": playback_id}

    def playback_token(self, playback_id: str, token_type: str = "video",
                       expires_in_seconds: int = 7 * 24 * 3600) -> dict[str, Any]:
        if not playback_id:
            raise ValidationError("playbackId is required")
        token = self.mux.sign_playback_token(playback_id, token_type, expires_in_seconds)
        return {"success": True, "token": token, "playbackId": playback_id}

    # =========================================================================
    # WEBHOOK
    # =========================================================================

    async def handle_mux_webhook(self, event: dict[str, Any]) -> dict[str, Any]:
        event_type = event.get("type")
        data = event.get("data") or {}
        logger.info("mux_webhook_received", event_type=event_type, object_id=data.get("id"))
        if not data.get("id"):
            logger.warning("mux_webhook_without_id", event_type=event_type)
            return {"received": True}

        if event_type == "video.asset.ready":
            values = {
                "mux_status": "ready",
                "mux_playback_id": first_playback_id(data),
                "duration_seconds": int(data.get("duration") or 0),
                "updated_at": utcnow(),
            }
            rows = await self.store.update("lessons", values, {"mux_asset_id": data.get("id")})
            if not rows and data.get("upload_id"):
                rows = await self.store.update(
                    "lessons",
                    {**values, "mux_asset_id": data.get("id")},
                    {"mux_asset_id": data["upload_id"]},
                )
                logger.info("asset_matched_by_upload",
                            upload_id=data["upload_id"], asset_id=data.get("id"), lessons=len(rows))
        elif event_type == "video.asset.errored":
            await self.store.update("lessons", {"mux_status": "errored", "updated_at": utcnow()},
                                    {"mux_asset_id": data.get("id")})
            logger.error("asset_errored", asset_id=data.get("id"), errors=data.get("errors"))
        elif event_type in ("video.live_stream.active", "video.live_stream.idle"):
            status = event_type.rsplit(".", 1)[-1]
            await self.store.update("live_sessions", {"status": status, "updated_at": utcnow()},
                                    {"mux_live_stream_id": data.get("id")})
        elif event_type == "video.upload.asset_created":
            logger.info("upload_asset_created", asset_id=data.get("asset_id"))
        else:
            logger.info("mux_event_ignored", event_type=event_type)

        return {"received": True}

    # =========================================================================
    # LIVE
    # =========================================================================

    async def attach_live_stream(self, live_session_id: Optional[str], title: Optional[str]) -> dict[str, Any]:
        if not title or not live_session_id:
            raise ValidationError("title and liveSessionId are required")
        stream = await self.mux.create_live_stream(low_latency=True)
        await self.store.update("live_sessions", {
            "mux_live_stream_id": stream.get("id"),
            "mux_stream_key": stream.get("stream_key"),
            "mux_playback_id": first_playback_id(stream),
            "status": "idle",
            "updated_at": utcnow(),
        }, {"id": live_session_id})
        return {
            "success": True,
            "streamId": stream.get("id"),
            "streamKey": stream.get("stream_key"),
            "playbackId": first_playback_id(stream),
            "rtmpUrl": RTMP_URL,
        }

    async def create_live_session(self, request: CreateLiveSessionRequest) -> dict[str, Any]:
        if not request.title or not request.scheduled_at:
            raise ValidationError("Title and Scheduled Date are required")
        stream = await self.mux.create_live_stream(low_latency=False)
        row = await self.store.insert("live_sessions", {
            "title": request.title,
            "description": request.description,
            "scheduled_at": request.scheduled_at,
            "max_participants": request.max_participants or 100,
            "duration_minutes": request.duration_minutes or 60,
            "course_id": request.course_id,
            "instructor_id": request.instructor_id,
            "status": "scheduled",
            "mux_live_stream_id": stream.get("id"),
            "mux_stream_key": stream.get("stream_key"),
            "mux_playback_id": first_playback_id(stream),
            "rtmp_url": RTMP_URL,
        })
        logger.info("live_session_created", session_id=row["id"], stream_id=stream.get("id"))
        return row

    async def list_live_sessions(self) -> list[dict[str, Any]]:
        return await self.store.select("live_sessions", order_by="scheduled_at")

    async def get_live_session(self, session_id: str) -> dict[str, Any]:
        row = await self.store.select_one("live_sessions", {"id": session_id})
        if row is None:
            raise NotFoundError("Live session not found")
        if row.get("mux_live_stream_id"):
            try:
                stream = await self.mux.get_live_stream(row["mux_live_stream_id"])
                row["mux_status"] = stream.get("status")
            except ApiError as e:
                logger.warning("live_status_unavailable", session_id=session_id, error=e.message)
        return row

    async def delete_live_session(self, session_id: str) -> dict[str, Any]:
        row = await self.store.select_one("live_sessions", {"id": session_id})
        if row and row.get("mux_live_stream_id"):
            try:
                await self.mux.delete_live_stream(row["mux_live_stream_id"])
            except ApiError as e:
                logger.warning("live_stream_delete_failed", session_id=session_id, error=e.message)
        await self.store.delete("live_sessions", {"id": session_id})
        return {"message": "Session deleted"}
