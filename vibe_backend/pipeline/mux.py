# pipeline/mux.py
# ============================================================================
# VIBE CODING BACKEND — MUX VIDEO CLIENT
# ============================================================================
# REST calls against https://api.mux.com (basic auth with the access token
# pair) plus locally signed playback tokens (RS256 JWT with the signing key
# from MUX_SIGNING_KEY / MUX_PRIVATE_KEY).
#
# FAILURE HANDLING:
# - Missing credentials -> ServiceUnavailableError
# - Transport / non-2xx -> UpstreamError (status 500, matching the old API)
# ============================================================================

import base64
import time
from typing import Any, Optional

import httpx
import jwt
import structlog

from vibe_backend.config import MuxConfig
from vibe_backend.errors import ServiceUnavailableError, UpstreamError, ValidationError

logger = structlog.get_logger().bind(component="mux")

RTMP_URL = "rtmps://global-live.mux.com:443/app"

# aud claim per playback token type
TOKEN_AUDIENCES = {
    "video": "v",
    "thumbnail": "t",
    "gif": "g",
    "storyboard": "s",
}


def first_playback_id(resource: dict[str, Any]) -> Optional[str]:
    playback_ids = resource.get("playback_ids") or []
    return playback_ids[0].get("id") if playback_ids else None


class MuxClient:
    def __init__(self, config: MuxConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            auth=(config.token_id, config.token_secret),
        )

    @property
    def configured(self) -> bool:
        return self.config.configured

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        if not self.configured:
            raise ServiceUnavailableError("Mux credentials not configured")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("mux_request_failed", path=path, error=str(e))
            raise UpstreamError("Mux unreachable", details=str(e), status_code=500) from e
        if response.is_error:
            logger.error("mux_error_response",
                         path=path,
                         status_code=response.status_code,
                         body=response.text[:500])
            raise UpstreamError("Mux request failed", details=response.text[:500], status_code=500)
        if not response.content:
            return {}
        return response.json().get("data") or {}

    # =========================================================================
    # UPLOADS & ASSETS
    # =========================================================================

    async def create_direct_upload(self, cors_origin: Optional[str] = None) -> dict[str, Any]:
        upload = await self._request("POST", "/video/v1/uploads", json={
            "cors_origin": cors_origin or self.config.cors_origin,
            "new_asset_settings": {
                "playback_policy": ["public"],
                "encoding_tier": "baseline",
            },
        })
        logger.info("upload_created", upload_id=upload.get("id"))
        return upload

    async def get_upload(self, upload_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/video/v1/uploads/{upload_id}")

    async def get_asset(self, asset_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/video/v1/assets/{asset_id}")

    # =========================================================================
    # LIVE STREAMS
    # =========================================================================

    async def create_live_stream(self, low_latency: bool = True) -> dict[str, Any]:
        body: dict[str, Any] = {
            "playback_policy": ["public"],
            "new_asset_settings": {"playback_policy": ["public"]},
            "reconnect_window": 60,
        }
        if low_latency:
            body["latency_mode"] = "low"
        stream = await self._request("POST", "/video/v1/live-streams", json=body)
        logger.info("live_stream_created", stream_id=stream.get("id"))
        return stream

    async def get_live_stream(self, stream_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/video/v1/live-streams/{stream_id}")

    async def delete_live_stream(self, stream_id: str) -> None:
        await self._request("DELETE", f"/video/v1/live-streams/{stream_id}")

    # =========================================================================
    # SIGNED PLAYBACK
    # =========================================================================

    def sign_playback_token(
        self,
        playback_id: str,
        token_type: str = "video",
        expires_in_seconds: int = 7 * 24 * 3600,
    ) -> str:
        if not self.config.can_sign:
            raise ServiceUnavailableError("Mux signing key not configured")
        audience = TOKEN_AUDIENCES.get(token_type)
        if audience is None:
            raise ValidationError(f"Unknown playback token type: {token_type}")

        private_key = self.config.private_key
        if "BEGIN" not in private_key:
            private_key = base64.b64decode(private_key).decode()

        return jwt.encode(
            {
                "sub": playback_id,
                "aud": audience,
                "exp": int(time.time()) + expires_in_seconds,
                "kid": self.config.signing_key_id,
            },
            private_key,
            algorithm="RS256",
            headers={"kid": self.config.signing_key_id},
        )

    async def close(self) -> None:
        await self._client.aclose()
