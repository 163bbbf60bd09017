"""
Vibe Coding API Server
======================
FastAPI backend for the course platform:
- AppyPay payments (reference + Multicaixa Express) with webhook reconciliation
- Live payment status over Server-Sent Events
- Mux video uploads, playback tokens and live sessions
- Brevo email and SMS
- Lesson progress and user profile
- Health monitoring

pip install fastapi uvicorn pydantic structlog httpx asyncpg pyjwt[crypto]
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vibe_backend import __version__
from vibe_backend.api.dependencies import Services
from vibe_backend.api.routes import learning, media, messaging, payments, webhooks
from vibe_backend.config import AppConfig, configure_logging
from vibe_backend.errors import ApiError
from vibe_backend.tasks.expiry import expiry_loop

logger = structlog.get_logger().bind(component="server")

START_TIME = datetime.now(timezone.utc)


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

def _lifespan_for(services: Optional[Services]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        owned = services is None
        current = services or Services.build(AppConfig.from_env())
        app.state.services = current
        logger.info("server_starting", version=__version__, env=current.config.server.env)

        if owned:
            await current.initialize()

        expiry_task = None
        if current.config.payments.expiry_enabled:
            expiry_task = asyncio.create_task(expiry_loop(current.engine, current.config.payments))

        yield

        logger.info("server_shutting_down", pending_dispatches=current.engine.pending_dispatches)
        if expiry_task is not None:
            expiry_task.cancel()
            try:
                await expiry_task
            except asyncio.CancelledError:
                pass
        if owned:
            await current.close()
        else:
            await current.engine.wait_for_dispatches()

    return lifespan


# =============================================================================
# FASTAPI APP
# =============================================================================

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    With `services` given (tests), the caller owns their lifecycle;
    otherwise they are built from the environment at startup and closed at
    shutdown.
    """
    cors_origins = services.config.server.cors_origins if services else AppConfig.from_env().server.cors_origins

    app = FastAPI(
        title="Vibe Coding API",
        description="Payments, video, messaging and learning progress for Vibe Coding",
        version=__version__,
        lifespan=_lifespan_for(services),
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = str(uuid4())[:8]
        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("request_failed",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_invalid", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_errors(exc)},
        )

    # =========================================================================
    # HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/")
    async def index():
        return {
            "name": "Vibe Coding API",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "payments": "/api/payments",
                "video": "/api/video",
                "email": "/api/email",
                "webhooks": "/api/webhooks",
                "sms": "/api/sms",
                "live": "/api/live",
                "progress": "/api/progress",
            },
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        current: Services = request.app.state.services
        return {
            "status": "ok",
            "message": "Vibe Coding API is running",
            "version": __version__,
            "uptime_seconds": (datetime.now(timezone.utc) - START_TIME).total_seconds(),
            "database": current.config.database.configured,
            "payment_streams": current.broadcaster.active_keys,
            "pending_dispatches": current.engine.pending_dispatches,
        }

    @app.get("/ready")
    async def readiness_check():
        """Kubernetes readiness probe"""
        return {"ready": True}

    @app.get("/live")
    async def liveness_check():
        """Kubernetes liveness probe"""
        return {"live": True}

    for module in (payments, webhooks, media, messaging, learning):
        app.include_router(module.router)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
        for error in exc.errors()
    ]


# =============================================================================
# MAIN
# =============================================================================

def main() -> None:
    config = AppConfig.from_env()
    configure_logging(config.server.log_level, json_logs=not config.server.debug)
    uvicorn.run(
        "vibe_backend.api.server:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=config.server.debug,
        log_level=config.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
