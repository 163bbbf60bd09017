# vibe_backend/config.py
# ============================================================================
# VIBE CODING BACKEND — CONFIGURATION & LOGGING
# ============================================================================
# Every vendor gets its own dataclass built from the environment. A vendor
# whose credentials are missing (or still hold the ".env.example" placeholder)
# reports configured=False and the composition root wires a disabled client.
# ============================================================================

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import structlog


PLACEHOLDER_PREFIX = "your_"


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and not value.startswith(PLACEHOLDER_PREFIX)


def _flag(name: str, default: str) -> bool:
    return _env(name, default).lower() in ("1", "true", "yes", "on")


# ============================================================================
# SECTION 1: SERVER
# ============================================================================

@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "development"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    dashboard_url: str = "https://vibecoding.com/dashboard"
    log_level: str = "INFO"

    @property
    def debug(self) -> bool:
        return self.env == "development"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=_env("HOST", "0.0.0.0"),
            port=int(_env("PORT", "3000")),
            env=_env("ENV", _env("NODE_ENV", "development")),
            cors_origins=[o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()],
            dashboard_url=_env("DASHBOARD_URL", "https://vibecoding.com/dashboard"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )


# ============================================================================
# SECTION 2: PERSISTENCE
# ============================================================================

@dataclass
class DatabaseConfig:
    """Postgres connection. Empty url means the in-memory store is used."""
    database_url: str = ""
    min_pool_size: int = 2
    max_pool_size: int = 10

    @property
    def configured(self) -> bool:
        return _is_set(self.database_url)

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            database_url=_env("DATABASE_URL"),
            min_pool_size=int(_env("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(_env("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class SupabaseAuthConfig:
    """Supabase admin credentials used to mint login identities."""
    url: str = ""
    service_role_key: str = ""
    timeout_seconds: float = 15.0

    @property
    def configured(self) -> bool:
        return _is_set(self.url) and _is_set(self.service_role_key)

    @classmethod
    def from_env(cls) -> "SupabaseAuthConfig":
        return cls(
            url=_env("SUPABASE_URL").rstrip("/"),
            service_role_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
        )


# ============================================================================
# SECTION 3: VENDORS
# ============================================================================

@dataclass
class AppyPayConfig:
    """AppyPay gateway credentials and charge defaults."""
    client_id: str = ""
    client_secret: str = ""
    resource: str = ""
    base_url: str = "https://gwy-api.appypay.co.ao/v2.0"
    token_url: str = "https://login.microsoftonline.com/auth.appypay.co.ao/oauth2/token"
    gpo_method_id: str = ""
    ref_method_id: str = ""
    timeout_seconds: float = 60.0
    token_refresh_margin_seconds: int = 300

    @property
    def configured(self) -> bool:
        return _is_set(self.client_id) and _is_set(self.client_secret)

    @classmethod
    def from_env(cls) -> "AppyPayConfig":
        return cls(
            client_id=_env("APPYPAY_CLIENT_ID"),
            client_secret=_env("APPYPAY_CLIENT_SECRET"),
            resource=_env("APPYPAY_RESOURCE"),
            base_url=_env("APPYPAY_BASE_URL", "https://gwy-api.appypay.co.ao/v2.0").rstrip("/"),
            token_url=_env(
                "APPYPAY_TOKEN_URL",
                "https://login.microsoftonline.com/auth.appypay.co.ao/oauth2/token",
            ),
            gpo_method_id=_env("APPYPAY_GPO_METHOD_ID"),
            ref_method_id=_env("APPYPAY_REF_METHOD_ID"),
            timeout_seconds=float(_env("APPYPAY_TIMEOUT", "60")),
        )


@dataclass
class BrevoConfig:
    """Brevo transactional email and SMS."""
    api_key: str = ""
    sender_email: str = "noreply@vibecoding.com"
    sender_name: str = "Vibe Coding"
    sms_sender: str = "VibeCoding"
    base_url: str = "https://api.brevo.com/v3"
    timeout_seconds: float = 15.0

    @property
    def configured(self) -> bool:
        return _is_set(self.api_key)

    @classmethod
    def from_env(cls) -> "BrevoConfig":
        return cls(
            api_key=_env("BREVO_API_KEY"),
            sender_email=_env("BREVO_SENDER_EMAIL", "noreply@vibecoding.com"),
            sender_name=_env("BREVO_SENDER_NAME", "Vibe Coding"),
            sms_sender=_env("BREVO_SMS_SENDER", "VibeCoding"),
        )


@dataclass
class MuxConfig:
    """Mux video credentials. Signing key is optional (playback tokens only)."""
    token_id: str = ""
    token_secret: str = ""
    signing_key_id: str = ""
    private_key: str = ""
    base_url: str = "https://api.mux.com"
    cors_origin: str = "*"
    timeout_seconds: float = 30.0

    @property
    def configured(self) -> bool:
        return _is_set(self.token_id) and _is_set(self.token_secret)

    @property
    def can_sign(self) -> bool:
        return _is_set(self.signing_key_id) and _is_set(self.private_key)

    @classmethod
    def from_env(cls) -> "MuxConfig":
        return cls(
            token_id=_env("MUX_TOKEN_ID"),
            token_secret=_env("MUX_TOKEN_SECRET"),
            signing_key_id=_env("MUX_SIGNING_KEY"),
            private_key=_env("MUX_PRIVATE_KEY"),
            cors_origin=_env("MUX_CORS_ORIGIN", "*"),
        )


# ============================================================================
# SECTION 4: PAYMENTS
# ============================================================================

@dataclass
class PaymentConfig:
    """Reconciliation knobs."""
    currency: str = "AOA"
    default_reference_entity: str = "11424"
    stream_keepalive_seconds: float = 30.0
    expiry_enabled: bool = False
    expiry_interval_seconds: int = 300
    expiry_after_minutes: int = 4320
    expiry_batch_size: int = 50

    @classmethod
    def from_env(cls) -> "PaymentConfig":
        return cls(
            currency=_env("PAYMENT_CURRENCY", "AOA"),
            default_reference_entity=_env("APPYPAY_REFERENCE_ENTITY", "11424"),
            stream_keepalive_seconds=float(_env("PAYMENT_STREAM_KEEPALIVE", "30")),
            expiry_enabled=_flag("PAYMENT_EXPIRY_ENABLED", "false"),
            expiry_interval_seconds=int(_env("PAYMENT_EXPIRY_INTERVAL", "300")),
            expiry_after_minutes=int(_env("PAYMENT_EXPIRY_MINUTES", "4320")),
            expiry_batch_size=int(_env("PAYMENT_EXPIRY_BATCH_SIZE", "50")),
        )


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    supabase: SupabaseAuthConfig = field(default_factory=SupabaseAuthConfig)
    appypay: AppyPayConfig = field(default_factory=AppyPayConfig)
    brevo: BrevoConfig = field(default_factory=BrevoConfig)
    mux: MuxConfig = field(default_factory=MuxConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            server=ServerConfig.from_env(),
            database=DatabaseConfig.from_env(),
            supabase=SupabaseAuthConfig.from_env(),
            appypay=AppyPayConfig.from_env(),
            brevo=BrevoConfig.from_env(),
            mux=MuxConfig.from_env(),
            payments=PaymentConfig.from_env(),
        )


# ============================================================================
# SECTION 5: STRUCTURED LOGGING
# ============================================================================

def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """JSON lines in production, coloured console output in development."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
