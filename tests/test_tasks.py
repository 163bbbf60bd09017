# tests/test_tasks.py
import asyncio

import pytest

from vibe_backend.config import AppConfig, PaymentConfig
from vibe_backend.tasks import create_admin
from vibe_backend.tasks.expiry import expiry_loop


def test_expiry_loop_returns_when_disabled(services):
    asyncio.run(asyncio.wait_for(expiry_loop(services.engine, PaymentConfig()), 1))


def test_expiry_loop_keeps_running_after_a_failed_cycle(services, monkeypatch):
    calls = []

    async def failing_sweep(max_age, limit=50):
        calls.append(limit)
        raise RuntimeError("database went away")

    monkeypatch.setattr(services.engine, "expire_stale_payments", failing_sweep)
    config = PaymentConfig(expiry_enabled=True, expiry_interval_seconds=0, expiry_batch_size=7)

    async def scenario():
        task = asyncio.create_task(expiry_loop(services.engine, config))
        while len(calls) < 2:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert calls[:2] == [7, 7]


def test_create_admin_cli(monkeypatch, capsys):
    for name in ("DATABASE_URL", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"):
        monkeypatch.delenv(name, raising=False)

    assert create_admin.main(["admin@vibecoding.com", "S3nha!"]) == 0
    assert "Admin ready: admin@vibecoding.com" in capsys.readouterr().out


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("CORS_ORIGINS", "https://vibecoding.com, https://admin.vibecoding.com")
    monkeypatch.setenv("BREVO_API_KEY", "your_brevo_api_key_here")
    monkeypatch.setenv("PAYMENT_EXPIRY_ENABLED", "true")
    monkeypatch.setenv("APPYPAY_GPO_METHOD_ID", "abc")

    config = AppConfig.from_env()
    assert config.server.port == 8080
    assert config.server.cors_origins == ["https://vibecoding.com", "https://admin.vibecoding.com"]
    assert config.brevo.configured is False
    assert config.payments.expiry_enabled is True
    assert config.appypay.gpo_method_id == "abc"
