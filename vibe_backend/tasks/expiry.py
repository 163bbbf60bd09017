"""
Payment Expiry Loop
===================
Background task that moves payments left `pending` for too long to
`expired`, through the same conditional transition the webhooks use, and
broadcasts the terminal status to anyone still watching.

Features:
- Disabled by default (PAYMENT_EXPIRY_ENABLED)
- Runs every PAYMENT_EXPIRY_INTERVAL seconds
- Expires payments older than PAYMENT_EXPIRY_MINUTES (72h by default)
- At most PAYMENT_EXPIRY_BATCH_SIZE payments per cycle
"""

import asyncio
from datetime import timedelta

import structlog

from vibe_backend.config import PaymentConfig
from vibe_backend.pipeline.reconciliation import PaymentReconciliationEngine

logger = structlog.get_logger().bind(component="expiry")


async def run_expiry_cycle(engine: PaymentReconciliationEngine, config: PaymentConfig) -> int:
    return await engine.expire_stale_payments(
        timedelta(minutes=config.expiry_after_minutes),
        limit=config.expiry_batch_size,
    )


async def expiry_loop(engine: PaymentReconciliationEngine, config: PaymentConfig) -> None:
    logger.info("expiry_loop_started",
                interval=config.expiry_interval_seconds,
                threshold_minutes=config.expiry_after_minutes,
                enabled=config.expiry_enabled)

    if not config.expiry_enabled:
        logger.info("expiry_loop_disabled")
        return

    while True:
        try:
            await run_expiry_cycle(engine, config)
        except Exception as e:
            logger.error("expiry_cycle_failed", error=str(e), error_type=type(e).__name__)

        await asyncio.sleep(config.expiry_interval_seconds)
