"""
Create Admin
============
Mints an admin login and its `users` row (role admin, access granted).
Running it again for the same email promotes the existing account.

Usage:
    vibe-create-admin admin@vibecoding.com 'S3nha-Forte'
"""

import argparse
import asyncio
import sys

import structlog

from vibe_backend.config import AppConfig, configure_logging
from vibe_backend.errors import ApiError
from vibe_backend.services.accounts import AccountProvisioner, LocalIdentityProvider, SupabaseIdentityProvider
from vibe_backend.storage import InMemoryRecordStore, PostgresRecordStore

logger = structlog.get_logger().bind(component="create_admin")


async def create_admin(config: AppConfig, email: str, password: str) -> int:
    store = PostgresRecordStore(config.database) if config.database.configured else InMemoryRecordStore()
    identity = (
        SupabaseIdentityProvider(config.supabase) if config.supabase.configured
        else LocalIdentityProvider()
    )
    if not config.database.configured:
        logger.warning("database_not_configured", fallback="in_memory")

    await store.initialize()
    try:
        user = await AccountProvisioner(store, identity).create_admin(email, password)
    except ApiError as e:
        logger.error("admin_creation_failed", error=e.message, details=e.details)
        return 1
    finally:
        await identity.close()
        await store.close()

    print(f"Admin ready: {user.email} ({user.id})")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("email")
    parser.add_argument("password")
    args = parser.parse_args(argv)

    config = AppConfig.from_env()
    configure_logging(config.server.log_level, json_logs=not config.server.debug)
    return asyncio.run(create_admin(config, args.email, args.password))


if __name__ == "__main__":
    sys.exit(main())
