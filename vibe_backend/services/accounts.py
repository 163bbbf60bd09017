"""
Account Provisioning
====================
Idempotently produces a user for an email address:

- existing user (case-insensitive email match) is reused
- otherwise a login identity is minted with a generated password and a
  `users` row is written under the identity's id
- a uniqueness violation on that write means another request won the race;
  the row is re-fetched by id instead of failing

Identity providers:
- SupabaseIdentityProvider: GoTrue admin API via httpx
- LocalIdentityProvider: mints ids in-process (tests, local development)

pip install httpx structlog
"""

import random
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from vibe_backend.config import SupabaseAuthConfig
from vibe_backend.errors import DuplicateKeyError, StoreError, UpstreamError
from vibe_backend.schemas.accounts import ProvisionedAccount, User, UserRole
from vibe_backend.storage.record_store import IRecordStore, utcnow

TABLE = "users"
PASSWORD_SYMBOLS = "@#$!*"


# =============================================================================
# IDENTITY PROVIDERS
# =============================================================================

class IIdentityProvider(ABC):
    """Creates login identities. Returns the new identity's id."""

    @abstractmethod
    async def create_identity(
        self,
        email: str,
        password: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Raises DuplicateKeyError if the email already has an identity."""
        pass

    async def close(self) -> None:
        pass


class LocalIdentityProvider(IIdentityProvider):
    """In-process identities. Remembers emails so duplicates behave like GoTrue."""

    def __init__(self):
        self.identities: dict[str, dict[str, Any]] = {}

    async def create_identity(self, email, password, metadata=None) -> str:
        key = email.lower()
        if key in self.identities:
            raise DuplicateKeyError(f"Identity already exists for {email}")
        identity_id = str(uuid.uuid4())
        self.identities[key] = {"id": identity_id, "password": password, "metadata": metadata or {}}
        return identity_id


class SupabaseIdentityProvider(IIdentityProvider):
    """Supabase (GoTrue) admin user creation with confirmed email."""

    def __init__(self, config: SupabaseAuthConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.url,
            timeout=config.timeout_seconds,
            headers={
                "apikey": config.service_role_key,
                "Authorization": f"Bearer {config.service_role_key}",
                "Content-Type": "application/json",
            },
        )
        self._logger = structlog.get_logger().bind(component="supabase_auth")

    async def create_identity(self, email, password, metadata=None) -> str:
        try:
            response = await self._client.post("/auth/v1/admin/users", json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata or {},
            })
        except httpx.HTTPError as e:
            self._logger.error("identity_request_failed", error=str(e))
            raise UpstreamError("Identity provider unreachable", details=str(e)) from e

        if response.status_code == 422 and "already" in response.text.lower():
            raise DuplicateKeyError(f"Identity already exists for {email}")
        if response.is_error:
            self._logger.error("identity_create_failed",
                               status_code=response.status_code,
                               body=response.text[:500])
            raise UpstreamError("Failed to create auth user", details=response.text[:500])

        body = response.json()
        return body.get("id") or body["user"]["id"]

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# PROVISIONER
# =============================================================================

class AccountProvisioner:
    def __init__(
        self,
        store: IRecordStore,
        identity: Optional[IIdentityProvider] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.identity = identity or LocalIdentityProvider()
        self._rng = rng or random.Random()
        self._logger = structlog.get_logger().bind(component="account_provisioner")

    def generate_password(self, full_name: Optional[str]) -> str:
        """vibe + first name (letters only, lowercase) + symbol + 4 digits"""
        first = (full_name or "").strip().split(" ")[0]
        letters = re.sub(r"[^a-z]", "", first.lower())
        symbol = self._rng.choice(PASSWORD_SYMBOLS)
        number = self._rng.randint(1000, 9999)
        return f"vibe{letters}{symbol}{number}"

    async def get(self, user_id: str) -> Optional[User]:
        row = await self.store.select_one(TABLE, {"id": user_id})
        return User.model_validate(row) if row else None

    async def find_by_email(self, email: str) -> Optional[User]:
        row = await self.store.select_one(TABLE, ilike={"email": email.strip()})
        return User.model_validate(row) if row else None

    async def provision(
        self,
        email: str,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> ProvisionedAccount:
        """Return the user owning `email`, minting identity + row if needed."""
        existing = await self.find_by_email(email)
        if existing:
            return ProvisionedAccount(user=existing, created=False)

        password = self.generate_password(full_name)
        try:
            identity_id = await self.identity.create_identity(
                email, password, {"full_name": full_name, "phone": phone}
            )
        except DuplicateKeyError:
            # Identity exists but the row was missing when we looked; it may
            # have been written in the meantime.
            existing = await self.find_by_email(email)
            if existing:
                return ProvisionedAccount(user=existing, created=False)
            raise UpstreamError("Login identity exists without a user record",
                                details={"email": email})

        now = utcnow()
        try:
            row = await self.store.insert(TABLE, {
                "id": identity_id,
                "email": email.strip(),
                "full_name": full_name,
                "phone": phone,
                "role": UserRole.STUDENT.value,
                "has_access": True,
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            row = await self.store.select_one(TABLE, {"id": identity_id})
            if row is None:
                row = await self.store.select_one(TABLE, ilike={"email": email.strip()})
            if row is None:
                raise StoreError("User row conflict could not be resolved",
                                 details={"email": email})
            self._logger.warning("user_insert_conflict_recovered", user_id=row["id"])
            return ProvisionedAccount(user=User.model_validate(row), created=False)

        user = User.model_validate(row)
        self._logger.info("user_provisioned", user_id=user.id)
        return ProvisionedAccount(user=user, password=password, created=True)

    async def grant_access(self, user_id: str) -> Optional[User]:
        rows = await self.store.update(
            TABLE, {"has_access": True, "updated_at": utcnow()}, {"id": user_id}
        )
        if not rows:
            self._logger.warning("grant_access_user_missing", user_id=user_id)
            return None
        return User.model_validate(rows[0])

    async def create_admin(self, email: str, password: str) -> User:
        """Admin login + row with role admin. Re-running promotes an existing row."""
        existing = await self.find_by_email(email)
        if existing:
            user_id = existing.id
        else:
            user_id = await self.identity.create_identity(email, password, {"role": "admin"})

        row = await self.store.upsert(TABLE, {
            "id": user_id,
            "email": email,
            "role": UserRole.ADMIN.value,
            "has_access": True,
            "updated_at": utcnow(),
        }, on_conflict=("id",))
        self._logger.info("admin_ready", user_id=row["id"], created=existing is None)
        return User.model_validate(row)
