"""
In-memory backend adapters for development and tests.

Why: Run the full session lifecycle locally without Keycloak, Supabase or
Postgres. For production, wire the adapters from `keycloak_client`,
`profiles_supabase` and `client_storage_db` instead.

Security: Passwords are kept only as salted SHA-256 digests; this is a
development directory, not a credential store.
"""
from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import logging
import secrets
from typing import Callable, Dict, List, Optional

from .domain import Profile
from .ports import (
    AccountHandle,
    IdentityListener,
    InvalidCredentialsError,
    ProfileNotFoundError,
    RegistrationConflictError,
    TransientBackendError,
)

LOG = logging.getLogger("eduhub.identity_access.memory")


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _digest(salt: str, password: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()


@dataclass
class AccountRecord:
    uid: str
    email: str
    salt: str
    password_digest: str
    email_verified: bool = False

    def handle(self) -> AccountHandle:
        return AccountHandle(uid=self.uid, email=self.email, email_verified=self.email_verified)


class InMemoryIdentityDirectory:
    """Process-wide account directory shared by all per-client providers."""

    def __init__(self) -> None:
        self._by_email: Dict[str, AccountRecord] = {}
        self._by_uid: Dict[str, AccountRecord] = {}
        self.verification_requests: List[str] = []

    def create(self, email: str, password: str) -> AccountRecord:
        key = _normalize_email(email)
        if key in self._by_email:
            raise RegistrationConflictError("email_in_use")
        salt = secrets.token_hex(8)
        rec = AccountRecord(
            uid=secrets.token_hex(14),
            email=key,
            salt=salt,
            password_digest=_digest(salt, password),
        )
        self._by_email[key] = rec
        self._by_uid[rec.uid] = rec
        return rec

    def authenticate(self, email: str, password: str) -> AccountRecord:
        rec = self._by_email.get(_normalize_email(email))
        if rec is None or not hmac.compare_digest(rec.password_digest, _digest(rec.salt, password)):
            raise InvalidCredentialsError("invalid_credentials")
        return rec

    def get(self, uid: str) -> Optional[AccountRecord]:
        return self._by_uid.get(uid)

    def find_by_email(self, email: str) -> Optional[AccountRecord]:
        return self._by_email.get(_normalize_email(email))

    def mark_verified(self, email: str) -> None:
        """Simulate the user clicking the confirmation link."""
        rec = self.find_by_email(email)
        if rec is None:
            raise KeyError(email)
        rec.email_verified = True


class InMemoryIdentityProvider:
    """Identity provider view for a single client on top of a shared directory.

    Listeners are awaited in subscription order whenever the signed-in account
    of this client changes.
    """

    def __init__(self, directory: InMemoryIdentityDirectory) -> None:
        self._directory = directory
        self._current: Optional[AccountHandle] = None
        self._listeners: List[IdentityListener] = []

    def subscribe(self, callback: IdentityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    async def _notify(self, account: Optional[AccountHandle]) -> None:
        for listener in list(self._listeners):
            await listener(account)

    async def current_account(self) -> Optional[AccountHandle]:
        return self._current

    async def create_account(self, email: str, password: str) -> AccountHandle:
        rec = self._directory.create(email, password)
        self._current = rec.handle()
        await self._notify(self._current)
        return self._current

    async def sign_in(self, email: str, password: str) -> AccountHandle:
        rec = self._directory.authenticate(email, password)
        self._current = rec.handle()
        await self._notify(self._current)
        return self._current

    async def sign_out(self) -> None:
        self._current = None
        await self._notify(None)

    async def send_verification(self, account: AccountHandle) -> None:
        self._directory.verification_requests.append(account.uid)
        LOG.info("verification email queued")

    async def check_verified(self, account: AccountHandle) -> bool:
        rec = self._directory.get(account.uid)
        if rec is None:
            raise TransientBackendError("account_lookup_failed")
        return rec.email_verified


class InMemoryProfileStore:
    def __init__(self) -> None:
        self._data: Dict[str, Profile] = {}

    async def get_profile(self, uid: str) -> Profile:
        try:
            return self._data[uid]
        except KeyError:
            raise ProfileNotFoundError(uid) from None

    async def set_profile(self, uid: str, profile: Profile) -> None:
        self._data[uid] = profile


class InMemoryClientStorage:
    """Per-client key/value storage (the analogue of browser localStorage)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


__all__ = [
    "AccountRecord",
    "InMemoryIdentityDirectory",
    "InMemoryIdentityProvider",
    "InMemoryProfileStore",
    "InMemoryClientStorage",
]
