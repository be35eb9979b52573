"""
Ports for the session core: account handles, backend protocols, and errors.

Intent:
    Describe the small capability contract the session core needs from the
    managed backend (identity provider, profile store, durable client storage)
    without binding to a concrete SDK. Adapters live in `memory`,
    `keycloak_client`, `profiles_supabase` and `client_storage_db`.

Design:
    - Value types: AccountHandle
    - Protocols: IdentityProviderProtocol, ProfileStoreProtocol, ClientStorageProtocol
    - Error taxonomy: transient vs. user-actionable backend failures
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from .domain import Profile


# ----------------------------- Value types ----------------------------------


@dataclass(frozen=True)
class AccountHandle:
    """Account as reported by the identity provider.

    Parameters:
        uid: Opaque, provider-issued identifier (also the profile document id).
        email: Login email of the account.
        email_verified: Cached verification flag; may be stale. Use
            `IdentityProviderProtocol.check_verified` for a forced refresh.
    """

    uid: str
    email: str
    email_verified: bool = False


IdentityListener = Callable[[Optional[AccountHandle]], Awaitable[None]]


# ----------------------------- Protocols ------------------------------------


class IdentityProviderProtocol(Protocol):
    """Authenticates one client and notifies listeners about identity changes."""

    def subscribe(self, callback: IdentityListener) -> Callable[[], None]:
        ...

    async def current_account(self) -> Optional[AccountHandle]:
        ...

    async def create_account(self, email: str, password: str) -> AccountHandle:
        ...

    async def sign_in(self, email: str, password: str) -> AccountHandle:
        ...

    async def sign_out(self) -> None:
        ...

    async def send_verification(self, account: AccountHandle) -> None:
        ...

    async def check_verified(self, account: AccountHandle) -> bool:
        ...


class ProfileStoreProtocol(Protocol):
    """Document store holding per-account profile attributes."""

    async def get_profile(self, uid: str) -> Profile:
        ...

    async def set_profile(self, uid: str, profile: Profile) -> None:
        ...


class ClientStorageProtocol(Protocol):
    """Durable key/value storage scoped to one client (browser)."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


# ------------------------------ Errors --------------------------------------


class BackendError(Exception):
    """Base class for backend gateway failures."""


class TransientBackendError(BackendError):
    """Recoverable failure (network, 5xx); retried on the normal schedule."""


class InvalidCredentialsError(BackendError):
    """Sign-in rejected by the identity provider."""


class RegistrationConflictError(BackendError):
    """An account with this email already exists."""


class ProfileNotFoundError(BackendError):
    """No profile document exists for the account."""


class BackendRequestError(BackendError):
    """The backend refused the request (4xx other than a conflict)."""


class ResendCooldownError(Exception):
    """A verification email was requested again before the cooldown ran out."""

    def __init__(self, retry_after_seconds: float) -> None:
        super().__init__(f"retry in {retry_after_seconds:.0f}s")
        self.retry_after_seconds = retry_after_seconds


class DemoNotAllowedError(Exception):
    """Demo mode requested while a real account is signed in."""


__all__ = [
    # Values
    "AccountHandle",
    "IdentityListener",
    # Protocols
    "IdentityProviderProtocol",
    "ProfileStoreProtocol",
    "ClientStorageProtocol",
    # Errors
    "BackendError",
    "TransientBackendError",
    "InvalidCredentialsError",
    "RegistrationConflictError",
    "ProfileNotFoundError",
    "BackendRequestError",
    "ResendCooldownError",
    "DemoNotAllowedError",
]
