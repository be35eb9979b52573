"""
Session value types and the notification channel.

The session is modelled as one discriminated `identity` value plus a
verification state and a loading flag. Demo status is read from the identity
only; there is no separate demo boolean to drift out of sync.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Optional, Union

from .domain import Profile
from .ports import AccountHandle

LOG = logging.getLogger("eduhub.identity_access")


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class Anonymous:
    kind = "anonymous"


@dataclass(frozen=True)
class Authenticated:
    account: AccountHandle
    # None when the profile fetch failed or no document exists yet.
    profile: Optional[Profile] = None

    kind = "authenticated"


@dataclass(frozen=True)
class Demo:
    persona: Profile

    kind = "demo"

    @property
    def role(self) -> str:
        return self.persona.role


Identity = Union[Anonymous, Authenticated, Demo]

ANONYMOUS = Anonymous()


@dataclass(frozen=True)
class Session:
    identity: Identity = ANONYMOUS
    verification: VerificationState = VerificationState.NOT_APPLICABLE
    loading: bool = True

    @property
    def is_anonymous(self) -> bool:
        return isinstance(self.identity, Anonymous)

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self.identity, Authenticated)

    @property
    def is_demo(self) -> bool:
        return isinstance(self.identity, Demo)

    @property
    def is_verified(self) -> bool:
        """Demo personas count as verified for every gating decision."""
        if self.is_demo:
            return True
        return self.is_authenticated and self.verification is VerificationState.VERIFIED

    @property
    def profile(self) -> Optional[Profile]:
        if isinstance(self.identity, Demo):
            return self.identity.persona
        if isinstance(self.identity, Authenticated):
            return self.identity.profile
        return None

    def to_dict(self) -> dict:
        ident = self.identity
        data: dict = {
            "identity": ident.kind,
            "verification": self.verification.value,
            "verified": self.is_verified,
            "loading": self.loading,
            "account": None,
            "profile": None,
        }
        if isinstance(ident, Authenticated):
            data["account"] = {"uid": ident.account.uid, "email": ident.account.email}
        profile = self.profile
        if profile is not None:
            data["profile"] = profile.to_dict()
        if isinstance(ident, Demo):
            data["role"] = ident.role
        elif profile is not None:
            data["role"] = profile.role
        else:
            data["role"] = None
        return data


# ----------------------------- Notifications --------------------------------

DEMO_STARTED = "demo_started"
DEMO_EXPIRED = "demo_expired"
VERIFIED = "verified"


@dataclass(frozen=True)
class Notification:
    """A user-facing toast emitted by the session core."""

    kind: str
    title: str
    description: str = ""
    variant: str = "default"
    redirect_to: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "variant": self.variant,
            "redirect_to": self.redirect_to,
        }


Listener = Callable[[Notification], None]


class SessionEvents:
    """Fan-out of notifications to subscribed listeners (toasts, redirects)."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, notification: Notification) -> None:
        LOG.info("session notification: %s", notification.kind)
        for listener in list(self._listeners):
            listener(notification)


__all__ = [
    "VerificationState",
    "Anonymous",
    "Authenticated",
    "Demo",
    "Identity",
    "ANONYMOUS",
    "Session",
    "Notification",
    "SessionEvents",
    "DEMO_STARTED",
    "DEMO_EXPIRED",
    "VERIFIED",
]
