"""
Keycloak-backed identity provider for one client.

Sign-in uses the Direct Grant (email/password at the token endpoint) followed
by a userinfo lookup to learn `sub`, `email` and `email_verified`. Account
creation, verification emails and forced verification checks go through the
admin REST API (`AdminClient`).

The `requests` calls are blocking; every call runs in a worker thread so the
event loop keeps serving other clients.

Security: Never log credentials or tokens. Tokens stay in this object only
for the lifetime of the client session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

import requests

from .admin_client import AdminClient
from .oidc import OIDCConfig, http_get, http_post
from .ports import (
    AccountHandle,
    IdentityListener,
    InvalidCredentialsError,
    TransientBackendError,
)

LOG = logging.getLogger("eduhub.identity_access.keycloak")


class KeycloakIdentityProvider:
    def __init__(self, cfg: OIDCConfig, admin: Optional[AdminClient] = None) -> None:
        self.cfg = cfg
        self._admin = admin or AdminClient(cfg)
        self._current: Optional[AccountHandle] = None
        self._refresh_token: Optional[str] = None
        self._listeners: List[IdentityListener] = []

    # --- Subscription ------------------------------------------------------------

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

    # --- Blocking helpers (run in threads) ---------------------------------------

    def _direct_grant(self, email: str, password: str) -> Dict[str, str]:
        data = {
            "grant_type": "password",
            "client_id": self.cfg.client_id,
            "username": email,
            "password": password,
            "scope": "openid email",
        }
        if self.cfg.client_secret:
            data["client_secret"] = self.cfg.client_secret
        try:
            r = http_post(self.cfg.token_endpoint, data=data)
        except requests.RequestException as exc:
            raise TransientBackendError("idp_unreachable") from exc
        if r.status_code >= 500:
            raise TransientBackendError("direct_grant_unavailable")
        if r.status_code != 200:
            raise InvalidCredentialsError("direct_grant_failed")
        body = r.json()
        if not isinstance(body, dict) or "access_token" not in body:
            raise TransientBackendError("access_token_missing")
        return body

    def _userinfo(self, access_token: str) -> Dict[str, object]:
        try:
            r = http_get(self.cfg.userinfo_endpoint, headers={"Authorization": f"Bearer {access_token}"})
        except requests.RequestException as exc:
            raise TransientBackendError("idp_unreachable") from exc
        if r.status_code != 200:
            raise TransientBackendError("userinfo_failed")
        return r.json() or {}

    def _logout(self, refresh_token: str) -> None:
        data = {"client_id": self.cfg.client_id, "refresh_token": refresh_token}
        if self.cfg.client_secret:
            data["client_secret"] = self.cfg.client_secret
        http_post(self.cfg.logout_endpoint, data=data)

    # --- Protocol ----------------------------------------------------------------

    async def current_account(self) -> Optional[AccountHandle]:
        return self._current

    async def sign_in(self, email: str, password: str) -> AccountHandle:
        tokens = await asyncio.to_thread(self._direct_grant, email, password)
        info = await asyncio.to_thread(self._userinfo, tokens["access_token"])
        sub = info.get("sub")
        if not isinstance(sub, str) or not sub:
            raise TransientBackendError("sub_missing")
        handle = AccountHandle(
            uid=sub,
            email=str(info.get("email") or email),
            email_verified=bool(info.get("email_verified", False)),
        )
        self._current = handle
        self._refresh_token = tokens.get("refresh_token")
        await self._notify(handle)
        return handle

    async def create_account(self, email: str, password: str) -> AccountHandle:
        await asyncio.to_thread(self._admin.create_user, email=email, password=password)
        return await self.sign_in(email, password)

    async def sign_out(self) -> None:
        refresh, self._refresh_token = self._refresh_token, None
        if refresh:
            try:
                await asyncio.to_thread(self._logout, refresh)
            except requests.RequestException as exc:
                # Local sign-out proceeds; the IdP session expires on its own.
                LOG.warning("IdP logout failed: %s", exc.__class__.__name__)
        self._current = None
        await self._notify(None)

    async def send_verification(self, account: AccountHandle) -> None:
        await asyncio.to_thread(self._admin.send_verify_email, account.uid)

    async def check_verified(self, account: AccountHandle) -> bool:
        user = await asyncio.to_thread(self._admin.get_user, account.uid)
        return bool(user.get("emailVerified", False))


__all__ = ["KeycloakIdentityProvider"]
