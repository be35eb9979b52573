"""
Keycloak Admin client (minimal) for account provisioning and email verification.

Design:
- Framework-agnostic and synchronous; the identity provider adapter runs it
  in a worker thread.
- Raises `RegistrationConflictError` for duplicate accounts,
  `TransientBackendError` for network failures and 5xx responses, and
  `BackendRequestError` with a short code for any other rejected request.

Security:
- Do not log credentials or tokens.
- Prefer a confidential admin client (client-credentials grant) in prod;
  the admin username/password grant is for local development only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import os

import requests

from .oidc import HTTP_TIMEOUT_SECONDS, OIDCConfig
from .ports import BackendRequestError, RegistrationConflictError, TransientBackendError


def _check(resp: requests.Response, ok: tuple[int, ...], code: str) -> None:
    if resp.status_code in ok:
        return
    if resp.status_code >= 500:
        raise TransientBackendError(code)
    raise BackendRequestError(code)


class AdminClient:
    def __init__(self, cfg: OIDCConfig) -> None:
        self.cfg = cfg
        self._admin_realm = os.getenv("KC_ADMIN_REALM", "master")
        self._admin_client_id = os.getenv("KC_ADMIN_CLIENT_ID", "admin-cli")
        self._admin_client_secret = os.getenv("KC_ADMIN_CLIENT_SECRET")
        self._admin_username = os.getenv("KC_ADMIN_USERNAME")
        self._admin_password = os.getenv("KC_ADMIN_PASSWORD")

    def _token(self) -> str:
        url = f"{self.cfg.base_url}/realms/{self._admin_realm}/protocol/openid-connect/token"
        data: Dict[str, Optional[str]]
        if self._admin_client_secret:
            data = {
                "grant_type": "client_credentials",
                "client_id": self._admin_client_id,
                "client_secret": self._admin_client_secret,
            }
        else:
            data = {
                "grant_type": "password",
                "client_id": self._admin_client_id,
                "username": self._admin_username,
                "password": self._admin_password,
            }
        try:
            r = requests.post(url, data=data, timeout=HTTP_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            raise TransientBackendError("admin_token_unreachable") from exc
        _check(r, (200,), "admin_token_failed")
        return r.json().get("access_token", "")

    def _admin(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def create_user(self, *, email: str, password: str) -> str:
        token = self._token()
        url = self.cfg.admin_users_url
        payload = {
            "username": email,
            "email": email,
            "enabled": True,
            "emailVerified": False,
            "credentials": [{"type": "password", "value": password, "temporary": False}],
        }
        try:
            r = requests.post(url, headers=self._admin(token), json=payload, timeout=HTTP_TIMEOUT_SECONDS)
            if r.status_code == 409:
                raise RegistrationConflictError("email_in_use")
            _check(r, (201, 204), "user_create_failed")
            # Location header carries the new id; fall back to an exact email lookup.
            location = r.headers.get("Location", "")
            if location:
                return location.rstrip("/").rsplit("/", 1)[-1]
            q = requests.get(
                url,
                headers=self._admin(token),
                params={"email": email, "exact": True},
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise TransientBackendError("admin_unreachable") from exc
        _check(q, (200,), "user_lookup_failed")
        arr = q.json() or []
        if not arr or not arr[0].get("id"):
            raise BackendRequestError("user_id_missing")
        return str(arr[0]["id"])

    def get_user(self, user_id: str) -> Dict[str, Any]:
        token = self._token()
        try:
            r = requests.get(
                f"{self.cfg.admin_users_url}/{user_id}",
                headers=self._admin(token),
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise TransientBackendError("admin_unreachable") from exc
        _check(r, (200,), "user_lookup_failed")
        return r.json() or {}

    def send_verify_email(self, user_id: str) -> None:
        token = self._token()
        try:
            r = requests.put(
                f"{self.cfg.admin_users_url}/{user_id}/send-verify-email",
                headers=self._admin(token),
                params={"client_id": self.cfg.client_id},
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise TransientBackendError("admin_unreachable") from exc
        _check(r, (204,), "send_verify_email_failed")
