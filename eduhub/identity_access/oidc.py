"""
Keycloak realm configuration and HTTP helpers.

Why: Keep endpoint construction in one place so the identity provider adapter
and the admin client agree on URLs. Server-to-server calls use the internal
base URL.

Security: Callers never log request bodies; they carry passwords and tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Any, Dict, Optional

# Small indirection to ease monkeypatching in tests
import requests as http

HTTP_TIMEOUT_SECONDS = 5


def http_post(url: str, data: Dict[str, str], headers: Optional[Dict[str, str]] = None):
    return http.post(url, data=data, headers=headers or {}, timeout=HTTP_TIMEOUT_SECONDS)


def http_get(url: str, headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, Any]] = None):
    return http.get(url, headers=headers or {}, params=params, timeout=HTTP_TIMEOUT_SECONDS)


@dataclass(frozen=True)
class OIDCConfig:
    base_url: str  # internal base URL (server-to-server), e.g., http://keycloak:8080
    realm: str  # e.g., eduhub
    client_id: str  # e.g., eduhub-web
    client_secret: str | None = None
    public_base_url: str | None = None  # browser-facing URL, e.g., https://id.example.com

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/token"

    @property
    def userinfo_endpoint(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/userinfo"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/logout"

    @property
    def admin_users_url(self) -> str:
        return f"{self.base_url}/admin/realms/{self.realm}/users"


def load_oidc_config() -> OIDCConfig:
    base_url = os.getenv("KC_BASE_URL", "http://localhost:8080")
    return OIDCConfig(
        base_url=base_url,
        realm=os.getenv("KC_REALM", "eduhub"),
        client_id=os.getenv("KC_CLIENT_ID", "eduhub-web"),
        client_secret=os.getenv("KC_CLIENT_SECRET") or None,
        public_base_url=os.getenv("KC_PUBLIC_BASE_URL", base_url),
    )
