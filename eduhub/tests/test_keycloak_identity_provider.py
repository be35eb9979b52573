"""
Keycloak identity provider and admin client.

Focus:
- Direct grant failures map to the error taxonomy (credentials vs transient)
- Sign-in notifies subscribers with the userinfo claims
- Admin calls: conflict on duplicates, id from Location, verification flag
- All HTTP calls carry a timeout
"""

from __future__ import annotations

import types

import pytest
import requests

from eduhub.identity_access.admin_client import AdminClient
from eduhub.identity_access.keycloak_client import KeycloakIdentityProvider
from eduhub.identity_access.oidc import OIDCConfig, http_post, load_oidc_config
from eduhub.identity_access.ports import (
    AccountHandle,
    BackendRequestError,
    InvalidCredentialsError,
    RegistrationConflictError,
    TransientBackendError,
)

pytestmark = pytest.mark.anyio("asyncio")

CFG = OIDCConfig(base_url="http://kc:8080", realm="eduhub", client_id="eduhub-web")


def _resp(status: int, body=None, headers=None):
    return types.SimpleNamespace(status_code=status, json=lambda: body, headers=headers or {})


class FakeAdmin:
    def __init__(self, verified: bool = False) -> None:
        self.verified = verified
        self.created = []
        self.verify_emails = []

    def create_user(self, *, email: str, password: str) -> str:
        self.created.append(email)
        return "kc-1"

    def get_user(self, user_id: str):
        return {"id": user_id, "emailVerified": self.verified}

    def send_verify_email(self, user_id: str) -> None:
        self.verify_emails.append(user_id)


def _install_idp(monkeypatch, *, token_status=200, userinfo=None, calls=None):
    calls = calls if calls is not None else []

    def fake_post(url, data=None, headers=None, timeout=None):
        calls.append(("post", url, timeout))
        if url.endswith("/logout"):
            return _resp(204)
        return _resp(token_status, {"access_token": "at", "refresh_token": "rt"})

    def fake_get(url, headers=None, params=None, timeout=None):
        calls.append(("get", url, timeout))
        return _resp(200, userinfo or {"sub": "kc-1", "email": "ada@example.com", "email_verified": True})

    monkeypatch.setattr("eduhub.identity_access.oidc.http.post", fake_post, raising=False)
    monkeypatch.setattr("eduhub.identity_access.oidc.http.get", fake_get, raising=False)
    return calls


def test_http_post_sets_timeout(monkeypatch):
    called = {}

    def fake_post(url, data=None, headers=None, timeout=None):
        called["timeout"] = timeout
        return _resp(200, {"ok": True})

    monkeypatch.setattr("eduhub.identity_access.oidc.http.post", fake_post, raising=False)

    assert http_post("http://idp/token", {"a": "b"}).status_code == 200
    assert called["timeout"] == 5


def test_load_oidc_config_defaults(monkeypatch):
    for var in ("KC_BASE_URL", "KC_REALM", "KC_CLIENT_ID", "KC_CLIENT_SECRET", "KC_PUBLIC_BASE_URL"):
        monkeypatch.delenv(var, raising=False)
    cfg = load_oidc_config()
    assert cfg.realm == "eduhub" and cfg.client_id == "eduhub-web"
    assert cfg.token_endpoint == "http://localhost:8080/realms/eduhub/protocol/openid-connect/token"
    assert cfg.public_base_url == cfg.base_url


@pytest.mark.anyio
async def test_sign_in_notifies_with_userinfo_claims(monkeypatch):
    calls = _install_idp(monkeypatch)
    provider = KeycloakIdentityProvider(CFG, FakeAdmin())
    seen = []

    async def listener(account):
        seen.append(account)

    provider.subscribe(listener)
    handle = await provider.sign_in("ada@example.com", "pw")

    assert handle == AccountHandle(uid="kc-1", email="ada@example.com", email_verified=True)
    assert seen == [handle]
    assert await provider.current_account() == handle
    assert all(timeout == 5 for _, _, timeout in calls)


@pytest.mark.anyio
async def test_rejected_direct_grant_is_invalid_credentials(monkeypatch):
    _install_idp(monkeypatch, token_status=401)
    provider = KeycloakIdentityProvider(CFG, FakeAdmin())

    with pytest.raises(InvalidCredentialsError):
        await provider.sign_in("ada@example.com", "wrong")
    assert await provider.current_account() is None


@pytest.mark.anyio
async def test_idp_outage_is_transient(monkeypatch):
    _install_idp(monkeypatch, token_status=503)
    provider = KeycloakIdentityProvider(CFG, FakeAdmin())

    with pytest.raises(TransientBackendError):
        await provider.sign_in("ada@example.com", "pw")


@pytest.mark.anyio
async def test_network_error_is_transient(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("eduhub.identity_access.oidc.http.post", boom, raising=False)
    provider = KeycloakIdentityProvider(CFG, FakeAdmin())

    with pytest.raises(TransientBackendError):
        await provider.sign_in("ada@example.com", "pw")


@pytest.mark.anyio
async def test_sign_out_notifies_even_when_logout_fails(monkeypatch):
    _install_idp(monkeypatch)
    provider = KeycloakIdentityProvider(CFG, FakeAdmin())
    await provider.sign_in("ada@example.com", "pw")
    seen = []

    async def listener(account):
        seen.append(account)

    provider.subscribe(listener)

    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("eduhub.identity_access.oidc.http.post", boom, raising=False)
    await provider.sign_out()

    assert seen == [None]
    assert await provider.current_account() is None


@pytest.mark.anyio
async def test_create_account_signs_in_and_checks_verification(monkeypatch):
    _install_idp(monkeypatch, userinfo={"sub": "kc-1", "email": "new@example.com", "email_verified": False})
    admin = FakeAdmin(verified=False)
    provider = KeycloakIdentityProvider(CFG, admin)

    handle = await provider.create_account("new@example.com", "secret123")
    await provider.send_verification(handle)

    assert admin.created == ["new@example.com"]
    assert admin.verify_emails == ["kc-1"]
    assert handle.email_verified is False
    assert await provider.check_verified(handle) is False
    admin.verified = True
    assert await provider.check_verified(handle) is True


# --- AdminClient --------------------------------------------------------------


def _install_admin_http(monkeypatch, *, create_status=201, location="http://kc/admin/realms/eduhub/users/abc"):
    sent = {}

    def fake_post(url, data=None, headers=None, json=None, timeout=None):
        if url.endswith("/token"):
            sent["token_grant"] = data["grant_type"]
            return _resp(200, {"access_token": "admin-token"})
        sent["payload"] = json
        return _resp(create_status, None, {"Location": location} if location else {})

    def fake_get(url, headers=None, params=None, timeout=None):
        sent["lookup"] = params
        return _resp(200, [{"id": "from-lookup", "emailVerified": True}])

    def fake_put(url, headers=None, params=None, timeout=None):
        sent["put"] = url
        return _resp(204)

    monkeypatch.setattr("eduhub.identity_access.admin_client.requests.post", fake_post, raising=False)
    monkeypatch.setattr("eduhub.identity_access.admin_client.requests.get", fake_get, raising=False)
    monkeypatch.setattr("eduhub.identity_access.admin_client.requests.put", fake_put, raising=False)
    return sent


def test_admin_create_user_returns_id_from_location(monkeypatch):
    monkeypatch.setenv("KC_ADMIN_CLIENT_SECRET", "s3cr3t")
    sent = _install_admin_http(monkeypatch)

    user_id = AdminClient(CFG).create_user(email="a@example.com", password="pw123456")

    assert user_id == "abc"
    assert sent["token_grant"] == "client_credentials"
    assert sent["payload"]["emailVerified"] is False


def test_admin_create_user_falls_back_to_lookup(monkeypatch):
    monkeypatch.delenv("KC_ADMIN_CLIENT_SECRET", raising=False)
    sent = _install_admin_http(monkeypatch, location="")

    assert AdminClient(CFG).create_user(email="a@example.com", password="pw123456") == "from-lookup"
    assert sent["token_grant"] == "password"
    assert sent["lookup"] == {"email": "a@example.com", "exact": True}


def test_admin_create_user_conflict(monkeypatch):
    _install_admin_http(monkeypatch, create_status=409)

    with pytest.raises(RegistrationConflictError):
        AdminClient(CFG).create_user(email="a@example.com", password="pw123456")


def test_admin_server_error_is_transient(monkeypatch):
    _install_admin_http(monkeypatch, create_status=502)

    with pytest.raises(TransientBackendError):
        AdminClient(CFG).create_user(email="a@example.com", password="pw123456")


def test_admin_send_verify_email_uses_put(monkeypatch):
    sent = _install_admin_http(monkeypatch)

    AdminClient(CFG).send_verify_email("abc")

    assert sent["put"] == "http://kc:8080/admin/realms/eduhub/users/abc/send-verify-email"


def test_admin_rejection_is_backend_request_error(monkeypatch):
    _install_admin_http(monkeypatch, create_status=400)

    with pytest.raises(BackendRequestError) as exc:
        AdminClient(CFG).create_user(email="a@example.com", password="short")
    assert str(exc.value) == "user_create_failed"


@pytest.mark.anyio
async def test_check_verified_with_rejected_admin_token_raises_backend_error(monkeypatch):
    def fake_post(url, data=None, headers=None, json=None, timeout=None):
        return _resp(401, {"error": "unauthorized_client"})

    monkeypatch.setattr("eduhub.identity_access.admin_client.requests.post", fake_post, raising=False)
    provider = KeycloakIdentityProvider(CFG)

    with pytest.raises(BackendRequestError):
        await provider.check_verified(AccountHandle(uid="kc-1", email="ada@example.com"))
