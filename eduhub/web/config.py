"""
Configuration and startup security checks for EduHub.

Why: Keep every environment-driven knob of the session core in one place and
prevent accidental insecure deployments (in-memory identity, plain-http IdP,
placeholder secrets) without burdening local development.

Permissions: The caller needs no special privileges. Functions simply read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import logging
import os

from eduhub.identity_access.demo_timer import DEFAULT_DEMO_SECONDS
from eduhub.identity_access.stores import (
    DEFAULT_LOADING_TIMEOUT_SECONDS,
    DEFAULT_RESEND_COOLDOWN_SECONDS,
    SessionSettings,
)
from eduhub.identity_access.verification import DEFAULT_POLL_SECONDS

LOG = logging.getLogger("eduhub.web.config")

DEFAULT_CLIENT_IDLE_SECONDS = 3600.0


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _positive_seconds(var: str, default: float) -> float:
    """Return a positive number of seconds from `var` with lenient parsing."""
    raw = os.getenv(var)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        LOG.warning("Invalid %s=%s, defaulting to %s seconds", var, raw, default)
        return default
    if value <= 0:
        LOG.warning("Non-positive %s=%s, defaulting to %s seconds", var, raw, default)
        return default
    return value


class AppSettings:
    """Environment-backed settings with a test override for the environment."""

    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("EDUHUB_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env

    @property
    def identity_backend(self) -> str:
        return (os.getenv("IDENTITY_BACKEND") or "memory").strip().lower()

    @property
    def profile_backend(self) -> str:
        return (os.getenv("PROFILE_BACKEND") or "memory").strip().lower()

    @property
    def client_storage_backend(self) -> str:
        return (os.getenv("CLIENT_STORAGE_BACKEND") or "memory").strip().lower()

    @property
    def trust_proxy(self) -> bool:
        return (os.getenv("EDUHUB_TRUST_PROXY", "false") or "").strip().lower() == "true"

    @property
    def client_idle_seconds(self) -> float:
        return _positive_seconds("EDUHUB_CLIENT_IDLE_SECONDS", DEFAULT_CLIENT_IDLE_SECONDS)


def load_session_settings() -> SessionSettings:
    return SessionSettings(
        demo_seconds=_positive_seconds("EDUHUB_DEMO_SECONDS", DEFAULT_DEMO_SECONDS),
        poll_seconds=_positive_seconds("EDUHUB_VERIFICATION_POLL_SECONDS", DEFAULT_POLL_SECONDS),
        loading_timeout_seconds=_positive_seconds("EDUHUB_LOADING_TIMEOUT_SECONDS", DEFAULT_LOADING_TIMEOUT_SECONDS),
        resend_cooldown_seconds=_positive_seconds(
            "EDUHUB_RESEND_COOLDOWN_SECONDS", DEFAULT_RESEND_COOLDOWN_SECONDS
        ),
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/staging only):
    - Identity must come from Keycloak, not the in-memory directory.
    - Keycloak URLs must use https; the admin client secret must be real.
    - Supabase profile store needs a non-placeholder service role key.
    - DATABASE_URL must not explicitly disable TLS.
    """
    env = os.getenv("EDUHUB_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    settings = AppSettings()
    if settings.identity_backend != "keycloak":
        raise SystemExit("Refusing to start: IDENTITY_BACKEND must be 'keycloak' in production/staging.")

    kc_secret = (os.getenv("KC_ADMIN_CLIENT_SECRET", "") or "").strip()
    if not kc_secret or kc_secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: KC_ADMIN_CLIENT_SECRET is unset or a placeholder in production.")

    for var in ("KC_BASE_URL", "KC_PUBLIC_BASE_URL"):
        val = (os.getenv(var, "") or "").strip().lower()
        if val.startswith("http://"):
            raise SystemExit(f"Refusing to start: {var} must use https in production (got http).")

    if settings.profile_backend == "supabase":
        srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
        if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
            raise SystemExit(
                "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
            )

    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
