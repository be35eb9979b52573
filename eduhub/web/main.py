"EduHub web app"
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
import re
import secrets
import sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from eduhub.identity_access.guard import LOADING, REDIRECT, RouteGuard

from .auth_utils import CLIENT_COOKIE_NAME, cookie_opts
from .client_sessions import Backends, ClientSessionRegistry
from .components import LoadingPage
from .config import AppSettings, ensure_secure_config_on_startup, load_session_settings
from .routes import auth_router, pages_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via EDUHUB_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("EDUHUB_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

ensure_secure_config_on_startup()

logger = logging.getLogger("eduhub.web")
SETTINGS = AppSettings()

_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{32,128}$")
REMEMBER_ME_MAX_AGE = 30 * 24 * 3600
_NO_STORE = {"Cache-Control": "private, no-store"}


def _is_passthrough_path(path: str) -> bool:
    return path.startswith("/static/") or path in ("/health", "/favicon.ico")


def _is_guarded_request(request: Request) -> bool:
    """Page navigations only; API reads and form posts are not redirected."""
    if request.method not in ("GET", "HEAD"):
        return False
    return not request.url.path.startswith(("/api/", "/auth/"))


def _valid_client_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_CLIENT_ID_RE.match(value or ""))


def _set_client_cookie(response: Response, client_id: str, remember_me: bool) -> None:
    # Session cookie unless the user asked to be remembered.
    max_age = REMEMBER_ME_MAX_AGE if remember_me else None
    response.set_cookie(CLIENT_COOKIE_NAME, client_id, path="/", max_age=max_age, **cookie_opts(SETTINGS.environment))


def _guard_redirect(request: Request, location: str) -> Response:
    if "HX-Request" in request.headers:
        return Response(status_code=200, headers={"HX-Redirect": location, **_NO_STORE, "Vary": "HX-Request"})
    return RedirectResponse(url=location, status_code=302, headers=_NO_STORE)


async def session_context(request: Request, call_next):
    """Attach the client's session context and enforce the route guard.

    Behavior:
        - Resolves (or issues) the opaque client cookie and the matching
          SessionStore; the store is initialized on first use. A store created
          for a request without a cookie is dropped again if it stayed blank.
        - Page navigations are checked by the RouteGuard: LOADING renders an
          interstitial that retries, REDIRECT answers 302 (HX-Redirect for
          HTMX requests), ALLOW continues to the route handler.
    """
    path = request.url.path
    if _is_passthrough_path(path):
        return await call_next(request)

    registry: ClientSessionRegistry = request.app.state.registry
    client_id = request.cookies.get(CLIENT_COOKIE_NAME)
    is_new = not _valid_client_id(client_id)
    if is_new:
        client_id = secrets.token_urlsafe(32)
    ctx = await registry.get_or_create(client_id)
    request.state.client = ctx

    if _is_guarded_request(request):
        decision = request.app.state.guard.decide(ctx.store.session, path)
        if decision.outcome == LOADING:
            response: Response = HTMLResponse(LoadingPage().render(), status_code=200, headers=_NO_STORE)
        elif decision.outcome == REDIRECT:
            logger.debug("guard redirect %s -> %s", path, decision.location)
            response = _guard_redirect(request, decision.location or "/")
        else:
            response = await call_next(request)
    else:
        response = await call_next(request)

    if is_new or path.startswith("/auth/"):
        _set_client_cookie(response, client_id, ctx.store.remember_me)
    if is_new and not path.startswith("/auth/"):
        # Cookieless visitors (crawlers, first page views) do not keep a store.
        await registry.discard_if_blank(client_id)
    return response


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if SETTINGS.environment == "prod":
        csp = "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self' data:;"
    else:
        csp = "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; img-src 'self' data:;"
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response


def create_app(registry: Optional[ClientSessionRegistry] = None) -> FastAPI:
    """Build the FastAPI app around a client session registry.

    Tests pass their own registry (in-memory backends, manual scheduler);
    otherwise backends are wired from the environment.
    """
    if registry is None:
        registry = ClientSessionRegistry(
            Backends.from_settings(SETTINGS),
            load_session_settings(),
            idle_seconds=SETTINGS.client_idle_seconds,
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await registry.aclose()
        logger.info("client sessions closed")

    application = FastAPI(title="EduHub", description="Learning platform for students, teachers and schools", version="0.1.0", lifespan=lifespan)
    settings = registry.settings
    application.state.registry = registry
    application.state.guard = RouteGuard(
        entry_path=settings.entry_path,
        verify_path=settings.verify_path,
        main_path=settings.main_path,
    )
    # Registered last runs first: security headers wrap the session context.
    application.middleware("http")(session_context)
    application.middleware("http")(security_headers)
    application.include_router(auth_router)
    application.include_router(pages_router)
    return application


app = create_app()
