"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep the form posts that change the session (sign-in, registration,
    sign-out, verification resend, demo switches) in one router. Each handler
    drives the client's SessionStore through the use cases and answers with a
    303 redirect; failures become a toast plus `?error=<code>` on the form page.

Notes:
    - The per-client context is resolved by the app middleware and exposed as
      `request.state.client`.
    - All posts require same-origin (Origin/Referer) and answer 403 otherwise.
"""

from __future__ import annotations

import logging
import math
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response

from eduhub.identity_access.ports import (
    BackendError,
    DemoNotAllowedError,
    InvalidCredentialsError,
    RegistrationConflictError,
    ResendCooldownError,
)
from eduhub.identity_access.session import Notification
from eduhub.identity_access.usecases import (
    RegisterUseCase,
    RegistrationInput,
    SignInInput,
    SignInUseCase,
    ValidationError,
)

from ..client_sessions import ClientContext
from ..security import is_same_origin

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("eduhub.web.auth")

ERROR = "error"
_NO_STORE = {"Cache-Control": "private, no-store"}

_MESSAGES = {
    "invalid_credentials": "Invalid email or password.",
    "email_taken": "An account with this email already exists.",
    "backend_unavailable": "The service is temporarily unavailable. Please try again.",
    "demo_not_allowed": "Sign out before starting demo mode.",
    "invalid_role": "Please choose student, teacher or school.",
    "not_pending": "There is no pending verification for this session.",
    "resend_too_soon": "Please wait a moment before requesting another email.",
}


def _flag(value: object) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")


def _field(form, name: str) -> str:
    value = form.get(name)
    return str(value) if value is not None else ""


def _see_other(location: str) -> RedirectResponse:
    return RedirectResponse(url=location, status_code=303, headers=_NO_STORE)


def _fail(ctx: ClientContext, page: str, code: str, message: str | None = None) -> RedirectResponse:
    """Queue an error toast and send the user back to the form page."""
    ctx.push(
        Notification(kind=ERROR, title=message or _MESSAGES.get(code, "Something went wrong."), variant="destructive")
    )
    return _see_other(f"{page}?{urlencode({'error': code})}")


def _forbidden() -> Response:
    return Response(status_code=403, headers={**_NO_STORE, "Vary": "Origin"})


@auth_router.post("/auth/login")
async def login(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    store = ctx.store
    form = await request.form()
    req = SignInInput(
        email=_field(form, "email"),
        password=_field(form, "password"),
        remember_me=_flag(form.get("remember_me")),
    )
    try:
        result = await SignInUseCase(store, ctx.provider).execute(req)
    except ValidationError as exc:
        return _fail(ctx, store.settings.entry_path, exc.code, exc.message)
    except InvalidCredentialsError:
        logger.info("sign-in rejected")
        return _fail(ctx, store.settings.entry_path, "invalid_credentials")
    except BackendError as exc:
        logger.warning("sign-in failed: %s", exc.__class__.__name__)
        return _fail(ctx, store.settings.entry_path, "backend_unavailable")
    return _see_other(result.redirect_to)


@auth_router.post("/auth/register")
async def register(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    store = ctx.store
    form = await request.form()
    req = RegistrationInput(
        role=_field(form, "role").strip().lower(),
        email=_field(form, "email"),
        password=_field(form, "password"),
        confirm_password=_field(form, "confirm_password"),
        name=_field(form, "name"),
        phone=_field(form, "phone"),
        location=_field(form, "location"),
        school_name=_field(form, "school_name"),
        age=_field(form, "age"),
        grade=_field(form, "grade"),
        teaching_grades=_field(form, "teaching_grades"),
        ceo=_field(form, "ceo"),
        remember_me=_flag(form.get("remember_me")),
    )
    registry = request.app.state.registry
    try:
        result = await RegisterUseCase(store, ctx.provider, registry.backends.profiles).execute(req)
    except ValidationError as exc:
        return _fail(ctx, "/register", exc.code, exc.message)
    except RegistrationConflictError:
        return _fail(ctx, "/register", "email_taken")
    except BackendError as exc:
        logger.warning("registration failed: %s", exc.__class__.__name__)
        return _fail(ctx, "/register", "backend_unavailable")
    return _see_other(result.redirect_to)


@auth_router.post("/auth/logout")
async def logout(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    await ctx.store.sign_out()
    logger.info("signed out")
    return _see_other(ctx.store.settings.entry_path)


@auth_router.post("/auth/verify/resend")
async def resend_verification(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    verify_path = ctx.store.settings.verify_path
    try:
        sent = await ctx.store.resend_verification()
    except ResendCooldownError as exc:
        seconds = math.ceil(exc.retry_after_seconds)
        return _fail(ctx, verify_path, "resend_too_soon", f"Please wait {seconds} seconds before requesting another email.")
    except BackendError as exc:
        logger.warning("verification resend failed: %s", exc.__class__.__name__)
        return _fail(ctx, verify_path, "backend_unavailable")
    if not sent:
        return _fail(ctx, verify_path, "not_pending")
    ctx.push(Notification(kind="verification_sent", title="Verification email sent", description="Check your inbox."))
    return _see_other(verify_path)


@auth_router.post("/auth/demo")
async def start_demo(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    settings = ctx.store.settings
    form = await request.form()
    role = _field(form, "role").strip().lower()
    try:
        ctx.store.start_demo(role)
    except DemoNotAllowedError:
        return _fail(ctx, settings.main_path, "demo_not_allowed")
    except ValueError:
        return _fail(ctx, settings.entry_path, "invalid_role")
    logger.info("demo started (role=%s)", role)
    return _see_other(settings.main_path)


@auth_router.post("/auth/demo/end")
async def end_demo(request: Request):
    if not is_same_origin(request):
        return _forbidden()
    ctx: ClientContext = request.state.client
    ctx.store.end_demo()
    return _see_other(ctx.store.settings.entry_path)


__all__ = ["auth_router"]
