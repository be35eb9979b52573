"""
Server-rendered pages and the session JSON endpoints.

Access control happens before these handlers run: the app middleware asks the
RouteGuard and only lets allowed navigations through. Handlers therefore only
render for the session they are given.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from eduhub.identity_access.domain import ALLOWED_ROLES

from ..client_sessions import ClientContext
from ..components import Component, Layout

pages_router = APIRouter(tags=["Pages"])

_NO_STORE = {"Cache-Control": "private, no-store"}
_ROLE_ORDER = ("student", "teacher", "school")


def _layout_response(request: Request, title: str, content: str, *, refresh_seconds: float | None = None) -> HTMLResponse:
    """Render the page (or its HTMX fragment) with the client's pending toasts."""
    ctx: ClientContext = request.state.client
    layout = Layout(
        title=title,
        content=content,
        session=ctx.store.session,
        notifications=ctx.drain(),
        current_path=request.url.path,
        refresh_seconds=refresh_seconds,
    )
    body = layout.render_fragment() if request.headers.get("HX-Request") else layout.render()
    return HTMLResponse(content=body, headers=_NO_STORE)


def _demo_buttons() -> str:
    buttons = "".join(
        f'<button type="submit" name="role" value="{role}">Try as {role}</button>'
        for role in _ROLE_ORDER
        if role in ALLOWED_ROLES
    )
    return f'<form method="post" action="/auth/demo" class="demo-picker">{buttons}</form>'


@pages_router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    content = "<h1>Welcome to EduHub</h1><p>Learning resources for students, teachers and schools.</p>"
    if request.state.client.store.session.is_anonymous:
        content += _demo_buttons()
    return _layout_response(request, "Home", content)


@pages_router.get("/resources", response_class=HTMLResponse)
async def resources(request: Request):
    return _layout_response(request, "Resources", "<h1>Resources</h1><p>Browse worksheets and study guides.</p>")


@pages_router.get("/videos", response_class=HTMLResponse)
async def videos(request: Request):
    return _layout_response(request, "Videos", "<h1>Videos</h1><p>Watch recorded lessons.</p>")


@pages_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    content = """
    <h1>Sign in</h1>
    <form method="post" action="/auth/login">
        <label>Email <input type="email" name="email" required></label>
        <label>Password <input type="password" name="password" required></label>
        <label><input type="checkbox" name="remember_me" value="true"> Remember me</label>
        <button type="submit">Sign in</button>
    </form>
    <p>No account yet? <a href="/register">Register</a></p>
    """
    return _layout_response(request, "Sign in", content + _demo_buttons())


@pages_router.get("/register", response_class=HTMLResponse)
async def register_page(request: Request):
    options = "".join(f'<option value="{r}">{r.title()}</option>' for r in _ROLE_ORDER)
    content = f"""
    <h1>Create an account</h1>
    <form method="post" action="/auth/register">
        <label>I am a <select name="role">{options}</select></label>
        <label>Name <input name="name" required></label>
        <label>Email <input type="email" name="email" required></label>
        <label>Phone <input name="phone" required></label>
        <label>Location <input name="location" required></label>
        <label>Password <input type="password" name="password" required></label>
        <label>Confirm password <input type="password" name="confirm_password" required></label>
        <fieldset data-role="student teacher">
            <label>School name <input name="school_name"></label>
        </fieldset>
        <fieldset data-role="student">
            <label>Age <input type="number" name="age" min="1"></label>
            <label>Grade <input name="grade"></label>
        </fieldset>
        <fieldset data-role="teacher">
            <label>Grades you teach (comma separated) <input name="teaching_grades"></label>
        </fieldset>
        <fieldset data-role="school">
            <label>Head of school <input name="ceo"></label>
        </fieldset>
        <label><input type="checkbox" name="remember_me" value="true"> Remember me</label>
        <button type="submit">Register</button>
    </form>
    """
    return _layout_response(request, "Register", content)


@pages_router.get("/verify", response_class=HTMLResponse)
async def verify_page(request: Request):
    ctx: ClientContext = request.state.client
    account = ctx.store.session.identity.account if ctx.store.session.is_authenticated else None
    email = Component.escape(account.email if account else "")
    wait = math.ceil(ctx.store.resend_available_in())
    if wait > 0:
        button = f'<button type="submit" disabled>Resend email in {wait}s</button>'
    else:
        button = '<button type="submit">Resend email</button>'
    content = f"""
    <h1>Verify your email</h1>
    <p>We sent a verification link to <strong>{email}</strong>. This page continues automatically once the
    address is confirmed.</p>
    <form method="post" action="/auth/verify/resend">{button}</form>
    """
    return _layout_response(request, "Verify email", content, refresh_seconds=ctx.store.settings.poll_seconds)


@pages_router.get("/dashboard", response_class=HTMLResponse)
@pages_router.get("/dashboard/{section:path}", response_class=HTMLResponse)
async def dashboard(request: Request, section: str = ""):
    session = request.state.client.store.session
    profile = session.profile
    name = Component.escape(profile.name if profile else "")
    role = Component.escape(profile.role if profile else "")
    heading = f"Welcome, {name}" if name else "Welcome"
    subtitle = f'<p class="role">Signed in as {role}</p>' if role else "<p>Complete your profile to get started.</p>"
    title = "Dashboard" if not section else f"Dashboard - {section}"
    return _layout_response(request, title, f"<h1>{heading}</h1>{subtitle}")


@pages_router.get("/api/session")
async def session_snapshot(request: Request):
    ctx: ClientContext = request.state.client
    payload = {"session": ctx.store.session.to_dict(), "remember_me": ctx.store.remember_me}
    return JSONResponse(payload, headers=_NO_STORE)


@pages_router.get("/api/notifications")
async def notifications(request: Request):
    ctx: ClientContext = request.state.client
    items = [n.to_dict() for n in ctx.drain()]
    return JSONResponse({"notifications": items}, headers=_NO_STORE)


@pages_router.get("/health")
async def health_check():
    return JSONResponse({"status": "healthy"}, headers=_NO_STORE)


__all__ = ["pages_router"]
