"""
Demo mode: start/end, persisted marker, hard expiry.

Why:
    A demo session is local to the client and must end after its window even
    across reloads; a restart of the window must never produce two expiries.
"""

from __future__ import annotations

import pytest

from eduhub.identity_access.domain import DEMO_USER_ID
from eduhub.identity_access.guard import RouteGuard
from eduhub.identity_access.memory import InMemoryClientStorage
from eduhub.identity_access.ports import DemoNotAllowedError
from eduhub.identity_access.session import DEMO_EXPIRED, DEMO_STARTED, Anonymous, Demo, VerificationState
from eduhub.identity_access.stores import DEMO_MODE_KEY, DEMO_ROLE_KEY, SessionSettings

from .utils.harness import make_harness

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_start_demo_sets_persona_marker_and_notification():
    h = make_harness()
    await h.store.initialize()

    h.store.start_demo("teacher")

    s = h.store.session
    assert isinstance(s.identity, Demo)
    assert s.identity.role == "teacher"
    assert s.profile.id == DEMO_USER_ID
    assert s.profile.name == "Demo Teacher"
    assert s.verification is VerificationState.VERIFIED
    assert s.is_verified is True
    assert s.loading is False
    assert h.storage.snapshot() == {DEMO_MODE_KEY: "true", DEMO_ROLE_KEY: "teacher"}
    assert h.kinds() == [DEMO_STARTED]
    assert h.notifications[0].description == "You have 10 minutes to explore EduHub."
    assert h.notifications[0].redirect_to == "/dashboard"
    assert h.store.demo_timer.armed


@pytest.mark.anyio
async def test_start_demo_rejects_unknown_role():
    h = make_harness()
    await h.store.initialize()

    with pytest.raises(ValueError):
        h.store.start_demo("admin")

    assert h.store.session.is_anonymous
    assert h.storage.snapshot() == {}


@pytest.mark.anyio
async def test_start_demo_rejected_while_authenticated():
    h = make_harness()
    await h.store.initialize()
    await h.register("real@example.com", verified=True)
    await h.provider.sign_in("real@example.com", "secret123")

    with pytest.raises(DemoNotAllowedError):
        h.store.start_demo("student")

    assert h.store.session.is_authenticated
    assert DEMO_MODE_KEY not in h.storage.snapshot()


@pytest.mark.anyio
async def test_end_demo_is_idempotent_and_clears_marker():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("student")

    h.store.end_demo()
    h.store.end_demo()

    assert isinstance(h.store.session.identity, Anonymous)
    assert h.store.session.verification is VerificationState.NOT_APPLICABLE
    assert h.storage.snapshot() == {}
    assert h.scheduler.pending_count == 0
    assert DEMO_EXPIRED not in h.kinds()


@pytest.mark.anyio
async def test_demo_expires_after_ten_minutes():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("school")

    await h.scheduler.advance(599)
    assert h.store.session.is_demo

    await h.scheduler.advance(1)
    assert h.store.session.is_anonymous
    assert h.storage.snapshot() == {}
    expired = [n for n in h.notifications if n.kind == DEMO_EXPIRED]
    assert len(expired) == 1
    assert expired[0].variant == "destructive"
    assert expired[0].redirect_to == "/login"


@pytest.mark.anyio
async def test_restarting_demo_yields_single_expiry():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("student")
    await h.scheduler.advance(300)
    h.store.start_demo("teacher")

    await h.scheduler.advance(300)
    assert h.store.session.is_demo  # first window would have ended here

    await h.scheduler.advance(300)
    assert h.store.session.is_anonymous
    assert h.kinds().count(DEMO_EXPIRED) == 1
    assert h.scheduler.pending_count == 0


@pytest.mark.anyio
async def test_reload_restores_demo_with_fresh_window():
    storage = InMemoryClientStorage()
    first = make_harness(storage=storage)
    await first.store.initialize()
    first.store.start_demo("teacher")
    await first.scheduler.advance(500)
    await first.store.teardown()
    assert storage.get(DEMO_MODE_KEY) == "true"

    reloaded = make_harness(storage=storage)
    await reloaded.store.initialize()

    s = reloaded.store.session
    assert isinstance(s.identity, Demo) and s.identity.role == "teacher"
    assert s.loading is False
    await reloaded.scheduler.advance(599)
    assert reloaded.store.session.is_demo
    await reloaded.scheduler.advance(1)
    assert reloaded.store.session.is_anonymous
    assert reloaded.kinds() == [DEMO_EXPIRED]


@pytest.mark.anyio
async def test_invalid_marker_is_discarded_on_initialize():
    storage = InMemoryClientStorage({DEMO_MODE_KEY: "true", DEMO_ROLE_KEY: "principal"})
    h = make_harness(storage=storage)

    await h.store.initialize()

    assert h.store.session.is_anonymous
    assert storage.snapshot() == {}


@pytest.mark.anyio
async def test_empty_identity_event_keeps_running_demo():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("student")

    await h.store.on_identity_changed(None)

    assert h.store.session.is_demo
    assert h.store.demo_timer.armed


@pytest.mark.anyio
async def test_real_sign_in_supersedes_demo():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("student")
    await h.register("real@example.com", verified=True)

    await h.provider.sign_in("real@example.com", "secret123")

    assert h.store.session.is_authenticated
    assert h.storage.snapshot() == {}
    assert not h.store.demo_timer.armed
    await h.scheduler.advance(600)
    assert DEMO_EXPIRED not in h.kinds()


@pytest.mark.anyio
async def test_sign_out_during_demo_ends_demo():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("school")

    await h.store.sign_out()

    assert h.store.session.is_anonymous
    assert h.storage.snapshot() == {}


@pytest.mark.anyio
async def test_demo_window_follows_settings():
    h = make_harness(settings=SessionSettings(demo_seconds=120))
    await h.store.initialize()
    h.store.start_demo("student")

    assert h.notifications[0].description == "You have 2 minutes to explore EduHub."
    await h.scheduler.advance(120)
    assert h.store.session.is_anonymous


@pytest.mark.anyio
async def test_demo_end_to_end_with_route_guard():
    guard = RouteGuard()
    h = make_harness()
    await h.store.initialize()

    h.store.start_demo("student")
    assert h.store.session.identity.role == "student"
    assert guard.decide(h.store.session, "/dashboard").allowed

    await h.scheduler.advance(600)

    assert h.store.session.is_anonymous
    assert DEMO_MODE_KEY not in h.storage.snapshot()
    assert guard.decide(h.store.session, "/dashboard").location == "/login"
