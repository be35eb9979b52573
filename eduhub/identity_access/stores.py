"""
Session store: single source of truth for the session of one client.

Why: Keep identity, verification state and the loading flag in one explicitly
constructed object with an `initialize()`/`teardown()` lifecycle, instead of
module-level state. The web layer creates one store per browser client.

Persistence: Only the demo marker (`demoMode`, `demoRole`) and the
`rememberMe` flag are written to durable client storage, and only by this
store.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Callable, Optional

from .demo_timer import DEFAULT_DEMO_SECONDS, DemoTimer
from .domain import Profile, demo_persona, is_allowed_role
from .ports import (
    AccountHandle,
    BackendError,
    ClientStorageProtocol,
    DemoNotAllowedError,
    IdentityProviderProtocol,
    ProfileNotFoundError,
    ProfileStoreProtocol,
    ResendCooldownError,
    TransientBackendError,
)
from .scheduler import ScheduledCall, SchedulerProtocol
from .session import (
    ANONYMOUS,
    DEMO_EXPIRED,
    DEMO_STARTED,
    VERIFIED,
    Authenticated,
    Demo,
    Notification,
    Session,
    SessionEvents,
    VerificationState,
)
from .verification import DEFAULT_POLL_SECONDS, VerificationPoller

LOG = logging.getLogger("eduhub.identity_access")

DEMO_MODE_KEY = "demoMode"
DEMO_ROLE_KEY = "demoRole"
REMEMBER_ME_KEY = "rememberMe"

DEFAULT_LOADING_TIMEOUT_SECONDS = 10.0
DEFAULT_RESEND_COOLDOWN_SECONDS = 60.0


@dataclass(frozen=True)
class SessionSettings:
    demo_seconds: float = DEFAULT_DEMO_SECONDS
    poll_seconds: float = DEFAULT_POLL_SECONDS
    loading_timeout_seconds: float = DEFAULT_LOADING_TIMEOUT_SECONDS
    resend_cooldown_seconds: float = DEFAULT_RESEND_COOLDOWN_SECONDS
    entry_path: str = "/login"
    verify_path: str = "/verify"
    main_path: str = "/dashboard"


class SessionStore:
    def __init__(
        self,
        *,
        identity_provider: IdentityProviderProtocol,
        profile_store: ProfileStoreProtocol,
        client_storage: ClientStorageProtocol,
        scheduler: SchedulerProtocol,
        settings: Optional[SessionSettings] = None,
        events: Optional[SessionEvents] = None,
    ) -> None:
        self.settings = settings or SessionSettings()
        self._provider = identity_provider
        self._profiles = profile_store
        self._storage = client_storage
        self._scheduler = scheduler
        self._events = events or SessionEvents()
        self._session = Session()
        # Bumped on every identity transition; async results carrying an older
        # value are stale and must not be applied.
        self._identity_generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._loading_call: Optional[ScheduledCall] = None
        # (uid, time) of the last verification email sent for this client.
        self._last_verification_sent: Optional[tuple[str, float]] = None
        self._initialized = False
        self.demo_timer = DemoTimer(scheduler, self.settings.demo_seconds)
        self.poller = VerificationPoller(
            identity_provider,
            scheduler,
            self._apply_verified,
            interval_seconds=self.settings.poll_seconds,
        )

    # --- Read side ---------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def events(self) -> SessionEvents:
        return self._events

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def remember_me(self) -> bool:
        return self._storage.get(REMEMBER_ME_KEY) == "true"

    def set_remember_me(self, flag: bool) -> None:
        if flag:
            self._storage.set(REMEMBER_ME_KEY, "true")
        else:
            self._storage.remove(REMEMBER_ME_KEY)

    # --- Lifecycle ---------------------------------------------------------------

    async def initialize(self) -> None:
        """Subscribe to identity changes and resolve the initial session.

        Behavior:
            - A persisted demo marker restores `Demo(role)` with a fresh, full
              demo window (elapsed time is not carried over) and ends loading
              immediately.
            - Otherwise a safety timeout is armed and the provider's current
              account is resolved like any identity notification.
        """
        if self._initialized:
            return
        self._initialized = True
        self._session = Session(loading=True)
        self._unsubscribe = self._provider.subscribe(self.on_identity_changed)
        if self._restore_demo_marker():
            return
        self._loading_call = self._scheduler.call_later(
            self.settings.loading_timeout_seconds, self._loading_timed_out
        )
        generation = self._identity_generation
        try:
            account = await self._provider.current_account()
        except TransientBackendError as exc:
            LOG.warning("initial identity resolution failed: %s", exc.__class__.__name__)
            return
        if generation != self._identity_generation:
            # A notification arrived meanwhile and is newer than this lookup.
            return
        await self.on_identity_changed(account)

    async def teardown(self) -> None:
        """Release the subscription and all timers. The demo marker is kept."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._identity_generation += 1
        self.poller.stop()
        self.demo_timer.cancel()
        self._cancel_loading_timeout()
        self._initialized = False

    # --- Identity transitions ----------------------------------------------------

    async def on_identity_changed(self, account: Optional[AccountHandle]) -> None:
        self._identity_generation += 1
        generation = self._identity_generation
        self.poller.stop()

        if account is None:
            # A demo session is local; an empty provider state does not end it.
            if not self._session.is_demo:
                self._set(identity=ANONYMOUS, verification=VerificationState.NOT_APPLICABLE)
            self._finish_loading()
            return

        if self._session.is_demo:
            LOG.info("real sign-in supersedes demo mode")
            self.end_demo()

        profile: Optional[Profile]
        try:
            profile = await self._profiles.get_profile(account.uid)
        except ProfileNotFoundError:
            LOG.info("no profile document for signed-in account")
            profile = None
        except BackendError as exc:
            LOG.warning("profile fetch failed: %s", exc.__class__.__name__)
            profile = None

        if generation != self._identity_generation:
            LOG.debug("discarding profile result for superseded identity")
            return

        verification = VerificationState.VERIFIED if account.email_verified else VerificationState.UNVERIFIED
        self._set(identity=Authenticated(account=account, profile=profile), verification=verification)
        self._finish_loading()
        if verification is VerificationState.UNVERIFIED:
            self.poller.start(account)

    def set_profile(self, profile: Profile) -> None:
        ident = self._session.identity
        if not isinstance(ident, Authenticated):
            return
        self._set(identity=Authenticated(account=ident.account, profile=profile))

    async def sign_out(self) -> None:
        if self._session.is_demo:
            self.end_demo()
            return
        self.poller.stop()
        await self._provider.sign_out()
        if self._session.is_authenticated:
            # Provider did not notify (or not yet); do not keep a dead session.
            self._identity_generation += 1
            self._set(identity=ANONYMOUS, verification=VerificationState.NOT_APPLICABLE)

    async def resend_verification(self) -> bool:
        """Send another verification email for the pending account.

        Returns False when no verification is pending. Raises
        `ResendCooldownError` while the previous email is younger than
        `settings.resend_cooldown_seconds`.
        """
        ident = self._session.identity
        if not isinstance(ident, Authenticated) or self._session.verification is not VerificationState.UNVERIFIED:
            return False
        wait = self.resend_available_in()
        if wait > 0:
            raise ResendCooldownError(wait)
        await self._provider.send_verification(ident.account)
        self.note_verification_sent(ident.account)
        return True

    def note_verification_sent(self, account: AccountHandle) -> None:
        self._last_verification_sent = (account.uid, self._scheduler.now())

    def resend_available_in(self) -> float:
        """Seconds until the current account may request another email (0 if now)."""
        ident = self._session.identity
        last = self._last_verification_sent
        if last is None or not isinstance(ident, Authenticated) or last[0] != ident.account.uid:
            return 0.0
        return max(0.0, last[1] + self.settings.resend_cooldown_seconds - self._scheduler.now())

    async def _apply_verified(self, account: AccountHandle) -> None:
        current = self._session
        ident = current.identity
        still_active = (
            isinstance(ident, Authenticated)
            and ident.account.uid == account.uid
            and current.verification is VerificationState.UNVERIFIED
        )
        if not still_active:
            LOG.debug("ignoring verification result for inactive account")
            return
        self._set(
            identity=Authenticated(account=replace(ident.account, email_verified=True), profile=ident.profile),
            verification=VerificationState.VERIFIED,
        )
        self._events.emit(
            Notification(
                kind=VERIFIED,
                title="Email verified",
                description="Your email address has been confirmed.",
                redirect_to=self.settings.main_path,
            )
        )

    # --- Demo mode ---------------------------------------------------------------

    def start_demo(self, role: str) -> None:
        if not is_allowed_role(role):
            raise ValueError(f"unknown role: {role!r}")
        if self._session.is_authenticated:
            raise DemoNotAllowedError("sign out before starting demo mode")
        self._identity_generation += 1
        self.poller.stop()
        self._enter_demo(role)
        self._storage.set(DEMO_MODE_KEY, "true")
        self._storage.set(DEMO_ROLE_KEY, role)
        minutes = int(self.settings.demo_seconds // 60)
        self._events.emit(
            Notification(
                kind=DEMO_STARTED,
                title="Demo mode started",
                description=f"You have {minutes} minutes to explore EduHub.",
                redirect_to=self.settings.main_path,
            )
        )

    def end_demo(self) -> None:
        """Leave demo mode. Idempotent."""
        self.demo_timer.cancel()
        self._storage.remove(DEMO_MODE_KEY)
        self._storage.remove(DEMO_ROLE_KEY)
        if self._session.is_demo:
            self._set(identity=ANONYMOUS, verification=VerificationState.NOT_APPLICABLE)
            LOG.info("demo mode ended")

    def _enter_demo(self, role: str) -> None:
        self._set(identity=Demo(persona=demo_persona(role)), verification=VerificationState.VERIFIED)
        self.demo_timer.arm(self._on_demo_expired)
        self._finish_loading()

    def _on_demo_expired(self) -> None:
        if not self._session.is_demo:
            return
        LOG.info("demo session expired")
        self.end_demo()
        minutes = int(self.settings.demo_seconds // 60)
        self._events.emit(
            Notification(
                kind=DEMO_EXPIRED,
                title="Demo mode ended",
                description=f"Your {minutes}-minute demo period has expired.",
                variant="destructive",
                redirect_to=self.settings.entry_path,
            )
        )

    def _restore_demo_marker(self) -> bool:
        if self._storage.get(DEMO_MODE_KEY) != "true":
            return False
        role = self._storage.get(DEMO_ROLE_KEY)
        if not is_allowed_role(role):
            LOG.warning("discarding invalid demo marker")
            self._storage.remove(DEMO_MODE_KEY)
            self._storage.remove(DEMO_ROLE_KEY)
            return False
        self._enter_demo(role)  # type: ignore[arg-type]
        LOG.info("restored demo session from persisted marker")
        return True

    # --- Helpers -----------------------------------------------------------------

    def _set(self, **changes) -> None:
        self._session = replace(self._session, **changes)

    def _finish_loading(self) -> None:
        self._cancel_loading_timeout()
        if self._session.loading:
            self._set(loading=False)

    def _cancel_loading_timeout(self) -> None:
        call, self._loading_call = self._loading_call, None
        if call is not None:
            call.cancel()

    def _loading_timed_out(self) -> None:
        self._loading_call = None
        if self._session.loading:
            LOG.warning("identity resolution timed out; continuing without it")
            self._set(loading=False)


__all__ = [
    "SessionStore",
    "SessionSettings",
    "DEMO_MODE_KEY",
    "DEMO_ROLE_KEY",
    "REMEMBER_ME_KEY",
    "DEFAULT_LOADING_TIMEOUT_SECONDS",
    "DEFAULT_RESEND_COOLDOWN_SECONDS",
]
