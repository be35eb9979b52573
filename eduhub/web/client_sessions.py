"""
Per-client session wiring for the web adapter.

Why: The session core models the state of one browser client. The server
keeps one SessionStore per opaque client id (cookie), evicts stores that have
been idle for `idle_seconds` and tears the rest down on shutdown so no
subscription or timer outlives the app.

Backends are selected by configuration (see `config.AppSettings`):
- identity: memory | keycloak
- profiles: memory | supabase
- client storage: memory | db
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, List, Optional

from eduhub.identity_access.memory import (
    InMemoryClientStorage,
    InMemoryIdentityDirectory,
    InMemoryIdentityProvider,
    InMemoryProfileStore,
)
from eduhub.identity_access.ports import (
    ClientStorageProtocol,
    IdentityProviderProtocol,
    ProfileStoreProtocol,
)
from eduhub.identity_access.scheduler import AsyncioScheduler, ScheduledCall, SchedulerProtocol
from eduhub.identity_access.session import Notification
from eduhub.identity_access.stores import SessionSettings, SessionStore

from .config import DEFAULT_CLIENT_IDLE_SECONDS, AppSettings

LOG = logging.getLogger("eduhub.web")


class Backends:
    """Factory for the backend adapters of each client.

    The profile store and the in-memory identity directory are shared;
    identity providers and client storage are created per client.
    """

    def __init__(
        self,
        *,
        profiles: ProfileStoreProtocol,
        provider_factory: Callable[[], IdentityProviderProtocol],
        storage_factory: Callable[[str], ClientStorageProtocol],
        directory: Optional[InMemoryIdentityDirectory] = None,
        storage_release: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.profiles = profiles
        self.provider_factory = provider_factory
        self.storage_factory = storage_factory
        self.directory = directory
        self.storage_release = storage_release

    def identity_provider(self) -> IdentityProviderProtocol:
        return self.provider_factory()

    def client_storage(self, client_id: str) -> ClientStorageProtocol:
        return self.storage_factory(client_id)

    def release_client_storage(self, client_id: str) -> None:
        if self.storage_release is not None:
            self.storage_release(client_id)

    @classmethod
    def in_memory(cls, directory: Optional[InMemoryIdentityDirectory] = None) -> "Backends":
        directory = directory or InMemoryIdentityDirectory()
        storages: Dict[str, InMemoryClientStorage] = {}

        def _storage(client_id: str) -> InMemoryClientStorage:
            return storages.setdefault(client_id, InMemoryClientStorage())

        def _release(client_id: str) -> None:
            # Keep entries that still hold a demo marker or remember-me flag.
            storage = storages.get(client_id)
            if storage is not None and not storage.snapshot():
                del storages[client_id]

        return cls(
            profiles=InMemoryProfileStore(),
            provider_factory=lambda: InMemoryIdentityProvider(directory),
            storage_factory=_storage,
            directory=directory,
            storage_release=_release,
        )

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "Backends":
        backends = cls.in_memory()
        if settings.identity_backend == "keycloak":
            from eduhub.identity_access.admin_client import AdminClient
            from eduhub.identity_access.keycloak_client import KeycloakIdentityProvider
            from eduhub.identity_access.oidc import load_oidc_config

            cfg = load_oidc_config()
            admin = AdminClient(cfg)
            backends.provider_factory = lambda: KeycloakIdentityProvider(cfg, admin)
            backends.directory = None
        if settings.profile_backend == "supabase":
            from eduhub.identity_access.profiles_supabase import create_supabase_profile_store

            backends.profiles = create_supabase_profile_store()
        if settings.client_storage_backend == "db":
            from eduhub.identity_access.client_storage_db import DBClientStorage

            backends.storage_factory = DBClientStorage
            backends.storage_release = None
        LOG.info(
            "backends wired: identity=%s profiles=%s storage=%s",
            settings.identity_backend,
            settings.profile_backend,
            settings.client_storage_backend,
        )
        return backends


@dataclass
class ClientContext:
    client_id: str
    store: SessionStore
    provider: IdentityProviderProtocol
    storage: ClientStorageProtocol
    inbox: List[Notification] = field(default_factory=list)
    last_seen: float = 0.0
    _unsubscribe: Optional[Callable[[], None]] = None

    def push(self, notification: Notification) -> None:
        self.inbox.append(notification)

    def drain(self) -> List[Notification]:
        items, self.inbox = self.inbox, []
        return items


class ClientSessionRegistry:
    def __init__(
        self,
        backends: Backends,
        settings: Optional[SessionSettings] = None,
        scheduler: Optional[SchedulerProtocol] = None,
        idle_seconds: float = DEFAULT_CLIENT_IDLE_SECONDS,
    ) -> None:
        if idle_seconds <= 0:
            raise ValueError("idle_seconds must be positive")
        self.backends = backends
        self.settings = settings or SessionSettings()
        self.idle_seconds = idle_seconds
        self._scheduler = scheduler or AsyncioScheduler()
        self._clients: Dict[str, ClientContext] = {}
        self._lock = asyncio.Lock()
        self._sweep_call: Optional[ScheduledCall] = None

    def __len__(self) -> int:
        return len(self._clients)

    def get(self, client_id: str) -> Optional[ClientContext]:
        return self._clients.get(client_id)

    async def get_or_create(self, client_id: str) -> ClientContext:
        """Return the client's context, creating and initializing it on first use.

        Every call counts as activity for idle eviction.
        """
        ctx = self._clients.get(client_id)
        if ctx is not None:
            ctx.last_seen = self._scheduler.now()
            return ctx
        async with self._lock:
            ctx = self._clients.get(client_id)
            if ctx is not None:
                ctx.last_seen = self._scheduler.now()
                return ctx
            provider = self.backends.identity_provider()
            storage = self.backends.client_storage(client_id)
            store = SessionStore(
                identity_provider=provider,
                profile_store=self.backends.profiles,
                client_storage=storage,
                scheduler=self._scheduler,
                settings=self.settings,
            )
            ctx = ClientContext(
                client_id=client_id,
                store=store,
                provider=provider,
                storage=storage,
                last_seen=self._scheduler.now(),
            )
            ctx._unsubscribe = store.events.subscribe(ctx.push)
            self._clients[client_id] = ctx
            self._arm_sweep()
        await store.initialize()
        return ctx

    async def discard(self, client_id: str) -> None:
        ctx = self._clients.pop(client_id, None)
        if ctx is None:
            return
        if ctx._unsubscribe is not None:
            ctx._unsubscribe()
        await ctx.store.teardown()
        self.backends.release_client_storage(client_id)

    async def discard_if_blank(self, client_id: str) -> bool:
        """Drop a context that carries nothing worth keeping.

        A blank context is anonymous with no queued notifications; recreating
        it on the next request yields the same session.
        """
        ctx = self._clients.get(client_id)
        if ctx is None or not ctx.store.session.is_anonymous or ctx.inbox:
            return False
        await self.discard(client_id)
        return True

    def _arm_sweep(self) -> None:
        if self._sweep_call is None and self._clients:
            self._sweep_call = self._scheduler.call_later(self.idle_seconds, self._sweep)

    async def _sweep(self) -> None:
        self._sweep_call = None
        cutoff = self._scheduler.now() - self.idle_seconds
        idle = [cid for cid, ctx in self._clients.items() if ctx.last_seen <= cutoff]
        for client_id in idle:
            await self.discard(client_id)
        if idle:
            LOG.info("evicted %d idle client sessions", len(idle))
        self._arm_sweep()

    async def aclose(self) -> None:
        call, self._sweep_call = self._sweep_call, None
        if call is not None:
            call.cancel()
        for client_id in list(self._clients):
            await self.discard(client_id)
        aclose = getattr(self._scheduler, "aclose", None)
        if aclose is not None:
            await aclose()
