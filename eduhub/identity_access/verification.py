"""
Verification poller: detect when a pending email confirmation completes.

Design:
    A cancellable repeating task built from one-shot scheduler calls plus a
    generation counter. `start()` and `stop()` bump the generation, so a tick
    that was already in flight for an older account cannot apply its result.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from .ports import AccountHandle, IdentityProviderProtocol, TransientBackendError
from .scheduler import ScheduledCall, SchedulerProtocol

LOG = logging.getLogger("eduhub.identity_access.verification")

DEFAULT_POLL_SECONDS = 5.0


class VerificationPoller:
    def __init__(
        self,
        provider: IdentityProviderProtocol,
        scheduler: SchedulerProtocol,
        on_verified: Callable[[AccountHandle], Awaitable[None]],
        interval_seconds: float = DEFAULT_POLL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._provider = provider
        self._scheduler = scheduler
        self._on_verified = on_verified
        self.interval_seconds = interval_seconds
        self._generation = 0
        self._account: Optional[AccountHandle] = None
        self._call: Optional[ScheduledCall] = None

    @property
    def running(self) -> bool:
        return self._account is not None

    @property
    def account(self) -> Optional[AccountHandle]:
        return self._account

    @property
    def generation(self) -> int:
        return self._generation

    def start(self, account: AccountHandle) -> None:
        """Start polling for `account`, replacing any previous poll."""
        self.stop()
        self._account = account
        LOG.debug("verification polling started (interval=%ss)", self.interval_seconds)
        self._schedule(self._generation)

    def stop(self) -> None:
        """Stop polling. Idempotent."""
        self._generation += 1
        self._account = None
        call, self._call = self._call, None
        if call is not None:
            call.cancel()

    def _schedule(self, generation: int) -> None:
        self._call = self._scheduler.call_later(self.interval_seconds, lambda: self._tick(generation))

    async def _tick(self, generation: int) -> None:
        account = self._account
        if generation != self._generation or account is None:
            return
        try:
            verified = await self._provider.check_verified(account)
        except TransientBackendError as exc:
            LOG.warning("verification check failed, retrying: %s", exc.__class__.__name__)
            verified = False
        except Exception as exc:
            # Counts as "not verified yet"; the poll keeps its schedule.
            LOG.error("verification check errored, retrying: %s", exc.__class__.__name__, exc_info=exc)
            verified = False
        if generation != self._generation:
            # Stopped or restarted while the check was in flight.
            return
        if not verified:
            self._schedule(generation)
            return
        self.stop()
        await self._on_verified(account)


__all__ = ["VerificationPoller", "DEFAULT_POLL_SECONDS"]
