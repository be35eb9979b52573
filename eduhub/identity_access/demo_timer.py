"""
Demo mode countdown with a single live handle.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .scheduler import ScheduledCall, SchedulerProtocol

LOG = logging.getLogger("eduhub.identity_access.demo")

DEFAULT_DEMO_SECONDS = 10 * 60


class DemoTimer:
    """Enforce a hard ceiling on demo sessions.

    At most one armed handle exists; arming again cancels the previous one so
    a repeated demo start never yields two expiry callbacks.
    """

    def __init__(self, scheduler: SchedulerProtocol, duration_seconds: float = DEFAULT_DEMO_SECONDS) -> None:
        self._scheduler = scheduler
        self.duration_seconds = duration_seconds
        self._handle: Optional[ScheduledCall] = None

    @property
    def handle(self) -> Optional[ScheduledCall]:
        return self._handle

    @property
    def armed(self) -> bool:
        return self._handle is not None and self._handle.pending

    def arm(self, on_expire: Callable[[], Any]) -> ScheduledCall:
        self.cancel()
        self._handle = self._scheduler.call_later(self.duration_seconds, on_expire)
        LOG.debug("demo timer armed for %ss", self.duration_seconds)
        return self._handle

    def cancel(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()


__all__ = ["DemoTimer", "DEFAULT_DEMO_SECONDS"]
