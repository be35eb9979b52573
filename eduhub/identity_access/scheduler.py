"""
One-shot cancellable callbacks on the event loop.

Why: The demo countdown, the verification poll and the loading safety timeout
are all "run this later unless cancelled". A small scheduler seam keeps them
testable with simulated time (see `eduhub.tests.utils.clock`).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Protocol

LOG = logging.getLogger("eduhub.identity_access.scheduler")

_PENDING = "pending"
_FIRED = "fired"
_CANCELLED = "cancelled"


class ScheduledCall:
    """Handle for a scheduled callback.

    `cancel()` is idempotent and a no-op once the callback fired.
    """

    def __init__(self, when: float, callback: Callable[[], Any]) -> None:
        self.when = when
        self._callback = callback
        self._state = _PENDING
        self._on_cancel: Optional[Callable[[], Any]] = None

    @property
    def pending(self) -> bool:
        return self._state == _PENDING

    @property
    def fired(self) -> bool:
        return self._state == _FIRED

    @property
    def cancelled(self) -> bool:
        return self._state == _CANCELLED

    def bind_cancel(self, on_cancel: Callable[[], Any]) -> None:
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        if self._state != _PENDING:
            return
        self._state = _CANCELLED
        if self._on_cancel is not None:
            self._on_cancel()

    def run(self) -> Any:
        """Invoke the callback once; returns its result (may be awaitable)."""
        if self._state != _PENDING:
            return None
        self._state = _FIRED
        return self._callback()


class SchedulerProtocol(Protocol):
    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledCall:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop.

    Coroutine callbacks are wrapped in tasks; the scheduler keeps a reference
    until they finish and logs (not swallows silently) unexpected failures.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledCall:
        loop = self._get_loop()
        call = ScheduledCall(loop.time() + max(0.0, delay), callback)
        timer = loop.call_later(max(0.0, delay), self._fire, call)
        call.bind_cancel(timer.cancel)
        return call

    def _fire(self, call: ScheduledCall) -> None:
        result = call.run()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("Scheduled callback failed: %s", exc.__class__.__name__, exc_info=exc)

    async def aclose(self) -> None:
        """Cancel in-flight callback tasks (used on shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


__all__ = ["ScheduledCall", "SchedulerProtocol", "AsyncioScheduler"]
