"""Cycle Scheduler - single-flight, debounced pipeline cycles.

Change notifications (file watch events, periodic fallback ticks) are
coalesced into cycles:

- idle: each notification (re)starts the debounce timer; when it fires a
  cycle starts.
- running: notifications only set ``pending``. When the cycle finishes, a
  set ``pending`` causes exactly one follow-up cycle, started immediately.

Each scheduler instance owns its own flags, so separate pipelines (transcode
and copy, say) never share state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

CycleFn = Callable[[], Awaitable[Any]]


class CycleScheduler:
    """Runs at most one cycle at a time and never drops a trigger."""

    def __init__(self, cycle: CycleFn, debounce_seconds: float = 1.0, name: str = "pipeline") -> None:
        self._cycle = cycle
        self._debounce_seconds = debounce_seconds
        self._name = name

        self._is_running = False
        self._pending_trigger = False
        self._stopped = False
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.cycles_run = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def pending_trigger(self) -> bool:
        return self._pending_trigger

    @property
    def stopped(self) -> bool:
        return self._stopped

    def notify(self) -> None:
        """Report a change. Must be called from the event loop thread."""
        if self._stopped:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        if self._is_running:
            self._pending_trigger = True
            return

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(self._debounce_seconds, self._start_cycle)

    def notify_threadsafe(self) -> None:
        """Report a change from another thread (e.g. a watchdog observer)."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.notify)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def _start_cycle(self) -> None:
        self._debounce_handle = None
        if self._stopped:
            return
        if self._is_running:
            self._pending_trigger = True
            return

        self._is_running = True
        self._idle.clear()
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        try:
            while True:
                self._pending_trigger = False
                logger.debug(f"[{self._name}] cycle {self.cycles_run + 1} starting")
                try:
                    await self._cycle()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"[{self._name}] cycle failed")
                self.cycles_run += 1

                if not self._pending_trigger or self._stopped:
                    break
                logger.debug(f"[{self._name}] changes arrived during cycle; running follow-up")
        finally:
            self._is_running = False
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no cycle is running."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Start no new cycles; let an in-flight cycle finish."""
        self._stopped = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        await self.wait_idle()
        logger.info(f"[{self._name}] scheduler stopped after {self.cycles_run} cycle(s)")

    def cancel(self) -> None:
        """Stop immediately, cancelling an in-flight cycle."""
        self._stopped = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._task is not None and not self._task.done():
            logger.warning(f"[{self._name}] cancelling in-flight cycle")
            self._task.cancel()
