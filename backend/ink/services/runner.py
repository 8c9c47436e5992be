"""Long-running loops behind ``ink run``.

Stages 2 and 4 (transcode, copy) are driven by a ``CycleScheduler`` fed by
file watch events plus a periodic fallback tick. Stage 1 (extract) is driven
by the ``DrivePoller``; plan changes make it re-evaluate discs already
sitting in a drive.
"""

import asyncio
import logging
import signal
from collections.abc import Callable, Sequence
from pathlib import Path

from ink.services.disc_processor import DiscProcessor
from ink.services.drive_poller import DrivePoller
from ink.services.pipeline import StagePipeline
from ink.services.scheduler import CycleScheduler
from ink.services.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


class Shutdown:
    """Signal handling for the run loops.

    The first SIGINT/SIGTERM sets ``event``: no new work starts and in-flight
    work finishes. A second one cancels ``task`` outright.
    """

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.interrupted = False
        self._callbacks: list[Callable[[], None]] = []
        self._task: asyncio.Task | None = None

    def on_stop(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def install(self, loop: asyncio.AbstractEventLoop, task: asyncio.Task | None = None) -> None:
        self._task = task
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.trigger)

    def trigger(self) -> None:
        if self.event.is_set():
            logger.warning("Second interrupt, aborting")
            if self._task is not None:
                self._task.cancel()
            return

        logger.info("Interrupt received, finishing current work (interrupt again to abort)")
        self.interrupted = True
        self.event.set()
        for callback in self._callbacks:
            callback()


async def run_scheduled(
    pipeline: StagePipeline,
    watch_dirs: Sequence[Path],
    shutdown: Shutdown,
    debounce_seconds: float = 1.0,
    fallback_interval: float = 30.0,
) -> CycleScheduler:
    """Run ``pipeline`` cycles on file changes until shutdown."""
    scheduler = CycleScheduler(pipeline.run_cycle, debounce_seconds, name=pipeline.stage.value)
    scheduler.bind_loop(asyncio.get_running_loop())
    shutdown.on_stop(pipeline.request_stop)

    watcher = DirectoryWatcher(watch_dirs, scheduler.notify_threadsafe)
    watcher.start()
    logger.info(f"{pipeline.stage.value} pipeline running (fallback tick every {fallback_interval}s)")

    # startup cycle picks up whatever is already ready
    scheduler.notify()
    try:
        while not shutdown.event.is_set():
            try:
                await asyncio.wait_for(shutdown.event.wait(), timeout=fallback_interval)
            except asyncio.TimeoutError:
                scheduler.notify()
    except asyncio.CancelledError:
        scheduler.cancel()
        raise
    else:
        await scheduler.stop()
    finally:
        watcher.stop()
    return scheduler


async def run_drive_loop(
    poller: DrivePoller,
    processor: DiscProcessor,
    plans_dir: Path,
    shutdown: Shutdown,
) -> None:
    """Poll drives until shutdown, re-checking present discs when plans change."""
    loop = asyncio.get_running_loop()
    shutdown.on_stop(processor.request_stop)

    def plans_changed() -> None:
        loop.call_soon_threadsafe(poller.reset_processed)

    watcher = DirectoryWatcher([plans_dir], plans_changed)
    watcher.start()
    try:
        await poller.run(shutdown.event)
    finally:
        watcher.stop()
