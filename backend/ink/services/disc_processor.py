"""Stage-1 processing: what happens when a settled disc sits in a drive.

- unknown disc (no plan, no metadata): scan it and save metadata so a plan
  can be written for it
- scanned but unplanned: nothing to do until a plan appears
- planned: extract every track whose extract queue is ready

``read_metadata`` is the on-demand variant behind ``ink metadata read``:
wait for the drive, identify the disc, then use cached metadata or scan.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ink.core.errors import DriveError
from ink.core.extractor import MakeMKVExtractor
from ink.core.identify import identify
from ink.core.markers import MarkerStore
from ink.core.paths import InkPaths
from ink.core.sentinel import DriveMonitor
from ink.core.storage import Storage
from ink.models.pipeline import DriveStatus, TrackQueue, TrackQueueStatus
from ink.models.plan import DiscMetadata
from ink.services.pipeline import recover_stale_running
from ink.services.queue_rules import QueueEngine
from ink.services.stages import ExtractExecutor

logger = logging.getLogger(__name__)

IdentifyFn = Callable[[str], Awaitable[str]]


async def wait_for_disc(
    monitor: DriveMonitor,
    device: str,
    attempts: int = 60,
    interval: float = 1.0,
    settle_seconds: float = 5.0,
) -> None:
    """Wait until ``device`` holds a readable disc.

    A drive that is still reading is polled every ``interval`` seconds. A disc
    that only became ready while waiting gets ``settle_seconds`` to mount.

    Raises:
        DriveError: If the drive is empty, open, unreadable or never settles
    """
    for attempt in range(attempts):
        status = monitor.status(device)
        if status == DriveStatus.DISK_PRESENT:
            if attempt > 0:
                logger.info(f"Disc in {device} is ready, waiting {settle_seconds}s for it to mount")
                await asyncio.sleep(settle_seconds)
            return
        if status != DriveStatus.READING:
            raise DriveError(f"Drive {device} is not ready ({status.name})")
        logger.info(f"Drive {device} is reading (attempt {attempt + 1}/{attempts})")
        await asyncio.sleep(interval)
    raise DriveError(f"Timed out waiting for {device} to become ready")


class DiscProcessor:
    """Callable handed to the ``DrivePoller``; returns the disc id it handled."""

    def __init__(
        self,
        storage: Storage,
        engine: QueueEngine,
        monitor: DriveMonitor,
        extractor: MakeMKVExtractor,
        identify_disc: IdentifyFn = identify,
    ) -> None:
        self._storage = storage
        self._engine = engine
        self._monitor = monitor
        self._extractor = extractor
        self._identify = identify_disc
        self._stop_requested = False

    @property
    def store(self) -> MarkerStore:
        return self._engine.store

    @property
    def paths(self) -> InkPaths:
        return self._storage.paths

    def request_stop(self) -> None:
        """Finish the current track, then extract no more."""
        self._stop_requested = True

    async def __call__(self, device: str) -> str | None:
        return await self.process_drive(device)

    async def process_drive(self, device: str) -> str | None:
        """Handle the disc in ``device``.

        Raises:
            DriveError: If the drive no longer holds a disc
            DiscIdentificationError: If the disc cannot be identified
            PlanError: If the disc's plan is malformed
        """
        status = self._monitor.status(device)
        if status != DriveStatus.DISK_PRESENT:
            raise DriveError(f"No disc ready in {device} ({status.name})")

        disc_id = await self._identify(device)
        plan = self._storage.read_plan(disc_id)

        if plan is None:
            if self._storage.read_metadata(disc_id) is None:
                await self.scan(device, disc_id)
            else:
                logger.info(f"Disc {disc_id} has been scanned but has no plan yet, skipping")
            return disc_id

        ready = []
        for track in plan.tracks:
            recover_stale_running(self.store, plan, track, TrackQueue.EXTRACT)
            if self._engine.queue_status(plan, track, TrackQueue.EXTRACT) == TrackQueueStatus.READY:
                ready.append(track)

        if not ready:
            logger.info(f"Nothing left to extract for {plan.title or disc_id}")
            return disc_id

        self._storage.ensure_staging_directories(disc_id)
        drive_index = await self._extractor.find_drive_index(device)
        executor = ExtractExecutor(self.store, self.paths, self._extractor, device, drive_index)

        logger.info(f"Extracting {len(ready)} track(s) of {plan.title or disc_id} from {device}")
        for track in ready:
            if self._stop_requested:
                break
            try:
                await executor.execute(plan, track)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # error marker written; remaining tracks still get their turn
                logger.error(f"Extraction of track {track.track_number} failed: {e}")
        return disc_id

    async def scan(self, device: str, disc_id: str) -> DiscMetadata:
        logger.info(f"New disc {disc_id} in {device}, scanning titles")
        result = await self._extractor.scan_disc(device)
        metadata = DiscMetadata(
            disc_id=disc_id,
            volume_label=result.volume_label,
            tracks=result.tracks,
        )
        self._storage.save_metadata(metadata)
        logger.info(f"Saved metadata for {disc_id} ({len(result.tracks)} titles); write a plan to continue")
        return metadata

    async def read_metadata(self, device: str, use_cache: bool = True) -> tuple[DiscMetadata, bool]:
        """Metadata for the disc in ``device``, scanning only on a cache miss.

        Returns ``(metadata, from_cache)``.
        """
        await wait_for_disc(self._monitor, device)
        disc_id = await self._identify(device)

        if use_cache:
            cached = self._storage.read_metadata(disc_id)
            if cached is not None:
                logger.info(f"Using cached metadata for {disc_id}")
                return cached, True

        return await self.scan(device, disc_id), False
