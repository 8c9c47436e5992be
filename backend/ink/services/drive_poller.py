"""Drive Poll State Machine.

One ``DriveState`` per drive path, updated on every poll:

    NO_INFO      -> DISK_PRESENT   act on this poll (disc was already in the drive)
    other        -> DISK_PRESENT   record, act on the next poll (settle delay)
    DISK_PRESENT -> DISK_PRESENT   act once while the idempotency token is unset
    DISK_PRESENT -> anything else  clear the token; next insertion is new

The token is the disc id returned by stage-1 processing. A failed attempt
stores ``PROCESS_FAILED`` instead, which the following poll clears before
retrying. A plan change clears the token, including one that arrives
while a disc is being processed. Unreadable hardware resets the drive to NO_INFO.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ink.core.errors import DriveError
from ink.core.sentinel import DriveMonitor
from ink.models.pipeline import DriveStatus

logger = logging.getLogger(__name__)

PROCESS_FAILED = "<failed>"

# Stage-1 processing: returns the disc id it handled, or None if nothing was there.
ProcessDriveFn = Callable[[str], Awaitable[str | None]]


@dataclass
class DriveState:
    """Last observed state of one drive. In memory only."""

    status: DriveStatus = DriveStatus.NO_INFO
    processed_disc_id: str | None = None
    last_check: float = 0.0


class DrivePoller:
    """Polls every drive and triggers stage-1 processing for settled discs."""

    def __init__(
        self,
        monitor: DriveMonitor,
        process_drive: ProcessDriveFn,
        poll_interval: float = 3.0,
    ) -> None:
        self._monitor = monitor
        self._process_drive = process_drive
        self._poll_interval = poll_interval
        self._states: dict[str, DriveState] = {}
        self._processing: set[str] = set()
        self._reset_requested: set[str] = set()

    @property
    def states(self) -> dict[str, DriveState]:
        return self._states

    def state(self, drive_path: str) -> DriveState:
        return self._states.get(drive_path) or DriveState()

    def reset_processed(self) -> None:
        """Forget processed discs so present drives are re-evaluated.

        Called when plans change: a disc that was skipped for lack of a plan
        gets picked up on the next poll. A drive that is being processed right
        now is re-evaluated on the poll after that run ends.
        """
        for drive_path, state in self._states.items():
            if state.status == DriveStatus.DISK_PRESENT and state.processed_disc_id is not None:
                logger.debug(f"Clearing processed disc {state.processed_disc_id} on {drive_path}")
                state.processed_disc_id = None
        for drive_path in self._processing:
            logger.debug(f"Plans changed while processing {drive_path}; will re-check afterwards")
            self._reset_requested.add(drive_path)

    async def poll_once(self) -> None:
        """Poll all drives once."""
        try:
            drives = self._monitor.list()
        except DriveError as e:
            logger.error(f"Error listing drives: {e}")
            return

        for drive_path in drives:
            await self._poll_drive(drive_path)

    async def _poll_drive(self, drive_path: str) -> None:
        previous = self.state(drive_path)
        now = time.monotonic()

        try:
            current = self._monitor.status(drive_path)
        except DriveError as e:
            if previous.status != DriveStatus.NO_INFO:
                logger.warning(f"Drive {drive_path} status unreadable, treating as NO_INFO: {e}")
            self._states[drive_path] = DriveState(DriveStatus.NO_INFO, None, now)
            return

        if current != DriveStatus.DISK_PRESENT:
            if previous.status == DriveStatus.DISK_PRESENT:
                logger.info(f"Drive {drive_path} is now {current.name}")
            self._states[drive_path] = DriveState(current, None, now)
            return

        if previous.status not in (DriveStatus.DISK_PRESENT, DriveStatus.NO_INFO):
            logger.info(f"New disc detected in {drive_path}. Waiting for drive to settle...")
            self._states[drive_path] = DriveState(current, None, now)
            return

        token = previous.processed_disc_id
        if token == PROCESS_FAILED:
            logger.info(f"Retrying disc in {drive_path} after previous failure")
            token = None

        if token is None:
            token = await self._process(drive_path)
            if drive_path in self._reset_requested:
                self._reset_requested.discard(drive_path)
                token = None

        self._states[drive_path] = DriveState(current, token, now)

    async def _process(self, drive_path: str) -> str | None:
        logger.info(f"Processing disc in {drive_path}...")
        self._reset_requested.discard(drive_path)
        self._processing.add(drive_path)
        try:
            disc_id = await self._process_drive(drive_path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error processing {drive_path}: {e}")
            return PROCESS_FAILED
        finally:
            self._processing.discard(drive_path)

        if disc_id is not None:
            logger.info(f"Finished processing disc {disc_id} in {drive_path}")
        return disc_id

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until ``stop`` is set. A poll in progress always finishes."""
        logger.info(f"Drive poller started (interval {self._poll_interval}s)")
        while not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Drive poller stopped")
