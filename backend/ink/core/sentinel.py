"""Sentinel - optical drive hardware access.

Lists optical drives and reads their tray/disc status with the Linux
``CDROM_DRIVE_STATUS`` ioctl. The poll state machine depends only on the
``DriveMonitor`` protocol, so tests substitute a scripted monitor.
"""

import fcntl
import logging
import os
import sys
from pathlib import Path
from typing import Protocol

from ink.core.errors import DriveError, handle_errors
from ink.models.pipeline import DriveStatus

logger = logging.getLogger(__name__)

# linux/cdrom.h
CDROM_DRIVE_STATUS = 0x5326
CDSL_CURRENT = (1 << 31) - 1


class DriveMonitor(Protocol):
    """Hardware boundary used by the drive poller."""

    def list(self) -> list[str]: ...

    def status(self, drive_path: str) -> DriveStatus: ...


class LinuxDriveMonitor:
    """Reads drive state from ``/dev/sr*`` devices."""

    def __init__(self, dev_dir: Path = Path("/dev")) -> None:
        self._dev_dir = dev_dir

    @handle_errors(
        error_types=(OSError,),
        default_message="Could not list optical drives",
        log_level="warning",
        wrap_as=DriveError,
    )
    def list(self) -> list[str]:
        if sys.platform != "linux":
            raise DriveError(f"Drive listing is not supported on {sys.platform}")
        return sorted(str(p) for p in self._dev_dir.iterdir() if p.name.startswith("sr"))

    def status(self, drive_path: str) -> DriveStatus:
        """Return the drive's current status.

        Raises:
            DriveError: If the device cannot be opened or the ioctl fails
        """
        try:
            fd = os.open(drive_path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            raise DriveError(f"Could not open {drive_path}: {e}") from e

        try:
            result = fcntl.ioctl(fd, CDROM_DRIVE_STATUS, CDSL_CURRENT)
        except OSError as e:
            raise DriveError(f"CDROM_DRIVE_STATUS failed on {drive_path}: {e}") from e
        finally:
            os.close(fd)

        try:
            return DriveStatus(result)
        except ValueError as e:
            raise DriveError(f"Unexpected drive status {result} from {drive_path}") from e
