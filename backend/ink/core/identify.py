"""Disc identification.

A disc id is an MD5 over the disc's navigation structure: every ``.IFO``
file under ``VIDEO_TS`` for DVDs, ``index.bdmv``/``MovieObject.bdmv`` for
Blu-ray. Discs with neither fall back to the filesystem UUID.
"""

import asyncio
import hashlib
import json
import logging
import re
from pathlib import Path

from ink.core.errors import DiscIdentificationError

logger = logging.getLogger(__name__)


async def _run(*cmd: str) -> str:
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise DiscIdentificationError(f"{cmd[0]} not found") from e
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise DiscIdentificationError(
            f"{' '.join(cmd)} failed ({process.returncode}): {stderr.decode(errors='replace').strip()}"
        )
    return stdout.decode(errors="replace")


async def ensure_mounted(device: str) -> Path:
    """Return the mount point of ``device``, mounting it with udisksctl if needed."""
    output = await _run("lsblk", "-J", "-o", "MOUNTPOINT", device)
    try:
        devices = json.loads(output).get("blockdevices") or []
    except ValueError as e:
        raise DiscIdentificationError(f"Unexpected lsblk output for {device}") from e
    if devices and devices[0].get("mountpoint"):
        return Path(devices[0]["mountpoint"])

    output = await _run("udisksctl", "mount", "-b", device)
    # "Mounted /dev/sr0 at /media/user/LABEL"
    match = re.search(r"at\s+(.*)$", output.strip(), re.MULTILINE)
    if not match:
        raise DiscIdentificationError(f"Could not parse udisksctl output: {output.strip()}")
    return Path(match.group(1).strip().rstrip("."))


def hash_dvd_structure(video_ts: Path) -> str:
    ifo_files = sorted(p for p in video_ts.iterdir() if p.name.upper().endswith(".IFO"))
    if not ifo_files:
        raise DiscIdentificationError(f"No IFO files found in {video_ts}")
    hasher = hashlib.md5()
    for ifo in ifo_files:
        hasher.update(ifo.read_bytes())
    return hasher.hexdigest()


def hash_bluray_structure(bdmv: Path) -> str:
    hasher = hashlib.md5()
    found = False
    for name in ("index.bdmv", "MovieObject.bdmv"):
        path = bdmv / name
        if path.is_file():
            hasher.update(path.read_bytes())
            found = True
    if not found:
        raise DiscIdentificationError(f"Critical BDMV files missing in {bdmv}")
    return hasher.hexdigest()


def identify_mounted(mount_point: Path) -> str | None:
    """Hash the navigation structure under ``mount_point``, if recognised."""
    if (mount_point / "VIDEO_TS").is_dir():
        return hash_dvd_structure(mount_point / "VIDEO_TS")
    if (mount_point / "BDMV").is_dir():
        return hash_bluray_structure(mount_point / "BDMV")
    return None


async def identify(device: str) -> str:
    """Return the disc id for the disc in ``device``.

    Raises:
        DiscIdentificationError: If the disc cannot be mounted or identified
    """
    mount_point = await ensure_mounted(device)
    try:
        disc_id = await asyncio.to_thread(identify_mounted, mount_point)
    except OSError as e:
        raise DiscIdentificationError(f"Identification failed for {device}: {e}") from e

    if disc_id is None:
        disc_id = (await _run("lsblk", "-n", "-o", "UUID", device)).strip()
        if not disc_id:
            raise DiscIdentificationError(f"No navigation structure or UUID for {device}")

    logger.info(f"Identified disc in {device} as {disc_id}")
    return disc_id
