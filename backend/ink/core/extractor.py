"""Extractor - MakeMKV CLI Wrapper.

Handles disc scanning, device-to-index mapping and single-title extraction
using makemkvcon in robot mode.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ink.core.errors import MakeMKVError
from ink.models.plan import TrackMetadata

logger = logging.getLogger(__name__)


@dataclass
class ExtractProgress:
    """Progress information during extraction."""

    percent: float | None = None
    message: str | None = None


# Progress callback type
ProgressCallback = Callable[[ExtractProgress], None]


@dataclass
class ScanResult:
    """Result of a disc scan."""

    volume_label: str
    tracks: list[TrackMetadata]


class MakeMKVExtractor:
    """Wrapper for MakeMKV command-line interface."""

    def __init__(self, makemkv_path: str = "makemkvcon") -> None:
        self.makemkv_path = makemkv_path

    async def _run(self, args: list[str], progress_callback: ProgressCallback | None = None) -> list[str]:
        """Run makemkvcon, returning its stdout lines.

        Raises:
            MakeMKVError: If the binary is missing or exits non-zero
        """
        cmd = [self.makemkv_path, "-r", *args]
        logger.info(f"Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                # terminal Ctrl+C goes to us; a running tool is left to finish
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise MakeMKVError(f"MakeMKV not found at: {self.makemkv_path}") from e

        lines: list[str] = []
        assert process.stdout is not None
        async for raw in process.stdout:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            lines.append(line)
            if progress_callback:
                progress = self._parse_progress(line)
                if progress is not None:
                    progress_callback(progress)

        returncode = await process.wait()
        if returncode != 0:
            messages = [m for m in (self._parse_message(line) for line in lines) if m]
            detail = "; ".join(messages[-5:]) or "\n".join(lines[-5:])
            raise MakeMKVError(f"makemkvcon exited with code {returncode}: {detail}")
        return lines

    async def scan_disc(self, device: str) -> ScanResult:
        """Scan the disc in ``device`` and return its titles."""
        lines = await self._run(["info", f"dev:{device}"])
        tracks = self._parse_disc_info(lines)
        label = ""
        for line in lines:
            match = re.match(r'CINFO:2,\d+,"(.*)"', line)
            if match:
                label = match.group(1)
                break
        logger.info(f"Found {len(tracks)} titles on disc in {device}")
        return ScanResult(volume_label=label, tracks=tracks)

    async def find_drive_index(self, device: str) -> int:
        """Map a device path (e.g. /dev/sr0) to MakeMKV's drive index."""
        lines = await self._run(["info", "disc:9999"])
        index = self._parse_drive_index(lines, device)
        if index is None:
            raise MakeMKVError(f"MakeMKV does not list a drive for {device}")
        return index

    async def extract_title(
        self,
        drive_index: int,
        title: int,
        output_dir: Path,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        """Extract one title into ``output_dir`` and return the produced file.

        Raises:
            MakeMKVError: On non-zero exit or if no .mkv was produced
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        await self._run(
            ["--progress=-same", "mkv", f"disc:{drive_index}", str(title), str(output_dir)],
            progress_callback,
        )
        produced = sorted(output_dir.glob("*.mkv"))
        if not produced:
            raise MakeMKVError("No MKV file found after extraction.")
        return produced[0]

    def _parse_progress(self, line: str) -> ExtractProgress | None:
        if line.startswith("PRGV:"):
            match = re.match(r"PRGV:\s*(\d+),\s*(\d+),\s*(\d+)", line)
            if match:
                current = int(match.group(1))
                max_val = int(match.group(3))
                if max_val > 0:
                    return ExtractProgress(percent=(current / max_val) * 100)
        elif line.startswith(("PRGC:", "PRGT:")):
            match = re.match(r'PRG[CT]:\d+,\d+,"(.*)"', line)
            if match:
                return ExtractProgress(message=match.group(1))
        return None

    def _parse_message(self, line: str) -> str | None:
        match = re.match(r'MSG:\d+,\d+,\d+,"(.*?)"', line)
        return match.group(1) if match else None

    def _parse_drive_index(self, lines: list[str], device: str) -> int | None:
        """Find the DRV line whose last field is ``device``.

        Format: DRV:index,visible,enabled,flags,"drive name","disc name","/dev/sr0"
        """
        for line in lines:
            if not line.startswith("DRV:"):
                continue
            match = re.match(r'DRV:(\d+),.*"([^"]*)"\s*$', line)
            if match and match.group(2) == device:
                return int(match.group(1))
        return None

    def _parse_disc_info(self, lines: list[str]) -> list[TrackMetadata]:
        """Parse MakeMKV robot-mode output to extract title information.

        MakeMKV output format (robot mode):
            TINFO:0,2,0,"Title name"
            TINFO:0,9,0,"1:30:45"  (duration)
            TINFO:0,10,0,"12.5 GB"  (size)
            TINFO:0,8,0,"24"  (chapter count)
        """
        titles: dict[int, TrackMetadata] = {}

        for line in lines:
            if not line.startswith("TINFO:"):
                continue
            match = re.match(r"TINFO:(\d+),(\d+),\d+,\"(.*)\"", line)
            if not match:
                continue

            title_idx = int(match.group(1))
            attr_id = int(match.group(2))
            value = match.group(3)
            title = titles.setdefault(title_idx, TrackMetadata(track_number=title_idx))

            if attr_id == 2:  # Name
                title.title = value
            elif attr_id == 9:  # Duration (H:MM:SS)
                title.duration = value
            elif attr_id == 10:  # Size
                title.size = self._parse_size(value)
            elif attr_id == 8:  # Chapter count
                try:
                    title.chapters = int(value)
                except ValueError:
                    pass

        return [titles[i] for i in sorted(titles)]

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '12.5 GB') to bytes."""
        match = re.match(r"([\d.]+)\s*(GB|MB|KB|B)", size_str, re.IGNORECASE)
        if not match:
            return 0

        value = float(match.group(1))
        unit = match.group(2).upper()

        multipliers = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}
        return int(value * multipliers.get(unit, 1))
