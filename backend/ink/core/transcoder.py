"""Transcoder - ffmpeg wrapper.

Defaults are chosen for high-quality, size-efficient, portable backups:
x265 medium/CRF 18, AAC 192k audio, subtitles copied without default flags.
"""

import asyncio
import logging
import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ink.core.errors import TranscodeError
from ink.models.plan import TranscodeSettings

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
_FPS_RE = re.compile(r"fps=\s*([\d.]+)")
_SPEED_RE = re.compile(r"speed=\s*([\d.]+x)")


@dataclass
class TranscodeProgress:
    percent: float | None = None
    time: str | None = None
    fps: float | None = None
    speed: str | None = None


ProgressCallback = Callable[[TranscodeProgress], None]


def build_ffmpeg_args(input_path: Path, output_path: Path, settings: TranscodeSettings | None) -> list[str]:
    """Build the ffmpeg argument list (without the binary) for one track."""
    settings = settings or TranscodeSettings()
    args = [
        "-y",
        "-fflags", "+genpts",
        "-i", str(input_path),
        "-map", "0:v:0",
    ]

    if settings.audio:
        for lang in settings.audio:
            args += ["-map", f"0:a:m:language:{lang}?"]
    else:
        args += ["-map", "0:a?"]

    if settings.subtitles:
        for lang in settings.subtitles:
            args += ["-map", f"0:s:m:language:{lang}?"]
    else:
        args += ["-map", "0:s?"]

    args += [
        "-c:v", settings.codec,
        "-preset", settings.preset,
        "-crf", str(settings.crf),
    ]
    if settings.is_animated:
        args += ["-tune", "animation"]
    args += [
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "192k",
        "-c:s", "copy",
        "-disposition:s", "0",
    ]

    filters = []
    if settings.deinterlace:
        filters.append("yadif")
    if settings.crop:
        filters.append(f"crop={settings.crop}")
    if filters:
        args += ["-vf", ",".join(filters)]

    args.append(str(output_path))
    return args


def parse_progress(line: str, total_seconds: float) -> TranscodeProgress | None:
    """Parse one ffmpeg stderr status line."""
    match = _TIME_RE.search(line)
    if not match:
        return None

    hours, minutes, seconds = int(match.group(1)), int(match.group(2)), float(match.group(3))
    elapsed = hours * 3600 + minutes * 60 + seconds
    progress = TranscodeProgress(time=match.group(0)[5:])
    if total_seconds > 0:
        progress.percent = min(100.0, elapsed / total_seconds * 100)

    fps = _FPS_RE.search(line)
    if fps:
        progress.fps = float(fps.group(1))
    speed = _SPEED_RE.search(line)
    if speed:
        progress.speed = speed.group(1)
    return progress


class FFmpegTranscoder:
    """Runs ffmpeg for one track at a time."""

    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self.ffmpeg_path = ffmpeg_path

    async def transcode(
        self,
        input_path: Path,
        output_path: Path,
        settings: TranscodeSettings | None = None,
        total_seconds: float = 0,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Transcode ``input_path`` to ``output_path``.

        Raises:
            TranscodeError: If ffmpeg is missing, fails, or writes nothing
        """
        if not input_path.is_file():
            raise TranscodeError(f"Input file not found: {input_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [self.ffmpeg_path, *build_ffmpeg_args(input_path, output_path, settings)]
        logger.info(f"Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg not found at: {self.ffmpeg_path}") from e

        tail: deque[str] = deque(maxlen=20)
        assert process.stderr is not None
        # ffmpeg terminates status lines with \r, so split on both
        buffer = b""
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = re.split(rb"[\r\n]", buffer)
            for raw in lines:
                line = raw.decode(errors="replace").strip()
                if not line:
                    continue
                tail.append(line)
                if progress_callback:
                    progress = parse_progress(line, total_seconds)
                    if progress is not None:
                        progress_callback(progress)

        returncode = await process.wait()
        if returncode != 0:
            raise TranscodeError(f"ffmpeg exited with code {returncode}: {' | '.join(list(tail)[-5:])}")
        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise TranscodeError(f"ffmpeg produced no output at {output_path}")
