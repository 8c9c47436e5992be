"""Filesystem layout of plans, metadata and per-disc staging directories.

    <plans>/<discId>.json
    <metadata>/<discId>.json
    <staging>/<discId>/<stage>/tNN.{running,done,error,ignored}
    <staging>/<discId>/extract/tNN.mkv      raw MakeMKV output
    <staging>/<discId>/transcode/tNN.mkv    ffmpeg output
"""

from dataclasses import dataclass
from pathlib import Path

from ink.config import settings
from ink.models.pipeline import MarkerKey, TrackQueue


def track_stem(track_number: int) -> str:
    """File stem for a track, e.g. 3 -> ``t03``."""
    return f"t{track_number:02d}"


@dataclass(frozen=True)
class InkPaths:
    """Resolved storage roots; everything else is derived from these three."""

    staging: Path
    plans: Path
    metadata: Path

    @classmethod
    def from_settings(cls) -> "InkPaths":
        return cls(
            staging=settings.staging_path,
            plans=settings.plans_path,
            metadata=settings.metadata_path,
        )

    def plan(self, disc_id: str) -> Path:
        return self.plans / f"{disc_id}.json"

    def metadata_file(self, disc_id: str) -> Path:
        return self.metadata / f"{disc_id}.json"

    def disc_staging(self, disc_id: str) -> Path:
        return self.staging / disc_id

    def stage_dir(self, disc_id: str, stage: TrackQueue) -> Path:
        return self.disc_staging(disc_id) / stage.value

    def marker(self, key: MarkerKey) -> Path:
        return self.stage_dir(key.disc_id, key.stage) / f"{track_stem(key.track_number)}.{key.kind.value}"

    def extracted_video(self, disc_id: str, track_number: int) -> Path:
        return self.stage_dir(disc_id, TrackQueue.EXTRACT) / f"{track_stem(track_number)}.mkv"

    def encoded_video(self, disc_id: str, track_number: int) -> Path:
        return self.stage_dir(disc_id, TrackQueue.TRANSCODE) / f"{track_stem(track_number)}.mkv"

    def extract_temp_dir(self, disc_id: str, track_number: int) -> Path:
        """Isolated directory for one MakeMKV run (MakeMKV picks its own filenames)."""
        return self.stage_dir(disc_id, TrackQueue.EXTRACT) / f"temp_{track_number}"
