"""BackupPlan and DiscMetadata - the on-disk documents the pipeline reads.

Both are stored as camelCase JSON; Python code uses snake_case attributes.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class PlanType(str, Enum):
    """Kind of content on the disc."""

    MOVIE = "movie"
    TV = "tv"


class PlanStatus(str, Enum):
    """Lifecycle of a plan."""

    DRAFT = "draft"
    PENDING = "pending"
    REVIEW = "review"  # Waiting on interactive episode review
    APPROVED = "approved"  # All eligible tracks reviewed or ignored
    COMPLETED = "completed"


class CamelModel(BaseModel):
    """Base for documents persisted as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class TranscodeSettings(CamelModel):
    codec: str = "libx265"
    preset: str = "medium"
    crf: int = 18
    audio: list[str] = Field(default_factory=list)  # language codes to keep
    subtitles: list[str] = Field(default_factory=list)
    is_animated: bool = False
    deinterlace: bool = False
    crop: str | None = None


class OutputSettings(CamelModel):
    filename: str
    directory: str = ""


class TrackPlan(CamelModel):
    """One disc track selected for backup."""

    track_number: int = Field(ge=0)
    name: str = ""
    extract: bool = True  # False: metadata only, never enters the pipeline
    transcode: TranscodeSettings | None = None
    output: OutputSettings


class TvShow(CamelModel):
    name: str
    tv_maze_id: int | None = None
    season: int | None = None


class EpisodeCandidate(CamelModel):
    """An episode the review stage may assign to a track."""

    id: int
    name: str
    season: int
    number: int


class BackupPlan(CamelModel):
    """Backup plan for one disc, keyed by disc id."""

    disc_id: str
    title: str = ""
    disc_label: str = ""
    type: PlanType = PlanType.MOVIE
    status: PlanStatus = PlanStatus.DRAFT
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tracks: list[TrackPlan] = Field(default_factory=list)
    tv_show: TvShow | None = None
    candidates: list[EpisodeCandidate] | None = None

    @model_validator(mode="after")
    def _tracks_required_once_planned(self) -> "BackupPlan":
        if self.status != PlanStatus.DRAFT and not self.tracks:
            raise ValueError(f"plan {self.disc_id} has status {self.status.value} but no tracks")
        return self

    def track(self, track_number: int) -> TrackPlan | None:
        for t in self.tracks:
            if t.track_number == track_number:
                return t
        return None


class TrackMetadata(CamelModel):
    track_number: int
    title: str | None = None
    duration: str = "0:00:00"  # H:MM:SS as reported by MakeMKV
    size: int = 0
    chapters: int = 0

    @property
    def duration_seconds(self) -> int:
        parts = self.duration.split(":")
        try:
            if len(parts) == 3:
                return int(parts[0]) * 3600 + int(parts[1]) * 60 + int(parts[2])
            if len(parts) == 2:
                return int(parts[0]) * 60 + int(parts[1])
            return int(parts[0])
        except ValueError:
            return 0


class DiscMetadata(CamelModel):
    """Result of scanning a disc, saved before a plan exists."""

    disc_id: str
    volume_label: str = ""
    user_provided_name: str = ""
    scanned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tracks: list[TrackMetadata] = Field(default_factory=list)

    def track(self, track_number: int) -> TrackMetadata | None:
        for t in self.tracks:
            if t.track_number == track_number:
                return t
        return None
