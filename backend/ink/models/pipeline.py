"""Pipeline vocabulary: stages, marker kinds, derived statuses and drive status."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class TrackQueue(str, Enum):
    """Pipeline stage a track passes through, in pipeline order."""

    EXTRACT = "extract"
    TRANSCODE = "transcode"
    REVIEW = "review"
    COPY = "copy"


class MarkerKind(str, Enum):
    """Kind of marker file; also the marker's file extension."""

    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    IGNORED = "ignored"  # review only


class TrackQueueStatus(str, Enum):
    """Status of one stage for one track. Derived, never persisted."""

    INELIGIBLE = "ineligible"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    ERROR = "error"
    DONE = "done"


class TrackStatus(str, Enum):
    """Rollup of the four stage statuses of a track."""

    COMPLETE = "complete"
    RUNNING = "running"
    ERROR = "error"
    IGNORED = "ignored"
    READY = "ready"


class DriveStatus(IntEnum):
    """Drive statuses as reported by Linux CDROM_DRIVE_STATUS."""

    NO_INFO = 0
    NO_DISK = 1
    TRAY_OPEN = 2
    READING = 3
    DISK_PRESENT = 4


@dataclass(frozen=True)
class MarkerKey:
    """Identity of a marker: one fact about one (disc, track, stage)."""

    disc_id: str
    track_number: int
    stage: TrackQueue
    kind: MarkerKind

    def __post_init__(self) -> None:
        if self.kind == MarkerKind.IGNORED and self.stage != TrackQueue.REVIEW:
            raise ValueError(f"'ignored' markers only exist for review, not {self.stage.value}")


@dataclass
class TrackState:
    """Per-stage statuses of a track plus their rollup."""

    queues: dict[TrackQueue, TrackQueueStatus] = field(default_factory=dict)
    status: TrackStatus = TrackStatus.READY
