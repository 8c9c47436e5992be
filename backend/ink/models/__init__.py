"""Data models."""

from ink.models.pipeline import (
    DriveStatus,
    MarkerKey,
    MarkerKind,
    TrackQueue,
    TrackQueueStatus,
    TrackState,
    TrackStatus,
)
from ink.models.plan import (
    BackupPlan,
    DiscMetadata,
    OutputSettings,
    PlanStatus,
    PlanType,
    TrackMetadata,
    TrackPlan,
    TranscodeSettings,
)

__all__ = [
    "BackupPlan",
    "DiscMetadata",
    "DriveStatus",
    "MarkerKey",
    "MarkerKind",
    "OutputSettings",
    "PlanStatus",
    "PlanType",
    "TrackMetadata",
    "TrackPlan",
    "TrackQueue",
    "TrackQueueStatus",
    "TrackState",
    "TrackStatus",
    "TranscodeSettings",
]
