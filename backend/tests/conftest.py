"""Core pytest fixtures: isolated storage roots, markers and sample plans."""

import pytest

from ink.core.markers import FileMarkerStore, marker_key
from ink.core.paths import InkPaths
from ink.core.storage import Storage
from ink.models.pipeline import MarkerKind, TrackQueue
from ink.models.plan import (
    BackupPlan,
    EpisodeCandidate,
    OutputSettings,
    PlanStatus,
    PlanType,
    TrackPlan,
    TvShow,
)
from ink.services.queue_rules import QueueEngine


@pytest.fixture
def paths(tmp_path):
    """Storage roots under a per-test temp directory."""
    return InkPaths(
        staging=tmp_path / "staging",
        plans=tmp_path / "plans",
        metadata=tmp_path / "metadata",
    )


@pytest.fixture
def store(paths):
    return FileMarkerStore(paths)


@pytest.fixture
def storage(paths):
    return Storage(paths)


@pytest.fixture
def engine(store):
    return QueueEngine(store)


@pytest.fixture
def mark(store, storage):
    """Write a marker, creating the disc's stage directories first."""

    def _mark(disc_id, track_number, stage: TrackQueue, kind: MarkerKind, payload=None):
        storage.ensure_staging_directories(disc_id)
        key = marker_key(disc_id, track_number, stage, kind)
        store.write(key, payload)
        return key

    return _mark


def make_track(number: int, name: str = "", extract: bool = True, directory: str = "") -> TrackPlan:
    return TrackPlan(
        track_number=number,
        name=name or f"Track {number}",
        extract=extract,
        output=OutputSettings(filename=name or f"Track {number}", directory=directory),
    )


@pytest.fixture
def movie_plan():
    """Movie with one main feature."""
    return BackupPlan(
        disc_id="movie-disc",
        title="The Movie",
        type=PlanType.MOVIE,
        status=PlanStatus.PENDING,
        tracks=[make_track(1, "The Movie (1999)")],
    )


@pytest.fixture
def tv_plan():
    """TV disc with two episodes and a third track that is not extracted."""
    return BackupPlan(
        disc_id="tv-disc",
        title="The Show",
        type=PlanType.TV,
        status=PlanStatus.PENDING,
        tracks=[
            make_track(1),
            make_track(2),
            make_track(3, extract=False),
        ],
        tv_show=TvShow(name="The Show", season=1),
        candidates=[
            EpisodeCandidate(id=101, name="Pilot", season=1, number=1),
            EpisodeCandidate(id=102, name="Second", season=1, number=2),
        ],
    )
