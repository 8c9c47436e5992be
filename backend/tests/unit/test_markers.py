"""Unit tests for the file-backed marker store."""

import json
import os

import pytest

from ink.core.errors import MarkerNotFoundError, PlanError
from ink.core.markers import (
    base_payload,
    is_stale_running,
    marker_key,
    running_payload,
    write_error,
)
from ink.models.pipeline import MarkerKind, TrackQueue

DISC = "abc123"


@pytest.fixture
def key(storage):
    storage.ensure_staging_directories(DISC)
    return marker_key(DISC, 3, TrackQueue.TRANSCODE, MarkerKind.DONE)


class TestMarkerLayout:
    def test_marker_path(self, paths, key):
        assert paths.marker(key) == paths.staging / DISC / "transcode" / "t03.done"

    def test_ignored_only_for_review(self):
        marker_key(DISC, 1, TrackQueue.REVIEW, MarkerKind.IGNORED)
        with pytest.raises(ValueError):
            marker_key(DISC, 1, TrackQueue.COPY, MarkerKind.IGNORED)


class TestFileMarkerStore:
    def test_absent_marker(self, store, key):
        assert store.present(key) is False

    def test_write_makes_present(self, store, key):
        store.write(key)
        assert store.present(key) is True

    def test_write_is_idempotent(self, store, key):
        store.write(key, {"n": 1})
        store.write(key, {"n": 1})
        assert store.present(key)
        assert store.read_payload(key) == {"n": 1}

    def test_latest_payload_wins(self, store, key):
        store.write(key, {"n": 1})
        store.write(key, {"n": 2})
        assert store.read_payload(key) == {"n": 2}

    def test_empty_marker_reads_as_empty_payload(self, store, key):
        store.write(key)
        assert store.read_payload(key) == {}

    def test_read_missing_raises(self, store, key):
        with pytest.raises(MarkerNotFoundError):
            store.read_payload(key)

    def test_read_malformed_raises_plan_error(self, store, paths, key):
        paths.marker(key).write_text("{not json")
        with pytest.raises(PlanError):
            store.read_payload(key)

    def test_read_non_object_raises_plan_error(self, store, paths, key):
        paths.marker(key).write_text("[1, 2]")
        with pytest.raises(PlanError):
            store.read_payload(key)

    def test_remove(self, store, key):
        store.write(key)
        store.remove(key)
        assert store.present(key) is False

    def test_remove_missing_is_noop(self, store, key):
        store.remove(key)
        store.remove(key)
        assert store.present(key) is False

    def test_revert_removes_marker(self, store, key):
        revert = store.write(key)
        revert()
        assert store.present(key) is False

    def test_no_temp_file_left_behind(self, store, paths, key):
        store.write(key, {"n": 1})
        names = [p.name for p in paths.marker(key).parent.iterdir()]
        assert names == ["t03.done"]

    def test_write_without_directory_fails(self, store):
        key = marker_key("never-staged", 1, TrackQueue.EXTRACT, MarkerKind.DONE)
        with pytest.raises(OSError):
            store.write(key)


class TestPayloadHelpers:
    def test_base_payload(self):
        payload = base_payload(DISC, 2, codec="libx265")
        assert payload["discId"] == DISC
        assert payload["trackNumber"] == 2
        assert payload["codec"] == "libx265"
        assert "timestamp" in payload

    def test_write_error(self, store, storage):
        storage.ensure_staging_directories(DISC)
        write_error(store, DISC, 4, TrackQueue.COPY, ["boom"])
        payload = store.read_payload(marker_key(DISC, 4, TrackQueue.COPY, MarkerKind.ERROR))
        assert payload["errors"] == ["boom"]
        assert payload["trackNumber"] == 4

    def test_running_payload_records_pid(self):
        assert running_payload()["pid"] == os.getpid()


class TestStaleRunning:
    @pytest.fixture
    def running(self, storage):
        storage.ensure_staging_directories(DISC)
        return marker_key(DISC, 1, TrackQueue.EXTRACT, MarkerKind.RUNNING)

    def test_own_process_is_not_stale(self, store, running):
        store.write(running, running_payload())
        assert is_stale_running(store, running) is False

    def test_dead_process_is_stale(self, store, running, monkeypatch):
        store.write(running, {"pid": 999999})
        monkeypatch.setattr("ink.core.markers._pid_alive", lambda pid: False)
        assert is_stale_running(store, running) is True

    def test_live_process_is_not_stale(self, store, running, monkeypatch):
        store.write(running, {"pid": 999999})
        monkeypatch.setattr("ink.core.markers._pid_alive", lambda pid: True)
        assert is_stale_running(store, running) is False

    def test_marker_without_pid_is_stale(self, store, running):
        store.write(running)
        assert is_stale_running(store, running) is True

    def test_malformed_marker_is_stale(self, store, paths, running):
        paths.marker(running).write_text("garbage")
        assert is_stale_running(store, running) is True

    def test_absent_marker_is_not_stale(self, store, running):
        assert is_stale_running(store, running) is False

    def test_payload_is_json(self, store, paths, running):
        store.write(running, running_payload())
        data = json.loads(paths.marker(running).read_text())
        assert set(data) == {"pid", "startedAt"}
