"""Unit tests for the queue rule engine: per-stage status resolution."""

from unittest.mock import MagicMock

import pytest

from ink.models.pipeline import MarkerKind, TrackQueue, TrackQueueStatus
from ink.services.queue_rules import QueueEngine

E, T, R, C = TrackQueue.EXTRACT, TrackQueue.TRANSCODE, TrackQueue.REVIEW, TrackQueue.COPY
S = TrackQueueStatus


def statuses(engine, plan, track):
    return {q: engine.queue_status(plan, track, q) for q in TrackQueue}


class TestFreshTrack:
    def test_movie_track(self, engine, movie_plan):
        track = movie_plan.tracks[0]
        assert statuses(engine, movie_plan, track) == {E: S.READY, T: S.BLOCKED, R: S.INELIGIBLE, C: S.BLOCKED}

    def test_tv_track(self, engine, tv_plan):
        track = tv_plan.tracks[0]
        assert statuses(engine, tv_plan, track) == {E: S.READY, T: S.BLOCKED, R: S.BLOCKED, C: S.BLOCKED}

    def test_not_extracted_track_is_ineligible_everywhere(self, engine, tv_plan):
        track = tv_plan.tracks[2]
        assert set(statuses(engine, tv_plan, track).values()) == {S.INELIGIBLE}

    def test_extract_is_ready_without_staging_directories(self, engine, movie_plan):
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], E) == S.READY


class TestDependencies:
    def test_extract_done_unblocks_transcode_and_review(self, engine, tv_plan, mark):
        track = tv_plan.tracks[0]
        mark(tv_plan.disc_id, 1, E, MarkerKind.DONE)
        assert statuses(engine, tv_plan, track) == {E: S.DONE, T: S.READY, R: S.READY, C: S.BLOCKED}

    def test_movie_copy_ready_after_transcode(self, engine, movie_plan, mark):
        track = movie_plan.tracks[0]
        mark(movie_plan.disc_id, 1, E, MarkerKind.DONE)
        mark(movie_plan.disc_id, 1, T, MarkerKind.DONE)
        assert engine.queue_status(movie_plan, track, C) == S.READY

    def test_tv_copy_waits_for_review(self, engine, tv_plan, mark):
        track = tv_plan.tracks[0]
        mark(tv_plan.disc_id, 1, E, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, T, MarkerKind.DONE)
        assert engine.queue_status(tv_plan, track, C) == S.BLOCKED

        mark(tv_plan.disc_id, 1, R, MarkerKind.DONE)
        assert engine.queue_status(tv_plan, track, C) == S.READY

    def test_copy_not_ready_when_review_done_but_transcode_missing(self, engine, tv_plan, mark):
        mark(tv_plan.disc_id, 1, E, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, R, MarkerKind.DONE)
        assert engine.queue_status(tv_plan, tv_plan.tracks[0], C) == S.BLOCKED


class TestIgnored:
    def test_ignored_track(self, engine, tv_plan, mark):
        track = tv_plan.tracks[0]
        mark(tv_plan.disc_id, 1, E, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, R, MarkerKind.IGNORED)
        assert engine.is_ignored(tv_plan, track)
        assert statuses(engine, tv_plan, track) == {E: S.DONE, T: S.INELIGIBLE, R: S.DONE, C: S.INELIGIBLE}

    def test_ignored_overrides_transcode_done(self, engine, tv_plan, mark):
        mark(tv_plan.disc_id, 1, E, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, T, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, R, MarkerKind.IGNORED)
        assert engine.queue_status(tv_plan, tv_plan.tracks[0], T) == S.INELIGIBLE


class TestPrecedence:
    def test_done_beats_error_and_running(self, engine, movie_plan, mark):
        for kind in (MarkerKind.RUNNING, MarkerKind.ERROR, MarkerKind.DONE):
            mark(movie_plan.disc_id, 1, E, kind)
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], E) == S.DONE

    def test_error_beats_running(self, engine, movie_plan, mark):
        mark(movie_plan.disc_id, 1, E, MarkerKind.RUNNING)
        mark(movie_plan.disc_id, 1, E, MarkerKind.ERROR)
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], E) == S.ERROR

    def test_running(self, engine, movie_plan, mark):
        mark(movie_plan.disc_id, 1, E, MarkerKind.RUNNING)
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], E) == S.RUNNING

    def test_error_on_blocked_stage(self, engine, movie_plan, mark):
        # markers are reported even when the dependency is not met
        mark(movie_plan.disc_id, 1, T, MarkerKind.ERROR)
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], T) == S.ERROR

    def test_ineligible_beats_markers(self, engine, tv_plan, mark):
        mark(tv_plan.disc_id, 3, E, MarkerKind.DONE)
        assert engine.queue_status(tv_plan, tv_plan.tracks[2], E) == S.INELIGIBLE


class TestFailures:
    def test_store_exception_resolves_to_error(self, movie_plan):
        store = MagicMock()
        store.present.side_effect = PermissionError("denied")
        engine = QueueEngine(store)
        assert engine.queue_status(movie_plan, movie_plan.tracks[0], E) == S.ERROR

    @pytest.mark.parametrize("queue", list(TrackQueue))
    def test_every_stage_has_a_rule(self, engine, queue):
        assert engine.rule(queue) is not None

    def test_recomputed_on_every_call(self, engine, movie_plan, mark):
        track = movie_plan.tracks[0]
        assert engine.queue_status(movie_plan, track, E) == S.READY
        mark(movie_plan.disc_id, 1, E, MarkerKind.DONE)
        assert engine.queue_status(movie_plan, track, E) == S.DONE
