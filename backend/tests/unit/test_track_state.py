"""Unit tests for the track state aggregator and plan rollups."""

import pytest

from ink.models.pipeline import MarkerKind, TrackQueue, TrackQueueStatus, TrackStatus
from ink.models.plan import PlanStatus
from ink.services.track_state import aggregate, plan_progress, plan_summary, track_state

S = TrackQueueStatus


def queues(extract, transcode, review, copy):
    return {
        TrackQueue.EXTRACT: extract,
        TrackQueue.TRANSCODE: transcode,
        TrackQueue.REVIEW: review,
        TrackQueue.COPY: copy,
    }


class TestAggregate:
    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ((S.READY, S.BLOCKED, S.INELIGIBLE, S.BLOCKED), TrackStatus.READY),
            ((S.RUNNING, S.BLOCKED, S.INELIGIBLE, S.BLOCKED), TrackStatus.RUNNING),
            ((S.DONE, S.READY, S.INELIGIBLE, S.BLOCKED), TrackStatus.RUNNING),
            ((S.DONE, S.ERROR, S.INELIGIBLE, S.BLOCKED), TrackStatus.ERROR),
            ((S.DONE, S.DONE, S.INELIGIBLE, S.DONE), TrackStatus.COMPLETE),
            ((S.INELIGIBLE,) * 4, TrackStatus.COMPLETE),
        ],
    )
    def test_rollup(self, statuses, expected):
        assert aggregate(queues(*statuses), ignored=False) == expected

    def test_ignored_wins(self):
        assert aggregate(queues(S.DONE, S.ERROR, S.DONE, S.INELIGIBLE), ignored=True) == TrackStatus.IGNORED

    def test_complete_checked_before_error(self):
        # complete requires every status done/ineligible, so an error can never be complete
        assert aggregate(queues(S.ERROR, S.INELIGIBLE, S.INELIGIBLE, S.INELIGIBLE), ignored=False) == TrackStatus.ERROR


class TestTrackState:
    def test_fresh_track_is_ready(self, engine, movie_plan):
        state = track_state(engine, movie_plan, movie_plan.tracks[0])
        assert state.status == TrackStatus.READY
        assert state.queues[TrackQueue.EXTRACT] == S.READY

    def test_complete_movie(self, engine, movie_plan, mark):
        for stage in (TrackQueue.EXTRACT, TrackQueue.TRANSCODE, TrackQueue.COPY):
            mark(movie_plan.disc_id, 1, stage, MarkerKind.DONE)
        assert track_state(engine, movie_plan, movie_plan.tracks[0]).status == TrackStatus.COMPLETE

    def test_ignored_tv_track(self, engine, tv_plan, mark):
        mark(tv_plan.disc_id, 2, TrackQueue.EXTRACT, MarkerKind.DONE)
        mark(tv_plan.disc_id, 2, TrackQueue.REVIEW, MarkerKind.IGNORED)
        assert track_state(engine, tv_plan, tv_plan.tracks[1]).status == TrackStatus.IGNORED


class TestPlanRollup:
    def test_summary_counts_every_status(self, engine, tv_plan, mark):
        mark(tv_plan.disc_id, 1, TrackQueue.EXTRACT, MarkerKind.RUNNING)
        summary = plan_summary(engine, tv_plan)
        assert summary == {
            TrackStatus.COMPLETE: 1,  # track 3 is not extracted
            TrackStatus.RUNNING: 1,
            TrackStatus.ERROR: 0,
            TrackStatus.IGNORED: 0,
            TrackStatus.READY: 1,
        }

    def test_progress_pending(self, engine, movie_plan):
        assert plan_progress(engine, movie_plan) == "pending"

    def test_progress_draft(self, engine, movie_plan):
        movie_plan.status = PlanStatus.DRAFT
        assert plan_progress(engine, movie_plan) == "draft"

    def test_progress_in_progress(self, engine, movie_plan, mark):
        mark(movie_plan.disc_id, 1, TrackQueue.EXTRACT, MarkerKind.DONE)
        assert plan_progress(engine, movie_plan) == "in_progress"

    def test_progress_completed(self, engine, tv_plan, mark):
        for n in (1, 2):
            mark(tv_plan.disc_id, n, TrackQueue.EXTRACT, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, TrackQueue.TRANSCODE, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, TrackQueue.REVIEW, MarkerKind.DONE)
        mark(tv_plan.disc_id, 1, TrackQueue.COPY, MarkerKind.DONE)
        mark(tv_plan.disc_id, 2, TrackQueue.REVIEW, MarkerKind.IGNORED)
        assert plan_progress(engine, tv_plan) == "completed"
