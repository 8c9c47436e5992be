"""Unit tests for the stage executors and their marker protocol."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from ink.core.copier import SmbCopier
from ink.core.errors import InkError, MakeMKVError, TranscodeError
from ink.core.extractor import MakeMKVExtractor
from ink.core.markers import marker_key
from ink.core.transcoder import FFmpegTranscoder
from ink.models.pipeline import MarkerKind, TrackQueue
from ink.models.plan import DiscMetadata, TrackMetadata
from ink.services.stages import (
    CopyExecutor,
    ExtractExecutor,
    ReviewDecision,
    ReviewExecutor,
    TranscodeExecutor,
)


def key(plan, track_number, stage, kind):
    return marker_key(plan.disc_id, track_number, stage, kind)


@pytest.fixture
def staged(storage, movie_plan, tv_plan):
    storage.ensure_staging_directories(movie_plan.disc_id)
    storage.ensure_staging_directories(tv_plan.disc_id)


class TestExtractExecutor:
    @pytest.fixture
    def extractor(self):
        extractor = MagicMock(spec=MakeMKVExtractor)

        async def extract_title(drive_index, title, output_dir, progress_callback=None):
            output_dir.mkdir(parents=True, exist_ok=True)
            produced = output_dir / "title_t01.mkv"
            produced.write_bytes(b"mkv")
            return produced

        extractor.extract_title = AsyncMock(side_effect=extract_title)
        return extractor

    @pytest.fixture
    def executor(self, store, paths, extractor):
        return ExtractExecutor(store, paths, extractor, "/dev/sr0", drive_index=0)

    async def test_success(self, executor, store, paths, movie_plan, staged):
        track = movie_plan.tracks[0]
        await executor.execute(movie_plan, track)

        done = key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.DONE)
        assert store.present(done)
        payload = store.read_payload(done)
        assert payload["sourceDrive"] == "/dev/sr0"
        assert payload["discId"] == movie_plan.disc_id
        assert "durationMs" in payload
        assert not store.present(key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.RUNNING))
        assert paths.extracted_video(movie_plan.disc_id, 1).read_bytes() == b"mkv"
        assert not paths.extract_temp_dir(movie_plan.disc_id, 1).exists()

    async def test_failure_writes_error(self, executor, extractor, store, paths, movie_plan, staged):
        extractor.extract_title.side_effect = MakeMKVError("read error")
        with pytest.raises(MakeMKVError):
            await executor.execute(movie_plan, movie_plan.tracks[0])

        error = key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.ERROR)
        assert store.read_payload(error)["errors"] == ["read error"]
        assert not store.present(key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.RUNNING))
        assert not store.present(key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.DONE))

    async def test_running_marker_present_during_work(self, executor, extractor, store, movie_plan, staged):
        seen = {}

        async def extract_title(drive_index, title, output_dir, progress_callback=None):
            seen["running"] = store.present(key(movie_plan, 1, TrackQueue.EXTRACT, MarkerKind.RUNNING))
            raise MakeMKVError("stop")

        extractor.extract_title.side_effect = extract_title
        with pytest.raises(MakeMKVError):
            await executor.execute(movie_plan, movie_plan.tracks[0])
        assert seen["running"] is True

    async def test_success_clears_previous_error(self, executor, store, movie_plan, mark):
        error = mark(movie_plan.disc_id, 1, TrackQueue.EXTRACT, MarkerKind.ERROR, {"errors": ["old"]})
        await executor.execute(movie_plan, movie_plan.tracks[0])
        assert not store.present(error)


class TestTranscodeExecutor:
    @pytest.fixture
    def transcoder(self):
        transcoder = MagicMock(spec=FFmpegTranscoder)
        transcoder.transcode = AsyncMock()
        return transcoder

    async def test_success(self, store, paths, transcoder, movie_plan, staged):
        metadata = DiscMetadata(
            disc_id=movie_plan.disc_id,
            tracks=[TrackMetadata(track_number=1, duration="1:30:00")],
        )
        executor = TranscodeExecutor(store, paths, transcoder, metadata_loader=lambda disc_id: metadata)
        await executor.execute(movie_plan, movie_plan.tracks[0])

        kwargs = transcoder.transcode.await_args.kwargs
        assert kwargs["total_seconds"] == 5400
        args = transcoder.transcode.await_args.args
        assert args[0] == paths.extracted_video(movie_plan.disc_id, 1)
        assert args[1] == paths.encoded_video(movie_plan.disc_id, 1)

        payload = store.read_payload(key(movie_plan, 1, TrackQueue.TRANSCODE, MarkerKind.DONE))
        assert payload["codec"] == "libx265"
        assert payload["crf"] == 18

    async def test_unreadable_metadata_is_not_fatal(self, store, paths, transcoder, movie_plan, staged):
        def loader(disc_id):
            raise InkError("bad metadata")

        executor = TranscodeExecutor(store, paths, transcoder, metadata_loader=loader)
        await executor.execute(movie_plan, movie_plan.tracks[0])
        assert transcoder.transcode.await_args.kwargs["total_seconds"] == 0

    async def test_failure(self, store, paths, transcoder, movie_plan, staged):
        transcoder.transcode.side_effect = TranscodeError("ffmpeg exited with code 1")
        executor = TranscodeExecutor(store, paths, transcoder)
        with pytest.raises(TranscodeError):
            await executor.execute(movie_plan, movie_plan.tracks[0])
        assert store.present(key(movie_plan, 1, TrackQueue.TRANSCODE, MarkerKind.ERROR))

    async def test_unexpected_exception_is_wrapped(self, store, paths, transcoder, movie_plan, staged):
        transcoder.transcode.side_effect = OSError("disk full")
        executor = TranscodeExecutor(store, paths, transcoder)
        with pytest.raises(InkError, match="disk full"):
            await executor.execute(movie_plan, movie_plan.tracks[0])
        assert store.present(key(movie_plan, 1, TrackQueue.TRANSCODE, MarkerKind.ERROR))


class TestReviewExecutor:
    async def test_named(self, store, paths, tv_plan, staged):
        prompt = AsyncMock(return_value=ReviewDecision(final_name="The Show - S01E01 - Pilot", episode_id=101))
        executor = ReviewExecutor(store, paths, prompt)
        await executor.execute(tv_plan, tv_plan.tracks[0])

        payload = store.read_payload(key(tv_plan, 1, TrackQueue.REVIEW, MarkerKind.DONE))
        assert payload["finalName"] == "The Show - S01E01 - Pilot"
        assert payload["episodeId"] == 101

    async def test_ignored(self, store, paths, tv_plan, staged):
        executor = ReviewExecutor(store, paths, AsyncMock(return_value=ReviewDecision(ignore=True)))
        await executor.execute(tv_plan, tv_plan.tracks[0])
        assert store.present(key(tv_plan, 1, TrackQueue.REVIEW, MarkerKind.IGNORED))
        assert not store.present(key(tv_plan, 1, TrackQueue.REVIEW, MarkerKind.DONE))

    async def test_skipped_leaves_no_marker(self, store, paths, tv_plan, staged):
        executor = ReviewExecutor(store, paths, AsyncMock(return_value=ReviewDecision()))
        assert await executor.execute(tv_plan, tv_plan.tracks[0]) is None
        for kind in MarkerKind:
            assert not store.present(key(tv_plan, 1, TrackQueue.REVIEW, kind))

    async def test_assigned_candidates_are_hidden(self, store, paths, tv_plan, mark):
        mark(tv_plan.disc_id, 1, TrackQueue.REVIEW, MarkerKind.DONE, {"finalName": "x", "episodeId": 101})
        prompt = AsyncMock(return_value=ReviewDecision())
        executor = ReviewExecutor(store, paths, prompt)
        await executor.execute(tv_plan, tv_plan.tracks[1])

        plan, track, video, candidates = prompt.await_args.args
        assert track.track_number == 2
        assert video == paths.extracted_video(tv_plan.disc_id, 2)
        assert [c.id for c in candidates] == [102]


class TestCopyExecutor:
    @pytest.fixture
    def copier(self):
        copier = MagicMock(spec=SmbCopier)
        copier.copy = AsyncMock(return_value="smb://nas/media/x.mkv")
        return copier

    def test_remote_location_defaults_by_type(self, store, paths, copier, movie_plan, tv_plan):
        executor = CopyExecutor(store, paths, copier)
        local = Path("t01.mkv")
        assert executor.remote_location(movie_plan, movie_plan.tracks[0], local) == (
            "movies/The Movie",
            "The Movie (1999).mkv",
        )
        assert executor.remote_location(tv_plan, tv_plan.tracks[0], local) == ("series/The Show", "Track 1.mkv")

    def test_absolute_directory_is_replaced(self, store, paths, copier, movie_plan):
        movie_plan.tracks[0].output.directory = "/media/movies/The Movie"
        executor = CopyExecutor(store, paths, copier)
        directory, _ = executor.remote_location(movie_plan, movie_plan.tracks[0], Path("t01.mkv"))
        assert directory == "movies/The Movie"

    def test_relative_directory_is_kept(self, store, paths, copier, movie_plan):
        movie_plan.tracks[0].output.directory = "films/1999"
        executor = CopyExecutor(store, paths, copier)
        directory, _ = executor.remote_location(movie_plan, movie_plan.tracks[0], Path("t01.mkv"))
        assert directory == "films/1999"

    def test_reviewed_name_wins(self, store, paths, copier, tv_plan, mark):
        mark(tv_plan.disc_id, 1, TrackQueue.REVIEW, MarkerKind.DONE, {"finalName": "The Show - S01E01 - Pilot"})
        executor = CopyExecutor(store, paths, copier)
        _, filename = executor.remote_location(tv_plan, tv_plan.tracks[0], Path("t01.mkv"))
        assert filename == "The Show - S01E01 - Pilot.mkv"

    def test_existing_extension_not_doubled(self, store, paths, copier, movie_plan):
        movie_plan.tracks[0].output.filename = "Film.MKV"
        executor = CopyExecutor(store, paths, copier)
        _, filename = executor.remote_location(movie_plan, movie_plan.tracks[0], Path("t01.mkv"))
        assert filename == "Film.MKV"

    async def test_success_records_destination(self, store, paths, copier, movie_plan, staged):
        executor = CopyExecutor(store, paths, copier)
        await executor.execute(movie_plan, movie_plan.tracks[0])
        copier.copy.assert_awaited_once_with(
            paths.encoded_video(movie_plan.disc_id, 1), "movies/The Movie", "The Movie (1999).mkv"
        )
        payload = store.read_payload(key(movie_plan, 1, TrackQueue.COPY, MarkerKind.DONE))
        assert payload["destination"] == "smb://nas/media/x.mkv"
