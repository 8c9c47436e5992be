"""Stage executors - run one stage for one track and record the outcome.

Every executor follows the same marker protocol:

1. write ``running`` (with this process's pid)
2. do the work
3. on success: clear any old ``error``, write ``done`` (or ``ignored``)
   on failure: write ``error`` with the failure, re-raise
4. always remove ``running``

``done`` is written before ``running`` is removed, so a crash in between
leaves a stale running marker that ``done`` outranks.
"""

import asyncio
import logging
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ink.core.copier import SmbCopier
from ink.core.errors import InkError
from ink.core.extractor import ExtractProgress, MakeMKVExtractor
from ink.core.markers import (
    MarkerStore,
    base_payload,
    marker_key,
    running_payload,
    write_error,
)
from ink.core.paths import InkPaths
from ink.core.transcoder import FFmpegTranscoder, TranscodeProgress
from ink.models.pipeline import MarkerKind, TrackQueue
from ink.models.plan import BackupPlan, DiscMetadata, EpisodeCandidate, PlanType, TrackPlan

logger = logging.getLogger(__name__)


@dataclass
class StageOutcome:
    """What a successful stage run records."""

    kind: MarkerKind = MarkerKind.DONE
    fields: dict[str, Any] = field(default_factory=dict)


class StageExecutor:
    """Base class: marker bookkeeping around ``_run``."""

    stage: TrackQueue

    def __init__(self, store: MarkerStore, paths: InkPaths) -> None:
        self._store = store
        self._paths = paths

    def _key(self, plan: BackupPlan, track: TrackPlan, kind: MarkerKind):
        return marker_key(plan.disc_id, track.track_number, self.stage, kind)

    async def execute(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome | None:
        """Run the stage for ``track``.

        Returns the recorded outcome, or None if the run recorded nothing
        (e.g. a review that was skipped).

        Raises:
            InkError: The stage failed; an ``error`` marker has been written
        """
        label = f"{self.stage.value} disc {plan.disc_id} track {track.track_number}"
        revert_running = self._store.write(self._key(plan, track, MarkerKind.RUNNING), running_payload())
        start = time.monotonic()
        try:
            try:
                outcome = await self._run(plan, track)
            except Exception as e:
                logger.error(f"Failed {label}: {e}")
                write_error(self._store, plan.disc_id, track.track_number, self.stage, [str(e)])
                if isinstance(e, InkError):
                    raise
                raise InkError(f"{label} failed: {e}") from e

            if outcome is None:
                logger.info(f"Skipped {label}")
                return None

            self._store.remove(self._key(plan, track, MarkerKind.ERROR))
            if outcome.kind == MarkerKind.DONE:
                outcome.fields.setdefault("durationMs", int((time.monotonic() - start) * 1000))
            self._store.write(
                self._key(plan, track, outcome.kind),
                base_payload(plan.disc_id, track.track_number, **outcome.fields),
            )
            logger.info(f"Finished {label} ({outcome.kind.value})")
            return outcome
        finally:
            revert_running()

    async def _run(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome | None:
        raise NotImplementedError


class ExtractExecutor(StageExecutor):
    """Extracts titles from the disc in one drive."""

    stage = TrackQueue.EXTRACT

    # MakeMKV setup chatter that is not worth reporting as a progress stage
    IGNORED_MESSAGES = frozenset(
        {"Scanning CD-ROM devices", "Processing title sets", "Processing titles", "Opening DVD disc"}
    )

    def __init__(
        self,
        store: MarkerStore,
        paths: InkPaths,
        extractor: MakeMKVExtractor,
        device: str,
        drive_index: int,
    ) -> None:
        super().__init__(store, paths)
        self._extractor = extractor
        self._device = device
        self._drive_index = drive_index

    async def _run(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome:
        temp_dir = self._paths.extract_temp_dir(plan.disc_id, track.track_number)
        final_path = self._paths.extracted_video(plan.disc_id, track.track_number)
        last_message = ""

        def on_progress(progress: ExtractProgress) -> None:
            nonlocal last_message
            if progress.message and progress.message != last_message:
                last_message = progress.message
                if progress.message not in self.IGNORED_MESSAGES:
                    logger.info(f"Track {track.track_number}: {progress.message}")
            elif progress.percent is not None:
                logger.debug(f"Track {track.track_number}: {last_message} {progress.percent:.1f}%")

        logger.info(f"Extracting track {track.track_number} ({track.name}) from {self._device}")
        try:
            produced = await self._extractor.extract_title(
                self._drive_index, track.track_number, temp_dir, on_progress
            )
            produced.replace(final_path)
        finally:
            await asyncio.to_thread(shutil.rmtree, temp_dir, True)

        logger.info(f"Track {track.track_number} saved to {final_path}")
        return StageOutcome(fields={"sourceDrive": self._device})


class TranscodeExecutor(StageExecutor):
    stage = TrackQueue.TRANSCODE

    def __init__(
        self,
        store: MarkerStore,
        paths: InkPaths,
        transcoder: FFmpegTranscoder,
        metadata_loader: Callable[[str], DiscMetadata | None] | None = None,
    ) -> None:
        super().__init__(store, paths)
        self._transcoder = transcoder
        self._metadata_loader = metadata_loader

    def _duration_seconds(self, plan: BackupPlan, track: TrackPlan) -> int:
        if self._metadata_loader is None:
            return 0
        try:
            metadata = self._metadata_loader(plan.disc_id)
        except InkError as e:
            logger.warning(f"Ignoring unreadable metadata for {plan.disc_id}: {e}")
            return 0
        meta_track = metadata.track(track.track_number) if metadata else None
        return meta_track.duration_seconds if meta_track else 0

    async def _run(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome:
        input_path = self._paths.extracted_video(plan.disc_id, track.track_number)
        output_path = self._paths.encoded_video(plan.disc_id, track.track_number)
        last_logged = -10.0

        def on_progress(progress: TranscodeProgress) -> None:
            nonlocal last_logged
            if progress.percent is not None and progress.percent - last_logged >= 10:
                last_logged = progress.percent
                logger.info(
                    f"Track {track.track_number}: {progress.percent:.1f}% "
                    f"({progress.time}, {progress.fps or 0} fps, {progress.speed or '-'})"
                )

        logger.info(f"Transcoding track {track.track_number} ({track.name})")
        await self._transcoder.transcode(
            input_path,
            output_path,
            track.transcode,
            total_seconds=self._duration_seconds(plan, track),
            progress_callback=on_progress,
        )
        settings = track.transcode
        return StageOutcome(
            fields={
                "codec": settings.codec if settings else "libx265",
                "crf": settings.crf if settings else 18,
            }
        )


@dataclass
class ReviewDecision:
    """Operator's answer for one track."""

    final_name: str | None = None
    episode_id: int | None = None
    ignore: bool = False

    @property
    def skipped(self) -> bool:
        return not self.ignore and not self.final_name


# (plan, track, video path, remaining candidates) -> decision
ReviewPrompt = Callable[[BackupPlan, TrackPlan, Path, list[EpisodeCandidate]], Awaitable[ReviewDecision]]


class ReviewExecutor(StageExecutor):
    """Names a track interactively, or marks it ignored."""

    stage = TrackQueue.REVIEW

    def __init__(self, store: MarkerStore, paths: InkPaths, prompt: ReviewPrompt) -> None:
        super().__init__(store, paths)
        self._prompt = prompt

    def assigned_episode_ids(self, plan: BackupPlan) -> set[int]:
        assigned = set()
        for t in plan.tracks:
            key = marker_key(plan.disc_id, t.track_number, TrackQueue.REVIEW, MarkerKind.DONE)
            if not self._store.present(key):
                continue
            try:
                episode_id = self._store.read_payload(key).get("episodeId")
            except InkError:
                continue
            if episode_id is not None:
                assigned.add(episode_id)
        return assigned

    async def _run(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome | None:
        assigned = self.assigned_episode_ids(plan)
        candidates = [c for c in (plan.candidates or []) if c.id not in assigned]
        video = self._paths.extracted_video(plan.disc_id, track.track_number)

        decision = await self._prompt(plan, track, video, candidates)
        if decision.ignore:
            return StageOutcome(kind=MarkerKind.IGNORED)
        if decision.skipped:
            return None
        return StageOutcome(fields={"finalName": decision.final_name, "episodeId": decision.episode_id})


class CopyExecutor(StageExecutor):
    stage = TrackQueue.COPY

    def __init__(self, store: MarkerStore, paths: InkPaths, copier: SmbCopier) -> None:
        super().__init__(store, paths)
        self._copier = copier

    def remote_location(self, plan: BackupPlan, track: TrackPlan, local_path: Path) -> tuple[str, str]:
        """(directory, filename) relative to the SMB target prefix."""
        directory = track.output.directory
        if not directory or Path(directory).is_absolute():
            type_dir = "series" if plan.type == PlanType.TV else "movies"
            directory = f"{type_dir}/{plan.title or plan.disc_id}"

        filename = track.output.filename
        reviewed = marker_key(plan.disc_id, track.track_number, TrackQueue.REVIEW, MarkerKind.DONE)
        if self._store.present(reviewed):
            try:
                filename = self._store.read_payload(reviewed).get("finalName") or filename
            except InkError as e:
                logger.warning(f"Could not read review result for track {track.track_number}: {e}")

        if not filename.lower().endswith(local_path.suffix.lower()):
            filename += local_path.suffix
        return directory, filename

    async def _run(self, plan: BackupPlan, track: TrackPlan) -> StageOutcome:
        local_path = self._paths.encoded_video(plan.disc_id, track.track_number)
        directory, filename = self.remote_location(plan, track, local_path)
        logger.info(f"Copying track {track.track_number} ({track.name}) to {directory}/{filename}")
        destination = await self._copier.copy(local_path, directory, filename)
        return StageOutcome(fields={"destination": destination})
