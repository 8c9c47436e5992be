"""Pipeline cycles - one pass over staged discs for a stage.

A cycle visits discs in order and tracks in plan order, asks the queue
engine which tracks are ``ready`` for its stage, and runs the stage executor
for each. Failures are contained:

- malformed plan: the disc is skipped for this cycle
- failed track:   logged (the executor wrote an ``error`` marker), siblings continue

Running markers left by a process that no longer exists are cleared before
evaluation so a crashed run becomes ready again.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from ink.core.errors import InkError, PlanError
from ink.core.markers import MarkerStore, is_stale_running, marker_key
from ink.core.storage import Storage
from ink.models.pipeline import MarkerKind, TrackQueue, TrackQueueStatus
from ink.models.plan import BackupPlan, PlanStatus, PlanType, TrackPlan
from ink.services.queue_rules import QueueEngine
from ink.services.stages import StageExecutor

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What one cycle did. Entries are ``(disc_id, track_number)``."""

    succeeded: list[tuple[str, int]] = field(default_factory=list)
    failed: list[tuple[str, int]] = field(default_factory=list)
    skipped_discs: list[str] = field(default_factory=list)

    @property
    def processed_any(self) -> bool:
        return bool(self.succeeded or self.failed)


def recover_stale_running(store: MarkerStore, plan: BackupPlan, track: TrackPlan, stage: TrackQueue) -> bool:
    """Remove a running marker whose owning process is gone. Returns True if removed."""
    key = marker_key(plan.disc_id, track.track_number, stage, MarkerKind.RUNNING)
    if not store.present(key) or not is_stale_running(store, key):
        return False
    logger.warning(
        f"Clearing stale {stage.value} running marker for disc {plan.disc_id} "
        f"track {track.track_number} (previous run did not finish)"
    )
    store.remove(key)
    return True


class StagePipeline:
    """Runs every ready track of one stage across all staged discs."""

    def __init__(
        self,
        storage: Storage,
        engine: QueueEngine,
        executor: StageExecutor,
        disc_id: str | None = None,
    ) -> None:
        self._storage = storage
        self._engine = engine
        self._executor = executor
        self._disc_id = disc_id
        self._stop_requested = False

    @property
    def stage(self) -> TrackQueue:
        return self._executor.stage

    def request_stop(self) -> None:
        """Finish the current track, then start no more."""
        self._stop_requested = True

    def disc_ids(self) -> list[str]:
        staged = self._storage.list_staged_disc_ids()
        if self._disc_id is None:
            return staged
        return [d for d in staged if d == self._disc_id]

    def load_plan(self, disc_id: str) -> BackupPlan | None:
        try:
            return self._storage.read_plan(disc_id)
        except PlanError as e:
            logger.warning(f"Skipping disc {disc_id} this cycle: {e}")
            return None

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        for disc_id in self.disc_ids():
            if self._stop_requested:
                break
            plan = self.load_plan(disc_id)
            if plan is None:
                report.skipped_discs.append(disc_id)
                continue
            try:
                await self.process_plan(plan, report)
                await self.after_plan(plan)
            except (OSError, InkError) as e:
                logger.error(f"Error processing disc {disc_id}: {e}")
                report.skipped_discs.append(disc_id)

        if report.processed_any:
            logger.info(
                f"{self.stage.value} cycle: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
            )
        else:
            logger.debug(f"No {self.stage.value} work ready")
        return report

    async def process_plan(self, plan: BackupPlan, report: CycleReport) -> None:
        self._storage.ensure_staging_directories(plan.disc_id)
        for track in plan.tracks:
            if self._stop_requested:
                return
            entry = (plan.disc_id, track.track_number)
            try:
                recover_stale_running(self._engine.store, plan, track, self.stage)
                ready = self._engine.queue_status(plan, track, self.stage) == TrackQueueStatus.READY
            except (OSError, InkError) as e:
                logger.error(f"Could not check track {track.track_number} of disc {plan.disc_id}: {e}")
                report.failed.append(entry)
                continue
            if not ready:
                continue

            try:
                await self._executor.execute(plan, track)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Track {track.track_number} of disc {plan.disc_id} failed: {e}")
                report.failed.append(entry)
            else:
                report.succeeded.append(entry)

    async def after_plan(self, plan: BackupPlan) -> None:
        """Hook run after each plan's tracks were processed."""


class ReviewPipeline(StagePipeline):
    """Review cycle; approves a plan once all its eligible tracks are handled."""

    def all_reviewed(self, plan: BackupPlan) -> bool:
        rule = self._engine.rule(TrackQueue.REVIEW)
        return all(rule.done(plan, t) for t in plan.tracks if rule.eligible(plan, t))

    def finalize_plan(self, plan: BackupPlan) -> bool:
        """Copy reviewed names into the plan and mark it approved.

        Returns False, leaving the plan untouched, if any review result is unreadable.
        """
        store = self._engine.store
        for track in plan.tracks:
            key = marker_key(plan.disc_id, track.track_number, TrackQueue.REVIEW, MarkerKind.DONE)
            if not track.extract or not store.present(key):
                continue
            try:
                final_name = store.read_payload(key).get("finalName")
            except InkError as e:
                logger.error(f"Error reading review result for track {track.track_number}: {e}")
                return False
            if final_name:
                track.name = final_name
                track.output.filename = final_name

        plan.status = PlanStatus.APPROVED
        self._storage.save_plan(plan)
        logger.info(f"Plan {plan.disc_id} ({plan.title}) approved")
        return True

    async def after_plan(self, plan: BackupPlan) -> None:
        if plan.type != PlanType.TV or plan.status in (PlanStatus.APPROVED, PlanStatus.COMPLETED):
            return
        if self.all_reviewed(plan):
            self.finalize_plan(plan)
