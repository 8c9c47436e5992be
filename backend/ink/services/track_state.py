"""Track State Aggregator - one coarse status per track and per plan."""

import logging
from collections import Counter

from ink.models.pipeline import TrackQueue, TrackQueueStatus, TrackState, TrackStatus
from ink.models.plan import BackupPlan, PlanStatus, TrackPlan
from ink.services.queue_rules import QueueEngine

logger = logging.getLogger(__name__)


def aggregate(queues: dict[TrackQueue, TrackQueueStatus], ignored: bool) -> TrackStatus:
    """Roll four stage statuses up into one ``TrackStatus``.

    Checked in order: ignored, complete (every eligible stage done), error,
    running (anything done or running), ready.
    """
    statuses = list(queues.values())

    if ignored:
        return TrackStatus.IGNORED
    if all(s in (TrackQueueStatus.DONE, TrackQueueStatus.INELIGIBLE) for s in statuses):
        return TrackStatus.COMPLETE
    if any(s == TrackQueueStatus.ERROR for s in statuses):
        return TrackStatus.ERROR
    if any(s in (TrackQueueStatus.DONE, TrackQueueStatus.RUNNING) for s in statuses):
        return TrackStatus.RUNNING
    return TrackStatus.READY


def track_state(engine: QueueEngine, plan: BackupPlan, track: TrackPlan) -> TrackState:
    queues = {queue: engine.queue_status(plan, track, queue) for queue in TrackQueue}
    try:
        ignored = engine.is_ignored(plan, track)
    except OSError as e:
        logger.error(f"Could not read ignore marker for disc {plan.disc_id} track {track.track_number}: {e}")
        ignored = False
    return TrackState(queues=queues, status=aggregate(queues, ignored))


def plan_summary(engine: QueueEngine, plan: BackupPlan) -> dict[TrackStatus, int]:
    """Count of tracks per ``TrackStatus`` (every status present, zero if unused)."""
    counts = Counter(track_state(engine, plan, t).status for t in plan.tracks)
    return {status: counts.get(status, 0) for status in TrackStatus}


def plan_progress(engine: QueueEngine, plan: BackupPlan) -> str:
    """Plan-level status for listings: draft, pending, in_progress or completed."""
    if plan.status == PlanStatus.DRAFT:
        return "draft"
    summary = plan_summary(engine, plan)
    finished = summary[TrackStatus.COMPLETE] + summary[TrackStatus.IGNORED]
    if plan.tracks and finished == len(plan.tracks):
        return "completed"
    if finished or summary[TrackStatus.RUNNING] or summary[TrackStatus.ERROR]:
        return "in_progress"
    return "pending"
