"""Queue Rule Engine - decides what each stage may do for each track.

Every stage has a ``QueueRule`` bundle of predicates over (plan, track). The
dependency graph between stages lives here:

    extract   -> always ready (drive availability is checked upstream)
    transcode -> ready when extract is done; ineligible when review-ignored
    review    -> tv plans only; ready when extract is done;
                 done when reviewed *or* ignored
    copy      -> ready when transcode is done and review is done or n/a;
                 ineligible when review-ignored

Statuses are recomputed from the marker store on every call; nothing is cached.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ink.core.markers import MarkerStore, marker_key
from ink.models.pipeline import MarkerKind, TrackQueue, TrackQueueStatus
from ink.models.plan import BackupPlan, PlanType, TrackPlan

logger = logging.getLogger(__name__)

Predicate = Callable[[BackupPlan, TrackPlan], bool]


@dataclass(frozen=True)
class QueueRule:
    """Predicates that resolve one stage's status for a track."""

    eligible: Predicate
    done: Predicate
    error: Predicate
    running: Predicate
    ready: Predicate


class QueueEngine:
    """Resolves per-stage statuses for tracks against a marker store."""

    def __init__(self, store: MarkerStore) -> None:
        self._store = store
        self._rules = self._build_rules()

        missing = set(TrackQueue) - set(self._rules)
        if missing:
            raise RuntimeError(f"No queue rule for: {sorted(q.value for q in missing)}")

    @property
    def store(self) -> MarkerStore:
        return self._store

    def rule(self, queue: TrackQueue) -> QueueRule:
        return self._rules[queue]

    def marker_present(self, plan: BackupPlan, track: TrackPlan, queue: TrackQueue, kind: MarkerKind) -> bool:
        return self._store.present(marker_key(plan.disc_id, track.track_number, queue, kind))

    def is_ignored(self, plan: BackupPlan, track: TrackPlan) -> bool:
        return self.marker_present(plan, track, TrackQueue.REVIEW, MarkerKind.IGNORED)

    def _marker_predicates(self, queue: TrackQueue) -> dict[str, Predicate]:
        def for_kind(kind: MarkerKind) -> Predicate:
            return lambda plan, track: self.marker_present(plan, track, queue, kind)

        return {
            "done": for_kind(MarkerKind.DONE),
            "error": for_kind(MarkerKind.ERROR),
            "running": for_kind(MarkerKind.RUNNING),
        }

    def _build_rules(self) -> dict[TrackQueue, QueueRule]:
        extract = QueueRule(
            eligible=lambda _plan, track: track.extract,
            ready=lambda _plan, _track: True,
            **self._marker_predicates(TrackQueue.EXTRACT),
        )

        def not_ignored(plan: BackupPlan, track: TrackPlan) -> bool:
            return track.extract and not self.is_ignored(plan, track)

        transcode = QueueRule(
            eligible=not_ignored,
            ready=extract.done,
            **self._marker_predicates(TrackQueue.TRANSCODE),
        )

        review_markers = self._marker_predicates(TrackQueue.REVIEW)
        review_done = review_markers.pop("done")
        review = QueueRule(
            eligible=lambda plan, track: track.extract and plan.type == PlanType.TV,
            done=lambda plan, track: review_done(plan, track) or self.is_ignored(plan, track),
            ready=extract.done,
            **review_markers,
        )

        def copy_ready(plan: BackupPlan, track: TrackPlan) -> bool:
            if not transcode.done(plan, track):
                return False
            if not review.eligible(plan, track):
                return True
            return review.done(plan, track)

        copy = QueueRule(
            eligible=not_ignored,
            ready=copy_ready,
            **self._marker_predicates(TrackQueue.COPY),
        )

        return {
            TrackQueue.EXTRACT: extract,
            TrackQueue.TRANSCODE: transcode,
            TrackQueue.REVIEW: review,
            TrackQueue.COPY: copy,
        }

    def queue_status(self, plan: BackupPlan, track: TrackPlan, queue: TrackQueue) -> TrackQueueStatus:
        """Resolve one stage's status.

        Precedence: ineligible, done, error, running, ready, blocked. ``done``
        beats ``running`` so a stale running marker left by a crash never
        hides a completed re-run. Any failure while reading markers resolves
        to ``error`` instead of propagating.
        """
        rule = self._rules[queue]
        try:
            if not rule.eligible(plan, track):
                return TrackQueueStatus.INELIGIBLE
            if rule.done(plan, track):
                return TrackQueueStatus.DONE
            if rule.error(plan, track):
                return TrackQueueStatus.ERROR
            if rule.running(plan, track):
                return TrackQueueStatus.RUNNING
            if rule.ready(plan, track):
                return TrackQueueStatus.READY
            return TrackQueueStatus.BLOCKED
        except Exception as e:
            logger.error(
                f"Could not resolve {queue.value} status for disc {plan.disc_id} "
                f"track {track.track_number}: {e}"
            )
            return TrackQueueStatus.ERROR
