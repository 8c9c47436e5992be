"""REST API routes: read-only pipeline status."""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ink import __version__
from ink.core.errors import InkError
from ink.core.markers import FileMarkerStore
from ink.core.paths import InkPaths
from ink.core.storage import Storage
from ink.models.plan import BackupPlan, DiscMetadata
from ink.services.queue_rules import QueueEngine
from ink.services.track_state import plan_progress, plan_summary, track_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["status"])

_started_at = time.monotonic()


def get_storage() -> Storage:
    return Storage(InkPaths.from_settings())


def get_engine(storage: Storage = Depends(get_storage)) -> QueueEngine:
    return QueueEngine(FileMarkerStore(storage.paths))


# Response Models
class StatusResponse(BaseModel):
    status: str
    version: str
    uptime: float


class TrackResponse(BaseModel):
    """One planned track with its derived state."""

    track_number: int
    name: str
    status: str
    queues: dict[str, str]


class PlanResponse(BaseModel):
    disc_id: str
    title: str
    type: str
    status: str
    progress: str
    summary: dict[str, int]
    tracks: list[TrackResponse]


class PendingResponse(BaseModel):
    disc_id: str
    name: str
    tracks: int


def plan_to_response(engine: QueueEngine, plan: BackupPlan) -> PlanResponse:
    tracks = []
    for track in plan.tracks:
        state = track_state(engine, plan, track)
        tracks.append(
            TrackResponse(
                track_number=track.track_number,
                name=track.name,
                status=state.status.value,
                queues={q.value: s.value for q, s in state.queues.items()},
            )
        )
    return PlanResponse(
        disc_id=plan.disc_id,
        title=plan.title,
        type=plan.type.value,
        status=plan.status.value,
        progress=plan_progress(engine, plan),
        summary={s.value: n for s, n in plan_summary(engine, plan).items()},
        tracks=tracks,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    return StatusResponse(status="running", version=__version__, uptime=time.monotonic() - _started_at)


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    storage: Storage = Depends(get_storage),
    engine: QueueEngine = Depends(get_engine),
) -> list[PlanResponse]:
    """All readable plans with per-track state. Malformed plans are left out."""
    plans = []
    for disc_id in storage.list_plan_ids():
        try:
            plan = storage.read_plan(disc_id)
        except InkError as e:
            logger.warning(f"Leaving plan {disc_id} out of listing: {e}")
            continue
        if plan is not None:
            plans.append(plan_to_response(engine, plan))
    return plans


@router.get("/plans/{disc_id}", response_model=PlanResponse)
async def get_plan(
    disc_id: str,
    storage: Storage = Depends(get_storage),
    engine: QueueEngine = Depends(get_engine),
) -> PlanResponse:
    try:
        plan = storage.read_plan(disc_id)
    except InkError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan_to_response(engine, plan)


@router.get("/metadata", response_model=list[DiscMetadata])
async def list_metadata(storage: Storage = Depends(get_storage)) -> list[DiscMetadata]:
    metadata = []
    for disc_id in storage.list_metadata_ids():
        try:
            entry = storage.read_metadata(disc_id)
        except InkError as e:
            logger.warning(f"Leaving metadata {disc_id} out of listing: {e}")
            continue
        if entry is not None:
            metadata.append(entry)
    return metadata


@router.get("/pending", response_model=list[PendingResponse])
async def list_pending(storage: Storage = Depends(get_storage)) -> list[PendingResponse]:
    """Scanned discs that still need a plan."""
    pending = []
    for disc_id in storage.pending_disc_ids():
        try:
            metadata = storage.read_metadata(disc_id)
        except InkError as e:
            logger.warning(f"Leaving metadata {disc_id} out of listing: {e}")
            continue
        if metadata is None:
            continue
        name = metadata.user_provided_name or metadata.volume_label or "Unknown"
        pending.append(PendingResponse(disc_id=disc_id, name=name, tracks=len(metadata.tracks)))
    return pending
