"""Marker Store - durable, file-based pipeline state.

A marker is one fact about a (disc, track, stage): it is running, done,
errored, or (review only) ignored. Absence is the normal state, so neither
``present`` nor ``remove`` treats a missing file as an error. ``done`` and
``error`` markers carry a JSON payload.

The store performs no business logic; the queue rules interpret markers.
Directory creation is the caller's job (see ``storage.ensure_staging_directories``).
"""

import json
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from ink.core.errors import MarkerNotFoundError, PlanError, error_context
from ink.core.paths import InkPaths
from ink.models.pipeline import MarkerKey, MarkerKind, TrackQueue

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
RevertFn = Callable[[], None]


class MarkerStore(Protocol):
    """Key-value view of the marker tree."""

    def present(self, key: MarkerKey) -> bool: ...

    def write(self, key: MarkerKey, payload: Payload | None = None) -> RevertFn: ...

    def read_payload(self, key: MarkerKey) -> Payload: ...

    def remove(self, key: MarkerKey) -> None: ...


class FileMarkerStore:
    """Marker store backed by one small file per marker."""

    def __init__(self, paths: InkPaths) -> None:
        self._paths = paths

    @property
    def paths(self) -> InkPaths:
        return self._paths

    def present(self, key: MarkerKey) -> bool:
        return self._paths.marker(key).is_file()

    def write(self, key: MarkerKey, payload: Payload | None = None) -> RevertFn:
        """Write (or overwrite) a marker and return a function that deletes it.

        The write goes through a temp file and ``os.replace`` so a crash never
        leaves a half-written payload behind.
        """
        path = self._paths.marker(key)
        body = json.dumps(payload, indent=2) if payload is not None else ""
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(body, encoding="utf-8")
        os.replace(tmp, path)
        logger.debug(f"Wrote marker {path}")

        def revert() -> None:
            self.remove(key)

        return revert

    def read_payload(self, key: MarkerKey) -> Payload:
        path = self._paths.marker(key)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise MarkerNotFoundError(f"No {key.kind.value} marker at {path}") from e

        if not content.strip():
            return {}

        with error_context(
            error_types=(ValueError,),
            default_message=f"Malformed marker payload {path}",
            log_level="warning",
            wrap_as=PlanError,
        ):
            data = json.loads(content)
        if not isinstance(data, dict):
            raise PlanError(f"Marker payload at {path} is not a JSON object")
        return data

    def remove(self, key: MarkerKey) -> None:
        path = self._paths.marker(key)
        try:
            path.unlink()
            logger.debug(f"Removed marker {path}")
        except FileNotFoundError:
            pass


def marker_key(disc_id: str, track_number: int, stage: TrackQueue, kind: MarkerKind) -> MarkerKey:
    return MarkerKey(disc_id=disc_id, track_number=track_number, stage=stage, kind=kind)


def base_payload(disc_id: str, track_number: int, **fields: Any) -> Payload:
    """Payload common to every done/error marker, plus stage-specific fields."""
    payload: Payload = {
        "discId": disc_id,
        "trackNumber": track_number,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    payload.update(fields)
    return payload


def write_error(
    store: MarkerStore,
    disc_id: str,
    track_number: int,
    stage: TrackQueue,
    errors: list[str],
) -> None:
    store.write(
        marker_key(disc_id, track_number, stage, MarkerKind.ERROR),
        base_payload(disc_id, track_number, errors=errors),
    )


def running_payload() -> Payload:
    """Payload of a running marker: who is running it, so crashes can be detected."""
    return {"pid": os.getpid(), "startedAt": datetime.now(timezone.utc).isoformat()}


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def is_stale_running(store: MarkerStore, key: MarkerKey) -> bool:
    """True when a running marker was left behind by a process that is gone.

    Markers without a readable pid are treated as stale.
    """
    try:
        payload = store.read_payload(key)
    except MarkerNotFoundError:
        return False
    except PlanError:
        return True

    pid = payload.get("pid")
    if not isinstance(pid, int):
        return True
    if pid == os.getpid():
        return False
    return not _pid_alive(pid)
