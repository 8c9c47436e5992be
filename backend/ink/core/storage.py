"""Plan and metadata storage.

Plans and metadata are JSON documents keyed by disc id. A missing document
reads as ``None``; a malformed one raises ``PlanError`` so the caller can skip
the disc for the current cycle and retry on the next.
"""

import logging
import os
from pathlib import Path

from ink.core.errors import PlanError, error_context
from ink.core.paths import InkPaths
from ink.models.pipeline import TrackQueue
from ink.models.plan import BackupPlan, DiscMetadata

logger = logging.getLogger(__name__)


def _list_json_ids(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.iterdir() if p.suffix == ".json" and p.is_file())


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


def _delete(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Deleted {path}")
    return True


class Storage:
    """Reads and writes plans and metadata under the configured roots."""

    def __init__(self, paths: InkPaths) -> None:
        self._paths = paths

    @property
    def paths(self) -> InkPaths:
        return self._paths

    # --- Plans ---

    def list_plan_ids(self) -> list[str]:
        return _list_json_ids(self._paths.plans)

    def read_plan(self, disc_id: str) -> BackupPlan | None:
        path = self._paths.plan(disc_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        with error_context(
            error_types=(ValueError,),
            default_message=f"Could not parse plan {path}",
            log_level="warning",
            wrap_as=PlanError,
        ):
            plan = BackupPlan.model_validate_json(content)

        if plan.disc_id != disc_id:
            raise PlanError(f"Plan file {path} declares disc id {plan.disc_id}")
        return plan

    def save_plan(self, plan: BackupPlan) -> Path:
        path = self._paths.plan(plan.disc_id)
        _write_atomic(path, plan.to_json())
        logger.info(f"Saved plan {path}")
        return path

    def delete_plan(self, disc_id: str) -> bool:
        """Delete a plan. Returns False if there was none."""
        return _delete(self._paths.plan(disc_id))

    # --- Metadata ---

    def list_metadata_ids(self) -> list[str]:
        return _list_json_ids(self._paths.metadata)

    def read_metadata(self, disc_id: str) -> DiscMetadata | None:
        path = self._paths.metadata_file(disc_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        with error_context(
            error_types=(ValueError,),
            default_message=f"Could not parse metadata {path}",
            log_level="warning",
            wrap_as=PlanError,
        ):
            return DiscMetadata.model_validate_json(content)

    def save_metadata(self, metadata: DiscMetadata) -> Path:
        path = self._paths.metadata_file(metadata.disc_id)
        _write_atomic(path, metadata.to_json())
        logger.info(f"Saved metadata {path}")
        return path

    def delete_metadata(self, disc_id: str) -> bool:
        """Delete scanned metadata. Returns False if there was none."""
        return _delete(self._paths.metadata_file(disc_id))

    def pending_disc_ids(self) -> list[str]:
        """Discs that have been scanned but have no plan yet."""
        return sorted(set(self.list_metadata_ids()) - set(self.list_plan_ids()))

    # --- Staging ---

    def list_staged_disc_ids(self) -> list[str]:
        root = self._paths.staging
        if not root.is_dir():
            return []
        return sorted(p.name for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))

    def ensure_staging_directories(self, disc_id: str) -> None:
        for stage in TrackQueue:
            self._paths.stage_dir(disc_id, stage).mkdir(parents=True, exist_ok=True)
