"""File watching for the plans and staging directories.

Watch delivery is best-effort: if a directory cannot be watched the failure
is logged and the periodic fallback tick keeps the pipeline moving.
"""

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# Reads (opened/closed-no-write) happen on every cycle and must not retrigger one.
_CHANGE_EVENTS = {"created", "modified", "moved", "deleted", "closed"}


class _NotifyingEventHandler(FileSystemEventHandler):
    """Forward change events to a callback, ignoring temp files."""

    def __init__(self, callback: Callable[[], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CHANGE_EVENTS:
            return
        path = getattr(event, "dest_path", None) or event.src_path
        if isinstance(path, bytes):
            path = path.decode(errors="replace")
        if Path(path).name.endswith(".tmp"):
            return
        logger.debug(f"Watch event {event.event_type}: {path}")
        self._callback()


class DirectoryWatcher:
    """Watch directories recursively and call ``callback`` on changes.

    The callback runs on the observer thread; pass something thread-safe,
    such as ``CycleScheduler.notify_threadsafe``.
    """

    def __init__(self, directories: Sequence[Path], callback: Callable[[], None]) -> None:
        self.directories = tuple(dict.fromkeys(Path(d) for d in directories))
        self._handler = _NotifyingEventHandler(callback)
        self._observer = None
        self.watching: list[Path] = []

    def start(self) -> bool:
        """Start watching. Returns False if no directory could be watched."""
        observer = Observer()
        for directory in self.directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
                observer.schedule(self._handler, str(directory), recursive=True)
                self.watching.append(directory)
            except OSError as e:
                logger.warning(f"Could not watch {directory} (continuing with polling): {e}")

        if not self.watching:
            return False

        try:
            observer.start()
        except (OSError, RuntimeError) as e:
            logger.warning(f"File watcher unavailable (continuing with polling): {e}")
            self.watching = []
            return False

        self._observer = observer
        logger.info(f"Watching {', '.join(str(d) for d in self.watching)}")
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        logger.debug("File watcher stopped")

    def __enter__(self) -> "DirectoryWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
