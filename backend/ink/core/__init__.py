"""Core modules for Ink."""

from ink.core.extractor import MakeMKVExtractor
from ink.core.markers import FileMarkerStore
from ink.core.sentinel import LinuxDriveMonitor
from ink.core.storage import Storage

__all__ = ["FileMarkerStore", "LinuxDriveMonitor", "MakeMKVExtractor", "Storage"]
