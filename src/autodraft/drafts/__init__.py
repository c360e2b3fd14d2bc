"""Draft snapshot models and the file-backed editing surface."""

from .snapshot import AUTOSAVE_STATUS, ContentSection, DraftSnapshot
from .source import DraftSourceError, load_snapshot, watch_snapshots

__all__ = [
    "AUTOSAVE_STATUS",
    "ContentSection",
    "DraftSnapshot",
    "DraftSourceError",
    "load_snapshot",
    "watch_snapshots",
]
