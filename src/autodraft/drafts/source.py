"""Read draft snapshots from a JSON file on disk and follow it as it changes."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator

from ..utils.file_io import FileSignature, file_has_changed, read_json, snapshot_file
from .snapshot import DraftSnapshot

__all__ = ["DraftSourceError", "load_snapshot", "watch_snapshots"]

LOGGER = logging.getLogger(__name__)


class DraftSourceError(ValueError):
    """Raised when a draft file cannot be turned into a snapshot."""


def load_snapshot(path: Path | str) -> DraftSnapshot:
    target = Path(path)
    try:
        payload = read_json(target)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DraftSourceError(f"Draft file {target} is not valid JSON: {exc}") from exc
    try:
        return DraftSnapshot.from_mapping(payload)
    except (TypeError, ValueError) as exc:
        raise DraftSourceError(f"Draft file {target} has an unexpected shape: {exc}") from exc


async def watch_snapshots(
    path: Path | str,
    *,
    poll_interval: float = 0.25,
) -> AsyncIterator[DraftSnapshot]:
    """Yield a snapshot for the current file contents and again after every change.

    The file is polled every ``poll_interval`` seconds. Half-written or invalid
    files are logged and skipped until the next change makes them readable.
    """

    target = Path(path).expanduser()
    signature: FileSignature | None = None
    interval = max(0.01, float(poll_interval))
    while True:
        if file_has_changed(signature, target):
            try:
                signature = snapshot_file(target)
                snapshot = load_snapshot(target)
            except FileNotFoundError:
                LOGGER.debug("Draft file %s disappeared; waiting for it to return", target)
                signature = None
            except DraftSourceError as exc:
                LOGGER.warning("%s", exc)
            else:
                yield snapshot
        await asyncio.sleep(interval)
