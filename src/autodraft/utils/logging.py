"""Logging for the autodraft command line tool.

Records go to ``<settings dir>/logs/autodraft.log`` (rotated) and to stderr.
Autosave telemetry events can be mirrored into the ``autodraft.events``
logger so the log file keeps one line per save outcome.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable

from ..services.telemetry import register_event_listener, unregister_event_listener

__all__ = [
    "AUTOSAVE_EVENTS",
    "get_log_path",
    "log_autosave_events",
    "resolve_log_dir",
    "setup_logging",
]

AUTOSAVE_EVENTS: tuple[str, ...] = (
    "autosave.saved",
    "autosave.skipped",
    "autosave.identity_reset",
    "autosave.failed",
    "autosave.cancelled",
)
EVENT_LOGGER = logging.getLogger("autodraft.events")

_LOG_FILENAME = "autodraft.log"
_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")
_LOG_PATH: Path | None = None


def resolve_log_dir(settings_dir: Path, override: Path | str | None = None) -> Path:
    """Pick the log directory: ``override``, then ``AUTODRAFT_LOG_DIR``, then ``settings_dir/logs``."""

    chosen = override or os.environ.get("AUTODRAFT_LOG_DIR") or settings_dir / "logs"
    return Path(chosen).expanduser()


def setup_logging(
    log_dir: Path,
    *,
    debug: bool = False,
    console: bool = True,
    force: bool = False,
) -> Path:
    """Install the file (and console) handlers once per process; ``force`` reinstalls them."""

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    level = logging.DEBUG if debug else logging.INFO
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / _LOG_FILENAME
    formatter = logging.Formatter(_LOG_FORMAT)

    file_handler = RotatingFileHandler(log_path, maxBytes=512_000, backupCount=2, encoding="utf-8")
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        # Saved/failed lines are printed by the CLI; stderr only carries problems unless debugging.
        console_handler.setLevel(level if debug else logging.WARNING)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    return _LOG_PATH


def log_autosave_events(logger: logging.Logger = EVENT_LOGGER) -> Callable[[], None]:
    """Mirror autosave telemetry into ``logger``; returns a callable that detaches the listener."""

    def _record(event: dict[str, Any]) -> None:
        payload = dict(event)
        name = str(payload.pop("event", "autosave"))
        level = logging.DEBUG if name == "autosave.cancelled" else logging.INFO
        details = " ".join(f"{key}={value}" for key, value in sorted(payload.items()))
        logger.log(level, "%s %s", name, details)

    for event_name in AUTOSAVE_EVENTS:
        register_event_listener(event_name, _record)

    def _detach() -> None:
        for event_name in AUTOSAVE_EVENTS:
            unregister_event_listener(event_name, _record)

    return _detach
