"""Durable pointers from a logical editing slot to the remote draft it created."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Protocol

from ..utils.file_io import read_json, write_json
from .settings import SETTINGS_DIR

__all__ = ["DEFAULT_RESUME_SLOT", "InMemoryResumeStore", "ResumePointerStore", "ResumeStore"]

LOGGER = logging.getLogger(__name__)
DEFAULT_RESUME_SLOT = "draft:new-post"
_RESUME_FILENAME = "resume.json"
_RESUME_VERSION = 1


def _default_resume_path() -> Path:
    return SETTINGS_DIR / _RESUME_FILENAME


class ResumeStore(Protocol):
    """Key -> document id mapping that survives a restart."""

    def get(self, slot: str) -> str | None:  # pragma: no cover - protocol stub
        ...

    def set(self, slot: str, document_id: str) -> None:  # pragma: no cover - protocol stub
        ...

    def clear(self, slot: str) -> None:  # pragma: no cover - protocol stub
        ...


class InMemoryResumeStore:
    """Process-local resume store used by tests and throwaway sessions."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._pointers: Dict[str, str] = dict(initial or {})

    def get(self, slot: str) -> str | None:
        return self._pointers.get(slot)

    def set(self, slot: str, document_id: str) -> None:
        self._pointers[slot] = document_id

    def clear(self, slot: str) -> None:
        self._pointers.pop(slot, None)

    def load(self) -> Dict[str, str]:
        return dict(self._pointers)


class ResumePointerStore:
    """JSON-file backed resume store.

    Every mutation rewrites the whole file atomically, so a crash mid-write
    leaves the previous pointer set intact.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path).expanduser() if path else _default_resume_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, str]:
        payload = self._read_payload()
        return _coerce_pointers(payload.get("pointers"))

    def get(self, slot: str) -> str | None:
        return self.load().get(slot)

    def set(self, slot: str, document_id: str) -> None:
        if not slot:
            raise ValueError("slot is required")
        if not document_id:
            raise ValueError("document_id is required")
        pointers = self.load()
        pointers[slot] = str(document_id)
        self._write(pointers)
        LOGGER.debug("Resume pointer %s -> %s written to %s", slot, document_id, self._path)

    def clear(self, slot: str) -> None:
        pointers = self.load()
        if pointers.pop(slot, None) is None:
            return
        self._write(pointers)
        LOGGER.debug("Resume pointer %s cleared from %s", slot, self._path)

    def _write(self, pointers: Mapping[str, str]) -> None:
        write_json(self._path, {"version": _RESUME_VERSION, "pointers": dict(pointers)})

    def _read_payload(self) -> Dict[str, Any]:
        try:
            data = read_json(self._path)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("Resume store %s is not valid JSON: %s", self._path, exc)
            return {}
        if isinstance(data, Mapping):
            return dict(data)
        return {}


def _coerce_pointers(value: Any) -> Dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    result: Dict[str, str] = {}
    for key, entry in value.items():
        if not isinstance(key, str) or not isinstance(entry, str) or not entry:
            continue
        result[key] = entry
    return result
