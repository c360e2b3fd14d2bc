"""Small file IO helpers shared by the settings, resume and draft loaders."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

__all__ = [
    "FileSignature",
    "read_json",
    "write_json",
    "write_text",
    "snapshot_file",
    "file_has_changed",
]


@dataclass(slots=True, frozen=True)
class FileSignature:
    """Represents a file fingerprint for change detection."""

    path: Path
    digest: str
    size: int
    modified_at: float


def write_text(path: Path | str, content: str, *, encoding: str = "utf-8") -> Path:
    """Write text to disk atomically (temp file in the same directory + replace)."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def write_json(path: Path | str, payload: Any) -> Path:
    """Serialize ``payload`` with stable key ordering and write it atomically."""

    body = json.dumps(payload, indent=2, sort_keys=True)
    return write_text(path, body + "\n")


def read_json(path: Path | str) -> Any:
    """Return the decoded JSON document at ``path``.

    Raises :class:`FileNotFoundError`, :class:`UnicodeDecodeError` or
    :class:`json.JSONDecodeError`; callers decide whether a missing or
    corrupt file is fatal.
    """

    text = Path(path).read_text(encoding="utf-8-sig")
    return json.loads(text)


def snapshot_file(path: Path | str) -> FileSignature:
    """Compute a :class:`FileSignature` for the provided path."""

    target = Path(path)
    data = target.read_bytes()
    digest = hashlib.sha256(data).hexdigest()
    stat = target.stat()
    return FileSignature(path=target, digest=digest, size=stat.st_size, modified_at=stat.st_mtime)


def file_has_changed(signature: FileSignature | None, path: Path | str | None = None) -> bool:
    """Return ``True`` if the file behind ``signature`` differs from what is on disk.

    A missing signature means the file has never been seen, which counts as a change
    as long as the file exists.
    """

    target = Path(path) if path is not None else (signature.path if signature else None)
    if target is None:
        return False
    try:
        stat = target.stat()
    except FileNotFoundError:
        return signature is not None

    if signature is None:
        return True
    if stat.st_mtime != signature.modified_at or stat.st_size != signature.size:
        return True

    current_digest = hashlib.sha256(target.read_bytes()).hexdigest()
    return current_digest != signature.digest
