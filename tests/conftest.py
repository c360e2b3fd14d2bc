"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("AUTODRAFT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AUTODRAFT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def sample_draft() -> dict[str, Any]:
    return {
        "title": "Hello",
        "body": "First paragraph",
        "tags": ["intro"],
        "categories": ["news"],
        "featuredImage": "/uploads/cover.png",
        "contentSections": [{"type": "text", "data": {"html": "<p>Hi</p>"}}],
    }
