"""Service layer helpers (autosave controller, document store, settings, etc.)."""

from .autosave import AutosaveConfig, AutosaveController, AutosaveState
from .document_store import (
    DocumentNotFoundError,
    DocumentStoreClient,
    DocumentStoreError,
    RateLimitedError,
    StoreSettings,
)
from .resume_store import InMemoryResumeStore, ResumePointerStore
from .session import DraftSession, PermissionDeniedError

__all__ = [
    "AutosaveConfig",
    "AutosaveController",
    "AutosaveState",
    "DocumentNotFoundError",
    "DocumentStoreClient",
    "DocumentStoreError",
    "DraftSession",
    "InMemoryResumeStore",
    "PermissionDeniedError",
    "RateLimitedError",
    "ResumePointerStore",
    "StoreSettings",
]
