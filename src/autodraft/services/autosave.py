"""Debounced autosave of an in-memory draft to the remote document store.

The controller owns one debounce timer, at most one in-flight save attempt,
the current draft identity and the durable resume pointer for its slot. A
burst of :meth:`AutosaveController.notify` calls produces a single write once
the edits pause for ``debounce_seconds``; a newer write always cancels the
previous one and waits for it to settle before it starts, so an older
response can never overwrite a newer one.

Outcomes are classified as follows:

* success: identity confirmed (and persisted on create), ``on_saved`` fires;
* not found on update: identity and resume pointer are reset, the next cycle
  creates a fresh draft, no ``on_error``;
* rate limited: the attempt is dropped silently and the next edit retries;
* cancelled: ignored entirely;
* anything else: ``on_error`` fires and identity is left untouched.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Protocol

import httpx

from ..drafts.snapshot import AUTOSAVE_STATUS, DraftSnapshot
from .document_store import DocumentNotFoundError, DocumentStoreError, RateLimitedError
from .resume_store import DEFAULT_RESUME_SLOT, ResumeStore
from .telemetry import emit

__all__ = ["AutosaveConfig", "AutosaveController", "AutosaveState", "DocumentStore"]

LOGGER = logging.getLogger(__name__)

SavedCallback = Callable[[str], Awaitable[None] | None]
ErrorCallback = Callable[[BaseException], Awaitable[None] | None]
IdentityCallback = Callable[[str | None], Awaitable[None] | None]

_EXPECTED_FAILURES: tuple[type[BaseException], ...] = (DocumentStoreError, httpx.HTTPError)


class DocumentStore(Protocol):
    """Create/update operations the controller needs from the remote store."""

    async def create(self, fields: Mapping[str, Any]) -> str:  # pragma: no cover - protocol stub
        ...

    async def update(self, document_id: str, fields: Mapping[str, Any]) -> None:  # pragma: no cover - protocol stub
        ...


class AutosaveState(str, Enum):
    """Outcome of the most recent scheduling or save step."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    SAVING = "saving"
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class AutosaveConfig:
    """Tunable parameters for the autosave controller."""

    debounce_seconds: float = 1.0
    suppress_initial: bool = True


@dataclass(slots=True)
class _SaveAttempt:
    sequence: int
    snapshot: DraftSnapshot
    task: asyncio.Task[None] | None = None
    identity: str | None = None


class AutosaveController:
    """Keeps a remote draft in sync with the latest local snapshot."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        resume_store: ResumeStore | None = None,
        resume_slot: str = DEFAULT_RESUME_SLOT,
        config: AutosaveConfig | None = None,
        on_saved: SavedCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_identity_change: IdentityCallback | None = None,
        status: str = AUTOSAVE_STATUS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if store is None:
            raise ValueError("store is required")
        self._store = store
        self._resume_store = resume_store
        self._resume_slot = resume_slot
        self._config = config or AutosaveConfig()
        self._on_saved = on_saved
        self._on_error = on_error
        self._on_identity_change = on_identity_change
        self._status = status
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self._attempt: _SaveAttempt | None = None
        self._snapshot: DraftSnapshot | None = None
        self._identity: str | None = None
        self._hydrated = not self._config.suppress_initial
        self._closed = False
        self._sequence = 0
        self._state = AutosaveState.IDLE
        self._last_saved_at: datetime | None = None
        self._last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def snapshot(self) -> DraftSnapshot | None:
        return self._snapshot

    @property
    def state(self) -> AutosaveState:
        return self._state

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def saving(self) -> bool:
        attempt = self._attempt
        return attempt is not None and attempt.task is not None and not attempt.task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_saved_at(self) -> datetime | None:
        return self._last_saved_at

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    def restore_identity(self) -> str | None:
        """Adopt the identity recorded by the resume pointer, if there is one."""

        if self._resume_store is None:
            return self._identity
        stored = self._resume_store.get(self._resume_slot)
        if stored:
            LOGGER.info("Resuming draft %s from slot %s", stored, self._resume_slot)
            self._identity = stored
        return self._identity

    def notify(self, snapshot: DraftSnapshot, identity: str | None) -> None:
        """Record the latest snapshot and (re)arm the debounce timer.

        Must be called from the event loop thread. The first call after
        construction only records the hydrated state and arms nothing.
        """

        if self._closed:
            LOGGER.debug("Ignoring notify on a closed autosave controller")
            return
        self._snapshot = snapshot
        self._identity = identity
        if not self._hydrated:
            self._hydrated = True
            LOGGER.debug("Initial snapshot recorded without scheduling a save")
            return
        loop = self._resolve_loop()
        self._cancel_timer()
        self._timer = loop.call_later(max(0.0, self._config.debounce_seconds), self._fire)
        self._state = AutosaveState.SCHEDULED

    async def save_now(self, snapshot: DraftSnapshot | None = None) -> None:
        """Skip the debounce window and save immediately, waiting for the outcome."""

        if self._closed:
            raise RuntimeError("Autosave controller is closed")
        if snapshot is not None:
            self._snapshot = snapshot
        if self._snapshot is None:
            return
        self._resolve_loop()
        self._cancel_timer()
        await self._wait_for(self._start_attempt())

    async def flush(self) -> None:
        """Fire an armed timer right away and wait until no attempt is in flight."""

        if self._timer is not None and not self._closed:
            self._cancel_timer()
            self._start_attempt()
        attempt = self._attempt
        if attempt is not None:
            await self._wait_for(attempt)

    def dispose(self) -> None:
        """Cancel the timer and abort the in-flight attempt without waiting."""

        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        attempt = self._attempt
        if attempt is not None and attempt.task is not None and not attempt.task.done():
            attempt.task.cancel()
        LOGGER.debug("Autosave controller disposed")

    async def aclose(self) -> None:
        """Dispose the controller and wait for the aborted attempt to unwind."""

        attempt = self._attempt
        self.dispose()
        self._attempt = None
        if attempt is not None:
            await self._wait_for(attempt)

    # ------------------------------------------------------------------
    # Timer and attempt lifecycle
    # ------------------------------------------------------------------
    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if self._closed or self._snapshot is None:
            return
        self._start_attempt()

    def _start_attempt(self) -> _SaveAttempt:
        previous = self._attempt
        if previous is not None and previous.task is not None and not previous.task.done():
            previous.task.cancel()
            LOGGER.debug("Cancelling superseded autosave attempt #%s", previous.sequence)
        snapshot = self._snapshot
        if snapshot is None:
            raise RuntimeError("No snapshot has been recorded yet")
        self._sequence += 1
        attempt = _SaveAttempt(sequence=self._sequence, snapshot=snapshot)
        attempt.task = self._resolve_loop().create_task(self._run_attempt(attempt, previous))
        self._attempt = attempt
        return attempt

    @staticmethod
    async def _wait_for(attempt: _SaveAttempt) -> None:
        task = attempt.task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    async def _run_attempt(self, attempt: _SaveAttempt, previous: _SaveAttempt | None) -> None:
        try:
            if previous is not None:
                # The superseded write has to settle before this one starts.
                await self._wait_for(previous)
            await self._save(attempt)
        finally:
            if self._attempt is attempt:
                self._attempt = None

    async def _save(self, attempt: _SaveAttempt) -> None:
        identity = self._identity
        attempt.identity = identity
        fields = attempt.snapshot.to_payload(self._status)
        self._state = AutosaveState.SAVING
        try:
            if identity is None:
                saved_identity = await self._store.create(fields)
            else:
                await self._store.update(identity, fields)
                saved_identity = identity
        except asyncio.CancelledError:
            LOGGER.debug("Autosave attempt #%s cancelled", attempt.sequence)
            emit("autosave.cancelled", {"sequence": attempt.sequence, "document_id": identity})
            raise
        except DocumentNotFoundError as exc:
            if identity is None:
                await self._handle_failure(attempt, exc)
            else:
                await self._reset_identity(attempt, identity)
            return
        except RateLimitedError as exc:
            self._state = AutosaveState.SKIPPED
            LOGGER.info(
                "Autosave rate limited; skipping attempt #%s (retry after %s)",
                attempt.sequence,
                exc.retry_after,
            )
            emit(
                "autosave.skipped",
                {"sequence": attempt.sequence, "document_id": identity, "retry_after": exc.retry_after},
            )
            return
        except Exception as exc:
            await self._handle_failure(attempt, exc)
            return

        if identity is None:
            # A created id is persisted whether or not the controller has closed.
            self._identity = saved_identity
            self._persist_resume_pointer(saved_identity)
        if self._closed:
            LOGGER.debug(
                "Autosave attempt #%s stored document %s after close; callbacks suppressed",
                attempt.sequence,
                saved_identity,
            )
            return
        self._state = AutosaveState.SAVED
        self._last_saved_at = datetime.now(timezone.utc)
        self._last_error = None
        LOGGER.debug("Autosave attempt #%s stored document %s", attempt.sequence, saved_identity)
        emit(
            "autosave.saved",
            {
                "sequence": attempt.sequence,
                "document_id": saved_identity,
                "created": identity is None,
            },
        )
        if identity is None:
            await self._invoke(self._on_identity_change, saved_identity)
        await self._invoke(self._on_saved, saved_identity)

    async def _reset_identity(self, attempt: _SaveAttempt, stale_identity: str) -> None:
        if self._closed:
            return
        LOGGER.info(
            "Document %s no longer exists; the next autosave will create a new draft",
            stale_identity,
        )
        if self._identity == stale_identity:
            self._identity = None
        self._clear_resume_pointer()
        self._state = AutosaveState.IDLE
        emit("autosave.identity_reset", {"sequence": attempt.sequence, "document_id": stale_identity})
        await self._invoke(self._on_identity_change, None)

    async def _handle_failure(self, attempt: _SaveAttempt, exc: BaseException) -> None:
        if self._closed:
            return
        self._state = AutosaveState.FAILED
        self._last_error = exc
        LOGGER.warning(
            "Autosave attempt #%s failed: %s",
            attempt.sequence,
            exc,
            exc_info=not isinstance(exc, _EXPECTED_FAILURES),
        )
        emit(
            "autosave.failed",
            {
                "sequence": attempt.sequence,
                "document_id": attempt.identity,
                "error": type(exc).__name__,
                "status_code": getattr(exc, "status_code", None),
            },
        )
        await self._invoke(self._on_error, exc)

    # ------------------------------------------------------------------
    # Resume pointer and callbacks
    # ------------------------------------------------------------------
    def _persist_resume_pointer(self, identity: str) -> None:
        if self._resume_store is None:
            return
        try:
            self._resume_store.set(self._resume_slot, identity)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to persist resume pointer for %s: %s", identity, exc)

    def _clear_resume_pointer(self) -> None:
        if self._resume_store is None:
            return
        try:
            self._resume_store.clear(self._resume_slot)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to clear resume pointer %s: %s", self._resume_slot, exc)

    async def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None or self._closed:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("Autosave callback %r failed", callback)
