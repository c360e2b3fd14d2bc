"""Tests for :mod:`autodraft.services.autosave`."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Mapping

import httpx
import pytest

from autodraft.drafts.snapshot import DraftSnapshot
from autodraft.services.autosave import AutosaveConfig, AutosaveController, AutosaveState
from autodraft.services.document_store import (
    DocumentNotFoundError,
    DocumentStoreError,
    RateLimitedError,
)
from autodraft.services.resume_store import InMemoryResumeStore, ResumePointerStore
from autodraft.services.telemetry import InMemoryEventSink

DEBOUNCE = 0.05
SLOT = "draft:new-post"


class _StubStore:
    """Records every call; results are consumed in order, exceptions are raised."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None, dict[str, Any]]] = []
        self.call_times: list[float] = []
        self.log: list[str] = []
        self.create_results: list[Any] = []
        self.update_results: list[Any] = []
        self.block_first = False
        self.release = asyncio.Event()

    async def create(self, fields: Mapping[str, Any]) -> str:
        result = await self._record("create", None, fields, self.create_results, default="doc-1")
        return result

    async def update(self, document_id: str, fields: Mapping[str, Any]) -> None:
        await self._record("update", document_id, fields, self.update_results, default=None)

    async def _record(
        self,
        kind: str,
        document_id: str | None,
        fields: Mapping[str, Any],
        results: list[Any],
        *,
        default: Any,
    ) -> Any:
        self.calls.append((kind, document_id, dict(fields)))
        self.call_times.append(asyncio.get_running_loop().time())
        title = fields.get("title")
        self.log.append(f"start:{title}")
        if self.block_first and len(self.calls) == 1:
            try:
                await self.release.wait()
            except asyncio.CancelledError:
                self.log.append(f"cancel:{title}")
                raise
        result = results.pop(0) if results else default
        if isinstance(result, BaseException):
            raise result
        return result


class _CountingResumeStore(InMemoryResumeStore):
    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        super().__init__(initial)
        self.writes: list[tuple[str, str]] = []
        self.clears: list[str] = []

    def set(self, slot: str, document_id: str) -> None:
        self.writes.append((slot, document_id))
        super().set(slot, document_id)

    def clear(self, slot: str) -> None:
        self.clears.append(slot)
        super().clear(slot)


class _Recorder:
    def __init__(self) -> None:
        self.saved: list[str] = []
        self.errors: list[BaseException] = []
        self.identities: list[str | None] = []

    def on_saved(self, identity: str) -> None:
        self.saved.append(identity)

    def on_error(self, exc: BaseException) -> None:
        self.errors.append(exc)

    def on_identity_change(self, identity: str | None) -> None:
        self.identities.append(identity)


def _build(
    store: _StubStore,
    *,
    resume_store: InMemoryResumeStore | None = None,
    recorder: _Recorder | None = None,
    **config: Any,
) -> tuple[AutosaveController, _Recorder]:
    recorder = recorder or _Recorder()
    controller = AutosaveController(
        store,
        resume_store=resume_store,
        resume_slot=SLOT,
        config=AutosaveConfig(debounce_seconds=DEBOUNCE, **config),
        on_saved=recorder.on_saved,
        on_error=recorder.on_error,
        on_identity_change=recorder.on_identity_change,
    )
    return controller, recorder


def _draft(title: str) -> DraftSnapshot:
    return DraftSnapshot(title=title, body=f"{title} body", tags=("news",))


async def _settle(multiplier: float = 4) -> None:
    await asyncio.sleep(DEBOUNCE * multiplier)


async def _hydrate(controller: AutosaveController, identity: str | None = None) -> None:
    controller.notify(_draft("hydrated"), identity)
    await _settle()


@pytest.mark.asyncio
async def test_first_notify_only_records_hydration() -> None:
    store = _StubStore()
    controller, recorder = _build(store)

    controller.notify(_draft("loaded"), None)
    await _settle()

    assert store.calls == []
    assert controller.pending is False
    assert controller.state is AutosaveState.IDLE
    assert controller.snapshot == _draft("loaded")
    assert recorder.saved == []


@pytest.mark.asyncio
async def test_hydration_latch_applies_only_once() -> None:
    store = _StubStore()
    controller, _ = _build(store)

    controller.notify(_draft("loaded"), None)
    controller.notify(_draft("first edit"), None)
    await _settle()

    assert [call[2]["title"] for call in store.calls] == ["first edit"]


@pytest.mark.asyncio
async def test_initial_suppression_can_be_disabled() -> None:
    store = _StubStore()
    controller, _ = _build(store, suppress_initial=False)

    controller.notify(_draft("first"), None)
    await _settle()

    assert len(store.calls) == 1


@pytest.mark.asyncio
async def test_burst_of_edits_produces_single_write_after_quiet_period() -> None:
    store = _StubStore()
    controller, recorder = _build(store)
    await _hydrate(controller)
    loop = asyncio.get_running_loop()

    for index in range(5):
        controller.notify(_draft(f"edit {index}"), None)
        assert controller.pending is True
        await asyncio.sleep(DEBOUNCE / 5)
    last_notify_at = loop.time()
    controller.notify(_draft("final"), None)
    assert store.calls == []

    await _settle()

    assert len(store.calls) == 1
    kind, document_id, fields = store.calls[0]
    assert kind == "create"
    assert document_id is None
    assert fields["title"] == "final"
    assert store.call_times[0] - last_notify_at >= DEBOUNCE * 0.9
    assert recorder.saved == ["doc-1"]


@pytest.mark.asyncio
async def test_create_sends_backend_fields_with_review_status() -> None:
    store = _StubStore()
    controller, _ = _build(store)
    await _hydrate(controller)

    controller.notify(
        DraftSnapshot(
            title="Launch",
            body="Body",
            tags=("a", "b"),
            categories=("news",),
            featured_image="/media/hero.png",
            content_sections=({"type": "hero", "data": {"heading": "Hi"}},),
        ),
        None,
    )
    await _settle()

    assert store.calls[0][2] == {
        "title": "Launch",
        "body": "Body",
        "tags": ["a", "b"],
        "categories": ["news"],
        "featuredImage": "/media/hero.png",
        "contentSections": [{"type": "hero", "data": {"heading": "Hi"}}],
        "status": "review",
    }


@pytest.mark.asyncio
async def test_create_assigns_identity_and_persists_resume_pointer_once() -> None:
    store = _StubStore()
    store.create_results = ["doc-42"]
    resume = _CountingResumeStore()
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller)

    controller.notify(_draft("new"), None)
    await _settle()

    assert controller.identity == "doc-42"
    assert resume.writes == [(SLOT, "doc-42")]
    assert resume.get(SLOT) == "doc-42"
    assert recorder.identities == ["doc-42"]
    assert recorder.saved == ["doc-42"]
    assert controller.state is AutosaveState.SAVED
    assert controller.last_saved_at is not None


@pytest.mark.asyncio
async def test_update_path_keeps_identity_and_resume_pointer() -> None:
    store = _StubStore()
    resume = _CountingResumeStore({SLOT: "doc-9"})
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller, "doc-9")

    controller.notify(_draft("edited"), "doc-9")
    await _settle()

    assert [(kind, document_id) for kind, document_id, _ in store.calls] == [("update", "doc-9")]
    assert controller.identity == "doc-9"
    assert resume.writes == []
    assert recorder.saved == ["doc-9"]
    assert recorder.identities == []


@pytest.mark.asyncio
async def test_not_found_on_update_resets_identity_without_error() -> None:
    store = _StubStore()
    store.update_results = [DocumentNotFoundError("Post not found", status_code=404)]
    store.create_results = ["doc-new"]
    resume = _CountingResumeStore({SLOT: "doc-gone"})
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller, "doc-gone")

    controller.notify(_draft("edit"), "doc-gone")
    await _settle()

    assert controller.identity is None
    assert resume.get(SLOT) is None
    assert resume.clears == [SLOT]
    assert recorder.errors == []
    assert recorder.saved == []
    assert recorder.identities == [None]

    controller.notify(_draft("edit again"), None)
    await _settle()

    assert [kind for kind, _, _ in store.calls] == ["update", "create"]
    assert controller.identity == "doc-new"
    assert resume.get(SLOT) == "doc-new"


@pytest.mark.asyncio
async def test_not_found_on_create_is_a_hard_failure() -> None:
    store = _StubStore()
    failure = DocumentNotFoundError("No such collection", status_code=404)
    store.create_results = [failure]
    resume = _CountingResumeStore()
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller)

    controller.notify(_draft("edit"), None)
    await _settle()

    assert recorder.errors == [failure]
    assert resume.clears == []


@pytest.mark.asyncio
@pytest.mark.parametrize("identity", [None, "doc-7"])
async def test_rate_limited_attempt_is_skipped_silently(identity: str | None) -> None:
    store = _StubStore()
    limited = RateLimitedError("Too many requests", retry_after=3)
    store.create_results = [limited]
    store.update_results = [limited]
    initial = {SLOT: identity} if identity else {}
    resume = _CountingResumeStore(initial)
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller, identity)

    controller.notify(_draft("edit"), identity)
    await _settle()

    assert len(store.calls) == 1
    assert controller.identity == identity
    assert resume.load() == initial
    assert resume.writes == [] and resume.clears == []
    assert recorder.saved == [] and recorder.errors == [] and recorder.identities == []
    assert controller.state is AutosaveState.SKIPPED


@pytest.mark.asyncio
async def test_rate_limited_attempt_is_not_retried_without_new_edits() -> None:
    store = _StubStore()
    store.update_results = [RateLimitedError("slow down")]
    controller, _ = _build(store)
    await _hydrate(controller, "doc-1")

    controller.notify(_draft("edit"), "doc-1")
    await _settle(8)

    assert len(store.calls) == 1
    assert controller.pending is False


@pytest.mark.asyncio
async def test_network_error_on_create_is_reported_and_next_cycle_retries() -> None:
    store = _StubStore()
    refused = httpx.ConnectError("Connection refused")
    store.create_results = [refused, "doc-2"]
    resume = _CountingResumeStore()
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller)

    controller.notify(_draft("edit"), None)
    await _settle()

    assert recorder.errors == [refused]
    assert controller.identity is None
    assert controller.state is AutosaveState.FAILED
    assert controller.last_error is refused
    assert resume.writes == []

    controller.notify(_draft("edit 2"), None)
    await _settle()

    assert [kind for kind, _, _ in store.calls] == ["create", "create"]
    assert controller.identity == "doc-2"
    assert controller.last_error is None
    assert recorder.saved == ["doc-2"]


@pytest.mark.asyncio
async def test_server_error_on_update_keeps_identity() -> None:
    store = _StubStore()
    failure = DocumentStoreError("Autosave failed", status_code=500)
    store.update_results = [failure]
    resume = _CountingResumeStore({SLOT: "doc-3"})
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller, "doc-3")

    controller.notify(_draft("edit"), "doc-3")
    await _settle()

    assert recorder.errors == [failure]
    assert controller.identity == "doc-3"
    assert resume.get(SLOT) == "doc-3"


@pytest.mark.asyncio
async def test_unexpected_exception_is_reported_as_failure() -> None:
    store = _StubStore()
    store.create_results = [KeyError("boom")]
    controller, recorder = _build(store)
    await _hydrate(controller)

    controller.notify(_draft("edit"), None)
    await _settle()

    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], KeyError)


@pytest.mark.asyncio
async def test_new_attempt_cancels_in_flight_attempt_before_starting() -> None:
    store = _StubStore()
    store.block_first = True
    store.create_results = ["doc-second"]
    resume = _CountingResumeStore()
    controller, recorder = _build(store, resume_store=resume)
    await _hydrate(controller)

    controller.notify(_draft("A"), None)
    await _settle(2)
    assert controller.saving is True
    assert store.log == ["start:A"]

    controller.notify(_draft("B"), None)
    await _settle()

    assert store.log == ["start:A", "cancel:A", "start:B"]
    assert controller.identity == "doc-second"
    assert resume.writes == [(SLOT, "doc-second")]
    assert recorder.saved == ["doc-second"]
    assert recorder.errors == []
    assert controller.saving is False


@pytest.mark.asyncio
async def test_cancelled_attempt_emits_no_callbacks() -> None:
    store = _StubStore()
    store.block_first = True
    controller, recorder = _build(store)
    await _hydrate(controller)
    sink = InMemoryEventSink("autosave.cancelled", "autosave.saved")
    try:
        controller.notify(_draft("A"), None)
        await _settle(2)
        controller.notify(_draft("B"), None)
        await _settle()
    finally:
        sink.close()

    assert sink.names() == ["autosave.cancelled", "autosave.saved"]
    assert recorder.saved == ["doc-1"]
    assert recorder.identities == ["doc-1"]


@pytest.mark.asyncio
async def test_aclose_cancels_pending_timer() -> None:
    store = _StubStore()
    controller, recorder = _build(store)
    await _hydrate(controller)

    controller.notify(_draft("edit"), None)
    await controller.aclose()
    await _settle()

    assert store.calls == []
    assert controller.pending is False
    assert controller.closed is True
    assert recorder.saved == []


@pytest.mark.asyncio
async def test_aclose_aborts_in_flight_attempt_and_silences_callbacks() -> None:
    store = _StubStore()
    store.block_first = True
    controller, recorder = _build(store)
    await _hydrate(controller)

    controller.notify(_draft("A"), None)
    await _settle(2)
    await controller.aclose()

    assert store.log == ["start:A", "cancel:A"]
    controller.notify(_draft("after close"), None)
    await _settle()

    assert len(store.calls) == 1
    assert recorder.saved == [] and recorder.errors == []


@pytest.mark.asyncio
async def test_flush_fires_armed_timer_immediately() -> None:
    store = _StubStore()
    controller = AutosaveController(store, config=AutosaveConfig(debounce_seconds=10.0))
    controller.notify(_draft("hydrated"), None)
    controller.notify(_draft("edit"), None)

    await controller.flush()

    assert [call[2]["title"] for call in store.calls] == ["edit"]
    assert controller.pending is False
    assert controller.identity == "doc-1"


@pytest.mark.asyncio
async def test_flush_without_pending_work_is_a_noop() -> None:
    store = _StubStore()
    controller, _ = _build(store)

    await controller.flush()

    assert store.calls == []


@pytest.mark.asyncio
async def test_save_now_bypasses_debounce_and_hydration_latch() -> None:
    store = _StubStore()
    controller, recorder = _build(store)

    await controller.save_now(_draft("explicit"))

    assert [call[2]["title"] for call in store.calls] == ["explicit"]
    assert recorder.saved == ["doc-1"]


@pytest.mark.asyncio
async def test_save_now_after_close_raises() -> None:
    controller, _ = _build(_StubStore())
    await controller.aclose()

    with pytest.raises(RuntimeError):
        await controller.save_now(_draft("late"))


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited() -> None:
    store = _StubStore()
    saved: list[str] = []

    async def on_saved(identity: str) -> None:
        await asyncio.sleep(0)
        saved.append(identity)

    controller = AutosaveController(store, on_saved=on_saved)
    await controller.save_now(_draft("edit"))

    assert saved == ["doc-1"]


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_the_controller() -> None:
    store = _StubStore()
    store.create_results = ["doc-1"]

    def on_saved(identity: str) -> None:
        raise RuntimeError("listener exploded")

    controller = AutosaveController(store, on_saved=on_saved)
    await controller.save_now(_draft("one"))
    await controller.save_now(_draft("two"))

    assert [kind for kind, _, _ in store.calls] == ["create", "update"]
    assert controller.identity == "doc-1"


def test_restore_identity_adopts_resume_pointer() -> None:
    resume = InMemoryResumeStore({SLOT: "doc-resumed"})
    controller, _ = _build(_StubStore(), resume_store=resume)

    assert controller.restore_identity() == "doc-resumed"
    assert controller.identity == "doc-resumed"


def test_restore_identity_without_pointer_keeps_none() -> None:
    controller, _ = _build(_StubStore(), resume_store=InMemoryResumeStore())

    assert controller.restore_identity() is None


def test_controller_requires_store() -> None:
    with pytest.raises(ValueError):
        AutosaveController(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_undecodable_resume_file_does_not_swallow_saved_callback(tmp_path: Path) -> None:
    path = tmp_path / "resume.json"
    path.write_bytes(b"\xff\xfe\x00garbage")
    resume = ResumePointerStore(path)
    store = _StubStore()
    store.create_results = ["doc-9"]
    controller, recorder = _build(store, resume_store=resume)  # type: ignore[arg-type]

    assert controller.restore_identity() is None
    controller.notify(_draft("hydrated"), None)
    controller.notify(_draft("edit"), None)
    await controller.flush()

    assert controller.identity == "doc-9"
    assert recorder.saved == ["doc-9"]
    assert recorder.errors == []
    assert resume.get(SLOT) == "doc-9"


class _RejectingResumeStore(InMemoryResumeStore):
    def set(self, slot: str, document_id: str) -> None:
        raise ValueError("resume pointer rejected")

    def clear(self, slot: str) -> None:
        raise ValueError("resume pointer rejected")


@pytest.mark.asyncio
async def test_resume_store_errors_do_not_break_callbacks() -> None:
    store = _StubStore()
    store.update_results = [DocumentNotFoundError("gone", status_code=404)]
    controller, recorder = _build(store, resume_store=_RejectingResumeStore())

    await controller.save_now(_draft("created"))
    await controller.save_now(_draft("edited"))

    assert recorder.saved == ["doc-1"]
    assert recorder.identities == ["doc-1", None]
    assert recorder.errors == []
    assert controller.identity is None


class _ClosingStore(_StubStore):
    controller: AutosaveController | None = None

    async def create(self, fields: Mapping[str, Any]) -> str:
        assert self.controller is not None
        self.controller.dispose()
        return "doc-late"


@pytest.mark.asyncio
async def test_create_completing_after_close_still_persists_resume_pointer() -> None:
    store = _ClosingStore()
    resume = _CountingResumeStore()
    controller, recorder = _build(store, resume_store=resume)
    store.controller = controller

    await controller.save_now(_draft("racing close"))

    assert resume.writes == [(SLOT, "doc-late")]
    assert controller.identity == "doc-late"
    assert recorder.saved == [] and recorder.identities == [] and recorder.errors == []
