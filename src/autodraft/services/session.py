"""Editing session that feeds snapshots to an :class:`AutosaveController`."""

from __future__ import annotations

import logging
from typing import Any

from ..drafts.snapshot import DraftSnapshot
from .autosave import (
    AutosaveConfig,
    AutosaveController,
    DocumentStore,
    ErrorCallback,
    SavedCallback,
)
from .permissions import Action, Role, can, parse_role
from .resume_store import DEFAULT_RESUME_SLOT, ResumeStore

__all__ = ["DraftSession", "PermissionDeniedError"]

LOGGER = logging.getLogger(__name__)


class PermissionDeniedError(PermissionError):
    """Raised when the session role may not write the draft."""

    def __init__(self, role: Role, action: Action) -> None:
        super().__init__(f"Role '{role.value}' is not allowed to perform '{action.value}'")
        self.role = role
        self.action = action


class DraftSession:
    """Owns the identity bookkeeping the controller expects from its caller.

    The session authorizes every write before it reaches the controller and
    only forwards snapshots that differ from the last one it forwarded.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        role: Role | str = Role.EDITOR,
        identity: str | None = None,
        resume_store: ResumeStore | None = None,
        resume_slot: str = DEFAULT_RESUME_SLOT,
        config: AutosaveConfig | None = None,
        on_saved: SavedCallback | None = None,
        on_error: ErrorCallback | None = None,
        **controller_kwargs: Any,
    ) -> None:
        self._role = parse_role(role)
        self._identity = identity
        self._last_forwarded: DraftSnapshot | None = None
        self._controller = AutosaveController(
            store,
            resume_store=resume_store,
            resume_slot=resume_slot,
            config=config,
            on_saved=on_saved,
            on_error=on_error,
            on_identity_change=self._handle_identity_change,
            **controller_kwargs,
        )

    @property
    def controller(self) -> AutosaveController:
        return self._controller

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def role(self) -> Role:
        return self._role

    def start(self, *, resume: bool = True) -> str | None:
        """Pick up the draft recorded by the resume pointer unless one is already known."""

        if self._identity is None and resume:
            self._identity = self._controller.restore_identity()
        if self._identity:
            LOGGER.info("Editing session attached to draft %s", self._identity)
        return self._identity

    def update(self, snapshot: DraftSnapshot) -> bool:
        """Forward ``snapshot`` to the controller; return ``False`` when it is unchanged."""

        if self._last_forwarded is not None and snapshot == self._last_forwarded:
            return False
        self.authorize()
        self._last_forwarded = snapshot
        self._controller.notify(snapshot, self._identity)
        return True

    async def save_now(self, snapshot: DraftSnapshot | None = None) -> None:
        self.authorize()
        if snapshot is not None:
            self._last_forwarded = snapshot
        await self._controller.save_now(snapshot)

    def authorize(self) -> Action:
        action = Action.POST_CREATE if self._identity is None else Action.POST_EDIT
        if not can(self._role, action):
            raise PermissionDeniedError(self._role, action)
        return action

    async def close(self, *, flush: bool = True) -> None:
        if flush and not self._controller.closed:
            await self._controller.flush()
        await self._controller.aclose()

    def _handle_identity_change(self, identity: str | None) -> None:
        LOGGER.debug("Session identity changed from %s to %s", self._identity, identity)
        self._identity = identity
