"""Static role/action permission table consulted before autosave writes."""

from __future__ import annotations

from enum import Enum
from typing import Mapping

__all__ = [
    "Action",
    "Role",
    "UnknownRoleError",
    "can",
    "parse_role",
    "permissions_for",
]


class UnknownRoleError(ValueError):
    """Raised when a role name does not match any known :class:`Role`."""


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"


class Action(str, Enum):
    POST_CREATE = "post:create"
    POST_EDIT = "post:edit"
    POST_PUBLISH = "post:publish"
    POST_DELETE = "post:delete"
    POST_REVIEW = "post:review"
    POST_SCHEDULE = "post:schedule"
    MEDIA_UPLOAD = "media:upload"
    MEDIA_DELETE = "media:delete"


_PERMISSIONS: Mapping[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset(Action),
    Role.EDITOR: frozenset(Action) - {Action.MEDIA_DELETE},
    Role.CONTRIBUTOR: frozenset({Action.POST_CREATE, Action.POST_EDIT, Action.MEDIA_UPLOAD}),
}


def parse_role(value: Role | str) -> Role:
    if isinstance(value, Role):
        return value
    normalized = str(value or "").strip().lower()
    try:
        return Role(normalized)
    except ValueError as exc:
        choices = ", ".join(role.value for role in Role)
        raise UnknownRoleError(f"Unknown role '{value}' (expected one of: {choices})") from exc


def permissions_for(role: Role | str) -> frozenset[Action]:
    try:
        resolved = parse_role(role)
    except UnknownRoleError:
        return frozenset()
    return _PERMISSIONS.get(resolved, frozenset())


def can(role: Role | str, action: Action | str) -> bool:
    """Return ``True`` when ``role`` is allowed to perform ``action``.

    Unknown roles and unknown actions are denied rather than raising.
    """

    try:
        resolved_action = action if isinstance(action, Action) else Action(str(action))
    except ValueError:
        return False
    return resolved_action in permissions_for(role)
