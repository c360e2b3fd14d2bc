"""Immutable value objects describing the editable fields of a draft."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

__all__ = ["AUTOSAVE_STATUS", "ContentSection", "DraftSnapshot"]

#: Status marker sent with every autosave: the draft is kept under review, never published.
AUTOSAVE_STATUS = "review"

_FIELD_ALIASES: Mapping[str, tuple[str, ...]] = {
    "title": ("title",),
    "body": ("body",),
    "tags": ("tags",),
    "categories": ("categories",),
    "featured_image": ("featuredImage", "featured_image"),
    "content_sections": ("contentSections", "content_sections"),
}


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _string_tuple(values: Any) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, Iterable):
        raise TypeError("Expected a list of strings")
    return tuple(str(item) for item in values)


@dataclass(slots=True, frozen=True)
class ContentSection:
    """One structured block of the document (hero, gallery, text, ...)."""

    type: str
    data: Mapping[str, Any] = field(default_factory=dict)
    id: str | None = None

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("Content sections require a type")
        object.__setattr__(self, "data", _freeze(dict(self.data or {})))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ContentSection":
        if not isinstance(payload, Mapping):
            raise TypeError("Content sections must be objects")
        section_id = payload.get("id")
        return cls(
            type=str(payload.get("type") or ""),
            data=payload.get("data") or {},
            id=str(section_id) if section_id is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "data": _thaw(self.data)}
        if self.id is not None:
            payload["id"] = self.id
        return payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContentSection):
            return NotImplemented
        return self.to_payload() == other.to_payload()

    def __hash__(self) -> int:
        return hash(json.dumps(self.to_payload(), sort_keys=True, default=str))


@dataclass(slots=True, frozen=True)
class DraftSnapshot:
    """The editable fields of a document at one point in time.

    Snapshots are produced by the editing surface on every change and are
    never mutated afterwards; the autosave controller only forwards them.
    """

    title: str = ""
    body: str = ""
    tags: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    featured_image: str = ""
    content_sections: tuple[ContentSection, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", _string_tuple(self.tags))
        object.__setattr__(self, "categories", _string_tuple(self.categories))
        sections = tuple(
            section if isinstance(section, ContentSection) else ContentSection.from_mapping(section)
            for section in (self.content_sections or ())
        )
        object.__setattr__(self, "content_sections", sections)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "DraftSnapshot":
        """Build a snapshot from an editor/form payload.

        Both camelCase (``featuredImage``) and snake_case keys are accepted;
        fields the backend does not store (slug, SEO metadata, ...) are ignored.
        """

        if not isinstance(payload, Mapping):
            raise TypeError("Draft payload must be a mapping")
        values: Dict[str, Any] = {}
        for field_name, aliases in _FIELD_ALIASES.items():
            for alias in aliases:
                value = payload.get(alias)
                if value is not None:
                    values[field_name] = value
                    break
        for text_field in ("title", "body", "featured_image"):
            if text_field in values:
                values[text_field] = str(values[text_field])
        return cls(**values)

    def to_payload(self, status: str = AUTOSAVE_STATUS) -> Dict[str, Any]:
        """Return the field subset the document store accepts on create/update."""

        return {
            "title": self.title or "",
            "body": self.body or "",
            "tags": list(self.tags),
            "categories": list(self.categories),
            "featuredImage": self.featured_image or "",
            "contentSections": [section.to_payload() for section in self.content_sections],
            "status": status,
        }

    def digest(self) -> str:
        body = json.dumps(self.to_payload(), sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.sha256(body.encode("utf-8")).hexdigest()

    @property
    def is_empty(self) -> bool:
        return not (
            self.title
            or self.body
            or self.tags
            or self.categories
            or self.featured_image
            or self.content_sections
        )
