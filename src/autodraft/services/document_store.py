"""Async HTTP client for the remote document store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

__all__ = [
    "DocumentNotFoundError",
    "DocumentStoreClient",
    "DocumentStoreError",
    "RateLimitedError",
    "StoreSettings",
]

LOGGER = logging.getLogger(__name__)


class DocumentStoreError(RuntimeError):
    """Raised when the document store answers with a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DocumentNotFoundError(DocumentStoreError):
    """The document addressed by an update no longer exists remotely."""


class RateLimitedError(DocumentStoreError):
    """The backend refused the write because of rate limiting."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


@dataclass(slots=True)
class StoreSettings:
    """Subset of settings required to talk to the document store."""

    base_url: str
    create_path: str = "/api/admin/posts/test"
    update_path: str = "/api/admin/posts/{id}/test"
    api_token: str = ""
    request_timeout: float | None = 15.0
    default_headers: Mapping[str, str] | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "StoreSettings":
        return cls(
            base_url=settings.base_url,
            create_path=settings.create_path,
            update_path=settings.update_path,
            api_token=settings.api_token,
            request_timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers or {}),
        )


class DocumentStoreClient:
    """Creates and updates draft documents over HTTP."""

    def __init__(self, settings: StoreSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    async def create(self, fields: Mapping[str, Any]) -> str:
        """Create a document and return the identity the backend assigned to it."""

        response = await self._client.post(self._settings.create_path, json=dict(fields))
        payload = self._decode(response)
        if response.is_error:
            raise self._error_for(response, payload, default="Create draft failed")
        document_id = _extract_document_id(payload)
        if not document_id:
            raise DocumentStoreError(
                "Create response did not include a document id",
                status_code=response.status_code,
            )
        LOGGER.debug("Created document %s", document_id)
        return document_id

    async def update(self, document_id: str, fields: Mapping[str, Any]) -> None:
        """Overwrite the stored fields of ``document_id``; the backend keeps the identity."""

        if not document_id:
            raise ValueError("document_id is required for updates")
        path = self._settings.update_path.format(id=document_id)
        response = await self._client.patch(path, json=dict(fields))
        if response.is_error:
            raise self._error_for(response, self._decode(response), default="Autosave failed")
        LOGGER.debug("Updated document %s", document_id)

    async def aclose(self) -> None:
        """Close the underlying httpx client when this instance created it."""

        if self._owns_client:
            await self._client.aclose()

    def _build_client(self, settings: StoreSettings) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if settings.default_headers:
            headers.update(settings.default_headers)
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        return httpx.AsyncClient(
            base_url=settings.base_url,
            headers=headers,
            timeout=httpx.Timeout(settings.request_timeout),
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            LOGGER.debug("Document store returned a non-JSON body (status %s)", response.status_code)
            return None

    @staticmethod
    def _error_for(response: httpx.Response, payload: Any, *, default: str) -> DocumentStoreError:
        message = default
        if isinstance(payload, Mapping) and payload.get("error"):
            message = str(payload["error"])
        status = response.status_code
        if status == 404:
            return DocumentNotFoundError(message, status_code=status)
        if status == 429:
            return RateLimitedError(
                message,
                status_code=status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        return DocumentStoreError(message, status_code=status)


def _extract_document_id(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    for key in ("_id", "id"):
        value = payload.get(key)
        if value:
            return str(value)
    nested = payload.get("data")
    if isinstance(nested, Mapping):
        return _extract_document_id(nested)
    return None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
