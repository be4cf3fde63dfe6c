"""
Room registry client – the backend that maps rooms to cloud anchor ids.

Both calls are single network round-trips without retry; failures surface
as ``AnchorSyncError`` with a network/decode ``FailureKind``.
"""
from __future__ import annotations

from typing import List, Optional
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from core_config import get_settings
from core_http.client import fetch_json
from core_logging import get_logger, log_stage
from core_models import CloudAnchorEntity, UploadCloudAnchorParam

from .errors import AnchorSyncError, FailureKind

logger = get_logger("anchor_sync.registry")

_LIST_ADAPTER = TypeAdapter(List[CloudAnchorEntity])


def _classify(exc: httpx.HTTPError) -> FailureKind:
    if isinstance(exc, httpx.HTTPStatusError):
        return FailureKind.BAD_SERVER_RESPONSE
    return FailureKind.NETWORK_UNREACHABLE


class RoomRegistryClient:
    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._endpoint = (endpoint or settings.registry_base_url).rstrip("/")
        self._client = client
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.timeout_registry_ms

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _room_url(self, room_id: str, leaf: str) -> str:
        return f"{self._endpoint}/room/{quote(str(room_id), safe='')}/CloudAnchor/{leaf}"

    async def list_anchor_identifiers(self, room_id: str) -> List[str]:
        """Return the room's cloud anchor ids (response order, duplicates dropped)."""
        url = self._room_url(room_id, "list")
        try:
            payload = await fetch_json(
                "GET", url,
                client=self._client, stage="registry", timeout_ms=self._timeout_ms,
            )
        except httpx.HTTPError as exc:
            raise AnchorSyncError(_classify(exc), str(exc), room_id=room_id) from exc
        except ValueError as exc:
            raise AnchorSyncError(FailureKind.DECODE_FAILURE, f"malformed JSON: {exc}", room_id=room_id) from exc

        try:
            entities = _LIST_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise AnchorSyncError(
                FailureKind.DECODE_FAILURE,
                f"unexpected list payload ({exc.error_count()} errors)",
                room_id=room_id,
            ) from exc

        ids = list(dict.fromkeys(e.anchor_id for e in entities))
        log_stage(logger, "registry", "registry.listed", room_id=room_id, count=len(ids))
        return ids

    async def register_anchor(self, room_id: str, identifier: str) -> None:
        """Publish a freshly hosted cloud anchor id to the room."""
        url = self._room_url(room_id, "new")
        body = UploadCloudAnchorParam(anchor_id=identifier).wire()
        try:
            await fetch_json(
                "POST", url,
                json=body,
                headers={"Content-Type": "application/json"},
                client=self._client, stage="registry", timeout_ms=self._timeout_ms,
                parse=False,
            )
        except httpx.HTTPError as exc:
            raise AnchorSyncError(_classify(exc), str(exc), room_id=room_id, identifier=identifier) from exc
        log_stage(logger, "registry", "registry.registered", room_id=room_id, identifier=identifier)


__all__ = ["RoomRegistryClient"]
