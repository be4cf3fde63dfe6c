import json

import httpx
import pytest

from anchor_sync import AnchorSyncError, FailureKind, RoomRegistryClient


@pytest.mark.asyncio
async def test_list_returns_ids_in_response_order(registry, registry_stub):
    registry_stub.rooms["lab-3"] = ["a2", "a1", "a2"]

    ids = await registry.list_anchor_identifiers("lab-3")

    assert ids == ["a2", "a1"]
    (req,) = registry_stub.calls("list")
    assert req.method == "GET"
    assert str(req.url) == "http://registry.test/room/lab-3/CloudAnchor/list"


@pytest.mark.asyncio
async def test_list_unknown_room_is_empty(registry):
    assert await registry.list_anchor_identifiers("nobody-here") == []


@pytest.mark.asyncio
async def test_room_id_is_path_escaped(registry, registry_stub):
    await registry.list_anchor_identifiers("a b/c")
    (req,) = registry_stub.requests
    assert req.url.raw_path == b"/room/a%20b%2Fc/CloudAnchor/list"


@pytest.mark.asyncio
async def test_register_posts_anchor_id_body(registry, registry_stub):
    await registry.register_anchor("lab-3", "cloud-xyz")

    (req,) = registry_stub.calls("new")
    assert req.method == "POST"
    assert req.headers["content-type"] == "application/json"
    assert json.loads(req.content) == {"anchorId": "cloud-xyz"}
    assert registry_stub.rooms["lab-3"] == ["cloud-xyz"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 404, 500, 503])
async def test_non_2xx_is_bad_server_response(registry, registry_stub, status):
    registry_stub.fail["list"] = status
    with pytest.raises(AnchorSyncError) as ei:
        await registry.list_anchor_identifiers("lab-3")
    assert ei.value.kind is FailureKind.BAD_SERVER_RESPONSE
    assert ei.value.room_id == "lab-3"


@pytest.mark.asyncio
async def test_transport_error_is_network_unreachable(registry, registry_stub):
    registry_stub.fail["new"] = httpx.ConnectError("connection refused")
    with pytest.raises(AnchorSyncError) as ei:
        await registry.register_anchor("lab-3", "cloud-xyz")
    assert ei.value.kind is FailureKind.NETWORK_UNREACHABLE
    assert ei.value.identifier == "cloud-xyz"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json at all",
        b'{"anchorId": "a1"}',                       # object instead of list
        b'[{"id": "1d8f5f8e-8a5c-4a7e-9d64-7b0c1b9d1e11"}]',  # missing anchorId
        b'[{"anchorId": "a1", "id": "not-a-uuid"}]',
    ],
)
async def test_malformed_listing_is_decode_failure(registry, registry_stub, body):
    registry_stub.fail["list"] = body
    with pytest.raises(AnchorSyncError) as ei:
        await registry.list_anchor_identifiers("lab-3")
    assert ei.value.kind is FailureKind.DECODE_FAILURE


@pytest.mark.asyncio
async def test_extra_listing_fields_are_ignored(registry, registry_stub):
    registry_stub.fail["list"] = (
        b'[{"anchorId": "a1", "id": "1d8f5f8e-8a5c-4a7e-9d64-7b0c1b9d1e11", "createdBy": "x"}]'
    )
    assert await registry.list_anchor_identifiers("lab-3") == ["a1"]


def test_endpoint_defaults_to_settings(monkeypatch):
    monkeypatch.setenv("API_ENDPOINT", "http://backend.example:9000/")
    assert RoomRegistryClient().endpoint == "http://backend.example:9000"
