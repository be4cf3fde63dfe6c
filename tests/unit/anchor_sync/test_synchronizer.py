import asyncio
import io
import json
import threading
from contextlib import redirect_stdout

import pytest

from anchor_sync import (
    AnchorSynchronizer,
    CloudAnchorProvider,
    CloudAnchorState,
    InMemoryTrackingSession,
    RequestState,
    RoomMembershipSource,
    RoomRegistryClient,
)
from core_models import Room
from tests.helpers.anchors import P1, P2, P3, wait_until
from tests.helpers.fake_sdk import FakeCloudAnchorSdk

LAB = Room(id="lab-3", name="Lab 3")
HALL = Room(id="hall", name="Hall")


def _failure_kinds(journal):
    return [e.content["kind"] for e in journal.failures()]


# --------------------------------------------------------------------------- #
# Pull → resolve                                                              #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_join_room_resolves_then_frame_update_supersedes(synchronizer, sdk, session, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1", "a2"]

    synchronizer.on_room_changed(LAB)
    await wait_until(lambda: len(sdk.resolve_calls) == 2)
    assert sdk.resolved_identifiers() == ["a1", "a2"]

    sdk.complete_resolve_from_thread("a1", P1)
    await wait_until(lambda: "a1" in synchronizer.resolved_anchors)
    first = synchronizer.resolved_anchors["a1"]
    assert first.pose == P1
    assert first.tag == "placed-object"
    assert len(session) == 1

    sdk.frame = [("a1", P2)]
    assert synchronizer.process_frame() == 1

    second = synchronizer.resolved_anchors["a1"]
    assert second.pose == P2
    assert second.handle != first.handle
    assert first not in session and second in session
    assert len(session) == 1
    # old representation leaves the session before the new one arrives
    assert session.operations[-2:] == [("remove", first.handle), ("add", second.handle)]


@pytest.mark.asyncio
async def test_repeated_results_keep_one_anchor_per_identifier(synchronizer, sdk, session, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")

    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()
    for pose in (P1, P1, P3):
        synchronizer.apply_frame_updates([("a1", pose)])

    assert list(synchronizer.resolved_anchors) == ["a1"]
    assert len(session) == 1
    assert session.anchors[0].pose == P3


@pytest.mark.asyncio
async def test_resolve_failure_is_journaled_and_table_untouched(synchronizer, sdk, session, registry_stub, journal):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (None, "error_cloud_id_not_found")

    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    assert synchronizer.resolved_anchors == {}
    assert len(session) == 0
    (crumb,) = journal.failures()
    assert crumb.content["kind"] == "ProviderIdentifierNotFound"
    assert crumb.content["room_id"] == "lab-3"
    assert crumb.content["identifier"] == "a1"
    assert crumb.label == "resolve"


@pytest.mark.asyncio
async def test_frame_updates_for_unrequested_identifiers_are_ignored(synchronizer, sdk, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    assert synchronizer.apply_frame_updates([("stranger", P2)]) == 0
    assert list(synchronizer.resolved_anchors) == ["a1"]


@pytest.mark.asyncio
async def test_frame_updates_can_arrive_from_another_thread(synchronizer, sdk, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    th = threading.Thread(target=synchronizer.submit_frame_updates_threadsafe, args=([("a1", P2)],))
    th.start()
    th.join()

    await wait_until(lambda: synchronizer.resolved_anchors["a1"].pose == P2)


@pytest.mark.asyncio
async def test_registry_failure_leaves_table_unchanged(synchronizer, sdk, session, registry_stub, journal):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()
    before = dict(synchronizer.resolved_anchors)

    registry_stub.fail["list"] = 500
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    assert synchronizer.resolved_anchors == before
    assert len(session) == 1
    assert _failure_kinds(journal) == ["BadServerResponse"]


@pytest.mark.asyncio
async def test_same_room_resync_skips_already_resolved(synchronizer, sdk, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    registry_stub.rooms["lab-3"].append("a2")
    sdk.auto_resolve["a2"] = (P2, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    assert sdk.resolved_identifiers() == ["a1", "a2"]
    assert set(synchronizer.resolved_anchors) == {"a1", "a2"}


# --------------------------------------------------------------------------- #
# Room isolation                                                              #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_switching_rooms_clears_previous_room_anchors(synchronizer, sdk, session, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()
    old = synchronizer.resolved_anchors["a1"]

    synchronizer.on_room_changed(HALL)
    await synchronizer.drain()

    assert synchronizer.resolved_anchors == {}
    assert old not in session
    # the old room's identifiers no longer accept frame updates
    assert synchronizer.apply_frame_updates([("a1", P2)]) == 0
    assert len(session) == 0


@pytest.mark.asyncio
async def test_resolve_completing_after_room_switch_is_discarded(synchronizer, sdk, session, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    synchronizer.on_room_changed(LAB)
    await wait_until(lambda: sdk.resolve_calls)
    (request,) = synchronizer.resolve_requests

    synchronizer.on_room_changed(HALL)
    await wait_until(lambda: len(registry_stub.calls("list")) == 2)
    sdk.complete_resolve_from_thread("a1", P1)
    await synchronizer.drain()

    assert request.state is RequestState.DISCARDED
    assert synchronizer.resolved_anchors == {}
    assert len(session) == 0


@pytest.mark.asyncio
async def test_resolve_spanning_leave_and_return_keeps_frame_tracking(synchronizer, sdk, session, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    synchronizer.on_room_changed(LAB)
    await wait_until(lambda: sdk.resolve_calls)

    synchronizer.on_room_changed(HALL)
    synchronizer.on_room_changed(LAB)
    await wait_until(lambda: len(registry_stub.calls("list")) == 3)
    # the return visit finds a1 still in flight and does not ask again
    assert sdk.resolved_identifiers() == ["a1"]

    sdk.complete_resolve_from_thread("a1", P1)
    await synchronizer.drain()
    assert synchronizer.resolved_anchors["a1"].pose == P1

    assert synchronizer.apply_frame_updates([("a1", P2)]) == 1
    assert synchronizer.resolved_anchors["a1"].pose == P2
    assert len(session) == 1


@pytest.mark.asyncio
async def test_listing_for_a_room_already_left_issues_no_resolves(synchronizer, sdk, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    registry_stub.rooms["hall"] = ["b1"]
    sdk.auto_resolve["b1"] = (P1, "success")

    synchronizer.on_room_changed(LAB)
    synchronizer.on_room_changed(HALL)
    await synchronizer.drain()

    assert sdk.resolved_identifiers() == ["b1"]
    assert list(synchronizer.resolved_anchors) == ["b1"]


# --------------------------------------------------------------------------- #
# Place → host → upload                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_place_hosts_and_uploads_to_current_room(synchronizer, sdk, session, registry_stub):
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    synchronizer.place_anchor(P1)
    assert len(session) == 1                         # placed before hosting completes
    await wait_until(lambda: sdk.host_calls)
    (request,) = synchronizer.host_requests
    assert sdk.host_calls[0].ttl_days == 1

    sdk.complete_host_from_thread(0, "cloud-9")
    await synchronizer.drain()

    assert request.state is RequestState.SUCCEEDED
    assert request.identifier == "cloud-9"
    (upload,) = registry_stub.calls("new")
    assert upload.url.path == "/room/lab-3/CloudAnchor/new"
    assert json.loads(upload.content) == {"anchorId": "cloud-9"}
    assert len(session) == 1


@pytest.mark.asyncio
async def test_own_hosted_anchor_is_not_resolved_again(synchronizer, sdk, session, registry_stub):
    synchronizer.on_room_changed(LAB)
    synchronizer.place_anchor(P1)
    await wait_until(lambda: sdk.host_calls)
    sdk.complete_host(0, "cloud-9")
    await synchronizer.drain()

    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    assert sdk.resolve_calls == []
    assert len(session) == 1


@pytest.mark.asyncio
async def test_anchor_hosted_in_one_room_is_resolved_in_another(synchronizer, sdk, session, registry_stub):
    synchronizer.on_room_changed(LAB)
    synchronizer.place_anchor(P1)
    await wait_until(lambda: sdk.host_calls)
    sdk.complete_host(0, "cloud-9")
    await synchronizer.drain()

    # the same cloud id is also listed for the hall
    registry_stub.rooms["hall"] = ["cloud-9"]
    sdk.auto_resolve["cloud-9"] = (P2, "success")
    synchronizer.on_room_changed(HALL)
    await synchronizer.drain()

    assert sdk.resolved_identifiers() == ["cloud-9"]
    assert synchronizer.resolved_anchors["cloud-9"].pose == P2
    assert len(session) == 2


@pytest.mark.asyncio
async def test_host_failure_keeps_local_anchor_and_skips_upload(synchronizer, sdk, session, registry_stub, journal):
    synchronizer.on_room_changed(LAB)
    synchronizer.place_anchor(P1)
    await wait_until(lambda: sdk.host_calls)
    (request,) = synchronizer.host_requests

    sdk.complete_host(0, None, CloudAnchorState.ERROR_HOSTING_SERVICE_UNAVAILABLE)
    await synchronizer.drain()

    assert request.state is RequestState.FAILED
    assert len(session) == 1
    assert registry_stub.calls("new") == []
    assert _failure_kinds(journal) == ["ProviderServiceUnavailable"]


@pytest.mark.asyncio
async def test_host_success_without_room_is_no_active_room(synchronizer, sdk, session, registry_stub, journal):
    synchronizer.place_anchor(P1)
    await wait_until(lambda: sdk.host_calls)
    sdk.complete_host(0, "cloud-9")
    await synchronizer.drain()

    assert registry_stub.requests == []
    assert len(session) == 1
    (crumb,) = journal.failures()
    assert crumb.content["kind"] == "NoActiveRoom"
    assert crumb.content["identifier"] == "cloud-9"


@pytest.mark.asyncio
async def test_upload_failure_is_reported(synchronizer, sdk, registry_stub, journal):
    registry_stub.fail["new"] = 503
    synchronizer.on_room_changed(LAB)
    synchronizer.place_anchor(P1)
    await wait_until(lambda: sdk.host_calls)
    sdk.complete_host(0, "cloud-9")
    await synchronizer.drain()

    (crumb,) = journal.failures()
    assert crumb.content["kind"] == "BadServerResponse"
    assert crumb.label == "upload"
    assert len(registry_stub.calls("new")) == 1      # single attempt


@pytest.mark.asyncio
async def test_host_timeout_is_reported(registry, session, journal):
    sdk = FakeCloudAnchorSdk()
    provider = CloudAnchorProvider(sdk, ttl_days=1, host_timeout_ms=30)
    sync = AnchorSynchronizer(registry=registry, provider=provider, session=session, journal=journal)
    try:
        sync.place_anchor(P1)
        await sync.drain()
    finally:
        await sync.close()

    assert _failure_kinds(journal) == ["ProviderTimeout"]
    assert len(session) == 1


# --------------------------------------------------------------------------- #
# Driving + ownership                                                         #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_run_follows_membership_and_ignores_leave(synchronizer, registry_stub):
    source = RoomMembershipSource(initial=LAB)
    sub = source.subscribe()
    runner = asyncio.create_task(synchronizer.run(sub))

    await wait_until(lambda: synchronizer.current_room == LAB)
    source.publish(None)
    await asyncio.sleep(0.02)
    assert synchronizer.current_room == LAB

    source.publish(HALL)
    await wait_until(lambda: synchronizer.current_room == HALL)

    sub.close()
    await asyncio.wait_for(runner, 1)
    await synchronizer.drain()
    paths = [r.url.path for r in registry_stub.calls("list")]
    assert paths == ["/room/lab-3/CloudAnchor/list", "/room/hall/CloudAnchor/list"]


def test_mutations_off_the_event_loop_are_rejected():
    session = InMemoryTrackingSession()
    sync = AnchorSynchronizer(
        registry=RoomRegistryClient("http://registry.test"),
        provider=CloudAnchorProvider(FakeCloudAnchorSdk()),
        session=session,
    )
    with pytest.raises(RuntimeError):
        sync.place_anchor(P1)
    assert len(session) == 0


@pytest.mark.asyncio
async def test_unexpected_task_error_is_logged_not_raised(provider, session):
    class _BrokenRegistry:
        async def list_anchor_identifiers(self, room_id):
            raise KeyError("boom")

    sync = AnchorSynchronizer(registry=_BrokenRegistry(), provider=provider, session=session)
    buf = io.StringIO()
    with redirect_stdout(buf):
        sync.on_room_changed(LAB)
        await sync.drain()

    events = []
    for line in buf.getvalue().splitlines():
        try:
            events.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    crashed = [e for e in events if e.get("event") == "task.crashed"]
    assert crashed and crashed[0]["meta"]["task"] == "pull:lab-3"


@pytest.mark.asyncio
async def test_snapshot_describes_room_and_table(synchronizer, sdk, registry_stub):
    registry_stub.rooms["lab-3"] = ["a1"]
    sdk.auto_resolve["a1"] = (P1, "success")
    synchronizer.on_room_changed(LAB)
    await synchronizer.drain()

    snap = synchronizer.snapshot()
    assert snap["room"] == {"id": "lab-3", "name": "Lab 3"}
    assert snap["resolved"]["a1"]["pose"]["position"] == [1.0, 0.0, 0.0]
    assert snap["in_flight"] == {"host": 0, "resolve": 0, "tasks": 0}
