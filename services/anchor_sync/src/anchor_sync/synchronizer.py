"""
Anchor synchronization core.

Owns the host→upload and list→resolve state machines, the resolved-anchor
table (cloud id → the one LocalAnchor representing it) and the room-change
protocol.  Every public method runs on the owning event loop; work that
waits on the network or the provider runs as background tasks whose results
re-enter through ``on_host_result`` / ``on_resolve_result``.

Invariants:
  • at most one LocalAnchor per cloud id in the table, old one removed
    from the session before its replacement is added;
  • resolve results are applied only if their request was issued for the
    room that is current when they complete;
  • no failure is retried and none escapes a background task.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Coroutine, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import core_metrics
from core_config import get_settings
from core_logging import Journal, bind_room_id, bind_sync_id, get_logger, log_stage, record_error
from core_models import Pose, Room

from .errors import AnchorSyncError, CloudAnchorState, FailureKind, failure_kind_for
from .provider import CloudAnchorProvider
from .registry import RoomRegistryClient
from .rooms import RoomSubscription
from .session import LocalAnchor, TrackingSession


class RequestState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DISCARDED = "discarded"     # completed for a room that is no longer current


def _request_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(eq=False)
class HostRequest:
    local_anchor: LocalAnchor
    pose: Pose
    state: RequestState = RequestState.PENDING
    identifier: Optional[str] = None
    failure: Optional[FailureKind] = None
    request_id: str = field(default_factory=_request_id)


@dataclass(eq=False)
class ResolveRequest:
    identifier: str
    room_id: Optional[str]
    state: RequestState = RequestState.PENDING
    pose: Optional[Pose] = None
    failure: Optional[FailureKind] = None
    source: str = "pull"        # pull | frame
    request_id: str = field(default_factory=_request_id)


class AnchorSynchronizer:
    def __init__(
        self,
        *,
        registry: RoomRegistryClient,
        provider: CloudAnchorProvider,
        session: TrackingSession,
        journal: Optional[Journal] = None,
        anchor_tag: Optional[str] = None,
        logger=None,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        self._provider = provider
        self._session = session
        self._journal = journal if journal is not None else Journal(settings.journal_max_entries)
        self._tag = anchor_tag if anchor_tag is not None else settings.anchor_tag
        self._log = logger or get_logger("anchor_sync.core")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._room: Optional[Room] = None
        # Room that owns the resolved table; differs from _room only mid-switch
        self._table_room_id: Optional[str] = None
        self._resolved: Dict[str, LocalAnchor] = {}
        # cloud id → room it was last requested for (frame updates are matched against this)
        self._requested: Dict[str, str] = {}
        # cloud id → room this client uploaded it to; never resolved back into a duplicate there
        self._hosted: Dict[str, str] = {}
        self._hosts: Dict[str, HostRequest] = {}
        self._resolves: Dict[str, ResolveRequest] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Introspection                                                      #
    # ------------------------------------------------------------------ #
    @property
    def current_room(self) -> Optional[Room]:
        return self._room

    @property
    def journal(self) -> Journal:
        return self._journal

    @property
    def resolved_anchors(self) -> Mapping[str, LocalAnchor]:
        return dict(self._resolved)

    @property
    def host_requests(self) -> List[HostRequest]:
        return list(self._hosts.values())

    @property
    def resolve_requests(self) -> List[ResolveRequest]:
        return list(self._resolves.values())

    def snapshot(self) -> Dict[str, Any]:
        room = self._room
        return {
            "room": room.model_dump() if room else None,
            "resolved": {
                identifier: {
                    "handle": anchor.handle,
                    "tag": anchor.tag,
                    "pose": anchor.pose.model_dump(mode="json"),
                }
                for identifier, anchor in self._resolved.items()
            },
            "in_flight": {
                "host": len(self._hosts),
                "resolve": len(self._resolves),
                "tasks": len(self._tasks),
            },
        }

    # ------------------------------------------------------------------ #
    # Ownership                                                          #
    # ------------------------------------------------------------------ #
    def _check_owner(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()   # RuntimeError off-loop: callers must marshal
        if self._loop is None:
            self._loop = loop
        elif loop is not self._loop:
            raise RuntimeError("AnchorSynchronizer is owned by another event loop")
        return loop

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        loop = self._check_owner()
        task = loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error(
                "task.crashed",
                extra={"stage": "core", "task": task.get_name(), "error_type": exc.__class__.__name__},
                exc_info=exc,
            )
            core_metrics.counter("anchor_sync_task_crashes_total")

    async def drain(self) -> None:
        """Wait until every background task (and the tasks they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    # ------------------------------------------------------------------ #
    # Failure reporting                                                  #
    # ------------------------------------------------------------------ #
    def _report(
        self,
        kind: FailureKind,
        *,
        where: str,
        message: str,
        room_id: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> None:
        record_error(
            kind.value,
            where=where,
            message=message,
            logger=self._log,
            context={"room_id": room_id, "identifier": identifier},
            stage=where,
        )
        self._journal.failure(kind.value, where=where, message=message, room_id=room_id, identifier=identifier)
        core_metrics.counter("anchor_sync_failures_total", kind=kind.value)

    # ------------------------------------------------------------------ #
    # Room scope                                                         #
    # ------------------------------------------------------------------ #
    def _purge_table(self, reason: str) -> None:
        removed = 0
        for identifier in list(self._resolved):
            anchor = self._resolved.pop(identifier)
            self._session.remove_local_anchor(anchor)
            removed += 1
        core_metrics.gauge("anchor_sync_resolved_anchors", 0)
        if removed:
            log_stage(self._log, "room", "table.purged",
                      room_id=self._table_room_id, removed=removed, reason=reason)
            self._journal.add("Cleared resolved anchors", {"room_id": self._table_room_id, "removed": removed})

    def on_room_changed(self, room: Room) -> None:
        """Adopt *room* as current and start a pull phase for it; returns immediately."""
        self._check_owner()
        previous = self._room
        self._room = room
        if self._table_room_id is not None and self._table_room_id != room.id:
            self._purge_table(reason="room_changed")
        self._table_room_id = room.id
        self._requested = {i: r for i, r in self._requested.items() if r == room.id}
        log_stage(self._log, "room", "room.changed", room_id=room.id, room_name=room.name,
                  previous_room_id=previous.id if previous else None)
        self._spawn(self._pull(room), name=f"pull:{room.id}")

    async def _pull(self, room: Room) -> None:
        bind_room_id(room.id)
        bind_sync_id(uuid.uuid4().hex[:12])
        self._journal.add("Pulling cloud anchor ids from backend", {"room": room})
        with log_stage(self._log, "pull", "pull").ctx(room_name=room.name):
            try:
                identifiers = await self._registry.list_anchor_identifiers(room.id)
            except AnchorSyncError as exc:
                self._report(exc.kind, where="pull", message=exc.message, room_id=room.id)
                return
        self._journal.add("Pulled cloud anchor ids from backend",
                          {"room": room, "cloud_anchor_ids": identifiers})

        if self._room is None or self._room.id != room.id:
            log_stage(self._log, "pull", "pull.stale_room",
                      current_room_id=self._room.id if self._room else None, count=len(identifiers))
            return

        in_flight = {(r.identifier, r.room_id) for r in self._resolves.values()}
        for identifier in identifiers:
            if identifier in self._resolved:
                log_stage(self._log, "pull", "pull.skip_resolved", identifier=identifier)
            elif self._hosted.get(identifier) == room.id:
                log_stage(self._log, "pull", "pull.skip_own", identifier=identifier)
            elif (identifier, room.id) in in_flight:
                log_stage(self._log, "pull", "pull.skip_in_flight", identifier=identifier)
            else:
                self._request_resolve(identifier, room.id)

    # ------------------------------------------------------------------ #
    # Resolve                                                            #
    # ------------------------------------------------------------------ #
    def _request_resolve(self, identifier: str, room_id: str) -> ResolveRequest:
        request = ResolveRequest(identifier=identifier, room_id=room_id)
        self._resolves[request.request_id] = request
        self._requested[identifier] = room_id
        core_metrics.counter("anchor_sync_resolve_requests_total")
        log_stage(self._log, "resolve", "resolve.requested", identifier=identifier,
                  request_id=request.request_id)
        self._spawn(self._resolve(request), name=f"resolve:{identifier}")
        return request

    async def _resolve(self, request: ResolveRequest) -> None:
        try:
            outcome = await self._provider.resolve(request.identifier)
        except AnchorSyncError as exc:
            self._resolves.pop(request.request_id, None)
            request.state = RequestState.FAILED
            request.failure = exc.kind
            self._report(exc.kind, where="resolve", message=exc.message,
                         room_id=request.room_id, identifier=request.identifier)
            return
        self.on_resolve_result(request, outcome.identifier, outcome.pose, outcome.state)

    def on_resolve_result(
        self,
        request: ResolveRequest,
        identifier: str,
        pose: Optional[Pose],
        state: CloudAnchorState,
    ) -> None:
        self._check_owner()
        self._resolves.pop(request.request_id, None)
        current_id = self._room.id if self._room else None

        if request.room_id != current_id:
            request.state = RequestState.DISCARDED
            core_metrics.counter("anchor_sync_resolve_stale_total")
            log_stage(self._log, "resolve", "resolve.stale_room", identifier=identifier,
                      request_room_id=request.room_id, current_room_id=current_id,
                      cloud_state=state.label)
            return

        if state.is_success and pose is not None:
            request.state = RequestState.SUCCEEDED
            request.pose = pose
            # a resolve still in flight from an earlier visit to this room re-arms frame tracking
            self._requested[identifier] = request.room_id
            self._supersede(identifier, pose, source=request.source)
            return

        kind = failure_kind_for(state) or FailureKind.PROVIDER_INTERNAL
        request.state = RequestState.FAILED
        request.failure = kind
        detail = "success without a pose" if state.is_success else f"cloud state {state.label}"
        self._report(kind, where="resolve", message=detail,
                     room_id=request.room_id, identifier=identifier)

    def _supersede(self, identifier: str, pose: Pose, *, source: str) -> LocalAnchor:
        previous = self._resolved.pop(identifier, None)
        if previous is not None:
            self._session.remove_local_anchor(previous)
        anchor = self._session.add_local_anchor(pose, self._tag)
        self._resolved[identifier] = anchor
        core_metrics.counter("anchor_sync_resolve_applied_total")
        core_metrics.gauge("anchor_sync_resolved_anchors", len(self._resolved))
        log_stage(self._log, "resolve", "resolve.applied", identifier=identifier, source=source,
                  handle=anchor.handle, superseded=previous.handle if previous else None)
        self._journal.add("Updated resolved anchor", {
            "identifier": identifier,
            "handle": anchor.handle,
            "superseded": previous.handle if previous else None,
            "pose": pose,
            "source": source,
        })
        return anchor

    def apply_frame_updates(self, updates: Iterable[Tuple[str, Pose]]) -> int:
        """Reconcile one frame's provider updates; returns how many were applied."""
        self._check_owner()
        current_id = self._room.id if self._room else None
        applied = 0
        for identifier, pose in updates:
            if current_id is None or self._requested.get(identifier) != current_id:
                continue
            request = ResolveRequest(identifier=identifier, room_id=current_id, source="frame")
            self.on_resolve_result(request, identifier, pose, CloudAnchorState.SUCCESS)
            applied += 1
        return applied

    def process_frame(self) -> int:
        """Pull this frame's updates from the provider and reconcile them."""
        return self.apply_frame_updates(self._provider.frame_updates())

    def submit_frame_updates_threadsafe(self, updates: Iterable[Tuple[str, Pose]]) -> None:
        """Hand updates captured on another thread to the owning loop."""
        if self._loop is None:
            raise RuntimeError("AnchorSynchronizer has not been bound to an event loop yet")
        self._loop.call_soon_threadsafe(self.apply_frame_updates, list(updates))

    # ------------------------------------------------------------------ #
    # Host                                                               #
    # ------------------------------------------------------------------ #
    def place_anchor(self, pose: Pose) -> None:
        """Place an anchor locally right away, then host it in the background."""
        self._check_owner()
        anchor = self._session.add_local_anchor(pose, self._tag)
        request = HostRequest(local_anchor=anchor, pose=pose)
        self._hosts[request.request_id] = request
        core_metrics.counter("anchor_sync_host_requests_total")
        log_stage(self._log, "host", "host.requested", handle=anchor.handle,
                  request_id=request.request_id)
        self._journal.add("Hosting anchor", {"handle": anchor.handle, "tag": anchor.tag, "pose": pose})
        self._spawn(self._host(request), name=f"host:{anchor.handle}")

    async def _host(self, request: HostRequest) -> None:
        try:
            outcome = await self._provider.host(request.pose)
        except AnchorSyncError as exc:
            self._hosts.pop(request.request_id, None)
            request.state = RequestState.FAILED
            request.failure = exc.kind
            self._report(exc.kind, where="host", message=exc.message,
                         room_id=self._room.id if self._room else None)
            return
        self.on_host_result(request, outcome.identifier, outcome.state)

    def on_host_result(
        self,
        request: HostRequest,
        identifier: Optional[str],
        state: CloudAnchorState,
    ) -> None:
        self._check_owner()
        self._hosts.pop(request.request_id, None)
        room = self._room
        self._journal.add("Hosted anchor", {
            "handle": request.local_anchor.handle,
            "cloud_id": identifier,
            "cloud_anchor_state": state.label,
        })

        if not identifier or not state.is_success:
            kind = failure_kind_for(state) or FailureKind.PROVIDER_INTERNAL
            request.state = RequestState.FAILED
            request.failure = kind
            # The optimistic LocalAnchor stays: local-only placement degrades gracefully
            self._report(kind, where="host", message=f"cloud state {state.label}",
                         room_id=room.id if room else None, identifier=identifier)
            return

        request.state = RequestState.SUCCEEDED
        request.identifier = identifier
        core_metrics.counter("anchor_sync_host_succeeded_total")
        log_stage(self._log, "host", "host.succeeded", identifier=identifier,
                  handle=request.local_anchor.handle)

        if room is None:
            self._report(FailureKind.NO_ACTIVE_ROOM, where="upload",
                         message="no room is current; hosted anchor stays local-only",
                         identifier=identifier)
            return
        self._hosted[identifier] = room.id
        self._spawn(self._upload(room, identifier), name=f"upload:{identifier}")

    async def _upload(self, room: Room, identifier: str) -> None:
        bind_room_id(room.id)
        self._journal.add("Uploading cloud anchor id to backend", {"room": room, "cloud_id": identifier})
        try:
            await self._registry.register_anchor(room.id, identifier)
        except AnchorSyncError as exc:
            self._report(exc.kind, where="upload", message=exc.message,
                         room_id=room.id, identifier=identifier)
            return
        core_metrics.counter("anchor_sync_uploads_total")
        self._journal.add("Uploaded cloud anchor id to backend", {"room": room, "cloud_id": identifier})

    # ------------------------------------------------------------------ #
    # Room stream                                                        #
    # ------------------------------------------------------------------ #
    async def run(self, subscription: RoomSubscription) -> None:
        """Drain a room subscription on the owning loop until it is closed."""
        self._check_owner()
        try:
            async for room in subscription:
                if room is None:
                    log_stage(self._log, "room", "room.left_ignored")
                    continue
                self.on_room_changed(room)
        finally:
            subscription.close()


__all__ = [
    "AnchorSynchronizer",
    "HostRequest",
    "ResolveRequest",
    "RequestState",
]
