"""
Room membership source.

Emits the current room whenever it changes (join / switch / leave).  Each
subscriber gets its own queue drained on the subscriber's event loop, so the
publisher may live on another thread (``publish_threadsafe``).
"""
from __future__ import annotations

import asyncio
import threading
from typing import List, Optional

from core_logging import get_logger, log_stage
from core_models import Room

logger = get_logger("anchor_sync.rooms")

_CLOSED = object()


class RoomSubscription:
    def __init__(self, source: "RoomMembershipSource", loop: asyncio.AbstractEventLoop) -> None:
        self._source = source
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _offer(self, room: Optional[Room]) -> None:
        # Always runs on the subscriber loop
        if not self._closed:
            self._queue.put_nowait(room)

    def _offer_threadsafe(self, room: Optional[Room]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._offer, room)
        except RuntimeError:
            # Subscriber loop is gone; it can no longer consume anything
            self._closed = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._source._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "RoomSubscription":
        return self

    async def __anext__(self) -> Optional[Room]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class RoomMembershipSource:
    def __init__(self, initial: Optional[Room] = None) -> None:
        self._current = initial
        self._subscribers: List[RoomSubscription] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[Room]:
        return self._current

    def subscribe(self) -> RoomSubscription:
        """Subscribe on the running loop; the current room (if any) is replayed first."""
        sub = RoomSubscription(self, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.append(sub)
            current = self._current
        if current is not None:
            sub._offer(current)
        return sub

    def _unsubscribe(self, sub: RoomSubscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def _set(self, room: Optional[Room]) -> List[RoomSubscription]:
        with self._lock:
            self._current = room
            subs = list(self._subscribers)
        log_stage(logger, "rooms", "room.published",
                  room_id=room.id if room else None, room_name=room.name if room else None,
                  subscribers=len(subs))
        return subs

    def publish(self, room: Optional[Room]) -> None:
        """Publish from the subscribers' loop thread."""
        for sub in self._set(room):
            sub._offer(room)

    def publish_threadsafe(self, room: Optional[Room]) -> None:
        """Publish from any thread (beacon scanners, network callbacks …)."""
        for sub in self._set(room):
            sub._offer_threadsafe(room)


__all__ = ["RoomMembershipSource", "RoomSubscription"]
