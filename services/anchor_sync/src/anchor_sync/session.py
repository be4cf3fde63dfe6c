"""Tracking session contract: where local anchors physically live."""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from core_models import Pose


@dataclass(frozen=True)
class LocalAnchor:
    pose: Pose
    tag: Optional[str] = None
    handle: str = field(default_factory=lambda: uuid.uuid4().hex)


class TrackingSession(Protocol):
    def add_local_anchor(self, pose: Pose, tag: Optional[str] = None) -> LocalAnchor: ...

    def remove_local_anchor(self, anchor: LocalAnchor) -> None: ...


class InMemoryTrackingSession:
    """
    Headless session: keeps the live anchor set plus an ordered log of
    ``("add" | "remove", handle)`` operations.  Removing a handle that is not
    live raises ``KeyError`` so leaks and double removals surface loudly.
    """

    def __init__(self) -> None:
        self._anchors: Dict[str, LocalAnchor] = {}
        self._ops: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def add_local_anchor(self, pose: Pose, tag: Optional[str] = None) -> LocalAnchor:
        anchor = LocalAnchor(pose=pose, tag=tag)
        with self._lock:
            self._anchors[anchor.handle] = anchor
            self._ops.append(("add", anchor.handle))
        return anchor

    def remove_local_anchor(self, anchor: LocalAnchor) -> None:
        with self._lock:
            if anchor.handle not in self._anchors:
                raise KeyError(anchor.handle)
            del self._anchors[anchor.handle]
            self._ops.append(("remove", anchor.handle))

    @property
    def anchors(self) -> List[LocalAnchor]:
        with self._lock:
            return list(self._anchors.values())

    @property
    def operations(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._ops)

    def __contains__(self, anchor: object) -> bool:
        handle = anchor.handle if isinstance(anchor, LocalAnchor) else anchor
        with self._lock:
            return handle in self._anchors

    def __len__(self) -> int:
        with self._lock:
            return len(self._anchors)


__all__ = ["LocalAnchor", "TrackingSession", "InMemoryTrackingSession"]
