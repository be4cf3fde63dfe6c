"""
core_logging.journal – bounded, in-memory event journal.

The journal is the operator-facing record of what a client did: every
labelled step (room pulled, anchor hosted, anchor superseded …) and every
failure with enough context to rebuild the causal chain.  Entries are
JSON-safe at insertion time so readers on other threads never observe
mutable caller objects.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from core_utils import jsonx


class JournalEntry(BaseModel):
    seq: int
    ts: float = Field(default_factory=time.time)
    label: str
    kind: str = "event"            # event | failure
    content: Any = None


class Journal:
    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: Deque[JournalEntry] = deque(maxlen=max(1, int(max_entries)))
        self._lock = threading.Lock()
        self._seq = 0

    def add(self, label: str, content: Any = None, *, kind: str = "event") -> JournalEntry:
        with self._lock:
            self._seq += 1
            entry = JournalEntry(seq=self._seq, label=label, kind=kind, content=jsonx.sanitize(content))
            self._entries.append(entry)
        return entry

    def failure(
        self,
        kind: str,
        *,
        where: str,
        message: str,
        room_id: Optional[str] = None,
        identifier: Optional[str] = None,
        **context: Any,
    ) -> JournalEntry:
        """Record a failure crumb: kind + where + room + identifier."""
        body: Dict[str, Any] = {
            "kind": kind,
            "where": where,
            "message": message,
            "room_id": room_id,
            "identifier": identifier,
        }
        if context:
            body["context"] = context
        return self.add(where, body, kind="failure")

    def entries(self, limit: Optional[int] = None) -> List[JournalEntry]:
        with self._lock:
            items = list(self._entries)
        if limit is not None and limit >= 0:
            items = items[-limit:] if limit else []
        return items

    def failures(self) -> List[JournalEntry]:
        return [e for e in self.entries() if e.kind == "failure"]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["Journal", "JournalEntry"]
