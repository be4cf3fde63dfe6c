"""
Read-only inspector for a running synchronizer.

Exposes the current room, the resolved-anchor table and the event journal
so an operator (or a debug overlay) can see what the core is doing.  It has
no write routes: rooms and placements only enter through the core's API.
"""
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import FastAPI, Query, Request

from core_http.errors import attach_standard_error_handlers, raise_http_error
from core_logging import Journal, get_logger
from core_logging.error_codes import ErrorCode
from core_observability import instrument_app
from core_utils import jsonx
from core_utils.health import attach_health_routes

from .synchronizer import AnchorSynchronizer

SERVICE = "anchor_sync"
logger = get_logger(SERVICE)


def create_app(synchronizer: AnchorSynchronizer, journal: Optional[Journal] = None) -> FastAPI:
    journal = journal if journal is not None else synchronizer.journal
    app = FastAPI(title="Anchor Sync Inspector", version="0.1.0")
    instrument_app(app, SERVICE)
    attach_standard_error_handlers(app, service=SERVICE)
    attach_health_routes(app, checks={
        "liveness": lambda: True,
        # Ready once a room is current; before that no pull phase can run
        "readiness": lambda: synchronizer.current_room is not None,
    })

    @app.get("/v1/room")
    async def current_room():
        room = synchronizer.current_room
        return {"room": room.model_dump() if room else None}

    @app.get("/v1/anchors")
    async def resolved_anchors():
        return synchronizer.snapshot()

    @app.get("/v1/anchors/{identifier}")
    async def resolved_anchor(identifier: str, request: Request):
        entry = synchronizer.snapshot()["resolved"].get(identifier)
        if entry is None:
            request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
            raise raise_http_error(404, ErrorCode.not_found,
                                   f"cloud anchor {identifier!r} is not resolved", request_id)
        return {"identifier": identifier, **entry}

    @app.get("/v1/journal")
    async def journal_entries(
        limit: Optional[int] = Query(None, ge=1, le=10_000),
        failures_only: bool = False,
    ):
        entries = journal.failures() if failures_only else journal.entries(limit)
        if failures_only and limit is not None:
            entries = entries[-limit:]
        return {"entries": jsonx.sanitize([e.model_dump() for e in entries]), "total": len(journal)}

    return app


__all__ = ["create_app"]
