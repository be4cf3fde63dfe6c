"""
Cloud anchor provider adapter.

The native SDK exposes callback-style ``host``/``resolve`` calls whose
completions may fire on any thread, plus a per-frame ``update()`` that lists
anchors whose pose became available or changed.  The adapter turns each call
into an awaitable bound to the caller's event loop and gives every call an
explicit (configurable) time budget.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from core_config import get_settings
from core_logging import get_logger, log_stage
from core_models import Pose
from core_utils.async_timeout import run_with_stage_timeout

from .errors import AnchorSyncError, CloudAnchorState, FailureKind

logger = get_logger("anchor_sync.provider")

HostCompletion = Callable[[Optional[str], CloudAnchorState], None]
ResolveCompletion = Callable[[Optional[Pose], CloudAnchorState], None]


class CloudAnchorSdk(Protocol):
    def host_cloud_anchor(self, pose: Pose, ttl_days: int, completion: HostCompletion) -> None: ...

    def resolve_cloud_anchor(self, identifier: str, completion: ResolveCompletion) -> None: ...

    def update(self) -> Sequence[Tuple[str, Pose]]: ...


@dataclass(frozen=True)
class HostOutcome:
    identifier: Optional[str]
    state: CloudAnchorState


@dataclass(frozen=True)
class ResolveOutcome:
    identifier: str
    pose: Optional[Pose]
    state: CloudAnchorState


def _coerce_state(raw: Any) -> CloudAnchorState:
    if isinstance(raw, CloudAnchorState):
        return raw
    try:
        return CloudAnchorState(raw)
    except ValueError:
        # Deprecated/unknown SDK states are treated as internal provider errors
        return CloudAnchorState.ERROR_INTERNAL


def _settle(fut: asyncio.Future, build: Callable[..., Any], args: Tuple[Any, ...]) -> None:
    # The waiter may already be gone (timeout/cancel); late callbacks are dropped.
    if fut.done():
        return
    try:
        value = build(*args)
    except Exception as exc:
        fut.set_exception(AnchorSyncError(FailureKind.PROVIDER_INTERNAL, f"malformed SDK callback: {exc!r}"))
        return
    fut.set_result(value)


class CloudAnchorProvider:
    def __init__(
        self,
        sdk: CloudAnchorSdk,
        *,
        ttl_days: Optional[int] = None,
        host_timeout_ms: Optional[int] = None,
        resolve_timeout_ms: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._sdk = sdk
        self._ttl_days = ttl_days if ttl_days is not None else settings.cloud_anchor_ttl_days
        self._host_timeout_s = (host_timeout_ms if host_timeout_ms is not None else settings.timeout_host_ms) / 1000.0
        self._resolve_timeout_s = (resolve_timeout_ms if resolve_timeout_ms is not None else settings.timeout_resolve_ms) / 1000.0

    @property
    def ttl_days(self) -> int:
        return self._ttl_days

    @staticmethod
    def _bridge(loop: asyncio.AbstractEventLoop, fut: asyncio.Future, build: Callable[..., Any]) -> Callable[..., None]:
        def _completion(*args: Any) -> None:
            try:
                loop.call_soon_threadsafe(_settle, fut, build, args)
            except RuntimeError:
                # Loop already closed: nobody is left to receive the result
                pass
        return _completion

    async def _await(self, stage: str, fut: asyncio.Future, budget_s: float, **ctx: Any):
        try:
            return await run_with_stage_timeout(stage, fut, logger, timeout_s=budget_s)
        except asyncio.TimeoutError as exc:
            raise AnchorSyncError(
                FailureKind.PROVIDER_TIMEOUT,
                f"{stage} did not complete within {budget_s:.1f}s",
                identifier=ctx.get("identifier"),
            ) from exc

    async def host(self, pose: Pose) -> HostOutcome:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        completion = self._bridge(
            loop, fut,
            lambda identifier, state: HostOutcome(identifier or None, _coerce_state(state)),
        )
        try:
            self._sdk.host_cloud_anchor(pose, self._ttl_days, completion)
        except Exception as exc:
            raise AnchorSyncError(FailureKind.PROVIDER_INTERNAL, f"host call rejected: {exc}") from exc
        log_stage(logger, "host", "provider.host_started", ttl_days=self._ttl_days)
        return await self._await("host", fut, self._host_timeout_s)

    async def resolve(self, identifier: str) -> ResolveOutcome:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        completion = self._bridge(
            loop, fut,
            lambda pose, state: ResolveOutcome(identifier, pose, _coerce_state(state)),
        )
        try:
            self._sdk.resolve_cloud_anchor(identifier, completion)
        except Exception as exc:
            raise AnchorSyncError(
                FailureKind.PROVIDER_INTERNAL, f"resolve call rejected: {exc}", identifier=identifier,
            ) from exc
        log_stage(logger, "resolve", "provider.resolve_started", identifier=identifier)
        return await self._await("resolve", fut, self._resolve_timeout_s, identifier=identifier)

    def frame_updates(self) -> List[Tuple[str, Pose]]:
        """Poll the SDK for this frame's updated anchors; never raises."""
        try:
            updates = list(self._sdk.update() or ())
        except Exception as exc:
            # A bad frame must not break the frame loop; the next frame retries naturally
            log_stage(logger, "frame", "provider.update_failed", level="WARNING",
                      error=str(exc), error_type=exc.__class__.__name__)
            return []
        return updates


__all__ = [
    "CloudAnchorSdk",
    "CloudAnchorProvider",
    "HostOutcome",
    "ResolveOutcome",
    "HostCompletion",
    "ResolveCompletion",
]
