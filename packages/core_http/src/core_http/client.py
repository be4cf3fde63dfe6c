import time
from typing import Any, Dict, Optional
import httpx
from core_utils import jsonx
from core_config.constants import timeout_for_stage
from core_observability.otel import inject_trace_context
from core_logging import get_logger, log_stage
from urllib.parse import urlsplit

# Module-level logger for this package
logger = get_logger("core_http")

_shared_client: httpx.AsyncClient | None = None

def _build_timeout(seconds: float) -> httpx.Timeout:
    # Separate connect/read/write/pool timeouts; read dominates
    connect = min(2.0, max(0.1, seconds * 0.3))
    read    = max(0.1, seconds)
    write   = min(seconds, 2.0)
    pool    = min(seconds, 2.0)
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)

def get_http_client(*, timeout_ms: Optional[int] = None) -> httpx.AsyncClient:
    """
    Return a process‑wide ``httpx.AsyncClient`` with sensible defaults.
    The returned client is shared across the process and **must not be
    closed** by callers.  If it has been closed anyway, a new client is
    created on demand.

    Parameters
    ----------
    timeout_ms: Optional[int]
        Desired read timeout in milliseconds.  When provided and greater
        than the current client timeout, the client's timeout configuration
        is increased; lower timeouts do not shrink the shared pool.
    """
    global _shared_client
    base_sec = (timeout_ms / 1000.0) if timeout_ms is not None else timeout_for_stage("registry")
    if _shared_client is None or _shared_client.is_closed:
        if _shared_client is not None:
            log_stage(logger, "http.client", "recreating_shared_client", timeout_sec=base_sec)
        _shared_client = httpx.AsyncClient(timeout=_build_timeout(base_sec))
        return _shared_client
    current_read = float(_shared_client.timeout.read or 0.0)
    if base_sec > current_read:
        _shared_client.timeout = _build_timeout(base_sec)
    return _shared_client

async def aclose_http_client() -> None:
    """Close the shared client (process shutdown only)."""
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
    _shared_client = None

async def fetch_json(method: str,
                     url: str,
                     *,
                     json: Any | None = None,
                     headers: Optional[Dict[str, str]] = None,
                     client: httpx.AsyncClient | None = None,
                     stage: str = "registry",
                     timeout_ms: Optional[int] = None,
                     parse: bool = True) -> Any:
    """
    Single-attempt JSON fetch with trace header injection.

    Raises ``httpx.HTTPStatusError`` on any non-2xx status and lets transport
    errors (``httpx.TransportError``) propagate untouched; retry policy, if
    any, belongs to the caller.  A malformed JSON body raises ``ValueError``.
    An empty body (or ``parse=False``) yields ``None``.
    """
    budget_ms = timeout_ms if timeout_ms is not None else int(timeout_for_stage(stage) * 1000)
    http = client or get_http_client(timeout_ms=budget_ms)
    hdrs = inject_trace_context(headers or {})
    parts = urlsplit(url)
    op = f"{method.upper()} {(parts.hostname or '')}{parts.path or '/'}"
    log_stage(
        logger, "http.client", "http.client.request",
        op=op,
        http={"method": method.upper(), "host": parts.hostname or "", "target": parts.path or "/"},
    )
    t0 = time.perf_counter()
    resp = await http.request(method.upper(), url, json=json, headers=hdrs)
    dt_ms = (time.perf_counter() - t0) * 1000.0
    log_stage(
        logger, "http.client", "http.client.response",
        op=op,
        status_code=resp.status_code,
        latency_ms=int(dt_ms),
    )
    if not (200 <= resp.status_code < 300):
        raise httpx.HTTPStatusError(f"{resp.status_code} on {url}", request=resp.request, response=resp)
    if not parse or not resp.content:
        return None
    return jsonx.loads(resp.content)
