from __future__ import annotations
import time
import uuid
from typing import Tuple
from fastapi import FastAPI, Request
from core_logging.logger import get_logger, log_stage
import core_metrics

_DEFAULT_SUPPRESS: Tuple[str, ...] = ("/healthz", "/readyz", "/metrics")

def attach_request_logging(
    app: FastAPI,
    *,
    service: str,
    metric_prefix: str,
    suppress_paths: Tuple[str, ...] = _DEFAULT_SUPPRESS,
) -> None:
    """
    Install a uniform request logger middleware with health/metrics filtering.
    Emits:
      - {metric_prefix}_http_requests_total (counter)
      - {metric_prefix}_http_5xx_total (counter)
      - {metric_prefix}_http_latency_ms (histogram)
    Adds header:
      - x-request-id (echoed when the caller sent one)
    """
    logger = get_logger(service)

    @app.middleware("http")
    async def _request_logger(request: Request, call_next):
        path = str(request.url.path or "")
        should_log = not any(path.endswith(p) for p in suppress_paths)
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        t0 = time.perf_counter()
        if should_log:
            log_stage(
                logger, "http.server", "http.server.request",
                request_id=req_id,
                http={"method": request.method, "target": path},
            )

        resp = await call_next(request)
        resp.headers["x-request-id"] = req_id

        dt_ms = (time.perf_counter() - t0) * 1000.0
        core_metrics.histogram(f"{metric_prefix}_http_latency_ms", dt_ms)
        core_metrics.counter(f"{metric_prefix}_http_requests_total", 1, method=request.method, code=str(resp.status_code))
        if str(resp.status_code).startswith("5"):
            core_metrics.counter(f"{metric_prefix}_http_5xx_total", 1)

        if should_log:
            log_stage(
                logger, "http.server", "http.server.response",
                request_id=req_id,
                status_code=resp.status_code,
                http={"method": request.method, "target": path},
                latency_ms=int(dt_ms),
            )
        return resp
