from __future__ import annotations
import os
from core_logging.request_logging import attach_request_logging
from core_metrics.fastapi import attach_prometheus_endpoint

def instrument_app(
    app,
    service_name: str | None = None,
    *,
    attach_metrics_endpoint: bool = True,
) -> None:
    """
    One-call, idempotent FastAPI instrumentation:
      • structured request logging with consistent metric prefixes,
      • Prometheus `/metrics` scrape endpoint.
    """
    if getattr(app.state, "_instrumented", False):
        return
    app.state._instrumented = True
    svc = service_name or os.getenv("SERVICE_NAME") or "anchor_sync"
    attach_request_logging(app, service=svc, metric_prefix=svc)
    if attach_metrics_endpoint:
        attach_prometheus_endpoint(app)
