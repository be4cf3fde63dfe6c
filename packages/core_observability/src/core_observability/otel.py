import uuid
from typing import Dict, Optional

from opentelemetry import trace as _trace
from opentelemetry.propagate import inject as _inject


def current_trace_id_hex() -> Optional[str]:
    span = _trace.get_current_span()
    ctx = span.get_span_context() if span else None
    if ctx and getattr(ctx, "trace_id", 0):
        return f"{ctx.trace_id:032x}"
    return None

def inject_trace_context(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Build outbound headers with W3C trace context and an `x-trace-id`.
    - Incoming `x-trace-id`, `traceparent` and `tracestate` are never forwarded.
    - Prefer the OTEL propagator; synthesise a root `traceparent` when no span is active.
    """
    hdrs: Dict[str, str] = {
        k: v for k, v in dict(headers or {}).items()
        if k.lower() not in ("x-trace-id", "traceparent", "tracestate")
    }
    _inject(hdrs)  # sets traceparent/tracestate from current context (no-op without a span)

    tid_hex = current_trace_id_hex()
    if not any(k.lower() == "traceparent" for k in hdrs.keys()):
        tid_hex = tid_hex or uuid.uuid4().hex
        hdrs["traceparent"] = f"00-{tid_hex}-{uuid.uuid4().hex[:16]}-01"
    else:
        tid_hex = tid_hex or hdrs["traceparent"].split("-")[1]
    hdrs["x-trace-id"] = tid_hex
    return hdrs
