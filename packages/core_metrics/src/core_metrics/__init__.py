"""
core_metrics – tiny helpers so the sync core can record counters / gauges
without wiring Prometheus collectors at every call-site.  Collectors are
created lazily on first use and shared across the process; the scrape
endpoint lives in :mod:`core_metrics.fastapi`.
"""

from __future__ import annotations

import threading
import time as _time
from typing import Any, Dict, TYPE_CHECKING, cast

if TYPE_CHECKING:  # real classes visible only to the type checker
    from prometheus_client import Counter as PromCounter
    from prometheus_client import Histogram as PromHistogram
    from prometheus_client import Gauge as PromGauge

from prometheus_client import (
    REGISTRY as _PROM_REGISTRY,
    Counter as _pCounter,
    Histogram as _pHistogram,
    Gauge as _pGauge,
)

_P_COUNTERS: Dict[str, "PromCounter"] = {}
_P_HISTOS: Dict[str, "PromHistogram"] = {}
_P_GAUGES: Dict[str, "PromGauge"] = {}
_LOCK = threading.Lock()


def _existing(name: str):
    # Collectors survive module reloads in tests; reuse instead of re-registering.
    return _PROM_REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]


# --------------------------------------------------------------------------- #
# Public helpers                                                              #
# --------------------------------------------------------------------------- #
def counter(name: str, inc: int | float = 1, **attrs: Any) -> None:
    """
    Increment *name* by *inc* (default 1).

    *attrs* are accepted for call-site readability only; the Prometheus series
    is unlabelled so cardinality stays flat.
    """
    with _LOCK:
        pc = _P_COUNTERS.get(name)
        if pc is None:
            existing = _existing(name)
            pc = cast("PromCounter", existing) if existing is not None else _pCounter(name, f"Counter for {name}")
            _P_COUNTERS[name] = pc
    try:
        pc.inc(inc)
    except ValueError:
        # Negative increments are caller bugs; metrics must never break the sync path
        pass


def histogram(name: str, value: float, **attrs: Any) -> None:
    """Record *value* in histogram *name*."""
    with _LOCK:
        ph = _P_HISTOS.get(name)
        if ph is None:
            existing = _existing(name)
            ph = cast("PromHistogram", existing) if existing is not None else _pHistogram(name, f"Histogram for {name}")
            _P_HISTOS[name] = ph
    ph.observe(value)


def gauge(name: str, value: float, **attrs: Any) -> None:
    """Set Prometheus **Gauge** *name* to *value*."""
    with _LOCK:
        g = _P_GAUGES.get(name)
        if g is None:
            existing = _existing(name)
            g = cast("PromGauge", existing) if existing is not None else _pGauge(name, f"Gauge for {name}")
            _P_GAUGES[name] = g
    g.set(value)


def record_latency_ms(metric_base: str, t0: float, **attrs: Any) -> float:
    """
    Record elapsed time since *t0* (``time.perf_counter()``) as histogram
    ``{metric_base}_latency_ms``. Returns the measured latency in ms.
    """
    dt_ms = (_time.perf_counter() - t0) * 1000.0
    histogram(f"{metric_base}_latency_ms", dt_ms, **attrs)
    return dt_ms


__all__ = ["counter", "histogram", "gauge", "record_latency_ms"]
