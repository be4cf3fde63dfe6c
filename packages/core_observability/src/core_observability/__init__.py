from .otel import inject_trace_context, current_trace_id_hex
from .fastapi import instrument_app
__all__ = ["inject_trace_context", "current_trace_id_hex", "instrument_app"]
