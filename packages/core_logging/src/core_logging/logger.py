import logging, sys, orjson, os, asyncio
from typing import Any, Optional, Dict
from contextlib import contextmanager
import time
import contextvars

# ────────────────────────────────────────────────────────────
# Synchronization correlation (room + sync pass)
# ────────────────────────────────────────────────────────────
# Background tasks copy the current context when they are created, so a pull
# phase that binds its room_id/sync_id tags every line it (and its children)
# emits, even after the current room has moved on.

_ROOM_ID: contextvars.ContextVar[Optional[str]] = \
    contextvars.ContextVar("_ROOM_ID", default=None)
_SYNC_ID: contextvars.ContextVar[Optional[str]] = \
    contextvars.ContextVar("_SYNC_ID", default=None)

def bind_room_id(room_id: Optional[str]) -> None:
    """Bind the room a unit of work belongs to (``None`` clears it)."""
    _ROOM_ID.set(room_id)

def bind_sync_id(sync_id: Optional[str]) -> None:
    """Bind the id of the current synchronization pass."""
    _SYNC_ID.set(sync_id)

def current_room_id() -> Optional[str]:
    return _ROOM_ID.get()

def current_sync_id() -> Optional[str]:
    return _SYNC_ID.get()


class _CorrelationFilter(logging.Filter):
    """Inject bound room_id / sync_id into LogRecords that lack them."""
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "room_id", None) is None:
            rid = _ROOM_ID.get()
            if rid:
                record.room_id = rid
        if getattr(record, "sync_id", None) is None:
            sid = _SYNC_ID.get()
            if sid:
                record.sync_id = sid
        return True

# Reserved LogRecord attributes we must not overwrite
_RESERVED: set[str] = {
    "name","msg","args","levelname","levelno",
    "pathname","filename","module","exc_info","exc_text","stack_info",
    "lineno","funcName","created","msecs","relativeCreated",
    "thread","threadName","processName","process","message","asctime",
    "taskName",
}

# Top‑level fields of the log envelope; everything else lands in ``meta``
_TOP_LEVEL: set[str] = {
    "ts",                 # ISO-8601 UTC
    "level",              # INFO|DEBUG|…
    "service",            # anchor_sync|…
    "stage",              # pull|host|resolve|upload|frame|…
    "latency_ms",
    "room_id",
    "sync_id",
    "identifier",
    "error_code",
    "status_code",
    "message",            # preserved human message
}

def _default(obj):
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="ignore")
    # Enums, pydantic models, dataclasses → best-effort string
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)

class JsonFormatter(logging.Formatter):
    """Emit one JSON object per line.

    Top‑level keys follow the envelope above; everything else is nested under ``meta``.
    """

    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(getattr(record, "created", time.time()))),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", record.name),
            # Canonical event key (do not duplicate as `message`)
            "event": record.getMessage(),
        }

        meta: Dict[str, Any] = {}
        for key, val in record.__dict__.items():
            if key in _RESERVED:
                continue
            if key in _TOP_LEVEL:
                base[key] = val
            else:
                meta[key] = val

        msg_extra = record.__dict__.get("message_extra", None)
        if msg_extra is not None:
            base["message"] = msg_extra
            meta.pop("message_extra", None)

        if meta:
            base["meta"] = meta
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)

        return orjson.dumps(base, default=_default).decode("utf-8")

class StructuredLogger(logging.Logger):
    """
    A drop-in `logging.Logger` replacement that **accepts arbitrary keyword
    arguments** (e.g. `logger.info("msg", stage="host")`) and transparently
    merges them into the `extra` mapping.
    """

    def _log(                                   # noqa: PLR0913 – keep signature
        self,
        level: int,
        msg: str,
        args,
        exc_info=None,
        extra: Dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        if kwargs:                              # merge kw-args → extra-dict
            extra = {**(extra or {}), **kwargs}
        extra = _sanitize_extra(extra)
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel,
        )


class DynamicStdoutHandler(logging.StreamHandler):
    """
    Ensures every *emit* writes to **the current** `sys.stdout`.

    Tests (`redirect_stdout(...)`) replace `sys.stdout` *after* the logger
    has been instantiated; refreshing the stream on each call guarantees the
    log line is captured by the redirected buffer.
    """

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401
        self.setStream(sys.stdout)
        super().emit(record)


# Make the subclass the default for *new* loggers created after this import
logging.setLoggerClass(StructuredLogger)


def get_logger(name: str = "anchor_sync", level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    is_service_root = "." not in name  # only top-level names own handlers

    if is_service_root:
        if not logger.handlers:
            handler = DynamicStdoutHandler()
            handler.setFormatter(JsonFormatter())
            logger.addHandler(handler)
        # Service roots terminate propagation to avoid double-emit at the root.
        logger.propagate = False
    else:
        # Leaf/module loggers never own handlers; let them bubble to the service root.
        for h in list(logger.handlers):
            logger.removeHandler(h)
        logger.propagate = True

    logger.setLevel(level or os.getenv("SERVICE_LOG_LEVEL", "INFO"))
    if not any(isinstance(f, _CorrelationFilter) for f in logger.filters):
        logger.addFilter(_CorrelationFilter())
    return logger

def log_event(logger: logging.Logger, event: str, **kwargs: Any) -> None:
    logger.info(event, extra=_sanitize_extra(kwargs))

# ---------------------------------------------------------------------------#
# log_stage – imperative **and** decorator utility                           #
# ---------------------------------------------------------------------------#
def _emit_stage_log(logger: logging.Logger, stage: str, event: str, **extras: Any) -> None:
    level = extras.pop("level", None)
    levelno = getattr(logging, str(level).upper(), logging.INFO) if level else logging.INFO
    logger.log(levelno, event, extra=_sanitize_extra({"stage": stage, **extras}))

def log_stage(logger: logging.Logger, stage: str, event: str, **fixed: Any):
    """
    *Imperative*  →  log_stage(logger, "host", "host.requested", handle=h)
    *Decorator*   →  @log_stage(logger, "pull", "pull")
                     async def pull(...):
                         ...
    Also exposes ``.ctx`` for timing a block as a context-manager.
    """
    _emit_stage_log(logger, stage, event, **fixed)

    def _decorator(fn):
        if asyncio.iscoroutinefunction(fn):
            async def _aw(*a, **kw):
                t0 = time.perf_counter()
                try:
                    return await fn(*a, **kw)
                finally:
                    _emit_stage_log(
                        logger, stage, f"{event}.done",
                        latency_ms=(time.perf_counter() - t0) * 1000,
                        **fixed,
                    )
            return _aw

        def _w(*a, **kw):
            t0 = time.perf_counter()
            try:
                return fn(*a, **kw)
            finally:
                _emit_stage_log(
                    logger, stage, f"{event}.done",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                    **fixed,
                )
        return _w

    @contextmanager
    def _ctx(**dynamic):
        _emit_stage_log(logger, stage, f"{event}.start", **(fixed | dynamic))
        t0 = time.perf_counter()
        try:
            yield
        finally:
            _emit_stage_log(
                logger, stage, f"{event}.done",
                latency_ms=(time.perf_counter() - t0) * 1000,
                **(fixed | dynamic),
            )

    _decorator.ctx = _ctx
    return _decorator

# ────────────────────────────────────────────────────────────
# Error helper (single-line ERRORs)
# ────────────────────────────────────────────────────────────
def record_error(
    code: str,
    *,
    where: str,
    message: str,
    logger: logging.Logger,
    action: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    level: str = "ERROR",
    **extras: Any,
) -> None:
    """
    Emit one normalized ERROR line. Safe to call from any failure path.
    Context keys that belong to the envelope (room_id, identifier) are
    promoted to the top level so operators can filter on them.
    """
    lvl = (level or "ERROR").upper()
    levelno = getattr(logging, lvl, logging.ERROR)
    ctx = dict(context) if isinstance(context, dict) else {}
    payload = {
        "stage": extras.pop("stage", None) or "error",
        "error_code": str(code),
        "error_message": message,
        "where": where,
        **({"action": action} if action else {}),
        **{k: ctx.pop(k) for k in ("room_id", "identifier") if ctx.get(k) is not None},
        **({"context": ctx} if ctx else {}),
        **extras,
    }
    logger.log(levelno, "error", extra=_sanitize_extra(payload))

def _sanitize_extra(extra: Dict[str, Any] | None) -> Dict[str, Any]:
    """
    Remove/rename keys in `extra` that would collide with LogRecord attributes.
    - `message` is remapped to `message_extra` to preserve content.
    - all other collisions are namespaced as `meta_<key>`.
    """
    if not extra:
        return {}
    safe: Dict[str, Any] = {}
    for k, v in extra.items():
        lk = str(k)
        # Flatten user-provided nested `meta` to avoid meta.meta
        if lk == "meta" and isinstance(v, dict):
            for mk, mv in v.items():
                mk_norm = str(mk)
                if mk_norm in _RESERVED:
                    safe[f"meta_{mk_norm}"] = mv
                else:
                    safe[mk_norm] = mv
            continue

        if lk in _RESERVED:
            if lk == "message":
                safe["message_extra"] = v
            else:
                safe[f"meta_{lk}"] = v
        else:
            safe[lk] = v
    return safe
