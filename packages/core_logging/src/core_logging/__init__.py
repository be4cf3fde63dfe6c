from .logger import (
    get_logger,
    log_stage,
    log_event,
    bind_room_id,
    bind_sync_id,
    current_room_id,
    current_sync_id,
    record_error,
)
from .journal import Journal, JournalEntry

__all__ = [
    "get_logger",
    "log_stage",
    "log_event",
    "bind_room_id",
    "bind_sync_id",
    "current_room_id",
    "current_sync_id",
    "record_error",
    "Journal",
    "JournalEntry",
]
