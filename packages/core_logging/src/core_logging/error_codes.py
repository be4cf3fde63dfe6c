from enum import Enum

class ErrorCode(str, Enum):
    """
    Canonical error codes for the inspector's public error envelope.
    Synchronization failures carry their own ``FailureKind``; these codes only
    describe what went wrong with an inspector HTTP request.
    """
    validation_failed         = "validation_failed"
    not_found                 = "not_found"
    internal                  = "internal"

__all__ = ["ErrorCode"]
