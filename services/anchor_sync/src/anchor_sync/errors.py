"""
Closed failure vocabulary for anchor synchronization.

Every failure the core can observe is one ``FailureKind``; provider SDK
states are a separate closed enum and are folded into failure kinds by
``failure_kind_for``.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    NETWORK_UNREACHABLE = "NetworkUnreachable"
    BAD_SERVER_RESPONSE = "BadServerResponse"
    DECODE_FAILURE = "DecodeFailure"
    PROVIDER_NOT_AUTHORIZED = "ProviderNotAuthorized"
    PROVIDER_RESOURCE_EXHAUSTED = "ProviderResourceExhausted"
    PROVIDER_DATASET_PROCESSING_FAILED = "ProviderDatasetProcessingFailed"
    PROVIDER_IDENTIFIER_NOT_FOUND = "ProviderIdentifierNotFound"
    PROVIDER_SDK_VERSION_MISMATCH = "ProviderSdkVersionMismatch"
    PROVIDER_SERVICE_UNAVAILABLE = "ProviderServiceUnavailable"
    PROVIDER_INTERNAL = "ProviderInternal"
    PROVIDER_TIMEOUT = "ProviderTimeout"
    NO_ACTIVE_ROOM = "NoActiveRoom"

    def __str__(self) -> str:
        return self.value


class AnchorSyncError(Exception):
    """A terminal failure of one host/resolve/registry request."""

    def __init__(
        self,
        kind: FailureKind,
        message: str = "",
        *,
        room_id: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.room_id = room_id
        self.identifier = identifier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "room_id": self.room_id,
            "identifier": self.identifier,
        }

    def __repr__(self) -> str:
        return f"AnchorSyncError({self.kind.value!r}, {self.message!r})"


class CloudAnchorState(str, Enum):
    """States reported by the cloud anchor provider SDK for host/resolve calls."""
    NONE = "none"
    TASK_IN_PROGRESS = "task_in_progress"
    SUCCESS = "success"
    ERROR_INTERNAL = "error_internal"
    ERROR_NOT_AUTHORIZED = "error_not_authorized"
    ERROR_RESOURCE_EXHAUSTED = "error_resource_exhausted"
    ERROR_HOSTING_DATASET_PROCESSING_FAILED = "error_hosting_dataset_processing_failed"
    ERROR_CLOUD_ID_NOT_FOUND = "error_cloud_id_not_found"
    ERROR_RESOLVING_SDK_VERSION_TOO_NEW = "error_resolving_sdk_version_too_new"
    ERROR_RESOLVING_SDK_VERSION_TOO_OLD = "error_resolving_sdk_version_too_old"
    ERROR_HOSTING_SERVICE_UNAVAILABLE = "error_hosting_service_unavailable"

    @property
    def label(self) -> str:
        """Display name used in logs, e.g. ``ErrorNotAuthorized``."""
        if self is CloudAnchorState.NONE:
            return "None"
        return "".join(part.capitalize() for part in self.value.split("_"))

    @property
    def is_success(self) -> bool:
        return self is CloudAnchorState.SUCCESS


_STATE_FAILURES: Dict[CloudAnchorState, FailureKind] = {
    CloudAnchorState.NONE: FailureKind.PROVIDER_INTERNAL,
    CloudAnchorState.TASK_IN_PROGRESS: FailureKind.PROVIDER_INTERNAL,
    CloudAnchorState.ERROR_INTERNAL: FailureKind.PROVIDER_INTERNAL,
    CloudAnchorState.ERROR_NOT_AUTHORIZED: FailureKind.PROVIDER_NOT_AUTHORIZED,
    CloudAnchorState.ERROR_RESOURCE_EXHAUSTED: FailureKind.PROVIDER_RESOURCE_EXHAUSTED,
    CloudAnchorState.ERROR_HOSTING_DATASET_PROCESSING_FAILED: FailureKind.PROVIDER_DATASET_PROCESSING_FAILED,
    CloudAnchorState.ERROR_CLOUD_ID_NOT_FOUND: FailureKind.PROVIDER_IDENTIFIER_NOT_FOUND,
    CloudAnchorState.ERROR_RESOLVING_SDK_VERSION_TOO_NEW: FailureKind.PROVIDER_SDK_VERSION_MISMATCH,
    CloudAnchorState.ERROR_RESOLVING_SDK_VERSION_TOO_OLD: FailureKind.PROVIDER_SDK_VERSION_MISMATCH,
    CloudAnchorState.ERROR_HOSTING_SERVICE_UNAVAILABLE: FailureKind.PROVIDER_SERVICE_UNAVAILABLE,
}


def failure_kind_for(state: CloudAnchorState) -> Optional[FailureKind]:
    """Fold a provider state into a failure kind; ``None`` for success."""
    if state.is_success:
        return None
    return _STATE_FAILURES[state]


__all__ = [
    "FailureKind",
    "AnchorSyncError",
    "CloudAnchorState",
    "failure_kind_for",
]
