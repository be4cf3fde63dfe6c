"""
anchor_sync – shares spatial anchors between clients in the same room.

A client places anchors locally, hosts them with the cloud anchor provider
and publishes the resulting ids to the room registry; clients joining the
room pull those ids and resolve them back into local anchors.
"""

from core_logging import get_logger

from .errors import AnchorSyncError, CloudAnchorState, FailureKind, failure_kind_for
from .provider import CloudAnchorProvider, CloudAnchorSdk, HostOutcome, ResolveOutcome
from .registry import RoomRegistryClient
from .rooms import RoomMembershipSource, RoomSubscription
from .session import InMemoryTrackingSession, LocalAnchor, TrackingSession
from .synchronizer import AnchorSynchronizer, HostRequest, RequestState, ResolveRequest

# Service root owns the stdout handler; module loggers (anchor_sync.*) propagate to it
logger = get_logger("anchor_sync")

__all__ = [
    "AnchorSyncError",
    "CloudAnchorState",
    "FailureKind",
    "failure_kind_for",
    "CloudAnchorProvider",
    "CloudAnchorSdk",
    "HostOutcome",
    "ResolveOutcome",
    "RoomRegistryClient",
    "RoomMembershipSource",
    "RoomSubscription",
    "InMemoryTrackingSession",
    "LocalAnchor",
    "TrackingSession",
    "AnchorSynchronizer",
    "HostRequest",
    "RequestState",
    "ResolveRequest",
]
