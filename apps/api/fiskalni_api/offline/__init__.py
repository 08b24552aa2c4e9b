from fiskalni_api.offline.broadcast import BroadcastChannel, BroadcastMessage
from fiskalni_api.offline.reconciler import FlushReport, RemoteChangeOutcome, SyncReconciler
from fiskalni_api.offline.store import InvalidSyncTransition, LocalOfflineStore, LocalRecord, SyncStatus
from fiskalni_api.offline.transport import (
    HttpSyncTransport,
    SyncAuthError,
    SyncRejectedError,
    SyncTransport,
    SyncTransportError,
)

__all__ = [
    "BroadcastChannel",
    "BroadcastMessage",
    "FlushReport",
    "HttpSyncTransport",
    "InvalidSyncTransition",
    "LocalOfflineStore",
    "LocalRecord",
    "RemoteChangeOutcome",
    "SyncAuthError",
    "SyncReconciler",
    "SyncRejectedError",
    "SyncStatus",
    "SyncTransport",
    "SyncTransportError",
]
