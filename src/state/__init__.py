"""
Local state for the sync engine.

This package defines the session/sync models and the durable key-value
store that keeps them across process restarts.
"""

from .local_store import LocalStore
from .models import EngineStatus, FileMetadata, RemoteObjectRef, Session, SyncState, TokenGrant

__all__ = [
    "EngineStatus",
    "FileMetadata",
    "LocalStore",
    "RemoteObjectRef",
    "Session",
    "SyncState",
    "TokenGrant",
]
