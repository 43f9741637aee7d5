from __future__ import annotations

from typing import Optional


class SyncError(RuntimeError):
    """Base error for the Drive sync engine."""


class ConfigurationError(SyncError):
    """Required credentials or settings are missing or invalid."""


class NotReadyError(SyncError):
    """Operation attempted before the engine finished initializing."""


class NotAuthenticatedError(SyncError):
    """Operation requires a session that is absent or expired."""


class AuthError(SyncError):
    """Identity provider failed during login, token exchange or revoke."""


class RemoteError(SyncError):
    """Drive query, download or upload failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteTimeoutError(RemoteError, TimeoutError):
    """A Drive request did not complete within the configured timeout."""


class CodecError(SyncError):
    """Payload could not be encoded to, or decoded from, the wire format."""


__all__ = [
    "SyncError",
    "ConfigurationError",
    "NotReadyError",
    "NotAuthenticatedError",
    "AuthError",
    "RemoteError",
    "RemoteTimeoutError",
    "CodecError",
]
