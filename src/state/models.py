from __future__ import annotations

from datetime import UTC, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(dt: datetime) -> datetime:
    # Stored timestamps without an offset are treated as UTC
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


class Session(BaseModel):
    """
    Access session persisted in the local store.

    Fields
    - access_token: opaque bearer token issued by the identity provider.
    - expires_at_ms: expiry as epoch milliseconds (0 when unknown).
    - authenticated: True once a non-expired token has been installed on the
      Drive transport since the last restore.
    """

    access_token: Optional[str] = None
    expires_at_ms: int = 0
    authenticated: bool = False

    def is_live(self, now_ms: int) -> bool:
        return bool(self.access_token) and self.expires_at_ms > now_ms


class TokenGrant(BaseModel):
    """Result of an interactive token request."""

    access_token: str
    expires_in: int = Field(..., description="Token lifetime in seconds")


class RemoteObjectRef(BaseModel):
    """Handle to the remote data file; resolved fresh for every operation."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    modified_at: Optional[datetime] = Field(default=None, alias="modifiedTime")

    @field_validator("modified_at")
    @classmethod
    def modified_at_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return None if v is None else _as_utc(v)


class FileMetadata(BaseModel):
    """JSON metadata part of a multipart create/update request."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    mime_type: str = Field(default="application/json", alias="mimeType")
    # Only set on create; pins the file inside the private app folder
    parents: Optional[List[str]] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SyncState(BaseModel):
    """Last successful transfer time, persisted as an ISO-8601 string."""

    last_sync_time: Optional[datetime] = None

    @classmethod
    def from_iso(cls, raw: Optional[str]) -> "SyncState":
        if not raw:
            return cls()
        try:
            return cls(last_sync_time=_as_utc(datetime.fromisoformat(raw)))
        except ValueError:
            return cls()

    def to_iso(self) -> Optional[str]:
        if self.last_sync_time is None:
            return None
        return _as_utc(self.last_sync_time).isoformat(timespec="milliseconds")


class EngineStatus(BaseModel):
    """Observable engine state for UIs and the CLI."""

    initialized: bool = False
    authenticated: bool = False
    syncing: bool = False
    last_sync_time: Optional[datetime] = None
    init_error: Optional[str] = None
