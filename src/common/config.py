from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError


DEFAULT_FILE_NAME = "subscription_tracker_data.json"
DRIVE_APPDATA_SCOPE = "https://www.googleapis.com/auth/drive.appdata"

# Environment variable names
ENV_CLIENT_ID = "GOOGLE_CLIENT_ID"
ENV_CLIENT_SECRET = "GOOGLE_CLIENT_SECRET"
ENV_API_KEY = "GOOGLE_API_KEY"
ENV_FILE_NAME = "SUBSYNC_FILE_NAME"
ENV_STATE_DIR = "SUBSYNC_STATE_DIR"
ENV_FERNET_KEY = "SUBSYNC_FERNET_KEY"
ENV_HTTP_TIMEOUT = "SUBSYNC_HTTP_TIMEOUT"
ENV_READY_TIMEOUT = "SUBSYNC_READY_TIMEOUT"
ENV_AUTH_TIMEOUT = "SUBSYNC_AUTH_TIMEOUT"

# Fallbacks for .env files shared with the web frontend
FALLBACK_ENV_CLIENT_ID = "VITE_GOOGLE_CLIENT_ID"
FALLBACK_ENV_API_KEY = "VITE_GOOGLE_API_KEY"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    return v if v not in (None, "") else default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0, got {raw!r}")
    return value


def _default_state_dir() -> Path:
    return Path.home() / ".subscription_sync"


class Settings(BaseModel):
    """
    Runtime configuration for the sync engine.

    Credentials are optional at construction time: a missing client id or API
    key is reported by `SessionManager.initialize()` as engine state rather
    than failing startup.
    """

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    api_key: Optional[str] = None
    scope: str = DRIVE_APPDATA_SCOPE
    file_name: str = DEFAULT_FILE_NAME
    state_dir: Path = Field(default_factory=_default_state_dir)
    fernet_key: Optional[str] = None
    http_timeout: float = 15.0
    ready_timeout: float = 10.0
    auth_timeout: float = 300.0

    @classmethod
    def from_env(cls) -> "Settings":
        state_dir = _getenv(ENV_STATE_DIR)
        return cls(
            client_id=_getenv(ENV_CLIENT_ID) or _getenv(FALLBACK_ENV_CLIENT_ID),
            client_secret=_getenv(ENV_CLIENT_SECRET),
            api_key=_getenv(ENV_API_KEY) or _getenv(FALLBACK_ENV_API_KEY),
            file_name=_getenv(ENV_FILE_NAME, DEFAULT_FILE_NAME),
            state_dir=Path(state_dir).expanduser() if state_dir else _default_state_dir(),
            fernet_key=_getenv(ENV_FERNET_KEY),
            http_timeout=_getenv_float(ENV_HTTP_TIMEOUT, 15.0),
            ready_timeout=_getenv_float(ENV_READY_TIMEOUT, 10.0),
            auth_timeout=_getenv_float(ENV_AUTH_TIMEOUT, 300.0),
        )

    @property
    def store_path(self) -> Path:
        return self.state_dir / "store.json"

    def missing_credentials(self) -> List[str]:
        return [
            name
            for name, val in [(ENV_CLIENT_ID, self.client_id), (ENV_API_KEY, self.api_key)]
            if not val
        ]

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing Google credentials: {', '.join(missing)}")


__all__ = ["Settings", "DEFAULT_FILE_NAME", "DRIVE_APPDATA_SCOPE"]
