from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken


logger = logging.getLogger(__name__)


def _to_fernet(key: str | bytes) -> Fernet:
    # SUBSYNC_FERNET_KEY arrives as text; Fernet wants the base64 bytes
    return Fernet(key.encode("ascii") if isinstance(key, str) else key)


class LocalStore:
    """
    Durable string-to-string key-value store backed by a single JSON file.

    - Holds the session keys (`google_access_token`, `google_token_expiry`,
      `google_logged_in`) and `last_sync_time`. Absence of a key means
      "never set".
    - Loaded lazily on first access and cached in memory.
    - Writes go to a temporary sibling file which is then moved over the
      destination, so a crash never leaves a half-written store.
    - With `fernet_key`, the file content is encrypted at rest. A file that
      cannot be decrypted raises `ValueError` instead of being discarded.
    """

    def __init__(self, path: os.PathLike[str] | str, *, fernet_key: Optional[str | bytes] = None) -> None:
        self._path = Path(path)
        self._fernet = _to_fernet(fernet_key) if fernet_key else None
        self._data: Dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if not self._path.exists():
            self._loaded = True
            return

        raw = self._path.read_bytes()
        if self._fernet is not None:
            try:
                raw = self._fernet.decrypt(raw)
            except InvalidToken as ex:
                raise ValueError(f"Failed to decrypt local store {self._path}: invalid Fernet token") from ex

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Local store %s is corrupt; starting empty", self._path)
            data = {}
        if isinstance(data, dict):
            # normalize to str->str
            self._data = {str(k): str(v) for k, v in data.items() if v is not None}
        self._loaded = True

    def _save(self) -> None:
        payload = json.dumps(self._data, indent=2, sort_keys=True).encode("utf-8")
        if self._fernet is not None:
            payload = self._fernet.encrypt(payload)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.tmp-{uuid4().hex}")
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, self._path)
        finally:
            tmp.unlink(missing_ok=True)

    def get(self, key: str) -> Optional[str]:
        self._ensure_loaded()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self.update({key: value})

    def update(self, values: Dict[str, str]) -> None:
        """Set several keys with a single write."""
        self._ensure_loaded()
        self._data.update({k: str(v) for k, v in values.items()})
        self._save()

    def delete(self, *keys: str) -> None:
        self._ensure_loaded()
        removed = [k for k in keys if self._data.pop(k, None) is not None]
        if removed:
            self._save()

    def reload(self) -> None:
        """Drop the in-memory copy so the next access re-reads the file."""
        self._data = {}
        self._loaded = False


__all__ = ["LocalStore"]
