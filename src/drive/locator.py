from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from common.errors import RemoteError
from state.models import RemoteObjectRef

from .client import DriveClient
from .codec import APP_DATA_FOLDER


LIST_FIELDS = "files(id, modifiedTime)"


def _quote(name: str) -> str:
    return name.replace("\\", "\\\\").replace("'", "\\'")


class RemoteLocator:
    """
    Finds the single data file inside the app-data folder by exact name.

    Every call re-queries Drive: the file may have been deleted or recreated
    by another client on the same account, so ids are never cached.
    """

    def __init__(self, transport: DriveClient, file_name: str) -> None:
        self._transport = transport
        self._file_name = file_name

    @property
    def query(self) -> str:
        return f"name = '{_quote(self._file_name)}' and trashed = false"

    def find(self) -> Optional[RemoteObjectRef]:
        """Return the file handle, or None when it does not exist yet."""
        files = self._transport.list_files(
            q=self.query,
            spaces=APP_DATA_FOLDER,
            fields=LIST_FIELDS,
            page_size=1,
        )
        if not files:
            return None
        try:
            return RemoteObjectRef.model_validate(files[0])
        except ValidationError as ve:
            raise RemoteError(f"Failed to parse files.list entry: {ve}") from ve


__all__ = ["RemoteLocator"]
