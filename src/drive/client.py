from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from common.errors import RemoteError, RemoteTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://www.googleapis.com"
DISCOVERY_PATH = "/discovery/v1/apis/drive/v3/rest"
FILES_PATH = "/drive/v3/files"
UPLOAD_PATH = "/upload/drive/v3/files"


class DriveClient:
    """
    Minimal Google Drive v3 client for a single app-data file.

    Notes
    - Authenticates requests with the installed bearer token and always sends
      the API key as the `key` query parameter.
    - Every request is bounded by `timeout`; a timeout raises
      `RemoteTimeoutError`. There are no automatic retries: each failure is
      reported once and the caller decides whether to try again.
    - Non-2xx responses raise `RemoteError` carrying the HTTP status code.
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout)
        self._token: Optional[str] = None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "DriveClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Token install ---------------
    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, access_token: str) -> None:
        """Install a bearer token. Raises ValueError for a malformed token."""
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValueError("access token must be a non-empty string")
        if any(ch.isspace() for ch in access_token):
            raise ValueError("access token must not contain whitespace")
        self._token = access_token

    def clear_token(self) -> None:
        self._token = None

    # --------------- Public API ---------------
    def load_discovery(self) -> Dict[str, Any]:
        """Fetch the Drive v3 discovery document; validates the API key."""
        doc = self._json(self._request("GET", DISCOVERY_PATH, auth=False))
        if doc.get("name") != "drive" or doc.get("version") != "v3":
            raise RemoteError("Unexpected discovery document for Drive v3")
        return doc

    def list_files(
        self,
        *,
        q: str,
        spaces: str,
        fields: str,
        page_size: int = 1,
    ) -> List[Dict[str, Any]]:
        params = {"q": q, "spaces": spaces, "fields": fields, "pageSize": page_size}
        data = self._json(self._request("GET", FILES_PATH, params=params))
        files = data.get("files", [])
        if not isinstance(files, list):
            raise RemoteError("Malformed files.list response from Google Drive")
        return files

    def get_media(self, file_id: str) -> bytes:
        resp = self._request("GET", f"{FILES_PATH}/{file_id}", params={"alt": "media"})
        return resp.content

    def create_multipart(self, body: bytes, content_type: str) -> str:
        resp = self._request(
            "POST",
            UPLOAD_PATH,
            params={"uploadType": "multipart"},
            content=body,
            headers={"Content-Type": content_type},
        )
        return self._file_id(resp)

    def update_multipart(self, file_id: str, body: bytes, content_type: str) -> str:
        resp = self._request(
            "PATCH",
            f"{UPLOAD_PATH}/{file_id}",
            params={"uploadType": "multipart"},
            content=body,
            headers={"Content-Type": content_type},
        )
        return self._file_id(resp)

    # --------------- Internal ---------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: bool = True,
    ) -> httpx.Response:
        query = {**(params or {}), "key": self._api_key}
        hdrs = dict(headers or {})
        if auth and self._token:
            hdrs["Authorization"] = f"Bearer {self._token}"

        try:
            resp = self._client.request(
                method, f"{self._api_base}{path}", params=query, content=content, headers=hdrs
            )
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"{method} {path} timed out after {self._timeout}s") from exc
        except httpx.TransportError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if 200 <= resp.status_code < 300:
            return resp
        raise RemoteError(
            f"HTTP {resp.status_code} from Google Drive: {self._error_message(resp)}",
            status_code=resp.status_code,
        )

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteError("Failed to parse JSON from Google Drive") from exc
        if not isinstance(data, dict):
            raise RemoteError("Malformed response from Google Drive")
        return data

    def _file_id(self, resp: httpx.Response) -> str:
        file_id = self._json(resp).get("id")
        if not isinstance(file_id, str) or not file_id:
            raise RemoteError("Google Drive response is missing the file id")
        return file_id

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        # Drive errors look like { error: { code, message, errors: [...] } }
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        err = body.get("error") if isinstance(body, dict) else None
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        return resp.text[:200]


__all__ = ["DriveClient", "DEFAULT_API_BASE"]
