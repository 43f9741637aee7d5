import os
import re
import sys
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, t: datetime = T0) -> None:
        self.t = t

    def __call__(self) -> datetime:  # acts like datetime.now(UTC)
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += timedelta(seconds=seconds)


def drive_time(dt: datetime) -> str:
    """Format like Drive's modifiedTime: 2025-01-01T12:00:00.000Z"""
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class FakeDrive:
    """In-memory Drive v3 served through httpx.MockTransport."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.files: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.valid_tokens: set[str] = set()
        self.fail_uploads = False
        self.fail_all = False
        self._next_id = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # Helpers for tests acting as "another device"
    def put(self, name: str, content: bytes, *, modified: Optional[datetime] = None) -> str:
        self._next_id += 1
        file_id = f"file-{self._next_id}"
        self.files[file_id] = {
            "name": name,
            "parents": ["appDataFolder"],
            "content": content,
            "modifiedTime": drive_time(modified or self._clock()),
            "trashed": False,
        }
        return file_id

    def touch(self, file_id: str, content: bytes, *, modified: datetime) -> None:
        self.files[file_id]["content"] = content
        self.files[file_id]["modifiedTime"] = drive_time(modified)

    def handler(self, request: httpx.Request) -> httpx.Response:
        from drive import codec

        self.requests.append(request)
        path = request.url.path
        if self.fail_all:
            return httpx.Response(503, json={"error": {"code": 503, "message": "Backend Error"}})

        if path == "/discovery/v1/apis/drive/v3/rest":
            return httpx.Response(200, json={"name": "drive", "version": "v3"})

        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer ") or auth[len("Bearer "):] not in self.valid_tokens:
            return httpx.Response(401, json={"error": {"code": 401, "message": "Invalid Credentials"}})

        if request.method == "GET" and path == "/drive/v3/files":
            m = re.match(r"^name = '(.*)' and trashed = false$", request.url.params.get("q", ""))
            name = m.group(1) if m else None
            size = int(request.url.params.get("pageSize", "100"))
            hits = [
                {"id": fid, "modifiedTime": f["modifiedTime"]}
                for fid, f in self.files.items()
                if f["name"] == name and not f["trashed"]
            ]
            return httpx.Response(200, json={"files": hits[:size]})

        m = re.match(r"^/drive/v3/files/([^/]+)$", path)
        if request.method == "GET" and m and request.url.params.get("alt") == "media":
            f = self.files.get(m.group(1))
            if f is None:
                return httpx.Response(404, json={"error": {"code": 404, "message": "File not found"}})
            return httpx.Response(200, content=f["content"])

        if path.startswith("/upload/drive/v3/files"):
            if self.fail_uploads:
                return httpx.Response(500, json={"error": {"code": 500, "message": "Internal Error"}})
            body = request.read()
            meta = codec.extract_metadata_part(body)
            content = codec.extract_payload_part(body)
            if request.method == "POST":
                self._next_id += 1
                file_id = f"file-{self._next_id}"
                self.files[file_id] = {
                    "name": meta.name,
                    "parents": meta.parents,
                    "content": content,
                    "modifiedTime": drive_time(self._clock()),
                    "trashed": False,
                }
                return httpx.Response(200, json={"id": file_id})
            if request.method == "PATCH":
                file_id = path.rsplit("/", 1)[-1]
                if file_id not in self.files:
                    return httpx.Response(404, json={"error": {"code": 404, "message": "File not found"}})
                self.touch(file_id, content, modified=self._clock())
                return httpx.Response(200, json={"id": file_id})

        return httpx.Response(400, json={"error": {"code": 400, "message": f"Unhandled {request.method} {path}"}})


class FakeIdentity:
    """Stands in for GoogleIdentityClient; issues tokens the FakeDrive accepts."""

    def __init__(self, drive: FakeDrive, *, expires_in: int = 3600) -> None:
        self._drive = drive
        self._expires_in = expires_in
        self.prompts: List[str] = []
        self.revoked: List[str] = []
        self.fail_login: Optional[Exception] = None
        self.fail_revoke: Optional[Exception] = None

    def request_access_token(self, *, prompt: str = "select_account"):
        from state.models import TokenGrant

        self.prompts.append(prompt)
        if self.fail_login is not None:
            raise self.fail_login
        token = f"tok-{len(self.prompts)}"
        self._drive.valid_tokens.add(token)
        return TokenGrant(access_token=token, expires_in=self._expires_in)

    def revoke(self, token: str) -> None:
        self.revoked.append(token)
        if self.fail_revoke is not None:
            raise self.fail_revoke
        self._drive.valid_tokens.discard(token)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def drive(clock: FakeClock) -> FakeDrive:
    return FakeDrive(clock)


@pytest.fixture
def transport(drive: FakeDrive):
    from drive.client import DriveClient

    client = httpx.Client(transport=drive.transport(), timeout=10.0)
    with DriveClient("DUMMY-KEY", client=client) as dc:
        yield dc


@pytest.fixture
def identity(drive: FakeDrive) -> FakeIdentity:
    return FakeIdentity(drive)


@pytest.fixture
def settings(tmp_path):
    from common.config import Settings

    return Settings(client_id="cid", api_key="DUMMY-KEY", state_dir=tmp_path, ready_timeout=0.1)


@pytest.fixture
def store(settings):
    from state.local_store import LocalStore

    return LocalStore(settings.store_path)


@pytest.fixture
def engine(settings, store, transport, identity, clock):
    from sync.engine import build_engine

    eng = build_engine(settings, store=store, transport=transport, identity=identity, clock=clock)
    assert eng.initialize() is True
    return eng
