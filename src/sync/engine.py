from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterator, Optional

from common.config import Settings
from common.errors import NotAuthenticatedError, NotReadyError
from drive import codec
from drive.client import DriveClient
from drive.locator import RemoteLocator
from drive.oauth import GoogleIdentityClient
from state.local_store import LocalStore
from state.models import EngineStatus, RemoteObjectRef, Session, SyncState

from .session import Clock, SessionManager, utcnow


logger = logging.getLogger(__name__)

KEY_LAST_SYNC = "last_sync_time"

# Absorbs clock drift between this device and Drive plus upload latency
SKEW_TOLERANCE = timedelta(seconds=10)
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class SyncEngine:
    """
    Push/pull/reconcile of one JSON document against Drive's app-data folder.

    Usage
    - `push(data)` uploads opportunistically: it silently does nothing when
      the session is not connected. `save(data)` is the strict variant.
    - `pull()` downloads the remote document, or returns None on first run.
    - `reconcile(on_restore)` downloads only when the remote copy is newer
      than the last local sync by more than `SKEW_TOLERANCE`; it never raises.

    Notes
    - `last_sync_time` advances only after a transfer succeeds. A failed push
      leaves it untouched so the next reconcile still sees the remote state
      as it really is.
    - Operations are serialized by a re-entrant lock; `syncing` is True while
      one is in flight. An `on_restore` callback may call `push` re-entrantly.
    """

    def __init__(
        self,
        session: SessionManager,
        store: LocalStore,
        *,
        file_name: str,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._store = store
        self._file_name = file_name
        self._clock = clock
        self._lock = threading.RLock()
        self._depth = 0
        self.syncing = False

    # --------------- Session delegation ---------------
    def initialize(self, timeout: Optional[float] = None) -> bool:
        return self._session.initialize(timeout)

    def login(self) -> Session:
        return self._session.login()

    def logout(self) -> bool:
        return self._session.logout()

    @property
    def initialized(self) -> bool:
        return self._session.initialized

    @property
    def authenticated(self) -> bool:
        return self._session.authenticated

    @property
    def init_error(self) -> Optional[str]:
        return self._session.init_error

    @property
    def last_sync_time(self) -> Optional[datetime]:
        try:
            raw = self._store.get(KEY_LAST_SYNC)
        except (ValueError, OSError) as exc:
            logger.warning("Cannot read last sync time: %s", exc)
            return None
        return SyncState.from_iso(raw).last_sync_time

    def status(self) -> EngineStatus:
        return EngineStatus(
            initialized=self.initialized,
            authenticated=self.authenticated,
            syncing=self.syncing,
            last_sync_time=self.last_sync_time,
            init_error=self.init_error,
        )

    # --------------- Operations ---------------
    def push(self, data: Any) -> Optional[str]:
        """Upload `data` if connected; returns the file id, or None when skipped."""
        if not self.authenticated or not self.initialized:
            logger.debug("Skipping push: Drive session not connected")
            return None
        return self._upload(data)

    def save(self, data: Any) -> str:
        """Upload `data`; raises when the session is not usable."""
        self._require_session()
        return self._upload(data)

    def pull(self) -> Any:
        """Download and decode the remote document; None when it does not exist."""
        self._require_session()
        with self._busy():
            ref = self._locate()
            if ref is None:
                logger.info("No remote data file found")
                return None
            payload = codec.decode(self._session.transport.get_media(ref.id))
            self._record_sync()
            logger.info("Downloaded remote data file %s", ref.id)
            return payload

    def reconcile(self, on_restore: Callable[[Any], Any]) -> bool:
        """
        Restore from Drive when the remote copy is strictly newer than the
        last sync plus the skew tolerance.

        Returns True if `on_restore` was called. All errors are logged and
        reported as False.
        """
        if not self.authenticated or not self.initialized:
            return False

        try:
            with self._busy():
                ref = self._locate()
                if ref is None or ref.modified_at is None:
                    return False

                remote_time = ref.modified_at
                local_time = self.last_sync_time or EPOCH
                logger.info("Reconcile check - remote: %s local: %s", remote_time, local_time)
                if remote_time <= local_time + SKEW_TOLERANCE:
                    return False

                logger.info("Remote data is newer; downloading")
                payload = codec.decode(self._session.transport.get_media(ref.id))
                if payload is None:
                    return False
                on_restore(payload)
                # Move past this remote version so the next check does not loop
                self._record_sync()
                return True
        except Exception:
            logger.exception("Reconcile failed")
            return False

    # --------------- Internal ---------------
    def _require_session(self) -> None:
        if not self.authenticated:
            raise NotAuthenticatedError("Not authenticated with Google Drive")
        if not self.initialized:
            raise NotReadyError("Google Drive API not initialized")

    @contextmanager
    def _busy(self) -> Iterator[None]:
        with self._lock:
            self._depth += 1
            self.syncing = True
            try:
                yield
            finally:
                self._depth -= 1
                self.syncing = self._depth > 0

    def _locate(self) -> Optional[RemoteObjectRef]:
        return RemoteLocator(self._session.transport, self._file_name).find()

    def _upload(self, data: Any) -> str:
        with self._busy():
            ref = self._locate()
            metadata = codec.build_metadata(self._file_name, creating=ref is None)
            body, content_type = codec.encode(metadata, data)

            transport = self._session.transport
            if ref is not None:
                file_id = transport.update_multipart(ref.id, body, content_type)
            else:
                file_id = transport.create_multipart(body, content_type)
            self._record_sync()
            logger.info("Uploaded data file %s (%s bytes)", file_id, len(body))
            return file_id

    def _record_sync(self) -> None:
        state = SyncState(last_sync_time=self._clock())
        self._store.set(KEY_LAST_SYNC, state.to_iso() or "")


def build_engine(
    settings: Settings,
    *,
    store: Optional[LocalStore] = None,
    transport: Optional[DriveClient] = None,
    identity: Optional[GoogleIdentityClient] = None,
    clock: Clock = utcnow,
) -> SyncEngine:
    """
    Wire store, Drive transport, identity provider, session and engine.

    Collaborators are only attached when credentials are present; otherwise
    `initialize()` reports the ConfigurationError.
    """
    store = store or LocalStore(settings.store_path, fernet_key=settings.fernet_key)
    session = SessionManager(settings, store, clock=clock)

    if transport is None and settings.api_key:
        transport = DriveClient(settings.api_key, timeout=settings.http_timeout)
    if identity is None and settings.client_id:
        identity = GoogleIdentityClient(
            settings.client_id,
            client_secret=settings.client_secret,
            scope=settings.scope,
            timeout=settings.auth_timeout,
            http_timeout=settings.http_timeout,
        )
    if transport is not None and identity is not None:
        session.attach(identity, transport)

    return SyncEngine(session, store, file_name=settings.file_name, clock=clock)


__all__ = ["SyncEngine", "build_engine", "SKEW_TOLERANCE"]
