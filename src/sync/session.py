from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Callable, Optional

from common.config import Settings
from common.errors import AuthError, ConfigurationError, NotReadyError, RemoteError
from drive.client import DriveClient
from drive.oauth import GoogleIdentityClient
from state.local_store import LocalStore
from state.models import Session


logger = logging.getLogger(__name__)

# Local store keys
KEY_ACCESS_TOKEN = "google_access_token"
KEY_TOKEN_EXPIRY = "google_token_expiry"
KEY_LOGGED_IN = "google_logged_in"
SESSION_KEYS = (KEY_ACCESS_TOKEN, KEY_TOKEN_EXPIRY, KEY_LOGGED_IN)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_expiry(raw: Optional[str]) -> int:
    try:
        return int(float(raw)) if raw else 0
    except ValueError:
        return 0


class SessionManager:
    """
    Owns the access-token lifecycle: acquisition, persistence, restore,
    expiry check and revocation.

    The identity provider and Drive transport are supplied through `attach()`,
    which also releases any `initialize()` call waiting for them. Initialization
    problems are recorded in `init_error` instead of being raised, so startup
    never crashes on missing credentials or an unreachable API.
    """

    def __init__(
        self,
        settings: Settings,
        store: LocalStore,
        *,
        identity: Optional[GoogleIdentityClient] = None,
        transport: Optional[DriveClient] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._clock = clock
        self._identity: Optional[GoogleIdentityClient] = None
        self._transport: Optional[DriveClient] = None
        self._ready = threading.Event()
        self._cancelled = False

        self.initialized = False
        self.authenticated = False
        self.init_error: Optional[str] = None

        if identity is not None and transport is not None:
            self.attach(identity, transport)

    # --------------- Wiring ---------------
    def attach(self, identity: GoogleIdentityClient, transport: DriveClient) -> None:
        """Provide the external collaborators and release a pending `initialize()`."""
        self._identity = identity
        self._transport = transport
        self._ready.set()

    def cancel(self) -> None:
        """Abort a pending readiness wait; `initialize()` then reports NotReadyError."""
        self._cancelled = True
        self._ready.set()

    @property
    def transport(self) -> DriveClient:
        if self._transport is None:
            raise NotReadyError("Drive transport is not attached")
        return self._transport

    def now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    # --------------- Lifecycle ---------------
    def initialize(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the collaborators, set up the Drive client and restore any
        persisted session.

        Returns True when the engine is ready. Never raises: failures are kept
        in `init_error`.
        """
        if self.initialized:
            return True

        try:
            self._settings.require_credentials()
        except ConfigurationError as exc:
            logger.warning("Google Drive sync disabled: %s", exc)
            self.init_error = str(exc)
            return False

        wait = self._settings.ready_timeout if timeout is None else timeout
        if not self._ready.wait(wait) or self._cancelled or self._transport is None:
            exc = NotReadyError(
                "Initialization cancelled" if self._cancelled else f"Google services not available after {wait}s"
            )
            logger.error("%s", exc)
            self.init_error = str(exc)
            return False

        try:
            self._transport.load_discovery()
        except RemoteError as exc:
            logger.error("Error initializing Drive client: %s", exc)
            self.init_error = f"Failed to initialize Drive client: {exc}"
            return False

        try:
            self.restore_session()
        except (ValueError, OSError) as exc:
            logger.error("Local store unreadable: %s", exc)
            self.init_error = f"Local store unreadable: {exc}"
            return False

        self.init_error = None
        self.initialized = True
        return True

    def restore_session(self) -> bool:
        """
        Re-install a persisted, unexpired token.

        Expired or rejected tokens are left in the store for the next login
        to overwrite; a transient failure must not log the user out.
        """
        transport = self.transport
        session = self.load()
        if session.is_live(self.now_ms()):
            try:
                transport.set_token(session.access_token or "")
            except ValueError as exc:
                logger.warning("Failed to install stored token: %s", exc)
                self.authenticated = False
            else:
                logger.info("Drive session restored")
                self.authenticated = True
        else:
            self.authenticated = False
            if session.access_token:
                logger.info("Stored Drive token has expired")
        return self.authenticated

    def login(self) -> Session:
        """Interactively acquire a new token and persist it."""
        if not self.initialized or self._identity is None:
            raise NotReadyError("Google services not fully initialized")

        grant = self._identity.request_access_token(prompt="select_account")
        try:
            self.transport.set_token(grant.access_token)
        except ValueError as exc:
            raise AuthError(f"Identity provider returned an unusable token: {exc}") from exc

        expires_at = self.now_ms() + grant.expires_in * 1000
        self._store.update(
            {
                KEY_ACCESS_TOKEN: grant.access_token,
                KEY_TOKEN_EXPIRY: str(expires_at),
                KEY_LOGGED_IN: "true",
            }
        )
        self.authenticated = True
        logger.info("Logged in to Google Drive; token valid for %ss", grant.expires_in)
        return Session(access_token=grant.access_token, expires_at_ms=expires_at, authenticated=True)

    def logout(self) -> bool:
        """
        Revoke and forget the installed token. Returns False if none was installed.

        Local state is cleared even when revocation fails; the AuthError is
        re-raised afterwards.
        """
        transport = self._transport
        token = transport.token if transport is not None else None
        if token is None:
            return False
        try:
            if self._identity is not None:
                self._identity.revoke(token)
        finally:
            transport.clear_token()
            self._store.delete(*SESSION_KEYS)
            self.authenticated = False
        return True

    def load(self) -> Session:
        """Read the persisted session (authenticated reflects the live flag)."""
        return Session(
            access_token=self._store.get(KEY_ACCESS_TOKEN),
            expires_at_ms=_parse_expiry(self._store.get(KEY_TOKEN_EXPIRY)),
            authenticated=self.authenticated,
        )


__all__ = ["SessionManager", "SESSION_KEYS", "utcnow"]
