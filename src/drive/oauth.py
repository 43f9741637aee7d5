"""
Google OAuth 2.0 identity provider for installed applications.

Flow used by `request_access_token`:
1. Start an http.server on 127.0.0.1:<free port>
2. Open the browser at Google's consent page with a PKCE challenge and
   `redirect_uri=http://127.0.0.1:<port>/`
3. Google redirects back with `?code=...&state=...` (or `?error=...`)
4. Exchange the code at the token endpoint for `{access_token, expires_in}`
5. Shut the server down

`revoke` posts the token to Google's revocation endpoint.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import socket
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from pydantic import ValidationError

from common.config import DRIVE_APPDATA_SCOPE
from common.errors import AuthError
from state.models import TokenGrant


logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
REVOKE_ENDPOINT = "https://oauth2.googleapis.com/revoke"

_DONE_HTML = b"""<!DOCTYPE html>
<html><head><title>Subscription Sync</title></head>
<body><p>Authorization finished. You can close this tab.</p></body></html>"""


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class _CallbackServer(HTTPServer):
    """Loopback server that captures a single OAuth redirect."""

    def __init__(self, port: int) -> None:
        super().__init__(("127.0.0.1", port), _CallbackHandler)
        self.timeout = 0.5
        self.params: Dict[str, str] = {}
        self.received = threading.Event()
        self.stopped = threading.Event()

    def serve_until_received(self) -> None:
        while not self.received.is_set() and not self.stopped.is_set():
            self.handle_request()


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != "/":
            self.send_response(404)
            self.end_headers()
            return

        query = parse_qs(parsed.query)
        self.server.params = {k: v[0] for k, v in query.items() if v}
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(_DONE_HTML)
        self.server.received.set()

    def log_message(self, format, *args) -> None:
        logger.debug("OAuth callback: %s", format % args)


class GoogleIdentityClient:
    """
    Interactive access-token source and revoker for Google accounts.

    - `open_browser` is injectable so tests (or headless hosts) can drive the
      redirect themselves; it receives the consent URL.
    - `timeout` bounds the wait for the browser redirect.
    """

    def __init__(
        self,
        client_id: str,
        *,
        client_secret: Optional[str] = None,
        scope: str = DRIVE_APPDATA_SCOPE,
        timeout: float = 300.0,
        http_timeout: float = 15.0,
        open_browser: Callable[[str], Any] = webbrowser.open,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not client_id:
            raise ValueError("client_id is required")
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._timeout = timeout
        self._open_browser = open_browser
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=http_timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "GoogleIdentityClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def authorization_url(self, *, redirect_uri: str, state: str, code_challenge: str, prompt: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self._scope,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "prompt": prompt,
        }
        return f"{AUTH_ENDPOINT}?{urlencode(params)}"

    def request_access_token(self, *, prompt: str = "select_account") -> TokenGrant:
        """
        Run the consent flow and return the granted token.

        Raises AuthError on user denial, state mismatch, timeout or a failed
        code exchange.
        """
        verifier, challenge = _pkce_pair()
        state = secrets.token_urlsafe(16)
        try:
            port = _find_free_port()
            server = _CallbackServer(port)
        except OSError as exc:
            raise AuthError(f"Cannot start the OAuth callback server: {exc}") from exc
        redirect_uri = f"http://127.0.0.1:{port}/"

        thread = threading.Thread(target=server.serve_until_received, daemon=True)
        thread.start()
        logger.info("OAuth callback server listening on port %s", port)
        try:
            url = self.authorization_url(
                redirect_uri=redirect_uri, state=state, code_challenge=challenge, prompt=prompt
            )
            try:
                self._open_browser(url)
            except OSError as exc:
                raise AuthError(f"Cannot open the browser for authorization: {exc}") from exc
            if not server.received.wait(timeout=self._timeout):
                raise AuthError(f"Timed out after {self._timeout}s waiting for browser authorization")
        finally:
            server.stopped.set()
            thread.join(timeout=2.0)
            server.server_close()

        params = server.params
        if "error" in params:
            raise AuthError(f"Authorization denied: {params['error']}")
        if params.get("state") != state:
            raise AuthError("Authorization state mismatch")
        code = params.get("code")
        if not code:
            raise AuthError("Authorization response is missing the code")
        return self.exchange_code(code, redirect_uri=redirect_uri, code_verifier=verifier)

    def exchange_code(self, code: str, *, redirect_uri: str, code_verifier: str) -> TokenGrant:
        form = {
            "client_id": self._client_id,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        if self._client_secret:
            form["client_secret"] = self._client_secret

        data = self._post(TOKEN_ENDPOINT, form)
        if "error" in data:
            desc = data.get("error_description") or data["error"]
            raise AuthError(f"Token exchange failed: {desc}")
        try:
            return TokenGrant.model_validate(data)
        except ValidationError as ve:
            raise AuthError(f"Malformed token response: {ve}") from ve

    def revoke(self, token: str) -> None:
        self._post(REVOKE_ENDPOINT, {"token": token})
        logger.info("Access token revoked")

    # --------------- Internal ---------------
    def _post(self, url: str, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = self._client.post(url, data=form)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise AuthError(f"Request to {url} failed: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.status_code == 200:
            return body
        # Token endpoint reports failures as 400 + {error, error_description}
        if url == TOKEN_ENDPOINT and "error" in body:
            return body
        desc = body.get("error_description") or body.get("error") or resp.text[:200]
        raise AuthError(f"HTTP {resp.status_code} from {url}: {desc}")


__all__ = ["GoogleIdentityClient"]
