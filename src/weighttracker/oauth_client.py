"""Withings OAuth2 client used by the Withings sample store.

Implements the authorization-code flow with a local HTTP callback server
listening on the redirect_uri host/port, token persistence in the config dir,
and transparent refresh of expired access tokens.

Missing configuration surfaces as ``Unavailable``; missing or unusable tokens
surface as ``AccessDenied``.
"""

import contextlib
import json
import secrets
import threading
import time
import webbrowser
from collections.abc import Mapping
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import requests
from loguru import logger

from .config import get_app_config_path, get_token_path, load_app_config
from .errors import AccessDenied, Unavailable

AUTH_BASE = "https://account.withings.com/oauth2_user/authorize2"
TOKEN_ENDPOINT = "https://wbsapi.withings.net/v2/oauth2"
DEFAULT_SCOPES: tuple[str, ...] = ("user.info", "user.metrics")


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_at: float  # epoch seconds
    scope: str
    userid: int | None = None

    @property
    def expired(self) -> bool:
        # 30s early refresh window
        return time.time() >= (self.expires_at - 30)

    def to_dict(self) -> dict[str, object]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "userid": self.userid,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OAuthTokens":
        try:
            expires_at = float(data.get("expires_at", 0))
        except (TypeError, ValueError):
            expires_at = 0.0  # treat as expired
        try:
            userid: int | None = int(data["userid"])
        except (KeyError, TypeError, ValueError):
            userid = None
        return cls(
            access_token=str(data.get("access_token", "")),
            refresh_token=str(data.get("refresh_token", "")),
            expires_at=expires_at,
            scope=str(data.get("scope", "")),
            userid=userid,
        )


class _CodeCaptureHandler(BaseHTTPRequestHandler):
    """HTTP handler capturing the authorization code from query params."""

    code_container: dict[str, str] = {}

    def do_GET(self) -> None:  # noqa: N802
        params = parse_qs(urlparse(self.path).query)
        if "code" in params:
            self.code_container["code"] = params["code"][0]
            self._reply(200, b"Authorization successful. You can close this window.")
        else:
            self._reply(400, b"No authorization code found.")

    def _reply(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("oauth callback: {}", format % args)


class WithingsOAuthClient:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @staticmethod
    def from_config(path: str | Path | None = None) -> "WithingsOAuthClient":
        """Instantiate client from the ``[withings.oauth]`` table of the TOML config.

        Raises Unavailable when the file or any required key is missing.
        """
        if path is None:
            path = get_app_config_path()
        try:
            data = load_app_config(Path(path))
        except FileNotFoundError as e:
            raise Unavailable(f"Withings is not configured: {e}") from e
        oauth = data.get("withings", {}).get("oauth", {})
        try:
            client_id = oauth["client_id"]
            client_secret = oauth["client_secret"]
            redirect_uri = oauth["redirect_uri"]
        except KeyError as e:
            raise Unavailable(f"Missing required [withings.oauth] key: {e}") from e
        return WithingsOAuthClient(client_id, client_secret, redirect_uri)

    def build_authorization_url(self, scopes: list[str], state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "scope": ",".join(scopes),  # Withings expects comma-separated scopes
            "state": state,
            "redirect_uri": self.redirect_uri,
        }
        return f"{AUTH_BASE}?{urlencode(params)}"

    def _run_local_server_for_code(self, timeout: int = 120) -> str:
        """Start a tiny HTTP server and wait for the authorization code."""
        parsed = urlparse(self.redirect_uri)
        host = parsed.hostname or "localhost"
        port = parsed.port or 80
        code_holder: dict[str, str] = {}
        _CodeCaptureHandler.code_container = code_holder
        server = HTTPServer((host, port), _CodeCaptureHandler)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        start = time.time()
        while "code" not in code_holder and (time.time() - start) < timeout:
            time.sleep(0.25)
        server.shutdown()
        if "code" not in code_holder:
            raise AccessDenied("Did not receive a Withings authorization code in time")
        return code_holder["code"]

    def _token_request(self, payload: dict[str, str]) -> dict[str, Any]:
        resp = requests.post(TOKEN_ENDPOINT, data=payload, timeout=30)
        if resp.status_code != 200:
            raise AccessDenied(f"Token endpoint HTTP {resp.status_code}: {resp.text}")
        try:
            data: dict[str, Any] = resp.json()
        except ValueError as e:
            raise AccessDenied(f"Token endpoint returned a non-JSON body: {e}") from e
        if data.get("status") != 0:
            raise AccessDenied(f"Token request failed with status {data.get('status')}")
        return data.get("body", {})

    def exchange_code_for_tokens(self, code: str) -> OAuthTokens:
        """Exchange authorization code for access & refresh tokens."""
        body = self._token_request(
            {
                "action": "requesttoken",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )
        tokens = OAuthTokens.from_dict(
            {**body, "expires_at": time.time() + int(body.get("expires_in", 0))}
        )
        self._save_tokens(tokens)
        return tokens

    def refresh_access_token(self, tokens: OAuthTokens) -> OAuthTokens:
        """Use refresh token to obtain a new access token."""
        logger.debug("Refreshing Withings access token")
        body = self._token_request(
            {
                "action": "requesttoken",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": tokens.refresh_token,
            }
        )
        raw_userid = body.get("userid")
        new_tokens = OAuthTokens(
            access_token=str(body["access_token"]),
            refresh_token=str(body.get("refresh_token", tokens.refresh_token)),
            expires_at=time.time() + int(body.get("expires_in", 0)),
            scope=str(body.get("scope", tokens.scope)),
            userid=int(raw_userid) if isinstance(raw_userid, (int, str)) else tokens.userid,
        )
        self._save_tokens(new_tokens)
        return new_tokens

    def get_valid_access_token(self) -> str:
        tokens = self._load_tokens()
        if tokens is None:
            raise AccessDenied("No stored Withings tokens; run `weighttracker authorize` first.")
        if tokens.expired:
            tokens = self.refresh_access_token(tokens)
        return tokens.access_token

    def authorize_interactive(self, scopes: list[str]) -> OAuthTokens:
        state = secrets.token_hex(16)
        url = self.build_authorization_url(scopes=scopes, state=state)
        print("Open (or opened) browser to authorize:")
        print(url)
        with contextlib.suppress(Exception):
            webbrowser.open(url)
        code = self._run_local_server_for_code()
        logger.info("Received authorization code; exchanging for tokens")
        return self.exchange_code_for_tokens(code)

    def _save_tokens(self, tokens: OAuthTokens) -> None:
        get_token_path().write_text(json.dumps(tokens.to_dict(), indent=2))

    def _load_tokens(self) -> OAuthTokens | None:
        path = get_token_path()
        if not path.exists():
            return None
        return OAuthTokens.from_dict(json.loads(path.read_text()))


__all__ = ["DEFAULT_SCOPES", "WithingsOAuthClient", "OAuthTokens"]
