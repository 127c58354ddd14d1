import time
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from weighttracker.errors import AccessDenied, Unavailable
from weighttracker.oauth_client import OAuthTokens, WithingsOAuthClient

CONFIG = """[withings.oauth]\nclient_id='cid123'\nclient_secret='secret456'\nredirect_uri='http://localhost:1992/callback'\n"""


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("WEIGHTTRACKER_CONFIG_DIR", str(tmp_path))
    return tmp_path


def test_authorization_url_build(tmp_path: Path):
    cfg = tmp_path / "app_config.toml"
    cfg.write_text(CONFIG)
    client = WithingsOAuthClient.from_config(cfg)
    url = client.build_authorization_url(["user.info", "user.metrics"], state="xyzSTATE")
    parsed = urlparse(url)
    assert parsed.scheme == "https"
    assert parsed.netloc == "account.withings.com"
    qs = parse_qs(parsed.query)
    assert qs["client_id"][0] == "cid123"
    assert qs["state"][0] == "xyzSTATE"
    assert qs["scope"][0] == "user.info,user.metrics"  # comma separated per API


def test_missing_config_is_unavailable(tmp_path: Path):
    with pytest.raises(Unavailable):
        WithingsOAuthClient.from_config(tmp_path / "absent.toml")
    partial = tmp_path / "partial.toml"
    partial.write_text("[withings.oauth]\nclient_id='x'\n")
    with pytest.raises(Unavailable):
        WithingsOAuthClient.from_config(partial)


def test_token_persistence(config_dir: Path):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    tokens = OAuthTokens(
        access_token="ACCESS123",
        refresh_token="REFRESH456",
        expires_at=time.time() + 3600,
        scope="user.info",
        userid=42,
    )
    client._save_tokens(tokens)  # noqa: SLF001 (intentional test of private method)
    loaded = client._load_tokens()
    assert loaded is not None
    assert loaded.access_token == "ACCESS123"
    assert loaded.refresh_token == "REFRESH456"
    assert loaded.userid == 42
    assert (config_dir / ".withings_tokens.json").exists()
    assert client.get_valid_access_token() == "ACCESS123"


def test_no_tokens_is_access_denied(config_dir: Path):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    with pytest.raises(AccessDenied):
        client.get_valid_access_token()


def test_expired_token_is_refreshed(config_dir: Path, monkeypatch):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    client._save_tokens(  # noqa: SLF001
        OAuthTokens(access_token="OLD", refresh_token="R1", expires_at=0.0, scope="user.metrics", userid=7)
    )
    posted: list[dict[str, Any]] = []

    class Resp:
        status_code = 200
        text = "OK"

        def json(self) -> dict[str, Any]:
            return {"status": 0, "body": {"access_token": "NEW", "refresh_token": "R2", "expires_in": 10800}}

    def fake_post(url: str, data: dict[str, Any], timeout: int) -> Resp:
        posted.append(data)
        return Resp()

    monkeypatch.setattr("weighttracker.oauth_client.requests.post", fake_post)
    assert client.get_valid_access_token() == "NEW"
    assert posted[0]["grant_type"] == "refresh_token"
    assert posted[0]["refresh_token"] == "R1"
    reloaded = client._load_tokens()  # noqa: SLF001
    assert reloaded is not None and reloaded.refresh_token == "R2" and reloaded.userid == 7


def test_refresh_rejected_is_access_denied(config_dir: Path, monkeypatch):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    client._save_tokens(  # noqa: SLF001
        OAuthTokens(access_token="OLD", refresh_token="R1", expires_at=0.0, scope="")
    )

    class Resp:
        status_code = 200
        text = "OK"

        def json(self) -> dict[str, Any]:
            return {"status": 503, "error": "invalid refresh_token"}

    monkeypatch.setattr("weighttracker.oauth_client.requests.post", lambda *a, **kw: Resp())
    with pytest.raises(AccessDenied):
        client.get_valid_access_token()


def test_refresh_prefers_response_userid(config_dir: Path, monkeypatch):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    stored = OAuthTokens(access_token="OLD", refresh_token="R1", expires_at=0.0, scope="", userid=7)

    class Resp:
        status_code = 200
        text = "OK"

        def json(self) -> dict[str, Any]:
            return {"status": 0, "body": {"access_token": "NEW", "expires_in": 10800, "userid": "99"}}

    monkeypatch.setattr("weighttracker.oauth_client.requests.post", lambda *a, **kw: Resp())
    assert client.refresh_access_token(stored).userid == 99


def test_non_json_token_response_is_access_denied(config_dir: Path, monkeypatch):
    client = WithingsOAuthClient("id", "secret", "http://localhost:1992/callback")
    stored = OAuthTokens(access_token="OLD", refresh_token="R1", expires_at=0.0, scope="")

    class Resp:
        status_code = 200
        text = "<html></html>"

        def json(self) -> dict[str, Any]:
            raise ValueError("Expecting value")

    monkeypatch.setattr("weighttracker.oauth_client.requests.post", lambda *a, **kw: Resp())
    with pytest.raises(AccessDenied):
        client.refresh_access_token(stored)
