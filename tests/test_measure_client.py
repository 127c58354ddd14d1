from datetime import UTC, datetime
from typing import Any, cast

import pytest
import requests

from weighttracker.errors import QueryFailed
from weighttracker.measure_client import (
    MeasureType,
    _transform_measure_groups,
    fetch_weight_measurements_all,
)
from weighttracker.oauth_client import OAuthTokens, WithingsOAuthClient


class DummyClient(WithingsOAuthClient):
    def __init__(self) -> None:  # type: ignore[override]
        super().__init__("id", "secret", "http://localhost:1992/callback")
        self._tokens = OAuthTokens(
            access_token="ACCESS",
            refresh_token="REFRESH",
            expires_at=9_999_999_999.0,
            scope="",
            userid=1,
        )

    def get_valid_access_token(self) -> str:  # override without refresh
        return self._tokens.access_token


class FakeResp:
    def __init__(self, payload: dict[str, Any], status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = "OK" if status_code == 200 else "error"

    def json(self) -> dict[str, Any]:
        return self._payload


def _group(grpid: int, date: int, value: int, category: int = 1, mtype: int = MeasureType.WEIGHT_KG):
    return {
        "grpid": grpid,
        "category": category,
        "date": date,
        "measures": [{"type": mtype, "value": value, "unit": -3}],
    }


def test_transform_keeps_weight_groups_only():
    groups: list[dict[str, Any]] = [
        _group(100, 1700000300, 80150),
        _group(101, 1700000000, 80000),
        _group(102, 1700000100, 70000, category=2),  # objective, not a measurement
        _group(103, 1700000200, 16000, mtype=8),  # fat mass only
    ]
    df = _transform_measure_groups(groups)
    assert list(df.columns) == ["timestamp", "weight_kg", "group_id"]
    assert df["group_id"].tolist() == [101, 100]  # sorted by timestamp
    assert abs(cast(float, df.loc[0, "weight_kg"]) - 80.0) < 1e-9
    assert df.loc[0, "timestamp"] == datetime.fromtimestamp(1700000000, tz=UTC)


def test_transform_empty():
    df = _transform_measure_groups([])
    assert df.empty
    assert set(df.columns) == {"timestamp", "weight_kg", "group_id"}


def test_pagination_aggregates(monkeypatch):
    calls: list[dict[str, Any]] = []

    def fake_get(url: str, params: dict[str, Any], headers: dict[str, str], timeout: int):
        calls.append(params)
        if params.get("offset") is None:
            body = {"measuregrps": [_group(1, 1700000000, 80000)], "more": 1, "offset": 123}
        else:
            body = {"measuregrps": [_group(2, 1700000100, 80100), _group(1, 1700000000, 80000)], "more": 0}
        return FakeResp({"status": 0, "body": body})

    monkeypatch.setattr("weighttracker.measure_client.requests.get", fake_get)
    df = fetch_weight_measurements_all(
        DummyClient(),
        start=datetime(2025, 1, 1, tzinfo=UTC),
        end=datetime(2025, 1, 2, tzinfo=UTC),
    )
    assert df["group_id"].tolist() == [1, 2]  # duplicate group 1 dropped
    assert calls[0].get("offset") is None
    assert calls[1].get("offset") == 123
    assert calls[0]["meastypes"] == "1"
    assert calls[0]["startdate"] == int(datetime(2025, 1, 1, tzinfo=UTC).timestamp())


def test_no_range_omits_dates(monkeypatch):
    seen: dict[str, Any] = {}

    def fake_get(url: str, params: dict[str, Any], headers: dict[str, str], timeout: int):
        seen.update(params)
        return FakeResp({"status": 0, "body": {"measuregrps": [], "more": 0}})

    monkeypatch.setattr("weighttracker.measure_client.requests.get", fake_get)
    df = fetch_weight_measurements_all(DummyClient())
    assert df.empty
    assert "startdate" not in seen and "enddate" not in seen


@pytest.mark.parametrize(
    "resp",
    [FakeResp({}, status_code=500), FakeResp({"status": 401, "body": {}})],
)
def test_api_errors_raise_query_failed(monkeypatch, resp: FakeResp):
    monkeypatch.setattr("weighttracker.measure_client.requests.get", lambda *a, **kw: resp)
    with pytest.raises(QueryFailed):
        fetch_weight_measurements_all(DummyClient())


def test_non_json_body_raises_query_failed(monkeypatch):
    class HtmlResp:
        status_code = 200
        text = "<html>maintenance</html>"

        def json(self) -> dict[str, Any]:
            raise requests.JSONDecodeError("Expecting value", self.text, 0)

    monkeypatch.setattr("weighttracker.measure_client.requests.get", lambda *a, **kw: HtmlResp())
    with pytest.raises(QueryFailed):
        fetch_weight_measurements_all(DummyClient())


def test_token_network_error_raises_query_failed():
    class OfflineClient(DummyClient):
        def get_valid_access_token(self) -> str:
            raise requests.ConnectionError("network is unreachable")

    with pytest.raises(QueryFailed):
        fetch_weight_measurements_all(OfflineClient())
