from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from neh_grants.census.client import RETRY_STATUS_CODES, CensusClient, request_timeouts
from neh_grants.census.errors import CensusFetchError

URL = "https://api.census.gov/data/2010/dec/sf1"
PARAMS = {"get": "NAME,P001001", "for": "state:*", "key": "secret-key"}


class _FakeResponse:
    def __init__(self, body: str, status_code: int = 200) -> None:
        self.text = body
        self.content = body.encode("utf-8")
        self.status_code = status_code

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)


def _client_returning(monkeypatch, response: _FakeResponse | Exception, **kwargs: Any) -> tuple[CensusClient, list]:
    client = CensusClient(**kwargs)
    calls: list[dict[str, Any]] = []

    def _get(url: str, **request_kwargs: Any) -> _FakeResponse:
        calls.append({"url": url, **request_kwargs})
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(client._session, "get", _get)
    return client, calls


def test_client_mounts_bounded_retry_policy() -> None:
    with CensusClient(max_retries=2, backoff_factor=0.25) as client:
        retry = client._session.get_adapter(URL).max_retries

        assert retry.total == 2
        assert retry.backoff_factor == 0.25
        assert set(RETRY_STATUS_CODES).issubset(set(retry.status_forcelist))
        assert "GET" in retry.allowed_methods


def test_request_timeouts_cap_connect_phase() -> None:
    assert request_timeouts(30.0) == (5.0, 30.0)
    assert request_timeouts(2.0) == (2.0, 2.0)


def test_fetch_rows_returns_table_and_passes_params(monkeypatch) -> None:
    body = json.dumps([["NAME", "P001001", "state"], ["Iowa", "3046355", "19"]])
    client, calls = _client_returning(monkeypatch, _FakeResponse(body), timeout_seconds=12.0)

    rows = client.fetch_rows(URL, params=PARAMS)

    assert rows == [["NAME", "P001001", "state"], ["Iowa", "3046355", "19"]]
    assert calls[0]["params"] == PARAMS
    assert calls[0]["timeout"] == (5.0, 12.0)


def test_network_error_becomes_fetch_error(monkeypatch) -> None:
    client, _ = _client_returning(monkeypatch, requests.ConnectionError("connection refused"))

    with pytest.raises(CensusFetchError) as excinfo:
        client.fetch_rows(URL, params=PARAMS)

    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_error_status_becomes_fetch_error_without_leaking_key(monkeypatch) -> None:
    client, _ = _client_returning(
        monkeypatch,
        _FakeResponse("error: unknown variable 'P001001'", status_code=400),
    )

    with pytest.raises(CensusFetchError, match="HTTP 400") as excinfo:
        client.fetch_rows(URL, params=PARAMS)

    assert "secret-key" not in str(excinfo.value)


@pytest.mark.parametrize(
    "body",
    ["", "<html>maintenance</html>", json.dumps({"error": "bad"}), json.dumps([["NAME"], "Iowa"])],
)
def test_unusable_bodies_become_fetch_errors(monkeypatch, body: str) -> None:
    client, _ = _client_returning(monkeypatch, _FakeResponse(body))

    with pytest.raises(CensusFetchError):
        client.fetch_rows(URL, params=PARAMS)
