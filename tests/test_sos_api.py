import asyncio
import threading
from datetime import date

import pytest
import requests

from auth.sos_auth import SosAuth, SosAuthError
from services import sos_api
from services.sos_api import SosApiClient, SosApiError, SosRateLimitError


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.text = ""

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    """Answers GETs from a callable keyed on (url, params); records every call."""

    def __init__(self, handler):
        self._handler = handler
        self._lock = threading.Lock()
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        with self._lock:
            self.calls.append({"url": url, "headers": headers, "params": dict(params or {})})
        return self._handler(url, params or {})


def _client(handler, **kwargs):
    sleeps = []
    session = _FakeSession(handler)
    options = {
        "base_url": "https://sos.test/api/v2",
        "page_size": 2,
        "concurrency": 2,
        "rate_limit_seconds": 0.0,
        "throttle_wait_seconds": 1.0,
        "max_retries": 3,
    }
    options.update(kwargs)
    client = SosApiClient(SosAuth("test-key"), session=session, sleep=sleeps.append, **options)
    return client, session, sleeps


def _paged_items(total):
    items = [{"id": str(i), "sku": f"S{i}"} for i in range(total)]

    def handler(url, params):
        start = params["start"]
        return _FakeResponse(payload={"data": items[start : start + params["maxresults"]], "totalCount": total})

    return handler


def test_fetch_all_items_reads_every_page_in_chunks():
    client, session, _ = _client(_paged_items(7))

    items = asyncio.run(client.fetch_all_items())

    assert [item["id"] for item in items] == [str(i) for i in range(7)]
    starts = sorted(call["params"]["start"] for call in session.calls)
    assert starts == [0, 2, 4, 6]
    assert session.calls[0]["headers"]["Authorization"] == "Bearer test-key"
    assert session.calls[0]["params"]["archived"] == "false"


def test_fetch_all_items_stops_after_short_first_page():
    client, session, _ = _client(_paged_items(1))
    items = asyncio.run(client.fetch_all_items())
    assert len(items) == 1
    assert len(session.calls) == 1


def test_fetch_all_items_without_total_stops_on_short_page():
    data = [{"id": str(i)} for i in range(5)]

    def handler(url, params):
        start = params["start"]
        return _FakeResponse(payload=data[start : start + params["maxresults"]])

    client, session, _ = _client(handler)
    items = asyncio.run(client.fetch_all_items())
    assert len(items) == 5
    assert max(call["params"]["start"] for call in session.calls) <= 6


def test_rate_limit_retries_with_exponential_backoff_then_succeeds():
    responses = [
        _FakeResponse(status_code=429, reason="Too Many Requests"),
        _FakeResponse(status_code=429, reason="Too Many Requests"),
        _FakeResponse(payload={"data": [{"id": "1"}], "totalCount": 1}),
    ]
    client, session, sleeps = _client(lambda url, params: responses.pop(0))

    page = client.fetch_page(0)

    assert page["items"] == [{"id": "1"}]
    assert sleeps == [1.0, 2.0]
    assert len(session.calls) == 3


def test_rate_limit_gives_up_after_max_retries():
    client, session, sleeps = _client(lambda url, params: _FakeResponse(status_code=429), max_retries=3)

    with pytest.raises(SosRateLimitError) as excinfo:
        client.fetch_page(0)

    assert excinfo.value.status_code == 429
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_unauthorized_fails_without_retry():
    client, session, sleeps = _client(lambda url, params: _FakeResponse(status_code=401))
    with pytest.raises(SosAuthError):
        client.fetch_page(0)
    assert len(session.calls) == 1
    assert sleeps == []


def test_server_error_raises_api_error_with_message():
    client, _, _ = _client(lambda url, params: _FakeResponse(status_code=500, payload={"message": "kaput"}))
    with pytest.raises(SosApiError, match="kaput") as excinfo:
        client.fetch_page(0)
    assert excinfo.value.status_code == 500


def test_network_error_is_wrapped():
    def handler(url, params):
        raise requests.exceptions.ConnectionError("refused")

    client, _, _ = _client(handler)
    with pytest.raises(SosApiError, match="Network error"):
        client.fetch_page(0)


def test_missing_api_key_raises_auth_error(monkeypatch):
    monkeypatch.setattr(sos_api.config, "SOS_API_KEY", "")
    client = SosApiClient(SosAuth(), session=_FakeSession(lambda url, params: _FakeResponse(payload=[])))
    with pytest.raises(SosAuthError):
        client.fetch_page(0)


def test_connection_check_reports_failure_instead_of_raising():
    client, _, _ = _client(lambda url, params: _FakeResponse(status_code=401))
    result = client.test_connection()
    assert result["success"] is False
    assert "authentication" in result["error"]


def test_connection_check_success():
    client, session, _ = _client(_paged_items(3))
    result = client.test_connection()
    assert result["success"] is True
    assert result["total_count"] == 3
    assert session.calls[0]["params"]["maxresults"] == 5


def test_fetch_transactions_paginates_sequentially_with_date_window():
    data = [{"id": i, "outputs": [{"item": {"name": "P"}}]} for i in range(5)]

    def handler(url, params):
        start = params["start"]
        return _FakeResponse(payload={"data": data[start : start + params["maxresults"]]})

    client, session, _ = _client(handler)
    transactions = client.fetch_transactions("2025-06-01", "2025-06-15")

    assert [txn["id"] for txn in transactions] == [0, 1, 2, 3, 4]
    assert [call["params"]["start"] for call in session.calls] == [0, 2, 4]
    assert all(call["url"].endswith("/process") for call in session.calls)
    assert session.calls[0]["params"]["from"] == "2025-06-01T00:00:00"
    assert session.calls[0]["params"]["to"] == "2025-06-15T23:59:59"


def test_fetch_production_data_keeps_unarchived_transactions_with_outputs():
    data = [
        {"id": 1, "outputs": [{"item": {"name": "P"}}]},
        {"id": 2, "outputs": []},
        {"id": 3, "outputs": [{"item": {"name": "P"}}], "archived": True},
    ]
    client, _, _ = _client(lambda url, params: _FakeResponse(payload={"data": data}), page_size=10)

    assert [txn["id"] for txn in client.fetch_production_data("2025-06-01", "2025-06-02")] == [1]


def test_extract_page_items_accepts_known_envelopes():
    assert sos_api.extract_page_items([{"id": 1}]) == [{"id": 1}]
    assert sos_api.extract_page_items({"items": [{"id": 2}]}) == [{"id": 2}]
    assert sos_api.extract_page_items({"unexpected": 1}) == []


def test_process_date_window_helpers():
    client, session, _ = _client(lambda url, params: _FakeResponse(payload={"data": []}))

    client.fetch_recent_processes(days_back=15, today=date(2025, 6, 20))
    client.fetch_yesterday_processes(today=date(2025, 6, 20))

    assert session.calls[0]["params"]["from"] == "2025-06-05T00:00:00"
    assert session.calls[0]["params"]["to"] == "2025-06-20T23:59:59"
    assert session.calls[1]["params"]["from"] == "2025-06-19T00:00:00"
    assert session.calls[1]["params"]["to"] == "2025-06-19T23:59:59"
