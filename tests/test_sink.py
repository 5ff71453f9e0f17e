from __future__ import annotations

import pytest

from promptlog.errors import SinkError
from promptlog.sink import SAVE_MULTI_PATH, RemoteSink, client


def _capture(monkeypatch, status: int = 200, payload=None):
    calls: list[dict] = []

    def fake_request_json(method, url, *, headers=None, body=None, timeout_s=10.0, **kwargs):
        calls.append(
            {"method": method, "url": url, "headers": headers, "body": body, "timeout": timeout_s}
        )
        return status, payload

    monkeypatch.setattr(client.http_client, "request_json", fake_request_json)
    return calls


def test_send_batch_posts_array_to_save_multi(monkeypatch) -> None:
    calls = _capture(monkeypatch, 201)
    sink = RemoteSink("https://logs.example.com/", "secret", timeout_s=3.0)

    status = sink.send_batch([{"logTraceId": "a"}, {"logTraceId": "b"}])

    assert status == 201
    assert calls == [
        {
            "method": "POST",
            "url": f"https://logs.example.com{SAVE_MULTI_PATH}",
            "headers": {"Authorization": "Bearer secret"},
            "body": [{"logTraceId": "a"}, {"logTraceId": "b"}],
            "timeout": 3.0,
        }
    ]


def test_send_batch_without_token_sends_no_auth_header(monkeypatch) -> None:
    calls = _capture(monkeypatch)

    RemoteSink("https://logs.example.com").send_batch([])

    assert calls[0]["headers"] == {}


def test_non_2xx_status_raises_with_detail(monkeypatch) -> None:
    _capture(monkeypatch, 500, {"error": "database down"})

    with pytest.raises(SinkError) as excinfo:
        RemoteSink("https://logs.example.com").send_batch([{"logTraceId": "a"}])

    assert excinfo.value.status == 500
    assert excinfo.value.detail == "database down"
    assert "500" in str(excinfo.value)


def test_transport_error_raises_without_status(monkeypatch) -> None:
    def refused(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(client.http_client, "request_json", refused)

    with pytest.raises(SinkError) as excinfo:
        RemoteSink("https://logs.example.com").send_batch([{"logTraceId": "a"}])

    assert excinfo.value.status is None
    assert "connection refused" in str(excinfo.value)


def test_unconfigured_sink_raises() -> None:
    sink = RemoteSink("")

    assert sink.configured is False
    with pytest.raises(SinkError, match="not configured"):
        sink.send_batch([{"logTraceId": "a"}])
