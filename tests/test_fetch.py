import requests

import triage_report
from helpers import FakeResponse

CSV_LINES = [
    '"Bug ID","Triage Owner","Product","Component","Resolution","Priority","Opened"',
    '"101","a@mozilla.com","Core","DOM","---","P2","2019-01-10 12:00:00"',
    '"102","b@mozilla.com","Firefox","Menus","FIXED","--","2019-01-11 12:00:00"',
]


def test_fetch_batch_streams_rows(monkeypatch) -> None:
    """Rows should come back as dicts keyed by the header row."""
    calls = []

    def fake_get(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(CSV_LINES)

    monkeypatch.setattr(triage_report.requests, "get", fake_get)
    rows = list(triage_report.fetch_batch("https://example.test/buglist.cgi"))

    assert [row["Bug ID"] for row in rows] == ["101", "102"]
    assert rows[1]["Resolution"] == "FIXED"
    assert calls[0][1]["stream"] is True
    assert calls[0][1]["timeout"] == triage_report.REQUEST_TIMEOUT


def test_fetch_batch_is_lazy(monkeypatch) -> None:
    """Nothing is requested until the first row is pulled."""
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return FakeResponse(CSV_LINES)

    monkeypatch.setattr(triage_report.requests, "get", fake_get)
    rows = triage_report.fetch_batch("https://example.test/buglist.cgi")
    assert calls == []
    assert next(rows)["Bug ID"] == "101"
    assert len(calls) == 1


def test_fetch_batch_connection_error(monkeypatch, capsys) -> None:
    """A failed request is logged and yields nothing."""
    def fake_get(url, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(triage_report.requests, "get", fake_get)
    assert list(triage_report.fetch_batch("https://example.test/")) == []
    assert "connection refused" in capsys.readouterr().out


def test_fetch_batch_http_error(monkeypatch, capsys) -> None:
    """Non-200 responses end the batch without rows."""
    monkeypatch.setattr(triage_report.requests, "get",
                        lambda url, **kwargs: FakeResponse(CSV_LINES, status_code=500))
    assert list(triage_report.fetch_batch("https://example.test/")) == []
    assert "HTTP 500" in capsys.readouterr().out


def test_fetch_batch_stream_broken_midway(monkeypatch, capsys) -> None:
    """Rows read before a stream error are kept; the rest of the batch is lost."""
    error = requests.exceptions.ChunkedEncodingError("stream ended")
    monkeypatch.setattr(triage_report.requests, "get",
                        lambda url, **kwargs: FakeResponse(CSV_LINES[:2], error=error))
    rows = list(triage_report.fetch_batch("https://example.test/"))
    assert [row["Bug ID"] for row in rows] == ["101"]
    assert "stream ended" in capsys.readouterr().out
