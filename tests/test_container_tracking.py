from __future__ import annotations

import requests

from app.core.config import settings
from app.services import container_tracking
from app.services.container_tracking import (
    HttpContainerTrackingFeed,
    NullContainerTrackingFeed,
    StaticContainerTrackingFeed,
)


class _FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        response = self.responses.get(url)
        if isinstance(response, Exception):
            raise response
        return response


def test_http_feed_reads_status_and_normalizes_numbers():
    session = _FakeSession(
        {"http://tracker/containers/MSCU1234567/status": _FakeResponse(body={"status": " Returned "})}
    )
    feed = HttpContainerTrackingFeed("http://tracker/", timeout_seconds=2.5, session=session)

    assert feed.get_statuses(["mscu 1234567", "MSCU1234567", ""]) == {"MSCU1234567": "Returned"}
    assert session.calls == [("http://tracker/containers/MSCU1234567/status", 2.5)]


def test_http_feed_degrades_to_unknown_status():
    session = _FakeSession(
        {
            "http://tracker/containers/AAAU0000001/status": _FakeResponse(status_code=503),
            "http://tracker/containers/AAAU0000002/status": requests.ConnectionError("refused"),
            "http://tracker/containers/AAAU0000003/status": _FakeResponse(body=ValueError("not json")),
            "http://tracker/containers/AAAU0000004/status": _FakeResponse(body=["unexpected"]),
        }
    )
    feed = HttpContainerTrackingFeed("http://tracker", session=session)

    statuses = feed.get_statuses(["AAAU0000001", "AAAU0000002", "AAAU0000003", "AAAU0000004"])

    assert set(statuses.values()) == {None}
    assert len(statuses) == 4


def test_static_and_null_feeds():
    assert StaticContainerTrackingFeed({"tcnu 7654321": "Gate in"}).get_status("TCNU7654321") == "Gate in"
    assert NullContainerTrackingFeed().get_statuses(["TCNU7654321"]) == {"TCNU7654321": None}


def test_default_feed_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "CONTAINER_TRACKING_ENABLED", False)
    assert isinstance(container_tracking.default_container_tracking_feed(), NullContainerTrackingFeed)

    monkeypatch.setattr(settings, "CONTAINER_TRACKING_ENABLED", True)
    monkeypatch.setattr(settings, "CONTAINER_TRACKING_URL", "http://tracker")
    feed = container_tracking.default_container_tracking_feed()
    assert isinstance(feed, HttpContainerTrackingFeed)
    assert feed.base_url == "http://tracker"
