import time
import unittest
from unittest import mock

import requests

from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import HttpClient, ParseFailure, ProviderUnavailable


class _StubResponse:
    def __init__(self, payload=None, *, status_code: int = 200, text: str | None = None) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class _StubSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers, timeout))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(session, **kwargs) -> HttpClient:
    kwargs.setdefault("max_attempts", 1)
    return HttpClient(source="stub", session=session, headers={"User-Agent": "refscout-test"}, **kwargs)


class TestHttpClient(unittest.TestCase):
    def test_success_returns_json_and_merges_headers(self) -> None:
        session = _StubSession(_StubResponse({"ok": True}))
        client = _client(session)
        self.assertEqual(client.get_json("https://x/api", params={"q": "a"}, headers={"Accept": "application/json"}), {"ok": True})
        url, params, headers, _timeout = session.calls[0]
        self.assertEqual(url, "https://x/api")
        self.assertEqual(params, {"q": "a"})
        self.assertEqual(headers, {"User-Agent": "refscout-test", "Accept": "application/json"})

    def test_not_found_ok_returns_none(self) -> None:
        session = _StubSession(_StubResponse(status_code=404))
        self.assertIsNone(_client(session).get_json("https://x/missing", not_found_ok=True))

    def test_not_found_without_flag_raises(self) -> None:
        session = _StubSession(_StubResponse(status_code=404))
        with self.assertRaises(ProviderUnavailable) as ctx:
            _client(session).get("https://x/missing")
        self.assertEqual(ctx.exception.status, 404)

    def test_server_error_raises_with_status(self) -> None:
        session = _StubSession(_StubResponse(status_code=500))
        with self.assertRaises(ProviderUnavailable) as ctx:
            _client(session).get("https://x/api")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.source, "stub")

    def test_retries_transient_failures(self) -> None:
        session = _StubSession(
            requests.ConnectionError("reset"),
            _StubResponse(status_code=503),
            _StubResponse({"ok": 1}),
        )
        with mock.patch("server.refscout.sources.http.backoff_sleep") as sleep:
            self.assertEqual(_client(session, max_attempts=3).get_json("https://x/api"), {"ok": 1})
        self.assertEqual(len(session.calls), 3)
        self.assertEqual(sleep.call_count, 2)

    def test_retries_are_bounded(self) -> None:
        session = _StubSession(requests.Timeout("slow"), requests.Timeout("slow"))
        with mock.patch("server.refscout.sources.http.backoff_sleep"):
            with self.assertRaises(ProviderUnavailable):
                _client(session, max_attempts=2).get("https://x/api")
        self.assertEqual(len(session.calls), 2)

    def test_client_errors_are_not_retried(self) -> None:
        session = _StubSession(_StubResponse(status_code=400), _StubResponse({"ok": 1}))
        with self.assertRaises(ProviderUnavailable):
            _client(session, max_attempts=3).get("https://x/api")
        self.assertEqual(len(session.calls), 1)

    def test_expired_deadline_makes_no_call(self) -> None:
        session = _StubSession(_StubResponse({"ok": 1}))
        with self.assertRaises(ProviderUnavailable):
            _client(session).get("https://x/api", deadline=Deadline(expires_at=time.monotonic() - 1))
        self.assertEqual(session.calls, [])

    def test_timeout_is_clamped_to_deadline(self) -> None:
        session = _StubSession(_StubResponse({"ok": 1}))
        _client(session, timeout_seconds=30).get("https://x/api", deadline=Deadline.after(2))
        self.assertLessEqual(session.calls[0][3], 2)

    def test_non_json_body_is_parse_failure(self) -> None:
        session = _StubSession(_StubResponse(text="<html>"))
        with self.assertRaises(ParseFailure):
            _client(session).get_json("https://x/api")

    def test_get_text(self) -> None:
        session = _StubSession(_StubResponse(text="<feed/>"))
        self.assertEqual(_client(session).get_text("https://x/api"), "<feed/>")


if __name__ == "__main__":
    unittest.main()
