import unittest
from dataclasses import replace

from fastapi.testclient import TestClient

from server.main import create_app
from server.refscout.core.config import Settings


class _StubResponse:
    def __init__(self, payload=None, *, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = ""

    def json(self):
        return self._payload


class _CountingSession:
    def __init__(self, payload, *, status_code: int = 200) -> None:
        self.response = _StubResponse(payload, status_code=status_code)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params))
        return self.response


_WORK = {
    "DOI": "10.1038/nature14539",
    "title": ["Deep learning"],
    "author": [{"given": "Yann", "family": "LeCun"}],
    "published-print": {"date-parts": [[2015]]},
    "is-referenced-by-count": 50000,
}

_OPENALEX_RESULTS = {
    "results": [
        {"id": "https://openalex.org/W1", "title": "Deep learning", "publication_year": 2023, "cited_by_count": 300},
        {"id": "https://openalex.org/W2", "title": None, "cited_by_count": 10},
    ]
}


def _client(session: _CountingSession, provider: str, **overrides) -> TestClient:
    settings = replace(Settings.from_env(), cache_enabled=False, cache_backend="memory", http_max_attempts=1)
    settings = replace(settings, **overrides)
    app = create_app(settings)
    app.state.resolver.adapters[provider].http.session = session
    return TestClient(app)


class TestHealthRoutes(unittest.TestCase):
    def test_health_and_ready(self) -> None:
        client = _client(_CountingSession({}), "crossref", enabled_providers=("crossref",))
        self.assertEqual(client.get("/healthz").json(), {"ok": True})
        ready = client.get("/readyz")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["providers"], ["crossref"])

    def test_not_ready_without_providers(self) -> None:
        client = _client(_CountingSession({}), "crossref", enabled_providers=())
        self.assertEqual(client.get("/readyz").status_code, 503)


class TestResolveRoutes(unittest.TestCase):
    def test_resolve_by_doi(self) -> None:
        session = _CountingSession({"message": _WORK})
        client = _client(session, "crossref")
        resp = client.post("/resolve", json={"doi": "10.1038/nature14539", "providers": ["crossref"]})
        self.assertEqual(resp.status_code, 200)
        candidates = resp.json()["candidates"]
        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0]["external_ids"]["doi"], "10.1038/nature14539")
        self.assertEqual(candidates[0]["relevance_score"], 1.0)
        self.assertNotIn("raw_payload", candidates[0])

    def test_empty_reference_makes_no_calls(self) -> None:
        session = _CountingSession({"message": _WORK})
        client = _client(session, "crossref")
        resp = client.post("/resolve", json={"providers": ["crossref"]})
        self.assertEqual(resp.json(), {"candidates": []})
        self.assertEqual(session.calls, [])

    def test_unknown_provider_is_a_bad_request(self) -> None:
        client = _client(_CountingSession({}), "crossref")
        resp = client.post("/resolve", json={"title": "Deep learning", "providers": ["scopus"]})
        self.assertEqual(resp.status_code, 400)

    def test_provider_outage_returns_empty(self) -> None:
        session = _CountingSession(None, status_code=503)
        client = _client(session, "crossref")
        resp = client.post("/resolve", json={"doi": "10.1038/nature14539", "providers": ["crossref"]})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"candidates": []})


class TestDiscoverRoute(unittest.TestCase):
    def test_discover_ranks_and_drops_empty_records(self) -> None:
        session = _CountingSession(_OPENALEX_RESULTS)
        client = _client(session, "openalex")
        resp = client.post("/discover", json={"topic": "deep learning", "limit": 5, "filters": {"year_from": 2020}})
        self.assertEqual(resp.status_code, 200)
        candidates = resp.json()["candidates"]
        self.assertEqual([c["title"] for c in candidates], ["Deep learning"])
        self.assertIsNotNone(candidates[0]["generation_score"])
        self.assertEqual(session.calls[0][1]["filter"], "from_publication_date:2020-01-01")

    def test_discover_requires_topic(self) -> None:
        client = _client(_CountingSession(_OPENALEX_RESULTS), "openalex")
        self.assertEqual(client.post("/discover", json={}).status_code, 422)


if __name__ == "__main__":
    unittest.main()
