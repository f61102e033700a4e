from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from server.refscout.analysis.scoring import (
    MAX_RESULTS,
    MIN_AUTHOR_YEAR_RELEVANCE,
    MIN_RELEVANCE,
    generation_score,
)
from server.refscout.analysis.types import Candidate, ParsedReference, SearchTier, TopicFilters, sort_scored
from server.refscout.core.cache import Cache
from server.refscout.core.config import Settings
from server.refscout.sources.arxiv import ArxivAdapter
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.crossref import CrossrefAdapter
from server.refscout.sources.http import HttpClient
from server.refscout.sources.openalex import OpenAlexAdapter
from server.refscout.sources.pubmed import PubMedAdapter
from server.refscout.sources.semantic_scholar import SemanticScholarAdapter

logger = logging.getLogger(__name__)


def _coerce_ref(ref: ParsedReference | Mapping[str, Any] | None) -> ParsedReference:
    if isinstance(ref, ParsedReference):
        return ref
    return ParsedReference.from_dict(ref)


def _passes_threshold(tier: SearchTier, candidate: Candidate) -> bool:
    if tier == "identifier":
        return True
    score = candidate.relevance_score or 0.0
    if tier == "author_year":
        return score >= MIN_AUTHOR_YEAR_RELEVANCE
    return score >= MIN_RELEVANCE


def merge_results(results: Iterable[tuple[SearchTier, list[Candidate]]], *, limit: int = MAX_RESULTS) -> list[Candidate]:
    """Apply the final acceptance policy to per-provider results: threshold, sort, truncate."""
    kept: list[Candidate] = []
    for tier, candidates in results:
        kept.extend(c for c in candidates if _passes_threshold(tier, c))
    return sort_scored(kept)[:limit]


@dataclass
class Resolver:
    """Fans a reference out to the configured providers and merges their answers."""

    settings: Settings
    adapters: Mapping[str, ProviderAdapter]

    def _select(self, providers: Iterable[str] | None) -> list[ProviderAdapter]:
        names = list(providers) if providers is not None else list(self.settings.enabled_providers)
        selected: list[ProviderAdapter] = []
        for name in names:
            key = str(name or "").strip().lower()
            adapter = self.adapters.get(key)
            if adapter is None:
                raise ValueError(f"Unknown provider: {name!r}")
            if all(a is not adapter for a in selected):
                selected.append(adapter)
        return selected

    def _deadline(self, deadline_seconds: float | None) -> Deadline:
        seconds = self.settings.resolve_deadline_seconds if deadline_seconds is None else float(deadline_seconds)
        return Deadline.after(seconds)

    def resolve(
        self,
        ref: ParsedReference | Mapping[str, Any] | None,
        *,
        providers: Iterable[str] | None = None,
        deadline_seconds: float | None = None,
    ) -> list[Candidate]:
        """Ranked candidates for ``ref`` across providers; ``[]`` when nothing usable is known.

        Each provider runs its own fallback chain in a worker thread. Providers
        still running when the deadline passes contribute nothing.
        """
        parsed = _coerce_ref(ref)
        adapters = self._select(providers)
        if parsed.is_empty() or not adapters:
            return []

        deadline = self._deadline(deadline_seconds)
        results: dict[str, tuple[SearchTier, list[Candidate]]] = {}
        ex = ThreadPoolExecutor(max_workers=min(len(adapters), self.settings.resolve_max_workers))
        try:
            futures = {ex.submit(adapter.search, parsed, deadline=deadline): adapter for adapter in adapters}
            try:
                for fut in as_completed(futures, timeout=deadline.remaining()):
                    adapter = futures[fut]
                    try:
                        tier, candidates = fut.result()
                    except Exception:
                        logger.warning("%s failed; dropping its candidates", adapter.name, exc_info=True)
                        continue
                    logger.debug("%s answered via %s tier with %d candidate(s)", adapter.name, tier, len(candidates))
                    results[adapter.name] = (tier, candidates)
            except FuturesTimeout:
                pending = sorted(a.name for f, a in futures.items() if not f.done())
                logger.warning("Resolve deadline reached; ignoring providers still running: %s", ", ".join(pending))
        finally:
            ex.shutdown(wait=False, cancel_futures=True)
        # adapter order, not completion order
        return merge_results(results[a.name] for a in adapters if a.name in results)

    def resolve_with(
        self,
        provider: str,
        ref: ParsedReference | Mapping[str, Any] | None,
        *,
        deadline_seconds: float | None = None,
    ) -> list[Candidate]:
        parsed = _coerce_ref(ref)
        (adapter,) = self._select([provider])
        if parsed.is_empty():
            return []
        try:
            tier, candidates = adapter.search(parsed, deadline=self._deadline(deadline_seconds))
        except Exception:
            logger.warning("%s failed; no candidates", adapter.name, exc_info=True)
            return []
        return merge_results([(tier, candidates)])

    def discover(
        self,
        topic: str,
        limit: int | None = None,
        filters: TopicFilters | Mapping[str, Any] | None = None,
        *,
        provider: str = "openalex",
        deadline_seconds: float | None = None,
        current_year: int | None = None,
    ) -> list[Candidate]:
        """Generation-ranked works for a free-text topic from a single provider."""
        topic = (topic or "").strip()
        (adapter,) = self._select([provider])
        if not topic:
            return []
        if limit is None:
            limit = self.settings.discover_default_limit
        limit = max(1, min(int(limit), self.settings.discover_max_limit))
        if not isinstance(filters, TopicFilters):
            filters = TopicFilters.from_mapping(filters)

        found = adapter.discover(topic, limit, filters, deadline=self._deadline(deadline_seconds))
        ranked = [
            c.with_generation(generation_score(c, topic, current_year=current_year))
            for c in found
            if c.title or c.abstract
        ]
        return sort_scored(ranked, key="generation_score")[:limit]


def build_adapters(settings: Settings, cache: Cache | None = None) -> dict[str, ProviderAdapter]:
    """One adapter per known provider, wired to ``settings`` and a shared cache."""
    user_agent = settings.user_agent
    json_headers = {"User-Agent": user_agent, "Accept": "application/json"}

    def client(source: str, timeout: float, headers: dict[str, str]) -> HttpClient:
        return HttpClient(
            source=source,
            timeout_seconds=timeout,
            headers=headers,
            max_attempts=settings.http_max_attempts,
            source_limit=settings.source_concurrency,
        )

    s2_headers = dict(json_headers)
    if settings.semantic_scholar_api_key:
        s2_headers["x-api-key"] = settings.semantic_scholar_api_key

    adapters: dict[str, ProviderAdapter] = {
        "arxiv": ArxivAdapter(
            http=client("arxiv", settings.arxiv_timeout_seconds, {"User-Agent": user_agent, "Accept": "application/atom+xml"}),
            cache=cache,
        ),
        "crossref": CrossrefAdapter(http=client("crossref", settings.crossref_timeout_seconds, json_headers), cache=cache),
        "openalex": OpenAlexAdapter(http=client("openalex", settings.openalex_timeout_seconds, json_headers), cache=cache),
        "pubmed": PubMedAdapter(
            http=client("pubmed", settings.pubmed_timeout_seconds, {"User-Agent": user_agent}),
            cache=cache,
            tool=settings.ncbi_tool,
            email=settings.contact_email,
            api_key=settings.ncbi_api_key,
        ),
        "semantic_scholar": SemanticScholarAdapter(
            http=client("semantic_scholar", settings.semantic_scholar_timeout_seconds, s2_headers),
            cache=cache,
        ),
    }
    return adapters


def build_resolver(settings: Settings, cache: Cache | None = None) -> Resolver:
    if cache is None:
        cache = Cache(settings=settings)
    return Resolver(settings=settings, adapters=build_adapters(settings, cache))
