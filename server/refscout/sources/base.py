from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import (
    IDENTIFIER_RELEVANCE,
    MIN_AUTHOR_YEAR_RELEVANCE,
    MIN_RELEVANCE,
    ScoringWeights,
    author_year_score,
    relevance_score,
)
from server.refscout.analysis.match.similarity import strip_et_al
from server.refscout.analysis.types import Candidate, IdentifierKind, ParsedReference, SearchTier, TopicFilters
from server.refscout.core.cache import TTL_IDENTIFIER, TTL_LISTING, TTL_SEARCH, Cache
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import HttpClient, ParseFailure, ProviderUnavailable

logger = logging.getLogger(__name__)

TITLE_AUTHOR_ROWS = 10
TITLE_ROWS = 5
AUTHOR_YEAR_ROWS = 10
QUERY_AUTHORS = 2


@dataclass
class ProviderAdapter:
    """Shared fallback chain, caching and scoring for one bibliographic provider.

    Subclasses implement the ``_fetch_*`` hooks (one HTTP exchange each, raising
    ``ProviderUnavailable``/``ParseFailure``) and ``parse_record``. The public
    ``search_*`` methods wrap the hooks in the cache, parse the records and
    score them against the query.
    """

    name: ClassVar[str] = ""
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ()
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.7, author=0.3)
    supports_author_year: ClassVar[bool] = False

    http: HttpClient
    cache: Cache | None = None

    # hooks

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        raise NotImplementedError

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        raise NotImplementedError

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        raise NotImplementedError

    def _fetch_author_year(
        self, authors: Sequence[str], year: int, *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        return []

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        raise NotImplementedError

    def parse_record(self, raw: Any) -> Candidate:
        raise NotImplementedError

    # cache + parse

    def _parse_many(self, raws: Sequence[Any]) -> list[Candidate]:
        out: list[Candidate] = []
        for raw in raws or []:
            try:
                out.append(self.parse_record(raw))
            except (ParseFailure, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.debug("%s: skipping unparseable record: %s", self.name, e)
        return out

    def _cached_candidates(
        self,
        kind: str,
        parts: Sequence[Any],
        *,
        ttl_seconds: float,
        fetch,
    ) -> list[Candidate]:
        def compute() -> list[dict]:
            return [c.to_dict() for c in self._parse_many(fetch())]

        cache = self.cache
        if cache is None:
            rows = compute()
        else:
            rows = cache.get_or_compute(f"{self.name}.{kind}", parts, ttl_seconds=ttl_seconds, compute=compute)
        return [Candidate.from_dict(row) for row in rows or []]

    def _score(self, candidates: Sequence[Candidate], title: str | None, authors: Sequence[str]) -> list[Candidate]:
        scored = [c.with_relevance(relevance_score(c, title, authors, weights=self.weights)) for c in candidates]
        return [c for c in scored if (c.relevance_score or 0.0) >= MIN_RELEVANCE]

    # public operations

    def search_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None = None) -> list[Candidate]:
        if kind not in self.supported_ids or not value:
            return []
        found = self._cached_candidates(
            f"by_{kind}",
            [value],
            ttl_seconds=TTL_IDENTIFIER,
            fetch=lambda: self._fetch_by_id(kind, value, deadline=deadline),
        )
        return [c.with_relevance(IDENTIFIER_RELEVANCE) for c in found]

    def search_by_title_author(
        self, title: str, authors: Sequence[str], *, deadline: Deadline | None = None
    ) -> list[Candidate]:
        query_authors = [a for a in authors if a][:QUERY_AUTHORS]
        found = self._cached_candidates(
            "title_author",
            [title, query_authors, TITLE_AUTHOR_ROWS],
            ttl_seconds=TTL_SEARCH,
            fetch=lambda: self._fetch_title_author(title, query_authors, rows=TITLE_AUTHOR_ROWS, deadline=deadline),
        )
        return self._score(found, title, authors)

    def search_by_title(self, title: str, *, deadline: Deadline | None = None) -> list[Candidate]:
        found = self._cached_candidates(
            "title",
            [title, TITLE_ROWS],
            ttl_seconds=TTL_SEARCH,
            fetch=lambda: self._fetch_title(title, rows=TITLE_ROWS, deadline=deadline),
        )
        return self._score(found, title, [])

    def search_by_author_year(
        self, authors: Sequence[str], year: int, *, deadline: Deadline | None = None
    ) -> list[Candidate]:
        if not self.supports_author_year:
            return []
        search_authors = [a for a in (strip_et_al(a) for a in authors if a) if a]
        if not search_authors:
            return []
        query_authors = search_authors[:QUERY_AUTHORS]
        found = self._cached_candidates(
            "author_year",
            [query_authors, int(year), AUTHOR_YEAR_ROWS],
            ttl_seconds=TTL_SEARCH,
            fetch=lambda: self._fetch_author_year(query_authors, int(year), rows=AUTHOR_YEAR_ROWS, deadline=deadline),
        )
        # the query names two authors; the score counts every one
        scored = [c.with_relevance(author_year_score(c, search_authors, int(year))) for c in found]
        return [c for c in scored if (c.relevance_score or 0.0) >= MIN_AUTHOR_YEAR_RELEVANCE]

    def search_by_topic(
        self,
        topic: str,
        limit: int,
        filters: TopicFilters | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[Candidate]:
        """Unscored topic listing; ranking belongs to the caller."""
        filters = filters or TopicFilters()
        return self._cached_candidates(
            "topic",
            [topic, int(limit), filters.cache_parts()],
            ttl_seconds=TTL_LISTING,
            fetch=lambda: self._fetch_topic(topic, limit=int(limit), filters=filters, deadline=deadline),
        )

    def search(self, ref: ParsedReference, *, deadline: Deadline | None = None) -> tuple[SearchTier, list[Candidate]]:
        """Run the fallback chain; the first tier whose inputs are present decides.

        Provider failures are logged and yield an empty contribution.
        """
        try:
            return self._search(ref, deadline=deadline)
        except ProviderUnavailable as e:
            logger.warning("%s unavailable: %s", self.name, e.detail)
        except ParseFailure as e:
            logger.warning("%s returned a malformed payload: %s", self.name, e)
        return "none", []

    def _search(self, ref: ParsedReference, *, deadline: Deadline | None) -> tuple[SearchTier, list[Candidate]]:
        for kind in self.supported_ids:
            value = ref.identifier(kind)
            if value:
                return "identifier", self.search_by_id(kind, value, deadline=deadline)
        if ref.title and ref.authors:
            return "title_author", self.search_by_title_author(ref.title, ref.authors, deadline=deadline)
        if ref.title:
            return "title", self.search_by_title(ref.title, deadline=deadline)
        if self.supports_author_year and ref.authors and ref.year is not None:
            return "author_year", self.search_by_author_year(ref.authors, ref.year, deadline=deadline)
        return "none", []

    def discover(
        self,
        topic: str,
        limit: int,
        filters: TopicFilters | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[Candidate]:
        try:
            return self.search_by_topic(topic, limit, filters, deadline=deadline)
        except ProviderUnavailable as e:
            logger.warning("%s topic search unavailable: %s", self.name, e.detail)
        except ParseFailure as e:
            logger.warning("%s topic search returned a malformed payload: %s", self.name, e)
        return []
