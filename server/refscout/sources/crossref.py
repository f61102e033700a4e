from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import ScoringWeights
from server.refscout.analysis.shared.normalize import clean_text, normalize_doi, parse_year, strip_markup
from server.refscout.analysis.types import Candidate, ExternalIds, IdentifierKind, TopicFilters
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import ParseFailure, ProviderUnavailable

logger = logging.getLogger(__name__)

BASE_URL = "https://api.crossref.org"
_SELECT_FIELDS = (
    "DOI,title,author,published-print,published-online,container-title,volume,issue,page,"
    "publisher,type,URL,abstract,is-referenced-by-count"
)


def crossref_author_name(author: Any) -> str:
    if not isinstance(author, dict):
        return ""
    given = author.get("given")
    family = author.get("family")
    if given and family:
        return f"{given} {family}"
    return str(author.get("name") or "").strip()


def _date_year(work: dict, key: str) -> int | None:
    date = work.get(key)
    if not isinstance(date, dict):
        return None
    parts = date.get("date-parts") or []
    if parts and isinstance(parts[0], list) and parts[0]:
        return parse_year(parts[0][0])
    return None


def _items(data: Any) -> list[dict]:
    if not isinstance(data, dict):
        raise ParseFailure("crossref: payload is not an object")
    message = data.get("message")
    if message is None:
        return []
    if not isinstance(message, dict):
        raise ParseFailure("crossref: message is not an object")
    items = message.get("items")
    if items is None:
        return []
    if not isinstance(items, list):
        raise ParseFailure("crossref: message.items is not a list")
    return items


@dataclass
class CrossrefAdapter(ProviderAdapter):
    name: ClassVar[str] = "crossref"
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ("doi",)
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.7, author=0.3)
    supports_author_year: ClassVar[bool] = True

    def _works(self, params: dict, *, deadline: Deadline | None) -> list[dict]:
        return _items(self.http.get_json(f"{BASE_URL}/works", params=params, deadline=deadline))

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        data = self.http.get_json(f"{BASE_URL}/works/{value}", deadline=deadline, not_found_ok=True)
        if not isinstance(data, dict):
            return []
        work = data.get("message")
        return [work] if isinstance(work, dict) else []

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        query = f'"{title}"'
        if authors:
            query += " author:" + " ".join(authors)
        params = {"query": query, "rows": rows, "select": _SELECT_FIELDS, "sort": "relevance"}
        return self._works(params, deadline=deadline)

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        params = {"query.title": title, "rows": rows, "select": _SELECT_FIELDS, "sort": "relevance"}
        return self._works(params, deadline=deadline)[:rows]

    def _fetch_author_year(
        self, authors: Sequence[str], year: int, *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        query = f"author:{' '.join(authors)} published:{year}"
        logger.debug("crossref author+year query %r", query)
        return self._works({"query": query, "rows": rows, "sort": "relevance"}, deadline=deadline)

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        params: dict[str, Any] = {"query": topic, "rows": limit, "sort": "relevance", "select": _SELECT_FIELDS}
        filter_parts = []
        if filters.year_from:
            filter_parts.append(f"from-pub-date:{filters.year_from}-01-01")
        if filters.year_to:
            filter_parts.append(f"until-pub-date:{filters.year_to}-12-31")
        if filter_parts:
            params["filter"] = ",".join(filter_parts)
        works = self._works(params, deadline=deadline)
        if filters.min_citations is not None:
            works = [
                w
                for w in works
                if isinstance(w, dict) and int(w.get("is-referenced-by-count") or 0) > filters.min_citations
            ]
        return works

    def parse_record(self, raw: Any) -> Candidate:
        if not isinstance(raw, dict):
            raise ParseFailure("crossref: work is not an object")
        titles = raw.get("title") or []
        title = clean_text(titles[0]) if isinstance(titles, list) and titles else None
        authors = tuple(n for n in (crossref_author_name(a) for a in raw.get("author") or []) if n)
        year = _date_year(raw, "published-print") or _date_year(raw, "published-online")
        venues = raw.get("container-title") or []
        venue = clean_text(venues[0]) if isinstance(venues, list) and venues else None
        extra = {
            k: raw.get(src)
            for k, src in (
                ("volume", "volume"),
                ("issue", "issue"),
                ("pages", "page"),
                ("publisher", "publisher"),
                ("type", "type"),
            )
            if raw.get(src)
        }
        return Candidate(
            source=self.name,
            title=title,
            authors=authors,
            external_ids=ExternalIds(doi=normalize_doi(raw.get("DOI"))),
            year=year,
            venue=venue,
            abstract=strip_markup(raw.get("abstract")),
            citation_count=int(raw.get("is-referenced-by-count") or 0),
            url=raw.get("URL"),
            extra=extra,
            raw_payload=raw,
        )

    def formatted_citation(self, doi: str, *, style: str = "apa") -> str | None:
        """Formatted bibliography entry via DOI content negotiation; ``None`` on any failure."""
        doi_norm = normalize_doi(doi)
        if not doi_norm:
            return None
        try:
            resp = self.http.get(
                f"https://doi.org/{doi_norm}",
                headers={"Accept": f"text/x-bibliography; style={style}"},
                not_found_ok=True,
            )
        except ProviderUnavailable as e:
            logger.warning("crossref citation request failed for %s: %s", doi_norm, e.detail)
            return None
        if resp is None:
            return None
        text = (resp.text or "").strip()
        return text or None
