from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import ScoringWeights
from server.refscout.analysis.shared.normalize import clean_text, normalize_arxiv_id, normalize_doi, normalize_pmid, parse_year
from server.refscout.analysis.types import Candidate, ExternalIds, IdentifierKind, TopicFilters
from server.refscout.core.cache import TTL_IDENTIFIER, TTL_SEARCH
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import ParseFailure

BASE_URL = "https://api.semanticscholar.org/graph/v1"
RECOMMENDATIONS_URL = "https://api.semanticscholar.org/recommendations/v1"

PAPER_FIELDS = ",".join(
    [
        "paperId",
        "title",
        "authors",
        "year",
        "venue",
        "journal",
        "citationCount",
        "influentialCitationCount",
        "publicationTypes",
        "publicationDate",
        "abstract",
        "url",
        "externalIds",
        "fieldsOfStudy",
    ]
)
_CITATION_FIELDS = "title,year,authors,externalIds"

_ID_PREFIX: dict[str, str] = {"doi": "DOI", "pmid": "PMID", "arxiv": "ARXIV"}


def _data(payload: Any, key: str = "data") -> list[dict]:
    if not isinstance(payload, dict):
        raise ParseFailure("semantic_scholar: payload is not an object")
    rows = payload.get(key)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ParseFailure(f"semantic_scholar: {key} is not a list")
    return rows


def year_filter(year_from: int | None, year_to: int | None) -> str | None:
    if year_from and year_to:
        return f"{year_from}-{year_to}"
    if year_from:
        return f"{year_from}-"
    if year_to:
        return f"-{year_to}"
    return None


@dataclass
class SemanticScholarAdapter(ProviderAdapter):
    name: ClassVar[str] = "semantic_scholar"
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ("doi", "pmid", "arxiv")
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.7, author=0.25, citation_bonus=True)

    def _paper(self, paper_id: str, *, deadline: Deadline | None) -> list[Any]:
        data = self.http.get_json(
            f"{BASE_URL}/paper/{paper_id}",
            params={"fields": PAPER_FIELDS},
            deadline=deadline,
            not_found_ok=True,
        )
        return [data] if isinstance(data, dict) and data.get("paperId") else []

    def _paper_search(self, params: dict, *, deadline: Deadline | None) -> list[dict]:
        payload = self.http.get_json(f"{BASE_URL}/paper/search", params={**params, "fields": PAPER_FIELDS}, deadline=deadline)
        return _data(payload)

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        return self._paper(f"{_ID_PREFIX[kind]}:{value}", deadline=deadline)

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        query = " ".join([title, *authors])
        return self._paper_search({"query": query, "limit": rows}, deadline=deadline)

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        return self._paper_search({"query": title, "limit": rows}, deadline=deadline)

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        params: dict[str, Any] = {"query": topic, "limit": limit}
        years = year_filter(filters.year_from, filters.year_to)
        if years:
            params["year"] = years
        if filters.fields_of_study:
            params["fieldsOfStudy"] = ",".join(filters.fields_of_study)
        if filters.min_citations is not None:
            params["minCitationCount"] = filters.min_citations + 1
        if filters.open_access:
            params["openAccessPdf"] = ""
        return self._paper_search(params, deadline=deadline)

    def parse_record(self, raw: Any) -> Candidate:
        if not isinstance(raw, dict):
            raise ParseFailure("semantic_scholar: paper is not an object")
        ext = raw.get("externalIds") or {}
        if not isinstance(ext, dict):
            ext = {}
        authors = tuple(
            n for n in (clean_text(a.get("name")) for a in raw.get("authors") or [] if isinstance(a, dict)) if n
        )
        journal = raw.get("journal")
        venue = raw.get("venue") or (journal.get("name") if isinstance(journal, dict) else None)
        pmid = ext.get("PubMed")
        extra = {
            "influential_citation_count": int(raw.get("influentialCitationCount") or 0),
            "publication_types": raw.get("publicationTypes") or [],
            "publication_date": raw.get("publicationDate"),
            "fields_of_study": raw.get("fieldsOfStudy") or [],
        }
        return Candidate(
            source=self.name,
            title=clean_text(raw.get("title")),
            authors=authors,
            external_ids=ExternalIds(
                doi=normalize_doi(ext.get("DOI")),
                pubmed_id=normalize_pmid(pmid) if pmid is not None else None,
                arxiv_id=normalize_arxiv_id(ext.get("ArXiv")),
                semantic_scholar_id=raw.get("paperId"),
            ),
            year=parse_year(raw.get("year")),
            venue=clean_text(venue),
            abstract=clean_text(raw.get("abstract")),
            citation_count=int(raw.get("citationCount") or 0),
            url=raw.get("url"),
            extra=extra,
            raw_payload=raw,
        )

    def get_paper_by_id(self, paper_id: str, *, deadline: Deadline | None = None) -> Candidate | None:
        paper_id = (paper_id or "").strip()
        if not paper_id:
            return None
        found = self._cached_candidates(
            "paper",
            [paper_id],
            ttl_seconds=TTL_IDENTIFIER,
            fetch=lambda: self._paper(paper_id, deadline=deadline),
        )
        return found[0] if found else None

    def citations(self, paper_id: str, limit: int = 100, *, deadline: Deadline | None = None) -> list[Candidate]:
        """Papers citing ``paper_id``; auxiliary metadata, never used for ranking."""

        def fetch() -> list[Any]:
            payload = self.http.get_json(
                f"{BASE_URL}/paper/{paper_id}/citations",
                params={"fields": _CITATION_FIELDS, "limit": int(limit)},
                deadline=deadline,
                not_found_ok=True,
            )
            if payload is None:
                return []
            return [row.get("citingPaper") for row in _data(payload) if isinstance(row, dict) and row.get("citingPaper")]

        return self._cached_candidates("citations", [paper_id, int(limit)], ttl_seconds=TTL_SEARCH, fetch=fetch)

    def recommendations(self, paper_id: str, limit: int = 10, *, deadline: Deadline | None = None) -> list[Candidate]:
        def fetch() -> list[Any]:
            payload = self.http.get_json(
                f"{RECOMMENDATIONS_URL}/papers/forpaper/{paper_id}",
                params={"fields": PAPER_FIELDS, "limit": int(limit)},
                deadline=deadline,
                not_found_ok=True,
            )
            if payload is None:
                return []
            return _data(payload, "recommendedPapers")

        return self._cached_candidates("recommendations", [paper_id, int(limit)], ttl_seconds=TTL_SEARCH, fetch=fetch)
