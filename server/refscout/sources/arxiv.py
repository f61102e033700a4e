from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import ScoringWeights
from server.refscout.analysis.shared.normalize import (
    arxiv_id_from_url,
    clean_text,
    doi_from_url,
    normalize_arxiv_id,
    normalize_doi,
    parse_year,
)
from server.refscout.analysis.types import Candidate, ExternalIds, IdentifierKind, TopicFilters
from server.refscout.core.cache import TTL_LISTING
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import ParseFailure

_ARXIV_API = "https://export.arxiv.org/api/query"
_ATOM_NS = "http://www.w3.org/2005/Atom"
_ARXIV_NS = "http://arxiv.org/schemas/atom"
_NS = {"atom": _ATOM_NS, "arxiv": _ARXIV_NS}

DEFAULT_RECENT_CATEGORIES = ("cs.AI", "cs.LG", "cs.CL")


def parse_feed(xml_text: str) -> list[ET.Element]:
    if not (xml_text or "").strip():
        return []
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseFailure(f"arxiv: feed did not parse: {e}") from e
    if root.tag == f"{{{_ATOM_NS}}}entry":
        return [root]
    return root.findall("atom:entry", _NS)


def _findtext(entry: ET.Element, path: str) -> str | None:
    return clean_text(entry.findtext(path, default="", namespaces=_NS))


@dataclass
class ArxivAdapter(ProviderAdapter):
    name: ClassVar[str] = "arxiv"
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ("arxiv",)
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.8, author=0.2)

    def _query(self, params: dict, *, deadline: Deadline | None) -> list[ET.Element]:
        return parse_feed(self.http.get_text(_ARXIV_API, params=params, deadline=deadline) or "")

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        return self._query({"id_list": value, "max_results": 1}, deadline=deadline)[:1]

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        query = f'ti:"{title}"'
        if authors:
            query += " AND (" + " OR ".join(f'au:"{a}"' for a in authors) + ")"
        params = {"search_query": query, "max_results": rows, "sortBy": "relevance", "sortOrder": "descending"}
        return self._query(params, deadline=deadline)

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        params = {"search_query": f'ti:"{title}"', "max_results": rows, "sortBy": "relevance", "sortOrder": "descending"}
        return self._query(params, deadline=deadline)

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        query = f'all:"{topic}"'
        if filters.fields_of_study:
            query += " AND (" + " OR ".join(f"cat:{c}" for c in filters.fields_of_study) + ")"
        params = {"search_query": query, "max_results": limit, "sortBy": "relevance", "sortOrder": "descending"}
        entries = self._query(params, deadline=deadline)
        if filters.year_from or filters.year_to:
            entries = [e for e in entries if _year_in_range(e, filters.year_from, filters.year_to)]
        return entries

    def parse_record(self, raw: Any) -> Candidate:
        if isinstance(raw, str):
            entries = parse_feed(raw)
            if not entries:
                raise ParseFailure("arxiv: no entry in record")
            raw = entries[0]
        if not isinstance(raw, ET.Element):
            raise ParseFailure("arxiv: record is not XML")

        id_url = _findtext(raw, "atom:id")
        # error entries carry an api/errors id instead of an abs url
        if not id_url or "/abs/" not in id_url:
            raise ParseFailure(f"arxiv: entry is not a paper: {id_url!r}")
        arxiv_id = normalize_arxiv_id(arxiv_id_from_url(id_url))
        if not arxiv_id:
            raise ParseFailure("arxiv: entry has no id")

        authors = tuple(
            n for n in (clean_text(a.findtext("atom:name", default="", namespaces=_NS)) for a in raw.findall("atom:author", _NS)) if n
        )
        categories = [c.attrib.get("term") for c in raw.findall("atom:category", _NS) if c.attrib.get("term")]

        doi = None
        for link in raw.findall("atom:link", _NS):
            href = link.attrib.get("href") or ""
            if "doi.org" in href:
                doi = normalize_doi(doi_from_url(href))
                break
        if not doi:
            doi = normalize_doi(_findtext(raw, "arxiv:doi"))

        primary = raw.find("arxiv:primary_category", _NS)
        published = _findtext(raw, "atom:published")
        extra = {
            "categories": categories,
            "primary_category": primary.attrib.get("term") if primary is not None else None,
            "published_date": published,
            "updated_date": _findtext(raw, "atom:updated"),
            "journal_ref": _findtext(raw, "arxiv:journal_ref"),
            "comment": _findtext(raw, "arxiv:comment"),
            "pdf_url": id_url.replace("/abs/", "/pdf/") + ".pdf" if id_url else None,
        }
        return Candidate(
            source=self.name,
            title=_findtext(raw, "atom:title"),
            authors=authors,
            external_ids=ExternalIds(doi=doi, arxiv_id=arxiv_id),
            year=parse_year(published[:4]) if published else None,
            abstract=_findtext(raw, "atom:summary"),
            url=id_url,
            extra=extra,
            raw_payload=ET.tostring(raw, encoding="unicode"),
        )

    def search_by_category(self, category: str, max_results: int = 20, *, deadline: Deadline | None = None) -> list[Candidate]:
        params = {
            "search_query": f"cat:{category}",
            "max_results": int(max_results),
            "sortBy": "lastUpdatedDate",
            "sortOrder": "descending",
        }
        return self._cached_candidates(
            "category",
            [category, int(max_results)],
            ttl_seconds=TTL_LISTING,
            fetch=lambda: self._query(params, deadline=deadline),
        )

    def recent_papers(
        self,
        categories: Sequence[str] = (),
        max_results: int = 10,
        *,
        deadline: Deadline | None = None,
    ) -> list[Candidate]:
        """Newest submissions across ``categories`` (AI/ML categories by default)."""
        cats = [c for c in categories if c] or list(DEFAULT_RECENT_CATEGORIES)
        params = {
            "search_query": " OR ".join(f"cat:{c}" for c in cats),
            "max_results": int(max_results),
            "sortBy": "submittedDate",
            "sortOrder": "descending",
        }
        return self._cached_candidates(
            "recent",
            [cats, int(max_results)],
            ttl_seconds=TTL_LISTING,
            fetch=lambda: self._query(params, deadline=deadline),
        )


def _year_in_range(entry: ET.Element, year_from: int | None, year_to: int | None) -> bool:
    published = _findtext(entry, "atom:published")
    year = parse_year(published[:4]) if published else None
    if year is None:
        return False
    if year_from and year < year_from:
        return False
    if year_to and year > year_to:
        return False
    return True
