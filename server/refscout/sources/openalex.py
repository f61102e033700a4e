from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import ScoringWeights
from server.refscout.analysis.shared.normalize import clean_text, normalize_doi, normalize_pmid, parse_year
from server.refscout.analysis.types import Candidate, ExternalIds, IdentifierKind, TopicFilters
from server.refscout.core.cache import TTL_IDENTIFIER, TTL_LISTING
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import ParseFailure

BASE_URL = "https://api.openalex.org"
_PUBMED_URL_PREFIX = "https://pubmed.ncbi.nlm.nih.gov/"
_RELATED_CONCEPTS = 3


def openalex_work_id_suffix(openalex_id: str | None) -> str | None:
    if not openalex_id:
        return None
    openalex_id = openalex_id.strip()
    if openalex_id.startswith(("https://openalex.org/", "https://api.openalex.org/works/")):
        return openalex_id.rstrip("/").split("/")[-1] or None
    if openalex_id[:1] in {"W", "w"}:
        return openalex_id.upper()
    return None


def openalex_author_id_suffix(author_id: str | None) -> str | None:
    author_id = (author_id or "").strip().rstrip("/")
    if author_id.startswith(("https://openalex.org/", "https://api.openalex.org/authors/")):
        author_id = author_id.split("/")[-1]
    if author_id[:1] in {"A", "a"} and author_id[1:].isdigit():
        return author_id.upper()
    return None


def reconstruct_abstract(inverted_index: Any) -> str | None:
    """Rebuild abstract text from OpenAlex's ``{word: [positions]}`` form."""
    if not isinstance(inverted_index, dict) or not inverted_index:
        return None
    positions: dict[int, str] = {}
    for word, places in inverted_index.items():
        for pos in places or []:
            positions[int(pos)] = word
    if not positions:
        return None
    return " ".join(positions[p] for p in sorted(positions))


def _results(data: Any) -> list[dict]:
    if not isinstance(data, dict):
        raise ParseFailure("openalex: payload is not an object")
    results = data.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise ParseFailure("openalex: results is not a list")
    return results


def _obj(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _concepts(raw: Any) -> list[dict]:
    out = []
    for concept in raw or []:
        if not isinstance(concept, dict):
            continue
        out.append(
            {
                "id": concept.get("id"),
                "name": concept.get("display_name") or "",
                "score": concept.get("score") or 0,
                "level": concept.get("level") or 0,
            }
        )
    return out


@dataclass
class OpenAlexAdapter(ProviderAdapter):
    name: ClassVar[str] = "openalex"
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ("doi",)
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.7, author=0.25, citation_bonus=True)

    def _works(self, params: dict, *, deadline: Deadline | None) -> list[dict]:
        return _results(self.http.get_json(f"{BASE_URL}/works", params=params, deadline=deadline))

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        return self._works({"filter": f"doi:{value}", "per-page": 1}, deadline=deadline)[:1]

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        query = f"{title} {authors[0]}" if authors else title
        params = {"search": query, "per-page": rows, "sort": "relevance_score:desc"}
        return self._works(params, deadline=deadline)

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        params = {"search": title, "per-page": rows, "sort": "relevance_score:desc"}
        return self._works(params, deadline=deadline)

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        params: dict[str, Any] = {"search": topic, "per-page": limit, "sort": "cited_by_count:desc"}
        filter_parts = []
        if filters.year_from:
            filter_parts.append(f"from_publication_date:{filters.year_from}-01-01")
        if filters.year_to:
            filter_parts.append(f"to_publication_date:{filters.year_to}-12-31")
        if filters.min_citations is not None:
            filter_parts.append(f"cited_by_count:>{filters.min_citations}")
        if filters.open_access:
            filter_parts.append("open_access.is_oa:true")
        if filter_parts:
            params["filter"] = ",".join(filter_parts)
        return self._works(params, deadline=deadline)

    def parse_record(self, raw: Any) -> Candidate:
        if not isinstance(raw, dict):
            raise ParseFailure("openalex: work is not an object")
        authors = tuple(
            name
            for name in (
                _obj(_obj(a).get("author")).get("display_name")
                for a in raw.get("authorships") or []
            )
            if name
        )
        ids = _obj(raw.get("ids"))
        doi = normalize_doi(ids.get("doi") or raw.get("doi"))
        pmid_raw = ids.get("pmid")
        pmid = normalize_pmid(str(pmid_raw).replace(_PUBMED_URL_PREFIX, "").strip("/")) if pmid_raw else None

        venue = _obj(_obj(raw.get("primary_location")).get("source")).get("display_name")
        if not venue:
            venue = _obj(raw.get("host_venue")).get("display_name")

        year = parse_year(raw.get("publication_year"))
        if year is None and raw.get("publication_date"):
            year = parse_year(str(raw["publication_date"])[:4])

        abstract = raw.get("abstract") or reconstruct_abstract(raw.get("abstract_inverted_index"))
        open_access = _obj(raw.get("open_access"))
        biblio = _obj(raw.get("biblio"))
        extra = {
            "type": raw.get("type"),
            "is_oa": bool(open_access.get("is_oa", False)),
            "oa_url": open_access.get("oa_url"),
            "concepts": _concepts(raw.get("concepts")),
            "mesh_terms": raw.get("mesh") or [],
            "publication_date": raw.get("publication_date"),
            "biblio": {
                "volume": biblio.get("volume"),
                "issue": biblio.get("issue"),
                "first_page": biblio.get("first_page"),
                "last_page": biblio.get("last_page"),
            },
        }
        return Candidate(
            source=self.name,
            title=clean_text(raw.get("title") or raw.get("display_name")),
            authors=authors,
            external_ids=ExternalIds(doi=doi, pubmed_id=pmid, openalex_id=raw.get("id")),
            year=year,
            venue=clean_text(venue),
            abstract=clean_text(abstract),
            citation_count=int(raw.get("cited_by_count") or 0),
            url=raw.get("id"),
            extra=extra,
            raw_payload=raw,
        )

    def get_work_by_id(self, openalex_id: str, *, deadline: Deadline | None = None) -> Candidate | None:
        suffix = openalex_work_id_suffix(openalex_id)
        if not suffix:
            return None

        def fetch() -> list[Any]:
            data = self.http.get_json(f"{BASE_URL}/works/{suffix}", deadline=deadline, not_found_ok=True)
            return [data] if isinstance(data, dict) else []

        found = self._cached_candidates("work_by_id", [suffix], ttl_seconds=TTL_IDENTIFIER, fetch=fetch)
        return found[0] if found else None

    def get_author(self, author_id: str, *, deadline: Deadline | None = None) -> dict | None:
        """Author profile summary; ``None`` for unknown or malformed ids."""
        suffix = openalex_author_id_suffix(author_id)
        if not suffix:
            return None

        def fetch() -> dict | None:
            data = self.http.get_json(f"{BASE_URL}/authors/{suffix}", deadline=deadline, not_found_ok=True)
            if not isinstance(data, dict) or not data.get("id"):
                return None
            institution = _obj(data.get("last_known_institution"))
            return {
                "id": data.get("id"),
                "name": clean_text(data.get("display_name")),
                "orcid": data.get("orcid"),
                "works_count": int(data.get("works_count") or 0),
                "cited_by_count": int(data.get("cited_by_count") or 0),
                "institution": clean_text(institution.get("display_name")),
            }

        if self.cache is None:
            return fetch()
        return self.cache.get_or_compute("openalex.author", [suffix], ttl_seconds=TTL_IDENTIFIER, compute=fetch)

    def related_works(self, concept_ids: Sequence[str], limit: int = 10, *, deadline: Deadline | None = None) -> list[Candidate]:
        """Most-cited works sharing any of the first three concept ids."""
        ids = [c.strip() for c in concept_ids[:_RELATED_CONCEPTS] if c and c.strip()]
        if not ids:
            return []
        params = {"filter": f"concepts.id:{'|'.join(ids)}", "sort": "cited_by_count:desc", "per-page": int(limit)}
        return self._cached_candidates(
            "related",
            [ids, int(limit)],
            ttl_seconds=TTL_LISTING,
            fetch=lambda: self._works(params, deadline=deadline),
        )
