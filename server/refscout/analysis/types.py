from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Iterable, Literal, Mapping

from server.refscout.analysis.shared.normalize import normalize_arxiv_id, normalize_doi, normalize_pmid, parse_year

IdentifierKind = Literal["doi", "pmid", "arxiv"]
SearchTier = Literal["identifier", "title_author", "title", "author_year", "none"]


def _clean_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class ParsedReference:
    """Partially-known reference as produced by the upstream parser."""

    doi: str | None = None
    pubmed_id: str | None = None
    arxiv_id: str | None = None
    title: str | None = None
    authors: tuple[str, ...] = ()
    year: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ParsedReference":
        if not data:
            return cls()
        authors_raw = data.get("authors") or ()
        if isinstance(authors_raw, str):
            authors_raw = [authors_raw]
        authors = tuple(a.strip() for a in authors_raw if isinstance(a, str) and a.strip())
        pmid = data.get("pubmed_id", data.get("pmid"))
        return cls(
            doi=normalize_doi(_clean_str(data.get("doi"))),
            pubmed_id=normalize_pmid(pmid),
            arxiv_id=normalize_arxiv_id(_clean_str(data.get("arxiv_id"))),
            title=_clean_str(data.get("title")),
            authors=authors,
            year=parse_year(data.get("year")),
        )

    def identifier(self, kind: IdentifierKind) -> str | None:
        if kind == "doi":
            return self.doi
        if kind == "pmid":
            return self.pubmed_id
        if kind == "arxiv":
            return self.arxiv_id
        return None

    def is_empty(self) -> bool:
        return not (self.doi or self.pubmed_id or self.arxiv_id or self.title or self.authors or self.year)


@dataclass(frozen=True)
class ExternalIds:
    doi: str | None = None
    pubmed_id: str | None = None
    arxiv_id: str | None = None
    openalex_id: str | None = None
    semantic_scholar_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


@dataclass(frozen=True)
class Candidate:
    source: str
    title: str | None
    authors: tuple[str, ...] = ()
    external_ids: ExternalIds = field(default_factory=ExternalIds)
    year: int | None = None
    venue: str | None = None
    abstract: str | None = None
    citation_count: int = 0
    url: str | None = None
    relevance_score: float | None = None
    generation_score: float | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)
    raw_payload: Any = field(default=None, repr=False, compare=False)

    def with_relevance(self, score: float) -> "Candidate":
        return replace(self, relevance_score=float(score))

    def with_generation(self, score: float) -> "Candidate":
        return replace(self, generation_score=float(score))

    def to_dict(self, *, include_raw: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            "source": self.source,
            "external_ids": self.external_ids.to_dict(),
            "title": self.title,
            "authors": list(self.authors),
            "year": self.year,
            "venue": self.venue,
            "abstract": self.abstract,
            "citation_count": self.citation_count,
            "url": self.url,
            "relevance_score": self.relevance_score,
            "generation_score": self.generation_score,
            "extra": dict(self.extra),
        }
        if include_raw:
            out["raw_payload"] = self.raw_payload
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candidate":
        ids = data.get("external_ids") or {}
        return cls(
            source=str(data.get("source") or ""),
            title=data.get("title"),
            authors=tuple(data.get("authors") or ()),
            external_ids=ExternalIds(
                doi=ids.get("doi"),
                pubmed_id=ids.get("pubmed_id"),
                arxiv_id=ids.get("arxiv_id"),
                openalex_id=ids.get("openalex_id"),
                semantic_scholar_id=ids.get("semantic_scholar_id"),
            ),
            year=data.get("year"),
            venue=data.get("venue"),
            abstract=data.get("abstract"),
            citation_count=int(data.get("citation_count") or 0),
            url=data.get("url"),
            relevance_score=data.get("relevance_score"),
            generation_score=data.get("generation_score"),
            extra=dict(data.get("extra") or {}),
            raw_payload=data.get("raw_payload"),
        )


@dataclass(frozen=True)
class TopicFilters:
    year_from: int | None = None
    year_to: int | None = None
    min_citations: int | None = None
    open_access: bool = False
    fields_of_study: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "TopicFilters":
        """Build filters from the caller's map; unrecognized keys are ignored."""
        if not data:
            return cls()
        fields = data.get("fields_of_study") or ()
        if isinstance(fields, str):
            fields = [f for f in fields.split(",")]
        min_citations = data.get("min_citations")
        try:
            min_citations = int(min_citations) if min_citations is not None and min_citations != "" else None
        except (TypeError, ValueError):
            min_citations = None
        open_access = data.get("open_access")
        if isinstance(open_access, str):
            open_access = open_access.strip().lower() in {"1", "true", "yes", "y", "on"}
        return cls(
            year_from=parse_year(data.get("year_from")),
            year_to=parse_year(data.get("year_to")),
            min_citations=min_citations,
            open_access=bool(open_access),
            fields_of_study=tuple(f.strip() for f in fields if isinstance(f, str) and f.strip()),
        )

    def cache_parts(self) -> list[Any]:
        return [self.year_from, self.year_to, self.min_citations, self.open_access, list(self.fields_of_study)]


def _primary_score(candidate: Candidate, key: str) -> float:
    value = getattr(candidate, key)
    return float(value) if value is not None else 0.0


def sort_scored(candidates: Iterable[Candidate], *, key: str = "relevance_score") -> list[Candidate]:
    """Order by primary score, ties broken by citation count (both descending)."""
    return sorted(
        candidates,
        key=lambda c: (_primary_score(c, key), int(c.citation_count or 0)),
        reverse=True,
    )
