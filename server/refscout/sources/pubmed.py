from __future__ import annotations

import datetime as dt
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from server.refscout.analysis.scoring import ScoringWeights
from server.refscout.analysis.shared.normalize import clean_text, normalize_doi, normalize_pmid
from server.refscout.analysis.types import Candidate, ExternalIds, IdentifierKind, TopicFilters
from server.refscout.sources.base import ProviderAdapter
from server.refscout.sources.concurrency import Deadline
from server.refscout.sources.http import ParseFailure

_EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
_ESEARCH_URL = f"{_EUTILS_BASE}/esearch.fcgi"
_EFETCH_URL = f"{_EUTILS_BASE}/efetch.fcgi"

_YEAR_RE = re.compile(r"(\d{4})")


def _text(node: ET.Element | None) -> str | None:
    if node is None:
        return None
    return clean_text(" ".join(node.itertext()))


def _pub_year(pub_date: ET.Element | None) -> int | None:
    if pub_date is None:
        return None
    for tag in ("Year", "MedlineDate"):
        value = _text(pub_date.find(tag))
        if value:
            m = _YEAR_RE.search(value)
            if m:
                return int(m.group(1))
    return None


def _author_names(article: ET.Element) -> tuple[str, ...]:
    names: list[str] = []
    for author in article.findall("./AuthorList/Author"):
        last = _text(author.find("LastName"))
        fore = _text(author.find("ForeName"))
        if last and fore:
            names.append(f"{fore} {last}")
            continue
        collective = _text(author.find("CollectiveName"))
        if collective:
            names.append(collective)
    return tuple(names)


def _abstract(article: ET.Element) -> str | None:
    parts = [t for t in (_text(node) for node in article.findall("./Abstract/AbstractText")) if t]
    return " ".join(parts) if parts else None


def _doi(pubmed_article: ET.Element) -> str | None:
    for node in pubmed_article.findall("./PubmedData/ArticleIdList/ArticleId"):
        if (node.attrib.get("IdType") or "").lower() == "doi":
            return normalize_doi(_text(node))
    return None


def split_articles(xml_text: str) -> list[ET.Element]:
    """``PubmedArticle`` elements of an efetch response; raises ``ParseFailure`` on bad XML."""
    if not (xml_text or "").strip():
        return []
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseFailure(f"pubmed: efetch XML did not parse: {e}") from e
    if root.tag == "PubmedArticle":
        return [root]
    return root.findall("./PubmedArticle")


@dataclass
class PubMedAdapter(ProviderAdapter):
    name: ClassVar[str] = "pubmed"
    supported_ids: ClassVar[tuple[IdentifierKind, ...]] = ("pmid", "doi")
    weights: ClassVar[ScoringWeights] = ScoringWeights(title=0.7, author=0.3)

    tool: str = "refscout"
    email: str = ""
    api_key: str = ""

    def _base_params(self, *, retmode: str) -> dict[str, str]:
        params: dict[str, str] = {"db": "pubmed", "retmode": retmode}
        tool = (self.tool or "").strip()
        if tool:
            params["tool"] = tool
        email = (self.email or "").strip()
        if email:
            params["email"] = email
        api_key = (self.api_key or "").strip()
        if api_key:
            params["api_key"] = api_key
        return params

    def _esearch(self, term: str, *, retmax: int, deadline: Deadline | None, sort: str | None = None) -> list[str]:
        params: dict[str, Any] = {**self._base_params(retmode="json"), "term": term, "retmax": int(retmax)}
        if sort:
            params["sort"] = sort
        data = self.http.get_json(_ESEARCH_URL, params=params, deadline=deadline)
        if not isinstance(data, dict):
            raise ParseFailure("pubmed: esearch payload is not an object")
        result = data.get("esearchresult") or {}
        if not isinstance(result, dict):
            raise ParseFailure("pubmed: esearchresult is not an object")
        ids = result.get("idlist") or []
        if not isinstance(ids, list):
            raise ParseFailure("pubmed: idlist is not a list")
        return [str(i) for i in ids if str(i).strip()]

    def _efetch(self, pmids: Sequence[str], *, deadline: Deadline | None) -> list[ET.Element]:
        """One batched efetch for all ids."""
        if not pmids:
            return []
        params = {**self._base_params(retmode="xml"), "id": ",".join(pmids), "rettype": "abstract"}
        text = self.http.get_text(_EFETCH_URL, params=params, deadline=deadline)
        return split_articles(text or "")

    def _search_fetch(self, term: str, *, retmax: int, deadline: Deadline | None, sort: str | None = None) -> list[Any]:
        return self._efetch(self._esearch(term, retmax=retmax, deadline=deadline, sort=sort), deadline=deadline)

    def _fetch_by_id(self, kind: IdentifierKind, value: str, *, deadline: Deadline | None) -> list[Any]:
        if kind == "pmid":
            return self._efetch([value], deadline=deadline)
        ids = self._esearch(f'"{value}"[DOI]', retmax=1, deadline=deadline)
        return self._efetch(ids[:1], deadline=deadline)

    def _fetch_title_author(
        self, title: str, authors: Sequence[str], *, rows: int, deadline: Deadline | None
    ) -> list[Any]:
        term = f'"{title}"[Title]'
        if authors:
            term += " AND (" + " OR ".join(f'"{a}"[Author]' for a in authors) + ")"
        return self._search_fetch(term, retmax=rows, deadline=deadline)

    def _fetch_title(self, title: str, *, rows: int, deadline: Deadline | None) -> list[Any]:
        return self._search_fetch(f'"{title}"[Title]', retmax=rows, deadline=deadline)

    def topic_query(self, topic: str, filters: TopicFilters, *, current_year: int | None = None) -> str:
        query = f'("{topic}"[Title/Abstract])'
        if filters.year_from:
            end_year = filters.year_to or current_year or dt.date.today().year
            query += f" AND ({filters.year_from}/01/01[Date - Publication] : {end_year}/12/31[Date - Publication])"
        query += " AND journal article[Publication Type]"
        query += " NOT (editorial[Publication Type] OR comment[Publication Type] OR letter[Publication Type])"
        return query

    def _fetch_topic(
        self, topic: str, *, limit: int, filters: TopicFilters, deadline: Deadline | None
    ) -> list[Any]:
        return self._search_fetch(self.topic_query(topic, filters), retmax=limit, deadline=deadline, sort="relevance")

    def parse_record(self, raw: Any) -> Candidate:
        if isinstance(raw, str):
            articles = split_articles(raw)
            if not articles:
                raise ParseFailure("pubmed: no PubmedArticle in record")
            raw = articles[0]
        if not isinstance(raw, ET.Element):
            raise ParseFailure("pubmed: record is not XML")
        citation = raw.find("./MedlineCitation")
        if citation is None:
            raise ParseFailure("pubmed: record has no MedlineCitation")
        pmid = normalize_pmid(_text(citation.find("./PMID")))
        article = citation.find("./Article")
        if article is None or not pmid:
            raise ParseFailure("pubmed: record has no Article or PMID")

        journal = article.find("./Journal")
        issue = journal.find("./JournalIssue") if journal is not None else None
        extra = {
            "journal_abbrev": _text(journal.find("./ISOAbbreviation")) if journal is not None else None,
            "volume": _text(issue.find("./Volume")) if issue is not None else None,
            "issue": _text(issue.find("./Issue")) if issue is not None else None,
            "pages": _text(article.find("./Pagination/MedlinePgn")),
            "mesh_terms": [
                t for t in (_text(n) for n in citation.findall("./MeshHeadingList/MeshHeading/DescriptorName")) if t
            ],
        }
        return Candidate(
            source=self.name,
            title=_text(article.find("./ArticleTitle")),
            authors=_author_names(article),
            external_ids=ExternalIds(doi=_doi(raw), pubmed_id=pmid),
            year=_pub_year(issue.find("./PubDate") if issue is not None else None),
            venue=_text(journal.find("./Title")) if journal is not None else None,
            abstract=_abstract(article),
            url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
            extra=extra,
            raw_payload=ET.tostring(raw, encoding="unicode"),
        )
