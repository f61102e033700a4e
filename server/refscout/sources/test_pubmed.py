import unittest

from server.refscout.analysis.types import ParsedReference, TopicFilters
from server.refscout.sources.http import HttpClient, ParseFailure
from server.refscout.sources.pubmed import PubMedAdapter, split_articles


class _StubResponse:
    def __init__(self, payload=None, *, status_code: int = 200, text: str | None = None) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class _EutilsSession:
    def __init__(self, *, idlist=(), xml: str = "") -> None:
        self.idlist = list(idlist)
        self.xml = xml
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers))
        if url.endswith("esearch.fcgi"):
            return _StubResponse({"esearchresult": {"idlist": self.idlist}})
        if url.endswith("efetch.fcgi"):
            return _StubResponse(text=self.xml)
        raise AssertionError(f"unexpected url {url}")

    def urls(self) -> list[str]:
        return [u.rsplit("/", 1)[-1] for u, _, _ in self.calls]


def _adapter(session: _EutilsSession, **kwargs) -> PubMedAdapter:
    http = HttpClient(source="pubmed", session=session, max_attempts=1)  # type: ignore[arg-type]
    return PubMedAdapter(http=http, **kwargs)


def _article(pmid: str, title: str, *, year: str = "<Year>2020</Year>", doi: str | None = None) -> str:
    doi_xml = f'<ArticleId IdType="doi">{doi}</ArticleId>' if doi else ""
    return f"""
<PubmedArticle>
  <MedlineCitation>
    <PMID Version="1">{pmid}</PMID>
    <Article>
      <Journal>
        <JournalIssue><Volume>396</Volume><Issue>10251</Issue><PubDate>{year}</PubDate></JournalIssue>
        <Title>The Lancet</Title>
        <ISOAbbreviation>Lancet</ISOAbbreviation>
      </Journal>
      <ArticleTitle>{title}</ArticleTitle>
      <Pagination><MedlinePgn>635-648</MedlinePgn></Pagination>
      <Abstract>
        <AbstractText Label="BACKGROUND">Gastric cancer is common.</AbstractText>
        <AbstractText Label="FINDINGS">Outcomes <i>improved</i>.</AbstractText>
      </Abstract>
      <AuthorList>
        <Author><LastName>Smyth</LastName><ForeName>Elizabeth C</ForeName></Author>
        <Author><LastName>Nilsson</LastName><ForeName>Magnus</ForeName></Author>
        <Author><CollectiveName>ESMO Guidelines Committee</CollectiveName></Author>
      </AuthorList>
    </Article>
    <MeshHeadingList>
      <MeshHeading><DescriptorName>Stomach Neoplasms</DescriptorName></MeshHeading>
    </MeshHeadingList>
  </MedlineCitation>
  <PubmedData><ArticleIdList>
    <ArticleId IdType="pubmed">{pmid}</ArticleId>{doi_xml}
  </ArticleIdList></PubmedData>
</PubmedArticle>"""


def _set(*articles: str) -> str:
    return "<PubmedArticleSet>" + "".join(articles) + "</PubmedArticleSet>"


class TestPubMedParsing(unittest.TestCase):
    def test_parse_article(self) -> None:
        adapter = _adapter(_EutilsSession())
        c = adapter.parse_record(_article("32861308", "Gastric cancer", doi="10.1016/S0140-6736(20)31288-5"))
        self.assertEqual(c.title, "Gastric cancer")
        self.assertEqual(c.authors, ("Elizabeth C Smyth", "Magnus Nilsson", "ESMO Guidelines Committee"))
        self.assertEqual(c.abstract, "Gastric cancer is common. Outcomes improved .")
        self.assertEqual(c.year, 2020)
        self.assertEqual(c.venue, "The Lancet")
        self.assertEqual(c.external_ids.pubmed_id, "32861308")
        self.assertEqual(c.external_ids.doi, "10.1016/s0140-6736(20)31288-5")
        self.assertEqual(c.url, "https://pubmed.ncbi.nlm.nih.gov/32861308/")
        self.assertEqual(c.extra["mesh_terms"], ["Stomach Neoplasms"])
        self.assertEqual(c.extra["pages"], "635-648")
        self.assertIn("<PMID", c.raw_payload)

    def test_medline_date_year(self) -> None:
        adapter = _adapter(_EutilsSession())
        c = adapter.parse_record(_article("1234567", "Old study", year="<MedlineDate>1998 Dec-1999 Jan</MedlineDate>"))
        self.assertEqual(c.year, 1998)

    def test_malformed_xml(self) -> None:
        with self.assertRaises(ParseFailure):
            split_articles("<PubmedArticleSet><PubmedArticle>")
        self.assertEqual(split_articles(""), [])

    def test_record_without_pmid_is_rejected(self) -> None:
        adapter = _adapter(_EutilsSession())
        with self.assertRaises(ParseFailure):
            adapter.parse_record("<PubmedArticle><MedlineCitation><Article/></MedlineCitation></PubmedArticle>")


class TestPubMedSearch(unittest.TestCase):
    def test_pmid_lookup_skips_esearch(self) -> None:
        session = _EutilsSession(xml=_set(_article("32861308", "Gastric cancer")))
        tier, found = _adapter(session).search(ParsedReference(pubmed_id="32861308", doi="10.1/ignored"))
        self.assertEqual(tier, "identifier")
        self.assertEqual(session.urls(), ["efetch.fcgi"])
        self.assertEqual(session.calls[0][1]["id"], "32861308")
        self.assertEqual(found[0].relevance_score, 1.0)

    def test_doi_lookup_goes_through_esearch(self) -> None:
        session = _EutilsSession(idlist=["32861308"], xml=_set(_article("32861308", "Gastric cancer")))
        tier, found = _adapter(session).search(ParsedReference(doi="10.1016/s0140-6736(20)31288-5"))
        self.assertEqual(tier, "identifier")
        self.assertEqual(session.urls(), ["esearch.fcgi", "efetch.fcgi"])
        self.assertEqual(session.calls[0][1]["term"], '"10.1016/s0140-6736(20)31288-5"[DOI]')
        self.assertEqual(session.calls[0][1]["retmax"], 1)
        self.assertEqual(len(found), 1)

    def test_doi_without_hit_makes_no_efetch(self) -> None:
        session = _EutilsSession(idlist=[])
        self.assertEqual(_adapter(session).search(ParsedReference(doi="10.1/none")), ("identifier", []))
        self.assertEqual(session.urls(), ["esearch.fcgi"])

    def test_title_author_batches_efetch(self) -> None:
        xml = _set(
            _article("1", "Gastric cancer"),
            _article("2", "Gastric cancer treatment"),
            _article("3", "A completely unrelated longitudinal dermatology study of childhood rashes in rural clinics"),
        )
        session = _EutilsSession(idlist=["1", "2", "3"], xml=xml)
        ref = ParsedReference(title="Gastric cancer", authors=("Smyth EC", "Magnus Nilsson", "Third Author"))
        tier, found = _adapter(session, tool="refscout", email="a@b.org", api_key="k").search(ref)

        self.assertEqual(tier, "title_author")
        self.assertEqual(session.urls(), ["esearch.fcgi", "efetch.fcgi"])
        esearch_params = session.calls[0][1]
        self.assertEqual(esearch_params["term"], '"Gastric cancer"[Title] AND ("Smyth EC"[Author] OR "Magnus Nilsson"[Author])')
        self.assertEqual(esearch_params["retmode"], "json")
        self.assertEqual(esearch_params["api_key"], "k")
        efetch_params = session.calls[1][1]
        self.assertEqual(efetch_params["id"], "1,2,3")
        self.assertEqual(efetch_params["retmode"], "xml")
        self.assertEqual(efetch_params["rettype"], "abstract")
        self.assertEqual(efetch_params["email"], "a@b.org")
        self.assertEqual({c.external_ids.pubmed_id for c in found}, {"1", "2"})

    def test_malformed_efetch_is_tolerated(self) -> None:
        session = _EutilsSession(idlist=["1"], xml="<PubmedArticleSet><broken")
        with self.assertLogs("server.refscout.sources.base", level="WARNING"):
            self.assertEqual(_adapter(session).search(ParsedReference(title="Gastric cancer")), ("none", []))

    def test_wrongly_shaped_esearch_is_tolerated(self) -> None:
        session = _EutilsSession()
        session.idlist = "oops"
        with self.assertLogs("server.refscout.sources.base", level="WARNING"):
            self.assertEqual(_adapter(session).search(ParsedReference(title="Gastric cancer")), ("none", []))
        self.assertEqual(session.urls(), ["esearch.fcgi"])

    def test_author_year_is_not_supported(self) -> None:
        session = _EutilsSession()
        self.assertEqual(_adapter(session).search(ParsedReference(authors=("Smyth",), year=2020)), ("none", []))
        self.assertEqual(session.calls, [])


class TestPubMedTopicQuery(unittest.TestCase):
    def test_query_with_year_range(self) -> None:
        adapter = _adapter(_EutilsSession())
        query = adapter.topic_query("gastric cancer", TopicFilters(year_from=2018), current_year=2024)
        self.assertEqual(
            query,
            '("gastric cancer"[Title/Abstract])'
            " AND (2018/01/01[Date - Publication] : 2024/12/31[Date - Publication])"
            " AND journal article[Publication Type]"
            " NOT (editorial[Publication Type] OR comment[Publication Type] OR letter[Publication Type])",
        )

    def test_query_without_years(self) -> None:
        adapter = _adapter(_EutilsSession())
        query = adapter.topic_query("sepsis", TopicFilters(year_to=2020))
        self.assertNotIn("Date - Publication", query)

    def test_topic_search_sorts_by_relevance(self) -> None:
        session = _EutilsSession(idlist=["1"], xml=_set(_article("1", "Sepsis outcomes")))
        found = _adapter(session).search_by_topic("sepsis", 5)
        self.assertEqual(session.calls[0][1]["sort"], "relevance")
        self.assertEqual(session.calls[0][1]["retmax"], 5)
        self.assertEqual([c.title for c in found], ["Sepsis outcomes"])


if __name__ == "__main__":
    unittest.main()
