import unittest

from server.refscout.analysis.types import ParsedReference, TopicFilters
from server.refscout.sources.arxiv import ArxivAdapter, parse_feed
from server.refscout.sources.http import HttpClient, ParseFailure


class _StubResponse:
    def __init__(self, text: str, *, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code


class _CountingSession:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers))
        return _StubResponse(self.text)


def _adapter(text: str) -> tuple[ArxivAdapter, _CountingSession]:
    session = _CountingSession(text)
    http = HttpClient(source="arxiv", session=session, max_attempts=1)  # type: ignore[arg-type]
    return ArxivAdapter(http=http), session


def _entry(arxiv_id: str, title: str, published: str, *, doi_link: bool = False) -> str:
    link = f'<link title="doi" href="http://dx.doi.org/10.5555/{arxiv_id}" rel="related"/>' if doi_link else ""
    return f"""
  <entry>
    <id>http://arxiv.org/abs/{arxiv_id}v5</id>
    <updated>2023-08-02T00:41:18Z</updated>
    <published>{published}</published>
    <title>{title}</title>
    <summary>  The dominant sequence transduction models
      are based on recurrent networks.</summary>
    <author><name>Ashish Vaswani</name></author>
    <author><name>Noam Shazeer</name></author>
    <arxiv:comment>15 pages, 5 figures</arxiv:comment>
    <arxiv:doi>10.48550/arXiv.{arxiv_id}</arxiv:doi>
    {link}
    <arxiv:primary_category term="cs.CL" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.CL" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
  </entry>"""


def _feed(*entries: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<feed xmlns="http://www.w3.org/2005/Atom" xmlns:arxiv="http://arxiv.org/schemas/atom">'
        "<title>ArXiv Query</title>" + "".join(entries) + "</feed>"
    )


_ERROR_ENTRY = """
  <entry>
    <id>http://arxiv.org/api/errors#incorrect_id_format_for_bogus</id>
    <title>Error</title>
    <summary>incorrect id format for bogus</summary>
  </entry>"""

_ATTENTION = _entry("1706.03762", "Attention Is All\n      You Need", "2017-06-12T17:57:34Z")


class TestArxivParsing(unittest.TestCase):
    def test_parse_entry(self) -> None:
        adapter, _ = _adapter("")
        c = adapter.parse_record(parse_feed(_feed(_ATTENTION))[0])
        self.assertEqual(c.title, "Attention Is All You Need")
        self.assertEqual(c.authors, ("Ashish Vaswani", "Noam Shazeer"))
        self.assertEqual(c.external_ids.arxiv_id, "1706.03762")
        self.assertEqual(c.external_ids.doi, "10.48550/arxiv.1706.03762")
        self.assertEqual(c.year, 2017)
        self.assertEqual(c.abstract, "The dominant sequence transduction models are based on recurrent networks.")
        self.assertEqual(c.extra["categories"], ["cs.CL", "cs.LG"])
        self.assertEqual(c.extra["primary_category"], "cs.CL")
        self.assertEqual(c.extra["comment"], "15 pages, 5 figures")
        self.assertEqual(c.extra["pdf_url"], "http://arxiv.org/pdf/1706.03762v5.pdf")

    def test_doi_link_wins_over_arxiv_doi(self) -> None:
        adapter, _ = _adapter("")
        entry = _entry("2101.00001", "Some paper", "2021-01-01T00:00:00Z", doi_link=True)
        c = adapter.parse_record(parse_feed(_feed(entry))[0])
        self.assertEqual(c.external_ids.doi, "10.5555/2101.00001")

    def test_error_entry_is_not_a_paper(self) -> None:
        adapter, _ = _adapter("")
        with self.assertRaises(ParseFailure):
            adapter.parse_record(parse_feed(_feed(_ERROR_ENTRY))[0])

    def test_bad_feed(self) -> None:
        with self.assertRaises(ParseFailure):
            parse_feed("<feed><entry>")
        self.assertEqual(parse_feed("   "), [])


class TestArxivSearch(unittest.TestCase):
    def test_id_lookup(self) -> None:
        adapter, session = _adapter(_feed(_ATTENTION))
        tier, found = adapter.search(ParsedReference(arxiv_id="1706.03762", doi="10.1/ignored"))
        self.assertEqual(tier, "identifier")
        self.assertEqual(session.calls[0][1], {"id_list": "1706.03762", "max_results": 1})
        self.assertEqual(found[0].relevance_score, 1.0)

    def test_error_feed_yields_nothing(self) -> None:
        adapter, _ = _adapter(_feed(_ERROR_ENTRY))
        self.assertEqual(adapter.search(ParsedReference(arxiv_id="bogus")), ("identifier", []))

    def test_title_author_query(self) -> None:
        adapter, session = _adapter(_feed(_ATTENTION))
        ref = ParsedReference(title="Attention is all you need", authors=("Ashish Vaswani", "Noam Shazeer", "Niki Parmar"))
        tier, found = adapter.search(ref)
        self.assertEqual(tier, "title_author")
        params = session.calls[0][1]
        self.assertEqual(params["search_query"], 'ti:"Attention is all you need" AND (au:"Ashish Vaswani" OR au:"Noam Shazeer")')
        self.assertEqual(params["sortBy"], "relevance")
        self.assertAlmostEqual(found[0].relevance_score, 0.8 + 0.2 * 2 / 3)

    def test_topic_categories_and_year_filter(self) -> None:
        newer = _entry("2104.00001", "Transformers revisited", "2021-04-01T00:00:00Z")
        adapter, session = _adapter(_feed(_ATTENTION, newer))
        found = adapter.search_by_topic("transformers", 10, TopicFilters(year_from=2020, fields_of_study=("cs.CL", "cs.LG")))
        self.assertEqual(session.calls[0][1]["search_query"], 'all:"transformers" AND (cat:cs.CL OR cat:cs.LG)')
        self.assertEqual([c.external_ids.arxiv_id for c in found], ["2104.00001"])

    def test_listings(self) -> None:
        adapter, session = _adapter(_feed(_ATTENTION))
        adapter.recent_papers(max_results=3)
        params = session.calls[0][1]
        self.assertEqual(params["search_query"], "cat:cs.AI OR cat:cs.LG OR cat:cs.CL")
        self.assertEqual(params["sortBy"], "submittedDate")
        found = adapter.search_by_category("cs.CL", 5)
        self.assertEqual(session.calls[1][1]["sortBy"], "lastUpdatedDate")
        self.assertEqual(len(found), 1)


if __name__ == "__main__":
    unittest.main()
