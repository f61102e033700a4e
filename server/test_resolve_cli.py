import contextlib
import io
import json
import os
import sys
import unittest
from unittest import mock

from server.refscout.analysis.types import Candidate
from server.resolve_cli import _build_parser, main


class TestParser(unittest.TestCase):
    def test_raw_follows_subcommand(self) -> None:
        parser = _build_parser()
        args = parser.parse_args(["resolve", "--title", "Deep learning", "--raw"])
        self.assertTrue(args.raw)
        args = parser.parse_args(["discover", "deep learning", "--raw", "--limit", "3"])
        self.assertTrue(args.raw)
        self.assertEqual(args.limit, 3)
        self.assertFalse(parser.parse_args(["resolve", "--doi", "10.1038/nature14539"]).raw)


class TestMain(unittest.TestCase):
    def _run(self, argv: list[str]) -> tuple[dict, mock.Mock]:
        resolver = mock.Mock()
        found = [Candidate(source="crossref", title="Deep learning", relevance_score=1.0, raw_payload={"DOI": "x"})]
        resolver.resolve.return_value = found
        resolver.resolve_with.return_value = found
        out = io.StringIO()
        with mock.patch.dict(os.environ, {}), mock.patch.object(sys, "argv", ["refscout", *argv]), mock.patch(
            "server.resolve_cli.build_resolver", return_value=resolver
        ), contextlib.redirect_stdout(out):
            main()
        return json.loads(out.getvalue()), resolver

    def test_resolve_with_raw_payloads(self) -> None:
        out, resolver = self._run(["resolve", "--title", "Deep learning", "--author", "Yann LeCun", "--raw"])
        ref = resolver.resolve.call_args.args[0]
        self.assertEqual(ref.title, "Deep learning")
        self.assertEqual(ref.authors, ("Yann LeCun",))
        self.assertEqual(out["candidates"][0]["raw_payload"], {"DOI": "x"})

    def test_single_provider_without_raw(self) -> None:
        out, resolver = self._run(["resolve", "--title", "Deep learning", "--provider", "crossref"])
        self.assertEqual(resolver.resolve_with.call_args.args[0], "crossref")
        self.assertNotIn("raw_payload", out["candidates"][0])


if __name__ == "__main__":
    unittest.main()
