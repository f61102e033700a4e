from __future__ import annotations

import argparse
import json
import logging

from dotenv import load_dotenv

from server.refscout.analysis.types import ParsedReference, TopicFilters
from server.refscout.cli import add_runtime_args, apply_runtime_overrides
from server.refscout.core.config import PROVIDER_NAMES, Settings
from server.refscout.core.db import init_db
from server.refscout.pipeline.resolve import build_resolver


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve references and discover topic literature.")
    add_runtime_args(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("--raw", action="store_true", help="Include provider payloads in the output.")

    res = sub.add_parser("resolve", parents=[output], help="Resolve a partially-known reference to ranked candidates.")
    res.add_argument("--doi")
    res.add_argument("--pmid", dest="pubmed_id")
    res.add_argument("--arxiv", dest="arxiv_id")
    res.add_argument("--title")
    res.add_argument("--author", dest="authors", action="append", default=[], help="Repeat for each author.")
    res.add_argument("--year")
    res.add_argument("--provider", dest="only", choices=PROVIDER_NAMES, help="Query a single provider.")

    disc = sub.add_parser("discover", parents=[output], help="Rank works on a topic for downstream generation.")
    disc.add_argument("topic")
    disc.add_argument("--provider", default="openalex", choices=PROVIDER_NAMES)
    disc.add_argument("--limit", type=int)
    disc.add_argument("--year-from", type=int)
    disc.add_argument("--year-to", type=int)
    disc.add_argument("--min-citations", type=int)
    disc.add_argument("--open-access", action="store_true")
    disc.add_argument("--field", dest="fields_of_study", action="append", default=[])
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    load_dotenv()
    apply_runtime_overrides(args)
    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    if settings.cache_enabled and settings.cache_backend == "sql":
        init_db(settings)

    resolver = build_resolver(settings)
    if args.command == "resolve":
        ref = ParsedReference.from_dict(
            {
                "doi": args.doi,
                "pubmed_id": args.pubmed_id,
                "arxiv_id": args.arxiv_id,
                "title": args.title,
                "authors": args.authors,
                "year": args.year,
            }
        )
        if args.only:
            candidates = resolver.resolve_with(args.only, ref)
        else:
            candidates = resolver.resolve(ref)
    else:
        filters = TopicFilters(
            year_from=args.year_from,
            year_to=args.year_to,
            min_citations=args.min_citations,
            open_access=args.open_access,
            fields_of_study=tuple(args.fields_of_study),
        )
        candidates = resolver.discover(args.topic, args.limit, filters, provider=args.provider)

    out = {"candidates": [c.to_dict(include_raw=args.raw) for c in candidates]}
    print(json.dumps(out, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
