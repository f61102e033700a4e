from __future__ import annotations

from server.refscout.analysis.match.similarity import (
    author_match_score,
    authors_match,
    normalize_author_name,
    title_similarity,
)

__all__ = [
    "author_match_score",
    "authors_match",
    "normalize_author_name",
    "title_similarity",
]
