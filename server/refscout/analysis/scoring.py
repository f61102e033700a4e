from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Sequence

from server.refscout.analysis.match.similarity import author_match_score, title_similarity
from server.refscout.analysis.types import Candidate

# Acceptance thresholds and result cap for reference resolution.
MIN_RELEVANCE = 0.3
MIN_AUTHOR_YEAR_RELEVANCE = 0.2
MAX_RESULTS = 5
IDENTIFIER_RELEVANCE = 1.0

_CITATION_BONUS_FLOOR = 10
_CITATION_BONUS_CAP = 0.05

_GEN_TOPIC_WEIGHT = 0.4
_GEN_CITATION_WEIGHT = 0.3
_GEN_RECENCY_WEIGHT = 0.2
_GEN_ABSTRACT_WEIGHT = 0.1
_GEN_CITATION_CAP = 100
_GEN_RECENCY_YEARS = 20
_GEN_ABSTRACT_CHARS = 1000
_TOPIC_MIN_WORD_LEN = 3

_AY_YEAR_EXACT = 0.5
_AY_YEAR_NEAR = 0.3
_AY_AUTHOR_WEIGHT = 0.4
_AY_VENUE_BONUS = 0.1


@dataclass(frozen=True)
class ScoringWeights:
    title: float
    author: float
    citation_bonus: bool = False


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def citation_bonus(citation_count: int) -> float:
    if citation_count is None or citation_count <= _CITATION_BONUS_FLOOR:
        return 0.0
    return min(_CITATION_BONUS_CAP, math.log(citation_count) / 100)


def relevance_score(
    candidate: Candidate,
    search_title: str | None,
    search_authors: Sequence[str],
    *,
    weights: ScoringWeights,
) -> float:
    score = 0.0
    if candidate.title and search_title:
        score += title_similarity(search_title, candidate.title) * weights.title
    if search_authors and candidate.authors:
        score += author_match_score(search_authors, candidate.authors) * weights.author
    if weights.citation_bonus:
        score += citation_bonus(candidate.citation_count)
    return _clamp01(score)


def author_year_score(candidate: Candidate, search_authors: Sequence[str], search_year: int) -> float:
    """Additive score for the author+year tier.

    Not normalized: 0.5 (exact year) or 0.3 (year within one), plus up to 0.4
    for authors and a flat 0.1 when a venue is known. Tops out at 1.0.
    """
    score = 0.0
    if candidate.year is not None:
        if candidate.year == search_year:
            score += _AY_YEAR_EXACT
        elif abs(candidate.year - search_year) <= 1:
            score += _AY_YEAR_NEAR
    score += author_match_score(search_authors, candidate.authors) * _AY_AUTHOR_WEIGHT
    if candidate.venue:
        score += _AY_VENUE_BONUS
    return score


def topic_relevance(topic_words: Sequence[str], text_words: Sequence[str]) -> float:
    """Share of topic words found in the text by substring match in either direction.

    Words shorter than three characters never match but still count in the
    denominator.
    """
    if not topic_words or not text_words:
        return 0.0
    matches = 0
    for topic_word in topic_words:
        if len(topic_word) < _TOPIC_MIN_WORD_LEN:
            continue
        for text_word in text_words:
            if topic_word in text_word or text_word in topic_word:
                matches += 1
                break
    return matches / len(topic_words)


def generation_score(candidate: Candidate, topic: str, *, current_year: int | None = None) -> float:
    if current_year is None:
        current_year = dt.date.today().year
    score = 0.0

    if candidate.title:
        topic_words = (topic or "").lower().split()
        text_words = candidate.title.lower().split() + (candidate.abstract or "").lower().split()
        score += topic_relevance(topic_words, text_words) * _GEN_TOPIC_WEIGHT

    citations = max(0, int(candidate.citation_count or 0))
    score += min(1.0, citations / _GEN_CITATION_CAP) * _GEN_CITATION_WEIGHT

    if candidate.year is not None:
        years = max(0, current_year - candidate.year)
        score += max(0.0, 1 - years / _GEN_RECENCY_YEARS) * _GEN_RECENCY_WEIGHT

    if candidate.abstract:
        score += min(1.0, len(candidate.abstract) / _GEN_ABSTRACT_CHARS) * _GEN_ABSTRACT_WEIGHT

    return score
