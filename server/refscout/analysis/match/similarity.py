from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Sequence

from rapidfuzz.distance import Levenshtein

_NON_ALPHA_RE = re.compile(r"[^a-z\s]")
_WS_RE = re.compile(r"\s+")
_ET_AL_RE = re.compile(r"\s+et\.?\s+al\.?\s*$", re.IGNORECASE)


def title_similarity(a: str | None, b: str | None) -> float:
    """``1 - levenshtein(lower(a), lower(b)) / max(len(a), len(b))``, 0.0 when both are empty."""
    a = (a or "").lower()
    b = (b or "").lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 0.0
    return 1.0 - (Levenshtein.distance(a, b) / max_len)


def normalize_author_name(name: str | None) -> str:
    if not name:
        return ""
    raw = str(name).strip()
    # "Family, Given" -> "Given Family"
    if raw.count(",") == 1:
        family, given = (p.strip() for p in raw.split(","))
        if family and given:
            raw = f"{given} {family}"
    decomposed = unicodedata.normalize("NFKD", raw)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    lowered = _NON_ALPHA_RE.sub("", stripped.lower())
    return _WS_RE.sub(" ", lowered).strip()


def strip_et_al(name: str) -> str:
    return _ET_AL_RE.sub("", name or "").strip()


def authors_match(a: str | None, b: str | None) -> bool:
    """True when two author strings plausibly name the same person.

    Normalized names that are equal always match. Otherwise the last names must
    be equal and the first names must agree: initials are compared when either
    side only gives an initial, full first names must be identical.
    """
    norm_a = normalize_author_name(a)
    norm_b = normalize_author_name(b)
    if not norm_a or not norm_b:
        return False
    if norm_a == norm_b:
        return True

    parts_a = norm_a.split(" ")
    parts_b = norm_b.split(" ")
    if parts_a[-1] != parts_b[-1]:
        return False
    if len(parts_a) < 2 or len(parts_b) < 2:
        return False
    first_a = parts_a[0]
    first_b = parts_b[0]
    if len(first_a) > 1 and len(first_b) > 1:
        return first_a == first_b
    return first_a[0] == first_b[0]


def author_match_score(search_authors: Sequence[str], candidate_authors: Iterable[str]) -> float:
    """Fraction of ``search_authors`` with at least one matching candidate author."""
    search = [s for s in search_authors if s and s.strip()]
    found = [c for c in candidate_authors if c and c.strip()]
    if not search or not found:
        return 0.0
    matches = 0
    for wanted in search:
        if any(authors_match(wanted, have) for have in found):
            matches += 1
    return matches / len(search)
