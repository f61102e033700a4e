from __future__ import annotations

import re

_DOI_CLEAN_RE = re.compile(r"^[\s\[\(\{<]*(?:doi:\s*)?(?P<doi>10\.\d{4,9}/[-._;()/:A-Z0-9]+)", re.IGNORECASE)
_DOI_CORE_RE = re.compile(r"(10\.\d{4,9}/[-._;()/:A-Z0-9]+)", re.IGNORECASE)
_DOI_VALID_RE = re.compile(r"^10\.\d{4,}(?:\.\d+)*/[-._;()/:A-Za-z0-9]+$")
_DOI_URL_RE = re.compile(r"doi\.org/(10\.\d{4,}(?:\.\d+)*/[-._;()/:A-Za-z0-9]+)", re.IGNORECASE)

_ARXIV_PREFIX_RE = re.compile(r"^arxiv:", re.IGNORECASE)
_ARXIV_OLD_RE = re.compile(r"^[a-z-]+(?:\.[a-z-]+)?/\d{7}$", re.IGNORECASE)
_ARXIV_NEW_RE = re.compile(r"^(\d{4}\.\d{4,5})(v\d+)?$", re.IGNORECASE)

_PMID_RE = re.compile(r"^\d{1,9}$")
_YEAR_RE = re.compile(r"\b(1[5-9]|20)\d{2}\b")


def normalize_doi(raw: str | None) -> str | None:
    if not raw:
        return None
    raw = raw.strip()
    if raw.lower().startswith(("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/")):
        raw = raw.split("doi.org/", 1)[1]

    match = _DOI_CLEAN_RE.match(raw)
    if match:
        candidate = match.group("doi")
    else:
        m2 = _DOI_CORE_RE.search(raw)
        if not m2:
            return None
        candidate = m2.group(1)

    candidate = candidate.rstrip(").,;]")
    return candidate.lower()


def is_valid_doi(doi: str | None) -> bool:
    return bool(doi) and bool(_DOI_VALID_RE.match(doi.strip()))


def doi_from_url(url: str | None) -> str | None:
    if not url:
        return None
    m = _DOI_URL_RE.search(url)
    return m.group(1) if m else None


def normalize_arxiv_id(raw: str | None) -> str | None:
    """Canonical arXiv identifier.

    ``arXiv:1501.00001v2`` becomes ``1501.00001``; legacy ids such as
    ``math/0601001`` are returned unchanged. Unrecognized input is returned
    stripped of the ``arxiv:`` prefix so the provider can still try it.
    """
    if not raw:
        return None
    value = _ARXIV_PREFIX_RE.sub("", raw.strip()).strip()
    if not value:
        return None
    if _ARXIV_OLD_RE.match(value):
        return value
    m = _ARXIV_NEW_RE.match(value)
    if m:
        return m.group(1)
    return value


def is_valid_arxiv_id(raw: str | None) -> bool:
    if not raw:
        return False
    value = _ARXIV_PREFIX_RE.sub("", raw.strip())
    return bool(_ARXIV_OLD_RE.match(value) or _ARXIV_NEW_RE.match(value))


def arxiv_id_from_url(id_url: str | None) -> str | None:
    if not id_url:
        return None
    marker = "arxiv.org/abs/"
    idx = id_url.find(marker)
    if idx < 0:
        parts = id_url.rstrip("/").split("/")
        return parts[-1] or None
    return id_url[idx + len(marker):].strip("/") or None


def normalize_pmid(raw: str | int | None) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip()
    if value.lower().startswith("pmid:"):
        value = value[5:].strip()
    return value if _PMID_RE.match(value) else None


def is_valid_pmid(raw: str | None) -> bool:
    return bool(raw) and bool(re.match(r"^\d{7,8}$", raw.strip()))


def parse_year(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    m = _YEAR_RE.search(str(value))
    if not m:
        return None
    return int(m.group(0))


def clean_text(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = " ".join(str(value).replace("\n", " ").split())
    return cleaned or None


_TAG_RE = re.compile(r"<[^>]+>")


def strip_markup(value: str | None) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return clean_text(_TAG_RE.sub(" ", value))
