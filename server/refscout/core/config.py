from __future__ import annotations

import os
from dataclasses import dataclass

PROVIDER_NAMES = ("arxiv", "crossref", "openalex", "pubmed", "semantic_scholar")


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _env_int(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except Exception as e:
            raise ValueError(f"Invalid integer value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_float(name: str, default: float, *, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = float(default)
    else:
        try:
            value = float(raw)
        except Exception as e:
            raise ValueError(f"Invalid float value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")


def _env_providers(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    out: list[str] = []
    for part in raw.split(","):
        key = part.strip().lower()
        if not key:
            continue
        if key not in PROVIDER_NAMES:
            raise ValueError(f"{name} contains unknown provider {key!r} (known: {', '.join(PROVIDER_NAMES)})")
        if key not in out:
            out.append(key)
    if not out:
        raise ValueError(f"{name} must name at least one provider.")
    return tuple(out)


@dataclass(frozen=True)
class Settings:
    db_url: str
    log_level: str

    contact_email: str
    user_agent: str
    semantic_scholar_api_key: str
    ncbi_api_key: str
    ncbi_tool: str

    enabled_providers: tuple[str, ...]
    resolve_max_workers: int
    resolve_deadline_seconds: float
    source_concurrency: int
    http_max_attempts: int

    arxiv_timeout_seconds: float
    crossref_timeout_seconds: float
    openalex_timeout_seconds: float
    pubmed_timeout_seconds: float
    semantic_scholar_timeout_seconds: float

    cache_enabled: bool
    cache_backend: str
    cache_max_entries: int

    discover_default_limit: int
    discover_max_limit: int

    @classmethod
    def from_env(cls) -> "Settings":
        db_url = _env_str("REFSCOUT_DB_URL", "sqlite:///./data/refscout.db")
        log_level = _env_str("REFSCOUT_LOG_LEVEL", "INFO")

        contact_email = _env_str("REFSCOUT_CONTACT_EMAIL", "")
        user_agent = _env_str(
            "REFSCOUT_USER_AGENT",
            f"refscout/0.1 (mailto:{contact_email})" if contact_email else "refscout/0.1",
        )
        semantic_scholar_api_key = _env_str("SEMANTIC_SCHOLAR_API_KEY", "")
        ncbi_api_key = _env_str("NCBI_API_KEY", "")
        ncbi_tool = _env_str("REFSCOUT_NCBI_TOOL", "refscout")

        enabled_providers = _env_providers("REFSCOUT_PROVIDERS", PROVIDER_NAMES)
        resolve_max_workers = _env_int("REFSCOUT_RESOLVE_MAX_WORKERS", len(PROVIDER_NAMES), min_value=1, max_value=32)
        resolve_deadline_seconds = _env_float("REFSCOUT_RESOLVE_DEADLINE_SECONDS", 45.0, min_value=1.0, max_value=600.0)
        source_concurrency = _env_int("REFSCOUT_SOURCE_CONCURRENCY", 4, min_value=0, max_value=64)
        http_max_attempts = _env_int("REFSCOUT_HTTP_MAX_ATTEMPTS", 2, min_value=1, max_value=5)

        arxiv_timeout_seconds = _env_float("REFSCOUT_ARXIV_TIMEOUT_SECONDS", 10.0, min_value=1.0, max_value=120.0)
        crossref_timeout_seconds = _env_float("REFSCOUT_CROSSREF_TIMEOUT_SECONDS", 30.0, min_value=1.0, max_value=120.0)
        openalex_timeout_seconds = _env_float("REFSCOUT_OPENALEX_TIMEOUT_SECONDS", 30.0, min_value=1.0, max_value=120.0)
        pubmed_timeout_seconds = _env_float("REFSCOUT_PUBMED_TIMEOUT_SECONDS", 10.0, min_value=1.0, max_value=120.0)
        semantic_scholar_timeout_seconds = _env_float(
            "REFSCOUT_SEMANTIC_SCHOLAR_TIMEOUT_SECONDS", 15.0, min_value=1.0, max_value=120.0
        )

        cache_enabled = _env_bool("REFSCOUT_CACHE_ENABLED", True)
        cache_backend = _env_str("REFSCOUT_CACHE_BACKEND", "memory").lower()
        if cache_backend not in {"memory", "sql"}:
            raise ValueError("REFSCOUT_CACHE_BACKEND must be 'memory' or 'sql'.")
        cache_max_entries = _env_int("REFSCOUT_CACHE_MAX_ENTRIES", 4096, min_value=1, max_value=1_000_000)

        discover_default_limit = _env_int("REFSCOUT_DISCOVER_DEFAULT_LIMIT", 20, min_value=1, max_value=200)
        discover_max_limit = _env_int("REFSCOUT_DISCOVER_MAX_LIMIT", 100, min_value=1, max_value=1000)
        if discover_default_limit > discover_max_limit:
            raise ValueError("REFSCOUT_DISCOVER_DEFAULT_LIMIT must be <= REFSCOUT_DISCOVER_MAX_LIMIT.")

        return cls(
            db_url=db_url,
            log_level=log_level,
            contact_email=contact_email,
            user_agent=user_agent,
            semantic_scholar_api_key=semantic_scholar_api_key,
            ncbi_api_key=ncbi_api_key,
            ncbi_tool=ncbi_tool,
            enabled_providers=enabled_providers,
            resolve_max_workers=resolve_max_workers,
            resolve_deadline_seconds=resolve_deadline_seconds,
            source_concurrency=source_concurrency,
            http_max_attempts=http_max_attempts,
            arxiv_timeout_seconds=arxiv_timeout_seconds,
            crossref_timeout_seconds=crossref_timeout_seconds,
            openalex_timeout_seconds=openalex_timeout_seconds,
            pubmed_timeout_seconds=pubmed_timeout_seconds,
            semantic_scholar_timeout_seconds=semantic_scholar_timeout_seconds,
            cache_enabled=cache_enabled,
            cache_backend=cache_backend,
            cache_max_entries=cache_max_entries,
            discover_default_limit=discover_default_limit,
            discover_max_limit=discover_max_limit,
        )
