from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import threading
import time
from collections import Counter, OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy import delete

from server.refscout.core.config import Settings
from server.refscout.core.db import get_sessionmaker
from server.refscout.core.models import CacheEntry

logger = logging.getLogger(__name__)

_CACHE_SCHEMA_VERSION = 1

# Identifier lookups (DOI / PMID / arXiv id / work-by-id).
TTL_IDENTIFIER = 86_400.0
# Title, title+author, author+year and topic searches.
TTL_SEARCH = 3_600.0
# Category, recent-paper and related-work listings.
TTL_LISTING = 1_800.0


def _sha256_hex(parts: Sequence[str]) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()


def _canonical(part: Any) -> str:
    if isinstance(part, str):
        return part
    return json.dumps(part, sort_keys=True, ensure_ascii=False, default=str)


def _as_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


@dataclass
class CacheDebugStats:
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _totals: Counter[str] = field(default_factory=Counter, init=False, repr=False)
    _by_namespace: dict[str, Counter[str]] = field(default_factory=dict, init=False, repr=False)

    def increment(self, namespace: str, metric: str) -> None:
        namespace = (namespace or "").strip() or "unknown"
        metric = (metric or "").strip()
        if not metric:
            return
        with self._lock:
            self._totals[metric] += 1
            ns = self._by_namespace.get(namespace)
            if ns is None:
                ns = Counter()
                self._by_namespace[namespace] = ns
            ns[metric] += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            totals = dict(sorted(self._totals.items()))
            namespaces = {
                namespace: dict(sorted(counter.items()))
                for namespace, counter in sorted(self._by_namespace.items())
            }
        return {"totals": totals, "namespaces": namespaces}


@dataclass(frozen=True)
class _MemoryEntry:
    value_json: str
    expires_at: float


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass
class Cache:
    """Content-addressed JSON cache with read-time expiry.

    The memory tier is an LRU capped at ``settings.cache_max_entries``. With
    ``cache_backend == "sql"`` a ``CacheEntry`` table sits behind it, so entries
    survive a restart for the rest of their TTL. Values are stored as JSON text
    and decoded on every read, so callers never share a mutable cached object.
    """

    settings: Settings
    clock: Callable[[], float] = time.time
    debug_stats: CacheDebugStats = field(default_factory=CacheDebugStats, repr=False, compare=False)

    _entries: OrderedDict[str, _MemoryEntry] = field(default_factory=OrderedDict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _key_locks: dict[str, _KeyLock] = field(default_factory=dict, init=False, repr=False)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.cache_enabled)

    def key(self, namespace: str, parts: Sequence[Any]) -> str:
        return _sha256_hex([str(_CACHE_SCHEMA_VERSION), namespace, *[_canonical(p) for p in parts]])

    def get_or_compute(
        self,
        namespace: str,
        parts: Sequence[Any],
        *,
        ttl_seconds: float,
        compute: Callable[[], Any],
    ) -> Any:
        """Return the cached value for ``(namespace, parts)`` or compute and store it.

        Concurrent misses on the same key run ``compute`` once; the other callers
        wait and read the stored value. Exceptions from ``compute`` propagate and
        nothing is stored.
        """
        if not self.enabled:
            return compute()
        key = self.key(namespace, parts)
        hit, value = self._read(namespace, key)
        if hit:
            return value

        key_lock = self._acquire_key_lock(key)
        try:
            with key_lock.lock:
                hit, value = self._read(namespace, key)
                if hit:
                    return value
                value = compute()
                self._write(namespace, key, value, ttl_seconds=ttl_seconds)
                return value
        finally:
            self._release_key_lock(key)

    def get_json(self, namespace: str, parts: Sequence[Any]) -> tuple[bool, Any]:
        if not self.enabled:
            return False, None
        return self._read(namespace, self.key(namespace, parts))

    def set_json(self, namespace: str, parts: Sequence[Any], value: Any, *, ttl_seconds: float) -> None:
        if not self.enabled:
            return
        self._write(namespace, self.key(namespace, parts), value, ttl_seconds=ttl_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def reap_expired(self) -> int:
        now = self.clock()
        removed = 0
        with self._lock:
            for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
                del self._entries[key]
                removed += 1
        if self.settings.cache_backend != "sql":
            return removed
        SessionLocal = get_sessionmaker(self.settings)
        db = SessionLocal()
        try:
            result = db.execute(delete(CacheEntry).where(CacheEntry.expires_at <= self._now_dt()))
            db.commit()
            removed += int(result.rowcount or 0)
        except Exception:
            db.rollback()
            logger.warning("Cache reap failed", exc_info=True)
        finally:
            db.close()
        return removed

    def debug_snapshot(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "backend": self.settings.cache_backend,
            "entries": len(self),
            **self.debug_stats.snapshot(),
        }

    # -------------------------
    # Internals
    # -------------------------

    def _now_dt(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.clock(), dt.UTC)

    def _acquire_key_lock(self, key: str) -> _KeyLock:
        with self._lock:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                key_lock = _KeyLock()
                self._key_locks[key] = key_lock
            key_lock.users += 1
            return key_lock

    def _release_key_lock(self, key: str) -> None:
        with self._lock:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                return
            key_lock.users -= 1
            if key_lock.users <= 0:
                del self._key_locks[key]

    def _read(self, namespace: str, key: str) -> tuple[bool, Any]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.expires_at <= now:
                    del self._entries[key]
                    self.debug_stats.increment(namespace, "memory_expired")
                else:
                    self._entries.move_to_end(key)
                    self.debug_stats.increment(namespace, "memory_hit")
                    return True, json.loads(entry.value_json)

        if self.settings.cache_backend == "sql":
            hit, value_json, expires_at = self._read_sql(namespace, key)
            if hit and value_json is not None:
                self._store_memory(key, _MemoryEntry(value_json=value_json, expires_at=expires_at))
                return True, json.loads(value_json)

        self.debug_stats.increment(namespace, "miss")
        return False, None

    def _write(self, namespace: str, key: str, value: Any, *, ttl_seconds: float) -> None:
        try:
            value_json = json.dumps(value, ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError):
            logger.warning("Value for cache namespace %s is not JSON-serializable; not cached", namespace)
            self.debug_stats.increment(namespace, "set_error")
            return
        expires_at = self.clock() + max(0.0, float(ttl_seconds))
        self._store_memory(key, _MemoryEntry(value_json=value_json, expires_at=expires_at))
        self.debug_stats.increment(namespace, "set_ok")
        if self.settings.cache_backend == "sql":
            self._write_sql(namespace, key, value_json, expires_at)

    def _store_memory(self, key: str, entry: _MemoryEntry) -> None:
        cap = max(1, int(self.settings.cache_max_entries))
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > cap:
                self._entries.popitem(last=False)

    def _read_sql(self, namespace: str, key: str) -> tuple[bool, str | None, float]:
        SessionLocal = get_sessionmaker(self.settings)
        db = SessionLocal()
        try:
            entry = db.get(CacheEntry, key)
            if not entry:
                return False, None, 0.0
            expires_at = _as_utc(entry.expires_at)
            if expires_at is None or expires_at <= self._now_dt():
                db.delete(entry)
                db.commit()
                self.debug_stats.increment(namespace, "sql_expired")
                return False, None, 0.0
            self.debug_stats.increment(namespace, "sql_hit")
            return True, entry.value_json, expires_at.timestamp()
        except Exception:
            db.rollback()
            logger.warning("Cache read failed for namespace %s", namespace, exc_info=True)
            self.debug_stats.increment(namespace, "sql_error")
            return False, None, 0.0
        finally:
            db.close()

    def _write_sql(self, namespace: str, key: str, value_json: str, expires_at: float) -> None:
        provider, _, kind = namespace.partition(".")
        SessionLocal = get_sessionmaker(self.settings)
        db = SessionLocal()
        try:
            db.merge(
                CacheEntry(
                    key=key,
                    provider=provider,
                    kind=kind or "default",
                    created_at=self._now_dt(),
                    expires_at=dt.datetime.fromtimestamp(expires_at, dt.UTC),
                    value_json=value_json,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.warning("Cache write failed for namespace %s", namespace, exc_info=True)
            self.debug_stats.increment(namespace, "sql_error")
        finally:
            db.close()
