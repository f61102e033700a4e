from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

_SOURCE_LIMITERS_LOCK = threading.Lock()
_SOURCE_LIMITERS: dict[tuple[str, int], threading.BoundedSemaphore] = {}


class SlotTimeout(Exception):
    """Raised when no request slot frees up before the caller's deadline."""


@dataclass(frozen=True)
class Deadline:
    """Absolute point in time (monotonic clock) shared by every call of one request."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(expires_at=time.monotonic() + max(0.0, float(seconds)))

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def clamp(self, timeout_seconds: float) -> float:
        return min(float(timeout_seconds), self.remaining())


def _global_source_limiter(source: str, *, limit: int) -> threading.BoundedSemaphore | None:
    limit = int(limit)
    if limit <= 0:
        return None
    key = (str(source or "").strip().lower(), limit)
    with _SOURCE_LIMITERS_LOCK:
        limiter = _SOURCE_LIMITERS.get(key)
        if limiter is None:
            limiter = threading.BoundedSemaphore(limit)
            _SOURCE_LIMITERS[key] = limiter
    return limiter


@contextmanager
def acquire_api_slot(
    *,
    source: str,
    source_limit: int,
    deadline: Deadline | None = None,
) -> Iterator[None]:
    """Hold one of ``source_limit`` process-wide slots for ``source``.

    ``source_limit <= 0`` disables the cap. With a deadline, waiting stops when
    it passes and ``SlotTimeout`` is raised.
    """
    limiter = _global_source_limiter(source, limit=source_limit)
    if limiter is None:
        yield
        return
    if deadline is None:
        limiter.acquire()
    elif not limiter.acquire(timeout=deadline.remaining()):
        raise SlotTimeout(f"No {source} request slot before deadline")
    try:
        yield
    finally:
        limiter.release()
