from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

import requests

from server.refscout.sources.concurrency import Deadline, SlotTimeout, acquire_api_slot

logger = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}


class ProviderUnavailable(Exception):
    """Network failure, timeout or non-2xx answer from a provider."""

    def __init__(self, source: str, detail: str, *, status: int | None = None) -> None:
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail
        self.status = status


class ParseFailure(Exception):
    """Provider payload could not be decoded into candidates."""


def backoff_sleep(attempt: int, *, deadline: Deadline | None = None) -> None:
    # exponential backoff with cap, never past the deadline
    delay = min(8.0, 0.5 * (2**attempt))
    if deadline is not None:
        delay = min(delay, deadline.remaining())
    if delay > 0:
        time.sleep(delay)


@dataclass
class HttpClient:
    """GET-only client shared by one provider adapter.

    Sessions are per thread unless ``session`` is injected, which tests use to
    substitute a stub transport.
    """

    source: str
    timeout_seconds: float = 20.0
    headers: dict[str, str] = field(default_factory=dict)
    max_attempts: int = 2
    source_limit: int = 0
    session: requests.Session | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    def _client(self) -> requests.Session:
        if self.session is not None:
            return self.session
        session = getattr(self._session_local, "session", None)
        if session is None:
            session = requests.Session()
            self._session_local.session = session
        return session

    def get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
        deadline: Deadline | None = None,
        not_found_ok: bool = False,
    ) -> requests.Response | None:
        """Issue a GET and return the 2xx response.

        Returns ``None`` for a 404 when ``not_found_ok``. Everything else that is
        not a success raises ``ProviderUnavailable``.
        """
        merged = {**self.headers, **(headers or {})}
        attempts = max(1, int(self.max_attempts))
        last_error = "no attempt made"
        for attempt in range(attempts):
            timeout = self.timeout_seconds
            if deadline is not None:
                timeout = deadline.clamp(timeout)
                if timeout <= 0:
                    raise ProviderUnavailable(self.source, "deadline exceeded")
            try:
                with acquire_api_slot(source=self.source, source_limit=self.source_limit, deadline=deadline):
                    resp = self._client().get(url, params=params, headers=merged, timeout=timeout)
            except SlotTimeout as e:
                raise ProviderUnavailable(self.source, str(e)) from e
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug("%s request failed (attempt %d/%d): %s", self.source, attempt + 1, attempts, last_error)
                if attempt + 1 < attempts:
                    backoff_sleep(attempt, deadline=deadline)
                continue

            status = int(resp.status_code)
            if status == 404 and not_found_ok:
                return None
            if 200 <= status < 300:
                return resp
            last_error = f"HTTP {status}"
            if status in _RETRY_STATUSES and attempt + 1 < attempts:
                backoff_sleep(attempt, deadline=deadline)
                continue
            raise ProviderUnavailable(self.source, last_error, status=status)
        raise ProviderUnavailable(self.source, last_error)

    def get_json(self, url: str, **kwargs):
        resp = self.get(url, **kwargs)
        if resp is None:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ParseFailure(f"{self.source}: response is not JSON") from e

    def get_text(self, url: str, **kwargs) -> str | None:
        resp = self.get(url, **kwargs)
        if resp is None:
            return None
        return resp.text or ""
