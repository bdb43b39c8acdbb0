"""Shared utilities for citation key resolution.

Includes endpoint constants, small data helpers, and the HTTP infrastructure
(rate limiting and a retrying ``httpx`` client) used by the connectors.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Iterable
from typing import Any

import httpx

from citekey_resolver.errors import ConnectorUnreachable

# ------------- Constants -------------

# zotxt add-on of the Zotero desktop client
ZOTXT_BASE_URL = "http://localhost:23119/zotxt"
ZOTERO_API = "https://api.zotero.org"

USER_AGENT = "citekey-resolver/0.1 (+https://github.com/egh/zotxt)"


# ------------- Data Helpers -------------


def lower_keys(item: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a CSL item with lower-cased top-level field names."""
    return {str(k).lower(): v for k, v in item.items()}


def as_tuple(value: Any) -> tuple[str, ...]:
    """Coerce a scalar or an iterable of scalars into a tuple of strings.

    ``None`` and the empty string give an empty tuple.
    """
    if value is None or value == "":
        return ()
    if isinstance(value, (str, int)):
        return (str(value),)
    if isinstance(value, Iterable):
        return tuple(str(v) for v in value if v is not None and v != "")
    raise TypeError(f"Cannot interpret {value!r} as a list")


def unique(values: Iterable[Any]) -> list[Any]:
    """Drop duplicates, keeping the first occurrence of each value."""
    seen: set[Any] = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


# ------------- Rate Limiting -------------


class RateLimiter:
    """Sliding-window limit of ``req_per_min`` request starts per minute.

    Each call to ``wait`` books a start time under the lock and sleeps
    until then with the lock released, so concurrent callers queue up on
    successive slots instead of blocking each other while asleep.
    """

    WINDOW = 60.0

    def __init__(self, req_per_min: int) -> None:
        self.req_per_min = max(req_per_min, 1)
        self.lock = threading.Lock()
        self._slots: deque[float] = deque()

    def wait(self) -> None:
        """Block until a request can be made within the rate limit."""
        with self.lock:
            now = time.monotonic()
            while self._slots and self._slots[0] <= now - self.WINDOW:
                self._slots.popleft()
            start = now
            if len(self._slots) >= self.req_per_min:
                start = self._slots[-self.req_per_min] + self.WINDOW
            self._slots.append(start)
        if start > now:
            time.sleep(start - now)


class RateLimiterRegistry:
    """Manages per-service rate limiters.

    The desktop client runs on the same machine and tolerates a high request
    rate; the Zotero Web API asks clients to stay well below that.
    """

    DEFAULT_LIMITS = {
        "desktop": 600,
        "webapi": 120,
    }

    def __init__(self, limits: dict[str, int] | None = None) -> None:
        """Initialize the registry with optional custom limits.

        Args:
            limits: Optional dict of service name to requests per minute.
                   Overrides DEFAULT_LIMITS for specified services.
        """
        self._limits = {**self.DEFAULT_LIMITS, **(limits or {})}
        self._limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, service: str) -> RateLimiter:
        """Get or create rate limiter for service."""
        with self._lock:
            if service not in self._limiters:
                limit = self._limits.get(service, 60)
                self._limiters[service] = RateLimiter(limit)
            return self._limiters[service]

    def wait(self, service: str) -> None:
        """Wait for rate limit on specified service."""
        self.get(service).wait()


# ------------- HTTP Client -------------


class HttpClient:
    """HTTP client with rate limiting and retry logic.

    Connection failures are not retried: a refused connection means the
    service is not running. Timeouts, other transport errors and the
    statuses in ``RETRYABLE_STATUS`` are retried with exponential backoff.
    When retries are exhausted ``ConnectorUnreachable`` is raised.
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        timeout: float,
        user_agent: str = USER_AGENT,
        rate_limiter: RateLimiterRegistry | None = None,
        retries: int = 2,
        backoff: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize HTTP client.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header value (older Zotero releases reject
                requests without one)
            rate_limiter: Per-service rate limiters; a fresh registry if omitted
            retries: Additional attempts after the first one
            backoff: Initial sleep between attempts in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            transport=transport,
        )
        self.rate_limiter = rate_limiter or RateLimiterRegistry()
        self.retries = max(retries, 0)
        self.backoff = backoff

    def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        service: str | None = None,
    ) -> httpx.Response:
        """Make a GET request with retries.

        Args:
            url: Request URL
            params: Query parameters
            headers: Extra request headers
            service: Service name for per-service rate limiting

        Returns:
            The final response; non-retryable error statuses are returned,
            not raised.

        Raises:
            ConnectorUnreachable: If the service cannot be reached.
        """
        backoff = self.backoff
        reason = "no attempt made"
        for attempt in range(self.retries + 1):
            if attempt:
                time.sleep(backoff)
                backoff = min(backoff * 2, 16.0)
            if service:
                self.rate_limiter.wait(service)
            try:
                resp = self.client.get(url, params=params, headers=headers)
            except httpx.ConnectError as e:
                raise ConnectorUnreachable(url, f"connection failed ({e})", refused=True) from e
            except httpx.TimeoutException:
                reason = f"timed out after {self.timeout:g}s"
                continue
            except httpx.HTTPError as e:
                reason = str(e) or type(e).__name__
                continue
            if resp.status_code in self.RETRYABLE_STATUS:
                reason = f"HTTP {resp.status_code}"
                continue
            return resp
        raise ConnectorUnreachable(url, reason)

    def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        service: str | None = None,
    ) -> Any | None:
        """GET a URL and decode its JSON body.

        Returns:
            Decoded JSON, or None if the response status is not 2xx.

        Raises:
            ConnectorUnreachable: If the service cannot be reached or the
                body is not valid JSON.
        """
        resp = self.get(url, params=params, headers=headers, service=service)
        if not resp.is_success:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ConnectorUnreachable(url, "response is not valid JSON") from e

    def close(self) -> None:
        self.client.close()
