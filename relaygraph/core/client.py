"""relaygraph.core.client

Shared HTTP client for payment endpoints, with:
- SSRF guard (endpoints come from untrusted profile metadata)
- rate limiting (token bucket)
- optional retries (exponential backoff); invoice requests use none
- per-host circuit breaker

Relays are not spoken to over HTTP; see :mod:`relaygraph.relays.transport`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

import httpx

from relaygraph.core.config import HttpConfig
from relaygraph.core.exceptions import UnsafeUrlError
from relaygraph.security.ssrf import UrlCheck, check_url


class _TokenBucket:
    def __init__(self, rate_per_sec: float) -> None:
        self.rate = max(rate_per_sec, 0.001)
        self.capacity = 1.0
        self.tokens = 1.0
        self.updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self.updated_at
                self.updated_at = now
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_s = (1.0 - self.tokens) / self.rate
            await asyncio.sleep(wait_s)


class CircuitBreaker:
    def __init__(self, threshold: int, cooldown_s: float) -> None:
        self.threshold = threshold
        self.cooldown_s = cooldown_s
        self.failures = 0
        self.opened_at: float | None = None

    def allow(self) -> bool:
        if self.opened_at is None:
            return True
        if (time.monotonic() - self.opened_at) >= self.cooldown_s:
            self.failures = 0
            self.opened_at = None
            return True
        return False

    def on_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def on_failure(self) -> None:
        self.failures += 1
        if self.failures >= self.threshold:
            self.opened_at = time.monotonic()


class HttpClient:
    def __init__(
        self,
        config: HttpConfig | None = None,
        *,
        url_guard: Callable[[str], UrlCheck] = check_url,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or HttpConfig()
        self._guard = url_guard
        self._bucket = _TokenBucket(self.config.rate_limit_rps)
        self._breakers: dict[str, CircuitBreaker] = {}
        self._client = httpx.AsyncClient(timeout=self.config.timeout_s, transport=transport)

    def _breaker(self, url: str) -> CircuitBreaker:
        host = (urlparse(url).hostname or "").lower()
        br = self._breakers.get(host)
        if br is None:
            br = CircuitBreaker(
                threshold=self.config.circuit_breaker_threshold,
                cooldown_s=self.config.circuit_breaker_cooldown_s,
            )
            self._breakers[host] = br
        return br

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        retries: int = 0,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        check = await asyncio.to_thread(self._guard, url)
        if not check.allowed:
            raise UnsafeUrlError(f"blocked_url ({check.reason})")

        breaker = self._breaker(url)
        if not breaker.allow():
            raise httpx.TransportError("circuit breaker open")

        await self._bucket.acquire()

        last_exc: Exception | None = None
        for attempt in range(retries + 1):
            try:
                resp = await self._client.request(method, url, **kwargs)
                if raise_for_status:
                    resp.raise_for_status()
                await resp.aread()
                breaker.on_success()
                return resp
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError, httpx.TransportError) as e:
                last_exc = e
                breaker.on_failure()
                if attempt >= retries:
                    break
                await asyncio.sleep(min(2**attempt, 8))

        assert last_exc is not None
        raise last_exc

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        expected: type | tuple[type, ...] | None = None,
        max_bytes: int = 256 * 1024,
        **kwargs: Any,
    ) -> Any:
        """Request and parse JSON with basic safety caps.

        Raises ``httpx.TransportError`` when the body is too large, not JSON, or
        not of the ``expected`` type.
        """

        resp = await self.request(method, url, **kwargs)
        size = len(resp.content)
        if size > int(max_bytes):
            raise httpx.TransportError(f"response_too_large:{size}")
        try:
            data: Any = resp.json()
        except ValueError as e:
            raise httpx.TransportError("response_not_json") from e
        if expected is not None and not isinstance(data, expected):
            raise httpx.TransportError("response_schema_mismatch")
        return data
