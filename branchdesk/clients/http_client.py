"""
clients/http_client.py
----------------------

Async HTTP client wrapper with connection pooling, timeouts, retries
and a simple circuit breaker for idempotent requests. This client should
only be instantiated once per process and shared via dependency
injection or the FastAPI lifespan event. It uses the ``httpx`` library
under the hood and honours the global settings defined in
:mod:`branchdesk.core.config`.

Retries are applied exclusively to GET requests, as these are
idempotent by definition. For non‑GET methods, the request is sent
once and any error is propagated immediately. A basic circuit breaker
prevents cascading failures by short‑circuiting requests for a
particular host when multiple consecutive errors occur.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Optional

import httpx

from branchdesk.core.config import Settings, get_settings
from branchdesk.logging_config import log_http_request, logger


class CircuitBreaker:
    """Simple per‑host circuit breaker.

    Tracks consecutive failures for each host and trips the breaker
    when the count reaches a threshold. The breaker resets after a
    cooldown period.
    """

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._failures: Dict[str, int] = {}
        self._tripped_until: Dict[str, float] = {}

    def record_failure(self, host: str) -> None:
        self._failures[host] = self._failures.get(host, 0) + 1
        if self._failures[host] >= self.failure_threshold:
            self._tripped_until[host] = time.monotonic() + self.reset_timeout

    def record_success(self, host: str) -> None:
        self._failures.pop(host, None)
        self._tripped_until.pop(host, None)

    def can_request(self, host: str) -> bool:
        until = self._tripped_until.get(host)
        if until is None:
            return True
        if time.monotonic() >= until:
            # cooldown elapsed
            self._tripped_until.pop(host, None)
            self._failures.pop(host, None)
            return True
        return False


class HTTPClient:
    """Async HTTP client with retry and circuit breaker.

    Use this class for all outbound HTTP interactions within the
    application. Instances are created in the FastAPI lifespan event and
    handed to the backend client. ``transport`` lets tests plug in an
    ``httpx.MockTransport``.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        settings = settings or get_settings()
        self.timeout = settings.http_timeout
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)
        self._breaker = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout,
        )
        self.max_retries = settings.http_max_retries
        self.backoff_factor = settings.http_backoff_factor

    async def aclose(self) -> None:
        """Close the underlying HTTPX client and release resources."""
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Perform a single HTTP request without retries.

        If the circuit breaker for the target host is tripped, a
        ``RuntimeError`` is raised immediately.
        """
        host = httpx.URL(url).host
        if not self._breaker.can_request(host):
            raise RuntimeError(f"Circuit breaker open for host {host}")
        start_time = time.monotonic()
        log_http_request(method, url, headers=kwargs.get("headers"), params=kwargs.get("params"),
                         json_body=kwargs.get("json"))
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            self._breaker.record_failure(host)
            logger.error(json.dumps({
                "event": "http_error",
                "method": method,
                "url": url,
                "detail": str(exc),
            }))
            raise
        if 500 <= response.status_code < 600:
            self._breaker.record_failure(host)
        else:
            # 4xx is a client error and must not trip the breaker
            self._breaker.record_success(host)
        log_http_request(method, url, status=response.status_code,
                         duration_ms=(time.monotonic() - start_time) * 1000)
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform a GET request with retries and exponential backoff.

        Only transport errors are retried; any HTTP response, including
        5xx, is returned to the caller.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return await self._request("GET", url, **kwargs)
            except httpx.HTTPError as exc:
                last_exc = exc
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(self.backoff_factor * (2 ** attempt))
        if last_exc:
            raise last_exc
        raise RuntimeError("GET request failed but no exception captured")

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Public request method.

        For GET requests this applies retry logic. For other methods
        the request is performed once.
        """
        method_upper = method.upper()
        if method_upper == "GET":
            return await self.get(url, **kwargs)
        return await self._request(method_upper, url, **kwargs)
