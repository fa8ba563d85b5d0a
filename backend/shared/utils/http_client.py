"""
Async HTTP client wrapper for upstream feed requests.
Includes bounded retry, timeout management, and metrics collection.
Failures surface as UpstreamUnavailable / UpstreamMalformed.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_LATENCY, FEED_REQUESTS

logger = get_logger(__name__)


class FeedHTTPClient:
    """
    Async HTTP client for the upstream sports feed.
    Retries 429/5xx/timeouts a bounded number of times within a single call;
    anything still failing is left for the next scheduled pass.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout_s or settings.feed_request_timeout_s
        self._max_retries = max_retries or settings.feed_max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        Perform a GET request and decode the JSON body.

        Args:
            path: API path relative to base_url.
            params: Query parameters; the feed token is added automatically.

        Returns:
            The decoded JSON document.

        Raises:
            UpstreamUnavailable: network error, timeout, 429/5xx after retries, other 4xx.
            UpstreamMalformed: the body is not valid JSON.
        """
        if not self._client:
            raise RuntimeError("FeedHTTPClient not started. Call start() first.")

        query = dict(params or {})
        if self._token:
            query["token"] = self._token

        last_reason = "no_attempt"
        last_status: Optional[int] = None

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(path, params=query)
                status = str(resp.status_code)
                last_status = resp.status_code

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_reason = f"http_{resp.status_code}"
                    logger.warning(
                        "feed_retryable_status",
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        retry_after = resp.headers.get("Retry-After", "")
                        delay = float(retry_after) if retry_after.isdigit() else 1.0 * attempt
                        await asyncio.sleep(min(delay, 10.0))
                    continue

                if resp.status_code >= 400:
                    logger.error("feed_http_error", path=path, status=resp.status_code)
                    raise UpstreamUnavailable(path, f"http_{resp.status_code}", resp.status_code)

                try:
                    body = resp.json()
                except ValueError as exc:
                    raise UpstreamMalformed(path, "invalid_json") from exc

                logger.debug(
                    "feed_request_success",
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return body

            except httpx.TimeoutException:
                status = "timeout"
                last_reason = "timeout"
                logger.warning("feed_timeout", path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except httpx.TransportError as exc:
                last_reason = type(exc).__name__
                logger.warning("feed_transport_error", path=path, error=str(exc), attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            finally:
                FEED_REQUESTS.labels(endpoint=path, status=status).inc()
                FEED_LATENCY.labels(endpoint=path).observe(time.perf_counter() - start_time)

        raise UpstreamUnavailable(path, last_reason, last_status)
