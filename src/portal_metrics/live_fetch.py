"""Live fetch client with retries, concurrency limits and health monitoring."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings
from .health import SourceHealthMonitor
from .metrics import record_source_fetch

logger = logging.getLogger(__name__)

# Only failures to establish a connection are retried; a timeout after the
# request was sent or an HTTP error status is reported straight away.
RETRYABLE_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class LiveFetchClient:
    """Handles HTTP requests to one external source with metrics and retries."""

    def __init__(
        self,
        settings: Settings,
        *,
        source_id: str,
        timeout: float,
        monitor: SourceHealthMonitor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._source_id = source_id
        self._monitor = monitor
        self._attempts = settings.fetch_attempts
        self._backoff = settings.retry_backoff_seconds
        self._semaphore = asyncio.Semaphore(settings.source_concurrency)
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
            transport=transport,
        )

    @property
    def source_id(self) -> str:
        return self._source_id

    async def close(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    async def get_json(self, url: str, *, params: Mapping[str, Any] | None = None) -> Any:
        """GET ``url`` and return the decoded JSON body."""

        return await self._request_json("GET", url, params=params)

    async def post_form(self, url: str, data: Mapping[str, Any]) -> Any:
        """POST ``data`` form-encoded and return the decoded JSON body."""

        return await self._request_json("POST", url, data=data)

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        start = time.perf_counter()
        try:
            async with self._semaphore:
                response = await self._send_with_retries(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            self._record(start, success=False, error_message=f"{type(exc).__name__}: {exc}")
            raise
        self._record(start, success=True)
        return payload

    async def _send_with_retries(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._backoff, max=5),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "source_retry source=%s attempt=%s",
                        self._source_id,
                        attempt.retry_state.attempt_number,
                    )
                return await self._client.request(method, url, **kwargs)
        raise RuntimeError("unreachable")  # pragma: no cover

    def _record(self, start: float, *, success: bool, error_message: str | None = None) -> None:
        duration_seconds = time.perf_counter() - start
        record_source_fetch(
            self._source_id,
            outcome="success" if success else "error",
            duration_seconds=duration_seconds,
        )
        if self._monitor:
            self._monitor.record_fetch(
                source_id=self._source_id,
                duration_ms=duration_seconds * 1000,
                success=success,
                error_message=error_message,
            )
