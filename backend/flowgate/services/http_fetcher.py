# /flowgate/services/http_fetcher.py

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import tenacity

from flowgate.config.settings import settings
from flowgate.services.errors import HttpFetchError
from flowgate.utils.metrics import external_request_histogram

# The one outbound HTTP client used by the integration handlers, the generic
# data-source path and the legacy catalogue handlers.

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResponse:
    status: int
    data: Any
    latency_ms: float


class HttpFetcher:
    def __init__(self, default_timeout: float = settings.integration_timeout_seconds):
        self.default_timeout = default_timeout
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(default_timeout, connect=5.0),
            follow_redirects=True,
        )

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        stop=tenacity.stop_after_attempt(settings.http_retry_attempts),
        wait=tenacity.wait_exponential(multiplier=0.2, min=0.2, max=1),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def resilient_api_call(self, func, *args, **kwargs):
        return await func(*args, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> FetchResponse:
        """
        Performs one request bounded by `timeout` seconds (retries included).
        Raises HttpFetchError on transport failures, timeouts and 4xx/5xx.
        """
        timeout = min(timeout or self.default_timeout, self.default_timeout)
        method = (method or "GET").upper()
        clean_params = {k: v for k, v in (params or {}).items() if v is not None} or None
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self.resilient_api_call(
                    self.http_client.request,
                    method,
                    url,
                    headers=headers,
                    params=clean_params,
                    json=body if method not in ("GET", "DELETE") else None,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise HttpFetchError(f"{method} {url} timed out after {timeout}s")
        except httpx.HTTPError as e:
            raise HttpFetchError(f"{method} {url} failed: {e}") from e
        finally:
            elapsed = time.monotonic() - started
            external_request_histogram.labels(method=method).observe(elapsed)

        latency_ms = (time.monotonic() - started) * 1000
        logger.info(f"{method} {url} -> {response.status_code} in {latency_ms:.0f}ms")

        if response.status_code >= 400:
            logger.debug(f"Error response body: {response.text[:500]}")
            raise HttpFetchError(
                f"{method} {url} returned {response.status_code}", status=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text
        return FetchResponse(status=response.status_code, data=data, latency_ms=latency_ms)

    async def close(self):
        await self.http_client.aclose()


http_fetcher = HttpFetcher()
