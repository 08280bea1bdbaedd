"""
Provider HTTP Fetcher
=====================

Async JSON client for billable SEO provider APIs:
- httpx with Basic auth
- Per-request timeout plus an overall deadline
- Limited backoff retries on 429 and network errors
- Injectable transport for tests
"""

import asyncio
import random
from typing import Any, Dict, Optional

import httpx

from seosync.core.errors import ProviderFetchError
from seosync.utils.logger import get_logger

log = get_logger(__name__)


class RateLimitException(Exception):
    """Raised internally when the provider answers 429"""


class Fetcher:
    """
    HTTP client for provider calls; every failure surfaces as ProviderFetchError
    """

    def __init__(
        self,
        base_url: str,
        *,
        credentials_b64: Optional[str] = None,
        provider: str = "dataforseo",
        timeout: float = 30.0,
        max_retries: int = 1,
        backoff_base: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials_b64 = credentials_b64
        self.provider = provider
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.backoff_base = backoff_base
        self.client = self._create_client(transport)
        log.info(f"Fetcher initialized for {self.base_url}, timeout={timeout}s, max_retries={self.max_retries}")

    def _create_client(self, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.credentials_b64:
            headers["Authorization"] = f"Basic {self.credentials_b64}"
        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "timeout": httpx.Timeout(self.timeout),
            "headers": headers,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        return httpx.AsyncClient(**client_kwargs)

    async def close(self):
        """Close the underlying HTTP client"""
        await self.client.aclose()
        log.info("Fetcher client closed")

    def _error(self, message: str, status_code: Optional[int] = None, **context) -> ProviderFetchError:
        return ProviderFetchError(message, provider=self.provider, status_code=status_code, **context)

    async def _do_fetch(self, path: str, method: str, context: Dict[str, Any], **kwargs) -> httpx.Response:
        """Retry loop for rate limits and transport errors"""

        attempt = 0
        last_exc: Optional[Exception] = None

        while attempt < self.max_retries:
            attempt += 1
            try:
                log.debug(f"Attempt {attempt}/{self.max_retries} {method} {path}")
                response = await self.client.request(method, path, **kwargs)

                if response.status_code == 429:
                    log.warning(f"Rate limited (429) for {path}")
                    raise RateLimitException(f"Provider returned 429 for {path}")

                return response

            except (RateLimitException, httpx.RequestError) as e:
                last_exc = e
                if attempt >= self.max_retries:
                    break

                sleep_time = self.backoff_base * (2 ** (attempt - 1)) + random.uniform(0, self.backoff_base)
                log.warning(f"Fetch failed: {e}. Retrying in {sleep_time:.2f}s...")
                await asyncio.sleep(sleep_time)

        log.error(f"Failed to fetch {path} after {self.max_retries} attempts.")
        if isinstance(last_exc, RateLimitException):
            raise self._error(str(last_exc), status_code=429, **context) from last_exc
        if isinstance(last_exc, httpx.TimeoutException):
            raise self._error(f"Timed out calling {path}", **context) from last_exc
        raise self._error(f"Request to {path} failed: {last_exc}", **context) from last_exc

    async def post_json(self, path: str, payload: Any, **context) -> Dict[str, Any]:
        """
        POST a JSON body and return the decoded JSON object

        Args:
            path: Endpoint path relative to base_url
            payload: JSON-serialisable request body
            **context: tenant_id / resource_type attached to raised errors

        Returns:
            Dict containing parsed JSON
        """
        # whole retry loop shares one deadline
        deadline = self.timeout * self.max_retries + self.backoff_base * (2 ** self.max_retries)
        try:
            response = await asyncio.wait_for(
                self._do_fetch(path, "POST", context, json=payload),
                timeout=deadline,
            )
        except asyncio.TimeoutError as e:
            raise self._error(f"Timed out calling {path} after {deadline:.1f}s", **context) from e

        if not response.is_success:
            body = response.text[:500]
            log.error(f"Provider error {response.status_code} for {path}: {body}")
            raise self._error(
                f"{self.provider} API error: {response.status_code} - {body}",
                status_code=response.status_code,
                **context,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise self._error(f"Malformed JSON from {path}", status_code=response.status_code, **context) from e

        if not isinstance(data, dict):
            raise self._error(f"Unexpected payload type from {path}: {type(data).__name__}", **context)
        return data

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
