"""HTTP client for downloading ICS calendar feeds."""

import asyncio
import logging
import random
from typing import Any, NoReturn, Optional
from urllib.parse import urlparse, urlunparse

import httpx

from .exceptions import (
    FetchAuthError,
    FetchError,
    FetchNetworkError,
    FetchTimeoutError,
    InvalidSourceURLError,
)
from .models import FetchResponse

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

DEFAULT_USER_AGENT = "calendarsync"


def _raise_client_not_initialized() -> NoReturn:
    raise FetchError("HTTP client not initialized")


def normalize_source_url(url: str) -> str:
    """Validate a feed URL and rewrite ``webcal://`` to ``https://``.

    Raises:
        InvalidSourceURLError: If the URL is not http(s) or has no hostname
    """
    parsed = urlparse((url or "").strip())

    if parsed.scheme.lower() == "webcal":
        parsed = parsed._replace(scheme="https")

    if parsed.scheme.lower() not in ("http", "https"):
        raise InvalidSourceURLError(f"Unsupported URL scheme: {parsed.scheme or '<none>'}", url=url)
    if not parsed.hostname:
        raise InvalidSourceURLError("URL missing hostname", url=url)

    return urlunparse(parsed)


class ICSFetcher:
    """Async HTTP client for downloading ICS feeds."""

    def __init__(self, settings: Any, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize ICS fetcher.

        Args:
            settings: Object exposing ``request_timeout``, ``max_retries``,
                ``retry_backoff_factor`` and ``user_agent``
            client: Optional caller-owned HTTP client; it is never closed here
        """
        self.settings = settings
        self.client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

        logger.debug("ICS fetcher initialized (external client: %s)", not self._owns_client)

    async def __aenter__(self) -> "ICSFetcher":
        await self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self.client is not None and self._owns_client:
            if not self.client.is_closed:
                await self.client.aclose()
                logger.debug("Closed HTTP client")
            self.client = None

    async def _ensure_client(self) -> None:
        if self.client is None or self.client.is_closed:
            request_timeout = float(getattr(self.settings, "request_timeout", 30))
            timeout = httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=30.0)
            limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)

            self.client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                follow_redirects=True,
                verify=True,
            )
            self._owns_client = True

    def _default_headers(self) -> dict[str, str]:
        return {
            "User-Agent": getattr(self.settings, "user_agent", None) or DEFAULT_USER_AGENT,
            "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.8",
        }

    async def fetch(
        self, url: str, conditional_headers: Optional[dict[str, str]] = None
    ) -> FetchResponse:
        """Download a feed.

        Timeouts, connection failures and 5xx answers are retried with
        exponential backoff plus jitter; other HTTP errors are not.

        Args:
            url: http(s) or webcal URL of the feed
            conditional_headers: Optional ``If-None-Match``/``If-Modified-Since``
                headers from :meth:`get_conditional_headers`

        Returns:
            FetchResponse with the decoded body. A 304 answer yields an empty
            body with ``not_modified`` set.

        Raises:
            InvalidSourceURLError: URL is not fetchable
            FetchAuthError: Source answered 401 or 403
            FetchTimeoutError: Every attempt timed out
            FetchNetworkError: Every attempt failed to connect
            FetchError: Any other non-2xx status or an empty body
        """
        target = normalize_source_url(url)
        await self._ensure_client()

        headers = self._default_headers()
        if conditional_headers:
            headers.update(conditional_headers)

        try:
            logger.debug("Fetching ICS from %s", target)
            response = await self._make_request_with_retry(target, headers)

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("HTTP error fetching ICS from %s: %s", target, status)
            if status == 401:
                raise FetchAuthError(
                    "Authentication failed - check credentials", status, target
                ) from e
            if status == 403:
                raise FetchAuthError(
                    "Access forbidden - insufficient permissions", status, target
                ) from e
            raise FetchError(f"HTTP {status}: {e.response.reason_phrase}", status, target) from e

        except httpx.TimeoutException as e:
            logger.error("Timeout fetching ICS from %s", target)
            raise FetchTimeoutError(f"Request timeout: {e}", url=target) from e

        except httpx.TransportError as e:
            logger.error("Network error fetching ICS from %s: %s", target, e)
            raise FetchNetworkError(f"Network error: {e}", url=target) from e

        return self._create_response(response, target)

    def _calculate_backoff(self, attempt: int, backoff_factor: float) -> float:
        """Exponential backoff for ``attempt`` (0-indexed), capped, plus jitter."""
        base_backoff = min(backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311
        return base_backoff + jitter

    async def _make_request_with_retry(self, url: str, headers: dict[str, str]) -> httpx.Response:
        max_retries = int(getattr(self.settings, "max_retries", 3))
        backoff_factor = float(getattr(self.settings, "retry_backoff_factor", 1.5))
        attempt = 0

        while True:
            if self.client is None:
                _raise_client_not_initialized()

            try:
                response = await self.client.get(url, headers=headers)

                if response.status_code == 304:
                    logger.debug("ICS content not modified (304)")
                    return response

                response.raise_for_status()

                logger.debug(
                    "Fetched ICS from %s (attempt %d) - %d bytes",
                    url,
                    attempt + 1,
                    len(response.content),
                )
                return response

            except httpx.HTTPStatusError as e:
                # Client errors are final; server errors get another attempt
                if e.response.status_code < 500 or attempt >= max_retries:
                    raise
                failure: Exception = e

            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= max_retries:
                    logger.error("All %d attempts failed for %s", attempt + 1, url)
                    raise
                failure = e

            backoff_time = self._calculate_backoff(attempt, backoff_factor)
            logger.warning(
                "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                attempt + 1,
                max_retries + 1,
                backoff_time,
                failure,
            )
            await asyncio.sleep(backoff_time)
            attempt += 1

    def _create_response(self, http_response: httpx.Response, url: str) -> FetchResponse:
        headers = dict(http_response.headers)

        if http_response.status_code == 304:
            return FetchResponse(
                content="",
                status_code=304,
                headers=headers,
                etag=headers.get("etag"),
                last_modified=headers.get("last-modified"),
            )

        content = http_response.text
        content_type = headers.get("content-type", "").lower()

        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.warning("Unexpected content type: %s", content_type)

        if not content or not content.strip():
            logger.error("Empty ICS content received from %s", url)
            raise FetchError("Empty content received", http_response.status_code, url)

        if "BEGIN:VCALENDAR" not in content:
            logger.warning("Content from %s does not appear to be ICS", url)

        logger.debug("Fetched ICS content (%d bytes)", len(content))

        return FetchResponse(
            content=content,
            status_code=http_response.status_code,
            headers=headers,
            etag=headers.get("etag"),
            last_modified=headers.get("last-modified"),
        )

    def get_conditional_headers(
        self, etag: Optional[str] = None, last_modified: Optional[str] = None
    ) -> dict[str, str]:
        """Get conditional request headers for caching.

        Args:
            etag: ETag value from previous response
            last_modified: Last-Modified value from previous response

        Returns:
            Dictionary of conditional headers
        """
        headers = {}

        if etag:
            headers["If-None-Match"] = etag

        if last_modified:
            headers["If-Modified-Since"] = last_modified

        return headers
