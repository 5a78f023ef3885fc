"""Redirect resolver for media links that do not describe their provider.

Follows Medium proxy links, link.deezer.com short links and the like to
their final URL and returns the fetched HTML for scraping. Nothing raises
past resolve(): every failure comes back as a classified ResolveResult.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from horizonti.core.settings import Settings

logger = logging.getLogger(__name__)


class ResolveErrorType(str, Enum):
    """Classification of resolve errors for retry strategy."""

    TIMEOUT = "timeout"  # Retriable
    HTTP_4XX = "http_4xx"  # Not retriable
    HTTP_5XX = "http_5xx"  # Retriable (server error)
    CONNECTION_ERROR = "connection_error"  # Retriable
    TOO_LARGE = "too_large"  # Not retriable
    REDIRECT_LOOP = "redirect_loop"  # Not retriable
    INVALID_URL = "invalid_url"  # Not retriable
    UNEXPECTED = "unexpected"  # Not retriable


RETRIABLE_ERRORS = {ResolveErrorType.TIMEOUT, ResolveErrorType.HTTP_5XX, ResolveErrorType.CONNECTION_ERROR}


@dataclass
class ResolveResult:
    """Result of following a URL to its final location."""

    success: bool
    url: str
    final_url: str | None = None
    body: str | None = None
    error_type: ResolveErrorType | None = None
    error_message: str | None = None
    http_status: int | None = None

    @property
    def redirected(self) -> bool:
        return bool(self.final_url) and self.final_url != self.url

    @property
    def retriable(self) -> bool:
        """Whether this error can be retried."""
        return self.error_type in RETRIABLE_ERRORS if self.error_type else False


# Maximum body size to accept (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

RETRY_BASE_DELAY = 0.5  # seconds, doubled per attempt


class RedirectResolver:
    """Fetches a URL with redirects followed and a browser User-Agent.

    Several providers reject default client User-Agents, so every request
    looks like a desktop browser.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or Settings.from_env()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._settings.fetch_timeout

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.fetch_timeout),
                follow_redirects=True,
                max_redirects=10,
                limits=httpx.Limits(max_connections=20),
                transport=self._transport,
                headers={
                    "User-Agent": self._settings.user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "bg-BG,bg;q=0.9,en-US;q=0.8,en;q=0.7",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Plain GET through the shared client. Raises httpx errors."""
        client = await self._get_client()
        return await client.get(url, **kwargs)

    async def resolve(self, url: str) -> ResolveResult:
        """Follow url to its final location, retrying transient failures.

        Args:
            url: The URL to resolve.

        Returns:
            ResolveResult with final_url and body, or error information.
        """
        attempts = 1 + max(self._settings.fetch_retries, 0)
        result = await self._resolve_once(url)

        for attempt in range(1, attempts):
            if result.success or not result.retriable:
                break
            delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
            logger.info(f"Retrying {url} in {delay:.1f}s after {result.error_type.value}")
            await asyncio.sleep(delay)
            result = await self._resolve_once(url)

        if not result.success:
            logger.warning(f"Could not resolve {url}: {result.error_message}")
        return result

    async def _resolve_once(self, url: str) -> ResolveResult:
        try:
            client = await self._get_client()
            # httpx.Timeout bounds each operation; this caps the whole
            # redirect chain and body read
            response = await asyncio.wait_for(client.get(url), timeout=self.timeout)
            final_url = str(response.url)

            if response.status_code >= 500:
                return ResolveResult(
                    success=False,
                    url=url,
                    final_url=final_url,
                    error_type=ResolveErrorType.HTTP_5XX,
                    error_message=f"Server error: {response.status_code}",
                    http_status=response.status_code,
                )

            if response.status_code >= 400 or not response.is_success:
                return ResolveResult(
                    success=False,
                    url=url,
                    final_url=final_url,
                    error_type=ResolveErrorType.HTTP_4XX,
                    error_message=f"Client error: {response.status_code}",
                    http_status=response.status_code,
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
                return ResolveResult(
                    success=False,
                    url=url,
                    final_url=final_url,
                    error_type=ResolveErrorType.TOO_LARGE,
                    error_message=f"Content too large: {content_length} bytes",
                    http_status=response.status_code,
                )

            result = ResolveResult(
                success=True,
                url=url,
                final_url=final_url,
                body=response.text,
                http_status=response.status_code,
            )
            if result.redirected:
                logger.debug(f"Resolved {url} -> {final_url}")
            return result

        except (httpx.TimeoutException, asyncio.TimeoutError):
            return ResolveResult(
                success=False,
                url=url,
                error_type=ResolveErrorType.TIMEOUT,
                error_message=f"Request timed out after {self.timeout}s",
            )

        except httpx.TooManyRedirects:
            return ResolveResult(
                success=False,
                url=url,
                error_type=ResolveErrorType.REDIRECT_LOOP,
                error_message="Too many redirects",
            )

        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return ResolveResult(
                success=False,
                url=url,
                error_type=ResolveErrorType.INVALID_URL,
                error_message=f"Invalid URL: {e}",
            )

        except (httpx.ConnectError, httpx.NetworkError) as e:
            return ResolveResult(
                success=False,
                url=url,
                error_type=ResolveErrorType.CONNECTION_ERROR,
                error_message=f"Connection error: {e}",
            )

        except Exception as e:
            logger.exception(f"Unexpected error resolving {url}")
            return ResolveResult(
                success=False,
                url=url,
                error_type=ResolveErrorType.UNEXPECTED,
                error_message=f"Unexpected error: {type(e).__name__}: {e}",
            )


# Module-level instance for convenience
_resolver: RedirectResolver | None = None


def get_resolver() -> RedirectResolver:
    """Get or create the module-level RedirectResolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = RedirectResolver()
    return _resolver


async def close_resolver() -> None:
    global _resolver
    if _resolver is not None:
        await _resolver.close()
        _resolver = None
