"""Feed ingestion through the rss2json proxy, plus the per-session article store.

Provides:
- FeedClient.fetch_feed() returning a Feed or raising FeedError
- normalize_item() mapping rss2json items onto Article
- ArticleStore holding the current articles and a rewrite cache keyed by guid
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx

from horizonti.core.rewriter import ArticleRewriter, RewriteResult, RewriteSnapshot
from horizonti.core.settings import Settings
from horizonti.providers.content_types import Article, FeedMeta

logger = logging.getLogger(__name__)

RSS2JSON_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class FeedError(Exception):
    """The feed as a whole could not be fetched or parsed."""


@dataclass
class Feed:
    """A fetched feed: channel metadata and its articles in feed order."""

    meta: FeedMeta
    articles: list[Article] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "feed": self.meta.to_dict(),
            "articles": [a.to_dict() for a in self.articles],
            "fetchedAt": self.fetched_at.isoformat(),
        }


def to_iso_date(pub_date: str) -> str:
    """rss2json 'YYYY-MM-DD HH:MM:SS' (UTC) to ISO 8601; unknown formats pass through."""
    if not pub_date:
        return ""
    try:
        parsed = datetime.strptime(pub_date.strip(), RSS2JSON_DATE_FORMAT)
    except ValueError:
        return pub_date
    return parsed.replace(tzinfo=timezone.utc).isoformat()


def normalize_item(item: dict[str, Any]) -> Article:
    """Map one rss2json item onto an Article.

    rss2json puts the full body in ``content`` and the summary in
    ``description``.
    """
    pub_date = item.get("pubDate") or ""
    categories = tuple(str(c).strip().lower() for c in (item.get("categories") or []) if str(c).strip())
    return Article(
        guid=item.get("guid") or item.get("link") or "",
        link=item.get("link") or "",
        title=item.get("title") or "",
        creator=item.get("author") or "",
        pub_date=pub_date,
        iso_date=to_iso_date(pub_date),
        categories=categories,
        content=item.get("description") or "",
        content_encoded=item.get("content") or "",
        thumbnail=item.get("thumbnail") or None,
    )


def normalize_meta(data: dict[str, Any], feed_url: str) -> FeedMeta:
    return FeedMeta(
        url=data.get("url") or feed_url,
        title=data.get("title") or "",
        link=data.get("link") or "",
        author=data.get("author") or "",
        description=data.get("description") or "",
        image=data.get("image") or "",
    )


class FeedClient:
    """Fetches the Medium feed through the rss2json proxy."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or Settings.from_env()
        self._transport = transport

    def _params(self) -> dict[str, str]:
        # Cache buster for the proxy and anything in between
        return {
            "rss_url": self._settings.feed_url,
            "t": str(int(time.time() * 1000)),
        }

    async def fetch_feed(self) -> Feed:
        """Fetch and normalize the feed.

        Raises:
            FeedError: On network failure, timeout, non-2xx status, invalid
                JSON or a payload whose status is not "ok".
        """
        timeout = self._settings.fetch_timeout
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                transport=self._transport,
                headers={"Cache-Control": "no-store"},
            ) as client:
                # httpx.Timeout bounds each operation, wait_for the whole request
                response = await asyncio.wait_for(
                    client.get(self._settings.rss2json_url, params=self._params()),
                    timeout=timeout,
                )
        except asyncio.TimeoutError as e:
            raise FeedError(f"Failed to fetch RSS feed: timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise FeedError(f"Failed to fetch RSS feed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise FeedError(f"Failed to fetch RSS feed. Status: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise FeedError("RSS proxy returned invalid JSON") from e

        if not isinstance(data, dict) or data.get("status") != "ok":
            message = data.get("message") if isinstance(data, dict) else None
            raise FeedError(message or "Failed to fetch RSS feed (status not ok)")

        articles = [normalize_item(item) for item in data.get("items") or []]
        meta = normalize_meta(data.get("feed") or {}, self._settings.feed_url)
        logger.info(f"Fetched feed '{meta.title}' with {len(articles)} articles")
        return Feed(meta=meta, articles=articles)


class ArticleStore:
    """Current feed plus rewritten article bodies for one app session.

    Each article is rewritten at most once per session: concurrent callers
    for the same guid share a single in-flight task. Only refresh() drops
    the cache.
    """

    def __init__(
        self,
        client: FeedClient,
        rewriter: ArticleRewriter,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._rewriter = rewriter
        self._settings = settings or Settings.from_env()
        self._feed: Feed | None = None
        self._rewrites: dict[str, asyncio.Future[RewriteResult]] = {}
        self._lock = asyncio.Lock()

    @property
    def feed(self) -> Feed | None:
        return self._feed

    async def load(self) -> Feed:
        """Return the current feed, fetching it on first use."""
        async with self._lock:
            if self._feed is None:
                await self._fetch()
        return self._feed

    async def refresh(self) -> Feed:
        """Re-fetch the feed and invalidate every cached rewrite.

        Raises:
            FeedError: The previous feed and cache are kept in that case.
        """
        async with self._lock:
            await self._fetch()
        return self._feed

    async def _fetch(self) -> None:
        feed = await self._client.fetch_feed()
        for task in self._rewrites.values():
            if not task.done():
                task.cancel()
        self._rewrites.clear()
        self._feed = feed

        if self._settings.rewrite_eager:
            for article in feed.articles:
                self._schedule(article)

    def get_article(self, guid: str) -> Article | None:
        if self._feed is None:
            return None
        for article in self._feed.articles:
            if article.guid == guid:
                return article
        return None

    def _schedule(self, article: Article) -> asyncio.Future[RewriteResult]:
        task = self._rewrites.get(article.guid)
        if task is None or task.cancelled():
            task = asyncio.create_task(self._rewriter.rewrite(article.content_encoded))
            self._rewrites[article.guid] = task
        return task

    async def _shared_result(self, future: asyncio.Future[RewriteResult]) -> RewriteResult | None:
        """Wait for a shared rewrite without inheriting its cancellation.

        Returns None when the rewrite itself was cancelled (refresh, or an
        abandoned stream). Cancelling the caller leaves the rewrite running.
        """
        await asyncio.wait({future})
        if future.cancelled():
            return None
        return future.result()

    async def rewrite(self, guid: str) -> tuple[Article, RewriteResult] | None:
        """Rewritten body of an article, memoized on guid. None if unknown."""
        await self.load()
        while True:
            article = self.get_article(guid)
            if article is None:
                return None
            result = await self._shared_result(self._schedule(article))
            if result is not None:
                return article.with_embeds(result.embeds), result
            logger.info(f"Rewrite of {guid} was cancelled, scheduling it again")

    def cached(self, guid: str) -> RewriteResult | None:
        """The finished rewrite for guid, if there is one."""
        task = self._rewrites.get(guid)
        if task is None or not task.done() or task.cancelled():
            return None
        return task.result()

    async def stream(self, article: Article) -> AsyncIterator[RewriteSnapshot]:
        """Progressive rewrite of article for incremental rendering.

        A finished or in-flight rewrite is reused and yields one final
        snapshot. Otherwise the rewrite streams and its final snapshot is
        cached; a stream abandoned before completion caches nothing.
        """
        finished = self.cached(article.guid)
        if finished is not None:
            yield finished
            return

        while True:
            existing = self._rewrites.get(article.guid)
            if existing is None or existing.cancelled():
                break
            result = await self._shared_result(existing)
            if result is not None:
                yield result
                return

        future: asyncio.Future[RewriteResult] = asyncio.get_running_loop().create_future()
        self._rewrites[article.guid] = future
        final: RewriteSnapshot | None = None
        try:
            async with aclosing(self._rewriter.stream(article.content_encoded)) as snapshots:
                async for snapshot in snapshots:
                    final = snapshot
                    yield snapshot
        finally:
            # A refresh() meanwhile has already cancelled the future
            if not future.done():
                if final is not None and final.complete:
                    future.set_result(final)
                else:
                    future.cancel()
                    if self._rewrites.get(article.guid) is future:
                        del self._rewrites[article.guid]
