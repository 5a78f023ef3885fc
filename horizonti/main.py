from __future__ import annotations

import json
import logging
from contextlib import aclosing

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from horizonti.core.feed import ArticleStore, FeedClient, FeedError
from horizonti.core.oembed import fetch_video_card
from horizonti.core.resolver import close_resolver, get_resolver
from horizonti.core.rewriter import ArticleRewriter, MediaReference, MediaState
from horizonti.core.scraper import extract_embeds
from horizonti.core.settings import Settings, configure_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="horizonti")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

_store: ArticleStore | None = None


def get_rewriter() -> ArticleRewriter:
    return ArticleRewriter(get_resolver(), Settings.from_env())


def get_store() -> ArticleStore:
    """Get or create the session ArticleStore."""
    global _store
    if _store is None:
        s = Settings.from_env()
        _store = ArticleStore(FeedClient(s), get_rewriter(), s)
    return _store


@app.on_event("startup")
def _startup() -> None:
    configure_logging(Settings.from_env())


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_resolver()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.get("/api/get-media-embed")
async def api_get_media_embed(mediaUrl: str | None = None):
    """Resolve a single media link to embeddable markup.

    Resolution failures are not errors: they come back as 200 with
    embedHtml null and status "failed".
    """
    if not mediaUrl:
        return _error(400, "Missing mediaUrl")

    try:
        ref = MediaReference(source_url=mediaUrl.strip(), placeholder_id="media")
        await get_rewriter().resolve_reference(ref)
    except Exception as e:
        logger.exception(f"Media embed endpoint failed for {mediaUrl}")
        return _error(500, str(e) or type(e).__name__)

    return {
        "embedHtml": ref.resolved_html if ref.state == MediaState.RESOLVED else None,
        "isTwitterEmbed": ref.needs_twitter_widget,
        "status": ref.state.value,
    }


@app.get("/api/get-embeds")
async def api_get_embeds(articleUrl: str | None = None):
    """Every iframe, tweet and gist on a full article page."""
    if not articleUrl:
        return _error(400, "articleUrl is required")

    try:
        result = await get_resolver().resolve(articleUrl.strip())
        if not result.success:
            return _error(502, f"Failed to fetch article: {result.error_message}")

        found = [e for e in extract_embeds(result.body or "") if e.usable]
    except Exception as e:
        logger.exception(f"Embeds endpoint failed for {articleUrl}")
        return _error(500, str(e) or type(e).__name__)

    return {
        "embeds": [e.fragment for e in found],
        "hasTwitterEmbed": any(e.needs_twitter_widget for e in found),
    }


@app.get("/api/feed")
async def api_feed():
    """Current feed with raw article bodies."""
    try:
        feed = await get_store().load()
    except FeedError as e:
        return _error(502, str(e))
    return feed.to_dict()


@app.post("/api/feed/refresh")
async def api_feed_refresh():
    """Re-fetch the feed and drop every cached rewrite."""
    try:
        feed = await get_store().refresh()
    except FeedError as e:
        return _error(502, str(e))
    return feed.to_dict()


@app.get("/api/articles/{guid:path}/stream")
async def api_article_stream(guid: str):
    """SSE stream of rewrite snapshots for one article.

    The first event has loading indicators in every embed slot; one more
    event follows per resolved embed; the last one is complete.
    """
    store = get_store()
    try:
        await store.load()
    except FeedError as e:
        return _error(502, str(e))

    article = store.get_article(guid)
    if article is None:
        return _error(404, "Article not found")

    async def event_generator():
        """Generate SSE events from the rewrite."""
        try:
            async with aclosing(store.stream(article)) as snapshots:
                async for snapshot in snapshots:
                    event = "complete" if snapshot.complete else "snapshot"
                    yield f"event: {event}\ndata: {json.dumps(snapshot.to_dict())}\n\n"
        except Exception as e:
            logger.exception(f"Rewrite stream failed for {guid}")
            yield f"event: error\ndata: {json.dumps({'error': str(e)})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/api/articles/{guid:path}")
async def api_article(guid: str):
    """One article with its body rewritten and embeds resolved."""
    try:
        found = await get_store().rewrite(guid)
    except FeedError as e:
        return _error(502, str(e))

    if found is None:
        return _error(404, "Article not found")

    article, result = found
    return {
        "article": article.to_dict(),
        "html": result.html,
        "embeds": result.embeds,
        "needsTwitterWidget": result.needs_twitter_widget,
        "references": [ref.to_dict() for ref in result.references],
    }


@app.get("/api/youtube-card")
async def api_youtube_card(videoId: str | None = None):
    """oEmbed title/author/thumbnail for a YouTube video card."""
    if not videoId:
        return _error(400, "Missing videoId")
    card = await fetch_video_card(videoId, get_resolver())
    return {"card": card.to_dict() if card else None}
