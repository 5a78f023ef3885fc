"""YouTube oEmbed lookups for video cards (title, channel, thumbnail)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from horizonti.core.classifiers import YOUTUBE_ID
from horizonti.core.resolver import RedirectResolver

logger = logging.getLogger(__name__)

YOUTUBE_OEMBED_URL = "https://www.youtube.com/oembed"


@dataclass(frozen=True)
class VideoCard:
    video_id: str
    title: str
    author_name: str
    thumbnail_url: str
    thumbnail_width: int | None = None
    thumbnail_height: int | None = None

    @property
    def watch_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "videoId": self.video_id,
            "title": self.title,
            "authorName": self.author_name,
            "thumbnailUrl": self.thumbnail_url,
            "thumbnailWidth": self.thumbnail_width,
            "thumbnailHeight": self.thumbnail_height,
            "watchUrl": self.watch_url,
        }


async def fetch_video_card(video_id: str, resolver: RedirectResolver) -> VideoCard | None:
    """Look up oEmbed metadata for a YouTube video. None on any failure."""
    if not YOUTUBE_ID.match(video_id or ""):
        return None

    watch_url = f"https://www.youtube.com/watch?v={video_id}"
    try:
        response = await resolver.get(YOUTUBE_OEMBED_URL, params={"url": watch_url, "format": "json"})
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"oEmbed lookup failed for {video_id}: {e}")
        return None

    return VideoCard(
        video_id=video_id,
        title=data.get("title") or "",
        author_name=data.get("author_name") or "",
        thumbnail_url=data.get("thumbnail_url") or f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg",
        thumbnail_width=data.get("thumbnail_width"),
        thumbnail_height=data.get("thumbnail_height"),
    )
