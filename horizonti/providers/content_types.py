"""Feed content types for articles and feed metadata."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class FeedMeta:
    """Channel-level metadata returned by the RSS proxy."""

    url: str
    title: str
    link: str = ""
    author: str = ""
    description: str = ""
    image: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "link": self.link,
            "author": self.author,
            "description": self.description,
            "image": self.image,
        }


@dataclass(frozen=True)
class Article:
    """One RSS feed entry."""

    guid: str
    link: str
    title: str
    creator: str = ""
    pub_date: str = ""
    iso_date: str = ""
    categories: tuple[str, ...] = ()
    content: str = ""
    content_encoded: str = ""
    thumbnail: str | None = None
    embeds: tuple[str, ...] = ()  # resolved embed fragments, append-only

    def with_embeds(self, embeds: list[str] | tuple[str, ...]) -> Article:
        """Return a copy with the given fragments appended to embeds."""
        return replace(self, embeds=self.embeds + tuple(embeds))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization (client field names)."""
        return {
            "guid": self.guid,
            "link": self.link,
            "title": self.title,
            "creator": self.creator,
            "pubDate": self.pub_date,
            "isoDate": self.iso_date,
            "categories": list(self.categories),
            "content": self.content,
            "contentEncoded": self.content_encoded,
            "thumbnail": self.thumbnail,
            "embeds": list(self.embeds),
        }
