"""URL classifiers for known media providers.

Every function here is pure: no I/O, no exceptions. A URL that does not
match any provider classifies as ``ProviderKind.UNKNOWN`` and is left to
the redirect resolver.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import ParseResult, parse_qs, unquote, urlparse


class ProviderKind(str, Enum):
    """Media providers the pipeline knows how to embed."""

    YOUTUBE = "youtube"
    DEEZER = "deezer"
    SPOTIFY = "spotify"
    APPLE_PODCAST = "apple_podcast"
    TWITTER = "twitter"  # Detected structurally while scraping, never from a URL
    GENERIC = "generic"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MediaMatch:
    """Classification result: provider kind plus its identifiers."""

    kind: ProviderKind
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.kind not in (ProviderKind.UNKNOWN, ProviderKind.GENERIC)


UNKNOWN = MediaMatch(ProviderKind.UNKNOWN)

YOUTUBE_HOSTS = {"youtube.com", "m.youtube.com", "music.youtube.com", "youtube-nocookie.com"}
YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
YOUTUBE_PATH = re.compile(r"^/(?:embed|v|shorts)/([A-Za-z0-9_-]{11})(?:[/?#]|$)")
YOUTU_BE_PATH = re.compile(r"^/([A-Za-z0-9_-]{11})(?:[/?#]|$)")

DEEZER_PATH = re.compile(r"^/(?:[a-z]{2}/)?(track|album|playlist|episode)/(\d+)(?:[/?#]|$)")

SPOTIFY_PATH = re.compile(
    r"^/(?:intl-[a-z]{2}/)?(?:embed/)?(track|episode|album|playlist)/([A-Za-z0-9]+)(?:[/?#]|$)"
)

APPLE_PODCAST_PATH = re.compile(r"^/([a-z]{2})/podcast/(?:[^/]+/)?id(\d+)(?:[/?#]|$)")

EMBEDLY_HOST = "cdn.embedly.com"
EMBEDLY_PATH = "/widgets/media.html"


def _parse(url: str) -> ParseResult | None:
    """urlparse that tolerates scheme-less and malformed input."""
    url = url.strip()
    if url.startswith("//"):
        url = "https:" + url
    elif "://" not in url:
        url = "https://" + url
    try:
        return urlparse(url)
    except ValueError:
        return None


def _host(parsed: ParseResult) -> str:
    """Lower-cased host without credentials, port or a leading www."""
    netloc = parsed.netloc.lower().rsplit("@", 1)[-1].split(":", 1)[0]
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc


def classify_youtube(url: str) -> MediaMatch | None:
    parsed = _parse(url)
    if parsed is None:
        return None
    host = _host(parsed)

    if host == "youtu.be":
        m = YOUTU_BE_PATH.match(parsed.path)
        return MediaMatch(ProviderKind.YOUTUBE, {"video_id": m.group(1)}) if m else None

    if host not in YOUTUBE_HOSTS:
        return None

    if parsed.path.rstrip("/") == "/watch":
        video_id = parse_qs(parsed.query).get("v", [""])[0]
        if YOUTUBE_ID.match(video_id):
            return MediaMatch(ProviderKind.YOUTUBE, {"video_id": video_id})
        return None

    m = YOUTUBE_PATH.match(parsed.path)
    if m:
        return MediaMatch(ProviderKind.YOUTUBE, {"video_id": m.group(1)})
    return None


def classify_deezer(url: str) -> MediaMatch | None:
    parsed = _parse(url)
    if parsed is None:
        return None
    host = _host(parsed)

    # Already canonical: pass through unchanged
    if host == "widget.deezer.com" and parsed.path.startswith("/widget/"):
        return MediaMatch(ProviderKind.DEEZER, {"widget_url": url.strip()})

    if host != "deezer.com":
        return None

    m = DEEZER_PATH.match(parsed.path)
    if m:
        return MediaMatch(ProviderKind.DEEZER, {"type": m.group(1), "id": m.group(2)})
    return None


def classify_spotify(url: str) -> MediaMatch | None:
    parsed = _parse(url)
    if parsed is None or _host(parsed) != "open.spotify.com":
        return None
    m = SPOTIFY_PATH.match(parsed.path)
    if m:
        return MediaMatch(ProviderKind.SPOTIFY, {"type": m.group(1), "id": m.group(2)})
    return None


def classify_apple_podcast(url: str) -> MediaMatch | None:
    parsed = _parse(url)
    if parsed is None:
        return None
    host = _host(parsed)
    if host not in ("podcasts.apple.com", "embed.podcasts.apple.com"):
        return None
    m = APPLE_PODCAST_PATH.match(parsed.path)
    if not m:
        return None

    fields = {"country": m.group(1), "podcast_id": m.group(2)}
    episode_id = parse_qs(parsed.query).get("i", [""])[0]
    if episode_id.isdigit():
        fields["episode_id"] = episode_id
    return MediaMatch(ProviderKind.APPLE_PODCAST, fields)


CLASSIFIERS = (classify_youtube, classify_deezer, classify_spotify, classify_apple_podcast)


def classify(url: str | None) -> MediaMatch:
    """Classify a URL into a known provider, or UNKNOWN."""
    if not url or not isinstance(url, str):
        return UNKNOWN
    for classifier in CLASSIFIERS:
        match = classifier(url)
        if match is not None:
            return match
    return UNKNOWN


def is_medium_media_url(url: str | None) -> bool:
    """True for Medium's media proxy links (medium.com/media/{hash}...)."""
    if not url:
        return False
    parsed = _parse(url)
    if parsed is None:
        return False
    return _host(parsed) == "medium.com" and parsed.path.startswith("/media/")


def medium_media_target(url: str) -> str | None:
    """Target URL appended after the hash of a Medium media link, if any.

    e.g. https://medium.com/media/abc123/https://www.youtube.com/watch?v=...
    """
    if not is_medium_media_url(url):
        return None
    m = re.search(r"/media/[^/]+/(https?:/{1,2}.+)$", url.strip())
    if not m:
        return None
    target = unquote(m.group(1))
    # Path normalisation sometimes collapses the double slash
    target = re.sub(r"^(https?):/(?!/)", r"\1://", target)
    return target


def is_embedly_proxy(url: str | None) -> bool:
    if not url:
        return False
    parsed = _parse(url)
    if parsed is None:
        return False
    return _host(parsed) == EMBEDLY_HOST and parsed.path.startswith(EMBEDLY_PATH)


def unwrap_embedly(url: str) -> str | None:
    """Decoded inner ``src`` of an embedly proxy URL, or None."""
    if not is_embedly_proxy(url):
        return None
    parsed = _parse(url)
    inner = parse_qs(parsed.query).get("src", [""])[0] if parsed else ""
    if not inner:
        return None
    if inner.startswith("//"):
        inner = "https:" + inner
    return inner
