"""Canonical embed markup for classified media.

All builders are pure and deterministic: the same match always renders to
byte-identical markup, so results can be cached and compared directly.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from horizonti.core.classifiers import MediaMatch, ProviderKind

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "embeds"

jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

DEEZER_WIDGET_URL = "https://widget.deezer.com/widget/auto/{type}/{id}"

# Spotify's compact player fits a single item; collections get the tall one
SPOTIFY_COMPACT_TYPES = {"track", "episode"}
SPOTIFY_COMPACT_HEIGHT = 152
SPOTIFY_TALL_HEIGHT = 352

APPLE_EPISODE_HEIGHT = 175
APPLE_SHOW_HEIGHT = 450


def _render(template_name: str, **ctx) -> str:
    return jinja.get_template(template_name).render(**ctx)


def build_youtube(fields: dict[str, str]) -> str:
    return _render("youtube.html", video_id=fields["video_id"])


def build_deezer(fields: dict[str, str]) -> str:
    if "widget_url" in fields:
        src = fields["widget_url"]
    else:
        src = DEEZER_WIDGET_URL.format(type=fields["type"], id=fields["id"])
    return _render("deezer.html", src=src)


def build_deezer_legacy(fields: dict[str, str]) -> str:
    """Old plugins/player form, kept for callers that cannot load the widget."""
    return _render("deezer_legacy.html", type=fields["type"], id=fields["id"])


def build_spotify(fields: dict[str, str]) -> str:
    height = SPOTIFY_COMPACT_HEIGHT if fields["type"] in SPOTIFY_COMPACT_TYPES else SPOTIFY_TALL_HEIGHT
    return _render("spotify.html", type=fields["type"], id=fields["id"], height=height)


def build_apple_podcast(fields: dict[str, str]) -> str:
    episode_id = fields.get("episode_id")
    return _render(
        "apple_podcast.html",
        country=fields["country"],
        podcast_id=fields["podcast_id"],
        episode_id=episode_id,
        height=APPLE_EPISODE_HEIGHT if episode_id else APPLE_SHOW_HEIGHT,
    )


def build_generic(fragment: str) -> str:
    """Wrap a raw iframe/script fragment in the responsive container."""
    return _render("generic.html", fragment=fragment)


BUILDERS = {
    ProviderKind.YOUTUBE: build_youtube,
    ProviderKind.DEEZER: build_deezer,
    ProviderKind.SPOTIFY: build_spotify,
    ProviderKind.APPLE_PODCAST: build_apple_podcast,
}


def build_embed(match: MediaMatch, fragment: str | None = None) -> str:
    """Render embed markup for a classified match.

    Args:
        match: Result of classify() or of the scraper.
        fragment: Raw markup captured while scraping. Required for Twitter
            (passed through verbatim) and generic/unknown embeds (wrapped).

    Raises:
        ValueError: For twitter/generic/unknown matches without a fragment.
    """
    builder = BUILDERS.get(match.kind)
    if builder is not None:
        return builder(match.fields)

    if not fragment:
        raise ValueError(f"No markup to embed for {match.kind.value} media")

    if match.kind == ProviderKind.TWITTER:
        # The client loads the widget script once per page and renders this
        return fragment

    return build_generic(fragment)


def render_fallback(message: str) -> str:
    """Neutral 'content unavailable' fragment for a failed embed.

    The failed Medium link is not repeated, so no media proxy anchor
    survives a rewrite.
    """
    return _render("fallback.html", message=message)


def render_loading(placeholder_id: str) -> str:
    """Per-placeholder loading indicator for partially resolved articles."""
    return _render("loading.html", placeholder_id=placeholder_id)
