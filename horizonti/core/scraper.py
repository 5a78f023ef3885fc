"""Embed extraction from fetched HTML.

Walks the parsed document once, in document order, and reports every piece
of embed evidence it finds. Per element the first matching rule wins:

1. ``<iframe src>``, with embedly proxies unwrapped (bounded depth)
2. ``blockquote.twitter-tweet`` / ``div.twitter-tweet``
3. ``.gist`` blocks
4. ``<script>`` payloads written through ``document.write("...")``

Anything else is left alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from horizonti.core.classifiers import (
    MediaMatch,
    ProviderKind,
    classify,
    is_embedly_proxy,
    unwrap_embedly,
)
from horizonti.core.embed_builders import build_embed

logger = logging.getLogger(__name__)

# Observed nesting is 1-2; the cap only guards against self-referencing input
MAX_EMBEDLY_DEPTH = 5

DOCUMENT_WRITE = re.compile(r"document\.write\(\s*\"(.*)\"\s*\)", re.DOTALL)
TWITTER_CLASS = "twitter-tweet"
GIST_CLASS = "gist"


@dataclass(frozen=True)
class EmbedEvidence:
    """One embed found in a document.

    ``fragment`` is the captured markup (outer HTML or decoded script
    payload). ``source_url`` is the iframe src after embedly unwrapping.
    """

    match: MediaMatch
    fragment: str
    source_url: str | None = None
    verbatim: bool = False

    @property
    def kind(self) -> ProviderKind:
        return self.match.kind

    @property
    def usable(self) -> bool:
        return self.match.kind != ProviderKind.UNKNOWN

    @property
    def needs_twitter_widget(self) -> bool:
        return self.match.kind == ProviderKind.TWITTER

    def to_html(self) -> str:
        """Canonical markup for this evidence."""
        if self.verbatim:
            return self.fragment
        return build_embed(self.match, self.fragment)


def _classes(el: Tag) -> list[str]:
    value = el.get("class") or []
    return value if isinstance(value, list) else str(value).split()


def _is_candidate(el: Tag) -> bool:
    if el.name == "iframe":
        return True
    if el.name in ("blockquote", "div") and TWITTER_CLASS in _classes(el):
        return True
    if GIST_CLASS in _classes(el):
        return True
    if el.name == "script":
        return True
    return False


def unescape_document_write(payload: str) -> str:
    """Undo the JS string escaping used in document.write payloads."""
    return payload.replace('\\"', '"').replace("\\'", "'").replace("\\/", "/")


def classify_iframe_src(src: str, max_depth: int = MAX_EMBEDLY_DEPTH) -> tuple[MediaMatch, str]:
    """Classify an iframe src, unwrapping embedly proxies up to max_depth.

    Returns the match and the innermost URL that was examined. An src that
    stays unclassified after unwrapping is GENERIC.
    """
    url = src
    for _ in range(max_depth + 1):
        match = classify(url)
        if match.kind != ProviderKind.UNKNOWN:
            return match, url
        if not is_embedly_proxy(url):
            break
        inner = unwrap_embedly(url)
        if not inner or inner == url:
            break
        url = inner
    else:
        logger.warning(f"Embedly nesting deeper than {max_depth} for {src}")

    return MediaMatch(ProviderKind.GENERIC), url


def _from_iframe(el: Tag, max_depth: int) -> EmbedEvidence:
    src = (el.get("src") or el.get("data-src") or "").strip()
    if not src:
        return EmbedEvidence(MediaMatch(ProviderKind.UNKNOWN), str(el))
    match, inner_url = classify_iframe_src(src, max_depth)
    return EmbedEvidence(match, str(el), source_url=inner_url)


def _from_script(el: Tag, depth: int, max_depth: int) -> list[EmbedEvidence]:
    script = el.string or el.get_text() or ""
    m = DOCUMENT_WRITE.search(script)
    if not m:
        return []

    decoded = unescape_document_write(m.group(1))
    if "<iframe" not in decoded and TWITTER_CLASS not in decoded:
        return []

    if depth >= max_depth:
        logger.warning("document.write nesting exceeds depth cap, skipping")
        return []

    # Only iframe and twitter markers count inside a written payload
    found = _walk(BeautifulSoup(decoded, "html.parser"), depth + 1, max_depth)
    return [e for e in found if e.kind == ProviderKind.TWITTER or e.source_url is not None]


def _walk(soup: BeautifulSoup, depth: int, max_depth: int) -> list[EmbedEvidence]:
    evidence: list[EmbedEvidence] = []
    claimed: set[int] = set()

    for el in soup.find_all(_is_candidate):
        # Skip anything nested inside an element that already matched
        if any(id(parent) in claimed for parent in el.parents):
            continue

        classes = _classes(el)
        if el.name == "iframe":
            evidence.append(_from_iframe(el, max_depth))
            claimed.add(id(el))
        elif el.name in ("blockquote", "div") and TWITTER_CLASS in classes:
            evidence.append(EmbedEvidence(MediaMatch(ProviderKind.TWITTER), str(el)))
            claimed.add(id(el))
        elif GIST_CLASS in classes:
            evidence.append(EmbedEvidence(MediaMatch(ProviderKind.GENERIC), str(el), verbatim=True))
            claimed.add(id(el))
        elif el.name == "script":
            found = _from_script(el, depth, max_depth)
            if found:
                evidence.extend(found)
                claimed.add(id(el))

    return evidence


def extract_embeds(html: str, max_depth: int = MAX_EMBEDLY_DEPTH) -> list[EmbedEvidence]:
    """Extract all embed evidence from an HTML document, in document order."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return _walk(soup, 0, max_depth)


def first_embed(html: str, max_depth: int = MAX_EMBEDLY_DEPTH) -> EmbedEvidence | None:
    """First usable embed in the document, preferring recognised providers.

    A Medium media page usually holds a single iframe; if it holds several,
    a classified provider beats a generic wrapper.
    """
    usable = [e for e in extract_embeds(html, max_depth) if e.usable]
    if not usable:
        return None
    for e in usable:
        if e.match.matched or e.kind == ProviderKind.TWITTER:
            return e
    return usable[0]
