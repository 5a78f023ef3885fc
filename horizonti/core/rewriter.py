"""Article content rewriter.

Turns Medium-authored article HTML into HTML with canonical embeds:

- strips the "originally published on Medium" footer
- replaces every Medium media link with a placeholder comment
- resolves all placeholders concurrently (classify, then redirect + scrape)
- substitutes embed markup, or a fallback fragment, into each slot

Per reference the state moves found -> classified | resolving -> resolved |
failed. A failure in one reference never affects another.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import AsyncIterator

from bs4 import BeautifulSoup, Comment

from horizonti.core.classifiers import (
    MediaMatch,
    classify,
    is_medium_media_url,
    medium_media_target,
)
from horizonti.core.embed_builders import build_embed, render_fallback, render_loading
from horizonti.core.resolver import RedirectResolver
from horizonti.core.scraper import first_embed
from horizonti.core.settings import Settings

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "horizonti-embed:"
MEDIUM_FOOTER = re.compile(r"was originally published in .+ on Medium", re.DOTALL)


class MediaState(str, Enum):
    """Resolution state of one media reference."""

    FOUND = "found"
    CLASSIFIED = "classified"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


TERMINAL_STATES = {MediaState.RESOLVED, MediaState.FAILED}


@dataclass
class MediaReference:
    """A media link found in article HTML, tracked through resolution."""

    source_url: str
    placeholder_id: str
    state: MediaState = MediaState.FOUND
    resolved_html: str | None = None
    needs_twitter_widget: bool = False
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def resolve(self, html: str, *, needs_twitter_widget: bool = False) -> bool:
        """Set the final markup. Returns False if already settled."""
        if self.done:
            return False
        self.resolved_html = html
        self.needs_twitter_widget = needs_twitter_widget
        self.state = MediaState.RESOLVED
        return True

    def fail(self, error: str) -> bool:
        """Mark as permanently failed. Returns False if already settled."""
        if self.done:
            return False
        self.error = error
        self.state = MediaState.FAILED
        return True

    def to_dict(self) -> dict[str, str | bool | None]:
        return {
            "sourceUrl": self.source_url,
            "placeholderId": self.placeholder_id,
            "status": self.state.value,
            "html": self.resolved_html,
            "needsTwitterWidget": self.needs_twitter_widget,
            "error": self.error,
        }


@dataclass
class RewriteSnapshot:
    """Article HTML at one point during resolution."""

    html: str
    references: list[MediaReference] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(ref.done for ref in self.references)

    @property
    def needs_twitter_widget(self) -> bool:
        return any(ref.needs_twitter_widget for ref in self.references)

    @property
    def embeds(self) -> list[str]:
        """Resolved fragments, in document order."""
        return [
            ref.resolved_html
            for ref in self.references
            if ref.state == MediaState.RESOLVED and ref.resolved_html is not None
        ]

    @property
    def failed(self) -> list[MediaReference]:
        return [ref for ref in self.references if ref.state == MediaState.FAILED]

    def to_dict(self) -> dict:
        return {
            "html": self.html,
            "complete": self.complete,
            "embeds": self.embeds,
            "needsTwitterWidget": self.needs_twitter_widget,
            "references": [ref.to_dict() for ref in self.references],
        }


# The final snapshot is the rewrite result
RewriteResult = RewriteSnapshot


def strip_medium_footer(soup: BeautifulSoup) -> None:
    """Remove Medium's auto-appended footer paragraph and its <hr>."""
    for p in soup.find_all("p"):
        if not MEDIUM_FOOTER.search(p.get_text(" ", strip=True)):
            continue
        prev = p.find_previous_sibling()
        if prev is not None and prev.name == "hr":
            prev.decompose()
        p.decompose()


def _new_nonce(html: str) -> str:
    while True:
        nonce = secrets.token_hex(8)
        if nonce not in html:
            return nonce


def insert_placeholders(html: str) -> tuple[BeautifulSoup, list[MediaReference]]:
    """Parse html, strip the footer and swap Medium media links for placeholders.

    Returns the modified tree and one reference per replaced link, in
    document order.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    strip_medium_footer(soup)

    nonce = _new_nonce(html or "")
    references: list[MediaReference] = []
    replaced: set[int] = set()

    for el in soup.find_all(["a", "iframe"]):
        url = el.get("href") if el.name == "a" else el.get("src")
        if not is_medium_media_url(url):
            continue
        if any(id(parent) in replaced for parent in el.parents):
            continue
        replaced.add(id(el))
        placeholder_id = f"{nonce}-{len(references)}"
        references.append(MediaReference(source_url=url.strip(), placeholder_id=placeholder_id))
        el.replace_with(Comment(PLACEHOLDER_PREFIX + placeholder_id))

    return soup, references


def placeholder_token(placeholder_id: str) -> str:
    """Serialized form of a placeholder comment."""
    return f"<!--{PLACEHOLDER_PREFIX}{placeholder_id}-->"


def render_placeholders(
    soup: BeautifulSoup,
    references: list[MediaReference],
    fallback_message: str,
) -> str:
    """Serialize the tree with every placeholder filled for its current state.

    Resolved slots get their embed, failed slots the fallback fragment and
    pending slots a loading indicator. Fragments are spliced in after
    serialization so embed markup stays byte-identical.
    """
    html = str(soup)
    for ref in references:
        if ref.state == MediaState.RESOLVED and ref.resolved_html is not None:
            fragment = ref.resolved_html
        elif ref.state == MediaState.FAILED:
            fragment = render_fallback(fallback_message)
        else:
            fragment = render_loading(ref.placeholder_id)
        html = html.replace(placeholder_token(ref.placeholder_id), fragment)
    return html


class ArticleRewriter:
    """Resolves the Medium media links of one article body at a time."""

    def __init__(
        self,
        resolver: RedirectResolver,
        settings: Settings | None = None,
    ) -> None:
        self._resolver = resolver
        self._settings = settings or Settings.from_env()

    def _snapshot(self, soup: BeautifulSoup, references: list[MediaReference]) -> RewriteSnapshot:
        html = render_placeholders(soup, references, self._settings.fallback_message)
        # Copies, so earlier snapshots keep the state they were rendered with
        return RewriteSnapshot(html, [replace(ref) for ref in references])

    def _build(self, match: MediaMatch, ref: MediaReference) -> None:
        ref.state = MediaState.CLASSIFIED
        ref.resolve(build_embed(match))

    async def resolve_reference(self, ref: MediaReference) -> MediaReference:
        """Drive one reference to RESOLVED or FAILED. Never raises."""
        try:
            await self._resolve_reference(ref)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error resolving {ref.source_url}")
            ref.fail(f"{type(e).__name__}: {e}")
        return ref

    async def _resolve_reference(self, ref: MediaReference) -> None:
        # Fast path: no I/O when the URL already names its provider
        for candidate in (ref.source_url, medium_media_target(ref.source_url)):
            match = classify(candidate)
            if match.matched:
                self._build(match, ref)
                return

        ref.state = MediaState.RESOLVING
        result = await self._resolver.resolve(ref.source_url)
        if not result.success:
            ref.fail(result.error_message or "fetch failed")
            return

        # The final URL is cheaper to check than the body
        match = classify(result.final_url)
        if match.matched:
            ref.resolve(build_embed(match))
            return

        evidence = first_embed(result.body or "", self._settings.max_embedly_depth)
        if evidence is None:
            logger.info(f"No embed found behind {ref.source_url}")
            ref.fail("no embeddable media found")
            return

        ref.resolve(evidence.to_html(), needs_twitter_widget=evidence.needs_twitter_widget)

    async def stream(self, html: str) -> AsyncIterator[RewriteSnapshot]:
        """Yield a snapshot first with loading slots, then after each resolution.

        The last snapshot yielded is complete. Closing the generator early
        cancels any resolution still in flight.
        """
        soup, references = insert_placeholders(html)

        yield self._snapshot(soup, references)
        if not references:
            return

        tasks = [asyncio.create_task(self.resolve_reference(ref)) for ref in references]
        try:
            for next_done in asyncio.as_completed(tasks):
                await next_done
                yield self._snapshot(soup, references)
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                logger.debug(f"Cancelled {len(pending)} pending embed resolutions")
                await asyncio.gather(*pending, return_exceptions=True)

    async def rewrite(self, html: str) -> RewriteResult:
        """Resolve every media link of html and return the final result."""
        soup, references = insert_placeholders(html)
        await asyncio.gather(*(self.resolve_reference(ref) for ref in references))
        final = RewriteSnapshot(
            render_placeholders(soup, references, self._settings.fallback_message),
            references,
        )
        failed = len(final.failed)
        if references:
            logger.info(f"Rewrote article: {len(references) - failed} embeds resolved, {failed} failed")
        return final
