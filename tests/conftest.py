"""Shared fixtures: settings without retries and an in-memory fake web."""

import asyncio
import dataclasses
import json

import httpx
import pytest

from horizonti.core.resolver import RedirectResolver
from horizonti.core.rewriter import ArticleRewriter
from horizonti.core.settings import Settings


class FakeWeb:
    """Serves canned responses to httpx through a MockTransport.

    URLs are looked up with their query string first, then without it.
    Unknown URLs get a 404. A URL given a delay answers only after sleeping.
    """

    def __init__(self):
        self.routes = {}
        self.delays = {}
        self.requests = []

    def page(self, url, html="", status=200):
        self.routes[url] = ("page", status, html)

    def json(self, url, data, status=200):
        self.routes[url] = ("json", status, data)

    def redirect(self, url, location, status=302):
        self.routes[url] = ("redirect", status, location)

    def down(self, url):
        self.routes[url] = ("down", None, None)

    def timeout(self, url):
        self.routes[url] = ("timeout", None, None)

    def delay(self, url, seconds):
        self.delays[url] = seconds

    def requested(self, url):
        return [r for r in self.requests if str(r.url).split("?")[0] == url.split("?")[0]]

    async def handler(self, request):
        self.requests.append(request)
        url = str(request.url)
        base = url.split("?")[0]

        seconds = self.delays.get(url, self.delays.get(base))
        if seconds:
            await asyncio.sleep(seconds)

        route = self.routes.get(url) or self.routes.get(base)
        if route is None:
            return httpx.Response(404, html="<html><body>Not found</body></html>")

        kind, status, payload = route
        if kind == "down":
            raise httpx.ConnectError("connection refused", request=request)
        if kind == "timeout":
            raise httpx.ReadTimeout("read timed out", request=request)
        if kind == "redirect":
            return httpx.Response(status, headers={"Location": payload})
        if kind == "json":
            return httpx.Response(status, content=json.dumps(payload).encode(), headers={"Content-Type": "application/json"})
        return httpx.Response(status, html=payload)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings():
    return dataclasses.replace(Settings.from_env(), fetch_retries=0, fetch_timeout=2.0)


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def resolver(settings, web):
    return RedirectResolver(settings, transport=web.transport)


@pytest.fixture
def rewriter(resolver, settings):
    return ArticleRewriter(resolver, settings)
