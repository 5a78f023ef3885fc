"""Tests for settings.py"""

import dataclasses

from horizonti.core.settings import DEFAULT_USER_AGENT, Settings


def test_defaults(monkeypatch):
    for name in ("FEED_URL", "FETCH_TIMEOUT", "FETCH_RETRIES", "USER_AGENT", "REWRITE_EAGER", "MAX_EMBEDLY_DEPTH"):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()

    assert s.feed_url == "https://medium.com/feed/horizonti"
    assert s.fetch_timeout == 10.0
    assert s.fetch_retries == 1
    assert s.user_agent == DEFAULT_USER_AGENT
    assert s.max_embedly_depth == 5
    assert s.rewrite_eager is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FETCH_TIMEOUT", "2.5")
    monkeypatch.setenv("REWRITE_EAGER", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings.from_env()

    assert s.fetch_timeout == 2.5
    assert s.rewrite_eager is True
    assert s.log_level == "DEBUG"


def test_only_consumed_keys():
    names = {f.name for f in dataclasses.fields(Settings)}
    assert names == {
        "log_level",
        "feed_url",
        "rss2json_url",
        "fetch_timeout",
        "fetch_retries",
        "user_agent",
        "max_embedly_depth",
        "rewrite_eager",
        "fallback_message",
    }
