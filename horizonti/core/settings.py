from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Settings:
    log_level: str
    feed_url: str
    rss2json_url: str
    fetch_timeout: float
    fetch_retries: int
    user_agent: str
    max_embedly_depth: int
    rewrite_eager: bool
    fallback_message: str

    @staticmethod
    def from_env() -> "Settings":
        def _b(name: str, default: str) -> bool:
            return os.getenv(name, default).strip() in ("1", "true", "True", "yes", "YES")

        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            feed_url=os.getenv("FEED_URL", "https://medium.com/feed/horizonti").strip(),
            rss2json_url=os.getenv("RSS2JSON_URL", "https://api.rss2json.com/v1/api.json").strip(),
            fetch_timeout=_f("FETCH_TIMEOUT", "10"),
            fetch_retries=_i("FETCH_RETRIES", "1"),
            user_agent=os.getenv("USER_AGENT", DEFAULT_USER_AGENT).strip(),
            max_embedly_depth=_i("MAX_EMBEDLY_DEPTH", "5"),
            rewrite_eager=_b("REWRITE_EAGER", "0"),
            fallback_message=os.getenv("FALLBACK_MESSAGE", "Съдържанието не може да бъде заредено.").strip(),
        )


def configure_logging(settings: Settings) -> None:
    """Set up root logging once, at app startup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
