"""User-agent based bot detection."""

import logging
import re

from fastapi import Request

logger = logging.getLogger(__name__)

BOT_USER_AGENT_PATTERNS = (
    r"bot\b",
    r"crawl",
    r"spider",
    r"slurp",
    r"scrap",
    r"headless",
    r"phantomjs",
    r"puppeteer",
    r"playwright",
    r"selenium",
    r"curl/",
    r"wget/",
    r"python-requests",
    r"python-urllib",
    r"aiohttp",
    r"go-http-client",
    r"java/",
    r"libwww-perl",
    r"httpclient",
    r"okhttp",
    r"facebookexternalhit",
    r"embedly",
    r"preview",
)


class BotDetector:
    """Flags requests whose user agent is missing or looks automated."""

    def __init__(self, enabled: bool = True, patterns: tuple[str, ...] = BOT_USER_AGENT_PATTERNS):
        self.enabled = enabled
        self._pattern = re.compile("|".join(patterns), re.IGNORECASE)

    def is_bot_user_agent(self, user_agent: str | None) -> bool:
        if not user_agent or not user_agent.strip():
            return True
        return bool(self._pattern.search(user_agent))

    def is_bot(self, request: Request) -> bool:
        if not self.enabled:
            return False
        user_agent = request.headers.get("user-agent")
        if self.is_bot_user_agent(user_agent):
            logger.info("Bot blocked on %s: %r", request.url.path, user_agent)
            return True
        return False
