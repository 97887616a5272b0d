from __future__ import annotations

import logging
import urllib.parse
from typing import Optional
from urllib.robotparser import RobotFileParser

import httpx

logger = logging.getLogger("phasecrawl.robots")


class RobotsPolicy:
    """Allow/deny queries backed by a parsed robots.txt."""

    def __init__(self, parser: RobotFileParser, robots_url: str):
        self._parser = parser
        self.robots_url = robots_url

    @classmethod
    def from_text(cls, robots_url: str, content: str) -> "RobotsPolicy":
        rp = RobotFileParser()
        rp.set_url(robots_url)
        rp.parse(content.splitlines())
        return cls(rp, robots_url)

    @classmethod
    async def load(
        cls,
        url: str,
        user_agent: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ) -> Optional["RobotsPolicy"]:
        """Fetch ``origin/robots.txt``. Any failure means no enforcement."""
        parsed = urllib.parse.urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return None
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        headers = {"User-Agent": user_agent, "Accept": "text/plain,text/html,*/*"}

        try:
            if client is None:
                async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own:
                    response = await own.get(robots_url, headers=headers)
            else:
                response = await client.get(robots_url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Could not load robots.txt ({e}), continuing without it")
            return None

        if response.status_code != 200:
            logger.info(f"📭 No robots.txt found at {robots_url} (status: {response.status_code})")
            return None

        policy = cls.from_text(robots_url, response.text)
        logger.info(f"🤖 Loaded robots.txt from {robots_url}")
        return policy

    def is_allowed(self, url: str, user_agent: str = "*") -> bool:
        return self._parser.can_fetch(user_agent or "*", url)
