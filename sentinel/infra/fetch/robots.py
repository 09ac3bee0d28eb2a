"""Vérification robots.txt avant collecte.

Politique : autoriser si robots.txt est absent, en erreur HTTP ou injoignable ; refuser
seulement si une règle Disallow s'applique à notre User-Agent (ou à `*`).
"""

from __future__ import annotations

from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

import structlog

from sentinel.domain.errors import FetchError
from sentinel.infra.fetch.sources import SourceFetcher

log = structlog.get_logger(__name__)


def robots_url_for(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}/robots.txt"


def robots_allows(robots_txt: str, url: str, user_agent: str) -> bool:
    """Évalue un contenu robots.txt pour `url` et `user_agent`."""
    parser = RobotFileParser()
    parser.parse(robots_txt.splitlines())
    return parser.can_fetch(user_agent, url)


class RobotsChecker:
    """Consulte robots.txt via le client HTTP partagé du collecteur."""

    def __init__(self, fetcher: SourceFetcher) -> None:
        self.fetcher = fetcher

    async def is_allowed(self, url: str) -> bool:
        robots_url = robots_url_for(url)
        try:
            resp = await self.fetcher.get("robots", robots_url)
        except FetchError as exc:
            log.debug("robots_unavailable", url=robots_url, status=exc.status, reason=exc.reason)
            return True
        return robots_allows(resp.text, url, self.fetcher.user_agent)
