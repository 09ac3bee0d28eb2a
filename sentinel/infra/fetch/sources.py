# ============================================================
# Module : sentinel/infra/fetch/sources.py
# Objet  : Collecte RSS / HTML / API GitHub -> FetchedItem normalisés.
# Invariants :
#  - `raw` est une sérialisation canonique : même entrée -> même empreinte.
#  - Toute erreur réseau ou HTTP non-2xx devient FetchError (transport, status, url).
#  - Chaque requête est bornée par un timeout dur (asyncio.wait_for).
# ============================================================
"""Collecteurs de sources fournisseurs (flux RSS/Atom, pages HTML, releases GitHub)."""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import feedparser
import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from sentinel.app.metrics import SOURCE_FETCH_LATENCY
from sentinel.domain.dedup import content_fingerprint
from sentinel.domain.entities import FetchedItem, SourceDescriptor, SourceType
from sentinel.domain.errors import FeedParseError, FetchError, SourceConfigError

log = structlog.get_logger(__name__)

CHANGELOG_SELECTORS = (
    "article, .changelog-item, .release-item, .update-item, "
    '[class*="change"], [class*="release"], [class*="update"]'
)
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
UPDATE_KEYWORDS_RE = re.compile(r"update|change|release|version|fix|feature", re.IGNORECASE)
INLINE_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4}")
GITHUB_REPO_RE = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)")
TITLE_MAX_CHARS = 100


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def parse_date(text: str | None) -> datetime | None:
    """Interprète une date ISO 8601, RFC 2822 ou M/D/YYYY ; None si illisible."""
    if not text:
        return None
    value = text.strip()
    try:
        return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return _as_utc(datetime.strptime(value, "%m/%d/%Y"))
    except ValueError:
        pass
    try:
        return _as_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def _struct_to_datetime(struct: Any) -> datetime | None:
    if not struct:
        return None
    return datetime(*struct[:6], tzinfo=UTC)


# ---------------------------------------------------------------- RSS / Atom


def parse_feed(text: str, now: datetime | None = None) -> list[FetchedItem]:
    """Transforme un flux RSS 2.0 ou Atom en candidats.

    `raw` sérialise (title, description, content, author) dans un ordre fixe.
    """
    now = now or _utcnow()
    feed = feedparser.parse(text)
    if feed.get("bozo") and not feed.entries:
        raise FeedParseError(f"unreadable feed: {feed.get('bozo_exception')!r}")
    items: list[FetchedItem] = []
    for entry in feed.entries:
        title = str(entry.get("title", "") or "")
        link = str(entry.get("link", "") or "")
        description = str(entry.get("description") or entry.get("summary") or "")
        contents = entry.get("content") or []
        content = str(contents[0].get("value", "")) if contents else ""
        author = str(entry.get("author", "") or "")
        published = (
            _struct_to_datetime(entry.get("published_parsed"))
            or _struct_to_datetime(entry.get("updated_parsed"))
            or now
        )
        raw = json.dumps(
            {"title": title, "description": description, "content": content, "author": author},
            ensure_ascii=False,
        )
        items.append(
            FetchedItem(
                title=title.strip(),
                url=link.strip(),
                published_at=published,
                raw=raw,
                content_hash=content_fingerprint(raw),
            )
        )
    return items


# ---------------------------------------------------------------------- HTML


def _select_html_elements(soup: BeautifulSoup, css_selector: str | None, limit: int) -> list[Tag]:
    if css_selector:
        return list(soup.select(css_selector))
    elements = list(soup.select(CHANGELOG_SELECTORS))
    if elements:
        return elements
    headings = [h for h in soup.find_all(HEADING_TAGS) if UPDATE_KEYWORDS_RE.search(h.get_text())]
    return headings[:limit]


def _element_title(element: Tag, index: int) -> str:
    heading = element.find(HEADING_TAGS)
    if heading is not None and heading.get_text(strip=True):
        return heading.get_text(strip=True)
    text = element.get_text(" ", strip=True)
    if text:
        return text[:TITLE_MAX_CHARS].strip()
    return f"Update {index + 1}"


def _element_date(element: Tag) -> datetime | None:
    time_el = element.find("time")
    if time_el is not None and time_el.get("datetime"):
        found = parse_date(str(time_el.get("datetime")))
        if found:
            return found
    date_el = element.select_one('[class*="date"]')
    if date_el is not None:
        found = parse_date(date_el.get_text(strip=True))
        if found:
            return found
    match = INLINE_DATE_RE.search(element.get_text(" ", strip=True))
    if match:
        return parse_date(match.group(0))
    return None


def parse_html(
    text: str,
    page_url: str,
    css_selector: str | None = None,
    limit: int = 10,
    now: datetime | None = None,
) -> list[FetchedItem]:
    """Extrait un candidat par élément de changelog d'une page HTML.

    Sélection : sélecteur CSS configuré, sinon motifs de classes usuels, sinon titres
    contenant un mot-clé de mise à jour (limités à `limit`).
    """
    now = now or _utcnow()
    soup = BeautifulSoup(text, "html.parser")
    items: list[FetchedItem] = []
    for index, element in enumerate(_select_html_elements(soup, css_selector, limit)):
        raw = str(element) or element.get_text()
        items.append(
            FetchedItem(
                title=_element_title(element, index),
                url=page_url,
                published_at=_element_date(element) or now,
                raw=raw,
                content_hash=content_fingerprint(raw),
            )
        )
    return items


# -------------------------------------------------------------------- GitHub


def github_repo_from_url(url: str) -> tuple[str, str]:
    """Extrait (owner, repo) d'une URL GitHub ; SourceConfigError si invalide."""
    match = GITHUB_REPO_RE.search(url)
    if not match:
        raise SourceConfigError(f"invalid GitHub URL format: {url}")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def parse_github_releases(payload: Any, limit: int = 10, now: datetime | None = None) -> list[FetchedItem]:
    """Transforme la réponse `/releases` en candidats (les `limit` plus récents)."""
    if not isinstance(payload, list):
        raise FeedParseError("GitHub releases payload is not a list")
    now = now or _utcnow()

    def _published(release: dict[str, Any]) -> datetime:
        return (
            parse_date(release.get("published_at"))
            or parse_date(release.get("created_at"))
            or now
        )

    releases = [r for r in payload if isinstance(r, dict)]
    releases.sort(key=_published, reverse=True)
    items: list[FetchedItem] = []
    for release in releases[:limit]:
        raw = json.dumps(
            {
                "name": release.get("name"),
                "tag_name": release.get("tag_name"),
                "body": release.get("body"),
                "draft": release.get("draft"),
                "prerelease": release.get("prerelease"),
            },
            ensure_ascii=False,
        )
        items.append(
            FetchedItem(
                title=release.get("name") or release.get("tag_name") or "GitHub Release",
                url=release.get("html_url") or "",
                published_at=_published(release),
                raw=raw,
                content_hash=content_fingerprint(raw),
            )
        )
    return items


# ------------------------------------------------------------------- Fetcher


class SourceFetcher:
    """Collecteur asynchrone partagé (un client httpx par processus).

    Paramètres:
    - client: client httpx injecté (tests : `httpx.MockTransport`).
    - user_agent: en-tête User-Agent envoyé aux fournisseurs.
    - timeout_s: budget dur par requête.
    - html_limit / github_limit: plafonds de candidats.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        user_agent: str = "Course-Update-Sentinel/1.0",
        timeout_s: float = 20.0,
        html_limit: int = 10,
        github_limit: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.html_limit = html_limit
        self.github_limit = github_limit
        self.clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=httpx.Timeout(timeout_s, connect=min(5.0, timeout_s)),
            follow_redirects=True,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get(self, transport: str, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        """GET borné par timeout ; convertit toute défaillance en FetchError."""
        merged = {"User-Agent": self.user_agent, **(headers or {})}
        try:
            resp = await asyncio.wait_for(self._client.get(url, headers=merged), timeout=self.timeout_s)
        except TimeoutError as exc:
            raise FetchError(transport, url, reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise FetchError(transport, url, reason=type(exc).__name__) from exc
        if not resp.is_success:
            raise FetchError(transport, url, status=resp.status_code)
        return resp

    async def fetch_rss(self, url: str) -> list[FetchedItem]:
        resp = await self.get("rss", url)
        return parse_feed(resp.text, now=self.clock())

    async def fetch_html(self, url: str, css_selector: str | None = None) -> list[FetchedItem]:
        resp = await self.get("html", url)
        return parse_html(resp.text, url, css_selector, limit=self.html_limit, now=self.clock())

    async def fetch_github(self, url: str) -> list[FetchedItem]:
        owner, repo = github_repo_from_url(url)
        api_url = f"https://api.github.com/repos/{owner}/{repo}/releases"
        resp = await self.get("github", api_url, {"Accept": "application/vnd.github.v3+json"})
        try:
            payload = resp.json()
        except ValueError as exc:
            raise FeedParseError(f"GitHub releases response is not JSON: {exc}") from exc
        return parse_github_releases(payload, limit=self.github_limit, now=self.clock())

    async def fetch_source(self, source: SourceDescriptor) -> list[FetchedItem]:
        """Aiguille selon le type de source ; SourceConfigError si type inconnu."""
        kind = (source.type or "").upper()
        start = time.perf_counter()
        if kind == SourceType.RSS.value:
            items = await self.fetch_rss(source.url)
        elif kind == SourceType.HTML.value:
            items = await self.fetch_html(source.url, source.css_selector)
        elif kind in (SourceType.API.value, "GITHUB"):
            items = await self.fetch_github(source.url)
        else:
            raise SourceConfigError(f"unsupported source type: {source.type}")
        SOURCE_FETCH_LATENCY.labels(type=kind).observe(time.perf_counter() - start)
        log.debug("source_fetched", url=source.url, type=kind, items=len(items))
        return items
