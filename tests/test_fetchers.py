"""Tests des collecteurs RSS / HTML / GitHub et de la politique robots.txt."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import pytest

from sentinel.domain.dedup import content_fingerprint
from sentinel.domain.entities import SourceDescriptor
from sentinel.domain.errors import FeedParseError, FetchError, SourceConfigError
from sentinel.infra.fetch.robots import RobotsChecker, robots_allows, robots_url_for
from sentinel.infra.fetch.sources import (
    SourceFetcher,
    github_repo_from_url,
    parse_date,
    parse_feed,
    parse_github_releases,
    parse_html,
)
from tests.fakes import FakeWeb, rss_feed

NOW = datetime(2026, 3, 5, 12, 0, tzinfo=UTC)

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Vendor updates</title>
  <entry>
    <title>Canvas improvements</title>
    <link href="https://vendor.example/canvas"/>
    <updated>2026-02-20T08:30:00Z</updated>
    <summary>Canvas now supports code execution</summary>
    <author><name>Vendor Team</name></author>
  </entry>
</feed>"""


def _releases(n: int) -> list[dict]:
    return [
        {
            "name": f"v1.{i}",
            "tag_name": f"v1.{i}",
            "body": f"notes {i}",
            "html_url": f"https://github.com/acme/tool/releases/v1.{i}",
            "published_at": f"2026-01-{i + 1:02d}T00:00:00Z",
            "draft": False,
            "prerelease": False,
        }
        for i in range(n)
    ]


def test_parse_rss_items():
    items = parse_feed(
        rss_feed(
            ("Agent mode", "https://vendor.example/agent", "Agent mode is live"),
            ("Pricing update", "https://vendor.example/pricing", "Free tier changes"),
        ),
        now=NOW,
    )
    assert [i.title for i in items] == ["Agent mode", "Pricing update"]
    assert items[0].url == "https://vendor.example/agent"
    assert items[0].published_at == datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
    raw = json.loads(items[0].raw)
    assert list(raw) == ["title", "description", "content", "author"]
    assert items[0].content_hash == content_fingerprint(items[0].raw)


def test_parse_atom_entry():
    items = parse_feed(ATOM, now=NOW)
    assert len(items) == 1
    assert items[0].title == "Canvas improvements"
    assert items[0].url == "https://vendor.example/canvas"
    assert items[0].published_at == datetime(2026, 2, 20, 8, 30, tzinfo=UTC)
    assert json.loads(items[0].raw)["author"] == "Vendor Team"


def test_parse_feed_is_stable_for_identical_input():
    text = rss_feed(("A", "https://v/a", "same"))
    assert parse_feed(text, now=NOW)[0].content_hash == parse_feed(text, now=NOW)[0].content_hash


def test_unreadable_feed_raises():
    with pytest.raises(FeedParseError):
        parse_feed("this is { not a feed", now=NOW)


def test_html_heading_fallback():
    """Sans classe de changelog : titres contenant un mot-clé de mise à jour."""
    page = "<html><body><h2>New Feature Release</h2><p>Details</p><h2>About us</h2></body></html>"
    items = parse_html(page, "https://vendor.example/changelog", now=NOW)
    assert len(items) == 1
    assert items[0].title == "New Feature Release"
    assert items[0].url == "https://vendor.example/changelog"
    assert items[0].published_at == NOW


def test_html_changelog_elements_and_dates():
    page = """
    <div class="changelog-item"><h3>Voice mode</h3><time datetime="2026-02-01">Feb 1</time></div>
    <div class="changelog-item"><p>Fixed export 01/15/2026</p></div>
    """
    items = parse_html(page, "https://vendor.example/log", now=NOW)
    assert [i.title for i in items] == ["Voice mode", "Fixed export 01/15/2026"]
    assert items[0].published_at == datetime(2026, 2, 1, tzinfo=UTC)
    assert items[1].published_at == datetime(2026, 1, 15, tzinfo=UTC)


def test_html_css_selector_wins():
    page = '<article>ignored</article><li class="entry">Entry one</li><li class="entry">Entry two</li>'
    items = parse_html(page, "https://v/log", css_selector="li.entry", now=NOW)
    assert [i.title for i in items] == ["Entry one", "Entry two"]


def test_html_heading_fallback_is_capped():
    page = "".join(f"<h3>Update {i}</h3>" for i in range(15))
    assert len(parse_html(page, "https://v/log", limit=10, now=NOW)) == 10


def test_github_releases_capped_to_ten_most_recent():
    items = parse_github_releases(_releases(12), limit=10, now=NOW)
    assert len(items) == 10
    assert items[0].title == "v1.11"
    assert items[-1].title == "v1.2"
    assert json.loads(items[0].raw)["tag_name"] == "v1.11"


def test_github_repo_from_url():
    assert github_repo_from_url("https://github.com/openai/openai-python.git") == ("openai", "openai-python")
    with pytest.raises(SourceConfigError):
        github_repo_from_url("https://gitlab.com/acme/tool")


def test_parse_date_formats():
    assert parse_date("2026-02-01T10:00:00Z") == datetime(2026, 2, 1, 10, tzinfo=UTC)
    assert parse_date("Mon, 02 Mar 2026 10:00:00 GMT") == datetime(2026, 3, 2, 10, tzinfo=UTC)
    assert parse_date("3/4/2026") == datetime(2026, 3, 4, tzinfo=UTC)
    assert parse_date("someday") is None


@pytest.mark.asyncio
async def test_fetcher_routes_api_sources_to_github():
    web = FakeWeb()
    web.add("https://api.github.com/repos/acme/tool/releases", json_body=_releases(3))
    fetcher = SourceFetcher(web.client(), clock=lambda: NOW)
    items = await fetcher.fetch_source(SourceDescriptor(url="https://github.com/acme/tool", type="API"))
    assert len(items) == 3
    request = web.requests[0]
    assert request.headers["Accept"] == "application/vnd.github.v3+json"
    assert request.headers["User-Agent"] == "Course-Update-Sentinel/1.0"


@pytest.mark.asyncio
async def test_fetcher_non_2xx_raises_fetch_error():
    web = FakeWeb()
    web.add("https://vendor.example/feed.xml", "down", status=503)
    fetcher = SourceFetcher(web.client())
    with pytest.raises(FetchError) as exc:
        await fetcher.fetch_source(SourceDescriptor(url="https://vendor.example/feed.xml", type="RSS"))
    assert exc.value.status == 503
    assert exc.value.transport == "rss"


@pytest.mark.asyncio
async def test_fetcher_transport_error_raises_fetch_error():
    web = FakeWeb()
    web.add("https://vendor.example/log", error=httpx.ConnectError("dns failure"))
    fetcher = SourceFetcher(web.client())
    with pytest.raises(FetchError) as exc:
        await fetcher.fetch_html("https://vendor.example/log")
    assert exc.value.status is None
    assert exc.value.reason == "ConnectError"


@pytest.mark.asyncio
async def test_fetcher_rejects_unsupported_type():
    fetcher = SourceFetcher(FakeWeb().client())
    with pytest.raises(SourceConfigError):
        await fetcher.fetch_source(SourceDescriptor(url="ftp://vendor.example", type="FTP"))


def test_robots_rules():
    robots = "User-agent: *\nDisallow: /private\n"
    assert robots_url_for("https://vendor.example/a/b?x=1") == "https://vendor.example/robots.txt"
    assert not robots_allows(robots, "https://vendor.example/private/log", "Course-Update-Sentinel/1.0")
    assert robots_allows(robots, "https://vendor.example/changelog", "Course-Update-Sentinel/1.0")


@pytest.mark.asyncio
async def test_robots_checker_allows_when_missing_and_denies_when_disallowed():
    web = FakeWeb()
    checker = RobotsChecker(SourceFetcher(web.client()))
    # robots.txt absent (404) : autorisé
    assert await checker.is_allowed("https://open.example/changelog")
    web.add("https://closed.example/robots.txt", "User-agent: *\nDisallow: /\n")
    assert not await checker.is_allowed("https://closed.example/changelog")
