"""Tests de l'orchestrateur de surveillance (passage complet, sonde, robots, outbox)."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from sentinel.domain.entities import SourceOutcome
from sentinel.domain.errors import RunInProgressError
from sentinel.domain.monitoring import SWEEP_GUARD
from sentinel.infra.ops.idempotency import make_idem_key
from sentinel.infra.queues import CLASSIFY_IMPACTS
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import ChangeEventORM, OutboxORM, SourceORM
from sentinel.infra.repo.repositories import as_utc
from tests.fakes import DEFAULT_SUMMARY, add_source, rss_feed

NOW = datetime(2026, 3, 5, 12, 0, tzinfo=UTC)

FEED_A = "https://a.example/feed.xml"
FEED_B = "https://b.example/feed.xml"
FEED_C = "https://c.example/feed.xml"


def _count_events(factory) -> int:
    with session_scope(factory) as session:
        return int(session.scalar(select(func.count()).select_from(ChangeEventORM)) or 0)


@pytest.mark.asyncio
async def test_sweep_continues_after_failing_source(container, web, queues, factory):
    web.add(FEED_A, rss_feed(("Agent mode", "https://a.example/1", "Agent mode is live")))
    web.add(FEED_B, "down", status=503)
    web.add(FEED_C, rss_feed(("Canvas", "https://c.example/1", "Canvas update")))
    ids = {url: add_source(factory, url) for url in (FEED_A, FEED_B, FEED_C)}

    report = await container.monitoring().run_sweep("full")

    assert report.total_active_sources == 3
    assert report.sources_processed == 2
    assert report.events_created == 2
    outcomes = {s.source_id: s for s in report.sources}
    assert outcomes[ids[FEED_B]].outcome is SourceOutcome.FAILED
    assert "503" in outcomes[ids[FEED_B]].error
    assert outcomes[ids[FEED_A]].outcome is SourceOutcome.PROCESSED
    assert outcomes[ids[FEED_C]].outcome is SourceOutcome.PROCESSED
    assert len(queues.jobs(CLASSIFY_IMPACTS)) == 2


@pytest.mark.asyncio
async def test_event_and_job_share_the_outbox(container, web, queues, factory):
    web.add(FEED_A, rss_feed(("Agent mode", "https://a.example/1", "Agent mode is live")))
    add_source(factory, FEED_A)

    await container.monitoring().run_sweep("full")

    with session_scope(factory) as session:
        event = session.scalars(select(ChangeEventORM)).one()
        outbox = session.scalars(select(OutboxORM)).one()
        event_id, summary, change_type = event.id, event.summary, event.change_type
        assert outbox.job == CLASSIFY_IMPACTS
        assert outbox.dispatched_at is not None
    assert summary == DEFAULT_SUMMARY["summary"]
    assert change_type == "capability"
    assert queues.jobs(CLASSIFY_IMPACTS) == [{"change_event_id": event_id}]


@pytest.mark.asyncio
async def test_second_full_run_deduplicates(container, web, queues, factory):
    web.add(FEED_A, rss_feed(("Agent mode", "https://a.example/1", "Agent mode is live")))
    add_source(factory, FEED_A)
    orchestrator = container.monitoring()

    first = await orchestrator.run_sweep("full")
    second = await orchestrator.run_sweep("full")

    assert first.events_created == 1
    assert second.changes_found == 1
    assert second.events_created == 0
    assert _count_events(factory) == 1
    assert len(queues.jobs(CLASSIFY_IMPACTS)) == 1


@pytest.mark.asyncio
async def test_only_active_bridged_sources_are_polled(container, web, factory):
    web.add(FEED_A, rss_feed(("A", "https://a.example/1", "a")))
    add_source(factory, FEED_A)
    add_source(factory, FEED_B, is_active=False)
    add_source(factory, FEED_C, bridge_toggle=False)

    report = await container.monitoring().run_sweep("full")

    assert report.total_active_sources == 1
    assert FEED_B not in web.urls()
    assert FEED_C not in web.urls()


@pytest.mark.asyncio
async def test_counting_run_does_not_persist(container, web, queues, factory, llm):
    web.add(
        FEED_A,
        rss_feed(("One", "https://a.example/1", "first"), ("Two", "https://a.example/2", "second")),
    )
    source_id = add_source(factory, FEED_A)

    report = await container.monitoring().manual_run("probe")

    assert report.mode == "probe"
    assert report.changes_found == 2
    assert report.events_created == 0
    assert _count_events(factory) == 0
    assert queues.sent == []
    assert llm.calls == []
    with session_scope(factory) as session:
        assert session.get(SourceORM, source_id).last_checked is None


@pytest.mark.asyncio
async def test_full_run_touches_last_checked(container, web, factory):
    web.add(FEED_A, rss_feed(("A", "https://a.example/1", "a")))
    source_id = add_source(factory, FEED_A)
    orchestrator = container.monitoring()
    orchestrator.clock = lambda: NOW

    await orchestrator.run_sweep("full")

    with session_scope(factory) as session:
        assert as_utc(session.get(SourceORM, source_id).last_checked) == NOW


@pytest.mark.asyncio
async def test_robots_disallow_is_a_policy_skip(container, web, factory):
    web.add("https://a.example/robots.txt", "User-agent: *\nDisallow: /\n")
    web.add(FEED_A, rss_feed(("A", "https://a.example/1", "a")))
    source_id = add_source(factory, FEED_A)

    report = await container.monitoring().run_sweep("full")

    assert report.sources[0].source_id == source_id
    assert report.sources[0].outcome is SourceOutcome.SKIPPED_ROBOTS
    assert report.sources_processed == 0
    assert FEED_A not in web.urls()


@pytest.mark.asyncio
async def test_summary_failure_skips_only_that_item(container, web, llm, factory):
    def reply(messages):
        return "not json" if "Broken" in messages[1]["content"] else DEFAULT_SUMMARY

    llm.script("summarize", reply)
    web.add(
        FEED_A,
        rss_feed(("Broken release", "https://a.example/1", "x"), ("Good release", "https://a.example/2", "y")),
    )
    add_source(factory, FEED_A)

    report = await container.monitoring().run_sweep("full")

    assert report.sources[0].outcome is SourceOutcome.PROCESSED
    assert report.changes_found == 2
    assert report.events_created == 1
    with session_scope(factory) as session:
        assert session.scalars(select(ChangeEventORM.title)).all() == ["Good release"]


@pytest.mark.asyncio
async def test_unreadable_feed_is_processed_with_error(container, web, factory):
    web.add(FEED_A, "this is { not a feed")
    add_source(factory, FEED_A)

    report = await container.monitoring().run_sweep("full")

    outcome = report.sources[0]
    assert outcome.outcome is SourceOutcome.PROCESSED
    assert outcome.items_found == 0
    assert outcome.error


@pytest.mark.asyncio
async def test_full_manual_run_shares_the_sweep_lock(container, web, factory):
    web.add(FEED_A, rss_feed(("Agent mode", "https://a.example/1", "Agent mode is live")))
    add_source(factory, FEED_A)
    key = make_idem_key("running", SWEEP_GUARD)
    container.idempotency.acquire(key)

    with pytest.raises(RunInProgressError):
        await container.monitoring().manual_run("full")
    counted = await container.monitoring().manual_run("probe")
    assert (counted.sources_processed, _count_events(factory)) == (1, 0)

    container.idempotency.release(key)
    report = await container.monitoring().manual_run("full")
    assert report.events_created == 1
    # le verrou est relâché après le passage
    assert container.idempotency.acquire(key)
