# ============================================================
# Module : sentinel/domain/monitoring.py
# Objet  : Orchestrateur de surveillance (balayage planifié, exécution manuelle).
# Invariants :
#  - Seules les sources is_active ET bridge_toggle sont sélectionnées.
#  - L'échec d'une source n'interrompt jamais le passage (continue-on-error).
#  - Un ChangeEvent et son job classify-impacts sont écrits dans la même transaction
#    (outbox) : pas de job orphelin, pas d'événement jamais classé.
#  - robots.txt refusé = saut de politique, distinct d'un échec.
# ============================================================
"""Orchestration du pipeline : robots -> collecte -> dédup -> résumé -> persistance -> file."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

import structlog
from openai import OpenAIError
from sqlalchemy.orm import sessionmaker

from sentinel.app.metrics import CHANGE_EVENTS_CREATED, DUPLICATES_SKIPPED, SOURCES_TOTAL
from sentinel.domain.dedup import DedupFilter
from sentinel.domain.entities import (
    FetchedItem,
    RunReport,
    SourceDescriptor,
    SourceOutcome,
    SourceReport,
)
from sentinel.domain.errors import FeedParseError, FetchError, LLMSchemaError, RunInProgressError
from sentinel.domain.summarizer import ChangeSummarizer
from sentinel.infra.fetch.robots import RobotsChecker
from sentinel.infra.fetch.sources import SourceFetcher
from sentinel.infra.ops.idempotency import RunGuard
from sentinel.infra.ops.post_commit import enqueue_job_after_commit
from sentinel.infra.queues import CLASSIFY_IMPACTS, JobQueues
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.repositories import CatalogRepo, ChangeEventRepo

log = structlog.get_logger(__name__)

RunMode = Literal["probe", "full"]

# verrou partagé par le balayage planifié et l'exécution manuelle complète
SWEEP_GUARD = "daily_sweep"


@dataclass(frozen=True)
class ActiveSource:
    """Instantané d'une source sélectionnée (détaché de la session)."""

    id: str
    vendor_id: str
    vendor_name: str
    descriptor: SourceDescriptor


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MonitoringOrchestrator:
    """Séquence le traitement par source et agrège les bilans de passage.

    Les handles (collecteur, files, factory de sessions) sont injectés ; l'orchestrateur
    ne crée aucune ressource globale.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        fetcher: SourceFetcher,
        summarizer: ChangeSummarizer,
        queues: JobQueues,
        *,
        robots: RobotsChecker | None = None,
        run_guard: RunGuard | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.queues = queues
        self.robots = robots or RobotsChecker(fetcher)
        self.run_guard = run_guard
        self.clock = clock

    def select_active_sources(self) -> list[ActiveSource]:
        with session_scope(self.session_factory) as session:
            catalog = CatalogRepo(session)
            selected: list[ActiveSource] = []
            for src in catalog.active_sources():
                vendor = catalog.get_vendor(src.vendor_id)
                selected.append(
                    ActiveSource(
                        id=src.id,
                        vendor_id=src.vendor_id,
                        vendor_name=vendor.name if vendor else "",
                        descriptor=SourceDescriptor(url=src.url, type=src.type, css_selector=src.css_selector),
                    )
                )
            return selected

    async def process_source(self, source: ActiveSource, mode: RunMode = "full") -> SourceReport:
        """Traite une source ; les erreurs de transport/configuration remontent à l'appelant."""
        slog = log.bind(source_id=source.id, url=source.descriptor.url, mode=mode)
        if not await self.robots.is_allowed(source.descriptor.url):
            slog.info("source_skipped_robots")
            return SourceReport(source_id=source.id, outcome=SourceOutcome.SKIPPED_ROBOTS)

        parse_error: str | None = None
        try:
            items = await self.fetcher.fetch_source(source.descriptor)
        except FeedParseError as exc:
            slog.warning("source_parse_failed", error=str(exc))
            items, parse_error = [], str(exc)

        if mode == "probe":
            return SourceReport(
                source_id=source.id,
                outcome=SourceOutcome.PROCESSED,
                items_found=len(items),
                error=parse_error,
            )

        created = await self._persist_new_items(source, items)
        with session_scope(self.session_factory) as session:
            CatalogRepo(session).touch_source(source.id, self.clock())
        slog.info("source_processed", items=len(items), events_created=created)
        return SourceReport(
            source_id=source.id,
            outcome=SourceOutcome.PROCESSED,
            items_found=len(items),
            events_created=created,
            error=parse_error,
        )

    async def _persist_new_items(self, source: ActiveSource, items: list[FetchedItem]) -> int:
        with session_scope(self.session_factory) as session:
            known = ChangeEventRepo(session).known_fingerprints(source.id)
        dedup = DedupFilter(known)
        created = 0
        for item in items:
            if not dedup.accept(item.content_hash):
                DUPLICATES_SKIPPED.inc()
                continue
            try:
                summary = await self.summarizer.summarize(item.raw, source.vendor_name)
            except (LLMSchemaError, TimeoutError, OpenAIError) as exc:
                log.warning(
                    "change_summary_failed",
                    source_id=source.id,
                    title=item.title,
                    error=str(exc) or type(exc).__name__,
                )
                continue
            with session_scope(self.session_factory) as session:
                event = ChangeEventRepo(session).create(source.id, source.vendor_id, item, summary)
                enqueue_job_after_commit(session, self.queues, CLASSIFY_IMPACTS, {"change_event_id": event.id})
                event_id = event.id
            CHANGE_EVENTS_CREATED.inc()
            created += 1
            log.info("change_event_created", change_event_id=event_id, source_id=source.id, title=item.title)
        return created

    async def run_sweep(self, mode: RunMode = "full") -> RunReport:
        """Passe sur toutes les sources actives ; une source en échec n'arrête pas le passage."""
        sources = self.select_active_sources()
        report = RunReport(mode=mode, total_active_sources=len(sources))
        log.info("monitoring_run_started", mode=mode, sources=len(sources))
        for source in sources:
            try:
                outcome = await self.process_source(source, mode)
            except FetchError as exc:
                log.warning("source_fetch_failed", source_id=source.id, status=exc.status, error=str(exc))
                outcome = SourceReport(source_id=source.id, outcome=SourceOutcome.FAILED, error=str(exc))
            except Exception as exc:
                log.error("source_processing_failed", source_id=source.id, error=str(exc), exc_info=True)
                outcome = SourceReport(source_id=source.id, outcome=SourceOutcome.FAILED, error=str(exc))
            SOURCES_TOTAL.labels(mode=mode, outcome=outcome.outcome.value).inc()
            report.sources.append(outcome)
            if outcome.outcome is SourceOutcome.PROCESSED:
                report.sources_processed += 1
                report.changes_found += outcome.items_found
                report.events_created += outcome.events_created
        log.info(
            "monitoring_run_completed",
            mode=mode,
            processed=report.sources_processed,
            changes_found=report.changes_found,
            events_created=report.events_created,
        )
        return report

    async def manual_run(self, mode: RunMode = "probe") -> RunReport:
        """Exécution à la demande : `probe` compte seulement, `full` persiste comme le balayage.

        Le mode `full` prend le même verrou que le balayage planifié ; `RunInProgressError`
        si un passage complet tourne déjà.
        """
        if mode != "full" or self.run_guard is None:
            return await self.run_sweep(mode)
        with self.run_guard.hold(SWEEP_GUARD) as acquired:
            if not acquired:
                raise RunInProgressError(SWEEP_GUARD)
            return await self.run_sweep(mode)
