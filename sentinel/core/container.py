"""
Conteneur d'injection de dépendances.

Construit une seule fois par processus : moteur SQL et factory de sessions, client LLM,
collecteur HTTP, handles des files de jobs, expéditeur e-mail, stores d'idempotence.
Les ressources réseau (files, client HTTP) ont un cycle de vie explicite :
`startup()` au démarrage du processus, `shutdown()` / `ashutdown()` à l'arrêt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog

from sentinel.core.settings import Settings, get_settings
from sentinel.domain.classifier import ImpactClassifier
from sentinel.domain.monitoring import MonitoringOrchestrator
from sentinel.domain.notifications import NotificationService
from sentinel.domain.patch_script import PatchScriptWriter
from sentinel.domain.summarizer import ChangeSummarizer
from sentinel.domain.task_generator import TaskGenerator
from sentinel.domain.workflow import ImpactWorkflow, TaskWorkflow
from sentinel.infra.email import EmailSender, LoggingEmailSender, parse_recipients
from sentinel.infra.fetch.sources import SourceFetcher
from sentinel.infra.llm.base import LLM
from sentinel.infra.llm.openai_client import OpenAILLM
from sentinel.infra.llm.structured import StructuredLLM
from sentinel.infra.ops.idempotency import FailureTracker, IdempotencyStore, RunGuard
from sentinel.infra.queues import JobQueues
from sentinel.infra.repo.db import get_engine, get_session_factory, init_schema

T = TypeVar("T")

log = structlog.get_logger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        llm: LLM | None = None,
        queues: JobQueues | None = None,
        fetcher: SourceFetcher | None = None,
        email: EmailSender | None = None,
        kv_client: object | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        self.engine = get_engine(s.DATABASE_URL)
        self.session_factory = get_session_factory(self.engine)
        self.llm = llm or OpenAILLM(api_key=s.OPENAI_API_KEY, model=s.OPENAI_MODEL, timeout_s=s.LLM_TIMEOUT_S)
        self.structured_llm = StructuredLLM(self.llm, max_attempts=s.LLM_MAX_ATTEMPTS, timeout_s=s.LLM_TIMEOUT_S)
        self.email = email or LoggingEmailSender()
        self.queues = queues
        self.fetcher = fetcher
        self._owns_fetcher = fetcher is None
        self.idempotency = IdempotencyStore(client=kv_client)
        self.failures = FailureTracker(client=self.idempotency.client, max_failures=s.CELERY_MAX_FAILURES_BEFORE_DLQ)
        self.run_guard = RunGuard(self.idempotency)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False

    # -- cycle de vie
    def startup(self) -> None:
        """Ouvre les files et le client HTTP ; crée le schéma sur SQLite (dev/tests)."""
        if self._started:
            return
        if self.engine.url.get_backend_name() == "sqlite":
            init_schema(self.engine)
        if self.queues is None:
            from sentinel.app.celery_app import celery_app, celery_queues

            self.queues = celery_queues(celery_app)
        self.queues.open()
        if self.fetcher is None:
            s = self.settings
            self.fetcher = SourceFetcher(
                user_agent=s.FETCH_USER_AGENT,
                timeout_s=s.FETCH_TIMEOUT_S,
                html_limit=s.HTML_FALLBACK_LIMIT,
                github_limit=s.GITHUB_RELEASES_LIMIT,
            )
        self._started = True
        log.info("container_started", env=self.settings.APP_ENV)

    async def ashutdown(self) -> None:
        if self.fetcher is not None:
            await self.fetcher.aclose()
            if self._owns_fetcher:
                self.fetcher = None
        if self.queues is not None:
            self.queues.close()
        self._started = False
        log.info("container_stopped")

    def shutdown(self) -> None:
        """Arrêt côté worker : ferme le client HTTP sur la boucle du conteneur."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.run_until_complete(self.ashutdown())
            self._loop.close()
            self._loop = None
        elif self.queues is not None:
            self.queues.close()
            self._started = False

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Exécute une coroutine sur la boucle persistante du conteneur (workers Celery)."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(coro)

    # -- services
    def monitoring(self) -> MonitoringOrchestrator:
        self.startup()
        return MonitoringOrchestrator(
            self.session_factory,
            self.fetcher,  # type: ignore[arg-type]
            ChangeSummarizer(self.structured_llm),
            self.queues,  # type: ignore[arg-type]
            run_guard=self.run_guard,
        )

    def impact_workflow(self) -> ImpactWorkflow:
        self.startup()
        return ImpactWorkflow(
            self.session_factory,
            self.queues,  # type: ignore[arg-type]
            ImpactClassifier(self.structured_llm),
            auto_approve_confidence=self.settings.AUTO_APPROVE_CONFIDENCE,
        )

    def task_workflow(self) -> TaskWorkflow:
        self.startup()
        return TaskWorkflow(
            self.session_factory,
            TaskGenerator(self.structured_llm, tz=self.settings.BUSINESS_TIMEZONE),
            PatchScriptWriter(self.structured_llm),
            sla_defaults=self.settings.default_sla_hours(),
            regeneration_policy=self.settings.TASK_REGENERATION_POLICY,
        )

    def notifications(self) -> NotificationService:
        s = self.settings
        return NotificationService(
            self.session_factory,
            self.email,
            alert_recipients=parse_recipients(s.ALERT_RECIPIENTS),
            digest_recipients=parse_recipients(s.DIGEST_RECIPIENTS),
            lookback_days=s.DIGEST_LOOKBACK_DAYS,
        )


container = Container()
