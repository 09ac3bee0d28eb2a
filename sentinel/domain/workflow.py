# ============================================================
# Module : sentinel/domain/workflow.py
# Objet  : Cycle de vie Impact -> Task (consommateurs de files et décisions humaines).
# Invariants :
#  - Impacts uniques par (change_event_id, asset_id) : une reclassification ignore
#    les assets déjà évalués.
#  - Auto-approbation à la création si confiance > seuil OU SEV1 ; le job
#    generate-tasks est alors écrit dans l'outbox de la même transaction.
#  - Les appels LLM se font hors transaction ; les écritures sont courtes.
# ============================================================
"""Workflows impacts (classification, décision) et tâches (génération, progression)."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Literal

import structlog
from sqlalchemy.orm import sessionmaker

from sentinel.app.metrics import (
    IMPACT_DECISIONS,
    IMPACTS_AUTO_APPROVED,
    IMPACTS_CREATED,
    TASKS_CREATED,
)
from sentinel.domain.classifier import ImpactClassifier
from sentinel.domain.entities import (
    ChangeSummary,
    ChangeType,
    ImpactAssessment,
    ImpactStatus,
    PatchScript,
    Severity,
    TaskStatus,
)
from sentinel.domain.patch_script import PatchScriptWriter
from sentinel.domain.state_machine import DEFAULT_AUTO_APPROVE_CONFIDENCE, should_auto_approve
from sentinel.domain.task_generator import DEFAULT_SLA_HOURS, TaskGenerator
from sentinel.infra.ops.post_commit import enqueue_job_after_commit
from sentinel.infra.queues import GENERATE_TASKS, SEV1_ALERT, JobQueues
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import ImpactORM, TaskORM
from sentinel.infra.repo.repositories import CatalogRepo, ChangeEventRepo, ImpactRepo, TaskRepo

log = structlog.get_logger(__name__)

AUTO_DECIDER = "system:auto-approve"

RegenerationPolicy = Literal["skip", "append"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def assessment_from_row(row: ImpactORM) -> ImpactAssessment:
    return ImpactAssessment(
        asset_id=row.asset_id,
        predicted_action=row.predicted_action,
        severity=row.severity,
        confidence=row.confidence,
        reasons=list(row.reasons or []),
    )


class ImpactWorkflow:
    """Classification des ChangeEvents et décisions sur les impacts."""

    def __init__(
        self,
        session_factory: sessionmaker,
        queues: JobQueues,
        classifier: ImpactClassifier,
        *,
        auto_approve_confidence: float = DEFAULT_AUTO_APPROVE_CONFIDENCE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.queues = queues
        self.classifier = classifier
        self.auto_approve_confidence = auto_approve_confidence
        self.clock = clock

    def classify_event(self, change_event_id: str) -> list[str]:
        """Classe un ChangeEvent et persiste un impact par asset affecté.

        Retourne les ids des impacts créés. NotFoundError si l'événement n'existe pas.
        """
        with session_scope(self.session_factory) as session:
            event = ChangeEventRepo(session).require(change_event_id)
            summary = ChangeSummary(
                summary=event.summary or event.title,
                change_type=event.change_type or ChangeType.CAPABILITY.value,
                entities=list(event.entities or []),
                risks=list(event.risks or []),
                summary_ar=event.summary_ar or "",
            )
            catalog = CatalogRepo(session)
            assets = catalog.asset_profiles()
            rules = catalog.active_rules()

        assessments = self.classifier.classify(summary, assets, rules)

        created: list[str] = []
        now = self.clock()
        with session_scope(self.session_factory) as session:
            repo = ImpactRepo(session)
            existing = repo.existing_asset_ids(change_event_id)
            sev1_ids: list[str] = []
            for assessment in assessments:
                if assessment.asset_id in existing:
                    continue
                existing.add(assessment.asset_id)
                auto = should_auto_approve(assessment.confidence, assessment.severity, self.auto_approve_confidence)
                row = repo.create(
                    change_event_id,
                    assessment,
                    status=ImpactStatus.APPROVED if auto else ImpactStatus.PENDING,
                    decided_by=AUTO_DECIDER if auto else None,
                    decided_at=now if auto else None,
                )
                IMPACTS_CREATED.labels(severity=row.severity).inc()
                created.append(row.id)
                if auto:
                    IMPACTS_AUTO_APPROVED.inc()
                    enqueue_job_after_commit(session, self.queues, GENERATE_TASKS, {"impact_id": row.id})
                    log.info(
                        "impact_auto_approved",
                        impact_id=row.id,
                        severity=row.severity,
                        confidence=row.confidence,
                    )
                if assessment.severity is Severity.SEV1:
                    sev1_ids.append(row.id)
            if sev1_ids:
                enqueue_job_after_commit(
                    session,
                    self.queues,
                    SEV1_ALERT,
                    {"change_event_id": change_event_id, "impact_ids": sev1_ids},
                )
        log.info("impacts_created", change_event_id=change_event_id, count=len(created))
        return created

    def decide(self, impact_id: str, approve: bool, decided_by: str) -> ImpactORM:
        """Approuve ou rejette un impact PENDING ; l'approbation déclenche la génération de tâches."""
        target = ImpactStatus.APPROVED if approve else ImpactStatus.REJECTED
        with session_scope(self.session_factory) as session:
            row = ImpactRepo(session).decide(impact_id, target, decided_by, self.clock())
            if approve:
                enqueue_job_after_commit(session, self.queues, GENERATE_TASKS, {"impact_id": impact_id})
        IMPACT_DECISIONS.labels(status=target.value).inc()
        log.info("impact_decided", impact_id=impact_id, status=target.value, decided_by=decided_by)
        return row


class TaskWorkflow:
    """Génération et progression des tâches de remédiation."""

    def __init__(
        self,
        session_factory: sessionmaker,
        generator: TaskGenerator,
        patch_writer: PatchScriptWriter,
        *,
        sla_defaults: Mapping[str, int] | None = None,
        regeneration_policy: RegenerationPolicy = "skip",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.generator = generator
        self.patch_writer = patch_writer
        self.sla_defaults = dict(sla_defaults or DEFAULT_SLA_HOURS)
        self.regeneration_policy = regeneration_policy
        self.clock = clock

    def generate_for_impact(self, impact_id: str) -> list[str]:
        """Crée les tâches d'un impact approuvé. Retourne les ids créés (vide si ignoré)."""
        with session_scope(self.session_factory) as session:
            impact = ImpactRepo(session).require(impact_id)
            if impact.status != ImpactStatus.APPROVED.value:
                log.warning("task_generation_not_approved", impact_id=impact_id, status=impact.status)
                return []
            if self.regeneration_policy == "skip" and TaskRepo(session).count_for_impact(impact_id):
                log.info("tasks_already_generated", impact_id=impact_id)
                return []
            assessment = assessment_from_row(impact)
            sla_hours = CatalogRepo(session).sla_hours(self.sla_defaults)

        planned = self.generator.generate(assessment, sla_hours, self.clock())

        created: list[str] = []
        with session_scope(self.session_factory) as session:
            tasks = TaskRepo(session)
            if self.regeneration_policy == "skip" and tasks.count_for_impact(impact_id):
                log.info("tasks_already_generated", impact_id=impact_id)
                return []
            for plan in planned:
                row = tasks.create(
                    impact_id,
                    action=plan.action.value,
                    title=plan.title,
                    description=plan.description,
                    owner=plan.owner.value,
                    due_date=plan.due_date,
                    estimated_hours=plan.estimated_hours,
                )
                TASKS_CREATED.labels(owner=row.owner).inc()
                created.append(row.id)
        log.info("tasks_created", impact_id=impact_id, count=len(created))
        return created

    def transition(
        self,
        task_id: str,
        target: TaskStatus | None = None,
        *,
        progress: int | None = None,
        evidence_url: str | None = None,
        block_reason: str | None = None,
    ) -> TaskORM:
        """Fait progresser une tâche, ou met à jour ses champs sans changer d'état (`target=None`).

        BLOCKED exige un motif non vide ; la progression ne bouge qu'en IN_PROGRESS.
        """
        with session_scope(self.session_factory) as session:
            row = TaskRepo(session).transition(
                task_id,
                target,
                self.clock(),
                progress=progress,
                evidence_url=evidence_url,
                block_reason=block_reason,
            )
        log.info("task_transitioned", task_id=task_id, status=row.status)
        return row

    def patch_script(self, task_id: str) -> PatchScript:
        with session_scope(self.session_factory) as session:
            task = TaskRepo(session).require(task_id)
            description, action = task.description or task.title, task.action
        return self.patch_writer.write(description, action)
