"""
Consommateurs Celery des files impacts / tasks / notifications.

Chaque consommateur est rejouable indépendamment : une erreur est journalisée, comptée
par le FailureTracker (DLQ au-delà du seuil) puis relancée pour que Celery marque le job
en échec et le retente avec backoff. L'état déjà persisté en amont n'est jamais annulé.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from openai import OpenAIError

from sentinel.app.celery_app import celery_app
from sentinel.core.container import container
from sentinel.domain.errors import LLMSchemaError, NotFoundError
from sentinel.infra.ops.idempotency import make_idem_key
from sentinel.infra.queues import CLASSIFY_IMPACTS, GENERATE_TASKS, SEV1_ALERT

log = structlog.get_logger(__name__)

RETRYABLE = (LLMSchemaError, OpenAIError, TimeoutError)
SEV1_ALERT_TTL_S = 3600


def run_tracked(job: str, job_id: str, func: Callable[[], Any]) -> Any:
    """Exécute `func` ; compte l'échec (DLQ éventuelle) puis relance l'exception."""
    try:
        return func()
    except NotFoundError:
        raise
    except Exception as exc:
        log.error("job_failed", job=job, job_id=job_id, error=str(exc), error_type=type(exc).__name__)
        container.failures.on_failure(job, job_id, reason=type(exc).__name__)
        raise


@celery_app.task(
    name=CLASSIFY_IMPACTS,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=60,
    max_retries=3,
)
def classify_impacts(change_event_id: str) -> dict:
    try:
        ids = run_tracked(
            CLASSIFY_IMPACTS,
            change_event_id,
            lambda: container.impact_workflow().classify_event(change_event_id),
        )
    except NotFoundError:
        log.warning("classify_event_not_found", change_event_id=change_event_id)
        return {"status": "not_found"}
    return {"status": "ok", "impact_count": len(ids)}


@celery_app.task(
    name=GENERATE_TASKS,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=60,
    max_retries=3,
)
def generate_tasks(impact_id: str) -> dict:
    try:
        ids = run_tracked(
            GENERATE_TASKS,
            impact_id,
            lambda: container.task_workflow().generate_for_impact(impact_id),
        )
    except NotFoundError:
        log.warning("generate_tasks_impact_not_found", impact_id=impact_id)
        return {"status": "not_found"}
    return {"status": "ok", "task_count": len(ids)}


@celery_app.task(name=SEV1_ALERT, max_retries=0)
def sev1_alert(change_event_id: str, impact_ids: list[str] | None = None) -> dict:
    # Une seule alerte par événement dans la fenêtre TTL (rejeu d'outbox, retries broker)
    if not container.idempotency.acquire(make_idem_key("sev1_alert", change_event_id), ttl=SEV1_ALERT_TTL_S):
        return {"status": "duplicate"}
    try:
        sent = run_tracked(
            SEV1_ALERT,
            change_event_id,
            lambda: container.notifications().send_sev1_alert(change_event_id, impact_ids),
        )
    except NotFoundError:
        log.warning("sev1_alert_event_not_found", change_event_id=change_event_id)
        return {"status": "not_found"}
    return {"status": "ok", "sent": sent}
