"""Job queue handles for the three background work queues.

Les producteurs (orchestrateur, routes API) reçoivent un handle explicite plutôt qu'une
instance globale. Le handle est ouvert au démarrage du processus et fermé à l'arrêt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog
from kombu.exceptions import OperationalError

log = structlog.get_logger(__name__)

CLASSIFY_IMPACTS = "sentinel.tasks.classify_impacts"
GENERATE_TASKS = "sentinel.tasks.generate_tasks"
SEV1_ALERT = "sentinel.tasks.sev1_alert"

QUEUE_FOR_JOB: dict[str, str] = {
    CLASSIFY_IMPACTS: "impacts",
    GENERATE_TASKS: "tasks",
    SEV1_ALERT: "notifications",
}


class JobQueues(ABC):
    """Interface d'envoi de jobs vers les files impacts / tasks / notifications."""

    @abstractmethod
    def send(self, job: str, payload: dict[str, Any]) -> None:
        """Publie `job` avec ses arguments nommés sur la file associée."""

    def open(self) -> None:  # noqa: B027 - hook optionnel
        """Prépare les connexions (no-op par défaut)."""

    def close(self) -> None:  # noqa: B027 - hook optionnel
        """Vide/ferme les connexions (no-op par défaut)."""


class CeleryJobQueues(JobQueues):
    """Publication via `celery_app.send_task` vers la file dédiée à chaque job."""

    def __init__(self, celery_app) -> None:  # type: ignore[no-untyped-def]
        self.celery_app = celery_app
        self._opened = False

    def open(self) -> None:
        conn = self.celery_app.connection_for_write()
        try:
            conn.ensure_connection(max_retries=1)
        except OperationalError as exc:
            # Les jobs restent dans l'outbox jusqu'au retour du broker.
            log.warning("job_queues_broker_unavailable", error=str(exc))
        finally:
            conn.release()
        self._opened = True
        log.info("job_queues_opened", queues=sorted(set(QUEUE_FOR_JOB.values())))

    def send(self, job: str, payload: dict[str, Any]) -> None:
        queue = QUEUE_FOR_JOB.get(job)
        if queue is None:
            raise ValueError(f"unknown job: {job}")
        self.celery_app.send_task(job, kwargs=dict(payload), queue=queue)
        log.debug("job_enqueued", job=job, queue=queue)

    def close(self) -> None:
        if self._opened:
            self.celery_app.close()
            self._opened = False
            log.info("job_queues_closed")


class InMemoryJobQueues(JobQueues):
    """Handle enregistrant les jobs publiés (dev sans broker, tests)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def send(self, job: str, payload: dict[str, Any]) -> None:
        if job not in QUEUE_FOR_JOB:
            raise ValueError(f"unknown job: {job}")
        self.sent.append((job, dict(payload)))

    def jobs(self, job: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.sent if name == job]

    def close(self) -> None:
        self.closed = True
