# ============================================================
# Module : sentinel/infra/monitoring/celery_exporter.py
# Objet  : Métriques Prometheus des consommateurs Celery.
# ============================================================
"""Exporter Prometheus pour les tâches Celery (runtime, succès, échecs, retries, DLQ)."""

from __future__ import annotations

import time

from celery import signals
from prometheus_client import Counter, Histogram

TASK_SUCCESS = Counter("celery_task_success_total", "Tasks réussies", ["task"])
TASK_FAILURE = Counter("celery_task_failure_total", "Tasks échouées", ["task"])
TASK_RETRY = Counter("celery_task_retry_total", "Tasks en retry", ["task"])
DLQ_TOTAL = Counter("celery_dlq_total", "Messages placés en DLQ", ["queue"])
TASK_RUNTIME_SECONDS = Histogram(
    "celery_task_runtime_seconds", "Durée d'exécution des tâches", ["task"]
)

_starts: dict[str, float] = {}
_bound = False


def on_task_prerun(task_id: str) -> None:
    _starts[task_id] = time.time()


def on_task_postrun(task_id: str, task_name: str, state: str) -> None:
    """Observe la durée et compte les succès."""
    start = _starts.pop(task_id, None)
    if start is not None:
        TASK_RUNTIME_SECONDS.labels(task=task_name).observe(max(0.0, time.time() - start))
    if state.upper() == "SUCCESS":
        TASK_SUCCESS.labels(task=task_name).inc()


def on_task_failure(task_id: str, task_name: str) -> None:
    TASK_FAILURE.labels(task=task_name).inc()
    _starts.pop(task_id, None)


def on_task_retry(task_name: str) -> None:
    TASK_RETRY.labels(task=task_name).inc()


def bind_celery_signals(celery_app) -> None:  # type: ignore[no-untyped-def]
    """Attach Celery signal handlers to populate Prometheus metrics.

    Safe to call multiple times; handlers are connected once per process.
    """
    global _bound
    if _bound:
        return
    _bound = True

    @signals.task_prerun.connect(weak=False)
    def _pre(sender=None, task_id: str = "", **kw):  # type: ignore[no-untyped-def]
        on_task_prerun(task_id=task_id)

    @signals.task_postrun.connect(weak=False)
    def _post(sender=None, task_id: str = "", state: str = "", **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or "unknown"
        on_task_postrun(task_id=task_id, task_name=name, state=state or "")

    @signals.task_failure.connect(weak=False)
    def _fail(sender=None, task_id: str = "", **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or "unknown"
        on_task_failure(task_id=task_id, task_name=name)

    @signals.task_retry.connect(weak=False)
    def _retry(sender=None, **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or "unknown"
        on_task_retry(task_name=name)
