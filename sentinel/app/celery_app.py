"""
Module: celery_app.

But: Initialiser l'instance Celery, ses trois files (impacts, tasks, notifications),
le planning beat (balayage quotidien, digest hebdomadaire, rejeu de l'outbox) et
l'instrumentation Prometheus des tâches.
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init, worker_process_shutdown
from kombu import Queue

from sentinel.core.logging import setup_logging
from sentinel.core.settings import get_settings
from sentinel.infra.monitoring.celery_exporter import bind_celery_signals
from sentinel.infra.queues import QUEUE_FOR_JOB, CeleryJobQueues

settings = get_settings()

celery_app = Celery(
    "sentinel",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["sentinel.tasks.impact_tasks", "sentinel.tasks.monitoring_tasks"],
)
celery_app.config_from_object("sentinel.app.celeryconfig")
celery_app.conf.timezone = settings.BUSINESS_TIMEZONE
celery_app.conf.task_queues = [Queue(name) for name in ("impacts", "tasks", "notifications", "scheduled")]
celery_app.conf.task_default_queue = "scheduled"
celery_app.conf.task_routes = {job: {"queue": queue} for job, queue in QUEUE_FOR_JOB.items()}
celery_app.conf.beat_schedule = {
    "daily-monitoring-sweep": {
        "task": "sentinel.tasks.daily_sweep",
        "schedule": crontab(hour=9, minute=30),
    },
    "weekly-digest": {
        "task": "sentinel.tasks.weekly_digest",
        "schedule": crontab(hour=9, minute=0, day_of_week=1),
    },
    "replay-outbox": {
        "task": "sentinel.tasks.replay_outbox",
        "schedule": crontab(minute="*/10"),
    },
}

bind_celery_signals(celery_app)


def celery_queues(app: Celery) -> CeleryJobQueues:
    return CeleryJobQueues(app)


@worker_process_init.connect(weak=False)
def _open_container(**_kw) -> None:  # type: ignore[no-untyped-def]
    from sentinel.core.container import container

    setup_logging()
    container.startup()


@worker_process_shutdown.connect(weak=False)
def _close_container(**_kw) -> None:  # type: ignore[no-untyped-def]
    from sentinel.core.container import container

    container.shutdown()


__all__ = ["celery_app", "celery_queues"]
