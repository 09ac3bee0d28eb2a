"""Jobs planifiés (beat) : balayage quotidien, digest hebdomadaire, rejeu de l'outbox.

Les deux premiers sont protégés par un verrou « exécution en cours » : un déclenchement
pendant qu'un passage précédent tourne encore est ignoré.
"""

from __future__ import annotations

from datetime import timedelta

from sentinel.app.celery_app import celery_app
from sentinel.core.container import container
from sentinel.domain.monitoring import SWEEP_GUARD
from sentinel.infra.ops.post_commit import replay_outbox as replay_outbox_rows

DAILY_SWEEP = "sentinel.tasks.daily_sweep"
WEEKLY_DIGEST = "sentinel.tasks.weekly_digest"
REPLAY_OUTBOX = "sentinel.tasks.replay_outbox"


@celery_app.task(name=DAILY_SWEEP)
def daily_sweep() -> dict:
    with container.run_guard.hold(SWEEP_GUARD) as acquired:
        if not acquired:
            return {"status": "skipped_overlap"}
        report = container.run(container.monitoring().run_sweep("full"))
    return {"status": "ok", **report.model_dump(mode="json", exclude={"sources"})}


@celery_app.task(name=WEEKLY_DIGEST)
def weekly_digest() -> dict:
    with container.run_guard.hold("weekly_digest") as acquired:
        if not acquired:
            return {"status": "skipped_overlap"}
        digest = container.notifications().send_weekly_digest()
    return {"status": "ok", "changes": digest.total}


@celery_app.task(name=REPLAY_OUTBOX)
def replay_outbox(older_than_minutes: int = 5) -> dict:
    container.startup()
    return replay_outbox_rows(
        container.session_factory,
        container.queues,  # type: ignore[arg-type]
        older_than=timedelta(minutes=older_than_minutes),
    )
