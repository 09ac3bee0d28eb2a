"""Post-commit enqueue helpers and outbox for persistence → queue handoff.

Une ligne d'outbox est écrite dans la même transaction que la ligne qui motive le job
(ex. ChangeEvent → classify-impacts). Après le commit, le job est publié puis la ligne est
marquée publiée. Si la transaction est rollback, rien n'est publié ; si la publication
échoue après commit, la ligne reste en attente et `replay_outbox` la republie.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from prometheus_client import Counter
from sqlalchemy import event, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from sentinel.infra.queues import JobQueues
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import OutboxORM

POSTCOMMIT_ENQUEUE_TOTAL = Counter(
    "postcommit_enqueue_total",
    "Post-commit enqueue outcomes",
    ["result"],
)
OUTBOX_REPLAYED_TOTAL = Counter(
    "outbox_replayed_total",
    "Outbox rows re-dispatched by replay",
    ["result"],
)

_ACTIONS_KEY = "_post_commit_actions"

log = structlog.get_logger(__name__)


def _ensure_action_list(session: Session) -> list[Callable[[], None]]:
    """Ensure action list container exists on session.info and return it."""
    actions = session.info.get(_ACTIONS_KEY)
    if actions is None:
        actions = []
        session.info[_ACTIONS_KEY] = actions
        _bind_session_events(session)
    return actions


def _bind_session_events(session: Session) -> None:
    """Bind commit/rollback events once for the given session instance."""
    if session.info.get("_post_commit_bound"):
        return
    session.info["_post_commit_bound"] = True

    @event.listens_for(session, "after_commit")
    def _after_commit(_session: Session) -> None:
        actions = list(_session.info.get(_ACTIONS_KEY, []) or [])
        _session.info[_ACTIONS_KEY] = []
        for action in actions:
            # La transaction est déjà commitée : un échec de publication laisse la ligne
            # d'outbox en attente pour le rejeu, il ne doit pas remonter à l'appelant.
            try:
                action()
            except Exception as exc:
                POSTCOMMIT_ENQUEUE_TOTAL.labels(result="failed").inc()
                log.warning("post_commit_action_failed", error=str(exc), error_type=type(exc).__name__)
            else:
                POSTCOMMIT_ENQUEUE_TOTAL.labels(result="enqueued").inc()

    @event.listens_for(session, "after_rollback")
    def _after_rollback(_session: Session) -> None:
        if _session.info.get(_ACTIONS_KEY):
            POSTCOMMIT_ENQUEUE_TOTAL.labels(result="rolled_back").inc()
        _session.info[_ACTIONS_KEY] = []


def register_action_after_commit(
    session: Session,
    func: Callable[..., None],
    *args,
    **kwargs,
) -> None:
    """Register an arbitrary callable to run after a successful commit.

    La fonction est stockée dans la session et exécutée lors de l'évènement
    `after_commit`. En cas de rollback, elle est oubliée.
    """
    bound = functools.partial(func, *args, **kwargs)
    _ensure_action_list(session).append(bound)


def mark_dispatched(bind: Engine, outbox_id: str) -> None:
    """Marque une ligne d'outbox comme publiée (mise à jour conditionnelle)."""
    with bind.begin() as conn:
        conn.execute(
            update(OutboxORM)
            .where(OutboxORM.id == outbox_id, OutboxORM.dispatched_at.is_(None))
            .values(dispatched_at=datetime.now(UTC), attempts=OutboxORM.attempts + 1)
        )


def _dispatch(bind: Engine, queues: JobQueues, outbox_id: str, job: str, payload: dict[str, Any]) -> None:
    queues.send(job, payload)
    mark_dispatched(bind, outbox_id)


def enqueue_job_after_commit(
    session: Session,
    queues: JobQueues,
    job: str,
    payload: dict[str, Any],
) -> OutboxORM:
    """Écrit une ligne d'outbox dans la transaction courante et publie après commit.

    Args:
        session: Session SQLAlchemy portant la transaction métier.
        queues: Handle des files de jobs.
        job: Nom du job (voir `sentinel.infra.queues`).
        payload: Arguments nommés du job (sérialisables JSON).
    """
    row = OutboxORM(job=job, payload=dict(payload))
    session.add(row)
    session.flush()
    register_action_after_commit(session, _dispatch, session.get_bind(), queues, row.id, job, dict(payload))
    return row


def replay_outbox(
    factory: sessionmaker,
    queues: JobQueues,
    *,
    older_than: timedelta = timedelta(minutes=5),
    limit: int = 100,
    now: datetime | None = None,
) -> dict[str, int]:
    """Republie les lignes d'outbox non publiées plus anciennes que `older_than`.

    Retourne `{"dispatched": n, "failed": m}`.
    """
    cutoff = (now or datetime.now(UTC)) - older_than
    with session_scope(factory) as session:
        rows = session.scalars(
            select(OutboxORM)
            .where(OutboxORM.dispatched_at.is_(None))
            .order_by(OutboxORM.created_at)
            .limit(limit)
        ).all()
        pending = [
            (r.id, r.job, dict(r.payload or {}))
            for r in rows
            if _as_utc(r.created_at) <= cutoff
        ]
    dispatched = failed = 0
    bind = factory.kw["bind"]
    for outbox_id, job, payload in pending:
        try:
            _dispatch(bind, queues, outbox_id, job, payload)
        except Exception as exc:
            failed += 1
            OUTBOX_REPLAYED_TOTAL.labels(result="failed").inc()
            log.warning("outbox_replay_failed", outbox_id=outbox_id, job=job, error=str(exc))
            with bind.begin() as conn:
                conn.execute(
                    update(OutboxORM)
                    .where(OutboxORM.id == outbox_id)
                    .values(attempts=OutboxORM.attempts + 1)
                )
        else:
            dispatched += 1
            OUTBOX_REPLAYED_TOTAL.labels(result="dispatched").inc()
    if pending:
        log.info("outbox_replayed", dispatched=dispatched, failed=failed)
    return {"dispatched": dispatched, "failed": failed}


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


__all__ = [
    "enqueue_job_after_commit",
    "mark_dispatched",
    "register_action_after_commit",
    "replay_outbox",
]
