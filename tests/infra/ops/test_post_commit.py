"""Tests unitaires pour l'enqueue post-commit et l'outbox (persistance → files).

Vérifie que les actions enregistrées ne sont exécutées qu'après un commit, jamais après
un rollback, et que les lignes d'outbox non publiées sont rejouées.
"""

from __future__ import annotations

import contextlib
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import create_engine, select, text
from sqlalchemy.orm import Session

from sentinel.infra.ops.post_commit import (
    enqueue_job_after_commit,
    register_action_after_commit,
    replay_outbox,
)
from sentinel.infra.queues import CLASSIFY_IMPACTS, InMemoryJobQueues
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import OutboxORM

PAYLOAD = {"change_event_id": "evt-1"}


class FlakyQueues(InMemoryJobQueues):
    """Files en mémoire dont la publication échoue tant que `failing` est vrai."""

    def __init__(self, failing: bool = True) -> None:
        super().__init__()
        self.failing = failing

    def send(self, job: str, payload: dict[str, Any]) -> None:
        if self.failing:
            raise ConnectionError("broker unreachable")
        super().send(job, payload)


def _make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    return Session(bind=engine)


def _outbox(factory) -> list[tuple[str, dict, int, datetime | None]]:
    with session_scope(factory) as session:
        return [(r.job, r.payload, r.attempts, r.dispatched_at) for r in session.scalars(select(OutboxORM))]


def _later() -> datetime:
    return datetime.now(UTC) + timedelta(minutes=10)


def test_register_action_runs_after_commit():
    """Exécute l'action après commit et pas avant."""
    ran: dict[str, int] = {"x": 0}

    def action() -> None:
        ran["x"] += 1

    s = _make_session()
    register_action_after_commit(s, action)
    # Avant commit: rien ne s'exécute
    assert ran["x"] == 0
    with contextlib.suppress(Exception):
        s.commit()
    # Après commit: l'action est exécutée
    assert ran["x"] == 1


def test_register_action_cleared_on_rollback():
    """Purge les actions sur rollback et ne les exécute pas ensuite."""
    ran: dict[str, int] = {"x": 0}

    def action() -> None:
        ran["x"] += 1

    s = _make_session()
    register_action_after_commit(s, action)
    s.begin()
    s.execute(text("SELECT 1"))
    s.rollback()
    assert ran["x"] == 0
    # L'action a été purgée suite au rollback; un commit ultérieur ne la joue pas
    with contextlib.suppress(Exception):
        s.commit()
    assert ran["x"] == 0


def test_outbox_row_is_published_after_commit(factory, queues):
    with session_scope(factory) as session:
        enqueue_job_after_commit(session, queues, CLASSIFY_IMPACTS, PAYLOAD)
        assert queues.sent == []

    assert queues.sent == [(CLASSIFY_IMPACTS, PAYLOAD)]
    [(job, payload, attempts, dispatched_at)] = _outbox(factory)
    assert (job, payload, attempts) == (CLASSIFY_IMPACTS, PAYLOAD, 1)
    assert dispatched_at is not None


def test_rollback_discards_outbox_row_and_job(factory, queues):
    with pytest.raises(RuntimeError), session_scope(factory) as session:
        enqueue_job_after_commit(session, queues, CLASSIFY_IMPACTS, PAYLOAD)
        raise RuntimeError("business write failed")

    assert queues.sent == []
    assert _outbox(factory) == []


def test_failed_publication_is_replayed(factory):
    flaky = FlakyQueues()
    with session_scope(factory) as session:
        enqueue_job_after_commit(session, flaky, CLASSIFY_IMPACTS, PAYLOAD)

    # Le commit a eu lieu : la ligne reste en attente
    [(_, _, attempts, dispatched_at)] = _outbox(factory)
    assert (attempts, dispatched_at) == (0, None)

    flaky.failing = False
    assert replay_outbox(factory, flaky, now=_later()) == {"dispatched": 1, "failed": 0}
    assert flaky.sent == [(CLASSIFY_IMPACTS, PAYLOAD)]
    assert _outbox(factory)[0][3] is not None
    # Déjà publiée : rien à rejouer
    assert replay_outbox(factory, flaky, now=_later()) == {"dispatched": 0, "failed": 0}


def test_replay_ignores_recent_rows(factory):
    flaky = FlakyQueues()
    with session_scope(factory) as session:
        enqueue_job_after_commit(session, flaky, CLASSIFY_IMPACTS, PAYLOAD)
    flaky.failing = False

    assert replay_outbox(factory, flaky, older_than=timedelta(minutes=5)) == {"dispatched": 0, "failed": 0}
    assert flaky.sent == []


def test_replay_failure_counts_attempts(factory):
    flaky = FlakyQueues()
    with session_scope(factory) as session:
        enqueue_job_after_commit(session, flaky, CLASSIFY_IMPACTS, PAYLOAD)

    assert replay_outbox(factory, flaky, now=_later()) == {"dispatched": 0, "failed": 1}
    [(_, _, attempts, dispatched_at)] = _outbox(factory)
    assert (attempts, dispatched_at) == (1, None)
