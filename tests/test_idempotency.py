"""Tests pour le module d'idempotence.

Clés d'idempotence, store clé/valeur en mémoire, verrou d'exécution des jobs planifiés
et suivi des échecs avec DLQ.
"""

from __future__ import annotations

import time

import redis
from prometheus_client import REGISTRY

from sentinel.infra.ops.idempotency import (
    FailureTracker,
    IdempotencyStore,
    RunGuard,
    _InMemoryKV,
    _kv_client,
    make_idem_key,
)


def test_make_idem_key() -> None:
    """Teste la composition des clés d'idempotence."""
    assert make_idem_key("sev1_alert", "evt-1") == "job:sev1_alert:evt-1"
    assert make_idem_key("unit", "line\nbreak", "b") == "job:unit:line break:b"
    assert make_idem_key("running", "daily_sweep") == "job:running:daily_sweep"
    assert make_idem_key("daily_sweep") == "job:daily_sweep"


def test_in_memory_kv_basic_operations() -> None:
    kv = _InMemoryKV()
    assert kv.set("k", "1", nx=True, ex=60) is True
    assert kv.set("k", "2", nx=True, ex=60) is False
    assert kv.incr("n") == 1
    assert kv.incr("n") == 2
    kv.rpush("l", "a")
    kv.rpush("l", "b")
    assert kv.lrange("l", 0, -1) == ["a", "b"]
    assert kv.lrange("l", 0, 0) == ["a"]
    assert kv.delete("k") == 1
    assert kv.delete("k") == 0


def test_in_memory_kv_expiration() -> None:
    """Une clé expirée peut être reprise."""
    kv = _InMemoryKV()
    assert kv.set("k", "1", nx=True, ex=60)
    kv._exp["k"] = time.time() - 1
    assert kv.set("k", "1", nx=True, ex=60)


def test_kv_client_selection(monkeypatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert isinstance(_kv_client(), _InMemoryKV)
    assert isinstance(_kv_client("redis://localhost:6379/0"), redis.Redis)


def test_idempotency_store_acquire_release() -> None:
    store = IdempotencyStore(client=_InMemoryKV())
    key = make_idem_key("sev1_alert", "evt-1")
    assert store.acquire(key, ttl=60)
    assert not store.acquire(key, ttl=60)
    store.release(key)
    assert store.acquire(key)


def test_run_guard_skips_overlapping_run() -> None:
    guard = RunGuard(IdempotencyStore(client=_InMemoryKV()))
    before = REGISTRY.get_sample_value("sentinel_job_skipped_overlap_total", {"job": "daily_sweep"}) or 0.0

    with guard.hold("daily_sweep") as first:
        assert first
        with guard.hold("daily_sweep") as second:
            assert not second

    # Verrou libéré en sortie du premier passage
    with guard.hold("daily_sweep") as third:
        assert third
    after = REGISTRY.get_sample_value("sentinel_job_skipped_overlap_total", {"job": "daily_sweep"})
    assert after == before + 1


def test_failure_tracker_dead_letters_after_threshold() -> None:
    tracker = FailureTracker(client=_InMemoryKV(), max_failures=2)
    assert not tracker.on_failure("sentinel.tasks.classify_impacts", "evt-1", reason="RuntimeError")
    assert not tracker.on_failure("sentinel.tasks.classify_impacts", "evt-1", reason="RuntimeError")
    assert tracker.on_failure("sentinel.tasks.classify_impacts", "evt-1", reason="RuntimeError")

    [entry] = tracker.dead_letters()
    assert entry["job"] == "sentinel.tasks.classify_impacts"
    assert entry["job_id"] == "evt-1"
    assert entry["reason"] == "RuntimeError"
