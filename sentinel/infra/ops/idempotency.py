"""Job idempotency and failure tracking helpers (Redis or in-memory).

- IdempotencyStore: `acquire(key, ttl)` to deduplicate job execution (ex. une seule
  alerte SEV1 par ChangeEvent dans la fenêtre TTL).
- FailureTracker: counts failures per job id and pushes a dead-letter entry when a
  threshold is exceeded.

Idempotency key rule:
    job:{name}:{param_significant}

Both use Redis when `REDIS_URL` is set, otherwise an in-memory store suitable for
unit tests and single-process dev runs.
"""

from __future__ import annotations

import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import redis
import structlog

from sentinel.app.metrics import JOB_SKIPPED_OVERLAP
from sentinel.infra.monitoring.celery_exporter import DLQ_TOTAL, TASK_FAILURE

log = structlog.get_logger(__name__)


def make_idem_key(job: str, *parts: str) -> str:
    """Compose a stable idempotency key following `job:{name}:{param}` rule."""
    safe_parts = [str(p).replace("\n", " ").replace("\r", " ") for p in parts]
    suffix = ":".join(safe_parts)
    return f"job:{job}:{suffix}" if suffix else f"job:{job}"


class _InMemoryKV:
    def __init__(self) -> None:
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool:
        now = time.time()
        exp = self._exp.get(key)
        if exp is not None and exp <= now:
            self._exp.pop(key, None)
            self._vals.pop(key, None)
        if nx and key in self._vals:
            return False
        self._vals[key] = value
        if ex:
            self._exp[key] = now + int(ex)
        return True

    def incr(self, key: str) -> int:
        v = int(self._vals.get(key, "0")) + 1
        self._vals[key] = str(v)
        return v

    def rpush(self, list_key: str, value: str) -> None:
        self._lists.setdefault(list_key, []).append(value)

    def lrange(self, list_key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(list_key, [])
        return list(items)[start:] if end == -1 else list(items)[start : end + 1]

    def delete(self, key: str) -> int:
        self._exp.pop(key, None)
        return 1 if self._vals.pop(key, None) is not None else 0


def _kv_client(url: str | None = None):  # type: ignore[no-untyped-def]
    url = url or os.getenv("REDIS_URL")
    if not url:
        return _InMemoryKV()
    return redis.Redis.from_url(url, decode_responses=True)


@dataclass
class IdempotencyStore:
    """Store pour l'idempotence des jobs avec TTL."""

    ttl_seconds: int = 3600
    client: object | None = field(default=None)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = _kv_client()

    def acquire(self, key: str, ttl: int | None = None) -> bool:
        """Acquiert une clé d'idempotence ; False si déjà prise dans la fenêtre TTL."""
        ttl = int(ttl or self.ttl_seconds)
        return bool(self.client.set(key, "1", nx=True, ex=ttl))  # type: ignore[attr-defined]

    def release(self, key: str) -> None:
        self.client.delete(key)  # type: ignore[attr-defined]


class RunGuard:
    """Verrou « exécution en cours » par job planifié (TTL = durée max d'un passage).

    Un déclenchement qui arrive pendant qu'un passage précédent tourne est ignoré.
    """

    def __init__(self, store: IdempotencyStore, ttl_seconds: int = 3600) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    @contextmanager
    def hold(self, job: str) -> Iterator[bool]:
        key = make_idem_key("running", job)
        acquired = self.store.acquire(key, ttl=self.ttl_seconds)
        if not acquired:
            JOB_SKIPPED_OVERLAP.labels(job=job).inc()
            log.warning("job_skipped_overlap", job=job)
        try:
            yield acquired
        finally:
            if acquired:
                self.store.release(key)


@dataclass
class FailureTracker:
    """Tracker pour les échecs de jobs avec DLQ."""

    client: object | None = field(default=None)
    dlq_list: str = "celery:dlq"
    max_failures: int = 3

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = _kv_client()

    def on_failure(self, job: str, job_id: str, reason: str = "max_failures") -> bool:
        """Record a failure and push to DLQ if threshold exceeded.

        DLQ entry is a JSON with {job, job_id, reason, ts}.
        """
        TASK_FAILURE.labels(task=job).inc()
        count = int(self.client.incr(f"celery:fail:{job}:{job_id}"))  # type: ignore[attr-defined]
        if count <= self.max_failures:
            return False
        payload = json.dumps({"job": job, "job_id": job_id, "reason": reason, "ts": time.time()})
        self.client.rpush(self.dlq_list, payload)  # type: ignore[attr-defined]
        DLQ_TOTAL.labels(queue=self.dlq_list).inc()
        log.error("job_dead_lettered", job=job, job_id=job_id, failures=count, reason=reason)
        return True

    def dead_letters(self) -> list[dict]:
        return [json.loads(x) for x in self.client.lrange(self.dlq_list, 0, -1)]  # type: ignore[attr-defined]
