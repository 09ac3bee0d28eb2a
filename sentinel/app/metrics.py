"""
Métriques Prometheus pour l'application.

Ce module définit les métriques HTTP et les métriques métier du pipeline de surveillance
(sources, événements de changement, impacts, tâches, erreurs de schéma LLM).
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Pipeline de surveillance
SOURCES_TOTAL = Counter(
    "sentinel_sources_total",
    "Sources handled by a monitoring run, by outcome",
    ["mode", "outcome"],
)
SOURCE_FETCH_LATENCY = Histogram(
    "sentinel_source_fetch_seconds",
    "Latency of source fetches",
    ["type"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0],
)
CHANGE_EVENTS_CREATED = Counter(
    "sentinel_change_events_created_total",
    "Change events persisted",
)
DUPLICATES_SKIPPED = Counter(
    "sentinel_duplicates_skipped_total",
    "Fetched items suppressed by fingerprint dedup",
)
IMPACTS_CREATED = Counter(
    "sentinel_impacts_created_total",
    "Impacts persisted by the classifier",
    ["severity"],
)
IMPACTS_AUTO_APPROVED = Counter(
    "sentinel_impacts_auto_approved_total",
    "Impacts approved at creation by policy",
)
IMPACT_DECISIONS = Counter(
    "sentinel_impact_decisions_total",
    "Human impact decisions",
    ["status"],
)
TASKS_CREATED = Counter(
    "sentinel_tasks_created_total",
    "Remediation tasks persisted",
    ["owner"],
)
LLM_SCHEMA_FAILURES = Counter(
    "sentinel_llm_schema_failures_total",
    "LLM outputs rejected by schema validation",
    ["stage"],
)
LLM_TOKENS = Counter(
    "sentinel_llm_tokens_total",
    "Tokens reported by the LLM provider, by stage",
    ["stage", "kind"],
)
JOB_SKIPPED_OVERLAP = Counter(
    "sentinel_job_skipped_overlap_total",
    "Scheduled runs skipped because a previous run was still active",
    ["job"],
)


@metrics_router.get("/metrics")
def metrics():
    """Expose les métriques Prometheus au format texte."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware mesurant le nombre de requêtes et la latence par route."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
