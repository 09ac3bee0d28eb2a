"""
Routes de déclenchement du pipeline : exécution manuelle et webhook.

- `POST /api/monitoring/manual-run` : seul point d'entrée synchrone ; renvoie les compteurs
  agrégés. Les problèmes propres à une source n'en font jamais une erreur HTTP.
- `POST /api/webhook/change-detected` : met en file la classification d'un ChangeEvent
  connu d'un système externe.
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from sentinel.api.deps import get_container, get_session
from sentinel.api.schemas import ManualRunRequest, ManualRunResponse, WebhookRequest, WebhookResponse
from sentinel.core.container import Container
from sentinel.infra.ops.post_commit import enqueue_job_after_commit
from sentinel.infra.queues import CLASSIFY_IMPACTS
from sentinel.infra.repo.repositories import ChangeEventRepo

router = APIRouter(prefix="/api", tags=["monitoring"])


@router.post("/monitoring/manual-run", response_model=ManualRunResponse, response_model_by_alias=True)
async def manual_run(
    payload: ManualRunRequest | None = Body(default=None),
    container: Container = Depends(get_container),
):
    """Exécute la surveillance maintenant (`probe` par défaut : collecte et comptage seulement)."""
    mode = (payload.mode if payload else None) or container.settings.MANUAL_RUN_MODE
    report = await container.monitoring().manual_run(mode)
    return ManualRunResponse(
        message="Manual monitoring completed",
        mode=report.mode,
        sources_processed=report.sources_processed,
        changes_found=report.changes_found,
        events_created=report.events_created,
        total_active_sources=report.total_active_sources,
    )


@router.post("/webhook/change-detected", response_model=WebhookResponse, status_code=202)
def change_detected(
    payload: WebhookRequest,
    container: Container = Depends(get_container),
    session: Session = Depends(get_session),
):
    """Met en file classify-impacts pour un ChangeEvent existant (404 sinon)."""
    event = ChangeEventRepo(session).require(payload.change_event_id)
    enqueue_job_after_commit(session, container.queues, CLASSIFY_IMPACTS, {"change_event_id": event.id})  # type: ignore[arg-type]
    return WebhookResponse(message="Webhook processed", change_event_id=event.id)
