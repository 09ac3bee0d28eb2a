"""Lecture des événements de changement et statistiques du tableau de bord."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sentinel.api.deps import get_session
from sentinel.api.schemas import ChangeEventOut, DashboardStats
from sentinel.infra.repo.repositories import CatalogRepo, ChangeEventRepo, ImpactRepo, TaskRepo

router = APIRouter(prefix="/api", tags=["events"])

RECENT_WINDOW = timedelta(days=7)


@router.get("/events", response_model=list[ChangeEventOut])
def list_change_events(limit: int = Query(default=50, ge=1, le=500), session: Session = Depends(get_session)):
    return [ChangeEventOut.model_validate(e) for e in ChangeEventRepo(session).recent(limit)]


@router.get("/events/{event_id}", response_model=ChangeEventOut)
def get_change_event(event_id: str, session: Session = Depends(get_session)):
    return ChangeEventOut.model_validate(ChangeEventRepo(session).require(event_id))


@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(session: Session = Depends(get_session)):
    """Compteurs : fournisseurs, sources actives, changements (7 j), impacts en attente, tâches ouvertes."""
    catalog = CatalogRepo(session)
    since = datetime.now(UTC) - RECENT_WINDOW
    return DashboardStats(
        total_vendors=catalog.count_vendors(),
        active_sources=catalog.count_active_sources(),
        recent_changes=ChangeEventRepo(session).count_since(since),
        pending_impacts=ImpactRepo(session).count_pending(),
        open_tasks=TaskRepo(session).count_open(),
    )
