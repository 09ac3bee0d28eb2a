"""
Routes des impacts : listes et décisions humaines.

Une décision n'est possible que depuis PENDING (409 sinon) ; l'approbation met en file
la génération de tâches.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinel.api.deps import get_container, get_operator, get_session
from sentinel.api.schemas import ImpactOut
from sentinel.core.container import Container
from sentinel.infra.repo.repositories import ImpactRepo

router = APIRouter(prefix="/api/impacts", tags=["impacts"])


@router.get("", response_model=list[ImpactOut])
def list_impacts(session: Session = Depends(get_session)):
    return [ImpactOut.model_validate(i) for i in ImpactRepo(session).list_all()]


@router.get("/pending", response_model=list[ImpactOut])
def list_pending_impacts(session: Session = Depends(get_session)):
    return [ImpactOut.model_validate(i) for i in ImpactRepo(session).list_pending()]


@router.get("/{impact_id}", response_model=ImpactOut)
def get_impact(impact_id: str, session: Session = Depends(get_session)):
    return ImpactOut.model_validate(ImpactRepo(session).require(impact_id))


@router.post("/{impact_id}/approve", response_model=ImpactOut)
def approve_impact(
    impact_id: str,
    operator: str = Depends(get_operator),
    container: Container = Depends(get_container),
):
    return ImpactOut.model_validate(container.impact_workflow().decide(impact_id, True, operator))


@router.post("/{impact_id}/reject", response_model=ImpactOut)
def reject_impact(
    impact_id: str,
    operator: str = Depends(get_operator),
    container: Container = Depends(get_container),
):
    return ImpactOut.model_validate(container.impact_workflow().decide(impact_id, False, operator))
