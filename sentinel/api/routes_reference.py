"""
Routes des référentiels : budgets SLA par sévérité et règles de décision.

Les règles actives sont appliquées au post-traitement de la classification, dans
l'ordre de création ; la première qui correspond l'emporte.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinel.api.deps import get_session
from sentinel.api.schemas import DecisionRuleIn, DecisionRuleOut, SlaOut, SlaUpsertRequest
from sentinel.domain.entities import Severity
from sentinel.infra.repo.repositories import CatalogRepo

router = APIRouter(prefix="/api", tags=["reference"])


@router.get("/sla", response_model=list[SlaOut])
def list_sla(session: Session = Depends(get_session)):
    return [SlaOut.model_validate(r) for r in CatalogRepo(session).list_sla()]


@router.put("/sla/{severity}", response_model=SlaOut)
def upsert_sla(severity: Severity, payload: SlaUpsertRequest, session: Session = Depends(get_session)):
    row = CatalogRepo(session).upsert_sla(severity.value, payload.patch_within_hours, payload.comms)
    return SlaOut.model_validate(row)


@router.get("/rules", response_model=list[DecisionRuleOut])
def list_rules(session: Session = Depends(get_session)):
    return [DecisionRuleOut.model_validate(r) for r in CatalogRepo(session).list_rules()]


@router.post("/rules", response_model=DecisionRuleOut, status_code=201)
def create_rule(payload: DecisionRuleIn, session: Session = Depends(get_session)):
    row = CatalogRepo(session).create_rule(
        payload.pattern,
        payload.action.value,
        payload.severity.value,
        modules=payload.modules,
        notes=payload.notes,
        is_active=payload.is_active,
    )
    return DecisionRuleOut.model_validate(row)
