"""
Routes des tâches : listes filtrées, retards SLA, progression et script de correctif.

Transitions autorisées : OPEN -> IN_PROGRESS, IN_PROGRESS <-> BLOCKED, IN_PROGRESS -> DONE.
Sans `status` (ou avec le statut courant), seuls progress / evidenceUrl / blockReason changent.
Toute autre transition renvoie 409 ; BLOCKED sans `blockReason` ou une progression hors
IN_PROGRESS renvoie 422.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinel.api.deps import get_container, get_session
from sentinel.api.schemas import PatchScriptOut, TaskOut, TaskUpdateRequest
from sentinel.core.container import Container
from sentinel.domain.entities import TaskOwner, TaskStatus
from sentinel.infra.repo.repositories import TaskRepo

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskOut])
def list_tasks(
    status: TaskStatus | None = None,
    owner: TaskOwner | None = None,
    session: Session = Depends(get_session),
):
    rows = TaskRepo(session).search(
        status=status.value if status else None,
        owner=owner.value if owner else None,
    )
    return [TaskOut.model_validate(t) for t in rows]


@router.get("/overdue", response_model=list[TaskOut])
def list_overdue_tasks(session: Session = Depends(get_session)):
    """Tâches non terminées dont l'échéance SLA est dépassée."""
    return [TaskOut.model_validate(t) for t in TaskRepo(session).overdue(datetime.now(UTC))]


@router.get("/{task_id}", response_model=TaskOut)
def get_task(task_id: str, session: Session = Depends(get_session)):
    return TaskOut.model_validate(TaskRepo(session).require(task_id))


@router.put("/{task_id}", response_model=TaskOut)
@router.patch("/{task_id}", response_model=TaskOut)
def update_task(task_id: str, payload: TaskUpdateRequest, container: Container = Depends(get_container)):
    row = container.task_workflow().transition(
        task_id,
        payload.status,
        progress=payload.progress,
        evidence_url=payload.evidence_url,
        block_reason=payload.block_reason,
    )
    return TaskOut.model_validate(row)


@router.post("/{task_id}/patch-script", response_model=PatchScriptOut)
def patch_script(task_id: str, container: Container = Depends(get_container)):
    script = container.task_workflow().patch_script(task_id)
    return PatchScriptOut.model_validate(script.model_dump())
