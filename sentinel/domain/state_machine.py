"""
Machines à états des impacts et des tâches.

Impacts : PENDING -> APPROVED | REJECTED (états terminaux).
Tâches  : OPEN -> IN_PROGRESS <-> BLOCKED, IN_PROGRESS -> DONE (terminal).

La politique d'auto-approbation est aussi définie ici : un impact de confiance strictement
supérieure au seuil, ou de sévérité SEV1, est approuvé dès sa création.
"""

from __future__ import annotations

from sentinel.domain.entities import ImpactStatus, Severity, TaskStatus
from sentinel.domain.errors import InvalidTransitionError

DEFAULT_AUTO_APPROVE_CONFIDENCE = 0.8

IMPACT_TRANSITIONS: dict[ImpactStatus, frozenset[ImpactStatus]] = {
    ImpactStatus.PENDING: frozenset({ImpactStatus.APPROVED, ImpactStatus.REJECTED}),
    ImpactStatus.APPROVED: frozenset(),
    ImpactStatus.REJECTED: frozenset(),
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.BLOCKED, TaskStatus.DONE}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.DONE: frozenset(),
}


def can_transition_impact(current: ImpactStatus | str, target: ImpactStatus | str) -> bool:
    return ImpactStatus(target) in IMPACT_TRANSITIONS[ImpactStatus(current)]


def ensure_impact_transition(current: ImpactStatus | str, target: ImpactStatus | str) -> None:
    """Lève `InvalidTransitionError` si la transition d'impact est interdite."""
    if not can_transition_impact(current, target):
        raise InvalidTransitionError("impact", ImpactStatus(current).value, ImpactStatus(target).value)


def can_transition_task(current: TaskStatus | str, target: TaskStatus | str) -> bool:
    return TaskStatus(target) in TASK_TRANSITIONS[TaskStatus(current)]


def ensure_task_transition(current: TaskStatus | str, target: TaskStatus | str) -> None:
    """Lève `InvalidTransitionError` si la transition de tâche est interdite."""
    if not can_transition_task(current, target):
        raise InvalidTransitionError("task", TaskStatus(current).value, TaskStatus(target).value)


def should_auto_approve(
    confidence: float,
    severity: Severity | str,
    threshold: float = DEFAULT_AUTO_APPROVE_CONFIDENCE,
) -> bool:
    """Confiance > seuil OU sévérité SEV1."""
    return float(confidence) > threshold or Severity(severity) is Severity.SEV1
