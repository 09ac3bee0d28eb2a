"""Génération des tâches de remédiation à partir d'impacts approuvés.

Le LLM rédige titre, description et estimation ; le propriétaire et l'échéance sont
recalculés de façon déterministe :
- propriétaire selon l'action (caméra -> HAMADA, écran -> EMAN, slides/politique -> EDITOR) ;
- échéance = maintenant (fuseau métier) + budget SLA de la sévérité.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from sentinel.domain.entities import (
    ImpactAssessment,
    PredictedAction,
    Severity,
    TaskBundle,
    TaskOwner,
)
from sentinel.infra.llm.structured import StructuredLLM

log = structlog.get_logger(__name__)

TASK_STAGE = "generate_tasks"
TASK_TEMPERATURE = 0.3

DEFAULT_SLA_HOURS: dict[str, int] = {"SEV1": 8, "SEV2": 72, "SEV3": 168}

OWNER_BY_ACTION: dict[PredictedAction, TaskOwner] = {
    PredictedAction.FACE_RESHOOT: TaskOwner.HAMADA,
    PredictedAction.SCREEN_REDO: TaskOwner.EMAN,
    PredictedAction.SLIDES_EDIT: TaskOwner.EDITOR,
    PredictedAction.POLICY_NOTE: TaskOwner.EDITOR,
}

SYSTEM_PROMPT = (
    "You are a project manager for course content updates. Generate specific, actionable tasks "
    "with realistic effort estimates. Always respond with valid JSON."
)


def owner_for_action(action: PredictedAction | str) -> TaskOwner:
    return OWNER_BY_ACTION[PredictedAction(action)]


def compute_due_date(
    severity: Severity | str,
    sla_hours: Mapping[str, int],
    now: datetime,
    tz: str = "Africa/Cairo",
) -> datetime:
    """`now` + budget SLA de la sévérité, exprimé dans le fuseau métier."""
    sev = Severity(severity).value
    hours = sla_hours.get(sev, DEFAULT_SLA_HOURS[sev])
    return now.astimezone(ZoneInfo(tz)) + timedelta(hours=int(hours))


@dataclass(frozen=True)
class PlannedTask:
    action: PredictedAction
    title: str
    description: str
    owner: TaskOwner
    due_date: datetime
    estimated_hours: float


def build_task_messages(
    impacts: Sequence[ImpactAssessment],
    sla_hours: Mapping[str, int],
    tz: str,
) -> list[dict[str, str]]:
    user = (
        "Generate concrete tasks for these course content impacts.\n\n"
        f"Impacts:\n{json.dumps([i.model_dump(mode='json') for i in impacts], indent=2, ensure_ascii=False)}\n\n"
        f"SLA Configuration (severity: hours):\n{json.dumps(dict(sla_hours), indent=2)}\n\n"
        f"Timezone: {tz}\n\n"
        "Task owners:\n"
        "- HAMADA: Face recordings, camera work\n"
        "- EMAN: Screen recordings, demo videos\n"
        "- EDITOR: Slides, worksheets, policy notes\n\n"
        "Each task has action, title, description, owner, due_date and estimated_hours."
    )
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


class TaskGenerator:
    def __init__(self, llm: StructuredLLM, tz: str = "Africa/Cairo") -> None:
        self.llm = llm
        self.tz = tz

    def generate(
        self,
        impact: ImpactAssessment,
        sla_hours: Mapping[str, int],
        now: datetime,
    ) -> list[PlannedTask]:
        """Rédige les tâches d'un impact ; lève LLMSchemaError si la sortie est invalide."""
        bundle = self.llm.complete(
            TASK_STAGE,
            build_task_messages([impact], sla_hours, self.tz),
            TaskBundle,
            temperature=TASK_TEMPERATURE,
        )
        due = compute_due_date(impact.severity, sla_hours, now, self.tz)
        planned: list[PlannedTask] = []
        for draft in bundle.tasks:
            owner = owner_for_action(draft.action)
            if draft.owner is not None and draft.owner is not owner:
                log.debug("task_owner_overridden", proposed=draft.owner.value, owner=owner.value)
            planned.append(
                PlannedTask(
                    action=draft.action,
                    title=draft.title,
                    description=draft.description,
                    owner=owner,
                    due_date=due,
                    estimated_hours=draft.estimated_hours,
                )
            )
        return planned
