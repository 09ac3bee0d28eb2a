"""Plan de correctif vidéo (≤ 90 s) pour une tâche."""

from __future__ import annotations

from sentinel.domain.entities import PatchScript, PredictedAction
from sentinel.infra.llm.structured import StructuredLLM

PATCH_STAGE = "patch_script"
PATCH_TEMPERATURE = 0.4

SYSTEM_PROMPT = (
    "You are a video production specialist for course content. Create concise, actionable "
    "scripts. Always respond with valid JSON."
)

FOCUS_BY_ACTION = {
    PredictedAction.FACE_RESHOOT: "Focus on spoken content updates.",
    PredictedAction.SCREEN_REDO: "Focus on click-through demonstrations.",
}


def build_patch_messages(task_description: str, action: PredictedAction | str) -> list[dict[str, str]]:
    action = PredictedAction(action)
    user = (
        "Create a patch script outline of at most 90 seconds for this course update task.\n\n"
        f"Task: {task_description}\nAction Type: {action.value}\n\n"
        f"{FOCUS_BY_ACTION.get(action, '')}"
    ).strip()
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


class PatchScriptWriter:
    def __init__(self, llm: StructuredLLM) -> None:
        self.llm = llm

    def write(self, task_description: str, action: PredictedAction | str) -> PatchScript:
        return self.llm.complete(
            PATCH_STAGE,
            build_patch_messages(task_description, action),
            PatchScript,
            temperature=PATCH_TEMPERATURE,
        )
