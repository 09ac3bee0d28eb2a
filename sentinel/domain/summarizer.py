"""Résumé structuré et bilingue d'un contenu fournisseur brut."""

from __future__ import annotations

import structlog

from sentinel.domain.entities import ChangeSummary
from sentinel.infra.llm.structured import StructuredLLM

log = structlog.get_logger(__name__)

SUMMARY_STAGE = "summarize"
SUMMARY_TEMPERATURE = 0.1
RAW_MAX_CHARS = 12000

SYSTEM_PROMPT = (
    "You are an expert AI tool analyst specializing in educational content impact assessment. "
    "Always respond with valid JSON."
)


def build_summary_messages(raw_content: str, vendor: str) -> list[dict[str, str]]:
    user = (
        f"Analyze this AI tool update from {vendor} and provide a structured summary.\n\n"
        f"Raw content:\n{raw_content[:RAW_MAX_CHARS]}\n\n"
        "Fields: summary (concise English summary), change_type "
        "(capability|ui|policy|pricing|api|deprecation), entities (affected features), "
        "risks (potential risks for course content), summary_ar (Arabic translation of the summary)."
    )
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


class ChangeSummarizer:
    def __init__(self, llm: StructuredLLM) -> None:
        self.llm = llm

    async def summarize(self, raw_content: str, vendor: str) -> ChangeSummary:
        """Lève LLMSchemaError si la réponse ne respecte pas `ChangeSummary`."""
        summary = await self.llm.acomplete(
            SUMMARY_STAGE,
            build_summary_messages(raw_content, vendor),
            ChangeSummary,
            temperature=SUMMARY_TEMPERATURE,
        )
        log.debug("change_summarized", vendor=vendor, change_type=summary.change_type.value)
        return summary
