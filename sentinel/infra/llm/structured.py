# ============================================================
# Module : sentinel/infra/llm/structured.py
# Objet  : Frontière LLM -> JSON validé par un schéma Pydantic.
# Invariants :
#  - Aucune sortie partielle n'est renvoyée : soit un modèle validé, soit LLMSchemaError.
#  - Les erreurs de transport du fournisseur ne sont pas converties (elles remontent).
# ============================================================
"""Appel structuré au LLM : prompt + schéma cible -> modèle Pydantic validé."""

from __future__ import annotations

import asyncio
import json
import re
from typing import TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from sentinel.app.metrics import LLM_SCHEMA_FAILURES, LLM_TOKENS
from sentinel.domain.errors import LLMSchemaError
from sentinel.infra.llm.base import LLM

M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

log = structlog.get_logger(__name__)


def parse_structured(stage: str, text: str, schema: type[M]) -> M:
    """Décode `text` en JSON puis le valide contre `schema`.

    Tolère un bloc de code Markdown autour du JSON. Lève `LLMSchemaError` sinon.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    if not cleaned:
        raise LLMSchemaError(stage, "empty response")
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise LLMSchemaError(stage, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMSchemaError(stage, f"expected a JSON object, got {type(data).__name__}")
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise LLMSchemaError(stage, f"{exc.error_count()} validation error(s): {exc.errors()[:3]}") from exc


def record_usage(stage: str, usage: dict[str, int]) -> None:
    """Comptabilise les tokens rapportés par le fournisseur (`prompt` / `completion`)."""
    for kind in ("prompt", "completion"):
        count = int(usage.get(f"{kind}_tokens", 0) or 0)
        if count > 0:
            LLM_TOKENS.labels(stage=stage, kind=kind).inc(count)


def schema_instructions(schema: type[BaseModel]) -> str:
    """Bloc d'instructions décrivant le schéma JSON attendu."""
    return (
        "Respond with a single JSON object matching this JSON schema exactly:\n"
        + json.dumps(schema.model_json_schema(), ensure_ascii=False)
    )


class StructuredLLM:
    """Enveloppe un `LLM` pour obtenir des sorties JSON validées, avec nouvel essai.

    Paramètres:
    - llm: client implémentant `LLM.generate`.
    - max_attempts: nombre total d'appels tolérés sur erreur de schéma.
    - timeout_s: budget par appel pour la variante asynchrone.
    """

    def __init__(self, llm: LLM, max_attempts: int = 2, timeout_s: float | None = 60.0) -> None:
        self.llm = llm
        self.max_attempts = max(1, int(max_attempts))
        self.timeout_s = timeout_s

    def complete(
        self,
        stage: str,
        messages: list[dict[str, str]],
        schema: type[M],
        *,
        temperature: float = 0.2,
    ) -> M:
        """Appelle le LLM et renvoie une instance validée de `schema`."""
        full = [*messages, {"role": "system", "content": schema_instructions(schema)}]
        attempt = 1
        while True:
            text, usage = self.llm.generate(full, temperature=temperature, json_mode=True, with_usage=True)
            record_usage(stage, usage)
            try:
                return parse_structured(stage, str(text), schema)
            except LLMSchemaError as exc:
                LLM_SCHEMA_FAILURES.labels(stage=stage).inc()
                log.warning("llm_schema_rejected", stage=stage, attempt=attempt, error=str(exc))
                if attempt >= self.max_attempts:
                    raise
            attempt += 1

    async def acomplete(
        self,
        stage: str,
        messages: list[dict[str, str]],
        schema: type[M],
        *,
        temperature: float = 0.2,
    ) -> M:
        """Variante asynchrone : exécute l'appel bloquant dans un thread, avec timeout."""
        call = asyncio.to_thread(self.complete, stage, messages, schema, temperature=temperature)
        if self.timeout_s:
            return await asyncio.wait_for(call, timeout=self.timeout_s)
        return await call
