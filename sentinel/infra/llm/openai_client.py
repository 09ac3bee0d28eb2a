"""
Client LLM basé sur l'API OpenAI (chat.completions).

- `json_mode=True` impose `response_format={"type": "json_object"}`.
- Sans clé API, renvoie une réponse déterministe vide (`{}` en mode JSON) : utile en dev,
  la validation de schéma en aval la rejette proprement.
- `with_usage=True` renvoie aussi `{prompt_tokens, completion_tokens, total_tokens}`.
- Les erreurs du SDK (réseau, quota, timeout) remontent à l'appelant.
"""

from __future__ import annotations

from typing import Any, Literal, overload

from openai import OpenAI

from sentinel.infra.llm.base import LLM


class OpenAILLM(LLM):
    """LLM basé sur OpenAI avec repli déterministe sans clé."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout_s: float | None = None,
    ) -> None:
        self.model = model
        if api_key:
            self.client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=1)
        else:
            self.client = None  # type: ignore[assignment]

    @overload
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = ...,
        json_mode: bool = ...,
        with_usage: Literal[True],
        **kwargs: Any,
    ) -> tuple[str, dict[str, int]]: ...

    @overload
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = ...,
        json_mode: bool = ...,
        with_usage: Literal[False] = False,
        **kwargs: Any,
    ) -> str: ...

    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.2,
        json_mode: bool = False,
        with_usage: bool = False,
        **kwargs: Any,
    ) -> str | tuple[str, dict[str, int]]:
        """Génère du texte (et éventuellement les métriques d'usage)."""
        if not self.client:
            text = "{}" if json_mode else ""
            return (text, {}) if with_usage else text

        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore[arg-type]
            temperature=temperature,
            **kwargs,
        )
        choice = resp.choices[0]
        content = getattr(getattr(choice, "message", None), "content", None) or ""
        if with_usage:
            return str(content), self._extract_usage_dict(resp)
        return str(content)

    def _extract_usage_dict(self, resp: Any) -> dict[str, int]:
        """Extrait les infos d'usage depuis la réponse OpenAI. Toujours un dict."""
        usage = getattr(resp, "usage", None)
        if not usage:
            return {}
        return {
            "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
        }
