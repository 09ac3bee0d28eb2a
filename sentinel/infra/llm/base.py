"""Interface de base pour les modèles de langage.

Le pipeline n'attend qu'une seule opération du fournisseur : une requête/réponse textuelle,
éventuellement contrainte à produire un objet JSON (`json_mode=True`). La validation du JSON
contre un schéma est faite par `sentinel.infra.llm.structured`, qui demande aussi l'usage
(`with_usage=True`) pour compter les tokens par étape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal, overload


class LLM(ABC):
    """Interface abstraite pour les modèles de langage."""

    model: str = "unknown"

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

    @abstractmethod
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.2,
        json_mode: bool = False,
        with_usage: bool = False,
        **kwargs: Any,
    ) -> str | tuple[str, dict[str, int]]:
        """Génère une réponse à partir d'une liste de messages."""
        ...
