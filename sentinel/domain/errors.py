"""Hiérarchie d'erreurs typées du pipeline de surveillance."""

from __future__ import annotations


class SentinelError(Exception):
    """Erreur de base de l'application."""


class SourceConfigError(SentinelError):
    """Source mal configurée (type non supporté, URL GitHub invalide...)."""


class FetchError(SentinelError):
    """Échec de transport lors de la collecte d'une source.

    Attributs:
    - transport: `rss`, `html`, `github` ou `robots`.
    - status: code HTTP si une réponse a été reçue, sinon None (DNS, timeout...).
    - url: URL demandée.
    """

    def __init__(self, transport: str, url: str, status: int | None = None, reason: str = "") -> None:
        self.transport = transport
        self.url = url
        self.status = status
        self.reason = reason
        label = f"HTTP {status}" if status is not None else (reason or "transport error")
        super().__init__(f"{transport} fetch failed: {label} ({url})")


class FeedParseError(SentinelError):
    """Contenu illisible (XML/HTML/JSON) pour une source."""


class LLMSchemaError(SentinelError):
    """La sortie du LLM ne respecte pas le schéma attendu."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class NotFoundError(SentinelError):
    """Entité introuvable."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(SentinelError):
    """Transition d'état interdite par la machine à états."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: transition {current} -> {target} not allowed")


class DataQualityError(SentinelError):
    """Mise à jour acceptée par la machine à états mais incomplète (ex. BLOCKED sans motif)."""


class RunInProgressError(SentinelError):
    """Un passage complet de surveillance tourne déjà."""

    def __init__(self, job: str) -> None:
        self.job = job
        super().__init__(f"{job} is already running")


class ConflictError(SentinelError):
    """Écriture refusée par une contrainte du référentiel (doublon, entité encore utilisée)."""

    def __init__(self, entity: str, message: str) -> None:
        self.entity = entity
        super().__init__(f"{entity}: {message}")
