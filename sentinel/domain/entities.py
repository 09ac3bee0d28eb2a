"""
Entités du domaine métier.

Ce module définit les énumérations et les modèles échangés entre les étapes du pipeline de
surveillance : éléments collectés, résumés de changement, prédictions d'impact et tâches.
Les modèles consommés depuis le LLM tolèrent des champs additionnels mais valident chaque
champ attendu.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class SourceType(str, Enum):
    """Type de source surveillée."""

    RSS = "RSS"
    HTML = "HTML"
    API = "API"


class ChangeType(str, Enum):
    """Nature d'un changement fournisseur."""

    CAPABILITY = "capability"
    UI = "ui"
    POLICY = "policy"
    PRICING = "pricing"
    API = "api"
    DEPRECATION = "deprecation"


class AssetType(str, Enum):
    SLIDES = "SLIDES"
    TOOL_CLIP = "TOOL_CLIP"
    SCREEN_DEMO = "SCREEN_DEMO"


class Sensitivity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class PredictedAction(str, Enum):
    """Catégorie de remédiation impliquée par un impact."""

    FACE_RESHOOT = "FACE_RESHOOT"
    SCREEN_REDO = "SCREEN_REDO"
    SLIDES_EDIT = "SLIDES_EDIT"
    POLICY_NOTE = "POLICY_NOTE"


class Severity(str, Enum):
    SEV1 = "SEV1"
    SEV2 = "SEV2"
    SEV3 = "SEV3"


class ImpactStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TaskStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    DONE = "DONE"


class TaskOwner(str, Enum):
    """Rôles fixes : caméra (HAMADA), écran (EMAN), édition (EDITOR)."""

    HAMADA = "HAMADA"
    EMAN = "EMAN"
    EDITOR = "EDITOR"


class SourceDescriptor(BaseModel):
    """Descripteur minimal d'une source à collecter."""

    url: str
    type: str
    css_selector: str | None = None


class FetchedItem(BaseModel):
    """Candidat de changement normalisé, quelle que soit la source."""

    title: str
    url: str
    published_at: datetime
    raw: str
    content_hash: str


class ChangeSummary(BaseModel):
    """Résumé structuré et bilingue produit par le LLM."""

    summary: str = Field(min_length=1)
    change_type: ChangeType
    entities: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    summary_ar: str = ""


class AssetProfile(BaseModel):
    """Vue d'un asset telle que présentée au classifieur."""

    id: str
    module_code: str | None = None
    asset_type: str
    sensitivity: str
    tool_dependency: str | None = None
    trigger_tags: list[str] = Field(default_factory=list)


class RuleProfile(BaseModel):
    """Règle de décision active (motif → action/sévérité pour des modules)."""

    pattern: str
    action: PredictedAction
    severity: Severity
    modules: list[str] = Field(default_factory=list)


class ImpactAssessment(BaseModel):
    """Prédiction d'impact d'un changement sur un asset."""

    asset_id: str
    predicted_action: PredictedAction
    severity: Severity
    confidence: float
    reasons: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: object) -> float:
        """Accepte 0–1, un pourcentage (<=100) ou une chaîne numérique ; borne à [0, 1]."""
        conf = float(str(value).strip().rstrip("%"))
        if conf > 1.0:
            conf = conf / 100.0
        return min(1.0, max(0.0, conf))


class ImpactBatch(BaseModel):
    impacts: list[ImpactAssessment] = Field(default_factory=list)


class TaskDraft(BaseModel):
    """Tâche proposée par le LLM (le propriétaire et l'échéance sont recalculés)."""

    action: PredictedAction
    title: str = Field(min_length=1)
    description: str = ""
    owner: TaskOwner | None = None
    due_date: str | None = None
    estimated_hours: float = Field(default=1.0, ge=0)


class TaskBundle(BaseModel):
    tasks: list[TaskDraft] = Field(default_factory=list)


class PatchScript(BaseModel):
    """Plan de correctif vidéo (≤ 90 secondes)."""

    outline: str
    steps: list[str] = Field(default_factory=list)
    duration_estimate: str
    key_points: list[str] = Field(default_factory=list)


class SourceOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED_ROBOTS = "skipped_robots"
    FAILED = "failed"


class SourceReport(BaseModel):
    """Bilan du traitement d'une source."""

    source_id: str
    outcome: SourceOutcome
    items_found: int = 0
    events_created: int = 0
    error: str | None = None


class RunReport(BaseModel):
    """Bilan d'un passage (balayage planifié ou exécution manuelle)."""

    mode: str
    sources_processed: int = 0
    changes_found: int = 0
    events_created: int = 0
    total_active_sources: int = 0
    sources: list[SourceReport] = Field(default_factory=list)
