# Schémas Pydantic exposés par l'API (requêtes et réponses), sérialisés en camelCase.

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from sentinel.domain.entities import AssetType, PredictedAction, Sensitivity, Severity, SourceType, TaskStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _iso_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


# -- surveillance


class ManualRunRequest(CamelModel):
    """Corps optionnel de l'exécution manuelle ; `mode` remplace MANUAL_RUN_MODE."""

    mode: Literal["probe", "full"] | None = None


class ManualRunResponse(CamelModel):
    message: str
    mode: str
    sources_processed: int
    changes_found: int
    events_created: int
    total_active_sources: int


class WebhookRequest(CamelModel):
    change_event_id: str = Field(min_length=1)


class WebhookResponse(CamelModel):
    message: str
    change_event_id: str


# -- événements / impacts / tâches


class ChangeEventOut(CamelModel):
    id: str
    vendor_id: str
    source_id: str
    title: str
    url: str
    published_at: datetime
    summary: str | None = None
    summary_ar: str | None = None
    change_type: str | None = None
    entities: list[str] = []
    risks: list[str] = []
    created_at: datetime

    @field_serializer("published_at", "created_at")
    def _ser_dates(self, value: datetime) -> str | None:
        return _iso_utc(value)


class ImpactOut(CamelModel):
    id: str
    change_event_id: str
    asset_id: str
    predicted_action: str
    severity: str
    confidence: float
    reasons: list[str] = []
    status: str
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime

    @field_serializer("decided_at", "created_at")
    def _ser_dates(self, value: datetime | None) -> str | None:
        return _iso_utc(value)


class TaskOut(CamelModel):
    id: str
    impact_id: str
    action: str
    title: str
    description: str | None = None
    owner: str
    due_date: datetime
    estimated_hours: float | None = None
    status: str
    progress: int
    evidence_url: str | None = None
    block_reason: str | None = None
    updated_at: datetime

    @field_serializer("due_date", "updated_at")
    def _ser_dates(self, value: datetime) -> str | None:
        return _iso_utc(value)


class TaskUpdateRequest(CamelModel):
    """Sans `status`, seuls les champs fournis sont mis à jour."""

    status: TaskStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    evidence_url: str | None = None
    block_reason: str | None = None


class PatchScriptOut(CamelModel):
    outline: str
    steps: list[str]
    duration_estimate: str
    key_points: list[str]


# -- référentiels


class SlaOut(CamelModel):
    severity: str
    patch_within_hours: int
    comms: str | None = None


class SlaUpsertRequest(CamelModel):
    patch_within_hours: int = Field(gt=0)
    comms: str | None = None


class DecisionRuleIn(CamelModel):
    pattern: str = Field(min_length=1)
    action: PredictedAction
    severity: Severity
    modules: list[str] = []
    notes: str | None = None
    is_active: bool = True


class DecisionRuleOut(CamelModel):
    id: str
    pattern: str
    action: str
    severity: str
    modules: list[str] = []
    notes: str | None = None
    is_active: bool


class DashboardStats(CamelModel):
    total_vendors: int
    active_sources: int
    recent_changes: int
    pending_impacts: int
    open_tasks: int


# -- catalogue : fournisseurs, sources, modules, assets


class VendorIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    website: str | None = None


class VendorUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    website: str | None = None


class VendorOut(CamelModel):
    id: str
    name: str
    description: str | None = None
    website: str | None = None
    created_at: datetime

    @field_serializer("created_at")
    def _ser_dates(self, value: datetime) -> str | None:
        return _iso_utc(value)


class SourceIn(CamelModel):
    vendor_id: str = Field(min_length=1)
    name: str = ""
    url: str = Field(min_length=1, max_length=1024)
    type: SourceType
    css_selector: str | None = None
    is_active: bool = True
    bridge_toggle: bool = True


class SourceUpdate(CamelModel):
    """Mise à jour partielle : seuls les champs présents sont appliqués."""

    vendor_id: str | None = None
    name: str | None = None
    url: str | None = Field(default=None, min_length=1, max_length=1024)
    type: SourceType | None = None
    css_selector: str | None = None
    is_active: bool | None = None
    bridge_toggle: bool | None = None


class SourceOut(CamelModel):
    id: str
    vendor_id: str
    name: str
    url: str
    type: str
    css_selector: str | None = None
    is_active: bool
    bridge_toggle: bool
    last_checked: datetime | None = None
    created_at: datetime

    @field_serializer("last_checked", "created_at")
    def _ser_dates(self, value: datetime | None) -> str | None:
        return _iso_utc(value)


class ModuleIn(CamelModel):
    code: str = Field(min_length=1, max_length=8)
    title: str = Field(min_length=1)
    hours: int = Field(default=0, ge=0)


class ModuleOut(CamelModel):
    id: str
    code: str
    title: str
    hours: int


class AssetIn(CamelModel):
    module_id: str = Field(min_length=1)
    lesson_code: str = Field(min_length=1, max_length=32)
    asset_type: AssetType
    sensitivity: Sensitivity
    tool_dependency: str | None = None
    trigger_tags: list[str] = []
    link: str | None = None


class AssetOut(CamelModel):
    id: str
    module_id: str
    lesson_code: str
    asset_type: str
    sensitivity: str
    tool_dependency: str | None = None
    trigger_tags: list[str] = []
    link: str | None = None
    version: str
    last_reviewed: datetime | None = None
    next_due: datetime | None = None

    @field_serializer("last_reviewed", "next_due")
    def _ser_dates(self, value: datetime | None) -> str | None:
        return _iso_utc(value)
