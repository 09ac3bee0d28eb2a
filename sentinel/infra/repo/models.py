"""SQLAlchemy models for the persistence layer (catalog, change events, impacts, tasks)."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class VendorORM(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    website = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class SourceORM(Base):
    """Point de collecte d'un fournisseur ; interrogé si is_active ET bridge_toggle."""

    __tablename__ = "sources"

    id = Column(String(36), primary_key=True, default=_uuid)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False)
    name = Column(String(255), nullable=False, default="")
    url = Column(String(1024), nullable=False)
    type = Column(String(16), nullable=False)  # RSS|HTML|API
    css_selector = Column(String(512), nullable=True)
    bridge_toggle = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_checked = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("vendor_id", "url", name="uq_source_vendor_url"),)


class ModuleORM(Base):
    __tablename__ = "modules"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(8), nullable=False, unique=True)  # M1..M9
    title = Column(String(255), nullable=False)
    hours = Column(Integer, nullable=False, default=0)


class AssetORM(Base):
    __tablename__ = "assets"

    id = Column(String(36), primary_key=True, default=_uuid)
    module_id = Column(String(36), ForeignKey("modules.id"), nullable=False)
    lesson_code = Column(String(32), nullable=False)
    asset_type = Column(String(16), nullable=False)  # SLIDES|TOOL_CLIP|SCREEN_DEMO
    sensitivity = Column(String(8), nullable=False)  # High|Medium|Low
    tool_dependency = Column(String(255), nullable=True)
    trigger_tags = Column(JSON, nullable=False, default=list)
    link = Column(String(1024), nullable=True)
    version = Column(String(32), nullable=False, default="v1.0")
    last_reviewed = Column(DateTime(timezone=True), nullable=True)
    next_due = Column(DateTime(timezone=True), nullable=True)


class ChangeEventORM(Base):
    """Élément détecté ; jamais modifié après création."""

    __tablename__ = "change_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False)
    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    title = Column(Text, nullable=False)
    url = Column(String(1024), nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=False)
    raw = Column(Text, nullable=False)
    summary = Column(Text, nullable=True)
    summary_ar = Column(Text, nullable=True)
    change_type = Column(String(16), nullable=True)
    entities = Column(JSON, nullable=False, default=list)
    risks = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class ImpactORM(Base):
    __tablename__ = "impacts"

    id = Column(String(36), primary_key=True, default=_uuid)
    change_event_id = Column(String(36), ForeignKey("change_events.id"), nullable=False)
    asset_id = Column(String(36), ForeignKey("assets.id"), nullable=False)
    predicted_action = Column(String(16), nullable=False)
    severity = Column(String(8), nullable=False)
    confidence = Column(Float, nullable=False)
    reasons = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, default="PENDING")
    decided_by = Column(String(255), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("change_event_id", "asset_id", name="uq_impact_event_asset"),)


class TaskORM(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    impact_id = Column(String(36), ForeignKey("impacts.id"), nullable=False)
    action = Column(String(16), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    owner = Column(String(16), nullable=False)  # HAMADA|EMAN|EDITOR
    due_date = Column(DateTime(timezone=True), nullable=False)
    estimated_hours = Column(Float, nullable=True)
    status = Column(String(16), nullable=False, default="OPEN")
    progress = Column(Integer, nullable=False, default=0)
    evidence_url = Column(String(1024), nullable=True)
    block_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class DecisionRuleORM(Base):
    __tablename__ = "decision_rules"

    id = Column(String(36), primary_key=True, default=_uuid)
    pattern = Column(String(255), nullable=False)
    action = Column(String(16), nullable=False)
    severity = Column(String(8), nullable=False)
    modules = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class SlaConfigORM(Base):
    __tablename__ = "sla_config"

    id = Column(String(36), primary_key=True, default=_uuid)
    severity = Column(String(8), nullable=False, unique=True)
    patch_within_hours = Column(Integer, nullable=False)
    comms = Column(Text, nullable=True)


class NotificationLogORM(Base):
    __tablename__ = "notification_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    type = Column(String(16), nullable=False, default="EMAIL")
    recipient = Column(String(255), nullable=False)
    subject = Column(Text, nullable=True)
    body = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="PENDING")  # PENDING|SENT|FAILED
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class OutboxORM(Base):
    """Job à publier, écrit dans la même transaction que la ligne qui le motive."""

    __tablename__ = "outbox"

    id = Column(String(36), primary_key=True, default=_uuid)
    job = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
