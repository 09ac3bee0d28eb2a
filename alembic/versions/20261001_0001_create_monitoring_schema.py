# mypy: ignore-errors
"""
Migration Alembic initiale du schéma de surveillance.

Crée le catalogue (vendors, sources, modules, assets), les événements de changement,
les impacts et tâches, les référentiels (decision_rules, sla_config), le journal des
notifications et l'outbox des jobs.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "vendors",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=512), nullable=True),
        _created_at(),
    )
    op.create_table(
        "sources",
        _id(),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("css_selector", sa.String(length=512), nullable=True),
        sa.Column("bridge_toggle", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_checked", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("vendor_id", "url", name="uq_source_vendor_url"),
    )
    op.create_table(
        "modules",
        _id(),
        sa.Column("code", sa.String(length=8), nullable=False, unique=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("hours", sa.Integer(), nullable=False),
    )
    op.create_table(
        "assets",
        _id(),
        sa.Column("module_id", sa.String(length=36), sa.ForeignKey("modules.id"), nullable=False),
        sa.Column("lesson_code", sa.String(length=32), nullable=False),
        sa.Column("asset_type", sa.String(length=16), nullable=False),
        sa.Column("sensitivity", sa.String(length=8), nullable=False),
        sa.Column("tool_dependency", sa.String(length=255), nullable=True),
        sa.Column("trigger_tags", sa.JSON(), nullable=False),
        sa.Column("link", sa.String(length=1024), nullable=True),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("last_reviewed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_due", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "change_events",
        _id(),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("source_id", sa.String(length=36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("summary_ar", sa.Text(), nullable=True),
        sa.Column("change_type", sa.String(length=16), nullable=True),
        sa.Column("entities", sa.JSON(), nullable=False),
        sa.Column("risks", sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_change_events_source", "change_events", ["source_id"])
    op.create_table(
        "impacts",
        _id(),
        sa.Column("change_event_id", sa.String(length=36), sa.ForeignKey("change_events.id"), nullable=False),
        sa.Column("asset_id", sa.String(length=36), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("predicted_action", sa.String(length=16), nullable=False),
        sa.Column("severity", sa.String(length=8), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("change_event_id", "asset_id", name="uq_impact_event_asset"),
    )
    op.create_table(
        "tasks",
        _id(),
        sa.Column("impact_id", sa.String(length=36), sa.ForeignKey("impacts.id"), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner", sa.String(length=16), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("evidence_url", sa.String(length=1024), nullable=True),
        sa.Column("block_reason", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "decision_rules",
        _id(),
        sa.Column("pattern", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("severity", sa.String(length=8), nullable=False),
        sa.Column("modules", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_table(
        "sla_config",
        _id(),
        sa.Column("severity", sa.String(length=8), nullable=False, unique=True),
        sa.Column("patch_within_hours", sa.Integer(), nullable=False),
        sa.Column("comms", sa.Text(), nullable=True),
    )
    op.create_table(
        "notification_log",
        _id(),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_table(
        "outbox",
        _id(),
        sa.Column("job", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_outbox_pending", "outbox", ["dispatched_at", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_outbox_pending", table_name="outbox")
    op.drop_table("outbox")
    op.drop_table("notification_log")
    op.drop_table("sla_config")
    op.drop_table("decision_rules")
    op.drop_table("tasks")
    op.drop_table("impacts")
    op.drop_index("ix_change_events_source", table_name="change_events")
    op.drop_table("change_events")
    op.drop_table("assets")
    op.drop_table("modules")
    op.drop_table("sources")
    op.drop_table("vendors")
