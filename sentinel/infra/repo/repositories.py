# ============================================================
# Module : sentinel/infra/repo/repositories.py
# Objet  : Accès SQL (lecture/écriture) par agrégat.
# Invariants :
#  - Les transitions d'état Impact/Task sont des mises à jour conditionnelles d'une ligne
#    (WHERE id = ? AND status = <état courant>) : pas de double décision silencieuse.
#  - Les dates sont écrites en UTC ; SQLite les relit naïves, d'où `as_utc`.
# ============================================================

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from sentinel.domain.dedup import content_fingerprint
from sentinel.domain.entities import (
    AssetProfile,
    ChangeSummary,
    FetchedItem,
    ImpactAssessment,
    ImpactStatus,
    RuleProfile,
    TaskStatus,
)
from sentinel.domain.errors import ConflictError, DataQualityError, InvalidTransitionError, NotFoundError
from sentinel.domain.state_machine import ensure_impact_transition, ensure_task_transition
from sentinel.infra.repo.models import (
    AssetORM,
    ChangeEventORM,
    DecisionRuleORM,
    ImpactORM,
    ModuleORM,
    NotificationLogORM,
    SlaConfigORM,
    SourceORM,
    TaskORM,
    VendorORM,
)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise une date en UTC (naïve = déjà UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CatalogRepo:
    """Référentiels en lecture majoritaire : fournisseurs, sources, modules, assets, règles, SLA."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # -- vendors / sources
    def create_vendor(self, name: str, description: str | None = None, website: str | None = None) -> VendorORM:
        row = VendorORM(name=name, description=description, website=website)
        self._session.add(row)
        self._session.flush()
        return row

    def get_vendor(self, vendor_id: str) -> VendorORM | None:
        return self._session.get(VendorORM, vendor_id)

    def require_vendor(self, vendor_id: str) -> VendorORM:
        row = self.get_vendor(vendor_id)
        if row is None:
            raise NotFoundError("vendor", vendor_id)
        return row

    def list_vendors(self) -> list[VendorORM]:
        return list(self._session.scalars(select(VendorORM).order_by(VendorORM.name)).all())

    def add_vendor(self, name: str, description: str | None = None, website: str | None = None) -> VendorORM:
        """Comme `create_vendor`, mais refuse un nom déjà pris (ConflictError)."""
        self._ensure_vendor_name_free(name)
        return self.create_vendor(name, description, website)

    def update_vendor(self, vendor_id: str, **fields) -> VendorORM:
        row = self.require_vendor(vendor_id)
        name = fields.get("name")
        if name is not None and name != row.name:
            self._ensure_vendor_name_free(name)
        for key, value in fields.items():
            setattr(row, key, value)
        self._session.flush()
        return row

    def delete_vendor(self, vendor_id: str) -> None:
        """Supprime un fournisseur sans source ni événement rattaché."""
        row = self.require_vendor(vendor_id)
        for model in (SourceORM, ChangeEventORM):
            stmt = select(func.count()).select_from(model).where(model.vendor_id == vendor_id)
            if self._session.scalar(stmt):
                raise ConflictError("vendor", f"{row.name} still has {model.__tablename__}")
        self._session.delete(row)
        self._session.flush()

    def _ensure_vendor_name_free(self, name: str) -> None:
        if self._session.scalars(select(VendorORM.id).where(VendorORM.name == name)).first():
            raise ConflictError("vendor", f"name already used: {name}")

    def count_vendors(self) -> int:
        return int(self._session.scalar(select(func.count()).select_from(VendorORM)) or 0)

    def create_source(
        self,
        vendor_id: str,
        url: str,
        type: str,
        *,
        name: str = "",
        css_selector: str | None = None,
        is_active: bool = True,
        bridge_toggle: bool = True,
    ) -> SourceORM:
        row = SourceORM(
            vendor_id=vendor_id,
            url=url,
            type=type,
            name=name,
            css_selector=css_selector,
            is_active=is_active,
            bridge_toggle=bridge_toggle,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def get_source(self, source_id: str) -> SourceORM | None:
        return self._session.get(SourceORM, source_id)

    def require_source(self, source_id: str) -> SourceORM:
        row = self.get_source(source_id)
        if row is None:
            raise NotFoundError("source", source_id)
        return row

    def list_sources(self, vendor_id: str | None = None) -> list[SourceORM]:
        stmt = select(SourceORM).order_by(SourceORM.created_at, SourceORM.id)
        if vendor_id:
            stmt = stmt.where(SourceORM.vendor_id == vendor_id)
        return list(self._session.scalars(stmt).all())

    def add_source(self, vendor_id: str, url: str, type: str, **fields) -> SourceORM:
        """Enregistre une source pour un fournisseur existant ; (fournisseur, url) est unique."""
        self.require_vendor(vendor_id)
        self._ensure_source_url_free(vendor_id, url)
        return self.create_source(vendor_id, url, type, **fields)

    def update_source(self, source_id: str, **fields) -> SourceORM:
        """Mise à jour partielle (activation, passerelle, sélecteur CSS...)."""
        row = self.require_source(source_id)
        vendor_id = fields.get("vendor_id") or row.vendor_id
        url = fields.get("url") or row.url
        if (vendor_id, url) != (row.vendor_id, row.url):
            self.require_vendor(vendor_id)
            self._ensure_source_url_free(vendor_id, url)
        for key, value in fields.items():
            setattr(row, key, value)
        self._session.flush()
        return row

    def _ensure_source_url_free(self, vendor_id: str, url: str) -> None:
        stmt = select(SourceORM.id).where(SourceORM.vendor_id == vendor_id, SourceORM.url == url)
        if self._session.scalars(stmt).first():
            raise ConflictError("source", f"url already registered for this vendor: {url}")

    def active_sources(self) -> list[SourceORM]:
        """Sources interrogeables : is_active ET bridge_toggle."""
        stmt = (
            select(SourceORM)
            .where(SourceORM.is_active.is_(True), SourceORM.bridge_toggle.is_(True))
            .order_by(SourceORM.created_at, SourceORM.id)
        )
        return list(self._session.scalars(stmt).all())

    def count_active_sources(self) -> int:
        stmt = select(func.count()).select_from(SourceORM).where(
            SourceORM.is_active.is_(True), SourceORM.bridge_toggle.is_(True)
        )
        return int(self._session.scalar(stmt) or 0)

    def touch_source(self, source_id: str, when: datetime) -> None:
        self._session.execute(
            update(SourceORM)
            .where(SourceORM.id == source_id)
            .values(last_checked=as_utc(when))
            .execution_options(synchronize_session=False)
        )

    # -- modules / assets
    def list_modules(self) -> list[ModuleORM]:
        return list(self._session.scalars(select(ModuleORM).order_by(ModuleORM.code)).all())

    def add_module(self, code: str, title: str, hours: int) -> ModuleORM:
        """Crée un module ; ConflictError si le code existe déjà (voir `upsert_module`)."""
        if self._session.scalars(select(ModuleORM.id).where(ModuleORM.code == code)).first():
            raise ConflictError("module", f"code already used: {code}")
        row = ModuleORM(code=code, title=title, hours=hours)
        self._session.add(row)
        self._session.flush()
        return row

    def list_assets(self, module_id: str | None = None) -> list[AssetORM]:
        stmt = select(AssetORM).order_by(AssetORM.lesson_code, AssetORM.id)
        if module_id:
            stmt = stmt.where(AssetORM.module_id == module_id)
        return list(self._session.scalars(stmt).all())

    def add_asset(self, module_id: str, lesson_code: str, asset_type: str, sensitivity: str, **fields) -> AssetORM:
        """Crée un asset rattaché à un module existant (NotFoundError sinon)."""
        if self._session.get(ModuleORM, module_id) is None:
            raise NotFoundError("module", module_id)
        return self.create_asset(module_id, lesson_code, asset_type, sensitivity, **fields)

    def upsert_module(self, code: str, title: str, hours: int) -> ModuleORM:
        row = self._session.scalars(select(ModuleORM).where(ModuleORM.code == code)).first()
        if row is None:
            row = ModuleORM(code=code, title=title, hours=hours)
            self._session.add(row)
        else:
            row.title = title
            row.hours = hours
        self._session.flush()
        return row

    def create_asset(
        self,
        module_id: str,
        lesson_code: str,
        asset_type: str,
        sensitivity: str,
        *,
        tool_dependency: str | None = None,
        trigger_tags: Iterable[str] = (),
        link: str | None = None,
    ) -> AssetORM:
        row = AssetORM(
            module_id=module_id,
            lesson_code=lesson_code,
            asset_type=asset_type,
            sensitivity=sensitivity,
            tool_dependency=tool_dependency,
            trigger_tags=list(trigger_tags),
            link=link,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def asset_profiles(self) -> list[AssetProfile]:
        """Catalogue complet des assets, avec le code module, pour le classifieur."""
        stmt = select(AssetORM, ModuleORM.code).join(ModuleORM, ModuleORM.id == AssetORM.module_id)
        return [
            AssetProfile(
                id=asset.id,
                module_code=code,
                asset_type=asset.asset_type,
                sensitivity=asset.sensitivity,
                tool_dependency=asset.tool_dependency,
                trigger_tags=list(asset.trigger_tags or []),
            )
            for asset, code in self._session.execute(stmt).all()
        ]

    # -- decision rules
    def create_rule(
        self,
        pattern: str,
        action: str,
        severity: str,
        modules: Iterable[str] = (),
        notes: str | None = None,
        is_active: bool = True,
    ) -> DecisionRuleORM:
        row = DecisionRuleORM(
            pattern=pattern,
            action=action,
            severity=severity,
            modules=list(modules),
            notes=notes,
            is_active=is_active,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def list_rules(self) -> list[DecisionRuleORM]:
        return list(self._session.scalars(select(DecisionRuleORM).order_by(DecisionRuleORM.created_at)).all())

    def active_rules(self) -> list[RuleProfile]:
        stmt = select(DecisionRuleORM).where(DecisionRuleORM.is_active.is_(True)).order_by(DecisionRuleORM.created_at)
        return [
            RuleProfile(pattern=r.pattern, action=r.action, severity=r.severity, modules=list(r.modules or []))
            for r in self._session.scalars(stmt).all()
        ]

    # -- SLA
    def list_sla(self) -> list[SlaConfigORM]:
        return list(self._session.scalars(select(SlaConfigORM).order_by(SlaConfigORM.severity)).all())

    def upsert_sla(self, severity: str, patch_within_hours: int, comms: str | None = None) -> SlaConfigORM:
        row = self._session.scalars(select(SlaConfigORM).where(SlaConfigORM.severity == severity)).first()
        if row is None:
            row = SlaConfigORM(severity=severity, patch_within_hours=patch_within_hours, comms=comms)
            self._session.add(row)
        else:
            row.patch_within_hours = patch_within_hours
            if comms is not None:
                row.comms = comms
        self._session.flush()
        return row

    def sla_hours(self, defaults: dict[str, int]) -> dict[str, int]:
        """Budgets SLA par sévérité ; les valeurs stockées priment sur `defaults`."""
        hours = dict(defaults)
        for row in self.list_sla():
            hours[row.severity] = int(row.patch_within_hours)
        return hours


class ChangeEventRepo:
    """Événements de changement : création unique, lecture."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, source_id: str, vendor_id: str, item: FetchedItem, summary: ChangeSummary) -> ChangeEventORM:
        row = ChangeEventORM(
            vendor_id=vendor_id,
            source_id=source_id,
            title=item.title,
            url=item.url,
            published_at=as_utc(item.published_at),
            raw=item.raw,
            summary=summary.summary,
            summary_ar=summary.summary_ar,
            change_type=summary.change_type.value,
            entities=list(summary.entities),
            risks=list(summary.risks),
        )
        self._session.add(row)
        self._session.flush()
        return row

    def get(self, event_id: str) -> ChangeEventORM | None:
        return self._session.get(ChangeEventORM, event_id)

    def require(self, event_id: str) -> ChangeEventORM:
        row = self.get(event_id)
        if row is None:
            raise NotFoundError("change_event", event_id)
        return row

    def known_fingerprints(self, source_id: str) -> set[str]:
        """Empreintes des contenus bruts déjà stockés pour la source."""
        stmt = select(ChangeEventORM.raw).where(ChangeEventORM.source_id == source_id)
        return {content_fingerprint(raw) for raw in self._session.scalars(stmt).all()}

    def recent(self, limit: int = 50) -> list[ChangeEventORM]:
        stmt = select(ChangeEventORM).order_by(ChangeEventORM.created_at.desc()).limit(limit)
        return list(self._session.scalars(stmt).all())

    def since(self, when: datetime) -> list[ChangeEventORM]:
        stmt = (
            select(ChangeEventORM)
            .where(ChangeEventORM.created_at >= as_utc(when))
            .order_by(ChangeEventORM.created_at.desc())
        )
        return list(self._session.scalars(stmt).all())

    def count_since(self, when: datetime) -> int:
        stmt = select(func.count()).select_from(ChangeEventORM).where(ChangeEventORM.created_at >= as_utc(when))
        return int(self._session.scalar(stmt) or 0)


class ImpactRepo:
    """Impacts : création par le classifieur, décisions par mise à jour conditionnelle."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def existing_asset_ids(self, event_id: str) -> set[str]:
        stmt = select(ImpactORM.asset_id).where(ImpactORM.change_event_id == event_id)
        return set(self._session.scalars(stmt).all())

    def create(
        self,
        event_id: str,
        assessment: ImpactAssessment,
        *,
        status: ImpactStatus = ImpactStatus.PENDING,
        decided_by: str | None = None,
        decided_at: datetime | None = None,
    ) -> ImpactORM:
        row = ImpactORM(
            change_event_id=event_id,
            asset_id=assessment.asset_id,
            predicted_action=assessment.predicted_action.value,
            severity=assessment.severity.value,
            confidence=float(assessment.confidence),
            reasons=list(assessment.reasons),
            status=status.value,
            decided_by=decided_by,
            decided_at=as_utc(decided_at),
        )
        self._session.add(row)
        self._session.flush()
        return row

    def get(self, impact_id: str) -> ImpactORM | None:
        return self._session.get(ImpactORM, impact_id)

    def require(self, impact_id: str) -> ImpactORM:
        row = self.get(impact_id)
        if row is None:
            raise NotFoundError("impact", impact_id)
        return row

    def list_all(self) -> list[ImpactORM]:
        return list(self._session.scalars(select(ImpactORM).order_by(ImpactORM.created_at.desc())).all())

    def list_pending(self) -> list[ImpactORM]:
        stmt = (
            select(ImpactORM)
            .where(ImpactORM.status == ImpactStatus.PENDING.value)
            .order_by(ImpactORM.created_at.desc())
        )
        return list(self._session.scalars(stmt).all())

    def count_pending(self) -> int:
        stmt = select(func.count()).select_from(ImpactORM).where(ImpactORM.status == ImpactStatus.PENDING.value)
        return int(self._session.scalar(stmt) or 0)

    def for_event(self, event_id: str, severity: str | None = None) -> list[ImpactORM]:
        stmt = select(ImpactORM).where(ImpactORM.change_event_id == event_id)
        if severity:
            stmt = stmt.where(ImpactORM.severity == severity)
        return list(self._session.scalars(stmt.order_by(ImpactORM.created_at)).all())

    def decide(self, impact_id: str, target: ImpactStatus, decided_by: str, when: datetime) -> ImpactORM:
        """Applique PENDING -> `target` ; InvalidTransitionError si déjà décidé."""
        current = self.require(impact_id)
        ensure_impact_transition(current.status, target)
        result = self._session.execute(
            update(ImpactORM)
            .where(ImpactORM.id == impact_id, ImpactORM.status == current.status)
            .values(status=target.value, decided_by=decided_by, decided_at=as_utc(when))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            fresh = self._session.get(ImpactORM, impact_id, populate_existing=True)
            raise InvalidTransitionError("impact", fresh.status if fresh else "?", target.value)
        return self._session.get(ImpactORM, impact_id, populate_existing=True)  # type: ignore[return-value]


class TaskRepo:
    """Tâches de remédiation."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        impact_id: str,
        *,
        action: str,
        title: str,
        description: str,
        owner: str,
        due_date: datetime,
        estimated_hours: float | None,
    ) -> TaskORM:
        row = TaskORM(
            impact_id=impact_id,
            action=action,
            title=title,
            description=description,
            owner=owner,
            due_date=as_utc(due_date),
            estimated_hours=estimated_hours,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def get(self, task_id: str) -> TaskORM | None:
        return self._session.get(TaskORM, task_id)

    def require(self, task_id: str) -> TaskORM:
        row = self.get(task_id)
        if row is None:
            raise NotFoundError("task", task_id)
        return row

    def count_for_impact(self, impact_id: str) -> int:
        stmt = select(func.count()).select_from(TaskORM).where(TaskORM.impact_id == impact_id)
        return int(self._session.scalar(stmt) or 0)

    def search(self, status: str | None = None, owner: str | None = None) -> list[TaskORM]:
        stmt = select(TaskORM)
        if status:
            stmt = stmt.where(TaskORM.status == status)
        if owner:
            stmt = stmt.where(TaskORM.owner == owner)
        return list(self._session.scalars(stmt.order_by(TaskORM.due_date)).all())

    def overdue(self, now: datetime) -> list[TaskORM]:
        """Tâches non terminées dont l'échéance est dépassée."""
        stmt = (
            select(TaskORM)
            .where(TaskORM.due_date < as_utc(now), TaskORM.status != TaskStatus.DONE.value)
            .order_by(TaskORM.due_date)
        )
        return list(self._session.scalars(stmt).all())

    def count_open(self) -> int:
        stmt = select(func.count()).select_from(TaskORM).where(TaskORM.status != TaskStatus.DONE.value)
        return int(self._session.scalar(stmt) or 0)

    def transition(
        self,
        task_id: str,
        target: TaskStatus | None,
        when: datetime,
        *,
        progress: int | None = None,
        evidence_url: str | None = None,
        block_reason: str | None = None,
    ) -> TaskORM:
        """Applique la transition demandée si autorisée depuis l'état courant.

        Sans statut cible (ou avec le statut courant), seuls les champs sont mis à jour.
        La progression ne se modifie qu'en IN_PROGRESS ; bloquer exige un motif.
        """
        current = self.require(task_id)
        status = TaskStatus(current.status)
        if target is None or target is status:
            target = status
        else:
            ensure_task_transition(status, target)
        reason = (block_reason or "").strip() or None
        if target is TaskStatus.BLOCKED and reason is None and (status is not target or block_reason is not None):
            raise DataQualityError("blockReason is required to block a task")
        if progress is not None and target not in (TaskStatus.IN_PROGRESS, TaskStatus.DONE):
            raise DataQualityError(f"progress can only change while IN_PROGRESS, not {target.value}")
        values: dict = {"status": target.value, "updated_at": as_utc(when)}
        if target is TaskStatus.DONE:
            values["progress"] = 100
        elif progress is not None:
            values["progress"] = progress
        if evidence_url is not None:
            values["evidence_url"] = evidence_url
        if target is TaskStatus.BLOCKED:
            if reason is not None:
                values["block_reason"] = reason
        elif status is TaskStatus.BLOCKED:
            values["block_reason"] = None
        result = self._session.execute(
            update(TaskORM)
            .where(TaskORM.id == task_id, TaskORM.status == current.status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            fresh = self._session.get(TaskORM, task_id, populate_existing=True)
            raise InvalidTransitionError("task", fresh.status if fresh else "?", target.value)
        return self._session.get(TaskORM, task_id, populate_existing=True)  # type: ignore[return-value]


class NotificationRepo:
    def __init__(self, session: Session) -> None:
        self._session = session

    def record(
        self,
        recipient: str,
        subject: str,
        body: str,
        *,
        status: str,
        error: str | None = None,
        when: datetime | None = None,
    ) -> NotificationLogORM:
        row = NotificationLogORM(
            recipient=recipient,
            subject=subject,
            body=body,
            status=status,
            error=error,
            sent_at=as_utc(when) if status == "SENT" else None,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def list_all(self) -> list[NotificationLogORM]:
        return list(self._session.scalars(select(NotificationLogORM).order_by(NotificationLogORM.created_at)).all())
