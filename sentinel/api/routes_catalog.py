"""
Routes du catalogue : fournisseurs et sources surveillées, modules et assets du cours.

- Une source n'est interrogée que si `isActive` ET `bridgeToggle` ; les deux se
  basculent par `PUT /api/sources/{id}`.
- Une source de type API doit pointer vers un dépôt GitHub (422 sinon).
- Doublons (nom de fournisseur, url par fournisseur, code module) et suppression d'un
  fournisseur encore référencé : 409.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from sentinel.api.deps import get_session
from sentinel.api.schemas import (
    AssetIn,
    AssetOut,
    ModuleIn,
    ModuleOut,
    SourceIn,
    SourceOut,
    SourceUpdate,
    VendorIn,
    VendorOut,
    VendorUpdate,
)
from sentinel.domain.entities import SourceType
from sentinel.infra.fetch.sources import github_repo_from_url
from sentinel.infra.repo.repositories import CatalogRepo

router = APIRouter(prefix="/api", tags=["catalog"])


def _check_source_config(type_: str, url: str) -> None:
    if type_ == SourceType.API.value:
        github_repo_from_url(url)


# -- fournisseurs


@router.get("/vendors", response_model=list[VendorOut])
def list_vendors(session: Session = Depends(get_session)):
    return [VendorOut.model_validate(v) for v in CatalogRepo(session).list_vendors()]


@router.post("/vendors", response_model=VendorOut, status_code=201)
def create_vendor(payload: VendorIn, session: Session = Depends(get_session)):
    row = CatalogRepo(session).add_vendor(payload.name, payload.description, payload.website)
    return VendorOut.model_validate(row)


@router.put("/vendors/{vendor_id}", response_model=VendorOut)
def update_vendor(vendor_id: str, payload: VendorUpdate, session: Session = Depends(get_session)):
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("name") is None:
        fields.pop("name", None)
    row = CatalogRepo(session).update_vendor(vendor_id, **fields)
    return VendorOut.model_validate(row)


@router.delete("/vendors/{vendor_id}", status_code=204)
def delete_vendor(vendor_id: str, session: Session = Depends(get_session)):
    CatalogRepo(session).delete_vendor(vendor_id)
    return Response(status_code=204)


# -- sources


@router.get("/sources", response_model=list[SourceOut])
def list_sources(vendor_id: str | None = Query(default=None, alias="vendorId"), session: Session = Depends(get_session)):
    return [SourceOut.model_validate(s) for s in CatalogRepo(session).list_sources(vendor_id)]


@router.post("/sources", response_model=SourceOut, status_code=201)
def create_source(payload: SourceIn, session: Session = Depends(get_session)):
    _check_source_config(payload.type.value, payload.url)
    row = CatalogRepo(session).add_source(
        payload.vendor_id,
        payload.url,
        payload.type.value,
        name=payload.name,
        css_selector=payload.css_selector,
        is_active=payload.is_active,
        bridge_toggle=payload.bridge_toggle,
    )
    return SourceOut.model_validate(row)


@router.put("/sources/{source_id}", response_model=SourceOut)
def update_source(source_id: str, payload: SourceUpdate, session: Session = Depends(get_session)):
    repo = CatalogRepo(session)
    # css_selector est le seul champ qu'on peut remettre à null
    fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k == "css_selector"}
    if "type" in fields:
        fields["type"] = fields["type"].value
    current = repo.require_source(source_id)
    _check_source_config(fields.get("type") or current.type, fields.get("url") or current.url)
    return SourceOut.model_validate(repo.update_source(source_id, **fields))


# -- modules et assets


@router.get("/modules", response_model=list[ModuleOut])
def list_modules(session: Session = Depends(get_session)):
    return [ModuleOut.model_validate(m) for m in CatalogRepo(session).list_modules()]


@router.post("/modules", response_model=ModuleOut, status_code=201)
def create_module(payload: ModuleIn, session: Session = Depends(get_session)):
    row = CatalogRepo(session).add_module(payload.code, payload.title, payload.hours)
    return ModuleOut.model_validate(row)


@router.get("/assets", response_model=list[AssetOut])
def list_assets(module_id: str | None = Query(default=None, alias="moduleId"), session: Session = Depends(get_session)):
    return [AssetOut.model_validate(a) for a in CatalogRepo(session).list_assets(module_id)]


@router.post("/assets", response_model=AssetOut, status_code=201)
def create_asset(payload: AssetIn, session: Session = Depends(get_session)):
    row = CatalogRepo(session).add_asset(
        payload.module_id,
        payload.lesson_code,
        payload.asset_type.value,
        payload.sensitivity.value,
        tool_dependency=payload.tool_dependency,
        trigger_tags=payload.trigger_tags,
        link=payload.link,
    )
    return AssetOut.model_validate(row)
