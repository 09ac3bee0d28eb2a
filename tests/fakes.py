"""
Fakes pour les tests unitaires.

- ScriptedLLM : implémentation de `LLM` dont les réponses sont scriptées par étape
  (résumé, classification, génération de tâches, script de correctif).
- RecordingEmailSender : expéditeur qui mémorise les messages (et peut échouer).
- FakeWeb : routes HTTP servies par `httpx.MockTransport`.
- Helpers de peuplement du catalogue.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy import select

from sentinel.domain.entities import ChangeSummary, FetchedItem
from sentinel.domain.dedup import content_fingerprint
from sentinel.infra.email import EmailSender
from sentinel.infra.llm.base import LLM
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import VendorORM
from sentinel.infra.repo.repositories import CatalogRepo, ChangeEventRepo

STAGE_MARKERS = {
    "summarize": "expert AI tool analyst",
    "classify": "course maintenance classifier",
    "generate_tasks": "project manager for course content",
    "patch_script": "video production specialist",
}

DEFAULT_SUMMARY = {
    "summary": "New agent mode is available to Plus users",
    "change_type": "capability",
    "entities": ["agent mode"],
    "risks": ["demo flow changes"],
    "summary_ar": "وضع الوكيل متاح الآن",
}


def stage_of(messages: list[dict[str, str]]) -> str:
    system = " ".join(m.get("content", "") for m in messages if m.get("role") == "system")
    for stage, marker in STAGE_MARKERS.items():
        if marker in system:
            return stage
    return "*"


class ScriptedLLM(LLM):
    """LLM factice : une file de réponses par étape ; la dernière réponse est rejouée.

    Une réponse peut être une chaîne, un objet JSON-sérialisable, une exception (levée)
    ou un callable recevant les messages.
    """

    model = "scripted"

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self.replies: dict[str, list[Any]] = {"summarize": [DEFAULT_SUMMARY]}
        for stage, reply in (replies or {}).items():
            self.script(stage, reply)
        self.calls: list[dict[str, Any]] = []
        self.usage: dict[str, int] = {}

    def script(self, stage: str, *replies: Any) -> None:
        self.replies[stage] = list(replies)

    def calls_for(self, stage: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["stage"] == stage]

    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.2,
        json_mode: bool = False,
        with_usage: bool = False,
        **kwargs: Any,
    ) -> str | tuple[str, dict[str, int]]:
        stage = stage_of(messages)
        self.calls.append({"stage": stage, "temperature": temperature, "messages": messages})
        queue = self.replies.get(stage) or ["{}"]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(messages)
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return (text, dict(self.usage)) if with_usage else text


class RecordingEmailSender(EmailSender):
    def __init__(self, failing: tuple[str, ...] = ()) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.failing = set(failing)

    def send(self, to: str, subject: str, body: str) -> None:
        if to in self.failing:
            raise ConnectionError(f"smtp refused {to}")
        self.sent.append((to, subject, body))


class FakeWeb:
    """Routes HTTP factices ; toute URL inconnue répond 404."""

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        text: str = "",
        *,
        status: int = 200,
        json_body: Any = None,
        error: Exception | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if error is not None:
                raise error
            if json_body is not None:
                return httpx.Response(status, json=json_body)
            return httpx.Response(status, text=text)

        self.routes[url] = respond

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        respond = self.routes.get(str(request.url))
        if respond is None:
            return httpx.Response(404, text="not found")
        return respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def rss_feed(*items: tuple[str, str, str]) -> str:
    """Flux RSS 2.0 ; chaque item = (titre, lien, description)."""
    entries = "".join(
        f"<item><title>{title}</title><link>{link}</link><description>{desc}</description>"
        f"<pubDate>Mon, 02 Mar 2026 10:00:00 GMT</pubDate></item>"
        for title, link, desc in items
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>Changelog</title>{entries}</channel></rss>'


def add_source(
    factory,
    url: str,
    type: str = "RSS",
    *,
    vendor: str = "OpenAI",
    is_active: bool = True,
    bridge_toggle: bool = True,
) -> str:
    """Crée (ou réutilise) le fournisseur et ajoute une source ; retourne l'id de la source."""
    with session_scope(factory) as session:
        catalog = CatalogRepo(session)
        vendor_row = session.scalars(select(VendorORM).where(VendorORM.name == vendor)).first()
        if vendor_row is None:
            vendor_row = catalog.create_vendor(vendor)
        source = catalog.create_source(
            vendor_row.id, url, type, name=url, is_active=is_active, bridge_toggle=bridge_toggle
        )
        return source.id


def seed_assets(factory) -> dict[str, str]:
    """Catalogue type : retourne {lesson_code: asset_id}.

    - M2-L1 : démo écran (module sensible aux dépréciations)
    - M1-L1 : slides
    - M5-L2 : clip outil (tag « canvas »)
    """
    with session_scope(factory) as session:
        catalog = CatalogRepo(session)
        modules = {code: catalog.upsert_module(code, f"Module {code}", 4).id for code in ("M1", "M2", "M5")}
        demo = catalog.create_asset(
            modules["M2"], "M2-L1", "SCREEN_DEMO", "High", tool_dependency="ChatGPT", trigger_tags=["connector"]
        )
        slides = catalog.create_asset(modules["M1"], "M1-L1", "SLIDES", "Low", trigger_tags=["pricing"])
        clip = catalog.create_asset(
            modules["M5"], "M5-L2", "TOOL_CLIP", "Medium", tool_dependency="ChatGPT", trigger_tags=["canvas"]
        )
        return {"M2-L1": demo.id, "M1-L1": slides.id, "M5-L2": clip.id}


def create_event(
    factory,
    source_id: str,
    *,
    title: str = "Agent mode launch",
    summary: dict[str, Any] | None = None,
    raw: str | None = None,
) -> str:
    raw = raw or f"raw:{title}"
    item = FetchedItem(
        title=title,
        url="https://vendor.example/changelog",
        published_at=datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
        raw=raw,
        content_hash=content_fingerprint(raw),
    )
    with session_scope(factory) as session:
        source = CatalogRepo(session).get_source(source_id)
        event = ChangeEventRepo(session).create(
            source_id, source.vendor_id, item, ChangeSummary.model_validate(summary or DEFAULT_SUMMARY)
        )
        return event.id
