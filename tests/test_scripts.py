"""Tests des scripts d'exploitation (données de référence, rejeu de l'outbox)."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from scripts import replay_outbox as replay_script
from scripts.seed_reference import DEFAULT_MODULES, load_modules, seed
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.models import ModuleORM
from sentinel.infra.repo.repositories import CatalogRepo


def test_seed_is_idempotent(factory):
    assert seed(factory, DEFAULT_MODULES, {"SEV1": 8, "SEV2": 72}) == {"modules": 9, "sla": 2}
    seed(factory, DEFAULT_MODULES, {"SEV1": 4})

    with session_scope(factory) as session:
        assert session.scalar(select(func.count()).select_from(ModuleORM)) == 9
        sla = {r.severity: (r.patch_within_hours, r.comms) for r in CatalogRepo(session).list_sla()}
    assert sla["SEV1"] == (4, "Immediate alert to the content team")
    assert sla["SEV2"][0] == 72


def test_load_modules(tmp_path):
    assert load_modules(None) == DEFAULT_MODULES
    path = tmp_path / "modules.json"
    path.write_text(json.dumps([{"code": "M1", "title": "Foundations", "hours": 3}]), encoding="utf-8")
    assert load_modules(str(path)) == [{"code": "M1", "title": "Foundations", "hours": 3}]
    path.write_text(json.dumps({"code": "M1"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_modules(str(path))


def test_replay_script_reports_counts(container, monkeypatch, capsys):
    monkeypatch.setattr(replay_script, "container", container)
    # structlog garderait une référence au flux capturé par capsys
    monkeypatch.setattr(replay_script, "setup_logging", lambda: None)
    assert replay_script.main(["--older-than-minutes", "0"]) == 0
    assert "dispatched=0 failed=0" in capsys.readouterr().out
