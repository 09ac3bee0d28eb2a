"""
Initialise les données de référence : modules du cursus et budgets SLA par défaut.

Idempotent : les modules sont mis à jour par code, les SLA par sévérité. Un fichier JSON
optionnel (`--modules path.json`, liste d'objets `{code, title, hours}`) remplace la
liste par défaut.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from sentinel.core.container import container
from sentinel.core.logging import setup_logging
from sentinel.infra.repo.db import init_schema, session_scope
from sentinel.infra.repo.repositories import CatalogRepo

DEFAULT_MODULES: list[dict] = [{"code": f"M{i}", "title": f"Module {i}", "hours": 0} for i in range(1, 10)]

SLA_COMMS = {
    "SEV1": "Immediate alert to the content team",
    "SEV2": "Mention in the weekly digest",
    "SEV3": "Batch with the next scheduled review",
}


def load_modules(path: str | None) -> list[dict]:
    if not path:
        return DEFAULT_MODULES
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError("modules file must contain a JSON list")
    return data


def seed(session_factory, modules: list[dict], sla_hours: dict[str, int]) -> dict[str, int]:
    with session_scope(session_factory) as session:
        repo = CatalogRepo(session)
        for m in modules:
            repo.upsert_module(str(m["code"]), str(m["title"]), int(m.get("hours", 0)))
        for severity, hours in sla_hours.items():
            repo.upsert_sla(severity, hours, SLA_COMMS.get(severity))
    return {"modules": len(modules), "sla": len(sla_hours)}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed curriculum modules and SLA budgets")
    parser.add_argument("--modules", default=None, help="JSON file with [{code, title, hours}]")
    parser.add_argument("--create-schema", action="store_true", help="create tables before seeding")
    args = parser.parse_args(argv)

    setup_logging()
    if args.create_schema:
        init_schema(container.engine)
    counts = seed(container.session_factory, load_modules(args.modules), container.settings.default_sla_hours())
    print(f"modules={counts['modules']} sla={counts['sla']}")
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry
    sys.exit(main())
