"""
Configuration de l'environnement Alembic pour le schéma de surveillance.

Couvre le catalogue (fournisseurs, sources, modules, supports), les événements de
changement, les impacts, les tâches, les référentiels et l'outbox. L'URL est lue
depuis DATABASE_URL ; modes offline et online.
"""

from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[attr-defined]

# Allow importing project modules when running via Alembic CLI
_this = Path(__file__).resolve()
for p in (_this.parent.parent, Path.cwd()):
    s = str(p)
    if s not in sys.path:
        sys.path.append(s)

from sentinel.core.settings import get_settings  # noqa: E402
from sentinel.infra.repo.models import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

DEFAULT_URL = "sqlite:///./sentinel.db"


def _database_url() -> str:
    # une base SQLite en mémoire ne survit pas à la migration
    url = get_settings().DATABASE_URL
    return DEFAULT_URL if not url or url.endswith(":memory:") else url


def run_migrations_offline() -> None:
    """Émet le SQL sans connexion (bindings littéraux)."""
    url = _database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Applique les migrations sur une connexion active."""
    connectable = create_engine(_database_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
