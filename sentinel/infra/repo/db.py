"""DB utilities for SQLAlchemy sessions/engine.

Uses `DATABASE_URL` env var or falls back to `sqlite+pysqlite:///:memory:` for tests.
In-memory SQLite shares a single connection (StaticPool) so that every session sees
the same database.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sentinel.infra.repo.models import Base


def get_engine(url: str | None = None) -> Engine:
    """Crée un moteur SQLAlchemy à partir de l'URL de base de données."""
    db_url = url or os.getenv("DATABASE_URL") or "sqlite+pysqlite:///:memory:"
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url:
            kwargs["poolclass"] = StaticPool
    return create_engine(db_url, future=True, echo=False, **kwargs)


def init_schema(engine: Engine) -> None:
    """Crée les tables manquantes (dev/tests ; en production, Alembic)."""
    Base.metadata.create_all(engine)


def get_session_factory(engine: Engine) -> sessionmaker:
    """Crée une factory de sessions SQLAlchemy."""
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Session transactionnelle : commit en sortie normale, rollback sur exception."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
