"""Dépendances partagées pour les routes de l'API.

- `get_container` : conteneur attaché à l'application par `create_app` (les tests
  injectent le leur).
- `get_session` : session transactionnelle par requête.
- `get_operator` : identité de l'opérateur qui décide (en-tête `X-Operator-Id`) ;
  l'authentification elle-même est assurée en amont.
"""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from sentinel.core.container import Container
from sentinel.infra.repo.db import session_scope

DEFAULT_OPERATOR = "operator"


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_session(container: Container = Depends(get_container)) -> Iterator[Session]:
    with session_scope(container.session_factory) as session:
        yield session


def get_operator(x_operator_id: str | None = Header(default=None)) -> str:
    return (x_operator_id or "").strip() or DEFAULT_OPERATOR
