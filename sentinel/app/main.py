"""
Application principale FastAPI.

Ce module assemble les composants de l'API de surveillance : middlewares,
gestion d'erreurs, routes, métriques et cycle de vie du conteneur.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug
- Ouvrir les ressources du conteneur au démarrage et les fermer à l'arrêt
- Ajouter les middlewares (request id, métriques)
- Monter les routers (santé, surveillance, événements, impacts, tâches, référentiels, catalogue)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sentinel.api.errors import install_error_handlers
from sentinel.api.routes_catalog import router as catalog_router
from sentinel.api.routes_events import router as events_router
from sentinel.api.routes_health import router as health_router
from sentinel.api.routes_impacts import router as impacts_router
from sentinel.api.routes_monitoring import router as monitoring_router
from sentinel.api.routes_reference import router as reference_router
from sentinel.api.routes_tasks import router as tasks_router
from sentinel.app.metrics import PrometheusMiddleware, metrics_router
from sentinel.core.container import Container
from sentinel.core.logging import setup_logging
from sentinel.middlewares.request_id import RequestIDMiddleware


def create_app(container: Container | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Attache le conteneur (celui du processus par défaut, un conteneur de test sinon)
    - Ajoute les middlewares utiles au debug/traçabilité
    - Publie les routes
    """
    setup_logging()
    if container is None:
        from sentinel.core.container import container as default_container

        container = default_container

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        container.startup()
        try:
            yield
        finally:
            await container.ashutdown()

    settings = container.settings
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG, lifespan=lifespan)
    app.state.container = container
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIDMiddleware)
    install_error_handlers(app)
    app.include_router(health_router)
    app.include_router(monitoring_router)
    app.include_router(events_router)
    app.include_router(impacts_router)
    app.include_router(tasks_router)
    app.include_router(reference_router)
    app.include_router(catalog_router)
    app.include_router(metrics_router)
    return app


app = create_app()
