"""Configuration de logging basée sur structlog.

Objectif du module
------------------
- Logs structurés lisibles (console) pour l'API, les workers et les scripts.
- Niveau dérivé de `APP_DEBUG` ; contexte `app` / `env` lié à chaque événement.
- Router aussi les logs `logging` standard (Celery, uvicorn, alembic) vers la même sortie.
"""

import logging
import sys

import structlog

from sentinel.core.settings import get_settings


def setup_logging(level: int | None = None) -> None:
    """Configure structlog une fois par processus (API, worker Celery ou script)."""
    settings = get_settings()
    if level is None:
        level = logging.DEBUG if settings.APP_DEBUG else logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(app=settings.APP_NAME, env=settings.APP_ENV)
    logging.basicConfig(stream=sys.stdout, level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
