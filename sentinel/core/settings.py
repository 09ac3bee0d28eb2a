"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import json
import os
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "course-update-sentinel"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000

    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/1"
    CELERY_MAX_FAILURES_BEFORE_DLQ: int = 3

    # LLM
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_S: float = 60.0
    LLM_MAX_ATTEMPTS: int = 2

    # Collecte des sources
    FETCH_USER_AGENT: str = "Course-Update-Sentinel/1.0"
    FETCH_TIMEOUT_S: float = 20.0
    HTML_FALLBACK_LIMIT: int = 10
    GITHUB_RELEASES_LIMIT: int = 10

    # Règles métier
    BUSINESS_TIMEZONE: str = "Africa/Cairo"
    AUTO_APPROVE_CONFIDENCE: float = 0.8
    MANUAL_RUN_MODE: Literal["probe", "full"] = "probe"
    TASK_REGENERATION_POLICY: Literal["skip", "append"] = "skip"
    # Budgets SLA (heures) utilisés si la table sla_config est vide
    DEFAULT_SLA_HOURS_JSON: str = '{"SEV1": 8, "SEV2": 72, "SEV3": 168}'

    # Notifications (adresses séparées par des virgules, peut être vide)
    ALERT_RECIPIENTS: str = ""
    DIGEST_RECIPIENTS: str = ""
    DIGEST_LOOKBACK_DAYS: int = 7

    def default_sla_hours(self) -> dict[str, int]:
        """Décode `DEFAULT_SLA_HOURS_JSON` en dict {severity: hours}."""
        try:
            data = json.loads(self.DEFAULT_SLA_HOURS_JSON or "{}")
        except ValueError:
            return {}
        return {str(k).upper(): int(v) for k, v in data.items()}


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
