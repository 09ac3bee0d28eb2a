"""Configuration centralisée Celery pour les consommateurs de files.

Politiques de retry, timeouts et limites de connexion au broker.
"""

# ============================================================
# Module : sentinel/app/celeryconfig.py
# Objet  : Configuration centralisée Celery (retries, timeouts).
# ============================================================

from __future__ import annotations

# Retries & acks
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
task_time_limit = 900  # secondes (un balayage complet inclut des appels LLM)
task_soft_time_limit = 840
broker_pool_limit = 10
broker_connection_retry_on_startup = True

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]
enable_utc = True

# Politique de retry par défaut (à spécialiser par tâche)
max_retries = 5
retry_backoff = True
retry_backoff_max = 60  # secondes
