"""Configuration de test pour pytest.

Ajoute la racine du projet au sys.path et fournit un conteneur câblé sur des fakes :
SQLite en mémoire, LLM scripté, files en mémoire, HTTP via `httpx.MockTransport`,
e-mail enregistré et store clé/valeur en mémoire.
"""

import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from sentinel...` and `from tests...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from sentinel.core.container import Container  # noqa: E402
from sentinel.core.settings import Settings  # noqa: E402
from sentinel.infra.fetch.sources import SourceFetcher  # noqa: E402
from sentinel.infra.ops.idempotency import _InMemoryKV  # noqa: E402
from sentinel.infra.queues import InMemoryJobQueues  # noqa: E402
from tests.fakes import FakeWeb, RecordingEmailSender, ScriptedLLM  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        REDIS_URL=None,
        ALERT_RECIPIENTS="ops@example.com, lead@example.com",
        DIGEST_RECIPIENTS="team@example.com",
        LLM_TIMEOUT_S=5.0,
        FETCH_TIMEOUT_S=5.0,
    )


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def queues() -> InMemoryJobQueues:
    return InMemoryJobQueues()


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def email() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def container(settings, llm, queues, web, email):
    c = Container(
        settings,
        llm=llm,
        queues=queues,
        fetcher=SourceFetcher(web.client(), user_agent=settings.FETCH_USER_AGENT, timeout_s=5.0),
        email=email,
        kv_client=_InMemoryKV(),
    )
    c.startup()
    yield c
    c.shutdown()


@pytest.fixture
def factory(container):
    return container.session_factory
