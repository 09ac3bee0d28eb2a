"""Collaborateur e-mail : `send(to, subject, body)`.

La livraison SMTP est externe ; l'implémentation par défaut journalise l'envoi.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

log = structlog.get_logger(__name__)


class EmailSender(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        """Envoie un message ; lève une exception en cas d'échec de livraison."""


class LoggingEmailSender(EmailSender):
    """Journalise les messages au lieu de les livrer (dev, environnements sans SMTP)."""

    def send(self, to: str, subject: str, body: str) -> None:
        log.info("email_sent", to=to, subject=subject, chars=len(body))


def parse_recipients(raw: str | None) -> list[str]:
    """`"a@x.io, b@y.io"` -> `["a@x.io", "b@y.io"]`."""
    return [r.strip() for r in (raw or "").split(",") if r.strip()]
