"""Alertes SEV1 et envoi du digest hebdomadaire via le collaborateur e-mail.

Les échecs de livraison sont journalisés et n'interrompent jamais le pipeline.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.orm import sessionmaker

from sentinel.domain.digest import WeeklyDigest, build_digest, render_digest
from sentinel.domain.entities import Severity
from sentinel.infra.email import EmailSender
from sentinel.infra.repo.db import session_scope
from sentinel.infra.repo.repositories import CatalogRepo, ChangeEventRepo, ImpactRepo, NotificationRepo

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NotificationService:
    def __init__(
        self,
        session_factory: sessionmaker,
        sender: EmailSender,
        *,
        alert_recipients: Sequence[str] = (),
        digest_recipients: Sequence[str] = (),
        lookback_days: int = 7,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.sender = sender
        self.alert_recipients = list(alert_recipients)
        self.digest_recipients = list(digest_recipients)
        self.lookback_days = lookback_days
        self.clock = clock

    def _try_send(self, to: str, subject: str, body: str) -> str | None:
        """Envoie ; retourne le message d'erreur en cas d'échec."""
        try:
            self.sender.send(to, subject, body)
        except Exception as exc:
            log.warning("email_delivery_failed", to=to, subject=subject, error=str(exc))
            return str(exc) or type(exc).__name__
        return None

    def send_sev1_alert(self, change_event_id: str, impact_ids: Sequence[str] | None = None) -> int:
        """Envoie une alerte par destinataire et journalise SENT/FAILED. Retourne le nombre envoyé."""
        with session_scope(self.session_factory) as session:
            event = ChangeEventRepo(session).require(change_event_id)
            impacts = ImpactRepo(session).for_event(change_event_id, severity=Severity.SEV1.value)
            if impact_ids:
                wanted = set(impact_ids)
                impacts = [i for i in impacts if i.id in wanted]
            title, url, summary = event.title, event.url, event.summary or ""
            lines = [f"  - asset {i.asset_id}: {i.predicted_action} ({i.confidence:.2f})" for i in impacts]

        if not impacts:
            log.info("sev1_alert_nothing_to_send", change_event_id=change_event_id)
            return 0
        subject = f"[SEV1] {title} affects {len(impacts)} asset(s)"
        body = "\n".join([summary, "", f"Source: {url}", "", "Impacts:", *lines])

        sent = 0
        now = self.clock()
        for to in self.alert_recipients:
            error = self._try_send(to, subject, body)
            with session_scope(self.session_factory) as session:
                NotificationRepo(session).record(
                    to, subject, body, status="FAILED" if error else "SENT", error=error, when=now
                )
            if error is None:
                sent += 1
        log.info("sev1_alert_sent", change_event_id=change_event_id, impacts=len(impacts), sent=sent)
        return sent

    def weekly_digest(self) -> WeeklyDigest:
        now = self.clock()
        with session_scope(self.session_factory) as session:
            events = ChangeEventRepo(session).since(now - timedelta(days=self.lookback_days))
            catalog = CatalogRepo(session)
            vendor_names = {}
            for vendor_id in {e.vendor_id for e in events}:
                vendor = catalog.get_vendor(vendor_id)
                vendor_names[vendor_id] = vendor.name if vendor else vendor_id
            return build_digest(events, vendor_names, now, self.lookback_days)

    def send_weekly_digest(self) -> WeeklyDigest:
        digest = self.weekly_digest()
        subject, body = render_digest(digest)
        failures = sum(1 for to in self.digest_recipients if self._try_send(to, subject, body) is not None)
        log.info(
            "weekly_digest_sent",
            changes=digest.total,
            recipients=len(self.digest_recipients),
            failures=failures,
        )
        return digest
