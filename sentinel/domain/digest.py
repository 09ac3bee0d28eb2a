"""Digest hebdomadaire : agrégation en lecture seule des ChangeEvents récents."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from sentinel.infra.repo.models import ChangeEventORM

HEADLINES_MAX = 10


class WeeklyDigest(BaseModel):
    period_start: datetime
    period_end: datetime
    total: int = 0
    by_vendor: dict[str, int] = Field(default_factory=dict)
    by_change_type: dict[str, int] = Field(default_factory=dict)
    headlines: list[str] = Field(default_factory=list)


def build_digest(
    events: Sequence[ChangeEventORM],
    vendor_names: Mapping[str, str],
    now: datetime,
    lookback_days: int = 7,
) -> WeeklyDigest:
    """Compte par fournisseur et par type, et retient les titres les plus récents."""
    start = now - timedelta(days=lookback_days)
    by_vendor = Counter(vendor_names.get(e.vendor_id, e.vendor_id) for e in events)
    by_type = Counter(e.change_type or "unknown" for e in events)
    ordered = sorted(events, key=lambda e: e.created_at, reverse=True)
    return WeeklyDigest(
        period_start=start,
        period_end=now,
        total=len(events),
        by_vendor=dict(by_vendor.most_common()),
        by_change_type=dict(by_type.most_common()),
        headlines=[e.title for e in ordered[:HEADLINES_MAX]],
    )


def render_digest(digest: WeeklyDigest) -> tuple[str, str]:
    """Retourne (sujet, corps texte) du digest."""
    subject = f"Weekly course update digest: {digest.total} change(s)"
    lines = [
        f"Period: {digest.period_start:%Y-%m-%d} to {digest.period_end:%Y-%m-%d}",
        f"Changes detected: {digest.total}",
        "",
        "By vendor:",
        *[f"  - {name}: {count}" for name, count in digest.by_vendor.items()],
        "",
        "By change type:",
        *[f"  - {kind}: {count}" for kind, count in digest.by_change_type.items()],
        "",
        "Headlines:",
        *[f"  - {title}" for title in digest.headlines],
    ]
    return subject, "\n".join(lines)
