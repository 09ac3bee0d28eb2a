"""Tests des empreintes de contenu, des machines à états et de l'auto-approbation."""

from __future__ import annotations

import pytest

from sentinel.domain.dedup import DedupFilter, content_fingerprint, is_duplicate
from sentinel.domain.entities import ImpactAssessment, ImpactStatus, Severity, TaskStatus
from sentinel.domain.errors import InvalidTransitionError
from sentinel.domain.state_machine import (
    can_transition_task,
    ensure_impact_transition,
    ensure_task_transition,
    should_auto_approve,
)


def test_fingerprint_is_deterministic_and_content_sensitive():
    """Même contenu brut -> même empreinte ; un caractère de plus la change."""
    assert content_fingerprint("release notes") == content_fingerprint("release notes")
    assert content_fingerprint("release notes") != content_fingerprint("release notes!")
    assert len(content_fingerprint("x")) == 64


def test_dedup_filter_rejects_known_and_in_batch_duplicates():
    known = {content_fingerprint("old")}
    dedup = DedupFilter(known)
    assert not dedup.accept(content_fingerprint("old"))
    assert dedup.accept(content_fingerprint("new"))
    # Même lot : le second exemplaire est un doublon
    assert not dedup.accept(content_fingerprint("new"))
    assert len(dedup) == 2


def test_is_duplicate_accepts_any_iterable():
    h = content_fingerprint("a")
    assert is_duplicate([h], h)
    assert not is_duplicate(iter([]), h)


@pytest.mark.parametrize(
    ("confidence", "severity", "expected"),
    [
        (0.81, Severity.SEV2, True),
        (0.5, Severity.SEV1, True),
        (0.5, Severity.SEV2, False),
        (0.8, Severity.SEV3, False),
    ],
)
def test_auto_approve_policy(confidence, severity, expected):
    """Confiance strictement supérieure au seuil OU SEV1."""
    assert should_auto_approve(confidence, severity) is expected


def test_auto_approve_threshold_is_configurable():
    assert should_auto_approve(0.6, "SEV3", threshold=0.5)
    assert not should_auto_approve(0.9, "SEV3", threshold=0.95)


def test_impact_decision_is_terminal():
    ensure_impact_transition(ImpactStatus.PENDING, ImpactStatus.APPROVED)
    with pytest.raises(InvalidTransitionError) as exc:
        ensure_impact_transition(ImpactStatus.APPROVED, ImpactStatus.REJECTED)
    assert exc.value.current == "APPROVED"
    assert exc.value.target == "REJECTED"


def test_task_transitions():
    assert can_transition_task(TaskStatus.OPEN, TaskStatus.IN_PROGRESS)
    assert can_transition_task(TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED)
    assert can_transition_task(TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS)
    assert can_transition_task(TaskStatus.IN_PROGRESS, TaskStatus.DONE)
    assert not can_transition_task(TaskStatus.OPEN, TaskStatus.DONE)
    assert not can_transition_task(TaskStatus.BLOCKED, TaskStatus.DONE)
    with pytest.raises(InvalidTransitionError):
        ensure_task_transition("DONE", "IN_PROGRESS")


@pytest.mark.parametrize(("raw", "expected"), [(0.42, 0.42), (85, 0.85), ("90%", 0.9), (-3, 0.0), (250, 1.0)])
def test_confidence_normalization(raw, expected):
    impact = ImpactAssessment(asset_id="a", predicted_action="SLIDES_EDIT", severity="SEV3", confidence=raw)
    assert impact.confidence == pytest.approx(expected)
