# ============================================================
# Module : sentinel/domain/classifier.py
# Objet  : Classification d'impact d'un changement sur le catalogue d'assets.
# Invariants :
#  - Un asset absent de la sortie est non impacté (pas de ligne à confiance nulle).
#  - Un asset inconnu du catalogue est écarté ; un asset cité deux fois garde sa 1re prédiction.
#  - Règles opérateur > heuristiques fixes > proposition du LLM.
# ============================================================
"""Classifieur d'impact : LLM guidé par des heuristiques fixes et des règles opérateur."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from sentinel.domain.entities import (
    AssetProfile,
    AssetType,
    ChangeSummary,
    ChangeType,
    ImpactAssessment,
    ImpactBatch,
    PredictedAction,
    RuleProfile,
    Severity,
)
from sentinel.infra.llm.structured import StructuredLLM

log = structlog.get_logger(__name__)

CLASSIFY_STAGE = "classify"
CLASSIFY_TEMPERATURE = 0.2

DEPRECATION_SENSITIVE_MODULES = frozenset({"M2", "M3", "M4"})
READER_LIMIT_RE = re.compile(r"\b(reader|research)\b.{0,60}\blimits?\b|\blimits?\b.{0,60}\b(reader|research)\b", re.I)
RENAME_RE = re.compile(
    r"\b(renam\w*|rebrand\w*|now called|reorder\w*|re-ordered|steps? (?:moved|changed|swapped))\b", re.I
)

HEURISTICS_TEXT = """\
- Core feature rename or reordered steps -> SCREEN_REDO; if the name is spoken on camera/marketing -> also FACE_RESHOOT
- New mandatory safety/policy requirement -> POLICY_NOTE (SEV1 if blocking, else lower)
- Cosmetic UI change only -> SLIDES_EDIT (SEV3) unless a live demo breaks
- New recommended capability -> SCREEN_REDO (SEV2)
- Connector deprecated in modules M2/M3/M4 -> SCREEN_REDO (SEV1)
- Reader/Research limit change -> SLIDES_EDIT (SEV2) + worksheet tweak
- Free tier/pricing change -> POLICY_NOTE (SEV2)"""

SYSTEM_PROMPT = (
    "You are an expert course maintenance classifier. Analyze tool changes and predict their "
    "impact on educational assets. Only list assets that are affected. Always respond with valid JSON."
)


@dataclass(frozen=True)
class Heuristic:
    action: PredictedAction
    severity: Severity
    reason: str


def build_classify_messages(
    summary: ChangeSummary,
    assets: Sequence[AssetProfile],
    rules: Sequence[RuleProfile],
) -> list[dict[str, str]]:
    user = (
        "Classify the impact of this AI tool change on course assets.\n\n"
        f"Change Summary:\n{summary.model_dump_json(indent=2)}\n\n"
        f"Course Assets:\n{json.dumps([a.model_dump() for a in assets], indent=2, ensure_ascii=False)}\n\n"
        f"Decision Rules (take precedence over heuristics for their modules):\n"
        f"{json.dumps([r.model_dump(mode='json') for r in rules], indent=2, ensure_ascii=False)}\n\n"
        f"Heuristics:\n{HEURISTICS_TEXT}\n\n"
        "Return one entry per affected asset with asset_id, predicted_action, severity, "
        "confidence (0.0-1.0) and reasons."
    )
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


def change_text(summary: ChangeSummary) -> str:
    """Texte contre lequel les motifs de règles et les tags sont comparés."""
    return " ".join([summary.summary, *summary.entities, *summary.risks]).lower()


def rule_matches(rule: RuleProfile, text: str) -> bool:
    pattern = rule.pattern.strip().lower()
    return bool(pattern) and pattern in text


def heuristic_for(summary: ChangeSummary, asset: AssetProfile, proposed: ImpactAssessment) -> Heuristic | None:
    """Heuristique fixe applicable à (changement, asset), ou None."""
    text = change_text(summary)
    kind = summary.change_type
    if kind is ChangeType.DEPRECATION and asset.module_code in DEPRECATION_SENSITIVE_MODULES:
        return Heuristic(PredictedAction.SCREEN_REDO, Severity.SEV1, "connector deprecated in M2/M3/M4")
    if kind is ChangeType.PRICING:
        return Heuristic(PredictedAction.POLICY_NOTE, Severity.SEV2, "free tier/pricing change")
    if READER_LIMIT_RE.search(text):
        return Heuristic(PredictedAction.SLIDES_EDIT, Severity.SEV2, "reader/research limit change: worksheet tweak needed")
    if RENAME_RE.search(text):
        # le nom est prononcé à l'écran : le tournage prime sur la capture
        if proposed.predicted_action is PredictedAction.FACE_RESHOOT:
            return Heuristic(PredictedAction.FACE_RESHOOT, proposed.severity, "renamed feature spoken on camera")
        return Heuristic(PredictedAction.SCREEN_REDO, proposed.severity, "core feature renamed or steps reordered")
    if kind is ChangeType.POLICY:
        blocking = proposed.severity is Severity.SEV1
        return Heuristic(
            PredictedAction.POLICY_NOTE,
            proposed.severity,
            "blocking policy requirement" if blocking else "non-blocking policy requirement",
        )
    if kind is ChangeType.CAPABILITY:
        return Heuristic(PredictedAction.SCREEN_REDO, Severity.SEV2, "new recommended capability")
    if kind is ChangeType.UI and proposed.predicted_action is not PredictedAction.FACE_RESHOOT:
        demo_breaks = (
            asset.asset_type in (AssetType.SCREEN_DEMO.value, AssetType.TOOL_CLIP.value)
            and proposed.predicted_action is PredictedAction.SCREEN_REDO
        )
        if not demo_breaks:
            return Heuristic(PredictedAction.SLIDES_EDIT, Severity.SEV3, "cosmetic UI change")
    return None


def refine_impacts(
    summary: ChangeSummary,
    assets: Sequence[AssetProfile],
    rules: Sequence[RuleProfile],
    proposed: Sequence[ImpactAssessment],
) -> list[ImpactAssessment]:
    """Post-traitement déterministe de la sortie du LLM.

    Écarte les assets inconnus et les doublons, applique les heuristiques fixes puis
    les règles opérateur dont le motif correspond et qui couvrent le module de l'asset.
    """
    by_id = {a.id: a for a in assets}
    text = change_text(summary)
    matched_rules = [r for r in rules if rule_matches(r, text)]
    refined: list[ImpactAssessment] = []
    seen: set[str] = set()
    for impact in proposed:
        asset = by_id.get(impact.asset_id)
        if asset is None:
            log.warning("impact_unknown_asset_dropped", asset_id=impact.asset_id)
            continue
        if impact.asset_id in seen:
            continue
        seen.add(impact.asset_id)

        action, severity = impact.predicted_action, impact.severity
        reasons = list(impact.reasons)
        heuristic = heuristic_for(summary, asset, impact)
        if heuristic is not None:
            action, severity = heuristic.action, heuristic.severity
            reasons.append(f"heuristic: {heuristic.reason}")
        for rule in matched_rules:
            if not rule.modules or asset.module_code in rule.modules:
                action, severity = rule.action, rule.severity
                reasons.append(f"decision rule: {rule.pattern}")
                break
        tags = [t for t in asset.trigger_tags if t and t.lower() in text]
        if tags:
            reasons.append(f"trigger tags matched: {', '.join(tags)}")

        refined.append(
            impact.model_copy(update={"predicted_action": action, "severity": severity, "reasons": reasons})
        )
    return refined


class ImpactClassifier:
    """Classe un résumé de changement contre le catalogue d'assets et les règles actives."""

    def __init__(self, llm: StructuredLLM) -> None:
        self.llm = llm

    def classify(
        self,
        summary: ChangeSummary,
        assets: Sequence[AssetProfile],
        rules: Sequence[RuleProfile],
    ) -> list[ImpactAssessment]:
        if not assets:
            return []
        batch = self.llm.complete(
            CLASSIFY_STAGE,
            build_classify_messages(summary, assets, rules),
            ImpactBatch,
            temperature=CLASSIFY_TEMPERATURE,
        )
        impacts = refine_impacts(summary, assets, rules, batch.impacts)
        log.info("impacts_classified", proposed=len(batch.impacts), kept=len(impacts))
        return impacts
