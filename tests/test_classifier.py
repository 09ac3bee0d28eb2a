"""Tests du classifieur d'impact : heuristiques fixes, règles opérateur, post-traitement."""

from __future__ import annotations

from sentinel.domain.classifier import ImpactClassifier, heuristic_for, refine_impacts
from sentinel.domain.entities import (
    AssetProfile,
    ChangeSummary,
    ImpactAssessment,
    PredictedAction,
    RuleProfile,
    Severity,
)
from sentinel.infra.llm.structured import StructuredLLM
from tests.fakes import ScriptedLLM

DEMO = AssetProfile(id="demo", module_code="M2", asset_type="SCREEN_DEMO", sensitivity="High", trigger_tags=["connector"])
SLIDES = AssetProfile(id="slides", module_code="M1", asset_type="SLIDES", sensitivity="Low")
CLIP = AssetProfile(id="clip", module_code="M5", asset_type="TOOL_CLIP", sensitivity="Medium", trigger_tags=["canvas"])
ASSETS = [DEMO, SLIDES, CLIP]


def _summary(change_type: str, text: str = "Something changed", entities: list[str] | None = None) -> ChangeSummary:
    return ChangeSummary(summary=text, change_type=change_type, entities=entities or [])


def _proposed(asset_id: str, action: str = "SLIDES_EDIT", severity: str = "SEV3", confidence: float = 0.6):
    return ImpactAssessment(
        asset_id=asset_id, predicted_action=action, severity=severity, confidence=confidence, reasons=["llm"]
    )


def test_deprecation_in_sensitive_module_is_sev1_screen_redo():
    summary = _summary("deprecation", "Google Drive connector deprecated")
    out = refine_impacts(summary, ASSETS, [], [_proposed("demo"), _proposed("slides")])
    by_id = {i.asset_id: i for i in out}
    assert by_id["demo"].predicted_action is PredictedAction.SCREEN_REDO
    assert by_id["demo"].severity is Severity.SEV1
    assert by_id["demo"].reasons[0] == "llm"
    # M1 n'est pas concerné par l'heuristique de dépréciation
    assert by_id["slides"].predicted_action is PredictedAction.SLIDES_EDIT
    assert by_id["slides"].severity is Severity.SEV3
    # Le tag « connector » de l'asset est cité
    assert any("connector" in r for r in by_id["demo"].reasons)


def test_pricing_change_is_policy_note_sev2():
    out = refine_impacts(_summary("pricing", "Free tier reduced"), ASSETS, [], [_proposed("slides")])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.POLICY_NOTE, Severity.SEV2)


def test_policy_requirement_is_policy_note_keeping_blocking_severity():
    summary = _summary("policy", "New mandatory age verification before use")
    proposals = [_proposed("slides", "SCREEN_REDO", "SEV2"), _proposed("demo", "SCREEN_REDO", "SEV1")]
    by_id = {i.asset_id: i for i in refine_impacts(summary, ASSETS, [], proposals)}
    assert (by_id["slides"].predicted_action, by_id["slides"].severity) == (PredictedAction.POLICY_NOTE, Severity.SEV2)
    assert (by_id["demo"].predicted_action, by_id["demo"].severity) == (PredictedAction.POLICY_NOTE, Severity.SEV1)
    assert "heuristic: blocking policy requirement" in by_id["demo"].reasons


def test_renamed_feature_keeps_face_reshoot_and_redoes_screens():
    summary = _summary("ui", "Custom GPTs renamed to Agents; steps reordered in builder")
    proposals = [_proposed("clip", "FACE_RESHOOT", "SEV2"), _proposed("slides", "SCREEN_REDO", "SEV2")]
    by_id = {i.asset_id: i for i in refine_impacts(summary, ASSETS, [], proposals)}
    assert (by_id["clip"].predicted_action, by_id["clip"].severity) == (PredictedAction.FACE_RESHOOT, Severity.SEV2)
    assert (by_id["slides"].predicted_action, by_id["slides"].severity) == (PredictedAction.SCREEN_REDO, Severity.SEV2)


def test_reordered_steps_turn_slide_edit_into_screen_redo():
    summary = _summary("capability", "Builder steps reordered", entities=["builder"])
    out = refine_impacts(summary, ASSETS, [], [_proposed("demo", "SLIDES_EDIT", "SEV2")])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.SCREEN_REDO, Severity.SEV2)
    assert "heuristic: core feature renamed or steps reordered" in out[0].reasons


def test_cosmetic_ui_leaves_face_reshoot_alone():
    proposal = _proposed("clip", "FACE_RESHOOT", "SEV2")
    out = refine_impacts(_summary("ui", "Sidebar icons refreshed"), ASSETS, [], [proposal])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.FACE_RESHOOT, Severity.SEV2)


def test_reader_limit_change_requests_worksheet_tweak():
    summary = _summary("policy", "Deep Research usage limits reduced for Plus")
    out = refine_impacts(summary, ASSETS, [], [_proposed("clip", "SCREEN_REDO", "SEV1")])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.SLIDES_EDIT, Severity.SEV2)
    assert any("worksheet" in r for r in out[0].reasons)


def test_capability_is_screen_redo_sev2():
    out = refine_impacts(_summary("capability", "New agent mode"), ASSETS, [], [_proposed("demo")])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.SCREEN_REDO, Severity.SEV2)


def test_cosmetic_ui_unless_live_demo_breaks():
    summary = _summary("ui", "Sidebar icons refreshed")
    slides_proposal = _proposed("slides", "SCREEN_REDO", "SEV2")
    demo_proposal = _proposed("demo", "SCREEN_REDO", "SEV2")
    by_id = {i.asset_id: i for i in refine_impacts(summary, ASSETS, [], [slides_proposal, demo_proposal])}
    assert (by_id["slides"].predicted_action, by_id["slides"].severity) == (PredictedAction.SLIDES_EDIT, Severity.SEV3)
    # La démo casse : la proposition du LLM est conservée
    assert (by_id["demo"].predicted_action, by_id["demo"].severity) == (PredictedAction.SCREEN_REDO, Severity.SEV2)


def test_no_heuristic_keeps_llm_proposal():
    assert heuristic_for(_summary("api", "New endpoint"), DEMO, _proposed("demo")) is None


def test_rule_overrides_heuristics_for_its_modules_only():
    rule = RuleProfile(pattern="Canvas", action="FACE_RESHOOT", severity="SEV1", modules=["M5"])
    summary = _summary("capability", "Canvas gets code execution", entities=["canvas"])
    by_id = {
        i.asset_id: i
        for i in refine_impacts(summary, ASSETS, [rule], [_proposed("clip"), _proposed("demo")])
    }
    assert (by_id["clip"].predicted_action, by_id["clip"].severity) == (PredictedAction.FACE_RESHOOT, Severity.SEV1)
    assert "decision rule: Canvas" in by_id["clip"].reasons
    assert (by_id["demo"].predicted_action, by_id["demo"].severity) == (PredictedAction.SCREEN_REDO, Severity.SEV2)


def test_rule_without_modules_applies_to_every_listed_asset():
    rule = RuleProfile(pattern="voice", action="POLICY_NOTE", severity="SEV3")
    out = refine_impacts(_summary("capability", "Voice mode update"), ASSETS, [rule], [_proposed("demo")])
    assert (out[0].predicted_action, out[0].severity) == (PredictedAction.POLICY_NOTE, Severity.SEV3)


def test_unknown_and_duplicate_assets_are_dropped():
    proposed = [_proposed("ghost"), _proposed("demo", confidence=0.9), _proposed("demo", confidence=0.1)]
    out = refine_impacts(_summary("api"), ASSETS, [], proposed)
    assert [(i.asset_id, i.confidence) for i in out] == [("demo", 0.9)]


def test_classifier_skips_llm_without_assets():
    llm = ScriptedLLM()
    assert ImpactClassifier(StructuredLLM(llm)).classify(_summary("ui"), [], []) == []
    assert llm.calls == []


def test_classifier_end_to_end():
    llm = ScriptedLLM(
        {
            "classify": {
                "impacts": [
                    {"asset_id": "demo", "predicted_action": "SLIDES_EDIT", "severity": "SEV3", "confidence": 75},
                ]
            }
        }
    )
    impacts = ImpactClassifier(StructuredLLM(llm)).classify(_summary("capability", "New agent mode"), ASSETS, [])
    assert len(impacts) == 1
    assert impacts[0].confidence == 0.75
    assert impacts[0].predicted_action is PredictedAction.SCREEN_REDO
    call = llm.calls_for("classify")[0]
    assert call["temperature"] == 0.2
    assert "Connector deprecated in modules M2/M3/M4" in call["messages"][1]["content"]
