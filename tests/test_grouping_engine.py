"""
Tests for the grouping decision engine.

Covers:
1. Reference scenarios (match, fatal vetoes, empty input, clarity override)
2. Ranking and near-tie resolution
3. Explanations and serialisable results
4. Neighbor ranking and pairwise comparison
"""

import json

import pytest

from sightgroup.reid import grouping_engine
from sightgroup.reid.clarity import compute_clarity
from sightgroup.reid.grouping_engine import GroupingEngine, decide
from sightgroup.reid_config import merge_config
from sightgroup.reid_types import Accessory, EvidenceScore, GroupingResult

from conftest import build_description, dragon_tattoo, garment, group_of, trait


@pytest.fixture
def engine():
    return GroupingEngine()


@pytest.fixture
def fixed_evidence(monkeypatch):
    """Replace evidence scoring with fixed scores keyed by canonical natural_summary."""
    scores = {}

    def fake_score_evidence(new, canonical, config=None):
        pro, contra = scores[canonical.natural_summary]
        return EvidenceScore(pro_score=pro, contra_score=contra)

    monkeypatch.setattr(grouping_engine, "score_evidence", fake_score_evidence)
    return scores


# =============================================================================
# Reference scenarios
# =============================================================================

class TestScenarios:

    def test_accessory_difference_still_matches(self, engine):
        hat = Accessory(type="hat", description="black baseball cap", location="head",
                        permanence="removable", confidence=90)
        canonical = build_description(distinctive_marks=[dragon_tattoo()])
        new = build_description(distinctive_marks=[dragon_tattoo()],
                                accessories=list(canonical.accessories) + [hat])

        result = engine.decide(new, [group_of(canonical, group_id=7)])

        assert result.best_group_id == 7
        assert result.best_group_probability >= 60
        assert not result.fallback_applied

    def test_gender_conflict_excludes_group(self, engine):
        canonical = build_description(gender_presentation=trait("female", 85))
        new = build_description(gender_presentation=trait("male", 90))

        result = engine.decide(new, [group_of(canonical)])

        assert result.best_group_id is None
        assert result.best_group_probability == 0
        assert result.best_candidate.fatal_mismatch.type == "gender"
        assert result.explanation.startswith("Fatal mismatch: male vs female")

    def test_trousers_vs_skirt_excludes_group(self, engine):
        canonical = build_description(clothing={"trousers": garment("pleated skirt", "black", confidence=90)})
        new = build_description(clothing={"trousers": garment("blue jeans", "blue", confidence=90)})

        result = engine.decide(new, [group_of(canonical)])

        assert result.best_group_id is None
        assert result.best_candidate.fatal_mismatch.type == "lower_garment"

    def test_no_groups(self, engine, person):
        result = engine.decide(person, [])

        assert result.best_group_id is None
        assert result.best_group_probability == 0
        assert result.explanation == ""
        assert result.shortlist == []

    def test_no_description(self, engine, person):
        assert engine.decide(None, [group_of(person)]) == GroupingResult()

    def test_clarity_override(self, person, fixed_evidence):
        # Raw pro 117 normalises to 39.4; the stricter gate makes it a near miss.
        engine = GroupingEngine(merge_config({"grouping": {"norm_pro_min": 45}}))
        fixed_evidence["blurry"] = (117, 38)
        canonical = build_description(natural_summary="blurry")
        assert compute_clarity(person) >= 95

        result = engine.decide(person, [group_of(canonical, group_id=3, canonical_clarity=50)])

        assert result.best_group_id == 3
        assert result.fallback_applied
        assert result.best_group_probability == 60
        assert result.explanation_details.fallback_applied
        assert result.explanation_details.fallback_reason == "clarity_override"
        assert "Clarity override: new image_clarity 100 vs canonical 50." in result.explanation
        assert "Assigned to group 3 despite thresholds" in result.explanation

    def test_no_override_without_clarity_edge(self, person, fixed_evidence):
        engine = GroupingEngine(merge_config({"grouping": {"norm_pro_min": 45}}))
        fixed_evidence["sharp"] = (117, 38)
        canonical = build_description(natural_summary="sharp")

        result = engine.decide(person, [group_of(canonical, canonical_clarity=97)])

        assert result.best_group_id is None
        assert not result.fallback_applied
        assert result.explanation == "No group passed thresholds. Best candidate had proScore=117, contraScore=38."

    def test_no_override_when_pro_too_weak(self, person, fixed_evidence):
        engine = GroupingEngine(merge_config({"grouping": {"norm_pro_min": 45}}))
        fixed_evidence["weak"] = (110, 10)
        canonical = build_description(natural_summary="weak")

        result = engine.decide(person, [group_of(canonical, canonical_clarity=50)])
        assert result.best_group_id is None


# =============================================================================
# Ranking
# =============================================================================

class TestRanking:

    def test_highest_probability_wins(self, engine, person, fixed_evidence):
        fixed_evidence.update({"a": (150, 0), "b": (300, 0)})
        groups = [
            group_of(build_description(natural_summary="a"), group_id="a"),
            group_of(build_description(natural_summary="b"), group_id="b"),
        ]

        result = engine.decide(person, groups)

        assert result.best_group_id == "b"
        assert [c.group_id for c in result.shortlist] == ["b", "a"]

    def test_near_tie_prefers_less_contra(self, engine, person, fixed_evidence):
        # a: normPro 62.5, normContra ~7.7 -> 58; b: normPro ~52.6, no contra -> 53
        fixed_evidence.update({"a": (300, 10), "b": (200, 0)})
        groups = [
            group_of(build_description(natural_summary="a"), group_id="a"),
            group_of(build_description(natural_summary="b"), group_id="b"),
        ]

        result = engine.decide(person, groups)

        assert [c.group_id for c in result.shortlist] == ["a", "b"]
        assert result.best_group_id == "b"
        assert result.best_group_probability == 53

    def test_exact_tie_prefers_larger_group(self, engine, person, fixed_evidence):
        fixed_evidence.update({"small": (200, 0), "large": (200, 0)})
        groups = [
            group_of(build_description(natural_summary="small"), group_id="small", member_count=1),
            group_of(build_description(natural_summary="large"), group_id="large", member_count=4),
        ]
        assert engine.decide(person, groups).best_group_id == "large"

    def test_shortlist_is_limited(self, engine, person):
        groups = [group_of(person, group_id=i) for i in range(5)]
        assert len(engine.decide(person, groups).shortlist) == 3

    def test_vetoed_group_loses_to_survivor(self, engine, person):
        rival = build_description(gender_presentation=trait("female", 95))
        result = engine.decide(person, [group_of(rival, group_id=1), group_of(person, group_id=2)])

        assert result.best_group_id == 2
        assert [c.group_id for c in result.shortlist] == [2]

    def test_near_misses_shortlisted_when_nothing_survives(self, engine, person):
        weak = build_description(
            build=trait("slim"),
            hair={"color": trait("black", 40)},
            clothing={slot: garment("unknown", "unknown", confidence=0) for slot in ("top", "trousers", "shoes")},
        )
        vetoed = build_description(gender_presentation=trait("female", 95))

        result = engine.decide(person, [group_of(vetoed, group_id=1), group_of(weak, group_id=2)])

        assert result.best_group_id is None
        assert result.best_candidate.group_id == 2
        assert [c.group_id for c in result.shortlist] == [2, 1]
        assert result.explanation.startswith("No group passed thresholds.")

    def test_idempotent(self, engine, person):
        groups = [group_of(person, group_id=1), group_of(build_description(build=trait("slim")), group_id=2)]
        first = engine.decide(person, groups)
        second = engine.decide(person, groups)
        assert first.model_dump() == second.model_dump()

    def test_module_level_decide(self, person):
        assert decide(person, [group_of(person, group_id=9)]).best_group_id == 9


# =============================================================================
# Explanations
# =============================================================================

class TestExplanations:

    def test_survivor_explanation(self, engine, person):
        result = engine.decide(person, [group_of(person)])

        assert result.best_group_probability == 57
        assert result.explanation.startswith("Raw scores: pro=236, contra=0.")
        assert "Pro contributions: clothing 115, physical 85, hair 36." in result.explanation
        assert "Contra penalties: none." in result.explanation
        assert "normPro=56.7 (needs ≥35)" in result.explanation
        assert "probability=57%" in result.explanation

        details = result.explanation_details
        assert details.raw_scores == {"pro": 236, "contra": 0}
        assert [c.category for c in details.pro_contributions] == ["clothing", "physical", "hair"]
        assert details.normalized.required_norm_pro == 35
        assert details.clarity.new_image == 100

    def test_clothing_cap_note(self, engine, make_description):
        blazer = make_description(clothing={"jacket": garment("navy blazer", "navy")})
        result = engine.decide(blazer, [group_of(blazer)])

        assert "clothing 150 (capped at 120 of 150)" in result.explanation
        assert result.explanation_details.pro_contributions[0].note == "capped at 120 of 150"

    def test_vetoed_candidate_is_serialisable(self, engine, person):
        rival = build_description(gender_presentation=trait("female", 95))
        result = engine.decide(person, [group_of(rival)])

        assert result.best_candidate.contra_score is None
        assert result.best_candidate.norm_contra == 100
        assert result.explanation_details.raw_scores["contra"] is None
        payload = json.loads(result.model_dump_json())
        assert payload["best_group_probability"] == 0


# =============================================================================
# Neighbors and pairwise comparison
# =============================================================================

class TestNeighborsAndCompare:

    def test_rank_neighbors(self, engine, person):
        close = build_description(build=trait("slim"))
        vetoed = build_description(gender_presentation=trait("female", 95))
        groups = [group_of(close, group_id=1, representative_image="close.jpg"),
                  group_of(vetoed, group_id=2),
                  group_of(person, group_id=3)]

        neighbors = engine.rank_neighbors(person, groups)

        assert [n.group_id for n in neighbors] == [3, 1]
        assert neighbors[1].representative_image == "close.jpg"
        assert neighbors[0].score > neighbors[1].score

    def test_rank_neighbors_limit(self, engine, person):
        groups = [group_of(person, group_id=i) for i in range(5)]
        assert len(engine.rank_neighbors(person, groups, limit=2)) == 2

    def test_compare_same_person(self, engine, person):
        judgment = engine.compare(person, person)
        assert judgment.same_person
        assert judgment.probability == 57
        assert judgment.fatal_mismatch is None

    def test_compare_different_people(self, engine, person):
        judgment = engine.compare(person, build_description(gender_presentation=trait("female", 95)))
        assert not judgment.same_person
        assert judgment.fatal_mismatch.type == "gender"

    def test_compare_missing_description(self, engine, person):
        judgment = engine.compare(person, None)
        assert not judgment.same_person
        assert judgment.probability == 0
