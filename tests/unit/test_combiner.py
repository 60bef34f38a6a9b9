"""Unit tests for merging personal and global guidance."""

import pytest

from nrrds.feedback.combiner import GuidanceCombiner
from nrrds.models import GlobalGuidance, Guidance, WeightedToken


@pytest.fixture
def global_guidance():
    return GlobalGuidance(
        encourage_tokens=[WeightedToken(token="funny", weight=0.6), WeightedToken(token="weak", weight=0.15)],
        avoid_tokens=[WeightedToken(token="meeting", weight=0.8)],
        encourage_concepts=["tech"],
        avoid_concepts=["work"],
        concept_weights={"tech": 0.5, "work": 0.7},
    )


def test_temperature_zero_applies_half_influence(global_guidance):
    combined = GuidanceCombiner(influence=0.5, floor=0.1).combine(Guidance(), global_guidance, 0.0)

    assert combined.temperature == 0.0
    assert combined.encourage_token_names() == ["funny"]
    assert combined.encourage_tokens[0].weight == pytest.approx(0.3)
    assert combined.avoid_token_names() == ["meeting"]
    assert combined.avoid_tokens[0].weight == pytest.approx(0.4)
    assert combined.token_weights == pytest.approx({"funny": 0.3, "meeting": -0.4})
    assert combined.encourage_concepts == ["tech"]
    assert combined.avoid_concepts == ["work"]
    assert combined.concept_weights == pytest.approx({"tech": 0.25, "work": -0.35})


def test_temperature_one_ignores_global(global_guidance):
    """At full exploration no global term clears the significance floor."""
    combined = GuidanceCombiner().combine(Guidance(), global_guidance, 1.0)

    assert combined.encourage_tokens == []
    assert combined.avoid_tokens == []
    assert combined.encourage_concepts == []
    assert combined.avoid_concepts == []
    assert combined.temperature == 1.0


def test_personal_guidance_takes_precedence(global_guidance):
    personal = Guidance(
        encourage_tokens=[WeightedToken(token="meeting", weight=0.9)],
        token_weights={"meeting": 0.9, "funny": 0.05},
        avoid_concepts=["tech"],
    )

    combined = GuidanceCombiner().combine(personal, global_guidance, 0.0)

    assert combined.encourage_token_names() == ["meeting"]
    assert combined.avoid_token_names() == []
    assert combined.token_weights["funny"] == 0.05
    assert "tech" not in combined.encourage_concepts
    assert combined.avoid_concepts == ["tech", "work"]


def test_personal_input_not_mutated(global_guidance):
    personal = Guidance()
    GuidanceCombiner().combine(personal, global_guidance, 0.0)
    assert personal.encourage_tokens == []
    assert personal.token_weights == {}


def test_overused_themes_added_unless_personally_encouraged():
    personal = Guidance(encourage_concepts=["sleep"])

    combined = GuidanceCombiner().combine(personal, GlobalGuidance(), 0.5, ["coffee", "sleep"])

    assert combined.avoid_concepts == ["coffee"]
    assert combined.encourage_concepts == ["sleep"]


def test_combination_failure_falls_back_to_personal():
    personal = Guidance(encourage_concepts=["tech"])
    assert GuidanceCombiner().combine(personal, None, 0.3) is personal


def test_overused_theme_overrides_global_encouragement(global_guidance):
    """A globally encouraged concept that is overused ends up only on the avoid list."""
    combined = GuidanceCombiner(influence=0.5, floor=0.1).combine(Guidance(), global_guidance, 0.0, ["tech"])

    assert combined.encourage_concepts == []
    assert combined.avoid_concepts == ["work", "tech"]
    assert "tech" not in combined.concept_weights
    assert combined.concept_weights == pytest.approx({"work": -0.35})
