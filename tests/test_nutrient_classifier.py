"""
Tests for nutrient classification and requirement lookup.
"""
import math

import pytest

from fertisense.services.nutrient_classifier import classify, classify_reading, npk_class
from fertisense.services.recommendation_rules import (
    LEVEL_ORDER,
    Nutrient,
    NutrientLevel,
    Season,
    SoilClass,
    Variety,
)
from fertisense.services.requirement_resolver import (
    FarmSelection,
    NutrientRequirement,
    degrade_unavailable,
    required_kg_per_ha,
)
from fertisense.services.rule_sets import RuleSetId, load_rule_set


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize("rule_set_id", list(RuleSetId))
    def test_monotonic_in_concentration(self, rule_set_id):
        rule_set = load_rule_set(rule_set_id)
        values = [x / 2 for x in range(0, 1001)]
        for nutrient in Nutrient:
            previous = None
            for value in values:
                level = classify(nutrient, value, rule_set)
                if previous is not None:
                    assert LEVEL_ORDER[previous] <= LEVEL_ORDER[level], (
                        f"{rule_set_id.value} {nutrient.value}: {value} classified below a smaller value"
                    )
                previous = level

    def test_da_nitrogen_bounds_are_inclusive(self, da_rule_set):
        assert classify(Nutrient.N, 100, da_rule_set) == NutrientLevel.LOW
        assert classify(Nutrient.N, 100.4, da_rule_set) == NutrientLevel.LOW
        assert classify(Nutrient.N, 100.5, da_rule_set) == NutrientLevel.MEDIUM
        assert classify(Nutrient.N, 200, da_rule_set) == NutrientLevel.MEDIUM
        assert classify(Nutrient.N, 201, da_rule_set) == NutrientLevel.HIGH

    def test_da_potassium_thresholds(self, da_rule_set):
        assert classify(Nutrient.K, 117, da_rule_set) == NutrientLevel.LOW
        assert classify(Nutrient.K, 118, da_rule_set) == NutrientLevel.MEDIUM
        assert classify(Nutrient.K, 275, da_rule_set) == NutrientLevel.MEDIUM
        assert classify(Nutrient.K, 276, da_rule_set) == NutrientLevel.HIGH

    def test_irri_thresholds_differ_from_da(self, da_rule_set, irri_rule_set):
        assert classify(Nutrient.P, 250, da_rule_set) == NutrientLevel.HIGH
        assert classify(Nutrient.P, 250, irri_rule_set) == NutrientLevel.LOW

    @pytest.mark.parametrize("value", [0, -5, None, math.nan, math.inf, True])
    def test_unusable_values_are_unavailable(self, da_rule_set, value):
        assert classify(Nutrient.N, value, da_rule_set) == NutrientLevel.UNAVAILABLE

    def test_scenario_a_levels(self, da_rule_set):
        levels = classify_reading(250, 50, 400, da_rule_set)
        assert levels == {
            Nutrient.N: NutrientLevel.HIGH,
            Nutrient.P: NutrientLevel.LOW,
            Nutrient.K: NutrientLevel.HIGH,
        }
        assert npk_class(levels) == "HLH"

    def test_npk_class_marks_unavailable(self, da_rule_set):
        levels = classify_reading(0, 150, 50, da_rule_set)
        assert npk_class(levels) == "-ML"


class TestRequirementResolver:
    """Tests for required_kg_per_ha()."""

    def test_scenario_a_row(self, da_rule_set):
        requirement = required_kg_per_ha(
            FarmSelection(Variety.HYBRID, SoilClass.LIGHT, Season.WET),
            NutrientLevel.HIGH, NutrientLevel.LOW, NutrientLevel.HIGH,
            da_rule_set,
        )
        assert requirement == NutrientRequirement(60.0, 60.0, 30.0)

    def test_missing_combination_falls_back_to_default_row(self, da_rule_set):
        requirement = required_kg_per_ha(
            FarmSelection(Variety.INBRED, SoilClass.MEDIUM_HEAVY, Season.DRY),
            NutrientLevel.LOW, NutrientLevel.MEDIUM, NutrientLevel.HIGH,
            da_rule_set,
        )
        assert requirement == NutrientRequirement(120.0, 45.0, 30.0)

    def test_full_table_lookup(self, irri_rule_set):
        requirement = required_kg_per_ha(
            FarmSelection(Variety.INBRED, SoilClass.MEDIUM_HEAVY, Season.WET),
            NutrientLevel.LOW, NutrientLevel.MEDIUM, NutrientLevel.HIGH,
            irri_rule_set,
        )
        assert requirement == NutrientRequirement(90.0, 40.0, 20.0)

    def test_hybrid_dry_season_needs_more_nitrogen(self, irri_rule_set):
        wet = required_kg_per_ha(
            FarmSelection(Variety.HYBRID, SoilClass.LIGHT, Season.WET),
            NutrientLevel.MEDIUM, NutrientLevel.MEDIUM, NutrientLevel.MEDIUM,
            irri_rule_set,
        )
        dry = required_kg_per_ha(
            FarmSelection(Variety.HYBRID, SoilClass.LIGHT, Season.DRY),
            NutrientLevel.MEDIUM, NutrientLevel.MEDIUM, NutrientLevel.MEDIUM,
            irri_rule_set,
        )
        assert dry.nitrogen_kg_per_ha > wet.nitrogen_kg_per_ha

    def test_scaled_by_area(self):
        requirement = NutrientRequirement(60.0, 45.0, 30.0)
        assert requirement.scaled(2.0) == {Nutrient.N: 120.0, Nutrient.P: 90.0, Nutrient.K: 60.0}

    def test_degrade_unavailable_warns_per_nutrient(self):
        warnings = []
        levels = degrade_unavailable(
            {
                Nutrient.N: NutrientLevel.UNAVAILABLE,
                Nutrient.P: NutrientLevel.HIGH,
                Nutrient.K: NutrientLevel.UNAVAILABLE,
            },
            warnings,
        )
        assert levels[Nutrient.N] == NutrientLevel.LOW
        assert levels[Nutrient.P] == NutrientLevel.HIGH
        assert levels[Nutrient.K] == NutrientLevel.LOW
        assert len(warnings) == 2
