"""
Nutrient Classifier.

Maps a raw sensor concentration (ppm) to an LMH level using the thresholds of
the active rule set. Concentrations are rounded half-up to an integer before
comparison, the way the values are shown on the reading screen.
"""
from typing import Dict, Optional
import math
import logging

from fertisense.services.recommendation_rules import (
    Nutrient,
    NutrientLevel,
    round_half_up,
)
from fertisense.services.rule_sets import RuleSet

logger = logging.getLogger(__name__)


def _is_usable(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0


def classify(nutrient: Nutrient, concentration: Optional[float], rule_set: RuleSet) -> NutrientLevel:
    """
    Classify one nutrient concentration.

    Bounds are inclusive: value <= low_max is LOW, value <= medium_max is
    MEDIUM, anything above is HIGH. Non-finite, missing or non-positive
    values are UNAVAILABLE.
    """
    if not _is_usable(concentration):
        return NutrientLevel.UNAVAILABLE

    threshold = rule_set.thresholds[Nutrient(nutrient)]
    value = round_half_up(float(concentration), 0)

    if value <= threshold.low_max:
        return NutrientLevel.LOW
    if value <= threshold.medium_max:
        return NutrientLevel.MEDIUM
    return NutrientLevel.HIGH


def classify_reading(nitrogen_ppm, phosphorus_ppm, potassium_ppm, rule_set: RuleSet) -> Dict[Nutrient, NutrientLevel]:
    return {
        Nutrient.N: classify(Nutrient.N, nitrogen_ppm, rule_set),
        Nutrient.P: classify(Nutrient.P, phosphorus_ppm, rule_set),
        Nutrient.K: classify(Nutrient.K, potassium_ppm, rule_set),
    }


def npk_class(levels: Dict[Nutrient, NutrientLevel]) -> str:
    """Three-letter class code such as ``HLH``; unavailable nutrients print as ``-``."""
    return "".join(NutrientLevel(levels[n]).short_code for n in (Nutrient.N, Nutrient.P, Nutrient.K))
