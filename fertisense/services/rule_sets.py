"""
Rule-set loader.

A rule set bundles everything that differs between presentation contexts:
classifier thresholds, the nested requirement table and the ordered list of
candidate blends. Tables live in ``data/rule_sets.json`` and are parsed once.
"""
from typing import Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import json
import logging

from fertisense.services.fertilizer_grades import get_grade
from fertisense.services.recommendation_errors import ConfigurationError
from fertisense.services.recommendation_rules import (
    Nutrient,
    NutrientLevel,
    Season,
    SoilClass,
    Variety,
)

logger = logging.getLogger(__name__)

RULE_SETS_PATH = Path(__file__).parent.parent / "data" / "rule_sets.json"

_rule_sets_cache: Optional[Dict[str, "RuleSet"]] = None


class RuleSetId(str, Enum):
    DA_RICE_V1 = "DA_RICE_V1"
    IRRI_RICE_V1 = "IRRI_RICE_V1"


class BlendRole(str, Enum):
    """Which requirement a basal grade is sized against."""
    P = "P"
    K = "K"
    PK = "PK"


@dataclass(frozen=True)
class NutrientThreshold:
    low_max: float
    medium_max: float
    unit: str = "ppm"


@dataclass(frozen=True)
class BasalComponent:
    grade_code: str
    role: BlendRole


@dataclass(frozen=True)
class CandidateBlend:
    """
    Hand-curated product combination.

    Basal grades supply P and K at planting; the nitrogen source covers the
    remaining N, split between the 30-day and topdress applications.
    """
    id: str
    label: str
    basal: Tuple[BasalComponent, ...]
    nitrogen_source: str
    max_basal_bags: float
    max_nitrogen_bags: float

    @property
    def grade_codes(self) -> List[str]:
        return [b.grade_code for b in self.basal] + [self.nitrogen_source]


RequirementTable = Dict[Variety, Dict[SoilClass, Dict[Season, Dict[Nutrient, Dict[NutrientLevel, float]]]]]


@dataclass
class RuleSet:
    id: str
    name: str
    crop: str
    thresholds: Dict[Nutrient, NutrientThreshold]
    requirements: RequirementTable
    fallback: Tuple[Variety, SoilClass, Season]
    candidates: List[CandidateBlend] = field(default_factory=list)

    def get_candidate(self, candidate_id: str) -> CandidateBlend:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        raise ConfigurationError(f"Rule set {self.id} has no candidate {candidate_id!r}")


def clear_rule_set_cache():
    """Clear the cache to reload rule sets on next call."""
    global _rule_sets_cache
    _rule_sets_cache = None


def _parse_requirements(raw: Dict) -> RequirementTable:
    table: RequirementTable = {}
    for variety, by_soil in raw.items():
        for soil_class, by_season in by_soil.items():
            for season, by_nutrient in by_season.items():
                row = {
                    Nutrient(nutrient): {NutrientLevel(level): float(kg) for level, kg in levels.items()}
                    for nutrient, levels in by_nutrient.items()
                }
                table.setdefault(Variety(variety), {}).setdefault(SoilClass(soil_class), {})[Season(season)] = row
    return table


def _parse_candidate(raw: Dict) -> CandidateBlend:
    candidate = CandidateBlend(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        basal=tuple(BasalComponent(b["grade"], BlendRole(b["role"])) for b in raw.get("basal", [])),
        nitrogen_source=raw["nitrogen_source"],
        max_basal_bags=float(raw["max_basal_bags"]),
        max_nitrogen_bags=float(raw["max_nitrogen_bags"]),
    )
    for code in candidate.grade_codes:
        get_grade(code)
    return candidate


def _parse_rule_set(rule_set_id: str, raw: Dict) -> RuleSet:
    fallback_raw = raw.get("fallback", {})
    fallback = (
        Variety(fallback_raw.get("variety", "HYBRID")),
        SoilClass(fallback_raw.get("soil_class", "LIGHT")),
        Season(fallback_raw.get("season", "WET")),
    )
    requirements = _parse_requirements(raw.get("requirements", {}))
    try:
        requirements[fallback[0]][fallback[1]][fallback[2]]
    except KeyError:
        raise ConfigurationError(f"Rule set {rule_set_id} is missing its fallback requirement row")

    thresholds = {
        Nutrient(n): NutrientThreshold(float(t["low_max"]), float(t["medium_max"]), t.get("unit", "ppm"))
        for n, t in raw.get("thresholds", {}).items()
    }
    for nutrient in Nutrient:
        if nutrient not in thresholds:
            raise ConfigurationError(f"Rule set {rule_set_id} has no {nutrient.value} thresholds")

    return RuleSet(
        id=rule_set_id,
        name=raw.get("name", rule_set_id),
        crop=raw.get("crop", "rice"),
        thresholds=thresholds,
        requirements=requirements,
        fallback=fallback,
        candidates=[_parse_candidate(c) for c in raw.get("candidates", [])],
    )


def load_rule_sets() -> Dict[str, RuleSet]:
    """Load and validate every rule set from rule_sets.json."""
    global _rule_sets_cache
    if _rule_sets_cache is not None:
        return _rule_sets_cache

    try:
        with open(RULE_SETS_PATH, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not load rule sets: {e}") from e

    try:
        parsed = {
            rule_set_id: _parse_rule_set(rule_set_id, raw)
            for rule_set_id, raw in data.get("rule_sets", {}).items()
        }
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed rule set data: {e}") from e

    logger.debug(f"Loaded rule sets: {sorted(parsed)}")
    _rule_sets_cache = parsed
    return parsed


def load_rule_set(rule_set_id: Union[RuleSetId, str]) -> RuleSet:
    key = rule_set_id.value if isinstance(rule_set_id, RuleSetId) else str(rule_set_id)
    rule_sets = load_rule_sets()
    if key not in rule_sets:
        raise ConfigurationError(f"Unknown rule set: {key!r}")
    return rule_sets[key]
