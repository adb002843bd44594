"""
Requirement Resolver.

Looks up the per-hectare N, P, K mass for a farm selection and three nutrient
levels. Missing combinations fall back to the rule set's default row
(HYBRID / LIGHT / WET) so the engine always produces a requirement.
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional
import logging

from fertisense.services.recommendation_rules import (
    Nutrient,
    NutrientLevel,
    Season,
    SoilClass,
    Variety,
)
from fertisense.services.rule_sets import RuleSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FarmSelection:
    variety: Variety = Variety.HYBRID
    soil_class: SoilClass = SoilClass.LIGHT
    season: Season = Season.WET

    def to_dict(self) -> Dict[str, str]:
        return {
            "variety": Variety(self.variety).value,
            "soilClass": SoilClass(self.soil_class).value,
            "season": Season(self.season).value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "FarmSelection":
        return cls(
            variety=Variety(data.get("variety", Variety.HYBRID.value)),
            soil_class=SoilClass(data.get("soilClass", data.get("soil_class", SoilClass.LIGHT.value))),
            season=Season(data.get("season", Season.WET.value)),
        )


@dataclass(frozen=True)
class NutrientRequirement:
    """Required nutrient mass in kg/ha. Callers scale by farm area."""
    nitrogen_kg_per_ha: float
    phosphorus_kg_per_ha: float
    potassium_kg_per_ha: float

    def get(self, nutrient: Nutrient) -> float:
        return {
            Nutrient.N: self.nitrogen_kg_per_ha,
            Nutrient.P: self.phosphorus_kg_per_ha,
            Nutrient.K: self.potassium_kg_per_ha,
        }[Nutrient(nutrient)]

    def scaled(self, area_ha: float) -> Dict[Nutrient, float]:
        return {n: self.get(n) * area_ha for n in Nutrient}

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def degrade_unavailable(levels: Dict[Nutrient, NutrientLevel], warnings: Optional[List[str]] = None) -> Dict[Nutrient, NutrientLevel]:
    """
    Replace UNAVAILABLE with LOW for the requirement lookup.

    LOW asks for the largest dose, so a missing value never under-fertilizes.
    A warning is appended for every substituted nutrient.
    """
    resolved = {}
    for nutrient, level in levels.items():
        if level == NutrientLevel.UNAVAILABLE:
            logger.warning(f"{nutrient.value} reading unavailable, using LOW requirement")
            if warnings is not None:
                warnings.append(f"{nutrient.value} reading unavailable; LOW requirement applied")
            level = NutrientLevel.LOW
        resolved[nutrient] = level
    return resolved


def required_kg_per_ha(
    selection: FarmSelection,
    level_n: NutrientLevel,
    level_p: NutrientLevel,
    level_k: NutrientLevel,
    rule_set: RuleSet,
) -> NutrientRequirement:
    row = (
        rule_set.requirements
        .get(Variety(selection.variety), {})
        .get(SoilClass(selection.soil_class), {})
        .get(Season(selection.season))
    )
    if row is None:
        variety, soil_class, season = rule_set.fallback
        logger.info(
            f"No {rule_set.id} requirement row for {selection.to_dict()}, "
            f"using {variety.value}/{soil_class.value}/{season.value}"
        )
        row = rule_set.requirements[variety][soil_class][season]

    def lookup(nutrient: Nutrient, level: NutrientLevel) -> float:
        level = NutrientLevel(level)
        if level == NutrientLevel.UNAVAILABLE:
            level = NutrientLevel.LOW
        return float(row[nutrient][level])

    return NutrientRequirement(
        nitrogen_kg_per_ha=lookup(Nutrient.N, level_n),
        phosphorus_kg_per_ha=lookup(Nutrient.P, level_p),
        potassium_kg_per_ha=lookup(Nutrient.K, level_k),
    )
