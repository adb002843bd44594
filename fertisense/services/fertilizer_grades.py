"""
Fertilizer Grade Registry.

Static, read-only table of the commercial products the blend solver may use.
Codes match the keys of the public price catalog (e.g. ``UREA_46_0_0``); the
"dash code" (``46-0-0``) is what farmers read on the bag and what the
presentation layer prints.

Price-per-bag is NOT part of a grade - prices come from the price catalog and
may be unavailable offline.
"""
from typing import Dict, List, Optional
from dataclasses import dataclass
import logging

from fertisense.services.recommendation_errors import ConfigurationError
from fertisense.services.recommendation_rules import (
    DEFAULT_BAG_MASS_KG,
    ORGANIC_GRADE_CODE,
    Nutrient,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FertilizerGrade:
    """Guaranteed N-P-K composition of one product and its retail bag size."""
    code: str
    label: str
    dash_code: str
    nitrogen_pct: float
    phosphorus_pct: float
    potassium_pct: float
    bag_mass_kg: float = DEFAULT_BAG_MASS_KG
    is_organic: bool = False

    def get_nutrient_pct(self, nutrient: Nutrient) -> float:
        mapping = {
            Nutrient.N: self.nitrogen_pct,
            Nutrient.P: self.phosphorus_pct,
            Nutrient.K: self.potassium_pct,
        }
        return mapping.get(Nutrient(nutrient), 0.0)

    def provides_nutrient(self, nutrient: Nutrient) -> bool:
        return self.get_nutrient_pct(nutrient) > 0


_GRADES = (
    FertilizerGrade("UREA_46_0_0", "Urea", "46-0-0", 46.0, 0.0, 0.0),
    FertilizerGrade("DAP_18_46_0", "Diammonium Phosphate (DAP)", "18-46-0", 18.0, 46.0, 0.0),
    FertilizerGrade("NPK_16_20_0", "Ammonium Phosphate", "16-20-0", 16.0, 20.0, 0.0),
    FertilizerGrade("MOP_0_0_60", "Muriate of Potash (MOP)", "0-0-60", 0.0, 0.0, 60.0),
    FertilizerGrade("NPK_14_14_14", "Complete", "14-14-14", 14.0, 14.0, 14.0),
    FertilizerGrade("AMMOSUL_21_0_0", "Ammonium Sulfate (Ammosul)", "21-0-0", 21.0, 0.0, 0.0),
    FertilizerGrade(ORGANIC_GRADE_CODE, "Organic Fertilizer", "organic", 0.0, 0.0, 0.0, is_organic=True),
)

FERTILIZER_GRADES: Dict[str, FertilizerGrade] = {g.code: g for g in _GRADES}

DASH_CODE_TO_CODE: Dict[str, str] = {g.dash_code: g.code for g in _GRADES}


def resolve_code(code_or_dash: str) -> Optional[str]:
    """Map either a catalog code or a dash code to the registry code."""
    if not code_or_dash:
        return None
    key = str(code_or_dash).strip()
    if key in FERTILIZER_GRADES:
        return key
    if key.upper() in FERTILIZER_GRADES:
        return key.upper()
    return DASH_CODE_TO_CODE.get(key)


def get_grade(code: str) -> FertilizerGrade:
    """
    Look up a grade by catalog code or dash code.

    A miss is a programmer error: the registry and the candidate blends are
    maintained together, so an unknown code means the rule set is broken.
    """
    resolved = resolve_code(code)
    if resolved is None:
        raise ConfigurationError(f"Unknown fertilizer grade code: {code!r}")
    return FERTILIZER_GRADES[resolved]


def list_grades(include_organic: bool = True) -> List[FertilizerGrade]:
    return [g for g in _GRADES if include_organic or not g.is_organic]


def kg_per_bag(grade: FertilizerGrade, nutrient: Nutrient) -> float:
    """Kilograms of a nutrient delivered by one bag of the grade."""
    pct = grade.get_nutrient_pct(nutrient)
    if pct <= 0:
        return 0.0
    return (pct / 100.0) * grade.bag_mass_kg
