"""
Deterministic constants shared by the recommendation engine.

Per-crop thresholds, requirement tables and candidate blends live in the
rule-set JSON; this module only holds values that apply to every rule set.
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

TARGET_SAMPLE_COUNT = 10
READING_DECIMALS = 1

BAG_DECIMALS = 2
MONEY_DECIMALS = 2
DEFAULT_BAG_MASS_KG = 50.0

ORGANIC_GRADE_CODE = "ORGANIC"
ORGANIC_BAGS_PER_HA = 20.0

DEFAULT_CURRENCY = "PHP"

# Server-provided plan lists are trusted only when every plan passes these.
SERVER_PLAN_MIN_COUNT = 3
SERVER_PLAN_MAX_TOTAL_BAGS = 60.0

SPOT_READ_ATTEMPTS = 2
SPOT_RETRY_PAUSE_SECONDS = 0.6
MIN_SPOT_DURATION_SECONDS = 3.5

PH_ACIDIC_BELOW = 5.5
PH_ALKALINE_ABOVE = 7.5


class Nutrient(str, Enum):
    N = "N"
    P = "P"
    K = "K"


class NutrientLevel(str, Enum):
    """Three-tier LMH classification plus UNAVAILABLE for unusable values."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    UNAVAILABLE = "UNAVAILABLE"

    @property
    def short_code(self) -> str:
        return {"LOW": "L", "MEDIUM": "M", "HIGH": "H"}.get(self.value, "-")


LEVEL_ORDER = {
    NutrientLevel.UNAVAILABLE: -1,
    NutrientLevel.LOW: 0,
    NutrientLevel.MEDIUM: 1,
    NutrientLevel.HIGH: 2,
}


class Variety(str, Enum):
    HYBRID = "HYBRID"
    INBRED = "INBRED"


class SoilClass(str, Enum):
    LIGHT = "LIGHT"
    MEDIUM_HEAVY = "MEDIUM_HEAVY"


class Season(str, Enum):
    WET = "WET"
    DRY = "DRY"


class Stage(str, Enum):
    """Application stage buckets of a schedule, in field order."""
    ORGANIC = "ORGANIC"
    BASAL = "BASAL"
    AFTER_30_DAYS = "AFTER_30_DAYS"
    TOPDRESS = "TOPDRESS"


def round_half_up(value: float, decimals: int) -> float:
    """Round like a farmer's calculator: 0.125 -> 0.13, never banker's rounding."""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
