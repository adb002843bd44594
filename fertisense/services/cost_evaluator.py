"""
Cost Evaluator.

Prices a schedule line by line. Missing prices never count as zero: the line
subtotal stays None and the plan total covers only the priced lines.
"""
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

from fertisense.services.blend_solver import Schedule
from fertisense.services.price_catalog import PriceCatalog
from fertisense.services.recommendation_rules import (
    DEFAULT_CURRENCY,
    MONEY_DECIMALS,
    ORGANIC_GRADE_CODE,
    Stage,
    round_half_up,
)

logger = logging.getLogger(__name__)


@dataclass
class CostLine:
    grade_code: str
    stage: Stage
    bags: float
    price_per_bag: Optional[float] = None
    subtotal: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gradeCode": self.grade_code,
            "stage": Stage(self.stage).value,
            "bags": self.bags,
            "pricePerBag": self.price_per_bag,
            "subtotal": self.subtotal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostLine":
        return cls(
            grade_code=data["gradeCode"],
            stage=Stage(data.get("stage", Stage.BASAL.value)),
            bags=float(data.get("bags", 0)),
            price_per_bag=data.get("pricePerBag"),
            subtotal=data.get("subtotal"),
        )


@dataclass
class PlanCost:
    currency: str
    lines: List[CostLine] = field(default_factory=list)
    total: float = 0.0

    @property
    def priced_line_count(self) -> int:
        return sum(1 for line in self.lines if line.subtotal is not None)

    @property
    def has_total(self) -> bool:
        """True when at least one line could be priced."""
        return self.priced_line_count > 0

    @property
    def is_partial(self) -> bool:
        return any(line.subtotal is None and line.grade_code != ORGANIC_GRADE_CODE for line in self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "lines": [line.to_dict() for line in self.lines],
            "total": self.total,
            "partial": self.is_partial,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanCost":
        return cls(
            currency=data.get("currency", DEFAULT_CURRENCY),
            lines=[CostLine.from_dict(line) for line in data.get("lines", [])],
            total=float(data.get("total") or 0.0),
        )


def cost(schedule: Schedule, catalog: Optional[PriceCatalog]) -> Optional[PlanCost]:
    """Cost a schedule against a catalog; None when the catalog is unavailable."""
    if catalog is None:
        return None

    lines = []
    for stage, line in schedule.iter_lines():
        price = None if line.is_organic else catalog.price_per_bag(line.grade_code)
        subtotal = None
        if price is not None:
            subtotal = round_half_up(line.bags * price, MONEY_DECIMALS)
        lines.append(CostLine(line.grade_code, stage, line.bags, price, subtotal))

    total = round_half_up(
        sum(line.subtotal for line in lines if line.subtotal is not None),
        MONEY_DECIMALS,
    )
    return PlanCost(currency=catalog.currency, lines=lines, total=total)
