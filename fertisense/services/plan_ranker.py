"""
Plan Ranker.

Marks the cheapest plan without reordering what the user sees. Also holds the
trust checks for plan lists computed by the server.
"""
from typing import Any, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum
import math
import logging

from fertisense.services.blend_solver import Schedule
from fertisense.services.cost_evaluator import PlanCost
from fertisense.services.recommendation_rules import (
    SERVER_PLAN_MAX_TOTAL_BAGS,
    SERVER_PLAN_MIN_COUNT,
    Stage,
)

logger = logging.getLogger(__name__)


class PlanSource(str, Enum):
    SERVER_COMPUTED = "SERVER_COMPUTED"
    LOCALLY_COMPUTED = "LOCALLY_COMPUTED"


@dataclass
class Plan:
    id: str
    label: str
    schedule: Schedule
    cost: Optional[PlanCost] = None
    is_cheapest: bool = False
    source: PlanSource = PlanSource.LOCALLY_COMPUTED

    @property
    def total_cost(self) -> Optional[float]:
        if self.cost is None or not self.cost.has_total:
            return None
        return self.cost.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "source": PlanSource(self.source).value,
            "isCheapest": self.is_cheapest,
            "schedule": self.schedule.to_payload(),
            "cost": self.cost.to_dict() if self.cost is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        cost = data.get("cost")
        return cls(
            id=str(data["id"]),
            label=data.get("label", str(data["id"])),
            schedule=Schedule.from_payload(data.get("schedule") or {}, candidate_id=str(data["id"])),
            cost=PlanCost.from_dict(cost) if cost else None,
            is_cheapest=bool(data.get("isCheapest", False)),
            source=PlanSource(data.get("source", PlanSource.LOCALLY_COMPUTED.value)),
        )


def rank(plans: List[Plan]) -> List[Plan]:
    """
    Keep plans that carry real fertilizer and flag the cheapest one.

    Order is the candidate order; only ``is_cheapest`` changes. When no plan
    has a known total, nothing is flagged. Ties go to the earlier plan.
    """
    ranked = [p for p in plans if p.schedule.has_real_fertilizer()]
    dropped = len(plans) - len(ranked)
    if dropped:
        logger.info(f"Dropped {dropped} plan(s) without fertilizer lines")

    for plan in ranked:
        plan.is_cheapest = False

    if not any(p.total_cost is not None for p in ranked):
        return ranked

    by_cost = sorted(
        ranked,
        key=lambda p: p.total_cost if p.total_cost is not None else math.inf,
    )
    by_cost[0].is_cheapest = True
    return ranked


def cheapest_plan(plans: List[Plan]) -> Optional[Plan]:
    for plan in plans:
        if plan.is_cheapest:
            return plan
    return None


def _server_plan_lines(raw_plan: Dict[str, Any]) -> List[Dict[str, Any]]:
    schedule = raw_plan.get("schedule") or {}
    lines = []
    for key in ("basal", "after30DAT", "topdress60DBH"):
        value = schedule.get(key) or []
        if isinstance(value, list):
            lines.extend(item for item in value if isinstance(item, dict))
    return lines


def server_plan_looks_sane(raw_plan: Any) -> bool:
    """A server plan needs fertilizer lines with a finite total of (0, 60] bags."""
    if not isinstance(raw_plan, dict):
        return False
    lines = _server_plan_lines(raw_plan)
    if not lines:
        return False
    try:
        total_bags = sum(float(item.get("bags") or 0) for item in lines)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(total_bags):
        return False
    return 0 < total_bags <= SERVER_PLAN_MAX_TOTAL_BAGS


def server_plans_are_usable(raw_plans: Any) -> bool:
    if not isinstance(raw_plans, list) or len(raw_plans) < SERVER_PLAN_MIN_COUNT:
        return False
    return sum(1 for p in raw_plans if server_plan_looks_sane(p)) >= SERVER_PLAN_MIN_COUNT
