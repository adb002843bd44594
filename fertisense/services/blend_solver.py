"""
Blend Solver.

Turns a per-hectare requirement into bag counts for one candidate blend:

1. Scale the requirement by farm area.
2. Size every basal grade against its role (P, K or both) and credit the
   N, P, K those bags deliver.
3. Cover the remaining N with the candidate's nitrogen source, split evenly
   between the 30-day and topdress applications.
4. Reject the candidate when a bag count is negative, non-finite or above
   the candidate ceiling.
5. Add the fixed organic line.

Credit uses unrounded bag counts; only the published bag numbers are rounded
(2 decimals, half-up). Rounding can leave the published schedule short of a
target by at most half a rounding step (0.005 bag) per line: a nutrient may fall
short by up to 0.005 x its kg per bag, summed over the basal components and
both nitrogen halves, which are rounded separately. Lines that round to zero
are dropped and count toward the same allowance.
"""
from typing import Dict, List, Optional, Union
from dataclasses import dataclass, field
import math
import logging

from fertisense.services.fertilizer_grades import get_grade, kg_per_bag, resolve_code
from fertisense.services.recommendation_errors import (
    ConfigurationError,
    InfeasibleBlendError,
    InputError,
)
from fertisense.services.recommendation_rules import (
    BAG_DECIMALS,
    ORGANIC_BAGS_PER_HA,
    ORGANIC_GRADE_CODE,
    Nutrient,
    Stage,
    round_half_up,
)
from fertisense.services.requirement_resolver import NutrientRequirement
from fertisense.services.rule_sets import BlendRole, CandidateBlend

logger = logging.getLogger(__name__)

ROLE_NUTRIENTS = {
    BlendRole.P: (Nutrient.P,),
    BlendRole.K: (Nutrient.K,),
    BlendRole.PK: (Nutrient.P, Nutrient.K),
}

# Remote-log / server payload bucket names.
STAGE_PAYLOAD_KEYS = {
    Stage.ORGANIC: "organic",
    Stage.BASAL: "basal",
    Stage.AFTER_30_DAYS: "after30DAT",
    Stage.TOPDRESS: "topdress60DBH",
}


@dataclass
class ScheduleLine:
    grade_code: str
    bags: float

    @property
    def is_organic(self) -> bool:
        return self.grade_code == ORGANIC_GRADE_CODE


@dataclass
class Schedule:
    """Four-bucket application schedule for one plan."""
    stages: Dict[Stage, List[ScheduleLine]] = field(
        default_factory=lambda: {stage: [] for stage in Stage}
    )
    candidate_id: Optional[str] = None
    supplied_kg: Dict[Nutrient, float] = field(default_factory=dict)

    def lines(self, stage: Stage) -> List[ScheduleLine]:
        return self.stages.setdefault(Stage(stage), [])

    def add_line(self, stage: Stage, grade_code: str, bags: float):
        self.lines(stage).append(ScheduleLine(grade_code, bags))

    def iter_lines(self):
        for stage in Stage:
            for line in self.stages.get(stage, []):
                yield stage, line

    def has_organic_line(self) -> bool:
        return any(line.is_organic for _, line in self.iter_lines())

    def has_real_fertilizer(self) -> bool:
        return any(not line.is_organic and line.bags > 0 for _, line in self.iter_lines())

    def total_bags(self, include_organic: bool = False) -> float:
        total = sum(
            line.bags for _, line in self.iter_lines()
            if include_organic or not line.is_organic
        )
        return round_half_up(total, BAG_DECIMALS) if math.isfinite(total) else total

    def bags_by_grade(self) -> Dict[str, Dict[Stage, float]]:
        """Bag counts per grade per stage, in first-appearance order."""
        table: Dict[str, Dict[Stage, float]] = {}
        for stage, line in self.iter_lines():
            row = table.setdefault(line.grade_code, {s: 0.0 for s in Stage})
            row[stage] = round_half_up(row[stage] + line.bags, BAG_DECIMALS)
        return table

    def to_payload(self) -> Dict[str, List[Dict]]:
        payload = {}
        for stage, key in STAGE_PAYLOAD_KEYS.items():
            payload[key] = [
                {"code": get_grade(line.grade_code).dash_code, "bags": line.bags}
                for line in self.stages.get(stage, [])
            ]
        return payload

    @classmethod
    def from_payload(cls, payload: Dict, candidate_id: Optional[str] = None) -> "Schedule":
        """
        Rebuild a schedule from the remote-log / server shape.

        Lines whose code is not in the registry raise ConfigurationError.
        """
        schedule = cls(candidate_id=candidate_id)
        for stage, key in STAGE_PAYLOAD_KEYS.items():
            for item in payload.get(key) or []:
                code = resolve_code(item.get("code"))
                if code is None:
                    raise ConfigurationError(f"Unknown grade in schedule payload: {item.get('code')!r}")
                schedule.add_line(stage, code, float(item.get("bags", 0)))
        return schedule


@dataclass(frozen=True)
class Infeasible:
    candidate_id: str
    reason: str

    def to_error(self) -> InfeasibleBlendError:
        return InfeasibleBlendError(self.candidate_id, self.reason)


SolveResult = Union[Schedule, Infeasible]


def _role_kg_per_bag(candidate_id: str, grade_code: str, nutrient: Nutrient) -> float:
    per_bag = kg_per_bag(get_grade(grade_code), nutrient)
    if per_bag <= 0:
        raise ConfigurationError(
            f"{candidate_id}: grade {grade_code} cannot supply {nutrient.value}"
        )
    return per_bag


def _check_bags(value: float) -> Optional[str]:
    if not math.isfinite(value):
        return "non-finite bag count"
    if value < 0:
        return "negative bag count"
    return None


def add_organic_line(schedule: Schedule, area_ha: float) -> Schedule:
    """Append the fixed-rate organic line unless the schedule already has one."""
    if schedule.has_organic_line():
        return schedule
    bags = round_half_up(ORGANIC_BAGS_PER_HA * area_ha, BAG_DECIMALS)
    if bags > 0:
        schedule.add_line(Stage.ORGANIC, ORGANIC_GRADE_CODE, bags)
    return schedule


def solve(requirement: NutrientRequirement, area_ha: float, candidate: CandidateBlend) -> SolveResult:
    """Solve one candidate. Returns a Schedule, or Infeasible with the reason."""
    if area_ha is None or not math.isfinite(area_ha) or area_ha <= 0:
        raise InputError(f"Farm area must be a positive number of hectares, got {area_ha!r}")

    targets = requirement.scaled(area_ha)
    supplied = {n: 0.0 for n in Nutrient}
    schedule = Schedule(candidate_id=candidate.id)

    for component in candidate.basal:
        grade = get_grade(component.grade_code)
        raw_bags = max(
            targets[n] / _role_kg_per_bag(candidate.id, grade.code, n)
            for n in ROLE_NUTRIENTS[component.role]
        )
        problem = _check_bags(raw_bags)
        if problem:
            return Infeasible(candidate.id, f"{grade.code}: {problem}")

        for nutrient in Nutrient:
            supplied[nutrient] += raw_bags * kg_per_bag(grade, nutrient)

        bags = round_half_up(raw_bags, BAG_DECIMALS)
        if bags > candidate.max_basal_bags:
            return Infeasible(
                candidate.id,
                f"{grade.code}: {bags} bags exceeds basal ceiling {candidate.max_basal_bags}",
            )
        if bags > 0:
            schedule.add_line(Stage.BASAL, grade.code, bags)

    nitrogen_grade = get_grade(candidate.nitrogen_source)
    n_per_bag = _role_kg_per_bag(candidate.id, nitrogen_grade.code, Nutrient.N)
    remaining_n = targets[Nutrient.N] - supplied[Nutrient.N]
    n_bags = max(remaining_n, 0.0) / n_per_bag

    problem = _check_bags(n_bags)
    if problem:
        return Infeasible(candidate.id, f"{nitrogen_grade.code}: {problem}")
    if round_half_up(n_bags, BAG_DECIMALS) > candidate.max_nitrogen_bags:
        return Infeasible(
            candidate.id,
            f"{nitrogen_grade.code}: {round_half_up(n_bags, BAG_DECIMALS)} bags exceeds "
            f"nitrogen ceiling {candidate.max_nitrogen_bags}",
        )

    for nutrient in Nutrient:
        supplied[nutrient] += n_bags * kg_per_bag(nitrogen_grade, nutrient)

    half = round_half_up(n_bags / 2.0, BAG_DECIMALS)
    if half > 0:
        schedule.add_line(Stage.AFTER_30_DAYS, nitrogen_grade.code, half)
        schedule.add_line(Stage.TOPDRESS, nitrogen_grade.code, half)

    schedule.supplied_kg = supplied
    add_organic_line(schedule, area_ha)

    logger.debug(
        f"Solved {candidate.id}: basal={len(schedule.lines(Stage.BASAL))} lines, "
        f"N source {n_bags:.3f} bags, total {schedule.total_bags()} bags"
    )
    return schedule


def solve_or_raise(requirement: NutrientRequirement, area_ha: float, candidate: CandidateBlend) -> Schedule:
    result = solve(requirement, area_ha, candidate)
    if isinstance(result, Infeasible):
        raise result.to_error()
    return result
