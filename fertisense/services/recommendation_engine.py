"""
Recommendation Engine.

Runs one reading through the whole pipeline:

    classify -> resolve requirement -> solve candidates -> cost -> rank

The price catalog and the optional server DA recommendation are fetched
concurrently; both are allowed to fail. Without prices every plan keeps
``cost=None`` and no plan is marked cheapest.
"""
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import math
import logging

import httpx

from fertisense.config import DEFAULT_RULE_SET
from fertisense.services.api_client import FertisenseApiClient
from fertisense.services.blend_solver import Infeasible, Schedule, add_organic_line, solve
from fertisense.services.cost_evaluator import CostLine, PlanCost, cost
from fertisense.services.fertilizer_grades import get_grade, resolve_code
from fertisense.services.nutrient_classifier import classify_reading, npk_class
from fertisense.services.plan_ranker import (
    Plan,
    PlanSource,
    cheapest_plan,
    rank,
    server_plan_looks_sane,
    server_plans_are_usable,
)
from fertisense.services.price_catalog import PriceCatalog
from fertisense.services.reading_aggregator import SoilReading, SpotSample, aggregate
from fertisense.services.recommendation_errors import (
    ConfigurationError,
    InputError,
    NotFoundError,
    SessionInvalidError,
)
from fertisense.services.recommendation_rules import (
    BAG_DECIMALS,
    DEFAULT_CURRENCY,
    Nutrient,
    NutrientLevel,
    Stage,
    round_half_up,
)
from fertisense.services.requirement_resolver import (
    FarmSelection,
    NutrientRequirement,
    degrade_unavailable,
    required_kg_per_ha,
)
from fertisense.services.rule_sets import RuleSet, RuleSetId, load_rule_set

logger = logging.getLogger(__name__)

DA_PLAN_ID = "DA_RULE"
DA_PLAN_LABEL = "DA Recommendation"

SERVER_PHASE_TO_STAGE = {
    "ORGANIC": Stage.ORGANIC,
    "BASAL": Stage.BASAL,
    "30 DAT": Stage.AFTER_30_DAYS,
    "AFTER_30_DAYS": Stage.AFTER_30_DAYS,
    "TOPDRESS": Stage.TOPDRESS,
}


class RecommendationStatus(str, Enum):
    OK = "OK"
    SESSION_INVALID = "SESSION_INVALID"
    NO_PLAN_AVAILABLE = "NO_PLAN_AVAILABLE"


@dataclass
class Recommendation:
    status: RecommendationStatus
    rule_set_id: str
    selection: FarmSelection
    area_ha: float
    reading: Optional[SoilReading] = None
    levels: Dict[Nutrient, NutrientLevel] = field(default_factory=dict)
    requirement: Optional[NutrientRequirement] = None
    plans: List[Plan] = field(default_factory=list)
    selected_plan_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def nutrient_class(self) -> str:
        if not self.levels:
            return "---"
        return npk_class(self.levels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "ruleSetId": self.rule_set_id,
            "selection": self.selection.to_dict(),
            "areaHa": self.area_ha,
            "reading": self.reading.to_dict() if self.reading else None,
            "levels": {n.value: NutrientLevel(level).value for n, level in self.levels.items()},
            "nutrientClass": self.nutrient_class,
            "requirement": self.requirement.to_dict() if self.requirement else None,
            "plans": [p.to_dict() for p in self.plans],
            "selectedPlanId": self.selected_plan_id,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        reading = data.get("reading")
        requirement = data.get("requirement")
        return cls(
            status=RecommendationStatus(data["status"]),
            rule_set_id=data.get("ruleSetId", DEFAULT_RULE_SET),
            selection=FarmSelection.from_dict(data.get("selection") or {}),
            area_ha=float(data.get("areaHa", 1.0)),
            reading=SoilReading.from_dict(reading) if reading else None,
            levels={Nutrient(n): NutrientLevel(level) for n, level in (data.get("levels") or {}).items()},
            requirement=NutrientRequirement(**requirement) if requirement else None,
            plans=[Plan.from_dict(p) for p in data.get("plans", [])],
            selected_plan_id=data.get("selectedPlanId"),
            warnings=list(data.get("warnings", [])),
        )


def default_selected_plan_id(plans: List[Plan]) -> Optional[str]:
    """Cheapest plan if one is marked, else the first presented plan."""
    if not plans:
        return None
    chosen = cheapest_plan(plans) or plans[0]
    return chosen.id


def select_plan(plans: List[Plan], plan_id: Optional[str]) -> Plan:
    """Return the plan with ``plan_id``; the default plan when ``plan_id`` is None."""
    if plan_id is None:
        default_id = default_selected_plan_id(plans)
        if default_id is None:
            raise NotFoundError("No plans available")
        plan_id = default_id
    for plan in plans:
        if plan.id == str(plan_id):
            return plan
    raise NotFoundError(f"Unknown plan id: {plan_id}")


def plan_cost_from_server(block: Dict[str, Any], fallback_currency: str = DEFAULT_CURRENCY) -> Optional[PlanCost]:
    """Convert a server cost block ``{currency, rows, total}`` to a PlanCost."""
    if not isinstance(block, dict):
        return None
    lines = []
    for row in block.get("rows") or []:
        code = resolve_code(row.get("code") or row.get("key"))
        if code is None:
            continue
        price = row.get("pricePerBag")
        subtotal = row.get("subtotal")
        lines.append(CostLine(
            grade_code=code,
            stage=SERVER_PHASE_TO_STAGE.get(str(row.get("phase", "BASAL")).upper(), Stage.BASAL),
            bags=float(row.get("bags") or 0),
            price_per_bag=float(price) if price is not None else None,
            subtotal=float(subtotal) if subtotal is not None else None,
        ))
    try:
        total = float(block.get("total") or 0)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(total):
        return None
    return PlanCost(currency=str(block.get("currency") or fallback_currency), lines=lines, total=total)


class RecommendationEngine:
    """
    Builds ranked plans for a reading.

    ``price_adapter`` is anything with an async ``fetch()`` returning a
    PriceCatalog or None. ``api_client`` enables the server DA recommendation;
    without it every plan is computed locally.
    """

    def __init__(
        self,
        price_adapter=None,
        api_client: Optional[FertisenseApiClient] = None,
        default_rule_set: Union[RuleSetId, str] = DEFAULT_RULE_SET,
    ):
        self.price_adapter = price_adapter
        self.api_client = api_client
        self.default_rule_set = default_rule_set

    async def _fetch_catalog(self) -> Optional[PriceCatalog]:
        if self.price_adapter is None:
            return None
        return await self.price_adapter.fetch()

    async def _fetch_server_recommendation(self, levels: Dict[Nutrient, NutrientLevel], area_ha: float) -> Optional[Dict]:
        if self.api_client is None:
            return None
        try:
            response = await self.api_client.get_da_recommendation(
                levels[Nutrient.N].short_code,
                levels[Nutrient.P].short_code,
                levels[Nutrient.K].short_code,
                area_ha=area_ha,
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Server recommendation unavailable: {e.__class__.__name__}: {e}")
            return None
        return response if isinstance(response, dict) else None

    def _server_plan(self, raw: Dict[str, Any], index: int, area_ha: float, catalog: Optional[PriceCatalog]) -> Optional[Plan]:
        plan_id = str(raw.get("id") or raw.get("code") or f"SERVER_{index + 1}")
        try:
            schedule = Schedule.from_payload(raw.get("schedule") or {}, candidate_id=plan_id)
        except (ConfigurationError, TypeError, ValueError) as e:
            logger.warning(f"Skipping server plan {plan_id}: {e}")
            return None
        add_organic_line(schedule, area_ha)
        plan_cost = plan_cost_from_server(raw.get("cost"), catalog.currency if catalog else DEFAULT_CURRENCY)
        if plan_cost is None:
            plan_cost = cost(schedule, catalog)
        return Plan(
            id=plan_id,
            label=str(raw.get("label") or raw.get("title") or plan_id),
            schedule=schedule,
            cost=plan_cost,
            source=PlanSource.SERVER_COMPUTED,
        )

    def _local_plans(
        self,
        rule_set: RuleSet,
        requirement: NutrientRequirement,
        area_ha: float,
        catalog: Optional[PriceCatalog],
        warnings: List[str],
    ) -> List[Plan]:
        plans = []
        for candidate in rule_set.candidates:
            result = solve(requirement, area_ha, candidate)
            if isinstance(result, Infeasible):
                logger.warning(f"Candidate {result.candidate_id} infeasible: {result.reason}")
                warnings.append(f"{candidate.label} not available: {result.reason}")
                continue
            plans.append(Plan(
                id=candidate.id,
                label=candidate.label,
                schedule=result,
                cost=cost(result, catalog),
                source=PlanSource.LOCALLY_COMPUTED,
            ))
        return plans

    async def recommend(
        self,
        reading: SoilReading,
        selection: FarmSelection,
        area_ha: float = 1.0,
        rule_set_id: Union[RuleSetId, str, None] = None,
    ) -> Recommendation:
        rule_set = load_rule_set(rule_set_id or self.default_rule_set)
        if area_ha is None or not math.isfinite(area_ha) or area_ha <= 0:
            raise InputError(f"Farm area must be a positive number of hectares, got {area_ha!r}")

        levels = classify_reading(reading.nitrogen_ppm, reading.phosphorus_ppm, reading.potassium_ppm, rule_set)
        result = Recommendation(
            status=RecommendationStatus.OK,
            rule_set_id=rule_set.id,
            selection=selection,
            area_ha=area_ha,
            reading=reading,
            levels=levels,
        )

        if all(level == NutrientLevel.UNAVAILABLE for level in levels.values()):
            logger.warning("Reading has no usable N, P or K value, no plans generated")
            result.status = RecommendationStatus.SESSION_INVALID
            result.warnings.append("No usable N, P or K reading; take the reading again")
            return result

        if reading.is_partial:
            result.warnings.append(
                f"Reading averaged from {reading.valid_sample_count} complete samples"
            )

        lookup_levels = degrade_unavailable(levels, result.warnings)
        result.requirement = required_kg_per_ha(
            selection,
            lookup_levels[Nutrient.N],
            lookup_levels[Nutrient.P],
            lookup_levels[Nutrient.K],
            rule_set,
        )

        catalog, server = await asyncio.gather(
            self._fetch_catalog(),
            self._fetch_server_recommendation(lookup_levels, area_ha),
        )
        if catalog is None:
            result.warnings.append("Prices unavailable; costs not shown")

        plans: List[Plan] = []
        server_plans = server.get("plans") if server else None
        if server_plans_are_usable(server_plans):
            for index, raw in enumerate(server_plans):
                if not server_plan_looks_sane(raw):
                    continue
                plan = self._server_plan(raw, index, area_ha, catalog)
                if plan is not None:
                    plans.append(plan)
            logger.info(f"Using {len(plans)} server-computed plans")
        else:
            if server and isinstance(server.get("schedule"), dict):
                da_plan = self._server_plan(
                    {"id": DA_PLAN_ID, "label": DA_PLAN_LABEL, "schedule": server["schedule"], "cost": server.get("cost")},
                    0, area_ha, catalog,
                )
                if da_plan is not None:
                    plans.append(da_plan)
            plans.extend(self._local_plans(rule_set, result.requirement, area_ha, catalog, result.warnings))

        result.plans = rank(plans)
        if not result.plans:
            logger.warning(f"No feasible plan for {npk_class(levels)} under {rule_set.id}")
            result.status = RecommendationStatus.NO_PLAN_AVAILABLE
            return result

        result.selected_plan_id = default_selected_plan_id(result.plans)
        logger.info(
            f"Built {len(result.plans)} plan(s) for {result.nutrient_class} "
            f"({rule_set.id}, {area_ha} ha), selected {result.selected_plan_id}"
        )
        return result

    async def recommend_from_samples(
        self,
        samples: List[SpotSample],
        selection: FarmSelection,
        area_ha: float = 1.0,
        rule_set_id: Union[RuleSetId, str, None] = None,
        captured_at: Optional[datetime] = None,
    ) -> Recommendation:
        """Aggregate then recommend; an empty session yields SESSION_INVALID."""
        try:
            reading = aggregate(samples, captured_at=captured_at)
        except SessionInvalidError as e:
            logger.warning(f"Reading session invalid: {e}")
            rule_set = load_rule_set(rule_set_id or self.default_rule_set)
            return Recommendation(
                status=RecommendationStatus.SESSION_INVALID,
                rule_set_id=rule_set.id,
                selection=selection,
                area_ha=area_ha,
                warnings=[str(e)],
            )
        return await self.recommend(reading, selection, area_ha=area_ha, rule_set_id=rule_set_id)


def _stage_totals(rows: List[Dict[str, Any]]) -> Dict[str, float]:
    totals = {}
    for stage in Stage:
        totals[stage.value] = round_half_up(sum(r["stages"][stage.value] for r in rows), BAG_DECIMALS)
    return totals


def generate_report(
    recommendation: Recommendation,
    plan_id: Optional[str] = None,
    farmer_identity: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Report data for one plan. Pure: no I/O, no rendering.

    Rows are one per grade with bag counts per stage and a row total.
    """
    plan = select_plan(recommendation.plans, plan_id or recommendation.selected_plan_id)
    reading = recommendation.reading

    rows = []
    for grade_code, by_stage in plan.schedule.bags_by_grade().items():
        grade = get_grade(grade_code)
        stages = {stage.value: by_stage[stage] for stage in Stage}
        rows.append({
            "gradeCode": grade.code,
            "dashCode": grade.dash_code,
            "label": grade.label,
            "stages": stages,
            "totalBags": round_half_up(sum(stages.values()), BAG_DECIMALS),
        })

    badges = []
    if plan.is_cheapest:
        badges.append("Cheapest")
    if plan.source == PlanSource.SERVER_COMPUTED:
        badges.append("Server")

    return {
        "date": reading.captured_at.date().isoformat() if reading else None,
        "farmerIdentity": farmer_identity,
        "ruleSetId": recommendation.rule_set_id,
        "selection": recommendation.selection.to_dict(),
        "areaHa": recommendation.area_ha,
        "nutrientValues": {
            "N": reading.nitrogen_ppm if reading else None,
            "P": reading.phosphorus_ppm if reading else None,
            "K": reading.potassium_ppm if reading else None,
        },
        "pH": reading.ph if reading else None,
        "phStatus": reading.ph_status if reading else None,
        "levels": {n.value: NutrientLevel(level).value for n, level in recommendation.levels.items()},
        "npkClass": recommendation.nutrient_class,
        "plan": {
            "id": plan.id,
            "label": plan.label,
            "badges": badges,
            "source": plan.source.value,
        },
        "rows": rows,
        "stageTotals": _stage_totals(rows),
        "totalBags": plan.schedule.total_bags(include_organic=True),
        "cost": plan.cost.to_dict() if plan.cost is not None else None,
    }
