"""
Tests for the recommendation pipeline and report data.
"""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from conftest import flat_price_payload
from fertisense.services.api_client import FertisenseApiClient
from fertisense.services.plan_ranker import PlanSource
from fertisense.services.price_catalog import PriceCatalogAdapter, StaticPriceCatalogAdapter
from fertisense.services.reading_aggregator import SoilReading, SpotSample
from fertisense.services.recommendation_engine import (
    DA_PLAN_ID,
    Recommendation,
    RecommendationEngine,
    RecommendationStatus,
    generate_report,
    select_plan,
)
from fertisense.services.recommendation_errors import InputError, NotFoundError
from fertisense.services.recommendation_rules import Nutrient, NutrientLevel
from fertisense.services.requirement_resolver import FarmSelection, NutrientRequirement
from fertisense.services.rule_sets import RuleSetId

CAPTURED_AT = datetime(2026, 10, 18, 10, 0, 10, tzinfo=timezone.utc)

DA_CANDIDATE_IDS = ["ALT_DAP_MOP_UREA", "ALT_16_20_0_MOP_AMMOSUL", "ALT_14_14_14_UREA"]


def scenario_a_reading(**overrides):
    values = dict(
        nitrogen_ppm=250.0,
        phosphorus_ppm=50.0,
        potassium_ppm=400.0,
        ph=6.2,
        captured_at=CAPTURED_AT,
        sample_count=10,
        valid_sample_count=10,
    )
    values.update(overrides)
    return SoilReading(**values)


class SpyAdapter:
    def __init__(self, catalog=None):
        self.catalog = catalog
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        return self.catalog


def api_client_for(handler):
    return FertisenseApiClient(base_url="https://api.test", token="t0ken", transport=httpx.MockTransport(handler))


def recommend(engine, reading, area_ha=1.0, rule_set_id=RuleSetId.DA_RICE_V1):
    return asyncio.run(engine.recommend(reading, FarmSelection(), area_ha=area_ha, rule_set_id=rule_set_id))


class TestScenarioA:
    """HLH reading, hybrid/light/wet, 1 ha, flat prices."""

    def test_levels_requirement_and_plans(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading())

        assert result.status == RecommendationStatus.OK
        assert result.nutrient_class == "HLH"
        assert result.requirement == NutrientRequirement(60.0, 60.0, 30.0)
        assert [p.id for p in result.plans] == DA_CANDIDATE_IDS
        assert [p.total_cost for p in result.plans] == [5190.0, 8140.0, 8570.0]
        assert result.selected_plan_id == "ALT_DAP_MOP_UREA"
        assert all(p.source == PlanSource.LOCALLY_COMPUTED for p in result.plans)
        assert result.warnings == []

    def test_same_input_same_output(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        first = recommend(engine, scenario_a_reading()).to_dict()
        second = recommend(engine, scenario_a_reading()).to_dict()
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    def test_dict_round_trip(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading())
        assert Recommendation.from_dict(result.to_dict()).to_dict() == result.to_dict()

    def test_irri_rule_set(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading(), rule_set_id=RuleSetId.IRRI_RICE_V1)
        assert result.rule_set_id == "IRRI_RICE_V1"
        assert result.nutrient_class == "HLH"
        assert [p.id for p in result.plans] == ["CLASSIC_DAP_MOP_UREA", "CLASSIC_DAP_MOP_AMMOSUL"]


class TestInvalidSessions:

    def test_all_zero_reading_skips_price_fetch(self):
        spy = SpyAdapter()
        engine = RecommendationEngine(price_adapter=spy)
        reading = scenario_a_reading(nitrogen_ppm=0, phosphorus_ppm=0, potassium_ppm=0)

        result = recommend(engine, reading)

        assert result.status == RecommendationStatus.SESSION_INVALID
        assert result.plans == []
        assert result.selected_plan_id is None
        assert spy.calls == 0

    def test_no_usable_samples(self):
        spy = SpyAdapter()
        engine = RecommendationEngine(price_adapter=spy)
        samples = [SpotSample(ph=6.5), SpotSample(n=200, p=20, k=100, ok=False)]

        result = asyncio.run(engine.recommend_from_samples(samples, FarmSelection()))

        assert result.status == RecommendationStatus.SESSION_INVALID
        assert result.reading is None
        assert spy.calls == 0

    def test_bad_area(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        with pytest.raises(InputError):
            recommend(engine, scenario_a_reading(), area_ha=0)


class TestDegradedInputs:

    def test_prices_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        adapter = PriceCatalogAdapter(api_client_for(handler), timeout=3)
        engine = RecommendationEngine(price_adapter=adapter)

        result = recommend(engine, scenario_a_reading())

        assert result.status == RecommendationStatus.OK
        assert [p.id for p in result.plans] == DA_CANDIDATE_IDS
        assert all(p.cost is None for p in result.plans)
        assert not any(p.is_cheapest for p in result.plans)
        assert result.selected_plan_id == "ALT_DAP_MOP_UREA"
        assert any("Prices unavailable" in w for w in result.warnings)

    def test_one_nutrient_unavailable(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        reading = scenario_a_reading(nitrogen_ppm=None)

        result = recommend(engine, reading)

        assert result.status == RecommendationStatus.OK
        assert result.levels[Nutrient.N] == NutrientLevel.UNAVAILABLE
        assert result.nutrient_class == "-LH"
        assert result.requirement.nitrogen_kg_per_ha == 120.0
        assert any(w.startswith("N reading unavailable") for w in result.warnings)

    def test_partial_session_warns(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading(valid_sample_count=7, is_partial=True))
        assert result.status == RecommendationStatus.OK
        assert any("7 complete samples" in w for w in result.warnings)

    def test_large_farm_has_no_feasible_plan(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))

        result = recommend(engine, scenario_a_reading(), area_ha=100)

        assert result.status == RecommendationStatus.NO_PLAN_AVAILABLE
        assert result.plans == []
        assert len([w for w in result.warnings if "not available" in w]) == 3

    def test_ceiling_drops_single_candidate(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading(), area_ha=20)
        assert "ALT_DAP_MOP_UREA" not in [p.id for p in result.plans]


SERVER_PLANS = [
    {
        "id": "S1",
        "label": "DAP + MOP",
        "schedule": {"basal": [{"code": "18-46-0", "bags": 3}, {"code": "0-0-60", "bags": 1}]},
    },
    {
        "id": "S2",
        "label": "DAP only",
        "schedule": {"basal": [{"code": "18-46-0", "bags": 2}]},
        "cost": {
            "currency": "PHP",
            "rows": [{"code": "18-46-0", "phase": "BASAL", "bags": 2, "pricePerBag": 1750, "subtotal": 3500}],
            "total": 3500,
        },
    },
    {
        "id": "S3",
        "label": "Complete",
        "schedule": {"basal": [{"code": "14-14-14", "bags": 5}]},
    },
]


class TestServerRecommendation:

    @staticmethod
    def engine_with_server(response):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.url.path == "/api/prices":
                return httpx.Response(200, json=flat_price_payload())
            if request.url.path == "/api/recommend":
                return httpx.Response(200, json=response)
            return httpx.Response(404)

        client = api_client_for(handler)
        return RecommendationEngine(price_adapter=PriceCatalogAdapter(client), api_client=client), seen

    def test_usable_server_plans_replace_local_candidates(self):
        engine, seen = self.engine_with_server({"plans": SERVER_PLANS})

        result = recommend(engine, scenario_a_reading())

        assert ("POST", "/api/recommend") in seen
        assert [p.id for p in result.plans] == ["S1", "S2", "S3"]
        assert all(p.source == PlanSource.SERVER_COMPUTED for p in result.plans)
        assert [p.total_cost for p in result.plans] == [4000.0, 3500.0, 5000.0]
        assert result.selected_plan_id == "S2"
        assert all(p.schedule.has_organic_line() for p in result.plans)

    def test_too_few_server_plans_fall_back_to_local(self):
        engine, _ = self.engine_with_server({"plans": SERVER_PLANS[:2]})
        result = recommend(engine, scenario_a_reading())
        assert [p.id for p in result.plans] == DA_CANDIDATE_IDS

    def test_da_schedule_is_presented_first(self):
        engine, _ = self.engine_with_server({
            "schedule": {
                "basal": [{"code": "18-46-0", "bags": 2.5}, {"code": "0-0-60", "bags": 1}],
                "after30DAT": [{"code": "46-0-0", "bags": 0.75}],
                "topdress60DBH": [{"code": "46-0-0", "bags": 0.75}],
            },
        })

        result = recommend(engine, scenario_a_reading())

        assert [p.id for p in result.plans] == [DA_PLAN_ID] + DA_CANDIDATE_IDS
        assert result.plans[0].source == PlanSource.SERVER_COMPUTED
        assert result.plans[0].total_cost == 5000.0
        assert result.selected_plan_id == DA_PLAN_ID

    def test_server_error_is_ignored(self, flat_catalog):
        def handler(request):
            return httpx.Response(503)

        engine = RecommendationEngine(
            price_adapter=StaticPriceCatalogAdapter(flat_catalog),
            api_client=api_client_for(handler),
        )
        result = recommend(engine, scenario_a_reading())
        assert [p.id for p in result.plans] == DA_CANDIDATE_IDS
        assert result.selected_plan_id == "ALT_DAP_MOP_UREA"


class TestReport:

    def test_report_for_selected_plan(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading())

        report = generate_report(result, farmer_identity="Juan Dela Cruz")

        assert report["date"] == "2026-10-18"
        assert report["farmerIdentity"] == "Juan Dela Cruz"
        assert report["npkClass"] == "HLH"
        assert report["phStatus"] == "Neutral"
        assert report["nutrientValues"] == {"N": 250.0, "P": 50.0, "K": 400.0}
        assert report["plan"]["id"] == "ALT_DAP_MOP_UREA"
        assert report["plan"]["badges"] == ["Cheapest"]
        assert [row["dashCode"] for row in report["rows"]] == ["organic", "18-46-0", "0-0-60", "46-0-0"]
        urea = report["rows"][-1]
        assert urea["stages"] == {"ORGANIC": 0.0, "BASAL": 0.0, "AFTER_30_DAYS": 0.79, "TOPDRESS": 0.79}
        assert urea["totalBags"] == 1.58
        assert report["stageTotals"]["BASAL"] == 3.61
        assert report["totalBags"] == 25.19
        assert report["cost"]["total"] == 5190.0

    def test_report_for_other_plan(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading())

        report = generate_report(result, plan_id="ALT_14_14_14_UREA")

        assert report["plan"]["badges"] == []
        assert [row["dashCode"] for row in report["rows"]] == ["organic", "14-14-14"]

    def test_unknown_plan(self, flat_catalog):
        engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
        result = recommend(engine, scenario_a_reading())
        with pytest.raises(NotFoundError):
            generate_report(result, plan_id="NOPE")
        with pytest.raises(NotFoundError):
            select_plan([], None)
