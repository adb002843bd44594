#!/usr/bin/env python3
"""
Recommendation Engine Validation Script
Sweeps every rule set, farm selection and a grid of random readings and
checks the solver output for negative bags, under-delivery and empty plan
lists.
"""
import sys
import os
import random
import json
import asyncio
import itertools
from typing import Dict, Any

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fertisense.services.blend_solver import Infeasible, solve
from fertisense.services.nutrient_classifier import classify_reading, npk_class
from fertisense.services.price_catalog import PriceCatalog, StaticPriceCatalogAdapter
from fertisense.services.reading_aggregator import SoilReading
from fertisense.services.recommendation_engine import RecommendationEngine, RecommendationStatus
from fertisense.services.recommendation_rules import Nutrient, Season, SoilClass, Variety
from fertisense.services.requirement_resolver import FarmSelection, degrade_unavailable, required_kg_per_ha
from fertisense.services.rule_sets import RuleSetId, load_rule_set

SAMPLE_PRICES = {
    "currency": "PHP",
    "items": {
        "UREA_46_0_0": {"label": "Urea", "pricePerBag": 1530, "bagKg": 50, "npk": {"N": 46, "P": 0, "K": 0}},
        "DAP_18_46_0": {"label": "DAP", "pricePerBag": 2380, "bagKg": 50, "npk": {"N": 18, "P": 46, "K": 0}},
        "NPK_16_20_0": {"label": "16-20-0", "pricePerBag": 1450, "bagKg": 50, "npk": {"N": 16, "P": 20, "K": 0}},
        "MOP_0_0_60": {"label": "MOP", "pricePerBag": 1720, "bagKg": 50, "npk": {"N": 0, "P": 0, "K": 60}},
        "NPK_14_14_14": {"label": "Complete", "pricePerBag": 1640, "bagKg": 50, "npk": {"N": 14, "P": 14, "K": 14}},
        "AMMOSUL_21_0_0": {"label": "Ammosul", "pricePerBag": 830, "bagKg": 50, "npk": {"N": 21, "P": 0, "K": 0}},
    },
}

AREAS_HA = [0.25, 0.5, 1.0, 2.0]

TOLERANCE_KG = 1e-6


def run_validation(num_readings: int = 50, seed: int = 42) -> Dict[str, Any]:
    random.seed(seed)
    catalog = PriceCatalog.from_payload(SAMPLE_PRICES)
    engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(catalog))

    stats = {
        "total_cases": 0,
        "ok": 0,
        "no_plan": 0,
        "infeasible_candidates": 0,
        "negative_bags": 0,
        "under_delivery": 0,
        "missing_cheapest": 0,
        "classes": {},
    }
    anomalies = []

    selections = [
        FarmSelection(v, s, se) for v, s, se in itertools.product(Variety, SoilClass, Season)
    ]

    for rule_set_id in RuleSetId:
        rule_set = load_rule_set(rule_set_id)
        for i in range(num_readings):
            reading = SoilReading(
                nitrogen_ppm=round(random.uniform(1, 400), 1),
                phosphorus_ppm=round(random.uniform(1, 450), 1),
                potassium_ppm=round(random.uniform(1, 500), 1),
                ph=round(random.uniform(4.5, 8.5), 1),
            )
            levels = classify_reading(reading.nitrogen_ppm, reading.phosphorus_ppm, reading.potassium_ppm, rule_set)
            code = npk_class(levels)
            stats["classes"][code] = stats["classes"].get(code, 0) + 1

            for selection in selections:
                area = random.choice(AREAS_HA)
                stats["total_cases"] += 1
                lookup = degrade_unavailable(levels)
                requirement = required_kg_per_ha(
                    selection, lookup[Nutrient.N], lookup[Nutrient.P], lookup[Nutrient.K], rule_set
                )
                targets = requirement.scaled(area)

                for candidate in rule_set.candidates:
                    schedule = solve(requirement, area, candidate)
                    if isinstance(schedule, Infeasible):
                        stats["infeasible_candidates"] += 1
                        continue
                    for _, line in schedule.iter_lines():
                        if line.bags < 0:
                            stats["negative_bags"] += 1
                            anomalies.append({"rule_set": rule_set.id, "candidate": candidate.id, "issue": "negative bags"})
                    for nutrient in Nutrient:
                        if schedule.supplied_kg[nutrient] + TOLERANCE_KG < targets[nutrient]:
                            stats["under_delivery"] += 1
                            anomalies.append({
                                "rule_set": rule_set.id,
                                "candidate": candidate.id,
                                "class": code,
                                "nutrient": nutrient.value,
                                "target_kg": round(targets[nutrient], 3),
                                "supplied_kg": round(schedule.supplied_kg[nutrient], 3),
                            })

                result = asyncio.run(engine.recommend(reading, selection, area_ha=area, rule_set_id=rule_set_id))
                if result.status == RecommendationStatus.OK:
                    stats["ok"] += 1
                    if not any(p.is_cheapest for p in result.plans):
                        stats["missing_cheapest"] += 1
                elif result.status == RecommendationStatus.NO_PLAN_AVAILABLE:
                    stats["no_plan"] += 1

    return {"stats": stats, "anomalies": anomalies[:100]}


def generate_report(validation: Dict) -> str:
    stats = validation["stats"]
    report = []
    report.append("=" * 80)
    report.append("FERTISENSE RECOMMENDATION ENGINE VALIDATION")
    report.append("=" * 80)
    report.append(f"Cases evaluated:          {stats['total_cases']}")
    report.append(f"Plans generated (OK):     {stats['ok']}")
    report.append(f"No plan available:        {stats['no_plan']}")
    report.append(f"Infeasible candidates:    {stats['infeasible_candidates']}")
    report.append(f"Negative bag lines:       {stats['negative_bags']}")
    report.append(f"Under-delivery findings:  {stats['under_delivery']}")
    report.append(f"Priced but no cheapest:   {stats['missing_cheapest']}")
    report.append("")
    report.append("NPK classes seen:")
    for code, count in sorted(stats["classes"].items()):
        report.append(f"  {code}: {count}")
    if validation["anomalies"]:
        report.append("")
        report.append("First anomalies:")
        for anomaly in validation["anomalies"][:20]:
            report.append(f"  {anomaly}")
    report.append("=" * 80)
    return "\n".join(report)


if __name__ == "__main__":
    print("Running recommendation engine validation...")
    print("")

    validation = run_validation(num_readings=50, seed=42)

    report = generate_report(validation)
    print(report)

    with open("recommendation_validation_data.json", "w", encoding="utf-8") as f:
        json.dump(validation, f, indent=2, ensure_ascii=False)

    print("\nGenerated: recommendation_validation_data.json")
