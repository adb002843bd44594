"""
Shared fixtures for the recommendation engine tests.
"""
import os

os.environ.setdefault("FERTISENSE_DATABASE_URL", "sqlite://")
os.environ.setdefault("FERTISENSE_API_BASE_URL", "https://api.test")

import pytest

from fertisense.services.price_catalog import PriceCatalog
from fertisense.services.rule_sets import RuleSetId, clear_rule_set_cache, load_rule_set


def flat_price_payload(price: float = 1000.0) -> dict:
    return {
        "currency": "PHP",
        "items": {
            code: {"label": code, "pricePerBag": price, "bagKg": 50}
            for code in (
                "UREA_46_0_0",
                "DAP_18_46_0",
                "NPK_16_20_0",
                "MOP_0_0_60",
                "NPK_14_14_14",
                "AMMOSUL_21_0_0",
            )
        },
    }


@pytest.fixture(autouse=True)
def fresh_rule_sets():
    clear_rule_set_cache()
    yield
    clear_rule_set_cache()


@pytest.fixture
def da_rule_set():
    return load_rule_set(RuleSetId.DA_RICE_V1)


@pytest.fixture
def irri_rule_set():
    return load_rule_set(RuleSetId.IRRI_RICE_V1)


@pytest.fixture
def flat_catalog():
    return PriceCatalog.from_payload(flat_price_payload())
