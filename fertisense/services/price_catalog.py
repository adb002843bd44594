"""
Price Catalog Adapter.

Fetches the public price document and exposes price-per-bag by grade code.
Any transport error, timeout or malformed document means "catalog
unavailable": ``fetch`` returns None and the cost evaluator degrades every
plan to an unknown cost.
"""
from typing import Dict, Optional
from dataclasses import dataclass, field
import math
import logging

import httpx
from pydantic import BaseModel, Field, ValidationError

from fertisense.config import PRICE_TIMEOUT_SECONDS
from fertisense.services.api_client import FertisenseApiClient
from fertisense.services.fertilizer_grades import get_grade, resolve_code
from fertisense.services.recommendation_errors import CatalogUnavailable
from fertisense.services.recommendation_rules import DEFAULT_BAG_MASS_KG, DEFAULT_CURRENCY

logger = logging.getLogger(__name__)


class NpkPercents(BaseModel):
    N: float = 0
    P: float = 0
    K: float = 0


class PriceItemDocument(BaseModel):
    label: Optional[str] = None
    price_per_bag: Optional[float] = Field(default=None, alias="pricePerBag")
    bag_kg: float = Field(default=DEFAULT_BAG_MASS_KG, alias="bagKg")
    npk: NpkPercents = Field(default_factory=NpkPercents)
    active: bool = True

    class Config:
        populate_by_name = True


class PriceCatalogDocument(BaseModel):
    currency: str = DEFAULT_CURRENCY
    items: Dict[str, PriceItemDocument] = Field(default_factory=dict)
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True


@dataclass
class PriceCatalog:
    """Read-only snapshot of the prices the engine may use."""
    currency: str = DEFAULT_CURRENCY
    prices: Dict[str, float] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def price_per_bag(self, grade_code: str) -> Optional[float]:
        code = resolve_code(grade_code)
        if code is None:
            return None
        return self.prices.get(code)

    @classmethod
    def from_document(cls, document: PriceCatalogDocument) -> "PriceCatalog":
        catalog = cls(currency=document.currency or DEFAULT_CURRENCY, updated_at=document.updated_at)
        for key, item in document.items.items():
            code = resolve_code(key)
            if code is None:
                logger.debug(f"Ignoring unregistered catalog item {key}")
                continue
            grade = get_grade(code)
            if (item.npk.N, item.npk.P, item.npk.K) != (0, 0, 0) and (
                item.npk.N, item.npk.P, item.npk.K
            ) != (grade.nitrogen_pct, grade.phosphorus_pct, grade.potassium_pct):
                logger.warning(
                    f"Catalog composition for {code} ({item.npk.N}-{item.npk.P}-{item.npk.K}) "
                    f"differs from registry {grade.dash_code}, using registry"
                )
            if item.label:
                catalog.labels[code] = item.label
            price = item.price_per_bag
            if not item.active or price is None or not math.isfinite(price) or price < 0:
                continue
            catalog.prices[code] = float(price)
        return catalog

    @classmethod
    def from_payload(cls, payload: Dict) -> "PriceCatalog":
        try:
            document = PriceCatalogDocument.model_validate(payload or {})
        except ValidationError as e:
            raise CatalogUnavailable(f"Malformed price document: {e}") from e
        return cls.from_document(document)


class PriceCatalogAdapter:
    def __init__(self, client: Optional[FertisenseApiClient] = None, timeout: float = PRICE_TIMEOUT_SECONDS):
        self.client = client
        self.timeout = timeout

    async def fetch_or_raise(self) -> PriceCatalog:
        if self.client is None:
            raise CatalogUnavailable("No price source configured")
        try:
            payload = await self.client.get_public_prices(timeout=self.timeout)
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Price fetch failed: {e.__class__.__name__}: {e}") from e
        except ValueError as e:
            raise CatalogUnavailable(f"Price response is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise CatalogUnavailable("Price response is not an object")
        return PriceCatalog.from_payload(payload)

    async def fetch(self) -> Optional[PriceCatalog]:
        try:
            catalog = await self.fetch_or_raise()
        except CatalogUnavailable as e:
            logger.warning(f"Price catalog unavailable: {e}")
            return None
        logger.info(f"Price catalog loaded: {len(catalog.prices)} priced grades ({catalog.currency})")
        return catalog


class StaticPriceCatalogAdapter:
    """Adapter over an already-known catalog (admin preview, tests, cached prices)."""

    def __init__(self, catalog: Optional[PriceCatalog]):
        self.catalog = catalog

    async def fetch(self) -> Optional[PriceCatalog]:
        return self.catalog
