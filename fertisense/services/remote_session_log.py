"""
Remote Session Log.

Writes one finished reading session to the backend. Farmer identities that
are backend object ids go to the farmer's reading list; everything else is
stored as a standalone reading.
"""
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

import httpx

from fertisense.config import API_TIMEOUT_SECONDS
from fertisense.services.api_client import FertisenseApiClient, is_farmer_object_id
from fertisense.services.recommendation_errors import SyncFailure

logger = logging.getLogger(__name__)

READING_SOURCE = "esp32"


def build_remote_payload(
    reading: Dict[str, Any],
    selection: Dict[str, Any],
    farmer_identity: str,
    nutrient_class: str,
    selected_plan: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Session payload. Backend field names (N, P, K, ph) are sent alongside."""
    n = reading.get("nitrogenPpm")
    p = reading.get("phosphorusPpm")
    k = reading.get("potassiumPpm")
    ph = reading.get("pH")
    cost = selected_plan.get("cost") if selected_plan else None
    return {
        "nutrientValues": {"N": n, "P": p, "K": k},
        "pH": ph,
        "source": READING_SOURCE,
        "selectedSchedule": selected_plan.get("schedule") if selected_plan else None,
        "selectedCost": cost,
        "nutrientClass": nutrient_class,
        "selection": selection,
        "farmerIdentity": farmer_identity,
        "N": n or 0,
        "P": p or 0,
        "K": k or 0,
        "ph": ph,
        "npkClass": nutrient_class,
        "currency": cost.get("currency") if cost else None,
    }


def standalone_point(payload: Dict[str, Any]) -> Dict[str, Any]:
    point = dict(payload)
    point.update({"n": payload.get("N", 0), "p": payload.get("P", 0), "k": payload.get("K", 0)})
    return point


class RemoteSessionLog:
    def __init__(
        self,
        client: Optional[FertisenseApiClient] = None,
        timeout: float = API_TIMEOUT_SECONDS,
        connectivity: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.client = client
        self.timeout = timeout
        self.connectivity = connectivity

    async def is_online(self) -> bool:
        if self.client is None:
            return False
        if self.connectivity is None:
            return True
        try:
            return bool(await self.connectivity())
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False

    async def write(self, farmer_identity: str, payload: Dict[str, Any]) -> Any:
        if self.client is None:
            raise SyncFailure("No remote session log configured")
        try:
            if is_farmer_object_id(farmer_identity):
                return await self.client.add_reading(farmer_identity, payload, timeout=self.timeout)
            return await self.client.add_standalone_reading(standalone_point(payload), timeout=self.timeout)
        except httpx.HTTPError as e:
            raise SyncFailure(f"Remote log write failed: {e.__class__.__name__}: {e}") from e
        except ValueError as e:
            raise SyncFailure(f"Remote log returned an invalid body: {e}") from e
