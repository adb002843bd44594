"""
HTTP client for the FertiSense backend API.

Thin wrapper over ``httpx.AsyncClient``: one short-lived client per call,
JSON in and out, ``raise_for_status`` on every response. Error mapping to the
engine taxonomy happens in the price catalog adapter and the remote session
log, not here.
"""
from typing import Any, Dict, Optional
import re
import logging

import httpx

from fertisense.config import API_TIMEOUT_SECONDS, FERTISENSE_API_BASE_URL, FERTISENSE_API_TOKEN

logger = logging.getLogger(__name__)

OBJECT_ID_PATTERN = re.compile(r"^[a-f0-9]{24}$")

READING_META = {"client": "app", "version": 1}


def is_farmer_object_id(identity: Optional[str]) -> bool:
    return bool(identity) and bool(OBJECT_ID_PATTERN.match(str(identity)))


class FertisenseApiClient:
    def __init__(
        self,
        base_url: str = FERTISENSE_API_BASE_URL,
        token: Optional[str] = FERTISENSE_API_TOKEN,
        timeout: float = API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else self.timeout,
            headers=self._headers(),
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, json: Any = None, timeout: Optional[float] = None) -> Any:
        async with self._client(timeout) as client:
            response = await client.request(method, path, json=json)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

    async def get_public_prices(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._request("GET", "/api/prices", timeout=timeout)

    async def get_da_recommendation(
        self,
        n_class: str,
        p_class: str,
        k_class: str,
        area_ha: float = 1.0,
        crop: str = "rice_hybrid",
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        payload = {
            "crop": crop,
            "nClass": n_class,
            "pClass": p_class,
            "kClass": k_class,
            "areaHa": area_ha,
        }
        return await self._request("POST", "/api/recommend", json=payload, timeout=timeout)

    async def add_reading(self, farmer_id: str, point: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        body = {"points": [point], "meta": dict(READING_META)}
        return await self._request("POST", f"/api/farmers/{farmer_id}/readings", json=body, timeout=timeout)

    async def add_standalone_reading(self, point: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._request("POST", "/api/readings", json=point, timeout=timeout)
