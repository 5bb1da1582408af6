# backend/skyfare/providers/duffel.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

from ..models.search import SearchRequest
from .base import ConnectionResult, ProviderBase, SourceAuthError

logger = logging.getLogger("duffel")

DUFFEL_VERSION = "v2"

_CABIN_CLASSES = {
    "economy": "economy",
    "eco": "economy",
    "premium": "premium_economy",
    "premium_economy": "premium_economy",
    "premium economy": "premium_economy",
    "business": "business",
    "first": "first",
}


class DuffelProvider(ProviderBase):
    name = "duffel"
    payload_format = "duffel"
    default_base_url = "https://api.duffel.com"

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Duffel-Version"] = str(self.ctx.config.get("api_version") or DUFFEL_VERSION)
        if self.ctx.api_key:
            headers["Authorization"] = f"Bearer {self.ctx.api_key}"
        return headers

    def build_payload(self, req: SearchRequest) -> Dict[str, Any]:
        slices: List[Dict[str, Any]] = [{
            "origin": req.origin,
            "destination": req.destination,
            "departure_date": req.departure_date.isoformat(),
        }]
        if req.is_round_trip:
            slices.append({
                "origin": req.destination,
                "destination": req.origin,
                "departure_date": req.return_date.isoformat(),
            })
        # Duffel : enfants/bébés déclarés par âge
        passengers: List[Dict[str, Any]] = [{"type": "adult"} for _ in range(req.adults)]
        passengers += [{"age": 8} for _ in range(req.children)]
        passengers += [{"age": 1} for _ in range(req.infants)]
        return {
            "data": {
                "slices": slices,
                "passengers": passengers,
                "cabin_class": _CABIN_CLASSES.get(req.cabin, "economy"),
            }
        }

    async def search(self, request: SearchRequest) -> Dict[str, Any]:
        if not self.ctx.api_key:
            raise SourceAuthError(f"{self.code}: access token manquant")

        url = f"{self.base_url}/air/offer_requests"
        t0 = time.perf_counter()
        resp = await self._request(
            "POST", url,
            params={"return_offers": "true"},
            json=self.build_payload(request),
            check=True,
        )
        data = resp.json() or {}
        offers = (data.get("data") or {}).get("offers") or [] if isinstance(data, dict) else []
        logger.info(
            "duffel search OK: %s-%s %s cabin=%s → %d offres in %d ms",
            request.origin,
            request.destination,
            request.departure_date,
            request.cabin,
            len(offers),
            int((time.perf_counter() - t0) * 1000),
        )
        return data

    async def _probe(self) -> ConnectionResult:
        if not self.ctx.api_key:
            return ConnectionResult(success=False, message="Missing access token")
        resp = await self._request("GET", f"{self.base_url}/air/airlines", params={"limit": 1})
        if resp.is_success:
            return ConnectionResult(success=True, message="Connection successful")
        return ConnectionResult(success=False, message=f"API returned status {resp.status_code}")
