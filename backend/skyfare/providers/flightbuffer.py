# backend/skyfare/providers/flightbuffer.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

from ..models.search import SearchRequest
from .base import ConnectionResult, ProviderBase, SourceAuthError

logger = logging.getLogger("flightbuffer")


class FlightBufferProvider(ProviderBase):
    """
    API agrégée FlightBuffer : POST /api/flights/search.
    Réponse {status: bool, data: [offre, ...]} ; chaque offre porte priceInfo / serviceInfo.
    """
    name = "flightbuffer"
    payload_format = "flightbuffer"
    default_base_url = "https://api.flightbuffer.com"

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        if self.ctx.api_key:
            headers["Authorization"] = f"Bearer {self.ctx.api_key}"
        if self.ctx.api_secret:
            headers["X-API-Secret"] = self.ctx.api_secret
        return headers

    def build_payload(self, req: SearchRequest) -> Dict[str, Any]:
        legs: List[Dict[str, Any]] = [{
            "origin": req.origin,
            "destination": req.destination,
            "departureDate": req.departure_date.isoformat(),
        }]
        if req.is_round_trip:
            legs.append({
                "origin": req.destination,
                "destination": req.origin,
                "departureDate": req.return_date.isoformat(),
            })
        return {
            "searcherIdentity": self.ctx.config.get("searcher_identity") or self.code,
            "legs": legs,
            "tripType": req.trip_type,
            "adults": req.adults,
            "children": req.children,
            "infants": req.infants,
            "cabin": req.cabin,
            "currency": req.currency,
            "language": req.language,
        }

    async def search(self, request: SearchRequest) -> Dict[str, Any]:
        if not self.ctx.api_key:
            raise SourceAuthError(f"{self.code}: api_key manquante")

        url = f"{self.base_url}/api/flights/search"
        t0 = time.perf_counter()
        resp = await self._request("POST", url, json=self.build_payload(request), check=True)
        data = resp.json() or {}
        logger.info(
            "flightbuffer search OK: %s-%s %s adults=%s children=%s infants=%s cabin=%s → %d offres in %d ms",
            request.origin,
            request.destination,
            request.departure_date,
            request.adults,
            request.children,
            request.infants,
            request.cabin,
            len(data.get("data") or []) if isinstance(data, dict) else 0,
            int((time.perf_counter() - t0) * 1000),
        )
        return data

    async def _probe(self) -> ConnectionResult:
        resp = await self._request("GET", f"{self.base_url}/api/health")
        if resp.is_success:
            return ConnectionResult(success=True, message="Connection successful")
        return ConnectionResult(success=False, message=f"API returned status {resp.status_code}")
