# backend/skyfare/providers/amadeus.py
from __future__ import annotations

import time
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models.search import SearchRequest
from .base import ConnectionResult, DriverError, ProviderBase, SourceAuthError, raise_for_status

logger = logging.getLogger("amadeus")

SANDBOX_BASE_URL = "https://test.api.amadeus.com"
PRODUCTION_BASE_URL = "https://api.amadeus.com"

# Cache token mémoire (process), clé = (base_url, client_id)
_token_cache: Dict[Tuple[str, str], Dict[str, Any]] = {}
_TOKEN_TTL_FALLBACK = 20 * 60  # 20 minutes si la réponse ne précise pas


def _now() -> float:
    return time.time()


def clear_token_cache() -> None:
    _token_cache.clear()


def _map_cabin_to_travel_class(cabin: Optional[str]) -> Optional[str]:
    if not cabin:
        return None
    c = cabin.lower().strip()
    if c == "eco" or c == "economy":
        return "ECONOMY"
    if c in ("premium", "premium_economy", "premium-economy", "premium economy"):
        return "PREMIUM_ECONOMY"
    if c == "business":
        return "BUSINESS"
    if c == "first":
        return "FIRST"
    return None


class AmadeusProvider(ProviderBase):
    """
    Amadeus Self-Service : OAuth2 client_credentials puis Flight Offers Search v2 (POST).
    api_key = client_id, api_secret = client_secret.
    """
    name = "amadeus"
    payload_format = "amadeus"
    default_base_url = SANDBOX_BASE_URL

    @property
    def base_url(self) -> str:
        if self.ctx.base_url:
            return self.ctx.base_url.rstrip("/")
        env = str(self.ctx.config.get("environment") or "sandbox").lower()
        return PRODUCTION_BASE_URL if env.startswith("prod") else SANDBOX_BASE_URL

    @property
    def _cache_key(self) -> Tuple[str, str]:
        return (self.base_url, self.ctx.api_key or "")

    async def _get_access_token(self) -> str:
        """Token OAuth2 client_credentials, avec cache mémoire."""
        if not self.ctx.api_key or not self.ctx.api_secret:
            raise SourceAuthError(f"{self.code}: client_id/secret manquants")

        cached = _token_cache.get(self._cache_key)
        if cached and _now() < float(cached.get("expires_at", 0)):
            return cached["access_token"]

        resp = await self._request(
            "POST",
            f"{self.base_url}/v1/security/oauth2/token",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "grant_type": "client_credentials",
                "client_id": self.ctx.api_key,
                "client_secret": self.ctx.api_secret,
            },
        )
        if resp.status_code in (400, 401, 403):
            logger.warning("amadeus: échec token (%s) %s", resp.status_code, resp.text[:300])
            raise SourceAuthError(f"{self.code}: token refused (HTTP {resp.status_code})", status_code=resp.status_code)
        raise_for_status(self.code, resp)

        data = resp.json() or {}
        token = data.get("access_token")
        if not token:
            raise SourceAuthError(f"{self.code}: no access_token in token response")
        expires_in = int(data.get("expires_in") or _TOKEN_TTL_FALLBACK)
        # marge de 60 s avant l'expiration annoncée
        _token_cache[self._cache_key] = {
            "access_token": token,
            "expires_at": _now() + max(60, expires_in - 60),
        }
        return token

    def build_payload(self, req: SearchRequest) -> Dict[str, Any]:
        origin_destinations: List[Dict[str, Any]] = [{
            "id": "1",
            "originLocationCode": req.origin,
            "destinationLocationCode": req.destination,
            "departureDateTimeRange": {"date": req.departure_date.isoformat()},
        }]
        if req.is_round_trip:
            origin_destinations.append({
                "id": "2",
                "originLocationCode": req.destination,
                "destinationLocationCode": req.origin,
                "departureDateTimeRange": {"date": req.return_date.isoformat()},
            })

        travelers: List[Dict[str, Any]] = []
        for kind, count in (("ADULT", req.adults), ("CHILD", req.children), ("HELD_INFANT", req.infants)):
            for _ in range(count):
                traveler: Dict[str, Any] = {"id": str(len(travelers) + 1), "travelerType": kind}
                if kind == "HELD_INFANT":
                    traveler["associatedAdultId"] = "1"
                travelers.append(traveler)

        criteria: Dict[str, Any] = {"maxFlightOffers": int(self.ctx.config.get("max_offers") or 50)}
        travel_class = _map_cabin_to_travel_class(req.cabin)
        if travel_class:
            criteria["flightFilters"] = {
                "cabinRestrictions": [{
                    "cabin": travel_class,
                    "coverage": "MOST_SEGMENTS",
                    "originDestinationIds": [od["id"] for od in origin_destinations],
                }]
            }

        return {
            "currencyCode": req.currency,
            "originDestinations": origin_destinations,
            "travelers": travelers,
            "sources": ["GDS"],
            "searchCriteria": criteria,
        }

    async def search(self, request: SearchRequest) -> Dict[str, Any]:
        url = f"{self.base_url}/v2/shopping/flight-offers"
        payload = self.build_payload(request)
        t0 = time.perf_counter()

        token = await self._get_access_token()
        resp = await self._request("POST", url, headers={"Authorization": f"Bearer {token}"}, json=payload)
        if resp.status_code == 401:
            # token révoqué côté Amadeus : on en redemande un, une seule fois
            logger.info("amadeus: 401 sur search → renouvellement du token")
            _token_cache.pop(self._cache_key, None)
            token = await self._get_access_token()
            resp = await self._request("POST", url, headers={"Authorization": f"Bearer {token}"}, json=payload)
        raise_for_status(self.code, resp)

        data = resp.json() or {}
        offers = data.get("data") or [] if isinstance(data, dict) else []
        logger.info(
            "amadeus search OK: %s-%s %s adult=%s child=%s infant=%s cabin=%s → %d offres in %d ms",
            request.origin,
            request.destination,
            request.departure_date,
            request.adults,
            request.children,
            request.infants,
            request.cabin,
            len(offers),
            int((time.perf_counter() - t0) * 1000),
        )
        return data

    async def _probe(self) -> ConnectionResult:
        try:
            await self._get_access_token()
        except SourceAuthError as e:
            return ConnectionResult(success=False, message=e.message)
        except DriverError as e:
            return ConnectionResult(success=False, message=f"Connection failed: {e.message}")
        return ConnectionResult(success=True, message="Connection successful")
