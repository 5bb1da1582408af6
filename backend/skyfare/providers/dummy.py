# backend/skyfare/providers/dummy.py
"""
Fournisseur de démonstration, sans réseau.
Les offres sont générées de manière *déterministe* à partir d'un hash (pas de random)
et émises au format FlightBuffer : elles passent donc par le même mapper que l'API réelle.
Même (O, D, date, passagers, cabine) -> mêmes offres / prix.
"""
from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from ..models.search import SearchRequest
from .base import ConnectionResult, ProviderBase


def _hash_int(*parts: str) -> int:
    base = "|".join(parts).encode("utf-8")
    h = hashlib.sha1(base).hexdigest()
    return int(h[:16], 16)


def _lcg(n: int) -> int:
    # LCG déterministe, 64-bit
    return (1103515245 * n + 12345) & 0x7FFFFFFFFFFFFFFF


def _lcg_float01(n: int) -> float:
    return (_lcg(n) % 10_000_000) / 10_000_000.0


def _cabin_multiplier(cabin: str) -> float:
    if cabin in ("premium", "premium_economy", "premium economy"):
        return 1.25
    if cabin == "business":
        return 1.8
    if cabin == "first":
        return 2.4
    return 1.0


_CABIN_LETTERS = {"economy": "Y", "premium": "W", "premium_economy": "W", "business": "C", "first": "F"}


def _base_price(seed: int) -> float:
    # prix unitaire "route/date" (entre ~30 et ~240)
    return 30.0 + 210.0 * _lcg_float01(seed)


def _hour(seed: int, offset: int) -> int:
    # heure de départ (6..21)
    return 6 + int(_lcg_float01(seed + 1000 + offset) * 16)


def _minute(seed: int, offset: int) -> int:
    # créneaux de 5 minutes
    return 5 * int(_lcg_float01(seed + 2000 + offset) * 12)


def _duration_min(seed: int, offset: int) -> int:
    # 50..320 min
    return 50 + int(_lcg_float01(seed + 3000 + offset) * 270)


COMPANIES = {
    "AF": "Air France",
    "VY": "Vueling",
    "U2": "easyJet",
    "IB": "Iberia",
    "TO": "Transavia France",
    "HV": "Transavia",
    "V7": "Volotea",
}
HUBS = ("CDG", "MAD", "AMS", "FRA", "IST")

TAX_RATE = 0.15
CHILD_RATIO = 0.85
INFANT_RATIO = 0.10


def _airport(code: str) -> Dict[str, Any]:
    return {"abb": code, "en": f"{code} International", "city": {"en": code, "country": {}}}


def _airline(code: str) -> Dict[str, Any]:
    return {"abb": code, "en": COMPANIES.get(code, code)}


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60}:{minutes % 60:02d}"


def generate_offers(req: SearchRequest, *, code: str = "dummy") -> List[Dict[str, Any]]:
    """Offres *brutes* au format FlightBuffer pour un aller simple."""
    date = req.departure_date.isoformat()
    seed = _hash_int(req.origin, req.destination, date, req.cabin, str(req.adults), str(req.children), str(req.infants))

    # Nombre de vols "naturels" pour ce jour (de 5 à 10), déterministe
    n_flights = 5 + int(_lcg_float01(seed + 7) * 6)
    mul = _cabin_multiplier(req.cabin)
    cabin_letter = _CABIN_LETTERS.get(req.cabin, "Y")
    companies = sorted(COMPANIES)
    valid_until = (datetime.now(timezone.utc) + timedelta(minutes=30)).isoformat()

    out: List[Dict[str, Any]] = []
    for i in range(n_flights):
        s = seed + i * 97
        dep = datetime.combine(req.departure_date, datetime.min.time()) + timedelta(hours=_hour(s, i), minutes=_minute(s, i))
        dmin = _duration_min(s, i)
        arr = dep + timedelta(minutes=dmin)
        escales = 0 if _lcg_float01(s + 11) < 0.65 else 1
        carrier = companies[int(_lcg_float01(s + 500) * len(companies))]
        number = 100 + int(_lcg_float01(s + 600) * 900)
        flight_number = f"{carrier}{number}"
        seats = 1 + int(_lcg_float01(s + 700) * 9)

        unit = _base_price(s) * mul * (0.95 + 0.1 * _lcg_float01(s + 333))
        base = unit * req.adults + unit * CHILD_RATIO * req.children + unit * INFANT_RATIO * req.infants

        if escales:
            hub = HUBS[int(_lcg_float01(s + 800) * len(HUBS))]
            first = dmin // 2
            stop = dep + timedelta(minutes=first)
            points = [(req.origin, dep, hub, stop, first), (hub, stop, req.destination, arr, dmin - first)]
        else:
            points = [(req.origin, dep, req.destination, arr, dmin)]

        segments = [
            {
                "departure": {"airport": _airport(o), "raw_time": t_o.isoformat(), "time": t_o.strftime("%H:%M")},
                "arrival": {"airport": _airport(d), "raw_time": t_d.isoformat(), "time": t_d.strftime("%H:%M")},
                "airline": _airline(carrier),
                "flight_number": f"{carrier}{number + n}",
                "cabin": cabin_letter,
                "duration": _hhmm(minutes),
                "luggage": "20 KG/ADT",
                "capacity": seats,
            }
            for n, (o, t_o, d, t_d, minutes) in enumerate(points)
        ]

        out.append({
            "flightBufferReferenceId": f"{code.upper()}-{req.origin}-{req.destination}-{date}-{i}-{s & 0xFFFF:04x}",
            "priceInfo": {
                "payable": round(base * (1 + TAX_RATE), 2),
                "baseFare": round(base, 2),
                "currency": req.currency,
            },
            "serviceInfo": {
                "legs": [{
                    "info": {
                        "departure": segments[0]["departure"],
                        "arrival": segments[-1]["arrival"],
                        "duration": _hhmm(dmin),
                        "connections": escales,
                        "cabin": cabin_letter,
                        "airline": _airline(carrier),
                        "flight_number": flight_number,
                    },
                    "segments": segments,
                }],
                "validatingAirline": _airline(carrier),
                "refundable": "yes" if _lcg_float01(s + 900) < 0.3 else "-",
                "searchValidity": valid_until,
                "passengersCount": {"adults": req.adults, "children": req.children, "infants": req.infants},
            },
            "sellerCode": code.upper(),
            "hasBrands": False,
            "onholdable": True,
        })
    return out


class DummyProvider(ProviderBase):
    """
    config : latency_ms (délai simulé avant réponse).
    """
    name = "dummy"
    payload_format = "flightbuffer"

    async def search(self, request: SearchRequest) -> Dict[str, Any]:
        latency = int(self.ctx.config.get("latency_ms") or 0)
        if latency > 0:
            await asyncio.sleep(latency / 1000.0)
        return {"status": True, "data": generate_offers(request, code=self.code)}

    async def _probe(self) -> ConnectionResult:
        return ConnectionResult(success=True, message="Connection successful")
