"""Fixtures partagées.

- Base SQLite en mémoire par test (StaticPool), tables créées via init_db().
- AnyIO comme unique runner async (@pytest.mark.anyio), backend asyncio forcé.
- Les enregistrements fournisseurs de test sont au format FlightBuffer.
"""
from datetime import date
from typing import Any, Dict, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from skyfare.core.db import init_db, make_engine
from skyfare.core.security import CredentialCipher
from skyfare.models.search import SearchRequest
from skyfare.services.registry import CredentialVault, SupplierRegistry


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""
    return "asyncio"


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def test_cipher() -> CredentialCipher:
    return CredentialCipher("unit-test-credentials-key")


@pytest.fixture
def registry(session_factory, test_cipher) -> SupplierRegistry:
    return SupplierRegistry(session_factory, unhealthy_threshold=3, cipher=test_cipher)


@pytest.fixture
def vault(session_factory, test_cipher) -> CredentialVault:
    return CredentialVault(session_factory, cipher=test_cipher)


@pytest.fixture
def search_request() -> SearchRequest:
    return SearchRequest(origin="CDG", destination="BCN", departure_date=date(2030, 5, 10))


def _fb_location(code: str, city: str, when: str) -> Dict[str, Any]:
    return {
        "airport": {
            "id": 101,
            "abb": code,
            "en": f"{city} Airport",
            "city": {"id": 7, "en": city, "country": {"en": "France", "abb": "FR"}},
        },
        "raw_time": when,
        "time": when[11:16],
        "terminal": "2",
    }


def build_fb_record(
    ref: str,
    total: float,
    *,
    base: Optional[float] = None,
    stops: int = 0,
    departure: str = "2030-05-10T08:00:00",
    carrier: str = "AF",
    refundable: Any = "yes",
    capacities: Optional[list] = None,
) -> Dict[str, Any]:
    n_segments = stops + 1
    capacities = capacities or [9] * n_segments
    codes = ["CDG"] + [f"HB{i}" for i in range(stops)] + ["BCN"]
    segments = [
        {
            "departure": _fb_location(codes[i], codes[i], departure),
            "arrival": _fb_location(codes[i + 1], codes[i + 1], departure),
            "airline": {"id": 1, "abb": carrier, "en": f"{carrier} Airways"},
            "flight_number": f"{carrier}{100 + i}",
            "cabin": "Y",
            "duration": "1:45",
            "airplane": "A320",
            "luggage": "23 KG/ADT ",
            "resBookDesigCode": "K",
            "FareBasis": "KLOWFR",
            "capacity": capacities[i],
        }
        for i in range(n_segments)
    ]
    return {
        "flightBufferReferenceId": ref,
        "priceInfo": {
            "payable": total,
            "baseFare": base if base is not None else round(total * 0.8, 2),
            "currency": {"abb": "EUR", "symbol": "€", "decimal_places": 2},
            "breakDowns": {"ADT": {"baseFare": total * 0.8, "tax": total * 0.2, "totalFare": total, "passengersCount": 1}},
        },
        "serviceInfo": {
            "legs": [{
                "info": {
                    "departure": segments[0]["departure"],
                    "arrival": segments[-1]["arrival"],
                    "duration": "3:30",
                    "connections": stops,
                    "cabin": "economy",
                    "airline": {"abb": carrier, "en": f"{carrier} Airways"},
                    "flight_number": f"{carrier}100",
                },
                "segments": segments,
            }],
            "validatingAirline": {"id": 1, "abb": carrier, "en": f"{carrier} Airways"},
            "refundable": refundable,
            "searchValidity": "2099-01-01T00:00:00Z",
            "passengersCount": {"adults": 1, "children": 0, "infants": 0},
        },
        "sellerCode": "FB1",
        "hasBrands": True,
        "onholdable": False,
    }


@pytest.fixture
def fb_record():
    return build_fb_record
