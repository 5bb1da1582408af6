from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator

TripType = Literal["oneWay", "roundTrip"]


class SearchFilters(BaseModel):
    """Filtres appliqués *après* la fusion multi-fournisseurs."""
    model_config = ConfigDict(frozen=True)

    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    airline: Optional[str] = None      # code IATA de la compagnie validante
    max_stops: Optional[NonNegativeInt] = None
    refundable: bool = False

    @field_validator("airline")
    @classmethod
    def _upper_airline(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() or None if v else None


class SearchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: str = Field(..., min_length=3, max_length=3)
    destination: str = Field(..., min_length=3, max_length=3)
    departure_date: date
    return_date: Optional[date] = None
    adults: NonNegativeInt = 1
    children: NonNegativeInt = 0
    infants: NonNegativeInt = 0
    cabin: str = "economy"
    trip_type: TripType = "oneWay"
    currency: str = "USD"
    language: str = "EN"
    filters: SearchFilters = Field(default_factory=SearchFilters)

    @field_validator("origin", "destination", "currency", "language")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("cabin")
    @classmethod
    def _lower(cls, v: str) -> str:
        return (v or "economy").strip().lower()

    @property
    def total_passengers(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def is_round_trip(self) -> bool:
        return self.trip_type == "roundTrip" and self.return_date is not None

    @classmethod
    def from_query(cls, data: Mapping[str, Any]) -> "SearchRequest":
        """
        Construit la requête depuis un dict "brut" (query string, JSON front).
        Accepte les alias historiques : from/to, date, trip_type/tripType, lang.
        """
        def pick(*names: str, default: Any = None) -> Any:
            for n in names:
                v = data.get(n)
                if v not in (None, ""):
                    return v
            return default

        return cls(
            origin=str(pick("from", "origin", default="")),
            destination=str(pick("to", "destination", default="")),
            departure_date=_as_date(pick("date", "departure_date", default=date.today())),
            return_date=_as_date(pick("return_date", "returnDate")),
            adults=int(pick("adults", default=1)),
            children=int(pick("children", default=0)),
            infants=int(pick("infants", default=0)),
            cabin=str(pick("cabin", default="economy")),
            trip_type=pick("trip_type", "tripType", default="oneWay"),
            currency=str(pick("currency", default="USD")),
            language=str(pick("language", "lang", default="EN")),
            filters=SearchFilters(
                min_price=pick("min_price"),
                max_price=pick("max_price"),
                airline=pick("airline", "airline_code"),
                max_stops=pick("max_stops", "stops"),
                refundable=str(pick("refundable", default="0")).lower() in ("1", "true", "yes"),
            ),
        )

    def cache_fields(self) -> Dict[str, Any]:
        """Champs qui influencent la réponse d'un fournisseur (pas les filtres post-fusion)."""
        return {
            "origin": self.origin,
            "destination": self.destination,
            "departure_date": self.departure_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "cabin": self.cabin,
            "trip_type": self.trip_type,
            "currency": self.currency,
        }


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)[:10]).date()
