"""
Modèle canonique des offres : tout payload fournisseur est normalisé vers ces types.
Les montants restent non arrondis en interne ; l'arrondi (decimal_places) n'a lieu
qu'à la sérialisation.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, computed_field, field_serializer


def format_duration(minutes: int) -> str:
    """210 -> '3h 30m', 180 -> '3h', 45 -> '45m'."""
    hours, mins = divmod(max(0, int(minutes or 0)), 60)
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"


class Airline(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = 0
    code: str = ""
    name: str = ""
    logo: Optional[str] = None
    translations: Optional[Dict[str, Optional[str]]] = None


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: str = ""
    airport_code: str = ""
    airport_name: str = ""
    airport_id: Optional[int] = None
    city_id: Optional[int] = None
    terminal: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    # horodatage de l'événement (départ / arrivée) représenté par ce lieu
    date_time: Optional[datetime] = None
    time: Optional[str] = None
    timezone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    translations: Optional[Dict[str, Dict[str, Optional[str]]]] = None


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True)

    departure: Location = Field(default_factory=Location)
    arrival: Location = Field(default_factory=Location)
    airline: Airline = Field(default_factory=Airline)
    operating_airline: Optional[Airline] = None
    flight_number: str = ""
    cabin: str = "Economy"
    duration_minutes: NonNegativeInt = 0
    aircraft: Optional[str] = None
    luggage: Optional[str] = None
    booking_class: Optional[str] = None
    fare_basis: Optional[str] = None
    capacity: NonNegativeInt = 0

    @computed_field
    @property
    def duration_formatted(self) -> str:
        return format_duration(self.duration_minutes)


class Leg(BaseModel):
    model_config = ConfigDict(frozen=True)

    departure: Location = Field(default_factory=Location)
    arrival: Location = Field(default_factory=Location)
    duration_minutes: NonNegativeInt = 0
    stops: NonNegativeInt = 0
    cabin: str = "Economy"
    segments: List[Segment] = Field(default_factory=list)
    airline: Optional[Airline] = None
    flight_number: Optional[str] = None

    @computed_field
    @property
    def duration_formatted(self) -> str:
        return format_duration(self.duration_minutes)


class Price(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: float = 0.0
    base_fare: float = 0.0
    taxes: float = 0.0
    currency: str = "USD"
    currency_symbol: str = "$"
    decimal_places: int = 2
    # clé = tranche passager (ADT/CHD/INF, adult, ...)
    breakdown: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    guaranteed: bool = False

    @field_serializer("total", "base_fare", "taxes")
    def _round_amount(self, value: float) -> float:
        return round(value, self.decimal_places)

    @computed_field
    @property
    def formatted(self) -> str:
        return f"{self.currency_symbol}{self.total:,.{self.decimal_places}f}"


class PassengerCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    adults: NonNegativeInt = 1
    children: NonNegativeInt = 0
    infants: NonNegativeInt = 0


class Offer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    supplier_code: str
    reference_id: str
    price: Price
    legs: List[Leg] = Field(default_factory=list)
    validating_airline: Airline = Field(default_factory=Airline)
    seats_available: NonNegativeInt = 0
    refundable: bool = False
    valid_until: Optional[datetime] = None
    passengers: PassengerCounts = Field(default_factory=PassengerCounts)
    seller_code: Optional[str] = None
    has_brands: bool = False
    onholdable: bool = False
    # payload d'origine, rejoué par l'étape de réservation ; jamais sérialisé
    raw_payload: Dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    def get_raw_payload(self) -> Dict[str, Any]:
        return self.raw_payload

    @property
    def total_stops(self) -> int:
        return sum(leg.stops for leg in self.legs)

    @property
    def first_departure(self) -> Optional[datetime]:
        return self.legs[0].departure.date_time if self.legs else None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return False
        now = now or datetime.now(timezone.utc)
        valid_until = self.valid_until
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= valid_until

    def summary(self) -> Dict[str, Any]:
        """Vue compacte pour les listes (1er tronçon uniquement)."""
        first_leg = self.legs[0] if self.legs else None
        first_segment = first_leg.segments[0] if first_leg and first_leg.segments else None
        dep = first_leg.departure if first_leg else None
        arr = first_leg.arrival if first_leg else None
        return {
            "id": self.id,
            "price": self.price.formatted,
            "airline": self.validating_airline.name,
            "airline_code": self.validating_airline.code,
            "origin": dep.airport_code if dep else None,
            "origin_city": dep.city if dep else None,
            "destination": arr.airport_code if arr else None,
            "destination_city": arr.city if arr else None,
            "departure_datetime": dep.date_time.isoformat() if dep and dep.date_time else None,
            "arrival_datetime": arr.date_time.isoformat() if arr and arr.date_time else None,
            "flight_number": first_segment.flight_number if first_segment else None,
            "duration": first_leg.duration_formatted if first_leg else None,
            "stops": first_leg.stops if first_leg else 0,
            "cabin": first_leg.cabin if first_leg else None,
            "aircraft": first_segment.aircraft if first_segment else None,
            "luggage": first_segment.luggage if first_segment else None,
            "booking_class": first_segment.booking_class if first_segment else None,
        }
