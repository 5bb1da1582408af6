# backend/skyfare/services/mappers.py
"""
Payload fournisseur -> offres canoniques.

Un mapper par format de payload (`ProviderBase.payload_format`) :
  - records(payload)  : liste des enregistrements bruts (lève MalformedPayload si la réponse est inexploitable)
  - offer(record,...) : un enregistrement -> Offer (lève MalformedRecord / ValueError si illisible)

map_payload() applique le mapper enregistrement par enregistrement : un enregistrement
illisible est compté (dropped) et ignoré, le reste du lot continue.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..models.offer import Airline, Leg, Location, Offer, PassengerCounts, Segment
from ..models.search import SearchRequest
from ..providers.base import MalformedPayload
from .identity import make_offer_id, unique_by_id
from .normalize import (
    MalformedRecord,
    clean_luggage,
    derive_price,
    infer_refundable,
    normalize_cabin,
    parse_duration,
    parse_timestamp,
    safe_float,
    safe_int,
    seats_available,
)

logger = logging.getLogger(__name__)

TRANSLATION_LANGS = ("en", "ar", "fa", "ku", "tr")


@dataclass
class MappedBatch:
    offers: List[Offer] = field(default_factory=list)
    received: int = 0
    dropped: int = 0


def _opt_int(x: Any) -> Optional[int]:
    if x is None or x == "":
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def _obj(value: Any, what: str) -> Mapping[str, Any]:
    """Bloc imbriqué attendu comme objet ; absent -> {}."""
    if value is None or value == "":
        return {}
    if not isinstance(value, Mapping):
        raise MalformedRecord(f"'{what}' is not an object ({type(value).__name__})")
    return value


def _objs(value: Any, what: str) -> List[Mapping[str, Any]]:
    """Liste d'objets imbriqués ; absente -> []."""
    if value is None or value == "":
        return []
    if not isinstance(value, (list, tuple)):
        raise MalformedRecord(f"'{what}' is not a list ({type(value).__name__})")
    return [_obj(v, what) for v in value]


def _passengers(request: SearchRequest, raw: Optional[Mapping[str, Any]] = None) -> PassengerCounts:
    raw = _obj(raw, "passengersCount")
    return PassengerCounts(
        adults=safe_int(raw.get("adults"), request.adults),
        children=safe_int(raw.get("children"), request.children),
        infants=safe_int(raw.get("infants"), request.infants),
    )


def _build_offer(
    *,
    supplier_code: str,
    reference_id: Any,
    record: Mapping[str, Any],
    legs: List[Leg],
    **kwargs: Any,
) -> Offer:
    ref = str(reference_id or "").strip()
    if not ref:
        raise MalformedRecord("missing supplier reference")
    if not legs:
        raise MalformedRecord(f"offer {ref}: no legs")
    price = kwargs["price"]
    if price.total <= 0:
        raise MalformedRecord(f"offer {ref}: non positive total")
    kwargs.setdefault("seats_available", seats_available(legs))
    return Offer(
        id=make_offer_id(supplier_code, ref),
        supplier_code=supplier_code,
        reference_id=ref,
        legs=legs,
        raw_payload=dict(record),
        **kwargs,
    )


# =====================================================================
# FlightBuffer (format "pivot" historique, aussi produit par le driver dummy)
# =====================================================================

def _fb_location(data: Mapping[str, Any]) -> Location:
    airport = _obj(data.get("airport"), "airport")
    city = _obj(airport.get("city"), "city")
    country = _obj(city.get("country"), "country")
    return Location(
        city=data.get("city") or city.get("en") or "",
        airport_code=airport.get("abb") or "",
        airport_name=airport.get("en") or airport.get("title") or "",
        airport_id=_opt_int(airport.get("id")),
        city_id=_opt_int(city.get("id")),
        terminal=data.get("terminal"),
        country=country.get("en") or country.get("title"),
        country_code=country.get("abb"),
        date_time=parse_timestamp(data.get("raw_time")),
        time=data.get("time"),
        timezone=airport.get("timezone") or data.get("timezone"),
        latitude=safe_float(airport.get("lat", airport.get("latitude"))),
        longitude=safe_float(airport.get("lng", airport.get("longitude"))),
        translations={
            "airport": {lang: airport.get(lang) for lang in TRANSLATION_LANGS[:4]},
            "city": {lang: city.get(lang) for lang in TRANSLATION_LANGS[:4]},
        },
    )


def _fb_airline(data: Mapping[str, Any]) -> Airline:
    return Airline(
        id=safe_int(data.get("id")),
        code=data.get("abb") or data.get("code") or "",
        name=data.get("en") or data.get("title") or data.get("name") or "",
        logo=data.get("logo"),
        translations={lang: data.get(lang) for lang in TRANSLATION_LANGS},
    )


def _fb_segment(data: Mapping[str, Any]) -> Segment:
    operating = data.get("operatingAirline")
    return Segment(
        departure=_fb_location(_obj(data.get("departure"), "departure")),
        arrival=_fb_location(_obj(data.get("arrival"), "arrival")),
        airline=_fb_airline(_obj(data.get("airline"), "airline")),
        operating_airline=_fb_airline(_obj(operating, "operatingAirline")) if operating else None,
        flight_number=str(data.get("flight_number") or ""),
        cabin=normalize_cabin(data.get("cabin")),
        duration_minutes=parse_duration(data.get("duration")),
        aircraft=data.get("airplane"),
        luggage=clean_luggage(data.get("luggage")),
        booking_class=data.get("resBookDesigCode"),
        fare_basis=data.get("FareBasis"),
        capacity=max(0, safe_int(data.get("capacity"))),
    )


def _fb_leg(data: Mapping[str, Any]) -> Leg:
    info = _obj(data.get("info"), "info") or data
    segments = [_fb_segment(s) for s in _objs(data.get("segments"), "segments")]
    first = segments[0] if segments else None
    last = segments[-1] if segments else None

    connections = info.get("connections")
    stops = safe_int(connections, -1) if connections is not None else -1
    if stops < 0:
        stops = max(0, len(segments) - 1)

    return Leg(
        departure=_fb_location(_obj(info["departure"], "departure")) if info.get("departure") else (first.departure if first else Location()),
        arrival=_fb_location(_obj(info["arrival"], "arrival")) if info.get("arrival") else (last.arrival if last else Location()),
        duration_minutes=parse_duration(info.get("duration")),
        stops=stops,
        cabin=normalize_cabin(info.get("cabin")),
        segments=segments,
        airline=_fb_airline(_obj(info["airline"], "airline")) if info.get("airline") else None,
        flight_number=info.get("flight_number"),
    )


def _fb_records(payload: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    if not payload.get("status"):
        raise MalformedPayload("flightbuffer: unsuccessful status in search response")
    data = payload.get("data") or []
    if not isinstance(data, list):
        raise MalformedPayload("flightbuffer: 'data' is not a list")
    return data


def _fb_offer(record: Mapping[str, Any], *, payload: Mapping[str, Any], supplier_code: str, request: SearchRequest) -> Offer:
    service = _obj(record.get("serviceInfo"), "serviceInfo")
    legs = [_fb_leg(leg) for leg in _objs(service.get("legs"), "legs")]
    return _build_offer(
        supplier_code=supplier_code,
        reference_id=record.get("flightBufferReferenceId") or record.get("referenceId"),
        record=record,
        legs=legs,
        price=derive_price(_obj(record.get("priceInfo"), "priceInfo"), default_currency=request.currency),
        validating_airline=_fb_airline(_obj(service.get("validatingAirline"), "validatingAirline")),
        refundable=infer_refundable(service.get("refundable")),
        valid_until=parse_timestamp(service.get("searchValidity")),
        passengers=_passengers(request, service.get("passengersCount")),
        seller_code=record.get("sellerCode"),
        has_brands=bool(record.get("hasBrands", False)),
        onholdable=bool(record.get("onholdable", False)),
    )


# =====================================================================
# Duffel (offer_requests?return_offers=true)
# =====================================================================

def _duffel_location(place: Mapping[str, Any], at: Any, terminal: Any) -> Location:
    city = _obj(place.get("city"), "city")
    when = parse_timestamp(at)
    return Location(
        city=place.get("city_name") or city.get("name") or "",
        airport_code=place.get("iata_code") or "",
        airport_name=place.get("name") or "",
        terminal=terminal,
        country=city.get("iata_country_code") or place.get("iata_country_code"),
        country_code=place.get("iata_country_code"),
        date_time=when,
        time=when.strftime("%H:%M") if when else None,
        timezone=place.get("time_zone"),
        latitude=safe_float(place.get("latitude")),
        longitude=safe_float(place.get("longitude")),
    )


def _duffel_airline(carrier: Mapping[str, Any]) -> Airline:
    return Airline(
        code=carrier.get("iata_code") or "",
        name=carrier.get("name") or "",
        logo=carrier.get("logo_symbol_url") or carrier.get("logo_lockup_url"),
    )


def _duffel_segment(seg: Mapping[str, Any]) -> Segment:
    pax = (_objs(seg.get("passengers"), "passengers") or [{}])[0]
    luggage = None
    for bag in _objs(pax.get("baggages"), "baggages"):
        if bag.get("type") == "checked" and safe_int(bag.get("quantity")) > 0:
            luggage = f"{bag['quantity']} checked bag(s)"
            break
    operating = seg.get("operating_carrier")
    return Segment(
        departure=_duffel_location(_obj(seg.get("origin"), "origin"), seg.get("departing_at"), seg.get("origin_terminal")),
        arrival=_duffel_location(_obj(seg.get("destination"), "destination"), seg.get("arriving_at"), seg.get("destination_terminal")),
        airline=_duffel_airline(_obj(seg.get("marketing_carrier"), "marketing_carrier")),
        operating_airline=_duffel_airline(_obj(operating, "operating_carrier")) if operating else None,
        flight_number=str(seg.get("marketing_carrier_flight_number") or ""),
        cabin=normalize_cabin(pax.get("cabin_class")),
        duration_minutes=parse_duration(seg.get("duration")),
        aircraft=_obj(seg.get("aircraft"), "aircraft").get("name"),
        luggage=clean_luggage(luggage),
        booking_class=pax.get("fare_basis_code"),
        fare_basis=pax.get("fare_basis_code"),
        # Duffel n'expose pas le nombre de sièges
        capacity=0,
    )


def _duffel_leg(sl: Mapping[str, Any]) -> Leg:
    segments = [_duffel_segment(s) for s in _objs(sl.get("segments"), "segments")]
    first = segments[0] if segments else None
    last = segments[-1] if segments else None
    return Leg(
        departure=first.departure if first else Location(),
        arrival=last.arrival if last else Location(),
        duration_minutes=parse_duration(sl.get("duration")),
        stops=max(0, len(segments) - 1),
        cabin=first.cabin if first else "Economy",
        segments=segments,
        airline=first.airline if first else None,
        flight_number=first.flight_number if first else None,
    )


def _duffel_records(payload: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, Mapping):
        raise MalformedPayload("duffel: missing 'data' object")
    offers = data.get("offers") or []
    if not isinstance(offers, list):
        raise MalformedPayload("duffel: 'offers' is not a list")
    return offers


def _duffel_offer(record: Mapping[str, Any], *, payload: Mapping[str, Any], supplier_code: str, request: SearchRequest) -> Offer:
    legs = [_duffel_leg(sl) for sl in _objs(record.get("slices"), "slices")]
    price = derive_price(record, default_currency=request.currency, guaranteed=False)
    counts: Dict[str, int] = {}
    for p in _objs(record.get("passengers"), "passengers"):
        kind = str(p.get("type") or "adult")
        counts[kind] = counts.get(kind, 0) + 1
    if counts:
        price = price.model_copy(update={
            "breakdown": {k: {"passengers_count": float(n)} for k, n in counts.items()},
        })
    refund = _obj(_obj(record.get("conditions"), "conditions").get("refund_before_departure"), "refund_before_departure").get("allowed")
    expires = parse_timestamp(record.get("expires_at")) or datetime.now(timezone.utc) + timedelta(minutes=30)
    return _build_offer(
        supplier_code=supplier_code,
        reference_id=record.get("id"),
        record=record,
        legs=legs,
        price=price,
        validating_airline=_duffel_airline(_obj(record.get("owner"), "owner")),
        refundable=infer_refundable(refund),
        valid_until=expires,
        passengers=_passengers(request),
        onholdable=not _obj(record.get("payment_requirements"), "payment_requirements").get("requires_instant_payment", True),
    )


# =====================================================================
# Amadeus (Flight Offers Search v2)
# =====================================================================

def _amadeus_location(point: Mapping[str, Any], dictionaries: Mapping[str, Any]) -> Location:
    code = point.get("iataCode") or ""
    loc = (dictionaries.get("locations") or {}).get(code) or {}
    when = parse_timestamp(point.get("at"))
    return Location(
        city=loc.get("cityCode") or "",
        airport_code=code,
        airport_name=code,
        terminal=point.get("terminal"),
        country=loc.get("countryCode"),
        country_code=loc.get("countryCode"),
        date_time=when,
        time=when.strftime("%H:%M") if when else None,
    )


def _amadeus_airline(code: str, dictionaries: Mapping[str, Any]) -> Airline:
    return Airline(code=code or "", name=(dictionaries.get("carriers") or {}).get(code) or code or "")


def _amadeus_fare_details(record: Mapping[str, Any]) -> Dict[str, Mapping[str, Any]]:
    # détails tarifaires du 1er passager, par segmentId
    tps = _objs(record.get("travelerPricings"), "travelerPricings")
    if not tps:
        return {}
    return {str(fd.get("segmentId")): fd for fd in _objs(tps[0].get("fareDetailsBySegment"), "fareDetailsBySegment")}


def _amadeus_luggage(fd: Mapping[str, Any]) -> Optional[str]:
    bags = _obj(fd.get("includedCheckedBags"), "includedCheckedBags")
    if bags.get("weight"):
        return clean_luggage(f"{bags['weight']} {bags.get('weightUnit') or 'KG'}")
    if safe_int(bags.get("quantity")) > 0:
        return f"{bags['quantity']} checked bag(s)"
    return None


def _amadeus_leg(itinerary: Mapping[str, Any], *, record: Mapping[str, Any], dictionaries: Mapping[str, Any]) -> Leg:
    fares = _amadeus_fare_details(record)
    seats = max(0, safe_int(record.get("numberOfBookableSeats")))
    segments: List[Segment] = []
    for seg in _objs(itinerary.get("segments"), "segments"):
        fd = fares.get(str(seg.get("id"))) or {}
        operating = _obj(seg.get("operating"), "operating").get("carrierCode")
        segments.append(Segment(
            departure=_amadeus_location(_obj(seg.get("departure"), "departure"), dictionaries),
            arrival=_amadeus_location(_obj(seg.get("arrival"), "arrival"), dictionaries),
            airline=_amadeus_airline(seg.get("carrierCode") or "", dictionaries),
            operating_airline=_amadeus_airline(operating, dictionaries) if operating else None,
            flight_number=str(seg.get("number") or ""),
            cabin=normalize_cabin(fd.get("cabin")),
            duration_minutes=parse_duration(seg.get("duration")),
            aircraft=_obj(seg.get("aircraft"), "aircraft").get("code"),
            luggage=_amadeus_luggage(fd),
            booking_class=fd.get("class"),
            fare_basis=fd.get("fareBasis"),
            capacity=seats,
        ))
    first = segments[0] if segments else None
    last = segments[-1] if segments else None
    return Leg(
        departure=first.departure if first else Location(),
        arrival=last.arrival if last else Location(),
        duration_minutes=parse_duration(itinerary.get("duration")),
        stops=max(0, len(segments) - 1),
        cabin=first.cabin if first else "Economy",
        segments=segments,
        airline=first.airline if first else None,
        flight_number=first.flight_number if first else None,
    )


def _amadeus_refundable(record: Mapping[str, Any]) -> bool:
    for tp in _objs(record.get("travelerPricings"), "travelerPricings"):
        for fd in _objs(tp.get("fareDetailsBySegment"), "fareDetailsBySegment"):
            for amenity in _objs(fd.get("amenities"), "amenities"):
                if amenity.get("amenityType") == "REFUND" and amenity.get("isChargeable") is False:
                    return True
    return False


def _amadeus_records(payload: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, list):
        raise MalformedPayload("amadeus: missing 'data' array")
    return data


def _amadeus_offer(record: Mapping[str, Any], *, payload: Mapping[str, Any], supplier_code: str, request: SearchRequest) -> Offer:
    dictionaries = payload.get("dictionaries") or {}
    legs = [_amadeus_leg(it, record=record, dictionaries=dictionaries) for it in _objs(record.get("itineraries"), "itineraries")]

    price = derive_price(_obj(record.get("price"), "price"), default_currency=request.currency, guaranteed=False)
    breakdown: Dict[str, Dict[str, float]] = {}
    for tp in _objs(record.get("travelerPricings"), "travelerPricings"):
        bucket = str(tp.get("travelerType") or "ADULT")
        tp_price = _obj(tp.get("price"), "price")
        entry = breakdown.setdefault(bucket, {"base_fare": 0.0, "total_fare": 0.0, "tax": 0.0, "passengers_count": 0.0})
        base = safe_float(tp_price.get("base")) or 0.0
        total = safe_float(tp_price.get("total")) or 0.0
        entry["base_fare"] += base
        entry["total_fare"] += total
        entry["tax"] += max(0.0, total - base)
        entry["passengers_count"] += 1
    if breakdown:
        price = price.model_copy(update={"breakdown": breakdown})

    validating = (record.get("validatingAirlineCodes") or [""])[0]
    valid_until = parse_timestamp(record.get("lastTicketingDate")) or datetime.now(timezone.utc) + timedelta(minutes=20)
    return _build_offer(
        supplier_code=supplier_code,
        reference_id=record.get("id"),
        record={**record, "_dictionaries": dictionaries},
        legs=legs,
        price=price,
        validating_airline=_amadeus_airline(validating, dictionaries),
        refundable=_amadeus_refundable(record),
        valid_until=valid_until,
        passengers=_passengers(request),
        has_brands=bool(record.get("fareRules")),
    )


# =====================================================================
# Inventaire local (lignes InventoryFlight sérialisées par le driver 'local')
# =====================================================================

CHILD_FARE_RATIO = 0.75
INFANT_FARE_RATIO = 0.10
LOCAL_TAX_RATE = 0.12


def _local_location(row: Mapping[str, Any], prefix: str, when: Optional[datetime]) -> Location:
    return Location(
        city=row.get(f"{prefix}_city") or "",
        airport_code=row.get(f"{prefix}_code") or "",
        airport_name=row.get(f"{prefix}_name") or "",
        country=row.get(f"{prefix}_country"),
        date_time=when,
        time=when.strftime("%H:%M") if when else None,
    )


def _local_records(payload: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    flights = payload.get("flights") or []
    if not isinstance(flights, list):
        raise MalformedPayload("local: 'flights' is not a list")
    return flights


def _local_offer(record: Mapping[str, Any], *, payload: Mapping[str, Any], supplier_code: str, request: SearchRequest) -> Offer:
    dep_at = parse_timestamp(record.get("departure_time"))
    arr_at = parse_timestamp(record.get("arrival_time"))
    if dep_at is None or arr_at is None:
        raise MalformedRecord(f"local flight {record.get('id')}: missing times")
    duration = max(0, int((arr_at - dep_at).total_seconds() // 60))

    airline = Airline(code=record.get("airline_code") or "", name=record.get("airline_name") or "", logo=record.get("airline_logo"))
    departure = _local_location(record, "origin", dep_at)
    arrival = _local_location(record, "destination", arr_at)
    cabin = normalize_cabin(request.cabin)
    baggage = record.get("baggage_kg")
    segment = Segment(
        departure=departure,
        arrival=arrival,
        airline=airline,
        flight_number=str(record.get("flight_number") or ""),
        cabin=cabin,
        duration_minutes=duration,
        aircraft=record.get("aircraft_type"),
        luggage=clean_luggage(f"{baggage} KG" if baggage else None),
        capacity=max(0, safe_int(record.get("seats"))),
    )
    leg = Leg(
        departure=departure,
        arrival=arrival,
        duration_minutes=duration,
        stops=0,
        cabin=cabin,
        segments=[segment],
        airline=airline,
        flight_number=segment.flight_number,
    )

    unit = safe_float(record.get("base_price")) or 0.0
    base = unit * request.adults + unit * CHILD_FARE_RATIO * request.children + unit * INFANT_FARE_RATIO * request.infants
    breakdown: Dict[str, Dict[str, Any]] = {
        "adult": {"baseFare": unit, "tax": unit * LOCAL_TAX_RATE, "totalFare": unit * (1 + LOCAL_TAX_RATE), "passengersCount": request.adults},
    }
    if request.children:
        child = unit * CHILD_FARE_RATIO
        breakdown["child"] = {"baseFare": child, "tax": child * LOCAL_TAX_RATE, "totalFare": child * (1 + LOCAL_TAX_RATE), "passengersCount": request.children}
    if request.infants:
        infant = unit * INFANT_FARE_RATIO
        breakdown["infant"] = {"baseFare": infant, "tax": infant * LOCAL_TAX_RATE, "totalFare": infant * (1 + LOCAL_TAX_RATE), "passengersCount": request.infants}

    price = derive_price(
        {
            "payable": base * (1 + LOCAL_TAX_RATE),
            "baseFare": base,
            "currency": record.get("currency") or request.currency,
            "breakDowns": breakdown,
        },
        guaranteed=True,
    )
    return _build_offer(
        supplier_code=supplier_code,
        reference_id=record.get("id"),
        record={"flight_id": record.get("id"), "source": "local"},
        legs=[leg],
        price=price,
        validating_airline=airline,
        refundable=True,
        valid_until=datetime.now(timezone.utc) + timedelta(hours=24),
        passengers=_passengers(request),
        onholdable=True,
    )


# =====================================================================

RecordsFn = Callable[[Mapping[str, Any]], Sequence[Mapping[str, Any]]]
OfferFn = Callable[..., Offer]

MAPPERS: Dict[str, tuple] = {
    "flightbuffer": (_fb_records, _fb_offer),
    "duffel": (_duffel_records, _duffel_offer),
    "amadeus": (_amadeus_records, _amadeus_offer),
    "local": (_local_records, _local_offer),
}


def map_payload(fmt: str, payload: Any, *, supplier_code: str, request: SearchRequest) -> MappedBatch:
    """
    Normalise un payload complet. MalformedPayload si la réponse entière est inexploitable ;
    un enregistrement en échec est seulement compté dans `dropped`.
    """
    if fmt not in MAPPERS:
        raise MalformedPayload(f"{supplier_code}: no mapper for payload format '{fmt}'")
    if not isinstance(payload, Mapping):
        raise MalformedPayload(f"{supplier_code}: payload is not an object")
    records_fn, offer_fn = MAPPERS[fmt]
    records = records_fn(payload)

    batch = MappedBatch(received=len(records))
    offers: List[Offer] = []
    for rec in records:
        try:
            if not isinstance(rec, Mapping):
                raise MalformedRecord("record is not an object")
            offers.append(offer_fn(rec, payload=payload, supplier_code=supplier_code, request=request))
        except (MalformedRecord, KeyError, TypeError, ValueError, IndexError, AttributeError) as e:
            batch.dropped += 1
            logger.warning("mappers: %s enregistrement ignoré: %s", supplier_code, e)

    batch.offers = unique_by_id(offers)
    return batch
