import copy
from datetime import date, datetime, timedelta

import pytest

from skyfare.models.inventory import InventoryFlight
from skyfare.models.search import SearchRequest
from skyfare.providers.base import DriverContext, MalformedPayload
from skyfare.providers.dummy import DummyProvider, generate_offers
from skyfare.providers.local import LocalInventoryProvider
from skyfare.services.identity import make_offer_id
from skyfare.services.mappers import map_payload


# ---------- FlightBuffer ----------

def test_flightbuffer_record_is_fully_normalized(fb_record, search_request):
    payload = {"status": True, "data": [fb_record("REF-1", 250, stops=1, capacities=[5, 3])]}
    batch = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request)

    assert batch.received == 1 and batch.dropped == 0
    offer = batch.offers[0]
    assert offer.id == make_offer_id("fb", "REF-1")
    assert offer.supplier_code == "fb"
    assert offer.price.total == 250
    assert offer.price.taxes == pytest.approx(50)
    assert offer.price.currency == "EUR"
    assert offer.price.breakdown["ADT"]["passengers_count"] == 1

    leg = offer.legs[0]
    assert leg.stops == 1
    assert leg.duration_minutes == 210
    assert leg.cabin == "Economy"
    assert len(leg.segments) == 2
    seg = leg.segments[0]
    assert seg.duration_minutes == 105
    assert seg.luggage == "23 KG"
    assert seg.cabin == "Economy"
    assert seg.departure.airport_code == "CDG"
    assert seg.departure.airport_id == 101
    assert seg.departure.country_code == "FR"
    assert seg.departure.date_time == datetime(2030, 5, 10, 8, 0)

    assert offer.seats_available == 3
    assert offer.refundable is True
    assert offer.validating_airline.code == "AF"
    assert offer.seller_code == "FB1"
    assert offer.has_brands is True
    assert offer.valid_until is not None and not offer.is_expired()


def test_raw_payload_kept_but_never_serialized(fb_record, search_request):
    payload = {"status": True, "data": [fb_record("REF-1", 250)]}
    offer = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request).offers[0]
    assert offer.get_raw_payload()["flightBufferReferenceId"] == "REF-1"
    dumped = offer.model_dump(mode="json")
    assert "raw_payload" not in dumped
    assert dumped["price"]["formatted"] == "€250.00"
    assert dumped["legs"][0]["duration_formatted"] == "3h 30m"


def test_bad_records_are_dropped_not_fatal(fb_record, search_request):
    no_ref = fb_record("", 100)
    zero_price = fb_record("REF-0", 0)
    no_legs = fb_record("REF-2", 100)
    no_legs["serviceInfo"]["legs"] = []
    payload = {"status": True, "data": [fb_record("REF-1", 120), no_ref, zero_price, no_legs, "garbage"]}

    batch = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request)
    assert batch.received == 5
    assert batch.dropped == 4
    assert [o.reference_id for o in batch.offers] == ["REF-1"]


def _set_path(record, path, value):
    target = record
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value


@pytest.mark.parametrize("path, value", [
    (("serviceInfo",), "garbage"),
    (("priceInfo",), ["x"]),
    (("serviceInfo", "legs"), ["oops"]),
    (("serviceInfo", "legs"), "oops"),
    (("serviceInfo", "validatingAirline"), 42),
    (("serviceInfo", "passengersCount"), "1 ADT"),
])
def test_wrongly_typed_nested_fields_drop_only_that_record(fb_record, search_request, path, value):
    bad = fb_record("REF-BAD", 90)
    _set_path(bad, path, value)
    payload = {"status": True, "data": [fb_record("REF-1", 120), bad]}

    batch = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request)

    assert batch.dropped == 1
    assert [o.reference_id for o in batch.offers] == ["REF-1"]


def test_wrongly_typed_segment_parts_are_dropped(fb_record, search_request):
    bad_segment = fb_record("REF-SEG", 90)
    bad_segment["serviceInfo"]["legs"][0]["segments"][0]["departure"] = "CDG"
    bad_airport = fb_record("REF-APT", 95)
    bad_airport["serviceInfo"]["legs"][0]["info"]["departure"]["airport"] = ["CDG"]
    payload = {"status": True, "data": [bad_segment, bad_airport, fb_record("REF-1", 120)]}

    batch = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request)

    assert batch.dropped == 2
    assert [o.reference_id for o in batch.offers] == ["REF-1"]


def test_duplicate_references_within_a_batch_are_merged(fb_record, search_request):
    payload = {"status": True, "data": [fb_record("REF-1", 120), fb_record("REF-1", 99)]}
    batch = map_payload("flightbuffer", payload, supplier_code="fb", request=search_request)
    assert len(batch.offers) == 1
    assert batch.offers[0].price.total == 120


def test_flightbuffer_unsuccessful_status_is_malformed_payload(search_request):
    with pytest.raises(MalformedPayload):
        map_payload("flightbuffer", {"status": False, "message": "quota"}, supplier_code="fb", request=search_request)


def test_unknown_payload_format(search_request):
    with pytest.raises(MalformedPayload):
        map_payload("xml", {}, supplier_code="x", request=search_request)


# ---------- Duffel ----------

DUFFEL_PAYLOAD = {
    "data": {
        "id": "orq_0001",
        "offers": [{
            "id": "off_0001",
            "total_amount": "310.50",
            "base_amount": "250.00",
            "total_currency": "GBP",
            "expires_at": "2030-05-01T10:00:00Z",
            "owner": {"iata_code": "BA", "name": "British Airways"},
            "conditions": {"refund_before_departure": {"allowed": True}},
            "payment_requirements": {"requires_instant_payment": False},
            "passengers": [{"type": "adult"}],
            "slices": [{
                "duration": "PT2H5M",
                "segments": [{
                    "origin": {"iata_code": "LHR", "name": "Heathrow", "city_name": "London", "iata_country_code": "GB"},
                    "destination": {"iata_code": "BCN", "name": "El Prat", "city_name": "Barcelona", "iata_country_code": "ES"},
                    "departing_at": "2030-05-10T07:15:00",
                    "arriving_at": "2030-05-10T10:20:00",
                    "origin_terminal": "5",
                    "marketing_carrier": {"iata_code": "BA", "name": "British Airways"},
                    "marketing_carrier_flight_number": "478",
                    "duration": "PT2H5M",
                    "aircraft": {"name": "Airbus A320"},
                    "passengers": [{
                        "cabin_class": "economy",
                        "fare_basis_code": "OLOWGB",
                        "baggages": [{"type": "checked", "quantity": 1}],
                    }],
                }],
            }],
        }],
    }
}


def test_duffel_offer(search_request):
    batch = map_payload("duffel", DUFFEL_PAYLOAD, supplier_code="duffel", request=search_request)
    offer = batch.offers[0]
    assert offer.id == make_offer_id("duffel", "off_0001")
    assert offer.price.total == pytest.approx(310.5)
    assert offer.price.taxes == pytest.approx(60.5)
    assert offer.price.currency_symbol == "£"
    assert offer.price.breakdown["adult"]["passengers_count"] == 1
    assert offer.refundable is True
    assert offer.onholdable is True
    assert offer.validating_airline.name == "British Airways"

    leg = offer.legs[0]
    assert leg.duration_minutes == 125
    assert leg.stops == 0
    assert leg.departure.city == "London"
    assert leg.departure.time == "07:15"
    seg = leg.segments[0]
    assert seg.flight_number == "478"
    assert seg.luggage == "1 checked bag(s)"
    # capacité non exposée par Duffel
    assert offer.seats_available == 0


@pytest.mark.parametrize("mutate", [
    lambda o: o.update(passengers=["adult"]),
    lambda o: o["slices"][0]["segments"][0].update(passengers=["economy"]),
    lambda o: o["slices"][0].update(segments="LHR-BCN"),
    lambda o: o.update(conditions="refundable"),
])
def test_duffel_wrongly_typed_offer_is_dropped(search_request, mutate):
    payload = copy.deepcopy(DUFFEL_PAYLOAD)
    bad = copy.deepcopy(payload["data"]["offers"][0])
    bad["id"] = "off_bad"
    mutate(bad)
    payload["data"]["offers"].append(bad)

    batch = map_payload("duffel", payload, supplier_code="duffel", request=search_request)

    assert batch.dropped == 1
    assert [o.reference_id for o in batch.offers] == ["off_0001"]


# ---------- Amadeus ----------

AMADEUS_PAYLOAD = {
    "data": [{
        "id": "1",
        "lastTicketingDate": "2030-05-05",
        "numberOfBookableSeats": 4,
        "itineraries": [{
            "duration": "PT4H10M",
            "segments": [
                {
                    "id": "1",
                    "departure": {"iataCode": "CDG", "terminal": "2E", "at": "2030-05-10T09:00:00"},
                    "arrival": {"iataCode": "IST", "at": "2030-05-10T13:10:00"},
                    "carrierCode": "TK",
                    "number": "1830",
                    "aircraft": {"code": "321"},
                    "duration": "PT3H10M",
                },
                {
                    "id": "2",
                    "departure": {"iataCode": "IST", "at": "2030-05-10T15:00:00"},
                    "arrival": {"iataCode": "BCN", "at": "2030-05-10T17:30:00"},
                    "carrierCode": "TK",
                    "number": "1853",
                    "duration": "PT3H30M",
                },
            ],
        }],
        "price": {"currency": "EUR", "total": "420.30", "base": "300.00", "grandTotal": "420.30"},
        "validatingAirlineCodes": ["TK"],
        "travelerPricings": [{
            "travelerId": "1",
            "travelerType": "ADULT",
            "price": {"total": "420.30", "base": "300.00"},
            "fareDetailsBySegment": [
                {
                    "segmentId": "1",
                    "cabin": "ECONOMY",
                    "fareBasis": "PL2XPB",
                    "class": "P",
                    "includedCheckedBags": {"weight": 20, "weightUnit": "KG"},
                    "amenities": [{"amenityType": "REFUND", "isChargeable": False}],
                },
                {"segmentId": "2", "cabin": "BUSINESS", "class": "J", "includedCheckedBags": {"quantity": 2}},
            ],
        }],
    }],
    "dictionaries": {
        "carriers": {"TK": "TURKISH AIRLINES"},
        "locations": {
            "CDG": {"cityCode": "PAR", "countryCode": "FR"},
            "IST": {"cityCode": "IST", "countryCode": "TR"},
            "BCN": {"cityCode": "BCN", "countryCode": "ES"},
        },
    },
}


def test_amadeus_offer(search_request):
    batch = map_payload("amadeus", AMADEUS_PAYLOAD, supplier_code="amadeus", request=search_request)
    offer = batch.offers[0]
    assert offer.price.total == pytest.approx(420.3)
    assert offer.price.taxes == pytest.approx(120.3)
    assert offer.price.breakdown["ADULT"]["passengers_count"] == 1
    assert offer.validating_airline.name == "TURKISH AIRLINES"
    assert offer.refundable is True
    assert offer.seats_available == 4
    assert offer.valid_until == datetime(2030, 5, 5)

    leg = offer.legs[0]
    assert leg.stops == 1
    assert leg.duration_minutes == 250
    assert leg.departure.city == "PAR"
    assert leg.departure.terminal == "2E"
    assert leg.arrival.airport_code == "BCN"
    assert [s.cabin for s in leg.segments] == ["Economy", "Business"]
    assert [s.luggage for s in leg.segments] == ["20 KG", "2 checked bag(s)"]
    assert leg.segments[0].booking_class == "P"


def test_amadeus_missing_data_is_malformed(search_request):
    with pytest.raises(MalformedPayload):
        map_payload("amadeus", {"errors": [{"code": 38189}]}, supplier_code="amadeus", request=search_request)


def test_amadeus_wrongly_typed_pricing_is_dropped(search_request):
    payload = copy.deepcopy(AMADEUS_PAYLOAD)
    bad = copy.deepcopy(payload["data"][0])
    bad["id"] = "2"
    bad["travelerPricings"] = [{"travelerType": "ADULT", "fareDetailsBySegment": "ECONOMY"}]
    payload["data"].append(bad)

    batch = map_payload("amadeus", payload, supplier_code="amadeus", request=search_request)

    assert batch.dropped == 1
    assert [o.reference_id for o in batch.offers] == ["1"]


# ---------- Inventaire local ----------

def _flight(**overrides):
    values = dict(
        flight_number="SK101",
        airline_code="SK",
        airline_name="Skyfare Air",
        origin_code="CDG",
        origin_name="Charles de Gaulle",
        origin_city="Paris",
        destination_code="BCN",
        destination_name="El Prat",
        destination_city="Barcelona",
        departure_time=datetime(2030, 5, 10, 9, 0),
        arrival_time=datetime(2030, 5, 10, 11, 5),
        base_price=100.0,
        currency="EUR",
        seats=9,
        baggage_kg=23,
    )
    values.update(overrides)
    return InventoryFlight(**values)


@pytest.mark.anyio
async def test_local_inventory_pricing_and_filters(session_factory):
    db = session_factory()
    db.add_all([
        _flight(),
        _flight(flight_number="SK102", seats=2),                                   # pas assez de sièges
        _flight(flight_number="SK103", departure_time=datetime(2030, 5, 11, 9, 0),
                arrival_time=datetime(2030, 5, 11, 11, 0)),                       # autre jour
    ])
    db.commit()
    db.close()

    req = SearchRequest(origin="CDG", destination="BCN", departure_date=date(2030, 5, 10), adults=2, children=1, infants=1)
    driver = LocalInventoryProvider(DriverContext(code="local"), session_factory=session_factory)
    payload = await driver.search(req)
    batch = map_payload(driver.payload_format, payload, supplier_code="local", request=req)

    assert [o.legs[0].segments[0].flight_number for o in batch.offers] == ["SK101"]
    offer = batch.offers[0]
    # 2 x 100 + 0.75 x 100 + 0.10 x 100 = 285, taxes 12 %
    assert offer.price.base_fare == pytest.approx(285)
    assert offer.price.total == pytest.approx(319.2)
    assert offer.price.taxes == pytest.approx(34.2)
    assert offer.price.guaranteed is True
    assert offer.legs[0].duration_minutes == 125
    assert offer.legs[0].segments[0].luggage == "23 KG"
    assert offer.passengers.infants == 1
    assert offer.refundable is True


# ---------- Dummy ----------

@pytest.mark.anyio
async def test_dummy_is_deterministic_and_clean(search_request):
    driver = DummyProvider(DriverContext(code="dummy"))
    first = map_payload("flightbuffer", await driver.search(search_request), supplier_code="dummy", request=search_request)
    second = map_payload("flightbuffer", await driver.search(search_request), supplier_code="dummy", request=search_request)

    assert 5 <= len(first.offers) <= 10
    assert first.dropped == 0
    assert [(o.id, o.price.total) for o in first.offers] == [(o.id, o.price.total) for o in second.offers]
    for o in first.offers:
        leg = o.legs[0]
        assert leg.stops == len(leg.segments) - 1
        assert leg.departure.airport_code == "CDG"
        assert leg.arrival.airport_code == "BCN"
        assert o.price.total > o.price.base_fare > 0


def test_dummy_prices_depend_on_cabin(search_request):
    eco = generate_offers(search_request)
    biz = generate_offers(search_request.model_copy(update={"cabin": "business"}))
    assert eco[0]["priceInfo"]["payable"] != biz[0]["priceInfo"]["payable"]


def test_dummy_arrival_after_departure(search_request):
    for rec in generate_offers(search_request):
        info = rec["serviceInfo"]["legs"][0]["info"]
        dep = datetime.fromisoformat(info["departure"]["raw_time"])
        arr = datetime.fromisoformat(info["arrival"]["raw_time"])
        assert arr - dep >= timedelta(minutes=50)
