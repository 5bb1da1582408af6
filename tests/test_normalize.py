from datetime import datetime, timezone

import pytest

from skyfare.models.offer import Leg, Segment
from skyfare.services.normalize import (
    clean_luggage,
    derive_price,
    format_duration,
    infer_refundable,
    normalize_cabin,
    parse_duration,
    parse_timestamp,
    seats_available,
)


@pytest.mark.parametrize("raw, expected", [
    ("3:30", 210),
    ("0:45", 45),
    ("24:00", 1440),
    ("195:0", 195),   # H > 24 : déjà en minutes
    (125, 125),
    ("125", 125),
    ("PT2H30M", 150),
    ("P1DT1H", 1500),
    (None, 0),
    ("", 0),
    ("abc", 0),
    (-5, 0),
])
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


def test_format_duration():
    assert format_duration(210) == "3h 30m"
    assert format_duration(180) == "3h"
    assert format_duration(45) == "45m"
    assert format_duration(0) == "0m"


@pytest.mark.parametrize("raw", ["Y", "economy", " Economy ", "ECONOMY"])
def test_normalize_cabin_economy_equivalents(raw):
    assert normalize_cabin(raw) == "Economy"


def test_normalize_cabin_codes_and_idempotence():
    assert normalize_cabin("C") == "Business"
    assert normalize_cabin("j") == "Business"
    assert normalize_cabin("F") == "First"
    assert normalize_cabin("premium_economy") == "Premium Economy"
    for label in ("Economy", "Premium Economy", "Business", "First", "Sleeper"):
        assert normalize_cabin(normalize_cabin(label)) == normalize_cabin(label)


def test_normalize_cabin_unknown_and_empty():
    assert normalize_cabin("sleeper") == "Sleeper"
    assert normalize_cabin(None) == "Economy"
    assert normalize_cabin("  ") == "Economy"


def test_clean_luggage():
    assert clean_luggage("30 KG/ADT ") == "30 KG"
    assert clean_luggage("2PC/CHD") == "2PC"
    assert clean_luggage("20 KG") == "20 KG"
    assert clean_luggage("   ") is None
    assert clean_luggage(None) is None


@pytest.mark.parametrize("raw, expected", [
    ("-", False),
    ("no", False),
    ("NO", False),
    ("false", False),
    ("0", False),
    ("", False),
    (None, False),
    ("yes", True),
    ("Refundable with penalty", True),
    (True, True),
    (False, False),
])
def test_infer_refundable(raw, expected):
    assert infer_refundable(raw) is expected


def test_derive_price_taxes_never_negative():
    price = derive_price({"payable": 500, "baseFare": 520})
    assert price.total == 500
    assert price.taxes == 0


def test_derive_price_alias_order_and_currency_block():
    price = derive_price({
        "b2c": 90,
        "payable": 120.456,
        "baseFare": 100,
        "currency": {"abb": "EUR", "symbol": "€", "decimal_places": 2},
    })
    assert price.total == pytest.approx(120.456)
    assert price.taxes == pytest.approx(20.456)
    assert price.currency == "EUR"
    assert price.formatted == "€120.46"
    # arrondi uniquement à la sérialisation
    assert price.model_dump()["total"] == 120.46


def test_derive_price_plain_currency_code_and_zero_decimals():
    price = derive_price({"total_amount": "15000", "base_amount": "12000", "total_currency": "JPY"})
    assert price.currency == "JPY"
    assert price.decimal_places == 0
    assert price.taxes == 3000


def test_derive_price_breakdown_list_keyed_by_type():
    price = derive_price({
        "payable": 300,
        "baseFare": 250,
        "breakDowns": [
            {"type": "ADT", "baseFare": 200, "tax": 40, "totalFare": 240, "passengersCount": 2},
            {"type": "CHD", "baseFare": 50, "tax": 10, "totalFare": 60},
        ],
    })
    assert price.breakdown["ADT"]["passengers_count"] == 2
    assert price.breakdown["CHD"]["total_fare"] == 60
    assert price.breakdown["CHD"]["passengers_count"] == 1


def _leg(*capacities):
    return Leg(segments=[Segment(capacity=c) for c in capacities])


def test_seats_available_min_positive():
    assert seats_available([_leg(0, 5, 3)]) == 3
    assert seats_available([_leg(4), _leg(0, 7)]) == 4


def test_seats_available_all_zero_is_unknown():
    assert seats_available([_leg(0, 0)]) == 0
    assert seats_available([]) == 0


def test_parse_timestamp():
    assert parse_timestamp("2030-05-10T08:00:00Z") == datetime(2030, 5, 10, 8, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2030-05-10T08:00:00") == datetime(2030, 5, 10, 8, 0)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
