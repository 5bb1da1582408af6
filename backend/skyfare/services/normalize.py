# backend/skyfare/services/normalize.py
"""
Normaliseurs de champs : fonctions pures, sans I/O ni état.
Utilisés par les mappers de payload (services/mappers.py) pour chaque format fournisseur.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from ..models.offer import Leg, Price, format_duration  # noqa: F401  (format_duration ré-exporté)


class MalformedRecord(ValueError):
    """Un enregistrement fournisseur ne peut pas être normalisé (il sera ignoré)."""


# ---------- Durées ----------

_ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:\d+(?:\.\d+)?S)?$")


def parse_duration(value: Any) -> int:
    """
    Durée -> minutes.
      - "H:MM"  -> H*60 + MM
      - "195:0" -> 195 : si H > 24 on considère que H est *déjà* en minutes
        (données amont mal formées ; heuristique conservée telle quelle, à confirmer
        avec les fournisseurs avant toute modification)
      - 125 / "125" -> inchangé
      - "PT2H30M" -> 150 (payloads Duffel / Amadeus)
    Tout le reste -> 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))

    s = str(value).strip()
    if not s:
        return 0

    if ":" in s:
        parts = s.split(":")
        try:
            hours = int(parts[0] or 0)
            minutes = int(parts[1] or 0) if len(parts) > 1 else 0
        except ValueError:
            return 0
        if hours > 24:
            return hours
        return max(0, hours * 60 + minutes)

    if s.lstrip("-").isdigit():
        return max(0, int(s))

    m = _ISO_DURATION_RE.match(s.upper())
    if m and any(m.groups()):
        days, hours, minutes = (int(g or 0) for g in m.groups())
        return days * 24 * 60 + hours * 60 + minutes
    return 0


# ---------- Cabine ----------

CANONICAL_CABINS = ("Economy", "Premium Economy", "Business", "First")

_CABIN_TABLE = {
    "y": "Economy",
    "economy": "Economy",
    "w": "Premium Economy",
    "premium economy": "Premium Economy",
    "premium_economy": "Premium Economy",
    "c": "Business",
    "j": "Business",
    "business": "Business",
    "f": "First",
    "first": "First",
}


def normalize_cabin(value: Any, default: str = "Economy") -> str:
    """Libellé canonique ; une valeur inconnue est passée telle quelle (1re lettre en majuscule)."""
    if value is None:
        return default
    raw = str(value).strip()
    if not raw:
        return default
    key = raw.lower()
    if key in _CABIN_TABLE:
        return _CABIN_TABLE[key]
    return key[0].upper() + key[1:]


# ---------- Bagages ----------

_LUGGAGE_SUFFIX_RE = re.compile(r"/[A-Z]+\s*$")


def clean_luggage(value: Any) -> Optional[str]:
    """'30 KG/ADT ' -> '30 KG' ; vide -> None."""
    if value is None:
        return None
    s = str(value).strip()
    s = _LUGGAGE_SUFFIX_RE.sub("", s).strip()
    return s or None


# ---------- Remboursable ----------

NON_REFUNDABLE_TOKENS = frozenset({"-", "no", "false", "0"})


def infer_refundable(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if not s:
        return False
    return s not in NON_REFUNDABLE_TOKENS


# ---------- Prix ----------

PRICE_TOTAL_ALIASES = ("payable", "b2c", "grandTotal", "total_amount", "totalAmount", "total")
PRICE_BASE_ALIASES = ("baseFare", "base_amount", "baseAmount", "base")

_BREAKDOWN_FIELDS = {
    "base_fare": ("baseFare", "base_fare", "base"),
    "tax": ("tax", "taxes"),
    "service_charge": ("serviceCharge", "service_charge"),
    "total_fare": ("totalFare", "total_fare", "total"),
    "commission": ("commission",),
    "payable": ("payable",),
}

_CURRENCY_SYMBOLS = {
    "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "TRY": "₺", "IQD": "ع.د",
    "AED": "د.إ", "IRR": "﷼", "INR": "₹", "CHF": "CHF", "CAD": "$", "AUD": "$",
}

_ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "IQD", "IRR"})


def currency_symbol(code: Optional[str]) -> str:
    c = (code or "").upper()
    return _CURRENCY_SYMBOLS.get(c, c or "$")


def safe_float(x: Any) -> Optional[float]:
    try:
        f = float(x)
        if f != f:  # NaN
            return None
        return f
    except (TypeError, ValueError):
        return None


def safe_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def first_amount(data: Mapping[str, Any], aliases: Sequence[str]) -> Optional[float]:
    """1er alias présent et numérique, dans l'ordre donné."""
    for name in aliases:
        if name in data:
            f = safe_float(data.get(name))
            if f is not None:
                return f
    return None


def _parse_breakdown(raw: Any) -> Dict[str, Dict[str, float]]:
    if not raw:
        return {}
    items: Iterable
    if isinstance(raw, Mapping):
        items = raw.items()
    else:
        # liste [{ "type": "ADT", ... }]
        items = ((str(r.get("type") or r.get("travelerType") or i), r) for i, r in enumerate(raw))

    out: Dict[str, Dict[str, float]] = {}
    for bucket, info in items:
        if not isinstance(info, Mapping):
            continue
        entry = {k: first_amount(info, names) or 0.0 for k, names in _BREAKDOWN_FIELDS.items()}
        entry["passengers_count"] = float(safe_int(info.get("passengersCount", info.get("passengers_count")), 1))
        out[str(bucket)] = entry
    return out


def derive_price(
    data: Mapping[str, Any],
    *,
    default_currency: str = "USD",
    guaranteed: Optional[bool] = None,
) -> Price:
    """
    total = 1er alias "payable" trouvé ; taxes = max(0, total - baseFare).
    `currency` peut être un code ("EUR") ou un bloc {abb, symbol, decimal_places}.
    Aucun arrondi ici (voir Price._round_amount).
    """
    if not isinstance(data, Mapping):
        raise MalformedRecord(f"price block is not an object: {type(data).__name__}")
    total = first_amount(data, PRICE_TOTAL_ALIASES) or 0.0
    base_fare = first_amount(data, PRICE_BASE_ALIASES) or 0.0

    cur = data.get("currency")
    if isinstance(cur, Mapping):
        code = str(cur.get("abb") or cur.get("code") or default_currency).upper()
        symbol = cur.get("symbol") or currency_symbol(code)
        decimals = cur.get("decimal_places")
    else:
        code = str(cur or data.get("total_currency") or data.get("base_currency") or default_currency).upper()
        symbol = currency_symbol(code)
        decimals = None
    if decimals is None:
        decimals = 0 if code in _ZERO_DECIMAL_CURRENCIES else 2

    return Price(
        total=total,
        base_fare=base_fare,
        taxes=max(0.0, total - base_fare),
        currency=code,
        currency_symbol=symbol,
        decimal_places=safe_int(decimals, 2),
        breakdown=_parse_breakdown(data.get("breakDowns") or data.get("breakdown")),
        guaranteed=bool(data.get("guaranteed", False)) if guaranteed is None else guaranteed,
    )


# ---------- Sièges ----------

def seats_available(legs: Iterable[Leg]) -> int:
    """Minimum des capacités strictement positives ; 0 = inconnu (pas "infini")."""
    positives = [seg.capacity for leg in legs for seg in leg.segments if seg.capacity > 0]
    return min(positives) if positives else 0


# ---------- Dates ----------

def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO 8601 (avec ou sans 'Z') -> datetime ; None si absent / illisible."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None
