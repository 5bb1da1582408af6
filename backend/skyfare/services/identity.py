from __future__ import annotations

import hashlib
from typing import Iterable, List, TypeVar

T = TypeVar("T")


def make_offer_id(supplier_code: str, reference_id: str) -> str:
    """
    Identifiant canonique stable : "<code>_<16 hex de md5(reference)>".
    Pas de sel -> identique d'un process à l'autre. md5 est utilisé comme hash
    généraliste (64 bits suffisent pour le volume d'offres d'une recherche).
    """
    digest = hashlib.md5(str(reference_id).encode("utf-8")).hexdigest()
    return f"{supplier_code}_{digest[:16]}"


def unique_by_id(offers: Iterable[T]) -> List[T]:
    """
    Dédoublonnage *intra-fournisseur* : même id -> 1re occurrence gardée.
    Pas de dédoublonnage entre fournisseurs (le même itinéraire chez deux sources
    reste deux offres comparables sur le prix).
    """
    seen = set()
    out: List[T] = []
    for o in offers:
        oid = getattr(o, "id")
        if oid in seen:
            continue
        seen.add(oid)
        out.append(o)
    return out
