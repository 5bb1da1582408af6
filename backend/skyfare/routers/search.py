# backend/skyfare/routers/search.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, HTTPException
from pydantic import ValidationError
import logging

from ..models.search import SearchRequest
from ..services.aggregator import Aggregator, get_aggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["search"])  # pas de /api (proxy front attend /search)

def _valid_date(d: str) -> bool:
    return (
        len(d) == 10
        and d[4] == "-"
        and d[7] == "-"
        and d[:4].isdigit()
        and d[5:7].isdigit()
        and d[8:10].isdigit()
    )

@router.get("/search")
async def search_flights(
    # obligatoires
    origin: str = Query(..., min_length=3, max_length=3),
    destination: str = Query(..., min_length=3, max_length=3),
    date: str = Query(..., description="YYYY-MM-DD"),
    # voyage
    return_date: str | None = Query(None, description="YYYY-MM-DD (aller-retour)"),
    adults: int = Query(1, ge=0),
    children: int = Query(0, ge=0),
    infants: int = Query(0, ge=0),
    cabin: str = Query("economy"),             # economy|premium_economy|business|first
    currency: str = Query("USD", min_length=3, max_length=3),
    lang: str = Query("EN"),
    # filtres post-fusion
    min_price: float | None = Query(None, ge=0),
    max_price: float | None = Query(None, ge=0),
    airline: str | None = Query(None),
    max_stops: int | None = Query(None, ge=0),
    refundable: bool = Query(False),
    # source unique (diagnostic)
    supplier: str | None = Query(None),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """
    Renvoie:
      { "results": [Offer, ...], "count", "sources": [SourceReport, ...], "latency_ms", "no_sources_queried" }

    - Toutes les sources actives sont interrogées en parallèle (ou `supplier` seul).
    - Résultats triés prix asc, puis escales, puis heure de départ.
    """
    if not _valid_date(date):
        raise HTTPException(status_code=400, detail="Paramètre date invalide, attendu YYYY-MM-DD.")
    if return_date is not None and not _valid_date(return_date):
        raise HTTPException(status_code=400, detail="Paramètre return_date invalide, attendu YYYY-MM-DD.")
    if return_date is not None and return_date < date:
        raise HTTPException(status_code=400, detail="return_date doit être postérieure à date.")
    if adults + children == 0:
        raise HTTPException(status_code=400, detail="Au moins un passager (adulte ou enfant) requis.")

    try:
        req = SearchRequest.from_query({
            "from": origin,
            "to": destination,
            "date": date,
            "return_date": return_date,
            "trip_type": "roundTrip" if return_date else "oneWay",
            "adults": adults,
            "children": children,
            "infants": infants,
            "cabin": cabin,
            "currency": currency,
            "lang": lang,
            "min_price": min_price,
            "max_price": max_price,
            "airline": airline,
            "max_stops": max_stops,
            "refundable": refundable,
        })
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Recherche invalide: {e}")

    if supplier:
        result = await aggregator.search_source(supplier, req)
    else:
        result = await aggregator.search(req)
    return result.to_dict()

@router.get("/offers/{offer_id}")
def get_offer(offer_id: str, aggregator: Aggregator = Depends(get_aggregator)):
    """Offre vue lors d'une recherche récente (404 si expirée ou inconnue)."""
    offer = aggregator.find_offer(offer_id)
    if offer is None:
        raise HTTPException(status_code=404, detail="Offre introuvable ou expirée.")
    return offer.model_dump(mode="json")
