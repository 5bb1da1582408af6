# backend/skyfare/providers/local.py
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, time as dtime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.inventory import InventoryFlight
from ..models.search import SearchRequest
from .base import ConnectionResult, DriverContext, ProviderBase, SourceUnavailable

logger = logging.getLogger("local")

_COLUMNS = (
    "id", "flight_number", "airline_code", "airline_name", "airline_logo",
    "origin_code", "origin_name", "origin_city", "origin_country",
    "destination_code", "destination_name", "destination_city", "destination_country",
    "base_price", "currency", "seats", "baggage_kg", "aircraft_type",
)


def _row_to_dict(f: InventoryFlight) -> Dict[str, Any]:
    d = {c: getattr(f, c) for c in _COLUMNS}
    d["departure_time"] = f.departure_time.isoformat() if f.departure_time else None
    d["arrival_time"] = f.arrival_time.isoformat() if f.arrival_time else None
    return d


class LocalInventoryProvider(ProviderBase):
    """
    Inventaire local (table inventory_flights) servi comme un fournisseur.
    Aller simple uniquement : vols du jour demandé avec au moins autant de sièges que de passagers assis.
    """
    name = "local"
    payload_format = "local"

    def __init__(
        self,
        ctx: DriverContext,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        super().__init__(ctx, transport)
        self._session_factory = session_factory

    def _query(self, req: SearchRequest) -> List[Dict[str, Any]]:
        day_start = datetime.combine(req.departure_date, dtime.min)
        seated = req.adults + req.children
        stmt = (
            select(InventoryFlight)
            .where(
                InventoryFlight.origin_code == req.origin,
                InventoryFlight.destination_code == req.destination,
                InventoryFlight.departure_time >= day_start,
                InventoryFlight.departure_time < day_start + timedelta(days=1),
                InventoryFlight.seats >= seated,
            )
            .order_by(InventoryFlight.departure_time)
        )
        db = self._session_factory()
        try:
            return [_row_to_dict(f) for f in db.scalars(stmt)]
        finally:
            db.close()

    async def search(self, request: SearchRequest) -> Dict[str, Any]:
        t0 = time.perf_counter()
        try:
            flights = await asyncio.to_thread(self._query, request)
        except SQLAlchemyError as e:
            raise SourceUnavailable(f"{self.code}: inventory query failed: {e}") from e
        logger.info(
            "local search OK: %s-%s %s → %d vols in %d ms",
            request.origin,
            request.destination,
            request.departure_date,
            len(flights),
            int((time.perf_counter() - t0) * 1000),
        )
        return {"flights": flights}

    def _ping(self) -> None:
        db = self._session_factory()
        try:
            db.scalars(select(InventoryFlight.id).limit(1)).all()
        finally:
            db.close()

    async def _probe(self) -> ConnectionResult:
        try:
            await asyncio.to_thread(self._ping)
        except SQLAlchemyError as e:
            return ConnectionResult(success=False, message=f"Connection failed: {e}")
        return ConnectionResult(success=True, message="Connection successful")
