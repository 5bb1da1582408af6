# backend/skyfare/services/aggregator.py
"""
Orchestrateur de recherche multi-fournisseurs.

  sélection (snapshot du registre) -> interrogation concurrente (timeout + retry par source)
  -> normalisation (mappers) -> fusion / filtres / tri -> SearchResult

Chaque tâche source renvoie ses offres ; la fusion est faite par un seul écrivain
(la coroutine search) une fois toutes les tâches terminées ou annulées à l'échéance.
Une source en échec n'interrompt jamais les autres : search() renvoie toujours un SearchResult.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..core.config import Settings, settings as default_settings
from ..models.offer import Offer
from ..models.search import SearchFilters, SearchRequest
from ..providers.base import (
    ConnectionResult,
    DriverError,
    MalformedPayload,
    ProviderBase,
    SourceAuthError,
    SourceTimeout,
    TransientDriverError,
    UnknownDriverError,
)
from .cache import InMemoryCache, cache as shared_cache, offer_key, search_key
from .mappers import map_payload
from .providers import DriverFactory
from .registry import CandidateCriteria, SupplierConfig, SupplierRegistry

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
TIMED_OUT = "timed_out"
FAILED = "failed"
SKIPPED_UNHEALTHY = "skipped_unhealthy"

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class SourceReport:
    code: str
    status: str = FAILED
    offers: int = 0
    dropped: int = 0
    attempts: int = 0
    latency_ms: int = 0
    error: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    offers: List[Offer] = field(default_factory=list)
    sources: List[SourceReport] = field(default_factory=list)
    latency_ms: int = 0
    no_sources_queried: bool = False

    @property
    def count(self) -> int:
        return len(self.offers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [o.model_dump(mode="json") for o in self.offers],
            "count": self.count,
            "sources": [s.to_dict() for s in self.sources],
            "latency_ms": self.latency_ms,
            "no_sources_queried": self.no_sources_queried,
        }


# ---------- Filtres & tri (fonctions pures) ----------

def apply_filters(offers: Iterable[Offer], filters: Optional[SearchFilters]) -> List[Offer]:
    out = list(offers)
    if filters is None:
        return out
    if filters.min_price is not None:
        out = [o for o in out if o.price.total >= filters.min_price]
    if filters.max_price is not None:
        out = [o for o in out if o.price.total <= filters.max_price]
    if filters.airline:
        out = [o for o in out if o.validating_airline.code.upper() == filters.airline]
    if filters.max_stops is not None:
        out = [o for o in out if all(leg.stops <= filters.max_stops for leg in o.legs)]
    if filters.refundable:
        out = [o for o in out if o.refundable]
    return out


def _departure_key(offer: Offer) -> datetime:
    dt = offer.first_departure
    if dt is None:
        return _FAR_FUTURE
    if dt.tzinfo is None:
        # horodatage sans fuseau : traité comme UTC pour rester comparable
        return dt.replace(tzinfo=timezone.utc)
    return dt


def rank_offers(offers: Iterable[Offer]) -> List[Offer]:
    """Prix total croissant, puis nombre d'escales, puis départ le plus tôt. Tri stable."""
    return sorted(offers, key=lambda o: (o.price.total, o.total_stops, _departure_key(o)))


# ---------- Orchestrateur ----------

class Aggregator:
    def __init__(
        self,
        registry: SupplierRegistry,
        factory: DriverFactory,
        *,
        cache: Optional[InMemoryCache] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.registry = registry
        self.factory = factory
        self.cache = cache
        self.settings = settings or default_settings
        # écritures de santé dans un thread, une à la fois (même si la tâche appelante est annulée)
        self._health_lock = threading.Lock()

    async def _health(self, update: Callable[[str], Optional[SupplierConfig]], code: str) -> Optional[SupplierConfig]:
        def write() -> Optional[SupplierConfig]:
            with self._health_lock:
                return update(code)
        return await asyncio.to_thread(write)

    # ----- API publique -----

    async def search(self, request: SearchRequest, *, deadline: Optional[float] = None) -> SearchResult:
        """
        Interroge toutes les sources actives (priorité décroissante).
        `deadline` (secondes) remplace SEARCH_DEADLINE_SECONDS pour cette requête.
        """
        t0 = time.perf_counter()
        snapshot = self.registry.snapshot()
        candidates = self.registry.list_candidates(CandidateCriteria(), snapshot)

        reports: Dict[str, SourceReport] = {}
        to_query: List[SupplierConfig] = []
        for cfg in candidates:
            report = reports[cfg.code] = SourceReport(code=cfg.code)
            if self.settings.SEARCH_SKIP_UNHEALTHY and not cfg.is_healthy:
                report.status = SKIPPED_UNHEALTHY
                logger.info("aggregator: %s unhealthy → ignoré", cfg.code)
                continue
            to_query.append(cfg)

        result = await self._aggregate(request, to_query, reports, deadline)
        result.latency_ms = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "aggregator: %s-%s %s → %d offres, %d/%d sources interrogées in %d ms",
            request.origin,
            request.destination,
            request.departure_date,
            result.count,
            len(to_query),
            len(candidates),
            result.latency_ms,
        )
        return result

    async def search_source(self, code: str, request: SearchRequest, *, deadline: Optional[float] = None) -> SearchResult:
        """Une seule source, même si elle est marquée unhealthy (appel explicite)."""
        t0 = time.perf_counter()
        cfg = self.registry.get(code)
        if cfg is None or not cfg.is_active:
            logger.warning("aggregator: source '%s' inconnue ou inactive", code)
            return SearchResult(no_sources_queried=True, latency_ms=int((time.perf_counter() - t0) * 1000))
        result = await self._aggregate(request, [cfg], {cfg.code: SourceReport(code=cfg.code)}, deadline)
        result.latency_ms = int((time.perf_counter() - t0) * 1000)
        return result

    def find_offer(self, offer_id: str) -> Optional[Offer]:
        """Offre vue lors d'une recherche récente (cache OFFER:), avec son payload brut."""
        if self.cache is None:
            return None
        offer = self.cache.get(offer_key(offer_id))
        if offer is None or offer.is_expired():
            return None
        return offer

    async def probe(self, code: str) -> Optional[ConnectionResult]:
        """Sonde de santé : test_connection() puis mise à jour de l'état du registre."""
        cfg = self.registry.get(code)
        if cfg is None:
            return None
        try:
            driver = self.factory.build(cfg)
        except DriverError as e:
            result = ConnectionResult(success=False, message=e.message)
        else:
            result = await driver.test_connection()
        if result.success:
            await self._health(self.registry.mark_healthy, code)
        else:
            await self._health(self.registry.mark_unhealthy, code)
        logger.info("aggregator: probe %s → %s (%s)", code, "OK" if result.success else "KO", result.message)
        return result

    # ----- Fan-out / fusion -----

    async def _aggregate(
        self,
        request: SearchRequest,
        to_query: Sequence[SupplierConfig],
        reports: Dict[str, SourceReport],
        deadline: Optional[float],
    ) -> SearchResult:
        if not to_query:
            logger.warning("aggregator: aucune source à interroger")
            return SearchResult(sources=list(reports.values()), no_sources_queried=True)

        per_source = await self._fan_out(request, to_query, reports, deadline)

        # concaténation dans l'ordre de priorité, indépendamment de l'ordre de complétion
        merged = [o for cfg in to_query for o in per_source.get(cfg.code, [])]
        self._remember(merged)
        offers = rank_offers(apply_filters(merged, request.filters))
        return SearchResult(
            offers=offers[: self.settings.SEARCH_MAX_RESULTS],
            sources=list(reports.values()),
        )

    async def _fan_out(
        self,
        request: SearchRequest,
        to_query: Sequence[SupplierConfig],
        reports: Dict[str, SourceReport],
        deadline: Optional[float],
    ) -> Dict[str, List[Offer]]:
        limit = self.settings.SEARCH_MAX_CONCURRENCY if self.settings.SEARCH_PARALLEL else 1
        sem = asyncio.Semaphore(max(1, limit))
        tasks = {
            cfg.code: asyncio.create_task(
                self._run_source(sem, cfg, request, reports[cfg.code]), name=f"source:{cfg.code}",
            )
            for cfg in to_query
        }
        timeout = deadline if deadline is not None else self.settings.SEARCH_DEADLINE_SECONDS

        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
        except asyncio.CancelledError:
            # requête appelante annulée : aucune tâche source ne doit survivre
            for t in tasks.values():
                t.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        if pending:
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        out: Dict[str, List[Offer]] = {}
        for code, task in tasks.items():
            if task in pending or task.cancelled():
                report = reports[code]
                report.status = TIMED_OUT
                report.error = "search deadline exceeded"
                logger.warning("aggregator: %s annulé à l'échéance (%ss)", code, timeout)
                out[code] = []
            else:
                out[code] = task.result()
        return out

    async def _run_source(
        self,
        sem: asyncio.Semaphore,
        cfg: SupplierConfig,
        request: SearchRequest,
        report: SourceReport,
    ) -> List[Offer]:
        async with sem:
            t0 = time.perf_counter()
            try:
                return await self._query_source(cfg, request, report)
            except Exception as e:
                # bug d'un driver / mapper : la source échoue, la recherche continue
                logger.exception("aggregator: %s erreur inattendue", cfg.code)
                report.status = FAILED
                report.error = f"unexpected error: {e}"
                return []
            finally:
                report.latency_ms = int((time.perf_counter() - t0) * 1000)

    async def _query_source(self, cfg: SupplierConfig, request: SearchRequest, report: SourceReport) -> List[Offer]:
        key = search_key(cfg.code, request)
        cached = self.cache.get(key) if self.cache is not None else None

        if cached is not None:
            fmt, payload = cached
            report.cached = True
        else:
            try:
                driver = self.factory.build(cfg)
            except SourceAuthError as e:
                await self._health(self.registry.mark_unhealthy, cfg.code)
                return self._fail(report, FAILED, e)
            except UnknownDriverError as e:
                return self._fail(report, FAILED, e)

            payload = await self._fetch(driver, cfg, request, report)
            if payload is None:
                return []
            fmt = driver.payload_format

        try:
            batch = map_payload(fmt, payload, supplier_code=cfg.code, request=request)
        except MalformedPayload as e:
            return self._fail(report, FAILED, e)

        if cached is None and self.cache is not None:
            self.cache.set(key, (fmt, payload), self.settings.CACHE_TTL_SEARCH)

        report.status = SUCCEEDED
        report.offers = len(batch.offers)
        report.dropped = batch.dropped
        min_price = min((o.price.total for o in batch.offers), default=None)
        logger.info(
            "aggregator: %s → %d offres (min=%s, ignorées=%d)%s",
            cfg.code,
            report.offers,
            f"{min_price:.0f}" if min_price is not None else "n/a",
            batch.dropped,
            " [cache]" if report.cached else "",
        )
        return batch.offers

    async def _fetch(
        self,
        driver: ProviderBase,
        cfg: SupplierConfig,
        request: SearchRequest,
        report: SourceReport,
    ) -> Optional[Dict[str, Any]]:
        """
        Appel du driver avec timeout par tentative et retry sur erreur transitoire.
        Renvoie None si la source a échoué (le rapport est alors renseigné).
        """
        max_attempts = max(1, cfg.retry_times)
        delay = self.settings.RETRY_DELAY_MS / 1000.0
        last_error: DriverError = SourceTimeout(f"{cfg.code}: no attempt made")

        for attempt in range(1, max_attempts + 1):
            report.attempts = attempt
            try:
                payload = await asyncio.wait_for(driver.search(request), timeout=cfg.timeout_seconds)
            except asyncio.TimeoutError:
                last_error = SourceTimeout(f"{cfg.code}: no response within {cfg.timeout_seconds}s")
            except SourceAuthError as e:
                await self._health(self.registry.mark_unhealthy, cfg.code)
                self._fail(report, FAILED, e)
                return None
            except TransientDriverError as e:
                last_error = e
            except DriverError as e:
                self._fail(report, FAILED, e)
                return None
            else:
                if attempt == 1:
                    await self._health(self.registry.mark_healthy, cfg.code)
                else:
                    await self._health(self.registry.record_success, cfg.code)
                return payload

            logger.warning("aggregator: %s tentative %d/%d en échec: %s", cfg.code, attempt, max_attempts, last_error.message)
            if attempt < max_attempts and delay > 0:
                await asyncio.sleep(delay)

        await self._health(self.registry.record_exhaustion, cfg.code)
        self._fail(report, TIMED_OUT if isinstance(last_error, SourceTimeout) else FAILED, last_error)
        return None

    @staticmethod
    def _fail(report: SourceReport, status: str, error: DriverError) -> List[Offer]:
        report.status = status
        report.error = error.message
        logger.warning("aggregator: %s %s: %s", report.code, status, error.message)
        return []

    def _remember(self, offers: Iterable[Offer]) -> None:
        if self.cache is None:
            return
        ttl = self.settings.CACHE_TTL_OFFER
        for o in offers:
            self.cache.set(offer_key(o.id), o, ttl)


# Instance partagée par les routers (remplie à la 1ère utilisation)
_AGGREGATOR: Optional[Aggregator] = None


def get_aggregator() -> Aggregator:
    global _AGGREGATOR
    if _AGGREGATOR is None:
        _AGGREGATOR = Aggregator(SupplierRegistry(), DriverFactory(), cache=shared_cache)
    return _AGGREGATOR
