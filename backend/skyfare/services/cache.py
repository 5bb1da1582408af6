# backend/skyfare/services/cache.py
from __future__ import annotations
from dataclasses import dataclass
from time import time
from typing import Any, Dict, Optional
import json
import hashlib
import logging

from ..models.search import SearchRequest

log = logging.getLogger(__name__)

@dataclass
class CacheEntry:
    value: Any
    expires_at: float

class InMemoryCache:
    """
    Cache mémoire *très* simple (process-local).
    Sert aux payloads bruts par source (SEARCH:) et aux offres par id (OFFER:).
    """
    def __init__(self) -> None:
        self._store: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        now = time()
        e = self._store.get(key)
        if not e:
            log.debug("[cache] MISS %s", key[:80])
            return None
        if e.expires_at < now:
            log.debug("[cache] EXPIRED %s", key[:80])
            self._store.pop(key, None)
            return None
        log.debug("[cache] HIT %s", key[:80])
        return e.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        if ttl <= 0:
            return
        self._store[key] = CacheEntry(value=value, expires_at=time() + ttl)
        log.debug("[cache] SET %s (ttl=%ss)", key[:80], ttl)

    def __len__(self) -> int:
        return len(self._store)

cache = InMemoryCache()

def criteria_hash(criteria: Dict[str, Any]) -> str:
    """
    Hash stable (sha1) d'un JSON *normalisé* (tri des clés, valeurs simples).
    """
    payload = json.dumps(criteria, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()

def search_key(supplier_code: str, request: SearchRequest) -> str:
    return f"SEARCH:{supplier_code}:{request.origin}:{request.destination}:{request.departure_date.isoformat()}:{criteria_hash(request.cache_fields())}"

def offer_key(offer_id: str) -> str:
    return f"OFFER:{offer_id}"
