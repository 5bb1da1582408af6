from __future__ import annotations

import logging
import time
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from ..models.search import SearchRequest

logger = logging.getLogger("providers")


# ---------- Erreurs ----------

class DriverError(Exception):
    """Erreur d'un fournisseur amont. `retryable` pilote la politique de retry."""
    retryable = False

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientDriverError(DriverError):
    retryable = True


class SourceTimeout(TransientDriverError):
    pass


class SourceUnavailable(TransientDriverError):
    """Transport en échec ou HTTP 5xx / 429."""


class PermanentDriverError(DriverError):
    pass


class SourceAuthError(PermanentDriverError):
    """401/403 ou credentials manquants : pas de retry, source marquée unhealthy."""


class MalformedPayload(PermanentDriverError):
    pass


class UnknownDriverError(PermanentDriverError):
    pass


# ---------- Contrat ----------

@dataclass
class ConnectionResult:
    success: bool
    message: str
    latency_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DriverContext:
    """Ce qu'un driver reçoit à la construction (credentials déjà déchiffrés)."""
    code: str
    base_url: str = ""
    timeout_seconds: float = 30.0
    config: Mapping[str, Any] = field(default_factory=dict)
    api_key: Optional[str] = field(default=None, repr=False)
    api_secret: Optional[str] = field(default=None, repr=False)


class ProviderBase:
    """
    Interface commune des sources : search() renvoie le payload *brut* du fournisseur
    (normalisé ensuite par services/mappers selon `payload_format`), test_connection()
    sert aux sondes de santé.
    """
    name: str = "base"
    payload_format: str = "flightbuffer"
    default_base_url: str = ""

    def __init__(self, ctx: DriverContext, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.ctx = ctx
        self._transport = transport

    @property
    def code(self) -> str:
        return self.ctx.code

    @property
    def base_url(self) -> str:
        return (self.ctx.base_url or self.default_base_url).rstrip("/")

    async def search(self, request: "SearchRequest") -> Dict[str, Any]:
        raise NotImplementedError

    async def test_connection(self) -> ConnectionResult:
        t0 = time.perf_counter()
        try:
            result = await self._probe()
        except DriverError as e:
            result = ConnectionResult(success=False, message=f"Connection failed: {e.message}")
        except Exception as e:
            # bug de driver : échec du test, jamais d'exception vers l'appelant
            logger.exception("%s: erreur inattendue pendant le test de connexion", self.code)
            result = ConnectionResult(success=False, message=f"Connection failed: unexpected error: {e!r}")
        result.latency_ms = int((time.perf_counter() - t0) * 1000)
        return result

    async def _probe(self) -> ConnectionResult:
        resp = await self._request("GET", self.base_url or "/")
        return ConnectionResult(success=resp.is_success, message="Connection successful" if resp.is_success else f"API returned status {resp.status_code}")

    # ---------- HTTP ----------

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.ctx.timeout_seconds,
            transport=self._transport,
            **kwargs,
        )

    async def _request(self, method: str, url: str, *, check: bool = False, **kwargs: Any) -> httpx.Response:
        """Appel HTTP ; les erreurs transport sont traduites en DriverError."""
        headers = {**self.default_headers(), **kwargs.pop("headers", {})}
        try:
            async with self._client() as c:
                resp = await c.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise SourceTimeout(f"{self.code}: timeout on {method} {url}") from e
        except httpx.TransportError as e:
            raise SourceUnavailable(f"{self.code}: transport error on {method} {url}: {e}") from e
        if check:
            raise_for_status(self.code, resp)
        return resp


def raise_for_status(code: str, resp: httpx.Response) -> None:
    if resp.is_success:
        return
    status = resp.status_code
    detail = resp.text[:240]
    if status in (401, 403):
        raise SourceAuthError(f"{code}: HTTP {status} {detail}", status_code=status)
    if status >= 500 or status in (408, 429):
        raise SourceUnavailable(f"{code}: HTTP {status} {detail}", status_code=status)
    raise PermanentDriverError(f"{code}: HTTP {status} {detail}", status_code=status)
