# backend/skyfare/services/providers.py
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Type

import httpx
from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..core.security import CredentialError
from ..providers.amadeus import AmadeusProvider
from ..providers.base import DriverContext, ProviderBase, SourceAuthError, UnknownDriverError
from ..providers.dummy import DummyProvider
from ..providers.duffel import DuffelProvider
from ..providers.flightbuffer import FlightBufferProvider
from ..providers.local import LocalInventoryProvider
from .registry import CredentialVault, SupplierConfig

logger = logging.getLogger(__name__)

# Ensemble fermé : un identifiant de driver inconnu est une erreur de configuration.
DRIVERS: Dict[str, Type[ProviderBase]] = {
    "flightbuffer": FlightBufferProvider,
    "duffel": DuffelProvider,
    "amadeus": AmadeusProvider,
    "local": LocalInventoryProvider,
    "dummy": DummyProvider,
}


class DriverFactory:
    """
    SupplierConfig -> driver prêt à l'emploi.
    Les credentials sont déchiffrés ici (et seulement ici), juste avant la construction.
    """

    def __init__(
        self,
        vault: Optional[CredentialVault] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.vault = vault or CredentialVault(session_factory)
        self.transport = transport
        self.session_factory = session_factory

    def build(self, config: SupplierConfig) -> ProviderBase:
        cls = DRIVERS.get(config.driver)
        if cls is None:
            raise UnknownDriverError(f"{config.code}: unknown driver '{config.driver}'")

        creds: Dict[str, Optional[str]] = {}
        if config.has_credentials:
            try:
                creds = self.vault.credentials_for(config.code)
            except CredentialError as e:
                raise SourceAuthError(f"{config.code}: {e}") from e

        ctx = DriverContext(
            code=config.code,
            base_url=config.base_url or "",
            timeout_seconds=config.timeout_seconds,
            config=dict(config.config),
            api_key=creds.get("api_key"),
            api_secret=creds.get("api_secret"),
        )
        if cls is LocalInventoryProvider:
            return LocalInventoryProvider(ctx, self.transport, session_factory=self.session_factory)
        return cls(ctx, self.transport)
