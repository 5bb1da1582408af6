# backend/skyfare/services/registry.py
"""
Registre des fournisseurs.

Les lectures renvoient des SupplierConfig *figés* et détachés de la session SQLAlchemy :
l'orchestrateur travaille sur un snapshot par requête, jamais sur des objets ORM vivants.
Les seules écritures côté agrégation sont l'état de santé (mark_healthy / mark_unhealthy /
record_exhaustion). Les credentials restent chiffrés en base et ne sont déchiffrés que par
CredentialVault, au moment de construire un driver.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import SessionLocal
from ..core.security import CredentialCipher, cipher as default_cipher
from ..models.supplier import Supplier

logger = logging.getLogger(__name__)

CREDENTIAL_FIELDS = {"api_key": "api_key_encrypted", "api_secret": "api_secret_encrypted"}


@dataclass(frozen=True)
class SupplierConfig:
    code: str
    name: str
    driver: str
    base_url: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    timeout_seconds: float = 30.0
    retry_times: int = 3
    is_healthy: bool = True
    last_health_check: Optional[datetime] = None
    consecutive_failures: int = 0
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    has_credentials: bool = False

    @classmethod
    def from_row(cls, row: Supplier) -> "SupplierConfig":
        return cls(
            code=row.code,
            name=row.name,
            driver=row.driver,
            base_url=row.api_base_url,
            is_active=bool(row.is_active),
            priority=int(row.priority or 0),
            timeout_seconds=float(row.timeout_seconds or 30.0),
            retry_times=int(row.retry_times if row.retry_times is not None else 3),
            is_healthy=bool(row.is_healthy),
            last_health_check=row.last_health_check,
            consecutive_failures=int(row.consecutive_failures or 0),
            config=MappingProxyType(dict(row.config or {})),
            has_credentials=bool(row.api_key_encrypted or row.api_secret_encrypted),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "driver": self.driver,
            "base_url": self.base_url,
            "is_active": self.is_active,
            "priority": self.priority,
            "timeout_seconds": self.timeout_seconds,
            "retry_times": self.retry_times,
            "is_healthy": self.is_healthy,
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
            "consecutive_failures": self.consecutive_failures,
            "has_credentials": self.has_credentials,
        }


@dataclass(frozen=True)
class CandidateCriteria:
    """Filtre de list_candidates. Par défaut : actifs seulement, santé ignorée."""
    include_inactive: bool = False
    include_unhealthy: bool = True
    codes: Optional[FrozenSet[str]] = None


class SupplierRegistry:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        unhealthy_threshold: Optional[int] = None,
        cipher: Optional[CredentialCipher] = None,
    ) -> None:
        self._session_factory = session_factory
        self.unhealthy_threshold = unhealthy_threshold or settings.SUPPLIER_UNHEALTHY_THRESHOLD
        self._cipher = cipher or default_cipher

    # ---------- Lecture ----------

    def snapshot(self) -> Tuple[SupplierConfig, ...]:
        """Vue figée de tout le registre, à prendre une fois par requête."""
        db = self._session_factory()
        try:
            rows = db.scalars(select(Supplier)).all()
            return tuple(SupplierConfig.from_row(r) for r in rows)
        finally:
            db.close()

    def list_candidates(
        self,
        criteria: Optional[CandidateCriteria] = None,
        snapshot: Optional[Sequence[SupplierConfig]] = None,
    ) -> List[SupplierConfig]:
        """
        Sources à interroger, priorité décroissante (à priorité égale : ordre du code).
        Liste vide si rien ne correspond, jamais d'exception.
        """
        criteria = criteria or CandidateCriteria()
        snap = self.snapshot() if snapshot is None else snapshot
        out = [
            s for s in snap
            if (criteria.include_inactive or s.is_active)
            and (criteria.include_unhealthy or s.is_healthy)
            and (criteria.codes is None or s.code in criteria.codes)
        ]
        return sorted(out, key=lambda s: (-s.priority, s.code))

    def get(self, code: str) -> Optional[SupplierConfig]:
        db = self._session_factory()
        try:
            row = db.scalars(select(Supplier).where(Supplier.code == code)).first()
            return SupplierConfig.from_row(row) if row else None
        finally:
            db.close()

    # ---------- Santé ----------

    def _update(self, code: str, apply: Callable[[Supplier], None]) -> Optional[SupplierConfig]:
        db = self._session_factory()
        try:
            row = db.scalars(select(Supplier).where(Supplier.code == code)).first()
            if row is None:
                logger.warning("registry: fournisseur inconnu '%s'", code)
                return None
            apply(row)
            row.last_health_check = datetime.utcnow()
            db.commit()
            return SupplierConfig.from_row(row)
        finally:
            db.close()

    def mark_healthy(self, code: str) -> Optional[SupplierConfig]:
        def apply(row: Supplier) -> None:
            if not row.is_healthy:
                logger.info("registry: %s de nouveau healthy", code)
            row.is_healthy = True
            row.consecutive_failures = 0
        return self._update(code, apply)

    def mark_unhealthy(self, code: str) -> Optional[SupplierConfig]:
        def apply(row: Supplier) -> None:
            if row.is_healthy:
                logger.warning("registry: %s marqué unhealthy", code)
            row.is_healthy = False
        return self._update(code, apply)

    def record_success(self, code: str) -> Optional[SupplierConfig]:
        """Succès après retry : remet le compteur à zéro sans toucher is_healthy."""
        def apply(row: Supplier) -> None:
            row.consecutive_failures = 0
        return self._update(code, apply)

    def record_exhaustion(self, code: str) -> Optional[SupplierConfig]:
        """Retries épuisés : compteur +1, unhealthy à partir du seuil."""
        def apply(row: Supplier) -> None:
            row.consecutive_failures = int(row.consecutive_failures or 0) + 1
            if row.consecutive_failures >= self.unhealthy_threshold and row.is_healthy:
                logger.warning(
                    "registry: %s marqué unhealthy (%d échecs consécutifs)", code, row.consecutive_failures,
                )
                row.is_healthy = False
        return self._update(code, apply)

    # ---------- Écriture (seed / administration) ----------

    def register(
        self,
        code: str,
        name: str,
        driver: str,
        *,
        api_base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        is_active: bool = True,
        priority: int = 0,
        timeout_seconds: float = 30.0,
        retry_times: int = 3,
        config: Optional[Mapping[str, Any]] = None,
    ) -> SupplierConfig:
        """Crée ou met à jour (par code). Les credentials fournis sont chiffrés avant écriture."""
        db = self._session_factory()
        try:
            row = db.scalars(select(Supplier).where(Supplier.code == code)).first()
            if row is None:
                row = Supplier(code=code)
                db.add(row)
            row.name = name
            row.driver = driver
            row.api_base_url = api_base_url
            row.is_active = is_active
            row.priority = priority
            row.timeout_seconds = timeout_seconds
            row.retry_times = retry_times
            row.config = dict(config or {})
            if api_key is not None:
                row.api_key_encrypted = self._cipher.encrypt(api_key)
            if api_secret is not None:
                row.api_secret_encrypted = self._cipher.encrypt(api_secret)
            if row.is_healthy is None:
                row.is_healthy = True
            if row.consecutive_failures is None:
                row.consecutive_failures = 0
            db.commit()
            logger.info("registry: fournisseur '%s' enregistré (driver=%s, priority=%s)", code, driver, priority)
            return SupplierConfig.from_row(row)
        finally:
            db.close()

    def is_empty(self) -> bool:
        db = self._session_factory()
        try:
            return db.scalars(select(Supplier.id).limit(1)).first() is None
        finally:
            db.close()

    def seed_from_settings(self, raw: Optional[str] = None) -> int:
        """
        Charge SUPPLIERS_SEED (liste JSON) si la table est vide.
        Retourne le nombre de fournisseurs créés.
        """
        if not self.is_empty():
            return 0
        entries = parse_seed(raw if raw is not None else settings.SUPPLIERS_SEED)
        for entry in entries:
            self.register(**entry)
        if entries:
            logger.info("registry: %d fournisseur(s) créés depuis SUPPLIERS_SEED", len(entries))
        return len(entries)


_SEED_KEYS = {
    "code", "name", "driver", "api_base_url", "api_key", "api_secret",
    "is_active", "priority", "timeout_seconds", "retry_times", "config",
}


def parse_seed(raw: Optional[str]) -> List[Dict[str, Any]]:
    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"SUPPLIERS_SEED is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ValueError("SUPPLIERS_SEED must be a JSON list")

    out: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("code") or not item.get("driver"):
            raise ValueError(f"SUPPLIERS_SEED entry needs 'code' and 'driver': {item!r}")
        entry = {k: v for k, v in item.items() if k in _SEED_KEYS}
        entry.setdefault("name", entry["code"])
        out.append(entry)
    return out


class CredentialVault:
    """Seul point de déchiffrement des credentials fournisseurs."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        cipher: Optional[CredentialCipher] = None,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher or default_cipher

    def get_credential(self, code: str, name: str) -> Optional[str]:
        column = CREDENTIAL_FIELDS.get(name)
        if column is None:
            raise KeyError(f"unknown credential '{name}'")
        db = self._session_factory()
        try:
            token = db.scalars(select(getattr(Supplier, column)).where(Supplier.code == code)).first()
        finally:
            db.close()
        return self._cipher.decrypt(token)

    def credentials_for(self, code: str, names: Iterable[str] = ("api_key", "api_secret")) -> Dict[str, Optional[str]]:
        return {n: self.get_credential(code, n) for n in names}
