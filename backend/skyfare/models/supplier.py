from sqlalchemy import Column, String, Boolean, Integer, Float, DateTime
from sqlalchemy.types import JSON
from ..core.db import Base
from datetime import datetime
import uuid

def gen_uuid() -> str:
    return str(uuid.uuid4())

class Supplier(Base):
    """
    Fournisseur configuré (registre).
    api_key / api_secret sont stockés *chiffrés* (voir core.security.CredentialCipher) :
    seul CredentialVault les déchiffre, au moment de construire le driver.
    """
    __tablename__ = "suppliers"
    id = Column(String, primary_key=True, default=gen_uuid, nullable=False)
    code = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    driver = Column(String, nullable=False)
    api_base_url = Column(String, nullable=True)

    api_key_encrypted = Column(String, nullable=True)
    api_secret_encrypted = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    timeout_seconds = Column(Float, default=30.0, nullable=False)
    retry_times = Column(Integer, default=3, nullable=False)

    is_healthy = Column(Boolean, default=True, nullable=False)
    last_health_check = Column(DateTime, nullable=True)
    consecutive_failures = Column(Integer, default=0, nullable=False)

    config = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
