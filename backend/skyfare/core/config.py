from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    # accepte les variables du fichier .env et ignore celles qu'on ne déclare pas (ex: amadeus_api_key)
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # valeurs par défaut pour un démarrage local
    DATABASE_URL: str = Field(default="sqlite:///./local.db")
    AUTH_JWT_SECRET: str = Field(default="devsecret-change-me")
    AUTH_JWT_ALG: str = "HS256"

    # clé de chiffrement des credentials fournisseurs (JWE dir/A256GCM)
    CREDENTIALS_KEY: str = Field(default="dev-credentials-key-change-me")

    # orchestrateur
    SEARCH_PARALLEL: bool = True
    SEARCH_MAX_CONCURRENCY: int = Field(default=8, ge=1)
    SEARCH_DEADLINE_SECONDS: Optional[float] = Field(default=45.0)
    SEARCH_MAX_RESULTS: int = Field(default=100, ge=1)
    SEARCH_SKIP_UNHEALTHY: bool = True
    SUPPLIER_UNHEALTHY_THRESHOLD: int = Field(default=3, ge=1)
    RETRY_DELAY_MS: int = Field(default=100, ge=0)

    # cache (secondes)
    CACHE_TTL_SEARCH: int = 300
    CACHE_TTL_OFFER: int = 1800

    # fournisseurs à créer au démarrage si la table est vide (JSON list)
    SUPPLIERS_SEED: str = Field(default='[{"code": "local", "name": "Local inventory", "driver": "local", "priority": 1000}]')

    LOG_LEVEL: str = "INFO"

settings = Settings()
