# backend/skyfare/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.db import init_db
from .services.registry import SupplierRegistry

from .routers.search import router as search_router
from .routers.suppliers import router as suppliers_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Skyfare Backend", version="0.1.0")

# Origines explicites (local) + regex pour couvrir les déploiements Vercel
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=r"^https://.*\.vercel\.app$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def _startup():
    init_db()
    # table vide -> fournisseurs de SUPPLIERS_SEED
    SupplierRegistry().seed_from_settings()

# === Branchements ===
app.include_router(suppliers_router)  # /api/suppliers/...

# sans /api (pour matcher le proxy front qui appelle /search)
app.include_router(search_router)     # /search, /offers/{id}

@app.get("/health")
def health():
    return {"ok": True}
