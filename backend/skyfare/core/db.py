from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from .config import settings


def make_engine(url: str):
    # Engine compatible SQLite (local / tests en mémoire) et Postgres
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

def init_db(bind=None):
    # import tardif pour éviter les import cycles
    from ..models.supplier import Supplier  # noqa: F401
    from ..models.inventory import InventoryFlight  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
