from sqlalchemy import Column, String, Integer, Float, DateTime
from ..core.db import Base
import uuid

def gen_uuid() -> str:
    return str(uuid.uuid4())

class InventoryFlight(Base):
    """Vol de l'inventaire local (source 'local', servie comme un fournisseur)."""
    __tablename__ = "inventory_flights"
    id = Column(String, primary_key=True, default=gen_uuid, nullable=False)
    flight_number = Column(String, nullable=False)

    airline_code = Column(String, nullable=False)
    airline_name = Column(String, nullable=False, default="")
    airline_logo = Column(String, nullable=True)

    origin_code = Column(String, nullable=False, index=True)
    origin_name = Column(String, nullable=False, default="")
    origin_city = Column(String, nullable=False, default="")
    origin_country = Column(String, nullable=True)

    destination_code = Column(String, nullable=False, index=True)
    destination_name = Column(String, nullable=False, default="")
    destination_city = Column(String, nullable=False, default="")
    destination_country = Column(String, nullable=True)

    departure_time = Column(DateTime, nullable=False, index=True)
    arrival_time = Column(DateTime, nullable=False)

    base_price = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="USD")
    seats = Column(Integer, nullable=False, default=9)
    baggage_kg = Column(Integer, nullable=True, default=23)
    aircraft_type = Column(String, nullable=True)
