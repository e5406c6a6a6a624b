"""
Carrier models - couriers and their zone rate sheets.
"""
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Numeric, Integer, Boolean, Uuid, UniqueConstraint,
)
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from courier_ledger.db.database import Base


class Carrier(Base):
    __tablename__ = "carriers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # Share of the zone rate charged when a delivery attempt fails
    failed_attempt_fee_percent = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    store = relationship("Store", back_populates="carriers")
    zones = relationship("CarrierZone", back_populates="carrier", cascade="all, delete-orphan")


class CarrierZone(Base):
    __tablename__ = "carrier_zones"
    __table_args__ = (
        UniqueConstraint("carrier_id", "zone_name", name="uq_carrier_zones_carrier_zone_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    carrier_id = Column(Uuid, ForeignKey("carriers.id"), nullable=False)
    zone_name = Column(String, nullable=False)  # matched exactly against Order.delivery_zone
    zone_code = Column(String, nullable=True)
    rate = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    carrier = relationship("Carrier", back_populates="zones")
