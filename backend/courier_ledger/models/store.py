"""
Store model - the tenant every other row is scoped to.
"""
from sqlalchemy import Column, String, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from courier_ledger.db.database import Base


class Store(Base):
    __tablename__ = "stores"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    plan_features = Column(JSON, nullable=True)  # e.g. ["warehouse", "invoicing"]
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    carriers = relationship("Carrier", back_populates="store", cascade="all, delete-orphan")

    def has_feature(self, feature: str) -> bool:
        return feature in (self.plan_features or [])
