"""
Dispatch session models - a batch of orders handed to one carrier for one run.
"""
from sqlalchemy import (
    Column, String, DateTime, Date, ForeignKey, Numeric, Integer, Boolean, Uuid,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from courier_ledger.db.database import Base


class DispatchSessionStatus(str, enum.Enum):
    OPEN = "open"
    EXPORTED = "exported"
    IMPORTED = "imported"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


# Sessions in these states no longer hold a claim on their orders
CLOSED_SESSION_STATUSES = (
    DispatchSessionStatus.PROCESSED,
    DispatchSessionStatus.CANCELLED,
)


class DeliveryOutcome(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


def _enum_column(enum_cls, default):
    return Column(
        SQLEnum(
            enum_cls,
            native_enum=False,
            values_callable=lambda cls: [member.value for member in cls],
            validate_strings=True,
        ),
        nullable=False,
        default=default.value,
    )


class DispatchSession(Base):
    __tablename__ = "dispatch_sessions"
    __table_args__ = (
        UniqueConstraint("store_id", "session_code", name="uq_dispatch_sessions_store_code"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    carrier_id = Column(Uuid, ForeignKey("carriers.id"), nullable=False)
    session_code = Column(String, nullable=False)  # e.g. "DISP-18102026-03"
    dispatch_date = Column(Date, nullable=False)
    status = _enum_column(DispatchSessionStatus, DispatchSessionStatus.OPEN)
    total_orders = Column(Integer, nullable=False, default=0)
    total_cod_expected = Column(Numeric(12, 2), nullable=False, default=0)
    total_prepaid = Column(Numeric(12, 2), nullable=False, default=0)
    settlement_id = Column(Uuid, ForeignKey("daily_settlements.id"), nullable=True)
    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    exported_at = Column(DateTime, nullable=True)
    imported_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    # Relationships
    carrier = relationship("Carrier")
    settlement = relationship("DailySettlement", back_populates="dispatch_sessions")
    orders = relationship(
        "DispatchSessionOrder",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="DispatchSessionOrder.position",
    )

    @property
    def carrier_name(self):
        return self.carrier.name if self.carrier else None

    @property
    def is_active(self) -> bool:
        return self.status not in CLOSED_SESSION_STATUSES


class DispatchSessionOrder(Base):
    __tablename__ = "dispatch_session_orders"
    __table_args__ = (
        UniqueConstraint("dispatch_session_id", "order_id", name="uq_dispatch_session_orders_session_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    dispatch_session_id = Column(Uuid, ForeignKey("dispatch_sessions.id"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    # Snapshot taken when the session is created
    order_number = Column(String, nullable=False)
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    delivery_address = Column(String, nullable=True)
    delivery_zone = Column(String, nullable=True)
    total_price = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String, nullable=True)
    is_cod = Column(Boolean, nullable=False, default=True)
    carrier_fee = Column(Numeric(12, 2), nullable=False, default=0)

    # Filled in from courier results
    delivery_outcome = _enum_column(DeliveryOutcome, DeliveryOutcome.PENDING)
    amount_collected = Column(Numeric(12, 2), nullable=True)
    failure_reason = Column(String, nullable=True)
    courier_notes = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    # Relationships
    session = relationship("DispatchSession", back_populates="orders")
    order = relationship("Order")
