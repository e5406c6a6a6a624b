"""
Daily settlement models - the cash closing of a carrier's day.
"""
from sqlalchemy import (
    Column, String, DateTime, Date, ForeignKey, Numeric, Integer, Uuid, Text,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from decimal import Decimal
import enum
from courier_ledger.db.database import Base
from courier_ledger.models.dispatch_session import DeliveryOutcome


class SettlementStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    WITH_ISSUES = "with_issues"


class DailySettlement(Base):
    __tablename__ = "daily_settlements"
    __table_args__ = (
        # One settlement per carrier per calendar day
        UniqueConstraint("store_id", "carrier_id", "settlement_date", name="uq_daily_settlements_store_carrier_date"),
        UniqueConstraint("store_id", "settlement_code", name="uq_daily_settlements_store_code"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    carrier_id = Column(Uuid, ForeignKey("carriers.id"), nullable=True)
    settlement_code = Column(String, nullable=False)  # e.g. "LIQ-18102026-01"
    settlement_date = Column(Date, nullable=False)
    status = Column(
        SQLEnum(
            SettlementStatus,
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=SettlementStatus.PENDING.value,
    )

    expected_cash = Column(Numeric(12, 2), nullable=False, default=0)
    collected_cash = Column(Numeric(12, 2), nullable=False, default=0)

    total_dispatched = Column(Integer, nullable=False, default=0)
    total_delivered = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)
    total_carrier_fees = Column(Numeric(12, 2), nullable=False, default=0)
    failed_attempt_fee = Column(Numeric(12, 2), nullable=False, default=0)
    net_receivable = Column(Numeric(12, 2), nullable=False, default=0)

    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance_due = Column(Numeric(12, 2), nullable=False, default=0)
    payment_method = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True)
    payment_notes = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    settled_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    carrier = relationship("Carrier")
    orders = relationship("SettlementOrder", back_populates="settlement", cascade="all, delete-orphan")
    dispatch_sessions = relationship("DispatchSession", back_populates="settlement")

    @hybrid_property
    def discrepancy(self):
        return Decimal(self.collected_cash or 0) - Decimal(self.expected_cash or 0)

    @discrepancy.expression
    def discrepancy(cls):
        return cls.collected_cash - cls.expected_cash

    @property
    def carrier_name(self):
        return self.carrier.name if self.carrier else None

    @property
    def has_payments(self) -> bool:
        return Decimal(self.amount_paid or 0) > 0


class SettlementOrder(Base):
    __tablename__ = "settlement_orders"
    __table_args__ = (
        # An order is settled at most once
        UniqueConstraint("order_id", name="uq_settlement_orders_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    settlement_id = Column(Uuid, ForeignKey("daily_settlements.id"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)  # expected-cash snapshot
    amount_collected = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_outcome = Column(
        SQLEnum(
            DeliveryOutcome,
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=DeliveryOutcome.PENDING.value,
    )
    carrier_fee = Column(Numeric(12, 2), nullable=False, default=0)
    failure_reason = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    settlement = relationship("DailySettlement", back_populates="orders")
    order = relationship("Order")

    @property
    def order_number(self):
        return self.order.reference if self.order else None
