"""
Order model.

Orders are owned by the wider back-office; reconciliation only reads them and
advances the delivery fields.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Uuid, Enum as SQLEnum
import uuid
from datetime import datetime
import enum
from courier_ledger.db.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"


# Statuses an order may still leave through reconciliation
OPEN_DELIVERY_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
)
TERMINAL_DELIVERY_STATUSES = (
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERY_FAILED,
)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    order_number = Column(String, nullable=True)  # courier-facing reference, e.g. "#1315"
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    shipping_address = Column(String, nullable=True)
    delivery_zone = Column(String, nullable=True)
    total_price = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String, nullable=True)  # "efectivo", "tarjeta", "qr", ...
    payment_status = Column(String, nullable=True)  # "pending", "paid", ...
    carrier_id = Column(Uuid, ForeignKey("carriers.id"), nullable=True, index=True)
    status = Column(
        SQLEnum(
            OrderStatus,
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )
    amount_collected = Column(Numeric(12, 2), nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def reference(self) -> str:
        """Reference printed on courier sheets."""
        if self.order_number:
            return self.order_number
        return f"ORD-{str(self.id)[:8].upper()}"
