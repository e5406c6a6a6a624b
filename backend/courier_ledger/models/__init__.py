from .store import Store
from .carrier import Carrier, CarrierZone
from .order import Order, OrderStatus
from .dispatch_session import (
    DispatchSession,
    DispatchSessionOrder,
    DispatchSessionStatus,
    DeliveryOutcome,
)
from .settlement import DailySettlement, SettlementOrder, SettlementStatus

__all__ = [
    "Store",
    "Carrier",
    "CarrierZone",
    "Order",
    "OrderStatus",
    "DispatchSession",
    "DispatchSessionOrder",
    "DispatchSessionStatus",
    "DeliveryOutcome",
    "DailySettlement",
    "SettlementOrder",
    "SettlementStatus",
]
