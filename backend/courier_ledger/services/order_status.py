"""
Forward-only delivery status transitions for orders.

Orders are shared with the rest of the back-office, so a transition is an
optimistic compare-and-swap on the status the caller last saw.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from courier_ledger.models import DeliveryOutcome, Order, OrderStatus
from courier_ledger.models.order import OPEN_DELIVERY_STATUSES

logger = logging.getLogger(__name__)


def target_status(outcome: DeliveryOutcome) -> Optional[OrderStatus]:
    if outcome == DeliveryOutcome.DELIVERED:
        return OrderStatus.DELIVERED
    if outcome in (DeliveryOutcome.FAILED, DeliveryOutcome.RETURNED):
        return OrderStatus.DELIVERY_FAILED
    return None


def advance_order(db: Session, order: Order, outcome: DeliveryOutcome, amount_collected: Optional[Decimal]) -> bool:
    """
    Move ``order`` to the terminal status matching ``outcome``.

    Returns True when the order ends up in that status (including when it was
    already there) and False when it is somewhere it cannot move from, or
    another writer changed it first.
    """
    target = target_status(outcome)
    if target is None:
        return False

    seen = order.status
    collected = amount_collected if target == OrderStatus.DELIVERED else Decimal("0")
    if seen == target:
        # Re-submitted results may correct the cash figure
        if Decimal(order.amount_collected or 0) == Decimal(collected or 0):
            return True
        updated = (
            db.query(Order)
            .filter(Order.id == order.id, Order.status == seen)
            .update({Order.amount_collected: collected, Order.updated_at: datetime.utcnow()}, synchronize_session=False)
        )
        db.expire(order)
        if updated != 1:
            logger.warning("Order %s changed concurrently (expected status %s)", order.id, seen.value)
            return False
        logger.info("Order %s collected amount corrected to %s", order.id, collected)
        return True
    if seen not in OPEN_DELIVERY_STATUSES:
        logger.warning("Order %s is %s, cannot move to %s", order.id, seen.value, target.value)
        return False

    values = {
        Order.status: target,
        Order.amount_collected: collected,
        Order.updated_at: datetime.utcnow(),
    }
    if target == OrderStatus.DELIVERED:
        values[Order.delivered_at] = datetime.utcnow()

    updated = (
        db.query(Order)
        .filter(Order.id == order.id, Order.status == seen)
        .update(values, synchronize_session=False)
    )
    db.expire(order)
    if updated != 1:
        logger.warning("Order %s changed concurrently (expected status %s)", order.id, seen.value)
        return False
    return True
