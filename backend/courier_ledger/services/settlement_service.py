"""
Settlement queries, payouts and the manual settlement lifecycle.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session, joinedload, selectinload

from courier_ledger.db.database import settings
from courier_ledger.errors import ConflictError, NotFoundError, ValidationError
from courier_ledger.models import (
    DailySettlement,
    DeliveryOutcome,
    DispatchSession,
    Order,
    SettlementOrder,
    SettlementStatus,
)
from courier_ledger.services.codes import add_with_code, next_sequential_code
from courier_ledger.services.money import ZERO, to_money
from courier_ledger.services.reconciliation_service import expected_basis, find_settlement, settlement_status_for
from courier_ledger.services.tenant import TenantContext
from courier_ledger.services.zone_pricing import get_carrier, zone_rate_map

logger = logging.getLogger(__name__)


def _settlement_query(db: Session, ctx: TenantContext):
    return db.query(DailySettlement).filter(DailySettlement.store_id == ctx.store_id)


def list_settlements(
    db: Session,
    ctx: TenantContext,
    status: Optional[SettlementStatus] = None,
    carrier_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[DailySettlement], int]:
    query = _settlement_query(db, ctx)
    if status:
        query = query.filter(DailySettlement.status == status)
    if carrier_id:
        query = query.filter(DailySettlement.carrier_id == carrier_id)
    if start_date:
        query = query.filter(DailySettlement.settlement_date >= start_date)
    if end_date:
        query = query.filter(DailySettlement.settlement_date <= end_date)
    total = query.count()
    settlements = (
        query.options(joinedload(DailySettlement.carrier))
        .order_by(DailySettlement.settlement_date.desc(), DailySettlement.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return settlements, total


def get_settlement(db: Session, ctx: TenantContext, settlement_id: UUID, lock: bool = False) -> DailySettlement:
    query = _settlement_query(db, ctx).filter(DailySettlement.id == settlement_id)
    if lock:
        query = query.with_for_update()
    else:
        query = query.options(
            joinedload(DailySettlement.carrier),
            selectinload(DailySettlement.orders).joinedload(SettlementOrder.order),
        )
    settlement = query.first()
    if not settlement:
        raise NotFoundError(f"Settlement {settlement_id} not found")
    return settlement


def mark_paid(
    db: Session,
    ctx: TenantContext,
    settlement_id: UUID,
    amount: Decimal,
    method: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> DailySettlement:
    """
    Record a payout against a settlement.

    Payments accumulate; cash figures (expected, collected, discrepancy) are
    never touched here.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError.for_field("amount", "Payment amount must be greater than zero")
    method = (method or "").strip()
    if not method:
        raise ValidationError.for_field("method", "Payment method is required")

    try:
        settlement = get_settlement(db, ctx, settlement_id, lock=True)
        outstanding = to_money(settlement.balance_due)
        if outstanding <= 0:
            raise ConflictError(f"Settlement {settlement.settlement_code} has nothing outstanding")
        if amount > outstanding:
            raise ValidationError.for_field(
                "amount", f"Payment of {amount} exceeds the outstanding balance of {outstanding}"
            )

        settlement.amount_paid = to_money(settlement.amount_paid) + amount
        settlement.balance_due = to_money(abs(to_money(settlement.net_receivable)) - settlement.amount_paid)
        settlement.payment_method = method
        settlement.payment_reference = reference or settlement.payment_reference
        if notes:
            settlement.payment_notes = notes
        settlement.paid_at = datetime.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(settlement)
    logger.info(
        "Settlement %s paid %s via %s (balance due %s)",
        settlement.settlement_code, amount, method, settlement.balance_due,
    )
    return settlement


def create_pending_settlement(
    db: Session,
    ctx: TenantContext,
    settlement_date: date,
    carrier_id: Optional[UUID] = None,
    order_ids: Optional[List[UUID]] = None,
    notes: Optional[str] = None,
) -> DailySettlement:
    """Open a settlement by hand; cash is entered later through complete_settlement."""
    unique_ids = list(dict.fromkeys(order_ids or []))
    try:
        rates: Dict[str, Decimal] = {}
        if carrier_id:
            carrier = get_carrier(db, ctx, carrier_id)
            rates = zone_rate_map(db, ctx, carrier.id)

        if find_settlement(db, ctx, carrier_id, settlement_date):
            raise ConflictError(f"A settlement for {settlement_date} already exists for this carrier")

        orders = []
        if unique_ids:
            orders = db.query(Order).filter(Order.store_id == ctx.store_id, Order.id.in_(unique_ids)).all()
            found = {order.id for order in orders}
            missing = [str(order_id) for order_id in unique_ids if order_id not in found]
            if missing:
                raise NotFoundError(
                    f"{len(missing)} order(s) not found",
                    details=[{"field": "order_ids", "message": f"Order {order_id} not found"} for order_id in missing],
                )
            settled = db.query(SettlementOrder.order_id).filter(SettlementOrder.order_id.in_(unique_ids)).all()
            if settled:
                raise ConflictError(
                    "Some orders are already linked to a settlement",
                    details=[{"field": "order_ids", "message": str(order_id)} for (order_id,) in settled],
                )

        settlement = DailySettlement(
            store_id=ctx.store_id,
            carrier_id=carrier_id,
            settlement_date=settlement_date,
            status=SettlementStatus.PENDING,
            notes=notes,
            settled_by=ctx.user_id,
            collected_cash=ZERO,
            amount_paid=ZERO,
            balance_due=ZERO,
            net_receivable=ZERO,
        )
        expected = ZERO
        for order in orders:
            amount = expected_basis(order.total_price, rates.get(order.delivery_zone))
            expected += amount
            settlement.orders.append(SettlementOrder(
                order_id=order.id,
                amount=amount,
                amount_collected=ZERO,
                delivery_outcome=DeliveryOutcome.PENDING,
                carrier_fee=ZERO,
            ))
        settlement.expected_cash = to_money(expected)
        settlement.total_dispatched = len(orders)

        add_with_code(
            db,
            settlement,
            "settlement_code",
            lambda: next_sequential_code(
                db, DailySettlement, "settlement_code", ctx.store_id, settings.settlement_code_prefix, settlement_date
            ),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(settlement)
    logger.info(
        "Created pending settlement %s for %s with %d orders (expected %s)",
        settlement.settlement_code, settlement_date, len(orders), settlement.expected_cash,
    )
    return settlement


def update_settlement_notes(db: Session, ctx: TenantContext, settlement_id: UUID, notes: Optional[str]) -> DailySettlement:
    try:
        settlement = get_settlement(db, ctx, settlement_id, lock=True)
        settlement.notes = notes
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(settlement)
    return settlement


def complete_settlement(
    db: Session,
    ctx: TenantContext,
    settlement_id: UUID,
    collected_cash: Decimal,
    notes: Optional[str] = None,
) -> DailySettlement:
    collected = to_money(collected_cash)
    if collected < 0:
        raise ValidationError.for_field("collected_cash", "Collected cash cannot be negative")

    try:
        settlement = get_settlement(db, ctx, settlement_id, lock=True)
        if settlement.status != SettlementStatus.PENDING:
            raise ConflictError(
                f"Settlement {settlement.settlement_code} is already {settlement.status.value}"
            )
        settlement.collected_cash = collected
        if notes:
            settlement.notes = notes
        settlement.net_receivable = to_money(
            collected - to_money(settlement.total_carrier_fees) - to_money(settlement.failed_attempt_fee)
        )
        settlement.balance_due = to_money(abs(settlement.net_receivable) - to_money(settlement.amount_paid))
        settlement.status = settlement_status_for(settlement.discrepancy)
        if ctx.user_id:
            settlement.settled_by = ctx.user_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(settlement)
    logger.info(
        "Completed settlement %s: expected=%s collected=%s status=%s",
        settlement.settlement_code, settlement.expected_cash, settlement.collected_cash, settlement.status.value,
    )
    return settlement


def delete_settlement(db: Session, ctx: TenantContext, settlement_id: UUID) -> None:
    """Only pending settlements can be deleted; reconciled ones are audit records."""
    try:
        settlement = get_settlement(db, ctx, settlement_id, lock=True)
        if settlement.status != SettlementStatus.PENDING:
            raise ConflictError(
                f"Settlement {settlement.settlement_code} is {settlement.status.value} and cannot be deleted"
            )
        db.query(DispatchSession).filter(DispatchSession.settlement_id == settlement.id).update(
            {DispatchSession.settlement_id: None}, synchronize_session=False
        )
        code = settlement.settlement_code
        db.delete(settlement)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deleted pending settlement %s", code)


def pending_by_carrier(db: Session, ctx: TenantContext) -> List[Dict[str, Any]]:
    """Settlements with money still owed, grouped by carrier."""
    settlements = (
        _settlement_query(db, ctx)
        .options(joinedload(DailySettlement.carrier))
        .filter(DailySettlement.balance_due > 0)
        .order_by(DailySettlement.settlement_date)
        .all()
    )
    groups: Dict[Optional[UUID], Dict[str, Any]] = {}
    for settlement in settlements:
        group = groups.get(settlement.carrier_id)
        if group is None:
            group = groups[settlement.carrier_id] = {
                "carrier_id": settlement.carrier_id,
                "carrier_name": settlement.carrier_name,
                "pending_count": 0,
                "total_balance_due": ZERO,
                "total_discrepancy": ZERO,
                "oldest_settlement_date": settlement.settlement_date,
            }
        group["pending_count"] += 1
        group["total_balance_due"] += to_money(settlement.balance_due)
        group["total_discrepancy"] += to_money(settlement.discrepancy)
    return sorted(groups.values(), key=lambda group: group["total_balance_due"], reverse=True)


def summary(
    db: Session, ctx: TenantContext, start_date: Optional[date] = None, end_date: Optional[date] = None
) -> Dict[str, Any]:
    query = _settlement_query(db, ctx)
    if start_date:
        query = query.filter(DailySettlement.settlement_date >= start_date)
    if end_date:
        query = query.filter(DailySettlement.settlement_date <= end_date)

    result: Dict[str, Any] = {
        "start_date": start_date,
        "end_date": end_date,
        "total_settlements": 0,
        "by_status": {status.value: 0 for status in SettlementStatus},
        "total_expected": ZERO,
        "total_collected": ZERO,
        "total_discrepancy": ZERO,
        "total_carrier_fees": ZERO,
        "total_net_receivable": ZERO,
        "total_paid": ZERO,
        "total_balance_due": ZERO,
    }
    for settlement in query.all():
        result["total_settlements"] += 1
        result["by_status"][settlement.status.value] += 1
        result["total_expected"] += to_money(settlement.expected_cash)
        result["total_collected"] += to_money(settlement.collected_cash)
        result["total_discrepancy"] += to_money(settlement.discrepancy)
        result["total_carrier_fees"] += to_money(settlement.total_carrier_fees) + to_money(settlement.failed_attempt_fee)
        result["total_net_receivable"] += to_money(settlement.net_receivable)
        result["total_paid"] += to_money(settlement.amount_paid)
        result["total_balance_due"] += to_money(settlement.balance_due)
    return result
